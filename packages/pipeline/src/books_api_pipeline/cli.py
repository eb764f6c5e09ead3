from __future__ import annotations

import argparse
import tempfile
from dataclasses import dataclass
from pathlib import Path

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from books_api_pipeline.books import make_create_handler
from books_api_pipeline.core import (
    bind,
    configure_logging,
    get_logger,
    load_settings,
    new_run_id,
)
from books_api_pipeline.deploy import policy_by_name
from books_api_pipeline.gates import ApprovalRequest
from books_api_pipeline.local import (
    LocalRelease,
    build_local_release,
    unobserved_create_handler,
)
from books_api_pipeline.pipeline import RunReport, StageStatus, VariableRef

console = Console()


@dataclass(frozen=True, slots=True)
class _SimulateArgs:
    source_dir: Path
    branch: str
    reject: bool
    break_candidate: bool
    settle_ms: int | None
    traffic: str


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="books-api-pipeline")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("plan", help="Validate and print the release pipeline topology")

    sp = sub.add_parser("simulate", help="Run the complete release against local services")
    sp.add_argument(
        "--source-dir",
        default=".",
        help="Working tree snapshotted by the Source stage (default: current directory)",
    )
    sp.add_argument("--branch", default="main", help="Branch name published by Source")
    sp.add_argument(
        "--reject",
        action="store_true",
        help="Reject the production review instead of approving it",
    )
    sp.add_argument(
        "--break-candidate",
        action="store_true",
        help="Deploy a build whose create path never writes, so validation fails",
    )
    sp.add_argument(
        "--settle-ms",
        type=int,
        default=None,
        help="Override the hook's settle interval (ms)",
    )
    sp.add_argument(
        "--traffic",
        default="AllAtOnce",
        help="Traffic shift policy: AllAtOnce, Canary10Percent5Minutes, Linear10PercentEvery1Minute",
    )
    return p


def _simulate_args(args: argparse.Namespace) -> _SimulateArgs:
    return _SimulateArgs(
        source_dir=Path(args.source_dir),
        branch=str(args.branch),
        reject=bool(args.reject),
        break_candidate=bool(args.break_candidate),
        settle_ms=args.settle_ms,
        traffic=str(args.traffic),
    )


def _print_plan(release: LocalRelease) -> None:
    tbl = Table(title=release.runner.name, show_header=True)
    tbl.add_column("stage")
    tbl.add_column("run_order", justify="right")
    tbl.add_column("action")
    tbl.add_column("namespace")
    tbl.add_column("inputs")
    for st in release.runner.plan:
        for group in st.groups:
            for a in group.actions:
                inputs = ", ".join(
                    f"{k}={v}" if isinstance(v, VariableRef) else f"{k}={v!r}"
                    for k, v in a.env.items()
                )
                tbl.add_row(
                    st.name,
                    str(group.run_order),
                    a.name,
                    a.namespace or "-",
                    inputs or "-",
                )
    console.print(tbl)


def _print_report(report: RunReport, report_path: Path) -> None:
    tbl = Table(title="Stages", show_header=True)
    tbl.add_column("stage")
    tbl.add_column("status")
    tbl.add_column("actions")
    for st in report.stages:
        colour = "green" if st.status == StageStatus.SUCCEEDED else "red"
        actions = ", ".join(f"{a.action}={a.status.value}" for a in st.actions)
        tbl.add_row(st.stage, f"[{colour}]{st.status.value}[/{colour}]", actions)
    for name in report.skipped_stages:
        tbl.add_row(name, "[yellow]skipped[/yellow]", "-")
    console.print(tbl)

    res = Table(title="Result", show_header=True, box=None)
    res.add_row(
        "status",
        "[green]ok[/green]" if report.status == "success" else f"[red]{report.status}[/red]",
    )
    res.add_row("report", str(report_path))
    console.print(res)


def _plan() -> int:
    s = load_settings()
    with tempfile.TemporaryDirectory() as tmp:
        release = build_local_release(
            source_root=Path("."),
            artifact_root=Path(tmp),
            hook_config=s.hook_config(),
        )
        _print_plan(release)
    return 0


def _simulate(args: _SimulateArgs) -> int:
    s = load_settings()
    log = get_logger("books_api_pipeline")

    overrides: dict[str, object] = {}
    if args.settle_ms is not None:
        overrides["settle_interval_ms"] = args.settle_ms

    release = build_local_release(
        source_root=args.source_dir,
        artifact_root=Path(s.artifact_root),
        hook_config=s.hook_config(**overrides),
        handler_factory=unobserved_create_handler if args.break_candidate else make_create_handler,
        traffic_policy=policy_by_name(args.traffic),
        logger=log,
        branch=args.branch,
    )

    def _review(request: ApprovalRequest) -> None:
        console.print(
            Panel.fit(request.additional_information, title=f"Approval: {request.gate}")
        )
        if args.reject:
            release.approval.reject("cli", "rejected from the command line")
        else:
            release.approval.approve("cli", "approved from the command line")

    release.approval.add_listener(_review)

    run_id = new_run_id()
    bind(run_id=run_id, command="simulate")
    console.print(
        Panel.fit(
            Text(f"books-api-pipeline - simulate\nrun_id={run_id}", style="bold"),
            title="Run",
        )
    )

    exit_code, report_path = release.runner.run(
        run_root=Path(s.run_root),
        run_id=run_id,
        meta={
            "source_dir": str(args.source_dir),
            "branch": args.branch,
            "reject": args.reject,
            "break_candidate": args.break_candidate,
        },
    )
    if release.runner.last_report is not None:
        _print_report(release.runner.last_report, report_path)
    return int(exit_code)


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    s = load_settings()
    configure_logging(level=s.log_level, fmt=s.log_format)

    if args.cmd == "plan":
        return _plan()
    return _simulate(_simulate_args(args))


if __name__ == "__main__":
    raise SystemExit(main())
