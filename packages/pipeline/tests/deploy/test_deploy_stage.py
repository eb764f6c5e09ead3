from __future__ import annotations

import json
from pathlib import Path
from typing import Callable

from books_api_pipeline.core import DeploymentError, HookConfig
from books_api_pipeline.deploy import (
    OUTPUT_KEYS,
    CandidateVersion,
    DeploymentState,
    DeployStage,
    InMemoryDeploymentOrchestrator,
    LifecycleEvent,
    StatusReport,
    TrafficShiftPolicy,
    TrafficShiftType,
    Verdict,
)
from books_api_pipeline.pipeline import Action, PipelineRunner, StageSpec


class FakeProvisioner:
    def __init__(
        self,
        *,
        fail: bool = False,
        fail_shift_at: int | None = None,
        fail_rollback: bool = False,
        on_shift: Callable[[int], None] | None = None,
    ) -> None:
        self.fail = fail
        self.fail_shift_at = fail_shift_at
        self.fail_rollback = fail_rollback
        self.on_shift = on_shift
        self.live: str | None = "1"
        self.shifts: list[int] = []
        self.rolled_back: list[str] = []

    def provision(
        self, *, environment: str, stack_name: str, artifacts_path: str
    ) -> CandidateVersion:
        if self.fail:
            raise DeploymentError("stack update failed")
        return CandidateVersion(
            environment=environment,
            version="2",
            invocation_target=f"books-create:{environment}:2",
            outputs={k: f"{k.lower()}-value" for k in OUTPUT_KEYS},
        )

    def live_version(self, environment: str) -> str | None:
        return self.live

    def shift_traffic(self, candidate: CandidateVersion, percent: int) -> None:
        if percent == self.fail_shift_at:
            raise DeploymentError(f"alias update to {percent}% failed")
        self.shifts.append(percent)
        if self.on_shift is not None:
            self.on_shift(percent)
        if percent == 100:
            self.live = candidate.version

    def rollback(self, candidate: CandidateVersion) -> None:
        self.rolled_back.append(candidate.version)
        if self.fail_rollback:
            raise DeploymentError("rollback failed")


def _reporting(orch: InMemoryDeploymentOrchestrator, verdict: Verdict) -> Callable:
    def hook(event: LifecycleEvent, target: str) -> None:
        orch.put_lifecycle_event_hook_execution_status(StatusReport.for_event(event, verdict))

    return hook


def _stage(
    provisioner: FakeProvisioner,
    orch: InMemoryDeploymentOrchestrator,
    *,
    policy: TrafficShiftPolicy | None = None,
    hook_timeout_s: float = 5.0,
) -> DeployStage:
    kwargs = {} if policy is None else {"traffic_policy": policy}
    return DeployStage(
        environment="staging",
        provisioner=provisioner,
        orchestrator=orch,
        config=HookConfig(hook_timeout_s=hook_timeout_s),
        **kwargs,
    )


def _run(stage: DeployStage, tmp_path: Path, *extra: Action) -> tuple[int, PipelineRunner]:
    deploy = stage.action(namespace="StagingVariables", env={"STACK_NAME": "BooksApiStaging"})
    stages = [StageSpec.of("Staging", deploy)]
    if extra:
        stages.append(StageSpec.of("After", *extra))
    runner = PipelineRunner(stages=stages, name="deploy-test")
    exit_code, _ = runner.run(run_root=tmp_path, run_id="r")
    return exit_code, runner


def test_succeeded_verdict_goes_live_and_publishes_outputs(tmp_path: Path) -> None:
    orch = InMemoryDeploymentOrchestrator(dispatch=lambda fn: fn())
    orch.register_hook(_reporting(orch, Verdict.SUCCEEDED))
    prov = FakeProvisioner()
    stage = _stage(prov, orch)

    exit_code, runner = _run(stage, tmp_path)

    assert exit_code == 0
    assert stage.history == [
        DeploymentState.PROVISIONING,
        DeploymentState.AWAITING_VALIDATION,
        DeploymentState.TRAFFIC_SHIFTING,
        DeploymentState.LIVE,
    ]
    assert prov.shifts == [100]
    assert prov.live == "2"
    assert stage.outputs["API_ENDPOINT"] == "api_endpoint-value"
    assert runner.last_report is not None
    assert runner.last_report.variables["StagingVariables"] == stage.outputs
    assert stage.deployment is not None
    assert orch.in_progress("staging") is None


def test_failed_verdict_rolls_back_and_fails_the_stage(tmp_path: Path) -> None:
    orch = InMemoryDeploymentOrchestrator(dispatch=lambda fn: fn())
    orch.register_hook(_reporting(orch, Verdict.FAILED))
    prov = FakeProvisioner()
    stage = _stage(prov, orch)
    after: list[str] = []

    exit_code, runner = _run(
        stage, tmp_path, Action(name="Next", fn=lambda actx: after.append("ran"))
    )

    assert exit_code == 1
    assert after == []
    assert stage.state == DeploymentState.ROLLED_BACK
    assert DeploymentState.TRAFFIC_SHIFTING not in stage.history
    assert stage.outputs == {}
    assert prov.shifts == []
    assert prov.rolled_back == ["2"]
    assert prov.live == "1"

    report = runner.last_report
    assert report is not None
    failed = report.stage("Staging").failed_action
    assert failed is not None and failed.error is not None
    assert failed.error.exc_type == "DeploymentRolledBackError"
    assert report.skipped_stages == ["After"]
    assert "StagingVariables" not in report.variables


def test_hook_timeout_counts_as_failed(tmp_path: Path) -> None:
    orch = InMemoryDeploymentOrchestrator(dispatch=lambda fn: None)
    prov = FakeProvisioner()
    stage = _stage(prov, orch, hook_timeout_s=0.05)

    exit_code, _ = _run(stage, tmp_path)

    assert exit_code == 1
    assert stage.state == DeploymentState.ROLLED_BACK
    assert stage.deployment is not None
    assert orch.verdict_of(stage.deployment.event) == Verdict.FAILED


def test_provision_failure_ends_rolled_back(tmp_path: Path) -> None:
    orch = InMemoryDeploymentOrchestrator(dispatch=lambda fn: fn())
    prov = FakeProvisioner(fail=True)
    stage = _stage(prov, orch)

    exit_code, _ = _run(stage, tmp_path)

    assert exit_code == 1
    assert stage.history == [DeploymentState.PROVISIONING, DeploymentState.ROLLED_BACK]
    assert stage.deployment is None


def test_abort_while_awaiting_validation_rolls_back(tmp_path: Path) -> None:
    holder: dict[str, PipelineRunner] = {}
    orch = InMemoryDeploymentOrchestrator(dispatch=lambda fn: fn())

    def hook(event: LifecycleEvent, target: str) -> None:
        holder["runner"].abort("operator stop")

    orch.register_hook(hook)
    prov = FakeProvisioner()
    stage = _stage(prov, orch)
    runner = PipelineRunner(
        stages=[StageSpec.of("Staging", stage.action(namespace="StagingVariables"))],
        name="deploy-test",
    )
    holder["runner"] = runner

    exit_code, report_path = runner.run(run_root=tmp_path, run_id="r")

    assert exit_code == 1
    assert stage.state == DeploymentState.ROLLED_BACK
    assert prov.rolled_back == ["2"]
    assert stage.deployment is not None
    assert orch.verdict_of(stage.deployment.event) == Verdict.FAILED

    report = json.loads(report_path.read_text())
    assert report["status"] == "aborted"


def test_linear_policy_shifts_in_steps(tmp_path: Path) -> None:
    orch = InMemoryDeploymentOrchestrator(dispatch=lambda fn: fn())
    orch.register_hook(_reporting(orch, Verdict.SUCCEEDED))
    prov = FakeProvisioner()
    policy = TrafficShiftPolicy("Linear25Now", TrafficShiftType.LINEAR, 25, 0.0)
    stage = _stage(prov, orch, policy=policy)

    exit_code, _ = _run(stage, tmp_path)

    assert exit_code == 0
    assert prov.shifts == [25, 50, 75, 100]
    assert stage.state == DeploymentState.LIVE


def test_failed_traffic_shift_rolls_back_and_releases_the_environment(tmp_path: Path) -> None:
    orch = InMemoryDeploymentOrchestrator(dispatch=lambda fn: fn())
    orch.register_hook(_reporting(orch, Verdict.SUCCEEDED))
    prov = FakeProvisioner(fail_shift_at=50)
    policy = TrafficShiftPolicy("Linear25Now", TrafficShiftType.LINEAR, 25, 0.0)
    stage = _stage(prov, orch, policy=policy)

    exit_code, runner = _run(stage, tmp_path / "first")

    assert exit_code == 1
    assert stage.history[-2:] == [DeploymentState.TRAFFIC_SHIFTING, DeploymentState.ROLLED_BACK]
    assert stage.outputs == {}
    assert prov.shifts == [25]
    assert prov.rolled_back == ["2"]
    assert orch.in_progress("staging") is None
    assert stage.deployment is not None
    assert orch.get_deployment(stage.deployment.deployment_id).state == DeploymentState.ROLLED_BACK
    report = runner.last_report
    assert report is not None
    failed = report.stage("Staging").failed_action
    assert failed is not None and failed.error is not None
    assert failed.error.exc_type == "DeploymentError"

    # the next release to the same environment is not blocked
    prov.fail_shift_at = None
    exit_code, _ = _run(stage, tmp_path / "second")
    assert exit_code == 0
    assert stage.state == DeploymentState.LIVE


def test_rollback_error_still_releases_the_environment(tmp_path: Path) -> None:
    orch = InMemoryDeploymentOrchestrator(dispatch=lambda fn: fn())
    orch.register_hook(_reporting(orch, Verdict.FAILED))
    prov = FakeProvisioner(fail_rollback=True)
    stage = _stage(prov, orch)

    exit_code, _ = _run(stage, tmp_path)

    assert exit_code == 1
    assert stage.state == DeploymentState.ROLLED_BACK
    assert orch.in_progress("staging") is None


def test_abort_during_gradual_shift_rolls_back(tmp_path: Path) -> None:
    holder: dict[str, PipelineRunner] = {}
    orch = InMemoryDeploymentOrchestrator(dispatch=lambda fn: fn())
    orch.register_hook(_reporting(orch, Verdict.SUCCEEDED))
    prov = FakeProvisioner(on_shift=lambda percent: holder["runner"].abort("operator stop"))
    # a long interval; the abort must cut the wait short
    policy = TrafficShiftPolicy("Linear25Slow", TrafficShiftType.LINEAR, 25, 30.0)
    stage = _stage(prov, orch, policy=policy)
    runner = PipelineRunner(
        stages=[StageSpec.of("Staging", stage.action(namespace="StagingVariables"))],
        name="deploy-test",
    )
    holder["runner"] = runner

    exit_code, report_path = runner.run(run_root=tmp_path, run_id="r")

    assert exit_code == 1
    assert prov.shifts == [25]
    assert stage.state == DeploymentState.ROLLED_BACK
    assert prov.rolled_back == ["2"]
    assert prov.live == "1"
    assert orch.in_progress("staging") is None
    assert json.loads(report_path.read_text())["status"] == "aborted"


def test_environment_binding_must_match_the_stage(tmp_path: Path) -> None:
    orch = InMemoryDeploymentOrchestrator(dispatch=lambda fn: fn())
    orch.register_hook(_reporting(orch, Verdict.SUCCEEDED))
    prov = FakeProvisioner()
    stage = _stage(prov, orch)
    runner = PipelineRunner(
        stages=[
            StageSpec.of(
                "Staging",
                stage.action(namespace="StagingVariables", env={"ENVIRONMENT": "production"}),
            )
        ],
        name="deploy-test",
    )

    exit_code, _ = runner.run(run_root=tmp_path, run_id="r")

    assert exit_code == 1
    assert stage.history == []
    assert prov.shifts == []
    report = runner.last_report
    assert report is not None
    failed = report.stage("Staging").failed_action
    assert failed is not None and failed.error is not None
    assert failed.error.exc_type == "ConfigurationError"
