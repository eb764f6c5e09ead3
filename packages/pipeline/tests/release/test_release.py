from __future__ import annotations

from pathlib import Path

from books_api_pipeline.core import HookConfig
from books_api_pipeline.deploy import DeploymentState
from books_api_pipeline.local import LocalRelease, build_local_release, unobserved_create_handler
from books_api_pipeline.pipeline import StageStatus
from books_api_pipeline.release import PIPELINE_NAME


def _release(tmp_path: Path, **kwargs) -> LocalRelease:
    source = tmp_path / "repo"
    source.mkdir(exist_ok=True)
    (source / "app.py").write_text("print('books')\n")
    return build_local_release(
        source_root=source,
        artifact_root=tmp_path / "artifacts",
        hook_config=HookConfig(settle_interval_ms=0, hook_timeout_s=10),
        sleep=lambda s: None,
        **kwargs,
    )


def _approve(release: LocalRelease) -> None:
    release.approval.add_listener(lambda req: release.approval.approve("alice"))


def test_topology(tmp_path: Path) -> None:
    release = _release(tmp_path)
    runner = release.runner

    assert runner.name == PIPELINE_NAME
    layout = [
        (st.name, [(g.run_order, [a.name for a in g.actions]) for g in st.groups])
        for st in runner.plan
    ]
    assert layout == [
        ("Source", [(1, ["Source"])]),
        ("Build", [(1, ["Build"])]),
        ("Staging", [(1, ["Deploy"]), (2, ["Test"])]),
        ("Production", [(1, ["Review"]), (2, ["Deploy"])]),
    ]

    staging_deploy = runner.plan[2].actions[0]
    production_deploy = runner.plan[3].actions[1]
    assert staging_deploy.env["ENVIRONMENT"] == "staging"
    assert production_deploy.env["ENVIRONMENT"] == "production"


def test_full_release_goes_live_in_both_environments(tmp_path: Path) -> None:
    release = _release(tmp_path)
    _approve(release)

    exit_code, _ = release.runner.run(run_root=tmp_path / "runs", run_id="r1")

    report = release.runner.last_report
    assert report is not None
    assert exit_code == 0, report.to_dict()
    assert [s.status for s in report.stages] == [StageStatus.SUCCEEDED] * 4

    staging = report.variables["StagingVariables"]
    assert staging["API_ENDPOINT"] == "https://booksapistaging.books.local/"
    assert staging["TABLE"] == "BooksApiStaging-books"
    assert report.variables["BuildVariables"]["ARTIFACTS_PATH"].startswith(
        "books-api-artifacts/main/"
    )

    platform = release.platform
    assert platform.live_version("staging") == "1"
    assert platform.live_version("production") == "1"
    assert release.components.production.state == DeploymentState.LIVE
    # sentinel records and functional test data are gone
    assert len(platform.table_for("staging")) == 0
    assert len(platform.table_for("production")) == 0


def test_rejected_review_never_deploys_production(tmp_path: Path) -> None:
    release = _release(tmp_path)
    release.approval.add_listener(lambda req: release.approval.reject("bob", "not yet"))

    exit_code, _ = release.runner.run(run_root=tmp_path / "runs", run_id="r1")

    assert exit_code == 1
    assert release.platform.live_version("staging") == "1"
    assert release.platform.live_version("production") is None
    assert release.components.production.state is None
    report = release.runner.last_report
    assert report is not None
    assert report.action_status["Production/Deploy"] == "pending"


def test_candidate_that_drops_writes_is_rolled_back_in_staging(tmp_path: Path) -> None:
    release = _release(tmp_path, handler_factory=unobserved_create_handler)
    _approve(release)

    exit_code, _ = release.runner.run(run_root=tmp_path / "runs", run_id="r1")

    assert exit_code == 1
    staging = release.components.staging
    assert staging.state == DeploymentState.ROLLED_BACK
    assert staging.outputs == {}
    assert release.platform.live_version("staging") is None

    report = release.runner.last_report
    assert report is not None
    assert report.skipped_stages == ["Production"]
    assert report.action_status["Staging/Test"] == "pending"
    assert "StagingVariables" not in report.variables
    assert len(release.platform.table_for("staging")) == 0


def test_second_release_replaces_the_live_version(tmp_path: Path) -> None:
    release = _release(tmp_path)
    _approve(release)

    assert release.runner.run(run_root=tmp_path / "runs", run_id="r1")[0] == 0
    assert release.runner.run(run_root=tmp_path / "runs", run_id="r2")[0] == 0
    assert release.platform.live_version("staging") == "2"
    assert release.platform.live_version("production") == "2"
