"""
The Books API release pipeline:

    Source -> Build -> Staging[Deploy(1), Test(2)] -> Production[Review(1), Deploy(2)]

Build output `ARTIFACTS_PATH` feeds both deploys; the staging deploy's
outputs feed the test action. Staging tests and the production approval sit
at run_order 2 and 1 of their stages, so the wiring is checked when the
runner is constructed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from books_api_pipeline.core import ILogger
from books_api_pipeline.deploy import OUTPUT_KEYS, DeployStage
from books_api_pipeline.e2e import FunctionalSuite
from books_api_pipeline.gates import ManualApprovalGate
from books_api_pipeline.pipeline import PipelineRunner, StageSpec
from books_api_pipeline.stages import SOURCE_ARTIFACT, BuildAction, DirectorySource

PIPELINE_NAME = "BooksApiPipeline"
DEFAULT_ARTIFACT_BUCKET = "books-api-artifacts"
APPROVAL_INFORMATION = (
    "Ensure Books API works correctly in Staging and release date is agreed "
    "with Product Owners"
)

STAGING_STACK = "BooksApiStaging"
PRODUCTION_STACK = "BooksApiProduction"


@dataclass(slots=True)
class ReleaseComponents:
    source: DirectorySource
    build: BuildAction
    staging: DeployStage
    tests: FunctionalSuite
    approval: ManualApprovalGate
    production: DeployStage


def build_release_stages(
    c: ReleaseComponents, *, artifact_bucket: str = DEFAULT_ARTIFACT_BUCKET
) -> list[StageSpec]:
    source = c.source.action(namespace="SourceVariables")
    build = c.build.action(
        namespace="BuildVariables",
        env={
            "S3_BUCKET": artifact_bucket,
            "GIT_BRANCH": source.variable("BranchName"),
            "COMMIT_ID": source.variable("CommitId"),
        },
    )
    staging_deploy = c.staging.action(
        name="Deploy",
        run_order=1,
        input_artifact=SOURCE_ARTIFACT,
        namespace="StagingVariables",
        env={
            "STACK_NAME": STAGING_STACK,
            "ENVIRONMENT": c.staging.environment,
            "ARTIFACTS_PATH": build.variable("ARTIFACTS_PATH"),
        },
    )
    test = c.tests.action(
        name="Test",
        run_order=2,
        input_artifact=SOURCE_ARTIFACT,
        env={k: staging_deploy.variable(k) for k in OUTPUT_KEYS},
    )
    review = c.approval.action(run_order=1)
    production_deploy = c.production.action(
        name="Deploy",
        run_order=2,
        input_artifact=SOURCE_ARTIFACT,
        env={
            "STACK_NAME": PRODUCTION_STACK,
            "ENVIRONMENT": c.production.environment,
            "ARTIFACTS_PATH": build.variable("ARTIFACTS_PATH"),
        },
    )

    return [
        StageSpec.of("Source", source),
        StageSpec.of("Build", build),
        StageSpec.of("Staging", staging_deploy, test),
        StageSpec.of("Production", review, production_deploy),
    ]


def build_release_pipeline(
    c: ReleaseComponents,
    *,
    artifact_store: Any,
    logger: ILogger | None = None,
    artifact_bucket: str = DEFAULT_ARTIFACT_BUCKET,
) -> PipelineRunner:
    return PipelineRunner(
        stages=build_release_stages(c, artifact_bucket=artifact_bucket),
        logger=logger,
        artifact_store=artifact_store,
        name=PIPELINE_NAME,
    )
