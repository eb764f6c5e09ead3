from __future__ import annotations

import io
import zipfile
from typing import Mapping, Protocol

from books_api_pipeline.core import ActionExecutionError, stable_json_dumps
from books_api_pipeline.pipeline import Action, ActionContext
from books_api_pipeline.pipeline.variables import EnvValue

from .source import SOURCE_ARTIFACT, write_entry

BUILD_ARTIFACT = "BuildArtifact"
BUILD_VARIABLES: tuple[str, ...] = ("ARTIFACTS_PATH", "GIT_BRANCH")
BUNDLE_NAME = "bundle.zip"


def bundle_key(artifacts_path: str) -> str:
    return f"{artifacts_path.rstrip('/')}/{BUNDLE_NAME}"


class BuildProject(Protocol):
    def build(self, source: bytes, env: Mapping[str, str]) -> bytes: ...


class BundleBuildProject:
    """
    Wraps the source archive and a manifest into a deployable bundle. The same
    source and environment always give the same bytes.
    """

    def build(self, source: bytes, env: Mapping[str, str]) -> bytes:
        manifest = {
            "branch": env.get("GIT_BRANCH"),
            "commit": env.get("COMMIT_ID"),
            "source_bytes": len(source),
        }
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
            write_entry(zf, "manifest.json", stable_json_dumps(manifest).encode("utf-8"))
            write_entry(zf, "source.zip", source)
        return buf.getvalue()


class BuildAction:
    def __init__(self, project: BuildProject | None = None) -> None:
        self.project = project or BundleBuildProject()

    def run(self, actx: ActionContext) -> Mapping[str, str]:
        env = actx.env
        missing = [k for k in ("S3_BUCKET", "GIT_BRANCH", "COMMIT_ID") if not env.get(k)]
        if missing:
            raise ActionExecutionError(f"Build is missing environment {missing}")

        bundle = self.project.build(actx.read_input(), env)
        artifacts_path = f"{env['S3_BUCKET']}/{env['GIT_BRANCH']}/{env['COMMIT_ID']}"
        ref = actx.store_artifact(
            BUILD_ARTIFACT,
            bundle,
            key=bundle_key(artifacts_path),
            content_type="application/zip",
        )
        actx.logger.info("Bundle stored", artifacts_path=artifacts_path, bytes=ref.bytes)
        return {"ARTIFACTS_PATH": artifacts_path, "GIT_BRANCH": env["GIT_BRANCH"]}

    def action(
        self,
        *,
        name: str = "Build",
        namespace: str = "BuildVariables",
        env: Mapping[str, EnvValue] | None = None,
    ) -> Action:
        return Action(
            name=name,
            fn=self.run,
            input_artifact=SOURCE_ARTIFACT,
            output_artifacts=(BUILD_ARTIFACT,),
            namespace=namespace,
            env=dict(env or {}),
            variables=BUILD_VARIABLES,
        )
