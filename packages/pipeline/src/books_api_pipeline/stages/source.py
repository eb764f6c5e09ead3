from __future__ import annotations

import io
import zipfile
from pathlib import Path
from typing import Iterable, Mapping

from books_api_pipeline.core import ConfigurationError, sha256_bytes
from books_api_pipeline.pipeline import Action, ActionContext

SOURCE_ARTIFACT = "SourceArtifact"
SOURCE_VARIABLES: tuple[str, ...] = ("BranchName", "CommitId")

DEFAULT_EXCLUDES: frozenset[str] = frozenset(
    {".git", "__pycache__", ".pytest_cache", ".venv", "_runs", "_artifacts"}
)

# fixed timestamp so identical trees give identical archives
_ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)


def write_entry(zf: zipfile.ZipFile, name: str, data: bytes) -> None:
    info = zipfile.ZipInfo(name, date_time=_ZIP_EPOCH)
    info.compress_type = zipfile.ZIP_DEFLATED
    zf.writestr(info, data)


def iter_tree(root: Path, excludes: Iterable[str] = DEFAULT_EXCLUDES) -> list[Path]:
    skip = set(excludes)
    out: list[Path] = []
    for p in sorted(root.rglob("*")):
        rel = p.relative_to(root)
        if any(part in skip for part in rel.parts):
            continue
        if p.is_file():
            out.append(p)
    return out


def snapshot_tree(root: Path, excludes: Iterable[str] = DEFAULT_EXCLUDES) -> bytes:
    """Deterministic zip of a working tree."""
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for p in iter_tree(root, excludes):
            write_entry(zf, p.relative_to(root).as_posix(), p.read_bytes())
    return buf.getvalue()


class DirectorySource:
    """
    Source action over a local working tree.

    The revision id is the sha256 of the snapshot, so an unchanged tree keeps
    its revision.
    """

    def __init__(self, root: Path, *, branch: str = "main") -> None:
        self.root = Path(root)
        self.branch = branch

    def run(self, actx: ActionContext) -> Mapping[str, str]:
        if not self.root.is_dir():
            raise ConfigurationError(f"Source directory does not exist: {self.root}")
        data = snapshot_tree(self.root)
        commit = sha256_bytes(data)[:40]
        ref = actx.store_artifact(
            SOURCE_ARTIFACT,
            data,
            key=f"source/{self.branch}/{commit}.zip",
            content_type="application/zip",
        )
        actx.logger.info("Source snapshot", branch=self.branch, commit=commit, bytes=ref.bytes)
        return {"BranchName": self.branch, "CommitId": commit}

    def action(self, *, name: str = "Source", namespace: str = "SourceVariables") -> Action:
        return Action(
            name=name,
            fn=self.run,
            output_artifacts=(SOURCE_ARTIFACT,),
            namespace=namespace,
            variables=SOURCE_VARIABLES,
        )
