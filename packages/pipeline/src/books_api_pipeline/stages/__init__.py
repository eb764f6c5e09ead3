from .build import (
    BUILD_ARTIFACT,
    BUILD_VARIABLES,
    BuildAction,
    BuildProject,
    BundleBuildProject,
    bundle_key,
)
from .source import SOURCE_ARTIFACT, SOURCE_VARIABLES, DirectorySource, snapshot_tree

__all__ = [
    "BUILD_ARTIFACT",
    "BUILD_VARIABLES",
    "BuildAction",
    "BuildProject",
    "BundleBuildProject",
    "bundle_key",
    "SOURCE_ARTIFACT",
    "SOURCE_VARIABLES",
    "DirectorySource",
    "snapshot_tree",
]
