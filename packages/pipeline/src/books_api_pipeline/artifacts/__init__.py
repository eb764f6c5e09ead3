from .store import ArtifactNotFoundError, ArtifactStore, LocalArtifactStore

__all__ = ["ArtifactNotFoundError", "ArtifactStore", "LocalArtifactStore"]
