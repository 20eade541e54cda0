"""Artifact storage backends."""

from .artifacts import (
    ArtifactNotFoundError,
    ArtifactStore,
    ArtifactStoreError,
    FileArtifactStore,
    InMemoryArtifactStore,
    StagedArtifact,
    StoredArtifact,
    create_artifact_store,
)

__all__ = [
    "ArtifactNotFoundError",
    "ArtifactStore",
    "ArtifactStoreError",
    "FileArtifactStore",
    "InMemoryArtifactStore",
    "StagedArtifact",
    "StoredArtifact",
    "create_artifact_store",
]
