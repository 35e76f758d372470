"""Artifact store adapters (fetch a remote artifact into a task workspace)."""

from .store import ArtifactStore, LocalArtifactStore, HttpArtifactStore, get_artifact_store

__all__ = ['ArtifactStore', 'LocalArtifactStore', 'HttpArtifactStore', 'get_artifact_store']
