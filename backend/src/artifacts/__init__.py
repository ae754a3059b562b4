"""Artifact storage - per-task working trees and their git history."""

from .store import ArtifactStore, ArtifactStoreError, sanitize_name

__all__ = ["ArtifactStore", "ArtifactStoreError", "sanitize_name"]
