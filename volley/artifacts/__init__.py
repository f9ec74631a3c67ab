"""
Per-run artifact storage on the local filesystem.
"""
from volley.artifacts.allocator import ArtifactAllocator, UnitPaths

__all__ = ["ArtifactAllocator", "UnitPaths"]
