"""Workspace module: boundary enforcement, ignore rules, and file discovery."""

from src.workspace.boundary import WorkspaceBoundary, canonicalize
from src.workspace.discovery import FileDiscoveryService, bfs_file_search, find_vcs_root
from src.workspace.ignore import IgnorePatternError, IgnoreRuleSet, IgnoreSource

__all__ = [
    "FileDiscoveryService",
    "IgnorePatternError",
    "IgnoreRuleSet",
    "IgnoreSource",
    "WorkspaceBoundary",
    "bfs_file_search",
    "canonicalize",
    "find_vcs_root",
]
