"""Context module: hierarchical discovery of context files and import expansion."""

from src.context.imports import ImportProcessor, ImportResult
from src.context.resolver import ContextFile, ContextResult, HierarchicalContextResolver

__all__ = [
    "ContextFile",
    "ContextResult",
    "HierarchicalContextResolver",
    "ImportProcessor",
    "ImportResult",
]
