"""Tooling layer for schema-validated execution."""

from task_agent.tools.catalog import CatalogStore, build_catalog_registry, build_default_registry
from task_agent.tools.gateway import ToolExecutor
from task_agent.tools.loader import load_registry
from task_agent.tools.registry import ToolContext, ToolOutcome, ToolRegistry, ToolSpec

__all__ = [
    "CatalogStore",
    "ToolContext",
    "ToolExecutor",
    "ToolOutcome",
    "ToolRegistry",
    "ToolSpec",
    "build_catalog_registry",
    "build_default_registry",
    "load_registry",
]
