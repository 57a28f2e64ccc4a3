"""Resolve the tool registry factory named in settings.

The API and the worker build their registries from the same ``module:callable``
path, so a deployment points both processes at one shared catalog backend.
"""

from __future__ import annotations

import importlib
import logging

from task_agent.errors import ConfigurationError
from task_agent.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

DEFAULT_REGISTRY_FACTORY = "task_agent.tools.catalog:build_default_registry"


def load_registry(target: str = DEFAULT_REGISTRY_FACTORY) -> ToolRegistry:
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(
            f"Tool registry factory must look like 'module:callable', got '{target}'"
        )
    try:
        factory = getattr(importlib.import_module(module_name), attr)
    except (ImportError, AttributeError) as exc:
        raise ConfigurationError(f"Cannot load tool registry factory '{target}': {exc}") from exc

    registry = factory()
    if not isinstance(registry, ToolRegistry):
        raise ConfigurationError(
            f"Tool registry factory '{target}' returned {type(registry).__name__}, "
            "expected ToolRegistry"
        )
    logger.info("tool_registry event=loaded factory=%s tools=%d", target, len(registry))
    return registry
