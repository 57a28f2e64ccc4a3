"""Configuration helpers."""

import logging

from task_agent.config.settings import Settings, get_settings


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


__all__ = ["Settings", "configure_logging", "get_settings"]
