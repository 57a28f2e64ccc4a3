"""Task tracker backends."""

from task_agent.storage.base import TaskTracker
from task_agent.storage.memory import InMemoryTaskTracker
from task_agent.storage.postgres import PostgresTaskTracker

__all__ = [
    "InMemoryTaskTracker",
    "PostgresTaskTracker",
    "TaskTracker",
]
