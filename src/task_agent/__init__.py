"""Agent task execution engine: tool-calling loop, streaming, queue and task tracking."""

__version__ = "0.1.0"
