"""Observability package."""
from opensesh.observability.context import execution_context, get_plan_id, get_thread_id
from opensesh.observability.logging import ContextFilter, configure_logging

__all__ = [
    "ContextFilter",
    "configure_logging",
    "execution_context",
    "get_plan_id",
    "get_thread_id",
]
