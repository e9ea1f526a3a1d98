"""Logging configuration with execution context.

Every record carries the thread and plan being drained (``-`` outside a
queue worker) and the active OpenTelemetry trace/span ids.
"""

from __future__ import annotations

import logging
from logging.handlers import SysLogHandler

import httpx
from opentelemetry import trace

from opensesh.config import get_settings
from opensesh.observability.context import get_plan_id, get_thread_id

LOG_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s thread_id=%(thread_id)s "
    "plan_id=%(plan_id)s trace_id=%(trace_id)s %(message)s"
)
ALERT_FORMAT = "%(levelname)s %(name)s thread=%(thread_id)s plan=%(plan_id)s %(message)s"


def _trace_ids() -> tuple[str, str]:
    span_context = trace.get_current_span().get_span_context()
    if not span_context or not span_context.is_valid:
        return "-", "-"
    return format(span_context.trace_id, "032x"), format(span_context.span_id, "016x")


class ContextFilter(logging.Filter):
    """Attach thread_id, plan_id and trace ids to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace_id, record.span_id = _trace_ids()
        record.thread_id = get_thread_id() or "-"
        record.plan_id = get_plan_id() or "-"
        return True


class NtfyHandler(logging.Handler):
    """Push failed batches and lost execution contexts to an ntfy topic."""

    def __init__(self, url: str, topic: str):
        super().__init__(level=logging.ERROR)
        self.endpoint = f"{url.rstrip('/')}/{topic}"
        self.client = httpx.Client(timeout=5.0)

    def emit(self, record: logging.LogRecord) -> None:
        thread_id = getattr(record, "thread_id", "-")
        headers = {
            "Title": f"OpenSesh: {record.levelname.lower()} in thread {thread_id}",
            "Tags": "warning" if record.levelno < logging.CRITICAL else "rotating_light",
        }
        try:
            self.client.post(self.endpoint, content=self.format(record), headers=headers)
        except httpx.HTTPError:
            self.handleError(record)


def _attach(root: logging.Logger, handler: logging.Handler, fmt: str, context_filter: ContextFilter) -> None:
    handler.setFormatter(logging.Formatter(fmt))
    handler.addFilter(context_filter)
    root.addHandler(handler)


def configure_logging() -> None:
    """Configure root logging; optional syslog and ntfy sinks come from settings."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=LOG_FORMAT,
    )
    root_logger = logging.getLogger()
    context_filter = ContextFilter()
    # basicConfig handlers format with the context fields, so they need the filter too
    for handler in root_logger.handlers:
        handler.addFilter(context_filter)

    if settings.syslog_host:
        syslog_handler = SysLogHandler(address=(settings.syslog_host, settings.syslog_port))
        syslog_handler.setLevel(logging.INFO)
        _attach(root_logger, syslog_handler, "opensesh %(name)s %(levelname)s %(message)s", context_filter)

    if settings.ntfy_url and settings.ntfy_topic:
        _attach(root_logger, NtfyHandler(settings.ntfy_url, settings.ntfy_topic), ALERT_FORMAT, context_filter)
