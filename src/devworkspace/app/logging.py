"""JSON logging configuration with per-pass correlation and rate limiting."""

import logging
import sys
import time
from collections import defaultdict
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from pythonjsonlogger import jsonlogger

from devworkspace.app.config import get_settings

# Context variables for reconcile correlation
trace_id_ctx: ContextVar[str | None] = ContextVar("trace_id", default=None)
workspace_ctx: ContextVar[str | None] = ContextVar("workspace", default=None)


def get_trace_id() -> str | None:
    """Get current trace_id from context."""
    return trace_id_ctx.get()


def set_trace_id(trace_id: str | None = None) -> str:
    """Set trace_id in context, generating one if not provided.

    Args:
        trace_id: Optional trace ID to set. If None, generates a short UUID.

    Returns:
        The trace ID that was set.
    """
    tid = trace_id or str(uuid4())[:8]
    trace_id_ctx.set(tid)
    return tid


def set_reconcile_context(namespace: str, name: str) -> str:
    """Start a reconcile pass: new trace_id plus the workspace key."""
    workspace_ctx.set(f"{namespace}/{name}")
    return set_trace_id()


def clear_trace_context() -> None:
    """Clear trace context (call at end of a reconcile pass)."""
    trace_id_ctx.set(None)
    workspace_ctx.set(None)


class RateLimitFilter(logging.Filter):
    """Rate limit filter to prevent log storms.

    A workspace stuck in a retry loop logs the same line on every pass;
    identical messages are capped at rate_per_minute.
    ERROR logs bypass rate limiting and are always logged.
    """

    def __init__(self, rate_per_minute: int = 100) -> None:
        super().__init__()
        self.rate_per_minute = rate_per_minute
        self._counts: dict[str, list[float]] = defaultdict(list)
        self._suppressed: set[str] = set()

    def filter(self, record: logging.LogRecord) -> bool:
        if record.levelno >= logging.ERROR:
            return True

        key = f"{record.name}:{record.lineno}:{record.msg}"
        now = time.time()
        window = [t for t in self._counts[key] if now - t < 60]
        self._counts[key] = window

        if len(window) >= self.rate_per_minute:
            if key in self._suppressed:
                return False
            # Let one marker line through on first suppression
            self._suppressed.add(key)
            record.msg = f"[RATE LIMITED] {record.msg} (max {self.rate_per_minute}/min)"
            window.append(now)
            return True

        if key in self._suppressed and len(window) < self.rate_per_minute // 2:
            self._suppressed.discard(key)

        window.append(now)
        return True


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter with schema version and reconcile context.

    Adds the following standard fields to all logs:
    - timestamp: ISO 8601 format with timezone
    - level, logger, pid
    - schema_version, service
    - trace_id: Reconcile pass ID (if set in context)
    - workspace: namespace/name being reconciled (if set in context)
    """

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        settings = get_settings()
        self._schema_version = settings.logging.schema_version
        self._service = settings.logging.service_name

    def add_fields(
        self,
        log_record: dict[str, Any],
        record: logging.LogRecord,
        message_dict: dict[str, Any],
    ) -> None:
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.fromtimestamp(
            record.created, tz=timezone.utc
        ).isoformat()
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["pid"] = record.process

        log_record["schema_version"] = self._schema_version
        log_record["service"] = self._service

        if trace_id := get_trace_id():
            log_record["trace_id"] = trace_id
        # Explicit extra={"workspace": ...} wins over the context value
        if (workspace := workspace_ctx.get()) and "workspace" not in log_record:
            log_record["workspace"] = workspace

        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)

        log_record.pop("color_message", None)


def setup_logging(level: int | None = None) -> None:
    """Configure JSON logging for the controller process.

    Args:
        level: Log level. If None, uses LOGGING_LEVEL from settings.
    """
    settings = get_settings()

    if level is None:
        level = getattr(logging, settings.logging.level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter())
    handler.addFilter(RateLimitFilter(settings.logging.rate_limit_per_minute))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    for name in ("uvicorn", "uvicorn.error"):
        uv_logger = logging.getLogger(name)
        uv_logger.handlers.clear()
        uv_logger.propagate = False
        uv_logger.addHandler(handler)

    # Probe and scrape requests are noise
    logging.getLogger("uvicorn.access").disabled = True

    # Suppress verbose HTTP client logs (health probes, API polling)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("kubernetes_asyncio").setLevel(logging.WARNING)
