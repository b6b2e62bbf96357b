"""Structured logging configuration.

Provides JSON and text formatters, a renewal-context filter that
injects the current renewal id and order name into every log record,
an in-memory handler keeping recent lines for notifications, and a
one-call ``configure_logging`` function driven by config settings.
"""

from __future__ import annotations

import collections
import contextlib
import contextvars
import json
import logging
import sys
import threading
from datetime import UTC, datetime
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterator

    from acmerenew.config.settings import LoggingSettings

# Attributes that are part of the standard LogRecord; everything
# else is considered "extra" and gets included in structured output.
_STANDARD_ATTRS = frozenset(
    {
        "args",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
        # Our own well-known context attributes (handled explicitly):
        "renewal_id",
        "order_name",
    }
)

_renewal_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "acmerenew_renewal_id",
    default=None,
)
_order_name: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "acmerenew_order_name",
    default=None,
)


@contextlib.contextmanager
def log_context(
    *,
    renewal_id: str | None = None,
    order_name: str | None = None,
) -> Iterator[None]:
    """Tag log records emitted inside the block.

    Only the given fields are overridden; the previous values are
    restored on exit.
    """
    tokens = []
    if renewal_id is not None:
        tokens.append((_renewal_id, _renewal_id.set(renewal_id)))
    if order_name is not None:
        tokens.append((_order_name, _order_name.set(order_name)))
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


# ---------------------------------------------------------------------------
# Formatters
# ---------------------------------------------------------------------------


class StructuredFormatter(logging.Formatter):
    """JSON-lines formatter.

    Every record becomes a single JSON object on one line containing
    the standard fields plus any *extra* attributes passed by the
    caller or injected by filters.
    """

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        data: dict = {
            "timestamp": datetime.fromtimestamp(
                record.created,
                tz=UTC,
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.message,
        }

        renewal_id = getattr(record, "renewal_id", None)
        if renewal_id not in (None, "-"):
            data["renewal_id"] = renewal_id

        order_name = getattr(record, "order_name", None)
        if order_name not in (None, "-"):
            data["order_name"] = order_name

        # Caller-supplied extra fields
        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                data.setdefault(key, value)

        if record.exc_info and record.exc_info[0] is not None:
            data["exception"] = self.formatException(record.exc_info)

        if record.stack_info:
            data["stack_info"] = self.formatStack(record.stack_info)

        return json.dumps(data, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable formatter for console use."""

    _FMT = "%(asctime)s %(levelname)-8s [%(renewal_id)s/%(order_name)s] %(name)s: %(message)s"

    def __init__(self) -> None:
        super().__init__(fmt=self._FMT, datefmt="%Y-%m-%d %H:%M:%S")


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class RenewalContextFilter(logging.Filter):
    """Inject ``renewal_id`` and ``order_name`` from :func:`log_context`.

    Falls back to ``"-"`` outside a renewal so formatters always have
    the attributes.  Values passed explicitly through ``extra=`` win.
    """

    CONTEXT_ATTRS = frozenset({"renewal_id", "order_name"})

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if not hasattr(record, "renewal_id"):
            record.renewal_id = _renewal_id.get() or "-"  # type: ignore[attr-defined]
        if not hasattr(record, "order_name"):
            record.order_name = _order_name.get() or "-"  # type: ignore[attr-defined]
        return True


# ---------------------------------------------------------------------------
# Memory handler
# ---------------------------------------------------------------------------


class MemoryLogHandler(logging.Handler):
    """Keeps the most recent *capacity* formatted lines.

    Notification targets receive :meth:`lines` alongside the renewal
    result so the recipient can see what happened.
    """

    def __init__(self, capacity: int = 200) -> None:
        super().__init__()
        self._lines: collections.deque[str] = collections.deque(maxlen=max(capacity, 0))
        self._buffer_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:  # noqa: BLE001
            self.handleError(record)
            return
        with self._buffer_lock:
            self._lines.append(line)

    def lines(self) -> list[str]:
        with self._buffer_lock:
            return list(self._lines)

    def clear(self) -> None:
        with self._buffer_lock:
            self._lines.clear()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def configure_logging(settings: LoggingSettings) -> MemoryLogHandler:
    """Configure the ``acmerenew`` logger hierarchy from settings.

    Replaces any bootstrap handlers with properly formatted console
    output and attaches a :class:`MemoryLogHandler`, which is returned
    so the caller can forward recent lines to notifications.
    """
    level = getattr(logging, settings.level.upper(), logging.INFO)

    root = logging.getLogger("acmerenew")
    root.setLevel(level)
    root.handlers.clear()
    root.propagate = False

    formatter: logging.Formatter
    formatter = StructuredFormatter() if settings.format == "json" else TextFormatter()

    ctx_filter = RenewalContextFilter()

    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(formatter)
    console.addFilter(ctx_filter)
    root.addHandler(console)

    memory = MemoryLogHandler(settings.memory_lines)
    memory.setFormatter(TextFormatter())
    memory.addFilter(ctx_filter)
    root.addHandler(memory)

    # Quieten noisy third-party loggers
    for lib in ("urllib3", "dns"):
        logging.getLogger(lib).setLevel(logging.WARNING)

    return memory
