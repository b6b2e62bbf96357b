"""Logging subsystem.

Public API::

    from acmerenew.logging import configure_logging, log_context

    memory = configure_logging(settings.logging)
    with log_context(renewal_id="example"):
        ...
"""

from acmerenew.logging.setup import MemoryLogHandler, configure_logging, log_context

__all__ = ["MemoryLogHandler", "configure_logging", "log_context"]
