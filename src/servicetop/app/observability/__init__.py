"""Observability helpers (structured logging)."""

from .logging import configure_logging, log_context

__all__ = ["configure_logging", "log_context"]
