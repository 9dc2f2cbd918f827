"""Logging setup for servicetop.

Modules log through ``logging.getLogger(__name__)`` with %-style messages and
``extra=`` fields. ``configure_logging`` installs one root handler whose
structlog formatter renders those records, merges fields bound with
``log_context`` (the request id, for instance) and masks credential fields.
"""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

_QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "botocore")

# Settings fields that hold credentials.
_SECRET_FIELDS = frozenset({
    "aws_secret_access_key",
    "auth_value",
    "cf_key",
    "elb_token",
    "proxy_pass",
})

_handler: logging.Handler | None = None


def _mask_secrets(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    for field in _SECRET_FIELDS.intersection(event_dict):
        event_dict[field] = "***"
    return event_dict


def configure_logging(*, level: str | None = None, json_output: bool | None = None) -> None:
    """Route stdlib logging through structlog; later calls are no-ops.

    ``level`` defaults to LOG_LEVEL (INFO). ``json_output`` defaults to
    LOG_FORMAT == "json", which is also the default format.
    """
    global _handler
    if _handler is not None:
        return

    level = level or os.environ.get("LOG_LEVEL", "INFO")
    if json_output is None:
        json_output = os.environ.get("LOG_FORMAT", "json") == "json"

    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.ExtraAdder(),
            _mask_secrets,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
        ],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    _handler = handler


@contextmanager
def log_context(**fields: str) -> Iterator[None]:
    """Attach ``fields`` to every record logged inside the block."""
    with structlog.contextvars.bound_contextvars(**fields):
        yield


def _reset_for_tests() -> None:
    global _handler
    if _handler is not None:
        logging.getLogger().removeHandler(_handler)
    _handler = None
    structlog.contextvars.clear_contextvars()
