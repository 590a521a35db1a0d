"""Structured logging helper shared by the automation services."""

from __future__ import annotations

import logging
from typing import Any


def structured_log(
    logger: logging.Logger,
    level: str,
    event: str,
    /,
    **fields: Any,
) -> None:
    """Emit a structured log entry.

    The event name is passed as the log message. The JsonLogFormatter in
    logging_config.py extracts it via record.getMessage() when no explicit
    'event' key exists in extra, so it is not duplicated into the fields.

    Usage:
        structured_log(logger, "info", "automation.run_started", record_id=1, auto_publish=True)
    """
    log_method = getattr(logger, level.lower())
    log_method(event, extra=fields)


def log_status_change(
    logger: logging.Logger,
    *,
    record_id: int,
    from_status: str | None,
    to_status: str,
    **fields: Any,
) -> None:
    structured_log(
        logger,
        "info",
        "automation.status_changed",
        record_id=record_id,
        from_status=from_status,
        to_status=to_status,
        **fields,
    )
