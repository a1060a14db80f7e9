"""Structured JSON log lines on top of stdlib logging."""

import json
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from relaytrace.otel.traceparent import TraceIdentifier


def correlation(
    identifier: "TraceIdentifier | None",
    **extra: Any,
) -> dict[str, Any]:
    """Build the ``correlation`` block attached to log lines."""
    block: dict[str, Any] = {
        "traceId": identifier.trace_id if identifier else None,
        "spanId": identifier.span_id if identifier else None,
    }
    block.update(extra)
    return block


def log_event(
    logger: logging.Logger,
    level: int,
    message: str,
    **fields: Any,
) -> None:
    """Emit ``message`` with ``fields`` as a single JSON object.

    Values that are not JSON serializable are rendered with ``str``.
    """
    if not logger.isEnabledFor(level):
        return
    entry = {"level": logging.getLevelName(level), "message": message, **fields}
    logger.log(level, json.dumps(entry, default=str))
