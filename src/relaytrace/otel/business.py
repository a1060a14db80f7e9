"""Business attributes on spans."""

import logging
from collections.abc import Mapping
from typing import Any

from opentelemetry.trace import Span

from relaytrace.core.logging import log_event

BUSINESS_PREFIX = "business."

_log = logging.getLogger("relaytrace.otel")


def add_business_context(
    span: Span,
    values: Mapping[str, Any],
    logger: logging.Logger | None = None,
) -> dict[str, str]:
    """Set ``business.<key>`` attributes on ``span``.

    Values are stringified; None and empty values are skipped. Returns the
    attributes that were set.
    """
    context = {
        key: str(value)
        for key, value in values.items()
        if value is not None and value != ""
    }
    attributes = {f"{BUSINESS_PREFIX}{key}": value for key, value in context.items()}
    if not attributes:
        return attributes
    span.set_attributes(attributes)
    log_event(
        logger or _log,
        logging.DEBUG,
        "business_context_added",
        business=context,
    )
    return attributes
