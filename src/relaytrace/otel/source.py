"""Where the producing side's trace identity comes from."""

import enum
import logging
from collections.abc import Callable
from dataclasses import dataclass

from opentelemetry.context import Context

from relaytrace.core.errors import MalformedTraceContext, preview
from relaytrace.core.logging import log_event
from relaytrace.otel.config import PropagationConfig
from relaytrace.otel.context import identifier_from_context
from relaytrace.otel.traceparent import (
    TraceIdentifier,
    generate_trace_identifier,
    parse_traceparent_strict,
)
from relaytrace.otel.xray import parse_xray_header_strict

_log = logging.getLogger("relaytrace.otel")


class ContextSource(enum.StrEnum):
    INCOMING = "incoming"
    OTEL = "otel"
    XRAY = "xray"
    GENERATED = "generated"


@dataclass(frozen=True)
class ResolvedContext:
    """The identity chosen for an invocation and where it came from."""

    identifier: TraceIdentifier
    source: ContextSource


def resolve_context(
    override: str | None = None,
    *,
    context: Context | None = None,
    xray_header: str | None = None,
    config: PropagationConfig | None = None,
) -> ResolvedContext:
    """Pick exactly one trace identity, first match wins.

    1. ``override``: traceparent text handed in by a synchronous upstream
       caller.
    2. The span held by ``context``. Pass the OpenTelemetry context
       explicitly; nothing here reads the process-wide current context.
    3. ``xray_header``: the Lambda runtime's X-Ray header.
    4. A freshly generated identifier.

    Never raises. Malformed inputs are logged and skipped.
    """
    config = config or PropagationConfig()

    if override is not None:
        incoming = usable(
            parse_or_warn(override, parse_traceparent_strict, slot="override"),
            config,
        )
        if incoming is not None:
            return ResolvedContext(incoming, ContextSource.INCOMING)

    active = usable(identifier_from_context(context), config)
    if active is not None:
        return ResolvedContext(active, ContextSource.OTEL)

    if xray_header is not None:
        xray = usable(
            parse_or_warn(xray_header, parse_xray_header_strict, slot="xray"),
            config,
        )
        if xray is not None:
            return ResolvedContext(xray, ContextSource.XRAY)

    return ResolvedContext(generate_trace_identifier(), ContextSource.GENERATED)


def parse_or_warn(
    text: object,
    parser: Callable[[object], TraceIdentifier],
    *,
    slot: str,
    logger: logging.Logger = _log,
) -> TraceIdentifier | None:
    """Run a strict parser, logging a warning and returning None on failure."""
    try:
        return parser(text)
    except MalformedTraceContext as e:
        log_event(
            logger,
            logging.WARNING,
            "malformed_trace_context",
            slot=slot,
            reason=e.reason,
            value=preview(e.text),
        )
        return None


def usable(
    identifier: TraceIdentifier | None,
    config: PropagationConfig,
) -> TraceIdentifier | None:
    """Apply the zero-id policy to a parsed identifier."""
    if identifier is None:
        return None
    if config.zero_ids_absent and identifier.is_zero:
        return None
    return identifier
