"""Bridging between TraceIdentifier and OpenTelemetry span contexts."""

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.trace import (
    NonRecordingSpan,
    SpanContext,
    TraceFlags,
    format_span_id,
    format_trace_id,
)

from relaytrace.otel.traceparent import TraceIdentifier


def identifier_from_span_context(
    span_context: SpanContext | None,
) -> TraceIdentifier | None:
    """Convert a valid OpenTelemetry span context into an identifier."""
    if span_context is None or not span_context.is_valid:
        return None
    return TraceIdentifier(
        trace_id=format_trace_id(span_context.trace_id),
        span_id=format_span_id(span_context.span_id),
        flags=int(span_context.trace_flags),
    )


def identifier_from_context(context: Context | None) -> TraceIdentifier | None:
    """Read the span held by an explicitly passed context.

    A None context means "no context" and is never replaced by the
    process-wide current context.
    """
    if context is None:
        return None
    span = trace.get_current_span(context)
    return identifier_from_span_context(span.get_span_context())


def to_otel_context(
    identifier: TraceIdentifier | None,
    context: Context | None = None,
) -> Context:
    """Build a context whose current span is the remote ``identifier``.

    Spans started with the returned context become children of the
    identifier. With no identifier, ``context`` (or an empty context) is
    returned so new spans start a fresh trace.
    """
    base = context if context is not None else Context()
    if identifier is None:
        return base
    span_context = SpanContext(
        trace_id=int(identifier.trace_id, 16),
        span_id=int(identifier.span_id, 16),
        is_remote=True,
        trace_flags=TraceFlags(identifier.flags),
    )
    return trace.set_span_in_context(NonRecordingSpan(span_context), base)
