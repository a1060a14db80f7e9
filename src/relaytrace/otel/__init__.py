"""OpenTelemetry-compatible trace propagation for relaytrace."""

from relaytrace.otel.business import add_business_context
from relaytrace.otel.config import PropagationConfig
from relaytrace.otel.context import (
    identifier_from_context,
    identifier_from_span_context,
    to_otel_context,
)
from relaytrace.otel.metrics import metrics_middleware
from relaytrace.otel.middleware import TracingMiddleware, tracing
from relaytrace.otel.propagation import carrier_attributes, inject_context
from relaytrace.otel.publisher import PublishResult, TracingPublisher
from relaytrace.otel.recovery import (
    ABSENT,
    CarrierSource,
    RecoveredContext,
    recover_context,
)
from relaytrace.otel.source import ContextSource, ResolvedContext, resolve_context
from relaytrace.otel.traceparent import (
    TraceIdentifier,
    format_traceparent,
    generate_trace_identifier,
    parse_traceparent,
)
from relaytrace.otel.xray import format_xray_header, parse_xray_header

__all__ = [
    "ABSENT",
    "CarrierSource",
    "ContextSource",
    "PropagationConfig",
    "PublishResult",
    "RecoveredContext",
    "ResolvedContext",
    "TraceIdentifier",
    "TracingMiddleware",
    "TracingPublisher",
    "add_business_context",
    "carrier_attributes",
    "format_traceparent",
    "format_xray_header",
    "generate_trace_identifier",
    "identifier_from_context",
    "identifier_from_span_context",
    "inject_context",
    "metrics_middleware",
    "parse_traceparent",
    "parse_xray_header",
    "recover_context",
    "resolve_context",
    "to_otel_context",
    "tracing",
]
