"""relaytrace: W3C trace context that survives an SNS to SQS fan-out.

This is a convenience package that re-exports the core components.
The AWS adapters live in ``relaytrace.aws``.
"""

from relaytrace.core import __version__
from relaytrace.core.errors import (
    BusinessCallbackFailure,
    MalformedPayload,
    MalformedTraceContext,
    RelayTraceError,
)
from relaytrace.otel.config import PropagationConfig
from relaytrace.otel.propagation import inject_context
from relaytrace.otel.publisher import TracingPublisher
from relaytrace.otel.recovery import RecoveredContext, recover_context
from relaytrace.otel.source import ContextSource, resolve_context
from relaytrace.otel.traceparent import (
    TraceIdentifier,
    format_traceparent,
    generate_trace_identifier,
    parse_traceparent,
)
from relaytrace.pubsub.envelope import unwrap_envelope
from relaytrace.pubsub.memory import InMemoryRelay
from relaytrace.pubsub.message import InboundRecord, OutboundMessage
from relaytrace.router.batch import BatchOutcome, BatchProcessor

__all__ = [
    "__version__",
    # errors
    "RelayTraceError",
    "MalformedTraceContext",
    "MalformedPayload",
    "BusinessCallbackFailure",
    # trace identity
    "TraceIdentifier",
    "parse_traceparent",
    "format_traceparent",
    "generate_trace_identifier",
    # propagation
    "PropagationConfig",
    "ContextSource",
    "resolve_context",
    "inject_context",
    "RecoveredContext",
    "recover_context",
    "TracingPublisher",
    # transport
    "OutboundMessage",
    "InboundRecord",
    "unwrap_envelope",
    "InMemoryRelay",
    # batch
    "BatchProcessor",
    "BatchOutcome",
]
