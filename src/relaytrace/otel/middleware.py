"""Tracing middleware for BatchProcessor."""

from collections.abc import Callable
from typing import Any

from opentelemetry import trace
from opentelemetry.trace import SpanKind, Status, StatusCode, TracerProvider

from relaytrace.otel.context import to_otel_context
from relaytrace.otel.recovery import RecoveredContext
from relaytrace.pubsub.message import InboundRecord
from relaytrace.router.types import Middleware, RecordHandler

DEFAULT_MESSAGING_SYSTEM = "aws_sqs"


def _span_attributes(
    system: str,
    context: RecoveredContext,
    record: InboundRecord,
    topic: str | None,
) -> dict[str, Any]:
    attributes: dict[str, Any] = {
        "messaging.system": system,
        "messaging.operation.type": "process",
        "messaging.operation.name": "process",
        "messaging.message.id": record.record_id,
        "relaytrace.carrier.source": str(context.source),
        "relaytrace.carrier.diverged": context.diverged,
    }
    if topic:
        attributes["messaging.destination.name"] = topic
    return attributes


def tracing(
    tracer_provider: TracerProvider | None = None,
    messaging_system: str = DEFAULT_MESSAGING_SYSTEM,
) -> Middleware:
    """Middleware that runs the handler in a CONSUMER span.

    The span is a child of the record's recovered identity, so work done by
    the handler joins the producer's trace.

    Example:
        processor = BatchProcessor(handle, middlewares=[tracing()])
    """
    return TracingMiddleware(
        tracer_provider=tracer_provider,
        messaging_system=messaging_system,
        topic_extractor=lambda record: record.source_name if record.source else None,
    )


class TracingMiddleware:
    """Class-based tracing middleware with a topic extractor.

    Example:
        middleware = TracingMiddleware(
            topic_extractor=lambda record: record.attribute("topic")
        )
        processor.add_middleware(middleware)
    """

    def __init__(
        self,
        tracer_provider: TracerProvider | None = None,
        messaging_system: str = DEFAULT_MESSAGING_SYSTEM,
        topic_extractor: Callable[[InboundRecord], str | None] | None = None,
    ) -> None:
        provider = tracer_provider or trace.get_tracer_provider()
        self._tracer = provider.get_tracer("relaytrace.otel")
        self._system = messaging_system
        self._topic_extractor = topic_extractor

    def __call__(self, next_handler: RecordHandler) -> RecordHandler:
        async def handler(
            payload: Any, context: RecoveredContext, record: InboundRecord
        ) -> Any:
            topic = self._topic_extractor(record) if self._topic_extractor else None
            span_name = f"process {topic}" if topic else "process"

            with self._tracer.start_as_current_span(
                span_name,
                context=to_otel_context(context.identifier),
                kind=SpanKind.CONSUMER,
                attributes=_span_attributes(self._system, context, record, topic),
            ) as span:
                try:
                    result = await next_handler(payload, context, record)
                    span.set_status(Status(StatusCode.OK))
                    return result
                except Exception as e:
                    span.set_status(Status(StatusCode.ERROR, str(e)))
                    span.set_attribute("error.type", type(e).__name__)
                    raise

        return handler
