"""Tracing publisher decorator."""

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from types import TracebackType
from typing import Any

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.trace import SpanKind, Status, StatusCode, TracerProvider

from relaytrace.core.logging import correlation, log_event
from relaytrace.otel.business import add_business_context
from relaytrace.otel.config import PropagationConfig
from relaytrace.otel.context import identifier_from_span_context, to_otel_context
from relaytrace.otel.propagation import carrier_attributes, inject_context
from relaytrace.otel.source import ContextSource, resolve_context
from relaytrace.otel.traceparent import TraceIdentifier
from relaytrace.pubsub.message import OutboundMessage
from relaytrace.pubsub.publisher import Publisher

_log = logging.getLogger("relaytrace.otel")


@dataclass(frozen=True)
class PublishResult:
    """Delivery id and the trace identity attached to the message."""

    message_id: str
    identifier: TraceIdentifier
    source: ContextSource
    attribute_names: tuple[str, ...] = ()

    @property
    def traceparent(self) -> str:
        return self.identifier.to_traceparent()


class TracingPublisher:
    """Publisher wrapper that creates spans and attaches trace context.

    Wraps a publisher to:
    1. Resolve the producing trace identity (incoming, active span,
       X-Ray header, or generated)
    2. Create a PRODUCER span parented on it
    3. Attach the identity to both carrier slots of the message

    Example:
        publisher = TracingPublisher(SNSPublisher(client))
        result = await publisher.publish(topic_arn, message, override=incoming)
    """

    def __init__(
        self,
        publisher: Publisher,
        tracer_provider: TracerProvider | None = None,
        messaging_system: str = "aws_sns",
        propagation: PropagationConfig | None = None,
        service_name: str = "relaytrace",
    ) -> None:
        self._publisher = publisher
        provider = tracer_provider or trace.get_tracer_provider()
        self._tracer = provider.get_tracer("relaytrace.otel")
        self._system = messaging_system
        self._propagation = propagation or PropagationConfig()
        self._service = service_name

    async def publish(
        self,
        topic: str,
        message: OutboundMessage,
        *,
        override: str | None = None,
        context: Context | None = None,
        xray_header: str | None = None,
        business: Mapping[str, Any] | None = None,
    ) -> PublishResult:
        """Publish ``message`` with trace context attached.

        Args:
            topic: Destination identity.
            message: Message to send; existing carriers are replaced.
            override: Traceparent supplied by a synchronous upstream caller.
            context: OpenTelemetry context holding the active span, if any.
            xray_header: X-Ray header of the current invocation, if any.
            business: Values recorded on the span as ``business.<key>``
                attributes, for example the order id.
        """
        resolved = resolve_context(
            override,
            context=context,
            xray_header=xray_header,
            config=self._propagation,
        )

        with self._tracer.start_as_current_span(
            f"send {topic}",
            context=to_otel_context(resolved.identifier, context),
            kind=SpanKind.PRODUCER,
            attributes={
                "messaging.system": self._system,
                "messaging.operation.type": "send",
                "messaging.operation.name": "send",
                "messaging.destination.name": topic,
                "relaytrace.context.source": str(resolved.source),
            },
        ) as span:
            if business:
                add_business_context(span, business)
            # A no-op tracer yields no usable span; fall back to the resolved id.
            identifier = (
                identifier_from_span_context(span.get_span_context())
                or resolved.identifier
            )
            traced = inject_context(message, identifier)
            body = traced.body()
            attribute_names = tuple(carrier_attributes(traced, self._propagation))

            log_event(
                _log,
                logging.INFO,
                "publishing_message",
                service=self._service,
                hop="publisher",
                destination=topic,
                messageSize=len(body),
                traceparent=identifier.to_traceparent(),
                traceparentSource=resolved.source,
                traceparentIncoming=override,
                correlation=correlation(identifier),
            )

            try:
                message_id = await self._publisher.publish(topic, traced)
                span.set_attribute("messaging.message.id", message_id)
                span.set_status(Status(StatusCode.OK))
            except Exception as e:
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.set_attribute("error.type", type(e).__name__)
                raise

        log_event(
            _log,
            logging.INFO,
            "message_published",
            service=self._service,
            hop="publisher",
            messageId=message_id,
            destination=topic,
            correlation=correlation(identifier),
        )
        return PublishResult(
            message_id=message_id,
            identifier=identifier,
            source=resolved.source,
            attribute_names=attribute_names,
        )

    async def close(self) -> None:
        """Close the underlying publisher."""
        await self._publisher.close()

    async def __aenter__(self) -> "TracingPublisher":
        await self._publisher.__aenter__()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self._publisher.__aexit__(exc_type, exc_val, exc_tb)
