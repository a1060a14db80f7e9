"""In-memory relay modelling the known transport behaviors.

Two delivery paths are modelled:

- ``RAW``: the body and attributes arrive as published.
- ``NOTIFICATION``: the body is wrapped in a notification envelope that
  carries its own copy of the attributes, the way SNS delivers to SQS
  without raw message delivery.

On either path the relay can restamp the primary carrier with its own
identity, drop it, or add a transport-level trace header. The backup
carrier is never touched.
"""

import enum
import json
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import TracebackType
from uuid import uuid4

from relaytrace.otel.config import PropagationConfig
from relaytrace.otel.propagation import carrier_attributes
from relaytrace.otel.traceparent import generate_trace_identifier
from relaytrace.otel.xray import format_xray_header
from relaytrace.pubsub.envelope import EnvelopeConfig
from relaytrace.pubsub.message import InboundRecord, MessageAttribute, OutboundMessage


class DeliveryMode(enum.StrEnum):
    RAW = "raw"
    NOTIFICATION = "notification"


@dataclass
class RelayBehavior:
    """How the relay mutates messages on their way through."""

    delivery: DeliveryMode = DeliveryMode.RAW
    regenerate_primary: bool = False
    """Overwrite the primary carrier with the relay's own identity."""

    drop_primary: bool = False
    """Remove the primary carrier."""

    stamp_transport_header: bool = False
    """Attach a transport-level (X-Ray) header with the relay's identity."""

    propagation: PropagationConfig = field(default_factory=PropagationConfig)
    envelope: EnvelopeConfig = field(default_factory=EnvelopeConfig)


class InMemoryRelay:
    """Publisher that queues messages per topic for batch draining.

    Example:
        relay = InMemoryRelay(RelayBehavior(regenerate_primary=True))
        await TracingPublisher(relay).publish("orders", message)
        outcome = await processor.process(relay.drain("orders"))
    """

    def __init__(self, behavior: RelayBehavior | None = None) -> None:
        self._behavior = behavior or RelayBehavior()
        self._queues: defaultdict[str, list[InboundRecord]] = defaultdict(list)
        self._closed = False

    async def publish(self, topic: str, message: OutboundMessage) -> str:
        """Queue ``message`` on ``topic`` and return its delivery id."""
        if self._closed:
            msg = "Relay is closed"
            raise RuntimeError(msg)

        behavior = self._behavior
        message_id = str(uuid4())
        attrs = {
            name: MessageAttribute.of(value)
            for name, value in carrier_attributes(message, behavior.propagation).items()
        }

        hop = generate_trace_identifier()
        primary = behavior.propagation.primary_attr
        if behavior.drop_primary:
            attrs.pop(primary, None)
        elif behavior.regenerate_primary:
            attrs[primary] = MessageAttribute(hop.to_traceparent())

        body = message.body()
        if behavior.delivery is DeliveryMode.NOTIFICATION:
            body = self._wrap(topic, message_id, body, attrs)
            attrs = {}

        self._queues[topic].append(
            InboundRecord(
                record_id=message_id,
                raw_body=body,
                attributes=attrs,
                transport_header=(
                    format_xray_header(hop) if behavior.stamp_transport_header else None
                ),
                source=f"arn:relaytrace:memory:{topic}",
            )
        )
        return message_id

    def _wrap(
        self,
        topic: str,
        message_id: str,
        body: str,
        attrs: dict[str, MessageAttribute],
    ) -> str:
        envelope = self._behavior.envelope
        document = {
            envelope.type_field: envelope.notification_type,
            envelope.message_id_field: message_id,
            "TopicArn": topic,
            envelope.message_field: body,
            "Timestamp": datetime.now(UTC).isoformat(),
            envelope.attributes_field: {
                name: {
                    envelope.attribute_type_field: attr.data_type,
                    envelope.attribute_value_field: attr.value,
                }
                for name, attr in attrs.items()
            },
        }
        return json.dumps(document)

    def drain(self, topic: str, max_records: int | None = None) -> list[InboundRecord]:
        """Remove and return queued records for ``topic`` in publish order."""
        queue = self._queues[topic]
        count = len(queue) if max_records is None else min(max_records, len(queue))
        batch, self._queues[topic] = queue[:count], queue[count:]
        return batch

    def pending(self, topic: str) -> int:
        return len(self._queues[topic])

    async def close(self) -> None:
        self._closed = True

    async def __aenter__(self) -> "InMemoryRelay":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
