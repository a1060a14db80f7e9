"""relaytrace.pubsub: Transport-neutral message types and the in-memory relay."""

from relaytrace.pubsub.envelope import (
    Envelope,
    EnvelopeConfig,
    envelope_attributes,
    unwrap_envelope,
)
from relaytrace.pubsub.memory import DeliveryMode, InMemoryRelay, RelayBehavior
from relaytrace.pubsub.message import (
    InboundRecord,
    MessageAttribute,
    OutboundMessage,
)
from relaytrace.pubsub.publisher import Publisher

__all__ = [
    "DeliveryMode",
    "Envelope",
    "EnvelopeConfig",
    "InMemoryRelay",
    "InboundRecord",
    "MessageAttribute",
    "OutboundMessage",
    "Publisher",
    "RelayBehavior",
    "envelope_attributes",
    "unwrap_envelope",
]
