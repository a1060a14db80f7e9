"""Trace context propagation via redundant message attributes.

Some relay paths overwrite or regenerate the conventional ``traceparent``
attribute when they re-publish, so the identity is written twice: once in
the conventional slot and once in a backup slot the relay does not know
about. The backup must be kept even where the relay is known to pass the
conventional slot through.
"""

from dataclasses import replace

from relaytrace.otel.config import PropagationConfig
from relaytrace.otel.traceparent import TraceIdentifier
from relaytrace.pubsub.message import AttributeValue, OutboundMessage


def inject_context(
    message: OutboundMessage,
    identifier: TraceIdentifier,
) -> OutboundMessage:
    """Return a copy of ``message`` carrying ``identifier`` in both slots."""
    traceparent = identifier.to_traceparent()
    return replace(message, carrier_primary=traceparent, carrier_backup=traceparent)


def carrier_attributes(
    message: OutboundMessage,
    config: PropagationConfig | None = None,
) -> dict[str, AttributeValue]:
    """Merge business attributes with the carrier slots.

    Carrier slots take precedence over business attributes of the same name.
    """
    config = config or PropagationConfig()
    attrs: dict[str, AttributeValue] = dict(message.attributes)
    if message.carrier_primary is not None:
        attrs[config.primary_attr] = message.carrier_primary
    if message.carrier_backup is not None:
        attrs[config.backup_attr] = message.carrier_backup
    return attrs
