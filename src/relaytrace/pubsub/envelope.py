"""Notification envelope unwrapping.

A relay that re-publishes across two transport stages may wrap the original
body in a notification document, for example SNS delivering to SQS::

    {
        "Type": "Notification",
        "MessageId": "...",
        "Message": "{\\"orderId\\": \\"ORD-1\\"}",
        "MessageAttributes": {
            "traceparent": {"Type": "String", "Value": "00-..."}
        }
    }

The unwrapper recovers the inner business payload whether or not the body
was wrapped. It does not look at trace context.
"""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from relaytrace.core.errors import MalformedPayload, preview
from relaytrace.pubsub.message import STRING_TYPE, MessageAttribute


@dataclass
class EnvelopeConfig:
    """Shape of the notification envelope."""

    type_field: str = "Type"
    """Field holding the notification-type discriminator."""

    notification_type: str = "Notification"
    """Discriminator value that marks a body as an envelope."""

    message_field: str = "Message"
    """Field holding the inner message as a JSON string."""

    attributes_field: str = "MessageAttributes"
    """Field holding the envelope's copy of the message attributes."""

    attribute_type_field: str = "Type"
    attribute_value_field: str = "Value"

    message_id_field: str = "MessageId"


@dataclass(frozen=True)
class Envelope:
    """Result of unwrapping a delivered body."""

    payload: Any
    wrapped: bool = False
    attributes: Mapping[str, MessageAttribute] = field(default_factory=dict)
    message_id: str | None = None


def _loads(text: str, what: str) -> Any:
    try:
        return json.loads(text)
    except (ValueError, TypeError, RecursionError) as e:
        msg = f"Failed to parse {what}: {e} (body {preview(text)!r})"
        raise MalformedPayload(msg) from e


def _is_envelope(document: Any, config: EnvelopeConfig) -> bool:
    if not isinstance(document, dict):
        return False
    inner = document.get(config.message_field)
    return (
        document.get(config.type_field) == config.notification_type
        and isinstance(inner, str)
        and bool(inner)
    )


def _attributes(
    document: dict[str, Any],
    config: EnvelopeConfig,
) -> dict[str, MessageAttribute]:
    raw = document.get(config.attributes_field)
    if not isinstance(raw, dict):
        return {}

    attrs: dict[str, MessageAttribute] = {}
    for name, entry in raw.items():
        if not isinstance(entry, dict):
            continue
        value = entry.get(config.attribute_value_field)
        if not isinstance(value, str):
            continue
        data_type = entry.get(config.attribute_type_field) or STRING_TYPE
        attrs[name] = MessageAttribute(value=value, data_type=str(data_type))
    return attrs


def unwrap_envelope(raw_body: str, config: EnvelopeConfig | None = None) -> Envelope:
    """Extract the business payload from a delivered body.

    Raises:
        MalformedPayload: The body, or the wrapped inner message, is not JSON.
    """
    config = config or EnvelopeConfig()
    document = _loads(raw_body, "message body")

    if not _is_envelope(document, config):
        return Envelope(payload=document)

    message_id = document.get(config.message_id_field)
    return Envelope(
        payload=_loads(document[config.message_field], "notification message"),
        wrapped=True,
        attributes=_attributes(document, config),
        message_id=message_id if isinstance(message_id, str) else None,
    )


def envelope_attributes(
    raw_body: str,
    config: EnvelopeConfig | None = None,
) -> dict[str, MessageAttribute]:
    """Return the attribute copy carried by an envelope, if any.

    Never raises; bodies that are not envelopes yield an empty mapping.
    """
    config = config or EnvelopeConfig()
    try:
        document = json.loads(raw_body)
    except (ValueError, TypeError, RecursionError):
        return {}
    if not _is_envelope(document, config):
        return {}
    return _attributes(document, config)
