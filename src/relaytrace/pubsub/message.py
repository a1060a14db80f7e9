"""Transport-neutral message types."""

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID, uuid4

STRING_TYPE = "String"
NUMBER_TYPE = "Number"

AttributeValue = str | int | float


@dataclass(frozen=True)
class MessageAttribute:
    """A typed attribute value as carried by the transport."""

    value: str
    data_type: str = STRING_TYPE

    @classmethod
    def of(cls, value: AttributeValue) -> "MessageAttribute":
        """Wrap a plain value, typing ints and floats as numbers."""
        if isinstance(value, bool):
            return cls(value=str(value).lower())
        if isinstance(value, int | float):
            return cls(value=str(value), data_type=NUMBER_TYPE)
        return cls(value=value)


@dataclass(frozen=True)
class OutboundMessage:
    """A message on its way to the transport.

    Attributes:
        payload: Business data. Strings are sent as-is, anything else is
            JSON encoded.
        attributes: Business attributes.
        carrier_primary: Serialized trace identity for the conventional slot.
        carrier_backup: The same text for the backup slot.
        uuid: Local identity of the message.
    """

    payload: Any
    attributes: Mapping[str, AttributeValue] = field(default_factory=dict)
    carrier_primary: str | None = None
    carrier_backup: str | None = None
    uuid: UUID = field(default_factory=uuid4)

    def __post_init__(self) -> None:
        if self.carrier_primary != self.carrier_backup:
            msg = "carrier_primary and carrier_backup must carry the same value"
            raise ValueError(msg)

    @property
    def traceparent(self) -> str | None:
        return self.carrier_primary

    def body(self) -> str:
        """Render the payload as the transport message body."""
        if isinstance(self.payload, str):
            return self.payload
        return json.dumps(self.payload, default=str)


@dataclass(frozen=True)
class InboundRecord:
    """One delivered message of a batch. Read-only.

    Attributes:
        record_id: Unique identity used for redelivery reporting.
        raw_body: Delivered body, possibly wrapped in a notification envelope.
        attributes: Transport attributes, possibly holding carrier slots.
        transport_header: Transport-level trace header, when the delivery
            path provides one.
        source: Identity of the queue or stream the record came from.
    """

    record_id: str
    raw_body: str
    attributes: Mapping[str, MessageAttribute] = field(default_factory=dict)
    transport_header: str | None = None
    source: str | None = None

    def attribute(self, name: str) -> str | None:
        """Return the value of attribute ``name``, or None if missing."""
        attr = self.attributes.get(name)
        return attr.value if attr is not None else None

    @property
    def source_name(self) -> str:
        """Last ``:``-separated segment of ``source`` (the queue name)."""
        if not self.source:
            return "unknown"
        return self.source.rsplit(":", 1)[-1]
