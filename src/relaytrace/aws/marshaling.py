"""Marshaling between relaytrace messages and SNS/SQS formats.

SNS publish attributes use ``{"DataType", "StringValue"}``. SQS records
arrive either from a Lambda event source mapping (camelCase keys) or from
``ReceiveMessage`` (PascalCase keys); both are accepted.
"""

import logging
from collections.abc import Iterable, Mapping
from typing import TYPE_CHECKING, Any
from uuid import uuid4

from relaytrace.aws.config import SNSConfig, SQSEventConfig
from relaytrace.core.logging import log_event
from relaytrace.otel.propagation import carrier_attributes
from relaytrace.pubsub.message import (
    STRING_TYPE,
    InboundRecord,
    MessageAttribute,
    OutboundMessage,
)

if TYPE_CHECKING:
    from types_aiobotocore_sns.type_defs import MessageAttributeValueTypeDef

# FIFO topic special attribute keys, lifted into request parameters
MESSAGE_DEDUPLICATION_ID = "MessageDeduplicationId"
MESSAGE_GROUP_ID = "MessageGroupId"

LAMBDA_SQS_EVENT_SOURCE = "aws:sqs"

_log = logging.getLogger("relaytrace.aws")


def to_message_attributes(
    message: OutboundMessage,
    config: SNSConfig | None = None,
) -> tuple[dict[str, "MessageAttributeValueTypeDef"], str | None, str | None]:
    """Convert an OutboundMessage to SNS message attributes.

    Returns (attributes, deduplication_id, group_id). Both carrier slots
    are always written when the message carries trace context.
    """
    config = config or SNSConfig()
    attrs: dict[str, MessageAttributeValueTypeDef] = {}

    deduplication_id: str | None = None
    group_id: str | None = None

    for key, value in carrier_attributes(message, config.propagation).items():
        if key == MESSAGE_DEDUPLICATION_ID:
            deduplication_id = str(value)
            continue
        if key == MESSAGE_GROUP_ID:
            group_id = str(value)
            continue
        attr = MessageAttribute.of(value)
        attrs[key] = {"DataType": attr.data_type, "StringValue": attr.value}

    if config.uuid_attr:
        attrs[config.uuid_attr] = {
            "DataType": STRING_TYPE,
            "StringValue": str(message.uuid),
        }

    return attrs, deduplication_id, group_id


def _field(raw: Mapping[str, Any], name: str) -> Any:
    """Read ``name`` in camelCase or PascalCase."""
    camel = name[0].lower() + name[1:]
    if camel in raw:
        return raw[camel]
    return raw.get(name[0].upper() + name[1:])


def from_sqs_attributes(raw: Mapping[str, Any] | None) -> dict[str, MessageAttribute]:
    """Convert SQS message attributes, skipping non-string values."""
    attrs: dict[str, MessageAttribute] = {}
    for name, value in (raw or {}).items():
        if not isinstance(value, Mapping):
            continue
        string_value = _field(value, "stringValue")
        if not isinstance(string_value, str):
            continue
        data_type = _field(value, "dataType") or STRING_TYPE
        attrs[name] = MessageAttribute(value=string_value, data_type=str(data_type))
    return attrs


def record_from_sqs(
    raw: Mapping[str, Any],
    config: SQSEventConfig | None = None,
) -> InboundRecord:
    """Convert one SQS record into an InboundRecord.

    A record without a ``messageId`` gets a unique placeholder identity so
    it cannot collide with another record in the batch.
    """
    config = config or SQSEventConfig()
    system_attrs = _field(raw, "attributes") or {}
    header = system_attrs.get(config.transport_header_attr)
    body = _field(raw, "body")

    record_id = _field(raw, "messageId")
    if not isinstance(record_id, str) or not record_id:
        record_id = f"missing-{uuid4()}"
        log_event(
            _log,
            logging.WARNING,
            "missing_message_id",
            messageId=record_id,
            queue=_field(raw, "eventSourceARN"),
        )

    return InboundRecord(
        record_id=record_id,
        raw_body=body if isinstance(body, str) else "",
        attributes=from_sqs_attributes(_field(raw, "messageAttributes")),
        transport_header=header if isinstance(header, str) else None,
        source=_field(raw, "eventSourceARN"),
    )


def records_from_sqs_event(
    event: Mapping[str, Any],
    config: SQSEventConfig | None = None,
) -> list[InboundRecord]:
    """Convert a Lambda SQS event (``{"Records": [...]}``) into records."""
    raw_records: Iterable[Mapping[str, Any]] = event.get("Records") or []
    return [record_from_sqs(raw, config) for raw in raw_records]
