"""relaytrace.aws: SNS publishing, SQS record parsing and Lambda entrypoints."""

from relaytrace.aws.config import LambdaConfig, SNSConfig, SQSEventConfig
from relaytrace.aws.lambda_handlers import (
    ApiContext,
    EventType,
    detect_event_type,
    incoming_traceparent,
    lambda_entrypoint,
    make_api_handler,
    make_batch_handler,
    make_publish_handler,
    message_from_event,
    with_observability,
)
from relaytrace.aws.marshaling import (
    from_sqs_attributes,
    record_from_sqs,
    records_from_sqs_event,
    to_message_attributes,
)
from relaytrace.aws.sns import SNSPublisher

__all__ = [
    "ApiContext",
    "EventType",
    "LambdaConfig",
    "SNSConfig",
    "SNSPublisher",
    "SQSEventConfig",
    "detect_event_type",
    "from_sqs_attributes",
    "incoming_traceparent",
    "lambda_entrypoint",
    "make_api_handler",
    "make_batch_handler",
    "make_publish_handler",
    "message_from_event",
    "record_from_sqs",
    "records_from_sqs_event",
    "to_message_attributes",
    "with_observability",
]
