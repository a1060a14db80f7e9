"""Lambda entrypoints for the publishing, consuming and API hops.

The handlers here are async; :func:`lambda_entrypoint` adapts one to the
synchronous ``handler(event, context)`` signature Lambda expects.

Example:
    processor = BatchProcessor(handle, middlewares=[tracing()])
    handler = lambda_entrypoint(make_batch_handler(processor))
"""

import contextlib
import enum
import functools
import json
import logging
import os
import time
from collections.abc import Awaitable, Callable, Iterable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

import anyio
from opentelemetry import context as otel_context
from opentelemetry import trace
from opentelemetry.trace import Span, SpanKind, Status, StatusCode, TracerProvider

from relaytrace.aws.config import LambdaConfig
from relaytrace.aws.marshaling import records_from_sqs_event
from relaytrace.core.logging import correlation, log_event
from relaytrace.otel.business import add_business_context
from relaytrace.otel.context import identifier_from_span_context, to_otel_context
from relaytrace.otel.publisher import TracingPublisher
from relaytrace.otel.source import ContextSource, resolve_context
from relaytrace.otel.traceparent import TRACEPARENT_HEADER, TraceIdentifier
from relaytrace.otel.xray import XRAY_ENV_VAR
from relaytrace.pubsub.message import AttributeValue, OutboundMessage
from relaytrace.router.batch import BatchProcessor

_log = logging.getLogger("relaytrace.aws")

AsyncLambdaHandler = Callable[[Mapping[str, Any], Any], Awaitable[Any]]
MessageBuilder = Callable[[Mapping[str, Any]], OutboundMessage]

# Event fields recorded as business.<field> on the producer span
DEFAULT_BUSINESS_FIELDS = ("orderId", "customerId", "transactionType")


class EventType(enum.StrEnum):
    SQS = "SQS"
    SNS = "SNS"
    S3 = "S3"
    DYNAMODB = "DynamoDB"
    API_GATEWAY = "API_GATEWAY"
    EVENTBRIDGE = "EVENTBRIDGE"
    DIRECT_INVOKE = "DIRECT_INVOKE"


_RECORD_SOURCES = {
    "aws:sqs": EventType.SQS,
    "aws:sns": EventType.SNS,
    "aws:s3": EventType.S3,
    "aws:dynamodb": EventType.DYNAMODB,
}


def detect_event_type(event: Mapping[str, Any]) -> EventType:
    """Classify a Lambda event by its shape."""
    records = event.get("Records")
    if isinstance(records, list) and records and isinstance(records[0], Mapping):
        first = records[0]
        # SNS uses PascalCase, the rest camelCase
        source = first.get("eventSource") or first.get("EventSource")
        if source in _RECORD_SOURCES:
            return _RECORD_SOURCES[source]

    if event.get("httpMethod") or event.get("requestContext"):
        return EventType.API_GATEWAY
    if event.get("source") and event.get("detail-type"):
        return EventType.EVENTBRIDGE
    return EventType.DIRECT_INVOKE


def incoming_traceparent(event: Mapping[str, Any]) -> str | None:
    """Traceparent passed by a synchronous upstream caller, if any.

    Looks at a top-level ``traceparent`` field first, then at the
    (case-insensitive) request headers of an API Gateway event.
    """
    value = event.get(TRACEPARENT_HEADER)
    if isinstance(value, str) and value:
        return value

    headers = event.get("headers")
    if isinstance(headers, Mapping):
        for name, header in headers.items():
            if name.lower() == TRACEPARENT_HEADER and isinstance(header, str):
                return header or None
    return None


def message_from_event(
    event: Mapping[str, Any],
    attribute_fields: Iterable[str] = (),
) -> OutboundMessage:
    """Build an outbound message from a direct-invoke event.

    The event minus its ``traceparent`` becomes the payload. Fields named
    in ``attribute_fields`` that are present and non-empty are copied into
    the business attributes.
    """
    payload = {k: v for k, v in event.items() if k != TRACEPARENT_HEADER}
    attributes: dict[str, AttributeValue] = {}
    for name in attribute_fields:
        value = event.get(name)
        if isinstance(value, str | int | float) and value != "":
            attributes[name] = value
    return OutboundMessage(payload=payload, attributes=attributes)


def _request_id(lambda_context: Any) -> str | None:
    return getattr(lambda_context, "aws_request_id", None)


@contextlib.contextmanager
def _invocation(
    service: str,
    hop: str,
    event: Mapping[str, Any],
    lambda_context: Any,
    **fields: Any,
) -> Iterator[dict[str, Any]]:
    """Log ``function_started`` and then ``function_completed``.

    The caller adds completion fields to the yielded dict. An exception is
    logged as ``operation_failed`` and re-raised.
    """
    request_id = _request_id(lambda_context)
    log_event(
        _log,
        logging.INFO,
        "function_started",
        service=service,
        hop=hop,
        requestId=request_id,
        eventType=detect_event_type(event),
        **fields,
    )
    started = time.perf_counter()
    completed: dict[str, Any] = {"success": True}
    try:
        yield completed
    except Exception as e:
        log_event(
            _log,
            logging.ERROR,
            "operation_failed",
            service=service,
            hop=hop,
            requestId=request_id,
            error=str(e),
            errorType=type(e).__name__,
            durationMs=round((time.perf_counter() - started) * 1000, 3),
        )
        raise
    log_event(
        _log,
        logging.INFO,
        "function_completed",
        service=service,
        hop=hop,
        requestId=request_id,
        durationMs=round((time.perf_counter() - started) * 1000, 3),
        **completed,
    )


def with_observability(
    async_handler: AsyncLambdaHandler,
    config: LambdaConfig | None = None,
) -> AsyncLambdaHandler:
    """Log the start, completion or failure of every invocation.

    Failures are re-raised so Lambda still sees the invocation fail.
    """
    config = config or LambdaConfig()

    @functools.wraps(async_handler)
    async def handler(event: Mapping[str, Any], lambda_context: Any) -> Any:
        with _invocation(config.service_name, "handler", event, lambda_context):
            return await async_handler(event, lambda_context)

    return handler


def make_batch_handler(
    processor: BatchProcessor,
    config: LambdaConfig | None = None,
) -> AsyncLambdaHandler:
    """Wrap ``processor`` as a handler for SQS-triggered invocations.

    Returns the partial batch response so only failed records are
    redelivered.
    """
    config = config or LambdaConfig()

    async def handler(event: Mapping[str, Any], lambda_context: Any) -> Any:
        records = records_from_sqs_event(event, config.sqs)
        with _invocation(
            config.service_name,
            "consumer",
            event,
            lambda_context,
            recordCount=len(records),
        ) as completed:
            outcome = await processor.process(records)
            completed.update(
                successCount=outcome.succeeded, errorCount=outcome.failed
            )
        return outcome.to_response()

    return handler


def make_publish_handler(
    publisher: TracingPublisher,
    topic_arn: str,
    *,
    build_message: MessageBuilder = message_from_event,
    business_fields: Iterable[str] = DEFAULT_BUSINESS_FIELDS,
    config: LambdaConfig | None = None,
    environ: Mapping[str, str] | None = None,
) -> AsyncLambdaHandler:
    """Wrap ``publisher`` as a handler that publishes one message per call.

    The active OpenTelemetry context and the invocation's X-Ray header are
    read here, at the boundary, and passed down explicitly. Event fields
    named in ``business_fields`` are recorded on the producer span.
    """
    config = config or LambdaConfig()
    business_fields = tuple(business_fields)

    async def handler(event: Mapping[str, Any], lambda_context: Any) -> Any:
        env = os.environ if environ is None else environ
        override = incoming_traceparent(event)
        with _invocation(
            config.service_name, "publisher", event, lambda_context
        ) as completed:
            result = await publisher.publish(
                topic_arn,
                build_message(event),
                override=override,
                context=otel_context.get_current(),
                xray_header=env.get(XRAY_ENV_VAR),
                business={name: event.get(name) for name in business_fields},
            )
            completed.update(
                messageId=result.message_id, traceparent=result.traceparent
            )
        return {
            "ok": True,
            "messageId": result.message_id,
            "traceparent": result.traceparent,
            "traceparentSource": str(result.source),
            "messageAttributes": list(result.attribute_names),
        }

    return handler


@dataclass(frozen=True)
class ApiContext:
    """What an API business function gets besides the event."""

    identifier: TraceIdentifier
    source: ContextSource
    span: Span
    request_id: str | None = None

    def add_business_context(self, **values: Any) -> None:
        """Record ``business.<key>`` attributes on the request span."""
        add_business_context(self.span, values)


ApiBusinessLogic = Callable[
    [Mapping[str, Any], ApiContext], Awaitable[Mapping[str, Any]]
]


def _error_response(request_id: str | None) -> dict[str, Any]:
    return {
        "statusCode": 500,
        "headers": {"Content-Type": "application/json"},
        "body": json.dumps(
            {"error": "Internal Server Error", "requestId": request_id}
        ),
    }


def make_api_handler(
    business_logic: ApiBusinessLogic,
    config: LambdaConfig | None = None,
    *,
    tracer_provider: TracerProvider | None = None,
    environ: Mapping[str, str] | None = None,
) -> AsyncLambdaHandler:
    """Wrap an API Gateway business function in a traced SERVER span.

    The span continues the caller's ``traceparent`` header when there is
    one. ``business_logic(event, api_context)`` returns the API Gateway
    response. If it raises, the error is logged with its trace correlation
    and a 500 response carrying the request id is returned.

    Example:
        async def get_order(event, api):
            api.add_business_context(orderId=event["pathParameters"]["id"])
            return {"statusCode": 200, "body": "{}"}

        handler = lambda_entrypoint(make_api_handler(get_order))
    """
    config = config or LambdaConfig()
    provider = tracer_provider or trace.get_tracer_provider()
    tracer = provider.get_tracer("relaytrace.aws")

    async def handler(event: Mapping[str, Any], lambda_context: Any) -> Any:
        env = os.environ if environ is None else environ
        request_id = _request_id(lambda_context)
        method = event.get("httpMethod")
        path = event.get("path")
        headers = event.get("headers")
        headers = headers if isinstance(headers, Mapping) else {}
        identity = (event.get("requestContext") or {}).get("identity") or {}

        parent = otel_context.get_current()
        resolved = resolve_context(
            incoming_traceparent(event),
            context=parent,
            xray_header=env.get(XRAY_ENV_VAR),
            config=config.propagation,
        )

        invocation = _invocation(config.service_name, "api", event, lambda_context)
        with (
            invocation as completed,
            tracer.start_as_current_span(
                f"{method} {path}" if method else "api request",
                context=to_otel_context(resolved.identifier, parent),
                kind=SpanKind.SERVER,
                attributes={
                    "http.request.method": method or "",
                    "url.path": path or "",
                    "relaytrace.context.source": str(resolved.source),
                },
            ) as span,
        ):
            identifier = (
                identifier_from_span_context(span.get_span_context())
                or resolved.identifier
            )
            api = ApiContext(identifier, resolved.source, span, request_id)
            api.add_business_context(
                httpMethod=method,
                path=path,
                userAgent=headers.get("User-Agent"),
                sourceIp=identity.get("sourceIp"),
            )
            log_event(
                _log,
                logging.INFO,
                "api_request_started",
                service=config.service_name,
                hop="api",
                httpMethod=method,
                path=path,
                requestId=request_id,
                traceparentSource=resolved.source,
                correlation=correlation(identifier),
            )

            try:
                response = await business_logic(event, api)
            except Exception as e:
                span.record_exception(e)
                span.set_status(Status(StatusCode.ERROR, str(e)))
                span.set_attribute("error.type", type(e).__name__)
                log_event(
                    _log,
                    logging.ERROR,
                    "operation_failed",
                    service=config.service_name,
                    hop="api",
                    error=str(e),
                    errorType=type(e).__name__,
                    httpMethod=method,
                    path=path,
                    correlation=correlation(identifier),
                )
                response = _error_response(request_id)
                completed["success"] = False

            status_code = response.get("statusCode")
            if isinstance(status_code, int):
                span.set_attribute("http.response.status_code", status_code)
            body = response.get("body")
            completed.update(
                statusCode=status_code,
                responseSize=len(body) if isinstance(body, str) else 0,
            )
        return response

    return handler


def lambda_entrypoint(
    async_handler: AsyncLambdaHandler,
) -> Callable[[Mapping[str, Any], Any], Any]:
    """Adapt an async handler to Lambda's synchronous signature."""

    @functools.wraps(async_handler)
    def handler(event: Mapping[str, Any], lambda_context: Any) -> Any:
        return anyio.run(async_handler, event, lambda_context)

    return handler
