"""Metrics middleware for BatchProcessor."""

import time
from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import MeterProvider

from relaytrace.otel.recovery import RecoveredContext
from relaytrace.pubsub.message import InboundRecord
from relaytrace.router.types import Middleware, RecordHandler


def metrics_middleware(
    meter_provider: MeterProvider | None = None,
    messaging_system: str = "aws_sqs",
) -> Middleware:
    """Create a metrics middleware for record processing.

    Tracks:
    - messaging.process.duration: Processing time histogram
    - messaging.client.consumed.messages: Message count

    The carrier slot the trace identity was recovered from is recorded as
    ``relaytrace.carrier.source``.
    """
    provider = meter_provider or metrics.get_meter_provider()
    meter = provider.get_meter("relaytrace.otel")

    process_duration = meter.create_histogram(
        "messaging.process.duration",
        unit="s",
        description="Duration of processing operation",
    )
    consumed_messages = meter.create_counter(
        "messaging.client.consumed.messages",
        unit="{message}",
        description="Number of messages delivered to the application",
    )

    def middleware(handler: RecordHandler) -> RecordHandler:
        async def wrapper(
            payload: Any, context: RecoveredContext, record: InboundRecord
        ) -> Any:
            attributes: dict[str, Any] = {
                "messaging.system": messaging_system,
                "messaging.operation.name": "process",
                "relaytrace.carrier.source": str(context.source),
            }
            if record.source:
                attributes["messaging.destination.name"] = record.source_name

            start = time.perf_counter()
            try:
                result = await handler(payload, context, record)
                consumed_messages.add(1, attributes)
                return result
            except Exception as e:
                attributes["error.type"] = type(e).__name__
                raise
            finally:
                duration = time.perf_counter() - start
                process_duration.record(duration, attributes)

        return wrapper

    return middleware
