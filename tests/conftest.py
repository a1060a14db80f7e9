"""Shared fixtures for relaytrace tests."""

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from relaytrace.pubsub.message import InboundRecord, MessageAttribute

TRACEPARENT = "00-68dde6a91b7146f84c4bc23f54f17b0f-50d362e330737a0f-01"
TRACE_ID = "68dde6a91b7146f84c4bc23f54f17b0f"
SPAN_ID = "50d362e330737a0f"
OTHER_TRACEPARENT = "00-0af7651916cd43dd8448eb211c80319c-b7ad6b7169203331-01"
OTHER_TRACE_ID = "0af7651916cd43dd8448eb211c80319c"


def make_record(
    body: str = '{"orderId": "ORD-1"}',
    record_id: str = "msg-1",
    transport_header: str | None = None,
    source: str | None = "arn:aws:sqs:us-east-1:123456789012:orders-queue",
    **attributes: str,
) -> InboundRecord:
    """Build an InboundRecord with plain string attributes."""
    return InboundRecord(
        record_id=record_id,
        raw_body=body,
        attributes={k: MessageAttribute(v) for k, v in attributes.items()},
        transport_header=transport_header,
        source=source,
    )


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def span_exporter():
    """Create an in-memory span exporter for testing."""
    return InMemorySpanExporter()


@pytest.fixture
def tracer_provider(span_exporter):
    """Create a tracer provider with in-memory exporter."""
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    """Create an in-memory metric reader for testing."""
    return InMemoryMetricReader()


@pytest.fixture
def meter_provider(metric_reader: InMemoryMetricReader) -> MeterProvider:
    """Create a meter provider with in-memory reader."""
    return MeterProvider(metric_readers=[metric_reader])
