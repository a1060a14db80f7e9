"""Tests for batch processing."""

import json
import logging
import time

import anyio
import pytest
from conftest import OTHER_TRACEPARENT, TRACE_ID, TRACEPARENT, make_record
from pydantic import BaseModel

from relaytrace.otel.propagation import inject_context
from relaytrace.otel.publisher import TracingPublisher
from relaytrace.otel.recovery import CarrierSource, RecoveredContext
from relaytrace.otel.traceparent import parse_traceparent
from relaytrace.pubsub.memory import DeliveryMode, InMemoryRelay, RelayBehavior
from relaytrace.pubsub.message import InboundRecord, OutboundMessage
from relaytrace.router import batch as batch_module
from relaytrace.router.batch import (
    BatchConfig,
    BatchOutcome,
    BatchProcessor,
    FailureKind,
    RecordResult,
    RecordStatus,
)

pytestmark = pytest.mark.anyio

BACKUP = "w3c_traceparent_orig"
BATCH_SIZE = 3
EXPECTED_SUCCESSES = 2
OVERSIZED_DIGITS = 5000
NESTING_DEPTH = 100_000
BLOCKING_SLEEP_S = 1.0


class Order(BaseModel):
    orderId: str
    amount: float = 0.0


class Recorder:
    """Handler that records every call."""

    def __init__(self, fail_on: str | None = None) -> None:
        self.calls: list[tuple] = []
        self.fail_on = fail_on

    async def __call__(self, payload, context: RecoveredContext, record) -> str:
        self.calls.append((payload, context, record))
        if record.record_id == self.fail_on:
            raise ValueError(f"cannot process {record.record_id}")
        return f"done {record.record_id}"


def batch(count: int = BATCH_SIZE) -> list[InboundRecord]:
    return [
        make_record(
            body=json.dumps({"orderId": f"ORD-{n}"}),
            record_id=f"msg-{n}",
            **{BACKUP: TRACEPARENT},
        )
        for n in range(count)
    ]


class TestIsolation:
    """One record's failure never affects the others."""

    async def test_all_succeed(self) -> None:
        handler = Recorder()

        outcome = await BatchProcessor(handler).process(batch())

        assert outcome.failed_identities == []
        assert outcome.succeeded == BATCH_SIZE
        assert outcome.to_response() == {"batchItemFailures": []}
        assert [r.result for r in outcome.results] == [
            "done msg-0",
            "done msg-1",
            "done msg-2",
        ]

    @pytest.mark.parametrize("failing", range(BATCH_SIZE))
    async def test_callback_failure_is_isolated(self, failing: int) -> None:
        handler = Recorder(fail_on=f"msg-{failing}")

        outcome = await BatchProcessor(handler).process(batch())

        assert outcome.failed_identities == [f"msg-{failing}"]
        assert outcome.succeeded == EXPECTED_SUCCESSES
        assert len(handler.calls) == BATCH_SIZE
        result = outcome.statuses[f"msg-{failing}"]
        assert result.status is RecordStatus.ERROR
        assert result.kind is FailureKind.CALLBACK_FAILURE
        assert result.error_type == "ValueError"
        assert result.reason == f"cannot process msg-{failing}"
        assert result.trace_id == TRACE_ID

    async def test_malformed_payload_skips_callback(self) -> None:
        records = batch()
        records[1] = make_record(body="not json", record_id="msg-1")
        handler = Recorder()

        outcome = await BatchProcessor(handler).process(records)

        assert outcome.failed_identities == ["msg-1"]
        assert outcome.succeeded == EXPECTED_SUCCESSES
        assert len(handler.calls) == EXPECTED_SUCCESSES
        assert outcome.statuses["msg-1"].kind is FailureKind.MALFORMED_PAYLOAD
        assert outcome.to_response() == {
            "batchItemFailures": [{"itemIdentifier": "msg-1"}]
        }

    async def test_every_record_gets_one_status(self) -> None:
        handler = Recorder(fail_on="msg-0")
        records = batch()
        records.append(make_record(body="{", record_id="msg-3"))

        outcome = await BatchProcessor(handler).process(records)

        assert [r.record_id for r in outcome.results] == [
            "msg-0",
            "msg-1",
            "msg-2",
            "msg-3",
        ]
        assert outcome.failed_identities == ["msg-0", "msg-3"]

    @pytest.mark.parametrize(
        "body",
        [
            '{"amount": ' + "1" * OVERSIZED_DIGITS + "}",
            "[" * NESTING_DEPTH + "]" * NESTING_DEPTH,
        ],
        ids=["oversized-integer", "deep-nesting"],
    )
    async def test_undecodable_json_is_malformed(self, body: str) -> None:
        records = [make_record(body=body, record_id="bad"), make_record()]

        outcome = await BatchProcessor(Recorder()).process(records)

        assert outcome.failed_identities == ["bad"]
        assert outcome.statuses["bad"].kind is FailureKind.MALFORMED_PAYLOAD
        assert outcome.statuses["msg-1"].ok

    async def test_unexpected_error_fails_only_that_record(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        recover = batch_module.recover_context

        def flaky_recover(record, *args, **kwargs):
            if record.record_id == "msg-1":
                raise RuntimeError("corrupt record")
            return recover(record, *args, **kwargs)

        monkeypatch.setattr(batch_module, "recover_context", flaky_recover)

        outcome = await BatchProcessor(Recorder()).process(batch())

        assert outcome.failed_identities == ["msg-1"]
        assert outcome.statuses["msg-1"].kind is FailureKind.INTERNAL_ERROR
        assert outcome.statuses["msg-1"].reason == "RuntimeError: corrupt record"
        assert outcome.succeeded == EXPECTED_SUCCESSES

    async def test_empty_batch(self) -> None:
        outcome = await BatchProcessor(Recorder()).process([])

        assert outcome.results == ()
        assert outcome.to_response() == {"batchItemFailures": []}


class TestHandlerInputs:
    """The handler sees the unwrapped payload and the recovered context."""

    async def test_context_is_recovered_from_backup(self) -> None:
        handler = Recorder()
        record = make_record(traceparent=OTHER_TRACEPARENT, **{BACKUP: TRACEPARENT})

        await BatchProcessor(handler).process([record])

        (payload, context, seen) = handler.calls[0]
        assert payload == {"orderId": "ORD-1"}
        assert context.trace_id == TRACE_ID
        assert context.source is CarrierSource.BACKUP
        assert seen is record

    async def test_missing_context_is_generated(self) -> None:
        handler = Recorder()

        outcome = await BatchProcessor(handler).process([make_record()])

        context = handler.calls[0][1]
        assert context.present
        assert context.source is CarrierSource.GENERATED
        assert outcome.results[0].trace_id == context.trace_id

    async def test_sync_handler(self) -> None:
        def handler(payload, context, record):
            return payload["orderId"]

        outcome = await BatchProcessor(handler).process([make_record()])

        assert outcome.results[0].result == "ORD-1"

    async def test_payload_model(self) -> None:
        handler = Recorder()
        records = [
            make_record(body='{"orderId": "ORD-1", "amount": 12.5}', record_id="a"),
            make_record(body='{"amount": "lots"}', record_id="b"),
        ]

        outcome = await BatchProcessor(handler, payload_model=Order).process(records)

        assert handler.calls[0][0] == Order(orderId="ORD-1", amount=12.5)
        assert outcome.failed_identities == ["b"]
        assert outcome.statuses["b"].kind is FailureKind.MALFORMED_PAYLOAD


class TestConcurrencyAndTimeout:
    async def test_timeout_fails_only_that_record(self) -> None:
        async def handler(payload, context, record):
            if record.record_id == "msg-1":
                await anyio.sleep(10)
            return "ok"

        processor = BatchProcessor(handler, config=BatchConfig(record_timeout_s=0.05))
        outcome = await processor.process(batch())

        assert outcome.failed_identities == ["msg-1"]
        assert outcome.statuses["msg-1"].kind is FailureKind.TIMEOUT
        assert outcome.succeeded == EXPECTED_SUCCESSES

    async def test_timeout_applies_to_blocking_sync_handler(self) -> None:
        def handler(payload, context, record):
            if record.record_id == "msg-1":
                time.sleep(BLOCKING_SLEEP_S)
            return "ok"

        processor = BatchProcessor(handler, config=BatchConfig(record_timeout_s=0.05))
        with anyio.fail_after(BLOCKING_SLEEP_S / 2):
            outcome = await processor.process(batch())

        assert outcome.failed_identities == ["msg-1"]
        assert outcome.statuses["msg-1"].kind is FailureKind.TIMEOUT
        assert outcome.succeeded == EXPECTED_SUCCESSES

    async def test_handler_timeout_error_is_a_callback_failure(self) -> None:
        async def handler(payload, context, record):
            raise TimeoutError("socket timed out")

        processor = BatchProcessor(handler, config=BatchConfig(record_timeout_s=5))
        outcome = await processor.process([make_record()])

        result = outcome.statuses["msg-1"]
        assert result.kind is FailureKind.CALLBACK_FAILURE
        assert result.reason == "socket timed out"
        assert result.error_type == "TimeoutError"

    async def test_concurrent_results_keep_delivery_order(self) -> None:
        active = 0
        peak = 0

        async def handler(payload, context, record):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await anyio.sleep(0.01)
            active -= 1
            if record.record_id == "msg-2":
                raise RuntimeError("boom")

        processor = BatchProcessor(
            handler, config=BatchConfig(max_concurrency=EXPECTED_SUCCESSES)
        )
        outcome = await processor.process(batch(5))

        assert [r.record_id for r in outcome.results] == [f"msg-{n}" for n in range(5)]
        assert outcome.failed_identities == ["msg-2"]
        assert peak == EXPECTED_SUCCESSES

    @pytest.mark.parametrize(
        "kwargs", [{"max_concurrency": 0}, {"record_timeout_s": 0}]
    )
    def test_invalid_config(self, kwargs: dict) -> None:
        with pytest.raises(ValueError):
            BatchConfig(**kwargs)


class TestMiddlewareChain:
    async def test_first_middleware_is_outermost(self) -> None:
        order: list[str] = []

        def named(name: str):
            def middleware(next_handler):
                async def handler(payload, context, record):
                    order.append(name)
                    return await next_handler(payload, context, record)

                return handler

            return middleware

        processor = BatchProcessor(Recorder(), middlewares=[named("outer")])
        processor.add_middleware(named("inner"))
        await processor.process([make_record()])

        assert order == ["outer", "inner"]


class TestLogging:
    async def test_batch_log_events(self, caplog: pytest.LogCaptureFixture) -> None:
        processor = BatchProcessor(
            Recorder(fail_on="msg-1"),
            config=BatchConfig(service_name="asyncdemo-consumer"),
        )

        with caplog.at_level(logging.INFO, logger="relaytrace.router"):
            await processor.process(batch(2))

        entries = [
            json.loads(r.getMessage())
            for r in caplog.records
            if r.name == "relaytrace.router"
        ]
        assert [e["message"] for e in entries] == [
            "batch_processing_started",
            "processing_message",
            "message_processed_successfully",
            "processing_message",
            "record_processing_error",
            "batch_processing_complete",
        ]
        assert all(e["service"] == "asyncdemo-consumer" for e in entries)
        assert all(e["hop"] == "consumer" for e in entries)
        assert entries[1]["queue"] == "orders-queue"
        assert entries[1]["correlation"]["traceId"] == TRACE_ID
        assert entries[-1]["errorCount"] == 1


class TestOutcome:
    def test_counts(self) -> None:
        outcome = BatchOutcome(
            results=(
                RecordResult("a", RecordStatus.SUCCESS),
                RecordResult("b", RecordStatus.ERROR, reason="x"),
            )
        )

        assert outcome.succeeded == 1
        assert outcome.failed == 1
        assert outcome.failed_identities == ["b"]


class TestEndToEnd:
    """Publish through a relay and consume the delivered batch."""

    async def test_identity_survives_primary_regeneration(self) -> None:
        relay = InMemoryRelay(RelayBehavior(regenerate_primary=True))
        await relay.publish(
            "orders",
            inject_context(
                OutboundMessage(payload={"orderId": "ORD-1"}),
                parse_traceparent(TRACEPARENT),
            ),
        )
        handler = Recorder()

        (record,) = relay.drain("orders")
        outcome = await BatchProcessor(handler).process([record])

        assert record.attribute("traceparent") != TRACEPARENT
        assert outcome.results[0].trace_id == TRACE_ID
        assert handler.calls[0][1].trace_id == TRACE_ID

    @pytest.mark.parametrize(
        "behavior",
        [
            RelayBehavior(),
            RelayBehavior(regenerate_primary=True),
            RelayBehavior(drop_primary=True, stamp_transport_header=True),
            RelayBehavior(delivery=DeliveryMode.NOTIFICATION),
            RelayBehavior(delivery=DeliveryMode.NOTIFICATION, regenerate_primary=True),
        ],
    )
    async def test_trace_joins_across_delivery_paths(
        self, behavior: RelayBehavior
    ) -> None:
        relay = InMemoryRelay(behavior)
        publisher = TracingPublisher(relay)
        result = await publisher.publish(
            "orders", OutboundMessage(payload={"orderId": "ORD-1"})
        )
        handler = Recorder()

        outcome = await BatchProcessor(handler).process(relay.drain("orders"))

        payload, context, _ = handler.calls[0]
        assert payload == {"orderId": "ORD-1"}
        assert context.identifier == result.identifier
        assert outcome.failed_identities == []

    async def test_batch_with_one_malformed_record(self) -> None:
        relay = InMemoryRelay()
        publisher = TracingPublisher(relay)
        for n in range(EXPECTED_SUCCESSES):
            await publisher.publish("orders", OutboundMessage(payload={"n": n}))
        records = [*relay.drain("orders"), make_record(body="{oops", record_id="bad")]
        handler = Recorder()

        outcome = await BatchProcessor(handler).process(records)

        assert outcome.failed_identities == ["bad"]
        assert outcome.succeeded == EXPECTED_SUCCESSES
        assert len(handler.calls) == EXPECTED_SUCCESSES
