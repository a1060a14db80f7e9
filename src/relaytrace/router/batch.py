"""Batch processing with per-record failure isolation.

Every record of a delivered batch gets exactly one terminal status. A
failing record never stops the records after it; failed identities are
reported back to the transport for redelivery.
"""

import enum
import functools
import inspect
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

import anyio
import anyio.to_thread
from pydantic import BaseModel, ValidationError

from relaytrace.core.errors import BusinessCallbackFailure, MalformedPayload
from relaytrace.core.logging import correlation, log_event
from relaytrace.otel.config import PropagationConfig
from relaytrace.otel.recovery import ABSENT, RecoveredContext, recover_context
from relaytrace.pubsub.envelope import EnvelopeConfig, unwrap_envelope
from relaytrace.pubsub.message import InboundRecord
from relaytrace.router.types import Middleware, RecordHandler, SyncRecordHandler

BATCH_FAILURES_FIELD = "batchItemFailures"
ITEM_IDENTIFIER_FIELD = "itemIdentifier"


def _is_async_callable(handler: Any) -> bool:
    if inspect.iscoroutinefunction(handler):
        return True
    # instances with an async __call__
    return inspect.iscoroutinefunction(getattr(handler, "__call__", None))


class RecordStatus(enum.StrEnum):
    SUCCESS = "success"
    ERROR = "error"


class FailureKind(enum.StrEnum):
    MALFORMED_PAYLOAD = "malformed_payload"
    CALLBACK_FAILURE = "callback_failure"
    TIMEOUT = "timeout"
    INTERNAL_ERROR = "internal_error"


@dataclass(frozen=True)
class RecordResult:
    """Terminal status of one record."""

    record_id: str
    status: RecordStatus
    reason: str | None = None
    error_type: str | None = None
    kind: FailureKind | None = None
    trace_id: str | None = None
    result: Any = None

    @property
    def ok(self) -> bool:
        return self.status is RecordStatus.SUCCESS


@dataclass(frozen=True)
class BatchOutcome:
    """Aggregate result of a batch, in delivery order."""

    results: tuple[RecordResult, ...] = ()

    @property
    def statuses(self) -> dict[str, RecordResult]:
        """Mapping from record identity to its result."""
        return {r.record_id: r for r in self.results}

    @property
    def failed_identities(self) -> list[str]:
        """Identities of failed records, in original order."""
        return [r.record_id for r in self.results if not r.ok]

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.ok)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    def to_response(self) -> dict[str, list[dict[str, str]]]:
        """Partial batch response; an empty list means the whole batch passed."""
        return {
            BATCH_FAILURES_FIELD: [
                {ITEM_IDENTIFIER_FIELD: record_id}
                for record_id in self.failed_identities
            ]
        }


@dataclass
class BatchConfig:
    """Configuration for BatchProcessor."""

    max_concurrency: int = 1
    """Records processed at once. 1 processes strictly in delivery order."""

    record_timeout_s: float | None = None
    """Per-record deadline; expiry fails only that record."""

    service_name: str = "relaytrace"
    """Value of the ``service`` field on log lines."""

    def __post_init__(self) -> None:
        if self.max_concurrency < 1:
            msg = "max_concurrency must be at least 1"
            raise ValueError(msg)
        if self.record_timeout_s is not None and self.record_timeout_s <= 0:
            msg = "record_timeout_s must be positive"
            raise ValueError(msg)


class BatchProcessor:
    """Runs a handler over every record of a batch.

    For each record the body is unwrapped, the trace identity recovered
    (or generated when absent) and the handler called with
    ``(payload, context, record)``. Handlers may be sync or async; sync
    handlers run in worker threads so the record timeout still applies to
    them. A timed-out thread is abandoned, not interrupted.

    Example:
        async def handle(payload, context, record):
            print(context.trace_id, payload["orderId"])

        processor = BatchProcessor(handle, middlewares=[tracing()])
        outcome = await processor.process(records)
        return outcome.to_response()
    """

    def __init__(
        self,
        handler: RecordHandler | SyncRecordHandler,
        *,
        config: BatchConfig | None = None,
        propagation: PropagationConfig | None = None,
        envelope: EnvelopeConfig | None = None,
        middlewares: Sequence[Middleware] = (),
        payload_model: type[BaseModel] | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._handler = handler
        self._is_async = _is_async_callable(handler)
        self._config = config or BatchConfig()
        self._propagation = propagation or PropagationConfig()
        self._envelope = envelope or EnvelopeConfig()
        self._middlewares: list[Middleware] = list(middlewares)
        self._payload_model = payload_model
        self._log = logger or logging.getLogger("relaytrace.router")

    def add_middleware(self, middleware: Middleware) -> None:
        """Add a middleware; earlier middlewares wrap later ones."""
        self._middlewares.append(middleware)

    def _build_chain(self, threads: anyio.CapacityLimiter) -> RecordHandler:
        async def invoke(
            payload: Any, context: RecoveredContext, record: InboundRecord
        ) -> Any:
            if self._is_async:
                return await self._handler(payload, context, record)
            result = await anyio.to_thread.run_sync(
                functools.partial(self._handler, payload, context, record),
                abandon_on_cancel=True,
                limiter=threads,
            )
            if inspect.isawaitable(result):
                result = await result
            return result

        handler: RecordHandler = invoke
        for middleware in reversed(self._middlewares):
            handler = middleware(handler)
        return handler

    async def process(self, records: Iterable[InboundRecord]) -> BatchOutcome:
        """Process a batch and report one result per record."""
        batch = list(records)
        self._emit(logging.INFO, "batch_processing_started", recordCount=len(batch))

        results: list[RecordResult | None] = [None] * len(batch)
        chain = self._build_chain(
            anyio.CapacityLimiter(self._config.max_concurrency)
        )

        if self._config.max_concurrency == 1:
            for index, record in enumerate(batch):
                results[index] = await self._settle(record, chain)
        else:
            limiter = anyio.CapacityLimiter(self._config.max_concurrency)

            async def run(index: int, record: InboundRecord) -> None:
                async with limiter:
                    results[index] = await self._settle(record, chain)

            async with anyio.create_task_group() as tg:
                for index, record in enumerate(batch):
                    tg.start_soon(run, index, record)

        outcome = BatchOutcome(results=tuple(r for r in results if r is not None))
        self._emit(
            logging.INFO,
            "batch_processing_complete",
            processedCount=len(outcome.results),
            successCount=outcome.succeeded,
            errorCount=outcome.failed,
        )
        return outcome

    async def _settle(
        self, record: InboundRecord, chain: RecordHandler
    ) -> RecordResult:
        try:
            return await self._process_record(record, chain)
        except Exception as e:
            return self._failure(
                record,
                ABSENT.or_generate(),
                kind=FailureKind.INTERNAL_ERROR,
                reason=f"{type(e).__name__}: {e}",
                error_type=type(e).__name__,
            )

    async def _process_record(
        self, record: InboundRecord, chain: RecordHandler
    ) -> RecordResult:
        malformed: MalformedPayload | None = None
        payload: Any = None
        try:
            payload = self._parse_payload(record)
        except MalformedPayload as e:
            malformed = e

        context = recover_context(record, self._propagation, self._envelope)
        context = context.or_generate()
        trace_id = context.trace_id

        if malformed is not None:
            return self._failure(
                record,
                context,
                kind=FailureKind.MALFORMED_PAYLOAD,
                reason=str(malformed),
                error_type=type(malformed).__name__,
            )

        self._emit(
            logging.INFO,
            "processing_message",
            messageId=record.record_id,
            queue=record.source_name,
            traceparent=context.identifier.to_traceparent(),
            traceparentSource=context.source,
            correlation=correlation(context.identifier, messageId=record.record_id),
        )

        timeout_s = self._config.record_timeout_s
        error: Exception | None = None
        result: Any = None
        with anyio.move_on_after(timeout_s) as scope:
            try:
                result = await chain(payload, context, record)
            except Exception as e:
                error = e

        # Only our own deadline counts as a timeout; a TimeoutError raised
        # by the handler is an ordinary callback failure.
        if scope.cancelled_caught:
            return self._failure(
                record,
                context,
                kind=FailureKind.TIMEOUT,
                reason=f"record processing exceeded {timeout_s}s",
                error_type=TimeoutError.__name__,
            )
        if error is not None:
            failure = BusinessCallbackFailure(error)
            return self._failure(
                record,
                context,
                kind=FailureKind.CALLBACK_FAILURE,
                reason=failure.reason,
                error_type=failure.error_type,
            )

        self._emit(
            logging.INFO,
            "message_processed_successfully",
            messageId=record.record_id,
            correlation=correlation(context.identifier, messageId=record.record_id),
        )
        return RecordResult(
            record_id=record.record_id,
            status=RecordStatus.SUCCESS,
            trace_id=trace_id,
            result=result,
        )

    def _parse_payload(self, record: InboundRecord) -> Any:
        payload = unwrap_envelope(record.raw_body, self._envelope).payload
        if self._payload_model is None:
            return payload
        try:
            return self._payload_model.model_validate(payload)
        except ValidationError as e:
            msg = f"Payload does not match {self._payload_model.__name__}: {e}"
            raise MalformedPayload(msg) from e

    def _failure(
        self,
        record: InboundRecord,
        context: RecoveredContext,
        *,
        kind: FailureKind,
        reason: str,
        error_type: str,
    ) -> RecordResult:
        self._emit(
            logging.ERROR,
            "record_processing_error",
            messageId=record.record_id,
            kind=kind,
            error=reason,
            errorType=error_type,
            correlation=correlation(context.identifier, messageId=record.record_id),
        )
        return RecordResult(
            record_id=record.record_id,
            status=RecordStatus.ERROR,
            reason=reason,
            error_type=error_type,
            kind=kind,
            trace_id=context.trace_id,
        )

    def _emit(self, level: int, message: str, **fields: Any) -> None:
        log_event(
            self._log,
            level,
            message,
            service=self._config.service_name,
            hop="consumer",
            **fields,
        )
