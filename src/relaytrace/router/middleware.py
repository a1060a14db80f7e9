"""Built-in middlewares for record handlers."""

import logging
import random
from typing import Any

import anyio

from relaytrace.core.logging import correlation, log_event
from relaytrace.otel.recovery import RecoveredContext
from relaytrace.pubsub.message import InboundRecord
from relaytrace.router.types import Middleware, RecordHandler

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY = 1.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_JITTER = 0.1


class PermanentError(Exception):
    """Exception that should not be retried.

    Usage:
        raise PermanentError(ValueError("Unknown order - retrying won't help"))
    """

    def __init__(self, cause: Exception) -> None:
        self.cause = cause
        super().__init__(str(cause))


def recoverer(
    logger: logging.Logger | None = None,
) -> Middleware:
    """Middleware that logs handler failures with their trace correlation.

    The exception is re-raised so the record is still reported as failed.
    """
    log = logger or logging.getLogger("relaytrace.router")

    def middleware(next_handler: RecordHandler) -> RecordHandler:
        async def handler(
            payload: Any, context: RecoveredContext, record: InboundRecord
        ) -> Any:
            try:
                return await next_handler(payload, context, record)
            except Exception as e:
                log_event(
                    log,
                    logging.ERROR,
                    "operation_failed",
                    error=str(e),
                    errorType=type(e).__name__,
                    correlation=correlation(
                        context.identifier, messageId=record.record_id
                    ),
                )
                raise

        return handler

    return middleware


def retry(
    max_retries: int = DEFAULT_MAX_RETRIES,
    delay: float = DEFAULT_RETRY_DELAY,
    backoff: float = DEFAULT_BACKOFF_MULTIPLIER,
    jitter: float = DEFAULT_JITTER,
    retry_on: tuple[type[Exception], ...] = (Exception,),
    logger: logging.Logger | None = None,
) -> Middleware:
    """Middleware that re-runs a failing handler for the same record.

    Each retry is logged as ``retrying_operation`` with the record's trace
    correlation. The wait before retry ``n`` is ``delay * backoff ** (n - 1)``,
    randomized by ``jitter`` (0.1 means within 10%).

    A retry whose wait would reach the enclosing deadline, normally the
    processor's ``record_timeout_s``, is not attempted: the handler's last
    error is raised instead, so the record fails as a callback failure and
    not as a timeout. :class:`PermanentError` is never retried; its cause
    is raised.
    """
    log = logger or logging.getLogger("relaytrace.router")

    def wait_before(attempt: int) -> float:
        base = delay * backoff ** (attempt - 1)
        if jitter <= 0:
            return base
        return base * (1 + random.uniform(-jitter, jitter))

    def middleware(next_handler: RecordHandler) -> RecordHandler:
        async def handler(
            payload: Any, context: RecoveredContext, record: InboundRecord
        ) -> Any:
            attempt = 0
            while True:
                try:
                    return await next_handler(payload, context, record)
                except PermanentError as e:
                    raise e.cause from e
                except retry_on as e:
                    attempt += 1
                    wait = wait_before(attempt)
                    deadline = anyio.current_effective_deadline()
                    if attempt > max_retries or anyio.current_time() + wait >= deadline:
                        raise
                    log_event(
                        log,
                        logging.WARNING,
                        "retrying_operation",
                        attempt=attempt,
                        maxRetries=max_retries,
                        delay=round(wait, 3),
                        error=str(e),
                        errorType=type(e).__name__,
                        correlation=correlation(
                            context.identifier, messageId=record.record_id
                        ),
                    )
                    await anyio.sleep(wait)

        return handler

    return middleware
