"""relaytrace.router: Batch processing of delivered records."""

from relaytrace.router.batch import (
    BatchConfig,
    BatchOutcome,
    BatchProcessor,
    FailureKind,
    RecordResult,
    RecordStatus,
)
from relaytrace.router.middleware import PermanentError, recoverer, retry
from relaytrace.router.types import Middleware, RecordHandler

__all__ = [
    "BatchConfig",
    "BatchOutcome",
    "BatchProcessor",
    "FailureKind",
    "Middleware",
    "PermanentError",
    "RecordHandler",
    "RecordResult",
    "RecordStatus",
    "recoverer",
    "retry",
]
