"""Type definitions for record handlers."""

from collections.abc import Awaitable, Callable
from typing import Any

from relaytrace.otel.recovery import RecoveredContext
from relaytrace.pubsub.message import InboundRecord

RecordHandler = Callable[[Any, RecoveredContext, InboundRecord], Awaitable[Any]]
"""Business callback: ``(payload, context, record) -> result``."""

SyncRecordHandler = Callable[[Any, RecoveredContext, InboundRecord], Any]

Middleware = Callable[[RecordHandler], RecordHandler]
