"""Publisher protocol."""

from types import TracebackType
from typing import Protocol, runtime_checkable

from relaytrace.pubsub.message import OutboundMessage


@runtime_checkable
class Publisher(Protocol):
    """Sends messages to a destination on the transport."""

    async def publish(self, topic: str, message: OutboundMessage) -> str:
        """Publish ``message`` to ``topic`` and return the delivery id."""
        ...

    async def close(self) -> None:
        """Release transport resources."""
        ...

    async def __aenter__(self) -> "Publisher": ...

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None: ...
