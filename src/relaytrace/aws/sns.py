"""SNS publisher adapter."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import TracebackType
from typing import TYPE_CHECKING, Any

import aioboto3

from relaytrace.aws.config import SNSConfig
from relaytrace.aws.marshaling import to_message_attributes
from relaytrace.pubsub.message import OutboundMessage

if TYPE_CHECKING:
    from types_aiobotocore_sns import SNSClient


class SNSPublisher:
    """Publisher that sends messages to an SNS topic.

    The SNS client is supplied by the caller and reused across publishes;
    the publisher never creates one on its own. Use :meth:`connect` to open
    a client from an aioboto3 session.

    Example:
        async with SNSPublisher.connect(session) as publisher:
            message_id = await publisher.publish(topic_arn, message)
    """

    def __init__(self, client: "SNSClient", config: SNSConfig | None = None) -> None:
        self._client = client
        self._config = config or SNSConfig()
        self._closed = False

    @classmethod
    @asynccontextmanager
    async def connect(
        cls,
        session: aioboto3.Session | None = None,
        *,
        endpoint_url: str | None = None,
        config: SNSConfig | None = None,
    ) -> AsyncIterator["SNSPublisher"]:
        """Open an SNS client from ``session`` and wrap it in a publisher."""
        session = session or aioboto3.Session()
        async with session.client("sns", endpoint_url=endpoint_url) as client:
            async with cls(client, config) as publisher:
                yield publisher

    async def publish(self, topic: str, message: OutboundMessage) -> str:
        """Publish ``message`` to the topic ARN ``topic``.

        Returns the SNS ``MessageId``.
        """
        if self._closed:
            msg = "Publisher is closed"
            raise RuntimeError(msg)
        if not topic:
            msg = "Topic ARN is required"
            raise ValueError(msg)

        attrs, deduplication_id, group_id = to_message_attributes(
            message, self._config
        )
        request: dict[str, Any] = {
            "TopicArn": topic,
            "Message": message.body(),
            "MessageAttributes": attrs,
        }
        if deduplication_id is not None:
            request["MessageDeduplicationId"] = deduplication_id
        if group_id is not None:
            request["MessageGroupId"] = group_id

        response = await self._client.publish(**request)
        return response["MessageId"]

    async def close(self) -> None:
        """Mark the publisher closed. The client belongs to the caller."""
        self._closed = True

    async def __aenter__(self) -> "SNSPublisher":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()
