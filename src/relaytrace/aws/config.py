"""Configuration dataclasses for the AWS adapter boundary."""

import os
from collections.abc import Mapping
from dataclasses import dataclass, field

from relaytrace.otel.config import PropagationConfig
from relaytrace.pubsub.envelope import EnvelopeConfig
from relaytrace.router.batch import BatchConfig

# SQS system attribute holding the X-Ray header on traced delivery paths.
DEFAULT_TRANSPORT_HEADER_ATTR = "AWSTraceHeader"

ENV_TOPIC_ARN = "TOPIC_ARN"
ENV_SERVICE_NAME = "SERVICE_NAME"
ENV_RECORD_TIMEOUT = "RELAYTRACE_RECORD_TIMEOUT_S"
ENV_MAX_CONCURRENCY = "RELAYTRACE_MAX_CONCURRENCY"


@dataclass
class SQSEventConfig:
    """How SQS records map onto InboundRecord."""

    transport_header_attr: str = DEFAULT_TRANSPORT_HEADER_ATTR
    """System attribute read as the transport-native trace header."""


@dataclass
class SNSConfig:
    """Configuration for SNSPublisher."""

    propagation: PropagationConfig = field(default_factory=PropagationConfig)
    """Carrier slot names written on every publish."""

    uuid_attr: str | None = None
    """Attribute key for the local message UUID. None leaves it out."""


@dataclass
class LambdaConfig:
    """Settings for the Lambda entrypoints."""

    service_name: str = "relaytrace"
    topic_arn: str | None = None
    record_timeout_s: float | None = None
    max_concurrency: int = 1
    propagation: PropagationConfig = field(default_factory=PropagationConfig)
    envelope: EnvelopeConfig = field(default_factory=EnvelopeConfig)
    sqs: SQSEventConfig = field(default_factory=SQSEventConfig)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "LambdaConfig":
        """Build from environment variables.

        Reads ``TOPIC_ARN``, ``SERVICE_NAME``, ``RELAYTRACE_RECORD_TIMEOUT_S``
        and ``RELAYTRACE_MAX_CONCURRENCY``. Unset variables keep defaults.
        """
        env = os.environ if environ is None else environ
        config = cls()
        config.topic_arn = env.get(ENV_TOPIC_ARN) or None
        config.service_name = env.get(ENV_SERVICE_NAME) or config.service_name
        if timeout := env.get(ENV_RECORD_TIMEOUT):
            config.record_timeout_s = float(timeout)
        if concurrency := env.get(ENV_MAX_CONCURRENCY):
            config.max_concurrency = int(concurrency)
        return config

    def batch_config(self) -> BatchConfig:
        return BatchConfig(
            max_concurrency=self.max_concurrency,
            record_timeout_s=self.record_timeout_s,
            service_name=self.service_name,
        )
