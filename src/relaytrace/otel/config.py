"""Configuration for trace-context carriers."""

from dataclasses import dataclass

from relaytrace.otel.traceparent import TRACEPARENT_HEADER

# Second carrier slot, named outside any relay's awareness so fan-out hops
# that restamp the standard slot leave it untouched.
DEFAULT_BACKUP_ATTR = "w3c_traceparent_orig"


@dataclass
class PropagationConfig:
    """Names and policies for the two carrier slots."""

    primary_attr: str = TRACEPARENT_HEADER
    """Conventional attribute a relay is allowed to touch."""

    backup_attr: str = DEFAULT_BACKUP_ATTR
    """Duplicate attribute relays are not expected to touch."""

    zero_ids_absent: bool = False
    """Treat all-zero trace/span ids as absent instead of present."""

    def __post_init__(self) -> None:
        if self.primary_attr == self.backup_attr:
            msg = "primary_attr and backup_attr must differ"
            raise ValueError(msg)
