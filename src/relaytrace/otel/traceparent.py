"""W3C ``traceparent`` codec.

Canonical text form::

    00-68dde6a91b7146f84c4bc23f54f17b0f-50d362e330737a0f-01
    |  |                                |                |
    |  trace id (32 hex)                span id (16 hex) flags
    version

Only version ``00`` is accepted and only the sampled bit of the flags byte is
carried. Other flag bits are dropped on parse so that a parsed value always
serializes back to text that parses to the same value.
"""

import random
from dataclasses import dataclass

from relaytrace.core.errors import MalformedTraceContext

TRACEPARENT_HEADER = "traceparent"
VERSION = "00"
SAMPLED_FLAG = 0x01

TRACE_ID_HEX_LEN = 32
SPAN_ID_HEX_LEN = 16
_SEGMENT_LENGTHS = (2, TRACE_ID_HEX_LEN, SPAN_ID_HEX_LEN, 2)
_HEX_DIGITS = frozenset("0123456789abcdef")
_MAX_FLAGS = 0xFF


def _is_lower_hex(value: str, length: int) -> bool:
    return len(value) == length and all(ch in _HEX_DIGITS for ch in value)


@dataclass(frozen=True)
class TraceIdentifier:
    """Immutable trace identity of one hop.

    Attributes:
        trace_id: 32 lowercase hex chars shared by every span of the trace.
        span_id: 16 lowercase hex chars identifying this hop.
        flags: Trace flags; only ``SAMPLED_FLAG`` is meaningful.
        version: Format version, always ``"00"``.
    """

    trace_id: str
    span_id: str
    flags: int = SAMPLED_FLAG
    version: str = VERSION

    def __post_init__(self) -> None:
        if self.version != VERSION:
            raise MalformedTraceContext(self.version, "unsupported version")
        if not _is_lower_hex(self.trace_id, TRACE_ID_HEX_LEN):
            raise MalformedTraceContext(self.trace_id, "invalid trace id")
        if not _is_lower_hex(self.span_id, SPAN_ID_HEX_LEN):
            raise MalformedTraceContext(self.span_id, "invalid span id")
        flags = self.flags
        if not isinstance(flags, int) or not 0 <= flags <= _MAX_FLAGS:
            raise MalformedTraceContext(flags, "flags out of range")
        object.__setattr__(self, "flags", flags & SAMPLED_FLAG)

    @property
    def sampled(self) -> bool:
        return bool(self.flags & SAMPLED_FLAG)

    @property
    def is_zero(self) -> bool:
        """True when the trace or span id is all zeros.

        Such ids are well-formed but carry no identity.
        """
        return int(self.trace_id, 16) == 0 or int(self.span_id, 16) == 0

    def to_traceparent(self) -> str:
        flags = "01" if self.sampled else "00"
        return f"{self.version}-{self.trace_id}-{self.span_id}-{flags}"

    def child(self) -> "TraceIdentifier":
        """Return the identity of a new hop within the same trace."""
        return TraceIdentifier(
            trace_id=self.trace_id,
            span_id=_random_hex(SPAN_ID_HEX_LEN),
            flags=self.flags,
        )

    def __str__(self) -> str:
        return self.to_traceparent()


def parse_traceparent(text: object) -> TraceIdentifier | None:
    """Parse canonical ``traceparent`` text.

    Returns None for anything that is not exactly four dash-separated
    lowercase hex segments of lengths 2/32/16/2 with version ``00``.
    """
    try:
        return parse_traceparent_strict(text)
    except MalformedTraceContext:
        return None


def parse_traceparent_strict(text: object) -> TraceIdentifier:
    """Like :func:`parse_traceparent` but raises ``MalformedTraceContext``."""
    if not isinstance(text, str):
        raise MalformedTraceContext(text, "traceparent is not a string")

    segments = text.split("-")
    if len(segments) != len(_SEGMENT_LENGTHS):
        raise MalformedTraceContext(text, "expected 4 segments")
    for segment, length in zip(segments, _SEGMENT_LENGTHS, strict=True):
        if not _is_lower_hex(segment, length):
            raise MalformedTraceContext(text, "segment is not lowercase hex")

    version, trace_id, span_id, flags = segments
    if version != VERSION:
        raise MalformedTraceContext(text, "unsupported version")

    return TraceIdentifier(
        trace_id=trace_id,
        span_id=span_id,
        flags=int(flags, 16),
    )


def format_traceparent(identifier: TraceIdentifier) -> str:
    """Serialize to ``version-traceId-spanId-flags``."""
    return identifier.to_traceparent()


def _random_hex(length: int) -> str:
    # Zero ids are reserved as "no identity"; redraw until non-zero.
    while True:
        value = random.getrandbits(length * 4)
        if value:
            return f"{value:0{length}x}"


def generate_trace_identifier() -> TraceIdentifier:
    """Generate a fresh sampled identity.

    Uses the ``random`` module: ids are correlation handles, not secrets.
    """
    return TraceIdentifier(
        trace_id=_random_hex(TRACE_ID_HEX_LEN),
        span_id=_random_hex(SPAN_ID_HEX_LEN),
        flags=SAMPLED_FLAG,
    )
