"""AWS X-Ray trace header codec.

X-Ray headers look like::

    Root=1-5e1b4151-5ac6c58f40c8b5e065b2dcf0;Parent=53995c3f42cd8ad8;Sampled=1

The root's epoch and unique parts concatenate to a W3C trace id, and the
parent is a W3C span id.
"""

from relaytrace.core.errors import MalformedTraceContext
from relaytrace.otel.traceparent import SAMPLED_FLAG, TraceIdentifier

XRAY_ENV_VAR = "_X_AMZN_TRACE_ID"
XRAY_VERSION = "1"

_EPOCH_HEX_LEN = 8
_UNIQUE_HEX_LEN = 24
_ROOT_PARTS = 3


def parse_xray_header(text: object) -> TraceIdentifier | None:
    """Parse an X-Ray header into a trace identifier, or None if malformed."""
    try:
        return parse_xray_header_strict(text)
    except MalformedTraceContext:
        return None


def parse_xray_header_strict(text: object) -> TraceIdentifier:
    """Like :func:`parse_xray_header` but raises ``MalformedTraceContext``."""
    if not isinstance(text, str):
        raise MalformedTraceContext(text, "x-ray header is not a string")

    fields: dict[str, str] = {}
    for part in text.split(";"):
        key, sep, value = part.strip().partition("=")
        if sep:
            fields[key] = value

    root = fields.get("Root")
    parent = fields.get("Parent")
    if root is None or parent is None:
        raise MalformedTraceContext(text, "x-ray header needs Root and Parent")

    root_parts = root.split("-")
    if len(root_parts) != _ROOT_PARTS or root_parts[0] != XRAY_VERSION:
        raise MalformedTraceContext(text, "unsupported x-ray root")
    _, epoch, unique = root_parts
    if len(epoch) != _EPOCH_HEX_LEN or len(unique) != _UNIQUE_HEX_LEN:
        raise MalformedTraceContext(text, "x-ray root has wrong length")

    flags = SAMPLED_FLAG if fields.get("Sampled") == "1" else 0
    # TraceIdentifier validates the hex alphabet of both ids.
    return TraceIdentifier(trace_id=epoch + unique, span_id=parent, flags=flags)


def format_xray_header(identifier: TraceIdentifier) -> str:
    """Render an identifier as an X-Ray header."""
    epoch = identifier.trace_id[:_EPOCH_HEX_LEN]
    unique = identifier.trace_id[_EPOCH_HEX_LEN:]
    sampled = "1" if identifier.sampled else "0"
    return (
        f"Root={XRAY_VERSION}-{epoch}-{unique};"
        f"Parent={identifier.span_id};Sampled={sampled}"
    )
