"""Error taxonomy for trace propagation and batch processing."""

# Offending carrier text is truncated to this many characters in messages.
MAX_PREVIEW_CHARS = 128


def preview(text: object, limit: int = MAX_PREVIEW_CHARS) -> str:
    """Render ``text`` for diagnostics, truncated to ``limit`` characters."""
    rendered = text if isinstance(text, str) else repr(text)
    if len(rendered) <= limit:
        return rendered
    return f"{rendered[:limit]}...(+{len(rendered) - limit} chars)"


class RelayTraceError(Exception):
    """Base class for relaytrace errors."""


class MalformedTraceContext(RelayTraceError, ValueError):
    """A carrier slot or header is present but not parseable.

    Never fatal: callers treat the slot as absent and log a warning.
    """

    def __init__(self, text: object, reason: str) -> None:
        self.text = text
        self.reason = reason
        super().__init__(f"{reason}: {preview(text)!r}")


class MalformedPayload(RelayTraceError, ValueError):
    """The message body or its notification envelope cannot be parsed."""


class BusinessCallbackFailure(RelayTraceError):
    """The record handler raised.

    Keeps the original exception's message verbatim together with its
    class name as the classification.
    """

    def __init__(self, cause: BaseException) -> None:
        self.cause = cause
        self.error_type = type(cause).__name__
        self.reason = str(cause)
        super().__init__(f"{self.error_type}: {self.reason}")
