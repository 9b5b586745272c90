"""
Error taxonomy for AGNT.

Only transport, decode and protocol errors abort a session. Everything else
degrades into visible transcript content.
"""

from typing import Optional


class AgntError(Exception):
    """Base class for all AGNT errors."""


class ConfigError(AgntError):
    """Missing credential or invalid configuration value."""


class SessionActiveError(AgntError):
    """A stream is already in flight; cancel it before starting another."""


class TransportError(AgntError):
    """Connection failure, timeout, or a non-success HTTP status."""

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class StreamDecodeError(AgntError):
    """A record in the event stream was not well-formed JSON."""

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class ProtocolError(AgntError):
    """The server and client disagree about the stream contract."""


class ToolArgumentError(AgntError):
    """Tool-invocation arguments did not parse."""


class ToolExecutionError(AgntError):
    """Code execution failed or produced no result."""


class ArtifactWriteError(AgntError):
    """A produced file could not be fetched or written."""


INTERNAL_ERROR_MESSAGE = "Internal error: the response could not be processed."


def user_message(error: Exception) -> str:
    """Message shown in the transcript for a session-fatal error."""
    if isinstance(error, ProtocolError):
        # Contract mismatch, details go to the log only
        return INTERNAL_ERROR_MESSAGE
    if isinstance(error, StreamDecodeError):
        return f"Malformed response from server: {error}"
    return str(error)
