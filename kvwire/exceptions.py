"""Exception types raised by the client."""

from __future__ import annotations


class KvwireError(Exception):
    """Base class for every failure the client reports."""


class ArgumentError(KvwireError, ValueError):
    """Call-time arguments failed validation; nothing was written to the wire."""


class ProtocolError(KvwireError):
    """A reply could not be decoded. The stream position is no longer trustworthy."""


class ResponseError(KvwireError):
    """The server answered with an error reply. The connection stays usable."""

    def __init__(self, message: str, code: str = "ERR") -> None:
        super().__init__(message)
        self.message = message
        self.code = code


class TransportError(KvwireError):
    """The socket failed for a reason other than an orderly peer close."""


class ConnectionClosedError(TransportError):
    """The peer closed the connection."""

    def __init__(self, message: str = "closed") -> None:
        super().__init__(message)


class PipelineError(KvwireError):
    """Pipeline state was used out of order (for example draining too many replies)."""


class BlockingTimeout(KvwireError):
    """A blocking pop returned without an element."""

    def __init__(self, message: str = "timeout") -> None:
        super().__init__(message)
