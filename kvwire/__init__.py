"""Client for the RESP key-value protocol with pipelining and cooperative I/O."""

from .connection import Connection, connect
from .exceptions import (
    ArgumentError,
    BlockingTimeout,
    ConnectionClosedError,
    KvwireError,
    PipelineError,
    ProtocolError,
    ResponseError,
    TransportError,
)
from .protocol import NULL, PIPELINED, ErrorReply, StatusReply
from .view import KeyspaceView

__version__ = "1.0.0"

__all__ = [
    "NULL",
    "PIPELINED",
    "ArgumentError",
    "BlockingTimeout",
    "Connection",
    "ConnectionClosedError",
    "ErrorReply",
    "KeyspaceView",
    "KvwireError",
    "PipelineError",
    "ProtocolError",
    "ResponseError",
    "StatusReply",
    "TransportError",
    "connect",
]
