"""Wire codec for the RESP request/reply protocol."""

from .codec import (
    NULL,
    PIPELINED,
    ErrorReply,
    NullType,
    PipelinedType,
    Reply,
    ReplyReader,
    Request,
    StatusReply,
    decode,
    encode_array,
    encode_inline,
    needs_array,
    to_bytes,
)

__all__ = [
    "NULL",
    "PIPELINED",
    "ErrorReply",
    "NullType",
    "PipelinedType",
    "Reply",
    "ReplyReader",
    "Request",
    "StatusReply",
    "decode",
    "encode_array",
    "encode_inline",
    "needs_array",
    "to_bytes",
]
