"""RESP request encoding and reply decoding."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, Union

from kvwire.exceptions import ArgumentError, ConnectionClosedError, ProtocolError


CRLF = b"\r\n"
INT64_MIN = -(2**63)
INT64_MAX = 2**63 - 1
_PROTOCOL_BYTES = (b" ", b"\t", b"\r", b"\n", b'"', b"'")


class _Sentinel:
    __slots__ = ()
    _label = "[SENTINEL]"

    def __new__(cls) -> _Sentinel:
        instance = cls.__dict__.get("_singleton")
        if instance is None:
            instance = super().__new__(cls)
            cls._singleton = instance
        return instance

    def __repr__(self) -> str:
        return self._label

    def __reduce__(self) -> tuple[type, tuple[()]]:
        return (type(self), ())

    def __copy__(self) -> _Sentinel:
        return self

    def __deepcopy__(self, memo: dict[int, Any]) -> _Sentinel:
        return self


class NullType(_Sentinel):
    """Absent key or field. Distinct from ``b""``, ``[]`` and ``None``."""

    __slots__ = ()
    _label = "[NULL]"

    def __bool__(self) -> bool:
        return False


class PipelinedType(_Sentinel):
    """Returned by commands that were queued instead of sent."""

    __slots__ = ()
    _label = "[PIPELINED]"


NULL = NullType()
PIPELINED = PipelinedType()


class StatusReply(str):
    """A ``+`` reply. Compares equal to its text."""

    __slots__ = ()

    def __repr__(self) -> str:
        return f"StatusReply({str.__repr__(self)})"


@dataclass(frozen=True, slots=True)
class ErrorReply:
    """A ``-`` reply decoded as a value; the dispatcher decides whether to raise it."""

    message: str
    code: str = "ERR"

    @classmethod
    def from_line(cls, text: str) -> ErrorReply:
        head, _, rest = text.partition(" ")
        if head == "ERR":
            return cls(message=rest, code="ERR")
        if head and rest and head.isupper():
            return cls(message=text, code=head)
        return cls(message=text)


Reply = Union[StatusReply, ErrorReply, int, bytes, list, NullType]


def to_bytes(value: Any, encoding: str = "utf-8") -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    if isinstance(value, str):
        return value.encode(encoding)
    if isinstance(value, bool):
        raise ArgumentError("booleans are not valid protocol arguments")
    if isinstance(value, int):
        return str(value).encode("ascii")
    if isinstance(value, float):
        return repr(value).encode("ascii")
    raise ArgumentError(f"cannot encode argument of type {type(value).__name__}")


def needs_array(tokens: list[bytes]) -> bool:
    for token in tokens:
        if not token:
            return True
        if any(marker in token for marker in _PROTOCOL_BYTES):
            return True
    return False


def encode_inline(keyword: bytes, tokens: list[bytes]) -> bytes:
    if not tokens:
        return keyword + CRLF
    return keyword + b" " + b" ".join(tokens) + CRLF


def encode_array(keyword: bytes, tokens: list[bytes]) -> bytes:
    parts = [b"*%d\r\n" % (len(tokens) + 1)]
    for item in (keyword, *tokens):
        parts.append(b"$%d\r\n" % len(item))
        parts.append(item)
        parts.append(CRLF)
    return b"".join(parts)


@dataclass(slots=True)
class Request:
    keyword: bytes
    tokens: list[bytes] = field(default_factory=list)
    force_array: bool = False

    @property
    def name(self) -> str:
        return self.keyword.decode("ascii", errors="replace")

    def append(self, *tokens: Any) -> Request:
        self.tokens.extend(to_bytes(token) for token in tokens)
        return self

    def encode(self) -> bytes:
        if self.force_array or needs_array(self.tokens):
            return encode_array(self.keyword, self.tokens)
        return encode_inline(self.keyword, self.tokens)


class ByteSource(Protocol):
    def recv(self, max_bytes: int) -> bytes: ...


class ReplyReader:
    """Decode replies from a byte source that may deliver data in any chunking."""

    def __init__(self, source: ByteSource, *, read_size: int = 65_536, max_line_bytes: int = 1_048_576) -> None:
        self._source = source
        self._read_size = read_size
        self._max_line_bytes = max_line_bytes
        self._buffer = bytearray()

    @property
    def buffered(self) -> int:
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()

    def _fill(self) -> None:
        chunk = self._source.recv(self._read_size)
        if not chunk:
            raise ConnectionClosedError()
        self._buffer.extend(chunk)

    def read_line(self) -> bytes:
        search_from = 0
        while True:
            index = self._buffer.find(CRLF, search_from)
            if index >= 0:
                line = bytes(self._buffer[:index])
                del self._buffer[: index + 2]
                return line
            if len(self._buffer) > self._max_line_bytes:
                raise ProtocolError("reply line exceeds maximum length")
            # a CR may be the last byte seen so far
            search_from = max(0, len(self._buffer) - 1)
            self._fill()

    def read_exact(self, count: int) -> bytes:
        while len(self._buffer) < count:
            self._fill()
        data = bytes(self._buffer[:count])
        del self._buffer[:count]
        return data

    def read_reply(self) -> Reply:
        line = self.read_line()
        if not line:
            raise ProtocolError("empty reply line")
        tag, payload = line[:1], line[1:]

        if tag == b"+":
            return StatusReply(payload.decode("utf-8", errors="replace"))
        if tag == b"-":
            return ErrorReply.from_line(payload.decode("utf-8", errors="replace"))
        if tag == b":":
            value = _parse_int(payload, "integer reply")
            if value < INT64_MIN or value > INT64_MAX:
                raise ProtocolError(f"integer reply out of range: {value}")
            return value
        if tag == b"$":
            length = _parse_int(payload, "bulk length")
            if length == -1:
                return NULL
            if length < 0:
                raise ProtocolError(f"invalid bulk length: {length}")
            data = self.read_exact(length + 2)
            if data[-2:] != CRLF:
                raise ProtocolError("bulk reply is not terminated by CRLF")
            return data[:-2]
        if tag == b"*":
            count = _parse_int(payload, "multi-bulk count")
            if count == -1:
                return NULL
            if count < 0:
                raise ProtocolError(f"invalid multi-bulk count: {count}")
            return [self.read_reply() for _ in range(count)]
        raise ProtocolError(f"unknown reply type {tag!r}")


def _parse_int(payload: bytes, what: str) -> int:
    try:
        return int(payload)
    except ValueError as exc:
        raise ProtocolError(f"bad {what}: {payload!r}") from exc


class _BufferSource:
    def __init__(self, data: bytes) -> None:
        self._data = data
        self._offset = 0

    def recv(self, max_bytes: int) -> bytes:
        chunk = self._data[self._offset : self._offset + max_bytes]
        self._offset += len(chunk)
        return chunk


def decode(data: bytes) -> Reply:
    """Decode exactly one reply from ``data``."""
    reader = ReplyReader(_BufferSource(bytes(data)))
    try:
        return reader.read_reply()
    except ConnectionClosedError as exc:
        raise ProtocolError("incomplete reply") from exc
