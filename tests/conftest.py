from __future__ import annotations

import logging

import pytest

from kvwire.connection import Connection
from kvwire.exceptions import ConnectionClosedError, TransportError


class FakeServer:
    """Scripted peer shared by every transport a connection opens.

    Replies are served ``chunk_size`` bytes at a time so decoding is
    exercised across arbitrary read boundaries.
    """

    def __init__(self, chunk_size: int = 1) -> None:
        self.chunk_size = chunk_size
        self.writes: list[bytes] = []
        self.opens = 0
        self.refuse_opens = 0
        self.close_on_send = 0
        self.close_on_recv = 0
        self.transports: list[FakeTransport] = []
        self._pending = bytearray()

    def reply(self, *payloads: bytes) -> None:
        for payload in payloads:
            self._pending.extend(payload)

    @property
    def sent(self) -> bytes:
        return b"".join(self.writes)

    @property
    def unread(self) -> int:
        return len(self._pending)

    def transport(self) -> FakeTransport:
        transport = FakeTransport(self)
        self.transports.append(transport)
        return transport

    def _take(self, max_bytes: int) -> bytes:
        size = min(max_bytes, self.chunk_size, len(self._pending))
        chunk = bytes(self._pending[:size])
        del self._pending[:size]
        return chunk


class FakeTransport:
    def __init__(self, server: FakeServer) -> None:
        self.server = server
        self.closed = True

    def open(self) -> None:
        if self.server.refuse_opens:
            self.server.refuse_opens -= 1
            raise TransportError("connection refused")
        self.server.opens += 1
        self.closed = False

    def send_all(self, data: bytes) -> None:
        if self.closed:
            raise ConnectionClosedError("not connected")
        if self.server.close_on_send:
            self.server.close_on_send -= 1
            self.closed = True
            raise ConnectionClosedError()
        self.server.writes.append(bytes(data))

    def recv(self, max_bytes: int) -> bytes:
        if self.closed:
            return b""
        if self.server.close_on_recv:
            self.server.close_on_recv -= 1
            self.closed = True
            return b""
        if not self.server.unread:
            raise AssertionError("read with no scripted reply left")
        return self.server._take(max_bytes)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def server() -> FakeServer:
    return FakeServer()


@pytest.fixture
def conn(server: FakeServer) -> Connection:
    return Connection(transport_factory=server.transport).open()


@pytest.fixture
def isolated_logging():
    """Undo ``configure_logging`` side effects on the ``kvwire`` logger."""
    root = logging.getLogger("kvwire")
    saved_handlers = list(root.handlers)
    saved_level, saved_propagate = root.level, root.propagate
    saved_configured = getattr(root, "_kvwire_configured", False)
    yield root
    for handler in root.handlers:
        if handler not in saved_handlers:
            handler.close()
    root.handlers = saved_handlers
    root.setLevel(saved_level)
    root.propagate = saved_propagate
    setattr(root, "_kvwire_configured", saved_configured)
