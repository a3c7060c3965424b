"""TCP transport with optional cooperative (non-blocking) I/O."""

from __future__ import annotations

import socket
from typing import Callable, Protocol

from kvwire.core.logging import get_logger
from kvwire.exceptions import ConnectionClosedError, TransportError


PassHook = Callable[[], None]


class Transport(Protocol):
    def open(self) -> None: ...

    def send_all(self, data: bytes) -> None: ...

    def recv(self, max_bytes: int) -> bytes: ...

    def close(self) -> None: ...


class SocketTransport:
    """Byte stream to one server.

    With a pass hook the socket runs non-blocking, and every would-block
    condition calls the hook and retries the same operation. That is the
    only place control is handed back to a cooperative scheduler.
    """

    def __init__(
        self,
        host: str,
        port: int,
        *,
        connect_timeout: float | None = 5.0,
        socket_timeout: float | None = None,
        pass_hook: PassHook | None = None,
        tcp_nodelay: bool = True,
    ) -> None:
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.socket_timeout = socket_timeout
        self.pass_hook = pass_hook
        self.tcp_nodelay = tcp_nodelay
        self.logger = get_logger("kvwire.transport")
        self._sock: socket.socket | None = None

    @property
    def closed(self) -> bool:
        return self._sock is None

    @property
    def nonblocking(self) -> bool:
        return self.pass_hook is not None

    def open(self) -> None:
        self.close()
        try:
            sock = socket.create_connection((self.host, self.port), timeout=self.connect_timeout)
        except OSError as exc:
            raise TransportError(f"cannot connect to {self.host}:{self.port}: {exc}") from exc
        if self.tcp_nodelay:
            sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        if self.pass_hook is not None:
            sock.setblocking(False)
        else:
            sock.settimeout(self.socket_timeout)
        self._sock = sock
        self.logger.debug(
            "transport opened",
            extra={"event_action": "transport_open", "peer_host": self.host, "peer_port": self.port},
        )

    def pass_(self) -> None:
        if self.pass_hook is not None:
            self.pass_hook()

    def send_all(self, data: bytes) -> None:
        sock = self._require_socket()
        view = memoryview(data)
        while view:
            try:
                sent = sock.send(view)
            except BlockingIOError:
                self.pass_()
                continue
            except (BrokenPipeError, ConnectionAbortedError) as exc:
                self._drop()
                raise ConnectionClosedError() from exc
            except TimeoutError as exc:
                raise TransportError("send timed out") from exc
            except OSError as exc:
                self._drop()
                raise TransportError(f"send failed: {exc}") from exc
            if sent == 0:
                self._drop()
                raise ConnectionClosedError()
            view = view[sent:]

    def recv(self, max_bytes: int) -> bytes:
        sock = self._require_socket()
        while True:
            try:
                data = sock.recv(max_bytes)
            except BlockingIOError:
                self.pass_()
                continue
            except ConnectionAbortedError as exc:
                self._drop()
                raise ConnectionClosedError() from exc
            except TimeoutError as exc:
                raise TransportError("receive timed out") from exc
            except OSError as exc:
                self._drop()
                raise TransportError(f"receive failed: {exc}") from exc
            if not data:
                self._drop()
            return data

    def close(self) -> None:
        self._drop()

    def _drop(self) -> None:
        sock, self._sock = self._sock, None
        if sock is None:
            return
        try:
            sock.close()
        except OSError:
            pass

    def _require_socket(self) -> socket.socket:
        if self._sock is None:
            raise ConnectionClosedError("not connected")
        return self._sock
