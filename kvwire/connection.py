"""Client connection: lifecycle, dispatch, pipelining and reconnect policy."""

from __future__ import annotations

import logging
from typing import Any, Callable, Sequence

from kvwire.commands import CommandSpec, build_request, install_commands
from kvwire.config.schema import DEFAULT_HOST, DEFAULT_PORT, ConnectionConfig, parse_url
from kvwire.core.logging import get_logger
from kvwire.exceptions import (
    ArgumentError,
    ConnectionClosedError,
    KvwireError,
    PipelineError,
    ResponseError,
    TransportError,
)
from kvwire.pipeline import Pipeline, PipelineState
from kvwire.protocol.codec import (
    PIPELINED,
    ErrorReply,
    Reply,
    ReplyReader,
    Request,
    StatusReply,
    to_bytes,
)
from kvwire.transport import PassHook, SocketTransport, Transport


TransportFactory = Callable[[], Transport]

_TRACE_BYTES = 512


def _is_quit(data: bytes) -> bool:
    head = data[:32].upper()
    return head.startswith(b"QUIT") or head.startswith(b"*1\r\n$4\r\nQUIT")


class Connection:
    """One session with a key-value server.

    Commands are generated from ``kvwire.commands.COMMANDS``; each returns
    the decoded (and post-processed) reply, or ``PIPELINED`` while a
    pipeline is open. Failures raise subclasses of ``KvwireError``.

    A connection is not safe for concurrent use; give each thread or
    task its own.
    """

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
        *,
        pass_hook: PassHook | None = None,
        db: int | None = None,
        password: str | None = None,
        connect_timeout: float | None = 5.0,
        socket_timeout: float | None = None,
        tcp_nodelay: bool = True,
        encoding: str = "utf-8",
        decode_responses: bool = False,
        check_types: bool = True,
        debug: bool = False,
        logger: logging.Logger | None = None,
        transport_factory: TransportFactory | None = None,
    ) -> None:
        if not isinstance(host, str) or not host:
            raise ArgumentError("host must be a non-empty string")
        if isinstance(port, bool) or not isinstance(port, int) or not 0 < port < 65536:
            raise ArgumentError("port must be an integer between 1 and 65535")
        self.host = host
        self.port = port
        self.pass_hook = pass_hook
        self.db = db
        self.password = password
        self.connect_timeout = connect_timeout
        self.socket_timeout = socket_timeout
        self.tcp_nodelay = tcp_nodelay
        self.encoding = encoding
        self.decode_responses = decode_responses
        self.check_types = check_types
        self.debug = debug
        self.in_transaction = False
        self.logger = logger or get_logger("kvwire.connection")
        self._transport_factory = transport_factory or self._socket_transport
        self._transport: Transport | None = None
        self._reader: ReplyReader | None = None
        self._pipeline = Pipeline()

    @classmethod
    def from_config(cls, config: ConnectionConfig, **overrides: Any) -> Connection:
        options: dict[str, Any] = {
            "db": config.db,
            "password": config.password,
            "connect_timeout": config.connect_timeout_seconds,
            "socket_timeout": config.socket_timeout_seconds,
            "tcp_nodelay": config.tcp_nodelay,
            "encoding": config.encoding,
            "decode_responses": config.decode_responses,
            "check_types": config.check_types,
            "debug": config.debug,
        }
        options.update(overrides)
        return cls(config.host, config.port, **options)

    @classmethod
    def from_url(cls, url: str, **overrides: Any) -> Connection:
        return cls.from_config(parse_url(url), **overrides)

    def __repr__(self) -> str:
        mode = " async" if self.pass_hook is not None else ""
        return f"<Connection {self.host}:{self.port}{mode}>"

    def __enter__(self) -> Connection:
        if self._transport is None:
            self.open()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    # ------------------------------------------------------------------
    # lifecycle
    # ------------------------------------------------------------------

    @property
    def connected(self) -> bool:
        return self._transport is not None

    def _socket_transport(self) -> Transport:
        return SocketTransport(
            self.host,
            self.port,
            connect_timeout=self.connect_timeout,
            socket_timeout=self.socket_timeout,
            pass_hook=self.pass_hook,
            tcp_nodelay=self.tcp_nodelay,
        )

    def open(self) -> Connection:
        """(Re)connect, then restore the password and selected database.

        A failed replay closes the new transport before the error
        propagates, so the session never runs with the wrong credentials
        or database.
        """
        self._drop_transport()
        transport = self._transport_factory()
        transport.open()
        self._transport = transport
        self._reader = ReplyReader(transport)
        self.logger.info(
            "connected",
            extra={"event_action": "connect", "peer_host": self.host, "peer_port": self.port, "db": self.db},
        )
        try:
            if self.password is not None:
                self._replay(Request(b"AUTH", [to_bytes(self.password, self.encoding)]))
            if self.db is not None:
                self._replay(Request(b"SELECT", [to_bytes(self.db)]))
        except KvwireError:
            self._drop_transport()
            raise
        return self

    def _replay(self, request: Request) -> None:
        transport = self._require_transport()
        data = request.encode()
        transport.send_all(data)
        self._trace("replay", data)
        reply = self._read_reply()
        if isinstance(reply, ErrorReply):
            raise ResponseError(reply.message, reply.code)

    def _reconnect(self, cause: Exception) -> None:
        self.logger.warning(
            "peer closed connection; reconnecting",
            extra={
                "event_action": "reconnect",
                "event_outcome": "unknown",
                "peer_host": self.host,
                "peer_port": self.port,
                "db": self.db,
            },
        )
        try:
            self.open()
        except (TransportError, ResponseError) as exc:
            raise ConnectionClosedError(f"closed; reconnect failed: {exc}") from cause

    def close(self) -> None:
        self._drop_transport()

    def _drop_transport(self) -> None:
        transport, self._transport = self._transport, None
        self._reader = None
        self.in_transaction = False
        if transport is not None:
            transport.close()

    def pass_(self) -> None:
        """Invoke the pass hook, if any."""
        if self.pass_hook is not None:
            self.pass_hook()

    def quit(self) -> Reply:
        """Ask the server to close the session, then close the socket.

        A peer that closes before acknowledging is not an error.
        """
        if self._pipeline.active:
            raise PipelineError("Cannot quit while pipelining")
        if self._pipeline.pending:
            raise PipelineError(f"{self._pipeline.pending} pipelined replies have not been drained")
        if self._transport is None:
            return StatusReply("OK")
        try:
            return self._round_trip(b"QUIT\r\n", noreply=False)
        finally:
            self.close()

    # ------------------------------------------------------------------
    # wire
    # ------------------------------------------------------------------

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise ConnectionClosedError("not connected")
        return self._transport

    def _trace(self, action: str, data: Any) -> None:
        if not self.debug:
            return
        if isinstance(data, (bytes, bytearray)):
            shown: Any = bytes(data[:_TRACE_BYTES])
        else:
            shown = data
        self.logger.debug(
            action,
            extra={"event_action": action, "peer_host": self.host, "peer_port": self.port, "payload": repr(shown)},
        )

    def _read_reply(self) -> Reply:
        self._require_transport()
        assert self._reader is not None
        reply = self._reader.read_reply()
        self._trace("recv", reply)
        if self.decode_responses:
            reply = self._decode(reply)
        return reply

    def _decode(self, reply: Any) -> Any:
        if isinstance(reply, bytes):
            return reply.decode(self.encoding, errors="replace")
        if isinstance(reply, list):
            return [self._decode(item) for item in reply]
        return reply

    def send(self, data: bytes, *, expect_replies: int = 0) -> bool:
        """Write raw bytes without reading a reply.

        Peer closure triggers a single reconnect-and-resend unless a
        pipeline is open. ``expect_replies`` registers replies to drain
        with ``get_response`` when a batch is written by hand.
        """
        self._round_trip(bytes(data), noreply=True)
        if expect_replies:
            self._pipeline.expect_manual(expect_replies)
        return True

    def _round_trip(self, data: bytes, *, noreply: bool) -> Reply | None:
        reconnected = False
        while True:
            transport = self._require_transport()
            try:
                transport.send_all(data)
                self._trace("send", data)
                if noreply:
                    return None
                return self._read_reply()
            except ConnectionClosedError as exc:
                if _is_quit(data):
                    self._drop_transport()
                    return StatusReply("OK")
                if self._pipeline.active or self.in_transaction or reconnected:
                    self._drop_transport()
                    self.logger.warning(
                        "connection closed",
                        extra={
                            "event_action": "closed",
                            "event_outcome": "failure",
                            "peer_host": self.host,
                            "peer_port": self.port,
                        },
                    )
                    raise
                self._reconnect(exc)
                reconnected = True

    def send_receive(self, request: Request, *, noreply: bool = False) -> Reply | None:
        """Send one request and decode its reply, or queue it while pipelining."""
        data = request.encode()
        if self._pipeline.active:
            self._pipeline.enqueue(data, expects_reply=not noreply)
            self._trace("pipelined", data)
            return PIPELINED
        if self._pipeline.pending:
            raise PipelineError(f"{self._pipeline.pending} pipelined replies have not been drained")
        return self._round_trip(data, noreply=noreply)

    # ------------------------------------------------------------------
    # dispatch
    # ------------------------------------------------------------------

    def execute(self, spec: CommandSpec, *args: Any, **options: Any) -> Any:
        request, call = build_request(
            spec,
            args,
            options,
            encoding=self.encoding,
            check_types=self.check_types,
        )
        if spec.pre_hook is not None:
            spec.pre_hook(self, call, request)
        reply = self.send_receive(request, noreply=spec.noreply)
        if spec.noreply and reply is None:
            return True
        if isinstance(reply, ErrorReply):
            raise ResponseError(reply.message, reply.code)
        if spec.post_hook is not None:
            return spec.post_hook(self, call, reply)
        return reply

    def execute_command(self, keyword: str, *args: Any) -> Any:
        """Send an arbitrary command with array encoding and no post-processing."""
        if not keyword or not isinstance(keyword, str):
            raise ArgumentError("command keyword must be a non-empty string")
        tokens = [to_bytes(arg, self.encoding) for arg in args]
        request = Request(keyword.upper().encode(self.encoding), tokens, force_array=True)
        reply = self.send_receive(request)
        if isinstance(reply, ErrorReply):
            raise ResponseError(reply.message, reply.code)
        return reply

    def sort(
        self,
        key: str | bytes,
        *,
        by: str | None = None,
        start: int | None = None,
        count: int | None = None,
        get: str | Sequence[str] | None = None,
        asc: bool = False,
        desc: bool = False,
        alpha: bool = False,
        store: str | None = None,
    ) -> Any:
        """Sort a list, set or sorted set.

        ``start`` and ``count`` only take effect together. ``get`` may be a
        single pattern or a sequence of patterns. With ``store`` the server
        returns the number of stored elements.
        """
        if asc and desc:
            raise ArgumentError("ASC and DESC are mutually exclusive")
        if (start is None) != (count is None):
            raise ArgumentError("sort() needs both start and count for LIMIT")
        request = Request(b"SORT", [to_bytes(key, self.encoding)])
        if by is not None:
            request.append(b"BY", to_bytes(by, self.encoding))
        if start is not None and count is not None:
            request.append(b"LIMIT", int(start), int(count))
        if get is not None:
            patterns = [get] if isinstance(get, (str, bytes)) else list(get)
            for pattern in patterns:
                request.append(b"GET", to_bytes(pattern, self.encoding))
        if asc:
            request.append(b"ASC")
        elif desc:
            request.append(b"DESC")
        if alpha:
            request.append(b"ALPHA")
        if store is not None:
            request.append(b"STORE", to_bytes(store, self.encoding))
        self._trace("sort", request.tokens)
        reply = self.send_receive(request)
        if isinstance(reply, ErrorReply):
            raise ResponseError(reply.message, reply.code)
        return reply

    def listen(self) -> Reply:
        """Read the next pub/sub message, e.g. ``[b"message", channel, data]``."""
        reply = self._read_reply()
        if isinstance(reply, ErrorReply):
            raise ResponseError(reply.message, reply.code)
        return reply

    # ------------------------------------------------------------------
    # pipelining
    # ------------------------------------------------------------------

    @property
    def pipelining(self) -> bool:
        return self._pipeline.active

    @property
    def pipeline_state(self) -> PipelineState:
        return self._pipeline.state

    @property
    def pending_replies(self) -> int:
        return self._pipeline.pending

    @property
    def queued_requests(self) -> list[bytes]:
        return self._pipeline.queued

    def pipeline(self) -> bool:
        """Queue subsequent commands instead of sending them."""
        self._pipeline.start()
        self._trace("pipeline_start", b"")
        return True

    def send_pipeline(self) -> int:
        """Write every queued request in one send; return the number of replies owed.

        On failure the queue and count are left untouched and nothing is
        resent automatically.
        """
        payload = self._pipeline.payload()
        requests = len(self._pipeline.queued)
        self._round_trip(payload, noreply=True)
        self._pipeline.mark_sent()
        self.logger.info(
            "pipeline sent",
            extra={
                "event_action": "pipeline_send",
                "peer_host": self.host,
                "peer_port": self.port,
                "payload": {"requests": requests, "pending": self._pipeline.pending},
            },
        )
        return self._pipeline.pending

    def get_response(self, ignore_count: bool = False) -> Reply:
        """Decode the next reply of a sent pipeline.

        With ``ignore_count`` the pending count is neither checked nor
        changed, for batches written by hand. Closure while draining drops
        the transport and forgets every owed reply.
        """
        if not ignore_count:
            if self._pipeline.active:
                raise PipelineError("Pipeline has not been sent")
            if self._pipeline.pending <= 0:
                raise PipelineError("Excess pipeline responses")
        try:
            reply = self._read_reply()
        except ConnectionClosedError:
            self._drop_transport()
            self._pipeline.clear()
            raise
        if not ignore_count:
            self._pipeline.take_reply()
        if isinstance(reply, ErrorReply):
            raise ResponseError(reply.message, reply.code)
        return reply

    def clear_pipeline(self) -> None:
        """Drop any unsent requests and forget owed replies."""
        self._pipeline.clear()


install_commands(Connection)


def connect(
    host: str = DEFAULT_HOST,
    port: int = DEFAULT_PORT,
    pass_hook: PassHook | None = None,
    **options: Any,
) -> Connection:
    """Create a connection and open it. Refusal raises ``TransportError``."""
    return Connection(host, port, pass_hook=pass_hook, **options).open()
