"""Queue of pipelined requests and the count of replies still owed."""

from __future__ import annotations

from enum import Enum

from kvwire.exceptions import PipelineError


class PipelineState(str, Enum):
    IDLE = "idle"
    PIPELINING = "pipelining"
    DRAINING = "draining"


class Pipeline:
    """Per-connection pipeline bookkeeping.

    ``pending`` counts replies that the server owes for queued-and-sent
    requests. It only reaches zero again by draining, so normal
    request/reply traffic cannot resume while replies are outstanding.
    """

    def __init__(self) -> None:
        self.state = PipelineState.IDLE
        self._queue: list[bytes] = []
        self.pending = 0

    @property
    def active(self) -> bool:
        return self.state is PipelineState.PIPELINING

    @property
    def queued(self) -> list[bytes]:
        return list(self._queue)

    def start(self) -> None:
        if self.state is PipelineState.PIPELINING:
            raise PipelineError("Already pipelining")
        self.state = PipelineState.PIPELINING
        self._queue = []

    def enqueue(self, data: bytes, *, expects_reply: bool = True) -> None:
        if self.state is not PipelineState.PIPELINING:
            raise PipelineError("Not pipelining")
        self._queue.append(data)
        if expects_reply:
            self.pending += 1

    def payload(self) -> bytes:
        if self.state is not PipelineState.PIPELINING:
            raise PipelineError("Not pipelining")
        return b"".join(self._queue)

    def mark_sent(self) -> None:
        self._queue = []
        self.state = PipelineState.DRAINING if self.pending else PipelineState.IDLE

    def expect_manual(self, count: int) -> None:
        """Account for replies to a batch written by hand with ``Connection.send``."""
        if count < 0:
            raise PipelineError("reply count must not be negative")
        self.pending += count
        if self.pending and self.state is PipelineState.IDLE:
            self.state = PipelineState.DRAINING

    def take_reply(self) -> None:
        if self.pending <= 0:
            raise PipelineError("Excess pipeline responses")
        self.pending -= 1
        if self.pending == 0 and self.state is PipelineState.DRAINING:
            self.state = PipelineState.IDLE

    def clear(self) -> None:
        self._queue = []
        self.pending = 0
        self.state = PipelineState.IDLE
