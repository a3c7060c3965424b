"""Typed accessors over a connection, keyed by the server-reported value type."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from kvwire.connection import Connection
from kvwire.exceptions import ArgumentError, KvwireError, PipelineError
from kvwire.protocol.codec import NULL


class KeyspaceView:
    """Read and replace whole values without knowing which command fits.

    ``set_*`` methods replace the existing value: the key is deleted first,
    then written. They are not atomic.
    """

    def __init__(self, conn: Connection) -> None:
        self.conn = conn

    def _require_idle(self) -> None:
        if self.conn.pipelining or self.conn.in_transaction:
            raise PipelineError("keyspace view needs immediate replies; leave pipeline/transaction mode first")

    def key_type(self, key: str) -> str:
        self._require_idle()
        reply = self.conn.type(key)
        return reply.decode("ascii") if isinstance(reply, bytes) else str(reply)

    def get_string(self, key: str) -> Any:
        self._require_idle()
        return self.conn.get(key)

    def get_list(self, key: str) -> list[Any]:
        self._require_idle()
        return self.conn.lrange(key, 0, -1)

    def get_set(self, key: str) -> set[Any]:
        self._require_idle()
        return self.conn.smembers(key)

    def get_zset(self, key: str) -> dict[Any, float]:
        self._require_idle()
        flat = self.conn.zrange(key, 0, -1, withscores=True)
        return {member: float(score) for member, score in zip(flat[::2], flat[1::2])}

    def get_hash(self, key: str) -> dict[Any, Any]:
        self._require_idle()
        return self.conn.hgetall(key)

    def get(self, key: str) -> Any:
        """Return the value at ``key`` in its natural Python shape, or ``NULL``."""
        kind = self.key_type(key)
        if kind == "none":
            return NULL
        if kind == "string":
            return self.get_string(key)
        if kind == "list":
            return self.get_list(key)
        if kind == "set":
            return self.get_set(key)
        if kind == "zset":
            return self.get_zset(key)
        if kind == "hash":
            return self.get_hash(key)
        raise KvwireError(f"unsupported value type '{kind}' at key {key!r}")

    def set_string(self, key: str, value: Any) -> None:
        self._require_idle()
        self.conn.set(key, value)

    def set_list(self, key: str, values: Iterable[Any]) -> None:
        items = list(values)
        self.delete(key)
        if items:
            self.conn.rpush(key, items)

    def set_set(self, key: str, members: Iterable[Any]) -> None:
        items = list(members)
        self.delete(key)
        for member in items:
            self.conn.sadd(key, member)

    def set_zset(self, key: str, scores: Mapping[Any, float]) -> None:
        if not isinstance(scores, Mapping):
            raise ArgumentError("set_zset() expects a mapping of member to score")
        self.delete(key)
        for member, score in scores.items():
            self.conn.zadd(key, score, member)

    def set_hash(self, key: str, fields: Mapping[str, Any]) -> None:
        if not isinstance(fields, Mapping):
            raise ArgumentError("set_hash() expects a mapping of field to value")
        self.delete(key)
        if fields:
            self.conn.hmset(key, dict(fields))

    def delete(self, key: str) -> bool:
        self._require_idle()
        return bool(self.conn.delete(key))
