"""Declarative command table and argument marshalling.

Every remote command is one immutable ``CommandSpec``. The signature string
holds one character per argument slot (see ``ARG_TYPES``); ``install_commands``
turns the table into methods that all route through ``Connection.execute``.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Callable

from kvwire.exceptions import ArgumentError, BlockingTimeout
from kvwire.protocol.codec import NULL, Request, to_bytes

if TYPE_CHECKING:
    from kvwire.connection import Connection


Formatter = Callable[[Any, str], list[bytes]]
TypeTest = Callable[[Any], bool]

_INFO_INTEGER = re.compile(r"-?[0-9]+")


def _is_text(value: Any) -> bool:
    return isinstance(value, (str, bytes))


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_score(value: Any) -> bool:
    # "-inf", "+inf" and "(1.5" are valid range bounds
    return _is_number(value) or _is_text(value)


def _is_value(value: Any) -> bool:
    return _is_text(value) or _is_number(value)


def _is_mapping(value: Any) -> bool:
    if not isinstance(value, Mapping) or not value:
        return False
    return all(_is_text(key) and _is_value(item) for key, item in value.items())


def _simple(value: Any, encoding: str) -> list[bytes]:
    return [to_bytes(value, encoding)]


def _many(values: Any, encoding: str) -> list[bytes]:
    return [to_bytes(value, encoding) for value in values]


def _mapping(value: Any, encoding: str) -> list[bytes]:
    if not isinstance(value, Mapping):
        raise ArgumentError(f"expected a mapping, got {type(value).__name__}")
    tokens: list[bytes] = []
    for key, item in value.items():
        tokens.append(to_bytes(key, encoding))
        tokens.append(to_bytes(item, encoding))
    return tokens


@dataclass(frozen=True, slots=True)
class ArgType:
    code: str
    name: str
    formatter: Formatter
    check: TypeTest
    variadic: bool = False
    bulk: bool = False


ARG_TYPES: dict[str, ArgType] = {
    "k": ArgType("k", "key", _simple, _is_text),
    "d": ArgType("d", "db_index", _simple, _is_int),
    "v": ArgType("v", "value", _simple, _is_value, bulk=True),
    "K": ArgType("K", "key_list", _many, _is_text, variadic=True),
    "V": ArgType("V", "value_list", _many, _is_value, variadic=True, bulk=True),
    "i": ArgType("i", "integer", _simple, _is_int),
    "f": ArgType("f", "float", _simple, _is_score),
    "p": ArgType("p", "pattern", _simple, _is_text),
    "n": ArgType("n", "name", _simple, _is_text),
    "t": ArgType("t", "time_in_seconds", _simple, _is_int),
    "T": ArgType("T", "mapping", _mapping, _is_mapping, bulk=True),
    "s": ArgType("s", "start_index", _simple, _is_int),
    "e": ArgType("e", "end_index", _simple, _is_int),
    "m": ArgType("m", "member", _simple, _is_value, bulk=True),
}


@dataclass(slots=True)
class Call:
    """Arguments of one invocation, as seen by hooks."""

    spec: CommandSpec
    args: list[Any]
    options: dict[str, Any] = field(default_factory=dict)


ArgHook = Callable[[list[Any]], list[Any]]
PreHook = Callable[["Connection", Call, Request], None]
PostHook = Callable[["Connection", Call, Any], Any]


@dataclass(frozen=True, slots=True)
class CommandSpec:
    keyword: str
    signature: str = ""
    method: str = ""
    doc: str = ""
    arg_hook: ArgHook | None = None
    pre_hook: PreHook | None = None
    post_hook: PostHook | None = None
    noreply: bool = False
    extras: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.method:
            object.__setattr__(self, "method", self.keyword.lower())
        unknown = [code for code in self.signature if code not in ARG_TYPES]
        if unknown:
            raise ValueError(f"{self.keyword}: unknown argument type code(s) {''.join(unknown)!r}")
        if sum(1 for code in self.signature if ARG_TYPES[code].variadic) > 1:
            raise ValueError(f"{self.keyword}: at most one variadic slot is allowed")
        if self.extras and self.variadic_index is not None:
            raise ValueError(f"{self.keyword}: optional arguments cannot follow a variadic slot")

    @property
    def slots(self) -> list[ArgType]:
        return [ARG_TYPES[code] for code in self.signature]

    @property
    def variadic_index(self) -> int | None:
        for index, code in enumerate(self.signature):
            if ARG_TYPES[code].variadic:
                return index
        return None

    def describe(self) -> str:
        names = [slot.name + ("..." if slot.variadic else "") for slot in self.slots]
        names.extend(f"[{name}]" for name in self.extras)
        return f"{self.method}({', '.join(names)})"


def _arity_error(spec: CommandSpec, got: int) -> ArgumentError:
    return ArgumentError(f"{spec.describe()} called with {got} argument(s)")


def bind_arguments(spec: CommandSpec, args: list[Any], options: dict[str, Any]) -> tuple[list[Any], Call]:
    """Split call-time arguments into per-slot values and hook-only options."""
    slots = spec.slots
    variadic_index = spec.variadic_index
    if variadic_index is None:
        if len(args) < len(slots) or len(args) > len(slots) + len(spec.extras):
            raise _arity_error(spec, len(args))
        values = list(args[: len(slots)])
        positional_extras = args[len(slots) :]
        bound: dict[str, Any] = dict.fromkeys(spec.extras)
        for name, value in zip(spec.extras, positional_extras):
            bound[name] = value
        for name, value in options.items():
            if name not in bound:
                raise ArgumentError(f"{spec.method}() got an unexpected option '{name}'")
            if spec.extras.index(name) < len(positional_extras):
                raise ArgumentError(f"{spec.method}() got '{name}' both positionally and as an option")
            bound[name] = value
        return values, Call(spec=spec, args=list(args), options=bound)

    if options:
        raise ArgumentError(f"{spec.method}() takes no options")
    after = len(slots) - variadic_index - 1
    if len(args) < len(slots):
        raise _arity_error(spec, len(args))
    head = list(args[:variadic_index])
    rest = list(args[variadic_index : len(args) - after])
    tail = list(args[len(args) - after :]) if after else []
    if len(rest) == 1 and isinstance(rest[0], (list, tuple, set, frozenset)):
        rest = list(rest[0])
    if not rest:
        raise ArgumentError(f"{spec.describe()} needs at least one {slots[variadic_index].name} item")
    return [*head, rest, *tail], Call(spec=spec, args=list(args))


def check_arguments(spec: CommandSpec, values: list[Any]) -> None:
    for position, (slot, value) in enumerate(zip(spec.slots, values), start=1):
        if slot.variadic:
            for item in value:
                if not slot.check(item):
                    raise ArgumentError(
                        f"{spec.method}(): argument {position} ({slot.name}) has an item of "
                        f"type {type(item).__name__}"
                    )
        elif not slot.check(value):
            raise ArgumentError(
                f"{spec.method}(): argument {position} ({slot.name}) got {type(value).__name__}"
            )


def build_request(
    spec: CommandSpec,
    args: tuple[Any, ...] | list[Any],
    options: dict[str, Any] | None = None,
    *,
    encoding: str = "utf-8",
    check_types: bool = True,
) -> tuple[Request, Call]:
    """Run the argument hook, validate, format, and assemble the request."""
    raw_args = list(args)
    if spec.arg_hook is not None:
        raw_args = spec.arg_hook(raw_args)
    values, call = bind_arguments(spec, raw_args, dict(options or {}))
    if check_types:
        check_arguments(spec, values)
    tokens: list[bytes] = []
    for slot, value in zip(spec.slots, values):
        tokens.extend(slot.formatter(value, encoding))
    force_array = any(slot.bulk for slot in spec.slots)
    return Request(spec.keyword.encode("ascii"), tokens, force_array=force_array), call


# ---------------------------------------------------------------------------
# Hooks
# ---------------------------------------------------------------------------


def _deferred(conn: Connection) -> bool:
    return conn.pipelining or conn.in_transaction


def to_bool(conn: Connection, call: Call, reply: Any) -> Any:
    if _deferred(conn) or not isinstance(reply, int):
        return reply
    return reply == 1


def to_set(conn: Connection, call: Call, reply: Any) -> Any:
    if _deferred(conn) or not isinstance(reply, list):
        return reply
    return set(reply)


def pairs_to_dict(conn: Connection, call: Call, reply: Any) -> Any:
    if _deferred(conn) or not isinstance(reply, list):
        return reply
    return dict(zip(reply[::2], reply[1::2]))


def parse_info(conn: Connection, call: Call, reply: Any) -> Any:
    if _deferred(conn) or call.options.get("raw") or reply is NULL:
        return reply
    text = reply.decode("utf-8", errors="replace") if isinstance(reply, bytes) else str(reply)
    info: dict[str, Any] = {}
    for line in text.splitlines():
        if not line or line.startswith("#"):
            continue
        key, sep, value = line.partition(":")
        if not sep:
            continue
        info[key] = int(value) if _INFO_INTEGER.fullmatch(value) else value
    return info


def blocking_pop(conn: Connection, call: Call, reply: Any) -> Any:
    if _deferred(conn):
        return reply
    if reply is NULL or not reply:
        raise BlockingTimeout()
    return reply[0], reply[1]


def remember_db(conn: Connection, call: Call, reply: Any) -> Any:
    conn.db = call.args[0]
    return reply


def remember_password(conn: Connection, call: Call, reply: Any) -> Any:
    conn.password = call.args[0]
    return reply


def config_reply(conn: Connection, call: Call, reply: Any) -> Any:
    if str(call.args[0]).lower() == "get":
        return pairs_to_dict(conn, call, reply)
    return reply


def enter_transaction(conn: Connection, call: Call, reply: Any) -> Any:
    conn.in_transaction = True
    return reply


def leave_transaction(conn: Connection, call: Call, reply: Any) -> Any:
    conn.in_transaction = False
    return reply


def with_scores(conn: Connection, call: Call, request: Request) -> None:
    if call.options.get("withscores"):
        request.append(b"WITHSCORES")


def limit_clause(conn: Connection, call: Call, request: Request) -> None:
    offset, count = call.options.get("offset"), call.options.get("count")
    if offset is not None and count is not None:
        try:
            request.append(b"LIMIT", int(offset), int(count))
        except (TypeError, ValueError) as exc:
            raise ArgumentError(f"{call.spec.method}(): offset and count must be integers") from exc
    if call.options.get("withscores"):
        request.append(b"WITHSCORES")


def _config_defaults(args: list[Any]) -> list[Any]:
    if len(args) == 1 and str(args[0]).lower() == "get":
        return [args[0], "*"]
    return args


def _slaveof_defaults(args: list[Any]) -> list[Any]:
    if not args:
        return ["no", "one"]
    return args


def _reload_args(args: list[Any]) -> list[Any]:
    return ["RELOAD", *args]


def _cmd(keyword: str, signature: str = "", doc: str = "", **kwargs: Any) -> CommandSpec:
    return CommandSpec(keyword=keyword, signature=signature, doc=doc, **kwargs)


COMMANDS: tuple[CommandSpec, ...] = (
    # connection
    _cmd("AUTH", "k", "Authenticate with a password.", post_hook=remember_password),
    _cmd("PING", "", "Ping the server."),
    _cmd("ECHO", "v", "Echo a value back."),
    # keyspace
    _cmd("EXISTS", "k", "Test if a key exists.", post_hook=to_bool),
    _cmd("DEL", "K", "Delete one or more keys.", method="delete"),
    _cmd("TYPE", "k", "Return the type of the value stored at key."),
    _cmd("KEYS", "p", "Return all keys matching a pattern."),
    _cmd("RANDOMKEY", "", "Return a random key from the keyspace."),
    _cmd("RENAME", "kk", "Rename a key, overwriting the destination."),
    _cmd("RENAMENX", "kk", "Rename a key only if the destination does not exist.", post_hook=to_bool),
    _cmd("DBSIZE", "", "Return the number of keys in the selected database."),
    _cmd("EXPIRE", "kt", "Set a relative time to live in seconds.", post_hook=to_bool),
    _cmd("EXPIREAT", "kt", "Set an absolute expiry as a UNIX timestamp.", post_hook=to_bool),
    _cmd("PERSIST", "k", "Remove the expiry of a key.", post_hook=to_bool),
    _cmd("TTL", "k", "Return the time to live of a key in seconds."),
    _cmd("SELECT", "d", "Select the database with the given index.", post_hook=remember_db),
    _cmd("MOVE", "kd", "Move a key to another database.", post_hook=to_bool),
    _cmd("FLUSHDB", "", "Remove all keys of the selected database."),
    _cmd("FLUSHALL", "", "Remove all keys of every database."),
    # strings
    _cmd("SET", "kv", "Set a key to a string value."),
    _cmd("SETEX", "kiv", "Set a value and an expiry in seconds atomically."),
    _cmd("GET", "k", "Return the string value of a key."),
    _cmd("GETSET", "kv", "Set a key and return its old value."),
    _cmd("MGET", "K", "Return the values of several keys."),
    _cmd("SETNX", "kv", "Set a key only if it does not exist.", post_hook=to_bool),
    _cmd("MSET", "T", "Set several keys from a mapping atomically."),
    _cmd("MSETNX", "T", "Set several keys only if none of them exist.", post_hook=to_bool),
    _cmd("INCR", "k", "Increment the integer value of a key."),
    _cmd("INCRBY", "ki", "Increment the integer value of a key by an amount."),
    _cmd("DECR", "k", "Decrement the integer value of a key."),
    _cmd("DECRBY", "ki", "Decrement the integer value of a key by an amount."),
    _cmd("APPEND", "kv", "Append a value to a key and return the new length."),
    _cmd("SUBSTR", "kii", "Return a substring of a string value."),
    _cmd("GETRANGE", "kii", "Return a substring of a string value."),
    _cmd("STRLEN", "k", "Return the length of a string value."),
    # lists
    _cmd("RPUSH", "kV", "Append values to the tail of a list."),
    _cmd("LPUSH", "kV", "Prepend values to the head of a list."),
    _cmd("LLEN", "k", "Return the length of a list."),
    _cmd("LRANGE", "kse", "Return a range of list elements."),
    _cmd("LTRIM", "kse", "Trim a list to a range of elements."),
    _cmd("LINDEX", "ki", "Return the list element at an index."),
    _cmd("LSET", "kiv", "Set the list element at an index."),
    _cmd("LREM", "kiv", "Remove elements equal to value from a list."),
    _cmd("LPOP", "k", "Remove and return the first element of a list."),
    _cmd("RPOP", "k", "Remove and return the last element of a list."),
    _cmd(
        "BLPOP",
        "Ki",
        "Blocking LPOP over several lists; returns (list, value) or raises BlockingTimeout.",
        post_hook=blocking_pop,
    ),
    _cmd(
        "BRPOP",
        "Ki",
        "Blocking RPOP over several lists; returns (list, value) or raises BlockingTimeout.",
        post_hook=blocking_pop,
    ),
    _cmd("RPOPLPUSH", "kk", "Pop the tail of one list and push it onto another."),
    # sets
    _cmd("SADD", "km", "Add a member to a set.", post_hook=to_bool),
    _cmd("SREM", "km", "Remove a member from a set.", post_hook=to_bool),
    _cmd("SPOP", "k", "Remove and return a random set member."),
    _cmd("SMOVE", "kkm", "Move a member from one set to another.", post_hook=to_bool),
    _cmd("SCARD", "k", "Return the cardinality of a set."),
    _cmd("SISMEMBER", "km", "Test whether a value is a set member.", post_hook=to_bool),
    _cmd("SINTER", "K", "Return the intersection of several sets.", post_hook=to_set),
    _cmd("SINTERSTORE", "kK", "Store the intersection of several sets."),
    _cmd("SUNION", "K", "Return the union of several sets.", post_hook=to_set),
    _cmd("SUNIONSTORE", "kK", "Store the union of several sets."),
    _cmd("SDIFF", "K", "Return the difference between sets.", post_hook=to_set),
    _cmd("SDIFFSTORE", "kK", "Store the difference between sets."),
    _cmd("SMEMBERS", "k", "Return all members of a set.", post_hook=to_set),
    _cmd("SRANDMEMBER", "k", "Return a random set member."),
    # sorted sets
    _cmd("ZADD", "kfm", "Add a member with a score, or update its score."),
    _cmd("ZREM", "km", "Remove a member from a sorted set.", post_hook=to_bool),
    _cmd("ZINCRBY", "kfm", "Increment the score of a member."),
    _cmd(
        "ZRANGE",
        "kse",
        "Return a range of members by rank.",
        pre_hook=with_scores,
        extras=("withscores",),
    ),
    _cmd(
        "ZREVRANGE",
        "kse",
        "Return a range of members by rank, highest score first.",
        pre_hook=with_scores,
        extras=("withscores",),
    ),
    _cmd(
        "ZRANGEBYSCORE",
        "kff",
        "Return members with scores between min and max.",
        pre_hook=limit_clause,
        extras=("offset", "count", "withscores"),
    ),
    _cmd("ZREMRANGEBYRANK", "kii", "Remove members with rank between start and stop."),
    _cmd("ZREMRANGEBYSCORE", "kff", "Remove members with scores between min and max."),
    _cmd("ZCARD", "k", "Return the cardinality of a sorted set."),
    _cmd("ZSCORE", "km", "Return the score of a member."),
    _cmd("ZCOUNT", "kff", "Count members with scores between min and max."),
    _cmd("ZRANK", "km", "Return the rank of a member, lowest score first."),
    _cmd("ZREVRANK", "km", "Return the rank of a member, highest score first."),
    _cmd("ZINTERSTORE", "kiK", "Store the intersection of sorted sets."),
    _cmd("ZUNIONSTORE", "kiK", "Store the union of sorted sets."),
    # hashes
    _cmd("HSET", "kmv", "Set a hash field."),
    _cmd("HGET", "km", "Return a hash field."),
    _cmd("HGETALL", "k", "Return all fields and values of a hash as a dict.", post_hook=pairs_to_dict),
    _cmd("HDEL", "km", "Delete a hash field.", post_hook=to_bool),
    _cmd("HEXISTS", "km", "Test whether a hash field exists.", post_hook=to_bool),
    _cmd("HLEN", "k", "Return the number of fields in a hash."),
    _cmd("HKEYS", "k", "Return all field names of a hash."),
    _cmd("HVALS", "k", "Return all values of a hash."),
    _cmd("HINCRBY", "kmi", "Increment the integer value of a hash field."),
    _cmd("HMGET", "kV", "Return the values of several hash fields."),
    _cmd("HMSET", "kT", "Set several hash fields from a mapping."),
    # persistence
    _cmd("SAVE", "", "Synchronously save the dataset to disk."),
    _cmd("BGSAVE", "", "Asynchronously save the dataset to disk."),
    _cmd("LASTSAVE", "", "Return the UNIX time of the last successful save."),
    _cmd("SHUTDOWN", "", "Save and shut the server down.", noreply=True),
    _cmd("BGREWRITEAOF", "", "Rewrite the append-only file in the background."),
    # pub/sub
    _cmd("PUBLISH", "kv", "Publish a message to a channel."),
    _cmd("SUBSCRIBE", "K", "Subscribe to channels; read confirmations with listen().", noreply=True),
    _cmd("UNSUBSCRIBE", "K", "Unsubscribe from channels.", noreply=True),
    _cmd("UNSUBSCRIBE", "", "Unsubscribe from every channel.", method="unsubscribe_all", noreply=True),
    _cmd("PSUBSCRIBE", "K", "Subscribe to channel patterns.", noreply=True),
    _cmd("PUNSUBSCRIBE", "K", "Unsubscribe from channel patterns.", noreply=True),
    _cmd("PUNSUBSCRIBE", "", "Unsubscribe from every pattern.", method="punsubscribe_all", noreply=True),
    # transactions
    _cmd("MULTI", "", "Start a transaction.", post_hook=enter_transaction),
    _cmd("EXEC", "", "Execute the queued transaction.", post_hook=leave_transaction),
    _cmd("DISCARD", "", "Abort the current transaction.", post_hook=leave_transaction),
    _cmd("WATCH", "K", "Abort the next transaction if any of these keys change."),
    _cmd("UNWATCH", "", "Forget every watched key."),
    # server
    _cmd(
        "INFO",
        "",
        "Return server information as a dict, or the raw text with raw=True.",
        post_hook=parse_info,
        extras=("raw",),
    ),
    _cmd("MONITOR", "", "Stream every command the server receives."),
    _cmd(
        "SLAVEOF",
        "kv",
        "Replicate another server; with no arguments, stop replicating.",
        arg_hook=_slaveof_defaults,
    ),
    _cmd(
        "CONFIG",
        "kV",
        "Get or set configuration; config('get') returns every option as a dict.",
        arg_hook=_config_defaults,
        post_hook=config_reply,
    ),
    _cmd("DEBUG", "n", "Reload the dataset from disk.", method="debug_reload", arg_hook=_reload_args),
)


def command_table() -> dict[str, CommandSpec]:
    return {spec.method: spec for spec in COMMANDS}


def _make_method(spec: CommandSpec) -> Callable[..., Any]:
    def method(self: Connection, *args: Any, **options: Any) -> Any:
        return self.execute(spec, *args, **options)

    method.__name__ = spec.method
    method.__qualname__ = f"Connection.{spec.method}"
    method.__doc__ = f"{spec.doc}\n\nSignature: {spec.describe()}"
    return method


def install_commands(cls: type) -> type:
    for spec in COMMANDS:
        if spec.method in cls.__dict__:
            raise ValueError(f"{cls.__name__}.{spec.method} is already defined")
        setattr(cls, spec.method, _make_method(spec))
    return cls
