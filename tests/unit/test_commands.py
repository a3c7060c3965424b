from types import SimpleNamespace

import pytest

from kvwire.commands import (
    ARG_TYPES,
    COMMANDS,
    Call,
    CommandSpec,
    blocking_pop,
    build_request,
    command_table,
    install_commands,
    pairs_to_dict,
    parse_info,
    to_bool,
    to_set,
)
from kvwire.connection import Connection
from kvwire.exceptions import ArgumentError, BlockingTimeout
from kvwire.protocol.codec import NULL


TABLE = command_table()


def _encode(method: str, *args, **options) -> bytes:
    spec = TABLE[method]
    request, call = build_request(spec, args, options)
    if spec.pre_hook is not None:
        spec.pre_hook(_idle_conn(), call, request)
    return request.encode()


def _idle_conn() -> SimpleNamespace:
    return SimpleNamespace(pipelining=False, in_transaction=False)


def test_key_only_commands_use_inline_form() -> None:
    assert _encode("get", "k1") == b"GET k1\r\n"
    assert _encode("ping") == b"PING\r\n"
    assert _encode("expire", "k1", 30) == b"EXPIRE k1 30\r\n"


def test_value_slot_forces_array_form() -> None:
    assert _encode("set", "k1", "xyzk") == b"*3\r\n$3\r\nSET\r\n$2\r\nk1\r\n$4\r\nxyzk\r\n"
    assert _encode("setex", "k", 10, b"\x00") == b"*4\r\n$5\r\nSETEX\r\n$1\r\nk\r\n$2\r\n10\r\n$1\r\n\x00\r\n"


def test_key_with_space_switches_to_array_form() -> None:
    assert _encode("get", "my key") == b"*2\r\n$3\r\nGET\r\n$6\r\nmy key\r\n"


def test_variadic_slot_accepts_spread_or_single_list() -> None:
    assert _encode("delete", "a", "b", "c") == b"DEL a b c\r\n"
    assert _encode("delete", ["a", "b", "c"]) == b"DEL a b c\r\n"
    assert _encode("mget", ("a", "b")) == b"MGET a b\r\n"


def test_variadic_slot_leaves_trailing_fixed_slots() -> None:
    assert _encode("blpop", "q1", "q2", 5) == b"BLPOP q1 q2 5\r\n"
    assert _encode("blpop", ["q1", "q2"], 0) == b"BLPOP q1 q2 0\r\n"
    assert _encode("zunionstore", "dst", 2, "z1", "z2") == b"ZUNIONSTORE dst 2 z1 z2\r\n"


def test_variadic_slot_needs_at_least_one_item() -> None:
    with pytest.raises(ArgumentError):
        _encode("delete")
    with pytest.raises(ArgumentError):
        _encode("delete", [])
    with pytest.raises(ArgumentError):
        _encode("blpop", 5)


def test_mapping_slot_flattens_pairs_in_order() -> None:
    request, _call = build_request(TABLE["mset"], ({"a": 1, "b": "two"},))
    assert request.tokens == [b"a", b"1", b"b", b"two"]
    assert request.encode().startswith(b"*5\r\n$4\r\nMSET\r\n")
    request, _call = build_request(TABLE["hmset"], ("h", {"f": "v"}))
    assert request.tokens == [b"h", b"f", b"v"]


@pytest.mark.parametrize(
    ("method", "args"),
    [
        ("get", ()),
        ("get", ("a", "b")),
        ("set", ("k",)),
        ("ping", ("extra",)),
    ],
)
def test_wrong_arity_raises_argument_error(method: str, args: tuple) -> None:
    with pytest.raises(ArgumentError):
        _encode(method, *args)


@pytest.mark.parametrize(
    ("method", "args"),
    [
        ("get", (1,)),
        ("select", ("1",)),
        ("select", (True,)),
        ("expire", ("k", 1.5)),
        ("lrange", ("k", "0", -1)),
        ("set", ("k", None)),
        ("mset", ({},)),
        ("mset", ({"a": None},)),
        ("delete", (["a", 2],)),
    ],
)
def test_wrong_argument_types_raise_argument_error(method: str, args: tuple) -> None:
    with pytest.raises(ArgumentError):
        _encode(method, *args)


def test_type_checks_can_be_disabled() -> None:
    request, _call = build_request(TABLE["get"], (42,), check_types=False)
    assert request.encode() == b"GET 42\r\n"
    with pytest.raises(ArgumentError):
        build_request(TABLE["mset"], ("not a mapping",), check_types=False)


def test_scores_accept_numbers_and_range_strings() -> None:
    assert _encode("zadd", "z", 1.5, "m") == b"*4\r\n$4\r\nZADD\r\n$1\r\nz\r\n$3\r\n1.5\r\n$1\r\nm\r\n"
    assert _encode("zcount", "z", "-inf", "(5") == b"ZCOUNT z -inf (5\r\n"


def test_limit_clause_needs_both_offset_and_count() -> None:
    assert _encode("zrangebyscore", "z", 0, 10) == b"ZRANGEBYSCORE z 0 10\r\n"
    assert _encode("zrangebyscore", "z", 0, 10, offset=5) == b"ZRANGEBYSCORE z 0 10\r\n"
    assert _encode("zrangebyscore", "z", 0, 10, offset=5, count=2) == b"ZRANGEBYSCORE z 0 10 LIMIT 5 2\r\n"
    assert (
        _encode("zrangebyscore", "z", 0, 10, 5, 2, True)
        == b"ZRANGEBYSCORE z 0 10 LIMIT 5 2 WITHSCORES\r\n"
    )


def test_withscores_is_appended_by_the_pre_hook() -> None:
    request, call = build_request(TABLE["zrange"], ("z", 0, -1), {"withscores": True})
    assert call.options == {"withscores": True}
    assert request.encode() == b"ZRANGE z 0 -1\r\n"
    TABLE["zrange"].pre_hook(_idle_conn(), call, request)
    assert request.encode() == b"ZRANGE z 0 -1 WITHSCORES\r\n"


def test_unknown_or_duplicate_options_are_rejected() -> None:
    with pytest.raises(ArgumentError):
        _encode("zrange", "z", 0, -1, scores=True)
    with pytest.raises(ArgumentError):
        _encode("zrange", "z", 0, -1, True, withscores=True)
    with pytest.raises(ArgumentError):
        _encode("delete", "a", force=True)


def test_config_get_defaults_to_every_option() -> None:
    assert _encode("config", "get") == b"*3\r\n$6\r\nCONFIG\r\n$3\r\nget\r\n$1\r\n*\r\n"
    request, _call = build_request(TABLE["config"], ("set", "maxmemory", "1mb"))
    assert request.tokens == [b"set", b"maxmemory", b"1mb"]


def test_slaveof_without_arguments_stops_replication() -> None:
    request, _call = build_request(TABLE["slaveof"], ())
    assert request.tokens == [b"no", b"one"]


def test_debug_reload_prepends_subcommand() -> None:
    assert _encode("debug_reload") == b"DEBUG RELOAD\r\n"


def test_post_hooks_convert_idle_replies() -> None:
    conn = _idle_conn()
    call = Call(spec=TABLE["exists"], args=["k"])
    assert to_bool(conn, call, 1) is True
    assert to_bool(conn, call, 0) is False
    assert to_set(conn, call, [b"a", b"b", b"a"]) == {b"a", b"b"}
    assert pairs_to_dict(conn, call, [b"f1", b"v1", b"f2", b"v2"]) == {b"f1": b"v1", b"f2": b"v2"}


@pytest.mark.parametrize("flag", ["pipelining", "in_transaction"])
def test_post_hooks_pass_replies_through_when_deferred(flag: str) -> None:
    conn = _idle_conn()
    setattr(conn, flag, True)
    call = Call(spec=TABLE["exists"], args=["k"])
    assert to_bool(conn, call, "QUEUED") == "QUEUED"
    assert to_set(conn, call, "QUEUED") == "QUEUED"
    assert pairs_to_dict(conn, call, "QUEUED") == "QUEUED"
    assert blocking_pop(conn, call, "QUEUED") == "QUEUED"
    assert parse_info(conn, Call(spec=TABLE["info"], args=[]), "QUEUED") == "QUEUED"


def test_parse_info_builds_a_dict() -> None:
    text = b"# Server\r\nredis_version:1.3.17\r\nuptime_in_seconds:42\r\n\r\nrole:master\r\ndb0:keys=1,expires=0\r\n"
    call = Call(spec=TABLE["info"], args=[], options={"raw": None})
    info = parse_info(_idle_conn(), call, text)
    assert info == {
        "redis_version": "1.3.17",
        "uptime_in_seconds": 42,
        "role": "master",
        "db0": "keys=1,expires=0",
    }
    raw_call = Call(spec=TABLE["info"], args=[], options={"raw": True})
    assert parse_info(_idle_conn(), raw_call, text) == text


def test_parse_info_only_converts_ascii_integers() -> None:
    text = "offset:-12\r\nweird:--5\r\nwide:５\r\nsuper:²\r\nempty:\r\n".encode("utf-8")
    info = parse_info(_idle_conn(), Call(spec=TABLE["info"], args=[]), text)
    assert info == {"offset": -12, "weird": "--5", "wide": "５", "super": "²", "empty": ""}


def test_blocking_pop_reports_timeout() -> None:
    call = Call(spec=TABLE["blpop"], args=["q", 1])
    assert blocking_pop(_idle_conn(), call, [b"q", b"job"]) == (b"q", b"job")
    with pytest.raises(BlockingTimeout):
        blocking_pop(_idle_conn(), call, NULL)
    with pytest.raises(BlockingTimeout):
        blocking_pop(_idle_conn(), call, [])


def test_command_spec_validation() -> None:
    assert CommandSpec("LLEN", "k").method == "llen"
    with pytest.raises(ValueError):
        CommandSpec("BAD", "kz")
    with pytest.raises(ValueError):
        CommandSpec("BAD", "KV")
    with pytest.raises(ValueError):
        CommandSpec("BAD", "K", extras=("withscores",))


def test_describe_names_slots_and_options() -> None:
    assert TABLE["blpop"].describe() == "blpop(key_list..., integer)"
    assert TABLE["zrange"].describe() == "zrange(key, start_index, end_index, [withscores])"


def test_every_type_code_is_documented() -> None:
    assert set(ARG_TYPES) == set("kdvKVifpntTsem")


def test_install_commands_refuses_to_shadow_methods() -> None:
    class Client:
        def get(self) -> None:
            return None

    with pytest.raises(ValueError):
        install_commands(Client)


def test_every_command_is_a_connection_method() -> None:
    methods = [spec.method for spec in COMMANDS]
    assert len(methods) == len(set(methods))
    for name in methods:
        method = getattr(Connection, name)
        assert callable(method)
        assert method.__name__ == name
    assert "Signature: get(key)" in Connection.get.__doc__
