from pathlib import Path

import pytest

from quoteledger.config import ServiceConfig, parse_socket_addr


def load(env, argv=()):
    return ServiceConfig.from_env_and_args(environ=env, argv=list(argv))


def test_strict_config_rejects_unknown_prefixed_env():
    env = {
        "STRICT_CONFIG": "true",
        "GRPC_LISTEN_ADDR": "127.0.0.1:59999",
        "QUOTE_LEDGER_TYPOS_SHOULD_FAIL": "1",
    }
    with pytest.raises(ValueError) as info:
        load(env)
    message = str(info.value)
    assert "unknown environment variable" in message
    assert "QUOTE_LEDGER_TYPOS_SHOULD_FAIL" in message


def test_strict_config_ignores_unrelated_and_known_keys():
    env = {"STRICT_CONFIG": "1", "HOME": "/tmp", "GRPC_LISTEN_ADDR": "127.0.0.1:59999"}
    assert load(env).grpc_listen == ("127.0.0.1", 59999)


def test_unknown_key_allowed_without_strict():
    assert load({"QUOTE_LEDGER_TYPO": "1"}).db_path == "quote_ledger.db"


def test_defaults():
    cfg = load({})
    assert cfg.grpc_listen == ("127.0.0.1", 50051)
    assert cfg.metrics_listen == ("127.0.0.1", 9090)
    assert cfg.db_path == "quote_ledger.db"
    assert cfg.reliability.append_idle_timeout == 10.0
    assert cfg.reliability.append_max_commands == 512
    assert cfg.grpc_concurrency_limit == 128
    assert cfg.grpc_keepalive_interval == 30.0
    assert cfg.grpc_keepalive_timeout == 10.0
    assert cfg.reflection_enabled is True
    assert cfg.grpc_tls_cert is None and cfg.grpc_tls_key is None
    assert cfg.grpc_rate_limit_rps is None


def test_listen_address_from_argv_and_env():
    assert load({}, ["0.0.0.0:6000"]).grpc_listen == ("0.0.0.0", 6000)
    env = {"GRPC_LISTEN_ADDR": "[::1]:7000"}
    assert load(env, ["0.0.0.0:6000"]).grpc_listen == ("::1", 7000)


def test_bad_listen_addresses():
    with pytest.raises(ValueError, match="GRPC_LISTEN_ADDR"):
        load({"GRPC_LISTEN_ADDR": "localhost:80"})
    with pytest.raises(ValueError, match="argv"):
        load({}, ["nope"])
    with pytest.raises(ValueError, match="METRICS_ADDR"):
        load({"METRICS_ADDR": "1.2.3.4"})


def test_explicit_values():
    env = {
        "APPEND_IDLE_TIMEOUT_MS": "250",
        "APPEND_MAX_COMMANDS": "+8",
        "GRPC_CONCURRENCY_LIMIT": "4",
        "GRPC_KEEPALIVE_INTERVAL_MS": "2000",
        "GRPC_KEEPALIVE_TIMEOUT_MS": "500",
        "QUOTE_LEDGER_REFLECTION": " Off ",
        "QUOTE_LEDGER_DB": "/tmp/x.db",
        "GRPC_TLS_CERT": " cert.pem ",
        "GRPC_TLS_KEY": "key.pem",
        "GRPC_RATE_LIMIT_RPS": " 50 ",
    }
    cfg = load(env)
    assert cfg.reliability.append_idle_timeout == 0.25
    assert cfg.reliability.append_max_commands == 8
    assert cfg.grpc_concurrency_limit == 4
    assert cfg.grpc_keepalive_interval == 2.0
    assert cfg.grpc_keepalive_timeout == 0.5
    assert cfg.reflection_enabled is False
    assert cfg.db_path == "/tmp/x.db"
    assert cfg.grpc_tls_cert == Path("cert.pem")
    assert cfg.grpc_tls_key == Path("key.pem")
    assert cfg.grpc_rate_limit_rps == 50


@pytest.mark.parametrize(
    "env, fragment",
    [
        ({"APPEND_MAX_COMMANDS": "0"}, "APPEND_MAX_COMMANDS must be >= 1"),
        ({"APPEND_IDLE_TIMEOUT_MS": "0"}, "between 1 and 3600000"),
        ({"APPEND_IDLE_TIMEOUT_MS": "3600001"}, "between 1 and 3600000"),
        ({"APPEND_IDLE_TIMEOUT_MS": "abc"}, "APPEND_IDLE_TIMEOUT_MS: invalid digit"),
        ({"APPEND_MAX_COMMANDS": ""}, "empty string"),
        ({"GRPC_CONCURRENCY_LIMIT": "0"}, "GRPC_CONCURRENCY_LIMIT must be >= 1"),
        ({"GRPC_KEEPALIVE_TIMEOUT_MS": "30000"}, "must be less than"),
        ({"GRPC_KEEPALIVE_INTERVAL_MS": "0"}, "GRPC_KEEPALIVE_INTERVAL_MS must be >= 1"),
        ({"GRPC_KEEPALIVE_TIMEOUT_MS": "0"}, "GRPC_KEEPALIVE_TIMEOUT_MS must be >= 1"),
        ({"QUOTE_LEDGER_REFLECTION": "maybe"}, "expected true/false"),
        ({"GRPC_TLS_CERT": "cert.pem"}, "both be set or both unset"),
        ({"GRPC_TLS_KEY": " "}, "GRPC_TLS_KEY must not be empty"),
        ({"GRPC_RATE_LIMIT_RPS": "0"}, "GRPC_RATE_LIMIT_RPS must be >= 1"),
        ({"GRPC_RATE_LIMIT_RPS": "  "}, "must not be empty when set"),
        ({"GRPC_RATE_LIMIT_RPS": "4294967296"}, "invalid integer"),
    ],
)
def test_invalid_settings(env, fragment):
    with pytest.raises(ValueError) as info:
        load(env)
    assert fragment in str(info.value)


@pytest.mark.parametrize(
    "text, expected",
    [
        ("127.0.0.1:50051", ("127.0.0.1", 50051)),
        ("[::1]:8080", ("::1", 8080)),
        ("0.0.0.0:0", ("0.0.0.0", 0)),
    ],
)
def test_parse_socket_addr(text, expected):
    assert parse_socket_addr(text) == expected


@pytest.mark.parametrize(
    "text", ["localhost:80", "1.2.3.4", "1.2.3.4:70000", "::1:80", "[::1]", "1.2.3.4:+5"]
)
def test_parse_socket_addr_rejects(text):
    with pytest.raises(ValueError, match="invalid socket address syntax"):
        parse_socket_addr(text)