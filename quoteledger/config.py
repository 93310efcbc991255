"""Service configuration read from environment variables and the command line."""

from __future__ import annotations

import ipaddress
import os
import re
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from quoteledger.ledger import ReliabilityLimits

KNOWN_ENV_KEYS = frozenset(
    {
        "APPEND_IDLE_TIMEOUT_MS",
        "APPEND_MAX_COMMANDS",
        "GRPC_CONCURRENCY_LIMIT",
        "GRPC_KEEPALIVE_INTERVAL_MS",
        "GRPC_KEEPALIVE_TIMEOUT_MS",
        "GRPC_LISTEN_ADDR",
        "GRPC_RATE_LIMIT_RPS",
        "GRPC_TLS_CERT",
        "GRPC_TLS_KEY",
        "METRICS_ADDR",
        "QUOTE_LEDGER_AUTH_TOKEN",
        "QUOTE_LEDGER_DB",
        "QUOTE_LEDGER_REFLECTION",
        "STRICT_CONFIG",
    }
)
_CHECKED_PREFIXES = ("QUOTE_LEDGER_", "APPEND_", "GRPC_")

DEFAULT_GRPC_LISTEN = "127.0.0.1:50051"
DEFAULT_METRICS_LISTEN = "127.0.0.1:9090"
DEFAULT_DB_PATH = "quote_ledger.db"

_UNSIGNED = re.compile(r"\+?[0-9]+")
_PORT = re.compile(r"[0-9]+")


def _parse_unsigned(text: str, bits: int) -> int:
    if not text:
        raise ValueError("cannot parse integer from empty string")
    if not _UNSIGNED.fullmatch(text):
        raise ValueError("invalid digit found in string")
    value = int(text)
    if value >= 1 << bits:
        raise ValueError("number too large to fit in target type")
    return value


def parse_socket_addr(text: str) -> tuple[str, int]:
    """Parse ``ip:port`` or ``[ipv6]:port`` into a (host, port) pair."""
    try:
        if text.startswith("["):
            host, separator, port = text[1:].partition("]:")
            if not separator:
                raise ValueError
            address: ipaddress.IPv4Address | ipaddress.IPv6Address = ipaddress.IPv6Address(host)
        else:
            host, separator, port = text.rpartition(":")
            if not separator:
                raise ValueError
            address = ipaddress.IPv4Address(host)
    except ValueError:
        raise ValueError("invalid socket address syntax") from None
    if not _PORT.fullmatch(port) or int(port) > 0xFFFF:
        raise ValueError("invalid socket address syntax")
    return str(address), int(port)


def _env_unsigned(environ: Mapping[str, str], name: str, default: int, bits: int) -> int:
    value = environ.get(name)
    if value is None:
        return default
    try:
        return _parse_unsigned(value, bits)
    except ValueError as exc:
        raise ValueError(f"{name}: {exc}") from None


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    value = environ.get(name)
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off"):
        return False
    raise ValueError(f'{name}: expected true/false, got "{normalized}"')


def _env_opt_nonzero_u32(environ: Mapping[str, str], name: str) -> int | None:
    value = environ.get(name)
    if value is None:
        return None
    trimmed = value.strip()
    if not trimmed:
        raise ValueError(f"{name} must not be empty when set")
    try:
        number = _parse_unsigned(trimmed, 32)
    except ValueError as exc:
        raise ValueError(f"{name}: invalid integer: {exc}") from None
    if number == 0:
        raise ValueError(f"{name} must be >= 1")
    return number


def _env_opt_path(environ: Mapping[str, str], name: str) -> Path | None:
    value = environ.get(name)
    if value is None:
        return None
    trimmed = value.strip()
    if not trimmed:
        raise ValueError(f"{name} must not be empty when set")
    return Path(trimmed)


def _validate_strict_unknown(environ: Mapping[str, str]) -> None:
    if not _env_bool(environ, "STRICT_CONFIG", False):
        return
    for key in environ:
        if key.startswith(_CHECKED_PREFIXES) and key not in KNOWN_ENV_KEYS:
            raise ValueError(f'STRICT_CONFIG: unknown environment variable "{key}" (typo?)')


@dataclass(frozen=True)
class ServiceConfig:
    """Validated runtime configuration; durations are in seconds."""

    grpc_listen: tuple[str, int]
    metrics_listen: tuple[str, int]
    db_path: str
    reliability: ReliabilityLimits = field(default_factory=ReliabilityLimits)
    grpc_concurrency_limit: int = 128
    grpc_keepalive_interval: float = 30.0
    grpc_keepalive_timeout: float = 10.0
    reflection_enabled: bool = True
    grpc_tls_cert: Path | None = None
    grpc_tls_key: Path | None = None
    grpc_rate_limit_rps: int | None = None

    @classmethod
    def from_env_and_args(
        cls,
        environ: Mapping[str, str] | None = None,
        argv: Sequence[str] | None = None,
    ) -> ServiceConfig:
        """Load from the environment and the command-line arguments (without program name).

        The first positional argument is the listen address when GRPC_LISTEN_ADDR is unset.
        Raises ValueError describing the first invalid setting.
        """
        if environ is None:
            environ = os.environ
        if argv is None:
            argv = sys.argv[1:]

        _validate_strict_unknown(environ)

        listen_text = environ.get("GRPC_LISTEN_ADDR")
        if listen_text is not None:
            try:
                grpc_listen = parse_socket_addr(listen_text)
            except ValueError as exc:
                raise ValueError(f"GRPC_LISTEN_ADDR: {exc}") from None
        else:
            listen_text = argv[0] if argv else DEFAULT_GRPC_LISTEN
            try:
                grpc_listen = parse_socket_addr(listen_text)
            except ValueError as exc:
                raise ValueError(f"grpc listen address (argv[1] or default): {exc}") from None

        try:
            metrics_listen = parse_socket_addr(
                environ.get("METRICS_ADDR", DEFAULT_METRICS_LISTEN)
            )
        except ValueError as exc:
            raise ValueError(f"METRICS_ADDR: {exc}") from None

        db_path = environ.get("QUOTE_LEDGER_DB", DEFAULT_DB_PATH)

        append_idle_timeout_ms = _env_unsigned(environ, "APPEND_IDLE_TIMEOUT_MS", 10_000, 64)
        append_max_commands = _env_unsigned(environ, "APPEND_MAX_COMMANDS", 512, 64)
        if append_max_commands < 1:
            raise ValueError("APPEND_MAX_COMMANDS must be >= 1")
        if not 1 <= append_idle_timeout_ms <= 3_600_000:
            raise ValueError("APPEND_IDLE_TIMEOUT_MS must be between 1 and 3600000")

        grpc_concurrency_limit = _env_unsigned(environ, "GRPC_CONCURRENCY_LIMIT", 128, 64)
        if grpc_concurrency_limit < 1:
            raise ValueError("GRPC_CONCURRENCY_LIMIT must be >= 1")

        keepalive_interval_ms = _env_unsigned(environ, "GRPC_KEEPALIVE_INTERVAL_MS", 30_000, 64)
        keepalive_timeout_ms = _env_unsigned(environ, "GRPC_KEEPALIVE_TIMEOUT_MS", 10_000, 64)
        if keepalive_interval_ms < 1:
            raise ValueError("GRPC_KEEPALIVE_INTERVAL_MS must be >= 1")
        if keepalive_timeout_ms < 1:
            raise ValueError("GRPC_KEEPALIVE_TIMEOUT_MS must be >= 1")
        if keepalive_timeout_ms >= keepalive_interval_ms:
            raise ValueError(
                "GRPC_KEEPALIVE_TIMEOUT_MS must be less than GRPC_KEEPALIVE_INTERVAL_MS"
            )

        reflection_enabled = _env_bool(environ, "QUOTE_LEDGER_REFLECTION", True)

        cert = _env_opt_path(environ, "GRPC_TLS_CERT")
        key = _env_opt_path(environ, "GRPC_TLS_KEY")
        if (cert is None) != (key is None):
            raise ValueError("GRPC_TLS_CERT and GRPC_TLS_KEY must both be set or both unset")

        grpc_rate_limit_rps = _env_opt_nonzero_u32(environ, "GRPC_RATE_LIMIT_RPS")

        return cls(
            grpc_listen=grpc_listen,
            metrics_listen=metrics_listen,
            db_path=db_path,
            reliability=ReliabilityLimits(
                append_idle_timeout=append_idle_timeout_ms / 1000,
                append_max_commands=append_max_commands,
            ),
            grpc_concurrency_limit=grpc_concurrency_limit,
            grpc_keepalive_interval=keepalive_interval_ms / 1000,
            grpc_keepalive_timeout=keepalive_timeout_ms / 1000,
            reflection_enabled=reflection_enabled,
            grpc_tls_cert=cert,
            grpc_tls_key=key,
            grpc_rate_limit_rps=grpc_rate_limit_rps,
        )