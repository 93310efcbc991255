"""Bearer-token authentication of incoming RPC metadata."""

from __future__ import annotations

import hmac
import os
from collections.abc import Iterable, Mapping
from typing import Union

from quoteledger.errors import Status, StatusCode

AUTH_HEADER = "authorization"

_ASCII = "ascii"
_UTF8 = "utf-8"
_SPACE = " "

Metadata = Union[Mapping[str, Union[str, bytes]], Iterable[tuple[str, Union[str, bytes]]], None]


def _lookup(metadata: Metadata, key: str) -> str | bytes | None:
    if metadata is None:
        return None
    if isinstance(metadata, Mapping):
        return metadata.get(key)
    for name, value in metadata:
        if name.lower() == key:
            return value
    return None


def _is_visible_ascii(text: str) -> bool:
    return all(char == "\t" or " " <= char <= "~" for char in text)


def _unauthenticated(message: str) -> Status:
    return Status(StatusCode.UNAUTHENTICATED, message)


class AuthInterceptor:
    """Checks ``authorization: Bearer <token>`` metadata when a token is configured."""

    def __init__(self, expected_token: str | None = None) -> None:
        self.expected_token = expected_token

    @classmethod
    def from_env_var(cls, var: str) -> AuthInterceptor:
        """Require the token held in environment variable ``var``; none if it is unset."""
        token = os.environ.get(var)
        if token is None:
            return cls(None)
        trimmed = token.strip()
        if not trimmed:
            raise ValueError(f"{var} must not be empty when set")
        return cls(trimmed)

    @classmethod
    def required(cls, token: str) -> AuthInterceptor:
        """An interceptor that always requires ``token``."""
        return cls(token)

    def intercept(self, metadata: Metadata) -> Metadata:
        """Return ``metadata`` if it authenticates, else raise an UNAUTHENTICATED status."""
        expected = self.expected_token
        if expected is None:
            return metadata

        raw_value = _lookup(metadata, AUTH_HEADER)
        if raw_value is None:
            raise _unauthenticated("missing authorization metadata")

        if isinstance(raw_value, bytes):
            try:
                raw = raw_value.decode(_ASCII)
            except UnicodeDecodeError:
                raise _unauthenticated("authorization metadata is not valid ASCII") from None
        else:
            raw = raw_value
        if not _is_visible_ascii(raw):
            raise _unauthenticated("authorization metadata is not valid ASCII")

        scheme, separator, presented = raw.partition(_SPACE)
        if not separator:
            raise _unauthenticated("invalid authorization metadata format")
        if scheme.lower() != "bearer":
            raise _unauthenticated("authorization scheme must be Bearer")

        expected_bytes = expected.encode(_UTF8)
        presented_bytes = presented.encode(_ASCII)
        if len(expected_bytes) != len(presented_bytes) or not hmac.compare_digest(
            expected_bytes, presented_bytes
        ):
            raise _unauthenticated("invalid bearer token")
        return metadata