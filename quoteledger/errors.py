"""Status codes reported to callers and errors raised by the event store."""

from __future__ import annotations

from enum import IntEnum


class StatusCode(IntEnum):
    """Canonical RPC status codes."""

    OK = 0
    CANCELLED = 1
    UNKNOWN = 2
    INVALID_ARGUMENT = 3
    DEADLINE_EXCEEDED = 4
    NOT_FOUND = 5
    ALREADY_EXISTS = 6
    PERMISSION_DENIED = 7
    RESOURCE_EXHAUSTED = 8
    FAILED_PRECONDITION = 9
    ABORTED = 10
    OUT_OF_RANGE = 11
    UNIMPLEMENTED = 12
    INTERNAL = 13
    UNAVAILABLE = 14
    DATA_LOSS = 15
    UNAUTHENTICATED = 16


class Status(Exception):
    """An RPC failure carrying a status code and a message."""

    def __init__(self, code: StatusCode | int, message: str) -> None:
        super().__init__(message)
        self.code = StatusCode(code)
        self.message = message

    def __repr__(self) -> str:
        return f"Status(code={self.code.name}, message={self.message!r})"


class StoreError(Exception):
    """Base class for failures of the persistent event store."""


class EmptyAppend(StoreError):
    """An append was attempted with no events."""

    def __init__(self) -> None:
        super().__init__("append contained zero events")


class InvalidAfterSeq(StoreError):
    """A subscriber asked to resume after a sequence number beyond the head."""

    def __init__(self, after_seq: int, last_seq: int) -> None:
        super().__init__(f"after_seq {after_seq} is ahead of head {last_seq}")
        self.after_seq = after_seq
        self.last_seq = last_seq


class CorruptPayload(StoreError):
    """A stored event could not be decoded."""

    def __init__(self, detail: str) -> None:
        super().__init__(f"corrupt stored payload: {detail}")
        self.detail = detail


class IdempotencyConflict(StoreError):
    """An idempotency key was reused with a different command payload."""

    def __init__(self, quote_id: str, client_command_id: str) -> None:
        super().__init__(
            "idempotency key reused with different command payload "
            f"(quote_id={quote_id}, client_command_id={client_command_id})"
        )
        self.quote_id = quote_id
        self.client_command_id = client_command_id