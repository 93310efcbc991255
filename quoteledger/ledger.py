"""The quote ledger service: streamed command appends and live quote subscriptions."""

from __future__ import annotations

import asyncio
import sqlite3
import string
import threading
from collections.abc import AsyncIterable, AsyncIterator, Callable, Iterable
from dataclasses import dataclass
from typing import Any, TypeVar, Union

from quoteledger import domain, store
from quoteledger.errors import InvalidAfterSeq, Status, StatusCode, StoreError
from quoteledger.mapping import (
    domain_event_to_proto,
    proto_command_to_domain,
    quote_state_to_view,
    replay_stored_to_state,
    store_error_to_status,
)
from quoteledger.messages import (
    AppendCommandRequest,
    AppendCommandsResponse,
    QuoteCommand,
    QuoteSnapshot,
    QuoteTail,
    QuoteView,
    StoredEvent,
    SubscribeQuoteRequest,
)

MAX_ID_LEN = 128
DEFAULT_APPEND_IDLE_TIMEOUT = 10.0
DEFAULT_APPEND_MAX_COMMANDS = 512

# Subscribe reads are retried so that a transient failure never skips sequence numbers.
_SUBSCRIBE_DB_MAX_ATTEMPTS = 8
_SUBSCRIBE_DB_BACKOFF_START = 0.010
_SUBSCRIBE_DB_BACKOFF_CAP = 0.500

_ID_CHARACTERS = frozenset(string.ascii_letters + string.digits + "-_:.")
_END = object()

QuoteUpdate = Union[QuoteTail, QuoteSnapshot]
T = TypeVar("T")


def validate_identifier(field: str, value: str) -> None:
    """Raise an INVALID_ARGUMENT status unless ``value`` is a well-formed identifier."""
    if not value.strip():
        raise Status(StatusCode.INVALID_ARGUMENT, f"{field} is required")
    if len(value.encode("utf-8")) > MAX_ID_LEN:
        raise Status(
            StatusCode.INVALID_ARGUMENT, f"{field} exceeds {MAX_ID_LEN} characters"
        )
    if value != value.strip():
        raise Status(
            StatusCode.INVALID_ARGUMENT,
            f"{field} must not contain leading/trailing spaces",
        )
    if not all(char in _ID_CHARACTERS for char in value):
        raise Status(StatusCode.INVALID_ARGUMENT, f"{field} contains invalid characters")


@dataclass(frozen=True)
class ReliabilityLimits:
    """Limits on append streams: idle timeout in seconds and maximum commands."""

    append_idle_timeout: float = DEFAULT_APPEND_IDLE_TIMEOUT
    append_max_commands: int = DEFAULT_APPEND_MAX_COMMANDS


class _HeadWatch:
    """Latest committed sequence number of one quote, with change notification."""

    def __init__(self, head: int) -> None:
        self.head = head
        self.version = 0
        self._changed = asyncio.Event()

    def publish(self, head: int) -> None:
        self.head = head
        self.version += 1
        changed, self._changed = self._changed, asyncio.Event()
        changed.set()

    async def changed(self, seen_version: int) -> int:
        """Wait until the version differs from ``seen_version`` and return the new one."""
        while self.version == seen_version:
            await self._changed.wait()
        return self.version


def _append_command(
    conn: sqlite3.Connection,
    quote_id: str,
    client_command_id: str,
    command: domain.DomainCommand,
) -> list[StoredEvent]:
    recorded = store.idempotency_lookup(conn, quote_id, client_command_id)
    if recorded is not None:
        first_seq, _ = recorded
        prior = store.load_stored_events_between(conn, quote_id, 0, max(first_seq - 1, 0))
    else:
        prior = store.load_stored_events(conn, quote_id)
    state = replay_stored_to_state(prior)
    events = domain.command_to_events(state, command)
    return store.append_command_events(
        conn, quote_id, client_command_id, [domain_event_to_proto(event) for event in events]
    )


def _load_subscription_start(
    conn: sqlite3.Connection, quote_id: str, after_seq: int
) -> tuple[int, QuoteView, list[StoredEvent]]:
    stored = store.load_stored_events(conn, quote_id)
    last_seq = stored[-1].seq if stored else 0
    if after_seq > last_seq:
        raise InvalidAfterSeq(after_seq, last_seq)
    view = quote_state_to_view(quote_id, replay_stored_to_state(stored))
    catchup = (
        store.load_stored_events_between(conn, quote_id, after_seq, last_seq)
        if after_seq < last_seq
        else []
    )
    return last_seq, view, catchup


def _tail(from_seq: int, events: list[StoredEvent]) -> QuoteTail:
    return QuoteTail(
        from_seq_exclusive=from_seq,
        to_seq_inclusive=events[-1].seq,
        events=tuple(events),
    )


async def _from_sync(items: Iterable[T]) -> AsyncIterator[T]:
    for item in items:
        yield item


async def _next_or_end(iterator: AsyncIterator[T]) -> Any:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return _END


class LedgerService:
    """Appends quote commands to the event store and streams quote updates."""

    def __init__(
        self, conn: sqlite3.Connection, reliability: ReliabilityLimits | None = None
    ) -> None:
        self._conn = conn
        self._db_lock = threading.Lock()
        self._bus: dict[str, _HeadWatch] = {}
        self._in_flight = 0
        self.reliability = reliability or ReliabilityLimits()

    def in_flight_appends(self) -> int:
        """Number of single-command appends currently being processed."""
        return self._in_flight

    async def _db(self, operation: Callable[..., T], *args: Any) -> T:
        def run() -> T:
            with self._db_lock:
                return operation(self._conn, *args)

        try:
            return await asyncio.to_thread(run)
        except Status:
            raise
        except (StoreError, domain.DomainError, sqlite3.Error) as exc:
            raise store_error_to_status(exc) from exc

    def _watch(self, quote_id: str, head: int) -> _HeadWatch:
        return self._bus.setdefault(quote_id, _HeadWatch(head))

    async def load_between(
        self, quote_id: str, after_exclusive: int, upto_inclusive: int
    ) -> list[StoredEvent]:
        """Load events in ``(after_exclusive, upto_inclusive]``, retrying with backoff."""
        backoff = _SUBSCRIBE_DB_BACKOFF_START
        last_error: Status | None = None
        for attempt in range(_SUBSCRIBE_DB_MAX_ATTEMPTS):
            if attempt:
                await asyncio.sleep(backoff)
                backoff = min(backoff * 2, _SUBSCRIBE_DB_BACKOFF_CAP)
            try:
                return await self._db(
                    store.load_stored_events_between, quote_id, after_exclusive, upto_inclusive
                )
            except Status as exc:
                last_error = exc
        raise last_error or Status(StatusCode.INTERNAL, "subscribe db load failed")

    async def publish_head(self, quote_id: str, head: int) -> None:
        """Announce a new committed head for a quote to its subscribers."""
        self._watch(quote_id, head).publish(head)

    async def append_one(
        self, quote_id: str, client_command_id: str, command: QuoteCommand
    ) -> list[StoredEvent]:
        """Validate and commit one command, returning its stored events."""
        self._in_flight += 1
        try:
            domain_command = proto_command_to_domain(command)
            committed = await self._db(
                _append_command, quote_id, client_command_id, domain_command
            )
            if committed:
                await self.publish_head(quote_id, committed[-1].seq)
            return committed
        finally:
            self._in_flight -= 1

    async def append_commands(
        self, requests: AsyncIterable[AppendCommandRequest] | Iterable[AppendCommandRequest]
    ) -> AppendCommandsResponse:
        """Commit a stream of commands for one quote, in order."""
        if isinstance(requests, AsyncIterable):
            incoming = aiter(requests)
        else:
            incoming = _from_sync(requests)
        limits = self.reliability
        quote_id: str | None = None
        last_committed_seq = 0
        committed: list[StoredEvent] = []
        command_count = 0

        while True:
            try:
                request = await asyncio.wait_for(
                    _next_or_end(incoming), limits.append_idle_timeout
                )
            except asyncio.TimeoutError:
                raise Status(
                    StatusCode.DEADLINE_EXCEEDED, "append_commands stream idle timeout"
                ) from None
            if request is _END:
                break

            command_count += 1
            if command_count > limits.append_max_commands:
                raise Status(
                    StatusCode.RESOURCE_EXHAUSTED,
                    f"append_commands stream exceeds max {limits.append_max_commands} commands",
                )

            validate_identifier("client_command_id", request.client_command_id)
            validate_identifier("quote_id", request.quote_id)

            if quote_id is None:
                quote_id = request.quote_id
            elif quote_id != request.quote_id:
                raise Status(
                    StatusCode.INVALID_ARGUMENT,
                    "quote_id must remain consistent within AppendCommands",
                )
            if request.command is None:
                raise Status(StatusCode.INVALID_ARGUMENT, "command required")

            stored = await self.append_one(quote_id, request.client_command_id, request.command)
            if stored:
                last_committed_seq = stored[-1].seq
            committed.extend(stored)

        if quote_id is None:
            raise Status(StatusCode.INVALID_ARGUMENT, "append_commands stream was empty")
        return AppendCommandsResponse(
            last_committed_seq=last_committed_seq, committed=tuple(committed)
        )

    async def subscribe_quote(
        self, request: SubscribeQuoteRequest
    ) -> AsyncIterator[QuoteUpdate]:
        """Start a subscription: catch-up tail, a snapshot, then live tails."""
        validate_identifier("quote_id", request.quote_id)
        quote_id = request.quote_id
        after_seq = request.after_seq
        last_seq, view, catchup = await self._db(
            _load_subscription_start, quote_id, after_seq
        )
        watch = self._watch(quote_id, last_seq)
        watch.publish(last_seq)
        return self._pump(quote_id, after_seq, last_seq, view, catchup, watch, watch.version)

    async def _pump(
        self,
        quote_id: str,
        after_seq: int,
        last_seq: int,
        view: QuoteView,
        catchup: list[StoredEvent],
        watch: _HeadWatch,
        seen_version: int,
    ) -> AsyncIterator[QuoteUpdate]:
        if catchup:
            yield _tail(after_seq, catchup)
        yield QuoteSnapshot(last_seq=last_seq, view=view)

        watermark = last_seq
        head_now = watch.head
        if head_now > watermark:
            chunk = await self.load_between(quote_id, watermark, head_now)
            if chunk:
                yield _tail(watermark, chunk)
            watermark = head_now

        while True:
            seen_version = await watch.changed(seen_version)
            head = watch.head
            if head <= watermark:
                continue
            chunk = await self.load_between(quote_id, watermark, head)
            if chunk:
                yield _tail(watermark, chunk)
            watermark = head