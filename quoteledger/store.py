"""SQLite persistence of append-only stored events and idempotency keys."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from quoteledger import messages
from quoteledger.errors import CorruptPayload, EmptyAppend, IdempotencyConflict
from quoteledger.messages import QuoteEvent, StoredEvent, decode_event, encode_event

_EVENT_TYPES: dict[type, str] = {
    messages.QuoteCreated: "quote_created",
    messages.LineItemAdded: "line_item_added",
    messages.QuoteFinalized: "quote_finalized",
}


def _row_to_stored(row: tuple[int, str, bytes]) -> StoredEvent:
    seq, quote_id, payload = row
    return StoredEvent(seq=seq, quote_id=quote_id, event=decode_event(payload))


def _query_events(conn: sqlite3.Connection, sql: str, params: tuple) -> list[StoredEvent]:
    return [_row_to_stored(row) for row in conn.execute(sql, params)]


def _event_type_for(event: QuoteEvent) -> str:
    return _EVENT_TYPES.get(type(event.kind), "unknown")


@contextmanager
def _immediate_transaction(conn: sqlite3.Connection) -> Iterator[None]:
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield
    except BaseException:
        conn.execute("ROLLBACK")
        raise
    conn.execute("COMMIT")


def load_stored_events(conn: sqlite3.Connection, quote_id: str) -> list[StoredEvent]:
    """All events of a quote, in sequence order."""
    return _query_events(
        conn,
        "SELECT seq, quote_id, payload FROM events WHERE quote_id = ? ORDER BY seq ASC",
        (quote_id,),
    )


def idempotency_lookup(
    conn: sqlite3.Connection, quote_id: str, client_command_id: str
) -> tuple[int, int] | None:
    """The (first_seq, last_seq) recorded for a command, or None if it is new."""
    row = conn.execute(
        "SELECT first_seq, last_seq FROM idempotency_keys "
        "WHERE quote_id = ? AND client_command_id = ?",
        (quote_id, client_command_id),
    ).fetchone()
    return None if row is None else (row[0], row[1])


def _load_events_in_seq_range(
    conn: sqlite3.Connection, quote_id: str, first_seq: int, last_seq: int
) -> list[StoredEvent]:
    return _query_events(
        conn,
        "SELECT seq, quote_id, payload FROM events "
        "WHERE quote_id = ? AND seq BETWEEN ? AND ? ORDER BY seq ASC",
        (quote_id, first_seq, last_seq),
    )


def _same_command_payloads(
    existing: Sequence[StoredEvent], incoming: Sequence[QuoteEvent]
) -> bool:
    if len(existing) != len(incoming):
        return False
    for stored, new_event in zip(existing, incoming):
        if stored.event is None:
            raise CorruptPayload("stored event missing payload")
        if encode_event(stored.event) != encode_event(new_event):
            return False
    return True


def append_command_events(
    conn: sqlite3.Connection,
    quote_id: str,
    client_command_id: str,
    events: Sequence[QuoteEvent],
) -> list[StoredEvent]:
    """Append a command's events, or return the stored ones when the command is replayed.

    Raises IdempotencyConflict if the command id was used with different events,
    and EmptyAppend if a new command carries no events.
    """
    events = list(events)
    recorded = idempotency_lookup(conn, quote_id, client_command_id)
    if recorded is not None:
        existing = _load_events_in_seq_range(conn, quote_id, *recorded)
        if _same_command_payloads(existing, events):
            return existing
        raise IdempotencyConflict(quote_id, client_command_id)

    if not events:
        raise EmptyAppend()

    stored: list[StoredEvent] = []
    with _immediate_transaction(conn):
        (next_seq,) = conn.execute(
            "SELECT COALESCE(MAX(seq), 0) + 1 FROM events WHERE quote_id = ?",
            (quote_id,),
        ).fetchone()
        for seq, event in enumerate(events, start=next_seq):
            conn.execute(
                "INSERT INTO events (quote_id, seq, event_type, payload) VALUES (?, ?, ?, ?)",
                (quote_id, seq, _event_type_for(event), encode_event(event)),
            )
            stored.append(StoredEvent(seq=seq, quote_id=quote_id, event=event))
        conn.execute(
            "INSERT INTO idempotency_keys (quote_id, client_command_id, first_seq, last_seq) "
            "VALUES (?, ?, ?, ?)",
            (quote_id, client_command_id, stored[0].seq, stored[-1].seq),
        )
    return stored


def load_stored_events_between(
    conn: sqlite3.Connection,
    quote_id: str,
    after_seq_exclusive: int,
    upto_seq_inclusive: int,
) -> list[StoredEvent]:
    """Events with ``after_seq_exclusive < seq <= upto_seq_inclusive``, in order."""
    if upto_seq_inclusive <= after_seq_exclusive:
        return []
    return _query_events(
        conn,
        "SELECT seq, quote_id, payload FROM events "
        "WHERE quote_id = ? AND seq > ? AND seq <= ? ORDER BY seq ASC",
        (quote_id, after_seq_exclusive, upto_seq_inclusive),
    )