"""Opening the SQLite database that backs the ledger."""

from __future__ import annotations

import os
import sqlite3

_SCHEMA = """
CREATE TABLE IF NOT EXISTS events (
    quote_id   TEXT    NOT NULL,
    seq        INTEGER NOT NULL,
    event_type TEXT    NOT NULL,
    payload    BLOB    NOT NULL,
    PRIMARY KEY (quote_id, seq)
);

CREATE TABLE IF NOT EXISTS idempotency_keys (
    quote_id          TEXT    NOT NULL,
    client_command_id TEXT    NOT NULL,
    first_seq         INTEGER NOT NULL,
    last_seq          INTEGER NOT NULL,
    PRIMARY KEY (quote_id, client_command_id)
);
"""

_PRAGMAS = """
PRAGMA foreign_keys = ON;
PRAGMA journal_mode = WAL;
PRAGMA synchronous = NORMAL;
PRAGMA busy_timeout = 5000;
"""


def open_and_migrate(path: str | os.PathLike[str]) -> sqlite3.Connection:
    """Open the database at ``path``, create the schema and apply connection settings.

    The connection runs in autocommit mode; the store opens its own transactions.
    It may be used from other threads as long as callers serialise access.
    """
    conn = sqlite3.connect(os.fspath(path), isolation_level=None, check_same_thread=False)
    try:
        conn.executescript(_SCHEMA)
        conn.executescript(_PRAGMAS)
    except BaseException:
        conn.close()
        raise
    return conn