from quoteledger.db import open_and_migrate


def _tables(conn):
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    return {name for (name,) in rows}


def test_creates_tables(tmp_path):
    conn = open_and_migrate(tmp_path / "ledger.db")
    try:
        assert {"events", "idempotency_keys"} <= _tables(conn)
    finally:
        conn.close()


def test_pragmas_applied(tmp_path):
    conn = open_and_migrate(str(tmp_path / "ledger.db"))
    try:
        assert conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1
        assert conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"
        assert conn.execute("PRAGMA busy_timeout").fetchone()[0] == 5000
    finally:
        conn.close()


def test_reopen_keeps_data(tmp_path):
    path = tmp_path / "ledger.db"
    first = open_and_migrate(path)
    first.execute(
        "INSERT INTO events (quote_id, seq, event_type, payload) VALUES (?, ?, ?, ?)",
        ("q1", 1, "quote_created", b"{}"),
    )
    first.close()
    second = open_and_migrate(path)
    try:
        rows = second.execute("SELECT quote_id, seq FROM events").fetchall()
        assert rows == [("q1", 1)]
    finally:
        second.close()


def test_connection_is_autocommit(tmp_path):
    conn = open_and_migrate(tmp_path / "ledger.db")
    try:
        conn.execute(
            "INSERT INTO idempotency_keys VALUES (?, ?, ?, ?)", ("q1", "cc-1", 1, 1)
        )
        assert not conn.in_transaction
    finally:
        conn.close()