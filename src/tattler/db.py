"""SQLite database for tattler clients and sync cursors."""

from __future__ import annotations

import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path

from .state import SyncCursor


@dataclass(frozen=True)
class ClientRow:
    """A logged-in provider account."""

    id: str
    provider_type: str
    token: str | None
    created_at: float

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> ClientRow:
        return cls(
            id=row["id"],
            provider_type=row["provider_type"],
            token=row["token"],
            created_at=row["created_at"],
        )


def get_db_path() -> Path:
    """Get the path to the tattler database, following XDG conventions."""
    xdg_data = Path.home() / ".local" / "share"
    tattler_dir = xdg_data / "tattler"
    tattler_dir.mkdir(parents=True, exist_ok=True)
    return tattler_dir / "tattler.db"


def _init_schema(conn: sqlite3.Connection) -> None:
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS clients (
            id TEXT PRIMARY KEY,
            provider_type TEXT NOT NULL,
            token TEXT,
            created_at REAL NOT NULL
        );

        CREATE TABLE IF NOT EXISTS cursors (
            client_id TEXT PRIMARY KEY,
            last_update TEXT,
            force_refresh INTEGER NOT NULL DEFAULT 0
        );
    """)
    conn.commit()


@contextmanager
def connect(db_path: Path | None = None) -> Iterator[sqlite3.Connection]:
    """Context manager for database connections."""
    if db_path is None:
        db_path = get_db_path()

    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    _init_schema(conn)

    try:
        yield conn
    finally:
        conn.close()


# --- Clients ---


def get_clients(conn: sqlite3.Connection) -> list[ClientRow]:
    """All clients, oldest first."""
    rows = conn.execute("SELECT * FROM clients ORDER BY created_at, id").fetchall()
    return [ClientRow.from_row(row) for row in rows]


def get_client(conn: sqlite3.Connection, client_id: str) -> ClientRow | None:
    row = conn.execute("SELECT * FROM clients WHERE id = ?", (client_id,)).fetchone()
    return ClientRow.from_row(row) if row else None


def new_client_id(conn: sqlite3.Connection, provider_type: str) -> str:
    """Next free id of the form "<provider>-<n>"."""
    rows = conn.execute(
        "SELECT id FROM clients WHERE provider_type = ?", (provider_type,)
    ).fetchall()
    taken = set()
    for row in rows:
        suffix = row["id"].rpartition("-")[2]
        if suffix.isdigit():
            taken.add(int(suffix))
    n = 1
    while n in taken:
        n += 1
    return f"{provider_type}-{n}"


def save_client(
    conn: sqlite3.Connection,
    client_id: str,
    provider_type: str,
    token: str | None,
) -> ClientRow:
    """Insert a client or replace its token."""
    now = time.time()
    row = conn.execute(
        """
        INSERT INTO clients (id, provider_type, token, created_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET token = excluded.token
        RETURNING *
        """,
        (client_id, provider_type, token, now),
    ).fetchone()
    conn.commit()
    return ClientRow.from_row(row)


def delete_client(conn: sqlite3.Connection, client_id: str) -> bool:
    """Delete a client and its cursor. Returns True if the client existed."""
    cursor = conn.execute("DELETE FROM clients WHERE id = ?", (client_id,))
    conn.execute("DELETE FROM cursors WHERE client_id = ?", (client_id,))
    conn.commit()
    return cursor.rowcount > 0


# --- Cursors ---


def load_cursor(conn: sqlite3.Connection, client_id: str) -> SyncCursor:
    row = conn.execute(
        "SELECT last_update, force_refresh FROM cursors WHERE client_id = ?",
        (client_id,),
    ).fetchone()
    if row is None:
        return SyncCursor()
    return SyncCursor(last_update=row["last_update"], force_refresh=bool(row["force_refresh"]))


def save_cursor(conn: sqlite3.Connection, client_id: str, cursor: SyncCursor) -> None:
    conn.execute(
        """
        INSERT INTO cursors (client_id, last_update, force_refresh)
        VALUES (?, ?, ?)
        ON CONFLICT(client_id) DO UPDATE
        SET last_update = excluded.last_update, force_refresh = excluded.force_refresh
        """,
        (client_id, cursor.last_update, int(cursor.force_refresh)),
    )
    conn.commit()
