"""Tests for tattler.db module."""

import tempfile
from pathlib import Path
from unittest.mock import patch

from tattler import db
from tattler.state import SyncCursor


def test_connect_creates_schema():
    """connect() should create the clients and cursors tables."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        with db.connect(db_path) as conn:
            tables = {
                row["name"]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
            }
            assert {"clients", "cursors"} <= tables


def test_save_and_get_client():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        with db.connect(db_path) as conn:
            saved = db.save_client(conn, "github-1", "github", "t0k")
            assert saved.id == "github-1"
            assert saved.provider_type == "github"
            assert saved.token == "t0k"

            assert db.get_client(conn, "github-1") == saved
            assert db.get_client(conn, "github-2") is None


def test_save_client_replaces_token_only():
    """Saving an existing client updates the token and keeps created_at."""
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        with db.connect(db_path) as conn:
            first = db.save_client(conn, "github-1", "github", "old")
            second = db.save_client(conn, "github-1", "github", "new")
            assert second.token == "new"
            assert second.created_at == first.created_at
            assert db.get_client(conn, "github-1") == second
            assert len(db.get_clients(conn)) == 1


def test_data_survives_reconnect():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        with db.connect(db_path) as conn:
            db.save_client(conn, "github-1", "github", "t0k")
        with db.connect(db_path) as conn:
            assert db.get_client(conn, "github-1").token == "t0k"


def test_new_client_id_takes_smallest_free_number():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        with db.connect(db_path) as conn:
            assert db.new_client_id(conn, "github") == "github-1"
            db.save_client(conn, "github-1", "github", "a")
            db.save_client(conn, "github-3", "github", "b")
            assert db.new_client_id(conn, "github") == "github-2"


def test_delete_client_removes_cursor():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        with db.connect(db_path) as conn:
            db.save_client(conn, "github-1", "github", "t0k")
            db.save_cursor(conn, "github-1", SyncCursor("2024-05-01T12:00:00Z", True))

            assert db.delete_client(conn, "github-1") is True
            assert db.delete_client(conn, "github-1") is False
            assert db.get_clients(conn) == []
            assert db.load_cursor(conn, "github-1") == SyncCursor()


def test_cursor_round_trip_and_overwrite():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        with db.connect(db_path) as conn:
            assert db.load_cursor(conn, "github-1") == SyncCursor()

            db.save_cursor(conn, "github-1", SyncCursor("2024-05-01T12:00:00Z", True))
            db.save_cursor(conn, "github-1", SyncCursor("2024-05-01T12:01:00Z", False))
            assert db.load_cursor(conn, "github-1") == SyncCursor(
                last_update="2024-05-01T12:01:00Z", force_refresh=False
            )


def test_get_clients_oldest_first():
    with tempfile.TemporaryDirectory() as tmpdir:
        db_path = Path(tmpdir) / "test.db"
        with db.connect(db_path) as conn, patch("tattler.db.time") as mock_time:
            mock_time.time.side_effect = [100.0, 200.0]
            db.save_client(conn, "github-2", "github", "b")
            db.save_client(conn, "github-1", "github", "a")
            ids = [c.id for c in db.get_clients(conn)]
            assert ids == ["github-2", "github-1"]
