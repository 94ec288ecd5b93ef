import pytest
from jobrelay.common.db import init_db, get_db_path, get_db_connection
import os
import sqlite3
import tempfile
from unittest.mock import patch

def test_get_db_path_default():
    with patch("jobrelay.common.db.user_data_dir", return_value="/tmp/jobrelay"):
        path = get_db_path()
        assert path == "/tmp/jobrelay/jobrelay.db"

def test_init_db_creates_tables():
    with tempfile.TemporaryDirectory() as temp_dir:
        db_path = os.path.join(temp_dir, "test.db")
        init_db(db_path)

        assert os.path.exists(db_path)

        conn = sqlite3.connect(db_path)
        cursor = conn.cursor()
        for table in ("jobs", "queue_messages", "api_keys"):
            cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,))
            assert cursor.fetchone() is not None
        conn.close()

def test_init_db_is_idempotent():
    with tempfile.TemporaryDirectory() as temp_dir:
        db_path = os.path.join(temp_dir, "test.db")
        init_db(db_path)
        init_db(db_path)

def test_get_db_connection_custom_path():
    with tempfile.TemporaryDirectory() as temp_dir:
        db_path = os.path.join(temp_dir, "test.db")
        init_db(db_path)

        conn = get_db_connection(db_path)
        assert isinstance(conn, sqlite3.Connection)
        assert conn.row_factory == sqlite3.Row
        conn.close()

def test_get_db_connection_default_path():
     with tempfile.TemporaryDirectory() as temp_dir:
        db_path = os.path.join(temp_dir, "jobrelay.db")

        with patch("jobrelay.common.db.get_db_path", return_value=db_path):
             init_db()
             conn = get_db_connection()
             assert isinstance(conn, sqlite3.Connection)
             conn.close()

def test_queue_messages_schema():
    with tempfile.TemporaryDirectory() as temp_dir:
        db_path = os.path.join(temp_dir, "test.db")
        init_db(db_path)

        conn = sqlite3.connect(db_path)
        columns = [info[1] for info in conn.execute("PRAGMA table_info(queue_messages)").fetchall()]
        conn.close()

        assert columns == [
            "message_id", "request_id", "body", "attributes",
            "created_at", "visible_at", "receive_count", "locked_by",
        ]
