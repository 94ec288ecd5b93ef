import sqlite3
import os
from platformdirs import user_data_dir

APP_NAME = "jobrelay"

def get_db_path():
    data_dir = user_data_dir(APP_NAME, ensure_exists=True)
    return os.path.join(data_dir, "jobrelay.db")

def init_db(db_path: str = None):
    if db_path is None:
        db_path = get_db_path()

    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)

    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS jobs (
        request_id TEXT PRIMARY KEY,
        session_id TEXT,
        request_type TEXT,
        status TEXT NOT NULL,
        progress INTEGER NOT NULL DEFAULT 0,
        message TEXT,
        result_payload TEXT,
        error_payload TEXT,
        workflow_ref TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """)
    cursor.execute("CREATE INDEX IF NOT EXISTS idx_jobs_session ON jobs (session_id)")

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS queue_messages (
        message_id TEXT PRIMARY KEY,
        request_id TEXT NOT NULL,
        body TEXT NOT NULL,
        attributes TEXT,
        created_at TEXT NOT NULL,
        visible_at TEXT NOT NULL,
        receive_count INTEGER NOT NULL DEFAULT 0,
        locked_by TEXT
    )
    """)

    cursor.execute("""
    CREATE TABLE IF NOT EXISTS api_keys (
        key_hash TEXT PRIMARY KEY,
        name TEXT,
        role TEXT
    )
    """)

    conn.commit()
    conn.close()
    return db_path

def get_db_connection(db_path: str = None):
    if db_path is None:
        db_path = get_db_path()
    # Writers take BEGIN IMMEDIATE explicitly, so autocommit mode keeps
    # sqlite3 from opening its own implicit transactions.
    conn = sqlite3.connect(db_path, timeout=30.0, isolation_level=None)
    conn.row_factory = sqlite3.Row
    return conn
