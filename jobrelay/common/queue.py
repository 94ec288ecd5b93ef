"""
At-least-once job queue on SQLite.

A received message is leased for `visibility_timeout` seconds. If it is not
acked before the lease runs out it becomes visible again and is redelivered,
so consumers must tolerate seeing the same message more than once.
"""

import json
import uuid
from datetime import datetime, timedelta
from typing import List, Optional

from jobrelay.common.db import get_db_connection
from jobrelay.common.models import JobMessage, QueuedMessage, as_utc, timestamp, utcnow

class JobQueue:
    def __init__(self, db_path: str = None, default_visibility_timeout: float = 900.0):
        self.db_path = db_path
        self.default_visibility_timeout = default_visibility_timeout

    def publish(self, message: JobMessage) -> str:
        message_id = str(uuid.uuid4())
        now = timestamp(utcnow())
        attributes = {"requestType": message.request_type.value}

        conn = get_db_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO queue_messages (message_id, request_id, body, attributes, created_at, visible_at, receive_count) "
                "VALUES (?, ?, ?, ?, ?, ?, 0)",
                (
                    message_id,
                    message.request_id,
                    message.model_dump_json(by_alias=True),
                    json.dumps(attributes),
                    now,
                    now,
                ),
            )
        finally:
            conn.close()
        return message_id

    def receive(
        self,
        limit: int = 1,
        visibility_timeout: Optional[float] = None,
        consumer: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> List[QueuedMessage]:
        if visibility_timeout is None:
            visibility_timeout = self.default_visibility_timeout
        now = as_utc(now) if now else utcnow()
        lease_until = now + timedelta(seconds=visibility_timeout)

        conn = get_db_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            rows = conn.execute(
                "SELECT * FROM queue_messages WHERE visible_at <= ? ORDER BY created_at ASC LIMIT ?",
                (timestamp(now), limit),
            ).fetchall()

            message_ids = [row["message_id"] for row in rows]
            if message_ids:
                placeholders = ",".join("?" * len(message_ids))
                conn.execute(
                    f"UPDATE queue_messages SET visible_at = ?, locked_by = ?, receive_count = receive_count + 1 "
                    f"WHERE message_id IN ({placeholders})",
                    (timestamp(lease_until), consumer, *message_ids),
                )
            conn.commit()
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

        return [
            QueuedMessage(
                message_id=row["message_id"],
                receive_count=row["receive_count"] + 1,
                body=JobMessage.model_validate_json(row["body"]),
            )
            for row in rows
        ]

    def ack(self, message_ids: List[str]) -> int:
        if not message_ids:
            return 0
        placeholders = ",".join("?" * len(message_ids))
        conn = get_db_connection(self.db_path)
        try:
            cursor = conn.execute(
                f"DELETE FROM queue_messages WHERE message_id IN ({placeholders})", tuple(message_ids)
            )
            return cursor.rowcount
        finally:
            conn.close()

    def has_pending(self, request_id: str) -> bool:
        """True while a message for the request is waiting or leased."""
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT 1 FROM queue_messages WHERE request_id = ? LIMIT 1", (request_id,)
            ).fetchone()
        finally:
            conn.close()
        return row is not None
