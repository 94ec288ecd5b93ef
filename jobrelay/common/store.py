"""SQLite-backed status store: the single source of truth for job state."""

import json
import logging
import sqlite3
from datetime import datetime
from typing import Callable, Dict, Any, List, Optional

from jobrelay.common.db import get_db_connection
from jobrelay.common.errors import JobNotFoundError
from jobrelay.common.models import (
    Job,
    JobError,
    JobStatus,
    JobUpdate,
    RequestType,
    WorkflowExecutionRef,
    timestamp,
    utcnow,
)

logger = logging.getLogger("store")

StatusListener = Callable[[Job], None]

def _dumps(value) -> Optional[str]:
    if value is None:
        return None
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json")
    return json.dumps(value)

def _row_to_job(row: sqlite3.Row) -> Job:
    error = json.loads(row["error_payload"]) if row["error_payload"] else None
    workflow_ref = json.loads(row["workflow_ref"]) if row["workflow_ref"] else None
    return Job(
        request_id=row["request_id"],
        session_id=row["session_id"],
        request_type=RequestType(row["request_type"]) if row["request_type"] else None,
        status=JobStatus(row["status"]),
        progress=row["progress"],
        message=row["message"],
        result=json.loads(row["result_payload"]) if row["result_payload"] else None,
        error=JobError(**error) if error else None,
        workflow_execution_ref=WorkflowExecutionRef(**workflow_ref) if workflow_ref else None,
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
    )

def apply_update(current: Job, update: JobUpdate) -> Job:
    """
    Merge a partial update into a record, enforcing the lifecycle rules:
    terminal records are immutable, status never moves backwards, progress
    never decreases and is pinned to 100 on completion, result and error
    only accompany their terminal status.
    """
    if current.status.is_terminal:
        return current

    changes = update.changes()
    data = current.model_dump()

    new_status = changes.pop("status", None)
    if new_status is not None and new_status.rank >= current.status.rank:
        data["status"] = new_status
    status = data["status"]

    if changes.get("progress") is not None:
        data["progress"] = max(current.progress, changes.pop("progress"))
    changes.pop("progress", None)
    if status == JobStatus.COMPLETED:
        data["progress"] = 100

    result = changes.pop("result", None)
    error = changes.pop("error", None)
    data["result"] = result if status == JobStatus.COMPLETED else None
    data["error"] = error if status == JobStatus.FAILED else None
    if status == JobStatus.FAILED and data["error"] is None:
        data["error"] = JobError(message="Unknown error occurred")

    data.update(changes)
    data["updated_at"] = utcnow()
    return Job(**data)

class StatusStore:
    def __init__(self, db_path: str = None):
        self.db_path = db_path
        self._listeners: List[StatusListener] = []

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener for every record write. Returns the unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, job: Job):
        for listener in list(self._listeners):
            try:
                listener(job)
            except Exception as e:
                logger.error(f"Status listener failed for {job.request_id}: {e}")

    def create(self, job: Job) -> Job:
        conn = get_db_connection(self.db_path)
        try:
            conn.execute(
                "INSERT INTO jobs (request_id, session_id, request_type, status, progress, message, "
                "result_payload, error_payload, workflow_ref, created_at, updated_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    job.request_id,
                    job.session_id,
                    job.request_type.value if job.request_type else None,
                    job.status.value,
                    job.progress,
                    job.message,
                    _dumps(job.result),
                    _dumps(job.error),
                    _dumps(job.workflow_execution_ref),
                    timestamp(job.created_at),
                    timestamp(job.updated_at),
                ),
            )
        finally:
            conn.close()
        logger.info(f"Created status record {job.request_id} ({job.status.value})")
        self._notify(job)
        return job

    def get(self, request_id: str) -> Optional[Job]:
        conn = get_db_connection(self.db_path)
        try:
            row = conn.execute("SELECT * FROM jobs WHERE request_id = ?", (request_id,)).fetchone()
        finally:
            conn.close()
        return _row_to_job(row) if row else None

    def update(self, request_id: str, update: JobUpdate) -> Job:
        conn = get_db_connection(self.db_path)
        try:
            conn.execute("BEGIN IMMEDIATE")
            row = conn.execute("SELECT * FROM jobs WHERE request_id = ?", (request_id,)).fetchone()
            if row is None:
                conn.rollback()
                raise JobNotFoundError(request_id)

            current = _row_to_job(row)
            if current.status.is_terminal:
                conn.rollback()
                logger.info(f"Ignoring update for terminal job {request_id} ({current.status.value})")
                return current

            job = apply_update(current, update)
            conn.execute(
                "UPDATE jobs SET status = ?, progress = ?, message = ?, result_payload = ?, "
                "error_payload = ?, workflow_ref = ?, updated_at = ? WHERE request_id = ?",
                (
                    job.status.value,
                    job.progress,
                    job.message,
                    _dumps(job.result),
                    _dumps(job.error),
                    _dumps(job.workflow_execution_ref),
                    timestamp(job.updated_at),
                    request_id,
                ),
            )
            conn.commit()
        except Exception:
            if conn.in_transaction:
                conn.rollback()
            raise
        finally:
            conn.close()

        if job.status != current.status:
            logger.info(f"Job {request_id}: {current.status.value} -> {job.status.value} ({job.progress}%)")
        self._notify(job)
        return job

    def list_by_session(self, session_id: str) -> List[Job]:
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(
                "SELECT * FROM jobs WHERE session_id = ? ORDER BY created_at ASC", (session_id,)
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_job(row) for row in rows]

    def list_stale(self, older_than: datetime) -> List[Job]:
        """Non-terminal records whose last write happened before `older_than`."""
        terminal = [status.value for status in JobStatus if status.is_terminal]
        placeholders = ",".join("?" * len(terminal))
        conn = get_db_connection(self.db_path)
        try:
            rows = conn.execute(
                f"SELECT * FROM jobs WHERE status NOT IN ({placeholders}) AND updated_at < ?",
                (*terminal, timestamp(older_than)),
            ).fetchall()
        finally:
            conn.close()
        return [_row_to_job(row) for row in rows]
