import pytest
from jobrelay.common.db import init_db
from jobrelay.common.models import JobInput, JobMessage, JobStatus, RequestType
from jobrelay.common.queue import JobQueue
from jobrelay.common.store import StatusStore
import os
import shutil
import tempfile
import sqlite3
import hashlib
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient
from jobrelay.server.api import app, get_queue

@pytest.fixture
def test_db():
    temp_dir = tempfile.mkdtemp()
    db_path = os.path.join(temp_dir, "test_queue.db")

    init_db(db_path)

    conn = sqlite3.connect(db_path)
    cursor = conn.cursor()
    worker_key_hash = hashlib.sha256("sk-worker".encode()).hexdigest()
    cursor.execute("INSERT INTO api_keys (key_hash, name, role) VALUES (?, ?, ?)", (worker_key_hash, "TestWorker", "WORKER"))
    conn.commit()
    conn.close()

    with patch("jobrelay.server.api.get_db_path", return_value=db_path), \
         patch("jobrelay.server.api.get_db_connection") as mock_get_conn:
        def get_conn(p=None):
            conn = sqlite3.connect(db_path)
            conn.row_factory = sqlite3.Row
            return conn

        mock_get_conn.side_effect = get_conn
        yield db_path

    app.dependency_overrides.clear()
    shutil.rmtree(temp_dir)

@pytest.fixture
def client(test_db):
    return TestClient(app)

WORKER_HEADERS = {"Authorization": "Bearer sk-worker"}

def test_submit_message_queues_direct_job(client, test_db):
    response = client.post("/message", json={"message": "Hello", "sessionId": "s-1"})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "QUEUED"
    assert data["progress"] == 0
    assert "requestId" in data and "createdAt" in data

    job = StatusStore(test_db).get(data["requestId"])
    assert job.request_type == RequestType.DIRECT
    assert job.session_id == "s-1"
    assert JobQueue(test_db).has_pending(data["requestId"])

def test_start_processing_with_files_is_workflow(client, test_db):
    response = client.post(
        "/startProcessing",
        json={"message": "Analyze", "files": [{"url": "s3://b/report.pdf", "name": "report.pdf"}]},
    )

    assert response.status_code == 200
    job = StatusStore(test_db).get(response.json()["requestId"])
    assert job.request_type == RequestType.WORKFLOW
    assert job.session_id.startswith("session-")

def test_start_processing_without_files_is_direct(client, test_db):
    response = client.post("/startProcessing", json={"message": "Just chat"})
    job = StatusStore(test_db).get(response.json()["requestId"])
    assert job.request_type == RequestType.DIRECT

def test_submit_rejects_empty_message(client):
    response = client.post("/message", json={"message": ""})
    assert response.status_code == 422

def test_status_readable_immediately_after_submit(client):
    request_id = client.post("/message", json={"message": "Hello"}).json()["requestId"]

    response = client.get(f"/status/{request_id}")

    assert response.status_code == 200
    data = response.json()
    assert data["requestId"] == request_id
    assert data["status"] == "QUEUED"
    assert data["requestType"] == "DIRECT"

def test_status_not_found(client):
    response = client.get("/status/does-not-exist")
    assert response.status_code == 404
    assert "does-not-exist" in response.json()["detail"]

def test_enqueue_failure_returns_503_and_fails_job(client, test_db):
    broken_queue = MagicMock()
    broken_queue.publish.side_effect = sqlite3.OperationalError("queue unavailable")
    app.dependency_overrides[get_queue] = lambda: broken_queue

    response = client.post("/message", json={"message": "Hello"})

    assert response.status_code == 503
    request_id = response.json()["detail"]["requestId"]
    job = StatusStore(test_db).get(request_id)
    assert job.status == JobStatus.FAILED
    assert job.error.name == "EnqueueError"

def test_summary_lists_session_jobs(client):
    client.post("/message", json={"message": "one", "sessionId": "s-sum"})
    client.post("/message", json={"message": "two", "sessionId": "s-sum"})
    client.post("/message", json={"message": "other", "sessionId": "s-other"})

    response = client.get("/summary", params={"sessionId": "s-sum"})

    assert response.status_code == 200
    assert len(response.json()) == 2

def test_internal_endpoints_require_auth(client):
    assert client.post("/internal/queue/fetch", json={}).status_code == 401
    assert client.post("/internal/queue/fetch", json={}, headers={"Authorization": "Bearer bad"}).status_code == 401
    assert client.post("/internal/queue/fetch", json={}, headers={"Authorization": "Token sk-worker"}).status_code == 401
    assert client.patch("/internal/status/x", json={}).status_code == 401

def test_fetch_and_ack(client, test_db):
    request_id = client.post("/message", json={"message": "Hello"}).json()["requestId"]

    response = client.post("/internal/queue/fetch", json={"limit": 5, "visibilityTimeout": 60}, headers=WORKER_HEADERS)

    assert response.status_code == 200
    messages = response.json()
    assert len(messages) == 1
    assert messages[0]["body"]["requestId"] == request_id
    assert messages[0]["body"]["input"]["message"] == "Hello"
    assert messages[0]["receiveCount"] == 1

    # leased: not visible to a second fetch
    assert client.post("/internal/queue/fetch", json={}, headers=WORKER_HEADERS).json() == []

    response = client.post("/internal/queue/ack", json={"messageIds": [messages[0]["messageId"]]}, headers=WORKER_HEADERS)
    assert response.json() == {"acked": 1}
    assert not JobQueue(test_db).has_pending(request_id)

def test_fetch_rejects_oversized_limit(client):
    response = client.post("/internal/queue/fetch", json={"limit": 50}, headers=WORKER_HEADERS)
    assert response.status_code == 422

def test_patch_status(client):
    request_id = client.post("/message", json={"message": "Hello"}).json()["requestId"]

    response = client.patch(
        f"/internal/status/{request_id}",
        json={"status": "PROCESSING", "progress": 25, "message": "Processing your request"},
        headers=WORKER_HEADERS,
    )
    assert response.status_code == 200
    assert response.json()["progress"] == 25

    response = client.patch(
        f"/internal/status/{request_id}",
        json={"status": "COMPLETED", "result": {"text": "done"}},
        headers=WORKER_HEADERS,
    )
    data = response.json()
    assert data["status"] == "COMPLETED"
    assert data["progress"] == 100
    assert data["result"] == {"text": "done"}

    # terminal records are immutable
    response = client.patch(
        f"/internal/status/{request_id}",
        json={"status": "FAILED", "error": {"message": "late"}},
        headers=WORKER_HEADERS,
    )
    assert response.json()["status"] == "COMPLETED"

def test_patch_unknown_job(client):
    response = client.patch("/internal/status/missing", json={"progress": 10}, headers=WORKER_HEADERS)
    assert response.status_code == 404
