import os
import tempfile
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from jobrelay.common.db import init_db
from jobrelay.common.errors import DispatchError
from jobrelay.common.models import (
    FileReference,
    Job,
    JobInput,
    JobMessage,
    JobStatus,
    JobUpdate,
    RequestType,
    SubmitRequest,
    utcnow,
)
from jobrelay.common.queue import JobQueue
from jobrelay.common.store import StatusStore
from jobrelay.server.dispatcher import Dispatcher, resolve_request_type
from jobrelay.server.sweeper import sweep_stale_jobs

@pytest.fixture
def db_path():
    with tempfile.TemporaryDirectory() as temp_dir:
        path = os.path.join(temp_dir, "test.db")
        init_db(path)
        yield path

def test_resolve_request_type():
    assert resolve_request_type(SubmitRequest(message="hi")) == RequestType.DIRECT
    assert resolve_request_type(SubmitRequest(message="hi", document_analysis=True)) == RequestType.WORKFLOW
    assert resolve_request_type(SubmitRequest(message="hi", files=[FileReference(url="s3://b/k")])) == RequestType.WORKFLOW
    assert resolve_request_type(
        SubmitRequest(message="hi", files=[FileReference(url="s3://b/k")], request_type=RequestType.DIRECT)
    ) == RequestType.DIRECT

def test_submit_writes_record_before_publishing():
    order = []
    store = MagicMock()
    store.create.side_effect = lambda job: order.append("create") or job
    queue = MagicMock()
    queue.publish.side_effect = lambda message: order.append("publish") or "m-1"

    job = Dispatcher(store, queue).submit(SubmitRequest(message="hi", session_id="s-1"))

    assert order == ["create", "publish"]
    assert job.status == JobStatus.QUEUED
    assert job.progress == 0
    message = queue.publish.call_args.args[0]
    assert message.request_id == job.request_id
    assert message.session_id == "s-1"
    assert message.input.message == "hi"

def test_submit_generates_session_id(db_path):
    job = Dispatcher(StatusStore(db_path), JobQueue(db_path)).submit(SubmitRequest(message="hi"))
    assert job.session_id.startswith("session-")

def test_publish_failure_marks_job_failed(db_path):
    store = StatusStore(db_path)
    queue = MagicMock()
    queue.publish.side_effect = RuntimeError("queue down")

    with pytest.raises(DispatchError) as exc_info:
        Dispatcher(store, queue).submit(SubmitRequest(message="hi"))

    failed = store.get(exc_info.value.job.request_id)
    assert failed.status == JobStatus.FAILED
    assert failed.error.name == "EnqueueError"
    assert "queue down" in failed.error.message

def test_sweep_fails_orphaned_jobs(db_path):
    store = StatusStore(db_path)
    queue = JobQueue(db_path)
    orphan = store.create(Job(request_type=RequestType.DIRECT))
    waiting = store.create(Job(request_type=RequestType.DIRECT))
    queue.publish(JobMessage(request_id=waiting.request_id, request_type=RequestType.DIRECT, input=JobInput(message="x"), session_id="s"))
    stuck = store.create(Job(request_type=RequestType.WORKFLOW))
    store.update(stuck.request_id, JobUpdate(status=JobStatus.PROCESSING, progress=40))
    done = store.create(Job(request_type=RequestType.DIRECT))
    store.update(done.request_id, JobUpdate(status=JobStatus.COMPLETED))

    swept = sweep_stale_jobs(store, queue, max_age=60, now=utcnow() + timedelta(minutes=5))

    assert sorted(swept) == sorted([orphan.request_id, stuck.request_id])
    assert store.get(orphan.request_id).error.name == "StaleJobError"
    assert store.get(stuck.request_id).status == JobStatus.FAILED
    assert store.get(waiting.request_id).status == JobStatus.QUEUED
    assert store.get(done.request_id).status == JobStatus.COMPLETED

def test_sweep_ignores_recent_jobs(db_path):
    store = StatusStore(db_path)
    store.create(Job(request_type=RequestType.DIRECT))

    assert sweep_stale_jobs(store, JobQueue(db_path), max_age=600) == []
