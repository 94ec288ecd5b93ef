import pytest
import httpx
from unittest.mock import MagicMock, patch

from jobrelay.client.client import Client, JobHandle
from jobrelay.common.errors import StatusNotFoundError
from jobrelay.common.models import JobStatus, RequestType

def _response(status_code=200, payload=None):
    return httpx.Response(status_code, json=payload, request=httpx.Request("GET", "http://test"))

def _job_payload(status="QUEUED", progress=0, **extra):
    data = {"requestId": "r-1", "status": status, "progress": progress}
    data.update(extra)
    return data

@pytest.fixture
def client():
    client = Client(base_url="http://test", api_key="sk-test")
    client.http_client = MagicMock()
    return client

def test_auth_header_only_with_key():
    assert Client(api_key="sk-test").http_client.headers["Authorization"] == "Bearer sk-test"
    assert "Authorization" not in Client().http_client.headers

def test_submit_message(client):
    client.http_client.post.return_value = _response(200, {"requestId": "r-1", "status": "QUEUED", "progress": 0})

    handle = client.submit_message("Hello", session_id="s-1")

    assert isinstance(handle, JobHandle)
    assert handle.id == "r-1"
    assert handle.status == "QUEUED"
    client.http_client.post.assert_called_with(
        "/message", json={"message": "Hello", "history": [], "sessionId": "s-1"}
    )

def test_start_processing_payload(client):
    client.http_client.post.return_value = _response(200, {"requestId": "r-2", "status": "QUEUED"})

    client.start_processing(
        "Analyze",
        files=[{"url": "s3://b/k.pdf", "name": "k.pdf"}],
        request_type=RequestType.WORKFLOW,
        document_analysis=True,
    )

    path = client.http_client.post.call_args.args[0]
    payload = client.http_client.post.call_args.kwargs["json"]
    assert path == "/startProcessing"
    assert payload["files"] == [{"url": "s3://b/k.pdf", "name": "k.pdf", "mimeType": "application/octet-stream"}]
    assert payload["requestType"] == "WORKFLOW"
    assert payload["documentAnalysis"] is True

def test_submit_raises_on_server_error(client):
    client.http_client.post.return_value = _response(503, {"detail": "down"})
    with pytest.raises(httpx.HTTPStatusError):
        client.submit_message("Hello")

def test_check_status(client):
    client.http_client.get.return_value = _response(200, _job_payload("PROCESSING", 40, message="Working"))

    job = client.check_status("r-1")

    assert job.status == JobStatus.PROCESSING
    assert job.progress == 40
    client.http_client.get.assert_called_with("/status/r-1")

def test_check_status_not_found(client):
    client.http_client.get.return_value = _response(404, {"detail": "No request found with ID: r-9"})
    with pytest.raises(StatusNotFoundError) as exc_info:
        client.check_status("r-9")
    assert str(exc_info.value) == "Job r-9 not found"

def test_session_summary(client):
    client.http_client.get.return_value = _response(200, [_job_payload(), _job_payload("COMPLETED", 100)])

    jobs = client.session_summary("s-1")

    assert [job.status for job in jobs] == [JobStatus.QUEUED, JobStatus.COMPLETED]
    client.http_client.get.assert_called_with("/summary", params={"sessionId": "s-1"})

def test_job_handle_get_waits_until_terminal(client):
    client.http_client.get.side_effect = [
        _response(200, _job_payload("PROCESSING", 25)),
        _response(200, _job_payload("COMPLETED", 100, result={"text": "done"})),
    ]
    handle = JobHandle(client, "r-1")

    with patch("jobrelay.client.client.time.sleep") as mock_sleep:
        job = handle.get(interval=0.5)

    assert job.result == {"text": "done"}
    assert handle.is_completed
    assert handle.result == {"text": "done"}
    mock_sleep.assert_called_once_with(0.5)

def test_job_handle_get_no_wait(client):
    client.http_client.get.return_value = _response(200, _job_payload("PROCESSING", 25))
    handle = JobHandle(client, "r-1")

    assert handle.get(wait=False) is None
    assert handle.progress == 25

def test_job_handle_get_timeout(client):
    client.http_client.get.return_value = _response(200, _job_payload("PROCESSING", 25))
    handle = JobHandle(client, "r-1")

    with patch("jobrelay.client.client.time.time", side_effect=[0, 100]), \
         patch("jobrelay.client.client.time.sleep"):
        with pytest.raises(TimeoutError):
            handle.get(timeout=60)
