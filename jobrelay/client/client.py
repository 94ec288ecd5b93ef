import httpx
import time
from typing import List, Dict, Any, Optional
from jobrelay.common.errors import StatusNotFoundError
from jobrelay.common.models import FileReference, Job, JobStatus, RequestType

class JobHandle:
    def __init__(self, client, request_id: str, status: str = JobStatus.QUEUED.value, progress: int = 0):
        self.client = client
        self.id = request_id
        self._status = status
        self._progress = progress
        self._job: Optional[Job] = None

    @property
    def status(self):
        return self._status

    @property
    def progress(self):
        return self._progress

    @property
    def result(self):
        return self._job.result if self._job else None

    @property
    def error(self):
        return self._job.error if self._job else None

    @property
    def is_completed(self):
        return JobStatus(self._status).is_terminal

    def refresh(self) -> Job:
        job = self.client.check_status(self.id)
        self._job = job
        self._status = job.status.value
        self._progress = job.progress
        return job

    def get(self, wait: bool = True, timeout: float = 60, interval: float = 1.0) -> Optional[Job]:
        """Return the terminal job record, optionally blocking until it is reached."""
        if self.is_completed and self._job:
            return self._job

        start_time = time.time()
        while True:
            job = self.refresh()
            if self.is_completed:
                return job

            if not wait:
                return None

            if time.time() - start_time > timeout:
                raise TimeoutError(f"Job {self.id} timed out after {timeout} seconds")

            time.sleep(interval)

class Client:
    def __init__(self, base_url: str = "http://localhost:8000", api_key: Optional[str] = None):
        self.base_url = base_url
        self.api_key = api_key
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self.http_client = httpx.Client(base_url=base_url, headers=headers, timeout=30.0)

    def _post(self, path: str, json: Dict[str, Any]) -> httpx.Response:
        resp = self.http_client.post(path, json=json)
        resp.raise_for_status()
        return resp

    def _payload(self, message: str, history, files, session_id) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"message": message, "history": history or []}
        if files:
            payload["files"] = [
                (f if isinstance(f, FileReference) else FileReference(**f)).model_dump(by_alias=True)
                for f in files
            ]
        if session_id:
            payload["sessionId"] = session_id
        return payload

    def submit_message(
        self,
        message: str,
        history: Optional[List[Dict[str, Any]]] = None,
        files: Optional[List[Any]] = None,
        session_id: Optional[str] = None,
    ) -> JobHandle:
        """Submit a chat message for direct processing."""
        resp = self._post("/message", json=self._payload(message, history, files, session_id))
        data = resp.json()
        return JobHandle(self, data["requestId"], data["status"], data.get("progress", 0))

    def start_processing(
        self,
        message: str,
        history: Optional[List[Dict[str, Any]]] = None,
        files: Optional[List[Any]] = None,
        session_id: Optional[str] = None,
        request_type: Optional[RequestType] = None,
        document_analysis: bool = False,
    ) -> JobHandle:
        """Submit a request; the server picks DIRECT or WORKFLOW unless request_type is given."""
        payload = self._payload(message, history, files, session_id)
        if request_type is not None:
            payload["requestType"] = RequestType(request_type).value
        if document_analysis:
            payload["documentAnalysis"] = True
        resp = self._post("/startProcessing", json=payload)
        data = resp.json()
        return JobHandle(self, data["requestId"], data["status"], data.get("progress", 0))

    def check_status(self, request_id: str) -> Job:
        resp = self.http_client.get(f"/status/{request_id}")
        if resp.status_code == 404:
            raise StatusNotFoundError(request_id)
        resp.raise_for_status()
        return Job.model_validate(resp.json())

    def session_summary(self, session_id: str) -> List[Job]:
        resp = self.http_client.get("/summary", params={"sessionId": session_id})
        resp.raise_for_status()
        return [Job.model_validate(item) for item in resp.json()]
