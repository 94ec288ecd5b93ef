import logging
import time
import uuid
from typing import Optional

from jobrelay.common.errors import DispatchError
from jobrelay.common.models import (
    Job,
    JobError,
    JobInput,
    JobMessage,
    JobStatus,
    JobUpdate,
    RequestType,
    SubmitRequest,
)

logger = logging.getLogger("server")

QUEUED_MESSAGES = {
    RequestType.DIRECT: "Your request has been queued for processing",
    RequestType.WORKFLOW: "Your document is being analyzed. Please check the status endpoint for updates.",
}

def resolve_request_type(request: SubmitRequest) -> RequestType:
    if request.request_type is not None:
        return request.request_type
    if request.document_analysis or request.files:
        return RequestType.WORKFLOW
    return RequestType.DIRECT

class Dispatcher:
    def __init__(self, store, queue):
        self.store = store
        self.queue = queue

    def submit(self, request: SubmitRequest, request_type: Optional[RequestType] = None) -> Job:
        """
        Record the job as QUEUED, then enqueue it. The record is written first so
        a client polling right after submission never gets a 404; if the enqueue
        fails the record is marked FAILED instead of being left QUEUED.
        """
        request_type = request_type or resolve_request_type(request)
        session_id = request.session_id or f"session-{int(time.time() * 1000)}"

        job = Job(
            request_id=str(uuid.uuid4()),
            session_id=session_id,
            request_type=request_type,
            status=JobStatus.QUEUED,
            progress=0,
            message=QUEUED_MESSAGES[request_type],
        )
        self.store.create(job)

        message = JobMessage(
            request_id=job.request_id,
            request_type=request_type,
            input=JobInput(message=request.message, history=request.history, files=request.files),
            session_id=session_id,
        )
        try:
            self.queue.publish(message)
        except Exception as e:
            logger.error(f"Failed to enqueue {job.request_id}: {e}")
            failed = self.store.update(
                job.request_id,
                JobUpdate(
                    status=JobStatus.FAILED,
                    error=JobError(message=f"Could not enqueue request: {e}", name="EnqueueError"),
                ),
            )
            raise DispatchError(f"Could not enqueue request {job.request_id}", job=failed) from e

        logger.info(f"Request {job.request_id} queued ({request_type.value})")
        return job
