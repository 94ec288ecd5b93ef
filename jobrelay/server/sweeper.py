import logging
from datetime import datetime, timedelta
from typing import List, Optional

from jobrelay.common.models import JobError, JobStatus, JobUpdate, utcnow

logger = logging.getLogger("server")

STALE_MESSAGES = {
    JobStatus.QUEUED: "Job was never picked up by a worker",
    JobStatus.STARTED: "Job stopped reporting progress",
    JobStatus.PROCESSING: "Job stopped reporting progress",
}

def sweep_stale_jobs(store, queue, max_age: float, now: Optional[datetime] = None) -> List[str]:
    """
    Fail non-terminal jobs that have not been written for `max_age` seconds and
    have no message left in the queue. Such jobs can never progress: the
    enqueue after the status write was lost, or the message was consumed
    without a terminal write. Returns the request ids that were failed.
    """
    cutoff = (now or utcnow()) - timedelta(seconds=max_age)
    swept = []
    for job in store.list_stale(cutoff):
        if queue.has_pending(job.request_id):
            continue
        store.update(
            job.request_id,
            JobUpdate(
                status=JobStatus.FAILED,
                error=JobError(message=STALE_MESSAGES[job.status], name="StaleJobError"),
            ),
        )
        logger.warning(f"Marked stale job {job.request_id} as FAILED (was {job.status.value})")
        swept.append(job.request_id)
    return swept
