import logging
from typing import List, Optional

import httpx

from jobrelay.common.config import ServerConfig
from jobrelay.common.models import Job, JobUpdate, QueuedMessage

logger = logging.getLogger("worker")

class QueueServerClient:
    """
    Worker-side view of the queue server. Exposes the same receive/ack and
    get/update operations as the local JobQueue and StatusStore, over HTTP.
    """

    def __init__(self, config: ServerConfig, consumer: Optional[str] = None):
        self.config = config
        self.consumer = consumer
        self.client = httpx.Client(base_url=config.url, timeout=30.0)
        self.headers = {"Authorization": f"Bearer {config.api_key}"}

    def receive(self, limit: int = 1, visibility_timeout: Optional[float] = None, consumer: Optional[str] = None) -> List[QueuedMessage]:
        body = {"limit": limit}
        if visibility_timeout is not None:
            body["visibilityTimeout"] = visibility_timeout
        try:
            resp = self.client.post("/internal/queue/fetch", json=body, headers=self.headers)
            resp.raise_for_status()
            return [QueuedMessage.model_validate(item) for item in resp.json()]
        except Exception as e:
            logger.error(f"Error fetching messages: {e}")
            return []

    def ack(self, message_ids: List[str]) -> int:
        if not message_ids:
            return 0
        resp = self.client.post("/internal/queue/ack", json={"messageIds": message_ids}, headers=self.headers)
        resp.raise_for_status()
        return resp.json()["acked"]

    def get(self, request_id: str) -> Optional[Job]:
        resp = self.client.get(f"/status/{request_id}")
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return Job.model_validate(resp.json())

    def update(self, request_id: str, update: JobUpdate) -> Job:
        resp = self.client.patch(
            f"/internal/status/{request_id}",
            json=update.model_dump(mode="json", by_alias=True, exclude_unset=True),
            headers=self.headers,
        )
        resp.raise_for_status()
        return Job.model_validate(resp.json())
