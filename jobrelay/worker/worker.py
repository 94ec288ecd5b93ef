import json
import time
import socket
import logging
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse

from jobrelay.common.config import WorkerConfig
from jobrelay.common.errors import InvalidJobInputError, WorkflowError
from jobrelay.common.models import (
    Job,
    JobError,
    JobMessage,
    JobStatus,
    JobUpdate,
    RequestType,
    WorkflowExecutionRef,
    utcnow,
)
from jobrelay.common.retry import RetryPolicy, call_with_retry
from jobrelay.worker.monitor import MonitorOutcome, MonitorResult, WorkflowMonitor

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("worker")

# Progress written once a job is picked up, so pollers see it is alive.
PICKUP_PROGRESS = 25

SUMMARY_PROMPT = """You are an assistant analyzing a document in response to a user query.

Original User Query: "{query}"

Document Analysis Summary:
{insights}

Extracted Document Information:
{analysis}

Based on this document analysis, provide a comprehensive response to the user's query.
Directly address the user's question and highlight the most relevant information from the document.
Be concise but thorough, and format the response clearly.
"""

PARTIAL_NOTE = (
    "The document analysis did not finish in time. Answer with whatever information is "
    "available above and say that the analysis is incomplete."
)

def parse_file_url(url: str):
    """Split an s3:// or virtual-hosted https:// file URL into (bucket, key)."""
    if url.startswith("s3://"):
        bucket, _, key = url[len("s3://"):].partition("/")
    elif url.startswith("https://"):
        parsed = urlparse(url)
        bucket = parsed.hostname.split(".")[0] if parsed.hostname else ""
        key = parsed.path.lstrip("/")
    else:
        raise InvalidJobInputError(f"Invalid file URL format: {url}")
    if not bucket or not key:
        raise InvalidJobInputError(f"Invalid file URL format: {url}")
    return bucket, key

def build_workflow_input(message: JobMessage) -> Dict[str, Any]:
    files = message.input.files
    if not files or not files[0].url:
        raise InvalidJobInputError("No valid files provided for document analysis")

    file = files[0]
    bucket, key = parse_file_url(file.url)
    file_name = file.name or key.split("/")[-1]
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    file_type = extension or file.mime_type.split("/")[-1] or "unknown"

    return {
        "documentId": message.request_id,
        "userId": message.session_id or "anonymous",
        "bucket": bucket,
        "key": key,
        "fileName": file_name,
        "fileType": file_type,
        "userQuery": message.input.message,
        "isMultipleDocuments": len(files) > 1,
        "startedBy": "async-worker",
    }

def _decode_output(output: Any) -> Dict[str, Any]:
    if output is None:
        return {}
    if isinstance(output, str):
        try:
            output = json.loads(output)
        except json.JSONDecodeError as e:
            logger.error(f"Error parsing workflow output: {e}")
            return {}
    return output if isinstance(output, dict) else {}

def error_from_exception(exc: BaseException) -> JobError:
    if isinstance(exc, WorkflowError) and exc.state:
        return JobError(message=str(exc), name=exc.state)
    return JobError(message=str(exc) or type(exc).__name__, name=type(exc).__name__)

class Worker:
    """
    Executes one JobMessage at a time. Every job it touches ends in a terminal
    status: COMPLETED on success, FAILED with the error otherwise.
    """

    def __init__(
        self,
        store,
        queue,
        chat,
        engine,
        config: WorkerConfig,
        sleep: Callable[[float], None] = time.sleep,
        monitor: Optional[WorkflowMonitor] = None,
        consumer: Optional[str] = None,
    ):
        self.store = store
        self.queue = queue
        self.chat = chat
        self.engine = engine
        self.config = config
        self.sleep = sleep
        self.retry_policy = RetryPolicy.from_config(config.retry)
        self.monitor = monitor or WorkflowMonitor(engine, store, config.monitor, sleep=sleep)
        self.consumer = consumer or socket.gethostname()
        self.handlers = {
            RequestType.DIRECT: self._run_direct,
            RequestType.WORKFLOW: self._run_workflow,
        }

    def _retry(self, func, operation_name: str):
        return call_with_retry(func, self.retry_policy, operation_name, sleep=self.sleep)

    def process_message(self, message: JobMessage) -> Optional[Job]:
        request_id = message.request_id
        current = self.store.get(request_id)
        if current is None:
            logger.warning(f"No status record for {request_id}; dropping message")
            return None
        if current.status.is_terminal:
            logger.info(f"Job {request_id} already {current.status.value}; ignoring duplicate delivery")
            return current

        logger.info(f"Processing job {request_id} ({message.request_type.value})")
        try:
            self.store.update(request_id, JobUpdate(status=JobStatus.STARTED, message="Starting process"))
            self.store.update(
                request_id,
                JobUpdate(status=JobStatus.PROCESSING, progress=PICKUP_PROGRESS, message="Processing your request"),
            )
            handler = self.handlers[message.request_type]
            return handler(message, current)
        except Exception as e:
            logger.error(f"Job {request_id} failed: {e}")
            return self.store.update(
                request_id,
                JobUpdate(status=JobStatus.FAILED, error=error_from_exception(e), message="Processing failed"),
            )

    def _run_direct(self, message: JobMessage, current: Job) -> Job:
        response = self._retry(
            lambda: self.chat.respond(message.input.message, message.input.history, message.input.files),
            f"chat call for {message.request_id}",
        )
        result = {
            "text": response.get("text", ""),
            "sessionId": message.session_id,
            "timestamp": utcnow().isoformat(),
            "metadata": {key: value for key, value in response.items() if key != "text"},
        }
        return self.store.update(
            message.request_id,
            JobUpdate(status=JobStatus.COMPLETED, progress=100, result=result, message="Processing completed"),
        )

    def _run_workflow(self, message: JobMessage, current: Job) -> Job:
        request_id = message.request_id
        workflow_input = build_workflow_input(message)
        self.store.update(request_id, JobUpdate(message=f"Analyzing document: {workflow_input['fileName']}"))

        ref: Optional[WorkflowExecutionRef] = current.workflow_execution_ref
        if ref is not None:
            logger.info(f"Resuming supervision of execution {ref.execution_id} for {request_id}")
        else:
            ref = self._retry(
                lambda: self.engine.start(f"doc-analysis-{request_id}", workflow_input, self.config.workflow_engine.workflow_name),
                f"workflow start for {request_id}",
            )
            self.store.update(request_id, JobUpdate(workflow_execution_ref=ref))

        outcome = self.monitor.watch(request_id, ref)
        result = self._finalize(message, workflow_input, outcome)
        return self.store.update(
            request_id,
            JobUpdate(status=JobStatus.COMPLETED, progress=100, result=result, message="Processing completed"),
        )

    def _finalize(self, message: JobMessage, workflow_input: Dict[str, Any], outcome: MonitorResult) -> Dict[str, Any]:
        output = _decode_output(outcome.output)
        insights = output.get("insights") or {}
        analysis = output.get("analysisResults") or {}
        partial = outcome.outcome == MonitorOutcome.PARTIAL

        prompt = SUMMARY_PROMPT.format(
            query=message.input.message,
            insights=json.dumps(insights, indent=2),
            analysis=json.dumps(analysis, indent=2),
        )
        if partial:
            prompt = f"{prompt}\n{PARTIAL_NOTE}"

        summary = self._retry(
            lambda: self.chat.respond(prompt),
            f"summary call for {message.request_id}",
        )
        return {
            "text": summary.get("text", ""),
            "fileName": workflow_input["fileName"],
            "insights": insights,
            "documentType": analysis.get("documentType", "Unknown"),
            "sessionId": message.session_id,
            "timestamp": utcnow().isoformat(),
            "partial": partial,
        }

    def run_once(self) -> int:
        deliveries = self.queue.receive(
            limit=1, visibility_timeout=self.config.visibility_timeout, consumer=self.consumer
        )
        for delivery in deliveries:
            if delivery.receive_count > 1:
                logger.info(f"Message {delivery.message_id} delivered {delivery.receive_count} times")
            try:
                self.process_message(delivery.body)
            except Exception as e:
                # Left unacked: the queue redelivers it after the visibility timeout
                logger.error(f"Could not record outcome for {delivery.body.request_id}: {e}")
                continue
            self.queue.ack([delivery.message_id])
        return len(deliveries)

    def run_loop(self):
        logger.info("Starting worker loop...")
        while True:
            count = self.run_once()
            if count == 0:
                self.sleep(self.config.idle_sleep)
