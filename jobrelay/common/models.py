from enum import Enum
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
import uuid

class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    STARTED = "STARTED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return STATUS_RANK[self] == TERMINAL_RANK

    @property
    def rank(self) -> int:
        return STATUS_RANK[self]

TERMINAL_RANK = 3

# Every status must appear here; a missing member fails loudly on lookup.
STATUS_RANK = {
    JobStatus.QUEUED: 0,
    JobStatus.STARTED: 1,
    JobStatus.PROCESSING: 2,
    JobStatus.COMPLETED: TERMINAL_RANK,
    JobStatus.FAILED: TERMINAL_RANK,
}

STATUS_DESCRIPTIONS = {
    JobStatus.QUEUED: "Queued for processing",
    JobStatus.STARTED: "Starting process",
    JobStatus.PROCESSING: "Processing your request",
    JobStatus.COMPLETED: "Processing completed",
    JobStatus.FAILED: "Processing failed",
}

class RequestType(str, Enum):
    DIRECT = "DIRECT"
    WORKFLOW = "WORKFLOW"

class WorkflowState(str, Enum):
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    TIMED_OUT = "TIMED_OUT"
    ABORTED = "ABORTED"

WORKFLOW_FAILURE_STATES = frozenset(
    {WorkflowState.FAILED, WorkflowState.TIMED_OUT, WorkflowState.ABORTED}
)

def utcnow() -> datetime:
    return datetime.now(timezone.utc)

def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC; aware ones are converted to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

def timestamp(value: datetime) -> str:
    """Fixed-width UTC ISO text, so stored timestamps order correctly as strings."""
    return as_utc(value).isoformat(timespec="microseconds")

class CamelModel(BaseModel):
    """Base model serialized with camelCase keys on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

class JobError(CamelModel):
    message: str
    name: str = "Error"

class WorkflowExecutionRef(CamelModel):
    execution_id: str
    start_time: datetime = Field(default_factory=utcnow)

class Job(CamelModel):
    request_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    session_id: Optional[str] = None
    request_type: Optional[RequestType] = None
    status: JobStatus = JobStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[JobError] = None
    workflow_execution_ref: Optional[WorkflowExecutionRef] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

class JobUpdate(CamelModel):
    """Partial update; only explicitly set fields are written."""
    status: Optional[JobStatus] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    message: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    error: Optional[JobError] = None
    workflow_execution_ref: Optional[WorkflowExecutionRef] = None

    def changes(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in self.model_fields_set}

class FileReference(CamelModel):
    url: str
    name: Optional[str] = None
    mime_type: str = "application/octet-stream"

class JobInput(CamelModel):
    message: str
    history: List[Dict[str, Any]] = Field(default_factory=list)
    files: List[FileReference] = Field(default_factory=list)

class JobMessage(CamelModel):
    request_id: str
    request_type: RequestType
    input: JobInput
    session_id: str

class QueuedMessage(CamelModel):
    message_id: str
    receive_count: int = 1
    body: JobMessage

class SubmitRequest(CamelModel):
    message: str = Field(min_length=1)
    history: List[Dict[str, Any]] = Field(default_factory=list)
    files: List[FileReference] = Field(default_factory=list)
    session_id: Optional[str] = None
    request_type: Optional[RequestType] = None
    document_analysis: bool = False

class SubmitResponse(CamelModel):
    request_id: str
    status: JobStatus
    progress: int
    message: Optional[str] = None
    created_at: datetime

class ExecutionDescriptor(CamelModel):
    execution_id: str
    state: WorkflowState
    start_time: datetime
    # JSON object, or a JSON document encoded as a string
    output: Optional[Any] = None
