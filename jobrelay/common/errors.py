from typing import Optional

class JobRelayError(Exception):
    """Base class for errors raised by jobrelay."""

class RetryableError(JobRelayError):
    """A transient failure; the call may succeed if attempted again."""

class FatalError(JobRelayError):
    """A failure that retrying cannot fix."""

class InvalidJobInputError(FatalError):
    pass

class JobNotFoundError(JobRelayError):
    def __init__(self, request_id: str):
        super().__init__(f"No request found with ID: {request_id}")
        self.request_id = request_id

class WorkflowError(JobRelayError):
    def __init__(self, message: str, state: Optional[str] = None, execution_id: Optional[str] = None):
        super().__init__(message)
        self.state = state
        self.execution_id = execution_id

class DispatchError(JobRelayError):
    def __init__(self, message: str, job=None):
        super().__init__(message)
        self.job = job

class StatusNotFoundError(JobRelayError):
    def __init__(self, request_id: str):
        super().__init__(f"Job {request_id} not found")
        self.request_id = request_id

class PollerError(JobRelayError):
    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason
