"""Bounded supervision of a workflow execution, translating elapsed time into job progress."""

import logging
import math
import time
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

from jobrelay.common.config import MonitorConfig
from jobrelay.common.errors import WorkflowError
from jobrelay.common.models import (
    JobUpdate,
    WORKFLOW_FAILURE_STATES,
    WorkflowExecutionRef,
    WorkflowState,
    as_utc,
    utcnow,
)
from jobrelay.common.retry import is_retryable

logger = logging.getLogger("worker")

MIN_PROGRESS = 25
MAX_PROGRESS = 90

class MonitorOutcome(str, Enum):
    SUCCEEDED = "SUCCEEDED"
    PARTIAL = "PARTIAL"

@dataclass
class MonitorResult:
    outcome: MonitorOutcome
    output: Optional[Any] = None
    polls: int = 0

def estimate_progress(elapsed: float, estimated_total_duration: float) -> int:
    progress = MIN_PROGRESS + math.floor((MAX_PROGRESS - MIN_PROGRESS) * elapsed / estimated_total_duration)
    return max(MIN_PROGRESS, min(MAX_PROGRESS, progress))

class WorkflowMonitor:
    def __init__(
        self,
        engine,
        store,
        config: MonitorConfig = MonitorConfig(),
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.engine = engine
        self.store = store
        self.config = config
        self.sleep = sleep
        self.clock = clock

    def watch(self, request_id: str, ref: WorkflowExecutionRef) -> MonitorResult:
        """
        Poll the execution until it reaches a terminal state or the poll budget
        runs out. Raises WorkflowError on a failed execution or on repeated
        describe failures; returns PARTIAL when the budget is exhausted.
        """
        describe_failures = 0
        started = as_utc(ref.start_time)

        for poll in range(1, self.config.max_polls + 1):
            try:
                execution = self.engine.describe(ref)
                describe_failures = 0
            except Exception as e:
                if not is_retryable(e):
                    raise
                describe_failures += 1
                logger.warning(
                    f"Describe failed for execution {ref.execution_id} "
                    f"({describe_failures}/{self.config.max_describe_failures}): {e}"
                )
                if describe_failures >= self.config.max_describe_failures:
                    raise WorkflowError(
                        f"Could not read workflow execution {ref.execution_id}: {e}",
                        execution_id=ref.execution_id,
                    ) from e
                self._wait(poll)
                continue

            elapsed = (self.clock() - started).total_seconds()
            progress = estimate_progress(elapsed, self.config.estimated_total_duration)
            self.store.update(request_id, JobUpdate(progress=progress))
            logger.info(f"Execution {ref.execution_id} poll {poll}: {execution.state.value}, progress {progress}%")

            if execution.state == WorkflowState.SUCCEEDED:
                return MonitorResult(MonitorOutcome.SUCCEEDED, execution.output, poll)
            if execution.state in WORKFLOW_FAILURE_STATES:
                raise WorkflowError(
                    f"Workflow execution {ref.execution_id} ended with state {execution.state.value}",
                    state=execution.state.value,
                    execution_id=ref.execution_id,
                )

            self._wait(poll)

        logger.warning(
            f"Execution {ref.execution_id} still running after {self.config.max_polls} polls; "
            f"continuing with partial output"
        )
        return MonitorResult(MonitorOutcome.PARTIAL, None, self.config.max_polls)

    def _wait(self, poll: int):
        if poll < self.config.max_polls:
            self.sleep(self.config.poll_interval)
