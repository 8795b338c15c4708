# ============================================================================
# CLAUDE CONTEXT - JOB WORK QUEUE
# ============================================================================
# STATUS: Standalone - Detached execution of process work units
# PURPOSE: Hand jobs off from the request to a worker, and give work units a
#          context to report progress and observe dismissal
# EXPORTS: JobMessage, JobContext, JobCancelled, WorkUnitRegistry,
#          JobDispatcher, ThreadPoolDispatcher, InlineDispatcher
# DEPENDENCIES: concurrent.futures, dataclasses
# PATTERNS: Message queue with completion handler, Strategy (dispatcher)
# ============================================================================

"""
Job Work Queue

A submitted job becomes a ``JobMessage``. A ``JobDispatcher`` delivers the
message to a handler (the controller's ``run_job``) outside the lifetime of
the HTTP request that created it:

- ``ThreadPoolDispatcher`` - production; a bounded pool of worker threads.
- ``InlineDispatcher`` - runs the handler before ``dispatch`` returns, which
  makes tests deterministic.

Work units are plain callables ``(JobContext) -> dict`` registered per
process id. They do not touch the job store directly; they report progress
through the context and may poll ``is_cancelled()`` to stop early.
"""

import logging
from abc import ABC, abstractmethod
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from .errors import InvalidTransition, NotFound
from .models import JobStatus

if TYPE_CHECKING:
    from .repository import JobStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobMessage:
    """Everything a worker needs to run one job."""
    job_id: str
    process_id: str
    inputs: Dict[str, Any] = field(default_factory=dict)
    outputs: Optional[Dict[str, Any]] = None


class JobCancelled(Exception):
    """Raised inside a work unit once its job has been dismissed."""


class JobContext:
    """
    Handle given to a work unit for the duration of one job.

    No job state is cached here; every query goes to the store.
    """

    def __init__(self, message: JobMessage, store: "JobStore"):
        self.message = message
        self._store = store

    @property
    def job_id(self) -> str:
        return self.message.job_id

    @property
    def inputs(self) -> Dict[str, Any]:
        return self.message.inputs

    def is_cancelled(self) -> bool:
        """True once the job is deleted or no longer running."""
        try:
            return self._store.get(self.job_id).status != JobStatus.RUNNING
        except NotFound:
            return True

    def raise_if_cancelled(self) -> None:
        if self.is_cancelled():
            raise JobCancelled(f"Job '{self.job_id}' was dismissed")

    def report_progress(self, percent: int, message: Optional[str] = None) -> None:
        """
        Heartbeat with progress. Raises JobCancelled if the job was dismissed.
        """
        try:
            self._store.heartbeat(self.job_id, progress=max(0, min(100, int(percent))), message=message)
        except (InvalidTransition, NotFound):
            raise JobCancelled(f"Job '{self.job_id}' was dismissed") from None


WorkUnit = Callable[[JobContext], Optional[Dict[str, Any]]]


class WorkUnitRegistry:
    """Maps process ids to the callables that perform their work."""

    def __init__(self, units: Optional[Dict[str, WorkUnit]] = None):
        self._units: Dict[str, WorkUnit] = dict(units or {})

    def register(self, process_id: str, unit: WorkUnit) -> WorkUnit:
        self._units[process_id] = unit
        return unit

    def get(self, process_id: str) -> Optional[WorkUnit]:
        return self._units.get(process_id)

    def __contains__(self, process_id: str) -> bool:
        return process_id in self._units


JobHandler = Callable[[JobMessage], None]


class JobDispatcher(ABC):
    """Delivers job messages to a handler, detached from the caller."""

    @abstractmethod
    def dispatch(self, message: JobMessage, handler: JobHandler) -> None:
        """Queue the message. Must not wait for the work to finish."""

    def shutdown(self, wait: bool = True) -> None:
        """Release worker resources."""


class InlineDispatcher(JobDispatcher):
    """Runs the handler synchronously inside dispatch()."""

    def dispatch(self, message: JobMessage, handler: JobHandler) -> None:
        handler(message)


class ThreadPoolDispatcher(JobDispatcher):
    """Runs handlers on a bounded pool of daemon worker threads."""

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers,
            thread_name_prefix="ogc-job"
        )
        logger.info(f"ThreadPoolDispatcher started with {max_workers} workers")

    def dispatch(self, message: JobMessage, handler: JobHandler) -> None:
        future = self._executor.submit(handler, message)
        future.add_done_callback(lambda f: self._log_outcome(message, f))
        logger.debug(f"Dispatched job '{message.job_id}' ({message.process_id})")

    @staticmethod
    def _log_outcome(message: JobMessage, future: Future) -> None:
        error = future.exception()
        if error is not None:
            # run_job records work failures itself; this is a storage failure
            # while recording, which leaves the job for the reaper
            logger.error(
                f"Worker for job '{message.job_id}' ended with an unrecorded error: "
                f"{type(error).__name__}: {error}"
            )

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
