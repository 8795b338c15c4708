# ============================================================================
# CLAUDE CONTEXT - JOB EXECUTION CONTROLLER
# ============================================================================
# STATUS: Standalone Controller - Job creation and worker contract
# PURPOSE: Accept execute requests, persist the job, hand work to a worker,
#          and drive the accepted -> running -> successful|failed transitions
# EXPORTS: JobExecutionController
# DEPENDENCIES: uuid, datetime, util_logger
# SOURCE: ProcessRegistry (read), JobStore (sole mutation path)
# SCOPE: The only component that creates jobs or moves them out of accepted/running
#        towards successful/failed
# VALIDATION: Inputs checked against the process input descriptors
# PATTERNS: Controller, Message queue handoff, Compare-and-swap transitions
# ENTRY_POINTS: controller.submit(process_id, request) -> Job
# ============================================================================

"""
Job Execution Controller

``submit`` never waits for work: it validates, persists an ``accepted`` job,
dispatches a ``JobMessage`` and returns. The dispatched handler is
``run_job``, which honours the worker contract:

    accepted --(start)--> running --(work returns)--> successful (result)
                                  --(work raises)---> failed (message)

Every step is a conditional transition. If the job was dismissed in the
meantime the transition loses, and the worker discards its outcome instead
of failing loudly. Synchronous execution is ``submit`` followed by
``wait_for``; there is no separate internal path.

Jobs whose worker died without a final transition are failed by
``reap_stale_jobs`` once their lease (time since last update) expires.
"""

import json
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from util_logger import LoggerFactory, ComponentType, log_exceptions

from .config import OGCProcessesConfig, get_processes_config
from .errors import InvalidTransition, NotFound, ValidationError
from .models import ACTIVE_STATUSES, ExecuteRequest, Job, JobStatus, Process
from .registry import ProcessRegistry
from .repository import JobStore
from .worker import (
    JobCancelled,
    JobContext,
    JobDispatcher,
    JobMessage,
    WorkUnitRegistry,
)

logger = LoggerFactory.create_logger(ComponentType.CONTROLLER, "JobExecutionController")


class JobExecutionController:
    """
    Owns job creation and the state-machine contract workers must honour.
    """

    def __init__(
        self,
        registry: ProcessRegistry,
        store: JobStore,
        dispatcher: JobDispatcher,
        work_units: WorkUnitRegistry,
        config: Optional[OGCProcessesConfig] = None
    ):
        self.registry = registry
        self.store = store
        self.dispatcher = dispatcher
        self.work_units = work_units
        self.config = config or get_processes_config()

    # ========================================================================
    # SUBMISSION
    # ========================================================================

    def submit(self, process_id: str, request: ExecuteRequest) -> Job:
        """
        Create a job for ``process_id`` and dispatch it.

        Returns the freshly created job (status ``accepted``), or a
        ``failed`` job if the work could not be handed off.

        Raises:
            NoSuchProcess: Unknown process id
            ValidationError: Inputs do not match the process description
            StorageUnavailable: Job store unreachable
        """
        process = self.registry.get_process(process_id)
        self.validate_inputs(process, request.inputs)

        now = datetime.now(timezone.utc)
        job = self.store.create(Job(
            job_id=str(uuid.uuid4()),
            process_id=process.id,
            status=JobStatus.ACCEPTED,
            message="Job accepted",
            progress=0,
            created=now,
            updated=now
        ))
        logger.info(
            f"Job '{job.job_id}' accepted for process '{process.id}'",
            extra={'custom_dimensions': {'job_id': job.job_id, 'process_id': process.id}}
        )

        message = JobMessage(
            job_id=job.job_id,
            process_id=process.id,
            inputs=dict(request.inputs),
            outputs=request.outputs
        )
        try:
            self.dispatcher.dispatch(message, self.run_job)
        except RuntimeError as e:
            # Executor already shut down; the job would otherwise sit in accepted
            logger.error(f"Could not dispatch job '{job.job_id}': {e}")
            return self.store.transition(
                job.job_id,
                {JobStatus.ACCEPTED},
                JobStatus.FAILED,
                message=f"Job could not be dispatched: {e}"
            )

        return job

    @staticmethod
    def validate_inputs(process: Process, inputs: Dict[str, Any]) -> None:
        """
        Check input names and cardinality against the process description.

        Raises:
            ValidationError: Unknown or missing inputs, too many values
        """
        unknown = sorted(set(inputs) - set(process.inputs))
        if unknown:
            raise ValidationError(
                f"Unknown input(s) for process '{process.id}': {', '.join(unknown)}"
            )

        missing = sorted(
            name for name, desc in process.inputs.items()
            if desc.minOccurs > 0 and inputs.get(name) is None
        )
        if missing:
            raise ValidationError(
                f"Missing required input(s) for process '{process.id}': {', '.join(missing)}"
            )

        for name, value in inputs.items():
            max_occurs = process.inputs[name].maxOccurs
            if isinstance(max_occurs, int) and max_occurs > 1 and isinstance(value, list) \
                    and len(value) > max_occurs:
                raise ValidationError(
                    f"Input '{name}' accepts at most {max_occurs} values, got {len(value)}"
                )

    # ========================================================================
    # WORKER CONTRACT
    # ========================================================================

    @log_exceptions(ComponentType.WORKER, "JobRunner")
    def run_job(self, message: JobMessage) -> None:
        """
        Execute one job. Called by the dispatcher, never by request handlers.

        Work failures become ``failed`` jobs. Only a job store failure while
        recording the outcome escapes, and the reaper picks that job up later.
        """
        log = LoggerFactory.create_with_context(
            ComponentType.WORKER, "JobRunner",
            job_id=message.job_id, process_id=message.process_id
        )

        try:
            self.store.transition(
                message.job_id, {JobStatus.ACCEPTED}, JobStatus.RUNNING,
                message="Job running"
            )
        except (InvalidTransition, NotFound) as e:
            log.info(f"Job not started, it was dismissed first: {e}")
            return

        unit = self.work_units.get(message.process_id)
        if unit is None:
            log.error(f"No work unit registered for process '{message.process_id}'")
            self._finish(
                message, JobStatus.FAILED,
                text=f"Process '{message.process_id}' has no executable implementation"
            )
            return

        started = time.monotonic()
        try:
            result = unit(JobContext(message, self.store))
        except JobCancelled:
            log.info("Work unit stopped after dismissal")
            return
        except Exception as e:
            log.error(f"Work unit failed: {type(e).__name__}: {e}", exc_info=True)
            self._finish(message, JobStatus.FAILED, text=f"{type(e).__name__}: {e}")
            return

        if result is None:
            result = {}
        if not isinstance(result, dict):
            self._finish(
                message, JobStatus.FAILED,
                text=f"Work unit returned {type(result).__name__}, expected a JSON object"
            )
            return

        try:
            json.dumps(result, allow_nan=False)
        except (TypeError, ValueError) as e:
            log.error(f"Work unit result is not JSON serializable: {e}")
            self._finish(
                message, JobStatus.FAILED,
                text=f"Work unit result is not JSON serializable: {e}"
            )
            return

        log.info(f"Work unit finished in {time.monotonic() - started:.2f}s")
        self._finish(message, JobStatus.SUCCESSFUL, result=result)

    def _finish(self, message: JobMessage, status: JobStatus,
                text: Optional[str] = None,
                result: Optional[Dict[str, Any]] = None) -> Optional[Job]:
        """Final running -> terminal transition; a lost race discards the outcome."""
        try:
            return self.store.transition(
                message.job_id,
                {JobStatus.RUNNING},
                status,
                message=text or ("Job completed" if status == JobStatus.SUCCESSFUL else None),
                result=result
            )
        except (InvalidTransition, NotFound) as e:
            logger.info(
                f"Discarding '{status.value}' outcome of job '{message.job_id}': {e}",
                extra={'custom_dimensions': {'job_id': message.job_id}}
            )
            return None

    # ========================================================================
    # SYNCHRONOUS WRAPPER
    # ========================================================================

    def wait_for(self, job_id: str, timeout_seconds: float) -> Job:
        """
        Poll the store until the job is terminal or the timeout expires.

        Returns the last observed job, terminal or not. A job deleted by a
        dismissal while waiting is reported as ``dismissed``.

        Raises:
            NoSuchJob: The job did not exist when the wait started
        """
        deadline = time.monotonic() + timeout_seconds
        job = self.store.get(job_id)
        while not job.is_terminal:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                break
            time.sleep(min(self.config.sync_poll_interval_seconds, remaining))
            try:
                job = self.store.get(job_id)
            except NotFound:
                return self._dismissed_view(job)
        return job

    @staticmethod
    def _dismissed_view(job: Job) -> Job:
        """Last known record of a job that was dismissed and deleted."""
        return job.model_copy(update={
            "status": JobStatus.DISMISSED,
            "message": "Job dismissed",
            "result": None,
        })

    def execute_sync(self, process_id: str, request: ExecuteRequest,
                     timeout_seconds: Optional[float] = None) -> Job:
        job = self.submit(process_id, request)
        if job.is_terminal:
            return job
        if timeout_seconds is None:
            timeout_seconds = self.config.sync_timeout_seconds
        try:
            return self.wait_for(job.job_id, timeout_seconds)
        except NotFound:
            return self._dismissed_view(job)

    # ========================================================================
    # LIVENESS
    # ========================================================================

    def reap_stale_jobs(self, now: Optional[datetime] = None) -> List[Job]:
        """
        Fail active jobs that have not been updated within the lease.

        Returns the jobs this call moved to ``failed``.
        """
        lease = self.config.job_lease_seconds
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(seconds=lease)

        reaped = []
        for job in self.store.list_stale(cutoff):
            try:
                reaped.append(self.store.transition(
                    job.job_id,
                    ACTIVE_STATUSES,
                    JobStatus.FAILED,
                    message=f"Job abandoned: no progress for more than {lease} seconds"
                ))
            except (InvalidTransition, NotFound):
                continue

        if reaped:
            logger.warning(
                f"Reaped {len(reaped)} stale job(s)",
                extra={'custom_dimensions': {'job_ids': [j.job_id for j in reaped]}}
            )
        return reaped
