# ============================================================================
# CLAUDE CONTEXT - OGC PROCESSES SERVICE
# ============================================================================
# STATUS: Standalone Service - OGC API - Processes business logic
# PURPOSE: Job lifecycle surface: list/describe processes, execute, list jobs,
#          status, results, dismiss
# EXPORTS: OGCProcessesService, ExecutionOutcome, get_processes_service,
#          reset_processes_service, LANDING_LINKS, CONFORMANCE_CLASSES
# PYDANTIC_MODELS: ProcessList, Process, StatusInfo, JobList, OGCLink
# DEPENDENCIES: typing, dataclasses, logging
# SOURCE: ProcessRegistry, JobStore (via JobExecutionController for writes)
# SCOPE: Business logic for OGC API - Processes operations
# PATTERNS: Service Layer, Facade Pattern, Singleton via module function
# ENTRY_POINTS: service = get_processes_service(); service.execute(...)
# ============================================================================

"""
OGC Processes Service - Business Logic Layer

Coordinates HTTP triggers with the process registry, job store and
execution controller. Handles:
- Response model creation (Pydantic)
- Link generation (self, next, prev, results, execute)
- Pagination via the link builder
- Choice between synchronous and asynchronous execution

The only job mutation this layer performs directly is dismissal. Job
creation and all worker transitions belong to the controller.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

from .builtins import BUILTIN_PROCESSES, builtin_work_units
from .config import OGCProcessesConfig, get_processes_config
from .controller import JobExecutionController
from .errors import InvalidTransition, NotFound, ResultsNotReady, ValidationError
from .links import PageQuery, build_page_links, resolve_page
from .models import (
    ACTIVE_STATUSES,
    REL_EXECUTE,
    REL_JOB_LIST,
    REL_PROCESSES,
    REL_RESULTS,
    ExecuteRequest,
    Job,
    JobControlOption,
    JobList,
    JobStatus,
    OGCLink,
    Process,
    ProcessList,
    StatusInfo,
)
from .registry import (
    InMemoryProcessRegistry,
    LayeredProcessRegistry,
    PostgresProcessRegistry,
    ProcessRegistry,
)
from .repository import InMemoryJobStore, JobFilter, JobStore, PostgresJobStore
from .worker import JobDispatcher, ThreadPoolDispatcher, WorkUnitRegistry

logger = logging.getLogger(__name__)


# Contribution of this module to the API root document. Paths are relative
# to the API prefix; api_root renders them against the request base URL.
LANDING_LINKS: Tuple[Tuple[str, str, str], ...] = (
    ("/processes", REL_PROCESSES, "Processes"),
    ("/jobs", REL_JOB_LIST, "Jobs"),
)

CONFORMANCE_CLASSES: Tuple[str, ...] = (
    "http://www.opengis.net/spec/ogcapi-processes-1/1.0/conf/core",
    "http://www.opengis.net/spec/ogcapi-processes-1/1.0/conf/ogc-process-description",
    "http://www.opengis.net/spec/ogcapi-processes-1/1.0/conf/json",
    "http://www.opengis.net/spec/ogcapi-processes-1/1.0/conf/job-list",
    "http://www.opengis.net/spec/ogcapi-processes-1/1.0/conf/dismiss",
)

JSON = "application/json"


@dataclass(frozen=True)
class ExecutionOutcome:
    """
    Result of an execute request.

    ``completed`` is True only when the request ran synchronously and the
    job finished successfully within the wait budget; the trigger then
    answers with the results instead of the status document.
    ``wait_applied`` is the wait actually granted, after the configured cap.
    """
    job: Job
    status: StatusInfo
    location: str
    completed: bool = False
    async_preferred: bool = False
    wait_applied: Optional[float] = None

    @property
    def results(self) -> Optional[Dict[str, Any]]:
        return self.job.result if self.completed else None


class OGCProcessesService:
    """
    Business logic service for OGC API - Processes.

    Collaborators default from configuration; tests inject in-memory
    stores and deterministic dispatchers instead.
    """

    def __init__(
        self,
        config: Optional[OGCProcessesConfig] = None,
        registry: Optional[ProcessRegistry] = None,
        store: Optional[JobStore] = None,
        dispatcher: Optional[JobDispatcher] = None,
        work_units: Optional[WorkUnitRegistry] = None
    ):
        self.config = config or get_processes_config()

        if self.config.backend == "memory":
            self.registry = registry or InMemoryProcessRegistry(BUILTIN_PROCESSES)
            self.store = store or InMemoryJobStore()
        else:
            self.registry = registry or LayeredProcessRegistry(
                BUILTIN_PROCESSES,
                PostgresProcessRegistry(
                    schema_name=self.config.schema_name,
                    statement_timeout_seconds=self.config.query_timeout_seconds
                )
            )
            self.store = store or PostgresJobStore(
                schema_name=self.config.schema_name,
                statement_timeout_seconds=self.config.query_timeout_seconds
            )

        self.dispatcher = dispatcher or ThreadPoolDispatcher(self.config.worker_threads)
        self.controller = JobExecutionController(
            registry=self.registry,
            store=self.store,
            dispatcher=self.dispatcher,
            work_units=work_units or builtin_work_units(),
            config=self.config
        )
        logger.info(f"OGCProcessesService initialized (backend={self.config.backend})")

    # ========================================================================
    # URL HELPERS
    # ========================================================================

    @staticmethod
    def _api(base_url: str) -> str:
        return f"{base_url}/api"

    def job_url(self, base_url: str, job_id: str) -> str:
        return f"{self._api(base_url)}/jobs/{job_id}"

    def _process_url(self, base_url: str, process_id: str) -> str:
        return f"{self._api(base_url)}/processes/{process_id}"

    # ========================================================================
    # PROCESSES
    # ========================================================================

    def list_processes(self, base_url: str, query: PageQuery) -> ProcessList:
        limit, offset = resolve_page(query, self.config.default_limit, self.config.max_limit)
        summaries, total = self.registry.list_processes(offset=offset, limit=limit)

        processes = [
            s.model_copy(update={"links": [OGCLink(
                href=self._process_url(base_url, s.id),
                rel="self",
                type=JSON,
                title="Process description"
            )]})
            for s in summaries
        ]

        page = build_page_links(f"{self._api(base_url)}/processes", query, total, limit, offset)
        return ProcessList(processes=processes, links=page.as_list())

    def get_process(self, process_id: str, base_url: str) -> Process:
        process = self.registry.get_process(process_id)
        process_url = self._process_url(base_url, process.id)
        job_filter = PageQuery(extra={"processID": process.id}).to_params(None, None)

        links = [
            OGCLink(href=process_url, rel="self", type=JSON, title="This document"),
            OGCLink(href=f"{process_url}/execution", rel=REL_EXECUTE, type=JSON,
                    title="Execute process"),
            OGCLink(href=f"{self._api(base_url)}/jobs?{urlencode(job_filter)}",
                    rel=REL_JOB_LIST, type=JSON, title="Jobs for this process"),
        ]
        return process.model_copy(update={"links": links})

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def execute(
        self,
        process_id: str,
        request: ExecuteRequest,
        base_url: str,
        prefer_async: bool = False,
        wait_seconds: Optional[float] = None
    ) -> ExecutionOutcome:
        """
        Submit a job and, when asked to, wait for it.

        Execution is asynchronous unless the client asked to wait
        (``Prefer: wait=N``), did not also ask for ``respond-async``, and the
        process advertises ``sync-execute``. A synchronous wait never exceeds
        the configured timeout; a job still running afterwards is answered
        asynchronously.
        """
        process = self.registry.get_process(process_id)

        run_sync = (
            wait_seconds is not None
            and not prefer_async
            and process.supports(JobControlOption.SYNC_EXECUTE)
        )

        timeout = None
        if run_sync:
            timeout = min(wait_seconds, self.config.sync_timeout_seconds)
            job = self.controller.execute_sync(process.id, request, timeout_seconds=timeout)
        else:
            job = self.controller.submit(process.id, request)

        return ExecutionOutcome(
            job=job,
            status=self._status_info(job, base_url),
            location=self.job_url(base_url, job.job_id),
            completed=run_sync and job.status == JobStatus.SUCCESSFUL,
            async_preferred=prefer_async and not run_sync,
            wait_applied=timeout
        )

    # ========================================================================
    # JOBS
    # ========================================================================

    @staticmethod
    def _split(value: Any) -> List[str]:
        values = value if isinstance(value, (list, tuple)) else [value]
        return [part.strip() for v in values for part in str(v).split(",") if part.strip()]

    def _job_filter(self, query: PageQuery) -> JobFilter:
        """Build the store filter from the ``processID`` and ``status`` parameters."""
        process_ids = self._split(query.extra["processID"]) if "processID" in query.extra else None

        statuses = None
        if "status" in query.extra:
            try:
                statuses = [JobStatus(s) for s in self._split(query.extra["status"])]
            except ValueError:
                allowed = ", ".join(s.value for s in JobStatus)
                raise ValidationError(f"Query parameter 'status' must be one of: {allowed}") from None

        return JobFilter(process_ids=process_ids or None, statuses=statuses or None)

    def list_jobs(self, base_url: str, query: PageQuery) -> JobList:
        limit, offset = resolve_page(query, self.config.default_limit, self.config.max_limit)
        jobs, total = self.store.list_jobs(self._job_filter(query), offset=offset, limit=limit)

        page = build_page_links(f"{self._api(base_url)}/jobs", query, total, limit, offset)
        return JobList(
            jobs=[self._status_info(job, base_url) for job in jobs],
            links=page.as_list(),
            numberMatched=total,
            numberReturned=len(jobs)
        )

    def _status_info(self, job: Job, base_url: str) -> StatusInfo:
        job_url = self.job_url(base_url, job.job_id)
        links = [OGCLink(href=job_url, rel="self", type=JSON, title="Job status")]
        if job.status == JobStatus.SUCCESSFUL:
            links.append(OGCLink(href=f"{job_url}/results", rel=REL_RESULTS, type=JSON,
                                 title="Job results"))
        return StatusInfo.from_job(job, links)

    def get_status(self, job_id: str, base_url: str) -> StatusInfo:
        return self._status_info(self.store.get(job_id), base_url)

    def get_results(self, job_id: str) -> Dict[str, Any]:
        """
        Raises:
            NoSuchJob: Unknown job
            ResultsNotReady: Job is not ``successful``
        """
        job = self.store.get(job_id)
        if job.status != JobStatus.SUCCESSFUL:
            raise ResultsNotReady(
                f"Job '{job_id}' is '{job.status.value}'; results exist only for successful jobs"
            )
        return job.result

    def dismiss(self, job_id: str) -> Job:
        """
        Cancel (best effort) and delete a job.

        Active jobs are moved to ``dismissed`` first so a running worker
        observes the cancellation; terminal jobs are deleted as they are.
        Returns the job as last seen before deletion.

        Raises:
            NoSuchJob: The job never existed or is already deleted
        """
        job = self.store.get(job_id)

        if job.status in ACTIVE_STATUSES:
            try:
                job = self.store.transition(job_id, ACTIVE_STATUSES, JobStatus.DISMISSED,
                                            message="Job dismissed")
            except InvalidTransition:
                # Worker finished first; deletion still applies
                logger.info(f"Job '{job_id}' completed before it could be dismissed")

        try:
            self.store.delete(job_id)
        except NotFound:
            # Concurrent dismiss deleted it already
            logger.info(f"Job '{job_id}' was deleted concurrently")

        logger.info(f"Dismissed job '{job_id}' (last status: {job.status.value})")
        return job

    def reap_stale_jobs(self) -> List[Job]:
        return self.controller.reap_stale_jobs()

    def shutdown(self, wait: bool = True) -> None:
        self.dispatcher.shutdown(wait=wait)


_service: Optional[OGCProcessesService] = None


def get_processes_service() -> OGCProcessesService:
    """
    Process-wide service instance.

    One instance per worker process keeps the dispatcher pool (and the
    in-memory store, when configured) shared by every trigger.
    """
    global _service

    if _service is None:
        _service = OGCProcessesService()

    return _service


def reset_processes_service(service: Optional[OGCProcessesService] = None) -> None:
    """Replace the singleton (tests); the previous dispatcher is shut down."""
    global _service

    if _service is not None and _service is not service:
        _service.shutdown(wait=False)
    _service = service
