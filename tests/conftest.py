"""
Shared fixtures for the job engine tests.

Everything runs on the in-memory registry and job store. Work is dispatched
through ``QueuedDispatcher`` so tests decide exactly when a worker runs.
"""

import os

os.environ.setdefault("OGC_PROCESSES_BACKEND", "memory")

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Tuple
from urllib.parse import urlencode

import azure.functions as func
import pytest

from ogc_processes.builtins import BUILTIN_PROCESSES, builtin_work_units
from ogc_processes.config import OGCProcessesConfig
from ogc_processes.controller import JobExecutionController
from ogc_processes.models import Job, JobControlOption, JobStatus, Process
from ogc_processes.registry import InMemoryProcessRegistry
from ogc_processes.repository import InMemoryJobStore
from ogc_processes.service import OGCProcessesService, reset_processes_service
from ogc_processes.worker import JobDispatcher, JobHandler, JobMessage

BASE_URL = "http://localhost:7071"


# =============================================================================
# Test doubles
# =============================================================================


class QueuedDispatcher(JobDispatcher):
    """Holds dispatched jobs until the test runs them."""

    def __init__(self):
        self.queue: List[Tuple[JobMessage, JobHandler]] = []

    def dispatch(self, message: JobMessage, handler: JobHandler) -> None:
        self.queue.append((message, handler))

    def run_next(self) -> JobMessage:
        message, handler = self.queue.pop(0)
        handler(message)
        return message

    def run_all(self) -> int:
        count = 0
        while self.queue:
            self.run_next()
            count += 1
        return count


class BrokenDispatcher(JobDispatcher):
    """Dispatcher whose executor is already shut down."""

    def dispatch(self, message: JobMessage, handler: JobHandler) -> None:
        raise RuntimeError("cannot schedule new futures after shutdown")


FAIL_PROCESS = Process(
    id="fail",
    title="Always fails",
    jobControlOptions=[JobControlOption.ASYNC_EXECUTE, JobControlOption.DISMISS],
)

UNIMPLEMENTED_PROCESS = Process(
    id="unimplemented",
    title="Catalogued without a work unit",
)


def fail_unit(context):
    raise RuntimeError("boom")


def make_job(job_id: str, process_id: str = "echo", created: Optional[datetime] = None) -> Job:
    created = created or datetime.now(timezone.utc)
    return Job(job_id=job_id, process_id=process_id, created=created, updated=created)


def make_request(
    method: str,
    route: str,
    route_params: Optional[dict] = None,
    params: Optional[dict] = None,
    body: bytes = b"",
    headers: Optional[dict] = None,
) -> func.HttpRequest:
    url = f"{BASE_URL}/api/{route}"
    if params:
        url = f"{url}?{urlencode(params)}"
    return func.HttpRequest(
        method=method,
        url=url,
        headers=headers or {},
        params=params or {},
        route_params=route_params or {},
        body=body,
    )


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def config():
    return OGCProcessesConfig(
        backend="memory",
        base_url=None,
        default_limit=10,
        max_limit=100,
        worker_threads=2,
        sync_timeout_seconds=2,
        sync_poll_interval_seconds=0.01,
        job_lease_seconds=60,
    )


@pytest.fixture
def store():
    return InMemoryJobStore()


@pytest.fixture
def registry():
    return InMemoryProcessRegistry(BUILTIN_PROCESSES + (FAIL_PROCESS, UNIMPLEMENTED_PROCESS))


@pytest.fixture
def work_units():
    units = builtin_work_units()
    units.register("fail", fail_unit)
    return units


@pytest.fixture
def dispatcher():
    return QueuedDispatcher()


@pytest.fixture
def controller(registry, store, dispatcher, work_units, config):
    return JobExecutionController(registry, store, dispatcher, work_units, config)


@pytest.fixture
def service(config, registry, store, dispatcher, work_units):
    return OGCProcessesService(
        config=config,
        registry=registry,
        store=store,
        dispatcher=dispatcher,
        work_units=work_units,
    )


@pytest.fixture
def installed_service(service):
    """The service the HTTP triggers resolve for the duration of a test."""
    reset_processes_service(service)
    yield service
    reset_processes_service(None)


@pytest.fixture
def seeded_jobs(store):
    """25 accepted echo jobs, one second apart."""
    start = datetime(2026, 1, 1, tzinfo=timezone.utc)
    return [
        store.create(make_job(f"job-{i:02d}", created=start + timedelta(seconds=i)))
        for i in range(25)
    ]


@pytest.fixture
def running_job(store):
    job = store.create(make_job("running-job"))
    return store.transition(job.job_id, {JobStatus.ACCEPTED}, JobStatus.RUNNING)
