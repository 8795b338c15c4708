# ============================================================================
# CLAUDE CONTEXT - JOB STORE
# ============================================================================
# STATUS: Standalone Repository - Persisted job lifecycle
# PURPOSE: Sole writer of job records; atomic conditional status transitions
# EXPORTS: JobStore, JobFilter, InMemoryJobStore, PostgresJobStore
# DEPENDENCIES: psycopg, psycopg.sql, pydantic, threading
# SOURCE: {schema}.jobs table, or process memory for local development/tests
# SCOPE: create / get / list / transition / heartbeat / delete / list_stale
# VALIDATION: Transition table (models.ALLOWED_TRANSITIONS), Job invariants
# PATTERNS: Repository Pattern, Compare-and-swap update, SQL Composition
# ============================================================================

"""
Job Store

Every status change goes through ``transition(job_id, allowed_from, to)``,
a single compare-and-swap: it succeeds only when the job's current status is
in ``allowed_from`` at the moment of the write. Two concurrent callers (a
worker finishing and a client dismissing) can therefore never both win.

PostgreSQL implementation:
    UPDATE ... WHERE job_id = %s AND status = ANY(%s) RETURNING *
An empty RETURNING set is followed by an existence check only to choose
between NoSuchJob and InvalidTransition; the check never decides the write.

In-memory implementation:
    A dict guarded by one lock. Records are immutable pydantic models, so
    nothing handed out to callers aliases stored state.
"""

import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple

import psycopg
from psycopg import sql
from psycopg.types.json import Jsonb
from pydantic import BaseModel

from infrastructure.postgresql import PostgreSQLRepository
from util_logger import LoggerFactory, ComponentType

from .errors import Conflict, InvalidTransition, NoSuchJob, storage_errors
from .models import ACTIVE_STATUSES, ALLOWED_TRANSITIONS, Job, JobStatus

logger = LoggerFactory.create_logger(ComponentType.REPOSITORY, "JobStore")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobFilter(BaseModel):
    """Restrictions for job listing (OGC job-list ``processID`` / ``status``)."""
    process_ids: Optional[List[str]] = None
    statuses: Optional[List[JobStatus]] = None


class JobStore(ABC):
    """
    Contract shared by all job store implementations.

    Errors:
        NoSuchJob: record absent
        Conflict: duplicate job id on create
        InvalidTransition: conditional update lost, or target unreachable
        StorageUnavailable: backing store I/O failure
    """

    @abstractmethod
    def create(self, job: Job) -> Job:
        """Insert a new record; the job must be ``accepted``."""

    @abstractmethod
    def get(self, job_id: str) -> Job:
        """Fetch one record."""

    @abstractmethod
    def list_jobs(self, job_filter: Optional[JobFilter], offset: int,
                  limit: int) -> Tuple[List[Job], int]:
        """One page ordered by (created, job_id) ascending, plus total matches."""

    @abstractmethod
    def transition(self, job_id: str, allowed_from: Iterable[JobStatus],
                   to_status: JobStatus, message: Optional[str] = None,
                   result: Optional[Dict[str, Any]] = None,
                   progress: Optional[int] = None) -> Job:
        """Atomically move the job to ``to_status`` if its status is in ``allowed_from``."""

    @abstractmethod
    def heartbeat(self, job_id: str, progress: Optional[int] = None,
                  message: Optional[str] = None) -> Job:
        """Touch a running job. InvalidTransition once it is no longer running."""

    @abstractmethod
    def delete(self, job_id: str) -> None:
        """Remove the record regardless of status."""

    @abstractmethod
    def list_stale(self, older_than: datetime) -> List[Job]:
        """Active jobs whose last update is older than ``older_than``."""

    # ------------------------------------------------------------------
    # Shared validation
    # ------------------------------------------------------------------

    @staticmethod
    def _effective_sources(job_id: str, allowed_from: Iterable[JobStatus],
                           to_status: JobStatus, result: Optional[Dict[str, Any]]) -> List[JobStatus]:
        """
        Narrow ``allowed_from`` to the states that can actually reach
        ``to_status``. Terminal states never survive this filter.
        """
        if result is not None and to_status != JobStatus.SUCCESSFUL:
            raise ValueError(f"Only a successful job carries a result (got '{to_status.value}')")

        sources = [JobStatus(s) for s in allowed_from]
        effective = [s for s in sources if to_status in ALLOWED_TRANSITIONS[s]]
        if not effective:
            raise InvalidTransition(
                f"Job '{job_id}' cannot move to '{to_status.value}' from "
                f"{sorted(s.value for s in sources) or 'no state'}"
            )
        return effective

    @staticmethod
    def _timestamps_for(to_status: JobStatus, now: datetime) -> Dict[str, datetime]:
        stamps = {"updated": now}
        if to_status == JobStatus.RUNNING:
            stamps["started"] = now
        if to_status.is_terminal:
            stamps["finished"] = now
        return stamps


# ============================================================================
# IN-MEMORY STORE
# ============================================================================

class InMemoryJobStore(JobStore):
    """Process-local store. One lock serialises every read-modify-write."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(self, job: Job) -> Job:
        if job.status != JobStatus.ACCEPTED:
            raise ValueError(f"New jobs start as 'accepted', got '{job.status.value}'")
        if job.updated is None:
            job = job.model_copy(update={"updated": job.created})

        with self._lock:
            if job.job_id in self._jobs:
                raise Conflict(f"Job '{job.job_id}' already exists")
            self._jobs[job.job_id] = job
        return job

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise NoSuchJob(f"Job '{job_id}' not found")
        return job

    def list_jobs(self, job_filter: Optional[JobFilter], offset: int,
                  limit: int) -> Tuple[List[Job], int]:
        with self._lock:
            jobs = list(self._jobs.values())

        if job_filter and job_filter.process_ids:
            jobs = [j for j in jobs if j.process_id in job_filter.process_ids]
        if job_filter and job_filter.statuses:
            jobs = [j for j in jobs if j.status in job_filter.statuses]

        jobs.sort(key=lambda j: (j.created, j.job_id))
        return jobs[offset:offset + limit], len(jobs)

    def transition(self, job_id: str, allowed_from: Iterable[JobStatus],
                   to_status: JobStatus, message: Optional[str] = None,
                   result: Optional[Dict[str, Any]] = None,
                   progress: Optional[int] = None) -> Job:
        to_status = JobStatus(to_status)
        sources = self._effective_sources(job_id, allowed_from, to_status, result)
        if to_status == JobStatus.SUCCESSFUL and result is None:
            result = {}

        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise NoSuchJob(f"Job '{job_id}' not found")
            if current.status not in sources:
                raise InvalidTransition(
                    f"Job '{job_id}' is '{current.status.value}', expected one of "
                    f"{sorted(s.value for s in sources)}"
                )

            values = current.model_dump()
            values.update(self._timestamps_for(to_status, _utcnow()))
            values["status"] = to_status
            values["result"] = result
            if message is not None:
                values["message"] = message
            if progress is not None:
                values["progress"] = progress
            elif to_status == JobStatus.SUCCESSFUL:
                values["progress"] = 100

            updated = Job(**values)
            self._jobs[job_id] = updated
        return updated

    def heartbeat(self, job_id: str, progress: Optional[int] = None,
                  message: Optional[str] = None) -> Job:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                raise NoSuchJob(f"Job '{job_id}' not found")
            if current.status != JobStatus.RUNNING:
                raise InvalidTransition(f"Job '{job_id}' is '{current.status.value}', not running")

            changes: Dict[str, Any] = {"updated": _utcnow()}
            if progress is not None:
                changes["progress"] = progress
            if message is not None:
                changes["message"] = message
            updated = Job(**{**current.model_dump(), **changes})
            self._jobs[job_id] = updated
        return updated

    def delete(self, job_id: str) -> None:
        with self._lock:
            if self._jobs.pop(job_id, None) is None:
                raise NoSuchJob(f"Job '{job_id}' not found")

    def list_stale(self, older_than: datetime) -> List[Job]:
        with self._lock:
            jobs = list(self._jobs.values())
        return sorted(
            (j for j in jobs if j.status in ACTIVE_STATUSES and (j.updated or j.created) < older_than),
            key=lambda j: (j.created, j.job_id)
        )


# ============================================================================
# POSTGRESQL STORE
# ============================================================================

JOB_COLUMNS = (
    "job_id", "process_id", "status", "message", "progress",
    "created", "started", "finished", "updated", "results"
)


class PostgresJobStore(PostgreSQLRepository, JobStore):
    """
    Job store backed by ``{schema}.jobs``.

    Table layout (see sql/processes_schema.sql):
        job_id      text primary key
        process_id  text not null
        status      text not null
        message     text
        progress    integer
        created     timestamptz not null
        started     timestamptz
        finished    timestamptz
        updated     timestamptz not null
        results     jsonb
    """

    def __init__(self, schema_name: str = "meta",
                 connection_string: Optional[str] = None,
                 statement_timeout_seconds: Optional[int] = None):
        super().__init__(
            connection_string=connection_string,
            schema_name=schema_name,
            statement_timeout_seconds=statement_timeout_seconds
        )

    @property
    def _jobs_table(self) -> sql.Composed:
        return self._table("jobs")

    def _returning(self) -> sql.Composed:
        return sql.SQL(", ").join(sql.Identifier(c) for c in JOB_COLUMNS)

    @staticmethod
    def _row_to_job(row: Dict[str, Any]) -> Job:
        return Job(
            job_id=row["job_id"],
            process_id=row["process_id"],
            status=JobStatus(row["status"]),
            message=row.get("message"),
            progress=row.get("progress"),
            created=row["created"],
            started=row.get("started"),
            finished=row.get("finished"),
            updated=row.get("updated"),
            result=row.get("results")
        )

    # ------------------------------------------------------------------

    def create(self, job: Job) -> Job:
        if job.status != JobStatus.ACCEPTED:
            raise ValueError(f"New jobs start as 'accepted', got '{job.status.value}'")

        query = sql.SQL("""
            INSERT INTO {table} (job_id, process_id, status, message, progress, created, updated)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING {columns}
        """).format(table=self._jobs_table, columns=self._returning())
        params = (
            job.job_id, job.process_id, job.status.value, job.message,
            job.progress, job.created, job.updated or job.created
        )

        try:
            with storage_errors("Job store", "create", logger):
                row = self._execute_query(query, params, fetch='one')
        except psycopg.errors.UniqueViolation as e:
            raise Conflict(f"Job '{job.job_id}' already exists") from e

        logger.info(f"Created job '{job.job_id}' for process '{job.process_id}'")
        return self._row_to_job(row)

    def get(self, job_id: str) -> Job:
        query = sql.SQL("SELECT {columns} FROM {table} WHERE job_id = %s").format(
            columns=self._returning(), table=self._jobs_table
        )
        with storage_errors("Job store", "get", logger):
            row = self._execute_query(query, (job_id,), fetch='one')
        if not row:
            raise NoSuchJob(f"Job '{job_id}' not found")
        return self._row_to_job(row)

    def list_jobs(self, job_filter: Optional[JobFilter], offset: int,
                  limit: int) -> Tuple[List[Job], int]:
        conditions: List[sql.Composable] = []
        params: List[Any] = []
        if job_filter and job_filter.process_ids:
            conditions.append(sql.SQL("process_id = ANY(%s)"))
            params.append(list(job_filter.process_ids))
        if job_filter and job_filter.statuses:
            conditions.append(sql.SQL("status = ANY(%s)"))
            params.append([s.value for s in job_filter.statuses])

        where = sql.SQL("WHERE ") + sql.SQL(" AND ").join(conditions) if conditions else sql.SQL("")

        page_query = sql.SQL("""
            SELECT {columns} FROM {table} {where}
            ORDER BY created ASC, job_id ASC
            LIMIT %s OFFSET %s
        """).format(columns=self._returning(), table=self._jobs_table, where=where)
        count_query = sql.SQL("SELECT COUNT(*) AS count FROM {table} {where}").format(
            table=self._jobs_table, where=where
        )

        with storage_errors("Job store", "list", logger):
            with self._get_cursor() as cur:
                cur.execute(page_query, tuple(params) + (limit, offset))
                rows = cur.fetchall()
                cur.execute(count_query, tuple(params))
                total = cur.fetchone()["count"]

        return [self._row_to_job(r) for r in rows], total

    def transition(self, job_id: str, allowed_from: Iterable[JobStatus],
                   to_status: JobStatus, message: Optional[str] = None,
                   result: Optional[Dict[str, Any]] = None,
                   progress: Optional[int] = None) -> Job:
        to_status = JobStatus(to_status)
        sources = self._effective_sources(job_id, allowed_from, to_status, result)
        if to_status == JobStatus.SUCCESSFUL:
            result = result if result is not None else {}
            progress = progress if progress is not None else 100

        stamps = self._timestamps_for(to_status, _utcnow())
        assignments = [
            sql.SQL("status = %s"),
            sql.SQL("results = %s"),
            sql.SQL("message = COALESCE(%s, message)"),
            sql.SQL("progress = COALESCE(%s, progress)"),
        ]
        params: List[Any] = [
            to_status.value,
            Jsonb(result) if result is not None else None,
            message,
            progress,
        ]
        for column, value in stamps.items():
            assignments.append(sql.SQL("{} = %s").format(sql.Identifier(column)))
            params.append(value)

        query = sql.SQL("""
            UPDATE {table} SET {assignments}
            WHERE job_id = %s AND status = ANY(%s)
            RETURNING {columns}
        """).format(
            table=self._jobs_table,
            assignments=sql.SQL(", ").join(assignments),
            columns=self._returning()
        )
        params.extend([job_id, [s.value for s in sources]])

        with storage_errors("Job store", "transition", logger):
            row = self._execute_query(query, tuple(params), fetch='one')

        if row:
            logger.debug(f"Job '{job_id}' -> {to_status.value}")
            return self._row_to_job(row)

        current = self.get(job_id)
        raise InvalidTransition(
            f"Job '{job_id}' is '{current.status.value}', expected one of "
            f"{sorted(s.value for s in sources)}"
        )

    def heartbeat(self, job_id: str, progress: Optional[int] = None,
                  message: Optional[str] = None) -> Job:
        query = sql.SQL("""
            UPDATE {table}
            SET updated = %s,
                progress = COALESCE(%s, progress),
                message = COALESCE(%s, message)
            WHERE job_id = %s AND status = %s
            RETURNING {columns}
        """).format(table=self._jobs_table, columns=self._returning())

        with storage_errors("Job store", "heartbeat", logger):
            row = self._execute_query(
                query,
                (_utcnow(), progress, message, job_id, JobStatus.RUNNING.value),
                fetch='one'
            )
        if row:
            return self._row_to_job(row)

        current = self.get(job_id)
        raise InvalidTransition(f"Job '{job_id}' is '{current.status.value}', not running")

    def delete(self, job_id: str) -> None:
        query = sql.SQL("DELETE FROM {table} WHERE job_id = %s").format(table=self._jobs_table)
        with storage_errors("Job store", "delete", logger):
            deleted = self._execute_query(query, (job_id,))
        if not deleted:
            raise NoSuchJob(f"Job '{job_id}' not found")
        logger.info(f"Deleted job '{job_id}'")

    def list_stale(self, older_than: datetime) -> List[Job]:
        query = sql.SQL("""
            SELECT {columns} FROM {table}
            WHERE status = ANY(%s) AND updated < %s
            ORDER BY created ASC, job_id ASC
        """).format(columns=self._returning(), table=self._jobs_table)

        with storage_errors("Job store", "list_stale", logger):
            rows = self._execute_query(
                query,
                ([s.value for s in ACTIVE_STATUSES], older_than),
                fetch='all'
            )
        return [self._row_to_job(r) for r in rows]
