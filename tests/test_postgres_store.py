"""
Tests for the PostgreSQL job store and process registry.

No database is needed: ``_execute_query`` and ``_get_cursor`` are replaced
with recorders returning canned rows, which is enough to check error
translation and the shape of the conditional update.
"""

from contextlib import contextmanager
from datetime import datetime, timezone

import psycopg
import pytest

from infrastructure.postgresql import PostgreSQLRepository
from ogc_processes.errors import (
    Conflict,
    InvalidTransition,
    NoSuchJob,
    NoSuchProcess,
    StorageUnavailable,
)
from ogc_processes.models import ExecuteRequest, JobStatus
from ogc_processes.registry import LayeredProcessRegistry, PostgresProcessRegistry
from ogc_processes.repository import JobFilter, PostgresJobStore
from ogc_processes.service import OGCProcessesService

from conftest import make_job

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def job_row(job_id="job-1", status="accepted", results=None):
    return {
        "job_id": job_id,
        "process_id": "echo",
        "status": status,
        "message": None,
        "progress": 0,
        "created": NOW,
        "started": None,
        "finished": None,
        "updated": NOW,
        "results": results,
    }


class RecordingQueries:
    """Stand-in for _execute_query: replays queued responses in order."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def __call__(self, query, params=None, fetch=None):
        self.calls.append((query, params, fetch))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeCursor:
    def __init__(self, results):
        self.results = list(results)
        self.executed = []
        self._current = None

    def execute(self, query, params=None):
        self.executed.append(params)
        self._current = self.results.pop(0)

    def fetchall(self):
        return self._current

    def fetchone(self):
        return self._current


@pytest.fixture(autouse=True)
def no_schema_check(monkeypatch):
    monkeypatch.setattr(PostgreSQLRepository, "_ensure_schema_exists", lambda self: None)


@pytest.fixture
def pg_store():
    return PostgresJobStore(schema_name="meta", connection_string="postgresql://test@localhost/test")


def use_cursor(monkeypatch, repo, cursor):
    @contextmanager
    def fake_cursor(conn=None):
        yield cursor

    monkeypatch.setattr(repo, "_get_cursor", fake_cursor)


class TestTransition:
    def test_single_conditional_update(self, pg_store, monkeypatch):
        queries = RecordingQueries(job_row(status="running"))
        monkeypatch.setattr(pg_store, "_execute_query", queries)

        job = pg_store.transition("job-1", {JobStatus.ACCEPTED}, JobStatus.RUNNING)

        assert job.status == JobStatus.RUNNING
        assert len(queries.calls) == 1
        _, params, fetch = queries.calls[0]
        assert fetch == "one"
        assert params[0] == "running"
        assert params[-2:] == ("job-1", ["accepted"])

    def test_lost_race_reports_invalid_transition(self, pg_store, monkeypatch):
        queries = RecordingQueries(None, job_row(status="successful", results={"value": 1}))
        monkeypatch.setattr(pg_store, "_execute_query", queries)

        with pytest.raises(InvalidTransition):
            pg_store.transition("job-1", {JobStatus.RUNNING}, JobStatus.FAILED, message="x")
        assert len(queries.calls) == 2

    def test_missing_job(self, pg_store, monkeypatch):
        monkeypatch.setattr(pg_store, "_execute_query", RecordingQueries(None, None))

        with pytest.raises(NoSuchJob):
            pg_store.transition("job-1", {JobStatus.RUNNING}, JobStatus.FAILED)

    def test_terminal_source_never_reaches_database(self, pg_store, monkeypatch):
        queries = RecordingQueries()
        monkeypatch.setattr(pg_store, "_execute_query", queries)

        with pytest.raises(InvalidTransition):
            pg_store.transition("job-1", {JobStatus.SUCCESSFUL, JobStatus.FAILED}, JobStatus.DISMISSED)
        assert queries.calls == []

    def test_success_wraps_result_as_jsonb(self, pg_store, monkeypatch):
        queries = RecordingQueries(job_row(status="successful", results={"value": 42}))
        monkeypatch.setattr(pg_store, "_execute_query", queries)

        job = pg_store.transition("job-1", {JobStatus.RUNNING}, JobStatus.SUCCESSFUL,
                                  result={"value": 42})

        assert job.result == {"value": 42}
        result_param = queries.calls[0][1][1]
        assert result_param.obj == {"value": 42}


class TestErrors:
    def test_duplicate_create_is_conflict(self, pg_store, monkeypatch):
        monkeypatch.setattr(pg_store, "_execute_query",
                            RecordingQueries(psycopg.errors.UniqueViolation("duplicate key")))
        with pytest.raises(Conflict):
            pg_store.create(make_job("job-1"))

    def test_connection_failure_is_storage_unavailable(self, pg_store, monkeypatch):
        monkeypatch.setattr(pg_store, "_execute_query",
                            RecordingQueries(psycopg.OperationalError("connection refused")))
        with pytest.raises(StorageUnavailable):
            pg_store.get("job-1")

    def test_get_missing(self, pg_store, monkeypatch):
        monkeypatch.setattr(pg_store, "_execute_query", RecordingQueries(None))
        with pytest.raises(NoSuchJob):
            pg_store.get("job-1")

    def test_delete_missing(self, pg_store, monkeypatch):
        monkeypatch.setattr(pg_store, "_execute_query", RecordingQueries(0))
        with pytest.raises(NoSuchJob):
            pg_store.delete("job-1")

    def test_heartbeat_on_finished_job(self, pg_store, monkeypatch):
        monkeypatch.setattr(pg_store, "_execute_query",
                            RecordingQueries(None, job_row(status="failed")))
        with pytest.raises(InvalidTransition):
            pg_store.heartbeat("job-1", progress=10)


def test_list_jobs_returns_page_and_total(pg_store, monkeypatch):
    cursor = FakeCursor([[job_row("a"), job_row("b")], {"count": 7}])
    use_cursor(monkeypatch, pg_store, cursor)

    jobs, total = pg_store.list_jobs(
        JobFilter(statuses=[JobStatus.ACCEPTED]), offset=2, limit=2)

    assert [j.job_id for j in jobs] == ["a", "b"]
    assert total == 7
    assert cursor.executed[0] == (["accepted"], 2, 2)
    assert cursor.executed[1] == (["accepted"],)


class TestProcessRegistry:
    @pytest.fixture
    def pg_registry(self):
        return PostgresProcessRegistry(schema_name="meta",
                                       connection_string="postgresql://test@localhost/test")

    def test_get_process(self, pg_registry, monkeypatch):
        use_cursor(monkeypatch, pg_registry, FakeCursor([{
            "id": "echo",
            "summary": {"title": "Echo", "jobControlOptions": ["async-execute"]},
            "inputs": {"value": {"schema": {}}},
            "outputs": {"value": {"schema": {}}},
        }]))

        process = pg_registry.get_process("echo")

        assert process.title == "Echo"
        assert "value" in process.inputs

    def test_unknown_process(self, pg_registry, monkeypatch):
        use_cursor(monkeypatch, pg_registry, FakeCursor([None]))
        with pytest.raises(NoSuchProcess):
            pg_registry.get_process("nope")

    def test_list(self, pg_registry, monkeypatch):
        use_cursor(monkeypatch, pg_registry, FakeCursor([
            [{"id": "a", "summary": {}}, {"id": "b", "summary": None}],
            {"count": 2},
        ]))

        summaries, total = pg_registry.list_processes(offset=0, limit=10)

        assert [s.id for s in summaries] == ["a", "b"]
        assert total == 2

    def test_dropped_connection_is_storage_unavailable(self, pg_registry, monkeypatch):
        @contextmanager
        def closed_cursor(conn=None):
            raise psycopg.InterfaceError("the connection is closed")
            yield

        monkeypatch.setattr(pg_registry, "_get_cursor", closed_cursor)

        with pytest.raises(StorageUnavailable):
            pg_registry.get_process("nope")
        with pytest.raises(StorageUnavailable):
            pg_registry.list_processes(offset=0, limit=10)


def test_postgres_backend_serves_builtins_without_seeding(config, store, dispatcher, monkeypatch):
    def no_database(*args, **kwargs):
        raise AssertionError("catalog queried for a built-in process")

    monkeypatch.setattr(PostgreSQLRepository, "_get_cursor", no_database)
    service = OGCProcessesService(config=config.model_copy(update={"backend": "postgres"}),
                                  store=store, dispatcher=dispatcher)

    assert isinstance(service.registry, LayeredProcessRegistry)
    assert service.get_process("echo", "http://localhost:7071").id == "echo"

    job = service.execute("echo", ExecuteRequest(inputs={"value": 1}), "http://localhost:7071").job
    assert job.status == JobStatus.ACCEPTED
