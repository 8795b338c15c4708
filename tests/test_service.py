"""Tests for the job lifecycle service."""

import pytest

from ogc_processes.errors import NoSuchJob, NoSuchProcess, ResultsNotReady, ValidationError
from ogc_processes.links import PageQuery
from ogc_processes.models import (
    REL_EXECUTE,
    REL_JOB_LIST,
    REL_RESULTS,
    ExecuteRequest,
    JobStatus,
    Process,
)
from ogc_processes.registry import InMemoryProcessRegistry
from ogc_processes.service import OGCProcessesService
from ogc_processes.worker import InlineDispatcher

from conftest import BASE_URL

REQUEST = ExecuteRequest(inputs={"value": 42})


def rels(links):
    return {link.rel: link.href for link in links}


@pytest.fixture
def inline_service(config, registry, store, work_units):
    return OGCProcessesService(config=config, registry=registry, store=store,
                               dispatcher=InlineDispatcher(), work_units=work_units)


class TestProcesses:
    def test_list_is_ordered_and_linked(self, service):
        listing = service.list_processes(BASE_URL, PageQuery())

        assert [p.id for p in listing.processes] == ["echo", "fail", "unimplemented"]
        assert rels(listing.processes[0].links)["self"] == f"{BASE_URL}/api/processes/echo"
        assert set(rels(listing.links)) == {"self"}

    def test_list_pages(self, service):
        listing = service.list_processes(BASE_URL, PageQuery(limit=2))
        assert len(listing.processes) == 2
        assert "next" in rels(listing.links)

    def test_description_links(self, service):
        process = service.get_process("echo", BASE_URL)
        links = rels(process.links)
        assert links[REL_EXECUTE] == f"{BASE_URL}/api/processes/echo/execution"
        assert "value" in process.inputs

    def test_job_list_link_encodes_process_id(self, config, store, dispatcher, work_units):
        odd = Process(id="clip & buffer", title="Odd id")
        service = OGCProcessesService(config=config, registry=InMemoryProcessRegistry([odd]),
                                      store=store, dispatcher=dispatcher, work_units=work_units)

        links = rels(service.get_process("clip & buffer", BASE_URL).links)

        assert links[REL_JOB_LIST] == f"{BASE_URL}/api/jobs?processID=clip+%26+buffer"

    def test_unknown_process(self, service):
        with pytest.raises(NoSuchProcess):
            service.get_process("nope", BASE_URL)


class TestExecute:
    def test_default_is_asynchronous(self, service):
        outcome = service.execute("echo", REQUEST, BASE_URL)

        assert not outcome.completed
        assert outcome.results is None
        assert outcome.status.status == JobStatus.ACCEPTED
        assert outcome.location == f"{BASE_URL}/api/jobs/{outcome.job.job_id}"

    def test_wait_runs_synchronously(self, inline_service):
        outcome = inline_service.execute("echo", REQUEST, BASE_URL, wait_seconds=5)

        assert outcome.completed
        assert outcome.results == {"value": 42}

    def test_respond_async_wins_over_wait(self, inline_service):
        outcome = inline_service.execute("echo", REQUEST, BASE_URL,
                                         prefer_async=True, wait_seconds=5)
        assert not outcome.completed
        assert outcome.async_preferred

    def test_wait_ignored_without_sync_support(self, inline_service):
        outcome = inline_service.execute("fail", ExecuteRequest(), BASE_URL, wait_seconds=5)
        assert not outcome.completed
        assert outcome.job.status == JobStatus.ACCEPTED

    def test_failed_sync_job_is_not_completed(self, inline_service, registry, store, work_units):
        work_units.register("echo", lambda context: 1 / 0)
        outcome = inline_service.execute("echo", REQUEST, BASE_URL, wait_seconds=5)

        assert not outcome.completed
        assert outcome.job.status == JobStatus.FAILED


class TestStatusAndResults:
    def test_status_has_no_result_and_no_results_link(self, service):
        job = service.execute("echo", REQUEST, BASE_URL).job
        status = service.get_status(job.job_id, BASE_URL)

        assert status.status == JobStatus.ACCEPTED
        assert "result" not in status.model_dump()
        assert REL_RESULTS not in rels(status.links)

    def test_results_after_success(self, service, dispatcher):
        job = service.execute("echo", REQUEST, BASE_URL).job
        dispatcher.run_all()

        status = service.get_status(job.job_id, BASE_URL)
        assert status.status == JobStatus.SUCCESSFUL
        assert rels(status.links)[REL_RESULTS] == f"{BASE_URL}/api/jobs/{job.job_id}/results"
        assert service.get_results(job.job_id) == {"value": 42}

    def test_results_not_ready_while_running(self, service, running_job):
        with pytest.raises(ResultsNotReady):
            service.get_results(running_job.job_id)

    def test_results_not_available_for_failed_job(self, service, dispatcher):
        job = service.execute("fail", ExecuteRequest(), BASE_URL).job
        dispatcher.run_all()
        with pytest.raises(ResultsNotReady):
            service.get_results(job.job_id)

    def test_unknown_job(self, service):
        with pytest.raises(NoSuchJob):
            service.get_status("missing", BASE_URL)
        with pytest.raises(NoSuchJob):
            service.get_results("missing")


class TestDismiss:
    def test_accepted_job_is_deleted(self, service, store):
        job = service.execute("echo", REQUEST, BASE_URL).job

        dismissed = service.dismiss(job.job_id)

        assert dismissed.status == JobStatus.DISMISSED
        with pytest.raises(NoSuchJob):
            store.get(job.job_id)

    def test_finished_job_is_deleted_without_error(self, service, store, dispatcher):
        job = service.execute("echo", REQUEST, BASE_URL).job
        dispatcher.run_all()

        assert service.dismiss(job.job_id).status == JobStatus.SUCCESSFUL
        with pytest.raises(NoSuchJob):
            store.get(job.job_id)

    def test_second_dismiss_is_not_found(self, service):
        job = service.execute("echo", REQUEST, BASE_URL).job
        service.dismiss(job.job_id)
        with pytest.raises(NoSuchJob):
            service.dismiss(job.job_id)

    def test_worker_after_dismiss_leaves_nothing_behind(self, service, store, dispatcher):
        job = service.execute("echo", REQUEST, BASE_URL).job
        service.dismiss(job.job_id)
        dispatcher.run_all()

        with pytest.raises(NoSuchJob):
            store.get(job.job_id)


class TestJobList:
    def test_middle_page(self, service, seeded_jobs):
        listing = service.list_jobs(BASE_URL, PageQuery.from_params({"limit": "10", "offset": "10"}))

        assert listing.numberMatched == 25
        assert listing.numberReturned == 10
        assert [j.jobID for j in listing.jobs] == [f"job-{i:02d}" for i in range(10, 20)]
        links = rels(listing.links)
        assert links["prev"] == f"{BASE_URL}/api/jobs?limit=10&offset=0"
        assert links["next"] == f"{BASE_URL}/api/jobs?limit=10&offset=20"

    def test_filters(self, service, store, seeded_jobs):
        store.transition("job-04", {JobStatus.ACCEPTED}, JobStatus.RUNNING)
        store.transition("job-05", {JobStatus.ACCEPTED}, JobStatus.RUNNING)

        listing = service.list_jobs(BASE_URL, PageQuery.from_params({"status": "running,failed"}))
        assert [j.jobID for j in listing.jobs] == ["job-04", "job-05"]
        assert rels(listing.links)["self"] == f"{BASE_URL}/api/jobs?status=running%2Cfailed"

        listing = service.list_jobs(BASE_URL, PageQuery.from_params({"processID": "fail"}))
        assert listing.numberMatched == 0

    def test_unknown_status_filter(self, service):
        with pytest.raises(ValidationError):
            service.list_jobs(BASE_URL, PageQuery.from_params({"status": "paused"}))

    def test_listing_never_carries_results(self, service, dispatcher):
        service.execute("echo", REQUEST, BASE_URL)
        dispatcher.run_all()

        listing = service.list_jobs(BASE_URL, PageQuery())
        assert all("result" not in j.model_dump() for j in listing.jobs)


def test_reap_delegates_to_controller(service, store):
    assert service.reap_stale_jobs() == []
