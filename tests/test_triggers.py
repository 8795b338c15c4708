"""End-to-end tests through the Azure Functions HTTP handlers."""

import json
from datetime import datetime, timezone

import pytest

from ogc_processes.models import JobStatus
from ogc_processes.service import OGCProcessesService
from ogc_processes.triggers import get_processes_triggers
from ogc_processes.worker import InlineDispatcher

from conftest import BASE_URL, make_request


@pytest.fixture
def routes(installed_service):
    return {t['route']: t['handler'] for t in get_processes_triggers()}


def body_of(response):
    return json.loads(response.get_body())


def execute(routes, body, headers=None, process_id="echo"):
    return routes['processes/{process_id}/execution'](make_request(
        "POST",
        f"processes/{process_id}/execution",
        route_params={"process_id": process_id},
        body=json.dumps(body).encode(),
        headers={"Content-Type": "application/json", **(headers or {})},
    ))


def get_job(routes, job_id, method="GET"):
    return routes['jobs/{job_id}'](make_request(method, f"jobs/{job_id}", route_params={"job_id": job_id}))


def get_results(routes, job_id):
    return routes['jobs/{job_id}/results'](make_request(
        "GET", f"jobs/{job_id}/results", route_params={"job_id": job_id}))


class TestExecuteScenario:
    def test_submit_poll_and_fetch_results(self, routes, dispatcher):
        response = execute(routes, {"inputs": {"value": 42}})

        assert response.status_code == 202
        body = body_of(response)
        job_id = body["jobID"]
        assert body["status"] == "accepted"
        assert response.headers["Location"] == f"{BASE_URL}/api/jobs/{job_id}"

        polled = body_of(get_job(routes, job_id))
        assert polled["status"] in ("accepted", "running")
        assert "results" not in polled and "result" not in polled

        dispatcher.run_all()

        status = body_of(get_job(routes, job_id))
        assert status["status"] == "successful"
        results = get_results(routes, job_id)
        assert results.status_code == 200
        assert body_of(results) == {"value": 42}

    def test_results_while_running_conflict(self, routes, store, dispatcher):
        job_id = body_of(execute(routes, {"inputs": {"value": 42}}))["jobID"]
        store.transition(job_id, {JobStatus.ACCEPTED}, JobStatus.RUNNING)

        response = get_results(routes, job_id)

        assert response.status_code == 409
        assert body_of(response)["type"].endswith("/result-not-ready")

    def test_unserializable_result_is_a_failed_job(self, routes, work_units, dispatcher):
        work_units.register("echo", lambda context: {"when": datetime.now(timezone.utc)})
        job_id = body_of(execute(routes, {"inputs": {"value": 1}}))["jobID"]
        dispatcher.run_all()

        assert body_of(get_job(routes, job_id))["status"] == "failed"
        assert get_results(routes, job_id).status_code == 409

    def test_respond_async_is_acknowledged(self, routes):
        response = execute(routes, {"inputs": {"value": 1}}, headers={"Prefer": "respond-async"})
        assert response.status_code == 202
        assert response.headers["Preference-Applied"] == "respond-async"

    def test_unknown_process(self, routes):
        response = execute(routes, {"inputs": {}}, process_id="nope")
        assert response.status_code == 404
        assert body_of(response)["type"].endswith("/no-such-process")

    def test_invalid_json(self, routes):
        request = make_request("POST", "processes/echo/execution",
                               route_params={"process_id": "echo"}, body=b"{not json")
        response = routes['processes/{process_id}/execution'](request)
        assert response.status_code == 400

    def test_missing_input(self, routes):
        response = execute(routes, {"inputs": {}})
        assert response.status_code == 400
        assert body_of(response)["code"] == "BadRequest"


class TestSynchronousExecute:
    @pytest.fixture
    def inline_routes(self, config, registry, store, work_units):
        from ogc_processes.service import reset_processes_service

        reset_processes_service(OGCProcessesService(
            config=config, registry=registry, store=store,
            dispatcher=InlineDispatcher(), work_units=work_units
        ))
        yield {t['route']: t['handler'] for t in get_processes_triggers()}
        reset_processes_service(None)

    def test_wait_returns_results(self, inline_routes):
        response = execute(inline_routes, {"inputs": {"value": "now"}}, headers={"Prefer": "wait=5"})

        assert response.status_code == 200
        assert body_of(response) == {"value": "now"}
        assert response.headers["Location"].startswith(f"{BASE_URL}/api/jobs/")
        assert response.headers["Preference-Applied"] == "wait=5"

    def test_applied_wait_is_capped_by_configured_timeout(self, inline_routes):
        response = execute(inline_routes, {"inputs": {"value": 1}}, headers={"Prefer": "wait=30"})

        assert response.status_code == 200
        assert response.headers["Preference-Applied"] == "wait=2"

    def test_job_dismissed_during_wait_is_not_404(self, inline_routes, store, work_units):
        work_units.register("echo", lambda context: store.delete(context.job_id) or {})

        response = execute(inline_routes, {"inputs": {"value": 1}}, headers={"Prefer": "wait=5"})

        assert response.status_code == 202
        assert body_of(response)["status"] == "dismissed"


class TestDismiss:
    def test_dismiss_then_not_found(self, routes):
        job_id = body_of(execute(routes, {"inputs": {"value": 42}}))["jobID"]

        response = get_job(routes, job_id, method="DELETE")
        assert response.status_code == 204

        assert get_job(routes, job_id).status_code == 404

    def test_dismiss_unknown_job(self, routes):
        response = get_job(routes, "never-existed", method="DELETE")
        assert response.status_code == 404
        assert body_of(response)["type"].endswith("/no-such-job")


class TestListings:
    def test_job_page(self, routes, seeded_jobs):
        response = routes['jobs'](make_request("GET", "jobs", params={"limit": "10", "offset": "10"}))

        assert response.status_code == 200
        body = body_of(response)
        assert len(body["jobs"]) == 10
        links = {link["rel"]: link["href"] for link in body["links"]}
        assert links["prev"] == f"{BASE_URL}/api/jobs?limit=10&offset=0"
        assert links["next"] == f"{BASE_URL}/api/jobs?limit=10&offset=20"

    def test_bad_limit(self, routes):
        response = routes['processes'](make_request("GET", "processes", params={"limit": "abc"}))
        assert response.status_code == 400

    def test_process_description_uses_schema_key(self, routes):
        response = routes['processes/{process_id}'](make_request(
            "GET", "processes/echo", route_params={"process_id": "echo"}))

        assert response.status_code == 200
        assert "schema" in body_of(response)["inputs"]["value"]


class TestApiRoot:
    def test_landing_page(self, routes):
        body = body_of(routes['ogc'](make_request("GET", "ogc")))
        hrefs = {link["href"] for link in body["links"]}
        assert f"{BASE_URL}/api/processes" in hrefs
        assert f"{BASE_URL}/api/jobs" in hrefs

    def test_conformance(self, routes):
        body = body_of(routes['ogc/conformance'](make_request("GET", "ogc/conformance")))
        assert "http://www.opengis.net/spec/ogcapi-processes-1/1.0/conf/dismiss" in body["conformsTo"]


def test_storage_failure_is_503(routes, store, monkeypatch):
    from ogc_processes.errors import StorageUnavailable

    def unavailable(*args, **kwargs):
        raise StorageUnavailable("Job store unavailable: OperationalError")

    monkeypatch.setattr(store, "get", unavailable)
    response = get_job(routes, "any")

    assert response.status_code == 503
    assert body_of(response)["code"] == "ServiceUnavailable"
