# ============================================================================
# CLAUDE CONTEXT - OGC PROCESSES TRIGGERS
# ============================================================================
# STATUS: Standalone HTTP Triggers - OGC API - Processes endpoints
# PURPOSE: Azure Functions HTTP triggers for the job lifecycle surface
# EXPORTS: get_processes_triggers (returns list of trigger configurations)
# INTERFACES: Azure Functions HttpRequest/HttpResponse
# PYDANTIC_MODELS: ExecuteRequest (request body), PageQuery (query string)
# DEPENDENCIES: azure.functions, pydantic, json, logging
# SOURCE: HTTP requests from clients
# SCOPE: HTTP endpoint handlers for OGC API - Processes
# VALIDATION: Query parameter parsing, execute body shape
# PATTERNS: Trigger Pattern, Factory Pattern (get_processes_triggers)
# ENTRY_POINTS: Function App route registration via get_processes_triggers()
# ============================================================================

"""
OGC API - Processes HTTP Triggers - Azure Functions Handlers

Endpoints:
- GET    /api/ogc                              - Landing page
- GET    /api/ogc/conformance                  - Conformance classes
- GET    /api/processes                        - List processes (paginated)
- GET    /api/processes/{process_id}           - Process description
- POST   /api/processes/{process_id}/execution - Execute (202 + Location)
- GET    /api/jobs                             - List jobs (paginated, filterable)
- GET    /api/jobs/{job_id}                    - Job status
- DELETE /api/jobs/{job_id}                    - Dismiss job (204)
- GET    /api/jobs/{job_id}/results            - Job results

Each trigger parses the request, calls the service and serialises the
answer. Errors from the job engine carry their own HTTP status and code,
so every handler shares one error path in ``BaseProcessesTrigger.handle``.

Execution preferences (RFC 7240 ``Prefer`` header):
- ``respond-async``  always answer 202 with the job status
- ``wait=N``         run synchronously for up to N seconds (capped by config)
                     when the process supports sync-execute
"""

import azure.functions as func
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from .config import get_processes_config
from .errors import OGCProcessesError, ValidationError
from .links import PageQuery
from .models import ExecuteRequest
from .service import OGCProcessesService, get_processes_service

logger = logging.getLogger(__name__)


# ============================================================================
# TRIGGER REGISTRY FUNCTION
# ============================================================================

def get_processes_triggers() -> List[Dict[str, Any]]:
    """
    Get list of OGC API - Processes trigger configurations for function_app.py.

    Returns:
        List of dicts with keys:
        - route: URL route pattern
        - methods: List of HTTP methods
        - handler: Callable trigger handler
    """
    return [
        {
            'route': 'ogc',
            'methods': ['GET'],
            'handler': LandingPageTrigger().handle
        },
        {
            'route': 'ogc/conformance',
            'methods': ['GET'],
            'handler': ConformanceTrigger().handle
        },
        {
            'route': 'processes',
            'methods': ['GET'],
            'handler': ProcessListTrigger().handle
        },
        {
            'route': 'processes/{process_id}',
            'methods': ['GET'],
            'handler': ProcessDescriptionTrigger().handle
        },
        {
            'route': 'processes/{process_id}/execution',
            'methods': ['POST'],
            'handler': ExecuteTrigger().handle
        },
        {
            'route': 'jobs',
            'methods': ['GET'],
            'handler': JobListTrigger().handle
        },
        {
            'route': 'jobs/{job_id}',
            'methods': ['GET', 'DELETE'],
            'handler': JobTrigger().handle
        },
        {
            'route': 'jobs/{job_id}/results',
            'methods': ['GET'],
            'handler': JobResultsTrigger().handle
        }
    ]


# ============================================================================
# BASE TRIGGER CLASS
# ============================================================================

class BaseProcessesTrigger:
    """
    Base class for OGC API - Processes triggers.

    Provides common functionality:
    - Service lookup (process-wide singleton, resolved per request)
    - Base URL extraction from request
    - JSON response formatting
    - Error translation (engine errors carry status and code)
    """

    operation = "request"

    @property
    def service(self) -> OGCProcessesService:
        return get_processes_service()

    def handle(self, req: func.HttpRequest) -> func.HttpResponse:
        try:
            return self._handle(req)

        except OGCProcessesError as e:
            log = logger.error if e.status_code >= 500 else logger.info
            log(f"{self.operation} failed with {e.status_code} {e.code}: {e.message}")
            return self._error_response(e)

        except Exception as e:
            logger.error(f"Error handling {self.operation}: {e}", exc_info=True)
            return self._error_response(OGCProcessesError(f"Internal server error: {str(e)}"))

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        raise NotImplementedError

    def _get_base_url(self, req: func.HttpRequest) -> str:
        return get_processes_config().get_base_url(req.url)

    @staticmethod
    def _page_query(req: func.HttpRequest) -> PageQuery:
        return PageQuery.from_params(dict(req.params))

    def _json_response(
        self,
        data: Any,
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None
    ) -> func.HttpResponse:
        if hasattr(data, 'model_dump'):
            data = data.model_dump(mode='json', exclude_none=True, by_alias=True)

        return func.HttpResponse(
            body=json.dumps(data, indent=2),
            status_code=status_code,
            headers=headers,
            mimetype="application/json"
        )

    def _error_response(self, error: OGCProcessesError) -> func.HttpResponse:
        return func.HttpResponse(
            body=json.dumps(error.to_dict(), indent=2),
            status_code=error.status_code,
            mimetype="application/json"
        )


# ============================================================================
# API ROOT TRIGGERS
# ============================================================================

class LandingPageTrigger(BaseProcessesTrigger):
    """
    Landing page trigger.

    Endpoint: GET /api/ogc

    Static document, no storage access.
    """

    operation = "landing page"

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        from api_root import get_api_root
        return self._json_response(get_api_root().landing_page(self._get_base_url(req)))


class ConformanceTrigger(BaseProcessesTrigger):
    """
    Conformance classes trigger.

    Endpoint: GET /api/ogc/conformance
    """

    operation = "conformance"

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        from api_root import get_api_root
        return self._json_response(get_api_root().conformance())


# ============================================================================
# PROCESS TRIGGERS
# ============================================================================

class ProcessListTrigger(BaseProcessesTrigger):
    """
    Endpoint: GET /api/processes?limit=&offset=
    """

    operation = "process list"

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        processes = self.service.list_processes(self._get_base_url(req), self._page_query(req))
        logger.info(f"Process list requested ({len(processes.processes)} processes)")
        return self._json_response(processes)


class ProcessDescriptionTrigger(BaseProcessesTrigger):
    """
    Endpoint: GET /api/processes/{process_id}
    """

    operation = "process description"

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        process_id = req.route_params.get('process_id')
        process = self.service.get_process(process_id, self._get_base_url(req))
        return self._json_response(process)


class ExecuteTrigger(BaseProcessesTrigger):
    """
    Execute a process.

    Endpoint: POST /api/processes/{process_id}/execution

    Responses:
        202 + Location: job accepted (asynchronous, or synchronous wait expired)
        200 + Location: synchronous execution finished, body is the results
        400: malformed body or inputs
        404: unknown process
    """

    operation = "execute"

    @staticmethod
    def _parse_prefer(header: Optional[str]) -> Tuple[bool, Optional[float]]:
        """Return (respond_async, wait_seconds) from a Prefer header."""
        respond_async = False
        wait_seconds = None
        for token in (header or "").split(","):
            token = token.strip().lower()
            if token == "respond-async":
                respond_async = True
            elif token.startswith("wait="):
                try:
                    wait_seconds = max(0.0, float(token.split("=", 1)[1]))
                except ValueError:
                    logger.debug(f"Ignoring malformed Prefer token: {token}")
        return respond_async, wait_seconds

    @staticmethod
    def _parse_body(req: func.HttpRequest) -> ExecuteRequest:
        raw = req.get_body()
        if not raw:
            return ExecuteRequest()

        try:
            body = req.get_json()
        except ValueError:
            raise ValidationError("Request body is not valid JSON") from None

        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")

        try:
            return ExecuteRequest(**body)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid execute request: {e.errors()[0]['msg']}") from None

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        process_id = req.route_params.get('process_id')
        request = self._parse_body(req)
        respond_async, wait_seconds = self._parse_prefer(req.headers.get('Prefer'))

        outcome = self.service.execute(
            process_id,
            request,
            self._get_base_url(req),
            prefer_async=respond_async,
            wait_seconds=wait_seconds
        )

        headers = {'Location': outcome.location}
        if outcome.completed:
            headers['Preference-Applied'] = f"wait={outcome.wait_applied:g}"
            return self._json_response(outcome.results, status_code=200, headers=headers)

        if outcome.async_preferred:
            headers['Preference-Applied'] = "respond-async"

        logger.info(f"Job '{outcome.job.job_id}' for '{process_id}' answered asynchronously "
                    f"({outcome.job.status.value})")
        return self._json_response(outcome.status, status_code=202, headers=headers)


# ============================================================================
# JOB TRIGGERS
# ============================================================================

class JobListTrigger(BaseProcessesTrigger):
    """
    Endpoint: GET /api/jobs?limit=&offset=&processID=&status=
    """

    operation = "job list"

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        jobs = self.service.list_jobs(self._get_base_url(req), self._page_query(req))
        logger.info(f"Job list requested ({jobs.numberReturned}/{jobs.numberMatched} jobs)")
        return self._json_response(jobs)


class JobTrigger(BaseProcessesTrigger):
    """
    Job status and dismissal.

    Endpoints:
        GET    /api/jobs/{job_id}  -> 200 statusInfo
        DELETE /api/jobs/{job_id}  -> 204, idempotent for finished jobs
    """

    operation = "job"

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        job_id = req.route_params.get('job_id')

        if req.method.upper() == 'DELETE':
            self.service.dismiss(job_id)
            return func.HttpResponse(status_code=204)

        return self._json_response(self.service.get_status(job_id, self._get_base_url(req)))


class JobResultsTrigger(BaseProcessesTrigger):
    """
    Endpoint: GET /api/jobs/{job_id}/results

    409 result-not-ready unless the job is successful.
    """

    operation = "job results"

    def _handle(self, req: func.HttpRequest) -> func.HttpResponse:
        results = self.service.get_results(req.route_params.get('job_id'))
        return self._json_response(results)
