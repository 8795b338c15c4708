# ============================================================================
# CLAUDE CONTEXT - AZURE FUNCTIONS ENTRY POINT
# ============================================================================
# STATUS: Core Infrastructure - Function App Entry Point
# PURPOSE: Main entry point for Azure Functions runtime with OGC API - Processes
# EXPORTS: app (FunctionApp instance)
# DEPENDENCIES: azure-functions, ogc_processes, health
# ============================================================================

"""
Azure Functions Entry Point for ogcprocesses

Registers the HTTP triggers of the OGC API - Processes job engine, the
stale job reaper timer and the health endpoints.

Architecture:
    - OGC API - Processes: 9 endpoints (landing, conformance, processes, jobs)
    - Stale job reaper: timer trigger, every 5 minutes
    - Health checks: 2 endpoints for monitoring and APIM integration
        - /api/health - Public (minimal response for external callers)
        - /api/health/detailed - Internal (full metrics for APIM probes)

Deployment:
    - Local: func start
    - Azure: func azure functionapp publish <app-name> --python --build remote
"""

import azure.functions as func
import json
import logging

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# Initialize Azure Function App
app = func.FunctionApp()

# ============================================================================
# OGC API - Processes - 9 Endpoints
# ============================================================================

try:
    from ogc_processes import get_processes_triggers, get_processes_service
    from util_logger import LoggerFactory, ComponentType

    logger.info("Registering OGC API - Processes endpoints...")

    triggers = {t['route']: t['handler'] for t in get_processes_triggers()}

    # Landing page
    @app.route(route="ogc", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
    def ogc_landing_page(req: func.HttpRequest) -> func.HttpResponse:
        return triggers['ogc'](req)

    # Conformance
    @app.route(route="ogc/conformance", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
    def ogc_conformance(req: func.HttpRequest) -> func.HttpResponse:
        return triggers['ogc/conformance'](req)

    # Process list
    @app.route(route="processes", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
    def processes_list(req: func.HttpRequest) -> func.HttpResponse:
        return triggers['processes'](req)

    # Process description
    @app.route(route="processes/{process_id}", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
    def process_description(req: func.HttpRequest) -> func.HttpResponse:
        return triggers['processes/{process_id}'](req)

    # Execute
    @app.route(route="processes/{process_id}/execution", methods=["POST"], auth_level=func.AuthLevel.ANONYMOUS)
    def process_execute(req: func.HttpRequest) -> func.HttpResponse:
        return triggers['processes/{process_id}/execution'](req)

    # Job list
    @app.route(route="jobs", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
    def jobs_list(req: func.HttpRequest) -> func.HttpResponse:
        return triggers['jobs'](req)

    # Job status / dismiss
    @app.route(route="jobs/{job_id}", methods=["GET", "DELETE"], auth_level=func.AuthLevel.ANONYMOUS)
    def job_status(req: func.HttpRequest) -> func.HttpResponse:
        return triggers['jobs/{job_id}'](req)

    # Job results
    @app.route(route="jobs/{job_id}/results", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
    def job_results(req: func.HttpRequest) -> func.HttpResponse:
        return triggers['jobs/{job_id}/results'](req)

    # Stale job reaper
    @app.timer_trigger(schedule="0 */5 * * * *", arg_name="timer", run_on_startup=False)
    def reap_stale_jobs(timer: func.TimerRequest) -> None:
        reaper_logger = LoggerFactory.create_logger(ComponentType.TRIGGER, "StaleJobReaper")
        if timer.past_due:
            reaper_logger.warning("Stale job reaper is running late")
        reaped = get_processes_service().reap_stale_jobs()
        reaper_logger.info(f"Stale job reaper finished ({len(reaped)} job(s) failed)")

    logger.info("✅ OGC API - Processes registered successfully (9 endpoints + reaper)")

except ImportError as e:
    logger.warning(f"⚠️ OGC API - Processes module not available: {e}")
    logger.warning("OGC API - Processes will not be available")

# ============================================================================
# Health Check Endpoints - 2 Endpoints (Public + Detailed)
# ============================================================================

@app.route(route="health", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health_check(req: func.HttpRequest) -> func.HttpResponse:
    """
    Public health check endpoint - minimal response for external callers.

    Always returns 200 - status in body indicates health.

    Returns:
        JSON: {"status": "healthy|unhealthy", "timestamp": "..."}
    """
    from health import get_public_health

    result = get_public_health()

    return func.HttpResponse(
        json.dumps(result, default=str),
        mimetype="application/json",
        status_code=200,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"}
    )


@app.route(route="health/detailed", methods=["GET"], auth_level=func.AuthLevel.ANONYMOUS)
def health_detailed(req: func.HttpRequest) -> func.HttpResponse:
    """
    Detailed health check endpoint - for APIM probes and operations.

    Returns 503 if unhealthy, 200 otherwise.

    SECURITY: Block this endpoint from external access via APIM policy.
    """
    from health import get_detailed_health, HealthStatus

    result = get_detailed_health()

    status_code = 503 if result["status"] == HealthStatus.UNHEALTHY.value else 200

    return func.HttpResponse(
        json.dumps(result, default=str, indent=2),
        mimetype="application/json",
        status_code=status_code,
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"}
    )

# ============================================================================
# Application Startup
# ============================================================================

from health import get_app_identity
_app_identity = get_app_identity()

logger.info("="*60)
logger.info(f"{_app_identity['name']} - {_app_identity['description']}")
logger.info("="*60)
logger.info("Function App initialized successfully")
logger.info("Available endpoints:")
logger.info("  - GET /api/health - Public health check (minimal)")
logger.info("  - GET /api/health/detailed - Detailed health (APIM only)")
logger.info("")
logger.info("OGC API - Processes (9 endpoints):")
logger.info("  - GET /api/ogc - Landing page")
logger.info("  - GET /api/ogc/conformance - Conformance")
logger.info("  - GET /api/processes - List processes")
logger.info("  - GET /api/processes/{id} - Process description")
logger.info("  - POST /api/processes/{id}/execution - Execute process")
logger.info("  - GET /api/jobs - List jobs")
logger.info("  - GET /api/jobs/{job_id} - Job status")
logger.info("  - DELETE /api/jobs/{job_id} - Dismiss job")
logger.info("  - GET /api/jobs/{job_id}/results - Job results")
logger.info("="*60)
