# ============================================================================
# CLAUDE CONTEXT - HEALTH CHECK MODULE
# ============================================================================
# STATUS: Core Infrastructure - Health Monitoring
# PURPOSE: Health checks for APIM integration and monitoring
# EXPORTS: get_public_health, get_detailed_health, get_app_identity, HealthStatus
# DEPENDENCIES: psycopg, config, util_logger, ogc_processes
# PATTERNS: Two-tier health checks (public/detailed) for APIM
# ============================================================================

"""
Health Check Module

Provides two-tier health monitoring optimized for Azure APIM integration:

1. Public Health (/api/health):
   - Minimal response for external callers
   - Returns only status and timestamp
   - Always returns 200 (status in body indicates health)

2. Detailed Health (/api/health/detailed):
   - Database connectivity with latency metrics
   - Job engine tables (processes, jobs) and job counts by status
   - Stale job detection (active jobs past their lease)
   - API module status
   - Returns 503 if unhealthy

With OGC_PROCESSES_BACKEND=memory no database is involved; the database
checks are reported as skipped and never fail.

Usage:
    from health import get_public_health, get_detailed_health

    result = get_public_health()
    # {"status": "healthy", "timestamp": "2026-10-16T12:00:00Z"}
"""

import time
import uuid
import psycopg
from psycopg import sql
from enum import Enum
from datetime import datetime, timedelta, timezone
from dataclasses import dataclass
from typing import Optional, Dict, Any

from config import get_postgres_connection_string, get_app_config
from util_logger import LoggerFactory, ComponentType

# Create module logger
logger = LoggerFactory.create_logger(ComponentType.HEALTH, "HealthService")

APP_NAME = "ogcprocesses"
APP_DESCRIPTION = "OGC API - Processes Job Service"


# ============================================================================
# Health Status Enum
# ============================================================================

class HealthStatus(str, Enum):
    """Health status values."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"      # Non-critical components failing
    UNHEALTHY = "unhealthy"    # Critical components failing


# ============================================================================
# Data Classes
# ============================================================================

@dataclass
class CheckResult:
    """Result of a single health check."""
    status: str              # "pass", "fail" or "skip"
    latency_ms: float        # Time taken for check
    message: str             # Human-readable status message
    details: Optional[Dict[str, Any]] = None  # Additional details

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        result = {
            "status": self.status,
            "latency_ms": round(self.latency_ms, 2),
            "message": self.message
        }
        if self.details:
            result["details"] = self.details
        return result


def _elapsed_ms(start_time: float) -> float:
    return (time.perf_counter() - start_time) * 1000


def _uses_database() -> bool:
    from ogc_processes.config import get_processes_config
    return get_processes_config().backend == "postgres"


def _skipped(reason: str) -> CheckResult:
    return CheckResult(status="skip", latency_ms=0.0, message=reason)


# ============================================================================
# Health Check Functions
# ============================================================================

def check_database_connectivity(timeout_seconds: float = 5.0) -> CheckResult:
    """
    Check PostgreSQL database connectivity.

    Executes SELECT 1 with timeout to verify database is reachable.
    This is a critical check - failure means UNHEALTHY status.
    """
    if not _uses_database():
        return _skipped("In-memory backend configured")

    start_time = time.perf_counter()

    try:
        conn_string = get_postgres_connection_string()
        config = get_app_config()

        with psycopg.connect(
            conn_string,
            connect_timeout=int(timeout_seconds)
        ) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1")
                cur.fetchone()

        return CheckResult(
            status="pass",
            latency_ms=_elapsed_ms(start_time),
            message="PostgreSQL connection successful",
            details={
                "host": config.postgis_host,
                "database": config.postgis_database,
                "auth_mode": "managed_identity" if config.use_managed_identity else "password"
            }
        )

    except (psycopg.Error, ValueError) as e:
        logger.error(f"Database connectivity check failed: {e}")

        return CheckResult(
            status="fail",
            latency_ms=_elapsed_ms(start_time),
            message=f"Database connection failed: {type(e).__name__}",
            details={"error": str(e)}
        )


def check_processes_schema() -> CheckResult:
    """
    Check the job engine tables.

    Verifies the processes and jobs tables exist and reports the catalog
    size and job counts per status.
    This is a critical check - failure means UNHEALTHY status.
    """
    if not _uses_database():
        return _skipped("In-memory backend configured")

    from ogc_processes.config import get_processes_config
    schema = get_processes_config().schema_name
    start_time = time.perf_counter()

    try:
        with psycopg.connect(get_postgres_connection_string()) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    SELECT table_name FROM information_schema.tables
                    WHERE table_schema = %s AND table_name IN ('processes', 'jobs')
                    """,
                    (schema,)
                )
                present = {row[0] for row in cur.fetchall()}
                missing = sorted({"processes", "jobs"} - present)
                if missing:
                    return CheckResult(
                        status="fail",
                        latency_ms=_elapsed_ms(start_time),
                        message=f"Missing table(s) in schema '{schema}': {', '.join(missing)}",
                        details={"schema": schema, "missing": missing}
                    )

                cur.execute(sql.SQL("SELECT COUNT(*) FROM {}").format(
                    sql.Identifier(schema, "processes")))
                process_count = cur.fetchone()[0]

                cur.execute(sql.SQL("SELECT status, COUNT(*) FROM {} GROUP BY status").format(
                    sql.Identifier(schema, "jobs")))
                jobs_by_status = {row[0]: row[1] for row in cur.fetchall()}

        return CheckResult(
            status="pass",
            latency_ms=_elapsed_ms(start_time),
            message=f"{process_count} processes, {sum(jobs_by_status.values())} jobs",
            details={
                "schema": schema,
                "process_count": process_count,
                "jobs_by_status": jobs_by_status
            }
        )

    except (psycopg.Error, ValueError) as e:
        logger.error(f"Processes schema check failed: {e}")

        return CheckResult(
            status="fail",
            latency_ms=_elapsed_ms(start_time),
            message=f"Processes schema check failed: {type(e).__name__}",
            details={"error": str(e)}
        )


def check_stale_jobs() -> CheckResult:
    """
    Count active jobs whose lease has expired.

    Stale jobs mean a worker died without recording an outcome and the
    reaper has not run yet. Non-critical - failure means DEGRADED status.
    """
    start_time = time.perf_counter()

    try:
        from ogc_processes import get_processes_service
        service = get_processes_service()
        lease = service.config.job_lease_seconds
        cutoff = datetime.now(timezone.utc) - timedelta(seconds=lease)
        stale = service.store.list_stale(cutoff)

    except Exception as e:
        logger.error(f"Stale job check failed: {e}")
        return CheckResult(
            status="fail",
            latency_ms=_elapsed_ms(start_time),
            message=f"Stale job check failed: {type(e).__name__}",
            details={"error": str(e)}
        )

    return CheckResult(
        status="fail" if stale else "pass",
        latency_ms=_elapsed_ms(start_time),
        message=f"{len(stale)} active job(s) older than the {lease}s lease",
        details={"stale_job_ids": [j.job_id for j in stale[:10]]} if stale else None
    )


def check_api_modules() -> CheckResult:
    """
    Check API module availability.

    Verifies the ogc_processes module imports and builds its triggers.
    This is a non-critical check - failure means DEGRADED status.
    """
    start_time = time.perf_counter()

    try:
        from ogc_processes import get_processes_triggers, get_processes_config
        triggers = get_processes_triggers()
        config = get_processes_config()
        processes_status = {
            "available": True,
            "endpoints": len(triggers),
            "backend": config.backend,
            "schema": config.schema_name
        }
    except Exception as e:
        processes_status = {"available": False, "endpoints": 0, "error": str(e)}

    return CheckResult(
        status="pass" if processes_status["available"] else "fail",
        latency_ms=_elapsed_ms(start_time),
        message="All modules loaded" if processes_status["available"] else "No API modules available",
        details={"ogc_processes": processes_status}
    )


# ============================================================================
# Main Entry Points
# ============================================================================

def get_app_identity() -> Dict[str, str]:
    return {"name": APP_NAME, "description": APP_DESCRIPTION}


def get_public_health() -> Dict[str, Any]:
    """
    Get minimal health status for public endpoint.

    Returns only status and timestamp - no internal details.
    """
    start_time = time.perf_counter()

    db_result = check_database_connectivity(timeout_seconds=3.0)
    status = HealthStatus.UNHEALTHY if db_result.status == "fail" else HealthStatus.HEALTHY

    logger.info("Public health check completed", extra={
        'custom_dimensions': {
            'status': status.value,
            'duration_ms': round(_elapsed_ms(start_time), 2),
            'check_type': 'public'
        }
    })

    return {
        "status": status.value,
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


def get_detailed_health() -> Dict[str, Any]:
    """
    Get detailed health status for APIM probes and operations.

    SECURITY NOTE: Block this endpoint from external access via APIM policy.
    """
    start_time = time.perf_counter()
    request_id = str(uuid.uuid4())[:8]

    checks = {}
    critical_failures = []
    non_critical_failures = []

    # Critical
    for name, check in (("database", check_database_connectivity),
                        ("processes_schema", check_processes_schema)):
        result = check()
        checks[name] = result.to_dict()
        if result.status == "fail":
            critical_failures.append(name)

    # Non-critical; skipped when storage is already known to be down
    non_critical = [("api_modules", check_api_modules)]
    if not critical_failures:
        non_critical.append(("stale_jobs", check_stale_jobs))
    for name, check in non_critical:
        result = check()
        checks[name] = result.to_dict()
        if result.status == "fail":
            non_critical_failures.append(name)

    if critical_failures:
        status = HealthStatus.UNHEALTHY
    elif non_critical_failures:
        status = HealthStatus.DEGRADED
    else:
        status = HealthStatus.HEALTHY

    total_duration = _elapsed_ms(start_time)

    logger.info("Detailed health check completed", extra={
        'custom_dimensions': {
            'status': status.value,
            'duration_ms': round(total_duration, 2),
            'check_type': 'detailed',
            'request_id': request_id,
            'critical_failures': critical_failures,
            'non_critical_failures': non_critical_failures
        }
    })

    return {
        "status": status.value,
        "app": APP_NAME,
        "description": APP_DESCRIPTION,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "request_id": request_id,
        "checks": checks,
        "total_duration_ms": round(total_duration, 2)
    }
