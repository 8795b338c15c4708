# ============================================================================
# CLAUDE CONTEXT - OGC PROCESSES CONFIGURATION
# ============================================================================
# STATUS: Standalone Configuration - OGC API - Processes
# PURPOSE: Self-contained configuration for the job engine and its HTTP surface
# EXPORTS: OGCProcessesConfig, get_processes_config
# INTERFACES: Pydantic BaseModel
# DEPENDENCIES: pydantic, os
# SOURCE: Environment variables
# PATTERNS: Settings Pattern, Singleton via cached function
# ============================================================================

"""
OGC API - Processes Configuration

Environment Variables:
    Optional:
    - OGC_PROCESSES_BACKEND: "postgres" (default) or "memory"
    - OGC_PROCESSES_SCHEMA: Schema holding processes/jobs tables (default: "meta")
    - OGC_PROCESSES_BASE_URL: Base URL for links (default: auto-detect)
    - OGC_PROCESSES_DEFAULT_LIMIT: Default page size (default: 10)
    - OGC_PROCESSES_MAX_LIMIT: Largest page size honoured (default: 1000)
    - OGC_WORKER_THREADS: Detached worker threads (default: 4)
    - OGC_SYNC_TIMEOUT_SECONDS: Wait budget for synchronous execution (default: 30)
    - OGC_JOB_LEASE_SECONDS: Silence after which an active job is reaped (default: 600)
    - OGC_QUERY_TIMEOUT: Statement timeout in seconds (default: 30)

PostgreSQL connection settings (POSTGIS_*) are read by the root config module.
"""

import os
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class OGCProcessesConfig(BaseModel):
    """
    Configuration for the OGC API - Processes job engine.
    """

    backend: Literal["postgres", "memory"] = Field(
        default_factory=lambda: os.getenv("OGC_PROCESSES_BACKEND", "postgres").lower(),
        description="Storage backend for the process catalog and job store"
    )
    schema_name: str = Field(
        default_factory=lambda: os.getenv("OGC_PROCESSES_SCHEMA", "meta"),
        description="PostgreSQL schema containing the processes and jobs tables"
    )
    base_url: Optional[str] = Field(
        default_factory=lambda: os.getenv("OGC_PROCESSES_BASE_URL"),
        description="Base URL for links (auto-detected if not set)"
    )

    # Pagination
    default_limit: int = Field(
        default_factory=lambda: int(os.getenv("OGC_PROCESSES_DEFAULT_LIMIT", "10")),
        ge=1,
        description="Page size used when the request has no limit"
    )
    max_limit: int = Field(
        default_factory=lambda: int(os.getenv("OGC_PROCESSES_MAX_LIMIT", "1000")),
        ge=1,
        description="Largest page size; larger requests are clamped"
    )

    # Execution
    worker_threads: int = Field(
        default_factory=lambda: int(os.getenv("OGC_WORKER_THREADS", "4")),
        ge=1,
        le=64,
        description="Size of the detached worker pool"
    )
    sync_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("OGC_SYNC_TIMEOUT_SECONDS", "30")),
        gt=0,
        description="How long synchronous execution waits before answering asynchronously"
    )
    sync_poll_interval_seconds: float = Field(
        default=0.25,
        gt=0,
        description="Status poll interval of the synchronous wrapper"
    )
    job_lease_seconds: int = Field(
        default_factory=lambda: int(os.getenv("OGC_JOB_LEASE_SECONDS", "600")),
        ge=1,
        description="An accepted/running job silent for this long is marked failed"
    )

    query_timeout_seconds: int = Field(
        default_factory=lambda: int(os.getenv("OGC_QUERY_TIMEOUT", "30")),
        ge=1,
        le=300,
        description="Maximum statement execution time in seconds"
    )

    @model_validator(mode="after")
    def check_limits(self) -> "OGCProcessesConfig":
        if self.default_limit > self.max_limit:
            raise ValueError(
                f"OGC_PROCESSES_DEFAULT_LIMIT ({self.default_limit}) exceeds "
                f"OGC_PROCESSES_MAX_LIMIT ({self.max_limit})"
            )
        return self

    def get_base_url(self, request_url: Optional[str] = None) -> str:
        """
        Get base URL for links.

        Args:
            request_url: Current request URL for auto-detection

        Returns:
            Base URL without trailing slash and without the /api route prefix
        """
        if self.base_url:
            return self.base_url.rstrip("/")

        if request_url and "/api/" in request_url:
            return request_url.split("/api/", 1)[0]

        return "http://localhost:7071"  # Local development fallback


_config_cache: Optional[OGCProcessesConfig] = None


def get_processes_config() -> OGCProcessesConfig:
    """
    Get singleton configuration instance.

    Raises:
        pydantic.ValidationError: If an environment variable is out of range
    """
    global _config_cache

    if _config_cache is None:
        _config_cache = OGCProcessesConfig()

    return _config_cache
