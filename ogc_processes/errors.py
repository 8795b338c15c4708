"""
Error taxonomy for the OGC API - Processes job engine.

Every error carries the HTTP status and the ``code`` string used in the
JSON error body, so triggers never need a per-endpoint mapping table.
OGC exception type URIs are attached where OGC API - Processes Part 1
defines one.
"""

import logging
from contextlib import contextmanager
from typing import Optional

import psycopg

OGC_EXCEPTION_BASE = "http://www.opengis.net/def/exceptions/ogcapi-processes-1/1.0"

logger = logging.getLogger(__name__)


class OGCProcessesError(Exception):
    """Base class for all job engine errors."""

    status_code: int = 500
    code: str = "InternalServerError"
    type_uri: Optional[str] = None

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        body = {
            "code": self.code,
            "description": self.message
        }
        if self.type_uri:
            body["type"] = self.type_uri
        return body


class NotFound(OGCProcessesError):
    """Unknown process or job identifier."""
    status_code = 404
    code = "NotFound"


class NoSuchProcess(NotFound):
    type_uri = f"{OGC_EXCEPTION_BASE}/no-such-process"


class NoSuchJob(NotFound):
    type_uri = f"{OGC_EXCEPTION_BASE}/no-such-job"


class Conflict(OGCProcessesError):
    """Duplicate job identifier on create."""
    status_code = 409
    code = "Conflict"


class InvalidTransition(OGCProcessesError):
    """Conditional status update lost a race, or the target is unreachable."""
    status_code = 409
    code = "InvalidTransition"


class ResultsNotReady(OGCProcessesError):
    """Results requested for a job that is not ``successful``."""
    status_code = 409
    code = "ResultsNotReady"
    type_uri = f"{OGC_EXCEPTION_BASE}/result-not-ready"


class ValidationError(OGCProcessesError):
    """Malformed request (query parameters or execute body)."""
    status_code = 400
    code = "BadRequest"


class StorageUnavailable(OGCProcessesError):
    """Backing store I/O failure. Retryable by the client."""
    status_code = 503
    code = "ServiceUnavailable"


@contextmanager
def storage_errors(component: str, operation: str, log=None):
    """
    Translate connection-level psycopg failures into StorageUnavailable.

    Shared by every PostgreSQL-backed component so a dropped connection is
    a 503 wherever it happens. Query errors (bad SQL, constraint
    violations) are not connection failures and propagate unchanged.
    """
    try:
        yield
    except (psycopg.OperationalError, psycopg.InterfaceError) as e:
        (log or logger).error(f"{component} unavailable during {operation}: {e}")
        raise StorageUnavailable(f"{component} unavailable: {type(e).__name__}") from e
