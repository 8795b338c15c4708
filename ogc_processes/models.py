# ============================================================================
# CLAUDE CONTEXT - OGC PROCESSES MODELS
# ============================================================================
# STATUS: Standalone Models - OGC API - Processes Pydantic models
# PURPOSE: Job record, job state machine, process descriptions and response DTOs
# EXPORTS: JobStatus, Job, StatusInfo, JobList, Process, ProcessSummary, ProcessList,
#          ExecuteRequest, OGCLink, OGCLandingPage, OGCConformance
# INTERFACES: Pydantic BaseModel
# DEPENDENCIES: pydantic, typing, enum
# SOURCE: OGC API - Processes - Part 1: Core (OGC 18-062r2)
# VALIDATION: Pydantic v2 validation, result/status invariant on Job
# PATTERNS: Data Transfer Objects (DTOs)
# ENTRY_POINTS: from ogc_processes.models import Job, JobStatus
# ============================================================================

"""
OGC API - Processes Pydantic Models

Two families of models live here:

- The internal ``Job`` record, exactly what the job store persists, and the
  transition table that governs how its ``status`` may change.
- The wire models (``StatusInfo``, ``ProcessSummary``, ...) that use the
  camelCase field names mandated by OGC API - Processes.

References:
- OGC API - Processes - Part 1: Core: https://docs.ogc.org/is/18-062r2/18-062r2.html
"""

from enum import Enum
from datetime import datetime
from typing import List, Dict, Any, Optional, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# LINKS
# ============================================================================

class OGCLink(BaseModel):
    """
    OGC API Link object (RFC 8288 Web Linking).
    """
    href: str = Field(
        description="URL of the linked resource"
    )
    rel: str = Field(
        description="Link relation type (self, next, prev, results, etc.)"
    )
    type: Optional[str] = Field(
        default=None,
        description="Media type of the linked resource"
    )
    title: Optional[str] = Field(
        default=None,
        description="Human-readable title for the link"
    )
    hreflang: Optional[str] = Field(
        default=None,
        description="Language of the linked resource"
    )


# Link relations registered by OGC API - Processes
REL_PROCESSES = "http://www.opengis.net/def/rel/ogc/1.0/processes"
REL_JOB_LIST = "http://www.opengis.net/def/rel/ogc/1.0/job-list"
REL_EXECUTE = "http://www.opengis.net/def/rel/ogc/1.0/execute"
REL_RESULTS = "http://www.opengis.net/def/rel/ogc/1.0/results"


# ============================================================================
# JOB STATE MACHINE
# ============================================================================

class JobStatus(str, Enum):
    """OGC statusCode values."""
    ACCEPTED = "accepted"
    RUNNING = "running"
    SUCCESSFUL = "successful"
    FAILED = "failed"
    DISMISSED = "dismissed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    JobStatus.SUCCESSFUL,
    JobStatus.FAILED,
    JobStatus.DISMISSED
})

ACTIVE_STATUSES = frozenset({
    JobStatus.ACCEPTED,
    JobStatus.RUNNING
})

# accepted -> failed covers dispatch failures and reaped jobs that never started
ALLOWED_TRANSITIONS: Dict[JobStatus, frozenset] = {
    JobStatus.ACCEPTED: frozenset({JobStatus.RUNNING, JobStatus.FAILED, JobStatus.DISMISSED}),
    JobStatus.RUNNING: frozenset({JobStatus.SUCCESSFUL, JobStatus.FAILED, JobStatus.DISMISSED}),
    JobStatus.SUCCESSFUL: frozenset(),
    JobStatus.FAILED: frozenset(),
    JobStatus.DISMISSED: frozenset(),
}


class Job(BaseModel):
    """
    Persisted job record.

    Invariant: ``result`` is present if and only if ``status`` is
    ``successful``. The job store is the only writer of these records.
    """
    model_config = ConfigDict(frozen=True)

    job_id: str
    process_id: str
    status: JobStatus = JobStatus.ACCEPTED
    message: Optional[str] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)
    created: datetime
    started: Optional[datetime] = None
    finished: Optional[datetime] = None
    updated: Optional[datetime] = None
    result: Optional[Dict[str, Any]] = None

    @model_validator(mode="after")
    def check_result_matches_status(self) -> "Job":
        has_result = self.result is not None
        if has_result != (self.status == JobStatus.SUCCESSFUL):
            raise ValueError(
                f"Job '{self.job_id}' in status '{self.status.value}' "
                f"{'must not carry' if has_result else 'must carry'} a result"
            )
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


# ============================================================================
# PROCESS DESCRIPTIONS
# ============================================================================

class JobControlOption(str, Enum):
    SYNC_EXECUTE = "sync-execute"
    ASYNC_EXECUTE = "async-execute"
    DISMISS = "dismiss"


class InputDescription(BaseModel):
    """Process input descriptor (subset of OGC inputDescription)."""
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = None
    schema_: Dict[str, Any] = Field(default_factory=dict, alias="schema")
    minOccurs: int = Field(default=1, ge=0)
    maxOccurs: Any = Field(default=1, description="Positive integer or 'unbounded'")


class OutputDescription(BaseModel):
    """Process output descriptor."""
    model_config = ConfigDict(populate_by_name=True)

    title: Optional[str] = None
    description: Optional[str] = None
    schema_: Dict[str, Any] = Field(default_factory=dict, alias="schema")


class ProcessSummary(BaseModel):
    """
    Catalog entry as returned by GET /processes.

    ``links`` is computed at read time and never stored.
    """
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    version: str = "1.0.0"
    keywords: List[str] = Field(default_factory=list)
    jobControlOptions: List[JobControlOption] = Field(
        default_factory=lambda: [JobControlOption.ASYNC_EXECUTE, JobControlOption.DISMISS]
    )
    outputTransmission: List[Literal["value", "reference"]] = Field(
        default_factory=lambda: ["value"]
    )
    links: List[OGCLink] = Field(default_factory=list)

    def supports(self, option: JobControlOption) -> bool:
        return option in self.jobControlOptions


class Process(ProcessSummary):
    """Full process description as returned by GET /processes/{id}."""
    inputs: Dict[str, InputDescription] = Field(default_factory=dict)
    outputs: Dict[str, OutputDescription] = Field(default_factory=dict)

    def summary(self) -> ProcessSummary:
        return ProcessSummary(**self.model_dump(include=set(ProcessSummary.model_fields)))


class ProcessList(BaseModel):
    processes: List[ProcessSummary]
    links: List[OGCLink]


# ============================================================================
# EXECUTION
# ============================================================================

class ExecuteRequest(BaseModel):
    """
    Body of POST /processes/{id}/execution.

    Only the shape is validated here; input values are checked against the
    process input descriptors by the controller.
    """
    model_config = ConfigDict(extra="ignore")

    inputs: Dict[str, Any] = Field(default_factory=dict)
    outputs: Optional[Dict[str, Any]] = None
    response: Literal["raw", "document"] = "document"
    subscriber: Optional[Dict[str, str]] = None


# ============================================================================
# STATUS / JOB LIST
# ============================================================================

class StatusInfo(BaseModel):
    """
    OGC statusInfo document. Never carries the result payload.
    """
    jobID: str
    processID: Optional[str] = None
    type: Literal["process"] = "process"
    status: JobStatus
    message: Optional[str] = None
    created: Optional[datetime] = None
    started: Optional[datetime] = None
    finished: Optional[datetime] = None
    updated: Optional[datetime] = None
    progress: Optional[int] = None
    links: List[OGCLink] = Field(default_factory=list)

    @classmethod
    def from_job(cls, job: Job, links: Optional[List[OGCLink]] = None) -> "StatusInfo":
        return cls(
            jobID=job.job_id,
            processID=job.process_id,
            status=job.status,
            message=job.message,
            created=job.created,
            started=job.started,
            finished=job.finished,
            updated=job.updated,
            progress=job.progress,
            links=links or []
        )


class JobList(BaseModel):
    jobs: List[StatusInfo]
    links: List[OGCLink]
    numberMatched: Optional[int] = None
    numberReturned: Optional[int] = None


# ============================================================================
# LANDING PAGE / CONFORMANCE
# ============================================================================

class OGCLandingPage(BaseModel):
    title: str
    description: Optional[str] = None
    links: List[OGCLink]


class OGCConformance(BaseModel):
    conformsTo: List[str]
