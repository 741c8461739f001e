"""Core domain models for platform operations.

This module defines the records the client works with (projects, batches,
jobs), the status enumerations used to reason about them, and the parsing
from the platform's JSON payloads. These models are intentionally simple,
immutable, and free of any infrastructure or presentation concerns.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, Mapping, TypeVar

T = TypeVar("T")


class BatchStatus(str, Enum):
    """
    Lifecycle states of a batch as reported by the platform.

    Values:
        SUBMITTED: The batch has been accepted but no tests are running yet.
        EXPERIENCES_RUNNING: Tests of the batch are executing.
        BATCH_METRICS_QUEUED: All tests finished; batch metrics are queued.
        BATCH_METRICS_RUNNING: Batch metrics are being computed.
        SUCCEEDED: The batch completed successfully.
        ERROR: The batch completed with an error.
        CANCELLED: The batch was cancelled before completion.
    """

    SUBMITTED = "SUBMITTED"
    EXPERIENCES_RUNNING = "EXPERIENCES_RUNNING"
    BATCH_METRICS_QUEUED = "BATCH_METRICS_QUEUED"
    BATCH_METRICS_RUNNING = "BATCH_METRICS_RUNNING"
    SUCCEEDED = "SUCCEEDED"
    ERROR = "ERROR"
    CANCELLED = "CANCELLED"


class StatusClass(str, Enum):
    """Polling classification of a batch status."""

    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    UNKNOWN = "UNKNOWN"

    @property
    def is_terminal(self) -> bool:
        return self in (StatusClass.SUCCEEDED, StatusClass.FAILED, StatusClass.CANCELLED)


IN_FLIGHT_STATUSES = frozenset(
    s.value
    for s in (
        BatchStatus.SUBMITTED,
        BatchStatus.EXPERIENCES_RUNNING,
        BatchStatus.BATCH_METRICS_QUEUED,
        BatchStatus.BATCH_METRICS_RUNNING,
    )
)


def classify_status(status: str) -> StatusClass:
    """Map a raw batch status string onto its polling class."""
    if status == BatchStatus.SUCCEEDED.value:
        return StatusClass.SUCCEEDED
    if status == BatchStatus.ERROR.value:
        return StatusClass.FAILED
    if status == BatchStatus.CANCELLED.value:
        return StatusClass.CANCELLED
    if status in IN_FLIGHT_STATUSES:
        return StatusClass.RUNNING
    return StatusClass.UNKNOWN


class ConflatedJobStatus(str, Enum):
    """
    Per-job verdict fusing the execution outcome with the metrics verdict.

    Only WARNING, ERROR and BLOCKER can trigger a rerun.
    """

    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    PASSED = "PASSED"
    WARNING = "WARNING"
    ERROR = "ERROR"
    BLOCKER = "BLOCKER"
    CANCELLED = "CANCELLED"


RERUNNABLE_STATES = (
    ConflatedJobStatus.WARNING,
    ConflatedJobStatus.ERROR,
    ConflatedJobStatus.BLOCKER,
)


def _opt_str(payload: Mapping[str, Any], key: str) -> str | None:
    value = payload.get(key)
    if value is None:
        return None
    return str(value)


@dataclass(frozen=True)
class Project:
    """
    Represents a platform project.

    Attributes:
        project_id: Unique identifier of the project.
        name: Human-readable project name, often a repository name.
        description: Optional free-form description.
    """

    project_id: str
    name: str
    description: str | None = None

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Project:
        return cls(
            project_id=str(payload.get("projectID") or ""),
            name=str(payload.get("name") or ""),
            description=_opt_str(payload, "description"),
        )


@dataclass(frozen=True)
class Batch:
    """
    Represents a batch: one run of a set of tests against a build.

    Attributes:
        batch_id: Platform-assigned identifier, stable for the batch lifetime.
        friendly_name: Human-readable label; not unique across batches.
        status: Raw lifecycle status. Kept as a string so values unknown to
                this client are preserved for error reporting.
        parent_batch_id: Set on rerun batches; the batch they derive from.
        project_id: Project the batch belongs to.
        build_id: Build under test.
        creation_timestamp: Creation time as reported by the platform.
        total_jobs: Number of tests in the batch, when reported.
        raw: The full JSON record as returned by the platform.
    """

    batch_id: str
    friendly_name: str | None = None
    status: str | None = None
    parent_batch_id: str | None = None
    project_id: str | None = None
    build_id: str | None = None
    creation_timestamp: str | None = None
    total_jobs: int | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Batch:
        total = payload.get("totalJobs")
        return cls(
            batch_id=str(payload.get("batchID") or ""),
            friendly_name=_opt_str(payload, "friendlyName"),
            status=_opt_str(payload, "status"),
            parent_batch_id=_opt_str(payload, "parentBatchID"),
            project_id=_opt_str(payload, "projectID"),
            build_id=_opt_str(payload, "buildID"),
            creation_timestamp=_opt_str(payload, "creationTimestamp"),
            total_jobs=int(total) if isinstance(total, int) else None,
            raw=dict(payload),
        )

    @property
    def label(self) -> str:
        """Return `<friendly name> (<id>)`, or just the id when unnamed."""
        if self.friendly_name:
            return f"{self.friendly_name} ({self.batch_id})"
        return self.batch_id


@dataclass(frozen=True)
class Job:
    """
    Represents one test execution within a batch.

    Attributes:
        job_id: Platform-assigned identifier of the job.
        conflated_status: Fused execution/metrics verdict, if reported.
        status: Raw execution status of the job.
        experience_id: Experience the job ran.
        raw: The full JSON record as returned by the platform.
    """

    job_id: str | None
    conflated_status: str | None = None
    status: str | None = None
    experience_id: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api(cls, payload: Mapping[str, Any]) -> Job:
        return cls(
            job_id=_opt_str(payload, "jobID"),
            conflated_status=_opt_str(payload, "conflatedStatus"),
            status=_opt_str(payload, "jobStatus"),
            experience_id=_opt_str(payload, "experienceID"),
            raw=dict(payload),
        )


@dataclass(frozen=True)
class Page(Generic[T]):
    """One page of a token-paginated listing."""

    items: list[T]
    next_page_token: str | None = None

    @property
    def has_more(self) -> bool:
        return bool(self.next_page_token)
