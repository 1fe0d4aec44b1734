"""GenerationJob entity - one user-initiated generation request with lifecycle status."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Index
from sqlmodel import Field, SQLModel

from vidgenie.core.timezone import utcnow


class JobKind(str, Enum):
    """Which stages a job runs."""

    IMAGE = "IMAGE"
    IMAGE_THEN_VIDEO = "IMAGE_THEN_VIDEO"


class JobStatus(str, Enum):
    """Generation job lifecycle status."""

    QUEUED = "QUEUED"
    GENERATING_IMAGE = "GENERATING_IMAGE"
    IMAGE_READY = "IMAGE_READY"
    GENERATING_VIDEO = "GENERATING_VIDEO"
    PAUSED = "PAUSED"
    VIDEO_READY = "VIDEO_READY"
    FAILED = "FAILED"


TERMINAL_STATUSES: frozenset[JobStatus] = frozenset({JobStatus.VIDEO_READY, JobStatus.FAILED})

NON_TERMINAL_STATUSES: frozenset[JobStatus] = frozenset(JobStatus) - TERMINAL_STATUSES

PAUSABLE_STATUSES: frozenset[JobStatus] = frozenset(
    {JobStatus.IMAGE_READY, JobStatus.GENERATING_VIDEO}
)

# Every edge of the workflow state machine. PAUSED can finish because providers
# keep running while a job is paused for display purposes.
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.GENERATING_IMAGE, JobStatus.FAILED}),
    JobStatus.GENERATING_IMAGE: frozenset({JobStatus.IMAGE_READY, JobStatus.FAILED}),
    JobStatus.IMAGE_READY: frozenset(
        {JobStatus.GENERATING_VIDEO, JobStatus.VIDEO_READY, JobStatus.PAUSED, JobStatus.FAILED}
    ),
    JobStatus.GENERATING_VIDEO: frozenset(
        {JobStatus.VIDEO_READY, JobStatus.PAUSED, JobStatus.FAILED}
    ),
    JobStatus.PAUSED: frozenset(
        {
            JobStatus.IMAGE_READY,
            JobStatus.GENERATING_VIDEO,
            JobStatus.VIDEO_READY,
            JobStatus.FAILED,
        }
    ),
    JobStatus.VIDEO_READY: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidStateTransition(Exception):
    """Raised when attempting a transition that is not an edge of the state machine."""

    pass


def check_transition(current: JobStatus, new: JobStatus) -> None:
    """Validate a single status edge.

    Raises:
        InvalidStateTransition: If new is not reachable from current in one step
    """
    if new not in ALLOWED_TRANSITIONS[current]:
        if current in TERMINAL_STATUSES:
            raise InvalidStateTransition(
                f"Cannot move to {new.value} from terminal state {current.value}."
            )
        raise InvalidStateTransition(f"Cannot move to {new.value} from {current.value}.")


class GenerationJob(SQLModel, table=True):
    """GenerationJob tracks one request through the image and video stages."""

    __tablename__ = "generation_jobs"  # type: ignore[assignment]
    __table_args__ = (Index("ix_generation_jobs_status_updated_at", "status", "updated_at"),)

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(max_length=255, index=True)
    project_id: Optional[str] = Field(default=None, max_length=255)
    kind: JobKind = Field(default=JobKind.IMAGE_THEN_VIDEO)
    status: JobStatus = Field(default=JobStatus.QUEUED, index=True)
    pre_pause_status: Optional[JobStatus] = Field(default=None)

    # Inputs
    input_prompt: str
    image_prompt: str
    video_prompt: Optional[str] = Field(default=None)

    # Provider linkage
    provider: str = Field(max_length=100)
    provider_job_id: Optional[str] = Field(default=None, max_length=255, index=True)

    # Reserved cost in credits, immutable after creation
    cost: int = Field(ge=0)

    # Outputs
    image_asset_id: Optional[UUID] = Field(default=None)
    video_asset_id: Optional[UUID] = Field(default=None)

    # Timestamps
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = Field(default=None)
    stage_started_at: Optional[datetime] = Field(default=None)
    completed_at: Optional[datetime] = Field(default=None)

    # Error info, set only on FAILED
    error_message: Optional[str] = Field(default=None, max_length=1000)
    error_code: Optional[str] = Field(default=None, max_length=100)

    # Diagnostics only, never read for control decisions
    provider_metadata: Optional[dict] = Field(default=None, sa_column=Column(JSON))

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def processing_time_ms(self) -> Optional[int]:
        """Wall-clock duration from start to completion, once both are known."""
        if self.started_at is None or self.completed_at is None:
            return None
        return int((self.completed_at - self.started_at).total_seconds() * 1000)
