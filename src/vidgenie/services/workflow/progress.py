"""Advisory progress and time-remaining estimates. Never used for control decisions."""

from dataclasses import dataclass
from datetime import datetime

from vidgenie.core.timezone import utcnow
from vidgenie.models.generation_job import GenerationJob, JobStatus

STATUS_PROGRESS: dict[JobStatus, int] = {
    JobStatus.QUEUED: 5,
    JobStatus.GENERATING_IMAGE: 25,
    JobStatus.IMAGE_READY: 50,
    JobStatus.GENERATING_VIDEO: 75,
    JobStatus.VIDEO_READY: 100,
    JobStatus.FAILED: 0,
}


@dataclass(frozen=True)
class StageBudgets:
    """Expected wall-clock duration per generating stage, in seconds."""

    image_seconds: int = 30
    video_seconds: int = 120

    def for_status(self, status: JobStatus) -> int | None:
        if status == JobStatus.GENERATING_IMAGE:
            return self.image_seconds
        if status == JobStatus.GENERATING_VIDEO:
            return self.video_seconds
        return None


def progress_for_status(status: JobStatus, pre_pause_status: JobStatus | None = None) -> int:
    """Overall percent complete; a paused job reports the stage it was paused in."""
    if status == JobStatus.PAUSED:
        return STATUS_PROGRESS.get(pre_pause_status, 0) if pre_pause_status else 0
    return STATUS_PROGRESS[status]


def overall_progress(job: GenerationJob) -> int:
    return progress_for_status(job.status, job.pre_pause_status)


def provider_progress(job: GenerationJob) -> float | None:
    """Last percentage reported by a processing webhook, if any."""
    if not job.provider_metadata:
        return None
    value = job.provider_metadata.get("progress_percentage")
    return float(value) if value is not None else None


def estimate_remaining_seconds(
    job: GenerationJob, budgets: StageBudgets, now: datetime | None = None
) -> int | None:
    """Stage budget minus elapsed time in the current stage, clamped at zero.

    Returns None outside GENERATING_IMAGE / GENERATING_VIDEO.
    """
    budget = budgets.for_status(job.status)
    if budget is None:
        return None

    started = job.stage_started_at or job.started_at
    if started is None:
        return budget

    elapsed = ((now or utcnow()) - started).total_seconds()
    return max(0, int(budget - elapsed))
