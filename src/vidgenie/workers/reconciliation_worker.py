"""Reconciliation worker for jobs that will never advance on their own.

Two kinds of job get stuck:
- QUEUED / GENERATING_IMAGE / IMAGE_READY jobs whose image stage, or the video
  submission that follows it, died with the process on a restart. Anything
  older than twice the image timeout is orphaned.
- GENERATING_VIDEO jobs whose provider never delivered a terminal webhook.
  Anything older than STALE_VIDEO_JOB_SECONDS (0 disables) is abandoned.

Both are failed through WorkflowOrchestrator.fail_job, so the refund and the
status change share one conditional transition with every other writer.
A sweep runs immediately at startup and then every RECONCILIATION_INTERVAL_SECONDS.
"""

import asyncio
from dataclasses import dataclass
from datetime import timedelta

import structlog

from vidgenie.core.config import Settings
from vidgenie.core.timezone import utcnow
from vidgenie.models.generation_job import JobStatus
from vidgenie.services.workflow.orchestrator import WorkflowOrchestrator

logger = structlog.get_logger()

IMAGE_STAGE_STATUSES = [JobStatus.QUEUED, JobStatus.GENERATING_IMAGE, JobStatus.IMAGE_READY]


@dataclass
class SweepResult:
    orphaned_image_jobs: int = 0
    stale_video_jobs: int = 0


async def sweep_stuck_jobs(orchestrator: WorkflowOrchestrator, settings: Settings) -> SweepResult:
    """Fail and refund every stuck job found in one pass."""
    result = SweepResult()
    now = utcnow()
    batch = settings.reconciliation_batch_size

    image_cutoff = now - timedelta(seconds=settings.image_generation_timeout_seconds * 2)
    async with await orchestrator.uow_factory() as uow:
        orphaned = await uow.jobs.list_stuck(IMAGE_STAGE_STATUSES, image_cutoff, limit=batch)

    for job in orphaned:
        if await orchestrator.fail_job(
            job,
            "INTERRUPTED",
            "Image generation was interrupted; credits refunded",
            expected=[job.status],
        ):
            result.orphaned_image_jobs += 1

    if settings.stale_video_job_seconds > 0:
        video_cutoff = now - timedelta(seconds=settings.stale_video_job_seconds)
        async with await orchestrator.uow_factory() as uow:
            stale = await uow.jobs.list_stuck([JobStatus.GENERATING_VIDEO], video_cutoff, limit=batch)

        for job in stale:
            if job.provider_job_id:
                await orchestrator.video_provider.cancel(job.provider_job_id)
            if await orchestrator.fail_job(
                job,
                "VIDEO_TIMEOUT",
                "Video provider did not report a result in time; credits refunded",
                expected=[JobStatus.GENERATING_VIDEO],
            ):
                result.stale_video_jobs += 1

    if result.orphaned_image_jobs or result.stale_video_jobs:
        logger.info(
            "reconciliation.sweep_completed",
            orphaned_image_jobs=result.orphaned_image_jobs,
            stale_video_jobs=result.stale_video_jobs,
        )
    return result


async def run_reconciliation_worker(
    orchestrator: WorkflowOrchestrator,
    settings: Settings,
) -> None:
    """Main entry point for the reconciliation worker.

    Runs until asyncio.CancelledError (app shutdown). Errors in a sweep are
    logged and the next sweep runs on schedule.
    """
    interval = settings.reconciliation_interval_seconds

    logger.info(
        "worker.started",
        worker="reconciliation_worker",
        interval=interval,
        stale_video_job_seconds=settings.stale_video_job_seconds,
    )

    try:
        while True:
            try:
                await sweep_stuck_jobs(orchestrator, settings)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                logger.error(
                    "worker.error",
                    worker_type="reconciliation_worker",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )

            await asyncio.sleep(interval)

    except asyncio.CancelledError:
        logger.info(
            "worker.stopped",
            worker="reconciliation_worker",
            message="Graceful shutdown requested",
        )
        raise
