"""Workflow orchestrator: drives a generation job from submission to a terminal state.

Every status change goes through GenerationJobRepository.transition(), a
conditional UPDATE keyed on the expected prior status. Side effects that must
happen at most once per job (asset creation, refunds) are written in the same
transaction as the transition that gates them, so a losing writer rolls them
back along with its transition.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional
from uuid import UUID, uuid4

import structlog

from vidgenie.core.config import Settings
from vidgenie.core.timezone import utcnow
from vidgenie.models.asset import Asset, AssetKind
from vidgenie.models.generation_job import (
    NON_TERMINAL_STATUSES,
    PAUSABLE_STATUSES,
    GenerationJob,
    JobKind,
    JobStatus,
)
from vidgenie.models.webhook_record import WebhookRecord
from vidgenie.services.credits.ledger import CreditsLedger
from vidgenie.services.exceptions import (
    ConcurrencyConflict,
    JobStateError,
    NotFoundError,
    ProviderError,
    ProviderTimeoutError,
    SignatureError,
    StorageError,
    ValidationError,
)
from vidgenie.services.image_generation.prompt_validator import (
    VIDEO_PROMPT_MAX_LENGTH,
    derive_image_prompt,
    validate_prompt,
    validate_video_prompt,
)
from vidgenie.services.image_generation.replicate_client import ImageConfig
from vidgenie.services.webhooks.payload import VideoEventStatus, VideoWebhookPayload
from vidgenie.services.webhooks.receiver import payload_from_record
from vidgenie.services.workflow.progress import (
    StageBudgets,
    estimate_remaining_seconds,
    overall_progress,
    progress_for_status,
    provider_progress,
)
from vidgenie.services.workflow.publisher import ProgressEvent, StatusPublisher

logger = structlog.get_logger()

CANCELLED_MESSAGE = "Cancelled by user"


@dataclass
class SubmitJobRequest:
    """Validated-at-the-edge input for a new job."""

    prompt: str
    kind: JobKind = JobKind.IMAGE_THEN_VIDEO
    image_prompt: Optional[str] = None
    video_prompt: Optional[str] = None
    image_config: ImageConfig = field(default_factory=ImageConfig)
    project_id: Optional[str] = None


@dataclass
class JobView:
    """A job with its assets and advisory progress, as shown to its owner."""

    job: GenerationJob
    progress: int
    eta_seconds: Optional[int]
    provider_progress: Optional[float] = None
    image_asset: Optional[Asset] = None
    video_asset: Optional[Asset] = None


class WorkflowOrchestrator:
    """State machine for the image -> video workflow.

    Collaborators are injected so tests can replace providers and storage.
    """

    def __init__(
        self,
        uow_factory,
        ledger: CreditsLedger,
        image_provider,
        video_provider,
        storage,
        fetcher,
        publisher: StatusPublisher,
        settings: Settings,
    ):
        """Initialize orchestrator.

        Args:
            uow_factory: Factory producing UnitOfWork instances
            ledger: Credits ledger
            image_provider: Object with async generate(prompt, config) and a name
            video_provider: Object with async submit(prompt, image_url, webhook_url),
                async cancel(request_id) and a name
            storage: Object with async upload(data, content_type, filename) -> url
            fetcher: Object with async fetch(url, default_content_type) -> FetchedMedia
            publisher: Progress event fan-out
            settings: Application settings
        """
        self.uow_factory = uow_factory
        self.ledger = ledger
        self.image_provider = image_provider
        self.video_provider = video_provider
        self.storage = storage
        self.fetcher = fetcher
        self.publisher = publisher
        self.settings = settings
        self.budgets = StageBudgets(
            image_seconds=settings.image_stage_budget_seconds,
            video_seconds=settings.video_stage_budget_seconds,
        )

    # Submission

    async def submit_job(self, user_id: str, request: SubmitJobRequest) -> GenerationJob:
        """Validate, charge, and create a job, leaving it in GENERATING_IMAGE.

        The charge and the job row are written in one transaction: if the insert
        fails the charge rolls back with it.

        Raises:
            ValidationError: Bad prompt or kind (nothing charged)
            InsufficientCredits: Balance below cost (nothing charged)
        """
        prompt = validate_prompt(request.prompt)
        video_prompt = None
        if request.kind == JobKind.IMAGE_THEN_VIDEO:
            if not request.video_prompt and len(prompt) > VIDEO_PROMPT_MAX_LENGTH:
                raise ValidationError(
                    f"prompt is longer than {VIDEO_PROMPT_MAX_LENGTH} characters; "
                    "provide a shorter video_prompt for the video stage"
                )
            video_prompt = validate_video_prompt(request.video_prompt or prompt)
        elif request.video_prompt:
            raise ValidationError("video_prompt is only valid for IMAGE_THEN_VIDEO jobs")
        image_prompt = (
            validate_prompt(request.image_prompt, field="image_prompt")
            if request.image_prompt
            else derive_image_prompt(prompt)
        )

        cost = self.ledger.estimate_cost(request.kind)
        job = GenerationJob(
            id=uuid4(),
            user_id=user_id,
            project_id=request.project_id,
            kind=request.kind,
            status=JobStatus.QUEUED,
            input_prompt=prompt,
            image_prompt=image_prompt,
            video_prompt=video_prompt,
            provider=self.image_provider.name,
            cost=cost,
            provider_metadata={"image_config": request.image_config.model_dump()},
        )

        async with await self.uow_factory() as uow:
            await self.ledger.reserve_and_charge(
                uow,
                user_id,
                cost,
                description=f"{request.kind.value} generation",
                job_id=job.id,
            )
            await uow.jobs.add(job)

        logger.info(
            "workflow.job_created",
            job_id=str(job.id),
            user_id=user_id,
            kind=request.kind.value,
            cost=cost,
        )

        now = utcnow()
        async with await self.uow_factory() as uow:
            await uow.jobs.transition(
                job.id,
                [JobStatus.QUEUED],
                JobStatus.GENERATING_IMAGE,
                started_at=now,
                stage_started_at=now,
            )
            job = await uow.jobs.get_by_id(job.id)  # type: ignore[assignment]

        await self._publish(job.id, "status", JobStatus.GENERATING_IMAGE)
        return job

    # Image stage

    async def run_image_stage(self, job_id: UUID) -> None:
        """Generate, persist, and advance past the image stage.

        Runs after the submit response is sent. Provider and storage failures end
        the job in FAILED with a refund; nothing propagates to the caller.
        """
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_by_id(job_id)

        if job is None or job.status != JobStatus.GENERATING_IMAGE:
            logger.info(
                "workflow.image_stage.skipped",
                job_id=str(job_id),
                status=job.status.value if job else None,
            )
            return

        try:
            await self._advance_image_stage(job)
        except Exception as e:
            # Background task: nothing above this frame records the failure
            logger.exception(
                "workflow.image_stage.crashed",
                job_id=str(job.id),
                error=str(e),
                error_type=type(e).__name__,
            )
            await self.fail_job(job, "INTERNAL_ERROR", "Image stage failed unexpectedly")

    async def _advance_image_stage(self, job: GenerationJob) -> None:
        log = logger.bind(job_id=str(job.id), user_id=job.user_id)
        config = ImageConfig(**(job.provider_metadata or {}).get("image_config", {}))

        try:
            try:
                generated = await asyncio.wait_for(
                    self.image_provider.generate(job.image_prompt, config),
                    timeout=self.settings.image_generation_timeout_seconds,
                )
            except asyncio.TimeoutError as e:
                raise ProviderTimeoutError(
                    f"Image generation exceeded {self.settings.image_generation_timeout_seconds}s"
                ) from e
            media = await self.fetcher.fetch(generated.url, "image/png")
            public_url = await self.storage.upload(
                media.data, media.content_type, f"{job.id}-image.png"
            )
        except ProviderError as e:
            log.warning("workflow.image_stage.provider_failed", error=str(e), code=e.code)
            await self.fail_job(job, e.code, str(e))
            return
        except StorageError as e:
            log.warning("workflow.image_stage.storage_failed", error=str(e))
            await self.fail_job(job, "STORAGE_ERROR", str(e))
            return

        try:
            async with await self.uow_factory() as uow:
                asset = await uow.assets.add(
                    Asset(
                        user_id=job.user_id,
                        project_id=job.project_id,
                        job_id=job.id,
                        kind=AssetKind.IMAGE,
                        filename=f"{job.id}-image.png",
                        mime_type=media.content_type,
                        file_size=media.size,
                        public_url=public_url,
                        generated_by=self.image_provider.name,
                        prompt=job.image_prompt,
                        ai_config={"model": generated.model, **generated.config},
                    )
                )
                won = await uow.jobs.transition(
                    job.id,
                    [JobStatus.GENERATING_IMAGE],
                    JobStatus.IMAGE_READY,
                    image_asset_id=asset.id,
                )
                if not won:
                    raise ConcurrencyConflict("Job left GENERATING_IMAGE during generation")
        except ConcurrencyConflict:
            log.info("workflow.image_stage.superseded")
            return

        log.info("workflow.image_stage.succeeded", asset_id=str(asset.id))
        await self._publish(job.id, "workflow:update", JobStatus.IMAGE_READY, image_url=public_url)

        if job.kind == JobKind.IMAGE:
            await self._complete_image_only(job)
        else:
            await self._start_video_stage(job, public_url)

    async def _complete_image_only(self, job: GenerationJob) -> None:
        async with await self.uow_factory() as uow:
            won = await uow.jobs.transition(
                job.id,
                [JobStatus.IMAGE_READY, JobStatus.PAUSED],
                JobStatus.VIDEO_READY,
                completed_at=utcnow(),
                pre_pause_status=None,
            )

        if won:
            logger.info("workflow.job_completed", job_id=str(job.id), kind=job.kind.value)
            await self._publish(job.id, "workflow:complete", JobStatus.VIDEO_READY)
        else:
            logger.info("workflow.completion.superseded", job_id=str(job.id))

    async def _start_video_stage(self, job: GenerationJob, image_url: str) -> None:
        log = logger.bind(job_id=str(job.id), user_id=job.user_id)

        try:
            request_id = await self.video_provider.submit(
                job.video_prompt or job.input_prompt, image_url, self.settings.video_webhook_url
            )
        except ProviderError as e:
            log.warning("workflow.video_submit.failed", error=str(e), code=e.code)
            await self.fail_job(job, e.code, str(e))
            return

        now = utcnow()
        linkage = {
            "provider": self.video_provider.name,
            "provider_job_id": request_id,
            "stage_started_at": now,
        }

        async with await self.uow_factory() as uow:
            started = await uow.jobs.transition(
                job.id, [JobStatus.IMAGE_READY], JobStatus.GENERATING_VIDEO, **linkage
            )
            recorded_while_paused = False
            if not started:
                # A pause landed while submitting: keep the job paused but remember
                # that the provider is now running so resume restores GENERATING_VIDEO.
                recorded_while_paused = await uow.jobs.update_if_status(
                    job.id,
                    [JobStatus.PAUSED],
                    pre_pause_status=JobStatus.GENERATING_VIDEO,
                    **linkage,
                )

        if started:
            log.info("workflow.video_stage.started", provider_job_id=request_id)
            await self._publish(job.id, "workflow:update", JobStatus.GENERATING_VIDEO)
            await self._replay_early_webhooks(job, request_id)
        elif recorded_while_paused:
            log.info("workflow.video_stage.started_while_paused", provider_job_id=request_id)
            await self._replay_early_webhooks(job, request_id)
        else:
            # Cancelled (or otherwise finished) while the request was in flight
            log.info("workflow.video_stage.orphaned", provider_job_id=request_id)
            await self.video_provider.cancel(request_id)

    async def _replay_early_webhooks(self, job: GenerationJob, request_id: str) -> None:
        """Apply callbacks stored before the provider id was linked to the job.

        A fast provider can call back between submit returning and the linkage
        commit; those records were stored unmatched.
        """
        async with await self.uow_factory() as uow:
            records = await uow.webhook_records.link_unmatched(request_id, job.id)

        for record in records:
            if not record.accepted:
                continue
            logger.info(
                "workflow.webhook.replayed",
                job_id=str(job.id),
                record_id=str(record.id),
                event_status=record.event_status,
            )
            try:
                await self.handle_webhook(record)
            except Exception as e:
                # Left for the reconciliation sweep
                logger.exception(
                    "workflow.webhook.replay_failed",
                    job_id=str(job.id),
                    record_id=str(record.id),
                    error=str(e),
                    error_type=type(e).__name__,
                )

    # Webhook-driven advancement

    async def handle_webhook(self, record: WebhookRecord) -> bool:
        """Apply a stored video webhook to its job.

        Returns:
            True if the event changed job state, False if it was a no-op
            (duplicate, stale, or lost a race)

        Raises:
            SignatureError: Record failed verification (stays recorded, not processed)
            NotFoundError: Record is not correlated to a job
            ValidationError: Stored payload cannot be parsed
        """
        if not record.accepted:
            raise SignatureError(f"Webhook {record.id} failed signature verification")
        if record.job_id is None:
            raise NotFoundError(f"Webhook {record.id} does not match any job")

        payload = payload_from_record(record)
        if payload is None:
            raise ValidationError(f"Webhook {record.id} payload is malformed")

        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_by_id(record.job_id)
        if job is None:
            raise NotFoundError(f"Job {record.job_id} no longer exists")

        if job.is_terminal:
            logger.info(
                "workflow.webhook.ignored_terminal",
                job_id=str(job.id),
                status=job.status.value,
                event_status=payload.status.value,
            )
            return False

        if payload.status == VideoEventStatus.PROCESSING:
            return await self._apply_processing(job, payload)
        if payload.status == VideoEventStatus.COMPLETED:
            return await self._apply_completed(job, payload)
        return await self.fail_job(
            job,
            "VIDEO_GENERATION_FAILED",
            payload.error_message or "Video generation failed",
        )

    async def _apply_processing(self, job: GenerationJob, payload: VideoWebhookPayload) -> bool:
        metadata: dict[str, Any] = dict(job.provider_metadata or {})
        if payload.progress_percentage is not None:
            metadata["progress_percentage"] = payload.progress_percentage
        if payload.metadata:
            metadata["provider"] = payload.metadata

        async with await self.uow_factory() as uow:
            updated = await uow.jobs.update_if_status(
                job.id, [JobStatus.GENERATING_VIDEO], provider_metadata=metadata
            )

        if updated:
            await self._publish(
                job.id,
                "workflow:update",
                JobStatus.GENERATING_VIDEO,
                provider_progress=payload.progress_percentage,
            )
        return updated

    async def _apply_completed(self, job: GenerationJob, payload: VideoWebhookPayload) -> bool:
        log = logger.bind(job_id=str(job.id), user_id=job.user_id)

        if job.status not in (JobStatus.GENERATING_VIDEO, JobStatus.PAUSED):
            log.warning("workflow.webhook.unexpected_completion", status=job.status.value)
            return False

        if not payload.video_url:
            return await self.fail_job(
                job, "VIDEO_MISSING_URL", "Provider reported completion without a video URL"
            )

        try:
            media = await self.fetcher.fetch(payload.video_url, "video/mp4")
            video_url = await self.storage.upload(
                media.data, media.content_type, f"{job.id}-video.mp4"
            )
        except StorageError as e:
            log.warning("workflow.video_stage.storage_failed", error=str(e))
            return await self.fail_job(job, "STORAGE_ERROR", str(e))

        thumbnail_url = None
        if payload.thumbnail_url:
            try:
                thumb = await self.fetcher.fetch(payload.thumbnail_url, "image/jpeg")
                thumbnail_url = await self.storage.upload(
                    thumb.data, thumb.content_type, f"{job.id}-thumbnail.jpg"
                )
            except StorageError as e:
                # Optional output; the video itself is persisted
                log.warning("workflow.video_stage.thumbnail_failed", error=str(e))

        try:
            async with await self.uow_factory() as uow:
                asset = await uow.assets.add(
                    Asset(
                        user_id=job.user_id,
                        project_id=job.project_id,
                        job_id=job.id,
                        kind=AssetKind.VIDEO,
                        filename=f"{job.id}-video.mp4",
                        mime_type=media.content_type,
                        file_size=media.size,
                        public_url=video_url,
                        thumbnail_url=thumbnail_url,
                        generated_by=self.video_provider.name,
                        prompt=job.video_prompt,
                        ai_config=payload.metadata,
                    )
                )
                won = await uow.jobs.transition(
                    job.id,
                    [JobStatus.GENERATING_VIDEO, JobStatus.PAUSED],
                    JobStatus.VIDEO_READY,
                    video_asset_id=asset.id,
                    completed_at=utcnow(),
                    pre_pause_status=None,
                )
                if not won:
                    raise ConcurrencyConflict("Job finished while the video was being stored")
        except ConcurrencyConflict:
            log.info("workflow.webhook.completion_superseded")
            return False

        log.info("workflow.job_completed", asset_id=str(asset.id), kind=job.kind.value)
        await self._publish(
            job.id,
            "workflow:complete",
            JobStatus.VIDEO_READY,
            video_url=video_url,
            thumbnail_url=thumbnail_url,
        )
        return True

    # Failure, cancel, pause

    async def fail_job(
        self,
        job: GenerationJob,
        error_code: str,
        error_message: str,
        expected: Iterable[JobStatus] = NON_TERMINAL_STATUSES,
    ) -> bool:
        """Move a job to FAILED and refund its cost, exactly once.

        The refund is written in the same transaction as the conditional
        transition; if another writer already finished the job, neither happens.

        Returns:
            True if this call failed the job, False if it was already terminal
        """
        async with await self.uow_factory() as uow:
            won = await uow.jobs.transition(
                job.id,
                expected,
                JobStatus.FAILED,
                error_code=error_code,
                error_message=error_message[:1000],
                completed_at=utcnow(),
                pre_pause_status=None,
            )
            if won and job.cost > 0:
                await self.ledger.refund(
                    uow,
                    job.user_id,
                    job.cost,
                    description=f"Refund for job {job.id}: {error_code}",
                    job_id=job.id,
                )

        if not won:
            logger.info("workflow.fail.superseded", job_id=str(job.id), error_code=error_code)
            return False

        logger.info(
            "workflow.job_failed",
            job_id=str(job.id),
            user_id=job.user_id,
            error_code=error_code,
            refunded=job.cost,
        )
        await self._publish(
            job.id,
            "workflow:complete",
            JobStatus.FAILED,
            message=error_message,
            error_code=error_code,
        )
        return True

    async def cancel_job(self, user_id: str, job_id: UUID) -> GenerationJob:
        """Cancel a non-terminal job: abort at the provider, fail it, refund.

        Raises:
            NotFoundError: Job does not exist or belongs to another user
            JobStateError: Job is already terminal
        """
        job = await self._get_owned(user_id, job_id)
        if job.is_terminal:
            raise JobStateError(f"Job is already {job.status.value} and cannot be cancelled")

        if job.provider_job_id and job.provider == self.video_provider.name:
            await self.video_provider.cancel(job.provider_job_id)

        if not await self.fail_job(job, "CANCELLED", CANCELLED_MESSAGE):
            raise JobStateError("Job finished before it could be cancelled")

        return await self._get_owned(user_id, job_id)

    async def pause_job(self, user_id: str, job_id: UUID) -> GenerationJob:
        """Mark a job PAUSED for display.

        Providers keep running while a job is paused: a completion webhook still
        finishes a paused job.

        Raises:
            NotFoundError: Job does not exist or belongs to another user
            JobStateError: Job is not in IMAGE_READY or GENERATING_VIDEO
        """
        job = await self._get_owned(user_id, job_id)
        if job.status not in PAUSABLE_STATUSES:
            raise JobStateError(f"Cannot pause a job in {job.status.value}")

        async with await self.uow_factory() as uow:
            won = await uow.jobs.transition(
                job.id, [job.status], JobStatus.PAUSED, pre_pause_status=job.status
            )
        if not won:
            raise JobStateError("Job status changed before it could be paused")

        logger.info("workflow.job_paused", job_id=str(job.id), from_status=job.status.value)
        await self._publish(job.id, "status", JobStatus.PAUSED, pre_pause_status=job.status)
        return await self._get_owned(user_id, job_id)

    async def resume_job(self, user_id: str, job_id: UUID) -> GenerationJob:
        """Restore a paused job to the status it was paused in.

        Raises:
            NotFoundError: Job does not exist or belongs to another user
            JobStateError: Job is not paused
        """
        job = await self._get_owned(user_id, job_id)
        if job.status != JobStatus.PAUSED or job.pre_pause_status is None:
            raise JobStateError(f"Cannot resume a job in {job.status.value}")

        target = job.pre_pause_status
        async with await self.uow_factory() as uow:
            won = await uow.jobs.transition(
                job.id, [JobStatus.PAUSED], target, pre_pause_status=None
            )
        if not won:
            raise JobStateError("Job status changed before it could be resumed")

        logger.info("workflow.job_resumed", job_id=str(job.id), to_status=target.value)
        await self._publish(job.id, "status", target)
        return await self._get_owned(user_id, job_id)

    # Reads

    async def get_job_view(self, user_id: str, job_id: UUID) -> JobView:
        """Current state of a job for its owner.

        Raises:
            NotFoundError: Job does not exist or belongs to another user
        """
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_for_owner(job_id, user_id)
            if job is None:
                raise NotFoundError(f"Job {job_id} not found")
            image_asset = (
                await uow.assets.get_by_id(job.image_asset_id) if job.image_asset_id else None
            )
            video_asset = (
                await uow.assets.get_by_id(job.video_asset_id) if job.video_asset_id else None
            )

        return JobView(
            job=job,
            progress=overall_progress(job),
            eta_seconds=estimate_remaining_seconds(job, self.budgets),
            provider_progress=provider_progress(job),
            image_asset=image_asset,
            video_asset=video_asset,
        )

    def status_event(self, job: GenerationJob) -> ProgressEvent:
        """Snapshot event for a newly connected observer."""
        return ProgressEvent(
            type="workflow:complete" if job.is_terminal else "status",
            job_id=str(job.id),
            status=job.status.value,
            progress=overall_progress(job),
            message=job.error_message,
            data={"eta_seconds": estimate_remaining_seconds(job, self.budgets)},
        )

    async def _get_owned(self, user_id: str, job_id: UUID) -> GenerationJob:
        async with await self.uow_factory() as uow:
            job = await uow.jobs.get_for_owner(job_id, user_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    async def _publish(
        self,
        job_id: UUID,
        event_type: str,
        status: JobStatus,
        message: Optional[str] = None,
        pre_pause_status: Optional[JobStatus] = None,
        **data: Any,
    ) -> None:
        event = ProgressEvent(
            type=event_type,  # type: ignore[arg-type]
            job_id=str(job_id),
            status=status.value,
            progress=progress_for_status(status, pre_pause_status),
            message=message,
            data={k: v for k, v in data.items() if v is not None},
        )
        await self.publisher.publish(job_id, event)
