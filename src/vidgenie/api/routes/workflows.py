"""Generation workflow API endpoints.

- POST /api/workflow/start - Charge credits, create the job, run the image stage in the background
- GET /api/workflow/{job_id}/status - Current status, progress, ETA, assets
- POST /api/workflow/{job_id}/cancel - Cancel with refund
- POST /api/workflow/{job_id}/pause - Display-only pause (providers keep running)
- POST /api/workflow/{job_id}/resume - Restore the pre-pause status
- GET /api/workflow/{job_id}/stream - Live progress as text/event-stream
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field
from starlette.background import BackgroundTask

from vidgenie.api.dependencies import (
    get_account_user_id,
    get_current_user_id,
    get_orchestrator,
    get_publisher,
)
from vidgenie.api.errors import to_http_exception
from vidgenie.models.asset import Asset
from vidgenie.models.generation_job import GenerationJob, JobKind
from vidgenie.services.exceptions import NotFoundError, ServiceError
from vidgenie.services.image_generation.replicate_client import ImageConfig
from vidgenie.services.workflow.orchestrator import JobView, SubmitJobRequest, WorkflowOrchestrator
from vidgenie.services.workflow.progress import overall_progress
from vidgenie.services.workflow.publisher import StatusPublisher

logger = structlog.get_logger()
router = APIRouter(prefix="/api/workflow", tags=["workflow"])


# Request/Response Models


class StartWorkflowRequest(BaseModel):
    prompt: str = Field(..., description="What to generate", max_length=4000)
    kind: JobKind = JobKind.IMAGE_THEN_VIDEO
    image_prompt: Optional[str] = Field(default=None, max_length=4000)
    video_prompt: Optional[str] = Field(default=None, max_length=4000)
    image_config: ImageConfig = Field(default_factory=ImageConfig)
    project_id: Optional[str] = Field(default=None, max_length=255)


class StartWorkflowResponse(BaseModel):
    job_id: UUID
    status: str
    cost: int
    status_url: str
    stream_url: str


class AssetDTO(BaseModel):
    id: UUID
    kind: str
    public_url: str
    thumbnail_url: Optional[str]
    mime_type: str
    file_size: int

    @classmethod
    def from_asset(cls, asset: Optional[Asset]) -> Optional["AssetDTO"]:
        if asset is None:
            return None
        return cls(
            id=asset.id,
            kind=asset.kind.value,
            public_url=asset.public_url,
            thumbnail_url=asset.thumbnail_url,
            mime_type=asset.mime_type,
            file_size=asset.file_size,
        )


class JobStatusResponse(BaseModel):
    job_id: UUID
    kind: str
    status: str
    pre_pause_status: Optional[str]
    progress: int
    eta_seconds: Optional[int]
    provider_progress: Optional[float]
    cost: int
    image: Optional[AssetDTO]
    video: Optional[AssetDTO]
    error_message: Optional[str]
    error_code: Optional[str]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]
    processing_time_ms: Optional[int]


class JobActionResponse(BaseModel):
    job_id: UUID
    status: str
    progress: int
    error_message: Optional[str]


def _status_response(view: JobView) -> JobStatusResponse:
    job = view.job
    return JobStatusResponse(
        job_id=job.id,
        kind=job.kind.value,
        status=job.status.value,
        pre_pause_status=job.pre_pause_status.value if job.pre_pause_status else None,
        progress=view.progress,
        eta_seconds=view.eta_seconds,
        provider_progress=view.provider_progress,
        cost=job.cost,
        image=AssetDTO.from_asset(view.image_asset),
        video=AssetDTO.from_asset(view.video_asset),
        error_message=job.error_message,
        error_code=job.error_code,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        processing_time_ms=job.processing_time_ms,
    )


def _action_response(job: GenerationJob) -> JobActionResponse:
    return JobActionResponse(
        job_id=job.id,
        status=job.status.value,
        progress=overall_progress(job),
        error_message=job.error_message,
    )


# Endpoints


@router.post("/start", response_model=StartWorkflowResponse, status_code=status.HTTP_202_ACCEPTED)
async def start_workflow(
    request: StartWorkflowRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_account_user_id),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> StartWorkflowResponse:
    """Charge credits and create a job; the image stage runs after the response.

    HTTP Status Codes:
        202: Job created and charged
        400: Invalid prompt or options (nothing charged)
        402: Insufficient credits (nothing charged)
    """
    try:
        job = await orchestrator.submit_job(
            user_id,
            SubmitJobRequest(
                prompt=request.prompt,
                kind=request.kind,
                image_prompt=request.image_prompt,
                video_prompt=request.video_prompt,
                image_config=request.image_config,
                project_id=request.project_id,
            ),
        )
    except ServiceError as e:
        raise to_http_exception(e)

    background_tasks.add_task(orchestrator.run_image_stage, job.id)

    return StartWorkflowResponse(
        job_id=job.id,
        status=job.status.value,
        cost=job.cost,
        status_url=f"/api/workflow/{job.id}/status",
        stream_url=f"/api/workflow/{job.id}/stream",
    )


@router.get("/{job_id}/status", response_model=JobStatusResponse)
async def get_status(
    job_id: UUID,
    user_id: str = Depends(get_current_user_id),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> JobStatusResponse:
    try:
        view = await orchestrator.get_job_view(user_id, job_id)
    except ServiceError as e:
        raise to_http_exception(e)
    return _status_response(view)


@router.post("/{job_id}/cancel", response_model=JobActionResponse)
async def cancel_workflow(
    job_id: UUID,
    user_id: str = Depends(get_current_user_id),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> JobActionResponse:
    """Cancel a job and refund its cost. 409 if the job is already finished."""
    try:
        job = await orchestrator.cancel_job(user_id, job_id)
    except ServiceError as e:
        raise to_http_exception(e)
    return _action_response(job)


@router.post("/{job_id}/pause", response_model=JobActionResponse)
async def pause_workflow(
    job_id: UUID,
    user_id: str = Depends(get_current_user_id),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> JobActionResponse:
    """Pause for display only; the provider keeps working and may still finish the job."""
    try:
        job = await orchestrator.pause_job(user_id, job_id)
    except ServiceError as e:
        raise to_http_exception(e)
    return _action_response(job)


@router.post("/{job_id}/resume", response_model=JobActionResponse)
async def resume_workflow(
    job_id: UUID,
    user_id: str = Depends(get_current_user_id),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
) -> JobActionResponse:
    try:
        job = await orchestrator.resume_job(user_id, job_id)
    except ServiceError as e:
        raise to_http_exception(e)
    return _action_response(job)


@router.get("/{job_id}/stream")
async def stream_workflow(
    job_id: UUID,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
    publisher: StatusPublisher = Depends(get_publisher),
) -> StreamingResponse:
    """Server-sent events for one job.

    The subscription is registered before the current state is read, so no
    transition can fall between the snapshot and the live events.
    """
    subscription = await publisher.subscribe(job_id)
    try:
        view = await orchestrator.get_job_view(user_id, job_id)
    except NotFoundError:
        await subscription.aclose()
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")
    except BaseException:
        await subscription.aclose()
        raise

    initial = orchestrator.status_event(view.job)

    async def event_stream():
        try:
            yield initial.to_sse()
            if initial.is_terminal:
                return
            async for event in subscription:
                if await request.is_disconnected():
                    logger.debug("stream.client_disconnected", job_id=str(job_id))
                    break
                yield event.to_sse()
        finally:
            await subscription.aclose()

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
        # Runs even if the body is never iterated (client gone before the first chunk)
        background=BackgroundTask(subscription.aclose),
    )
