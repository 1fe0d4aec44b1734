"""FastAPI application factory."""

# Import timezone enforcement (sets TZ=UTC)
import asyncio
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from vidgenie.api.routes import credits, webhooks, workflows
from vidgenie.core import timezone  # noqa: F401
from vidgenie.core.config import Settings, configure_logging
from vidgenie.core.database import setup_db_session
from vidgenie.services.auth.supabase import SupabaseAuthResolver
from vidgenie.services.credits.ledger import CreditsLedger
from vidgenie.services.image_generation.replicate_client import ReplicateImageProvider
from vidgenie.services.storage.pinata_client import MediaFetcher, PinataStorage
from vidgenie.services.video_generation.fal_client import FalVideoProvider
from vidgenie.services.webhooks.receiver import WebhookReceiver
from vidgenie.services.workflow.orchestrator import WorkflowOrchestrator
from vidgenie.services.workflow.publisher import StatusPublisher
from vidgenie.uow import create_uow_factory
from vidgenie.workers.reconciliation_worker import run_reconciliation_worker

logger = structlog.get_logger()


def create_resilient_worker(
    coro_func, worker_args: tuple, worker_name: str, shutdown_event: asyncio.Event
):
    """Create a worker with automatic restart on failure.

    Args:
        coro_func: Worker coroutine function (e.g., run_reconciliation_worker)
        worker_args: Positional arguments passed to coro_func on every (re)start
        worker_name: Human-readable worker name for logging
        shutdown_event: Event to signal graceful shutdown

    Returns:
        Initial task handle (will be auto-recreated on crash)
    """
    RESTART_DELAY = 1  # Fixed 1 second delay between restarts

    def on_worker_done(task: asyncio.Task):
        if shutdown_event.is_set():
            logger.info("worker.shutdown_complete", worker=worker_name)
            return

        if task.cancelled():
            logger.info("worker.cancelled", worker=worker_name)
            return

        exc = task.exception()
        if exc:
            logger.error(
                "worker.crashed",
                worker=worker_name,
                error=str(exc),
                error_type=type(exc).__name__,
                retry_in_seconds=RESTART_DELAY,
                exc_info=exc,
            )
        else:
            # Worker stopped cleanly (unexpected for infinite loop workers)
            logger.warning(
                "worker.stopped_unexpectedly",
                worker=worker_name,
                retry_in_seconds=RESTART_DELAY,
            )

        async def restart_worker():
            await asyncio.sleep(RESTART_DELAY)

            # Check again if shutdown was requested during sleep
            if shutdown_event.is_set():
                return

            logger.info("worker.restarting", worker=worker_name)
            new_task = asyncio.create_task(coro_func(*worker_args))
            new_task.add_done_callback(on_worker_done)

        asyncio.create_task(restart_worker())

    task = asyncio.create_task(coro_func(*worker_args))
    task.add_done_callback(on_worker_done)
    return task


def init_app_state(
    app: FastAPI,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    image_provider=None,
    video_provider=None,
    storage=None,
    fetcher=None,
    auth_resolver=None,
) -> None:
    """Build services and store them on app.state for the dependencies.

    Provider, storage and auth collaborators default to the real HTTP clients;
    tests pass fakes.
    """
    uow_factory = create_uow_factory(session_factory)
    ledger = CreditsLedger(settings)
    publisher = StatusPublisher(heartbeat_seconds=settings.sse_heartbeat_seconds)

    video_provider = video_provider or FalVideoProvider(
        api_key=settings.fal_key,
        model=settings.fal_video_model,
        queue_url=settings.fal_queue_url,
    )

    orchestrator = WorkflowOrchestrator(
        uow_factory=uow_factory,
        ledger=ledger,
        image_provider=image_provider
        or ReplicateImageProvider(
            api_token=settings.replicate_api_token,
            model_version=settings.replicate_model_version,
            timeout_seconds=settings.image_generation_timeout_seconds,
        ),
        video_provider=video_provider,
        storage=storage or PinataStorage(settings.pinata_jwt, settings.pinata_gateway),
        fetcher=fetcher or MediaFetcher(),
        publisher=publisher,
        settings=settings,
    )

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.ledger = ledger
    app.state.publisher = publisher
    app.state.orchestrator = orchestrator
    app.state.webhook_receiver = WebhookReceiver(
        uow_factory,
        secret=settings.video_webhook_secret,
        signature_header=settings.video_webhook_signature_header,
    )
    app.state.auth_resolver = auth_resolver or SupabaseAuthResolver(
        settings.supabase_url, settings.supabase_service_role_key
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    - Startup: configure logging, build the session factory and services, start the
      reconciliation worker (which immediately sweeps jobs orphaned by a restart)
    - Shutdown: stop the worker
    """
    settings: Settings = app.state.settings

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    init_app_state(app, settings, session_factory)

    if not settings.video_webhook_secret:
        logger.warning(
            "startup.webhook_signature_disabled",
            message="VIDEO_WEBHOOK_SECRET is empty; webhook signatures will not be verified",
        )

    shutdown_event = asyncio.Event()

    reconciliation_task = create_resilient_worker(
        run_reconciliation_worker,
        (app.state.orchestrator, settings),
        "reconciliation",
        shutdown_event,
    )

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown")
    shutdown_event.set()

    reconciliation_task.cancel()
    await asyncio.gather(reconciliation_task, return_exceptions=True)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use (default: loaded from environment)

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="vidgenie API",
        description="Image-to-video generation workflow with credits",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(credits.router)  # prefix="/api/credits" in definition
    app.include_router(workflows.router)  # prefix="/api/workflow" in definition
    app.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
