"""pytest fixtures for vidgenie tests.

Provides:
- utc_timezone: Autouse fixture enforcing UTC timezone
- db_url: Per-test SQLite file (aiosqlite), or a session-scoped PostgreSQL
  testcontainer when TEST_WITH_POSTGRES=1
- session_factory / uow_factory: Function-scoped, schema created fresh per test
- settings: Test settings with small, round credit numbers
- Fake collaborators (image/video providers, storage, fetcher, auth) and an
  orchestrator wired to them
- client: httpx AsyncClient over the ASGI app with the same wiring
"""

import asyncio
import os
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlmodel import SQLModel

import vidgenie.models  # noqa: F401  (registers tables)
from vidgenie.core.config import Settings
from vidgenie.core.database import setup_db_session
from vidgenie.core.timezone import utcnow
from vidgenie.models.credit_account import CreditAccount
from vidgenie.models.credit_ledger import CreditLedgerEntry, LedgerEntryType
from vidgenie.models.generation_job import GenerationJob, JobKind, JobStatus
from vidgenie.services.credits.ledger import CreditsLedger
from vidgenie.services.exceptions import AuthenticationError
from vidgenie.services.image_generation.replicate_client import GeneratedImage
from vidgenie.services.storage.pinata_client import FetchedMedia
from vidgenie.services.workflow.orchestrator import WorkflowOrchestrator
from vidgenie.services.workflow.publisher import StatusPublisher
from vidgenie.uow import create_uow_factory

USE_POSTGRES = os.getenv("TEST_WITH_POSTGRES") == "1"


@pytest.fixture(scope="session", autouse=True)
def utc_timezone():
    """Enforce UTC timezone for all tests."""
    os.environ["TZ"] = "UTC"
    yield


@pytest.fixture(scope="session")
def postgres_container():
    """Session-scoped PostgreSQL container, started only when TEST_WITH_POSTGRES=1."""
    if not USE_POSTGRES:
        yield None
        return

    from testcontainers.postgres import PostgresContainer

    with PostgresContainer(
        image="postgres:17",
        username="test",
        password="test",
        dbname="test_vidgenie",
    ) as container:
        yield container


@pytest.fixture
def db_url(postgres_container, tmp_path) -> str:
    if postgres_container is not None:
        return postgres_container.get_connection_url(driver="psycopg")
    return f"sqlite+aiosqlite:///{tmp_path / 'vidgenie-test.db'}"


@pytest_asyncio.fixture
async def session_factory(db_url):
    """Session factory over a freshly created schema; dropped after the test."""
    factory = setup_db_session(db_url, pool_size=5)
    engine = factory.kw["bind"]

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield factory

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def uow_factory(session_factory):
    """Function-scoped UnitOfWork factory."""
    return create_uow_factory(session_factory)


@pytest.fixture
def make_settings(db_url):
    """Build Settings for tests; keyword overrides use env-var names."""

    def _make(**overrides) -> Settings:
        values = {
            "APP_ENV": "test",
            "DATABASE_URL": db_url,
            "PUBLIC_BASE_URL": "https://api.test",
            "DEFAULT_CREDITS": 10,
            "IMAGE_JOB_COST": 2,
            "IMAGE_THEN_VIDEO_JOB_COST": 5,
            "IMAGE_GENERATION_TIMEOUT_SECONDS": 2,
            "VIDEO_WEBHOOK_SECRET": "",
            "CRON_SECRET_TOKEN": "cron-secret",
            "SSE_HEARTBEAT_SECONDS": 30,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)  # type: ignore[call-arg]

    return _make


@pytest.fixture
def settings(make_settings) -> Settings:
    return make_settings()


# Fake collaborators


class FakeImageProvider:
    name = "replicate"

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.error: Exception | None = None
        self.delay: float = 0

    async def generate(self, prompt, config) -> GeneratedImage:
        self.calls.append((prompt, config.model_dump()))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return GeneratedImage(
            url=f"https://replicate.delivery/fake/{len(self.calls)}.png",
            model="fake/flux",
            config=config.model_dump(),
        )


class FakeVideoProvider:
    name = "fal"

    def __init__(self):
        self.submissions: list[dict] = []
        self.cancelled: list[str] = []
        self.error: Exception | None = None
        self.next_request_id: str | None = None
        self.before_return = None  # Optional async hook run before submit returns

    async def submit(self, prompt, image_url, webhook_url) -> str:
        if self.error is not None:
            raise self.error
        request_id = self.next_request_id or f"req-{uuid4().hex[:12]}"
        self.submissions.append(
            {
                "prompt": prompt,
                "image_url": image_url,
                "webhook_url": webhook_url,
                "request_id": request_id,
            }
        )
        if self.before_return is not None:
            await self.before_return()
        return request_id

    async def cancel(self, request_id) -> bool:
        self.cancelled.append(request_id)
        return True


class FakeStorage:
    def __init__(self):
        self.uploads: list[dict] = []
        self.error: Exception | None = None

    async def upload(self, data, content_type, filename) -> str:
        if self.error is not None:
            raise self.error
        self.uploads.append({"size": len(data), "content_type": content_type, "filename": filename})
        return f"https://gateway.test/ipfs/cid-{len(self.uploads)}"


class FakeFetcher:
    def __init__(self):
        self.fetched: list[str] = []
        self.errors: dict[str, Exception] = {}

    async def fetch(self, url, default_content_type) -> FetchedMedia:
        self.fetched.append(url)
        if url in self.errors:
            raise self.errors[url]
        return FetchedMedia(data=b"\x00media-bytes", content_type=default_content_type)


class FakeAuthResolver:
    """Treats the bearer token as the user id; "invalid" is rejected."""

    async def resolve(self, access_token: str) -> str:
        if access_token == "invalid":
            raise AuthenticationError("Invalid or expired token")
        return access_token


@pytest.fixture
def image_provider() -> FakeImageProvider:
    return FakeImageProvider()


@pytest.fixture
def video_provider() -> FakeVideoProvider:
    return FakeVideoProvider()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def publisher(settings) -> StatusPublisher:
    return StatusPublisher(heartbeat_seconds=settings.sse_heartbeat_seconds)


@pytest.fixture
def ledger(settings) -> CreditsLedger:
    return CreditsLedger(settings)


@pytest.fixture
def orchestrator(
    uow_factory, ledger, image_provider, video_provider, storage, fetcher, publisher, settings
) -> WorkflowOrchestrator:
    return WorkflowOrchestrator(
        uow_factory=uow_factory,
        ledger=ledger,
        image_provider=image_provider,
        video_provider=video_provider,
        storage=storage,
        fetcher=fetcher,
        publisher=publisher,
        settings=settings,
    )


@pytest_asyncio.fixture
async def client(
    settings, session_factory, image_provider, video_provider, storage, fetcher
) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient for API tests; lifespan is not run, state is wired directly."""
    from vidgenie.app import create_app, init_app_state

    app = create_app(settings)
    init_app_state(
        app,
        settings,
        session_factory,
        image_provider=image_provider,
        video_provider=video_provider,
        storage=storage,
        fetcher=fetcher,
        auth_resolver=FakeAuthResolver(),
    )

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        ac.app = app  # type: ignore[attr-defined]
        yield ac


# Data helpers


@pytest.fixture
def create_account(uow_factory):
    """Create a credit account with a bonus entry so balance and ledger agree."""

    async def _create(user_id: str = "user-1", balance: int = 10, plan_id: str = "free"):
        async with await uow_factory() as uow:
            await uow.credit_accounts.add(
                CreditAccount(user_id=user_id, balance=balance, plan_id=plan_id)
            )
            await uow.ledger.add(
                CreditLedgerEntry(
                    user_id=user_id,
                    amount=balance,
                    type=LedgerEntryType.BONUS,
                    description="Test grant",
                    balance_after=balance,
                )
            )
        return user_id

    return _create


@pytest.fixture
def create_job(uow_factory):
    """Insert a job directly in a given status (no charge recorded)."""

    async def _create(
        status: JobStatus = JobStatus.GENERATING_VIDEO,
        user_id: str = "user-1",
        kind: JobKind = JobKind.IMAGE_THEN_VIDEO,
        cost: int = 5,
        provider_job_id: str | None = None,
        **fields,
    ) -> GenerationJob:
        now = utcnow()
        job = GenerationJob(
            user_id=user_id,
            kind=kind,
            status=status,
            input_prompt="A lighthouse on a cliff at dusk",
            image_prompt="A lighthouse on a cliff at dusk. cinematic",
            video_prompt="Waves crash below the lighthouse",
            provider="fal" if provider_job_id else "replicate",
            provider_job_id=provider_job_id,
            cost=cost,
            started_at=now,
            stage_started_at=now,
            **fields,
        )
        async with await uow_factory() as uow:
            await uow.jobs.add(job)
        return job

    return _create
