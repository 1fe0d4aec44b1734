"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Access to services built in the app lifespan (app.state)
- Bearer-token authentication via the auth collaborator
- Cron secret validation for scheduled endpoints
"""

import hmac
from typing import Annotated, Callable

import structlog
from fastapi import Depends, Header, HTTPException, Request, status
from sqlalchemy.exc import IntegrityError

from vidgenie.core.config import Settings
from vidgenie.services.credits.ledger import CreditsLedger
from vidgenie.services.exceptions import AuthenticationError
from vidgenie.services.webhooks.receiver import WebhookReceiver
from vidgenie.services.workflow.orchestrator import WorkflowOrchestrator
from vidgenie.services.workflow.publisher import StatusPublisher
from vidgenie.uow import UnitOfWork

logger = structlog.get_logger()


def get_settings(request: Request) -> Settings:
    """Settings instance the app was created with."""
    return request.app.state.settings


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.post("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.jobs.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_ledger(request: Request) -> CreditsLedger:
    return request.app.state.ledger


def get_orchestrator(request: Request) -> WorkflowOrchestrator:
    return request.app.state.orchestrator


def get_publisher(request: Request) -> StatusPublisher:
    return request.app.state.publisher


def get_webhook_receiver(request: Request) -> WebhookReceiver:
    return request.app.state.webhook_receiver


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing Authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header must be 'Bearer <token>'",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return token.strip()


async def get_current_user_id(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> str:
    """Resolve the bearer token to a user id through the auth collaborator.

    Raises:
        HTTPException: 401 if the token is missing or rejected
    """
    token = _bearer_token(authorization)
    try:
        return await request.app.state.auth_resolver.resolve(token)
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_account_user_id(
    user_id: str = Depends(get_current_user_id),
    uow_factory=Depends(get_uow_factory),
    ledger: CreditsLedger = Depends(get_ledger),
) -> str:
    """Authenticated user id whose credit account is guaranteed to exist."""
    try:
        async with await uow_factory() as uow:
            await ledger.ensure_account(uow, user_id)
    except IntegrityError:
        # A concurrent request provisioned the same account first
        logger.info("credits.account_created_concurrently", user_id=user_id)
    return user_id


async def require_cron_secret(
    authorization: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Validate the scheduler's bearer secret.

    Raises:
        HTTPException: 503 if no secret is configured, 401 if it does not match
    """
    if not settings.cron_secret_token:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="CRON_SECRET_TOKEN not configured",
        )
    token = _bearer_token(authorization)
    if not hmac.compare_digest(token, settings.cron_secret_token):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")
