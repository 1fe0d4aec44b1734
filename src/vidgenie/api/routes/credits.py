"""Credits API endpoints.

- GET /api/credits/balance - Balance, plan, month-to-date usage, recent entries
- POST /api/credits/check - Whether the caller can afford a job kind
- GET /api/credits/costs - Pricing table
- POST /api/credits/reset-monthly - Scheduled reset of every plan's allowance
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from vidgenie.api.dependencies import (
    get_account_user_id,
    get_ledger,
    get_uow_factory,
    require_cron_secret,
)
from vidgenie.api.errors import to_http_exception
from vidgenie.core.dependencies import get_uow
from vidgenie.models.generation_job import JobKind
from vidgenie.services.credits.ledger import CreditsLedger
from vidgenie.services.exceptions import ServiceError
from vidgenie.uow import UnitOfWork

logger = structlog.get_logger()
router = APIRouter(prefix="/api/credits", tags=["credits"])


# Request/Response Models


class LedgerEntryDTO(BaseModel):
    id: UUID
    amount: int
    type: str
    description: str
    job_id: Optional[UUID]
    balance_after: int
    created_at: datetime


class BalanceResponse(BaseModel):
    user_id: str
    balance: int
    plan_id: str
    month_to_date_usage: int
    recent_transactions: list[LedgerEntryDTO]


class CheckRequest(BaseModel):
    kind: JobKind


class CheckResponse(BaseModel):
    kind: JobKind
    sufficient: bool
    balance: int
    required: int


class CostsResponse(BaseModel):
    costs: dict[str, int]


class MonthlyResetResponse(BaseModel):
    processed: int
    skipped: int
    total_credits_granted: int
    dry_run: bool


# Endpoints


@router.get("/balance", response_model=BalanceResponse)
async def get_balance(
    user_id: str = Depends(get_account_user_id),
    ledger: CreditsLedger = Depends(get_ledger),
    uow: UnitOfWork = Depends(get_uow),
) -> BalanceResponse:
    """Current balance with the ten most recent ledger entries."""
    try:
        summary = await ledger.get_balance(uow, user_id)
    except ServiceError as e:
        raise to_http_exception(e)

    return BalanceResponse(
        user_id=summary.user_id,
        balance=summary.balance,
        plan_id=summary.plan_id,
        month_to_date_usage=summary.month_to_date_usage,
        recent_transactions=[
            LedgerEntryDTO(
                id=entry.id,
                amount=entry.amount,
                type=entry.type.value,
                description=entry.description,
                job_id=entry.job_id,
                balance_after=entry.balance_after,
                created_at=entry.created_at,
            )
            for entry in summary.recent_entries
        ],
    )


@router.post("/check", response_model=CheckResponse)
async def check_credits(
    request: CheckRequest,
    user_id: str = Depends(get_account_user_id),
    ledger: CreditsLedger = Depends(get_ledger),
    uow: UnitOfWork = Depends(get_uow),
) -> CheckResponse:
    """Read-only affordability check for a job kind."""
    cost = ledger.estimate_cost(request.kind)
    result = await ledger.check_balance(uow, user_id, cost)
    return CheckResponse(
        kind=request.kind,
        sufficient=result.sufficient,
        balance=result.balance,
        required=result.required,
    )


@router.get("/costs", response_model=CostsResponse)
async def get_costs(ledger: CreditsLedger = Depends(get_ledger)) -> CostsResponse:
    return CostsResponse(costs=ledger.pricing.all_costs())


@router.post(
    "/reset-monthly",
    response_model=MonthlyResetResponse,
    dependencies=[Depends(require_cron_secret)],
)
async def reset_monthly(
    dry_run: bool = Query(default=False),
    ledger: CreditsLedger = Depends(get_ledger),
    uow_factory=Depends(get_uow_factory),
) -> MonthlyResetResponse:
    """Reset every account to its plan's monthly allowance. Called by a scheduler."""
    try:
        async with await uow_factory() as uow:
            result = await ledger.reset_monthly_credits(uow, dry_run=dry_run)
    except ServiceError as e:
        logger.error("credits.monthly_reset_failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=500, detail=f"Monthly reset failed: {e}")

    return MonthlyResetResponse(
        processed=result.processed,
        skipped=result.skipped,
        total_credits_granted=result.total_credits_granted,
        dry_run=dry_run,
    )
