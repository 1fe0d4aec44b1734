"""CreditLedgerEntry entity - append-only record of balance changes."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel

from vidgenie.core.timezone import utcnow


class LedgerEntryType(str, Enum):
    """Reason for a balance change."""

    RESERVATION = "reservation"
    GENERATION = "generation"
    REFUND = "refund"
    MONTHLY_RESET = "monthly_reset"
    BONUS = "bonus"
    PURCHASE = "purchase"


class CreditLedgerEntry(SQLModel, table=True):
    """CreditLedgerEntry records one signed change to a user's balance."""

    __tablename__ = "credit_ledger"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(max_length=255, index=True)
    amount: int  # Negative for charges, positive for refunds and grants
    type: LedgerEntryType = Field(index=True)
    description: str = Field(max_length=255)
    job_id: Optional[UUID] = Field(default=None, index=True)
    balance_after: int
    created_at: datetime = Field(default_factory=utcnow, index=True)
