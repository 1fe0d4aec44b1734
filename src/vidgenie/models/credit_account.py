"""CreditAccount entity - denormalized credit balance per user."""

from datetime import datetime

from pydantic import field_validator
from sqlalchemy import CheckConstraint
from sqlmodel import Field, SQLModel

from vidgenie.core.timezone import utcnow


class CreditAccount(SQLModel, table=True):
    """CreditAccount holds the running balance that the ledger reconciles against.

    Users themselves live in the external auth provider; user_id is its opaque id.
    """

    __tablename__ = "credit_accounts"  # type: ignore[assignment]
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
    )

    user_id: str = Field(primary_key=True, max_length=255)
    balance: int = Field(default=0)
    plan_id: str = Field(default="free", max_length=50)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("user_id")
    @classmethod
    def validate_user_id(cls, v: str) -> str:
        """Reject blank user ids."""
        if not v or not v.strip():
            raise ValueError("user_id cannot be empty")
        return v
