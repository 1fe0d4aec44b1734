"""WebhookRecord entity - every inbound provider callback, stored before processing."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, Text
from sqlmodel import Field, SQLModel

from vidgenie.core.timezone import utcnow


class SignatureVerification(str, Enum):
    """Outcome of HMAC verification for a webhook."""

    VALID = "valid"
    INVALID = "invalid"
    SKIPPED = "skipped"  # No shared secret configured


class WebhookRecord(SQLModel, table=True):
    """Audit row used for idempotency and replay; only job_id is ever updated."""

    __tablename__ = "webhook_records"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    provider: str = Field(max_length=100, index=True)
    provider_job_id: Optional[str] = Field(default=None, max_length=255, index=True)
    job_id: Optional[UUID] = Field(default=None, index=True)  # None when unmatched
    event_status: Optional[str] = Field(default=None, max_length=50)
    raw_payload: str = Field(sa_column=Column(Text, nullable=False))
    headers: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    signature: Optional[str] = Field(default=None, max_length=255)
    verified: bool = Field(default=False)
    verification: SignatureVerification = Field(default=SignatureVerification.INVALID)
    received_at: datetime = Field(default_factory=utcnow)

    @property
    def accepted(self) -> bool:
        """Whether the event may drive state changes (valid, or verification disabled)."""
        return self.verification != SignatureVerification.INVALID
