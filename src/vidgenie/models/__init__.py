"""SQLModel database entities.

All models are imported here to ensure they're registered with SQLModel metadata
for Alembic autogenerate support.
"""

from vidgenie.models.asset import Asset, AssetKind
from vidgenie.models.credit_account import CreditAccount
from vidgenie.models.credit_ledger import CreditLedgerEntry, LedgerEntryType
from vidgenie.models.generation_job import (
    GenerationJob,
    InvalidStateTransition,
    JobKind,
    JobStatus,
)
from vidgenie.models.webhook_record import SignatureVerification, WebhookRecord

__all__ = [
    "Asset",
    "AssetKind",
    "CreditAccount",
    "CreditLedgerEntry",
    "LedgerEntryType",
    "GenerationJob",
    "JobKind",
    "JobStatus",
    "InvalidStateTransition",
    "SignatureVerification",
    "WebhookRecord",
]
