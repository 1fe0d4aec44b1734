"""Repository layer for vidgenie.

Provides data access abstractions for all domain entities.
No base classes - each repository is self-contained.
"""

from vidgenie.repositories.asset import AssetRepository
from vidgenie.repositories.credit_account import CreditAccountRepository
from vidgenie.repositories.credit_ledger import CreditLedgerRepository
from vidgenie.repositories.generation_job import GenerationJobRepository
from vidgenie.repositories.webhook_record import WebhookRecordRepository

__all__ = [
    "AssetRepository",
    "CreditAccountRepository",
    "CreditLedgerRepository",
    "GenerationJobRepository",
    "WebhookRecordRepository",
]
