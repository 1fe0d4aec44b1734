"""initial_workflow_schema

Revision ID: 3f9a2c1d7e41
Revises:
Create Date: 2026-10-18 09:12:03.417215

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3f9a2c1d7e41"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

# Enum types store member names, matching SQLModel's default mapping
job_kind = postgresql.ENUM("IMAGE", "IMAGE_THEN_VIDEO", name="jobkind", create_type=False)
job_status = postgresql.ENUM(
    "QUEUED",
    "GENERATING_IMAGE",
    "IMAGE_READY",
    "GENERATING_VIDEO",
    "PAUSED",
    "VIDEO_READY",
    "FAILED",
    name="jobstatus",
    create_type=False,
)
ledger_entry_type = postgresql.ENUM(
    "RESERVATION",
    "GENERATION",
    "REFUND",
    "MONTHLY_RESET",
    "BONUS",
    "PURCHASE",
    name="ledgerentrytype",
    create_type=False,
)
signature_verification = postgresql.ENUM(
    "VALID", "INVALID", "SKIPPED", name="signatureverification", create_type=False
)
asset_kind = postgresql.ENUM("IMAGE", "VIDEO", name="assetkind", create_type=False)

ENUMS = (job_kind, job_status, ledger_entry_type, signature_verification, asset_kind)


def upgrade() -> None:
    """Create job, credit, webhook and asset tables."""
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "credit_accounts",
        sa.Column("user_id", sa.String(length=255), primary_key=True),
        sa.Column("balance", sa.Integer(), nullable=False),
        sa.Column("plan_id", sa.String(length=50), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        # Storage-level guard behind the conditional decrement
        sa.CheckConstraint("balance >= 0", name="ck_credit_accounts_balance_non_negative"),
    )

    op.create_table(
        "credit_ledger",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("type", ledger_entry_type, nullable=False),
        sa.Column("description", sa.String(length=255), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("balance_after", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_credit_ledger_user_id", "credit_ledger", ["user_id"])
    op.create_index("ix_credit_ledger_type", "credit_ledger", ["type"])
    op.create_index("ix_credit_ledger_job_id", "credit_ledger", ["job_id"])
    op.create_index("ix_credit_ledger_created_at", "credit_ledger", ["created_at"])

    op.create_table(
        "generation_jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("project_id", sa.String(length=255), nullable=True),
        sa.Column("kind", job_kind, nullable=False),
        sa.Column("status", job_status, nullable=False),
        sa.Column("pre_pause_status", job_status, nullable=True),
        sa.Column("input_prompt", sa.String(), nullable=False),
        sa.Column("image_prompt", sa.String(), nullable=False),
        sa.Column("video_prompt", sa.String(), nullable=True),
        sa.Column("provider", sa.String(length=100), nullable=False),
        sa.Column("provider_job_id", sa.String(length=255), nullable=True),
        sa.Column("cost", sa.Integer(), nullable=False),
        sa.Column("image_asset_id", sa.Uuid(), nullable=True),
        sa.Column("video_asset_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.Column("started_at", sa.DateTime(), nullable=True),
        sa.Column("stage_started_at", sa.DateTime(), nullable=True),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("error_message", sa.String(length=1000), nullable=True),
        sa.Column("error_code", sa.String(length=100), nullable=True),
        sa.Column("provider_metadata", sa.JSON(), nullable=True),
    )
    op.create_index("ix_generation_jobs_user_id", "generation_jobs", ["user_id"])
    op.create_index("ix_generation_jobs_status", "generation_jobs", ["status"])
    op.create_index("ix_generation_jobs_provider_job_id", "generation_jobs", ["provider_job_id"])
    # Reconciliation sweep scans by status and age
    op.create_index(
        "ix_generation_jobs_status_updated_at", "generation_jobs", ["status", "updated_at"]
    )

    op.create_table(
        "webhook_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("provider", sa.String(length=100), nullable=False),
        sa.Column("provider_job_id", sa.String(length=255), nullable=True),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("event_status", sa.String(length=50), nullable=True),
        sa.Column("raw_payload", sa.Text(), nullable=False),
        sa.Column("headers", sa.JSON(), nullable=True),
        sa.Column("signature", sa.String(length=255), nullable=True),
        sa.Column("verified", sa.Boolean(), nullable=False),
        sa.Column("verification", signature_verification, nullable=False),
        sa.Column("received_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_webhook_records_provider", "webhook_records", ["provider"])
    op.create_index(
        "ix_webhook_records_provider_job_id", "webhook_records", ["provider_job_id"]
    )
    op.create_index("ix_webhook_records_job_id", "webhook_records", ["job_id"])

    op.create_table(
        "assets",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("user_id", sa.String(length=255), nullable=False),
        sa.Column("project_id", sa.String(length=255), nullable=True),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("kind", asset_kind, nullable=False),
        sa.Column("filename", sa.String(length=255), nullable=False),
        sa.Column("mime_type", sa.String(length=100), nullable=False),
        sa.Column("file_size", sa.Integer(), nullable=False),
        sa.Column("public_url", sa.String(), nullable=False),
        sa.Column("thumbnail_url", sa.String(), nullable=True),
        sa.Column("generated_by", sa.String(length=100), nullable=False),
        sa.Column("prompt", sa.String(), nullable=True),
        sa.Column("ai_config", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_assets_user_id", "assets", ["user_id"])
    op.create_index("ix_assets_job_id", "assets", ["job_id"])


def downgrade() -> None:
    """Drop all workflow tables and enum types."""
    op.drop_table("assets")
    op.drop_table("webhook_records")
    op.drop_table("generation_jobs")
    op.drop_table("credit_ledger")
    op.drop_table("credit_accounts")

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
