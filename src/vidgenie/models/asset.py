"""Asset entity - durable media produced by a successful stage."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from vidgenie.core.timezone import utcnow


class AssetKind(str, Enum):
    IMAGE = "image"
    VIDEO = "video"


class Asset(SQLModel, table=True):
    """Asset is owned by the user; jobs only hold a back-reference for display."""

    __tablename__ = "assets"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: str = Field(max_length=255, index=True)
    project_id: Optional[str] = Field(default=None, max_length=255)
    job_id: Optional[UUID] = Field(default=None, index=True)
    kind: AssetKind
    filename: str = Field(max_length=255)
    mime_type: str = Field(max_length=100)
    file_size: int = Field(ge=0)
    public_url: str
    thumbnail_url: Optional[str] = Field(default=None)
    generated_by: str = Field(max_length=100)
    prompt: Optional[str] = Field(default=None)
    ai_config: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow)
