"""Video provider webhook payload model.

Accepts both the normalized shape
    {provider_job_id, status, video_url?, thumbnail_url?, error_message?,
     progress_percentage?, metadata?}
and fal.ai's native callback shape
    {request_id, status: OK|ERROR, payload: {video: {url}}, error?}
"""

from enum import Enum
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator


class VideoEventStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_STATUS_ALIASES = {
    "ok": VideoEventStatus.COMPLETED,
    "succeeded": VideoEventStatus.COMPLETED,
    "error": VideoEventStatus.FAILED,
    "in_progress": VideoEventStatus.PROCESSING,
    "in_queue": VideoEventStatus.PROCESSING,
}


class VideoWebhookPayload(BaseModel):
    """Parsed provider callback."""

    model_config = ConfigDict(extra="ignore")

    provider_job_id: str = Field(
        validation_alias=AliasChoices("provider_job_id", "request_id", "job_id"),
        min_length=1,
    )
    status: VideoEventStatus
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    error_message: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("error_message", "error")
    )
    progress_percentage: Optional[float] = Field(default=None, ge=0, le=100)
    metadata: Optional[dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def lift_native_payload(cls, data: Any) -> Any:
        """Pull video/thumbnail URLs out of fal's nested "payload" object."""
        if not isinstance(data, dict):
            return data
        nested = data.get("payload")
        if not isinstance(nested, dict):
            return data

        data = dict(data)
        video = nested.get("video")
        if isinstance(video, dict) and not data.get("video_url"):
            data["video_url"] = video.get("url")
        thumbnail = nested.get("thumbnail")
        if isinstance(thumbnail, dict) and not data.get("thumbnail_url"):
            data["thumbnail_url"] = thumbnail.get("url")
        return data

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v: Any) -> Any:
        if isinstance(v, str):
            lowered = v.strip().lower()
            return _STATUS_ALIASES.get(lowered, lowered)
        return v

    @field_validator("error_message", mode="before")
    @classmethod
    def stringify_error(cls, v: Any) -> Any:
        if v is None or isinstance(v, str):
            return v
        return str(v)
