"""Request and response schemas for API endpoints.

This module provides Pydantic models for API request validation
and response serialization with OpenAPI examples.
"""

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from vod_backup.models.video import Quality


class DownloadCreateRequest(BaseModel):
    """Request body for enqueueing a VOD backup."""

    item_id: str = Field(..., description="Twitch video id", examples=["2045678901"])
    owner_id: str = Field(..., description="Twitch channel id", examples=["12826"])
    owner_name: str = Field(..., description="Channel display name", examples=["Twitch"])
    quality: Optional[Quality] = Field(
        None,
        description="Quality selector; the preferred quality setting is used when omitted",
        examples=["720p60"],
    )

    @field_validator("item_id", "owner_id")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be empty")
        return v


class DownloadCreateResponse(BaseModel):
    """Response for an accepted download request."""

    task_id: str = Field(..., examples=["550e8400-e29b-41d4-a716-446655440000"])
    status: str = Field(..., examples=["pending"])
    message: str = Field("Download task queued", examples=["Download task queued"])


class TaskResponse(BaseModel):
    """Download task state."""

    id: str = Field(..., examples=["550e8400-e29b-41d4-a716-446655440000"])
    source_item_id: str = Field(..., examples=["2045678901"])
    owner_id: str = Field(..., examples=["12826"])
    owner_name: str = Field(..., examples=["Twitch"])
    title: str = Field(..., examples=["Friday night stream"])
    quality: Quality = Field(..., examples=["source"])
    status: Literal["pending", "downloading", "completed", "failed"] = Field(
        ..., examples=["downloading"]
    )
    progress_percent: float = Field(..., examples=[45.2])
    bytes_downloaded: int = Field(..., examples=[1073741824])
    bytes_total: int = Field(..., examples=[2147483648])
    error_message: Optional[str] = Field(None, examples=["Cancelled by user"])
    output_path: Optional[str] = Field(
        None, examples=["/vods/12826/2025-01-31_friday_night_stream_2045678901.mp4"]
    )
    created_at: str = Field(..., examples=["2025-01-31T20:00:00+00:00"])
    completed_at: Optional[str] = Field(None, examples=["2025-01-31T21:10:00+00:00"])


class TaskListResponse(BaseModel):
    """Download history, newest first."""

    tasks: List[TaskResponse]
    total: int = Field(..., examples=[12])


class CancelResponse(BaseModel):
    """Result of a cancel request."""

    task_id: str
    cancelled: bool = Field(
        ..., description="True when a running download was signalled", examples=[True]
    )
    status: str = Field(..., examples=["downloading"])


class QueueStatusResponse(BaseModel):
    """Download queue state."""

    queued: int = Field(..., examples=[3])
    active: int = Field(..., examples=[2])
    concurrency: int = Field(..., examples=[2])


class ConcurrencyRequest(BaseModel):
    """Request body for changing the concurrency limit."""

    concurrency: int = Field(..., ge=1, le=16, examples=[3])


class ScheduleCreateRequest(BaseModel):
    """Request body for creating a scheduled job."""

    owner_id: str = Field(..., examples=["12826"])
    owner_name: str = Field(..., examples=["Twitch"])
    cron_expression: str = Field(..., examples=["0 */4 * * *"])
    quality: Quality = Field(Quality.SOURCE, examples=["source"])
    enabled: bool = True


class ScheduleUpdateRequest(BaseModel):
    """Partial update of a scheduled job."""

    owner_name: Optional[str] = None
    cron_expression: Optional[str] = Field(None, examples=["0 6 * * *"])
    quality: Optional[Quality] = None
    enabled: Optional[bool] = None


class ScheduleResponse(BaseModel):
    """Scheduled job state."""

    id: str
    owner_id: str
    owner_name: str
    cron_expression: str = Field(..., examples=["0 */4 * * *"])
    quality: Quality
    enabled: bool
    scheduled: bool = Field(..., description="Whether a trigger is installed")
    last_run_at: Optional[str] = Field(None, examples=["2025-01-31T20:00:00+00:00"])
    next_run_at: Optional[str] = Field(None, examples=["2025-02-01T00:00:00+00:00"])


class ScheduleRunResponse(BaseModel):
    """Outcome of firing a scheduled job."""

    job_id: str
    result: Literal["enqueued", "already_downloaded", "no_items", "error"]
    task_id: Optional[str] = None
    source_item_id: Optional[str] = None


class CronPattern(BaseModel):
    """Named cron preset."""

    name: str = Field(..., examples=["Every 4 hours"])
    expression: str = Field(..., examples=["0 */4 * * *"])


class CronValidateRequest(BaseModel):
    cron_expression: str = Field(..., examples=["0 9 * * 1"])


class CronValidateResponse(BaseModel):
    cron_expression: str
    valid: bool


class OwnerResponse(BaseModel):
    """Twitch channel."""

    id: str = Field(..., examples=["12826"])
    login: str = Field(..., examples=["twitch"])
    display_name: str = Field(..., examples=["Twitch"])
    profile_image_url: str = ""


class SourceItemResponse(BaseModel):
    """Archived broadcast."""

    id: str = Field(..., examples=["2045678901"])
    owner_id: str
    owner_name: str
    title: str
    url: str = Field(..., examples=["https://www.twitch.tv/videos/2045678901"])
    created_at: str
    duration: Optional[str] = Field(None, examples=["3h2m10s"])
    thumbnail_url: Optional[str] = None
    view_count: Optional[int] = None
    downloaded: bool = Field(False, description="A completed backup exists")


class SettingsResponse(BaseModel):
    """Runtime settings with the client secret masked."""

    client_id: str
    client_secret: str = Field(..., examples=["********ab12"])
    download_path: str = Field(..., examples=["/home/user/Downloads/twitch-vods"])
    max_concurrent_downloads: int = Field(..., examples=[2])
    preferred_quality: Quality
    has_credentials: bool


class SettingsUpdateRequest(BaseModel):
    """Partial settings update."""

    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    download_path: Optional[str] = None
    max_concurrent_downloads: Optional[int] = Field(None, ge=1, le=16)
    preferred_quality: Optional[Quality] = None


class ProgressMessage(BaseModel):
    """Progress update pushed over the WebSocket."""

    type: Literal["progress"] = "progress"
    task_id: str
    percent: float
    bytes_downloaded: int
    bytes_total: int


class ComponentHealth(BaseModel):
    """Health status of a single component."""

    status: Literal["healthy", "unhealthy"] = Field(..., examples=["healthy"])
    version: Optional[str] = Field(default=None, examples=["2025.01.26"])
    details: Optional[Dict[str, Any]] = Field(default=None, examples=[{"queued": 0}])


class HealthResponse(BaseModel):
    """Response for the detailed health endpoint."""

    status: Literal["healthy", "unhealthy"] = Field(..., examples=["healthy"])
    timestamp: str = Field(..., examples=["2025-01-31T20:00:00+00:00"])
    version: str = Field(..., examples=["0.1.0"])
    uptime_seconds: float = Field(..., examples=[3600.5])
    components: Dict[str, ComponentHealth]


class LivenessResponse(BaseModel):
    """Response for the liveness probe."""

    status: Literal["alive"] = Field(..., examples=["alive"])


class ErrorDetail(BaseModel):
    """Standard error body returned by every endpoint."""

    error_code: str = Field(
        ...,
        description="Machine-readable error code",
        examples=["ITEM_NOT_FOUND"],
    )
    message: str = Field(
        ...,
        description="Human-readable error message",
        examples=["VOD not found: 2045678901"],
    )
    details: Optional[str] = Field(default=None, description="Additional error details")
    timestamp: str = Field(..., examples=["2025-01-31T20:00:00+00:00"])
    suggestion: Optional[str] = Field(
        default=None,
        description="Suggestion for resolving the error",
        examples=["The VOD may have been deleted or is no longer available"],
    )
