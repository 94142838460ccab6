"""Data models shared across the stages that manipulate conversion task state."""

from __future__ import annotations

import enum
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from .timezone import now


class TaskStatus(str, enum.Enum):
    """Lifecycle stages of a PDF-to-video conversion."""

    QUEUED = "queued"
    PROCESSING = "processing"
    UPLOADING = "uploading"
    RENDERING = "rendering"
    SUCCESS = "success"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.SUCCESS, TaskStatus.FAILED)


Transition = Literal["none", "fade"]


class Resolution(BaseModel):
    width: int
    height: int

    @property
    def label(self) -> str:
        return f"{self.width}x{self.height}"


class LogEntry(BaseModel):
    timestamp: datetime = Field(default_factory=now)
    message: str

    @field_serializer("timestamp")
    def serialize_timestamp(self, value: datetime) -> str:
        return value.isoformat()


class TaskError(BaseModel):
    """Failure details recorded when a task reaches ``failed``."""

    step: str
    message: str
    detail: Optional[str] = None


class TaskRecord(BaseModel):
    """In-memory representation of one conversion request."""

    model_config = ConfigDict(validate_assignment=True)

    task_id: str
    status: TaskStatus = TaskStatus.QUEUED
    progress: int = Field(default=0, ge=0, le=100)
    message: str = ""
    logs: List[LogEntry] = Field(default_factory=list)
    error: Optional[TaskError] = None

    resolution: Resolution = Field(default_factory=lambda: Resolution(width=1280, height=720))
    transition: Transition = "fade"
    duration_per_slide: int = Field(default=3, ge=2, le=10)

    # Raw PDF bytes are held until the pages are on disk, never serialized.
    buffer: Optional[bytes] = Field(default=None, exclude=True, repr=False)
    temp_dir: str
    file_name: str = ""
    file_size_bytes: int = 0
    page_count: Optional[int] = None
    page_count_error: Optional[str] = None

    video_url: str = ""
    download_url: str = ""
    req_id: Optional[str] = None
    vid: Optional[str] = None

    created_at: datetime = Field(default_factory=now)
    updated_at: datetime = Field(default_factory=now)

    @field_serializer("created_at", "updated_at")
    def serialize_datetimes(self, value: datetime) -> str:
        return value.isoformat()
