from __future__ import annotations

from typing import Iterable, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from task_state import TaskError, TaskStatus


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskCreateResult(_CamelModel):
    task_id: str
    status: TaskStatus
    file_name: str
    file_size_mb: float = Field(alias="fileSizeMB")
    page_count: Optional[int] = None
    page_count_error: Optional[str] = None


class TaskStatusResponse(_CamelModel):
    status: TaskStatus
    progress: int
    message: str
    video_url: str = ""
    download_url: str = ""
    error: Optional[TaskError] = None


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None


class HelpResponse(BaseModel):
    endpoints: Iterable[str]
    description: Optional[str] = None


class TaskCounts(BaseModel):
    total: int
    active: int


class HealthResponse(BaseModel):
    status: Literal["ok", "error"]
    tasks: TaskCounts
