"""In-memory task state shared by the conversion pipeline and its API."""

from .models import LogEntry, Resolution, TaskError, TaskRecord, TaskStatus
from .repository import InMemoryTaskRepository, TaskRepository, format_log_entry
from .timezone import get_default_timezone, now, set_default_timezone

__all__ = [
    "LogEntry",
    "Resolution",
    "TaskError",
    "TaskRecord",
    "TaskStatus",
    "TaskRepository",
    "InMemoryTaskRepository",
    "format_log_entry",
    "get_default_timezone",
    "set_default_timezone",
    "now",
]
