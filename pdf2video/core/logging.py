from __future__ import annotations

import logging
import sys
from contextvars import ContextVar
from typing import Any, Dict, Optional

from pythonjsonlogger.json import JsonFormatter

from .config import Settings

PLAIN_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
JSON_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"

# Noisy third party loggers and the minimum level they are allowed to emit.
_QUIET_LOGGERS = {"httpx": logging.WARNING, "botocore": logging.WARNING, "boto3": logging.WARNING}

_current_task_id: ContextVar[Optional[str]] = ContextVar("pdf2video_task_id", default=None)


def bind_task_id(task_id: Optional[str]) -> None:
    """Attach ``task_id`` to every record logged from the current asyncio task."""

    _current_task_id.set(task_id)


class ServiceJSONFormatter(JsonFormatter):
    """JSON log formatter that always carries severity and logger name."""

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:  # noqa: D401 - documented in base
        super().add_fields(log_record, record, message_dict)
        log_record.setdefault("severity", record.levelname)
        log_record.setdefault("logger", record.name)
        if not log_record.get("message"):
            log_record["message"] = record.getMessage()


class TaskContextFilter(logging.Filter):
    """Stamp records with the task id bound by the pipeline, unless one was passed explicitly."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "task_id", None) is None:
            task_id = _current_task_id.get()
            if task_id is not None:
                record.task_id = task_id
        return True


class AccessPathExclusionFilter(logging.Filter):
    """Drop uvicorn access lines for health checks and status polling."""

    def __init__(
        self,
        *,
        excluded_paths: tuple[str, ...] = ("/healthz",),
        match_prefix: bool = True,
    ) -> None:
        super().__init__()
        self.excluded_paths = tuple(excluded_paths)
        self.match_prefix = match_prefix

    @staticmethod
    def _record_path(record: logging.LogRecord) -> Optional[str]:
        request_line = getattr(record, "request_line", None)
        if request_line:
            parts = request_line.split(" ", 2)
            return parts[1] if len(parts) > 1 else None
        # uvicorn passes (client, method, path, http_version, status) as args
        args = record.args
        if isinstance(args, tuple) and len(args) >= 3 and isinstance(args[2], str):
            return args[2]
        return None

    def _is_excluded(self, path: str) -> bool:
        if self.match_prefix:
            return any(path.startswith(excluded) for excluded in self.excluded_paths)
        return path in self.excluded_paths

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: D401 - documented in base
        if record.name != "uvicorn.access":
            return True
        path = self._record_path(record)
        if path is None:
            return True
        return not self._is_excluded(path.split("?", 1)[0])


def _build_handler(settings: Settings, access_filter: AccessPathExclusionFilter) -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if settings.log_json:
        handler.setFormatter(ServiceJSONFormatter(JSON_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    handler.addFilter(TaskContextFilter())
    handler.addFilter(access_filter)
    return handler


def configure_logging(settings: Settings) -> None:
    """Install a single stdout handler on the root logger and tune uvicorn and client loggers."""

    access_filter = AccessPathExclusionFilter(excluded_paths=settings.access_log_excluded_paths)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(_build_handler(settings, access_filter))
    root_logger.setLevel(settings.log_level)

    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).setLevel(settings.log_level)
    uvicorn_access_logger = logging.getLogger("uvicorn.access")
    uvicorn_access_logger.setLevel(settings.log_level)
    uvicorn_access_logger.filters = [
        existing
        for existing in uvicorn_access_logger.filters
        if not isinstance(existing, AccessPathExclusionFilter)
    ]
    uvicorn_access_logger.addFilter(access_filter)

    for name, level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(level, root_logger.level))
