"""Task repository implementations backing the conversion status endpoint."""

from __future__ import annotations

import abc
import asyncio
import secrets
import string
from typing import Any, List, Mapping

from .models import LogEntry, TaskRecord, TaskStatus
from .timezone import now

_ID_ALPHABET = string.ascii_lowercase + string.digits


def format_log_entry(message: str) -> LogEntry:
    return LogEntry(timestamp=now(), message=message)


class TaskRepository(abc.ABC):
    """Abstract task repository interface shared by the pipeline stages."""

    @abc.abstractmethod
    async def next_task_id(self) -> str: ...

    @abc.abstractmethod
    async def save(self, task: TaskRecord) -> None: ...

    @abc.abstractmethod
    async def get(self, task_id: str) -> TaskRecord | None: ...

    @abc.abstractmethod
    async def update(
        self,
        task_id: str,
        patch: Mapping[str, Any],
        *,
        log_entry: str | None = None,
    ) -> TaskRecord | None: ...

    @abc.abstractmethod
    async def append_log(self, task_id: str, message: str) -> TaskRecord | None: ...

    @abc.abstractmethod
    async def list_all(self) -> List[TaskRecord]: ...


class InMemoryTaskRepository(TaskRepository):
    """Process-local task table guarded by an asyncio lock.

    ``update`` is the only way stages mutate a record: the patch is merged
    into the latest stored snapshot, so a stage never overwrites fields that
    another writer set while it was suspended. Records that reached
    ``failed`` only accept log appends, and ``progress`` never moves
    backwards while a task is still running.
    """

    def __init__(self, *, id_length: int = 8) -> None:
        if id_length <= 0:
            raise ValueError("id_length must be a positive integer")
        self._id_length = id_length
        self._tasks: dict[str, TaskRecord] = {}
        # Ids handed out by next_task_id but not saved yet.
        self._reserved: set[str] = set()
        self._lock = asyncio.Lock()

    async def next_task_id(self) -> str:
        async with self._lock:
            while True:
                candidate = "".join(secrets.choice(_ID_ALPHABET) for _ in range(self._id_length))
                if candidate not in self._tasks and candidate not in self._reserved:
                    self._reserved.add(candidate)
                    return candidate

    async def save(self, task: TaskRecord) -> None:
        async with self._lock:
            self._reserved.discard(task.task_id)
            self._tasks[task.task_id] = task

    async def get(self, task_id: str) -> TaskRecord | None:
        return self._tasks.get(task_id)

    async def update(
        self,
        task_id: str,
        patch: Mapping[str, Any],
        *,
        log_entry: str | None = None,
    ) -> TaskRecord | None:
        async with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                return None
            if current.status is TaskStatus.FAILED:
                if log_entry:
                    current = self._with_log(current, log_entry)
                    self._tasks[task_id] = current
                return current

            updated = current.model_copy()
            for field, value in patch.items():
                if field not in TaskRecord.model_fields:
                    raise ValueError(f"Unknown task field: {field}")
                setattr(updated, field, value)
            if not updated.status.is_terminal and updated.progress < current.progress:
                updated.progress = current.progress
            if log_entry:
                updated = self._with_log(updated, log_entry)
            updated.updated_at = now()
            self._tasks[task_id] = updated
            return updated

    async def append_log(self, task_id: str, message: str) -> TaskRecord | None:
        async with self._lock:
            current = self._tasks.get(task_id)
            if current is None:
                return None
            updated = self._with_log(current, message)
            self._tasks[task_id] = updated
            return updated

    async def list_all(self) -> List[TaskRecord]:
        return list(self._tasks.values())

    @staticmethod
    def _with_log(task: TaskRecord, message: str) -> TaskRecord:
        updated = task.model_copy()
        updated.logs = [*task.logs, format_log_entry(message)]
        updated.updated_at = now()
        return updated
