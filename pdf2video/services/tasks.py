from __future__ import annotations

import asyncio
import logging
import shutil
from pathlib import Path
from typing import Any

from task_state import TaskRecord, TaskRepository, TaskStatus

from .dispatcher import RasterizationDispatcher
from .errors import PipelineError
from .models import TaskCreateResult, TaskStatusResponse
from .params import parse_duration_per_slide, parse_resolution, parse_transition
from .pipeline import PipelineOrchestrator

logger = logging.getLogger(__name__)

UPLOAD_FILE_NAME = "upload.pdf"


class TaskService:
    """Application service that accepts conversion requests and reports their state."""

    def __init__(
        self,
        repository: TaskRepository,
        orchestrator: PipelineOrchestrator,
        dispatcher: RasterizationDispatcher,
        *,
        temp_root: Path,
    ) -> None:
        self._repository = repository
        self._orchestrator = orchestrator
        self._dispatcher = dispatcher
        self._temp_root = Path(temp_root)

    async def create_task(
        self,
        *,
        file_name: str,
        data: bytes,
        duration_per_slide: Any = None,
        transition: Any = None,
        resolution: Any = None,
    ) -> TaskCreateResult:
        task_id = await self._repository.next_task_id()
        temp_dir = self._temp_root / task_id
        await asyncio.to_thread(temp_dir.mkdir, parents=True, exist_ok=True)
        try:
            await asyncio.to_thread((temp_dir / UPLOAD_FILE_NAME).write_bytes, data)

            page_count: int | None = None
            page_count_error: str | None = None
            try:
                page_count = await self._dispatcher.count_pages(data, task_id=task_id)
            except (PipelineError, OSError) as exc:
                page_count_error = str(exc) or exc.__class__.__name__
                logger.warning("Page count probe failed", extra={"task_id": task_id, "error": page_count_error})

            record = TaskRecord(
                task_id=task_id,
                status=TaskStatus.QUEUED,
                progress=0,
                message="Task created, waiting to be processed",
                resolution=parse_resolution(resolution),
                transition=parse_transition(transition),
                duration_per_slide=parse_duration_per_slide(duration_per_slide),
                buffer=data,
                temp_dir=str(temp_dir),
                file_name=file_name,
                file_size_bytes=len(data),
                page_count=page_count,
                page_count_error=page_count_error,
            )
            await self._repository.save(record)
            await self._repository.append_log(task_id, "Task created")
            self._orchestrator.launch(task_id)
        except BaseException:
            # Nothing else owns the directory until the job is launched.
            await asyncio.to_thread(shutil.rmtree, temp_dir, True)
            raise
        logger.info(
            "Task created",
            extra={"task_id": task_id, "file_name": file_name, "pages": page_count},
        )
        return TaskCreateResult(
            task_id=task_id,
            status=record.status,
            file_name=file_name,
            file_size_mb=round(len(data) / (1024 * 1024), 2),
            page_count=page_count,
            page_count_error=page_count_error,
        )

    async def get_task(self, task_id: str) -> TaskRecord | None:
        return await self._repository.get(task_id)

    async def get_status(self, task_id: str) -> TaskStatusResponse | None:
        task = await self._repository.get(task_id)
        if task is None:
            return None
        return TaskStatusResponse(
            status=task.status,
            progress=task.progress,
            message=task.message,
            video_url=task.video_url,
            download_url=task.download_url,
            error=task.error,
        )

    async def task_counts(self) -> tuple[int, int]:
        tasks = await self._repository.list_all()
        active = sum(1 for task in tasks if not task.status.is_terminal)
        return len(tasks), active
