from __future__ import annotations

import asyncio
import logging
import shutil
import traceback
from pathlib import Path
from typing import Any, Dict, List, Optional

from pdf2video.core.logging import bind_task_id
from task_state import Resolution, TaskError, TaskRepository, TaskStatus

from .composition import CompositionClient
from .dispatcher import PageImage, RasterizationDispatcher
from .playback import PlaybackResolver
from .progress import (
    COMPLETE_PROGRESS,
    POLL_BAND,
    RASTERIZE_BAND,
    SUBMITTED_PROGRESS,
    UPLOAD_BAND,
)
from .storage import ObjectStorageUploader

logger = logging.getLogger(__name__)

STEP_RASTERIZE = "rasterize"
STEP_UPLOAD = "upload"
STEP_SUBMIT = "submit"
STEP_POLL = "poll"
STEP_PLAYBACK = "playback"


class PipelineOrchestrator:
    """Drive one task at a time through rasterize, upload, compose and resolve.

    Tasks run concurrently, each as its own asyncio task, but the stages of a
    single task never overlap. All state changes go through the repository's
    merge update; the first stage error marks the task failed and stops it.
    """

    def __init__(
        self,
        repository: TaskRepository,
        dispatcher: RasterizationDispatcher,
        uploader: ObjectStorageUploader,
        composer: CompositionClient,
        playback: PlaybackResolver,
        *,
        cleanup_delay_seconds: float = 600.0,
    ) -> None:
        self._repository = repository
        self._dispatcher = dispatcher
        self._uploader = uploader
        self._composer = composer
        self._playback = playback
        self._cleanup_delay = max(0.0, cleanup_delay_seconds)
        self._running: set[asyncio.Task[None]] = set()
        self._cleanups: Dict[str, asyncio.Task[None]] = {}

    @property
    def active_count(self) -> int:
        return len(self._running)

    def launch(self, task_id: str) -> asyncio.Task[None]:
        """Start processing ``task_id`` in the background and return immediately."""

        job = asyncio.create_task(self.run(task_id), name=f"pipeline-{task_id}")
        self._running.add(job)
        job.add_done_callback(self._running.discard)
        return job

    async def stop(self) -> None:
        logger.info("Stopping pipeline orchestrator", extra={"running": len(self._running)})
        pending = list(self._running)
        for job in pending:
            job.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        timers = list(self._cleanups.items())
        for _, timer in timers:
            timer.cancel()
        await asyncio.gather(*(timer for _, timer in timers), return_exceptions=True)
        for temp_dir, _ in timers:
            await self._remove_temp_dir(temp_dir)
        self._cleanups.clear()

    async def run(self, task_id: str) -> None:
        bind_task_id(task_id)
        task = await self._repository.get(task_id)
        if task is None or task.status is TaskStatus.FAILED:
            return
        # Keep only the settings; the record snapshot would pin the PDF bytes.
        temp_dir = task.temp_dir
        resolution = task.resolution
        duration_per_slide = task.duration_per_slide
        transition = task.transition
        pdf_bytes = task.buffer
        del task

        step = STEP_RASTERIZE
        try:
            await self._update(
                task_id,
                status=TaskStatus.PROCESSING,
                progress=RASTERIZE_BAND.start,
                message="Parsing PDF",
                log_entry="Rasterization started",
            )
            images = await self._rasterize(task_id, pdf_bytes, resolution, temp_dir)
            pdf_bytes = None
            await self._update(task_id, buffer=None)

            step = STEP_UPLOAD
            await self._update(
                task_id,
                status=TaskStatus.UPLOADING,
                progress=UPLOAD_BAND.start,
                message="Uploading slide images",
                log_entry=f"Rendered {len(images)} pages",
            )
            uploaded = await self._uploader.upload_images(
                task_id, images, on_uploaded=self._upload_progress(task_id)
            )

            step = STEP_SUBMIT
            req_id = await self._composer.submit(
                [image.url for image in uploaded],
                duration_per_slide=duration_per_slide,
                transition=transition,
                resolution=resolution,
            )
            await self._update(
                task_id,
                status=TaskStatus.RENDERING,
                progress=SUBMITTED_PROGRESS,
                message="Composing video in the cloud...",
                req_id=req_id,
                log_entry=f"Composition job {req_id} submitted",
            )

            step = STEP_POLL
            vid = await self._composer.wait_for_result(req_id, on_attempt=self._poll_progress(task_id))

            step = STEP_PLAYBACK
            urls = await self._playback.resolve(vid)
            await self._update(
                task_id,
                status=TaskStatus.SUCCESS,
                progress=COMPLETE_PROGRESS,
                message="Video ready for preview and download",
                video_url=urls.video_url,
                download_url=urls.download_url,
                vid=vid,
                log_entry="Conversion finished",
            )
            logger.info("Conversion finished", extra={"task_id": task_id, "vid": vid})
        except Exception as exc:
            await self._fail(task_id, step, exc)
        finally:
            self._schedule_cleanup(temp_dir)

    async def _rasterize(
        self, task_id: str, pdf_bytes: Optional[bytes], resolution: Resolution, temp_dir: str
    ) -> List[PageImage]:
        if not pdf_bytes:
            pdf_path = Path(temp_dir) / "upload.pdf"
            pdf_bytes = await asyncio.to_thread(pdf_path.read_bytes)

        async def _on_page(done: int, total: int) -> None:
            await self._update(
                task_id,
                status=TaskStatus.PROCESSING,
                progress=RASTERIZE_BAND.at(done, total),
                message=f"Rendering PDF page {done}/{total}",
            )

        return await self._dispatcher.rasterize(
            pdf_bytes, resolution, Path(temp_dir), on_page=_on_page, task_id=task_id
        )

    def _upload_progress(self, task_id: str):
        async def _on_uploaded(done: int, total: int) -> None:
            await self._update(
                task_id,
                status=TaskStatus.UPLOADING,
                progress=UPLOAD_BAND.at(done, total),
                message=f"Uploading slide images {done}/{total}",
            )

        return _on_uploaded

    def _poll_progress(self, task_id: str):
        async def _on_attempt(attempt: int, max_attempts: int, message: str) -> None:
            await self._update(
                task_id,
                status=TaskStatus.RENDERING,
                progress=POLL_BAND.at(attempt, max_attempts),
                message=message,
            )

        return _on_attempt

    async def _update(self, task_id: str, *, log_entry: Optional[str] = None, **patch: Any) -> None:
        await self._repository.update(task_id, patch, log_entry=log_entry)

    async def _fail(self, task_id: str, step: str, exc: BaseException) -> None:
        message = str(exc) or exc.__class__.__name__
        detail = "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))
        logger.error(
            "Conversion step failed",
            extra={"task_id": task_id, "step": step, "error": message},
        )
        await self._repository.update(
            task_id,
            {
                "status": TaskStatus.FAILED,
                "progress": COMPLETE_PROGRESS,
                "message": message,
                "error": TaskError(step=step, message=message, detail=detail),
                "buffer": None,
            },
            log_entry=f"{step} failed: {message}",
        )

    def _schedule_cleanup(self, temp_dir: str) -> None:
        if not temp_dir or temp_dir in self._cleanups:
            return
        try:
            timer = asyncio.get_running_loop().create_task(self._cleanup_later(temp_dir))
        except RuntimeError:  # loop already closed at shutdown
            return
        self._cleanups[temp_dir] = timer
        timer.add_done_callback(lambda _: self._cleanups.pop(temp_dir, None))

    async def _cleanup_later(self, temp_dir: str) -> None:
        await asyncio.sleep(self._cleanup_delay)
        await self._remove_temp_dir(temp_dir)

    async def _remove_temp_dir(self, temp_dir: str) -> None:
        try:
            await asyncio.to_thread(shutil.rmtree, temp_dir, True)
        except Exception:  # noqa: BLE001 - cleanup is advisory
            logger.debug("Temp dir cleanup failed", extra={"temp_dir": temp_dir}, exc_info=True)
        else:
            logger.debug("Removed temp dir", extra={"temp_dir": temp_dir})
