from __future__ import annotations

import asyncio
import logging
import multiprocessing
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional

from task_state import Resolution

from .errors import RasterizationError, RasterizationTimeoutError
from .rasterizer import (
    REPLY_ERROR,
    REPLY_PAGE_COUNT,
    REPLY_RENDERED,
    REQUEST_PAGE_COUNT,
    REQUEST_RENDER,
    worker_main,
)

logger = logging.getLogger(__name__)

PageCallback = Callable[[int, int], Awaitable[None]]


@dataclass(slots=True)
class PageImage:
    """Rendered page written to disk."""

    index: int
    file_name: str
    path: Path
    width: int
    height: int


def page_file_name(index: int) -> str:
    return f"page-{index:03d}.png"


class RasterizationDispatcher:
    """Run rasterization in a throwaway worker process.

    Each call starts exactly one daemonic worker (daemonic processes cannot
    start children of their own), exchanges one request and one reply over a
    pipe, and terminates the worker whatever the outcome.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = 120.0,
        start_method: str = "spawn",
        worker_target: Callable[[Any], None] = worker_main,
    ) -> None:
        if timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be positive")
        self._timeout = float(timeout_seconds)
        self._context = multiprocessing.get_context(start_method)
        self._worker_target = worker_target

    async def rasterize(
        self,
        pdf_bytes: bytes,
        resolution: Resolution,
        output_dir: Path,
        *,
        on_page: Optional[PageCallback] = None,
        task_id: Optional[str] = None,
    ) -> List[PageImage]:
        reply = await self._call(
            {
                "type": REQUEST_RENDER,
                "pdf": pdf_bytes,
                "width": resolution.width,
                "height": resolution.height,
            },
            expected=REPLY_RENDERED,
            task_id=task_id,
        )
        pages: List[Dict[str, Any]] = sorted(reply.get("pages") or [], key=lambda page: page["index"])
        if not pages:
            raise RasterizationError("PDF produced no pages")

        output_dir.mkdir(parents=True, exist_ok=True)
        images: List[PageImage] = []
        total = len(pages)
        for position, page in enumerate(pages, start=1):
            if (page["width"], page["height"]) != (resolution.width, resolution.height):
                raise RasterizationError(
                    f"Page {page['index']} rendered at {page['width']}x{page['height']}, "
                    f"expected {resolution.label}"
                )
            file_name = page_file_name(page["index"])
            path = output_dir / file_name
            await asyncio.to_thread(path.write_bytes, page["png"])
            images.append(
                PageImage(
                    index=page["index"],
                    file_name=file_name,
                    path=path,
                    width=page["width"],
                    height=page["height"],
                )
            )
            if on_page is not None:
                await on_page(position, total)
        logger.info("Rasterized PDF", extra={"task_id": task_id, "pages": total})
        return images

    async def count_pages(self, pdf_bytes: bytes, *, task_id: Optional[str] = None) -> int:
        reply = await self._call(
            {"type": REQUEST_PAGE_COUNT, "pdf": pdf_bytes},
            expected=REPLY_PAGE_COUNT,
            task_id=task_id,
        )
        return int(reply.get("page_count") or 0)

    async def _call(self, request: Dict[str, Any], *, expected: str, task_id: Optional[str]) -> Dict[str, Any]:
        parent_conn, child_conn = self._context.Pipe(duplex=True)
        process = self._context.Process(
            target=self._worker_target,
            args=(child_conn,),
            name=f"rasterizer-{task_id or 'probe'}",
            daemon=True,
        )
        started = time.monotonic()
        try:
            try:
                process.start()
            finally:
                child_conn.close()
            logger.debug(
                "Started rasterization worker",
                extra={"task_id": task_id, "pid": process.pid, "request": request["type"]},
            )
            reply = await asyncio.to_thread(self._exchange, parent_conn, request, self._timeout)
        finally:
            await asyncio.to_thread(self._terminate, process)
            parent_conn.close()
            logger.debug(
                "Rasterization worker finished",
                extra={"task_id": task_id, "elapsed": round(time.monotonic() - started, 3)},
            )

        if not isinstance(reply, dict):
            raise RasterizationError("Rasterization worker sent a malformed reply")
        if reply.get("type") == REPLY_ERROR:
            raise RasterizationError(f"PDF rasterization failed: {reply.get('message')}")
        if reply.get("type") != expected:
            raise RasterizationError(f"Unexpected rasterization reply: {reply.get('type')!r}")
        return reply

    @staticmethod
    def _exchange(conn: Any, request: Dict[str, Any], timeout: float) -> Any:
        deadline = time.monotonic() + timeout
        try:
            conn.send(request)
        except (BrokenPipeError, EOFError, OSError) as exc:
            raise RasterizationError(f"Rasterization worker exited before accepting work: {exc}") from exc
        remaining = deadline - time.monotonic()
        if remaining <= 0 or not conn.poll(remaining):
            raise RasterizationTimeoutError(f"PDF rasterization timed out after {timeout:g} seconds")
        try:
            return conn.recv()
        except (EOFError, OSError) as exc:
            raise RasterizationError("Rasterization worker exited without a reply") from exc

    @staticmethod
    def _terminate(process: Any) -> None:
        if process.pid is None:
            return
        if process.is_alive():
            process.terminate()
            process.join(5)
            if process.is_alive():
                process.kill()
        process.join()
        process.close()
