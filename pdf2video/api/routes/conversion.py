from __future__ import annotations

import logging
import traceback
from pathlib import PurePath
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile, status
from fastapi.responses import JSONResponse

from pdf2video.services.models import ErrorResponse, TaskCreateResult, TaskStatusResponse
from pdf2video.services.tasks import TaskService
from pdf2video.services_container import get_settings_instance

from ..dependencies import get_task_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["conversion"], prefix="/ppt-to-video")

_ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorResponse},
}


def _error(status_code: int, error: str, detail: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=error, detail=detail).model_dump(exclude_none=True),
    )


@router.post(
    "/create",
    response_model=TaskCreateResult,
    responses={**_ERROR_RESPONSES, status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse}},
)
async def create_task(
    file: Optional[UploadFile] = File(None),
    duration_per_slide: Optional[str] = Form(None, alias="durationPerSlide"),
    transition: Optional[str] = Form(None),
    resolution: Optional[str] = Form(None),
    task_service: TaskService = Depends(get_task_service),
) -> TaskCreateResult | JSONResponse:
    if file is None or not file.filename:
        return _error(status.HTTP_400_BAD_REQUEST, "Missing uploaded PDF file")
    if PurePath(file.filename).suffix.lower() != ".pdf":
        return _error(
            status.HTTP_400_BAD_REQUEST,
            "Only PDF files are supported; export the presentation to PDF first",
        )

    max_bytes = get_settings_instance().max_upload_bytes
    data = await file.read(max_bytes + 1)
    if len(data) > max_bytes:
        return _error(
            status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            f"File exceeds the {max_bytes // (1024 * 1024)} MB upload limit",
        )

    try:
        return await task_service.create_task(
            file_name=file.filename,
            data=data,
            duration_per_slide=duration_per_slide,
            transition=transition,
            resolution=resolution,
        )
    except Exception as exc:
        logger.exception("Failed to create conversion task", extra={"file_name": file.filename})
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            str(exc) or "Failed to create task",
            traceback.format_exc(),
        )


@router.get(
    "/status",
    response_model=TaskStatusResponse,
    responses={**_ERROR_RESPONSES, status.HTTP_404_NOT_FOUND: {"model": ErrorResponse}},
)
async def get_task_status(
    task_id: Optional[str] = Query(None, alias="taskId"),
    task_service: TaskService = Depends(get_task_service),
) -> TaskStatusResponse | JSONResponse:
    if not task_id:
        return _error(status.HTTP_400_BAD_REQUEST, "taskId is required")
    task_status = await task_service.get_status(task_id)
    if task_status is None:
        return _error(status.HTTP_404_NOT_FOUND, "Task not found")
    return task_status
