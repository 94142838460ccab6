from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from pdf2video import services_container
from pdf2video.services.models import HealthResponse, HelpResponse, TaskCounts
from pdf2video.services.tasks import TaskService

from ..dependencies import get_task_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["meta"])
health_router = APIRouter(tags=["meta"])


@router.get("/help", response_model=HelpResponse)
async def help_endpoint() -> HelpResponse:
    prefix = services_container.get_settings_instance().api_prefix
    return HelpResponse(
        description="Converts PDF slide decks into slideshow videos; poll the status endpoint until success or failed",
        endpoints=[
            "GET /healthz",
            f"GET {prefix}/help",
            f"POST {prefix}/ppt-to-video/create (multipart: file, durationPerSlide, transition, resolution)",
            f"GET {prefix}/ppt-to-video/status?taskId=",
        ],
    )


@health_router.get("/healthz", response_model=HealthResponse)
async def health_endpoint(task_service: TaskService = Depends(get_task_service)) -> HealthResponse:
    total, active = await task_service.task_counts()
    orchestrator = services_container.get_orchestrator_instance()
    running = orchestrator.active_count if orchestrator else 0
    logger.debug("Health check", extra={"tasks": total, "active": active, "running": running})
    return HealthResponse(status="ok", tasks=TaskCounts(total=total, active=active))
