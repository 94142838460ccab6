from __future__ import annotations

import logging
from typing import Optional

from pdf2video.core.config import Settings, get_settings
from pdf2video.core.logging import configure_logging
from pdf2video.services.composition import CompositionClient
from pdf2video.services.dispatcher import RasterizationDispatcher
from pdf2video.services.openapi import MediaOpenApiClient
from pdf2video.services.pipeline import PipelineOrchestrator
from pdf2video.services.playback import PlaybackResolver
from pdf2video.services.storage import ObjectStorageUploader
from pdf2video.services.tasks import TaskService
from task_state import InMemoryTaskRepository, TaskRepository
from task_state.timezone import set_default_timezone

logger = logging.getLogger(__name__)

_settings: Optional[Settings] = None
_task_service: Optional[TaskService] = None
_orchestrator: Optional[PipelineOrchestrator] = None
_media_client: Optional[MediaOpenApiClient] = None
_uploader: Optional[ObjectStorageUploader] = None


async def init_services(
    settings: Optional[Settings] = None,
    repository: Optional[TaskRepository] = None,
    dispatcher: Optional[RasterizationDispatcher] = None,
    uploader: Optional[ObjectStorageUploader] = None,
    media_client: Optional[MediaOpenApiClient] = None,
) -> None:
    global _settings, _task_service, _orchestrator, _media_client, _uploader

    _settings = settings or get_settings()
    set_default_timezone(_settings.timezone)
    configure_logging(_settings)

    repository = repository or InMemoryTaskRepository()
    dispatcher = dispatcher or RasterizationDispatcher(
        timeout_seconds=_settings.rasterize_timeout_seconds,
        start_method=_settings.worker_start_method,
    )
    _uploader = uploader or ObjectStorageUploader(_settings)
    _media_client = media_client or MediaOpenApiClient(_settings)
    _orchestrator = PipelineOrchestrator(
        repository,
        dispatcher,
        _uploader,
        CompositionClient(_media_client),
        PlaybackResolver(_media_client),
        cleanup_delay_seconds=_settings.cleanup_delay_seconds,
    )
    _task_service = TaskService(repository, _orchestrator, dispatcher, temp_root=_settings.temp_root)
    logger.info("Conversion services initialised", extra={"temp_root": str(_settings.temp_root)})


async def shutdown_services() -> None:
    global _task_service, _orchestrator, _media_client, _uploader

    if _orchestrator:
        await _orchestrator.stop()
    if _media_client:
        await _media_client.aclose()
    if _uploader:
        await _uploader.aclose()
    _task_service = None
    _orchestrator = None
    _media_client = None
    _uploader = None


def get_task_service_instance() -> TaskService:
    if not _task_service:
        raise RuntimeError("Task service not initialised")
    return _task_service


def get_orchestrator_instance() -> Optional[PipelineOrchestrator]:
    return _orchestrator


def get_settings_instance() -> Settings:
    if not _settings:
        raise RuntimeError("Settings not initialised")
    return _settings
