from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from .errors import PlaybackError
from .openapi import MediaOpenApiClient, response_error

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PlaybackUrls:
    video_url: str
    download_url: str


def select_play_urls(result: Mapping[str, Any]) -> PlaybackUrls:
    """Pick the main play URL, then the backup; downloads prefer the adaptive URL."""

    play_list = result.get("PlayInfoList")
    play_info = play_list[0] if isinstance(play_list, list) and play_list else {}
    if not isinstance(play_info, Mapping):
        play_info = {}
    video_url = play_info.get("MainPlayUrl") or play_info.get("BackupPlayUrl") or ""
    adaptive = result.get("AdaptiveInfo")
    adaptive_url = adaptive.get("MainPlayUrl") if isinstance(adaptive, Mapping) else None
    return PlaybackUrls(video_url=video_url, download_url=adaptive_url or video_url)


class PlaybackResolver:
    def __init__(self, api: MediaOpenApiClient) -> None:
        self._api = api

    async def resolve(self, vid: str) -> PlaybackUrls:
        settings = self._api.settings
        payload = await self._api.call(
            "GetPlayInfo",
            settings.vod_api_version,
            {"Vid": vid, "FileType": settings.output_format, "Ssl": "1"},
        )
        error = response_error(payload)
        if error:
            raise PlaybackError(f"Failed to fetch play info: {error[0]} {error[1]}".rstrip())
        result = payload.get("Result") or {}
        urls = select_play_urls(result if isinstance(result, Mapping) else {})
        if not urls.video_url:
            raise PlaybackError(f"No playable URL returned for video {vid}")
        logger.info("Resolved playback URL", extra={"vid": vid})
        return urls
