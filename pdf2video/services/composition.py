from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from task_state import Resolution, now

from .errors import (
    CompositionError,
    CompositionFailedError,
    CompositionTimeoutError,
    ConfigurationError,
)
from .openapi import MediaOpenApiClient, response_error
from .params import MAX_DURATION, MIN_DURATION

logger = logging.getLogger(__name__)

AttemptCallback = Callable[[int, int, str], Awaitable[None]]

MAX_TRANSITION_MS = 800
SUCCESS_STATES = frozenset({"success", "succeed"})
FAILURE_STATES = frozenset({"failed", "fail"})
DEFAULT_POLL_MESSAGE = "Composing video in the cloud..."


def transition_time_ms(duration_ms: int) -> int:
    return min(MAX_TRANSITION_MS, duration_ms // 2)


def build_segments(sources: Sequence[str], duration_per_slide: int, transition: str) -> List[Dict[str, Any]]:
    """One segment per image, each holding a single image element spanning the segment."""

    duration_ms = max(MIN_DURATION, min(MAX_DURATION, int(duration_per_slide))) * 1000
    segments: List[Dict[str, Any]] = []
    for source in sources:
        segment: Dict[str, Any] = {
            "Duration": duration_ms,
            "Elements": [
                {"Type": "image", "Source": source, "Duration": duration_ms, "StartTime": 0},
            ],
        }
        if transition == "fade":
            segment["Transition"] = "fade"
            segment["TransitionTime"] = transition_time_ms(duration_ms)
        segments.append(segment)
    return segments


def default_video_name() -> str:
    today = now()
    return f"Slides_{today.month}{today.day:02d}"


def extract_output_vid(record: Dict[str, Any]) -> Optional[str]:
    """The output asset id lives either in ``OutputVid`` or as the first ``SubVid``."""

    vid = record.get("OutputVid")
    if vid:
        return str(vid)
    sub_vids = record.get("SubVid")
    if isinstance(sub_vids, list) and sub_vids and sub_vids[0]:
        return str(sub_vids[0])
    return None


class CompositionClient:
    """Submit slide timelines to the remote editor and wait for the rendered video."""

    def __init__(self, api: MediaOpenApiClient) -> None:
        self._api = api
        self._settings = api.settings

    def _space_name(self) -> str:
        if not self._settings.vod_space:
            raise ConfigurationError("Media space is missing (set PDF2VIDEO_VOD_SPACE)")
        return self._settings.vod_space

    def build_edit_param(
        self,
        sources: Sequence[str],
        *,
        duration_per_slide: int,
        transition: str,
        resolution: Resolution,
        video_name: str,
    ) -> Dict[str, Any]:
        settings = self._settings
        return {
            "Upload": {"Uploader": settings.uploader_name, "VideoName": video_name},
            "Output": {
                "Width": resolution.width,
                "Height": resolution.height,
                "Format": settings.output_format,
                "Fps": settings.output_fps,
                "Quality": settings.output_quality,
            },
            "Segments": build_segments(sources, duration_per_slide, transition),
        }

    async def submit(
        self,
        sources: Sequence[str],
        *,
        duration_per_slide: int,
        transition: str,
        resolution: Resolution,
        video_name: Optional[str] = None,
    ) -> str:
        """Submit the composition job and return its request id."""

        space = self._space_name()
        name = video_name or default_video_name()
        body = {
            "Uploader": self._settings.uploader_name,
            "Application": space,
            "VideoName": name,
            "EditParam": self.build_edit_param(
                sources,
                duration_per_slide=duration_per_slide,
                transition=transition,
                resolution=resolution,
                video_name=name,
            ),
        }
        payload = await self._api.call("SubmitDirectEditTaskAsync", self._settings.edit_api_version, body)
        error = response_error(payload)
        if error:
            raise CompositionError(f"Composition submission rejected: {error[0]} {error[1]}".rstrip())
        result = payload.get("Result") or {}
        req_id = (result.get("ReqId") if isinstance(result, dict) else None) or payload.get("ReqId")
        if not req_id:
            raise CompositionError("Composition submission returned no job id")
        logger.info("Composition job submitted", extra={"req_id": req_id, "segments": len(sources)})
        return str(req_id)

    async def fetch_result(self, req_id: str) -> Dict[str, Any]:
        payload = await self._api.call(
            "GetDirectEditResult", self._settings.edit_api_version, {"ReqIds": [req_id]}
        )
        error = response_error(payload)
        if error:
            raise CompositionError(f"Composition status query failed: {error[0]} {error[1]}".rstrip())
        result = payload.get("Result") or []
        record = result[0] if isinstance(result, list) and result else result
        return record if isinstance(record, dict) else {}

    async def wait_for_result(self, req_id: str, *, on_attempt: Optional[AttemptCallback] = None) -> str:
        """Poll until the job succeeds (returning the output vid) or fails."""

        max_attempts = max(1, self._settings.poll_max_attempts)
        interval = max(0.0, self._settings.poll_interval_seconds)
        for attempt in range(1, max_attempts + 1):
            record = await self.fetch_result(req_id)
            state = str(record.get("Status") or "").lower()
            message = str(record.get("Message") or DEFAULT_POLL_MESSAGE)
            logger.debug(
                "Polled composition job",
                extra={"req_id": req_id, "attempt": attempt, "state": state},
            )
            if state in SUCCESS_STATES:
                vid = extract_output_vid(record)
                if not vid:
                    raise CompositionError("Composition succeeded but returned no output video id")
                return vid
            if state in FAILURE_STATES:
                raise CompositionFailedError(f"Composition failed: {record.get('Message') or 'no reason given'}")
            if on_attempt is not None:
                await on_attempt(attempt, max_attempts, message)
            await asyncio.sleep(interval)
        raise CompositionTimeoutError(
            f"Timed out waiting for composition after {max_attempts} attempts"
        )
