from __future__ import annotations

import json
from typing import Any, Callable

import httpx
import pytest

from pdf2video.core.config import settings_from_overrides
from pdf2video.services.composition import (
    CompositionClient,
    build_segments,
    default_video_name,
    extract_output_vid,
)
from pdf2video.services.errors import (
    CompositionError,
    CompositionFailedError,
    CompositionTimeoutError,
    ConfigurationError,
    PlaybackError,
    RemoteServiceResponseError,
    RemoteServiceUnavailableError,
)
from pdf2video.services.openapi import MediaOpenApiClient
from pdf2video.services.playback import PlaybackResolver, select_play_urls
from task_state import Resolution

Handler = Callable[[httpx.Request], httpx.Response]


def _settings(**overrides: Any):
    values = {
        "access_key_id": "ak",
        "secret_access_key": "sk",
        "vod_space": "slides",
        "composition_base_url": "https://vod.example.com",
        "poll_interval_seconds": 0,
        "poll_max_attempts": 3,
        "log_json": False,
    }
    values.update(overrides)
    return settings_from_overrides(**values)


def _envelope(result: Any = None, error: tuple[str, str] | None = None) -> dict:
    metadata: dict[str, Any] = {"RequestId": "r-1"}
    if error:
        metadata["Error"] = {"Code": error[0], "Message": error[1]}
    body: dict[str, Any] = {"ResponseMetadata": metadata}
    if result is not None:
        body["Result"] = result
    return body


def _api(handler: Handler, **overrides: Any) -> MediaOpenApiClient:
    return MediaOpenApiClient(_settings(**overrides), transport=httpx.MockTransport(handler))


def test_build_segments_with_fade() -> None:
    segments = build_segments(["https://a/1.png", "https://a/2.png"], 4, "fade")

    assert len(segments) == 2
    assert segments[0] == {
        "Duration": 4000,
        "Elements": [{"Type": "image", "Source": "https://a/1.png", "Duration": 4000, "StartTime": 0}],
        "Transition": "fade",
        "TransitionTime": 800,
    }


def test_build_segments_without_transition_and_short_duration() -> None:
    no_fade = build_segments(["https://a/1.png"], 3, "none")[0]
    assert "Transition" not in no_fade
    assert "TransitionTime" not in no_fade

    short = build_segments(["https://a/1.png"], 1, "fade")[0]
    assert short["Duration"] == 2000
    assert short["TransitionTime"] == 800


def test_extract_output_vid_accepts_both_shapes() -> None:
    assert extract_output_vid({"OutputVid": "v1"}) == "v1"
    assert extract_output_vid({"SubVid": ["v2", "v3"]}) == "v2"
    assert extract_output_vid({"SubVid": []}) is None


def test_default_video_name_format() -> None:
    name = default_video_name()
    assert name.startswith("Slides_")
    assert name[len("Slides_"):].isdigit()


@pytest.mark.asyncio
async def test_submit_sends_action_and_edit_param() -> None:
    seen: list[httpx.Request] = []

    def _handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_envelope({"ReqId": "req-1"}))

    api = _api(_handler)
    client = CompositionClient(api)

    req_id = await client.submit(
        ["https://a/1.png", "https://a/2.png"],
        duration_per_slide=4,
        transition="fade",
        resolution=Resolution(width=1920, height=1080),
        video_name="Slides_0101",
    )

    assert req_id == "req-1"
    request = seen[0]
    assert request.method == "POST"
    assert request.url.params["Action"] == "SubmitDirectEditTaskAsync"
    assert request.url.params["Version"] == "2018-01-01"
    assert request.headers["authorization"].startswith("Basic ")
    body = json.loads(request.content)
    assert body["Application"] == "slides"
    assert body["VideoName"] == "Slides_0101"
    assert body["EditParam"]["Output"] == {
        "Width": 1920,
        "Height": 1080,
        "Format": "mp4",
        "Fps": 30,
        "Quality": "medium",
    }
    assert len(body["EditParam"]["Segments"]) == 2
    await api.aclose()


@pytest.mark.asyncio
async def test_submit_rejects_error_metadata_and_missing_req_id() -> None:
    api = _api(lambda request: httpx.Response(200, json=_envelope(error=("InvalidParameter", "bad segments"))))
    with pytest.raises(CompositionError, match="InvalidParameter bad segments"):
        await CompositionClient(api).submit(
            ["u"], duration_per_slide=3, transition="fade", resolution=Resolution(width=1280, height=720)
        )
    await api.aclose()

    api = _api(lambda request: httpx.Response(200, json=_envelope({})))
    with pytest.raises(CompositionError, match="no job id"):
        await CompositionClient(api).submit(
            ["u"], duration_per_slide=3, transition="fade", resolution=Resolution(width=1280, height=720)
        )
    await api.aclose()


@pytest.mark.asyncio
async def test_submit_requires_space_and_credentials() -> None:
    api = _api(lambda request: httpx.Response(200, json=_envelope({"ReqId": "x"})), vod_space=None)
    with pytest.raises(ConfigurationError, match="VOD_SPACE"):
        await CompositionClient(api).submit(
            ["u"], duration_per_slide=3, transition="fade", resolution=Resolution(width=1280, height=720)
        )
    await api.aclose()

    api = _api(lambda request: httpx.Response(200, json=_envelope({"ReqId": "x"})), secret_access_key=None)
    with pytest.raises(ConfigurationError, match="credentials are missing"):
        await CompositionClient(api).submit(
            ["u"], duration_per_slide=3, transition="fade", resolution=Resolution(width=1280, height=720)
        )
    await api.aclose()


@pytest.mark.asyncio
async def test_wait_for_result_reports_attempts_then_returns_vid() -> None:
    statuses = iter(
        [
            {"ReqId": "req-1", "Status": "processing", "Message": "Rendering 40%"},
            {"ReqId": "req-1", "Status": "processing"},
            {"ReqId": "req-1", "Status": "success", "SubVid": ["v-final"]},
        ]
    )

    def _handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["Action"] == "GetDirectEditResult"
        assert json.loads(request.content) == {"ReqIds": ["req-1"]}
        return httpx.Response(200, json=_envelope([next(statuses)]))

    api = _api(_handler)
    attempts: list[tuple[int, int, str]] = []

    async def _on_attempt(attempt: int, max_attempts: int, message: str) -> None:
        attempts.append((attempt, max_attempts, message))

    vid = await CompositionClient(api).wait_for_result("req-1", on_attempt=_on_attempt)

    assert vid == "v-final"
    assert attempts == [(1, 3, "Rendering 40%"), (2, 3, "Composing video in the cloud...")]
    await api.aclose()


@pytest.mark.asyncio
async def test_wait_for_result_failure_and_timeout() -> None:
    api = _api(lambda request: httpx.Response(200, json=_envelope([{"Status": "failed", "Message": "bad image"}])))
    with pytest.raises(CompositionFailedError, match="Composition failed: bad image"):
        await CompositionClient(api).wait_for_result("req-1")
    await api.aclose()

    calls = 0

    def _never_done(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=_envelope({"Status": "processing"}))

    api = _api(_never_done)
    with pytest.raises(CompositionTimeoutError, match="after 3 attempts"):
        await CompositionClient(api).wait_for_result("req-1")
    assert calls == 3
    await api.aclose()


@pytest.mark.asyncio
async def test_transport_failures_are_wrapped() -> None:
    api = _api(lambda request: httpx.Response(502, text="bad gateway"))
    with pytest.raises(RemoteServiceResponseError) as excinfo:
        await api.call("GetPlayInfo", "2020-08-01", {"Vid": "v"})
    assert excinfo.value.status_code == 502
    assert excinfo.value.response_text == "bad gateway"
    await api.aclose()

    def _unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    api = _api(_unreachable)
    with pytest.raises(RemoteServiceUnavailableError, match="unreachable"):
        await api.call("GetPlayInfo", "2020-08-01", {"Vid": "v"})
    await api.aclose()

    api = _api(lambda request: httpx.Response(200, text="<html>"))
    with pytest.raises(RemoteServiceResponseError, match="non-JSON"):
        await api.call("GetPlayInfo", "2020-08-01", {"Vid": "v"})
    await api.aclose()


def test_select_play_urls_prefers_main_then_backup() -> None:
    urls = select_play_urls(
        {"PlayInfoList": [{"MainPlayUrl": "https://m/v.mp4", "BackupPlayUrl": "https://b/v.mp4"}]}
    )
    assert urls.video_url == "https://m/v.mp4"
    assert urls.download_url == "https://m/v.mp4"

    urls = select_play_urls(
        {
            "PlayInfoList": [{"BackupPlayUrl": "https://b/v.mp4"}],
            "AdaptiveInfo": {"MainPlayUrl": "https://adaptive/v.m3u8"},
        }
    )
    assert urls.video_url == "https://b/v.mp4"
    assert urls.download_url == "https://adaptive/v.m3u8"

    assert select_play_urls({}).video_url == ""


@pytest.mark.asyncio
async def test_playback_resolver() -> None:
    def _handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["Action"] == "GetPlayInfo"
        assert request.url.params["Version"] == "2020-08-01"
        assert json.loads(request.content) == {"Vid": "v1", "FileType": "mp4", "Ssl": "1"}
        return httpx.Response(200, json=_envelope({"PlayInfoList": [{"MainPlayUrl": "https://m/v1.mp4"}]}))

    api = _api(_handler)
    urls = await PlaybackResolver(api).resolve("v1")
    assert urls.video_url == "https://m/v1.mp4"
    await api.aclose()

    api = _api(lambda request: httpx.Response(200, json=_envelope({"PlayInfoList": []})))
    with pytest.raises(PlaybackError, match="No playable URL"):
        await PlaybackResolver(api).resolve("v1")
    await api.aclose()
