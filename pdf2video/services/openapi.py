from __future__ import annotations

import logging
from typing import Any, Dict, Mapping

import httpx

from pdf2video.core.config import Settings

from .errors import ConfigurationError, RemoteServiceResponseError, RemoteServiceUnavailableError

logger = logging.getLogger(__name__)


def response_error(payload: Mapping[str, Any]) -> tuple[str, str] | None:
    """Return ``(code, message)`` when the response metadata carries an error."""

    metadata = payload.get("ResponseMetadata") or {}
    error = metadata.get("Error") if isinstance(metadata, Mapping) else None
    if isinstance(error, Mapping) and error.get("Code"):
        return str(error.get("Code")), str(error.get("Message") or "")
    return None


class MediaOpenApiClient:
    """Client for the action-style OpenAPI of the remote media service.

    Every call is ``POST {base_url}?Action=<action>&Version=<version>`` with a
    JSON body; the decoded JSON envelope is returned as-is so callers can
    inspect ``ResponseMetadata`` and ``Result``.
    """

    def __init__(self, settings: Settings, *, transport: httpx.AsyncBaseTransport | None = None) -> None:
        self._settings = settings
        self._client = httpx.AsyncClient(timeout=settings.request_timeout_seconds, transport=transport)

    @property
    def settings(self) -> Settings:
        return self._settings

    def _credentials(self) -> httpx.BasicAuth:
        settings = self._settings
        if not settings.access_key_id or not settings.secret_access_key:
            raise ConfigurationError(
                "Media service credentials are missing (set PDF2VIDEO_ACCESS_KEY_ID and PDF2VIDEO_SECRET_ACCESS_KEY)"
            )
        return httpx.BasicAuth(settings.access_key_id, settings.secret_access_key)

    async def call(self, action: str, version: str, body: Dict[str, Any]) -> Dict[str, Any]:
        auth = self._credentials()
        url = self._settings.composition_base_url
        params = {"Action": action, "Version": version}
        logger.debug("Calling media service", extra={"url": url, "action": action})
        try:
            response = await self._client.post(url, params=params, json=body, auth=auth)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            response_text = exc.response.text
            status_code = exc.response.status_code
            logger.error(
                "Media service responded with error",
                extra={"url": url, "action": action, "status_code": status_code, "response": response_text},
            )
            raise RemoteServiceResponseError(
                f"{action} responded with {status_code}: {response_text}",
                url=url,
                status_code=status_code,
                response_text=response_text,
                original=exc,
            ) from exc
        except httpx.RequestError as exc:
            logger.error("Media service unreachable", extra={"url": url, "action": action, "error": str(exc)})
            raise RemoteServiceUnavailableError(
                f"Media service at {url} is unreachable: {exc}", url=url, original=exc
            ) from exc

        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteServiceResponseError(
                f"{action} returned a non-JSON body",
                url=url,
                status_code=response.status_code,
                response_text=response.text,
                original=exc,
            ) from exc
        if not isinstance(payload, dict):
            raise RemoteServiceResponseError(
                f"{action} returned an unexpected body",
                url=url,
                status_code=response.status_code,
                response_text=response.text,
                original=TypeError(type(payload).__name__),
            )
        return payload

    async def aclose(self) -> None:
        await self._client.aclose()
