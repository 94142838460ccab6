from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional, Sequence
from urllib.parse import quote, urlsplit

import boto3
import httpx
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from pdf2video.core.config import Settings

from .dispatcher import PageImage
from .errors import StorageConfigurationError, StorageError

logger = logging.getLogger(__name__)

UploadCallback = Callable[[int, int], Awaitable[None]]

_UNSAFE_KEY_CHARS = re.compile(r"[^A-Za-z0-9._-]+")
_PROTOCOL_SUFFIXES = (".https", ".http")


@dataclass(frozen=True, slots=True)
class Endpoint:
    protocol: str
    host: str

    @property
    def url(self) -> str:
        return f"{self.protocol}://{self.host}"


@dataclass(slots=True)
class UploadedImage:
    index: int
    file_name: str
    key: str
    url: str


def normalize_endpoint(raw: Optional[str]) -> Endpoint:
    """Turn ``host`` or ``scheme://host`` into an :class:`Endpoint`.

    Bare protocol strings and hosts with a dangling ``.http``/``.https``
    suffix are rejected; they come from half-edited configuration.
    """

    value = (raw or "").strip()
    if not value:
        raise StorageConfigurationError("Storage endpoint is missing (set PDF2VIDEO_STORAGE_ENDPOINT)")
    lowered = value.lower()
    if lowered in ("http", "https", "http://", "https://"):
        raise StorageConfigurationError(
            f'Invalid storage endpoint "{value}": provide a host such as "tos-cn-beijing.volces.com"'
        )
    if lowered.endswith(_PROTOCOL_SUFFIXES):
        raise StorageConfigurationError(f'Invalid storage endpoint "{value}": did you mean "https://<host>"?')
    if lowered.startswith(("http://", "https://")):
        parts = urlsplit(value)
        if not parts.netloc:
            raise StorageConfigurationError(f'Invalid storage endpoint "{value}": missing host')
        return Endpoint(protocol=parts.scheme.lower(), host=parts.netloc)
    if "://" in value or "/" in value:
        raise StorageConfigurationError(f'Invalid storage endpoint "{value}": expected a bare host name')
    return Endpoint(protocol="https", host=value)


def validate_bucket_name(bucket: Optional[str]) -> str:
    value = (bucket or "").strip()
    if not value:
        raise StorageConfigurationError("Storage bucket is missing (set PDF2VIDEO_STORAGE_BUCKET)")
    if "://" in value or value.lower().startswith("http"):
        raise StorageConfigurationError(
            f'Storage bucket should be a plain name like "ppt-video-assets", not a URL: "{value}"'
        )
    if value.lower().endswith(_PROTOCOL_SUFFIXES):
        raise StorageConfigurationError(f'Invalid storage bucket "{value}": remove the protocol suffix')
    return value


def sanitize_key_name(file_name: str, index: int) -> str:
    """Return a storage-safe object name, falling back to ``page-NNN.png``."""

    cleaned = _UNSAFE_KEY_CHARS.sub("_", Path(file_name or "").name).strip("._")
    if not cleaned or not any(char.isalnum() for char in cleaned):
        return f"page-{index:03d}.png"
    return cleaned


class ObjectStorageUploader:
    """Upload rendered pages to an S3-compatible bucket and resolve fetchable URLs."""

    def __init__(
        self,
        settings: Settings,
        *,
        http_client: Optional[httpx.AsyncClient] = None,
        s3_client: Any = None,
    ) -> None:
        self._settings = settings
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(
            timeout=settings.request_timeout_seconds, follow_redirects=True
        )
        self._client = s3_client
        self._bucket: Optional[str] = None
        self._endpoint: Optional[Endpoint] = None
        self._public_host: Optional[str] = None

    def _ensure_client(self) -> Any:
        """Validate configuration and build the boto3 client on first use."""

        if self._bucket is not None and self._client is not None:
            return self._client

        settings = self._settings
        if not settings.access_key_id or not settings.secret_access_key:
            raise StorageConfigurationError(
                "Storage credentials are missing (set PDF2VIDEO_ACCESS_KEY_ID and PDF2VIDEO_SECRET_ACCESS_KEY)"
            )
        bucket = validate_bucket_name(settings.storage_bucket)
        region = (settings.storage_region or "").strip()
        if not region:
            raise StorageConfigurationError("Storage region is missing (set PDF2VIDEO_STORAGE_REGION)")
        endpoint = normalize_endpoint(settings.storage_endpoint)

        public_host = endpoint.host if endpoint.host.startswith(f"{bucket}.") else f"{bucket}.{endpoint.host}"
        if public_host.lower().endswith(_PROTOCOL_SUFFIXES) or "://" in public_host:
            raise StorageConfigurationError(f"Invalid storage host computed: {public_host}")

        if self._client is None:
            self._client = boto3.client(
                "s3",
                aws_access_key_id=settings.access_key_id,
                aws_secret_access_key=settings.secret_access_key,
                region_name=region,
                endpoint_url=endpoint.url,
                config=BotoConfig(s3={"addressing_style": "virtual"}, signature_version="s3v4"),
            )
        self._bucket = bucket
        self._endpoint = endpoint
        self._public_host = public_host
        logger.debug(
            "Object storage client ready",
            extra={"bucket": bucket, "region": region, "endpoint": endpoint.url, "host": public_host},
        )
        return self._client

    def object_key(self, task_id: str, file_name: str, index: int) -> str:
        prefix = self._settings.storage_key_prefix.strip("/")
        name = sanitize_key_name(file_name, index)
        return f"{prefix}/{task_id}/{name}" if prefix else f"{task_id}/{name}"

    def public_url(self, key: str) -> str:
        if self._endpoint is None or self._public_host is None:
            self._ensure_client()
        return f"{self._endpoint.protocol}://{self._public_host}/{quote(key, safe='/')}"

    async def upload_images(
        self,
        task_id: str,
        images: Sequence[PageImage],
        *,
        on_uploaded: Optional[UploadCallback] = None,
    ) -> List[UploadedImage]:
        client = self._ensure_client()
        uploaded: List[UploadedImage] = []
        total = len(images)
        for position, image in enumerate(images, start=1):
            key = self.object_key(task_id, image.file_name, image.index)
            try:
                url = await self._upload_one(client, key, image.path)
            except StorageError as exc:
                raise StorageError(f"Upload of {image.file_name} failed: {exc}") from exc
            uploaded.append(UploadedImage(index=image.index, file_name=image.file_name, key=key, url=url))
            if on_uploaded is not None:
                await on_uploaded(position, total)
        logger.info("Uploaded page images", extra={"task_id": task_id, "count": total})
        return uploaded

    async def _upload_one(self, client: Any, key: str, path: Path) -> str:
        body = await asyncio.to_thread(path.read_bytes)
        logger.debug(
            "Uploading object",
            extra={"bucket": self._bucket, "key": key, "size": len(body), "url": self.public_url(key)},
        )
        try:
            await asyncio.to_thread(
                client.put_object,
                Bucket=self._bucket,
                Key=key,
                Body=body,
                ContentLength=len(body),
                ContentType="image/png",
            )
        except (BotoCoreError, ClientError) as exc:
            logger.error("Object upload failed", extra={"key": key, "error": str(exc)})
            raise StorageError(f"put_object rejected: {exc}") from exc

        url = await self._resolve_url(client, key)
        await self._verify_reachable(url)
        return url

    async def _resolve_url(self, client: Any, key: str) -> str:
        try:
            signed = await asyncio.to_thread(
                client.generate_presigned_url,
                "get_object",
                Params={"Bucket": self._bucket, "Key": key},
                ExpiresIn=self._settings.storage_presign_expires_seconds,
            )
        except (BotoCoreError, ClientError) as exc:
            logger.warning("Presigning failed, falling back to public URL", extra={"key": key, "error": str(exc)})
            return self.public_url(key)
        return signed or self.public_url(key)

    async def _verify_reachable(self, url: str) -> None:
        """Fetch the first byte with GET; presigned URLs are only valid for the signed method."""

        try:
            async with self._http.stream("GET", url, headers={"Range": "bytes=0-0"}) as response:
                status_code = response.status_code
        except httpx.RequestError as exc:
            raise StorageError(f"image URL is not reachable: {url} ({exc})") from exc
        if status_code >= 400:
            raise StorageError(f"image URL is not reachable: {url} status={status_code}")

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self._http.aclose()
