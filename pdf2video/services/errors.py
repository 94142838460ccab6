"""Exceptions raised by the conversion pipeline stages."""

from __future__ import annotations


class PipelineError(RuntimeError):
    """Base class for errors that terminate a conversion task."""


class ConfigurationError(PipelineError):
    """Raised when a required setting is missing or malformed."""


class RasterizationError(PipelineError):
    """Raised when a PDF cannot be turned into page images."""


class RasterizationTimeoutError(RasterizationError):
    """Raised when the rasterization worker exceeds its wall-clock timeout."""


class StorageError(PipelineError):
    """Raised when a page image cannot be uploaded or is not reachable."""


class StorageConfigurationError(StorageError, ConfigurationError):
    """Raised when the object storage settings are missing or malformed."""


class RemoteServiceError(PipelineError):
    """Base class for transport level failures of the remote media service."""

    def __init__(self, message: str, *, url: str, original: Exception) -> None:
        super().__init__(message)
        self.url = url
        self.original = original


class RemoteServiceUnavailableError(RemoteServiceError):
    """Raised when the remote media service cannot be reached."""


class RemoteServiceResponseError(RemoteServiceError):
    """Raised when the remote media service responds with a non-success status code."""

    def __init__(
        self,
        message: str,
        *,
        url: str,
        status_code: int,
        response_text: str,
        original: Exception,
    ) -> None:
        super().__init__(message, url=url, original=original)
        self.status_code = status_code
        self.response_text = response_text


class CompositionError(PipelineError):
    """Raised when a composition job cannot be submitted or queried."""


class CompositionFailedError(CompositionError):
    """Raised when the remote service reports the composition job as failed."""


class CompositionTimeoutError(CompositionError):
    """Raised when the poll attempts run out before a terminal remote status."""


class PlaybackError(PipelineError):
    """Raised when no playable URL can be resolved for a composed video."""
