"""Processing service API client."""

import asyncio
import tempfile
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Protocol, TypeVar

import httpx
from pydantic import BaseModel

from tona.domain.groups import GroupSlot
from tona.domain.remote import (
    CancelResponse,
    ProcessingRequest,
    ProcessingResponse,
    ResultResponse,
    StatusResponse,
    UploadGroupResponse,
)

ImageFile = tuple[str, bytes]

_ModelT = TypeVar("_ModelT", bound=BaseModel)

_CLIENT_ERRORS = {
    400: "Bad request",
    401: "Unauthorized",
    404: "Not found",
}


class TransportErrorKind(str, Enum):
    INVALID_URL = "invalid_url"
    CONNECTION = "connection"
    TIMEOUT = "timeout"
    REQUEST_FAILED = "request_failed"
    SERVER_ERROR = "server_error"
    INVALID_RESPONSE = "invalid_response"
    DECODING_FAILED = "decoding_failed"
    ENCODING_FAILED = "encoding_failed"
    NO_DATA = "no_data"


_TRANSPORT_DESCRIPTIONS = {
    TransportErrorKind.INVALID_URL: "Invalid URL",
    TransportErrorKind.CONNECTION: "Network error",
    TransportErrorKind.TIMEOUT: "Request timed out",
    TransportErrorKind.REQUEST_FAILED: "Request failed",
    TransportErrorKind.SERVER_ERROR: "Server error",
    TransportErrorKind.INVALID_RESPONSE: "Invalid response",
    TransportErrorKind.DECODING_FAILED: "Failed to decode response",
    TransportErrorKind.ENCODING_FAILED: "Failed to encode request",
    TransportErrorKind.NO_DATA: "No data received",
}


class TransportError(Exception):
    """Typed failure of a request to the processing service."""

    def __init__(
        self,
        kind: TransportErrorKind,
        *,
        status_code: int | None = None,
        detail: str | None = None,
    ) -> None:
        self.kind = kind
        self.status_code = status_code
        self.detail = detail
        super().__init__(self.description)

    @property
    def description(self) -> str:
        base = _TRANSPORT_DESCRIPTIONS[self.kind]
        if self.status_code is not None:
            base = f"{base} with status code: {self.status_code}"
        if self.detail:
            return f"{base}: {self.detail}"
        return base


class TonaApiClient(Protocol):
    """Interface for the remote processing service."""

    async def upload_group(
        self, slot: GroupSlot, files: Sequence[ImageFile]
    ) -> UploadGroupResponse:
        """Upload a group of JPEG files in a single request."""

    async def upload_group_staged(
        self, slot: GroupSlot, files: Sequence[ImageFile]
    ) -> UploadGroupResponse:
        """Upload a large group by staging it on disk and streaming it."""

    async def start_processing(self, request: ProcessingRequest) -> ProcessingResponse:
        """Start a job for two uploaded groups."""

    async def check_status(self, job_id: str) -> StatusResponse:
        """Return the current status of a job."""

    async def get_result(self, job_id: str) -> ResultResponse:
        """Return the result descriptor of a completed job."""

    async def cancel_job(self, job_id: str) -> CancelResponse:
        """Ask the service to cancel a job."""

    async def download(self, url: str) -> bytes:
        """Download a result object by absolute URL."""


@dataclass
class HttpxTonaApiClient(TonaApiClient):
    """Processing service client implemented with httpx."""

    base_url: str
    http_client: httpx.AsyncClient
    timeout: float = 30.0
    staged_timeout: float = 300.0

    @classmethod
    def create(
        cls, base_url: str, timeout: float = 30.0, staged_timeout: float = 300.0
    ) -> "HttpxTonaApiClient":
        """Create a client with a managed httpx session."""
        return cls(
            base_url=base_url.rstrip("/"),
            http_client=httpx.AsyncClient(),
            timeout=timeout,
            staged_timeout=staged_timeout,
        )

    async def upload_group(
        self, slot: GroupSlot, files: Sequence[ImageFile]
    ) -> UploadGroupResponse:
        """Upload a group as one multipart request held in memory."""
        parts = [("images", (name, data, "image/jpeg")) for name, data in files]
        response = await self._send(
            "POST", f"{self.base_url}/{slot.endpoint}", files=parts
        )
        return _parse(response, UploadGroupResponse)

    async def upload_group_staged(
        self, slot: GroupSlot, files: Sequence[ImageFile]
    ) -> UploadGroupResponse:
        """Write every payload to a temporary directory and stream it from disk."""
        with tempfile.TemporaryDirectory(prefix="tona-upload-") as staging_dir:
            paths = await asyncio.to_thread(_stage_files, Path(staging_dir), files)
            handles = [(name, path.open("rb")) for name, path in paths]
            try:
                parts = [
                    ("images", (name, handle, "image/jpeg")) for name, handle in handles
                ]
                response = await self._send(
                    "POST",
                    f"{self.base_url}/{slot.endpoint}",
                    files=parts,
                    timeout=self.staged_timeout,
                )
            finally:
                for _, handle in handles:
                    handle.close()
        return _parse(response, UploadGroupResponse)

    async def start_processing(self, request: ProcessingRequest) -> ProcessingResponse:
        """Start processing with a JSON body."""
        response = await self._send(
            "POST", f"{self.base_url}/process/start", json=request.to_payload()
        )
        return _parse(response, ProcessingResponse)

    async def check_status(self, job_id: str) -> StatusResponse:
        """Fetch job status."""
        response = await self._send("GET", f"{self.base_url}/status/{job_id}")
        return _parse(response, StatusResponse)

    async def get_result(self, job_id: str) -> ResultResponse:
        """Fetch the result descriptor."""
        response = await self._send("GET", f"{self.base_url}/result/{job_id}")
        return _parse(response, ResultResponse)

    async def cancel_job(self, job_id: str) -> CancelResponse:
        """Cancel a job."""
        response = await self._send("POST", f"{self.base_url}/cancel/{job_id}")
        return _parse(response, CancelResponse)

    async def download(self, url: str) -> bytes:
        """Download raw bytes from an absolute URL."""
        response = await self._send("GET", url)
        if not response.content:
            raise TransportError(TransportErrorKind.NO_DATA)
        return response.content

    async def close(self) -> None:
        """Close the underlying HTTP client session."""
        await self.http_client.aclose()

    async def _send(
        self,
        method: str,
        url: str,
        *,
        timeout: float | None = None,
        **kwargs: object,
    ) -> httpx.Response:
        try:
            response = await self.http_client.request(
                method, url, timeout=timeout or self.timeout, **kwargs
            )
        except httpx.TimeoutException as exc:
            raise TransportError(TransportErrorKind.TIMEOUT, detail=str(exc)) from exc
        except (httpx.InvalidURL, httpx.UnsupportedProtocol) as exc:
            raise TransportError(
                TransportErrorKind.INVALID_URL, detail=str(exc)
            ) from exc
        except httpx.TransportError as exc:
            raise TransportError(
                TransportErrorKind.CONNECTION, detail=str(exc)
            ) from exc
        raise_for_status(response.status_code)
        return response


def raise_for_status(status_code: int) -> None:
    """Map a non-2xx status code to a typed transport error."""
    if 200 <= status_code <= 299:
        return
    if status_code in _CLIENT_ERRORS:
        raise TransportError(
            TransportErrorKind.REQUEST_FAILED, detail=_CLIENT_ERRORS[status_code]
        )
    if 500 <= status_code <= 599:
        raise TransportError(TransportErrorKind.SERVER_ERROR, status_code=status_code)
    raise TransportError(TransportErrorKind.INVALID_RESPONSE, status_code=status_code)


def _parse(response: httpx.Response, model: type[_ModelT]) -> _ModelT:
    try:
        return model.model_validate(response.json())
    except ValueError as exc:
        raise TransportError(TransportErrorKind.DECODING_FAILED) from exc


def _stage_files(directory: Path, files: Sequence[ImageFile]) -> list[tuple[str, Path]]:
    paths = []
    for name, data in files:
        path = directory / name
        path.write_bytes(data)
        paths.append((name, path))
    return paths
