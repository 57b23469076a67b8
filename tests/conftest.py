"""Shared test fixtures."""

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field
from io import BytesIO
from pathlib import Path

import pytest
from PIL import Image

from tona.adapters.tona_api import ImageFile, TonaApiClient
from tona.config import Settings
from tona.containers import AppContainer, build_services
from tona.domain.groups import GroupSlot
from tona.domain.jobs import JobStatus
from tona.domain.remote import (
    CancelResponse,
    ProcessingRequest,
    ProcessingResponse,
    ResultResponse,
    StatusResponse,
    UploadGroupResponse,
)


def make_image_bytes(
    color: str = "red", size: tuple[int, int] = (8, 8), image_format: str = "PNG"
) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format=image_format)
    return buffer.getvalue()


def status(
    value: JobStatus, progress: float | None = None, message: str | None = None
) -> StatusResponse:
    return StatusResponse(status=value, progress=progress, message=message)


@dataclass
class FakeTonaApiClient(TonaApiClient):
    """Scripted processing service client that records every call."""

    upload_errors: list[Exception] = field(default_factory=list)
    upload_response: UploadGroupResponse | None = None
    uploads: list[tuple[GroupSlot, list[ImageFile], bool]] = field(
        default_factory=list
    )
    in_flight_uploads: int = 0
    max_in_flight_uploads: int = 0
    start_responses: list[ProcessingResponse | Exception] = field(
        default_factory=list
    )
    start_requests: list[ProcessingRequest] = field(default_factory=list)
    statuses: list[StatusResponse | Exception] = field(default_factory=list)
    status_calls: list[str] = field(default_factory=list)
    status_gate: asyncio.Event | None = None
    result: ResultResponse | Exception | None = None
    result_calls: list[str] = field(default_factory=list)
    downloads: dict[str, bytes | Exception] = field(default_factory=dict)
    download_calls: list[str] = field(default_factory=list)
    cancel_response: CancelResponse | Exception | None = None
    cancel_calls: list[str] = field(default_factory=list)
    closed: bool = False

    async def upload_group(
        self, slot: GroupSlot, files: Sequence[ImageFile]
    ) -> UploadGroupResponse:
        return await self._upload(slot, files, staged=False)

    async def upload_group_staged(
        self, slot: GroupSlot, files: Sequence[ImageFile]
    ) -> UploadGroupResponse:
        return await self._upload(slot, files, staged=True)

    async def _upload(
        self, slot: GroupSlot, files: Sequence[ImageFile], staged: bool
    ) -> UploadGroupResponse:
        self.in_flight_uploads += 1
        self.max_in_flight_uploads = max(
            self.max_in_flight_uploads, self.in_flight_uploads
        )
        try:
            await asyncio.sleep(0)
            self.uploads.append((slot, list(files), staged))
            if self.upload_errors:
                raise self.upload_errors.pop(0)
            if self.upload_response is not None:
                return self.upload_response
            return UploadGroupResponse(
                success=True, group_id=f"G{len(self.uploads)}"
            )
        finally:
            self.in_flight_uploads -= 1

    async def start_processing(self, request: ProcessingRequest) -> ProcessingResponse:
        self.start_requests.append(request)
        if self.start_responses:
            response = self.start_responses.pop(0)
            if isinstance(response, Exception):
                raise response
            return response
        return ProcessingResponse(success=True, job_id=f"J{len(self.start_requests)}")

    async def check_status(self, job_id: str) -> StatusResponse:
        self.status_calls.append(job_id)
        if self.status_gate is not None:
            await self.status_gate.wait()
        if not self.statuses:
            return status(JobStatus.PENDING)
        response = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        if isinstance(response, Exception):
            raise response
        return response

    async def get_result(self, job_id: str) -> ResultResponse:
        self.result_calls.append(job_id)
        if isinstance(self.result, Exception):
            raise self.result
        if self.result is None:
            return ResultResponse(success=True, data=make_image_bytes())
        return self.result

    async def cancel_job(self, job_id: str) -> CancelResponse:
        self.cancel_calls.append(job_id)
        if isinstance(self.cancel_response, Exception):
            raise self.cancel_response
        return self.cancel_response or CancelResponse(
            success=True, message="Job cancelled"
        )

    async def download(self, url: str) -> bytes:
        self.download_calls.append(url)
        payload = self.downloads[url]
        if isinstance(payload, Exception):
            raise payload
        return payload

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        admin_token="admin-token",
        tona_api_base_url="https://tona.test",
        poll_interval_seconds=0.0,
        results_dir=tmp_path / "results",
    )


@pytest.fixture
def api_client() -> FakeTonaApiClient:
    return FakeTonaApiClient()


@pytest.fixture
def container(settings: Settings, api_client: FakeTonaApiClient) -> AppContainer:
    session_store, upload_pipeline, orchestrator, result_materializer = (
        build_services(settings, api_client)
    )

    async def close_resources() -> None:
        orchestrator.shutdown()
        await api_client.close()

    return AppContainer(
        settings=settings,
        api_client=api_client,
        session_store=session_store,
        upload_pipeline=upload_pipeline,
        orchestrator=orchestrator,
        result_materializer=result_materializer,
        close_resources=close_resources,
    )
