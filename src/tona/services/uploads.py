"""Upload pipeline turning image batches into remote groups."""

import asyncio
import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from tona.adapters.tona_api import ImageFile, TonaApiClient
from tona.domain.errors import AppError, NetworkError, ValidationError
from tona.domain.groups import GroupSlot, UploadGroup
from tona.domain.jobs import OrchestrationState
from tona.services.errors import classify_error
from tona.services.images import ImageInput, encode_jpeg, load_image_files
from tona.services.retry import RetryableAction
from tona.services.session import SessionStore

_logger = logging.getLogger(__name__)

_MB = 1024 * 1024


@dataclass
class UploadPipeline:
    """Encodes, validates and uploads one group of images at a time."""

    client: TonaApiClient
    store: SessionStore
    jpeg_quality: int = 80
    max_images: int = 10
    max_image_size_mb: int = 10
    staged_threshold_mb: int = 10
    _lock: asyncio.Lock = field(default_factory=asyncio.Lock, init=False, repr=False)

    async def upload(self, images: Sequence[ImageInput], slot: GroupSlot) -> str:
        """Upload a batch for a slot and return the assigned group id.

        Uploads never overlap: a second call waits until the first one has
        succeeded or failed.
        """
        async with self._lock:
            return await self._upload(list(images), slot)

    async def upload_files(self, paths: Iterable[Path], slot: GroupSlot) -> str:
        """Read images from disk and upload them."""
        try:
            payloads = load_image_files(paths)
        except AppError as exc:
            self.store.add_error(exc)
            raise
        return await self.upload(payloads, slot)

    async def upload_both(
        self, first: Sequence[ImageInput], second: Sequence[ImageInput]
    ) -> tuple[str, str]:
        """Upload the first group, then the second."""
        first_id = await self.upload(first, GroupSlot.FIRST)
        second_id = await self.upload(second, GroupSlot.SECOND)
        return first_id, second_id

    async def _upload(self, images: list[ImageInput], slot: GroupSlot) -> str:
        try:
            files = self._prepare(images)
        except Exception as exc:
            error = classify_error(exc)
            self.store.add_error(error)
            if error is exc:
                raise
            raise error from exc

        # A running job keeps the flow state; the upload only fills its slot.
        if self.store.state is not OrchestrationState.PROCESSING:
            self.store.set_state(OrchestrationState.UPLOADING)
        self.store.start_loading("upload", "Uploading images...")
        try:
            group_id = await self._send(slot, files)
        except Exception as exc:
            error = classify_error(
                exc, fallback=lambda raw: NetworkError.request_failed(str(raw))
            )
            if error.can_retry:
                self.store.set_retryable_action(
                    RetryableAction(
                        name=f"upload_{slot.value}_group",
                        operation=lambda: self.upload(images, slot),
                    )
                )
            self.store.add_error(error)
            if self.store.state is OrchestrationState.UPLOADING:
                self.store.set_state(OrchestrationState.FAILED, failure=error)
            if error is exc:
                raise
            raise error from exc
        finally:
            self.store.stop_loading("upload")

        self.store.record_group(
            UploadGroup(
                slot=slot,
                images=tuple(data for _, data in files),
                group_id=group_id,
            )
        )
        if self.store.state is OrchestrationState.UPLOADING:
            self.store.set_state(OrchestrationState.IDLE)
        self.store.show_success("Images uploaded successfully")
        _logger.info("Uploaded %s group as %s (%s images)", slot.value, group_id, len(files))
        return group_id

    def _prepare(self, images: list[ImageInput]) -> list[ImageFile]:
        if not images:
            raise ValidationError.no_images_selected()
        if len(images) > self.max_images:
            raise ValidationError.too_many_images(self.max_images)
        files = []
        for index, image in enumerate(images):
            data = encode_jpeg(image, quality=self.jpeg_quality)
            if len(data) > self.max_image_size_mb * _MB:
                raise ValidationError.file_too_large(self.max_image_size_mb)
            files.append((f"image_{index}.jpg", data))
        return files

    async def _send(self, slot: GroupSlot, files: list[ImageFile]) -> str:
        total_bytes = sum(len(data) for _, data in files)
        if total_bytes > self.staged_threshold_mb * _MB:
            _logger.info("Staging %s bytes for %s group upload", total_bytes, slot.value)
            response = await self.client.upload_group_staged(slot, files)
        else:
            response = await self.client.upload_group(slot, files)
        if not response.success or not response.group_id:
            raise NetworkError.request_failed(response.message or "Upload failed")
        return response.group_id
