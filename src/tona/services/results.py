"""Materialization of completed job results."""

import errno
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from tona.adapters.tona_api import TonaApiClient
from tona.domain.errors import AppError, NetworkError, StorageError, UnknownError
from tona.domain.results import DownloadOutcome, ResultSet
from tona.services.errors import classify_error
from tona.services.images import ImageDecodeError, decode_image, file_extension
from tona.services.session import SessionStore

_logger = logging.getLogger(__name__)


@dataclass
class ResultMaterializer:
    """Fetches the result descriptor of a job and downloads its artifacts."""

    client: TonaApiClient
    store: SessionStore

    async def fetch(self, job_id: str) -> ResultSet:
        """Return the results of a completed job, fetching them at most once."""
        existing = self.store.results
        if existing is not None and existing.job_id == job_id:
            return existing

        self.store.begin_results()
        self.store.start_loading("results", "Fetching results...")
        try:
            results = await self._fetch(job_id)
            self.store.set_results(results)
        except Exception as exc:
            error = classify_error(exc)
            self.store.add_error(error)
            if error is exc:
                raise
            raise error from exc
        finally:
            self.store.stop_loading("results")
            self.store.finish_results()
        _logger.info(
            "Job %s results: %s of %s images",
            job_id,
            len(results.images),
            results.requested,
        )
        return results

    async def _fetch(self, job_id: str) -> ResultSet:
        response = await self.client.get_result(job_id)
        if not response.success:
            raise NetworkError.request_failed(
                response.message or "Failed to fetch results"
            )
        if response.data:
            try:
                image = decode_image(response.data)
            except ImageDecodeError:
                _logger.warning("Inline result for job %s is not an image", job_id)
            else:
                self.store.update_download_progress(1.0)
                return ResultSet.inline(job_id, image)
        urls = response.urls
        if not urls:
            raise UnknownError("no data")
        outcomes = await self.download_all(urls)
        return ResultSet.from_outcomes(job_id, outcomes)

    async def download_all(self, urls: Sequence[str]) -> list[DownloadOutcome]:
        """Download every URL in order; failed items still advance progress."""
        total = len(urls)
        if total == 0:
            self.store.update_download_progress(1.0)
            return []
        outcomes = []
        for index, url in enumerate(urls):
            outcome = await self._download_one(index, url)
            outcomes.append(outcome)
            self.store.update_download_progress((index + 1) / total)
        return outcomes

    async def _download_one(self, index: int, url: str) -> DownloadOutcome:
        try:
            data = await self.client.download(url)
            image = decode_image(data)
        except ImageDecodeError:
            _logger.warning("Result %s is not a valid image: %s", index, url)
            return DownloadOutcome(
                index=index, url=url, error=UnknownError("Failed to decode image")
            )
        except Exception as exc:
            error = classify_error(exc)
            _logger.warning("Failed to download result %s: %s", url, error.error_id)
            return DownloadOutcome(index=index, url=url, error=error)
        return DownloadOutcome(index=index, url=url, image=image)

    def save(self, index: int, directory: Path) -> Path:
        """Write one result image to disk and return its path."""
        results = self.store.results
        if results is None or not 0 <= index < len(results.images):
            error: AppError = StorageError.load_failed()
            self.store.add_error(error)
            raise error
        image = results.images[index]
        path = Path(directory) / f"{results.job_id}_{index}{file_extension(image)}"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(image.content)
        except OSError as exc:
            error = (
                StorageError.insufficient_space()
                if exc.errno == errno.ENOSPC
                else StorageError.save_failed()
            )
            self.store.add_error(error)
            raise error from exc
        self.store.show_success("Image saved")
        return path
