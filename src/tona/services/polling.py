"""Cancellable status polling for a remote job."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol

from tona.adapters.tona_api import TonaApiClient
from tona.domain.errors import AppError, ProcessingError
from tona.domain.jobs import JobStatus
from tona.domain.remote import StatusResponse
from tona.services.errors import classify_error
from tona.services.session import SessionStore

_logger = logging.getLogger(__name__)


class PollListener(Protocol):
    """Receives the terminal outcome of a polling run."""

    async def on_job_completed(self, job_id: str) -> None:
        """Called once the job reports completion."""

    async def on_job_failed(self, job_id: str, error: AppError) -> None:
        """Called when the job reports failure or exceeds the attempt ceiling."""

    async def on_job_cancelled(self, job_id: str) -> None:
        """Called when the service reports the job as cancelled."""

    async def on_poll_error(self, job_id: str, error: AppError) -> None:
        """Called when a status request itself fails."""


@dataclass
class CancellationToken:
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class StatusPoller:
    """Polls job status on a fixed interval until a terminal status.

    Only one status request is in flight at a time: the interval is measured
    from the end of one poll to the start of the next. ``stop()`` takes effect
    immediately; a response that arrives afterwards is discarded.
    """

    client: TonaApiClient
    store: SessionStore
    listener: PollListener
    interval_seconds: float = 2.0
    max_attempts: int | None = None
    _task: asyncio.Task | None = field(default=None, init=False, repr=False)
    _token: CancellationToken | None = field(default=None, init=False, repr=False)
    _job_id: str | None = field(default=None, init=False, repr=False)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def job_id(self) -> str | None:
        return self._job_id

    def start(self, job_id: str) -> None:
        """Start polling a job, replacing any previous run."""
        self.stop()
        token = CancellationToken()
        self._token = token
        self._job_id = job_id
        self._task = asyncio.create_task(self._run(job_id, token))
        _logger.info("Polling job %s every %ss", job_id, self.interval_seconds)

    def stop(self) -> None:
        """Stop polling; no listener call or status update happens afterwards."""
        token, task = self._token, self._task
        if token is None:
            return
        was_polling = not token.cancelled
        token.cancel()
        # A terminal callback may still be running in the task.
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
        if was_polling:
            _logger.info("Stopped polling job %s", self._job_id)

    async def wait(self) -> None:
        """Wait for the current run, including its terminal callback, to end."""
        if self._task is not None:
            await asyncio.wait({self._task})

    async def _run(self, job_id: str, token: CancellationToken) -> None:
        attempts = 0
        while not token.cancelled:
            attempts += 1
            try:
                response = await self.client.check_status(job_id)
            except Exception as exc:
                if token.cancelled:
                    return
                token.cancel()
                error = classify_error(exc)
                _logger.warning("Status poll for job %s failed: %s", job_id, error.error_id)
                await self.listener.on_poll_error(job_id, error)
                return
            if token.cancelled:
                _logger.debug("Discarding status for job %s after stop", job_id)
                return
            if not await self._handle(job_id, response, token):
                return
            if self.max_attempts is not None and attempts >= self.max_attempts:
                token.cancel()
                _logger.warning(
                    "Job %s still running after %s polls", job_id, attempts
                )
                await self.listener.on_job_failed(job_id, ProcessingError.timeout())
                return
            await asyncio.sleep(self.interval_seconds)

    async def _handle(
        self, job_id: str, response: StatusResponse, token: CancellationToken
    ) -> bool:
        self.store.apply_status(
            job_id, response.status, response.progress, response.message
        )
        if response.status is JobStatus.COMPLETED:
            token.cancel()
            await self.listener.on_job_completed(job_id)
            return False
        if response.status is JobStatus.FAILED:
            token.cancel()
            reason = response.message or "Processing failed"
            await self.listener.on_job_failed(job_id, ProcessingError.job_failed(reason))
            return False
        if response.status is JobStatus.CANCELLED:
            token.cancel()
            await self.listener.on_job_cancelled(job_id)
            return False
        return True
