"""Job lifecycle orchestration."""

import logging
from dataclasses import dataclass, field

from tona.adapters.tona_api import TonaApiClient
from tona.domain.errors import AppError, NetworkError, ProcessingError, ValidationError
from tona.domain.jobs import OrchestrationState
from tona.domain.remote import ProcessingOptions, ProcessingRequest
from tona.domain.results import ResultSet
from tona.services.errors import classify_error
from tona.services.polling import StatusPoller
from tona.services.results import ResultMaterializer
from tona.services.retry import RetryableAction
from tona.services.session import SessionStore

_logger = logging.getLogger(__name__)


@dataclass
class JobOrchestrator:
    """Owns the job state machine.

    ``Idle -> Uploading -> Processing -> Completed | Failed | Cancelled``;
    terminal states stay until the flow is reset. The orchestrator is also the
    poll listener, so every status-driven transition goes through it.
    """

    client: TonaApiClient
    store: SessionStore
    materializer: ResultMaterializer
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int | None = None
    poller: StatusPoller = field(init=False, repr=False, compare=False)
    _last_request: ProcessingRequest | None = field(default=None, init=False)

    def __post_init__(self) -> None:
        self.poller = StatusPoller(
            client=self.client,
            store=self.store,
            listener=self,
            interval_seconds=self.poll_interval_seconds,
            max_attempts=self.poll_max_attempts,
        )

    async def start_processing(
        self,
        first_group_id: str | None = None,
        second_group_id: str | None = None,
        options: ProcessingOptions | None = None,
    ) -> str:
        """Start a job for two uploaded groups and begin polling it."""
        if first_group_id is None:
            first_group_id = self.store.first_group_id
        if second_group_id is None:
            second_group_id = self.store.second_group_id
        if not first_group_id or not second_group_id:
            error = ValidationError.no_images_selected()
            self.store.add_error(error)
            raise error

        request = ProcessingRequest(
            first_group_id=first_group_id,
            second_group_id=second_group_id,
            options=options,
        )
        self.poller.stop()
        if self.store.job is not None:
            self.store.clear_job()
        self.store.clear_results()
        self.store.start_loading("processing", "Starting processing...")
        try:
            response = await self.client.start_processing(request)
            if not response.success or not response.job_id:
                raise NetworkError.request_failed(
                    response.message or "Failed to start processing"
                )
        except Exception as exc:
            error = classify_error(
                exc, fallback=lambda raw: ProcessingError.job_failed(str(raw))
            )
            self._fail(error, self._restart_action(request))
            if error is exc:
                raise
            raise error from exc

        job_id = response.job_id
        self._last_request = request
        self.store.begin_job(job_id)
        self.store.update_loading("processing", 0.0, "Processing images...")
        self.store.set_state(OrchestrationState.PROCESSING)
        _logger.info("Started job %s", job_id)
        self.poller.start(job_id)
        return job_id

    async def cancel(self) -> None:
        """Abandon the current job.

        Polling stops before the cancel request goes out, and the flow returns
        to idle whatever the service answers. A retryable failure leaves a
        retry action that only re-sends the cancel request.
        """
        job = self.store.job
        if job is None or job.status.is_terminal:
            return
        self.poller.stop()
        await self._send_cancel(job.id)
        self.store.clear_job()
        self.store.set_state(OrchestrationState.IDLE)
        _logger.info("Cancelled job %s", job.id)

    async def resume_polling(self, job_id: str) -> None:
        """Poll a job again after its polling was interrupted."""
        job = self.store.job
        if job is None or job.id != job_id:
            error = ProcessingError.invalid_job_id()
            self.store.add_error(error)
            raise error
        self.store.start_loading("processing", "Processing images...")
        self.store.set_state(OrchestrationState.PROCESSING)
        self.poller.start(job_id)

    async def fetch_results(self, job_id: str) -> ResultSet:
        """Materialize the results of a completed job.

        A retryable failure leaves a ``fetch_results`` retry action behind.
        """
        try:
            return await self.materializer.fetch(job_id)
        except AppError as exc:
            if exc.can_retry:
                self.store.set_retryable_action(
                    RetryableAction(
                        name="fetch_results",
                        operation=lambda: self.fetch_results(job_id),
                    )
                )
            else:
                self.store.clear_retryable_action()
            raise

    async def wait_for_poller(self) -> None:
        await self.poller.wait()

    def reset(self) -> None:
        """Stop any polling and return to a fresh flow."""
        self.poller.stop()
        self._last_request = None
        self.store.reset()

    def shutdown(self) -> None:
        self.poller.stop()

    # Poll listener

    async def on_job_completed(self, job_id: str) -> None:
        self.store.stop_loading("processing")
        self.store.set_state(OrchestrationState.COMPLETED)
        self.store.show_success("Processing completed successfully")
        _logger.info("Job %s completed", job_id)
        try:
            await self.fetch_results(job_id)
        except AppError as exc:
            _logger.warning("Results for job %s unavailable: %s", job_id, exc.error_id)

    async def on_job_failed(self, job_id: str, error: AppError) -> None:
        action = None
        if self._last_request is not None:
            action = self._restart_action(self._last_request)
        self._fail(error, action)
        _logger.info("Job %s failed: %s", job_id, error.description)

    async def on_job_cancelled(self, job_id: str) -> None:
        self.store.clear_job()
        self.store.set_state(OrchestrationState.IDLE)
        _logger.info("Job %s was cancelled by the service", job_id)

    async def on_poll_error(self, job_id: str, error: AppError) -> None:
        action = RetryableAction(
            name="resume_polling",
            operation=lambda: self.resume_polling(job_id),
        )
        self._fail(error, action)

    def _fail(self, error: AppError, action: RetryableAction | None) -> None:
        if error.can_retry and action is not None:
            self.store.set_retryable_action(action)
        self.store.stop_loading("processing")
        self.store.add_error(error)
        self.store.set_state(OrchestrationState.FAILED, failure=error)

    async def _send_cancel(self, job_id: str) -> AppError | None:
        try:
            response = await self.client.cancel_job(job_id)
            if not response.success:
                raise NetworkError.request_failed(
                    response.message or "Failed to cancel job"
                )
        except Exception as exc:
            error = classify_error(exc)
            if error.can_retry:
                self.store.set_retryable_action(
                    RetryableAction(
                        name="cancel_job",
                        operation=lambda: self._resend_cancel(job_id),
                    )
                )
            else:
                self.store.clear_retryable_action()
            self.store.add_error(error)
            return error
        # A cancelled job leaves nothing to repeat.
        self.store.clear_retryable_action()
        self.store.show_info(response.message or "Processing cancelled")
        return None

    async def _resend_cancel(self, job_id: str) -> None:
        error = await self._send_cancel(job_id)
        if error is not None:
            raise error

    def _restart_action(self, request: ProcessingRequest) -> RetryableAction:
        return RetryableAction(
            name="start_processing",
            operation=lambda: self.start_processing(
                request.first_group_id, request.second_group_id, request.options
            ),
        )

