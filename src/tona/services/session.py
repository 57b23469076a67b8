"""Session state container shared by every orchestration component."""

import logging
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from uuid import UUID, uuid4

from tona.domain.errors import AppError
from tona.domain.groups import GroupSlot, UploadGroup
from tona.domain.jobs import Job, JobStatus, OrchestrationState
from tona.domain.results import ResultSet
from tona.services.retry import RetryableAction, RetrySlot

_logger = logging.getLogger(__name__)


class NoticeLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


_NOTICE_DURATIONS = {
    NoticeLevel.ERROR: 5.0,
    NoticeLevel.WARNING: 4.0,
}


@dataclass(frozen=True)
class Notice:
    """A dismissible transient message."""

    level: NoticeLevel
    message: str
    duration_seconds: float
    offers_retry: bool = False
    id: UUID = field(default_factory=uuid4)


@dataclass(frozen=True)
class LoadingEntry:
    message: str | None = None
    progress: float | None = None


@dataclass(frozen=True)
class SessionSnapshot:
    """Consistent, immutable view of the session at one point in time."""

    state: OrchestrationState
    failure: AppError | None
    groups: Mapping[GroupSlot, UploadGroup]
    uploaded_group_ids: tuple[str, ...]
    job: Job | None
    processing_progress: float
    results: ResultSet | None
    results_loading: bool
    download_progress: float
    selected_result_index: int | None
    current_error: AppError | None
    blocking_error: AppError | None
    error_history: tuple[AppError, ...]
    current_notice: Notice | None
    pending_notices: tuple[Notice, ...]
    loading: Mapping[str, LoadingEntry]
    retry_action: str | None

    @property
    def first_group_id(self) -> str | None:
        group = self.groups.get(GroupSlot.FIRST)
        return group.group_id if group else None

    @property
    def second_group_id(self) -> str | None:
        group = self.groups.get(GroupSlot.SECOND)
        return group.group_id if group else None

    @property
    def can_start_processing(self) -> bool:
        return self.first_group_id is not None and self.second_group_id is not None

    @property
    def is_loading(self) -> bool:
        return bool(self.loading)


SessionListener = Callable[[SessionSnapshot], None]


class SessionStore:
    """Single source of truth for the upload/process/result flow.

    Every mutation goes through a named method and ends with a notification
    carrying a fresh snapshot to each subscriber.
    """

    def __init__(self) -> None:
        self._listeners: list[SessionListener] = []
        self.retry_slot = RetrySlot()
        self._error_history: list[AppError] = []
        self._clear_flow()

    def _clear_flow(self) -> None:
        self._state = OrchestrationState.IDLE
        self._failure: AppError | None = None
        self._groups: dict[GroupSlot, UploadGroup] = {}
        self._uploaded_group_ids: list[str] = []
        self._job: Job | None = None
        self._processing_progress = 0.0
        self._results: ResultSet | None = None
        self._results_loading = False
        self._download_progress = 0.0
        self._selected_result_index: int | None = None
        self._current_error: AppError | None = None
        self._blocking_error: AppError | None = None
        self._current_notice: Notice | None = None
        self._pending_notices: deque[Notice] = deque()
        self._loading: dict[str, LoadingEntry] = {}

    # Observation

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Register a listener and return a callable that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            state=self._state,
            failure=self._failure,
            groups=MappingProxyType(dict(self._groups)),
            uploaded_group_ids=tuple(self._uploaded_group_ids),
            job=self._job,
            processing_progress=self._processing_progress,
            results=self._results,
            results_loading=self._results_loading,
            download_progress=self._download_progress,
            selected_result_index=self._selected_result_index,
            current_error=self._current_error,
            blocking_error=self._blocking_error,
            error_history=tuple(self._error_history),
            current_notice=self._current_notice,
            pending_notices=tuple(self._pending_notices),
            loading=MappingProxyType(dict(self._loading)),
            retry_action=self.retry_slot.action.name if self.retry_slot.action else None,
        )

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _logger.exception("Session listener failed")

    # Reads

    @property
    def state(self) -> OrchestrationState:
        return self._state

    @property
    def failure(self) -> AppError | None:
        return self._failure

    @property
    def job(self) -> Job | None:
        return self._job

    @property
    def results(self) -> ResultSet | None:
        return self._results

    @property
    def results_loading(self) -> bool:
        return self._results_loading

    @property
    def download_progress(self) -> float:
        return self._download_progress

    @property
    def error_history(self) -> tuple[AppError, ...]:
        return tuple(self._error_history)

    @property
    def current_error(self) -> AppError | None:
        return self._current_error

    @property
    def blocking_error(self) -> AppError | None:
        return self._blocking_error

    @property
    def current_notice(self) -> Notice | None:
        return self._current_notice

    def group(self, slot: GroupSlot) -> UploadGroup | None:
        return self._groups.get(slot)

    @property
    def first_group_id(self) -> str | None:
        group = self._groups.get(GroupSlot.FIRST)
        return group.group_id if group else None

    @property
    def second_group_id(self) -> str | None:
        group = self._groups.get(GroupSlot.SECOND)
        return group.group_id if group else None

    @property
    def can_start_processing(self) -> bool:
        return self.first_group_id is not None and self.second_group_id is not None

    @property
    def is_loading(self) -> bool:
        return bool(self._loading)

    # Flow state

    def set_state(
        self, state: OrchestrationState, failure: AppError | None = None
    ) -> None:
        """Move the flow to a new state."""
        if state is not self._state:
            _logger.info("Session state %s -> %s", self._state.value, state.value)
        self._state = state
        self._failure = failure if state is OrchestrationState.FAILED else None
        self._notify()

    def record_group(self, group: UploadGroup) -> None:
        """Remember the batch that was actually uploaded for a slot."""
        self._groups[group.slot] = group
        self._uploaded_group_ids.append(group.group_id)
        self._notify()

    # Job

    def begin_job(self, job_id: str) -> Job:
        """Track a freshly started job, dropping any previous job and results."""
        self._job = Job(id=job_id)
        self._processing_progress = 0.0
        self._clear_results()
        self._notify()
        return self._job

    def apply_status(
        self,
        job_id: str,
        status: JobStatus,
        progress: float | None = None,
        message: str | None = None,
    ) -> bool:
        """Apply a status report to the current job.

        Reports for another job or for a job already in a terminal status are
        ignored. Progress never decreases.
        """
        job = self._job
        if job is None or job.id != job_id:
            _logger.debug("Ignoring status for untracked job %s", job_id)
            return False
        if job.status.is_terminal:
            _logger.debug("Ignoring status for finished job %s", job_id)
            return False
        new_progress = job.progress
        if progress is not None:
            new_progress = max(job.progress, min(max(progress, 0.0), 1.0))
        if status is JobStatus.COMPLETED:
            new_progress = 1.0
        self._job = replace(
            job,
            status=status,
            progress=new_progress,
            message=message if message is not None else job.message,
        )
        self._processing_progress = new_progress
        if "processing" in self._loading:
            self._loading["processing"] = replace(
                self._loading["processing"], progress=new_progress
            )
        self._notify()
        return True

    def clear_job(self) -> None:
        self._job = None
        self._processing_progress = 0.0
        self._loading.pop("processing", None)
        self._notify()

    # Results

    def _clear_results(self) -> None:
        self._results = None
        self._results_loading = False
        self._download_progress = 0.0
        self._selected_result_index = None

    def clear_results(self) -> None:
        if self._results is None and not self._results_loading:
            return
        self._clear_results()
        self._notify()

    def begin_results(self) -> None:
        self._results_loading = True
        self._download_progress = 0.0
        self._notify()

    def update_download_progress(self, progress: float) -> None:
        """Publish download progress; values never go backwards."""
        self._download_progress = max(self._download_progress, min(progress, 1.0))
        self._notify()

    def set_results(self, results: ResultSet) -> None:
        self._results = results
        self._download_progress = results.download_progress
        self._selected_result_index = 0 if results.images else None
        self._notify()

    def finish_results(self) -> None:
        self._results_loading = False
        self._notify()

    def select_result(self, index: int) -> bool:
        """Mark a result image as the current one."""
        if self._results is None or not 0 <= index < len(self._results.images):
            return False
        self._selected_result_index = index
        self._notify()
        return True

    # Errors and notices

    def add_error(self, error: AppError) -> None:
        """Record a failure and surface it according to its severity."""
        self._current_error = error
        self._error_history.append(error)
        _logger.warning(
            "Session error %s (fatal=%s, retryable=%s)",
            error.error_id,
            error.is_fatal,
            error.can_retry,
        )
        if error.is_fatal:
            self._blocking_error = error
            self._notify()
            return
        self.show_notice(NoticeLevel.ERROR, error.description, offers_retry=error.can_retry)

    def clear_current_error(self) -> None:
        self._current_error = None
        self._blocking_error = None
        self._notify()

    def show_notice(
        self, level: NoticeLevel, message: str, *, offers_retry: bool = False
    ) -> Notice:
        """Show a notice now, or queue it behind the current one."""
        notice = Notice(
            level=level,
            message=message,
            duration_seconds=_NOTICE_DURATIONS.get(level, 3.0),
            offers_retry=offers_retry,
        )
        if self._current_notice is None:
            self._current_notice = notice
        else:
            self._pending_notices.append(notice)
        self._notify()
        return notice

    def show_success(self, message: str) -> Notice:
        return self.show_notice(NoticeLevel.SUCCESS, message)

    def show_info(self, message: str) -> Notice:
        return self.show_notice(NoticeLevel.INFO, message)

    def dismiss_notice(self) -> Notice | None:
        """Dismiss the current notice and promote the next queued one."""
        self._current_notice = (
            self._pending_notices.popleft() if self._pending_notices else None
        )
        self._notify()
        return self._current_notice

    # Loading

    def start_loading(self, key: str, message: str | None = None) -> None:
        self._loading[key] = LoadingEntry(message=message)
        self._notify()

    def update_loading(
        self, key: str, progress: float, message: str | None = None
    ) -> None:
        current = self._loading.get(key)
        if current is None:
            return
        self._loading[key] = LoadingEntry(
            message=message or current.message, progress=progress
        )
        self._notify()

    def stop_loading(self, key: str) -> None:
        if self._loading.pop(key, None) is not None:
            self._notify()

    # Retry

    def set_retryable_action(self, action: RetryableAction) -> None:
        self.retry_slot.set(action)
        self._notify()

    def clear_retryable_action(self) -> None:
        if self.retry_slot.is_empty:
            return
        self.retry_slot.clear()
        self._notify()

    async def retry_last_action(self) -> bool:
        """Re-invoke the remembered action once.

        The operation records its own failures, so a failed retry only shows
        up in the error history and the refreshed retry slot.
        """
        action = self.retry_slot.action
        if action is None:
            return False
        _logger.info("Retrying %s", action.name)
        self.clear_current_error()
        try:
            await self.retry_slot.invoke()
        except AppError as exc:
            _logger.info("Retry of %s failed: %s", action.name, exc.error_id)
            return False
        return True

    def reset(self) -> None:
        """Return to a fresh flow; the error history is kept for diagnostics."""
        self._clear_flow()
        self.retry_slot.clear()
        self._notify()
