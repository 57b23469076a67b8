"""Tests for job orchestration and status polling."""

import asyncio

import pytest

from tona.adapters.tona_api import TransportError, TransportErrorKind
from tona.domain.errors import (
    NetworkError,
    ProcessingError,
    ValidationError,
)
from tona.domain.groups import GroupSlot, UploadGroup
from tona.domain.jobs import JobStatus, OrchestrationState
from tona.domain.remote import (
    CancelResponse,
    ProcessingOptions,
    ProcessingResponse,
    ResultResponse,
    UploadGroupResponse,
)
from tona.services.orchestrator import JobOrchestrator
from tona.services.results import ResultMaterializer
from tona.services.session import NoticeLevel, SessionSnapshot, SessionStore
from tona.services.uploads import UploadPipeline
from tests.conftest import FakeTonaApiClient, make_image_bytes, status


def _orchestrator(
    client: FakeTonaApiClient, with_groups: bool = True, **kwargs: int
) -> JobOrchestrator:
    store = SessionStore()
    if with_groups:
        store.record_group(UploadGroup(GroupSlot.FIRST, (b"a",), "G1"))
        store.record_group(UploadGroup(GroupSlot.SECOND, (b"b",), "G2"))
    return JobOrchestrator(
        client=client,
        store=store,
        materializer=ResultMaterializer(client=client, store=store),
        poll_interval_seconds=0.0,
        **kwargs,
    )


async def _settle(rounds: int = 5) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


def test_start_without_both_groups_fails_without_network_calls() -> None:
    client = FakeTonaApiClient()
    orchestrator = _orchestrator(client, with_groups=False)

    with pytest.raises(ValidationError) as missing_both:
        asyncio.run(orchestrator.start_processing())
    with pytest.raises(ValidationError) as missing_second:
        asyncio.run(orchestrator.start_processing(first_group_id="G1"))

    assert missing_both.value == ValidationError.no_images_selected()
    assert missing_second.value == ValidationError.no_images_selected()
    assert client.start_requests == []
    assert client.status_calls == []
    assert orchestrator.store.state is OrchestrationState.IDLE


def test_explicit_empty_group_id_is_not_replaced_by_uploaded_group() -> None:
    client = FakeTonaApiClient()
    orchestrator = _orchestrator(client)

    with pytest.raises(ValidationError) as exc_info:
        asyncio.run(orchestrator.start_processing(first_group_id=""))

    assert exc_info.value == ValidationError.no_images_selected()
    assert client.start_requests == []


def test_job_progresses_to_completion_and_fetches_results() -> None:
    client = FakeTonaApiClient(
        statuses=[status(JobStatus.PROCESSING, 0.4), status(JobStatus.COMPLETED)]
    )
    orchestrator = _orchestrator(client)
    store = orchestrator.store
    seen: list[SessionSnapshot] = []
    store.subscribe(seen.append)

    async def scenario() -> str:
        job_id = await orchestrator.start_processing()
        assert store.state is OrchestrationState.PROCESSING
        await orchestrator.wait_for_poller()
        return job_id

    job_id = asyncio.run(scenario())

    assert job_id == "J1"
    assert client.start_requests[0].first_group_id == "G1"
    assert client.start_requests[0].second_group_id == "G2"
    assert client.status_calls == ["J1", "J1"]
    at_forty = [s for s in seen if s.job is not None and s.job.progress == 0.4]
    assert at_forty
    assert all(s.state is OrchestrationState.PROCESSING for s in at_forty)
    progress = [s.processing_progress for s in seen if s.job is not None]
    assert progress == sorted(progress)
    assert store.state is OrchestrationState.COMPLETED
    assert store.job is not None
    assert store.job.status is JobStatus.COMPLETED
    assert store.job.progress == 1.0
    assert store.results is not None
    assert len(store.results.images) == 1
    assert client.result_calls == ["J1"]
    assert not store.is_loading


@pytest.mark.parametrize(
    "terminal", [JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED]
)
def test_no_polls_after_terminal_status(terminal: JobStatus) -> None:
    client = FakeTonaApiClient(statuses=[status(terminal, message="done")])
    orchestrator = _orchestrator(client)

    async def scenario() -> None:
        await orchestrator.start_processing()
        await orchestrator.wait_for_poller()
        await _settle()

    asyncio.run(scenario())

    assert client.status_calls == ["J1"]
    assert not orchestrator.poller.is_running


def test_failed_job_blocks_and_can_be_restarted() -> None:
    client = FakeTonaApiClient(
        statuses=[status(JobStatus.FAILED, message="gpu lost")]
    )
    orchestrator = _orchestrator(client)
    store = orchestrator.store

    async def scenario() -> bool:
        await orchestrator.start_processing()
        await orchestrator.wait_for_poller()
        assert store.state is OrchestrationState.FAILED
        assert store.failure == ProcessingError.job_failed("gpu lost")
        assert store.blocking_error == ProcessingError.job_failed("gpu lost")
        assert store.snapshot().retry_action == "start_processing"
        client.statuses = [status(JobStatus.COMPLETED)]
        retried = await store.retry_last_action()
        await orchestrator.wait_for_poller()
        return retried

    retried = asyncio.run(scenario())

    assert retried is True
    assert len(client.start_requests) == 2
    assert client.start_requests[0] == client.start_requests[1]
    assert store.state is OrchestrationState.COMPLETED
    assert store.job is not None
    assert store.job.id == "J2"
    assert store.blocking_error is None
    assert store.error_history == (ProcessingError.job_failed("gpu lost"),)


def test_service_side_cancellation_returns_to_idle() -> None:
    client = FakeTonaApiClient(statuses=[status(JobStatus.CANCELLED)])
    orchestrator = _orchestrator(client)

    async def scenario() -> None:
        await orchestrator.start_processing()
        await orchestrator.wait_for_poller()

    asyncio.run(scenario())

    assert orchestrator.store.state is OrchestrationState.IDLE
    assert orchestrator.store.job is None
    assert client.result_calls == []


def test_poll_error_fails_flow_and_retry_resumes_polling() -> None:
    client = FakeTonaApiClient(
        statuses=[TransportError(TransportErrorKind.CONNECTION)]
    )
    orchestrator = _orchestrator(client)
    store = orchestrator.store

    async def scenario() -> None:
        await orchestrator.start_processing()
        await orchestrator.wait_for_poller()
        assert store.state is OrchestrationState.FAILED
        assert store.failure == NetworkError.no_connection()
        assert store.snapshot().retry_action == "resume_polling"
        client.statuses = [status(JobStatus.COMPLETED)]
        assert await store.retry_last_action() is True
        await orchestrator.wait_for_poller()

    asyncio.run(scenario())

    assert len(client.start_requests) == 1
    assert client.status_calls == ["J1", "J1"]
    assert store.state is OrchestrationState.COMPLETED


def test_cancel_discards_in_flight_poll() -> None:
    client = FakeTonaApiClient(statuses=[status(JobStatus.COMPLETED)])
    orchestrator = _orchestrator(client)
    store = orchestrator.store
    states_after_cancel: list[OrchestrationState] = []

    async def scenario() -> None:
        client.status_gate = asyncio.Event()
        await orchestrator.start_processing()
        await _settle()
        assert client.status_calls == ["J1"]
        await orchestrator.cancel()
        store.subscribe(lambda snapshot: states_after_cancel.append(snapshot.state))
        client.status_gate.set()
        await _settle(10)

    asyncio.run(scenario())

    assert client.cancel_calls == ["J1"]
    assert client.status_calls == ["J1"]
    assert client.result_calls == []
    assert store.state is OrchestrationState.IDLE
    assert store.job is None
    assert states_after_cancel == []
    assert store.current_notice is not None
    assert store.current_notice.level is NoticeLevel.INFO
    assert not orchestrator.poller.is_running


def test_cancel_failure_is_recorded_but_flow_returns_to_idle() -> None:
    client = FakeTonaApiClient(
        cancel_response=TransportError(TransportErrorKind.TIMEOUT)
    )
    orchestrator = _orchestrator(client)

    async def scenario() -> None:
        client.status_gate = asyncio.Event()
        await orchestrator.start_processing()
        await _settle()
        await orchestrator.cancel()

    asyncio.run(scenario())

    assert orchestrator.store.state is OrchestrationState.IDLE
    assert orchestrator.store.error_history == (NetworkError.timeout(),)


def test_retryable_cancel_failure_only_resends_the_cancel() -> None:
    client = FakeTonaApiClient(
        start_responses=[
            TransportError(TransportErrorKind.SERVER_ERROR, status_code=500)
        ],
        cancel_response=TransportError(TransportErrorKind.CONNECTION),
    )
    orchestrator = _orchestrator(client)
    store = orchestrator.store

    async def scenario() -> bool:
        client.status_gate = asyncio.Event()
        with pytest.raises(NetworkError):
            await orchestrator.start_processing()
        assert await store.retry_last_action() is True
        assert store.state is OrchestrationState.PROCESSING
        await _settle()
        await orchestrator.cancel()
        assert store.state is OrchestrationState.IDLE
        assert store.blocking_error == NetworkError.no_connection()
        assert store.snapshot().retry_action == "cancel_job"
        client.cancel_response = None
        return await store.retry_last_action()

    retried = asyncio.run(scenario())

    assert retried is True
    assert len(client.start_requests) == 2
    assert client.cancel_calls == ["J2", "J2"]
    assert store.state is OrchestrationState.IDLE
    assert store.job is None
    assert store.retry_slot.is_empty


def test_rejected_cancel_leaves_nothing_to_retry() -> None:
    client = FakeTonaApiClient(
        start_responses=[
            TransportError(TransportErrorKind.SERVER_ERROR, status_code=500)
        ],
        cancel_response=CancelResponse(success=False, message="already finishing"),
    )
    orchestrator = _orchestrator(client)
    store = orchestrator.store

    async def scenario() -> bool:
        client.status_gate = asyncio.Event()
        with pytest.raises(NetworkError):
            await orchestrator.start_processing()
        await store.retry_last_action()
        await _settle()
        await orchestrator.cancel()
        return await store.retry_last_action()

    retried = asyncio.run(scenario())

    assert retried is False
    assert len(client.start_requests) == 2
    assert client.cancel_calls == ["J2"]
    assert store.retry_slot.is_empty
    assert store.error_history[-1] == NetworkError.request_failed(
        "already finishing"
    )


def test_cancel_without_active_job_is_a_no_op() -> None:
    client = FakeTonaApiClient(cancel_response=CancelResponse(success=True))
    orchestrator = _orchestrator(client)

    asyncio.run(orchestrator.cancel())

    assert client.cancel_calls == []


def test_retry_after_server_error_reissues_same_request() -> None:
    client = FakeTonaApiClient(
        start_responses=[
            TransportError(TransportErrorKind.SERVER_ERROR, status_code=500)
        ],
        statuses=[status(JobStatus.COMPLETED)],
    )
    orchestrator = _orchestrator(client)
    store = orchestrator.store
    options = ProcessingOptions(quality="high", format="png")

    async def scenario() -> None:
        with pytest.raises(NetworkError) as exc_info:
            await orchestrator.start_processing(options=options)
        assert exc_info.value == NetworkError.server_error(500)
        assert store.state is OrchestrationState.FAILED
        assert store.blocking_error == NetworkError.server_error(500)
        assert store.job is None
        assert await store.retry_last_action() is True
        assert store.state is OrchestrationState.PROCESSING
        await orchestrator.wait_for_poller()

    asyncio.run(scenario())

    first, second = client.start_requests
    assert first == second
    assert second.options == options
    assert store.state is OrchestrationState.COMPLETED


def test_rejected_start_is_not_retryable() -> None:
    client = FakeTonaApiClient(
        start_responses=[ProcessingResponse(success=False, message="busy")]
    )
    orchestrator = _orchestrator(client)

    with pytest.raises(NetworkError) as exc_info:
        asyncio.run(orchestrator.start_processing())

    assert exc_info.value == NetworkError.request_failed("busy")
    assert orchestrator.store.retry_slot.is_empty
    assert orchestrator.store.state is OrchestrationState.FAILED
    assert not orchestrator.store.is_loading


def test_unexpected_start_failure_is_a_job_failure() -> None:
    client = FakeTonaApiClient(start_responses=[RuntimeError("gpu lost")])
    orchestrator = _orchestrator(client)

    with pytest.raises(ProcessingError) as exc_info:
        asyncio.run(orchestrator.start_processing())

    assert exc_info.value == ProcessingError.job_failed("gpu lost")
    assert orchestrator.store.snapshot().retry_action == "start_processing"


def test_poll_attempt_ceiling_times_out() -> None:
    client = FakeTonaApiClient(statuses=[status(JobStatus.PROCESSING, 0.1)])
    orchestrator = _orchestrator(client, poll_max_attempts=3)

    async def scenario() -> None:
        await orchestrator.start_processing()
        await orchestrator.wait_for_poller()

    asyncio.run(scenario())

    assert client.status_calls == ["J1", "J1", "J1"]
    assert orchestrator.store.state is OrchestrationState.FAILED
    assert orchestrator.store.failure == ProcessingError.timeout()
    assert orchestrator.store.snapshot().retry_action == "start_processing"


def test_starting_again_replaces_the_active_job() -> None:
    client = FakeTonaApiClient()
    orchestrator = _orchestrator(client)

    async def scenario() -> None:
        client.status_gate = asyncio.Event()
        await orchestrator.start_processing()
        await _settle()
        await orchestrator.start_processing()
        await _settle()
        orchestrator.shutdown()

    asyncio.run(scenario())

    assert orchestrator.store.job is not None
    assert orchestrator.store.job.id == "J2"
    assert orchestrator.poller.job_id == "J2"
    assert client.status_calls == ["J1", "J2"]


def test_resume_polling_rejects_unknown_job() -> None:
    orchestrator = _orchestrator(FakeTonaApiClient())

    with pytest.raises(ProcessingError) as exc_info:
        asyncio.run(orchestrator.resume_polling("J9"))

    assert exc_info.value == ProcessingError.invalid_job_id()


def test_result_failure_after_completion_keeps_completed_state() -> None:
    client = FakeTonaApiClient(
        statuses=[status(JobStatus.COMPLETED)],
        result=ResultResponse(success=True),
    )
    orchestrator = _orchestrator(client)

    async def scenario() -> None:
        await orchestrator.start_processing()
        await orchestrator.wait_for_poller()

    asyncio.run(scenario())

    assert orchestrator.store.state is OrchestrationState.COMPLETED
    assert orchestrator.store.results is None
    assert orchestrator.store.current_error is not None
    assert orchestrator.store.current_error.error_id == "unknown_no data"


def test_result_fetch_failure_can_be_retried() -> None:
    client = FakeTonaApiClient(
        statuses=[status(JobStatus.COMPLETED)],
        result=TransportError(TransportErrorKind.SERVER_ERROR, status_code=503),
    )
    orchestrator = _orchestrator(client)
    store = orchestrator.store

    async def scenario() -> bool:
        await orchestrator.start_processing()
        await orchestrator.wait_for_poller()
        assert store.state is OrchestrationState.COMPLETED
        assert store.results is None
        assert store.blocking_error == NetworkError.server_error(503)
        assert store.snapshot().retry_action == "fetch_results"
        client.result = None
        return await store.retry_last_action()

    retried = asyncio.run(scenario())

    assert retried is True
    assert client.result_calls == ["J1", "J1"]
    assert len(client.start_requests) == 1
    assert store.results is not None
    assert len(store.results.images) == 1
    assert store.state is OrchestrationState.COMPLETED
    assert store.blocking_error is None


def test_upload_during_running_job_keeps_processing_state() -> None:
    client = FakeTonaApiClient(
        upload_response=UploadGroupResponse(success=True, group_id="G3")
    )
    orchestrator = _orchestrator(client)
    store = orchestrator.store
    pipeline = UploadPipeline(client=client, store=store)
    states: list[OrchestrationState] = []

    async def scenario() -> str:
        client.status_gate = asyncio.Event()
        await orchestrator.start_processing()
        await _settle()
        store.subscribe(lambda snapshot: states.append(snapshot.state))
        group_id = await pipeline.upload([make_image_bytes()], GroupSlot.FIRST)
        orchestrator.shutdown()
        return group_id

    group_id = asyncio.run(scenario())

    assert group_id == "G3"
    assert store.first_group_id == "G3"
    assert store.state is OrchestrationState.PROCESSING
    assert set(states) == {OrchestrationState.PROCESSING}
    assert store.job is not None
    assert store.job.id == "J1"


def test_failed_upload_during_running_job_keeps_processing_state() -> None:
    client = FakeTonaApiClient(
        upload_errors=[TransportError(TransportErrorKind.TIMEOUT)]
    )
    orchestrator = _orchestrator(client)
    store = orchestrator.store
    pipeline = UploadPipeline(client=client, store=store)

    async def scenario() -> None:
        client.status_gate = asyncio.Event()
        await orchestrator.start_processing()
        await _settle()
        with pytest.raises(NetworkError):
            await pipeline.upload([make_image_bytes()], GroupSlot.SECOND)
        orchestrator.shutdown()

    asyncio.run(scenario())

    assert store.state is OrchestrationState.PROCESSING
    assert store.failure is None
    assert store.second_group_id == "G2"
    assert store.error_history == (NetworkError.timeout(),)
    assert store.snapshot().retry_action == "upload_second_group"


def test_reset_stops_polling_and_clears_flow() -> None:
    client = FakeTonaApiClient()
    orchestrator = _orchestrator(client)

    async def scenario() -> None:
        client.status_gate = asyncio.Event()
        await orchestrator.start_processing()
        await _settle()
        orchestrator.reset()
        await _settle()

    asyncio.run(scenario())

    assert not orchestrator.poller.is_running
    assert orchestrator.store.state is OrchestrationState.IDLE
    assert orchestrator.store.job is None
    assert orchestrator.store.first_group_id is None
