"""FastAPI application factory."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Body, FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel

from tona.api.admin import router as admin_router
from tona.app_logging import configure_logging
from tona.containers import AppContainer
from tona.domain.errors import AppError, ErrorCategory
from tona.domain.groups import GroupSlot
from tona.domain.remote import ProcessingOptions
from tona.services.session import Notice, SessionSnapshot

_ERROR_STATUS = {
    ErrorCategory.VALIDATION: 422,
    ErrorCategory.NETWORK: 502,
    ErrorCategory.PROCESSING: 409,
    ErrorCategory.STORAGE: 500,
    ErrorCategory.UNKNOWN: 500,
}


class StartJobRequest(BaseModel):
    options: ProcessingOptions | None = None


def create_app(container: AppContainer) -> FastAPI:  # noqa: PLR0915
    """Create a FastAPI app configured with dependencies."""
    configure_logging(container.settings.log_level)
    logger = logging.getLogger(__name__)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await app.state.container.close_resources()

    app = FastAPI(lifespan=lifespan)
    app.state.container = container

    app.include_router(admin_router)

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        logger.info("Request %s failed with %s", request.url.path, exc.error_id)
        return JSONResponse(
            status_code=_ERROR_STATUS.get(
                exc.category, status.HTTP_500_INTERNAL_SERVER_ERROR
            ),
            content={"error": exc.to_dict()},
        )

    @app.get("/health")
    async def health() -> dict[str, str]:
        """Simple health check endpoint."""
        return {"status": "ok"}

    @app.get("/session")
    async def session(request: Request) -> dict[str, object]:
        """Return the current session snapshot."""
        state_container: AppContainer = request.app.state.container
        return serialize_snapshot(state_container.session_store.snapshot())

    @app.post("/groups/{slot}")
    async def upload_group(
        slot: GroupSlot, request: Request, images: list[UploadFile] = File(...)
    ) -> dict[str, str]:
        """Upload a batch of images for one slot."""
        state_container: AppContainer = request.app.state.container
        _ensure_not_blocked(state_container)
        payloads = [await image.read() for image in images]
        group_id = await state_container.upload_pipeline.upload(payloads, slot)
        return {"slot": slot.value, "group_id": group_id}

    @app.post("/jobs")
    async def start_job(
        request: Request, payload: StartJobRequest | None = Body(default=None)
    ) -> dict[str, str]:
        """Start processing the two uploaded groups."""
        state_container: AppContainer = request.app.state.container
        _ensure_not_blocked(state_container)
        options = payload.options if payload else None
        job_id = await state_container.orchestrator.start_processing(options=options)
        return {"job_id": job_id}

    @app.post("/jobs/cancel")
    async def cancel_job(request: Request) -> dict[str, str]:
        """Cancel the current job, if any."""
        state_container: AppContainer = request.app.state.container
        await state_container.orchestrator.cancel()
        return {"status": state_container.session_store.state.value}

    @app.post("/retry")
    async def retry(request: Request) -> dict[str, bool]:
        """Re-invoke the last retryable action."""
        state_container: AppContainer = request.app.state.container
        retried = await state_container.session_store.retry_last_action()
        return {"retried": retried}

    @app.post("/errors/dismiss")
    async def dismiss_error(request: Request) -> dict[str, str]:
        state_container: AppContainer = request.app.state.container
        state_container.session_store.clear_current_error()
        return {"status": "ok"}

    @app.post("/notices/dismiss")
    async def dismiss_notice(request: Request) -> dict[str, object]:
        """Dismiss the current notice and return the next one."""
        state_container: AppContainer = request.app.state.container
        notice = state_container.session_store.dismiss_notice()
        return {"notice": _serialize_notice(notice) if notice else None}

    @app.post("/results/{index}/select")
    async def select_result(index: int, request: Request) -> dict[str, int]:
        state_container: AppContainer = request.app.state.container
        if not state_container.session_store.select_result(index):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        return {"selected": index}

    @app.get("/results/{index}")
    async def result_image(index: int, request: Request) -> Response:
        """Return the raw bytes of one result image."""
        state_container: AppContainer = request.app.state.container
        results = state_container.session_store.results
        if results is None or not 0 <= index < len(results.images):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND)
        image = results.images[index]
        return Response(content=image.content, media_type=image.media_type)

    @app.post("/results/{index}/save")
    async def save_result(index: int, request: Request) -> dict[str, str]:
        """Write one result image to the configured results directory."""
        state_container: AppContainer = request.app.state.container
        path = state_container.result_materializer.save(
            index, state_container.settings.results_dir
        )
        return {"path": str(path)}

    @app.post("/session/reset")
    async def reset_session(request: Request) -> dict[str, str]:
        state_container: AppContainer = request.app.state.container
        state_container.orchestrator.reset()
        return {"status": state_container.session_store.state.value}

    return app


def _ensure_not_blocked(container: AppContainer) -> None:
    blocking = container.session_store.blocking_error
    if blocking is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"blocked_by": blocking.to_dict()},
        )


def serialize_snapshot(snapshot: SessionSnapshot) -> dict[str, object]:
    """Convert a session snapshot into a JSON-friendly payload."""
    job = snapshot.job
    results = snapshot.results
    return {
        "state": snapshot.state.value,
        "failure": snapshot.failure.to_dict() if snapshot.failure else None,
        "groups": {
            slot.value: {
                "group_id": group.group_id,
                "image_count": len(group.images),
                "total_bytes": group.total_bytes,
            }
            for slot, group in snapshot.groups.items()
        },
        "uploaded_group_ids": list(snapshot.uploaded_group_ids),
        "can_start_processing": snapshot.can_start_processing,
        "job": (
            {
                "id": job.id,
                "status": job.status.value,
                "progress": job.progress,
                "message": job.message,
            }
            if job
            else None
        ),
        "processing_progress": snapshot.processing_progress,
        "results": (
            {
                "job_id": results.job_id,
                "source": results.source.value,
                "requested": results.requested,
                "failed": results.failed,
                "images": [
                    {
                        "width": image.width,
                        "height": image.height,
                        "format": image.format,
                        "media_type": image.media_type,
                        "size": len(image.content),
                    }
                    for image in results.images
                ],
            }
            if results
            else None
        ),
        "results_loading": snapshot.results_loading,
        "download_progress": snapshot.download_progress,
        "selected_result_index": snapshot.selected_result_index,
        "current_error": (
            snapshot.current_error.to_dict() if snapshot.current_error else None
        ),
        "blocking_error": (
            snapshot.blocking_error.to_dict() if snapshot.blocking_error else None
        ),
        "error_count": len(snapshot.error_history),
        "notice": (
            _serialize_notice(snapshot.current_notice)
            if snapshot.current_notice
            else None
        ),
        "pending_notices": len(snapshot.pending_notices),
        "loading": {
            key: {"message": entry.message, "progress": entry.progress}
            for key, entry in snapshot.loading.items()
        },
        "retry_action": snapshot.retry_action,
    }


def _serialize_notice(notice: Notice) -> dict[str, object]:
    return {
        "id": str(notice.id),
        "level": notice.level.value,
        "message": notice.message,
        "duration_seconds": notice.duration_seconds,
        "offers_retry": notice.offers_retry,
    }
