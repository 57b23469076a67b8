"""Dependency container wiring for the application."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from tona.adapters.tona_api import HttpxTonaApiClient, TonaApiClient
from tona.config import Settings
from tona.services.orchestrator import JobOrchestrator
from tona.services.results import ResultMaterializer
from tona.services.session import SessionStore
from tona.services.uploads import UploadPipeline


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    api_client: TonaApiClient
    session_store: SessionStore
    upload_pipeline: UploadPipeline
    orchestrator: JobOrchestrator
    result_materializer: ResultMaterializer
    close_resources: Callable[[], Awaitable[None]]


def build_services(
    settings: Settings, api_client: TonaApiClient
) -> tuple[SessionStore, UploadPipeline, JobOrchestrator, ResultMaterializer]:
    """Create the session store and the services that share it."""
    session_store = SessionStore()
    upload_pipeline = UploadPipeline(
        client=api_client,
        store=session_store,
        jpeg_quality=settings.jpeg_quality,
        max_images=settings.max_images_per_group,
        max_image_size_mb=settings.max_image_size_mb,
        staged_threshold_mb=settings.staged_upload_threshold_mb,
    )
    result_materializer = ResultMaterializer(client=api_client, store=session_store)
    orchestrator = JobOrchestrator(
        client=api_client,
        store=session_store,
        materializer=result_materializer,
        poll_interval_seconds=settings.poll_interval_seconds,
        poll_max_attempts=settings.poll_max_attempts,
    )
    return session_store, upload_pipeline, orchestrator, result_materializer


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container."""
    resolved_settings = settings or Settings()
    api_client = HttpxTonaApiClient.create(
        base_url=resolved_settings.api_url,
        timeout=resolved_settings.request_timeout_seconds,
        staged_timeout=resolved_settings.staged_upload_timeout_seconds,
    )
    session_store, upload_pipeline, orchestrator, result_materializer = (
        build_services(resolved_settings, api_client)
    )

    async def close_resources() -> None:
        orchestrator.shutdown()
        await api_client.close()

    return AppContainer(
        settings=resolved_settings,
        api_client=api_client,
        session_store=session_store,
        upload_pipeline=upload_pipeline,
        orchestrator=orchestrator,
        result_materializer=result_materializer,
        close_resources=close_resources,
    )
