"""Admin API endpoints with simple token auth."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

if TYPE_CHECKING:
    from tona.containers import AppContainer

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_admin_token(request: Request) -> str:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/health", dependencies=[Depends(require_admin)])
async def admin_health(request: Request) -> dict[str, object]:
    """Admin health check with polling diagnostics."""
    container: AppContainer = request.app.state.container
    poller = container.orchestrator.poller
    return {
        "status": "ok",
        "session_state": container.session_store.state.value,
        "polling": poller.is_running,
        "polled_job_id": poller.job_id,
    }


@router.get("/errors", dependencies=[Depends(require_admin)])
async def list_errors(request: Request, limit: int = 50) -> dict[str, object]:
    """Return the most recent entries of the session error history."""
    container: AppContainer = request.app.state.container
    history = container.session_store.error_history
    recent = history[-limit:] if limit > 0 else ()
    return {
        "total": len(history),
        "errors": [error.to_dict() for error in reversed(recent)],
    }
