"""Admin API endpoints with simple token auth."""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

if TYPE_CHECKING:
    from caltrack.containers import AppContainer

router = APIRouter(prefix="/admin", tags=["admin"])


def _get_admin_token(request: Request) -> str | None:
    container: AppContainer = request.app.state.container
    return container.settings.admin_token


async def require_admin(
    x_admin_token: str | None = Header(default=None),
    admin_token: str | None = Depends(_get_admin_token),
) -> None:
    """Ensure requests include a valid admin token."""
    if not admin_token or not x_admin_token or x_admin_token != admin_token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED)


@router.get("/health", dependencies=[Depends(require_admin)])
async def admin_health() -> dict[str, str]:
    """Admin health check endpoint."""
    return {"status": "ok"}


@router.post("/sync", dependencies=[Depends(require_admin)])
async def start_sync(request: Request, force: bool = False) -> dict[str, object]:
    """Start a background sync run."""
    container: AppContainer = request.app.state.container
    if not container.background_sync.start(force=force):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Sync already running"
        )
    return {"status": "started", "force": force}


@router.post("/sync/cancel", dependencies=[Depends(require_admin)])
async def cancel_sync(request: Request) -> dict[str, object]:
    """Ask the running sync to stop at its next checkpoint."""
    container: AppContainer = request.app.state.container
    return {"cancelled": container.background_sync.cancel()}


@router.post("/reset", dependencies=[Depends(require_admin)])
async def reset_store(request: Request) -> dict[str, str]:
    """Wipe synced foods and sync state."""
    container: AppContainer = request.app.state.container
    if container.background_sync.is_running:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT, detail="Sync is running"
        )
    container.food_store.clear_all()
    return {"status": "cleared"}
