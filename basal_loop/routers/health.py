"""Health check endpoints."""

from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse

from basal_loop.database import check_database_connection

router = APIRouter(tags=["Health"])


def _smb_basal_state(request: Request) -> dict[str, Any]:
    components = getattr(request.app.state, "smb_basal", None)
    if components is None:
        return {"configured": False}
    manager = components.manager
    return {
        "configured": True,
        "enabled": manager.enabled,
        "running": manager.is_running,
    }


@router.get("/health", response_model=None)
async def health_check(request: Request) -> JSONResponse:
    """Database reachability plus SMB-basal manager state.

    503 when the ledger database is unreachable: ledger reads then fail
    open and IoB reports zero, so the service is not fit to dose.
    """
    db_connected = await check_database_connection()
    return JSONResponse(
        status_code=(
            status.HTTP_200_OK
            if db_connected
            else status.HTTP_503_SERVICE_UNAVAILABLE
        ),
        content={
            "status": "healthy" if db_connected else "degraded",
            "database": "connected" if db_connected else "disconnected",
            "smb_basal": _smb_basal_state(request),
        },
    )


@router.get("/health/live")
async def liveness_probe() -> dict[str, str]:
    """Process liveness; never touches the database."""
    return {"status": "alive"}
