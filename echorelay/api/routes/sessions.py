"""Read-only observability routes for live relay sessions."""

from fastapi import APIRouter, Request

from echorelay.core import metrics
from echorelay.core.models import SessionInfo

router = APIRouter(tags=["sessions"])


@router.get("/sessions", response_model=list[SessionInfo])
async def list_sessions(request: Request) -> list[SessionInfo]:
    """List every live session with its counters."""
    return request.app.state.registry.list()


@router.get("/sessions/{session_id}", response_model=SessionInfo)
async def get_session(session_id: int, request: Request) -> SessionInfo:
    """Return one live session (404 once it has disconnected)."""
    return request.app.state.registry.get(session_id).to_info()


@router.get("/metrics")
async def get_metrics() -> dict:
    """Counters and the unit-size histogram for the whole process."""
    return metrics.snapshot()
