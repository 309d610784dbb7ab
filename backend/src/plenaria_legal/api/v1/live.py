import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from plenaria_legal.api.v1.auth import resolve_user
from plenaria_legal.core.constants import WS_AUTH_FAILED
from plenaria_legal.core.database import get_session_factory
from plenaria_legal.core.exceptions import ConsultationError
from plenaria_legal.services.live_coordinator import (
    LiveConnection, LiveSessionCoordinator, get_live_coordinator,
)

logger = logging.getLogger(__name__)
router = APIRouter()


def _bearer_from_header(websocket: WebSocket) -> Optional[str]:
    authorization = websocket.headers.get("authorization")
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token:
        return None
    return token.strip()


@router.websocket("/consultations")
async def consultations_channel(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    session_factory=Depends(get_session_factory),
    coordinator: LiveSessionCoordinator = Depends(get_live_coordinator),
):
    """
    Live consultation channel.

    Clients authenticate once with a bearer token (``token`` query parameter
    or ``Authorization`` header), then exchange ``{"event", "data"}`` frames.
    """
    db = session_factory()
    try:
        user = resolve_user(db, token or _bearer_from_header(websocket))
        connection = LiveConnection(websocket, user)
    except ConsultationError as e:
        logger.warning(f"Live channel authentication failed: {e.message}")
        await websocket.close(code=WS_AUTH_FAILED)
        return
    finally:
        db.close()

    await websocket.accept()
    logger.info(f"User connected: {connection.email} ({connection.role})")

    try:
        while True:
            raw = await websocket.receive_text()
            await coordinator.handle_frame(connection, raw, session_factory)
    except WebSocketDisconnect:
        pass
    finally:
        await coordinator.disconnect(connection)
