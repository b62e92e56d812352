"""FastAPI routes for live chat sessions and the local broadcast socket.

Protocol (``/ws/livechat``):
1. Client connects; server replies ``Connected`` with its client id
2. Server pushes ``ChatMessage`` frames for every normalized event
3. Client may send ``Ping`` (answered with ``Pong``) or ``GetInfo``
   (answered with ``ServerInfo``) at any time
4. Malformed frames get an ``Error`` reply; the connection stays open
"""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends, Request, WebSocket

from chatfeed.core.exceptions import ClientDisconnectedError

from .schemas import (
    ModeSwitchResponse,
    RearmRequest,
    SessionStatus,
    StartSessionRequest,
    SwitchModeRequest,
)
from .service import LiveChatService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/livechat", tags=["livechat"])
websocket_router = APIRouter(tags=["livechat"])


def get_livechat_service(request: Request) -> LiveChatService:
    """Return the service created by the application lifespan."""
    return request.app.state.livechat_service


def _mode_switch_timeout(service: LiveChatService) -> float:
    config = service.config
    return config.max_poll_interval_seconds + config.request_timeout_seconds * 2


@router.post("/sessions", response_model=SessionStatus, status_code=201)
async def start_session(
    body: StartSessionRequest,
    service: LiveChatService = Depends(get_livechat_service),
) -> SessionStatus:
    """Start polling the live chat behind ``url``."""
    credential = body.credential.to_credential() if body.credential else None
    session = await service.start(body.url, body.mode, credential)
    return SessionStatus(**session.status())


@router.get("/sessions", response_model=list[SessionStatus])
async def list_sessions(
    service: LiveChatService = Depends(get_livechat_service),
) -> list[SessionStatus]:
    return [SessionStatus(**session.status()) for session in service.list()]


@router.get("/sessions/{session_id}", response_model=SessionStatus)
async def get_session(
    session_id: str,
    service: LiveChatService = Depends(get_livechat_service),
) -> SessionStatus:
    return SessionStatus(**service.get(session_id).status())


@router.post("/sessions/{session_id}/mode", response_model=ModeSwitchResponse)
async def switch_mode(
    session_id: str,
    body: SwitchModeRequest,
    service: LiveChatService = Depends(get_livechat_service),
) -> ModeSwitchResponse:
    """Switch between top chat and all chat.

    Waits for the session to apply the switch at its next delivery boundary;
    ``applied`` is false when that did not happen in time.
    """
    session = service.get(session_id)
    try:
        mode = await asyncio.wait_for(
            service.switch_mode(session_id, body.mode),
            timeout=_mode_switch_timeout(service),
        )
    except asyncio.TimeoutError:
        logger.warning("Mode switch for session %s still pending", session_id)
        return ModeSwitchResponse(session_id=session_id, mode=session.mode, applied=False)
    return ModeSwitchResponse(session_id=session_id, mode=mode, applied=True)


@router.post("/sessions/{session_id}/rearm", response_model=SessionStatus)
async def rearm_session(
    session_id: str,
    body: RearmRequest,
    service: LiveChatService = Depends(get_livechat_service),
) -> SessionStatus:
    """Restart a failed session, typically after re-authenticating."""
    credential = body.credential.to_credential() if body.credential else None
    session = await service.rearm(session_id, credential)
    return SessionStatus(**session.status())


@router.delete("/sessions/{session_id}", response_model=SessionStatus)
async def close_session(
    session_id: str,
    service: LiveChatService = Depends(get_livechat_service),
) -> SessionStatus:
    session = await service.close(session_id)
    return SessionStatus(**session.status())


@websocket_router.websocket("/ws/livechat")
async def livechat_websocket(websocket: WebSocket) -> None:
    """Broadcast socket for overlays and other local consumers."""
    service: LiveChatService = websocket.app.state.livechat_service
    hub = service.hub

    await websocket.accept()
    client_id = await hub.register(websocket)
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            # Binary frames are answered with an Error like any malformed frame.
            try:
                await hub.handle_message(client_id, message.get("text") or "")
            except ClientDisconnectedError:
                logger.info("Broadcast client %s dropped by the hub", client_id)
                break
    finally:
        await hub.unregister(client_id)


__all__ = ["get_livechat_service", "router", "websocket_router"]
