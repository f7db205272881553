"""
Review stream - WebSocket transport for the review broadcast hub.

Each connection subscribes one hub session and runs two pumps: one pulls
events off the session queue and writes them to the socket, the other
watches the socket for the client going away. Whichever finishes first
cancels the other, and the session is always unsubscribed on the way out.
"""

import logging
from contextlib import suppress
from typing import Optional

import anyio
from fastapi import APIRouter, Depends, WebSocket
from starlette.websockets import WebSocketDisconnect, WebSocketState

from verifygate.api.dependencies import (
    get_review_hub,
    get_settings,
    parse_basic_authorization,
    verify_admin,
)
from verifygate.config.settings import Settings
from verifygate.domain.broadcast import ReviewHub, Session

logger = logging.getLogger(__name__)

router = APIRouter(tags=["v1"])

# Seconds a writer waits on its queue before re-checking for closure.
POLL_INTERVAL = 1.0

# Policy violation / try again later close codes.
CLOSE_UNAUTHORIZED = 1008
CLOSE_DROPPED = 1013


async def pump_session_to_websocket(websocket: WebSocket, session: Session) -> None:
    while True:
        event = await anyio.to_thread.run_sync(
            session.get, POLL_INTERVAL, abandon_on_cancel=True
        )
        if event is None:
            if session.closed:
                return
            continue
        await websocket.send_json(event.to_dict())


async def pump_websocket_disconnect(websocket: WebSocket) -> None:
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            return


async def stream_review_events(websocket: WebSocket, hub: ReviewHub, session: Session) -> None:
    """Greet, then relay a session's events until either side goes away."""

    async def run(pump, *args) -> None:
        try:
            await pump(*args)
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("Review session %s: client went away", session.session_id)
        finally:
            task_group.cancel_scope.cancel()

    try:
        await websocket.send_json(
            {
                "type": "hello",
                "session_id": session.session_id,
                "last_sequence": hub.last_sequence,
                "replay_complete": session.replay_complete,
            }
        )
        async with anyio.create_task_group() as task_group:
            task_group.start_soon(run, pump_session_to_websocket, websocket, session)
            task_group.start_soon(run, pump_websocket_disconnect, websocket)
    finally:
        hub.unsubscribe(session)

    if (
        websocket.client_state == WebSocketState.CONNECTED
        and websocket.application_state == WebSocketState.CONNECTED
    ):
        code = CLOSE_DROPPED if session.dropped else 1000
        with suppress(RuntimeError):
            await websocket.close(code=code)


@router.websocket("/review/ws")
async def review_stream(
    websocket: WebSocket,
    last_sequence: Optional[int] = None,
    settings: Settings = Depends(get_settings),
    hub: ReviewHub = Depends(get_review_hub),
) -> None:
    """
    Stream review events to an authenticated admin.

    The first frame is a ``hello`` carrying the session id, the hub's
    current sequence and whether the requested replay was complete. When
    it was not, the client must re-fetch state over REST.
    """
    credentials = parse_basic_authorization(websocket.headers.get("authorization"))
    if credentials is None or not await anyio.to_thread.run_sync(
        verify_admin, settings, *credentials
    ):
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return

    await websocket.accept()
    session = hub.subscribe(last_sequence)
    await stream_review_events(websocket, hub, session)
