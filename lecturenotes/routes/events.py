import asyncio
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from lecturenotes.errors import NotFoundError
from lecturenotes.routes.common import lecture_to_dict
from lecturenotes.services.notifications import Subscription

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])


# ==================================================================
# WebSocket endpoint
# ==================================================================


@router.websocket("/ws/lectures/{lecture_id}")
async def lecture_events(websocket: WebSocket, lecture_id: str) -> None:
    """Progress stream for one lecture.

    The first message is a ``snapshot`` of the stored lecture and its
    chapters; events published afterwards follow.  A client that missed
    events simply reconnects and gets a fresh snapshot.
    """
    store = websocket.app.state.store
    hub = websocket.app.state.hub
    await websocket.accept()

    # Subscribe before reading the snapshot so nothing falls in between.
    sub = hub.subscribe(lecture_id)
    try:
        try:
            lecture = await store.get_lecture(lecture_id)
        except NotFoundError as e:
            await websocket.send_json({"type": "error", "message": str(e)})
            await websocket.close(code=4404)
            return
        chapters = await store.list_chapters(lecture_id)
        await websocket.send_json(
            {"type": "snapshot", "lecture": lecture_to_dict(lecture, chapters)}
        )

        forward = asyncio.create_task(_forward(websocket, sub))
        receive = asyncio.create_task(_drain(websocket))
        done, pending = await asyncio.wait(
            {forward, receive}, return_when=asyncio.FIRST_COMPLETED
        )
        for task in pending:
            task.cancel()
        if receive not in done:
            await websocket.close()
    except WebSocketDisconnect:
        pass
    finally:
        hub.unsubscribe(sub)


# ==================================================================
# Internal helpers
# ==================================================================


async def _forward(websocket: WebSocket, sub: Subscription) -> None:
    """Relay notifications until the hub closes the channel."""
    async for note in sub:
        try:
            await websocket.send_json(note.to_dict())
        except Exception as e:  # noqa: BLE001 - client went away
            logger.debug("[%s] Stopped forwarding events: %s", sub.lecture_id, e)
            return


async def _drain(websocket: WebSocket) -> None:
    """Read (and ignore) client pings until the socket disconnects."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
