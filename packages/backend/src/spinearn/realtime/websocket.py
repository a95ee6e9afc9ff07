"""WebSocket endpoints — live unread badge and admin activity feed.

Learn: /ws/unread?token=JWT is one consumer of the app's UnreadDistributor.
Every tab of the same user shares one synchronizer (one change-feed
subscription); the tab only forwards count changes. The client can
sign in, sign out, or ask for a refresh over the same socket.

/ws/admin?token=JWT forwards the Redis admin channel to admin dashboards.

All outgoing frames go through a single queue so only one task ever
writes to the socket.
"""

import asyncio
import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from spinearn.auth.dependencies import identity_from_token
from spinearn.auth.jwt import TokenError
from spinearn.realtime.distributor import UnreadSession, get_unread_distributor
from spinearn.realtime.pubsub import ADMIN_SCOPE, channel_for, get_redis

logger = structlog.get_logger()
router = APIRouter()


def _count_frame(count: int) -> dict:
    return {"type": "unread_count", "count": count}


async def _pump(websocket: WebSocket, outbox: asyncio.Queue) -> None:
    """Send queued frames until cancelled or the client goes away."""
    try:
        while True:
            frame = await outbox.get()
            await websocket.send_json(frame)
    except (WebSocketDisconnect, asyncio.CancelledError):
        pass


async def _receive_text(websocket: WebSocket) -> str:
    """Next text frame from the client. Binary frames are skipped."""
    while True:
        message = await websocket.receive()
        if message["type"] == "websocket.disconnect":
            raise WebSocketDisconnect(message.get("code", 1000))
        text = message.get("text")
        if text is not None:
            return text


async def _run_until_first_done(*tasks: asyncio.Task) -> None:
    done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
    for task in pending:
        task.cancel()
    await asyncio.gather(*pending, return_exceptions=True)
    for task in done:
        if not task.cancelled() and task.exception() is not None:
            logger.warning("ws.task_failed", error=str(task.exception()))


@router.websocket("/ws/unread")
async def unread_websocket(websocket: WebSocket):
    """Per-tab unread badge.

    Server → client: {"type": "unread_count", "count": n} on connect and on
    every change; {"type": "pong"}; {"type": "error", "detail": ...}.

    Client → server: {"type": "ping"}, {"type": "refresh"},
    {"type": "sign_in", "token": ...}, {"type": "sign_out"}.
    """
    distributor = get_unread_distributor(websocket)

    # ── Authentication (optional: no token = signed out) ───
    user_id = None
    token = websocket.query_params.get("token")
    if token:
        try:
            user_id = identity_from_token(token).user_id
        except TokenError:
            await websocket.close(code=4001, reason="Invalid or expired token")
            return

    await websocket.accept()

    outbox: asyncio.Queue = asyncio.Queue()
    session = UnreadSession(
        distributor, sink=lambda count: outbox.put_nowait(_count_frame(count))
    )

    async def client_listener():
        try:
            while True:
                data = await _receive_text(websocket)
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if not isinstance(msg, dict):
                    continue

                kind = msg.get("type")
                if kind == "ping":
                    outbox.put_nowait({"type": "pong"})
                elif kind == "refresh":
                    outbox.put_nowait(_count_frame(await session.refresh()))
                elif kind == "sign_in":
                    try:
                        identity = identity_from_token(msg.get("token") or "")
                    except TokenError as e:
                        outbox.put_nowait({"type": "error", "detail": str(e)})
                        continue
                    await session.set_identity(identity.user_id)
                elif kind == "sign_out":
                    await session.set_identity(None)
        except (WebSocketDisconnect, asyncio.CancelledError):
            pass

    try:
        if user_id:
            await session.set_identity(user_id)
        else:
            outbox.put_nowait(_count_frame(0))

        logger.info("ws.unread_connected", user_id=user_id)
        await _run_until_first_done(
            asyncio.create_task(_pump(websocket, outbox)),
            asyncio.create_task(client_listener()),
        )
    finally:
        await session.close()
        logger.info("ws.unread_disconnected", user_id=user_id)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()


@router.websocket("/ws/admin")
async def admin_websocket(websocket: WebSocket):
    """Admin activity feed (broadcasts, snapshots) from Redis pub/sub."""
    token = websocket.query_params.get("token")
    try:
        identity = identity_from_token(token or "")
    except TokenError:
        await websocket.close(code=4001, reason="Invalid or expired token")
        return
    if not identity.is_admin:
        await websocket.close(code=4003, reason="Admin access required")
        return

    try:
        r = get_redis()
    except RuntimeError:
        await websocket.close(code=1011, reason="Realtime unavailable")
        return

    await websocket.accept()

    pubsub = r.pubsub()
    channel = channel_for(ADMIN_SCOPE)
    await pubsub.subscribe(channel)

    async def redis_listener():
        """Forward Redis messages to the WebSocket client."""
        try:
            async for message in pubsub.listen():
                if message["type"] == "message":
                    await websocket.send_text(message["data"])
        except (WebSocketDisconnect, asyncio.CancelledError):
            pass

    async def client_listener():
        try:
            while True:
                data = await _receive_text(websocket)
                try:
                    msg = json.loads(data)
                    if isinstance(msg, dict) and msg.get("type") == "ping":
                        await websocket.send_text(json.dumps({"type": "pong"}))
                except json.JSONDecodeError:
                    pass
        except (WebSocketDisconnect, asyncio.CancelledError):
            pass

    try:
        await _run_until_first_done(
            asyncio.create_task(redis_listener()),
            asyncio.create_task(client_listener()),
        )
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
