"""WebSocket endpoint — real-time event delivery to clients.

Learn: Each client connects to /ws/{topic} (usually /ws/activity).
No authentication: the activity feed is public. The handler:
1. Accepts the socket and opens a broker subscription (connecting → open)
2. Forwards every frame to the client as JSON text
3. Answers {"type": "ping"} with {"type": "pong"}
4. Closes the subscription when either side goes away (→ closed)
"""

import asyncio
import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from waypoint.realtime.pubsub import SubscriptionClosed, get_broker

logger = structlog.get_logger()
router = APIRouter()


@router.websocket("/ws/{topic}")
async def topic_websocket(websocket: WebSocket, topic: str):
    """WebSocket endpoint for real-time events on a topic.

    Learn: Two concurrent tasks run:
    1. Broker listener — reads the subscription queue, sends to the socket
    2. Client listener — reads from the socket (ping/pong, disconnect)

    When either side finishes, the other is cancelled and the
    subscription is removed from the registry.
    """
    await websocket.accept()

    broker = get_broker()
    sub = await broker.subscribe(topic)
    logger.info("waypoint.ws.connected", topic=topic)

    async def broker_listener():
        """Forward broker frames to the WebSocket client."""
        try:
            while True:
                frame = await sub.receive()
                await websocket.send_text(json.dumps(frame, default=str))
        except (SubscriptionClosed, WebSocketDisconnect):
            pass

    async def client_listener():
        """Handle incoming WebSocket messages."""
        try:
            while True:
                data = await websocket.receive_text()
                try:
                    msg = json.loads(data)
                except json.JSONDecodeError:
                    continue
                if isinstance(msg, dict) and msg.get("type") == "ping":
                    await websocket.send_text(json.dumps({"type": "pong"}))
        except WebSocketDisconnect:
            pass

    broker_task = asyncio.create_task(broker_listener())
    client_task = asyncio.create_task(client_listener())

    try:
        # Wait for either to finish (usually client disconnect)
        done, pending = await asyncio.wait(
            [broker_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass
    finally:
        await sub.close()
        logger.info("waypoint.ws.disconnected", topic=topic, dropped=sub.dropped)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
