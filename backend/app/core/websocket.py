"""
WebSocket endpoint + Redis PubSub bridge for alert updates.

WS /ws/alerts       — push alert lifecycle events to the dashboard
alerts_to_ws_bridge — background task: Redis PubSub → AlertFeed.broadcast

Client messages:
  "ping"                          -> "pong"
  {"subscribe": ["tank-001"]}     -> only events for these tanks
  {"subscribe": []}               -> every event again (default)
"""

from __future__ import annotations

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from redis.asyncio import Redis

logger = logging.getLogger("o2watch.websocket")

router = APIRouter()


# ---------------------------------------------------------------------------
# Alert feed
# ---------------------------------------------------------------------------

class AlertFeed:
    """Active WebSocket clients and the tanks each one follows (empty = all)."""

    def __init__(self) -> None:
        self.clients: dict[WebSocket, set[str]] = {}

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self.clients[ws] = set()
        logger.info("WS client connected (%d total)", len(self.clients))

    def disconnect(self, ws: WebSocket) -> None:
        self.clients.pop(ws, None)
        logger.info("WS client disconnected (%d remaining)", len(self.clients))

    def follow(self, ws: WebSocket, tank_ids) -> None:
        if isinstance(tank_ids, str):
            tank_ids = [tank_ids]
        if ws in self.clients and isinstance(tank_ids, list):
            self.clients[ws] = {str(t) for t in tank_ids}

    def wants(self, ws: WebSocket, tank_id: str | None) -> bool:
        tanks = self.clients.get(ws)
        if tanks is None:
            return False
        return not tanks or tank_id in tanks

    async def broadcast(self, message: str) -> None:
        try:
            tank_id = json.loads(message).get("alert", {}).get("tank_id")
        except (ValueError, AttributeError):
            tank_id = None

        dead: list[WebSocket] = []
        for ws in list(self.clients):
            if not self.wants(ws, tank_id):
                continue
            try:
                await ws.send_text(message)
            except Exception:
                dead.append(ws)
        for ws in dead:
            self.clients.pop(ws, None)
        if dead:
            logger.debug("Removed %d dead WS connections", len(dead))


feed = AlertFeed()


# ---------------------------------------------------------------------------
# WebSocket Endpoint
# ---------------------------------------------------------------------------

@router.websocket("/ws/alerts")
async def ws_alerts(websocket: WebSocket) -> None:
    await feed.connect(websocket)
    try:
        service = websocket.app.state.alert_service
        open_alerts = await service.alerts.list_open()
        await websocket.send_json({
            "type": "snapshot",
            "data": [a.model_dump(mode="json") for a in open_alerts],
        })

        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
                continue
            try:
                tanks = json.loads(data)["subscribe"]
            except (ValueError, KeyError, TypeError):
                logger.debug("WS ignored message: %r", data[:100])
                continue
            feed.follow(websocket, tanks)
            await websocket.send_json({"type": "subscribed", "tanks": sorted(feed.clients[websocket])})
    except WebSocketDisconnect:
        feed.disconnect(websocket)
    except Exception as exc:
        logger.debug("WS error: %s", exc)
        feed.disconnect(websocket)


# ---------------------------------------------------------------------------
# Redis → WebSocket Bridge (background task)
# ---------------------------------------------------------------------------

async def alerts_to_ws_bridge(redis: Redis, channel: str = "alerts:updates") -> None:
    """Subscribe to the alerts channel and fan every event out to WS clients."""
    logger.info("Redis→WS bridge started, subscribing to %s", channel)
    pubsub = redis.pubsub()
    await pubsub.subscribe(channel)

    try:
        async for message in pubsub.listen():
            if message["type"] == "message":
                payload = message["data"]
                if isinstance(payload, bytes):
                    payload = payload.decode("utf-8")
                await feed.broadcast(payload)
    except Exception as exc:
        logger.error("Redis→WS bridge error: %s", exc)
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.close()
