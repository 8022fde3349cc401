"""Table change feed plus a websocket hub that broadcasts updates in real time."""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Request, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

realtime_router = APIRouter()

CHANGE_EVENTS = ("insert", "update", "delete")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str
    record: Dict[str, Any] = field(default_factory=dict)


ChangeCallback = Callable[[ChangeEvent], None]


class Subscription:
    """Handle returned by ChangeFeed.subscribe; unsubscribe() is safe to call twice."""

    def __init__(self, feed: "ChangeFeed", table: str, callback: ChangeCallback) -> None:
        self._feed = feed
        self.table = table
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._feed._remove(self)


class ChangeFeed:
    """In-process notification feed keyed by table name."""

    def __init__(self) -> None:
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, table: str, callback: ChangeCallback) -> Subscription:
        subscription = Subscription(self, table, callback)
        self._subscriptions.setdefault(table, []).append(subscription)
        return subscription

    def _remove(self, subscription: Subscription) -> None:
        listeners = self._subscriptions.get(subscription.table, [])
        if subscription in listeners:
            listeners.remove(subscription)
        if not listeners:
            self._subscriptions.pop(subscription.table, None)

    def subscriber_count(self, table: str) -> int:
        return len(self._subscriptions.get(table, []))

    def publish(self, table: str, event: str, record: Optional[Dict[str, Any]] = None) -> None:
        if event not in CHANGE_EVENTS:
            raise ValueError(f"Unknown change event: {event}")
        change = ChangeEvent(table=table, event=event, record=dict(record or {}))
        for subscription in list(self._subscriptions.get(table, [])):
            try:
                subscription.callback(change)
            except Exception:
                logger.exception("Change feed listener for %s failed", table)


class RealtimeHub:
    """Tracks websocket connections and sends broadcast events."""

    def __init__(self, history_size: int = 50) -> None:
        self._connections: set[WebSocket] = set()
        self._history: deque[dict[str, Any]] = deque(maxlen=history_size)
        self._lock = asyncio.Lock()

    @property
    def history(self) -> list[dict[str, Any]]:
        return list(self._history)

    async def connect(self, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.add(websocket)
        await websocket.send_json({"type": "activity.sync", "items": list(self._history)})

    async def disconnect(self, websocket: WebSocket) -> None:
        async with self._lock:
            self._connections.discard(websocket)

    async def broadcast(self, message: dict[str, Any]) -> None:
        self._history.appendleft(message)
        async with self._lock:
            connections = list(self._connections)
        if not connections:
            return
        stale: list[WebSocket] = []
        for connection in connections:
            try:
                await connection.send_json(message)
            except Exception:
                stale.append(connection)
        for connection in stale:
            await self.disconnect(connection)


hub = RealtimeHub()


def _format_actor(request: Request) -> str:
    user = getattr(request.state, "current_user", None)
    if user:
        return user.get("username") or f"user-{user.get('id')}"
    return "Another user"


async def publish_change(
    request: Request,
    *,
    table: str,
    action: str,
    record: Dict[str, Any],
    summary: str,
) -> None:
    """Broadcast an activity payload and notify change feed listeners for the table."""
    event = {
        "id": str(uuid4()),
        "entity": table,
        "action": action,
        "type": f"{table}.{action}",
        "entityId": record.get("id"),
        "summary": summary,
        "data": record,
        "timestamp": _utc_now_iso(),
        "actor": _format_actor(request),
    }
    await hub.broadcast(event)
    feed: Optional[ChangeFeed] = getattr(request.app.state, "change_feed", None)
    if feed is not None:
        feed.publish(table, action, record)


@realtime_router.websocket("/ws/updates")
async def websocket_updates(websocket: WebSocket) -> None:
    await hub.connect(websocket)
    try:
        while True:
            try:
                await websocket.receive_text()
            except WebSocketDisconnect:
                break
            except Exception:
                # Broadcast-only channel; client messages are ignored.
                continue
    finally:
        await hub.disconnect(websocket)
