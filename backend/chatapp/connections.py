"""In-process registry of live WebSocket connections.

Maps connection id -> authenticated user and channel name -> subscribed
connection ids, and delivers event frames to them. State lives in this
process only: it is rebuilt from connect/disconnect events and is not
shared between instances, so fan-out only reaches sockets held here.

Not thread-safe; mutated only from handlers running on the one event loop.
"""
import asyncio
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Set

from fastapi import WebSocket
from fastapi.websockets import WebSocketDisconnect, WebSocketState

logger = logging.getLogger(__name__)


def frame(event: str, data: Any = None, ack: int | None = None) -> dict:
    payload = {"event": event, "data": data}
    if ack is not None:
        payload["ack"] = ack
    return payload


async def safe_send_json(websocket: WebSocket, data: dict) -> bool:
    """Send a frame, returning False instead of raising when the socket is gone."""
    if websocket.application_state != WebSocketState.CONNECTED:
        return False
    try:
        await websocket.send_json(data)
        return True
    except (WebSocketDisconnect, RuntimeError) as e:
        logger.debug("Failed to send websocket message: %s", e)
        return False


@dataclass
class Connection:
    id: str
    user_id: int
    username: str
    websocket: WebSocket
    token: str
    channels: Set[str] = field(default_factory=set)


class ConnectionRegistry:
    def __init__(self) -> None:
        self.connections: Dict[str, Connection] = {}
        self.channels: Dict[str, Set[str]] = defaultdict(set)

    def register(self, conn: Connection) -> None:
        self.connections[conn.id] = conn

    def unregister(self, conn_id: str) -> Connection | None:
        conn = self.connections.pop(conn_id, None)
        if conn:
            for channel in list(conn.channels):
                self.leave(conn_id, channel, conn)
        return conn

    def get(self, conn_id: str) -> Connection | None:
        return self.connections.get(conn_id)

    def user_of(self, conn_id: str) -> int | None:
        conn = self.connections.get(conn_id)
        return conn.user_id if conn else None

    def connections_for_user(self, user_id: int) -> list[Connection]:
        return [c for c in self.connections.values() if c.user_id == user_id]

    def join(self, conn_id: str, channel: str) -> None:
        conn = self.connections.get(conn_id)
        if not conn:
            return
        conn.channels.add(channel)
        self.channels[channel].add(conn_id)

    def leave(self, conn_id: str, channel: str, conn: Connection | None = None) -> None:
        conn = conn or self.connections.get(conn_id)
        if conn:
            conn.channels.discard(channel)
        members = self.channels.get(channel)
        if members is not None:
            members.discard(conn_id)
            if not members:
                self.channels.pop(channel, None)

    def subscribers(self, channel: str) -> list[str]:
        return list(self.channels.get(channel, ()))

    async def emit(self, conn_ids: Iterable[str], event: str, data: Any) -> int:
        """Send one event to the given connections concurrently.

        Connections whose send fails are unsubscribed from every channel;
        their own disconnect handler still runs and clears presence.
        Returns the number of successful deliveries.
        """
        targets = [self.connections[cid] for cid in conn_ids if cid in self.connections]
        if not targets:
            return 0
        payload = frame(event, data)
        results = await asyncio.gather(
            *[safe_send_json(c.websocket, payload) for c in targets],
            return_exceptions=True,
        )
        delivered = 0
        for conn, ok in zip(targets, results):
            if ok is True:
                delivered += 1
                continue
            logger.info("Dropping dead connection %s (user %s) from channels", conn.id, conn.user_id)
            for channel in list(conn.channels):
                self.leave(conn.id, channel, conn)
        return delivered

    async def to_channel(self, channel: str, event: str, data: Any, exclude: str | None = None) -> int:
        return await self.emit((cid for cid in self.subscribers(channel) if cid != exclude), event, data)

    async def to_all(self, event: str, data: Any, exclude: str | None = None) -> int:
        return await self.emit((cid for cid in list(self.connections) if cid != exclude), event, data)

    async def send_to_user(self, user_id: int, event: str, data: Any) -> int:
        return await self.emit((c.id for c in self.connections_for_user(user_id)), event, data)
