"""WebSocket chat gateway.

Frames are JSON objects ``{"event": str, "data": object, "ack": int?}``.
A client opens ``/ws/chat`` and must first send a ``connect`` frame; the
token is taken from that frame's ``data.token``, else the
``Authorization`` header, else the ``token`` query parameter. After that
the client may send ``joinRoom``, ``leaveRoom``, ``sendMessage``,
``getOnlineUsers`` and ``updateStatus``; each is answered with a frame
carrying the same event name and ``ack``, or an ``exception`` frame.

Server pushes: ``userConnected``, ``userDisconnected``, ``userJoinedRoom``,
``userLeftRoom``, ``newMessage`` and ``addedToRoom``.
"""
import asyncio
import json
import logging
import secrets
from typing import Any, Awaitable, Callable, Dict

from fastapi import HTTPException, WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import async_sessionmaker

from .access import channel_name, user_has_access
from .auth import decode_token, resolve_socket_token, user_id_from_token
from .config import settings
from .connections import Connection, ConnectionRegistry, frame, safe_send_json
from .db import SessionLocal
from .deps import build_services
from .errors import ChatError
from .models import Room
from .schemas import (
    MessageOut,
    OnlineUserOut,
    RoomOut,
    WsConnect,
    WsJoinRoom,
    WsLeaveRoom,
    WsSendMessage,
    WsUpdateStatus,
)

logger = logging.getLogger(__name__)

UNAUTHORIZED_CLOSE_CODE = 4401


class WsException(Exception):
    """Transport-level failure reported to the client as an ``exception`` frame."""


def error_message(exc: Exception) -> str:
    if isinstance(exc, HTTPException):
        return str(exc.detail)
    if isinstance(exc, ChatError):
        return exc.message
    if isinstance(exc, ValidationError):
        return "; ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" if err["loc"] else err["msg"]
            for err in exc.errors()
        )
    return str(exc)


def exception_frame(message: str, ack: Any = None) -> dict:
    return frame("exception", {"status": "error", "message": message}, ack)


Handler = Callable[[Connection, dict], Awaitable[Any]]


class ChatGateway:
    def __init__(
        self,
        registry: ConnectionRegistry,
        session_factory: async_sessionmaker = SessionLocal,
        connect_timeout: float | None = None,
    ) -> None:
        self.registry = registry
        self.session_factory = session_factory
        self.connect_timeout = connect_timeout if connect_timeout is not None else settings.ws_connect_timeout_seconds
        self.handlers: Dict[str, Handler] = {
            "joinRoom": self.handle_join_room,
            "leaveRoom": self.handle_leave_room,
            "sendMessage": self.handle_send_message,
            "getOnlineUsers": self.handle_get_online_users,
            "updateStatus": self.handle_update_status,
        }

    # ---------------------- lifecycle ----------------------

    async def serve(self, websocket: WebSocket) -> None:
        await websocket.accept()
        conn_id = secrets.token_urlsafe(16)
        try:
            conn = await self.authenticate(conn_id, websocket)
        except WebSocketDisconnect:
            return
        except (asyncio.TimeoutError, WsException, HTTPException, ChatError, ValidationError) as e:
            message = error_message(e) or "Authentication timed out"
            logger.warning("Connection %s rejected: %s", conn_id, message)
            await safe_send_json(websocket, exception_frame(message))
            await websocket.close(code=UNAUTHORIZED_CLOSE_CODE)
            return

        try:
            await self.handle_connection(conn)
            while True:
                raw = await websocket.receive_text()
                await self.dispatch(conn, raw)
        except WebSocketDisconnect:
            pass
        finally:
            await self.handle_disconnect(conn)

    async def authenticate(self, conn_id: str, websocket: WebSocket) -> Connection:
        raw = await asyncio.wait_for(websocket.receive_text(), timeout=self.connect_timeout)
        msg = parse_frame(raw)
        if msg.get("event") != "connect":
            raise WsException("Expected a connect event")
        auth = WsConnect.model_validate(msg.get("data") or {})

        token = resolve_socket_token(auth.model_dump(), websocket.headers, websocket.query_params)
        if not token:
            raise WsException("No token provided")
        user_id = user_id_from_token(token)

        async with self.session_factory() as db:
            user = await build_services(db).users.get(user_id)
        if not user.is_active:
            raise WsException("Account deactivated")
        return Connection(id=conn_id, user_id=user.id, username=user.full_name, websocket=websocket, token=token)

    async def handle_connection(self, conn: Connection) -> None:
        await safe_send_json(conn.websocket, frame("connect", {"sid": conn.id, "userId": conn.user_id}))

        async with self.session_factory() as db:
            services = build_services(db)
            await services.presence.mark_online(conn.user_id, conn.id)
            rooms = await services.rooms.list_for_user(conn.user_id)

        self.registry.register(conn)
        for room in rooms:
            self.registry.join(conn.id, channel_name(room.id))

        await self.registry.to_all("userConnected", {"userId": conn.user_id, "username": conn.username})
        logger.info("User %s connected with socket %s (%d rooms)", conn.user_id, conn.id, len(rooms))

    async def handle_disconnect(self, conn: Connection) -> None:
        # presence may be set even if setup failed before registration
        registered = self.registry.unregister(conn.id) is not None
        async with self.session_factory() as db:
            await build_services(db).presence.mark_offline(conn.id)
        if registered:
            await self.registry.to_all("userDisconnected", {"userId": conn.user_id})
        logger.info("User %s disconnected (socket %s)", conn.user_id, conn.id)

    # ---------------------- dispatch ----------------------

    async def dispatch(self, conn: Connection, raw: str) -> None:
        try:
            msg = parse_frame(raw)
        except WsException as e:
            await safe_send_json(conn.websocket, exception_frame(str(e)))
            return

        event = msg.get("event")
        ack = msg.get("ack")
        handler = self.handlers.get(event)
        if handler is None:
            await safe_send_json(conn.websocket, exception_frame(f"Unknown event: {event}", ack))
            return

        try:
            # every event re-checks the token the socket authenticated with
            decode_token(conn.token)
            result = await handler(conn, msg.get("data") or {})
        except (WsException, ChatError, HTTPException, ValidationError) as e:
            await safe_send_json(conn.websocket, exception_frame(error_message(e), ack))
            return
        except Exception:
            logger.exception("Unhandled error in %s handler for user %s", event, conn.user_id)
            await safe_send_json(conn.websocket, exception_frame("Internal server error", ack))
            return
        await safe_send_json(conn.websocket, frame(event, result, ack))

    # ---------------------- events ----------------------

    async def handle_join_room(self, conn: Connection, data: dict) -> dict:
        payload = WsJoinRoom.model_validate(data)
        async with self.session_factory() as db:
            room = await build_services(db).rooms.get(payload.room_id)
        if not room.is_active or not user_has_access(conn.user_id, room):
            raise WsException("Access denied to this room")

        channel = channel_name(room.id)
        self.registry.join(conn.id, channel)
        await self.registry.to_channel(
            channel,
            "userJoinedRoom",
            {"userId": conn.user_id, "username": conn.username, "roomId": room.id},
            exclude=conn.id,
        )
        return {"status": "joined", "roomId": room.id}

    async def handle_leave_room(self, conn: Connection, data: dict) -> dict:
        payload = WsLeaveRoom.model_validate(data)
        channel = channel_name(payload.room_id)
        self.registry.leave(conn.id, channel)
        await self.registry.to_channel(
            channel, "userLeftRoom", {"userId": conn.user_id, "roomId": payload.room_id}, exclude=conn.id
        )
        return {"status": "left", "roomId": payload.room_id}

    async def handle_send_message(self, conn: Connection, data: dict) -> dict:
        payload = WsSendMessage.model_validate(data)
        async with self.session_factory() as db:
            message = await build_services(db).messages.create(conn.user_id, payload)

        body = MessageOut.model_validate(message).model_dump(mode="json", by_alias=True)
        body["senderInfo"] = {"id": conn.user_id, "username": conn.username}
        await self.registry.to_channel(channel_name(message.room_id), "newMessage", body)
        return {"status": "sent", "messageId": message.id}

    async def handle_get_online_users(self, conn: Connection, data: dict) -> dict:
        async with self.session_factory() as db:
            online = await build_services(db).presence.list_online()
        return {
            "onlineUsers": [OnlineUserOut.model_validate(o).model_dump(mode="json", by_alias=True) for o in online]
        }

    async def handle_update_status(self, conn: Connection, data: dict) -> dict | None:
        payload = WsUpdateStatus.model_validate(data)
        async with self.session_factory() as db:
            record = await build_services(db).presence.update_status(conn.user_id, payload.status)
        if record is None:
            return None
        return OnlineUserOut.model_validate(record).model_dump(mode="json", by_alias=True)

    # ---------------------- server-initiated ----------------------

    async def notify_member_added(self, room: Room, member_id: int) -> int:
        """Subscribe a newly added member's live sockets and tell them about the room."""
        channel = channel_name(room.id)
        for conn in self.registry.connections_for_user(member_id):
            self.registry.join(conn.id, channel)
        body = RoomOut.model_validate(room).model_dump(mode="json", by_alias=True)
        return await self.registry.send_to_user(member_id, "addedToRoom", body)

    async def notify_member_left(self, room_id: int, user_id: int) -> int:
        """Unsubscribe every live socket of a member who left and tell the rest of the room."""
        channel = channel_name(room_id)
        for conn in self.registry.connections_for_user(user_id):
            self.registry.leave(conn.id, channel)
        return await self.registry.to_channel(channel, "userLeftRoom", {"userId": user_id, "roomId": room_id})


def parse_frame(raw: str) -> dict:
    try:
        msg = json.loads(raw)
    except ValueError:
        raise WsException("Invalid JSON frame")
    if not isinstance(msg, dict):
        raise WsException("Frame must be a JSON object")
    return msg
