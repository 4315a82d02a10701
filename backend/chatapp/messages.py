import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .access import user_has_access
from .db import utcnow
from .errors import BadRequestError, ForbiddenError, NotFoundError
from .models import Message, Room
from .rooms import RoomService
from .schemas import MessageCreate
from .users import UsersService

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


class MessageService:
    def __init__(self, db: AsyncSession, rooms: RoomService, users: UsersService) -> None:
        self.db = db
        self.rooms = rooms
        self.users = users

    async def _accessible_room(self, user_id: int, room_id: int) -> Room:
        room = await self.rooms.get(room_id)
        if not room.is_active:
            raise NotFoundError("Room not found")
        if not user_has_access(user_id, room):
            raise ForbiddenError("You do not have access to this room")
        return room

    async def _owned_message(self, user_id: int, message_id: int, action: str) -> Message:
        message = await self.db.get(Message, message_id)
        if not message:
            raise NotFoundError("Message not found")
        if message.sender_id != user_id:
            raise ForbiddenError(f"You can only {action} your own messages")
        return message

    async def create(self, user_id: int, payload: MessageCreate) -> Message:
        await self._accessible_room(user_id, payload.room_id)
        sender = await self.users.get(user_id)

        message = Message(
            content=payload.content,
            room_id=payload.room_id,
            message_type=payload.message_type.value,
            sender_id=user_id,
            sender_username=sender.full_name,
            timestamp=utcnow(),
        )
        self.db.add(message)
        await self.rooms.touch(payload.room_id)
        await self.db.commit()
        await self.db.refresh(message)
        return message

    async def list_messages(
        self,
        user_id: int,
        room_id: int,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
        before: datetime | None = None,
    ) -> list[Message]:
        await self._accessible_room(user_id, room_id)

        stmt = select(Message).where(Message.room_id == room_id, Message.is_deleted.is_(False))
        if before is not None:
            if before.tzinfo is None:
                before = before.replace(tzinfo=timezone.utc)
            stmt = stmt.where(Message.timestamp < before.astimezone(timezone.utc))
        stmt = (
            stmt.order_by(Message.timestamp.desc(), Message.id.desc())
            .limit(min(limit or DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE))
            .offset(offset or 0)
        )
        res = await self.db.execute(stmt)
        return list(res.scalars().all())

    async def edit(self, user_id: int, message_id: int, content: str) -> Message:
        message = await self._owned_message(user_id, message_id, "edit")
        if message.is_deleted:
            raise BadRequestError("Cannot edit deleted message")
        message.content = content
        message.is_edited = True
        message.edited_at = utcnow()
        await self.db.commit()
        await self.db.refresh(message)
        return message

    async def soft_delete(self, user_id: int, message_id: int) -> Message:
        # content stays in the row; listing filters on is_deleted
        message = await self._owned_message(user_id, message_id, "delete")
        message.is_deleted = True
        message.deleted_at = utcnow()
        await self.db.commit()
        await self.db.refresh(message)
        logger.info("Message %s soft-deleted by %s", message_id, user_id)
        return message
