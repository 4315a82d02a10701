import logging

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .access import is_room_admin, user_has_access
from .db import utcnow
from .errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from .models import MemberRole, Message, Room, RoomMember, RoomType
from .users import UsersService

logger = logging.getLogger(__name__)


class RoomService:
    """Room lifecycle: direct-room creation, membership and deletion."""

    def __init__(self, db: AsyncSession, users: UsersService) -> None:
        self.db = db
        self.users = users

    async def _load(self, room_id: int) -> Room | None:
        res = await self.db.execute(
            select(Room).where(Room.id == room_id).execution_options(populate_existing=True)
        )
        return res.scalar_one_or_none()

    async def get(self, room_id: int) -> Room:
        room = await self._load(room_id)
        if not room:
            raise NotFoundError("Room not found")
        return room

    async def find_direct(self, user_a: int, user_b: int) -> Room | None:
        with_a = select(RoomMember.room_id).where(RoomMember.user_id == user_a)
        with_b = select(RoomMember.room_id).where(RoomMember.user_id == user_b)
        res = await self.db.execute(
            select(Room)
            .where(
                Room.type == RoomType.DIRECT.value,
                Room.is_active.is_(True),
                Room.id.in_(with_a),
                Room.id.in_(with_b),
            )
            .order_by(Room.id)
            .limit(1)
        )
        return res.scalar_one_or_none()

    async def create_or_get_direct(self, user_id: int, target_user_id: int) -> Room:
        room, _ = await self.get_or_create_direct(user_id, target_user_id)
        return room

    async def get_or_create_direct(self, user_id: int, target_user_id: int) -> tuple[Room, bool]:
        """Return the active direct room of the pair, and whether it was just created."""
        target = await self.users.get(target_user_id)
        if target_user_id == user_id:
            raise BadRequestError("Cannot open a direct conversation with yourself")

        existing = await self.find_direct(user_id, target_user_id)
        if existing:
            return existing, False

        user = await self.users.get(user_id)
        now = utcnow()
        room = Room(
            name=f"{user.first_name} & {target.first_name}",
            type=RoomType.DIRECT.value,
            created_by=user_id,
            last_activity=now,
            members=[
                RoomMember(user_id=user_id, role=MemberRole.ADMIN.value, joined_at=now),
                RoomMember(user_id=target_user_id, role=MemberRole.MEMBER.value, joined_at=now),
            ],
        )
        self.db.add(room)
        await self.db.commit()
        logger.info("Created direct room %s for users %s and %s", room.id, user_id, target_user_id)
        return await self.get(room.id), True

    async def list_for_user(self, user_id: int) -> list[Room]:
        res = await self.db.execute(
            select(Room)
            .join(RoomMember, RoomMember.room_id == Room.id)
            .where(
                RoomMember.user_id == user_id,
                RoomMember.left_at.is_(None),
                Room.is_active.is_(True),
            )
            .order_by(Room.last_activity.desc(), Room.id.desc())
        )
        return list(res.scalars().all())

    async def add_member(self, user_id: int, room_id: int, member_id: int) -> Room:
        room = await self.get(room_id)
        if not is_room_admin(user_id, room):
            raise ForbiddenError("Only room admins can add members")
        await self.users.get(member_id)

        existing = room.member(member_id)
        if existing and existing.left_at is None:
            raise ConflictError("User is already a member of this room")
        if existing:
            existing.left_at = None
            existing.joined_at = utcnow()
        else:
            room.members.append(RoomMember(user_id=member_id, role=MemberRole.MEMBER.value, joined_at=utcnow()))
        await self.db.commit()
        logger.info("User %s added %s to room %s", user_id, member_id, room_id)
        return await self.get(room_id)

    async def leave(self, user_id: int, room_id: int) -> None:
        room = await self.get(room_id)
        if not user_has_access(user_id, room):
            raise BadRequestError("You are not a member of this room")
        room.member(user_id).left_at = utcnow()
        await self.db.commit()

    async def delete(self, room_id: int) -> int:
        """Deactivate a room and purge its message history. Irreversible."""
        room = await self.get(room_id)
        room.is_active = False
        res = await self.db.execute(delete(Message).where(Message.room_id == room_id))
        await self.db.commit()
        logger.warning("Room %s deleted, %s messages purged", room_id, res.rowcount)
        return res.rowcount

    async def touch(self, room_id: int) -> None:
        await self.db.execute(update(Room).where(Room.id == room_id).values(last_activity=utcnow()))
