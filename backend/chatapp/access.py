"""Room access checks.

Pure functions over an already-loaded room; callers turn ``False`` into a
``ForbiddenError``.
"""
from .models import MemberRole, Room


def user_has_access(user_id: int, room: Room) -> bool:
    """True when the user is listed as a member and has not left."""
    return any(m.user_id == user_id and m.left_at is None for m in room.members)


def is_room_admin(user_id: int, room: Room) -> bool:
    return any(
        m.user_id == user_id and m.left_at is None and m.role == MemberRole.ADMIN
        for m in room.members
    )


def channel_name(room_id: int) -> str:
    return f"room:{room_id}"
