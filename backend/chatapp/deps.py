"""Composition root: explicit wiring of the service graph plus the FastAPI
dependencies that hand it to route handlers.
"""
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import get_current_user_id
from .connections import ConnectionRegistry
from .db import get_db
from .messages import MessageService
from .models import User
from .presence import PresenceService
from .rooms import RoomService
from .users import UsersService


@dataclass
class Services:
    users: UsersService
    rooms: RoomService
    messages: MessageService
    presence: PresenceService


def build_services(db: AsyncSession) -> Services:
    users = UsersService(db)
    rooms = RoomService(db, users)
    return Services(
        users=users,
        rooms=rooms,
        messages=MessageService(db, rooms, users),
        presence=PresenceService(db),
    )


async def get_services(db: AsyncSession = Depends(get_db)) -> Services:
    return build_services(db)


async def get_current_user(
    user_id: int = Depends(get_current_user_id), db: AsyncSession = Depends(get_db)
) -> User:
    user = await db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=401, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="Account deactivated")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=403, detail="Access reserved for administrators")
    return user


def get_registry(request: Request) -> ConnectionRegistry:
    return request.app.state.registry


def get_gateway(request: Request):
    return request.app.state.gateway
