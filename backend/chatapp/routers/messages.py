from datetime import datetime

from fastapi import APIRouter, Depends, Query, Response

from ..deps import Services, get_current_user, get_gateway, get_services, require_admin
from ..messages import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE
from ..models import User
from ..schemas import (
    AddMemberIn,
    Detail,
    DirectRoomCreate,
    MessageCreate,
    MessageOut,
    MessageUpdate,
    OnlineUserOut,
    RoomOut,
)

router = APIRouter(prefix="/messages", tags=["messages"])


# ---------------------- MESSAGES ----------------------

@router.post("", response_model=MessageOut, status_code=201)
async def create_message(
    payload: MessageCreate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.messages.create(user.id, payload)


@router.get("/room/{room_id}", response_model=list[MessageOut])
async def list_messages(
    room_id: int,
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=MAX_PAGE_SIZE),
    offset: int = Query(0, ge=0),
    before: datetime | None = Query(None),
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.messages.list_messages(user.id, room_id, limit=limit, offset=offset, before=before)


@router.patch("/{message_id}", response_model=MessageOut)
async def edit_message(
    message_id: int,
    payload: MessageUpdate,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.messages.edit(user.id, message_id, payload.content)


@router.delete("/{message_id}", response_model=MessageOut)
async def delete_message(
    message_id: int,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    return await services.messages.soft_delete(user.id, message_id)


# ---------------------- ROOMS ----------------------

@router.post("/rooms/direct", response_model=RoomOut, status_code=201)
async def create_direct_room(
    payload: DirectRoomCreate,
    response: Response,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
):
    room, created = await services.rooms.get_or_create_direct(user.id, payload.target_user_id)
    if not created:
        response.status_code = 200
    return room


@router.get("/rooms", response_model=list[RoomOut])
async def list_rooms(user: User = Depends(get_current_user), services: Services = Depends(get_services)):
    return await services.rooms.list_for_user(user.id)


@router.get("/rooms/{room_id}", response_model=RoomOut, dependencies=[Depends(get_current_user)])
async def get_room(room_id: int, services: Services = Depends(get_services)):
    return await services.rooms.get(room_id)


@router.post("/rooms/{room_id}/members", response_model=RoomOut, status_code=201)
async def add_member(
    room_id: int,
    payload: AddMemberIn,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
    gateway=Depends(get_gateway),
):
    room = await services.rooms.add_member(user.id, room_id, payload.user_id)
    await gateway.notify_member_added(room, payload.user_id)
    return room


@router.delete("/rooms/{room_id}/leave", response_model=Detail)
async def leave_room(
    room_id: int,
    user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
    gateway=Depends(get_gateway),
):
    await services.rooms.leave(user.id, room_id)
    await gateway.notify_member_left(room_id, user.id)
    return Detail(message="Left room successfully")


@router.delete("/rooms/{room_id}", response_model=Detail, dependencies=[Depends(require_admin)])
async def delete_room(room_id: int, services: Services = Depends(get_services)):
    await services.rooms.delete(room_id)
    return Detail(message="Room deleted successfully")


# ---------------------- PRESENCE ----------------------

@router.get("/online-users", response_model=list[OnlineUserOut], dependencies=[Depends(get_current_user)])
async def online_users(services: Services = Depends(get_services)):
    return await services.presence.list_online()
