import re
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import MemberRole, MessageType, UserStatus

PASSWORD_PATTERN = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)(?=.*[@$!%*?&])[A-Za-z\d@$!%*?&]")


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        from_attributes = True


# ---------------------- AUTH / USERS ----------------------

class UserOut(CamelModel):
    id: int
    email: EmailStr
    first_name: str
    last_name: str
    is_active: bool
    is_admin: bool
    created_at: datetime
    updated_at: datetime


class AuthResponse(CamelModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    user: UserOut


class TokenVerification(CamelModel):
    valid: bool
    user: UserOut


class LoginIn(BaseModel):
    email: EmailStr
    password: str = Field(min_length=1)


class RegisterIn(CamelModel):
    email: EmailStr
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    password: str = Field(min_length=8, max_length=32)

    @field_validator("password")
    @classmethod
    def strong_password(cls, v: str) -> str:
        if not PASSWORD_PATTERN.match(v):
            raise ValueError(
                "Password must contain at least one uppercase letter, one lowercase letter, "
                "one number and one special character"
            )
        return v


class UserCreate(CamelModel):
    email: EmailStr
    first_name: str = Field(min_length=2, max_length=50)
    last_name: str = Field(min_length=2, max_length=50)
    password: str = Field(min_length=8)
    is_active: bool = True
    is_admin: bool = False


class UserUpdate(CamelModel):
    email: EmailStr | None = None
    first_name: str | None = Field(default=None, min_length=2, max_length=50)
    last_name: str | None = Field(default=None, min_length=2, max_length=50)
    password: str | None = Field(default=None, min_length=8)
    is_active: bool | None = None
    is_admin: bool | None = None


# ---------------------- ROOMS ----------------------

class MemberOut(CamelModel):
    user_id: int
    role: MemberRole
    joined_at: datetime
    left_at: datetime | None = None


class RoomOut(CamelModel):
    id: int
    name: str
    type: str
    description: str | None = None
    created_by: int
    members: list[MemberOut]
    is_active: bool
    last_activity: datetime | None = None
    created_at: datetime
    updated_at: datetime


class DirectRoomCreate(CamelModel):
    target_user_id: int


class AddMemberIn(CamelModel):
    user_id: int


class Detail(BaseModel):
    message: str


# ---------------------- MESSAGES ----------------------

class MessageCreate(CamelModel):
    content: str = Field(min_length=1, max_length=2000)
    room_id: int
    message_type: MessageType = MessageType.TEXT


class MessageUpdate(CamelModel):
    content: str = Field(min_length=1, max_length=2000)


class MessageOut(CamelModel):
    id: int
    content: str
    sender_id: int
    sender_username: str | None = None
    room_id: int
    timestamp: datetime
    message_type: MessageType
    is_edited: bool
    edited_at: datetime | None = None
    is_deleted: bool
    deleted_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class OnlineUserOut(CamelModel):
    user_id: int
    socket_id: str
    status: UserStatus
    last_seen: datetime


# ---------------------- WEBSOCKET PAYLOADS ----------------------

class WsConnect(CamelModel):
    token: str | None = None


class WsJoinRoom(CamelModel):
    room_id: int


class WsLeaveRoom(CamelModel):
    room_id: int


class WsSendMessage(MessageCreate):
    pass


class WsUpdateStatus(CamelModel):
    status: UserStatus
