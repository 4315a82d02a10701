import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import get_password_hash, verify_password
from .errors import ConflictError, NotFoundError
from .models import User
from .schemas import UserCreate, UserUpdate

logger = logging.getLogger(__name__)


class UsersService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def create(self, payload: UserCreate) -> User:
        if await self.find_by_email(payload.email):
            raise ConflictError("A user with this email already exists")
        user = User(
            email=payload.email,
            first_name=payload.first_name,
            last_name=payload.last_name,
            password_hash=get_password_hash(payload.password),
            is_active=payload.is_active,
            is_admin=payload.is_admin,
        )
        self.db.add(user)
        await self.db.commit()
        await self.db.refresh(user)
        logger.info("Created user %s (%s)", user.id, user.email)
        return user

    async def list_all(self) -> list[User]:
        res = await self.db.execute(select(User).order_by(User.id))
        return list(res.scalars().all())

    async def list_except(self, exclude_user_id: int) -> list[User]:
        return [u for u in await self.list_all() if u.id != exclude_user_id]

    async def get(self, user_id: int) -> User:
        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundError(f"User with ID {user_id} not found")
        return user

    async def find_by_email(self, email: str) -> User | None:
        res = await self.db.execute(select(User).where(User.email == email))
        return res.scalar_one_or_none()

    async def update(self, user_id: int, payload: UserUpdate) -> User:
        user = await self.get(user_id)
        changes = payload.model_dump(exclude_unset=True, exclude_none=True)
        new_email = changes.get("email")
        if new_email and new_email != user.email and await self.find_by_email(new_email):
            raise ConflictError("A user with this email already exists")
        password = changes.pop("password", None)
        if password:
            user.password_hash = get_password_hash(password)
        for field, value in changes.items():
            setattr(user, field, value)
        await self.db.commit()
        await self.db.refresh(user)
        return user

    async def remove(self, user_id: int) -> None:
        user = await self.get(user_id)
        await self.db.delete(user)
        await self.db.commit()
        logger.info("Deleted user %s", user_id)

    async def authenticate(self, email: str, password: str) -> User | None:
        user = await self.find_by_email(email)
        if not user or not verify_password(password, user.password_hash):
            return None
        return user
