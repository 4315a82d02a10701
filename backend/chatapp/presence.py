"""Online-user tracking.

One row per user, keyed by the socket that last announced the user. Rows
are removed on disconnect, and anything not refreshed within the TTL is
treated as gone and swept by ``sweep_expired_presence``.
"""
import asyncio
import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import settings
from .db import utcnow
from .models import OnlineUser, UserStatus

logger = logging.getLogger(__name__)


class PresenceService:
    def __init__(self, db: AsyncSession, ttl_seconds: int | None = None) -> None:
        self.db = db
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.presence_ttl_seconds

    def _cutoff(self, now: datetime | None = None) -> datetime:
        return (now or utcnow()) - timedelta(seconds=self.ttl_seconds)

    async def _find(self, user_id: int) -> OnlineUser | None:
        res = await self.db.execute(select(OnlineUser).where(OnlineUser.user_id == user_id))
        return res.scalar_one_or_none()

    async def mark_online(self, user_id: int, socket_id: str) -> OnlineUser:
        record = await self._find(user_id)
        if record is None:
            record = OnlineUser(user_id=user_id)
            self.db.add(record)
        record.socket_id = socket_id
        record.status = UserStatus.ONLINE.value
        record.last_seen = utcnow()
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def mark_offline(self, socket_id: str) -> None:
        await self.db.execute(delete(OnlineUser).where(OnlineUser.socket_id == socket_id))
        await self.db.commit()

    async def update_status(self, user_id: int, status: UserStatus) -> OnlineUser | None:
        record = await self._find(user_id)
        if record is None:
            return None
        record.status = UserStatus(status).value
        record.last_seen = utcnow()
        await self.db.commit()
        await self.db.refresh(record)
        return record

    async def list_online(self) -> list[OnlineUser]:
        res = await self.db.execute(
            select(OnlineUser).where(OnlineUser.last_seen >= self._cutoff()).order_by(OnlineUser.user_id)
        )
        return list(res.scalars().all())

    async def is_online(self, user_id: int) -> bool:
        res = await self.db.execute(
            select(OnlineUser.id).where(OnlineUser.user_id == user_id, OnlineUser.last_seen >= self._cutoff())
        )
        return res.first() is not None

    async def purge_expired(self, now: datetime | None = None) -> int:
        res = await self.db.execute(delete(OnlineUser).where(OnlineUser.last_seen < self._cutoff(now)))
        await self.db.commit()
        return res.rowcount


async def sweep_expired_presence(session_factory: async_sessionmaker, interval_seconds: float) -> None:
    """Periodically drop presence rows whose owner vanished without a disconnect."""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            async with session_factory() as db:
                removed = await PresenceService(db).purge_expired()
        except SQLAlchemyError:
            logger.exception("Presence sweep failed")
            continue
        if removed:
            logger.info("Presence sweep removed %d stale record(s)", removed)
