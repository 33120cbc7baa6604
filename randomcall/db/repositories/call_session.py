from datetime import datetime

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from randomcall.db.models import CallSession, CallStatus
from randomcall.db.repositories.base import BaseRepository


class CallSessionRepository(BaseRepository[CallSession]):
    """Repository for call sessions."""

    def __init__(self):
        super().__init__(CallSession)

    async def get_by_call_id(self, session: AsyncSession, call_id: str) -> CallSession | None:
        query = select(CallSession).where(CallSession.call_id == call_id)
        result = await session.execute(query)
        return result.scalar_one_or_none()

    async def get_active_for_user(self, session: AsyncSession, user_id: str) -> CallSession | None:
        """First active session in which the user is a participant."""
        query = (
            select(CallSession)
            .where(
                CallSession.status == CallStatus.ACTIVE.value,
                or_(CallSession.user1_id == user_id, CallSession.user2_id == user_id),
            )
            .limit(1)
        )
        result = await session.execute(query)
        return result.scalars().first()

    async def update_fields(self, session: AsyncSession, call_id: str, patch: dict) -> bool:
        result = await session.execute(
            update(CallSession).where(CallSession.call_id == call_id).values(**patch)
        )
        await session.commit()
        return result.rowcount > 0

    async def end(self, session: AsyncSession, call_id: str, ended_at: datetime) -> bool:
        """Move a session from active to ended. False if it was not active."""
        result = await session.execute(
            update(CallSession)
            .where(
                CallSession.call_id == call_id,
                CallSession.status == CallStatus.ACTIVE.value,
            )
            .values(status=CallStatus.ENDED.value, ended_at=ended_at)
        )
        await session.commit()
        return result.rowcount > 0

    async def delete_by_call_id(self, session: AsyncSession, call_id: str) -> bool:
        result = await session.execute(
            delete(CallSession).where(CallSession.call_id == call_id)
        )
        await session.commit()
        return result.rowcount > 0

    async def end_older_than(self, session: AsyncSession, cutoff: datetime, ended_at: datetime) -> int:
        """End active sessions created before cutoff. Returns the number ended."""
        result = await session.execute(
            update(CallSession)
            .where(
                CallSession.status == CallStatus.ACTIVE.value,
                CallSession.created_at < cutoff,
            )
            .values(status=CallStatus.ENDED.value, ended_at=ended_at)
        )
        await session.commit()
        return result.rowcount or 0
