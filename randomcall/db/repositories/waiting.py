from datetime import datetime
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from randomcall.db.models import WaitingEntry, WaitingStatus
from randomcall.db.repositories.base import BaseRepository


class WaitingEntryRepository(BaseRepository[WaitingEntry]):
    """Repository for the waiting pool."""

    def __init__(self):
        super().__init__(WaitingEntry)

    async def create(self, session: AsyncSession, data: dict) -> WaitingEntry:
        """Create a waiting entry, replacing any previous entry of the same user."""
        await session.execute(
            delete(WaitingEntry).where(WaitingEntry.user_id == data["user_id"])
        )
        entry = WaitingEntry(**data)
        session.add(entry)
        await session.commit()
        await session.refresh(entry)
        return entry

    async def delete_for_user(
        self,
        session: AsyncSession,
        user_id: str,
        call_id: Optional[str] = None,
    ) -> bool:
        """
        Delete the waiting entry of a user.

        With call_id this is a compare-and-delete: it only removes the entry
        if it still carries that call id. Returns whether a row was removed.
        """
        query = delete(WaitingEntry).where(WaitingEntry.user_id == user_id)
        if call_id is not None:
            query = query.where(WaitingEntry.call_id == call_id)
        result = await session.execute(query)
        await session.commit()
        return result.rowcount > 0

    async def find_candidates(
        self,
        session: AsyncSession,
        exclude_user_id: str,
        gender: Optional[str] = None,
        created_after: Optional[datetime] = None,
        limit: int = 1,
    ) -> list[WaitingEntry]:
        """Oldest waiting entries first, optionally restricted to one gender."""
        query = select(WaitingEntry).where(
            WaitingEntry.status == WaitingStatus.WAITING.value,
            WaitingEntry.user_id != exclude_user_id,
        )
        if gender is not None:
            query = query.where(WaitingEntry.gender == gender)
        if created_after is not None:
            query = query.where(WaitingEntry.created_at >= created_after)
        query = query.order_by(WaitingEntry.created_at.asc(), WaitingEntry.id.asc()).limit(limit)

        result = await session.execute(query)
        return list(result.scalars().all())

    async def delete_older_than(self, session: AsyncSession, cutoff: datetime) -> int:
        """Remove entries created before cutoff. Returns the number removed."""
        result = await session.execute(
            delete(WaitingEntry).where(WaitingEntry.created_at < cutoff)
        )
        await session.commit()
        return result.rowcount or 0
