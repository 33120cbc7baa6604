"""
Session store: persistence of the waiting pool and of call sessions.

The coordinator only talks to the SessionStore interface. SqlSessionStore is
the SQLAlchemy asyncio implementation; every storage failure it hits is
raised as StoreUnavailableError.
"""

from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional

from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from randomcall.core.diagnostics import track_store
from randomcall.db.base import Base, create_engine, create_session_factory, init_models, utcnow
from randomcall.db.models import CallSession, CallStatus, Gender, WaitingEntry
from randomcall.db.repositories import call_session_repo, waiting_repo
from randomcall.matchmaking.errors import StoreUnavailableError


def _row_data(obj: Base) -> dict:
    """Column values of a model instance, without the primary key and unset defaults."""
    data = {}
    for column in obj.__table__.columns:
        if column.primary_key:
            continue
        value = getattr(obj, column.key)
        if value is None and column.default is not None:
            continue
        data[column.key] = value
    return data


class SessionStore(ABC):
    """Persistence used by the matchmaking coordinator."""

    @abstractmethod
    async def insert_waiting(self, entry: WaitingEntry) -> WaitingEntry:
        """Add a user to the waiting pool, replacing an older entry of the same user."""

    @abstractmethod
    async def delete_waiting(self, user_id: str, call_id: Optional[str] = None) -> bool:
        """Remove a user's waiting entry. Idempotent; returns whether a row went away."""

    @abstractmethod
    async def find_waiting_candidates(
        self,
        exclude_user_id: str,
        gender: Optional[Gender] = None,
        created_after: Optional[datetime] = None,
        limit: int = 1,
    ) -> list[WaitingEntry]:
        """Waiting entries other than exclude_user_id, oldest first."""

    @abstractmethod
    async def insert_active_call(self, session: CallSession) -> CallSession:
        ...

    @abstractmethod
    async def update_active_call(self, call_id: str, **patch) -> bool:
        ...

    @abstractmethod
    async def end_active_call(self, call_id: str) -> bool:
        """Mark an active session ended. False when it was not active."""

    @abstractmethod
    async def delete_active_call(self, call_id: str) -> bool:
        ...

    @abstractmethod
    async def find_active_call(self, call_id: str) -> Optional[CallSession]:
        ...

    @abstractmethod
    async def find_active_call_for_user(self, user_id: str) -> Optional[CallSession]:
        ...

    @abstractmethod
    async def sweep_stale_waiting(self, max_age_seconds: float) -> int:
        ...

    @abstractmethod
    async def end_abandoned_calls(self, max_age_seconds: float) -> int:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        ...


class SqlSessionStore(SessionStore):
    """SessionStore backed by SQLAlchemy asyncio (aiosqlite or asyncpg)."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        engine: Optional[AsyncEngine] = None,
    ):
        self.session_factory = session_factory
        self.engine = engine

    @classmethod
    async def connect(cls, database_url: Optional[str] = None, create_tables: bool = True) -> "SqlSessionStore":
        """Create an engine for database_url (or DATABASE_URL) and return a store on it."""
        engine = create_engine(database_url)
        if create_tables:
            await init_models(engine)
        return cls(create_session_factory(engine), engine=engine)

    async def close(self) -> None:
        if self.engine is not None:
            await self.engine.dispose()
            logger.info("Session store engine disposed")

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Session store error: {e}") from e
        except OSError as e:
            raise StoreUnavailableError(f"Session store connection error: {e}") from e

    @track_store
    async def insert_waiting(self, entry: WaitingEntry) -> WaitingEntry:
        async with self._session() as session:
            created = await waiting_repo.create(session, _row_data(entry))
        logger.debug(f"Waiting entry stored for user {created.user_id} ({created.call_id})")
        return created

    @track_store
    async def delete_waiting(self, user_id: str, call_id: Optional[str] = None) -> bool:
        async with self._session() as session:
            return await waiting_repo.delete_for_user(session, user_id, call_id=call_id)

    @track_store
    async def find_waiting_candidates(
        self,
        exclude_user_id: str,
        gender: Optional[Gender] = None,
        created_after: Optional[datetime] = None,
        limit: int = 1,
    ) -> list[WaitingEntry]:
        async with self._session() as session:
            return await waiting_repo.find_candidates(
                session,
                exclude_user_id=exclude_user_id,
                gender=gender.value if gender is not None else None,
                created_after=created_after,
                limit=limit,
            )

    @track_store
    async def insert_active_call(self, session: CallSession) -> CallSession:
        async with self._session() as db_session:
            return await call_session_repo.create(db_session, _row_data(session))

    @track_store
    async def update_active_call(self, call_id: str, **patch) -> bool:
        if patch.get("status") == CallStatus.ENDED.value and "ended_at" not in patch:
            patch["ended_at"] = utcnow()
        async with self._session() as session:
            return await call_session_repo.update_fields(session, call_id, patch)

    @track_store
    async def end_active_call(self, call_id: str) -> bool:
        async with self._session() as session:
            return await call_session_repo.end(session, call_id, ended_at=utcnow())

    @track_store
    async def delete_active_call(self, call_id: str) -> bool:
        async with self._session() as session:
            return await call_session_repo.delete_by_call_id(session, call_id)

    @track_store
    async def find_active_call(self, call_id: str) -> Optional[CallSession]:
        async with self._session() as session:
            return await call_session_repo.get_by_call_id(session, call_id)

    @track_store
    async def find_active_call_for_user(self, user_id: str) -> Optional[CallSession]:
        async with self._session() as session:
            return await call_session_repo.get_active_for_user(session, user_id)

    @track_store
    async def sweep_stale_waiting(self, max_age_seconds: float) -> int:
        cutoff = utcnow() - timedelta(seconds=max_age_seconds)
        async with self._session() as session:
            removed = await waiting_repo.delete_older_than(session, cutoff)
        if removed:
            logger.info(f"Swept {removed} stale waiting entries older than {max_age_seconds:.0f}s")
        return removed

    @track_store
    async def end_abandoned_calls(self, max_age_seconds: float) -> int:
        now = utcnow()
        cutoff = now - timedelta(seconds=max_age_seconds)
        async with self._session() as session:
            ended = await call_session_repo.end_older_than(session, cutoff, ended_at=now)
        if ended:
            logger.info(f"Ended {ended} abandoned call sessions older than {max_age_seconds:.0f}s")
        return ended

    async def ping(self) -> bool:
        """Check the database answers; never raises."""
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return True
        except Exception as e:
            logger.error(f"Session store ping failed: {e}")
            return False
