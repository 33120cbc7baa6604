from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from randomcall.core.config import Settings
from randomcall.core.diagnostics import reset_metrics
from randomcall.db.base import utcnow
from randomcall.db.models import WaitingEntry, WaitingStatus
from randomcall.matchmaking.coordinator import MatchListener, MatchmakingCoordinator
from randomcall.matchmaking.store import SqlSessionStore


class RecordingListener(MatchListener):
    """Collects every coordinator event."""

    def __init__(self):
        self.states = []
        self.matches = []
        self.timeouts = []
        self.ended = []

    async def on_state_change(self, old, new):
        self.states.append((old, new))

    async def on_match_found(self, result):
        self.matches.append(result)

    async def on_match_timeout(self, error):
        self.timeouts.append(error)

    async def on_call_ended(self, call_id, reason):
        self.ended.append((call_id, reason))


@pytest.fixture(autouse=True)
def _clean_metrics():
    reset_metrics()
    yield


@pytest.fixture
def settings():
    """Fast timers so the waiting and call lifecycles finish within a test."""
    return Settings(
        POLL_INTERVAL_SECONDS=0.02,
        WAIT_TIMEOUT_SECONDS=2.0,
        CALL_TIME_LIMIT_SECONDS=5.0,
        STALE_WAITING_MAX_AGE_SECONDS=300,
        ABANDONED_CALL_MAX_AGE_SECONDS=1800,
        SWEEP_INTERVAL_SECONDS=0.05,
    )


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'randomcall_test.db'}"


@pytest_asyncio.fixture
async def store(db_url):
    store = await SqlSessionStore.connect(db_url)
    yield store
    await store.close()


@pytest_asyncio.fixture
async def make_coordinator(store, settings):
    """Factory for coordinators; every coordinator created is closed at teardown."""
    created = []

    def _make(user_id, username=None, gender=None, store_override=None, **kwargs):
        kwargs.setdefault("settings", settings)
        coordinator = MatchmakingCoordinator(
            store_override or store,
            {"id": user_id, "username": username or f"user-{user_id}", "gender": gender},
            **kwargs,
        )
        created.append(coordinator)
        return coordinator

    yield _make

    for coordinator in created:
        await coordinator.close()


async def count_rows(store, model, *criteria):
    async with store.session_factory() as session:
        query = select(func.count()).select_from(model)
        if criteria:
            query = query.where(*criteria)
        result = await session.execute(query)
        return result.scalar_one()


def waiting_entry(user_id, call_id, gender=None, age_seconds=0):
    return WaitingEntry(
        user_id=user_id,
        username=f"user-{user_id}",
        gender=gender,
        call_id=call_id,
        status=WaitingStatus.WAITING.value,
        created_at=utcnow() - timedelta(seconds=age_seconds),
    )
