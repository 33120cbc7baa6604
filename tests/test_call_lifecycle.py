"""Call side of the coordinator: ending, timers, transport events and app lifecycle."""

import asyncio

import pytest

from randomcall.db.models import CallSession, WaitingEntry
from randomcall.matchmaking.errors import MatchmakingError, StoreUnavailableError
from randomcall.matchmaking.schemas import EndReason, MatchState
from randomcall.matchmaking.store import SqlSessionStore
from randomcall.matchmaking.transport import CallHandle, CallTransport
from tests.conftest import RecordingListener, count_rows, waiting_entry


class FakeHandle(CallHandle):
    def __init__(self, call_id):
        super().__init__(call_id)
        self.leave_calls = 0

    async def leave(self):
        self.leave_calls += 1


class FakeTransport(CallTransport):
    def __init__(self):
        self.joins = []
        self.handle = None
        self.events = None

    async def join(self, call_id, local_user_id, local_user_name, events):
        self.joins.append((call_id, local_user_id, local_user_name))
        self.events = events
        self.handle = FakeHandle(call_id)
        return self.handle


class CountingStore(SqlSessionStore):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.end_calls = 0

    async def end_active_call(self, call_id):
        self.end_calls += 1
        return await super().end_active_call(call_id)


class FailingEndStore(SqlSessionStore):
    async def end_active_call(self, call_id):
        raise StoreUnavailableError("update failed")


async def _matched(store, make_coordinator, user_id="eve", **kwargs):
    """A coordinator that joined a waiting user and is now in a call."""
    await store.insert_waiting(waiting_entry("adam", "call_adam"))
    coordinator = make_coordinator(user_id, **kwargs)
    result = await coordinator.request_match()
    assert result.matched
    return coordinator


async def _wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_concurrent_end_triggers_clean_up_once(db_url, make_coordinator):
    store = await CountingStore.connect(db_url)
    try:
        listener = RecordingListener()
        eve = await _matched(store, make_coordinator, store_override=store, listener=listener)

        results = await asyncio.gather(
            eve.end_call(EndReason.TIME_LIMIT),
            eve.end_call(EndReason.USER_ENDED),
        )

        assert sorted(results) == [False, True]
        assert store.end_calls == 1
        assert listener.ended == [("call_adam", EndReason.TIME_LIMIT)]
        assert eve.state == MatchState.IDLE
        assert await count_rows(store, CallSession) == 0
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_end_call_removes_session_and_leftover_entry(store, make_coordinator):
    eve = await _matched(store, make_coordinator)
    # Leftover from an earlier, interrupted search
    await store.insert_waiting(waiting_entry("eve", "call_leftover"))

    assert await eve.end_call() is True

    assert await store.find_active_call("call_adam") is None
    assert await count_rows(store, WaitingEntry) == 0
    assert eve.call_id is None


@pytest.mark.asyncio
async def test_end_call_continues_after_failed_status_update(db_url, make_coordinator):
    store = await FailingEndStore.connect(db_url)
    try:
        listener = RecordingListener()
        eve = await _matched(store, make_coordinator, store_override=store, listener=listener)

        assert await eve.end_call(EndReason.USER_ENDED) is True

        assert await count_rows(store, CallSession) == 0
        assert listener.ended == [("call_adam", EndReason.USER_ENDED)]
        assert eve.state == MatchState.IDLE
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_end_call_when_idle_is_noop(store, make_coordinator):
    alice = make_coordinator("alice")

    assert await alice.end_call() is False


@pytest.mark.asyncio
async def test_call_time_limit_ends_call(store, settings, make_coordinator):
    listener = RecordingListener()
    eve = await _matched(
        store,
        make_coordinator,
        listener=listener,
        settings=settings.model_copy(update={"CALL_TIME_LIMIT_SECONDS": 0.1}),
    )

    await _wait_until(lambda: listener.ended)

    assert listener.ended == [("call_adam", EndReason.TIME_LIMIT)]
    assert eve.state == MatchState.IDLE


@pytest.mark.asyncio
async def test_manual_end_cancels_call_timer(store, make_coordinator):
    eve = await _matched(store, make_coordinator)
    timer = eve._call_timer

    await eve.end_call()
    await asyncio.sleep(0)

    assert timer.cancelled() or timer.done()
    assert eve._call_timer is None


@pytest.mark.asyncio
async def test_join_call_and_peer_left(store, make_coordinator):
    transport = FakeTransport()
    listener = RecordingListener()
    eve = await _matched(store, make_coordinator, transport=transport, listener=listener)

    handle = await eve.join_call()
    assert await eve.join_call() is handle
    assert transport.joins == [("call_adam", "eve", "user-eve")]

    await transport.events.on_peer_joined("adam")
    assert eve.state == MatchState.MATCHED

    await transport.events.on_peer_left("adam")

    assert listener.ended == [("call_adam", EndReason.PEER_LEFT)]
    assert handle.leave_calls == 1


@pytest.mark.asyncio
async def test_transport_end_with_unknown_reason(store, make_coordinator):
    transport = FakeTransport()
    listener = RecordingListener()
    eve = await _matched(store, make_coordinator, transport=transport, listener=listener)
    await eve.join_call()

    await transport.events.on_ended("network_lost")

    assert listener.ended == [("call_adam", EndReason.REMOTE_ENDED)]


@pytest.mark.asyncio
async def test_join_call_requires_match_and_transport(store, make_coordinator):
    with pytest.raises(MatchmakingError):
        await make_coordinator("alice", transport=FakeTransport()).join_call()

    eve = await _matched(store, make_coordinator)
    with pytest.raises(MatchmakingError):
        await eve.join_call()


@pytest.mark.asyncio
async def test_background_ends_call(store, make_coordinator):
    listener = RecordingListener()
    eve = await _matched(store, make_coordinator, listener=listener)

    await eve.on_app_state_change("active")
    assert eve.state == MatchState.MATCHED

    await eve.on_app_state_change("background")
    assert listener.ended == [("call_adam", EndReason.APP_BACKGROUND)]


@pytest.mark.asyncio
async def test_background_cancels_search(store, make_coordinator):
    alice = make_coordinator("alice")
    await alice.request_match()

    await alice.on_app_state_change("background")

    assert alice.state == MatchState.IDLE
    assert await count_rows(store, WaitingEntry) == 0


@pytest.mark.asyncio
async def test_close_ends_call_on_unmount(store, make_coordinator):
    listener = RecordingListener()
    eve = await _matched(store, make_coordinator, listener=listener)

    await eve.close()

    assert listener.ended == [("call_adam", EndReason.COMPONENT_UNMOUNT)]
    assert eve._call_timer is None


@pytest.mark.asyncio
async def test_both_sides_can_end_the_same_call(store, make_coordinator):
    adam_listener = RecordingListener()
    adam = make_coordinator("adam", gender="male", listener=adam_listener)
    eve = make_coordinator("eve", gender="female")

    waiting = await adam.request_match()
    await eve.request_match()
    await asyncio.wait_for(adam.wait_for_match(), timeout=2)

    assert await eve.end_call(EndReason.USER_ENDED) is True
    await adam.on_peer_left("eve")

    assert adam_listener.ended == [(waiting.call_id, EndReason.PEER_LEFT)]
    assert adam.state == MatchState.IDLE
    assert await count_rows(store, CallSession) == 0
