"""
Matchmaking coordinator.

One MatchmakingCoordinator drives one user's search for a random video-call
partner and the call that follows:

    IDLE -> SEARCHING -> { MATCHED (joined a waiting user) | WAITING }
    WAITING -> poll finds the session -> MATCHED
    SEARCHING | WAITING -> cancel -> IDLE
    WAITING -> timeout -> IDLE
    MATCHED -> any end trigger -> ENDED -> IDLE

Nothing here is persisted across restarts; rows orphaned by a killed client
are removed by the sweeper.
"""

import asyncio
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Union

from loguru import logger

from randomcall.core.config import Settings, get_settings
from randomcall.db.base import utcnow
from randomcall.db.models import CallSession, CallStatus, WaitingEntry, WaitingStatus
from randomcall.matchmaking.errors import (
    AlreadyInCallError,
    MatchClaimFailedError,
    MatchInProgressError,
    MatchmakingError,
    MatchTimeoutError,
    SessionCreateFailedError,
    StoreUnavailableError,
)
from randomcall.matchmaking.schemas import (
    EndReason,
    MatchResult,
    MatchState,
    MatchUser,
    PollOutcome,
    PollStatus,
)
from randomcall.matchmaking.store import SessionStore
from randomcall.matchmaking.transport import CallHandle, CallTransport
from randomcall.matchmaking.utils import candidate_tiers, generate_call_id

APP_STATE_BACKGROUND = "background"


class MatchListener:
    """Receives coordinator events. Override the hooks you need."""

    async def on_state_change(self, old: MatchState, new: MatchState) -> None:
        pass

    async def on_match_found(self, result: MatchResult) -> None:
        """A waiting user was joined by a partner."""

    async def on_match_timeout(self, error: MatchTimeoutError) -> None:
        pass

    async def on_call_ended(self, call_id: str, reason: EndReason) -> None:
        """Cleanup finished, return to a neutral screen."""


class MatchmakingCoordinator:
    """Matchmaking state machine for a single user."""

    def __init__(
        self,
        store: SessionStore,
        user: Union[MatchUser, dict],
        settings: Optional[Settings] = None,
        transport: Optional[CallTransport] = None,
        listener: Optional[MatchListener] = None,
    ):
        self.store = store
        self.user = user if isinstance(user, MatchUser) else MatchUser(**user)
        self.settings = settings or get_settings()
        self.transport = transport
        self.listener = listener or MatchListener()

        self.state = MatchState.IDLE
        self.call_id: Optional[str] = None
        self.matched_user_name: Optional[str] = None
        self.is_joining = False

        self._requesting = False
        # Set by cancel() while a request is still searching; the request rolls itself back
        self._cancel_requested = False
        # Bumped whenever the coordinator leaves WAITING; poll results from an older generation are dropped
        self._generation = 0
        self._poll_task: Optional[asyncio.Task] = None
        self._outcome: Optional[asyncio.Future] = None
        self._call_timer: Optional[asyncio.Task] = None
        self._call_handle: Optional[CallHandle] = None
        self._call_ended = False

    # ---- search ----

    async def request_match(self) -> MatchResult:
        """
        Join the oldest suitable waiting user, or enter the waiting pool.

        Raises:
            AlreadyInCallError: the user has an active call session.
            MatchInProgressError: a request is running or the coordinator is not idle.
            MatchClaimFailedError: the candidate was claimed by someone else first.
            SessionCreateFailedError: the call session could not be created.
            StoreUnavailableError: any other storage failure.
        """
        if self._requesting or self.state != MatchState.IDLE:
            raise MatchInProgressError()

        self._requesting = True
        self._cancel_requested = False
        try:
            existing = await self.store.find_active_call_for_user(self.user.id)
            if existing is not None:
                logger.warning(f"User {self.user.id} requested a match while in call {existing.call_id}")
                raise AlreadyInCallError()

            await self._set_state(MatchState.SEARCHING)
            await self._sweep_stale_waiting()

            candidate = await self._find_candidate()
            if self._cancel_requested:
                return await self._abandon_search()
            if candidate is not None:
                return await self._join_candidate(candidate)
            return await self._enqueue()
        except BaseException:
            if self.state == MatchState.SEARCHING:
                await self._set_state(MatchState.IDLE)
            raise
        finally:
            self._requesting = False

    async def _sweep_stale_waiting(self) -> None:
        try:
            await self.store.sweep_stale_waiting(self.settings.STALE_WAITING_MAX_AGE_SECONDS)
        except StoreUnavailableError as e:
            logger.warning(f"Stale waiting sweep failed, searching anyway: {e}")

    async def _find_candidate(self) -> Optional[WaitingEntry]:
        created_after = utcnow() - timedelta(seconds=self.settings.STALE_WAITING_MAX_AGE_SECONDS)
        for tier, gender in enumerate(candidate_tiers(self.user.gender), start=1):
            candidates = await self.store.find_waiting_candidates(
                exclude_user_id=self.user.id,
                gender=gender,
                created_after=created_after,
                limit=1,
            )
            if candidates:
                candidate = candidates[0]
                label = gender.value if gender is not None else "any"
                logger.info(f"User {self.user.id} found candidate {candidate.user_id} in tier {tier} ({label})")
                return candidate
        logger.info(f"No waiting candidate for user {self.user.id}")
        return None

    async def _join_candidate(self, candidate: WaitingEntry) -> MatchResult:
        try:
            claimed = await self.store.delete_waiting(candidate.user_id, call_id=candidate.call_id)
        except StoreUnavailableError as e:
            raise MatchClaimFailedError() from e
        if not claimed:
            logger.warning(f"Candidate {candidate.user_id} ({candidate.call_id}) was claimed by another user")
            raise MatchClaimFailedError()
        if self._cancel_requested:
            await self._restore_candidate(candidate)
            return await self._abandon_search()

        session = CallSession(
            call_id=candidate.call_id,
            user1_id=candidate.user_id,
            user1_name=candidate.username,
            user2_id=self.user.id,
            user2_name=self.user.username,
            status=CallStatus.ACTIVE.value,
            created_at=utcnow(),
        )
        try:
            await self.store.insert_active_call(session)
        except StoreUnavailableError as e:
            logger.error(f"Creating call session {candidate.call_id} failed: {e}")
            await self._restore_candidate(candidate)
            raise SessionCreateFailedError() from e

        # A leftover entry of our own would let someone match us a second time
        await self._best_effort(f"delete waiting entry of {self.user.id}", self.store.delete_waiting(self.user.id))
        if self._cancel_requested:
            # Polls ignore ended sessions, so the candidate keeps waiting
            await self._best_effort(f"end call {candidate.call_id}", self.store.end_active_call(candidate.call_id))
            await self._best_effort(f"delete call {candidate.call_id}", self.store.delete_active_call(candidate.call_id))
            await self._restore_candidate(candidate)
            return await self._abandon_search()

        logger.info(f"User {self.user.id} matched with {candidate.user_id} in call {candidate.call_id}")
        await self._enter_call(candidate.call_id, candidate.username, is_joining=True)
        return MatchResult(
            matched=True,
            call_id=candidate.call_id,
            matched_user_name=candidate.username,
            is_joining=True,
        )

    async def _restore_candidate(self, candidate: WaitingEntry) -> None:
        """Put a claimed candidate back in the pool at its original position."""
        entry = WaitingEntry(
            user_id=candidate.user_id,
            username=candidate.username,
            gender=candidate.gender,
            call_id=candidate.call_id,
            status=WaitingStatus.WAITING.value,
            created_at=candidate.created_at,
        )
        try:
            await self.store.insert_waiting(entry)
            logger.info(f"Restored waiting entry of {candidate.user_id}")
        except Exception as e:
            logger.error(f"Could not restore waiting entry of {candidate.user_id}: {e}")

    async def _enqueue(self) -> MatchResult:
        call_id = generate_call_id()
        entry = WaitingEntry(
            user_id=self.user.id,
            username=self.user.username,
            gender=self.user.gender.value if self.user.gender is not None else None,
            call_id=call_id,
            status=WaitingStatus.WAITING.value,
            created_at=utcnow(),
        )
        await self.store.insert_waiting(entry)
        if self._cancel_requested:
            await self._withdraw_entry(call_id)
            return await self._abandon_search(call_id)

        self.call_id = call_id
        self._generation += 1
        self._outcome = asyncio.get_running_loop().create_future()
        await self._set_state(MatchState.WAITING)
        self._poll_task = asyncio.create_task(
            self._run_poll(call_id, self._generation),
            name=f"match-poll-{call_id}",
        )
        logger.info(f"User {self.user.id} is waiting for a partner in {call_id}")
        return MatchResult(matched=False, call_id=call_id, is_joining=False)

    async def _abandon_search(self, call_id: Optional[str] = None) -> MatchResult:
        """Finish a request that was cancelled while it was still searching."""
        logger.info(f"User {self.user.id} cancelled the search before it completed")
        self._cancel_requested = False
        self._clear_call()
        await self._set_state(MatchState.IDLE)
        self._outcome = asyncio.get_running_loop().create_future()
        self._resolve(PollOutcome(status=PollStatus.CANCELLED, call_id=call_id))
        return MatchResult(matched=False, is_joining=False)

    # ---- waiting ----

    async def poll_for_match(self, call_id: str, generation: Optional[int] = None) -> Optional[MatchResult]:
        """
        Poll the store until call_id has an active session.

        Runs until a match is found; the caller bounds it with the wait
        timeout. Returns None if the coordinator moved on (generation changed)
        while a query was in flight.
        """
        interval = self.settings.POLL_INTERVAL_SECONDS
        while True:
            await asyncio.sleep(interval)
            try:
                session = await self.store.find_active_call(call_id)
            except StoreUnavailableError as e:
                logger.warning(f"Poll for {call_id} failed, retrying: {e}")
                continue

            if generation is not None and generation != self._generation:
                logger.debug(f"Discarding stale poll response for {call_id}")
                return None

            if session is not None and session.status == CallStatus.ACTIVE.value:
                _, partner_name = session.partner_of(self.user.id)
                return MatchResult(
                    matched=True,
                    call_id=call_id,
                    matched_user_name=partner_name,
                    is_joining=False,
                )

    async def _run_poll(self, call_id: str, generation: int) -> None:
        try:
            result = await asyncio.wait_for(
                self.poll_for_match(call_id, generation),
                timeout=self.settings.WAIT_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            if generation == self._generation:
                await self._handle_wait_timeout(call_id)
            return

        if result is None or generation != self._generation:
            return
        await self._handle_match_found(result)

    async def _handle_match_found(self, result: MatchResult) -> None:
        self._generation += 1
        self._poll_task = None
        logger.info(f"User {self.user.id} was joined by {result.matched_user_name} in {result.call_id}")
        await self._enter_call(result.call_id, result.matched_user_name, is_joining=False)
        self._resolve(PollOutcome(status=PollStatus.MATCHED, call_id=result.call_id, result=result))
        await self._notify(self.listener.on_match_found, result)

    async def _handle_wait_timeout(self, call_id: str) -> None:
        self._generation += 1
        self._poll_task = None
        logger.info(f"User {self.user.id} timed out waiting in {call_id}")

        try:
            removed = await self.store.delete_waiting(self.user.id, call_id=call_id)
        except StoreUnavailableError as e:
            logger.error(f"Could not remove waiting entry {call_id} after timeout: {e}")
            removed = True

        if self.state != MatchState.WAITING or self.call_id != call_id:
            # Cancelled while the entry was being removed
            return

        if not removed:
            # The entry was claimed between the last poll and the timeout
            try:
                session = await self.store.find_active_call(call_id)
            except StoreUnavailableError as e:
                logger.error(f"Could not check {call_id} after a late claim: {e}")
                session = None
            if session is not None and session.status == CallStatus.ACTIVE.value:
                _, partner_name = session.partner_of(self.user.id)
                await self._handle_match_found(
                    MatchResult(matched=True, call_id=call_id, matched_user_name=partner_name, is_joining=False)
                )
                return

        self._clear_call()
        await self._set_state(MatchState.IDLE)
        self._resolve(PollOutcome(status=PollStatus.TIMED_OUT, call_id=call_id))
        await self._notify(self.listener.on_match_timeout, MatchTimeoutError())

    async def wait_for_match(self) -> PollOutcome:
        """Wait for the current search to be matched, cancelled or timed out."""
        if self._outcome is None:
            raise MatchmakingError("No search in progress")
        return await asyncio.shield(self._outcome)

    async def cancel(self) -> bool:
        """
        Stop searching or waiting and leave the pool.

        A request that is still searching is rolled back by request_match
        itself and returns an unmatched result. Returns False when there was
        nothing to cancel.
        """
        if self.state == MatchState.SEARCHING and self._requesting:
            if self._cancel_requested:
                return False
            self._cancel_requested = True
            self._generation += 1
            logger.info(f"User {self.user.id} cancelled a search in progress")
            return True
        if self.state != MatchState.WAITING:
            return False

        call_id = self.call_id
        self._generation += 1
        await self._stop_poll()
        self._clear_call()
        await self._set_state(MatchState.IDLE)
        await self._withdraw_entry(call_id)

        logger.info(f"User {self.user.id} cancelled search {call_id}")
        self._resolve(PollOutcome(status=PollStatus.CANCELLED, call_id=call_id))
        return True

    async def _withdraw_entry(self, call_id: str) -> None:
        try:
            removed = await self.store.delete_waiting(self.user.id, call_id=call_id)
            if not removed:
                # Claimed while we were cancelling; the partner would wait alone
                logger.warning(f"Waiting entry {call_id} was already claimed, ending its session")
                await self.store.end_active_call(call_id)
        except StoreUnavailableError as e:
            logger.error(f"Could not remove waiting entry {call_id} on cancel: {e}")

    # ---- call ----

    async def join_call(self) -> CallHandle:
        """Join the matched call through the configured transport."""
        if self.state != MatchState.MATCHED or self.call_id is None:
            raise MatchmakingError("No matched call to join")
        if self.transport is None:
            raise MatchmakingError("No call transport configured")
        if self._call_handle is None:
            self._call_handle = await self.transport.join(
                self.call_id,
                self.user.id,
                self.user.username,
                self,
            )
            logger.info(f"User {self.user.id} joined call {self.call_id}")
        return self._call_handle

    async def end_call(self, reason: Union[EndReason, str] = EndReason.USER_ENDED) -> bool:
        """
        End the current call and clean up its records.

        Runs at most once per call no matter how many triggers fire. Every
        cleanup step is best effort: failures are logged and the remaining
        steps still run. Returns True when this invocation did the cleanup.
        """
        reason = EndReason(reason)
        call_id = self.call_id
        if self.state != MatchState.MATCHED or self._call_ended or call_id is None:
            logger.debug(f"Ignoring end_call({reason.value}) in state {self.state.value}")
            return False

        # Set before the first await so concurrent triggers see it
        self._call_ended = True
        logger.info(f"Ending call {call_id} for user {self.user.id}: {reason.value}")
        await self._set_state(MatchState.ENDED)
        self._cancel_call_timer()

        await self._best_effort(f"mark call {call_id} ended", self.store.end_active_call(call_id))
        await self._best_effort(f"delete call {call_id}", self.store.delete_active_call(call_id))
        await self._best_effort(f"delete waiting entry of {self.user.id}", self.store.delete_waiting(self.user.id))
        await self._leave_transport()

        self._clear_call()
        await self._set_state(MatchState.IDLE)
        await self._notify(self.listener.on_call_ended, call_id, reason)
        return True

    async def _enter_call(self, call_id: str, partner_name: Optional[str], is_joining: bool) -> None:
        self.call_id = call_id
        self.matched_user_name = partner_name
        self.is_joining = is_joining
        self._call_ended = False
        await self._set_state(MatchState.MATCHED)
        self._call_timer = asyncio.create_task(
            self._call_time_limit(call_id),
            name=f"call-limit-{call_id}",
        )

    async def _call_time_limit(self, call_id: str) -> None:
        await asyncio.sleep(self.settings.CALL_TIME_LIMIT_SECONDS)
        if self.call_id == call_id:
            logger.info(f"Call {call_id} reached the {self.settings.CALL_TIME_LIMIT_SECONDS:.0f}s limit")
            await self.end_call(EndReason.TIME_LIMIT)

    def _cancel_call_timer(self) -> None:
        timer, self._call_timer = self._call_timer, None
        if timer is not None and timer is not asyncio.current_task() and not timer.done():
            timer.cancel()

    async def _leave_transport(self) -> None:
        handle, self._call_handle = self._call_handle, None
        if handle is not None:
            await self._best_effort(f"leave call {handle.call_id}", handle.leave())

    # ---- transport events ----

    async def on_peer_joined(self, peer_id: str) -> None:
        logger.info(f"Peer {peer_id} joined call {self.call_id}")

    async def on_peer_left(self, peer_id: str) -> None:
        logger.info(f"Peer {peer_id} left call {self.call_id}")
        await self.end_call(EndReason.PEER_LEFT)

    async def on_ended(self, reason: Optional[str] = None) -> None:
        try:
            end_reason = EndReason(reason) if reason else EndReason.REMOTE_ENDED
        except ValueError:
            end_reason = EndReason.REMOTE_ENDED
        await self.end_call(end_reason)

    # ---- app lifecycle ----

    async def on_app_state_change(self, app_state: str) -> None:
        """Handle the app moving between foreground and background."""
        if app_state != APP_STATE_BACKGROUND:
            return
        if self.state == MatchState.MATCHED:
            await self.end_call(EndReason.APP_BACKGROUND)
        elif self.state == MatchState.WAITING:
            await self.cancel()

    async def close(self) -> None:
        """Tear everything down when the owning screen goes away."""
        if self.state in (MatchState.SEARCHING, MatchState.WAITING):
            await self.cancel()
        elif self.state == MatchState.MATCHED:
            await self.end_call(EndReason.COMPONENT_UNMOUNT)
        await self._stop_poll()
        self._cancel_call_timer()

    # ---- helpers ----

    async def _stop_poll(self) -> None:
        task, self._poll_task = self._poll_task, None
        if task is None or task is asyncio.current_task() or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _clear_call(self) -> None:
        self.call_id = None
        self.matched_user_name = None
        self.is_joining = False

    def _resolve(self, outcome: PollOutcome) -> None:
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(outcome)

    async def _set_state(self, new_state: MatchState) -> None:
        old_state, self.state = self.state, new_state
        if old_state != new_state:
            logger.debug(f"User {self.user.id}: {old_state.value} -> {new_state.value}")
            await self._notify(self.listener.on_state_change, old_state, new_state)

    async def _best_effort(self, description: str, operation: Awaitable[Any]) -> None:
        try:
            await operation
        except Exception as e:
            logger.error(f"Failed to {description}: {e}")

    async def _notify(self, callback: Callable[..., Awaitable[Any]], *args) -> None:
        try:
            await callback(*args)
        except Exception:
            logger.exception(f"Listener {callback.__name__} raised")
