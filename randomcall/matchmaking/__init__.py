"""Random video-call matchmaking."""

from randomcall.matchmaking.coordinator import MatchListener, MatchmakingCoordinator
from randomcall.matchmaking.errors import (
    AlreadyInCallError,
    MatchClaimFailedError,
    MatchInProgressError,
    MatchmakingError,
    MatchTimeoutError,
    SessionCreateFailedError,
    StoreUnavailableError,
)
from randomcall.matchmaking.schemas import EndReason, MatchResult, MatchState, MatchUser, PollOutcome, PollStatus
from randomcall.matchmaking.store import SessionStore, SqlSessionStore
from randomcall.matchmaking.sweeper import Sweeper
from randomcall.matchmaking.transport import CallEvents, CallHandle, CallTransport

__all__ = [
    "AlreadyInCallError",
    "CallEvents",
    "CallHandle",
    "CallTransport",
    "EndReason",
    "MatchClaimFailedError",
    "MatchInProgressError",
    "MatchListener",
    "MatchResult",
    "MatchState",
    "MatchTimeoutError",
    "MatchUser",
    "MatchmakingCoordinator",
    "MatchmakingError",
    "PollOutcome",
    "PollStatus",
    "SessionCreateFailedError",
    "SessionStore",
    "SqlSessionStore",
    "StoreUnavailableError",
    "Sweeper",
]
