"""Errors reported by the matchmaking coordinator and the session store."""


class MatchmakingError(Exception):
    """Base class for matchmaking errors. `code` is stable and safe to show to clients."""

    code = "MATCHMAKING_ERROR"
    message = "Matchmaking failed"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.message)


class AlreadyInCallError(MatchmakingError):
    code = "ALREADY_IN_CALL"
    message = "You are already in an active call"


class MatchInProgressError(MatchmakingError):
    code = "MATCH_IN_PROGRESS"
    message = "A match request is already in progress"


class MatchClaimFailedError(MatchmakingError):
    code = "MATCH_CLAIM_FAILED"
    message = "That partner was just taken, please try again"


class SessionCreateFailedError(MatchmakingError):
    code = "SESSION_CREATE_FAILED"
    message = "Could not start the call session, please try again"


class MatchTimeoutError(MatchmakingError):
    code = "MATCH_TIMEOUT"
    message = "No one is available right now, please try again later"


class StoreUnavailableError(MatchmakingError):
    code = "STORE_UNAVAILABLE"
    message = "The matchmaking service is unavailable"
