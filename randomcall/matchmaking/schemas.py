from enum import Enum
from typing import Optional

from pydantic import BaseModel, field_validator

from randomcall.db.models import Gender
from randomcall.matchmaking.errors import MatchmakingError, MatchTimeoutError
from randomcall.matchmaking.utils import normalize_gender


class MatchState(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    WAITING = "waiting"
    MATCHED = "matched"
    ENDED = "ended"


class EndReason(str, Enum):
    USER_ENDED = "user_ended"
    TIME_LIMIT = "time_limit"
    APP_BACKGROUND = "app_background"
    COMPONENT_UNMOUNT = "component_unmount"
    PEER_LEFT = "peer_left"
    REMOTE_ENDED = "remote_ended"


class MatchUser(BaseModel):
    """The user asking for a match."""
    id: str
    username: str
    gender: Optional[Gender] = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, value):
        return str(value)

    @field_validator("gender", mode="before")
    @classmethod
    def _normalize_gender(cls, value):
        return normalize_gender(value)


class MatchResult(BaseModel):
    matched: bool
    call_id: Optional[str] = None
    matched_user_name: Optional[str] = None
    is_joining: bool = False


class PollStatus(str, Enum):
    MATCHED = "matched"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


class PollOutcome(BaseModel):
    """Terminal result of waiting for a partner."""
    status: PollStatus
    call_id: Optional[str] = None
    result: Optional[MatchResult] = None

    @property
    def matched(self) -> bool:
        return self.status == PollStatus.MATCHED

    def raise_for_status(self) -> Optional[MatchResult]:
        """Return the match, raising MatchTimeoutError if the wait timed out."""
        if self.status == PollStatus.TIMED_OUT:
            raise MatchTimeoutError()
        if self.status == PollStatus.CANCELLED:
            raise MatchmakingError("Search was cancelled")
        return self.result
