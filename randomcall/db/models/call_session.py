from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from randomcall.db.base import Base, utcnow


class CallStatus(str, Enum):
    ACTIVE = "active"
    ENDED = "ended"


class CallSession(Base):
    """Two matched users in (or about to enter) a call."""

    __tablename__ = "call_sessions"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    call_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)

    # Both participants are required, an active session never has only one
    user1_id: Mapped[str] = mapped_column(String(64), index=True)
    user1_name: Mapped[str] = mapped_column(String(255))
    user2_id: Mapped[str] = mapped_column(String(64), index=True)
    user2_name: Mapped[str] = mapped_column(String(255))

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CallStatus.ACTIVE.value,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    ended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    def partner_of(self, user_id: str) -> tuple[str, str]:
        """Return (id, name) of the participant that is not user_id."""
        if self.user1_id == user_id:
            return self.user2_id, self.user2_name
        return self.user1_id, self.user1_name

    def __repr__(self) -> str:
        return f"<CallSession {self.call_id}: {self.user1_id} <-> {self.user2_id} ({self.status})>"
