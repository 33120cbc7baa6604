from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from randomcall.db.base import Base, utcnow


class Gender(str, Enum):
    """Gender as used for match tiers. Unset is represented by None."""
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


class WaitingStatus(str, Enum):
    WAITING = "waiting"


class WaitingEntry(Base):
    """A user currently searching for a call partner."""

    __tablename__ = "waiting_entries"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    # At most one entry per user
    user_id: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    username: Mapped[str] = mapped_column(String(255))
    gender: Mapped[Optional[str]] = mapped_column(String(16), nullable=True, index=True)
    call_id: Mapped[str] = mapped_column(String(64), unique=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=WaitingStatus.WAITING.value,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, index=True)

    def __repr__(self) -> str:
        return f"<WaitingEntry {self.user_id} call={self.call_id} gender={self.gender}>"
