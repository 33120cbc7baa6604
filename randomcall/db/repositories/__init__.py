from randomcall.db.repositories.call_session import CallSessionRepository
from randomcall.db.repositories.waiting import WaitingEntryRepository

waiting_repo = WaitingEntryRepository()
call_session_repo = CallSessionRepository()

__all__ = ["CallSessionRepository", "WaitingEntryRepository", "call_session_repo", "waiting_repo"]
