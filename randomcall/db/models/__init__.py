from randomcall.db.models.call_session import CallSession, CallStatus
from randomcall.db.models.waiting_entry import Gender, WaitingEntry, WaitingStatus

__all__ = ["CallSession", "CallStatus", "Gender", "WaitingEntry", "WaitingStatus"]
