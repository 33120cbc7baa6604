"""
Interface to the third-party real-time video/audio SDK.

The SDK itself is not part of this package; an adapter implements
CallTransport and calls back into a CallEvents sink (the coordinator) as the
call progresses.
"""

from abc import ABC, abstractmethod
from typing import Optional, Protocol


class CallEvents(Protocol):
    """Lifecycle callbacks a transport delivers for a joined call."""

    async def on_peer_joined(self, peer_id: str) -> None: ...

    async def on_peer_left(self, peer_id: str) -> None: ...

    async def on_ended(self, reason: Optional[str] = None) -> None: ...


class CallHandle(ABC):
    """A joined call."""

    def __init__(self, call_id: str):
        self.call_id = call_id

    @abstractmethod
    async def leave(self) -> None:
        """Leave the call. Must be safe to call more than once."""


class CallTransport(ABC):

    @abstractmethod
    async def join(
        self,
        call_id: str,
        local_user_id: str,
        local_user_name: str,
        events: CallEvents,
    ) -> CallHandle:
        """Join call_id as the local user and start delivering events."""
