"""Interface for order history session storage.

The order history service keeps its sessions behind this port so the
in-memory map can be swapped for an external store without touching the
pagination state machine.
"""

import abc
from typing import Callable, List, Optional

from skyfi_mcp.domain.models.common import ConversationID, SessionID
from skyfi_mcp.domain.models.orders import OrderHistorySession

class SessionStore(abc.ABC):
    """Abstract Base Class for session persistence."""

    @abc.abstractmethod
    async def get(self, session_id: SessionID) -> Optional[OrderHistorySession]:
        """Returns the session or None when the id is unknown (or evicted)."""
        pass

    @abc.abstractmethod
    async def set(self, session: OrderHistorySession) -> None:
        """Inserts or replaces the session under its own id."""
        pass

    @abc.abstractmethod
    async def update(
        self,
        session_id: SessionID,
        fn: Callable[[Optional[OrderHistorySession]], OrderHistorySession],
    ) -> OrderHistorySession:
        """Atomic read-modify-write.

        `fn` receives the stored session (or None) and returns the session to
        store under its own id. No other write to the store interleaves with it.
        """
        pass

    @abc.abstractmethod
    async def delete(self, session_id: SessionID) -> bool:
        """Removes the session. Returns True if it existed."""
        pass

    @abc.abstractmethod
    async def list_by_conversation(self, conversation_id: ConversationID) -> List[OrderHistorySession]:
        """Returns every stored session belonging to the conversation."""
        pass

    @abc.abstractmethod
    async def clear(self) -> None:
        """Drops all sessions."""
        pass
