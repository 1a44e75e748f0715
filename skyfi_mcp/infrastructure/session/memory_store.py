"""In-process implementation of the SessionStore port.

Sessions live in a dict guarded by a single asyncio lock. Once more than
`max_sessions` are stored, the least recently updated ones are evicted.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from skyfi_mcp.domain.interfaces.session_store import SessionStore
from skyfi_mcp.domain.models.common import ConversationID, SessionID
from skyfi_mcp.domain.models.orders import OrderHistorySession

logger = logging.getLogger(__name__)

DEFAULT_MAX_SESSIONS = 1000

class InMemorySessionStore(SessionStore):
    """Process-local session map with least-recently-updated eviction."""

    def __init__(self, max_sessions: int = DEFAULT_MAX_SESSIONS):
        if max_sessions < 1:
            raise ValueError("max_sessions must be at least 1")
        self.max_sessions = max_sessions
        self._sessions: Dict[SessionID, OrderHistorySession] = {}
        self._lock = asyncio.Lock()
        logger.info(f"InMemorySessionStore initialized (max_sessions={max_sessions})")

    def __len__(self) -> int:
        return len(self._sessions)

    async def get(self, session_id: SessionID) -> Optional[OrderHistorySession]:
        async with self._lock:
            return self._sessions.get(session_id)

    async def set(self, session: OrderHistorySession) -> None:
        async with self._lock:
            self._sessions[session.session_id] = session
            self._evict()

    async def update(
        self,
        session_id: SessionID,
        fn: Callable[[Optional[OrderHistorySession]], OrderHistorySession],
    ) -> OrderHistorySession:
        async with self._lock:
            updated = fn(self._sessions.get(session_id))
            self._sessions[updated.session_id] = updated
            self._evict()
            return updated

    def _evict(self) -> None:
        """Drops the stalest sessions beyond capacity. Caller must hold the lock."""
        overflow = len(self._sessions) - self.max_sessions
        if overflow <= 0:
            return
        stalest = sorted(self._sessions.values(), key=lambda s: s.updated_at)[:overflow]
        for session in stalest:
            del self._sessions[session.session_id]
            logger.debug(f"Evicted order history session {session.session_id}")

    async def delete(self, session_id: SessionID) -> bool:
        async with self._lock:
            return self._sessions.pop(session_id, None) is not None

    async def list_by_conversation(self, conversation_id: ConversationID) -> List[OrderHistorySession]:
        async with self._lock:
            return [s for s in self._sessions.values() if s.conversation_id == conversation_id]

    async def clear(self) -> None:
        async with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        logger.info(f"Cleared {count} order history sessions.")
