"""Session journal: append-only conversation history per session id."""

import logging
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from indexer.sqlite_adapter import SQLiteAdapter
from services.models import Feedback, Role, Session, SessionPage, Turn

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 200
DEFAULT_PAGE_SIZE = 25


def new_id() -> str:
    return uuid.uuid4().hex


def last_assistant_turn(history: Sequence[Turn]) -> Optional[Turn]:
    """Most recent assistant turn not marked as a reset."""
    for turn in reversed(history):
        if turn.role == Role.ASSISTANT.value and not turn.meta.get("reset"):
            return turn
    return None


def last_distinct_user_turn(history: Sequence[Turn], current: str) -> Optional[Turn]:
    """Most recent user turn whose text differs from ``current``."""
    current_key = current.strip().lower()
    for turn in reversed(history):
        if turn.role == Role.USER.value and turn.content.strip().lower() != current_key:
            return turn
    return None


class SessionJournal:
    """Reads and writes session turns through the document store."""

    def __init__(self, adapter: SQLiteAdapter):
        self.adapter = adapter

    async def append(self, sid: str, role: Role, content: str,
                     sources: Optional[List[str]] = None,
                     meta: Optional[Dict[str, Any]] = None) -> Turn:
        """Append a new turn, creating the session on first use."""
        turn = Turn(
            mid=new_id(),
            role=role,
            content=content,
            sources=list(sources or []),
            meta=dict(meta or {}),
        )
        await self.adapter.append_turn(sid, turn)
        return turn

    async def history(self, sid: str, limit: Optional[int] = None) -> List[Turn]:
        return await self.adapter.load_history(sid, limit=limit)

    async def get(self, sid: str) -> Optional[Session]:
        return await self.adapter.load_session(sid)

    async def attach_feedback(self, mid: str, correct: bool, comment: str = "",
                              sid: Optional[str] = None) -> Optional[Turn]:
        """Set feedback on one turn; no other turn is touched."""
        feedback = Feedback(correct=correct, comment=comment or "")
        turn = await self.adapter.set_turn_feedback(mid, feedback, sid=sid)
        if turn is None:
            logger.info(f"Feedback for unknown turn {mid}")
        return turn

    async def delete(self, sid: str) -> bool:
        deleted = await self.adapter.delete_session(sid)
        if deleted:
            logger.info(f"Deleted session {sid}")
        return deleted

    async def list_sessions(self, q: Optional[str] = None,
                            date_from: Optional[datetime] = None,
                            date_to: Optional[datetime] = None,
                            limit: int = DEFAULT_PAGE_SIZE, skip: int = 0) -> SessionPage:
        limit = min(max(1, limit), MAX_PAGE_SIZE)
        skip = max(0, skip)
        return await self.adapter.list_sessions(
            q=(q or "").strip() or None, date_from=date_from, date_to=date_to, limit=limit, skip=skip
        )

    async def export_sessions(self) -> AsyncIterator[Session]:
        """Yield every session with its full history, newest first."""
        for sid in await self.adapter.list_session_ids():
            session = await self.adapter.load_session(sid)
            if session is not None:
                yield session
