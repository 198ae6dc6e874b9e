"""
Session manager for voice and AR flows.

A session is created on demand, owns its result history exclusively and
moves once from active to ended.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from dispatch_core.serving.errors import NotFoundError, SessionEndedError
from dispatch_core.serving.models import Result
from dispatch_core.serving.performance import running_average

logger = logging.getLogger(__name__)


@dataclass
class SessionStats:
    total_commands: int = 0
    successful_commands: int = 0
    average_confidence: float = 0.0
    average_processing_time_ms: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_commands": self.total_commands,
            "successful_commands": self.successful_commands,
            "average_confidence": round(self.average_confidence, 4),
            "average_processing_time_ms": round(self.average_processing_time_ms, 2),
        }


@dataclass
class Session:
    """A logical voice/AR session and its ordered result history."""
    id: str
    context: str = "general"
    language: str = "en"
    started_at: datetime = field(default_factory=datetime.now)
    ended_at: Optional[datetime] = None
    is_active: bool = True
    history: List[Result] = field(default_factory=list)
    stats: SessionStats = field(default_factory=SessionStats)

    def recent(self, limit: int = 5) -> List[Result]:
        return self.history[-limit:] if limit > 0 else []

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "context": self.context,
            "language": self.language,
            "started_at": self.started_at.isoformat(),
            "ended_at": self.ended_at.isoformat() if self.ended_at else None,
            "is_active": self.is_active,
            "history_length": len(self.history),
            "stats": self.stats.to_dict(),
        }


class SessionManager:
    """Creates, tracks and ends sessions."""

    def __init__(self):
        self._sessions: Dict[str, Session] = {}

    def create_session(self, context: str = "general", language: str = "en") -> Session:
        session = Session(
            id=f"voice_session_{uuid.uuid4().hex[:12]}",
            context=context,
            language=language,
        )
        self._sessions[session.id] = session
        logger.info(f"Session started: {session.id} (context={context}, language={language})")
        return session

    def get(self, session_id: str) -> Session:
        try:
            return self._sessions[session_id]
        except KeyError:
            raise NotFoundError("session", session_id) from None

    def require_active(self, session_id: str) -> Session:
        session = self.get(session_id)
        if not session.is_active:
            raise SessionEndedError(session_id)
        return session

    def append_result(self, session_id: str, result: Result) -> Session:
        """Append a result to the history and fold it into the session stats."""
        session = self.require_active(session_id)
        session.history.append(result)

        stats = session.stats
        stats.total_commands += 1
        if result.success:
            stats.successful_commands += 1

        n = stats.total_commands
        stats.average_confidence = running_average(stats.average_confidence, result.confidence, n)
        stats.average_processing_time_ms = running_average(
            stats.average_processing_time_ms, result.processing_time_ms, n
        )
        return session

    def end_session(self, session_id: str) -> Session:
        """End a session. Ending an already-ended session is a no-op."""
        session = self.get(session_id)
        if session.is_active:
            session.is_active = False
            session.ended_at = datetime.now()
            logger.info(
                f"Session ended: {session_id} "
                f"({session.stats.total_commands} commands, "
                f"{session.stats.successful_commands} successful)"
            )
        return session

    def active_sessions(self) -> List[Session]:
        return [s for s in self._sessions.values() if s.is_active]

    def preferred_backends(self, session_id: str, limit: int = 5) -> List[str]:
        """Backends behind the session's recent successful results, newest first."""
        session = self._sessions.get(session_id)
        if session is None:
            return []

        names: List[str] = []
        for result in reversed(session.recent(limit)):
            if not result.success:
                continue
            for name in result.model_used.split("+"):
                if name and name not in names:
                    names.append(name)
        return names

    def __len__(self) -> int:
        return len(self._sessions)


__all__ = ["Session", "SessionStats", "SessionManager"]
