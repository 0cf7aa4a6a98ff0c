"""
Session Manager - in-memory practice sessions.

Sessions (and the progression state of mixed-unit practice) are ephemeral:
they live in a TTL cache and disappear when ended or idle too long. Each
session carries its own lock so answers to one session are applied one at
a time.
"""

import uuid
import time
import logging
from threading import Lock
from typing import Optional, Tuple

from .cache import TTLCache
from .errors import NotFound
from .models import PracticeSession, SessionProgressionState

logger = logging.getLogger(__name__)


class SessionManager:
    """Owns PracticeSession objects and their session-scoped progression."""

    DEFAULT_TTL_SECONDS = 4 * 60 * 60  # Idle sessions expire after four hours

    def __init__(self, cache: Optional[TTLCache] = None):
        self.cache = cache if cache is not None else TTLCache(self.DEFAULT_TTL_SECONDS)

    def create(self, learner_id: str, unit_id: Optional[str] = None,
               topic_id: Optional[str] = None, target_questions: int = 40) -> PracticeSession:
        session = PracticeSession(
            session_id=str(uuid.uuid4()),
            learner_id=learner_id,
            unit_id=unit_id,
            topic_id=topic_id,
            target_questions=target_questions,
        )
        state = SessionProgressionState(session_id=session.session_id)
        self.cache.set(session.session_id, (session, state, Lock()))
        logger.info("practice session %s started for %s (scope: %s)",
                    session.session_id, learner_id, unit_id or "mixed")
        return session

    def _entry(self, session_id: str) -> Tuple[PracticeSession, SessionProgressionState, Lock]:
        entry = self.cache.get(session_id)
        if entry is None:
            raise NotFound("session", session_id)
        self.cache.touch(session_id)
        return entry

    def get(self, session_id: str) -> PracticeSession:
        return self._entry(session_id)[0]

    def get_progression(self, session_id: str) -> SessionProgressionState:
        return self._entry(session_id)[1]

    def lock(self, session_id: str) -> Lock:
        """Lock serializing answer submission within one session."""
        return self._entry(session_id)[2]

    def end(self, session_id: str) -> PracticeSession:
        """Remove the session and its progression state; returns the final session."""
        session = self.get(session_id)
        self.cache.pop(session_id)
        session.ended_at = time.time()
        logger.info("practice session %s ended: %d/%d correct",
                    session_id, session.correct_answers, session.total_questions)
        return session

    def __len__(self) -> int:
        return len(self.cache)
