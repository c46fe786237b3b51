"""QuizLive - Session Registry

Maps game PINs to active sessions. One instance per process, created at
start-up and handed to the gateway and the HTTP routes.
"""

import logging
import random
import threading
from typing import Dict, List, Optional

from .errors import DuplicatePinError
from .game_session import GameSession
from .models import QuizSnapshot
from .utils import generate_pin, normalize_pin

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Manages every active session of this process."""

    def __init__(self, session_options: Optional[dict] = None, rng: Optional[random.Random] = None):
        self._sessions: Dict[str, GameSession] = {}
        self._lock = threading.RLock()
        self._session_options = dict(session_options or {})
        self._rng = rng or random.Random()

    def __contains__(self, pin) -> bool:
        return normalize_pin(pin) in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def generate_pin(self) -> str:
        """Draw PINs until one is not held by an active session."""
        with self._lock:
            pin = generate_pin(self._rng)
            while pin in self._sessions:
                pin = generate_pin(self._rng)
            return pin

    def create(self, pin: str, quiz: QuizSnapshot, game_id: Optional[str] = None, **options) -> GameSession:
        """Register a new session. The PIN must not be in use."""
        pin = normalize_pin(pin)
        with self._lock:
            if pin in self._sessions:
                raise DuplicatePinError(pin)
            session_options = {**self._session_options, **options}
            session = GameSession(pin, quiz, game_id, on_closed=self._on_session_closed, **session_options)
            self._sessions[pin] = session
        logger.info(f"Session created: {pin} - {quiz.title}")
        return session

    def create_with_new_pin(self, quiz: QuizSnapshot, game_id: Optional[str] = None, **options) -> GameSession:
        with self._lock:
            return self.create(self.generate_pin(), quiz, game_id, **options)

    def get(self, pin) -> Optional[GameSession]:
        return self._sessions.get(normalize_pin(pin))

    def remove(self, pin) -> Optional[GameSession]:
        pin = normalize_pin(pin)
        with self._lock:
            session = self._sessions.pop(pin, None)
        if session:
            logger.info(f"Session {pin} removed")
        return session

    def _on_session_closed(self, session: GameSession) -> None:
        with self._lock:
            # A newer session may hold the PIN by now.
            if self._sessions.get(session.pin) is session:
                self.remove(session.pin)

    def list_sessions(self) -> List[dict]:
        return [s.to_dict() for s in list(self._sessions.values())]

    def close_all(self) -> None:
        """Close every session (process shutdown)."""
        for session in list(self._sessions.values()):
            session.close("server shutdown")
        with self._lock:
            self._sessions.clear()
