"""
QuizLive - Error Taxonomy
=========================

Session operations never raise for expected protocol violations. They
return an ``Outcome`` carrying either a value or a ``GameError`` that the
gateway turns into a scoped ``error`` event for the originating
connection.

Categories:
- PROTOCOL: out-of-state or malformed action; session state unchanged
- NOT_FOUND: unknown PIN; no session side effects
- TERMINAL: host left; the whole session is cancelled

Exceptions are reserved for faults outside the live protocol
(persistence failures, registry misuse, programming errors).
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorCategory(Enum):
    PROTOCOL = "protocol"
    NOT_FOUND = "not_found"
    TERMINAL = "terminal"


class ErrorCode(Enum):
    """Named failures a session operation can report."""
    PIN_NOT_FOUND = ("PIN_NOT_FOUND", ErrorCategory.NOT_FOUND, "Game not found")
    ALREADY_STARTED = ("ALREADY_STARTED", ErrorCategory.PROTOCOL, "The game has already started")
    NICKNAME_TAKEN = ("NICKNAME_TAKEN", ErrorCategory.PROTOCOL, "This nickname is already taken")
    INVALID_NICKNAME = ("INVALID_NICKNAME", ErrorCategory.PROTOCOL, "Invalid nickname")
    NOT_HOST = ("NOT_HOST", ErrorCategory.PROTOCOL, "Not authorized")
    NO_PLAYERS = ("NO_PLAYERS", ErrorCategory.PROTOCOL, "No players in the game")
    NOT_PLAYING = ("NOT_PLAYING", ErrorCategory.PROTOCOL, "The game is not in progress")
    NO_ACTIVE_QUESTION = ("NO_ACTIVE_QUESTION", ErrorCategory.PROTOCOL, "No question is currently open")
    ALREADY_ANSWERED = ("ALREADY_ANSWERED", ErrorCategory.PROTOCOL, "You have already answered this question")
    NOT_A_PLAYER = ("NOT_A_PLAYER", ErrorCategory.PROTOCOL, "You are not a player in this game")
    GAME_FINISHED = ("GAME_FINISHED", ErrorCategory.PROTOCOL, "The game is over")
    INVALID_PAYLOAD = ("INVALID_PAYLOAD", ErrorCategory.PROTOCOL, "Invalid request")
    HOST_LEFT = ("HOST_LEFT", ErrorCategory.TERMINAL, "The host left the game")

    def __init__(self, wire_name: str, category: ErrorCategory, default_message: str):
        self.wire_name = wire_name
        self.category = category
        self.default_message = default_message


@dataclass(frozen=True)
class GameError:
    code: ErrorCode
    message: str

    @staticmethod
    def of(code: ErrorCode, message: Optional[str] = None) -> 'GameError':
        return GameError(code=code, message=message or code.default_message)

    @property
    def category(self) -> ErrorCategory:
        return self.code.category

    def to_dict(self) -> dict:
        """Payload of the scoped ``error`` event."""
        return {"message": self.message, "code": self.code.wire_name}


@dataclass(frozen=True)
class Outcome:
    """Discriminated result of a session operation."""
    value: Any = None
    error: Optional[GameError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @staticmethod
    def success(value: Any = None) -> 'Outcome':
        return Outcome(value=value)

    @staticmethod
    def failure(code: ErrorCode, message: Optional[str] = None) -> 'Outcome':
        return Outcome(error=GameError.of(code, message))


class PersistenceError(Exception):
    """Raised by a persistence sink when a write fails."""


class DuplicatePinError(ValueError):
    """Raised when a session is registered under a PIN already in use."""

    def __init__(self, pin: str):
        super().__init__(f"A session with PIN {pin} is already active")
        self.pin = pin
