"""
QuizLive - Data Models
======================

Core data structures of the session engine.

Shared state
------------
The quiz snapshot is immutable and shared by everything that reads it.
Player state and the answer ledger belong to exactly one GameSession and
are only mutated through it. The ``to_*_dict`` helpers produce the
payloads replicated to clients.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple, Union
import random
import uuid


class GameStatus(Enum):
    """
    Session state machine.

    - WAITING: lobby, players may join
    - PLAYING: questions are being played
    - FINISHED: terminal, final leaderboard fixed
    """
    WAITING = "waiting"
    PLAYING = "playing"
    FINISHED = "finished"


class QuestionType(Enum):
    MULTIPLE_CHOICE = "MULTIPLE_CHOICE"
    TRUE_FALSE = "TRUE_FALSE"
    SURVEY = "SURVEY"
    PUZZLE = "PUZZLE"
    DRAG_DROP = "DRAG_DROP"


def _check_time_limit(time_limit: int) -> None:
    if time_limit <= 0:
        raise ValueError(f"time_limit must be positive, got {time_limit}")


@dataclass(frozen=True)
class AnswerOption:
    text: str
    is_correct: bool = False


class _QuestionViews:
    """Serialization shared by every question kind."""

    def answer_texts(self) -> List[str]:
        return []

    def correct_indices(self) -> List[int]:
        return []

    def to_player_dict(self, index: int, total: int, rng: Optional[random.Random] = None) -> dict:
        """Question as sent to players. Never carries correctness data."""
        return {
            "index": index,
            "total": total,
            "text": self.text,
            "timeLimit": self.time_limit,
            "type": self.type.value,
            "answers": [{"index": i, "text": t} for i, t in enumerate(self.answer_texts())],
        }

    def to_host_dict(self, index: int, total: int) -> dict:
        """Question as sent to the host, with the correct-answer metadata."""
        data = _QuestionViews.to_player_dict(self, index, total)
        data["correctAnswers"] = self.correct_indices()
        data["correctAnswer"] = None
        data["caseSensitive"] = None
        return data


@dataclass(frozen=True)
class ChoiceQuestion(_QuestionViews):
    """MULTIPLE_CHOICE or TRUE_FALSE: pick one option by index."""
    text: str
    options: Tuple[AnswerOption, ...]
    time_limit: int = 20
    points: int = 1000
    type: QuestionType = QuestionType.MULTIPLE_CHOICE

    def __post_init__(self):
        _check_time_limit(self.time_limit)
        if self.type not in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE):
            raise ValueError(f"ChoiceQuestion cannot have type {self.type.value}")

    def answer_texts(self) -> List[str]:
        return [o.text for o in self.options]

    def correct_indices(self) -> List[int]:
        return [i for i, o in enumerate(self.options) if o.is_correct]


@dataclass(frozen=True)
class SurveyQuestion(_QuestionViews):
    """Opinion poll: every answer counts, nothing is scored."""
    text: str
    options: Tuple[AnswerOption, ...]
    time_limit: int = 20
    type = QuestionType.SURVEY
    points = 0

    def __post_init__(self):
        _check_time_limit(self.time_limit)

    def answer_texts(self) -> List[str]:
        return [o.text for o in self.options]


@dataclass(frozen=True)
class PuzzleQuestion(_QuestionViews):
    """Free-text answer compared against a single expected string."""
    text: str
    correct_answer: str
    case_sensitive: bool = False
    time_limit: int = 20
    points: int = 1000
    type = QuestionType.PUZZLE

    def __post_init__(self):
        _check_time_limit(self.time_limit)

    def to_host_dict(self, index: int, total: int) -> dict:
        data = super().to_host_dict(index, total)
        data["correctAnswer"] = self.correct_answer
        data["caseSensitive"] = self.case_sensitive
        return data


@dataclass(frozen=True)
class DragDropQuestion(_QuestionViews):
    """Items must be put back in their canonical order."""
    text: str
    items: Tuple[str, ...]
    time_limit: int = 20
    points: int = 1000
    type = QuestionType.DRAG_DROP

    def __post_init__(self):
        _check_time_limit(self.time_limit)

    def answer_texts(self) -> List[str]:
        return list(self.items)

    def to_player_dict(self, index: int, total: int, rng: Optional[random.Random] = None) -> dict:
        # Display positions are re-numbered after shuffling so the index
        # does not give the canonical order away.
        shuffled = list(self.items)
        (rng or random).shuffle(shuffled)
        data = super().to_player_dict(index, total)
        data["answers"] = [{"index": i, "text": t} for i, t in enumerate(shuffled)]
        return data

    def to_host_dict(self, index: int, total: int) -> dict:
        data = super().to_host_dict(index, total)
        data["correctOrder"] = list(self.items)
        return data


Question = Union[ChoiceQuestion, SurveyQuestion, PuzzleQuestion, DragDropQuestion]


@dataclass(frozen=True)
class QuizSnapshot:
    """Quiz as fetched from the catalog when the game was created."""
    id: str
    title: str
    questions: Tuple[Question, ...]

    @property
    def question_count(self) -> int:
        return len(self.questions)

    def question_at(self, index: int) -> Optional[Question]:
        if 0 <= index < len(self.questions):
            return self.questions[index]
        return None


@dataclass(frozen=True)
class Submission:
    """Raw answer payload. Only the field matching the question kind is read."""
    answer_index: Optional[int] = None
    text_answer: Optional[str] = None
    ordered_items: Optional[Tuple[str, ...]] = None

    @staticmethod
    def from_payload(data: dict) -> 'Submission':
        """Build from a ``player:answer`` payload; ill-typed fields become None."""
        data = data or {}
        index = data.get("answerIndex")
        if isinstance(index, bool) or not isinstance(index, int):
            index = None
        text = data.get("textAnswer")
        if not isinstance(text, str):
            text = None
        items = data.get("orderedItems")
        if isinstance(items, (list, tuple)) and all(isinstance(i, str) for i in items):
            items = tuple(items)
        else:
            items = None
        return Submission(answer_index=index, text_answer=text, ordered_items=items)

    def to_dict(self) -> dict:
        return {
            "answerIndex": self.answer_index,
            "textAnswer": self.text_answer,
            "orderedItems": list(self.ordered_items) if self.ordered_items is not None else None,
        }


@dataclass(frozen=True)
class SubmittedAnswer:
    """Ledger entry. Written once per (player, question) and never changed."""
    participant_id: str
    question_index: int
    submission: Submission
    is_correct: bool
    points: int
    elapsed_ms: int


@dataclass(frozen=True)
class AnswerRecord:
    question_index: int
    is_correct: bool
    points: int


@dataclass
class PlayerState:
    """A player in one session, keyed by a session-scoped participant id."""
    participant_id: str
    nickname: str
    join_order: int
    score: int = 0
    streak: int = 0
    history: List[AnswerRecord] = field(default_factory=list)

    @staticmethod
    def create(nickname: str, join_order: int, participant_id: Optional[str] = None) -> 'PlayerState':
        return PlayerState(
            participant_id=participant_id or str(uuid.uuid4()),
            nickname=nickname,
            join_order=join_order,
        )

    def apply_result(self, question_index: int, is_correct: bool, points: int,
                     affects_streak: bool = True) -> None:
        """Add points and update the streak and history."""
        self.score += max(0, points)
        if affects_streak:
            self.streak = self.streak + 1 if is_correct else 0
        self.history.append(AnswerRecord(question_index, is_correct, points))

    def to_dict(self) -> dict:
        return {
            "id": self.participant_id,
            "nickname": self.nickname,
            "score": self.score,
            "streak": self.streak,
        }


@dataclass(frozen=True)
class AnswerResult:
    """Per-player outcome returned by a successful submit."""
    is_correct: bool
    points: int
    total_score: int
    streak: int
    is_survey: bool

    def to_dict(self) -> dict:
        return {
            "isCorrect": self.is_correct,
            "points": self.points,
            "totalScore": self.total_score,
            "streak": self.streak,
            "isSurvey": self.is_survey,
        }


def rank_players(players: List[PlayerState]) -> List[PlayerState]:
    """Score descending; equal scores keep join order."""
    by_join = sorted(players, key=lambda p: p.join_order)
    return sorted(by_join, key=lambda p: p.score, reverse=True)


def leaderboard_entries(players: List[PlayerState], limit: Optional[int] = None) -> List[dict]:
    ranking = rank_players(players)
    if limit is not None:
        ranking = ranking[:limit]
    return [
        {"rank": i + 1, "id": p.participant_id, "nickname": p.nickname, "score": p.score}
        for i, p in enumerate(ranking)
    ]
