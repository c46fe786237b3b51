"""QuizLive - Quiz Catalog

Read-only source of quiz snapshots. Authoring lives elsewhere; the engine
only needs ``get_quiz(quiz_id)`` once, when a game is created.
"""

import json
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol

from .models import (
    AnswerOption,
    ChoiceQuestion,
    DragDropQuestion,
    PuzzleQuestion,
    Question,
    QuestionType,
    QuizSnapshot,
    SurveyQuestion,
)

logger = logging.getLogger(__name__)

DEFAULT_TIME_LIMIT = 20
DEFAULT_POINTS = 1000


class QuizCatalog(Protocol):
    def get_quiz(self, quiz_id: str) -> Optional[QuizSnapshot]: ...


def question_from_dict(data: dict) -> Question:
    """
    Build a question from its JSON form.

    Choice, survey and drag-and-drop questions read ``answers`` (in order);
    puzzles read ``correctAnswer`` and ``caseSensitive``.
    """
    kind = QuestionType(data.get("type") or QuestionType.MULTIPLE_CHOICE.value)
    text = data["text"]
    time_limit = int(data.get("timeLimit", DEFAULT_TIME_LIMIT))
    points = int(data.get("points", DEFAULT_POINTS))
    answers = data.get("answers") or []

    if kind in (QuestionType.MULTIPLE_CHOICE, QuestionType.TRUE_FALSE):
        options = tuple(AnswerOption(a["text"], bool(a.get("isCorrect", False))) for a in answers)
        return ChoiceQuestion(text=text, options=options, time_limit=time_limit, points=points, type=kind)
    if kind == QuestionType.SURVEY:
        options = tuple(AnswerOption(a["text"]) for a in answers)
        return SurveyQuestion(text=text, options=options, time_limit=time_limit)
    if kind == QuestionType.PUZZLE:
        return PuzzleQuestion(
            text=text,
            correct_answer=data.get("correctAnswer") or "",
            case_sensitive=bool(data.get("caseSensitive", False)),
            time_limit=time_limit,
            points=points,
        )
    if kind == QuestionType.DRAG_DROP:
        items = tuple(a["text"] if isinstance(a, dict) else str(a) for a in (data.get("items") or answers))
        return DragDropQuestion(text=text, items=items, time_limit=time_limit, points=points)
    raise ValueError(f"Unsupported question type: {kind.value}")


def quiz_from_dict(data: dict) -> QuizSnapshot:
    return QuizSnapshot(
        id=str(data["id"]),
        title=data.get("title", "Quiz"),
        questions=tuple(question_from_dict(q) for q in data.get("questions", [])),
    )


class InMemoryQuizCatalog:
    """Catalog backed by a dict; also the base of the JSON catalog."""

    def __init__(self, quizzes: Iterable[QuizSnapshot] = ()):
        self._quizzes: Dict[str, QuizSnapshot] = {}
        for quiz in quizzes:
            self.add(quiz)

    def add(self, quiz: QuizSnapshot) -> None:
        self._quizzes[quiz.id] = quiz

    def get_quiz(self, quiz_id: str) -> Optional[QuizSnapshot]:
        return self._quizzes.get(str(quiz_id))

    def list_quizzes(self) -> List[dict]:
        return [
            {"id": q.id, "title": q.title, "questionCount": q.question_count}
            for q in self._quizzes.values()
        ]


class JsonQuizCatalog(InMemoryQuizCatalog):
    """Loads ``{"quizzes": [...]}`` from a JSON file at start-up."""

    def __init__(self, path):
        super().__init__()
        self.path = Path(path)
        self._load()

    def _load(self):
        if not self.path.exists():
            logger.warning(f"Quiz catalog {self.path} not found, starting empty")
            return

        with open(self.path, "r", encoding="utf-8") as f:
            data = json.load(f)

        for raw in data.get("quizzes", []):
            try:
                self.add(quiz_from_dict(raw))
            except (KeyError, TypeError, ValueError) as e:
                logger.error(f"Skipping invalid quiz {raw.get('id', '?')}: {e}")

        logger.info(f"Loaded {len(self._quizzes)} quizzes from {self.path}")
