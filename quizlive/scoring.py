"""
QuizLive - Scoring
==================

Kahoot-style scoring for every question kind.

Time decay
----------
A correct answer is worth between 50% and 100% of the base points,
decreasing linearly with the time taken:

    time_ratio = max(0, 1 - elapsed_ms / (time_limit * 1000))
    points     = round(base_points * (0.5 + 0.5 * time_ratio))

The server clock is the only time source; client timestamps are never
trusted. Everything here is pure and side-effect free.
"""

from dataclasses import dataclass
import math

from .models import (
    ChoiceQuestion,
    DragDropQuestion,
    PuzzleQuestion,
    Question,
    Submission,
    SurveyQuestion,
)


@dataclass(frozen=True)
class ScoreResult:
    is_correct: bool
    points: int


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def time_ratio(elapsed_ms: float, time_limit: int) -> float:
    """Share of the answer window still remaining (1.0 at once, 0.0 at the limit)."""
    max_time_ms = time_limit * 1000
    elapsed_ms = min(max(elapsed_ms, 0), max_time_ms)
    return max(0.0, 1 - elapsed_ms / max_time_ms)


def points_for_correct(base_points: int, time_limit: int, elapsed_ms: float) -> int:
    """Points awarded to a correct answer given after ``elapsed_ms``."""
    ratio = time_ratio(elapsed_ms, time_limit)
    return _round_half_up(base_points * (0.5 + 0.5 * ratio))


def time_bonus_percentage(elapsed_ms: float, time_limit: int) -> int:
    """Speed bonus as a 0-100 percentage (for display)."""
    return max(0, min(100, int(time_ratio(elapsed_ms, time_limit) * 100)))


def _choice_is_correct(question: ChoiceQuestion, answer_index) -> bool:
    if answer_index is None or not 0 <= answer_index < len(question.options):
        return False
    return question.options[answer_index].is_correct


def _puzzle_is_correct(question: PuzzleQuestion, text_answer) -> bool:
    given = (text_answer or "").strip()
    expected = (question.correct_answer or "").strip()
    if question.case_sensitive:
        return given == expected
    return given.casefold() == expected.casefold()


def _drag_drop_is_correct(question: DragDropQuestion, ordered_items) -> bool:
    given = list(ordered_items or ())
    expected = list(question.items)
    return len(given) == len(expected) and all(a == b for a, b in zip(given, expected))


def score(question: Question, submission: Submission, elapsed_ms: float) -> ScoreResult:
    """
    Decide correctness and points for one submission.

    Malformed submissions (missing or out-of-range index, wrong payload
    field for the kind) are plain wrong answers, never errors.
    """
    if isinstance(question, SurveyQuestion):
        return ScoreResult(is_correct=True, points=0)

    if isinstance(question, ChoiceQuestion):
        is_correct = _choice_is_correct(question, submission.answer_index)
    elif isinstance(question, PuzzleQuestion):
        is_correct = _puzzle_is_correct(question, submission.text_answer)
    elif isinstance(question, DragDropQuestion):
        is_correct = _drag_drop_is_correct(question, submission.ordered_items)
    else:
        raise TypeError(f"Unsupported question kind: {type(question).__name__}")

    if not is_correct:
        return ScoreResult(is_correct=False, points=0)
    return ScoreResult(is_correct=True, points=points_for_correct(question.points, question.time_limit, elapsed_ms))
