"""
QuizLive - Game Session
=======================

State machine for one running game. The session is the single source of
truth for its players, current question, answer ledger and timers; every
change is pushed to clients through the broadcast callback.

Concepts
--------
1. SINGLE AUTHORITY: only the session mutates its players and ledger
2. MUTUAL EXCLUSION: one asyncio.Lock per session, held for each operation
   (timer callbacks included), so operations never interleave
3. IDEMPOTENT REVEAL: revealing a question twice is a no-op, which settles
   the race between the host's reveal and the auto-reveal timer
4. STALE TIMERS: each timer captures the question index it was armed for
   and does nothing if the session has moved on
"""

import asyncio
import logging
import random
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple

from . import scoring
from .errors import ErrorCode, Outcome
from .models import (
    AnswerResult,
    ChoiceQuestion,
    DragDropQuestion,
    GameStatus,
    PlayerState,
    PuzzleQuestion,
    Question,
    QuizSnapshot,
    Submission,
    SubmittedAnswer,
    SurveyQuestion,
    leaderboard_entries,
    rank_players,
)
from .utils import validate_nickname

logger = logging.getLogger(__name__)

LEAD_IN_SECONDS = 3.0
LEADERBOARD_SIZE = 5
PODIUM_SIZE = 3


class Audience(Enum):
    """Who receives a broadcast."""
    ALL = "all"                  # host and players
    PLAYERS = "players"          # players only
    HOST = "host"                # host only
    PARTICIPANT = "participant"  # a single participant


BroadcastCallback = Callable[[str, dict, Audience, Optional[str]], Awaitable[None]]


@dataclass(frozen=True)
class Departure:
    """Who left, as reported by remove_participant."""
    role: str  # "host" or "player"
    nickname: Optional[str] = None


class GameSession:
    """
    One active game.

    The session does not know about sockets. It only calls the broadcast
    callback with an event name, a payload and an audience; the gateway
    decides which connections that means.
    """

    def __init__(
        self,
        pin: str,
        quiz: QuizSnapshot,
        game_id: Optional[str] = None,
        *,
        lead_in_seconds: float = LEAD_IN_SECONDS,
        finished_ttl_seconds: Optional[float] = None,
        nickname_max_length: int = 20,
        persistence=None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
        on_closed: Optional[Callable[['GameSession'], None]] = None,
    ):
        self.pin = pin
        self.game_id = game_id or uuid.uuid4().hex
        self.quiz = quiz
        self.status = GameStatus.WAITING
        self.current_question_index = -1
        self.question_start_timestamp: Optional[float] = None
        self.players: Dict[str, PlayerState] = {}
        self.answers: Dict[Tuple[str, int], SubmittedAnswer] = {}
        self.host_id: Optional[str] = None
        self.final_summary: Optional[dict] = None
        self.closed = False

        self.lead_in_seconds = lead_in_seconds
        self.finished_ttl_seconds = finished_ttl_seconds
        self.nickname_max_length = nickname_max_length
        self._persistence = persistence
        self._clock = clock
        self._sleep = sleep
        self._rng = rng or random.Random()
        self._on_closed = on_closed

        self._broadcast_callback: Optional[BroadcastCallback] = None
        self._lock = asyncio.Lock()
        self._join_counter = 0
        self._revealed: Dict[int, dict] = {}
        self._settled: Set[int] = set()
        self._lead_in_task: Optional[asyncio.Task] = None
        self._reveal_task: Optional[asyncio.Task] = None
        self._eviction_task: Optional[asyncio.Task] = None
        self._persist_task: Optional[asyncio.Task] = None

    # ------------------------------------------------------------------
    # Broadcast
    # ------------------------------------------------------------------

    def set_broadcast_callback(self, callback: BroadcastCallback) -> None:
        self._broadcast_callback = callback

    @property
    def has_broadcast_callback(self) -> bool:
        return self._broadcast_callback is not None

    async def broadcast(self, event: str, data: dict, audience: Audience = Audience.ALL,
                        participant_id: Optional[str] = None) -> None:
        if self._broadcast_callback:
            await self._broadcast_callback(event, data, audience, participant_id)
            logger.debug(f"[{self.pin}] broadcast {event} -> {audience.value}")

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def current_question(self) -> Optional[Question]:
        return self.quiz.question_at(self.current_question_index)

    @property
    def question_open(self) -> bool:
        """True while answers for the current question are accepted."""
        return (
            not self.closed
            and self.status == GameStatus.PLAYING
            and self.current_question is not None
            and self.current_question_index not in self._revealed
        )

    def is_host(self, participant_id: Optional[str]) -> bool:
        return participant_id is not None and participant_id == self.host_id

    def has_participant(self, participant_id: Optional[str]) -> bool:
        return participant_id in self.players or self.is_host(participant_id)

    def is_nickname_available(self, nickname: str) -> bool:
        wanted = nickname.strip().casefold()
        return all(p.nickname.casefold() != wanted for p in self.players.values())

    def ranking(self) -> List[PlayerState]:
        return rank_players(list(self.players.values()))

    def host_summary(self) -> dict:
        return {
            "pin": self.pin,
            "quizTitle": self.quiz.title,
            "questionCount": self.quiz.question_count,
        }

    def results_snapshot(self) -> dict:
        """Standings for the HTTP results endpoint; frozen once finished."""
        if self.final_summary is not None:
            players = self.final_summary["leaderboard"]
        else:
            players = leaderboard_entries(list(self.players.values()))
        return {
            "quizTitle": self.quiz.title,
            "status": self.status.value,
            "players": players,
            "totalQuestions": self.quiz.question_count,
        }

    def to_dict(self) -> dict:
        return {
            "pin": self.pin,
            "gameId": self.game_id,
            "status": self.status.value,
            "quizTitle": self.quiz.title,
            "playerCount": self.player_count,
            "currentQuestion": self.current_question_index + 1,
            "totalQuestions": self.quiz.question_count,
        }

    def _roster_payload(self, nickname: str) -> dict:
        return {
            "nickname": nickname,
            "players": [p.to_dict() for p in sorted(self.players.values(), key=lambda p: p.join_order)],
            "playerCount": self.player_count,
        }

    def _answers_for(self, index: int) -> List[SubmittedAnswer]:
        return [a for (_, i), a in self.answers.items() if i == index]

    def _tally(self) -> dict:
        index = self.current_question_index
        count = sum(1 for pid in self.players if (pid, index) in self.answers)
        return {"count": count, "total": self.player_count}

    # ------------------------------------------------------------------
    # Lobby
    # ------------------------------------------------------------------

    async def attach_host(self, participant_id: str) -> Outcome:
        """Register the controlling connection. One host per session."""
        async with self._lock:
            if self.closed:
                return Outcome.failure(ErrorCode.PIN_NOT_FOUND)
            if self.host_id is not None and self.host_id != participant_id:
                return Outcome.failure(ErrorCode.NOT_HOST, "This game already has a host")
            self.host_id = participant_id
            logger.info(f"[{self.pin}] host attached")
            return Outcome.success(self.host_summary())

    async def join(self, participant_id: str, nickname) -> Outcome:
        """Add a player while the session is waiting."""
        async with self._lock:
            if self.closed:
                return Outcome.failure(ErrorCode.PIN_NOT_FOUND)
            if self.status != GameStatus.WAITING:
                return Outcome.failure(ErrorCode.ALREADY_STARTED)

            ok, message = validate_nickname(nickname, self.nickname_max_length)
            if not ok:
                return Outcome.failure(ErrorCode.INVALID_NICKNAME, message)
            nickname = nickname.strip()

            if participant_id in self.players or self.is_host(participant_id):
                return Outcome.failure(ErrorCode.INVALID_PAYLOAD, "You have already joined this game")
            if not self.is_nickname_available(nickname):
                return Outcome.failure(ErrorCode.NICKNAME_TAKEN)

            self._join_counter += 1
            player = PlayerState.create(nickname, self._join_counter, participant_id)
            self.players[participant_id] = player
            logger.info(f"[{self.pin}] player '{nickname}' joined ({self.player_count} players)")

            await self.broadcast("player:new", self._roster_payload(nickname), Audience.HOST)
            return Outcome.success(player)

    async def start(self, participant_id: str) -> Outcome:
        """Host starts the game; the first question follows after the lead-in."""
        async with self._lock:
            if self.closed:
                return Outcome.failure(ErrorCode.PIN_NOT_FOUND)
            if not self.is_host(participant_id):
                return Outcome.failure(ErrorCode.NOT_HOST)
            if self.status != GameStatus.WAITING:
                return Outcome.failure(ErrorCode.ALREADY_STARTED)
            if not self.players:
                return Outcome.failure(ErrorCode.NO_PLAYERS)

            self.status = GameStatus.PLAYING
            logger.info(f"[{self.pin}] game started with {self.player_count} players")
            await self.broadcast("game:started", {"leadIn": self.lead_in_seconds}, Audience.ALL)
            self._lead_in_task = asyncio.create_task(self._run_lead_in())
            return Outcome.success()

    async def _run_lead_in(self) -> None:
        try:
            await self._sleep(self.lead_in_seconds)
            async with self._lock:
                if self.closed or self.status != GameStatus.PLAYING or self.current_question_index != -1:
                    return
                await self._advance()
        except asyncio.CancelledError:
            logger.debug(f"[{self.pin}] lead-in cancelled")

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    async def advance_question(self) -> Outcome:
        """Move to the next question, or end the game when none is left."""
        async with self._lock:
            failure = self._check_playing()
            if failure:
                return failure
            await self._advance()
            return Outcome.success(self.current_question_index)

    async def next_question(self, participant_id: str) -> Outcome:
        """Host-triggered advance."""
        async with self._lock:
            if self.closed:
                return Outcome.failure(ErrorCode.PIN_NOT_FOUND)
            if not self.is_host(participant_id):
                return Outcome.failure(ErrorCode.NOT_HOST)
            failure = self._check_playing()
            if failure:
                return failure
            await self._advance()
            return Outcome.success(self.current_question_index)

    def _check_playing(self) -> Optional[Outcome]:
        if self.closed:
            return Outcome.failure(ErrorCode.PIN_NOT_FOUND)
        if self.status == GameStatus.FINISHED:
            return Outcome.failure(ErrorCode.GAME_FINISHED)
        if self.status != GameStatus.PLAYING:
            return Outcome.failure(ErrorCode.NOT_PLAYING)
        return None

    async def _advance(self) -> None:
        self._cancel_task(self._lead_in_task)
        self._cancel_task(self._reveal_task)
        if self.current_question is not None:
            self._settle_unanswered(self.current_question_index)

        self.current_question_index += 1
        index = self.current_question_index
        question = self.current_question
        if question is None:
            await self._end()
            return

        self.question_start_timestamp = self._clock()
        total = self.quiz.question_count
        logger.info(f"[{self.pin}] question {index + 1}/{total} ({question.type.value})")

        await self.broadcast("question:show", question.to_host_dict(index, total), Audience.HOST)
        await self.broadcast("question:start", question.to_player_dict(index, total, self._rng), Audience.PLAYERS)

        self._reveal_task = asyncio.create_task(self._run_question_timer(index, question.time_limit))

    async def _run_question_timer(self, index: int, seconds: float) -> None:
        """Auto-reveal once the answer window closes, unless already done."""
        try:
            await self._sleep(seconds)
            async with self._lock:
                if self.closed or self.current_question_index != index or index in self._revealed:
                    logger.debug(f"[{self.pin}] stale timer for question {index + 1} ignored")
                    return
                logger.info(f"[{self.pin}] time is up for question {index + 1}")
                await self._reveal(index)
        except asyncio.CancelledError:
            logger.debug(f"[{self.pin}] timer for question {index + 1} cancelled")

    async def submit_answer(self, participant_id: str, submission: Submission) -> Outcome:
        """Record one answer for the current question and score it."""
        async with self._lock:
            if self.closed:
                return Outcome.failure(ErrorCode.PIN_NOT_FOUND)
            if self.status == GameStatus.FINISHED:
                return Outcome.failure(ErrorCode.GAME_FINISHED)
            player = self.players.get(participant_id)
            if player is None:
                return Outcome.failure(ErrorCode.NOT_A_PLAYER)
            if not self.question_open:
                return Outcome.failure(ErrorCode.NO_ACTIVE_QUESTION)

            index = self.current_question_index
            if (participant_id, index) in self.answers:
                return Outcome.failure(ErrorCode.ALREADY_ANSWERED)

            question = self.current_question
            elapsed_ms = max(0, int(round((self._clock() - self.question_start_timestamp) * 1000)))
            result = scoring.score(question, submission, elapsed_ms)
            is_survey = isinstance(question, SurveyQuestion)

            player.apply_result(index, result.is_correct, result.points, affects_streak=not is_survey)
            self.answers[(participant_id, index)] = SubmittedAnswer(
                participant_id=participant_id,
                question_index=index,
                submission=submission,
                is_correct=result.is_correct,
                points=result.points,
                elapsed_ms=elapsed_ms,
            )
            logger.info(
                f"[{self.pin}] '{player.nickname}' answered question {index + 1} "
                f"(correct={result.is_correct}, points={result.points}, {elapsed_ms}ms)"
            )

            await self.broadcast("host:answerCount", self._tally(), Audience.HOST)
            return Outcome.success(AnswerResult(
                is_correct=result.is_correct,
                points=result.points,
                total_score=player.score,
                streak=player.streak,
                is_survey=is_survey,
            ))

    # ------------------------------------------------------------------
    # Results
    # ------------------------------------------------------------------

    async def reveal_results(self, participant_id: Optional[str] = None) -> Outcome:
        """
        Close the current question and broadcast its results.

        ``participant_id`` is the requesting host; None means an internal
        call. Revealing an already revealed question returns the same
        results without broadcasting again.
        """
        async with self._lock:
            if self.closed:
                return Outcome.failure(ErrorCode.PIN_NOT_FOUND)
            if participant_id is not None and not self.is_host(participant_id):
                return Outcome.failure(ErrorCode.NOT_HOST)
            failure = self._check_playing()
            if failure:
                return failure
            index = self.current_question_index
            if self.current_question is None:
                return Outcome.failure(ErrorCode.NO_ACTIVE_QUESTION)
            if index in self._revealed:
                return Outcome.success(self._revealed[index])
            return Outcome.success(await self._reveal(index))

    async def _reveal(self, index: int) -> dict:
        self._cancel_task(self._reveal_task)
        question = self.quiz.question_at(index)
        self._settle_unanswered(index)
        answers = self._answers_for(index)

        results = {
            "questionIndex": index,
            "type": question.type.value,
            "correctAnswers": question.correct_indices(),
            "correctAnswer": question.correct_answer if isinstance(question, PuzzleQuestion) else None,
            "answerStats": answer_stats(question, answers),
            "leaderboard": leaderboard_entries(list(self.players.values()), LEADERBOARD_SIZE),
            "isLastQuestion": index == self.quiz.question_count - 1,
            "isSurvey": isinstance(question, SurveyQuestion),
            "answerCount": len(answers),
            "playerCount": self.player_count,
        }
        if isinstance(question, DragDropQuestion):
            results["correctOrder"] = list(question.items)

        self._revealed[index] = results
        logger.info(f"[{self.pin}] results for question {index + 1}: {len(answers)}/{self.player_count} answered")
        await self.broadcast("question:results", results, Audience.ALL)
        return results

    def _settle_unanswered(self, index: int) -> None:
        """Players who let a scored question pass lose their streak (once)."""
        if index in self._settled:
            return
        self._settled.add(index)
        if isinstance(self.quiz.question_at(index), SurveyQuestion):
            return
        for participant_id, player in self.players.items():
            if (participant_id, index) not in self.answers:
                player.streak = 0

    # ------------------------------------------------------------------
    # End of game
    # ------------------------------------------------------------------

    async def end(self) -> Outcome:
        """Finish the game now (normally reached by advancing past the last question)."""
        async with self._lock:
            failure = self._check_playing()
            if failure:
                return failure
            await self._end()
            return Outcome.success(self.final_summary)

    async def _end(self) -> None:
        self._cancel_task(self._lead_in_task)
        self._cancel_task(self._reveal_task)

        leaderboard = leaderboard_entries(list(self.players.values()))
        self.final_summary = {
            "podium": leaderboard[:PODIUM_SIZE],
            "leaderboard": leaderboard,
            "quizTitle": self.quiz.title,
            "totalQuestions": self.quiz.question_count,
        }
        self.status = GameStatus.FINISHED
        logger.info(f"[{self.pin}] game finished, winner: {leaderboard[0]['nickname'] if leaderboard else 'none'}")

        await self.broadcast("game:ended", self.final_summary, Audience.ALL)

        final_scores = [(p.participant_id, p.nickname, p.score) for p in self.ranking()]
        self._persist_task = asyncio.create_task(self._persist_results(final_scores))

        if self.finished_ttl_seconds is not None:
            self._eviction_task = asyncio.create_task(self._evict_after(self.finished_ttl_seconds))

    async def _persist_results(self, final_scores: List[Tuple[str, str, int]]) -> None:
        """Best-effort write of final scores. The live outcome stands regardless."""
        if self._persistence is None:
            return
        for participant_id, nickname, score in final_scores:
            try:
                await asyncio.to_thread(
                    self._persistence.save_player_score, self.game_id, participant_id, nickname, score
                )
            except Exception as e:
                logger.error(f"[{self.pin}] could not save score of '{nickname}': {e}")
        try:
            await asyncio.to_thread(
                self._persistence.save_game_status, self.game_id, self.pin, self.quiz.id, GameStatus.FINISHED.value
            )
        except Exception as e:
            logger.error(f"[{self.pin}] could not save game status: {e}")

    async def wait_persisted(self) -> None:
        """Wait for the end-of-game write, if one is running."""
        if self._persist_task is not None:
            await self._persist_task

    async def _evict_after(self, delay: float) -> None:
        try:
            await self._sleep(delay)
            async with self._lock:
                self._close("finished session evicted")
        except asyncio.CancelledError:
            logger.debug(f"[{self.pin}] eviction cancelled")

    # ------------------------------------------------------------------
    # Departures
    # ------------------------------------------------------------------

    async def remove_participant(self, participant_id: str) -> Outcome:
        """
        Handle a disconnect or voluntary leave.

        A player is simply removed. The host leaving cancels the whole
        session: everyone is told and the session closes.
        """
        async with self._lock:
            if self.closed:
                return Outcome.success(None)

            if self.is_host(participant_id):
                self.host_id = None
                if self.status != GameStatus.FINISHED:
                    await self.broadcast(
                        "game:cancelled", {"message": ErrorCode.HOST_LEFT.default_message}, Audience.ALL
                    )
                self._close("host left")
                return Outcome.success(Departure(role="host"))

            player = self.players.pop(participant_id, None)
            if player is None:
                return Outcome.success(None)

            logger.info(f"[{self.pin}] player '{player.nickname}' left ({self.player_count} remaining)")
            await self.broadcast("player:left", self._roster_payload(player.nickname), Audience.HOST)
            if self.question_open:
                await self.broadcast("host:answerCount", self._tally(), Audience.HOST)
            return Outcome.success(Departure(role="player", nickname=player.nickname))

    def close(self, reason: str = "closed") -> None:
        """Stop timers and detach from the registry. Safe to call twice."""
        self._close(reason)

    def _close(self, reason: str) -> None:
        if self.closed:
            return
        self.closed = True
        self._cancel_task(self._lead_in_task)
        self._cancel_task(self._reveal_task)
        self._cancel_task(self._eviction_task)
        logger.info(f"[{self.pin}] session closed: {reason}")
        if self._on_closed:
            self._on_closed(self)

    @staticmethod
    def _cancel_task(task: Optional[asyncio.Task]) -> None:
        # A timer that is itself running the transition must not cancel itself.
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()


def answer_stats(question: Question, answers: List[SubmittedAnswer]) -> List[dict]:
    """Per-question breakdown shown with the results."""
    if isinstance(question, (ChoiceQuestion, SurveyQuestion)):
        stats = [{"index": i, "text": o.text, "count": 0} for i, o in enumerate(question.options)]
        for answer in answers:
            i = answer.submission.answer_index
            if i is not None and 0 <= i < len(stats):
                stats[i]["count"] += 1
        return stats

    if isinstance(question, (PuzzleQuestion, DragDropQuestion)):
        correct = sum(1 for a in answers if a.is_correct)
        labels = ("Correct", "Incorrect") if isinstance(question, PuzzleQuestion) else ("Correct order", "Incorrect order")
        return [
            {"index": 0, "text": labels[0], "count": correct},
            {"index": 1, "text": labels[1], "count": len(answers) - correct},
        ]

    raise TypeError(f"Unsupported question kind: {type(question).__name__}")
