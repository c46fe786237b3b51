"""
Shared test doubles: a manual clock, a manual sleeper that replaces
asyncio.sleep for session timers, a broadcast recorder, a recording
Socket.IO server and quiz builders.
"""
import asyncio
import random

import pytest

from quizlive.game_session import GameSession
from quizlive.models import (
    AnswerOption,
    ChoiceQuestion,
    DragDropQuestion,
    PuzzleQuestion,
    QuestionType,
    QuizSnapshot,
    SurveyQuestion,
)


async def settle(rounds: int = 20):
    """Let ready tasks run until they block again."""
    for _ in range(rounds):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------

class FakeClock:
    """Monotonic clock that only moves when told to."""
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


class ManualSleeper:
    """Stand-in for asyncio.sleep: sleepers wake only when fired."""
    def __init__(self):
        self.pending = []  # (delay, future)

    async def sleep(self, delay):
        future = asyncio.get_running_loop().create_future()
        self.pending.append((delay, future))
        await future

    @property
    def waiting(self) -> list:
        return [d for d, f in self.pending if not f.done()]

    async def fire(self, delay=None):
        """Wake every pending sleeper (or only those sleeping ``delay``) and let them run."""
        await settle()
        for d, future in list(self.pending):
            if not future.done() and (delay is None or d == delay):
                future.set_result(None)
        self.pending = [(d, f) for d, f in self.pending if not f.done()]
        await settle()


# ---------------------------------------------------------------------------
# Broadcast recording
# ---------------------------------------------------------------------------

class BroadcastRecorder:
    """Broadcast callback that keeps every (event, data, audience, participant) it gets."""
    def __init__(self):
        self.events = []

    async def __call__(self, event, data, audience, participant_id=None):
        self.events.append((event, data, audience, participant_id))

    def names(self) -> list:
        return [e[0] for e in self.events]

    def all(self, event: str) -> list:
        return [e for e in self.events if e[0] == event]

    def last(self, event: str):
        """Return the (data, audience) of the last broadcast of ``event``."""
        for name, data, audience, _ in reversed(self.events):
            if name == event:
                return data, audience
        return None


class FakeSocketServer:
    """Records what a python-socketio AsyncServer would have sent, and to whom."""
    def __init__(self):
        self.handlers = {}
        self.rooms = {}
        self.emitted = []  # (event, data, target, recipients)
        self.closed_rooms = []

    def on(self, event, handler=None, namespace=None):
        self.handlers[event] = handler

    async def emit(self, event, data=None, to=None, room=None, skip_sid=None, namespace=None):
        target = to or room
        if target in self.rooms:
            recipients = set(self.rooms[target])
        else:
            recipients = {target}
        self.emitted.append((event, data, target, recipients))

    async def enter_room(self, sid, room, namespace=None):
        self.rooms.setdefault(room, set()).add(sid)

    async def leave_room(self, sid, room, namespace=None):
        self.rooms.get(room, set()).discard(sid)

    async def close_room(self, room, namespace=None):
        self.rooms.pop(room, None)
        self.closed_rooms.append(room)

    async def trigger(self, event, sid, *args):
        return await self.handlers[event](sid, *args)

    def inbox(self, sid) -> list:
        """(event, data) pairs delivered to ``sid``, in order."""
        return [(e, d) for e, d, _, recipients in self.emitted if sid in recipients]

    def received(self, sid, event) -> list:
        return [d for e, d in self.inbox(sid) if e == event]

    def last(self, sid, event):
        found = self.received(sid, event)
        return found[-1] if found else None


# ---------------------------------------------------------------------------
# Quiz builders
# ---------------------------------------------------------------------------

def choice(text="Question?", correct=0, options=("A", "B", "C", "D"), time_limit=20, points=1000,
           kind=QuestionType.MULTIPLE_CHOICE):
    return ChoiceQuestion(
        text=text,
        options=tuple(AnswerOption(o, i == correct) for i, o in enumerate(options)),
        time_limit=time_limit,
        points=points,
        type=kind,
    )


def survey(text="Favourite?", options=("Red", "Green"), time_limit=20):
    return SurveyQuestion(text=text, options=tuple(AnswerOption(o) for o in options), time_limit=time_limit)


def puzzle(answer="Paris", case_sensitive=False, time_limit=20, points=1000):
    return PuzzleQuestion(text="Capital of France?", correct_answer=answer,
                          case_sensitive=case_sensitive, time_limit=time_limit, points=points)


def drag_drop(items=("A", "B", "C"), time_limit=20, points=1000):
    return DragDropQuestion(text="Put in order", items=tuple(items), time_limit=time_limit, points=points)


def make_quiz(*questions, title="Test Quiz", quiz_id="quiz-1"):
    if not questions:
        questions = (choice(), choice())
    return QuizSnapshot(id=quiz_id, title=title, questions=tuple(questions))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return ManualSleeper()


@pytest.fixture
def recorder():
    return BroadcastRecorder()


@pytest.fixture
def make_session(clock, sleeper, recorder):
    """Factory for sessions wired to the fake clock, sleeper and recorder."""
    def _make(quiz=None, pin="123456", **options):
        options.setdefault("lead_in_seconds", 3)
        session = GameSession(
            pin,
            quiz or make_quiz(),
            clock=clock,
            sleep=sleeper.sleep,
            rng=random.Random(7),
            **options,
        )
        session.set_broadcast_callback(recorder)
        return session

    return _make


async def open_lobby(session, nicknames=("Alice", "Bob"), host_id="host"):
    """Attach a host and join players p1, p2, ... Returns the participant ids."""
    outcome = await session.attach_host(host_id)
    assert outcome.ok
    ids = []
    for i, nickname in enumerate(nicknames, start=1):
        outcome = await session.join(f"p{i}", nickname)
        assert outcome.ok, outcome.error
        ids.append(f"p{i}")
    return ids


async def start_playing(session, sleeper, host_id="host"):
    """Start the game and run through the lead-in to the first question."""
    outcome = await session.start(host_id)
    assert outcome.ok, outcome.error
    await sleeper.fire(session.lead_in_seconds)
