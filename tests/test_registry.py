"""
Tests for registry.py: PIN allocation, lookup and removal on close.
"""
import random

import pytest

from conftest import choice, make_quiz, open_lobby, start_playing
from quizlive.errors import DuplicatePinError
from quizlive.registry import SessionRegistry


class TestRegistry:

    def test_create_and_get(self):
        registry = SessionRegistry()
        session = registry.create("123456", make_quiz())
        assert registry.get("123456") is session
        assert registry.get(123456) is session
        assert "123456" in registry
        assert len(registry) == 1

    def test_unknown_pin(self):
        assert SessionRegistry().get("000000") is None

    def test_duplicate_pin_is_refused(self):
        registry = SessionRegistry()
        registry.create("123456", make_quiz())
        with pytest.raises(DuplicatePinError) as exc:
            registry.create("123456", make_quiz())
        assert exc.value.pin == "123456"

    def test_generated_pins_are_six_digits_and_unused(self):
        registry = SessionRegistry(rng=random.Random(1))
        pins = {registry.create_with_new_pin(make_quiz()).pin for _ in range(50)}
        assert len(pins) == 50
        assert all(len(p) == 6 and p.isdigit() for p in pins)

    def test_generate_pin_skips_pins_in_use(self):
        first = SessionRegistry(rng=random.Random(5)).generate_pin()
        registry = SessionRegistry(rng=random.Random(5))
        registry.create(first, make_quiz())
        assert registry.generate_pin() != first

    def test_session_options_are_passed_on(self):
        registry = SessionRegistry(session_options={"lead_in_seconds": 1.5, "nickname_max_length": 8})
        session = registry.create("111111", make_quiz(), game_id="g-7")
        assert session.lead_in_seconds == 1.5
        assert session.nickname_max_length == 8
        assert session.game_id == "g-7"

    def test_remove(self):
        registry = SessionRegistry()
        registry.create("123456", make_quiz())
        assert registry.remove("123456") is not None
        assert registry.get("123456") is None
        assert registry.remove("123456") is None

    def test_closing_a_session_removes_it(self):
        registry = SessionRegistry()
        session = registry.create("123456", make_quiz())
        session.close()
        assert registry.get("123456") is None

    def test_old_session_closing_does_not_remove_its_successor(self):
        registry = SessionRegistry()
        old = registry.create("123456", make_quiz())
        registry.remove("123456")
        new = registry.create("123456", make_quiz())
        old.close()
        assert registry.get("123456") is new

    def test_list_and_close_all(self):
        registry = SessionRegistry()
        a = registry.create("111111", make_quiz(title="A"))
        registry.create("222222", make_quiz(title="B"))
        assert sorted(s["quizTitle"] for s in registry.list_sessions()) == ["A", "B"]
        registry.close_all()
        assert len(registry) == 0
        assert a.closed


@pytest.mark.asyncio
async def test_host_disconnect_while_playing_unregisters_the_session(clock, sleeper, recorder):
    registry = SessionRegistry(session_options={"clock": clock, "sleep": sleeper.sleep, "lead_in_seconds": 3})
    session = registry.create("654321", make_quiz(choice(), choice()))
    session.set_broadcast_callback(recorder)
    await open_lobby(session)
    await start_playing(session, sleeper)

    await session.remove_participant("host")
    assert recorder.last("game:cancelled") is not None
    assert registry.get("654321") is None
