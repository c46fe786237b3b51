"""
QuizLive - Realtime Gateway
===========================

Socket.IO front of the session engine. Each inbound event becomes exactly
one GameSession call; each session broadcast is routed to its audience.

Rooms per game PIN:
- ``game:{pin}``     everyone (host and players)
- ``players:{pin}``  players only
- ``host:{pin}``     the host only

Participants are known to sessions by a session-scoped id, not by their
socket id; the gateway keeps the mapping between the two.

Ordering: the server runs with ``async_handlers=False`` so the events of
one connection are handled in the order they arrive; the session lock
serialises operations coming from different connections.
"""

import functools
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, Optional, Tuple

from .errors import ErrorCode, GameError
from .game_session import Audience, GameSession
from .models import Submission
from .registry import SessionRegistry
from .utils import normalize_pin

logger = logging.getLogger(__name__)

HOST = "host"
PLAYER = "player"


@dataclass
class Connection:
    sid: str
    pin: str
    participant_id: str
    role: str


def game_room(pin: str) -> str:
    return f"game:{pin}"


def players_room(pin: str) -> str:
    return f"players:{pin}"


def host_room(pin: str) -> str:
    return f"host:{pin}"


def _guarded(handler):
    """Run a handler, answering the sender with an error event if it blows up."""
    @functools.wraps(handler)
    async def wrapper(self, sid, data=None):
        try:
            await handler(self, sid, data if isinstance(data, dict) else {})
        except Exception as e:
            logger.exception(f"Error in {handler.__name__} for {sid}: {e}")
            await self.sio.emit("error", {"message": "Internal server error", "code": "INTERNAL"}, to=sid)
    return wrapper


class RealtimeGateway:
    """Translates Socket.IO events into session operations and back."""

    def __init__(self, sio, registry: SessionRegistry):
        self.sio = sio
        self.registry = registry
        self._connections: Dict[str, Connection] = {}  # sid -> connection
        self._sids: Dict[str, str] = {}  # participant id -> sid

    def register_handlers(self) -> None:
        self.sio.on("connect", self.on_connect)
        self.sio.on("disconnect", self.on_disconnect)
        self.sio.on("host:join", self.on_host_join)
        self.sio.on("player:join", self.on_player_join)
        self.sio.on("host:start", self.on_host_start)
        self.sio.on("player:answer", self.on_player_answer)
        self.sio.on("host:showResults", self.on_host_show_results)
        self.sio.on("host:nextQuestion", self.on_host_next_question)
        self.sio.on("session:leave", self.on_session_leave)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    def bind_session(self, session: GameSession) -> None:
        session.set_broadcast_callback(functools.partial(self.deliver, session.pin))

    async def deliver(self, pin: str, event: str, data: dict, audience: Audience,
                      participant_id: Optional[str] = None) -> None:
        """Broadcast callback of every session: map an audience to a room."""
        if audience == Audience.ALL:
            room = game_room(pin)
        elif audience == Audience.PLAYERS:
            room = players_room(pin)
        elif audience == Audience.HOST:
            room = host_room(pin)
        else:
            room = self._sids.get(participant_id)
            if room is None:
                return
        await self.sio.emit(event, data, room=room)

    async def send_error(self, sid: str, error: GameError) -> None:
        logger.warning(f"Rejected action from {sid}: {error.code.wire_name} ({error.message})")
        await self.sio.emit("error", error.to_dict(), to=sid)

    # ------------------------------------------------------------------
    # Connection bookkeeping
    # ------------------------------------------------------------------

    def _get_session(self, pin: str) -> Optional[GameSession]:
        session = self.registry.get(pin)
        if session is None or session.closed:
            return None
        if not session.has_broadcast_callback:
            self.bind_session(session)
        return session

    def _remember(self, sid: str, pin: str, participant_id: str, role: str) -> Connection:
        conn = Connection(sid=sid, pin=pin, participant_id=participant_id, role=role)
        self._connections[sid] = conn
        self._sids[participant_id] = sid
        return conn

    def _forget(self, sid: str) -> Optional[Connection]:
        conn = self._connections.pop(sid, None)
        if conn:
            self._sids.pop(conn.participant_id, None)
        return conn

    def _live_connection(self, sid: str) -> Optional[Connection]:
        """The sid's connection, dropped if its session is gone or no longer knows it."""
        conn = self._connections.get(sid)
        if conn is None:
            return None
        session = self._get_session(conn.pin)
        if session is None or not session.has_participant(conn.participant_id):
            self._forget(sid)
            return None
        return conn

    def connection(self, sid: str) -> Optional[Connection]:
        return self._connections.get(sid)

    async def _resolve(self, sid: str, data: dict) -> Tuple[Optional[GameSession], Optional[str]]:
        """Session addressed by the event and the sender's id in it (None if not a member)."""
        conn = self._connections.get(sid)
        pin = normalize_pin(data.get("pin")) or (conn.pin if conn else "")
        session = self._get_session(pin)
        if session is None:
            await self.send_error(sid, GameError.of(ErrorCode.PIN_NOT_FOUND))
            return None, None
        participant_id = conn.participant_id if conn and conn.pin == pin else None
        return session, participant_id

    async def _drop_game(self, pin: str) -> None:
        """Forget every connection of a cancelled game and close its rooms."""
        for sid, conn in list(self._connections.items()):
            if conn.pin == pin:
                self._forget(sid)
        for room in (game_room(pin), players_room(pin), host_room(pin)):
            await self.sio.close_room(room)

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------

    async def on_connect(self, sid, environ, auth=None):
        logger.info(f"Client connected: {sid}")

    async def on_disconnect(self, sid, *args):
        logger.info(f"Client disconnected: {sid}")
        await self._depart(sid)

    @_guarded
    async def on_host_join(self, sid, data):
        pin = normalize_pin(data.get("pin"))
        session = self._get_session(pin)
        if session is None:
            await self.send_error(sid, GameError.of(ErrorCode.PIN_NOT_FOUND))
            return

        existing = self._live_connection(sid)
        if existing and (existing.pin != pin or existing.role != HOST):
            await self.send_error(sid, GameError.of(ErrorCode.INVALID_PAYLOAD, "You are already in a game"))
            return

        participant_id = existing.participant_id if existing else str(uuid.uuid4())
        outcome = await session.attach_host(participant_id)
        if not outcome.ok:
            await self.send_error(sid, outcome.error)
            return

        self._remember(sid, pin, participant_id, HOST)
        await self.sio.enter_room(sid, game_room(pin))
        await self.sio.enter_room(sid, host_room(pin))
        await self.sio.emit("host:joined", outcome.value, to=sid)

    @_guarded
    async def on_player_join(self, sid, data):
        if self._live_connection(sid):
            await self.send_error(sid, GameError.of(ErrorCode.INVALID_PAYLOAD, "You are already in a game"))
            return

        pin = normalize_pin(data.get("pin"))
        session = self._get_session(pin)
        if session is None:
            await self.send_error(sid, GameError.of(ErrorCode.PIN_NOT_FOUND))
            return

        participant_id = str(uuid.uuid4())
        outcome = await session.join(participant_id, data.get("nickname"))
        if not outcome.ok:
            await self.send_error(sid, outcome.error)
            return

        player = outcome.value
        self._remember(sid, pin, participant_id, PLAYER)
        await self.sio.enter_room(sid, game_room(pin))
        await self.sio.enter_room(sid, players_room(pin))
        await self.sio.emit("player:joined", {
            "nickname": player.nickname,
            "playerCount": session.player_count,
            "playerId": participant_id,
        }, to=sid)

    @_guarded
    async def on_host_start(self, sid, data):
        session, participant_id = await self._resolve(sid, data)
        if session is None:
            return
        if participant_id is None:
            await self.send_error(sid, GameError.of(ErrorCode.NOT_HOST))
            return
        outcome = await session.start(participant_id)
        if not outcome.ok:
            await self.send_error(sid, outcome.error)

    @_guarded
    async def on_player_answer(self, sid, data):
        session, participant_id = await self._resolve(sid, data)
        if session is None:
            return
        if participant_id is None:
            await self.send_error(sid, GameError.of(ErrorCode.NOT_A_PLAYER))
            return
        outcome = await session.submit_answer(participant_id, Submission.from_payload(data))
        if not outcome.ok:
            await self.send_error(sid, outcome.error)
            return
        await self.sio.emit("player:answered", outcome.value.to_dict(), to=sid)

    @_guarded
    async def on_host_show_results(self, sid, data):
        session, participant_id = await self._resolve(sid, data)
        if session is None:
            return
        if participant_id is None:
            await self.send_error(sid, GameError.of(ErrorCode.NOT_HOST))
            return
        outcome = await session.reveal_results(participant_id)
        if not outcome.ok:
            await self.send_error(sid, outcome.error)

    @_guarded
    async def on_host_next_question(self, sid, data):
        session, participant_id = await self._resolve(sid, data)
        if session is None:
            return
        if participant_id is None:
            await self.send_error(sid, GameError.of(ErrorCode.NOT_HOST))
            return
        outcome = await session.next_question(participant_id)
        if not outcome.ok:
            await self.send_error(sid, outcome.error)

    @_guarded
    async def on_session_leave(self, sid, data):
        conn = await self._depart(sid)
        if conn:
            for room in (game_room(conn.pin), players_room(conn.pin), host_room(conn.pin)):
                await self.sio.leave_room(sid, room)
        await self.sio.emit("session:left", {}, to=sid)

    async def _depart(self, sid: str) -> Optional[Connection]:
        conn = self._forget(sid)
        if conn is None:
            return None
        session = self.registry.get(conn.pin)
        if session is None:
            return conn
        outcome = await session.remove_participant(conn.participant_id)
        departure = outcome.value
        if departure is not None and departure.role == HOST:
            await self._drop_game(conn.pin)
        return conn
