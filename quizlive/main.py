"""
QuizLive - Main Server
======================

Entry point. Combines FastAPI (REST API) and Socket.IO (realtime events)
in a single ASGI application.

- REST: create a game from a catalog quiz, check a PIN, read results
- Socket.IO: everything that happens inside a running game

To run:
    python -m quizlive.main
or:
    uvicorn quizlive.main:create_app --factory --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional, Union

import socketio
import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel

from . import __version__
from .catalog import JsonQuizCatalog
from .config import Config
from .gateway import RealtimeGateway
from .models import GameStatus
from .registry import SessionRegistry
from .storage import SqliteScoreStore

logger = logging.getLogger(__name__)


class CreateGameRequest(BaseModel):
    quizId: Optional[Union[int, str]] = None


def configure_logging(config_class=Config):
    logging.basicConfig(
        level=getattr(logging, str(config_class.LOG_LEVEL).upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def create_api(config_class=Config, catalog=None, store=None, registry: Optional[SessionRegistry] = None) -> FastAPI:
    """
    Build the FastAPI app with its Socket.IO server and collaborators.

    The registry, catalog, gateway and Socket.IO server are exposed on
    ``app.state``; pass ``catalog``, ``store`` or ``registry`` to replace
    the ones built from the configuration.
    """
    if catalog is None:
        catalog = JsonQuizCatalog(config_class.QUIZ_CATALOG_PATH)
    if store is None and config_class.DATABASE_PATH:
        store = SqliteScoreStore(config_class.DATABASE_PATH)
    if registry is None:
        registry = SessionRegistry(session_options={
            "lead_in_seconds": config_class.LEAD_IN_SECONDS,
            "finished_ttl_seconds": config_class.FINISHED_SESSION_TTL_SEC,
            "nickname_max_length": config_class.NICKNAME_MAX_LENGTH,
            "persistence": store,
        })

    # Events of one connection are handled in arrival order.
    sio = socketio.AsyncServer(
        async_mode='asgi',
        cors_allowed_origins=config_class.cors_origins(),
        async_handlers=False,
        logger=False,
        engineio_logger=False
    )
    gateway = RealtimeGateway(sio, registry)
    gateway.register_handlers()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("QuizLive server starting")
        yield
        registry.close_all()
        logger.info("QuizLive server stopped")

    app = FastAPI(
        title="QuizLive",
        description="Real-time multiplayer quiz sessions",
        version=__version__,
        lifespan=lifespan
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if config_class.cors_origins() == '*' else config_class.cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.config = config_class
    app.state.sio = sio
    app.state.registry = registry
    app.state.catalog = catalog
    app.state.gateway = gateway
    app.state.store = store

    # =========================================================================
    # REST ROUTES
    # =========================================================================

    @app.post("/api/games", status_code=201)
    async def create_game(request: CreateGameRequest):
        """Create a session from a catalog quiz and hand out its PIN."""
        if request.quizId is None or str(request.quizId).strip() == "":
            raise HTTPException(status_code=400, detail="quizId is required")

        quiz = catalog.get_quiz(str(request.quizId))
        if quiz is None:
            raise HTTPException(status_code=404, detail="Quiz not found")

        session = registry.create_with_new_pin(quiz)
        gateway.bind_session(session)
        return {"pin": session.pin, "gameId": session.game_id}

    @app.get("/api/games/{pin}/check")
    async def check_game(pin: str):
        """Lets a player check a PIN before joining."""
        session = registry.get(pin)
        if session is None or session.closed:
            raise HTTPException(status_code=404, detail="Game not found")
        if session.status != GameStatus.WAITING:
            raise HTTPException(status_code=400, detail="The game has already started")
        return {
            "exists": True,
            "quizTitle": session.quiz.title,
            "playerCount": session.player_count,
        }

    @app.get("/api/games/{pin}/results")
    async def game_results(pin: str):
        session = registry.get(pin)
        if session is None:
            raise HTTPException(status_code=404, detail="Game not found")
        return session.results_snapshot()

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "version": __version__, "activeGames": len(registry)}

    return app


def create_app(config_class=Config) -> socketio.ASGIApp:
    """Factory for the combined ASGI application (FastAPI + Socket.IO)."""
    configure_logging(config_class)
    api = create_api(config_class)
    return socketio.ASGIApp(api.state.sio, api)


def main():
    uvicorn.run(
        "quizlive.main:create_app",
        factory=True,
        host=Config.HOST,
        port=Config.PORT
    )


if __name__ == "__main__":
    main()
