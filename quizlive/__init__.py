"""QuizLive - real-time multiplayer quiz server (FastAPI + Socket.IO)."""

__version__ = "1.0.0"
