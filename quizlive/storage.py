"""QuizLive - Score Storage

Persistence sink for end-of-game results. Writes are best-effort: the
session calls them off the event loop and only logs failures.
"""

import sqlite3
import logging
from typing import Any, Dict, List, Optional, Protocol

from .errors import PersistenceError

logger = logging.getLogger(__name__)


class PersistenceSink(Protocol):
    def save_player_score(self, game_id: str, player_id: str, nickname: str, score: int) -> None: ...

    def save_game_status(self, game_id: str, pin: str, quiz_id: str, status: str) -> None: ...


class SqliteScoreStore:
    """Stores games and final player scores in SQLite."""

    def __init__(self, db_path: str = "quizlive.db"):
        self.db_path = db_path
        self.init_db()

    def _get_connection(self):
        return sqlite3.connect(self.db_path)

    def init_db(self):
        """Create the tables if they do not exist."""
        try:
            with self._get_connection() as conn:
                cursor = conn.cursor()

                cursor.execute("""
                CREATE TABLE IF NOT EXISTS games (
                    id TEXT PRIMARY KEY,
                    pin TEXT NOT NULL,
                    quiz_id TEXT NOT NULL,
                    status TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """)

                cursor.execute("""
                CREATE TABLE IF NOT EXISTS player_scores (
                    game_id TEXT NOT NULL,
                    player_id TEXT NOT NULL,
                    nickname TEXT NOT NULL,
                    score INTEGER NOT NULL,
                    PRIMARY KEY (game_id, player_id)
                )
                """)

                conn.commit()
                logger.info(f"Score database ready at {self.db_path}")
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not initialise database {self.db_path}: {e}") from e

    def save_player_score(self, game_id: str, player_id: str, nickname: str, score: int) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute("""
                INSERT INTO player_scores (game_id, player_id, nickname, score)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (game_id, player_id) DO UPDATE SET score = excluded.score
                """, (game_id, player_id, nickname, score))
                conn.commit()
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not save score for {nickname}: {e}") from e

    def save_game_status(self, game_id: str, pin: str, quiz_id: str, status: str) -> None:
        try:
            with self._get_connection() as conn:
                conn.execute("""
                INSERT INTO games (id, pin, quiz_id, status)
                VALUES (?, ?, ?, ?)
                ON CONFLICT (id) DO UPDATE SET status = excluded.status, updated_at = CURRENT_TIMESTAMP
                """, (game_id, pin, quiz_id, status))
                conn.commit()
                logger.info(f"Game {pin} saved with status {status}")
        except sqlite3.Error as e:
            raise PersistenceError(f"Could not save game {pin}: {e}") from e

    def get_scores(self, game_id: str) -> List[Dict[str, Any]]:
        """Saved scores of one game, best first."""
        with self._get_connection() as conn:
            rows = conn.execute(
                "SELECT player_id, nickname, score FROM player_scores WHERE game_id = ? ORDER BY score DESC",
                (game_id,),
            ).fetchall()
        return [{"player_id": r[0], "nickname": r[1], "score": r[2]} for r in rows]

    def get_game_status(self, game_id: str) -> Optional[str]:
        with self._get_connection() as conn:
            row = conn.execute("SELECT status FROM games WHERE id = ?", (game_id,)).fetchone()
        return row[0] if row else None
