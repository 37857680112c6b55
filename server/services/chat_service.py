"""
Table chat for Bloker sessions.

The game engine only ever posts system messages (round starts, results,
forfeits). Posting is fire-and-forget: a failed insert is logged and the
game carries on.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import asyncpg

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS chat_messages (
    id BIGSERIAL PRIMARY KEY,
    session_id VARCHAR(64) NOT NULL,
    user_id VARCHAR(64),
    message TEXT NOT NULL,
    is_system_message BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_chat_messages_session ON chat_messages(session_id, created_at);
"""


@dataclass
class ChatMessage:
    session_id: str
    message: str
    user_id: Optional[str] = None
    is_system_message: bool = False
    created_at: Optional[datetime] = None


class ChatService:
    """PostgreSQL-backed chat log."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def initialize_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def post_system_message(self, session_id: str, text: str) -> None:
        """
        Post an announcement to a session's chat.

        Never raises; failures are logged.
        """
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO chat_messages (session_id, user_id, message, is_system_message)
                    VALUES ($1, NULL, $2, TRUE)
                    """,
                    session_id,
                    text,
                )
        except Exception as e:
            logger.error(f"Failed to post system message to {session_id}: {e}")

    async def get_messages(self, session_id: str, limit: int = 50) -> list[ChatMessage]:
        """Most recent messages for a session, oldest first."""
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT session_id, user_id, message, is_system_message, created_at
                FROM chat_messages
                WHERE session_id = $1
                ORDER BY created_at DESC, id DESC
                LIMIT $2
                """,
                session_id,
                limit,
            )
        return [
            ChatMessage(
                session_id=row["session_id"],
                user_id=row["user_id"],
                message=row["message"],
                is_system_message=row["is_system_message"],
                created_at=row["created_at"],
            )
            for row in reversed(rows)
        ]
