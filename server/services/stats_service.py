"""
Stats service for Bloker player results and credits.

Keeps one ledger row per player: match wins and losses, lifetime winnings
and the spendable credit balance. Round pots are credited as soon as a
round is won; the match result is recorded once the session finishes.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import asyncpg

from config import config

logger = logging.getLogger(__name__)


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS player_ledger (
    user_id VARCHAR(64) PRIMARY KEY,
    wins INT NOT NULL DEFAULT 0,
    losses INT NOT NULL DEFAULT 0,
    total_winnings INT NOT NULL DEFAULT 0,
    credits INT NOT NULL DEFAULT 2500,
    updated_at TIMESTAMPTZ DEFAULT NOW()
);
"""


@dataclass
class PlayerLedger:
    """A player's results and balance."""
    user_id: str
    wins: int = 0
    losses: int = 0
    total_winnings: int = 0
    credits: int = 0
    updated_at: Optional[datetime] = None


class StatsService:
    """
    PostgreSQL-backed ledger.

    Credits never go below zero; only positive deltas count toward
    lifetime winnings.
    """

    def __init__(self, pool: asyncpg.Pool, starting_credits: Optional[int] = None):
        """
        Initialize the stats service.

        Args:
            pool: asyncpg connection pool.
            starting_credits: Balance given to players on their first entry.
        """
        self.pool = pool
        self.starting_credits = (
            starting_credits if starting_credits is not None else config.STARTING_CREDITS
        )

    @classmethod
    async def create(cls, postgres_url: str) -> "StatsService":
        """Create a StatsService with its own pool and ensure the schema exists."""
        pool = await asyncpg.create_pool(postgres_url, min_size=1, max_size=10)
        service = cls(pool)
        await service.initialize_schema()
        logger.info("StatsService connected to PostgreSQL")
        return service

    async def initialize_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA_SQL)

    async def close(self) -> None:
        await self.pool.close()

    async def record_outcome(self, user_id: str, won: bool, credit_delta: int = 0) -> None:
        """
        Record a finished match for one player.

        Args:
            user_id: Player to update.
            won: True for a win, False for a loss.
            credit_delta: Credits gained (positive) or forfeited (negative).
        """
        await self._apply(
            user_id,
            wins=1 if won else 0,
            losses=0 if won else 1,
            credit_delta=credit_delta,
        )
        logger.info(
            f"Recorded {'win' if won else 'loss'} for {user_id} (credits {credit_delta:+d})"
        )

    async def credit_winnings(self, user_id: str, amount: int) -> None:
        """
        Credit a round pot without touching win/loss counts.

        Args:
            user_id: Player who won the round.
            amount: Pot size; non-positive amounts are ignored.
        """
        if amount <= 0:
            return
        await self._apply(user_id, wins=0, losses=0, credit_delta=amount)
        logger.debug(f"Credited {amount} to {user_id}")

    async def _apply(self, user_id: str, wins: int, losses: int, credit_delta: int) -> None:
        winnings = max(credit_delta, 0)
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO player_ledger (user_id, wins, losses, total_winnings, credits)
                VALUES ($1, $2, $3, $4, GREATEST(0, $5 + $6))
                ON CONFLICT (user_id) DO UPDATE SET
                    wins = player_ledger.wins + EXCLUDED.wins,
                    losses = player_ledger.losses + EXCLUDED.losses,
                    total_winnings = player_ledger.total_winnings + EXCLUDED.total_winnings,
                    credits = GREATEST(0, player_ledger.credits + $6),
                    updated_at = NOW()
                """,
                user_id,
                wins,
                losses,
                winnings,
                self.starting_credits,
                credit_delta,
            )

    async def get_player_ledger(self, user_id: str) -> Optional[PlayerLedger]:
        """
        Get a player's ledger row.

        Returns:
            PlayerLedger, or None if the player has never finished a round.
        """
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                SELECT user_id, wins, losses, total_winnings, credits, updated_at
                FROM player_ledger
                WHERE user_id = $1
                """,
                user_id,
            )
        if not row:
            return None
        return PlayerLedger(
            user_id=row["user_id"],
            wins=row["wins"],
            losses=row["losses"],
            total_winnings=row["total_winnings"],
            credits=row["credits"],
            updated_at=row["updated_at"],
        )
