"""
Session lifecycle service for Bloker.

Every player action and every deadline sweep goes through here. For one
session at a time it runs:

    lock -> load -> resolve caller -> engine transition -> save
         -> ledger updates -> system messages -> unlock

The lock is an asyncio.Lock per session id (one process); the store's
versioned save catches writers in other processes. Ledger updates and
messages are applied only after the save succeeded, so a rejected or
conflicting action leaves no trace.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from constants import (
    BETTING_SECONDS,
    FINISHED_SESSION_TTL_SECONDS,
    SETTINGS_VOTE_SECONDS,
)
from game import (
    ActionResult,
    BetKind,
    GameSession,
    LedgerEntry,
    SessionNotFound,
    SettingsVote,
    Side,
)
from logging_config import get_logger, session_id_var

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SessionService:
    """
    Entry points for Bloker sessions.

    Attributes:
        store: SessionStore or MemorySessionStore.
        stats: StatsService, or None to only log ledger updates.
        chat: ChatService, or None to only log announcements.
    """

    def __init__(
        self,
        store,
        stats=None,
        chat=None,
        vote_seconds: int = SETTINGS_VOTE_SECONDS,
        betting_seconds: int = BETTING_SECONDS,
        finished_ttl_seconds: int = FINISHED_SESSION_TTL_SECONDS,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.stats = stats
        self.chat = chat
        self.vote_seconds = vote_seconds
        self.betting_seconds = betting_seconds
        self.finished_ttl = timedelta(seconds=finished_ttl_seconds)
        self.clock = clock or _utcnow
        self._locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = self._locks[session_id] = asyncio.Lock()
        return lock

    async def _load(self, session_id: str) -> GameSession:
        session = await self.store.load_session(session_id)
        if session is None:
            raise SessionNotFound(f"Session {session_id} not found")
        return session

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def create_session(
        self,
        user_a: str,
        user_b: str,
        name_a: str = "",
        name_b: str = "",
    ) -> GameSession:
        """
        Open a session for an accepted challenge.

        Both sides then have `vote_seconds` to vote on settings.
        """
        session = GameSession.create(
            user_a,
            user_b,
            name_a=name_a,
            name_b=name_b,
            now=self.clock(),
            vote_seconds=self.vote_seconds,
            betting_seconds=self.betting_seconds,
        )
        async with self._lock_for(session.session_id):
            await self.store.save_session(session)
            await self._notify(
                session.session_id,
                f"Game created. Vote on settings within {self.vote_seconds} seconds.",
            )
        logger.info(f"Created session {session.session_id} for {user_a} vs {user_b}")
        return session

    async def get_state(self, session_id: str, caller_id: str) -> dict:
        """Current state as seen by the caller."""
        session = await self._load(session_id)
        session.side_for_user(caller_id)
        return session.get_state(caller_id)

    async def find_active_session(self, user_id: str) -> Optional[str]:
        """Id of the user's current unfinished session, if any."""
        session_id = await self.store.find_user_session(user_id)
        if session_id is None:
            return None
        session = await self.store.load_session(session_id)
        if session is None or session.is_finished:
            return None
        return session_id

    # -------------------------------------------------------------------------
    # Player Actions
    # -------------------------------------------------------------------------

    async def submit_vote(
        self,
        session_id: str,
        caller_id: str,
        num_decks: int,
        allow_peek: bool,
    ) -> ActionResult:
        vote = SettingsVote(num_decks=num_decks, allow_peek=allow_peek)
        return await self._transition(
            session_id, caller_id, "vote",
            lambda session, side, now: session.submit_vote(side, vote, now),
        )

    async def bet(
        self,
        session_id: str,
        caller_id: str,
        kind: BetKind,
        amount: Optional[int] = None,
    ) -> ActionResult:
        return await self._transition(
            session_id, caller_id, f"bet:{getattr(kind, 'value', kind)}",
            lambda session, side, now: session.bet(side, kind, amount, now),
        )

    async def hit(self, session_id: str, caller_id: str) -> ActionResult:
        return await self._transition(
            session_id, caller_id, "hit",
            lambda session, side, now: session.hit(side, now),
        )

    async def stay(self, session_id: str, caller_id: str) -> ActionResult:
        return await self._transition(
            session_id, caller_id, "stay",
            lambda session, side, now: session.stay(side, now),
        )

    async def leave(self, session_id: str, caller_id: str) -> ActionResult:
        return await self._transition(
            session_id, caller_id, "leave",
            lambda session, side, now: session.leave(side, now),
        )

    async def _transition(
        self,
        session_id: str,
        caller_id: str,
        action: str,
        apply: Callable[[GameSession, Side, datetime], ActionResult],
    ) -> ActionResult:
        """Run one player action under the session lock."""
        token = session_id_var.set(session_id)
        try:
            async with self._lock_for(session_id):
                session = await self._load(session_id)
                side = session.side_for_user(caller_id)
                result = apply(session, side, self.clock())
                await self.store.save_session(session)
                logger.with_context(side=side.value).info(
                    f"{action} -> {result.outcome.value} "
                    f"(phase={session.phase.value}, round={session.current_round})"
                )
                await self._apply_effects(session, result)
            result.state = session.get_state(caller_id)
            return result
        finally:
            session_id_var.reset(token)

    # -------------------------------------------------------------------------
    # Deadline Sweeps
    # -------------------------------------------------------------------------

    async def resolve_expired_votes(self, now: Optional[datetime] = None) -> int:
        """Resolve settings for every session whose vote deadline passed."""
        return await self._sweep(
            "settings vote",
            lambda session, at: session.expire_settings_vote(at),
            now,
        )

    async def resolve_expired_bets(self, now: Optional[datetime] = None) -> int:
        """Close betting for every session whose betting deadline passed."""
        return await self._sweep(
            "betting",
            lambda session, at: session.expire_betting(at),
            now,
        )

    async def _sweep(
        self,
        label: str,
        expire: Callable[[GameSession, datetime], Optional[ActionResult]],
        now: Optional[datetime],
    ) -> int:
        """
        Apply `expire` to every session.

        A session that fails is logged and left as it was; it is picked up
        again on the next sweep.

        Returns:
            Number of sessions that changed.
        """
        now = now or self.clock()
        changed = 0
        for session_id in await self.store.list_session_ids():
            token = session_id_var.set(session_id)
            try:
                async with self._lock_for(session_id):
                    session = await self.store.load_session(session_id)
                    if session is None:
                        await self._forget(session_id)
                        continue
                    result = expire(session, now)
                    if result is None:
                        continue
                    await self.store.save_session(session)
                    logger.info(
                        f"Expired {label} deadline -> {session.phase.value} "
                        f"(round={session.current_round})"
                    )
                    await self._apply_effects(session, result)
                    changed += 1
            except Exception:
                logger.exception(f"Failed to expire {label} for session {session_id}")
            finally:
                session_id_var.reset(token)
        return changed

    async def remove_finished_sessions(self, now: Optional[datetime] = None) -> int:
        """
        Delete sessions that finished more than `finished_ttl` ago.

        Ids whose session document already expired are dropped from the
        index, and locks of sessions the store no longer lists are released.

        Returns:
            Number of sessions removed.
        """
        now = now or self.clock()
        removed = 0
        session_ids = await self.store.list_session_ids()
        self._prune_locks(set(session_ids))
        for session_id in session_ids:
            try:
                async with self._lock_for(session_id):
                    session = await self.store.load_session(session_id)
                    if session is None:
                        await self._forget(session_id)
                        continue
                    if not session.is_finished:
                        continue
                    finished_at = session.finished_at or session.created_at
                    if now - finished_at < self.finished_ttl:
                        continue
                    await self.store.delete_session(session_id)
                self._locks.pop(session_id, None)
                removed += 1
                logger.debug(f"Removed finished session {session_id}")
            except Exception:
                logger.exception(f"Failed to remove session {session_id}")
        return removed

    def _prune_locks(self, known: set[str]) -> None:
        """Drop idle locks of sessions the store no longer lists."""
        for session_id, lock in list(self._locks.items()):
            if session_id not in known and not lock.locked():
                del self._locks[session_id]

    async def _forget(self, session_id: str) -> None:
        """Drop an id whose session document expired before it was deleted."""
        await self.store.forget_session(session_id)
        self._locks.pop(session_id, None)
        logger.info(f"Forgot expired session {session_id}")

    # -------------------------------------------------------------------------
    # Side Effects
    # -------------------------------------------------------------------------

    async def _apply_effects(self, session: GameSession, result: ActionResult) -> None:
        for entry in result.ledger:
            await self._apply_ledger(entry)
        for message in result.messages:
            await self._notify(session.session_id, message)

    async def _apply_ledger(self, entry: LedgerEntry) -> None:
        if self.stats is None:
            logger.info(
                f"Ledger (no stats backend): {entry.user_id} won={entry.won} "
                f"credits={entry.credit_delta:+d}"
            )
            return
        try:
            if entry.won is None:
                await self.stats.credit_winnings(entry.user_id, entry.credit_delta)
            else:
                await self.stats.record_outcome(entry.user_id, entry.won, entry.credit_delta)
        except Exception as e:
            logger.error(f"Failed to update ledger for {entry.user_id}: {e}")

    async def _notify(self, session_id: str, text: str) -> None:
        if self.chat is None:
            logger.info(f"[{session_id[:8]}] {text}")
            return
        await self.chat.post_system_message(session_id, text)
