"""
Redis-backed session store.

Each Bloker session is stored as one JSON document. Saves are
compare-and-swap on the session's `version` field (WATCH/MULTI), so two
server processes can never interleave a read-modify-write on the same
session: the slower writer gets a ConcurrencyError and nothing is written.

Key patterns:
- bloker:session:{session_id}      -> JSON (full session state)
- bloker:sessions:active           -> Set (session ids)
- bloker:user:{user_id}:session    -> String (user's current session)
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import redis.asyncio as redis
from redis.exceptions import WatchError

from game import GameSession

logger = logging.getLogger(__name__)


class ConcurrencyError(Exception):
    """Raised when optimistic concurrency check fails."""
    pass


class SessionStore:
    """Redis-backed persistence for GameSession aggregates."""

    SESSION_KEY = "bloker:session:{session_id}"
    ACTIVE_SESSIONS_KEY = "bloker:sessions:active"
    USER_SESSION_KEY = "bloker:user:{user_id}:session"

    # Abandoned sessions expire on their own
    SESSION_TTL = timedelta(hours=24)

    def __init__(self, redis_client: redis.Redis):
        """
        Initialize session store with Redis client.

        Args:
            redis_client: Async Redis client.
        """
        self.redis = redis_client

    @classmethod
    async def create(cls, redis_url: str) -> "SessionStore":
        """
        Create a SessionStore with a new Redis connection.

        Args:
            redis_url: Redis connection URL.

        Returns:
            Configured SessionStore instance.
        """
        client = redis.from_url(redis_url, decode_responses=False)
        await client.ping()
        logger.info("SessionStore connected to Redis")
        return cls(client)

    async def close(self) -> None:
        """Close the Redis connection."""
        await self.redis.close()

    # -------------------------------------------------------------------------
    # Session Operations
    # -------------------------------------------------------------------------

    async def load_session(self, session_id: str) -> Optional[GameSession]:
        """
        Load a session.

        Args:
            session_id: Session to look up.

        Returns:
            The session, or None if not found.
        """
        raw = await self.redis.get(self.SESSION_KEY.format(session_id=session_id))
        if raw is None:
            return None
        return GameSession.from_dict(json.loads(raw))

    async def save_session(self, session: GameSession) -> None:
        """
        Persist a session if nobody else saved it since it was loaded.

        On success `session.version` is incremented.

        Raises:
            ConcurrencyError: The stored version no longer matches.
        """
        key = self.SESSION_KEY.format(session_id=session.session_id)
        ttl = int(self.SESSION_TTL.total_seconds())
        new_version = session.version + 1

        async with self.redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                raw = await pipe.get(key)
                stored_version = json.loads(raw)["version"] if raw is not None else 0
                if stored_version != session.version:
                    await pipe.unwatch()
                    raise ConcurrencyError(
                        f"Session {session.session_id} is at version {stored_version}, "
                        f"write was based on {session.version}"
                    )

                data = session.to_dict()
                data["version"] = new_version

                pipe.multi()
                pipe.set(key, json.dumps(data), ex=ttl)
                pipe.sadd(self.ACTIVE_SESSIONS_KEY, session.session_id)
                for player in (session.side_a, session.side_b):
                    pipe.set(
                        self.USER_SESSION_KEY.format(user_id=player.user_id),
                        session.session_id,
                        ex=ttl,
                    )
                await pipe.execute()
            except WatchError:
                raise ConcurrencyError(
                    f"Session {session.session_id} changed during save"
                )

        session.version = new_version
        logger.debug(f"Saved session {session.session_id} v{new_version} ({session.phase.value})")

    async def delete_session(self, session_id: str) -> None:
        """
        Delete a session and its user mappings.

        User mappings are only removed if they still point at this session.
        """
        session = await self.load_session(session_id)

        pipe = self.redis.pipeline()
        pipe.delete(self.SESSION_KEY.format(session_id=session_id))
        pipe.srem(self.ACTIVE_SESSIONS_KEY, session_id)
        await pipe.execute()

        if session:
            for player in (session.side_a, session.side_b):
                user_key = self.USER_SESSION_KEY.format(user_id=player.user_id)
                current = await self.redis.get(user_key)
                if current is not None and _decode(current) == session_id:
                    await self.redis.delete(user_key)
        logger.debug(f"Deleted session {session_id}")

    async def forget_session(self, session_id: str) -> None:
        """
        Drop a session id from the active set.

        Used once the session document has expired on its own, so there is
        nothing else left to clean up.
        """
        await self.redis.srem(self.ACTIVE_SESSIONS_KEY, session_id)
        logger.debug(f"Forgot expired session {session_id}")

    async def list_session_ids(self) -> list[str]:
        """All known session ids."""
        members = await self.redis.smembers(self.ACTIVE_SESSIONS_KEY)
        return sorted(_decode(m) for m in members)

    async def find_user_session(self, user_id: str) -> Optional[str]:
        """The session a user most recently played in, if it still exists."""
        raw = await self.redis.get(self.USER_SESSION_KEY.format(user_id=user_id))
        if raw is None:
            return None
        session_id = _decode(raw)
        if not await self.redis.exists(self.SESSION_KEY.format(session_id=session_id)):
            return None
        return session_id


class MemorySessionStore:
    """
    In-process session store with the same contract as SessionStore.

    Used when no REDIS_URL is configured (single-process deployments and
    tests). Sessions are kept serialized so callers never share objects.
    A session not saved for SESSION_TTL is evicted, like the Redis key TTL.
    """

    SESSION_TTL = SessionStore.SESSION_TTL

    def __init__(self, clock: Optional[Callable[[], datetime]] = None) -> None:
        """
        Initialize an empty store.

        Args:
            clock: Returns the current time; used for idle eviction.
        """
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self._sessions: dict[str, str] = {}
        self._saved_at: dict[str, datetime] = {}
        self._user_sessions: dict[str, str] = {}

    def _evict_expired(self) -> None:
        cutoff = self.clock() - self.SESSION_TTL
        for session_id, saved_at in list(self._saved_at.items()):
            if saved_at <= cutoff:
                logger.debug(f"Evicted idle session {session_id}")
                self._drop(session_id)

    def _drop(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)
        self._saved_at.pop(session_id, None)
        for user_id, sid in list(self._user_sessions.items()):
            if sid == session_id:
                del self._user_sessions[user_id]

    async def load_session(self, session_id: str) -> Optional[GameSession]:
        self._evict_expired()
        raw = self._sessions.get(session_id)
        if raw is None:
            return None
        return GameSession.from_dict(json.loads(raw))

    async def save_session(self, session: GameSession) -> None:
        self._evict_expired()
        raw = self._sessions.get(session.session_id)
        stored_version = json.loads(raw)["version"] if raw is not None else 0
        if stored_version != session.version:
            raise ConcurrencyError(
                f"Session {session.session_id} is at version {stored_version}, "
                f"write was based on {session.version}"
            )
        data = session.to_dict()
        data["version"] = session.version + 1
        self._sessions[session.session_id] = json.dumps(data)
        self._saved_at[session.session_id] = self.clock()
        for player in (session.side_a, session.side_b):
            self._user_sessions[player.user_id] = session.session_id
        session.version += 1

    async def delete_session(self, session_id: str) -> None:
        self._drop(session_id)

    async def forget_session(self, session_id: str) -> None:
        self._drop(session_id)

    async def list_session_ids(self) -> list[str]:
        self._evict_expired()
        return sorted(self._sessions)

    async def find_user_session(self, user_id: str) -> Optional[str]:
        self._evict_expired()
        session_id = self._user_sessions.get(user_id)
        if session_id not in self._sessions:
            return None
        return session_id


def _decode(value) -> str:
    return value.decode() if isinstance(value, bytes) else value
