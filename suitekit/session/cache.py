"""
Session Cache Module.

Keeps already-established authenticated sessions for the duration of one
run, so a login performed by many tests costs one real login per actor.

- SessionKey: (actor, credential fingerprint); never holds the raw secret.
- CachedSession: the opaque session handle plus its creation time.
- SessionCache: get-or-create with at-most-once creation per key.

Failures are never cached: if creation raises, the next request for the
same key starts from scratch. Evicted handles with a close() method are
closed.
"""

from __future__ import annotations

import hashlib
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional

from loguru import logger

from suitekit.errors import SuitekitError


def fingerprint(identifier: str, secret: str) -> str:
    """Return an opaque, non-reversible reference to a credential pair."""
    digest = hashlib.sha256(f"{identifier}\0{secret}".encode("utf-8"))
    return digest.hexdigest()[:16]


@dataclass(frozen=True)
class SessionKey:
    """
    Identifies one logical session. Equality is structural.

    Attributes:
        actor: Who the session is for (user name, role, ...).
        fingerprint: Opaque reference to the credentials used.
    """

    actor: str
    fingerprint: str

    @classmethod
    def for_credentials(
        cls, identifier: str, secret: str, actor: Optional[str] = None
    ) -> "SessionKey":
        """
        Build a key from credentials without keeping the secret.

        Args:
            identifier: User name / email.
            secret: Password or token.
            actor: Actor label; defaults to the identifier.
        """
        return cls(actor=actor or identifier, fingerprint=fingerprint(identifier, secret))

    def __str__(self) -> str:
        return f"{self.actor}#{self.fingerprint[:8]}"


class SessionCreationError(SuitekitError):
    """Raised when creating a session fails. Local to the triggering test."""

    def __init__(self, message: str, key: Optional[SessionKey] = None) -> None:
        super().__init__(message)
        self.key = key


@dataclass
class CachedSession:
    """
    A cached session entry.

    Attributes:
        key: The key the session was created for.
        handle: Opaque session value handed back to collaborators.
        created_at: Epoch seconds when the session was created.
    """

    key: SessionKey
    handle: Any
    created_at: float = field(default_factory=time.time)

    @property
    def age_sec(self) -> float:
        return time.time() - self.created_at


@dataclass
class _PendingKey:
    """Creation lock for one key, dropped once nobody holds or waits on it."""

    lock: threading.Lock = field(default_factory=threading.Lock)
    users: int = 0


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    creations: int = 0
    failures: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "hits": self.hits,
            "misses": self.misses,
            "creations": self.creations,
            "failures": self.failures,
        }


class SessionCache:
    """
    Run-scoped cache of authenticated sessions.

    Usage::

        cache = SessionCache()
        key = SessionKey.for_credentials("qa@example.com", password)
        session = cache.get_or_create(key, lambda: api_login(config))

        # A test that changes the password must drop the old session
        cache.invalidate(key)

    Thread Safety:
        The entry map is guarded by one lock. Creation is serialized per key,
        so concurrent callers with an equal key wait for a single creation,
        while different keys are created independently.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: Dict[SessionKey, CachedSession] = {}
        self._pending: Dict[SessionKey, _PendingKey] = {}
        self._stats = CacheStats()

    def get_or_create(self, key: SessionKey, create_fn: Callable[[], Any]) -> Any:
        """
        Return the cached session for a key, creating it if needed.

        Args:
            key: The session key.
            create_fn: Zero-argument callable performing the real login.

        Returns:
            The session handle.

        Raises:
            SessionCreationError: If create_fn fails. Nothing is cached.
        """
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._stats.hits += 1
                logger.debug(f"Session cache hit: {key}")
                return entry.handle
            pending = self._pending.setdefault(key, _PendingKey())
            pending.users += 1

        try:
            with pending.lock:
                return self._create(key, create_fn)
        finally:
            with self._lock:
                pending.users -= 1
                if pending.users == 0 and self._pending.get(key) is pending:
                    del self._pending[key]

    def _create(self, key: SessionKey, create_fn: Callable[[], Any]) -> Any:
        """Create a session while holding the key's creation lock."""
        # Another caller may have finished creating while we waited.
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None:
                self._stats.hits += 1
                return entry.handle
            self._stats.misses += 1

        logger.info(f"Creating session for {key}")
        start = time.monotonic()
        try:
            handle = create_fn()
        except SessionCreationError as e:
            self._record_failure(key, e)
            if e.key is None:
                e.key = key
            raise
        except Exception as e:
            self._record_failure(key, e)
            raise SessionCreationError(
                f"Session creation failed for {key}: {e}", key=key
            ) from e

        with self._lock:
            self._entries[key] = CachedSession(key=key, handle=handle)
            self._stats.creations += 1

        logger.info(
            f"Session created for {key} in {time.monotonic() - start:.2f}s"
        )
        return handle

    def get(self, key: SessionKey) -> Optional[CachedSession]:
        """Return the cached entry for a key, or None."""
        with self._lock:
            return self._entries.get(key)

    def invalidate(self, key: SessionKey) -> bool:
        """
        Remove one entry so the next get_or_create recreates it.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            logger.debug(f"Session not cached, nothing to invalidate: {key}")
            return False
        _release(entry)
        logger.info(f"Session invalidated: {key}")
        return True

    def invalidate_actor(self, actor: str) -> int:
        """
        Remove every entry for an actor, whatever credentials were used.

        Returns:
            Number of entries removed.
        """
        with self._lock:
            keys = [key for key in self._entries if key.actor == actor]
            entries = [self._entries.pop(key) for key in keys]
        for entry in entries:
            _release(entry)
        if entries:
            logger.info(f"Invalidated {len(entries)} session(s) for actor '{actor}'")
        return len(entries)

    def clear(self) -> None:
        """Evict all sessions; called when the run ends."""
        with self._lock:
            entries = list(self._entries.values())
            self._entries.clear()
        for entry in entries:
            _release(entry)
        logger.info(
            f"Session cache cleared, {len(entries)} session(s) released, "
            f"stats={self._stats.to_dict()}"
        )

    @property
    def stats(self) -> CacheStats:
        return self._stats

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _record_failure(self, key: SessionKey, error: BaseException) -> None:
        with self._lock:
            self._stats.failures += 1
        logger.warning(f"Session creation failed for {key}: {error}")


def _release(entry: CachedSession) -> None:
    """Close an evicted handle if it can be closed (e.g. requests.Session)."""
    close = getattr(entry.handle, "close", None)
    if not callable(close):
        return
    try:
        close()
    except Exception as e:
        logger.warning(f"Closing session {entry.key} failed: {e}")
