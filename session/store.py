from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Listener = Callable[["SessionStore"], None]


class SessionBackend(Protocol):
    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, state: Dict[str, Any], *, ttl_seconds: Optional[int] = None) -> None: ...

    def delete(self, key: str) -> None: ...


class MemorySessionBackend:
    """
    In-process key/value store with optional per-key expiry.
    """

    def __init__(self, clock: Clock = time.time):
        self._clock = clock
        self._store: Dict[str, Dict[str, Any]] = {}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        state = self._store.get(key)
        if not state:
            return None
        expires_at = state.get("expires_at")
        if expires_at is not None and expires_at <= self._clock():
            self._store.pop(key, None)
            return None
        return state

    def set(self, key: str, state: Dict[str, Any], *, ttl_seconds: Optional[int] = None) -> None:
        now = self._clock()
        state = dict(state)
        state["updated_at"] = now
        state["expires_at"] = now + ttl_seconds if ttl_seconds is not None else None
        self._store[key] = state

    def delete(self, key: str) -> None:
        self._store.pop(key, None)


@dataclass(frozen=True)
class SessionSnapshot:
    address: Optional[str]
    unlocked: bool
    unlocked_until: float
    remaining_seconds: int


class SessionStore:
    """
    Time-limited unlock state: unlocked iff now < unlocked_until and a secret is held.

    Only unlock/lock/renew mutate it. Listeners are told about unlock and lock.
    """

    KEY = "session"

    def __init__(self, backend: Optional[SessionBackend] = None, *, clock: Clock = time.time):
        self._clock = clock
        self._backend: SessionBackend = backend if backend is not None else MemorySessionBackend(clock)
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()

    # ---------------------------
    # state
    # ---------------------------

    def _state(self) -> Dict[str, Any]:
        return self._backend.get(self.KEY) or {}

    def _save(self, **state: Any) -> None:
        self._backend.set(self.KEY, state)

    @property
    def address(self) -> Optional[str]:
        return self._state().get("address")

    @property
    def password(self) -> Optional[str]:
        return self._state().get("password")

    @property
    def unlocked_until(self) -> float:
        return float(self._state().get("unlocked_until") or 0)

    def is_unlocked(self) -> bool:
        state = self._state()
        return bool(state.get("password")) and self._clock() < float(state.get("unlocked_until") or 0)

    def remaining_seconds(self) -> int:
        if not self.is_unlocked():
            return 0
        return max(0, int(self.unlocked_until - self._clock()))

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            address=self.address,
            unlocked=self.is_unlocked(),
            unlocked_until=self.unlocked_until,
            remaining_seconds=self.remaining_seconds(),
        )

    # ---------------------------
    # mutations
    # ---------------------------

    def unlock(self, address: str, secret: str, ttl_seconds: int) -> None:
        if not secret:
            raise ValueError("unlock requires a non-empty secret")
        with self._lock:
            self._save(
                address=address,
                password=secret,
                unlocked_until=self._clock() + ttl_seconds,
            )
        logger.info("Session unlocked for %ss", ttl_seconds)
        self._notify()

    def lock(self) -> None:
        with self._lock:
            self._save(address=self.address, password=None, unlocked_until=0)
        logger.info("Session locked")
        self._notify()

    def renew(self, ttl_seconds: int) -> bool:
        """
        Push expiry to now + ttl while still unlocked. Returns whether it renewed.

        An expired session stays locked; only unlock() can reopen it.
        """
        with self._lock:
            state = self._state()
            if not state.get("password"):
                return False
            if self._clock() >= float(state.get("unlocked_until") or 0):
                return False
            self._save(
                address=state.get("address"),
                password=state.get("password"),
                unlocked_until=self._clock() + ttl_seconds,
            )
        return True

    # ---------------------------
    # listeners
    # ---------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Session listener failed")


_STORE: Optional[SessionStore] = None


def get_session_store() -> SessionStore:
    """
    Process-wide session store.
    """
    global _STORE

    if _STORE is None:
        _STORE = SessionStore()
    return _STORE


def set_session_store(store: Optional[SessionStore]) -> None:
    global _STORE
    _STORE = store
