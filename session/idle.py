from __future__ import annotations

import logging
import threading
from typing import Optional

from session.store import SessionStore, get_session_store

logger = logging.getLogger(__name__)

ACTIVITY_KINDS = ("click", "keydown", "mousemove", "touchstart")

_guard = threading.Lock()
_attached_ttl: Optional[int] = None
_attached_store: Optional[SessionStore] = None


def attach_idle_renew(ttl_seconds: int, store: Optional[SessionStore] = None) -> bool:
    """
    Attach activity-driven renewal once per process.

    Returns True only for the call that attached; later calls are no-ops.
    """
    global _attached_ttl, _attached_store

    with _guard:
        if _attached_ttl is not None:
            return False
        _attached_ttl = ttl_seconds
        _attached_store = store
    logger.info("Idle renewal attached (ttl=%ss)", ttl_seconds)
    return True


def is_attached() -> bool:
    return _attached_ttl is not None


def record_activity(kind: str = "click") -> bool:
    """
    Report user activity; renews an unlocked session. Returns whether it renewed.
    """
    if _attached_ttl is None:
        return False
    if kind not in ACTIVITY_KINDS:
        logger.debug("Ignoring unknown activity kind %r", kind)
        return False
    store = _attached_store or get_session_store()
    return store.renew(_attached_ttl)


def reset_idle_renew() -> None:
    global _attached_ttl, _attached_store

    with _guard:
        _attached_ttl = None
        _attached_store = None
