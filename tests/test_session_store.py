from __future__ import annotations

import pytest

from session.idle import attach_idle_renew, is_attached, record_activity, reset_idle_renew
from session.store import MemorySessionBackend, SessionStore, get_session_store, set_session_store


def test_unlock_then_expire(session_store, clock):
    assert session_store.is_unlocked() is False

    session_store.unlock("abc", "secret", 60)
    assert session_store.is_unlocked() is True
    assert session_store.address == "abc"
    assert session_store.password == "secret"
    assert session_store.remaining_seconds() == 60

    clock.advance(61)
    assert session_store.is_unlocked() is False
    assert session_store.remaining_seconds() == 0


def test_unlock_requires_secret(session_store):
    with pytest.raises(ValueError):
        session_store.unlock("abc", "", 60)


def test_lock_clears_secret_but_keeps_address(session_store):
    session_store.unlock("abc", "secret", 60)
    session_store.lock()

    assert session_store.is_unlocked() is False
    assert session_store.password is None
    assert session_store.address == "abc"


def test_renew_extends_only_with_secret(session_store, clock):
    assert session_store.renew(60) is False

    session_store.unlock("abc", "secret", 10)
    clock.advance(5)
    assert session_store.renew(60) is True
    assert session_store.remaining_seconds() == 60


def test_listeners_see_unlock_and_lock(session_store):
    seen = []
    unsubscribe = session_store.subscribe(lambda store: seen.append(store.is_unlocked()))

    session_store.unlock("abc", "secret", 60)
    session_store.lock()
    unsubscribe()
    session_store.unlock("abc", "secret", 60)

    assert seen == [True, False]


def test_listener_failures_do_not_break_unlock(session_store):
    def boom(store):
        raise RuntimeError("listener broke")

    session_store.subscribe(boom)
    session_store.unlock("abc", "secret", 60)
    assert session_store.is_unlocked() is True


def test_state_persists_through_backend(clock):
    backend = MemorySessionBackend(clock)
    SessionStore(backend, clock=clock).unlock("abc", "secret", 60)

    reloaded = SessionStore(backend, clock=clock)
    assert reloaded.is_unlocked() is True
    assert reloaded.address == "abc"


def test_backend_ttl_expiry(clock):
    backend = MemorySessionBackend(clock)
    backend.set("k", {"v": 1}, ttl_seconds=10)
    assert backend.get("k")["v"] == 1
    clock.advance(11)
    assert backend.get("k") is None


def test_process_wide_store():
    store = get_session_store()
    assert get_session_store() is store
    set_session_store(None)
    assert get_session_store() is not store


def test_idle_renew_attaches_once(session_store, clock):
    assert attach_idle_renew(300, session_store) is True
    assert attach_idle_renew(999, session_store) is False
    assert is_attached() is True

    assert record_activity("click") is False

    session_store.unlock("abc", "secret", 10)
    clock.advance(5)
    assert record_activity("keydown") is True
    assert session_store.remaining_seconds() == 300
    assert record_activity("scroll-wheel") is False

    reset_idle_renew()
    assert is_attached() is False
    assert record_activity("click") is False


def test_renew_does_not_revive_expired_session(session_store, clock):
    session_store.unlock("abc", "secret", 10)
    clock.advance(20)
    assert session_store.renew(60) is False
    assert session_store.is_unlocked() is False


def test_activity_after_expiry_keeps_session_locked(session_store, clock):
    attach_idle_renew(600, session_store)
    session_store.unlock("abc", "secret", 10)
    clock.advance(20)

    assert record_activity("mousemove") is False
    assert session_store.is_unlocked() is False
    assert session_store.remaining_seconds() == 0
