"""
Tests for the in-memory session store.
"""

import threading

from vcare_access.auth.sessions import MemorySessionStore


class Clock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_create_and_get():
    store = MemorySessionStore(ttl_seconds=60)
    sid = store.create(7)
    assert store.get(sid) == 7
    assert len(store) == 1


def test_ids_are_unique_and_opaque():
    store = MemorySessionStore()
    ids = {store.create(1) for _ in range(50)}
    assert len(ids) == 50
    assert all(len(s) >= 32 for s in ids)


def test_expired_session_is_gone():
    clock = Clock()
    store = MemorySessionStore(ttl_seconds=60, clock=clock)
    sid = store.create(7)
    clock.now += 59
    assert store.get(sid) == 7
    clock.now += 1
    assert store.get(sid) is None
    assert len(store) == 0


def test_invalidate():
    store = MemorySessionStore()
    sid = store.create(7)
    store.invalidate(sid)
    assert store.get(sid) is None
    store.invalidate(sid)
    store.invalidate(None)


def test_blank_id_is_none():
    store = MemorySessionStore()
    assert store.get(None) is None
    assert store.get("") is None


def test_create_purges_expired_entries():
    clock = Clock()
    store = MemorySessionStore(ttl_seconds=10, clock=clock)
    store.create(1)
    store.create(2)
    clock.now += 11
    store.create(3)
    assert len(store) == 1


def test_parallel_create_get_invalidate():
    store = MemorySessionStore(ttl_seconds=60)
    barrier = threading.Barrier(40)
    errors = []
    kept = []
    kept_lock = threading.Lock()

    def worker(user_id):
        barrier.wait()
        try:
            for _ in range(50):
                sid = store.create(user_id)
                if store.get(sid) != user_id:
                    errors.append(f"lost session for {user_id}")
                store.invalidate(sid)
                if store.get(sid) is not None:
                    errors.append(f"session survived invalidate for {user_id}")
            last = store.create(user_id)
            with kept_lock:
                kept.append((last, user_id))
        except Exception as e:
            errors.append(repr(e))

    threads = [threading.Thread(target=worker, args=(n,)) for n in range(40)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(store) == 40
    assert all(store.get(sid) == uid for sid, uid in kept)
