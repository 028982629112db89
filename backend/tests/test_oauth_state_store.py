
import pytest

from stocksync.services.oauth_state_store import InMemoryOAuthStateStore, run_state_sweeper


class FakeClock:

    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def test_state_can_be_used_once():
    store = InMemoryOAuthStateStore(ttl_seconds=600, clock=FakeClock())
    state = store.issue("acc-1", "user-1")

    pending = store.pop(state)

    assert pending.account_id == "acc-1"
    assert pending.user_id == "user-1"
    assert store.pop(state) is None


def test_states_are_unique():
    store = InMemoryOAuthStateStore(ttl_seconds=600)
    assert store.issue("acc-1", "user-1") != store.issue("acc-1", "user-1")


def test_expired_state_is_rejected():
    clock = FakeClock()
    store = InMemoryOAuthStateStore(ttl_seconds=600, clock=clock)
    state = store.issue("acc-1", "user-1")

    clock.now += 601

    assert store.pop(state) is None


def test_sweep_removes_only_expired_entries():
    clock = FakeClock()
    store = InMemoryOAuthStateStore(ttl_seconds=600, clock=clock)
    store.issue("old", "user-1")
    clock.now += 500
    fresh = store.issue("new", "user-1")
    clock.now += 200

    assert store.sweep() == 1
    assert len(store) == 1
    assert store.pop(fresh).account_id == "new"


class StopSweeper(Exception):
    pass


@pytest.mark.asyncio
async def test_sweeper_loop_runs_on_interval():
    clock = FakeClock()
    store = InMemoryOAuthStateStore(ttl_seconds=10, clock=clock)
    store.issue("acc-1", "user-1")
    clock.now += 11
    sleeps = []

    async def fake_sleep(seconds):
        sleeps.append(seconds)
        if len(sleeps) > 1:
            raise StopSweeper()

    with pytest.raises(StopSweeper):
        await run_state_sweeper(store, interval_seconds=60, sleep=fake_sleep)

    assert sleeps == [60, 60]
    assert len(store) == 0
