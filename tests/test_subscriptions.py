import time

import pytest

from session import paths
from session.overlay import OverlayReader
from session.subscriptions import (
    POLL,
    PUSH,
    PollingSubscription,
    PushSubscription,
    category_of,
    watch,
)
from util.errors import OwnershipViolation
from util.store import InMemoryStore


@pytest.mark.parametrize("path, category", [
    (paths.ACTIVE_GAME, PUSH),
    (paths.game_state("wheel"), PUSH),
    (paths.LEADERBOARD, POLL),
    (paths.CHAT, POLL),
    (paths.PRESENCE, POLL),
    (paths.END_OF_SESSION, POLL),
    (paths.STARTING_BANKROLL, POLL),
])
def test_field_categories(path, category):
    assert category_of(path) == category


def test_watch_picks_the_strategy():
    s = InMemoryStore()
    push = watch(s, paths.ACTIVE_GAME, lambda v: None, start=False)
    poll = watch(s, paths.CHAT, lambda v: None, start=False)
    assert isinstance(push, PushSubscription)
    assert isinstance(poll, PollingSubscription)


def test_push_subscription_sees_every_change():
    s = InMemoryStore()
    seen = []
    sub = PushSubscription(s, "games/wheel/state", seen.append).start()
    s.set("games/wheel/state/phase", "locked")
    sub.stop()
    s.set("games/wheel/state/phase", "resolved")
    assert seen == [None, {"phase": "locked"}]


def test_polling_reports_changes_only():
    s = InMemoryStore()
    seen = []
    sub = PollingSubscription(s, paths.LEADERBOARD, seen.append, interval=60)
    sub.poll_once()
    sub.poll_once()
    s.set(paths.leaderboard_entry("a"), {"bankroll": 5})
    sub.poll_once()
    assert seen == [None, {"a": {"bankroll": 5}}]


def test_polling_recovers_after_store_failure():
    s = InMemoryStore()
    seen = []
    sub = PollingSubscription(s, paths.CHAT, seen.append, interval=60)
    s.set("session/chat/k1", {"text": "hi"})
    s.fail_reads(2)
    assert sub.poll_once() is False
    assert sub.poll_once() is False
    assert sub.failures == 2
    assert seen == []
    assert sub.poll_once() is True
    assert sub.failures == 0
    assert seen == [{"k1": {"text": "hi"}}]


def test_polling_thread_delivers_within_an_interval():
    s = InMemoryStore()
    seen = []
    sub = PollingSubscription(s, paths.PRESENCE, seen.append, interval=0.01).start()
    s.set(paths.presence("a"), {"name": "A", "last_seen": 1})
    deadline = time.time() + 5
    while len(seen) < 2 and time.time() < deadline:
        time.sleep(0.01)
    sub.stop()
    assert seen[-1] == {"a": {"name": "A", "last_seen": 1}}


def test_overlay_snapshot(dealer, join, store):
    reader = OverlayReader(store)
    empty = reader.snapshot()
    assert empty["active_game"] is None
    assert empty["state"] is None
    assert empty["starting_bankroll"] == 1000

    dealer.activate("wheel")
    join("alice").bet("wheel", {"red": 40})
    join("bob").bet("wheel", {"red": 10, "odd": 5})
    snap = reader.snapshot()
    assert snap["active_game"]["game_kind"] == "wheel"
    assert snap["state"]["phase"] == "betting"
    assert snap["live_bet_totals"] == {"red": 50, "odd": 5}
    assert [e["id"] for e in snap["leaderboard"]] == ["bob", "alice"]

    dealer.resolve(2)
    assert reader.snapshot()["live_bet_totals"] == {"red": 50, "odd": 5}

    dealer.deactivate()
    snap = reader.snapshot()
    assert snap["active_game"] is None
    assert len(snap["end_of_session"]["players"]) == 2


def test_overlay_is_read_only(store):
    reader = OverlayReader(store)
    with pytest.raises(OwnershipViolation):
        reader.store.set(paths.ACTIVE_GAME, {"game_kind": "wheel"})
    with pytest.raises(OwnershipViolation):
        reader.registry.post_system_message("hello")


def test_overlay_follow_pushes_state_changes(dealer, store):
    reader = OverlayReader(store)
    snaps = []
    reader.follow(snaps.append, interval=60)
    try:
        dealer.activate("dice")
        dealer.tick()
    finally:
        reader.stop()
    states = [s["state"] for s in snaps if s["state"]]
    assert any(s["betting_window_remaining"] == 14 for s in states)
