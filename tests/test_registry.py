import pytest

from session import paths
from session.paths import Actor, OwnedStore
from session.registry import SessionRegistry
from session.schema import Role
from util import config
from util.errors import NotFoundError, OwnershipViolation, ValidationError


def test_register_creates_participant_and_leaderboard_entry(join, store):
    alice = join("alice", "Alice")
    p = alice.registry.get("alice")
    assert (p.name, p.bankroll, p.role) == ("Alice", 1000, Role.player)
    assert p.stats.starting_bankroll == 1000
    assert store.get(paths.leaderboard_entry("alice"))["bankroll"] == 1000


def test_register_is_idempotent(join, clock, dealer):
    dealer.activate("wheel")
    alice = join("alice", "Alice")
    alice.bet("wheel", {"red": 100})
    before = alice.registry.get("alice")

    clock.advance(60)
    again = alice.registry.register("alice", "Alice")
    assert again.bankroll == before.bankroll == 900
    assert again.stats == before.stats
    assert again.last_active_at == before.last_active_at + 60_000


def test_register_needs_id_and_name(store):
    reg = SessionRegistry(store)
    with pytest.raises(ValidationError):
        reg.register("", "x")
    with pytest.raises(ValidationError):
        reg.register("u1", "  ")


def test_get_missing(store):
    with pytest.raises(NotFoundError):
        SessionRegistry(store).get("ghost")
    assert SessionRegistry(store).find("ghost") is None


def test_starting_bankroll_comes_from_settings(dealer, join):
    dealer.set_starting_bankroll(2500)
    assert join("alice").bankroll == 2500
    with pytest.raises(ValidationError):
        dealer.set_starting_bankroll(1234)


def test_leaderboard_is_sorted_and_capped_but_roster_is_not(join, store):
    for i in range(12):
        p = join(f"p{i:02d}")
        p.registry.update_leaderboard(p.id, 1000 + i * 10)
    reg = SessionRegistry(store)
    top = reg.leaderboard()
    assert len(top) == config.LEADERBOARD_SIZE
    assert [e.id for e in top[:2]] == ["p11", "p10"]
    assert len(reg.roster()) == 12
    assert [e.bankroll for e in reg.roster()] == sorted((e.bankroll for e in reg.roster()), reverse=True)


def test_leaderboard_ties_break_by_name(join, store):
    join("b", "Bea")
    join("a", "Zed")
    join("c", "amy")
    assert [e.name for e in SessionRegistry(store).leaderboard()] == ["amy", "Bea", "Zed"]


def test_debit_cannot_overdraw(join):
    alice = join("alice")
    with pytest.raises(ValidationError):
        alice.registry.debit("alice", 1001)
    assert alice.registry.debit("alice", 1000).bankroll == 0


def test_players_cannot_touch_other_bankrolls(join, store):
    join("alice")
    bob = join("bob")
    with pytest.raises(OwnershipViolation):
        bob.registry.debit("alice", 10)


def test_reset_all(dealer, join, store):
    dealer.activate("wheel")
    alice = join("alice")
    alice.bet("wheel", {"red": 100})
    dealer.resolve(1)
    dealer.start_round()
    alice.bet("wheel", {"black": 50})

    dealer.reset_all(5000)

    p = alice.registry.get("alice")
    assert p.bankroll == 5000
    assert p.stats.total_wagered == 0
    assert p.stats.starting_bankroll == 5000
    assert p.bet_history == []
    assert store.get(paths.game_bets("wheel")) is None
    assert dealer.state().result_history == []
    assert [e.bankroll for e in SessionRegistry(store).roster()] == [5000]


def test_reset_all_rejects_bad_amounts(dealer):
    with pytest.raises(ValidationError):
        dealer.reset_all(0)


def test_grant_bonus(dealer, join):
    alice, bob = join("alice"), join("bob")
    dealer.grant_bonus("alice", 250)
    assert (alice.bankroll, bob.bankroll) == (1250, 1000)
    dealer.grant_bonus("all", 100)
    assert (alice.bankroll, bob.bankroll) == (1350, 1100)
    with pytest.raises(NotFoundError):
        dealer.grant_bonus("ghost", 10)
    with pytest.raises(ValidationError):
        dealer.grant_bonus("all", -5)


def test_chat_keeps_the_latest_messages(join, store, monkeypatch):
    monkeypatch.setattr(config, "CHAT_CAPACITY", 5)
    alice = join("alice", "Alice")
    for i in range(8):
        alice.registry.post_message("alice", "Alice", f"msg {i}")
    msgs = alice.registry.recent_messages()
    assert [m.text for m in msgs] == [f"msg {i}" for i in range(3, 8)]
    assert len(store.get(paths.CHAT)) == 5
    assert msgs[0].id


def test_chat_validation_and_clear(dealer, join, store):
    alice = join("alice")
    with pytest.raises(ValidationError):
        alice.registry.post_message("alice", "Alice", "   ")
    with pytest.raises(ValidationError):
        alice.registry.post_message("alice", "Alice", "x" * 501)
    alice.registry.post_message("alice", "Alice", "hi")
    dealer.clear_chat()
    assert store.get(paths.CHAT) is None


def test_presence(join, clock, store):
    alice, bob = join("alice"), join("bob")
    alice.registry.heartbeat("alice", "Alice")
    clock.advance(20)
    bob.registry.heartbeat("bob", "Bob")
    reg = SessionRegistry(OwnedStore(store, Actor.observer()), clock)
    assert reg.active_players() == ["alice", "bob"]
    clock.advance(15)
    assert reg.active_players() == ["bob"]
    assert reg.active_count() == 1
