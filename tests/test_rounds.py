import threading
import time

import pytest

from session import paths
from session.paths import Actor, OwnedStore
from session.rounds import Countdown, RoundController, tick_active
from session.schema import Phase
from util import config
from util.errors import StoreUnavailable, Unauthorized, ValidationError


def test_countdown_exhaustion_locks_betting(dealer, join):
    rnd = dealer.activate("wheel")
    assert rnd.phase == Phase.betting
    assert rnd.betting_window_remaining == config.BETTING_WINDOW_SECONDS == 15
    for _ in range(14):
        assert dealer.tick().phase == Phase.betting
    rnd = dealer.tick()
    assert rnd.phase == Phase.locked
    assert rnd.betting_window_remaining == 0
    # ticks after the window closed change nothing
    assert dealer.tick().phase == Phase.locked

    alice = join("alice")
    with pytest.raises(ValidationError):
        alice.ledger("wheel").stage("alice", "red", 10)


def test_custom_betting_window(dealer):
    rnd = dealer.activate("dice", betting_window=3)
    assert rnd.betting_window_remaining == 3
    for _ in range(3):
        rnd = dealer.tick()
    assert rnd.phase == Phase.locked


def test_phase_transitions(dealer):
    dealer.activate("wheel")
    with pytest.raises(ValidationError):
        dealer.start_round()
    dealer.close_betting()
    with pytest.raises(ValidationError):
        dealer.close_betting()
    dealer.resolve(12)
    with pytest.raises(ValidationError):
        dealer.resolve(13)
    rnd = dealer.start_round()
    assert rnd.phase == Phase.betting
    assert rnd.outcome is None
    assert rnd.betting_window_remaining == rnd.betting_window
    assert rnd.round_number == 1


def test_resolve_from_betting_settles_and_advances(dealer, join, store):
    dealer.activate("wheel")
    alice, bob = join("alice"), join("bob")
    alice.bet("wheel", {"red": 50})
    bob.bet("wheel", {"black": 20, "straight-3": 5})

    report = dealer.resolve(3)

    assert alice.bankroll == 1050
    assert bob.bankroll == 975 + 180
    rnd = dealer.state()
    assert rnd.phase == Phase.resolved
    assert rnd.outcome == {"number": "3", "color": "red"}
    assert rnd.result_history == ["3"]
    assert rnd.round_number == 1
    assert rnd.bet_totals == {"red": 50, "black": 20, "straight-3": 5}
    assert report.round_number == 0
    assert store.get(paths.ledger("wheel", "alice")).get("active") is None

    a = alice.registry.get("alice")
    assert a.stats.rounds_played == 1
    assert a.stats.biggest_win == 50
    assert a.bet_history[0].net == 50
    assert a.bet_history[0].result == "3"
    messages = alice.registry.recent_messages()
    assert messages[-1].text == "Roulette #0: 3 red"


def test_invalid_outcome_changes_nothing(dealer, join, store):
    dealer.activate("wheel")
    alice = join("alice")
    alice.bet("wheel", {"red": 50})
    before = {k: store.get(k) for k in ("games", "session")}

    for bad in (37, "000", -1, {"number": "x"}):
        with pytest.raises(ValidationError):
            dealer.resolve(bad)

    after = {k: store.get(k) for k in ("games", "session")}
    assert after == before
    assert dealer.state().phase == Phase.betting


def test_round_numbers_strictly_increase_and_history_is_capped(dealer):
    dealer.activate("wheel")
    numbers = []
    for i in range(config.HISTORY_CAPACITY + 5):
        report = dealer.resolve(i % 37)
        numbers.append(report.round_number)
        dealer.start_round()
    assert numbers == list(range(len(numbers)))
    rnd = dealer.state()
    assert rnd.round_number == len(numbers)
    assert len(rnd.result_history) == config.HISTORY_CAPACITY
    # most recent first
    assert rnd.result_history[0] == str((len(numbers) - 1) % 37)


def test_craps_point_is_dealer_table_state(dealer, join):
    dealer.activate("dice")
    alice = join("alice")
    alice.bet("dice", {"passLine": 10})

    dealer.resolve([2, 2])
    assert dealer.state().table == {"mode": "standard", "point": 4}
    assert alice.ledger("dice").view("alice").active == {"passLine": 10}
    assert alice.bankroll == 990

    dealer.start_round()
    alice.bet("dice", {"passOdds": 10})
    dealer.resolve([1, 5])
    assert alice.ledger("dice").view("alice").active == {"passLine": 10, "passOdds": 10}

    dealer.start_round()
    dealer.resolve([3, 1])
    assert dealer.state().table.get("point") is None
    assert alice.ledger("dice").view("alice").active == {}
    assert alice.bankroll == 980 + 20 + 30
    assert alice.registry.get("alice").stats.rounds_played == 1


def test_failed_ledger_write_is_reported_and_not_settled_again(dealer, join, store):
    dealer.activate("wheel")
    alice, bob = join("alice"), join("bob")
    alice.bet("wheel", {"red": 10})
    bob.bet("wheel", {"red": 10})
    dealer.close_betting()

    # alice settles first; her ledger write fails
    store.fail_writes(1)
    report = dealer.resolve(2)

    assert report.failed == ["alice"]
    assert alice.bankroll == 990
    assert bob.bankroll == 990
    rnd = dealer.state()
    assert rnd.phase == Phase.resolved
    assert rnd.carryover["alice"].cleared == {"red": 10}

    # the stale red bet must not ride on the next spin
    dealer.start_round()
    report = dealer.resolve(1)
    assert "alice" not in report.participants
    assert report.failed == []
    assert alice.bankroll == 990
    assert alice.ledger("wheel").view("alice").active == {}
    assert dealer.state().carryover == {}


def test_winnings_survive_a_failed_ledger_write(dealer, join, store):
    dealer.activate("wheel")
    alice = join("alice")
    alice.bet("wheel", {"red": 10})
    dealer.close_betting()
    store.fail_writes(1)
    assert dealer.resolve(1).failed == ["alice"]
    assert alice.bankroll == 990
    assert [o.returned for o in dealer.state().carryover["alice"].owed.values()] == [20]

    dealer.start_round()
    alice.bet("wheel", {"black": 10})
    assert alice.bankroll == 980
    dealer.resolve(1)

    # black lost, the red win from round 0 was paid
    assert alice.bankroll == 1000
    entry = alice.ledger("wheel").view("alice")
    assert entry.active == {}
    assert entry.owed == {}
    a = alice.registry.get("alice")
    assert a.stats.rounds_played == 2
    assert sorted(h.round_number for h in a.bet_history) == [0, 1]


def test_failed_credit_stays_owed_until_the_next_resolve(dealer, join, store):
    dealer.activate("wheel")
    alice = join("alice")
    alice.bet("wheel", {"red": 10})
    dealer.close_betting()

    # the ledger write lands, the bankroll write after it fails
    store.fail_writes(1, after=1)
    report = dealer.resolve(1)
    assert report.failed == ["alice"]
    assert alice.bankroll == 990
    entry = alice.ledger("wheel").view("alice")
    assert entry.active == {}
    assert [o.returned for o in entry.owed.values()] == [20]

    dealer.start_round()
    dealer.resolve(2)
    assert alice.bankroll == 1010
    assert alice.ledger("wheel").view("alice").owed == {}
    assert alice.registry.get("alice").bet_history[0].round_number == 0


def test_owed_credit_is_paid_once(dealer, join, store):
    dealer.activate("wheel")
    alice = join("alice")
    alice.bet("wheel", {"red": 10})
    dealer.close_betting()
    store.fail_writes(1, after=1)
    dealer.resolve(1)
    ledger = alice.ledger("wheel")

    # user and leaderboard writes land, clearing the owed record fails
    store.fail_writes(1, after=2)
    with pytest.raises(StoreUnavailable):
        ledger.settle_owed("alice")
    assert alice.bankroll == 1010
    assert ledger.settle_owed("alice") == 0
    assert alice.bankroll == 1010
    assert ledger.view("alice").owed == {}

    dealer.start_round()
    alice.bet("wheel", {"black": 10})
    assert alice.bankroll == 1000


def test_commit_applies_owed_credit_first(dealer, join, store):
    dealer.activate("wheel")
    alice = join("alice")
    alice.bet("wheel", {"red": 10})
    dealer.close_betting()
    store.fail_writes(1, after=1)
    dealer.resolve(1)
    assert alice.bankroll == 990

    dealer.start_round()
    alice.bet("wheel", {"black": 10})
    assert alice.bankroll == 1000
    assert alice.ledger("wheel").view("alice").owed == {}


def test_tick_does_not_undo_a_resolve_that_lands_mid_tick(dealer, join, store):
    dealer.activate("wheel")
    alice = join("alice")
    alice.bet("wheel", {"red": 10})
    house = RoundController(OwnedStore(store, Actor.dealer("house")), "wheel")
    read = house.state

    def state_then_resolve():
        rnd = read()
        dealer.resolve(5)
        return rnd

    house.state = state_then_resolve
    assert house.tick().phase == Phase.resolved

    rnd = dealer.state()
    assert rnd.phase == Phase.resolved
    assert rnd.round_number == 1
    assert rnd.result_history == ["5"]
    assert rnd.outcome == {"number": "5", "color": "red"}
    assert alice.bankroll == 1010
    with pytest.raises(ValidationError):
        dealer.resolve(7)


def test_resolve_waits_for_a_tick_in_progress(dealer, store):
    dealer.activate("wheel")
    house = RoundController(OwnedStore(store, Actor.dealer("house")), "wheel")
    read = house.state
    seen = {}

    def state_while_dealer_spins():
        rnd = read()
        t = threading.Thread(target=lambda: seen.update(report=dealer.resolve(5)))
        t.start()
        t.join(timeout=0.2)
        seen["blocked"], seen["thread"] = t.is_alive(), t
        return rnd

    house.state = state_while_dealer_spins
    house.tick()
    seen["thread"].join(timeout=5)

    assert seen["blocked"]
    assert seen["report"].round_number == 0
    rnd = dealer.state()
    assert rnd.phase == Phase.resolved
    assert rnd.round_number == 1


def test_commit_refused_when_resolve_lands_mid_commit(dealer, join):
    dealer.activate("wheel")
    alice = join("alice")
    ledger = alice.ledger("wheel")
    ledger.stage("alice", "red", 10)
    read = ledger._betting_round

    def round_then_resolve():
        rnd = read()
        dealer.resolve(1)
        return rnd

    ledger._betting_round = round_then_resolve
    with pytest.raises(ValidationError):
        ledger.commit("alice")

    assert alice.bankroll == 1000
    entry = ledger.view("alice")
    assert entry.pending == {"red": 10}
    assert entry.active == {}
    assert dealer.state().bet_totals == {}


def test_resolve_waits_for_a_commit_in_flight(dealer, join):
    dealer.activate("wheel")
    alice = join("alice")
    ledger = alice.ledger("wheel")
    ledger.stage("alice", "red", 10)
    read = ledger._betting_round
    seen = {}

    def round_while_dealer_spins():
        rnd = read()
        t = threading.Thread(target=lambda: seen.update(report=dealer.resolve(1)))
        t.start()
        t.join(timeout=0.2)
        seen["blocked"], seen["thread"] = t.is_alive(), t
        return rnd

    ledger._betting_round = round_while_dealer_spins
    ledger.commit("alice")
    seen["thread"].join(timeout=5)

    assert seen["blocked"]
    assert seen["report"].participants["alice"].returned == 20
    assert alice.bankroll == 1010


def test_commit_keeps_bets_still_working_from_earlier_rolls(dealer, join, store):
    dealer.activate("dice")
    alice = join("alice")
    alice.bet("dice", {"place6": 12})
    dealer.resolve([3, 3])
    assert alice.ledger("dice").view("alice").active == {"place6": 12}

    dealer.start_round()
    alice.bet("dice", {"field": 5, "place6": 6})
    assert alice.ledger("dice").view("alice").active == {"place6": 18, "field": 5}


def test_players_cannot_drive_rounds(dealer, join, store):
    dealer.activate("wheel")
    join("alice")
    ctl = RoundController(OwnedStore(store, Actor.player("alice")), "wheel")
    with pytest.raises(Unauthorized):
        ctl.tick()
    with pytest.raises(Unauthorized):
        ctl.resolve(1)


def test_deactivate_writes_end_of_session(dealer, join, store):
    dealer.activate("cards")
    for pid, stake in (("a", 100), ("b", 300), ("c", 200)):
        join(pid).bet("cards", {"player": stake})
    snapshot = dealer.deactivate()
    assert [p.id for p in snapshot.players] == ["a", "c", "b"]
    assert [p.bankroll for p in snapshot.players] == [900, 800, 700]
    assert snapshot.active
    assert store.get(paths.ACTIVE_GAME) is None
    assert store.get(paths.game_state("cards")) is None
    assert store.get(paths.END_OF_SESSION)["starting_bankroll"] == 1000

    dealer.activate("cards")
    assert store.get(paths.END_OF_SESSION) is None


def test_tick_active_follows_the_selector(dealer, store):
    house = OwnedStore(store, Actor.dealer("house"))
    assert tick_active(house) is None
    dealer.activate("wheel", betting_window=2)
    assert tick_active(house).betting_window_remaining == 1


def test_countdown_thread_locks_the_round(dealer):
    dealer.activate("wheel", betting_window=2)
    dealer.run_countdown(interval=0.01)
    deadline = time.time() + 5
    while dealer.state().phase != Phase.locked and time.time() < deadline:
        time.sleep(0.01)
    dealer.stop_countdown()
    assert dealer.state().phase == Phase.locked
    assert not dealer.state().betting_window_remaining


def test_countdown_stops_when_the_game_goes_away():
    calls = []

    def tick():
        calls.append(1)
        raise ValidationError("gone")

    countdown = Countdown(tick, interval=0.01).start()
    deadline = time.time() + 5
    while countdown.running and time.time() < deadline:
        time.sleep(0.01)
    assert not countdown.running
    assert calls == [1]
