from __future__ import annotations

import threading
import time

from realtygame.calculations import net_worth
from realtygame.cli import advance_time
from realtygame.config import EngineConfig
from realtygame.exceptions import InvariantViolationError
from realtygame.presets import create_initial_snapshot, default_reference_config
from realtygame.session import GameSession, OffsetClock, TickScheduler

NOW = 1_767_225_600_000


class ScriptedRandom:
    def __init__(self, values=(), fallback: float = 0.99):
        self._values = list(values)
        self._fallback = fallback

    def random(self) -> float:
        if self._values:
            return self._values.pop(0)
        return self._fallback


class CountingRandom:
    def __init__(self, value: float = 0.99):
        self.value = value
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return self.value


class ManualClock:
    def __init__(self, now: int):
        self.now = now

    def __call__(self) -> int:
        return self.now


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def _session(clock: ManualClock, on_change=None) -> GameSession:
    snap = create_initial_snapshot("u1", "normal", NOW)
    return GameSession(
        snap,
        EngineConfig(),
        default_reference_config(NOW),
        ScriptedRandom(),
        clock=clock,
        on_change=on_change,
    )


def _renting_session(clock: ManualClock, on_change=None) -> GameSession:
    s = _session(clock, on_change)
    _assert(s.buy("p4").success, "buy p4")
    _assert(s.change_strategy("p4", "rent").success, "rent p4")
    return s


def test_offset_clock() -> None:
    clock = OffsetClock(base=lambda: NOW)
    clock.advance(-5)
    _assert(clock() == NOW, "negative offsets are ignored")
    clock.advance(90_000)
    _assert(clock() == NOW + 90_000, "offset applied")


def test_buy_updates_state_and_notifies() -> None:
    calls = []
    s = _session(ManualClock(NOW), on_change=lambda snap, events: calls.append((snap, events)))
    r = s.buy("p4")
    _assert(r.success, r.message)
    snap = s.snapshot()
    _assert(snap.player.cash == 1_500_000 - 1_200_000, "paid in cash")
    _assert("p4" not in {p.property_id for p in snap.available_properties}, "listing leaves the market")
    _assert(len(calls) == 1, "one change notification")
    messages = [e.message for e in calls[0][1]]
    _assert(any("Достижение" in m for m in messages), f"first purchase unlocks achievements: {messages}")
    _assert(snap.player.experience == 25 + 400, f"purchase xp plus two achievements, got {snap.player.experience}")

    again = s.buy("p4")
    _assert(not again.success and "не найден" in again.message, "cannot buy the same listing twice")
    _assert(len(calls) == 1, "failed actions do not notify")


def test_unknown_property_actions_fail_cleanly() -> None:
    s = _session(ManualClock(NOW))
    for r in (s.change_strategy("ghost", "rent"), s.renovate("ghost", "cosmetic"), s.borrow("ghost")):
        _assert(not r.success, "unknown property rejected")
    _assert(s.snapshot().events == [], "nothing logged")


def test_enter_after_absence_catches_up() -> None:
    clock = ManualClock(NOW)
    s = _renting_session(clock)
    cash_before = s.snapshot().player.cash

    clock.now = NOW + 180_001
    new_events = s.enter()
    snap = s.snapshot()
    p = snap.player.find_property("p4")
    _assert(p.next_rent_at == NOW + 60_000 + 180_000, f"three rent periods consumed, next at {p.next_rent_at}")
    _assert(any(e.message.startswith("Аренда") for e in new_events), "aggregate rent event")
    _assert(snap.player.stats.total_rent_income > 0, "rent credited")
    _assert(snap.player.cash == cash_before + snap.player.stats.total_rent_income - 3 * 2_500,
            "rent minus three upkeep charges")
    _assert(snap.last_synced_at == NOW + 180_001, "sync marker moved")
    _assert(snap.market.last_updated_at == NOW + 180_001, "market recomputed for now")

    _assert(s.enter() == [], "immediate re-entry is a no-op")


def test_persistence_failure_is_logged_not_raised() -> None:
    def broken(snap, events):
        raise OSError("disk full")

    clock = ManualClock(NOW)
    s = _renting_session(clock, on_change=broken)
    clock.now = NOW + 60_000
    events = s.tick()
    _assert(any(e.message.startswith("Аренда") for e in events), "tick still applied")
    _assert(s.snapshot().player.stats.total_rent_income > 0, "state kept in memory")


def test_concurrent_ticks_are_serialized() -> None:
    clock = ManualClock(NOW)
    single = _renting_session(clock)
    racing = _renting_session(clock)
    clock.now = NOW + 60_000

    single.tick()

    def worker() -> None:
        for _ in range(10):
            racing.tick()

    threads = [threading.Thread(target=worker) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    a = single.snapshot().player
    b = racing.snapshot().player
    _assert(b.cash == a.cash, f"rent and upkeep applied once: {b.cash} vs {a.cash}")
    _assert(b.stats.total_rent_income == a.stats.total_rent_income, "one rent credit")
    _assert(b.net_worth == net_worth(b.cash, b.properties, b.loans), "net worth consistent")


def test_advance_time_moves_market_once() -> None:
    rng = CountingRandom()
    clock = OffsetClock(base=lambda: NOW)
    s = GameSession(create_initial_snapshot("u1", "normal", NOW), EngineConfig(), default_reference_config(NOW),
                    rng, clock=clock)

    advance_time(s, clock, 3)
    _assert(rng.calls == 1, f"one phase roll for a catch-up with an empty portfolio, got {rng.calls}")
    _assert(s.snapshot().market.last_updated_at == NOW + 180_000, "market stamped at the new instant")

    advance_time(s, clock, 1)
    _assert(rng.calls == 2, f"a single interval runs one live tick, got {rng.calls}")
    _assert(s.snapshot().last_synced_at == NOW + 240_000, "sync marker moved")


def test_scheduler_stop_prevents_further_ticks() -> None:
    calls = []
    two = threading.Event()

    def tick() -> None:
        calls.append(1)
        if len(calls) >= 2:
            two.set()

    sched = TickScheduler(tick, interval_ms=5).start()
    _assert(two.wait(2.0), "scheduler ticks")
    sched.stop(timeout=1.0)
    _assert(not sched.running, "stopped")
    seen = len(calls)
    time.sleep(0.05)
    _assert(len(calls) == seen, "no ticks after stop")


def test_scheduler_stops_on_invariant_violation() -> None:
    calls = []
    raised = threading.Event()

    def tick() -> None:
        calls.append(1)
        raised.set()
        raise InvariantViolationError("broken state")

    sched = TickScheduler(tick, interval_ms=5).start()
    _assert(raised.wait(2.0), "tick ran")
    time.sleep(0.1)
    _assert(not sched.running, "scheduler stopped itself")
    _assert(len(calls) == 1, f"no further ticks, got {len(calls)}")
    sched.stop(timeout=1.0)


def main() -> None:
    tests = [
        test_offset_clock,
        test_buy_updates_state_and_notifies,
        test_unknown_property_actions_fail_cleanly,
        test_enter_after_absence_catches_up,
        test_persistence_failure_is_logged_not_raised,
        test_concurrent_ticks_are_serialized,
        test_advance_time_moves_market_once,
        test_scheduler_stop_prevents_further_ticks,
        test_scheduler_stops_on_invariant_violation,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
