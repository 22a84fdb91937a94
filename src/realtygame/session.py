"""Session entry point, per-player serialization and the live tick scheduler.

Every mutation of one player's state (entry catch-up, live tick, user action)
goes through a ``GameSession`` and runs under its lock, so a scheduled tick can
never interleave with a purchase or renovation against the same snapshot.
"""

from __future__ import annotations

import copy
import threading
import time
from typing import Callable, Iterable, List, Optional

from realtygame.catchup import process_offline_period
from realtygame.config import EngineConfig, ReferenceConfig
from realtygame.engine import process_tick
from realtygame.exceptions import EntityNotFoundError, InvariantViolationError
from realtygame.lifecycle import (
    buy_with_cash,
    buy_with_mortgage,
    change_strategy,
    start_renovation,
    take_loan_against_property,
)
from realtygame.logging import get_logger
from realtygame.models import (
    ActionResult,
    GameEvent,
    MarketEvent,
    MarketState,
    Player,
    RandomSource,
    Snapshot,
    TickResult,
)
from realtygame.progression import evaluate_progression

logger = get_logger(__name__)

Clock = Callable[[], int]


def system_clock() -> int:
    return int(time.time() * 1000)


class OffsetClock:
    """Wall clock shifted by a manual offset; lets a console player fast-forward time."""

    def __init__(self, base: Clock = system_clock):
        self._base = base
        self.offset_ms = 0

    def advance(self, ms: int) -> None:
        self.offset_ms += max(0, int(ms))

    def __call__(self) -> int:
        return int(self._base()) + self.offset_ms


def handle_game_entry(
    player: Player,
    market: MarketState,
    events: Iterable[GameEvent],
    last_synced_at: int,
    now: int,
    cfg: EngineConfig,
    rng: RandomSource,
    catalogue: Optional[Iterable[MarketEvent]] = None,
) -> TickResult:
    """Run catch-up when the player was away longer than one tick interval.

    The returned events are the existing log followed by whatever catch-up
    produced. Within one interval the state comes back unchanged.
    """
    existing = list(events)
    if int(now) - int(last_synced_at) > int(cfg.tick_interval_ms):
        result = process_offline_period(player, market, last_synced_at, now, cfg, rng, catalogue)
        return TickResult(player=result.player, market=result.market, events=existing + result.events)
    return TickResult(player=copy.deepcopy(player), market=copy.deepcopy(market), events=existing)


class GameSession:
    def __init__(
        self,
        snapshot: Snapshot,
        cfg: EngineConfig,
        reference: ReferenceConfig,
        rng: RandomSource,
        clock: Clock = system_clock,
        on_change: Optional[Callable[[Snapshot, List[GameEvent]], None]] = None,
    ):
        self._snapshot = snapshot
        self.cfg = cfg
        self.reference = reference
        self.rng = rng
        self.clock = clock
        self.on_change = on_change
        self._lock = threading.RLock()

    @property
    def player_id(self) -> str:
        return self._snapshot.player.player_id

    def snapshot(self) -> Snapshot:
        with self._lock:
            return copy.deepcopy(self._snapshot)

    # ---- simulation ----

    def enter(self) -> List[GameEvent]:
        """Reconcile the time since the last sync; returns only the new events."""
        with self._lock:
            s = self._snapshot
            now = self.clock()
            before = len(s.events)
            try:
                result = handle_game_entry(
                    s.player,
                    s.market,
                    s.events,
                    s.last_synced_at,
                    now,
                    self.cfg,
                    self.rng,
                    self.reference.market_events,
                )
            except InvariantViolationError:
                logger.exception("entry aborted for player %s", self.player_id)
                raise
            return self._commit(result.player, result.market, result.events[before:], now)

    def tick(self) -> List[GameEvent]:
        with self._lock:
            s = self._snapshot
            now = self.clock()
            try:
                result = process_tick(s.player, s.market, now, self.cfg, self.rng, self.reference.market_events)
            except InvariantViolationError:
                logger.exception("tick aborted for player %s", self.player_id)
                raise
            return self._commit(result.player, result.market, result.events, now)

    def _commit(self, player: Player, market: MarketState, new_events: List[GameEvent], now: int) -> List[GameEvent]:
        s = self._snapshot
        player, missions, achievements, progress_events = evaluate_progression(
            player, s.missions, s.achievements, now
        )
        player.last_synced_at = int(now)
        new_events = list(new_events) + progress_events
        self._snapshot = Snapshot(
            player=player,
            market=market,
            events=self._retained(s.events + new_events),
            last_synced_at=int(now),
            missions=missions,
            achievements=achievements,
            available_properties=s.available_properties,
        )
        self._notify(new_events)
        return new_events

    def _retained(self, events: List[GameEvent]) -> List[GameEvent]:
        keep = int(self.cfg.event_retention)
        return events[-keep:] if keep > 0 else list(events)

    def _notify(self, new_events: List[GameEvent]) -> None:
        if self.on_change is None:
            return
        try:
            self.on_change(copy.deepcopy(self._snapshot), list(new_events))
        except OSError:
            # Persistence is fire-and-forget for the simulation; the next change retries.
            logger.exception("failed to persist snapshot for player %s", self.player_id)

    # ---- actions ----

    def _apply_action(self, result: ActionResult) -> ActionResult:
        if not result.success:
            return result
        now = self.clock()
        events = self._commit_action(result, now)
        return ActionResult(
            success=True, message=result.message, player=copy.deepcopy(self._snapshot.player), events=events
        )

    def _commit_action(self, result: ActionResult, now: int) -> List[GameEvent]:
        s = self._snapshot
        player, missions, achievements, progress_events = evaluate_progression(
            result.player, s.missions, s.achievements, now
        )
        new_events = list(result.events) + progress_events
        owned = {p.property_id for p in player.properties}
        self._snapshot = Snapshot(
            player=player,
            market=s.market,
            events=self._retained(s.events + new_events),
            last_synced_at=s.last_synced_at,
            missions=missions,
            achievements=achievements,
            available_properties=[p for p in s.available_properties if p.property_id not in owned],
        )
        self._notify(new_events)
        return new_events

    def buy(self, property_id: str, mortgage: bool = False) -> ActionResult:
        with self._lock:
            s = self._snapshot
            listing = next((p for p in s.available_properties if p.property_id == property_id), None)
            if listing is None:
                message = f"Объект {property_id} не найден на рынке"
                return ActionResult(success=False, message=message, player=s.player)
            now = self.clock()
            if mortgage:
                result = buy_with_mortgage(s.player, listing, now, self.cfg, self.reference)
            else:
                result = buy_with_cash(s.player, listing, now, self.cfg)
            return self._apply_action(result)

    def change_strategy(self, property_id: str, strategy: str, sale_price: Optional[int] = None) -> ActionResult:
        with self._lock:
            try:
                result = change_strategy(self._snapshot.player, property_id, strategy, self.clock(), sale_price)
            except EntityNotFoundError as e:
                return ActionResult(success=False, message=str(e), player=self._snapshot.player)
            return self._apply_action(result)

    def renovate(self, property_id: str, tier: str) -> ActionResult:
        with self._lock:
            try:
                result = start_renovation(self._snapshot.player, property_id, tier, self.clock(), self.cfg)
            except EntityNotFoundError as e:
                return ActionResult(success=False, message=str(e), player=self._snapshot.player)
            return self._apply_action(result)

    def borrow(self, property_id: str) -> ActionResult:
        with self._lock:
            try:
                result = take_loan_against_property(
                    self._snapshot.player, property_id, self.clock(), self.cfg, self.reference
                )
            except EntityNotFoundError as e:
                return ActionResult(success=False, message=str(e), player=self._snapshot.player)
            return self._apply_action(result)


class TickScheduler:
    """Calls ``tick`` every ``interval_ms`` on a daemon thread until ``stop()``.

    Stopping only prevents future ticks; one already running finishes normally.
    An invariant violation stops the scheduler since the state cannot recover by
    itself.
    """

    def __init__(self, tick: Callable[[], object], interval_ms: int, name: str = "realtygame-tick"):
        self._tick = tick
        self._interval_s = max(0.001, int(interval_ms) / 1000.0)
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    @property
    def running(self) -> bool:
        return self._thread.is_alive() and not self._stop.is_set()

    def start(self) -> "TickScheduler":
        self._thread.start()
        return self

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop.set()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout)

    def _run(self) -> None:
        while not self._stop.wait(self._interval_s):
            try:
                self._tick()
            except InvariantViolationError:
                logger.error("stopping scheduler %s after invariant violation", self._thread.name)
                self._stop.set()
