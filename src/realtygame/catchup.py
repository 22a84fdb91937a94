"""Offline catch-up: reconcile the time a player spent away in one pass.

Instead of replaying every missed tick, each schedule is resolved in aggregate
and its deadline jumps forward by ``periods * interval``. Vacancy is still
drawn once per period and loan payments are still amortized one by one, since
each payment's interest depends on the previous balance.
"""

from __future__ import annotations

import copy
from typing import Iterable, List, Optional

from realtygame.calculations import format_money
from realtygame.config import EngineConfig
from realtygame.engine import (
    bankruptcy_event,
    check_integrity,
    complete_due_renovations,
    credit_rent,
    finalize_player,
    loan_payments_event,
    rent_due,
    resolve_flips,
    revalue_properties,
)
from realtygame.lifecycle import resolve_rent_period
from realtygame.loans import apply_payment, settle_paid_off
from realtygame.logging import get_logger
from realtygame.market import advance_market
from realtygame.models import GameEvent, MarketEvent, MarketState, Player, RandomSource, TickResult

logger = get_logger(__name__)


def elapsed_periods(deadline: int, now: int, interval_ms: int) -> int:
    """Deadlines crossed in ``[deadline, now]``: the deadline itself counts as one."""
    if int(now) < int(deadline) or int(interval_ms) <= 0:
        return 0
    return (int(now) - int(deadline)) // int(interval_ms) + 1


def _catch_up_rent(
    player: Player, market: MarketState, now: int, cfg: EngineConfig, rng: RandomSource
) -> List[GameEvent]:
    events: List[GameEvent] = []
    for p in player.properties:
        if not rent_due(p, now):
            continue
        interval = int(p.rent_interval_ms)
        periods = elapsed_periods(int(p.next_rent_at), now, interval)
        total = 0
        vacant = 0
        for _ in range(periods):
            rent = resolve_rent_period(p, market, rng, cfg)
            if rent is not None and rent > 0:
                credit_rent(player, rent, cfg)
                total += rent
            else:
                vacant += 1
        if total > 0:
            events.append(
                GameEvent(
                    event_id=f"rent-{now}-{p.property_id}",
                    timestamp=now,
                    message=f"Аренда {p.name} за {periods} мес.: +{format_money(total)}",
                    severity="success",
                )
            )
        if vacant:
            events.append(
                GameEvent(
                    event_id=f"vacancy-{now}-{p.property_id}",
                    timestamp=now,
                    message=f"Арендатор съехал из {p.name}, потеряно периодов аренды: {vacant}",
                    severity="warning",
                )
            )
        p.next_rent_at = int(p.next_rent_at) + periods * interval
    return events


def _catch_up_maintenance(player: Player, now: int, cfg: EngineConfig) -> int:
    interval = int(cfg.timers.rent_interval_ms)
    marker = int(player.last_expense_applied_at)
    if marker <= 0:
        # Never charged before: a single deduction, same as a first live tick.
        charges = 1
        player.last_expense_applied_at = now
    else:
        charges = max(0, (now - marker) // interval) if interval > 0 else 0
        player.last_expense_applied_at = marker + charges * interval
    if charges:
        player.cash = int(player.cash) - charges * sum(int(p.monthly_expenses) for p in player.properties)
    return charges


def _catch_up_loans(player: Player, now: int) -> List[GameEvent]:
    total = 0
    for loan in player.loans:
        interval = int(loan.payment_interval_ms)
        periods = elapsed_periods(int(loan.next_payment_at), now, interval)
        for _ in range(periods):
            if loan.remaining_principal <= 0:
                break
            paid = apply_payment(loan)
            player.cash = int(player.cash) - paid
            total += paid
        if periods:
            loan.next_payment_at = int(loan.next_payment_at) + periods * interval
    events: List[GameEvent] = []
    if total > 0:
        events.append(loan_payments_event(total, now))
    events.extend(settle_paid_off(player, now))
    return events


def process_offline_period(
    player: Player,
    market: MarketState,
    last_synced_at: int,
    now: int,
    cfg: EngineConfig,
    rng: RandomSource,
    catalogue: Optional[Iterable[MarketEvent]] = None,
) -> TickResult:
    check_integrity(player)
    now = int(now)
    p_state = copy.deepcopy(player)
    m_state = copy.deepcopy(market)
    events: List[GameEvent] = []

    events.extend(_catch_up_rent(p_state, m_state, now, cfg, rng))
    charges = _catch_up_maintenance(p_state, now, cfg)
    events.extend(_catch_up_loans(p_state, now))
    events.extend(complete_due_renovations(p_state, now, cfg))

    tick_ms = max(1, int(cfg.tick_interval_ms))
    flip_periods = max(1, (now - int(last_synced_at)) // tick_ms)
    events.extend(resolve_flips(p_state, m_state, rng, now, cfg, periods=flip_periods))

    revalue_properties(p_state, m_state, now, cfg)

    source = list(catalogue) if catalogue is not None else list(m_state.active_events)
    m_state = advance_market(m_state, now, rng, cfg, source)

    if p_state.cash < 0:
        events.append(bankruptcy_event(now))

    finalize_player(p_state)
    p_state.last_synced_at = now

    logger.info(
        "catch-up player=%s away_ms=%s maintenance_charges=%d events=%d cash=%s",
        p_state.player_id,
        now - int(last_synced_at),
        charges,
        len(events),
        p_state.cash,
    )
    return TickResult(player=p_state, market=m_state, events=events)
