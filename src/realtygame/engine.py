from __future__ import annotations

import copy
from typing import Iterable, List, Optional

from realtygame.calculations import format_money, refresh_net_worth, update_property_value
from realtygame.config import EngineConfig
from realtygame.exceptions import InvariantViolationError
from realtygame.lifecycle import attempt_flip_sale, complete_renovation, resolve_rent_period
from realtygame.loans import apply_payment, settle_paid_off
from realtygame.logging import get_logger
from realtygame.market import advance_market
from realtygame.models import GameEvent, MarketEvent, MarketState, Player, Property, RandomSource, TickResult
from realtygame.progression import calculate_level

logger = get_logger(__name__)

BANKRUPTCY_MESSAGE = "⚠️ Отрицательный баланс! Нужно срочно продать активы или взять кредит."


def check_integrity(player: Player) -> None:
    """Raise InvariantViolationError on duplicate ids or dangling loan/property links."""
    prop_ids = [p.property_id for p in player.properties]
    if len(set(prop_ids)) != len(prop_ids):
        raise InvariantViolationError(f"duplicate property ids for player {player.player_id}")
    loan_ids = [loan.loan_id for loan in player.loans]
    if len(set(loan_ids)) != len(loan_ids):
        raise InvariantViolationError(f"duplicate loan ids for player {player.player_id}")

    known_props = set(prop_ids)
    known_loans = set(loan_ids)
    for loan in player.loans:
        if loan.property_id is not None and loan.property_id not in known_props:
            raise InvariantViolationError(f"loan {loan.loan_id} references unknown property {loan.property_id}")
    for p in player.properties:
        if p.loan_id is not None and p.loan_id not in known_loans:
            raise InvariantViolationError(f"property {p.property_id} references unknown loan {p.loan_id}")


def rent_due(p: Property, now: int) -> bool:
    return (
        p.strategy == "rent"
        and not p.is_under_renovation
        and p.next_rent_at is not None
        and int(now) >= int(p.next_rent_at)
    )


def credit_rent(player: Player, amount: int, cfg: EngineConfig) -> None:
    player.cash = int(player.cash) + int(amount)
    player.stats.total_rent_income += int(amount)
    if cfg.rent_experience_divisor > 0:
        player.experience += int(amount) // int(cfg.rent_experience_divisor)


def rent_event(p: Property, amount: int, now: int) -> GameEvent:
    return GameEvent(
        event_id=f"rent-{int(now)}-{p.property_id}",
        timestamp=int(now),
        message=f"Аренда {p.name}: +{format_money(amount)}",
        severity="success",
    )


def vacancy_event(p: Property, now: int) -> GameEvent:
    return GameEvent(
        event_id=f"vacancy-{int(now)}-{p.property_id}",
        timestamp=int(now),
        message=f"Арендатор съехал из {p.name}, потерян период аренды",
        severity="warning",
    )


def loan_payments_event(total: int, now: int) -> GameEvent:
    return GameEvent(
        event_id=f"loan-payment-{int(now)}",
        timestamp=int(now),
        message=f"💳 Ежемесячный платёж по кредитам: -{format_money(total)}",
        severity="info",
    )


def renovation_done_event(p: Property, now: int) -> GameEvent:
    return GameEvent(
        event_id=f"renovation-complete-{int(now)}-{p.property_id}",
        timestamp=int(now),
        message=f"🔨 Ремонт завершён на объекте {p.name}",
        severity="success",
    )


def complete_due_renovations(player: Player, now: int, cfg: EngineConfig) -> List[GameEvent]:
    events: List[GameEvent] = []
    for p in player.properties:
        if complete_renovation(p, now, cfg):
            events.append(renovation_done_event(p, now))
    return events


def resolve_flips(
    player: Player,
    market: MarketState,
    rng: RandomSource,
    now: int,
    cfg: EngineConfig,
    periods: int = 1,
) -> List[GameEvent]:
    events: List[GameEvent] = []
    listed = [p for p in player.properties if p.strategy == "flip" and not p.is_under_renovation]
    for p in listed:
        ev = attempt_flip_sale(player, p, market, rng, now, cfg, periods=periods)
        if ev is not None:
            events.append(ev)
    return events


def revalue_properties(player: Player, market: MarketState, now: int, cfg: EngineConfig) -> bool:
    if int(now) - int(player.last_valuation_applied_at) < int(cfg.timers.rent_interval_ms):
        return False
    for p in player.properties:
        p.current_value = update_property_value(p, market, cfg)
    player.last_valuation_applied_at = int(now)
    return True


def bankruptcy_event(now: int) -> GameEvent:
    return GameEvent(
        event_id=f"bankruptcy-{int(now)}",
        timestamp=int(now),
        message=BANKRUPTCY_MESSAGE,
        severity="error",
    )


def finalize_player(player: Player) -> None:
    refresh_net_worth(player)
    player.level = calculate_level(player.experience)


def process_tick(
    player: Player,
    market: MarketState,
    now: int,
    cfg: EngineConfig,
    rng: RandomSource,
    catalogue: Optional[Iterable[MarketEvent]] = None,
) -> TickResult:
    """Advance one player by one live tick.

    Inputs are never mutated. When ``catalogue`` is omitted the market's current
    events are re-filtered against ``now`` instead, so expired ones drop out.
    """
    check_integrity(player)
    now = int(now)
    p_state = copy.deepcopy(player)
    m_state = copy.deepcopy(market)
    events: List[GameEvent] = []

    # 1. Rent
    for p in p_state.properties:
        if not rent_due(p, now):
            continue
        rent = resolve_rent_period(p, m_state, rng, cfg)
        if rent is not None and rent > 0:
            credit_rent(p_state, rent, cfg)
            events.append(rent_event(p, rent, now))
        else:
            events.append(vacancy_event(p, now))
        p.next_rent_at = now + int(p.rent_interval_ms)

    # 2. Maintenance, at most once per rent interval
    if now - int(p_state.last_expense_applied_at) >= int(cfg.timers.rent_interval_ms):
        p_state.cash = int(p_state.cash) - sum(int(p.monthly_expenses) for p in p_state.properties)
        p_state.last_expense_applied_at = now

    # 3. Loans
    total_payments = 0
    for loan in p_state.loans:
        if now >= int(loan.next_payment_at):
            paid = apply_payment(loan)
            p_state.cash = int(p_state.cash) - paid
            total_payments += paid
            loan.next_payment_at = now + int(loan.payment_interval_ms)
    if total_payments > 0:
        events.append(loan_payments_event(total_payments, now))
    events.extend(settle_paid_off(p_state, now))

    # 4. Renovations
    events.extend(complete_due_renovations(p_state, now, cfg))

    # 5. Flip sales
    events.extend(resolve_flips(p_state, m_state, rng, now, cfg))

    # 6. Valuation
    revalue_properties(p_state, m_state, now, cfg)

    # 7. Market
    source = list(catalogue) if catalogue is not None else list(m_state.active_events)
    m_state = advance_market(m_state, now, rng, cfg, source)

    # 8. Bankruptcy signal
    if p_state.cash < 0:
        events.append(bankruptcy_event(now))

    # 9. Derived fields
    finalize_player(p_state)

    logger.debug(
        "tick player=%s now=%s events=%d cash=%s phase=%s",
        p_state.player_id,
        now,
        len(events),
        p_state.cash,
        m_state.phase,
    )
    return TickResult(player=p_state, market=m_state, events=events)
