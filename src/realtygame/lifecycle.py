"""Property lifecycle and player actions.

A property moves between idle, holding, renting, under-renovation and
listed-for-sale. Actions never mutate their input player: they work on a deep
copy and return it inside an ``ActionResult``; a failed action returns the
input player untouched.
"""

from __future__ import annotations

import copy
from typing import Optional

from realtygame.calculations import (
    format_money,
    mortgage_down_payment,
    period_expense_share,
    refresh_net_worth,
    rent_for_period,
    round_money,
    sale_tax,
    update_property_value,
)
from realtygame.config import EngineConfig, ReferenceConfig, RenovationTier
from realtygame.exceptions import EntityNotFoundError
from realtygame.loans import originate_loan
from realtygame.logging import get_logger
from realtygame.market import effective_vacancy
from realtygame.models import (
    CONDITIONS,
    STRATEGIES,
    ActionResult,
    GameEvent,
    MarketState,
    Player,
    Property,
    RandomSource,
)

logger = get_logger(__name__)


def property_state(p: Property) -> str:
    if p.is_under_renovation:
        return "under-renovation"
    if p.strategy == "rent":
        return "renting"
    if p.strategy == "flip":
        return "listed-for-sale"
    if p.strategy == "hold":
        return "holding"
    return "idle"


def upgrade_condition(condition: str) -> str:
    if condition not in CONDITIONS:
        return condition
    idx = CONDITIONS.index(condition)
    return CONDITIONS[min(idx + 1, len(CONDITIONS) - 1)]


def _require_property(player: Player, property_id: str) -> Property:
    p = player.find_property(property_id)
    if p is None:
        raise EntityNotFoundError(f"property not found: {property_id}")
    return p


def _action_event(now: int, kind: str, ref: str, message: str, severity: str = "success") -> GameEvent:
    return GameEvent(event_id=f"{kind}-{int(now)}-{ref}", timestamp=int(now), message=message, severity=severity)


def _fail(player: Player, message: str) -> ActionResult:
    return ActionResult(success=False, message=message, player=player)


def _insufficient(player: Player, what: str, need: int) -> ActionResult:
    shortage = int(need) - int(player.cash)
    return _fail(
        player,
        f"Недостаточно средств{what}. Нужно: {format_money(need)}, "
        f"у вас: {format_money(player.cash)}. Не хватает: {format_money(shortage)}",
    )


# ---- strategy ----

def change_strategy(
    player: Player,
    property_id: str,
    strategy: str,
    now: int,
    sale_price: Optional[int] = None,
) -> ActionResult:
    if strategy not in STRATEGIES:
        return _fail(player, f"Неизвестная стратегия: {strategy}")
    _require_property(player, property_id)

    updated = copy.deepcopy(player)
    p = _require_property(updated, property_id)
    p.strategy = strategy

    if strategy == "rent":
        if p.next_rent_at is None and not p.is_under_renovation:
            p.next_rent_at = int(now) + int(p.rent_interval_ms)
    else:
        p.next_rent_at = None

    if strategy == "flip":
        p.sale_price = int(sale_price) if sale_price else int(p.current_value)
    else:
        p.sale_price = None

    refresh_net_worth(updated)
    return ActionResult(success=True, message=f"Стратегия {p.name}: {strategy}", player=updated)


# ---- rent ----

def resolve_rent_period(
    p: Property, market: MarketState, rng: RandomSource, cfg: EngineConfig
) -> Optional[int]:
    """One rent period: ``None`` when the tenant left, otherwise rent net of the expense share."""
    if rng.random() < effective_vacancy(market):
        return None
    return round_money(rent_for_period(p, market) - period_expense_share(p, cfg))


# ---- renovation ----

def resolve_renovation_tier(tier: str, cfg: EngineConfig) -> Optional[RenovationTier]:
    found = cfg.renovation_tiers.get(tier)
    if found is not None:
        return found
    for t in cfg.renovation_tiers.values():
        if t.label == tier:
            return t
    return None


def start_renovation(player: Player, property_id: str, tier: str, now: int, cfg: EngineConfig) -> ActionResult:
    t = resolve_renovation_tier(tier, cfg)
    if t is None:
        return _fail(player, f"Неизвестный тип ремонта: {tier}")
    current = _require_property(player, property_id)
    if current.is_under_renovation:
        return _fail(player, "Ремонт уже идёт")

    cost = round_money(float(current.purchase_price) * float(t.cost_ratio))
    if player.cash < cost:
        return _insufficient(player, " для ремонта", cost)

    updated = copy.deepcopy(player)
    p = _require_property(updated, property_id)
    p.is_under_renovation = True
    p.renovation_starts_at = int(now)
    p.renovation_ends_at = int(now) + int(t.duration_ms)
    p.current_value = round_money(float(p.current_value) * float(t.value_multiplier))
    p.renovation_cost_total = int(p.renovation_cost_total) + cost
    # Rent is paused until completion reschedules it.
    p.next_rent_at = None

    updated.cash = int(updated.cash) - cost
    updated.stats.total_renovations += 1
    updated.experience += int(t.experience)
    refresh_net_worth(updated)

    message = f"Начат {t.label} на {p.name}"
    logger.debug("player %s: %s (cost %s)", updated.player_id, message, cost)
    return ActionResult(
        success=True,
        message=message,
        player=updated,
        events=[_action_event(now, "renovation-start", p.property_id, message, "info")],
    )


def complete_renovation(p: Property, now: int, cfg: EngineConfig) -> bool:
    """Finish a due renovation in place. Returns False when nothing was due."""
    if not p.is_under_renovation or p.renovation_ends_at is None:
        return False
    if int(now) < int(p.renovation_ends_at):
        return False
    p.is_under_renovation = False
    p.renovation_starts_at = None
    p.renovation_ends_at = None
    p.condition = upgrade_condition(p.condition)
    if p.strategy == "rent":
        p.next_rent_at = int(now) + int(p.rent_interval_ms)
    return True


# ---- flip ----

def sale_probability(asking: float, market_value: float, cfg: EngineConfig) -> float:
    if market_value <= 0:
        return float(cfg.sale_probability_floor)
    ratio = float(asking) / float(market_value)
    for max_ratio, probability in cfg.sale_probability_bands:
        if ratio <= max_ratio:
            return float(probability)
    return float(cfg.sale_probability_floor)


def attempt_flip_sale(
    player: Player,
    p: Property,
    market: MarketState,
    rng: RandomSource,
    now: int,
    cfg: EngineConfig,
    periods: int = 1,
) -> Optional[GameEvent]:
    """Roll one sale trial for a listed property; on success settle it on ``player`` in place.

    ``periods`` > 1 folds several missed ticks into one trial with probability
    ``1 - (1 - p) ** periods``.
    """
    asking = int(p.sale_price) if p.sale_price else int(p.current_value)
    chance = sale_probability(asking, update_property_value(p, market, cfg), cfg)
    if periods > 1:
        chance = 1.0 - (1.0 - chance) ** int(periods)
    if rng.random() >= chance:
        return None

    tax = sale_tax(asking, p.purchase_price, p.renovation_cost_total, cfg)
    profit = asking - int(p.purchase_price) - int(p.renovation_cost_total) - tax
    player.cash = int(player.cash) + asking - tax

    if p.loan_id:
        loan = player.find_loan(p.loan_id)
        if loan is not None:
            player.cash -= int(loan.remaining_principal)
            player.loans = [x for x in player.loans if x.loan_id != loan.loan_id]

    player.properties = [x for x in player.properties if x.property_id != p.property_id]
    player.stats.total_sales += 1
    player.experience += int(cfg.sale_experience)

    return GameEvent(
        event_id=f"sale-{int(now)}-{p.property_id}",
        timestamp=int(now),
        message=f"Продана {p.name} за {format_money(asking)}. Прибыль: {format_money(profit)}",
        severity="success",
    )


# ---- purchases and borrowing ----

def _acquire(player: Player, listing: Property, cfg: EngineConfig) -> Property:
    owned = copy.deepcopy(listing)
    owned.city_id = owned.city_id or player.city_id
    owned.rent_interval_ms = int(owned.rent_interval_ms or cfg.timers.rent_interval_ms)
    owned.strategy = "none"
    owned.sale_price = None
    owned.next_rent_at = None
    owned.is_under_renovation = False
    owned.renovation_starts_at = None
    owned.renovation_ends_at = None
    owned.renovation_cost_total = 0
    owned.loan_id = None
    player.properties.append(owned)
    player.stats.properties_owned = max(player.stats.properties_owned, len(player.properties))
    player.experience += int(cfg.purchase_experience)
    return owned


def buy_with_cash(player: Player, listing: Property, now: int, cfg: EngineConfig) -> ActionResult:
    if player.find_property(listing.property_id) is not None:
        return _fail(player, "Объект уже в портфеле")
    price = int(listing.purchase_price)
    if player.cash < price:
        return _insufficient(player, "", price)

    updated = copy.deepcopy(player)
    updated.cash = int(updated.cash) - price
    owned = _acquire(updated, listing, cfg)
    refresh_net_worth(updated)
    message = f"Куплена {owned.name}"
    return ActionResult(
        success=True,
        message=message,
        player=updated,
        events=[_action_event(now, "purchase", owned.property_id, message)],
    )


def buy_with_mortgage(
    player: Player, listing: Property, now: int, cfg: EngineConfig, reference: ReferenceConfig
) -> ActionResult:
    preset = reference.loan_preset(player.difficulty)
    if player.find_property(listing.property_id) is not None:
        return _fail(player, "Объект уже в портфеле")
    price = int(listing.purchase_price)
    down = mortgage_down_payment(price, cfg)
    if player.cash < down:
        return _insufficient(player, " для первоначального взноса", down)

    updated = copy.deepcopy(player)
    updated.cash = int(updated.cash) - down
    owned = _acquire(updated, listing, cfg)
    loan = originate_loan(
        loan_id=f"loan-{int(now)}-{owned.property_id}",
        player_id=updated.player_id,
        principal=price - down,
        annual_rate=preset.base_interest_rate,
        term_months=cfg.mortgage_term_months,
        now=now,
        payment_interval_ms=cfg.timers.loan_payment_interval_ms,
        property_id=owned.property_id,
        loan_type="ипотека",
    )
    owned.loan_id = loan.loan_id
    updated.loans.append(loan)
    refresh_net_worth(updated)

    message = f"Куплена {owned.name} в ипотеку"
    return ActionResult(
        success=True,
        message=message,
        player=updated,
        events=[_action_event(now, "purchase", owned.property_id, message)],
    )


def take_loan_against_property(
    player: Player, property_id: str, now: int, cfg: EngineConfig, reference: ReferenceConfig
) -> ActionResult:
    preset = reference.loan_preset(player.difficulty)
    current = _require_property(player, property_id)
    if current.loan_id:
        return _fail(player, "На объект уже оформлен кредит")

    updated = copy.deepcopy(player)
    p = _require_property(updated, property_id)
    amount = round_money(float(p.current_value) * float(cfg.pledge_ltv))
    loan = originate_loan(
        loan_id=f"loan-{int(now)}-{p.property_id}",
        player_id=updated.player_id,
        principal=amount,
        annual_rate=float(preset.base_interest_rate) + float(cfg.pledge_rate_premium),
        term_months=cfg.pledge_term_months,
        now=now,
        payment_interval_ms=cfg.timers.loan_payment_interval_ms,
        property_id=p.property_id,
        loan_type="залог",
    )
    p.loan_id = loan.loan_id
    updated.loans.append(loan)
    updated.cash = int(updated.cash) + amount
    refresh_net_worth(updated)

    message = f"Взят залог под {p.name} на сумму {format_money(amount)}"
    return ActionResult(
        success=True,
        message=message,
        player=updated,
        events=[_action_event(now, "loan", p.property_id, message, "info")],
    )
