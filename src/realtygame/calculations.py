from __future__ import annotations

import math
from typing import Iterable, Optional

from realtygame.config import EngineConfig
from realtygame.market import effective_vacancy, price_event_multiplier, rent_event_multiplier
from realtygame.models import Loan, MarketState, Player, Property


def round_money(x: float) -> int:
    """Round half up to whole currency units (matches the game's Math.round)."""
    return int(math.floor(float(x) + 0.5))


def format_money(x: float) -> str:
    """Format rubles the way the game shows them: ``1 025 000 ₽``."""
    amount = round_money(x)
    sign = "-" if amount < 0 else ""
    return f"{sign}{abs(amount):,} ₽".replace(",", " ")


def annuity_payment(principal: float, annual_rate_percent: float, term_months: int) -> int:
    term = int(term_months)
    if term <= 0:
        return 0
    r = float(annual_rate_percent) / 100.0 / 12.0
    if r == 0.0:
        return round_money(float(principal) / term)
    growth = (1.0 + r) ** term
    return round_money(float(principal) * (r * growth) / (growth - 1.0))


def net_worth(cash: int, properties: Iterable[Property], loans: Iterable[Loan]) -> int:
    assets = sum(int(p.current_value) for p in properties)
    debt = sum(int(loan.remaining_principal) for loan in loans)
    return int(cash) + assets - debt


def refresh_net_worth(player: Player) -> int:
    player.net_worth = net_worth(player.cash, player.properties, player.loans)
    return player.net_worth


def sale_tax(
    sale_price: float,
    purchase_price: float,
    renovation_cost: float = 0,
    cfg: Optional[EngineConfig] = None,
) -> int:
    rate = 0.13 if cfg is None else float(cfg.sale_tax_rate)
    profit = float(sale_price) - float(purchase_price) - float(renovation_cost)
    if profit <= 0:
        return 0
    return round_money(profit * rate)


def value_floor(prop: Property, cfg: EngineConfig) -> int:
    return round_money(float(prop.purchase_price) * float(cfg.value_floor_ratio))


def update_property_value(prop: Property, market: MarketState, cfg: EngineConfig) -> int:
    """Return the next appraised value for ``prop``; does not mutate it."""
    value = float(prop.current_value)
    value *= float(cfg.phase_value_multipliers.get(market.phase, 1.0))
    value *= price_event_multiplier(market)
    value *= float(market.price_index)
    return max(value_floor(prop, cfg), round_money(value))


def rent_for_period(prop: Property, market: MarketState) -> float:
    """Gross rent for one period before vacancy and maintenance."""
    if prop.strategy != "rent" or prop.is_under_renovation:
        return 0.0
    return float(prop.base_rent) * float(market.rent_index) * rent_event_multiplier(market)


def period_expense_share(prop: Property, cfg: EngineConfig) -> float:
    """Share of monthly_expenses attributed to one rent interval."""
    if cfg.expense_period_ms <= 0:
        return 0.0
    return float(prop.monthly_expenses) * float(prop.rent_interval_ms) / float(cfg.expense_period_ms)


def expected_monthly_cashflow(player: Player, market: MarketState, cfg: EngineConfig) -> int:
    """Expected rent net of vacancy, minus maintenance and loan payments."""
    vacancy = effective_vacancy(market)
    rent = 0.0
    for p in player.properties:
        gross = rent_for_period(p, market)
        if gross > 0:
            rent += (gross - period_expense_share(p, cfg)) * (1.0 - vacancy)
    maintenance = sum(int(p.monthly_expenses) for p in player.properties)
    payments = sum(int(loan.monthly_payment) for loan in player.loans)
    return round_money(rent - maintenance - payments)


def mortgage_down_payment(price: int, cfg: EngineConfig) -> int:
    return round_money(float(price) * float(cfg.mortgage_down_payment_ratio))


def can_afford_purchase(player: Player, price: int, cfg: EngineConfig, with_mortgage: bool = False) -> bool:
    need = mortgage_down_payment(price, cfg) if with_mortgage else int(price)
    return int(player.cash) >= need
