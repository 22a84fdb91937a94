from __future__ import annotations

from typing import Iterable, List

from realtygame.calculations import format_money
from realtygame.lifecycle import property_state
from realtygame.market import effective_vacancy, phase_description
from realtygame.models import GameEvent, MarketState, Player, Property


def format_percent(x: float) -> str:
    return f"{float(x) * 100:.1f}%"


_STATE_LABELS = {
    "idle": "без стратегии",
    "holding": "удержание",
    "renting": "сдаётся",
    "under-renovation": "ремонт",
    "listed-for-sale": "на продаже",
}


def describe_property(p: Property) -> str:
    parts = [
        f"[{p.property_id}] {p.name}",
        f"{p.district}, {p.property_type}, {p.condition}",
        f"стоимость {format_money(p.current_value)}",
        f"аренда {format_money(p.base_rent)}",
        _STATE_LABELS.get(property_state(p), property_state(p)),
    ]
    if p.strategy == "flip" and p.sale_price is not None:
        parts.append(f"цена продажи {format_money(p.sale_price)}")
    if p.loan_id:
        parts.append(f"кредит {p.loan_id}")
    return " | ".join(parts)


def summary_lines(player: Player, market: MarketState) -> List[str]:
    lines = [
        f"Игрок: {player.name} ({player.difficulty})  Уровень {player.level}, опыт {player.experience}",
        f"Наличные: {format_money(player.cash)}  Капитал: {format_money(player.net_worth)}",
        (
            f"Рынок: {phase_description(market.phase)}; индекс цен {market.price_index:.3f}, "
            f"индекс аренды {market.rent_index:.3f}, простой {format_percent(effective_vacancy(market))}"
        ),
    ]
    if market.active_events:
        lines.append("События: " + ", ".join(ev.name for ev in market.active_events))
    return lines


def print_summary(player: Player, market: MarketState) -> None:
    print("")
    for line in summary_lines(player, market):
        print(line)


def print_portfolio(player: Player) -> None:
    if not player.properties:
        print("Объектов пока нет.")
    for p in player.properties:
        print("- " + describe_property(p))
    for loan in player.loans:
        print(
            f"  кредит {loan.loan_id} ({loan.loan_type}): остаток {format_money(loan.remaining_principal)}, "
            f"платёж {format_money(loan.monthly_payment)}, {loan.annual_rate:.1f}%"
        )


def print_events(events: Iterable[GameEvent], limit: int = 10) -> None:
    items = list(events)[-int(limit):]
    if not items:
        print("Новых событий нет.")
        return
    for ev in items:
        print(f"[{ev.severity}] {ev.message}")
