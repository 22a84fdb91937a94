from __future__ import annotations

import copy

from realtygame.calculations import net_worth
from realtygame.config import EngineConfig
from realtygame.engine import process_tick
from realtygame.exceptions import InvariantViolationError
from realtygame.models import Loan, MarketState, Player, Property

NOW = 1_767_225_600_000


class ScriptedRandom:
    """random() returns the scripted values in order, then ``fallback`` forever."""

    def __init__(self, values=(), fallback: float = 0.99):
        self._values = list(values)
        self._fallback = fallback

    def random(self) -> float:
        if self._values:
            return self._values.pop(0)
        return self._fallback


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def _rental(next_rent_at=NOW, **kw) -> Property:
    return Property(
        property_id=kw.pop("property_id", "flat1"),
        name=kw.pop("name", "Однушка"),
        purchase_price=kw.pop("purchase_price", 1_000_000),
        current_value=kw.pop("current_value", 1_000_000),
        base_rent=kw.pop("base_rent", 25_000),
        strategy=kw.pop("strategy", "rent"),
        next_rent_at=next_rent_at,
        **kw,
    )


def _player(cash: int = 1_000_000, properties=None, loans=None) -> Player:
    p = Player(player_id="u1", cash=cash, properties=list(properties or []), loans=list(loans or []))
    p.net_worth = net_worth(p.cash, p.properties, p.loans)
    return p


def _market(**kw) -> MarketState:
    kw.setdefault("vacancy_rate", 0.0)
    return MarketState(**kw)


def test_end_to_end_rent_tick() -> None:
    player = _player(properties=[_rental()])
    res = process_tick(player, _market(), NOW, EngineConfig(), ScriptedRandom())

    _assert(res.player.cash == 1_025_000, f"expected cash 1025000, got {res.player.cash}")
    _assert(len(res.events) == 1, f"expected one event, got {[e.message for e in res.events]}")
    _assert("Аренда" in res.events[0].message, res.events[0].message)
    _assert(res.events[0].severity == "success", "rent event is a success")
    _assert(res.player.properties[0].next_rent_at == NOW + 60_000, "rent rescheduled one interval ahead")
    _assert(res.player.stats.total_rent_income == 25_000, "rent income tracked")
    _assert(res.player.experience == 25, "1 xp per 1000 of rent")


def test_inputs_are_not_mutated() -> None:
    player = _player(properties=[_rental()])
    market = _market(phase="growth")
    before_p = copy.deepcopy(player)
    before_m = copy.deepcopy(market)
    process_tick(player, market, NOW, EngineConfig(), ScriptedRandom())
    _assert(player == before_p, "player input mutated")
    _assert(market == before_m, "market input mutated")


def test_net_worth_invariant_after_tick() -> None:
    loan = Loan(
        loan_id="l1",
        principal=800_000,
        remaining_principal=800_000,
        annual_rate=12.5,
        monthly_payment=11_711,
        property_id="flat1",
        next_payment_at=NOW,
    )
    player = _player(cash=200_000, properties=[_rental(loan_id="l1", monthly_expenses=5_000)], loans=[loan])
    res = process_tick(player, _market(phase="growth"), NOW, EngineConfig(), ScriptedRandom())
    p = res.player
    expected = p.cash + sum(x.current_value for x in p.properties) - sum(x.remaining_principal for x in p.loans)
    _assert(p.net_worth == expected, f"net worth {p.net_worth} != {expected}")


def test_deadline_monotonicity() -> None:
    cfg = EngineConfig()
    state = _player(properties=[_rental()])
    market = _market()
    res = process_tick(state, market, NOW, cfg, ScriptedRandom())
    again = process_tick(res.player, res.market, NOW + 59_999, cfg, ScriptedRandom())
    _assert(again.player.cash == res.player.cash, "rent must not be paid twice within one interval")
    _assert(not any("Аренда" in e.message for e in again.events), "no second rent event")
    third = process_tick(again.player, again.market, NOW + 60_000, cfg, ScriptedRandom())
    _assert(third.player.cash == res.player.cash + 25_000, "rent due again after one interval")
    _assert(third.player.properties[0].next_rent_at > NOW + 60_000, "deadline moved past now")


def test_vacancy_loses_period() -> None:
    player = _player(properties=[_rental()])
    res = process_tick(player, _market(vacancy_rate=0.5), NOW, EngineConfig(), ScriptedRandom([0.1]))
    _assert(res.player.cash == 1_000_000, "no rent on a vacant period")
    _assert(res.events[0].severity == "warning" and "съехал" in res.events[0].message, "vacancy warning")
    _assert(res.player.properties[0].next_rent_at == NOW + 60_000, "schedule still advances")


def test_loan_payoff_removal() -> None:
    loan = Loan(
        loan_id="l1",
        principal=100_000,
        remaining_principal=400,
        annual_rate=12.0,
        monthly_payment=500,
        property_id="flat1",
        next_payment_at=NOW,
    )
    prop = _rental(next_rent_at=None, strategy="hold", loan_id="l1")
    player = _player(cash=10_000, properties=[prop], loans=[loan])
    res = process_tick(player, _market(), NOW, EngineConfig(), ScriptedRandom())

    _assert(res.player.loans == [], "paid-off loan must be removed")
    _assert(res.player.cash == 9_500, f"cash must drop by exactly 500, got {res.player.cash}")
    _assert(res.player.properties[0].loan_id is None, "property back-reference cleared")
    ids = [e.event_id for e in res.events]
    _assert(any(i.startswith("loan-paid-") for i in ids), f"payoff event expected: {ids}")
    _assert(any("Ежемесячный платёж" in e.message for e in res.events), "aggregate payment event")


def test_loan_payment_reschedules() -> None:
    loan = Loan(
        loan_id="l1",
        principal=1_000_000,
        remaining_principal=1_000_000,
        annual_rate=12.0,
        monthly_payment=88_849,
        next_payment_at=NOW - 5_000,
    )
    res = process_tick(_player(cash=100_000, loans=[loan]), _market(), NOW, EngineConfig(), ScriptedRandom())
    after = res.player.loans[0]
    _assert(after.next_payment_at == NOW + 60_000, "next payment one interval after now")
    _assert(after.remaining_principal == 1_000_000 - (88_849 - 10_000), f"amortized: {after.remaining_principal}")
    _assert(res.player.cash == 100_000 - 88_849, "full payment deducted")


def test_renovation_completion_idempotence() -> None:
    cfg = EngineConfig()
    prop = _rental(
        next_rent_at=None,
        condition="требует ремонта",
        is_under_renovation=True,
        renovation_starts_at=NOW - 60_000,
        renovation_ends_at=NOW,
    )
    res = process_tick(_player(properties=[prop]), _market(), NOW, cfg, ScriptedRandom())
    p = res.player.properties[0]
    _assert(not p.is_under_renovation, "renovation finished")
    _assert(p.condition == "нормальная", f"condition advanced one step, got {p.condition}")
    _assert(p.next_rent_at == NOW + 60_000, "rent resumes one interval after completion")
    _assert(sum("Ремонт завершён" in e.message for e in res.events) == 1, "one completion event")

    state = res
    for i in range(1, 4):
        state = process_tick(state.player, state.market, NOW + i * 1_000, cfg, ScriptedRandom())
        _assert(state.player.properties[0].condition == "нормальная", "condition must not advance twice")
        _assert(not any("Ремонт" in e.message for e in state.events), "no repeated completion event")


def test_renovating_property_collects_no_rent() -> None:
    prop = _rental(is_under_renovation=True, renovation_starts_at=NOW, renovation_ends_at=NOW + 60_000)
    res = process_tick(_player(properties=[prop]), _market(), NOW, EngineConfig(), ScriptedRandom())
    _assert(res.player.cash == 1_000_000, "no rent during renovation")


def test_flip_sale_settles_loan_and_tax() -> None:
    loan = Loan(
        loan_id="l1",
        principal=800_000,
        remaining_principal=500_000,
        annual_rate=12.5,
        monthly_payment=11_711,
        property_id="flat1",
        next_payment_at=NOW + 30_000,
    )
    prop = _rental(next_rent_at=None, strategy="flip", sale_price=1_100_000, loan_id="l1")
    player = _player(cash=0, properties=[prop], loans=[loan])
    # First draw is the sale trial.
    res = process_tick(player, _market(), NOW, EngineConfig(), ScriptedRandom([0.0]))

    _assert(res.player.properties == [], "sold property removed")
    _assert(res.player.loans == [], "secured loan repaid and removed")
    # 1.1M - 13% of 100k profit - 500k loan
    _assert(res.player.cash == 1_100_000 - 13_000 - 500_000, f"unexpected cash {res.player.cash}")
    _assert(res.player.stats.total_sales == 1, "sale counted")
    _assert(res.player.experience == 50, "sale xp")
    sale = [e for e in res.events if e.message.startswith("Продана")]
    _assert(len(sale) == 1 and "87 000 ₽" in sale[0].message, [e.message for e in res.events])


def test_flip_not_sold_on_failed_trial() -> None:
    prop = _rental(next_rent_at=None, strategy="flip", sale_price=2_000_000)
    res = process_tick(_player(cash=0, properties=[prop]), _market(), NOW, EngineConfig(), ScriptedRandom([0.06]))
    _assert(len(res.player.properties) == 1, "overpriced listing rarely sells; 0.06 >= 0.05 keeps it")


def test_bankruptcy_signalling() -> None:
    cfg = EngineConfig()
    player = _player(cash=-100)
    res = process_tick(player, _market(), NOW, cfg, ScriptedRandom())
    errors = [e for e in res.events if e.severity == "error"]
    _assert(len(errors) == 1, f"exactly one error event, got {len(errors)}")
    _assert("Отрицательный баланс" in errors[0].message, errors[0].message)

    nxt = process_tick(res.player, res.market, NOW + 60_000, cfg, ScriptedRandom())
    _assert(nxt.market.last_updated_at == NOW + 60_000, "subsequent ticks keep running")


def test_maintenance_throttled_per_interval() -> None:
    cfg = EngineConfig()
    prop = _rental(next_rent_at=None, strategy="hold", monthly_expenses=5_000)
    player = _player(cash=100_000, properties=[prop])
    res = process_tick(player, _market(), NOW, cfg, ScriptedRandom())
    _assert(res.player.cash == 95_000, "first tick charges upkeep")
    res2 = process_tick(res.player, res.market, NOW + 30_000, cfg, ScriptedRandom())
    _assert(res2.player.cash == 95_000, "no second charge within the interval")
    res3 = process_tick(res2.player, res2.market, NOW + 60_000, cfg, ScriptedRandom())
    _assert(res3.player.cash == 90_000, "charged again after one interval")


def test_dangling_loan_reference_raises() -> None:
    loan = Loan(loan_id="l1", principal=1, remaining_principal=1, annual_rate=0, monthly_payment=1, property_id="ghost")
    try:
        process_tick(_player(loans=[loan]), _market(), NOW, EngineConfig(), ScriptedRandom())
    except InvariantViolationError:
        pass
    else:
        raise AssertionError("expected InvariantViolationError for a loan on an unknown property")

    prop = _rental(loan_id="missing")
    try:
        process_tick(_player(properties=[prop]), _market(), NOW, EngineConfig(), ScriptedRandom())
    except InvariantViolationError:
        pass
    else:
        raise AssertionError("expected InvariantViolationError for a property on an unknown loan")


def test_market_updated_every_tick() -> None:
    res = process_tick(_player(), _market(phase="growth"), NOW, EngineConfig(), ScriptedRandom())
    _assert(res.market.last_updated_at == NOW, "market timestamp")
    _assert(res.market.price_index > 1.0, "growth drift applied")


def main() -> None:
    tests = [
        test_end_to_end_rent_tick,
        test_inputs_are_not_mutated,
        test_net_worth_invariant_after_tick,
        test_deadline_monotonicity,
        test_vacancy_loses_period,
        test_loan_payoff_removal,
        test_loan_payment_reschedules,
        test_renovation_completion_idempotence,
        test_renovating_property_collects_no_rent,
        test_flip_sale_settles_loan_and_tax,
        test_flip_not_sold_on_failed_trial,
        test_bankruptcy_signalling,
        test_maintenance_throttled_per_interval,
        test_dangling_loan_reference_raises,
        test_market_updated_every_tick,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
