from __future__ import annotations

from realtygame.calculations import annuity_payment
from realtygame.config import EngineConfig, ReferenceConfig
from realtygame.exceptions import ConfigurationError, EntityNotFoundError
from realtygame.lifecycle import (
    buy_with_cash,
    buy_with_mortgage,
    change_strategy,
    complete_renovation,
    property_state,
    resolve_rent_period,
    sale_probability,
    start_renovation,
    take_loan_against_property,
    upgrade_condition,
)
from realtygame.models import MarketState, Player, Property
from realtygame.presets import default_reference_config

NOW = 1_767_225_600_000


class ScriptedRandom:
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


def _listing(pid: str = "p1", price: int = 1_000_000) -> Property:
    return Property(
        property_id=pid,
        name="Однушка в центре",
        purchase_price=price,
        current_value=price,
        base_rent=25_000,
        district="Центр",
        property_type="Квартира",
        condition="требует ремонта",
        monthly_expenses=5_000,
    )


def _owner(cash: int = 1_000_000, strategy: str = "none") -> Player:
    p = _listing()
    p.strategy = strategy
    return Player(player_id="u1", difficulty="normal", cash=cash, properties=[p])


def test_property_state() -> None:
    p = _listing()
    _assert(property_state(p) == "idle", "no strategy")
    p.strategy = "rent"
    _assert(property_state(p) == "renting", "renting")
    p.is_under_renovation = True
    _assert(property_state(p) == "under-renovation", "renovation wins")


def test_change_strategy_rent_and_back() -> None:
    player = _owner()
    r = change_strategy(player, "p1", "rent", NOW)
    _assert(r.success, r.message)
    _assert(r.player.properties[0].next_rent_at == NOW + 60_000, "rent scheduled one interval ahead")
    _assert(player.properties[0].next_rent_at is None, "input player untouched")

    again = change_strategy(r.player, "p1", "rent", NOW + 10_000)
    _assert(again.player.properties[0].next_rent_at == NOW + 60_000, "existing schedule kept")

    hold = change_strategy(again.player, "p1", "hold", NOW)
    _assert(hold.player.properties[0].next_rent_at is None, "leaving rent clears the schedule")


def test_change_strategy_flip_sale_price() -> None:
    r = change_strategy(_owner(), "p1", "flip", NOW)
    _assert(r.player.properties[0].sale_price == 1_000_000, "defaults to current value")
    r2 = change_strategy(_owner(), "p1", "flip", NOW, sale_price=1_250_000)
    _assert(r2.player.properties[0].sale_price == 1_250_000, "explicit asking price")
    r3 = change_strategy(r2.player, "p1", "rent", NOW)
    _assert(r3.player.properties[0].sale_price is None, "sale price cleared off flip")


def test_change_strategy_rejects_unknown() -> None:
    player = _owner()
    r = change_strategy(player, "p1", "lease", NOW)
    _assert(not r.success and r.player is player, "unknown strategy fails without mutation")
    try:
        change_strategy(player, "nope", "rent", NOW)
    except EntityNotFoundError:
        pass
    else:
        raise AssertionError("expected EntityNotFoundError")


def test_renovation_insufficient_cash_reports_shortage() -> None:
    player = _owner(cash=40_000)
    r = start_renovation(player, "p1", "cosmetic", NOW, EngineConfig())
    _assert(not r.success, "must fail")
    _assert("Не хватает: 10 000 ₽" in r.message, r.message)
    _assert(r.player is player and player.cash == 40_000, "no mutation on failure")


def test_renovation_start_and_complete() -> None:
    cfg = EngineConfig()
    rented = change_strategy(_owner(), "p1", "rent", NOW).player
    r = start_renovation(rented, "p1", "капремонт", NOW, cfg)
    _assert(r.success, r.message)
    p = r.player.properties[0]
    _assert(r.player.cash == 1_000_000 - 150_000, "15% of purchase price")
    _assert(p.current_value == 1_200_000, "major renovation adds 20%")
    _assert(p.renovation_ends_at == NOW + 180_000, "three minutes")
    _assert(p.next_rent_at is None, "rent paused")
    _assert(p.renovation_cost_total == 150_000, "cost accumulated for tax")
    _assert(r.player.stats.total_renovations == 1 and r.player.experience == 75, "stats and xp")

    dup = start_renovation(r.player, "p1", "cosmetic", NOW, cfg)
    _assert(not dup.success and dup.message == "Ремонт уже идёт", "no second renovation")

    _assert(not complete_renovation(p, NOW + 179_999, cfg), "not due yet")
    _assert(complete_renovation(p, NOW + 180_000, cfg), "due")
    _assert(p.condition == "нормальная", "condition upgraded")
    _assert(p.next_rent_at == NOW + 240_000, "rent rescheduled")
    _assert(not complete_renovation(p, NOW + 500_000, cfg), "second call is a no-op")


def test_upgrade_condition_saturates() -> None:
    _assert(upgrade_condition("убитая") == "требует ремонта", "step 1")
    _assert(upgrade_condition("нормальная") == "после ремонта", "step 3")
    _assert(upgrade_condition("после ремонта") == "после ремонта", "saturates")


def test_sale_probability_bands() -> None:
    cfg = EngineConfig()
    _assert(sale_probability(95, 100, cfg) == 0.5, "<=0.95")
    _assert(sale_probability(100, 100, cfg) == 0.3, "<=1.0")
    _assert(sale_probability(110, 100, cfg) == 0.15, "<=1.1")
    _assert(sale_probability(111, 100, cfg) == 0.05, "above")


def test_resolve_rent_period() -> None:
    cfg = EngineConfig()
    p = _listing()
    p.strategy = "rent"
    p.monthly_expenses = 2_592_000
    market = MarketState(rent_index=1.1, vacancy_rate=0.1)
    _assert(resolve_rent_period(p, market, ScriptedRandom([0.05]), cfg) is None, "vacant draw")
    got = resolve_rent_period(p, market, ScriptedRandom([0.5]), cfg)
    _assert(got == 27_440, f"25000 * 1.1 - 60 expense share, got {got}")


def test_buy_with_cash() -> None:
    player = Player(player_id="u1", cash=1_500_000)
    r = buy_with_cash(player, _listing(), NOW, EngineConfig())
    _assert(r.success, r.message)
    _assert(r.player.cash == 500_000 and len(r.player.properties) == 1, "paid in full")
    _assert(r.player.properties[0].strategy == "none", "bought idle")
    _assert(r.player.experience == 25 and r.player.stats.properties_owned == 1, "xp and stats")
    _assert(r.player.net_worth == 1_500_000, "net worth preserved by a cash purchase")

    poor = Player(player_id="u2", cash=10)
    fail = buy_with_cash(poor, _listing(), NOW, EngineConfig())
    _assert(not fail.success and fail.player is poor, "insufficient funds")
    _assert("Нужно: 1 000 000 ₽" in fail.message and "Не хватает: 999 990 ₽" in fail.message, fail.message)


def test_buy_with_mortgage() -> None:
    cfg = EngineConfig()
    ref = default_reference_config(NOW)
    r = buy_with_mortgage(Player(player_id="u1", cash=300_000), _listing(), NOW, cfg, ref)
    _assert(r.success, r.message)
    loan = r.player.loans[0]
    _assert(r.player.cash == 100_000, "20% down")
    _assert(loan.principal == 800_000 and loan.annual_rate == 12.5, "normal preset")
    _assert(loan.monthly_payment == annuity_payment(800_000, 12.5, 120), "120-month annuity")
    _assert(loan.next_payment_at == NOW + 60_000, "first payment one interval out")
    _assert(r.player.properties[0].loan_id == loan.loan_id, "property linked to loan")

    fail = buy_with_mortgage(Player(player_id="u1", cash=199_999), _listing(), NOW, cfg, ref)
    _assert(not fail.success and "первоначального взноса" in fail.message, fail.message)
    _assert("Нужно: 200 000 ₽" in fail.message and "Не хватает: 1 ₽" in fail.message, fail.message)


def test_mortgage_requires_reference_presets() -> None:
    try:
        buy_with_mortgage(Player(player_id="u1", cash=1_000_000), _listing(), NOW, EngineConfig(), ReferenceConfig())
    except ConfigurationError:
        pass
    else:
        raise AssertionError("expected ConfigurationError without loan presets")


def test_take_loan_against_property() -> None:
    cfg = EngineConfig()
    ref = default_reference_config(NOW)
    player = _owner(cash=0)
    r = take_loan_against_property(player, "p1", NOW, cfg, ref)
    _assert(r.success, r.message)
    loan = r.player.loans[0]
    _assert(loan.principal == 600_000 and r.player.cash == 600_000, "60% of current value")
    _assert(loan.annual_rate == 14.5 and loan.loan_type == "залог", "preset rate + 2")
    _assert(r.player.net_worth == player.properties[0].current_value, "borrowing does not change net worth")

    again = take_loan_against_property(r.player, "p1", NOW, cfg, ref)
    _assert(not again.success and "уже оформлен" in again.message, "one loan per property")


def main() -> None:
    tests = [
        test_property_state,
        test_change_strategy_rent_and_back,
        test_change_strategy_flip_sale_price,
        test_change_strategy_rejects_unknown,
        test_renovation_insufficient_cash_reports_shortage,
        test_renovation_start_and_complete,
        test_upgrade_condition_saturates,
        test_sale_probability_bands,
        test_resolve_rent_period,
        test_buy_with_cash,
        test_buy_with_mortgage,
        test_mortgage_requires_reference_presets,
        test_take_loan_against_property,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
