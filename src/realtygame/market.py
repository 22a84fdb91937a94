from __future__ import annotations

from dataclasses import replace
from typing import Iterable, List

from realtygame.config import EngineConfig
from realtygame.models import (
    MARKET_PHASES,
    PHASE_CRISIS,
    PHASE_GROWTH,
    PHASE_STABILITY,
    MarketEvent,
    MarketState,
    RandomSource,
)

_PHASE_DESCRIPTIONS = {
    PHASE_GROWTH: "Рост: цены и аренда растут, спрос высокий",
    PHASE_STABILITY: "Стабильность: рынок спокоен",
    PHASE_CRISIS: "Кризис: цены падают, растёт доля простоя",
}


def _clamp(x: float, lo: float, hi: float) -> float:
    if x <= lo:
        return float(lo)
    if x >= hi:
        return float(hi)
    return float(x)


def initialize_market(city_id: str = "murmansk", now: int = 0) -> MarketState:
    return MarketState(
        city_id=city_id,
        phase=PHASE_STABILITY,
        price_index=1.0,
        rent_index=1.0,
        vacancy_rate=0.05,
        active_events=[],
        last_updated_at=int(now),
    )


def phase_description(phase: str) -> str:
    return _PHASE_DESCRIPTIONS.get(phase, "Неизвестная фаза рынка")


def advance_phase(phase: str, rng: RandomSource, cfg: EngineConfig) -> str:
    """Maybe switch the market phase.

    With probability ``cfg.phase_change_probability`` a phase is picked uniformly
    at random from all three; picking the current one is allowed.
    """
    if rng.random() >= float(cfg.phase_change_probability):
        return phase
    idx = int(rng.random() * len(MARKET_PHASES))
    return MARKET_PHASES[min(idx, len(MARKET_PHASES) - 1)]


def drift_indices(market: MarketState) -> MarketState:
    price = float(market.price_index)
    rent = float(market.rent_index)
    vacancy = float(market.vacancy_rate)

    if market.phase == PHASE_GROWTH:
        price = min(1.3, price * 1.005)
        rent = min(1.2, rent * 1.003)
        vacancy = max(0.02, vacancy * 0.99)
    elif market.phase == PHASE_CRISIS:
        price = max(0.7, price * 0.995)
        rent = max(0.8, rent * 0.997)
        vacancy = min(0.15, vacancy * 1.02)
    elif market.phase == PHASE_STABILITY:
        # Relax toward the neutral point: 0.1% per tick for indices, 1% for vacancy.
        price = price * 0.999 + 0.001
        rent = rent * 0.999 + 0.001
        vacancy = vacancy * 0.99 + 0.05 * 0.01

    return replace(
        market,
        price_index=price,
        rent_index=rent,
        vacancy_rate=vacancy,
        active_events=list(market.active_events),
    )


def activate_events(market: MarketState, now: int, catalogue: Iterable[MarketEvent]) -> MarketState:
    active = [replace(ev) for ev in catalogue if ev.is_active_at(now)]
    return replace(market, active_events=active)


def _compose(modifiers: Iterable[float]) -> float:
    mult = 1.0
    for m in modifiers:
        mult *= 1.0 + float(m) / 100.0
    return mult


def price_event_multiplier(market: MarketState) -> float:
    return _compose(ev.price_modifier for ev in market.active_events)


def rent_event_multiplier(market: MarketState) -> float:
    return _compose(ev.rent_modifier for ev in market.active_events)


def vacancy_event_multiplier(market: MarketState) -> float:
    return _compose(ev.vacancy_modifier for ev in market.active_events)


def effective_vacancy(market: MarketState) -> float:
    return _clamp(float(market.vacancy_rate) * vacancy_event_multiplier(market), 0.0, 1.0)


def advance_market(
    market: MarketState,
    now: int,
    rng: RandomSource,
    cfg: EngineConfig,
    catalogue: Iterable[MarketEvent],
) -> MarketState:
    """One market step: phase roll, index drift, event window refresh."""
    phase = advance_phase(market.phase, rng, cfg)
    stepped = drift_indices(replace(market, phase=phase))
    stepped = activate_events(stepped, now, catalogue)
    stepped.last_updated_at = int(now)
    return stepped


def active_event_names(market: MarketState) -> List[str]:
    return [ev.name for ev in market.active_events]
