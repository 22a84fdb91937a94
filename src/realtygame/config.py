"""Engine and reference configuration.

Nothing here is module-level mutable state: hosts build an ``EngineConfig`` and a
``ReferenceConfig`` once and pass them into processors and action handlers.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Tuple

from realtygame.exceptions import ConfigurationError
from realtygame.models import LoanPreset, MarketEvent, Property


@dataclass
class GameTimers:
    rent_interval_ms: int = 60_000  # 1 real minute == 1 game month
    loan_payment_interval_ms: int = 60_000


@dataclass
class RenovationTier:
    label: str
    cost_ratio: float  # share of purchase price
    duration_ms: int
    value_multiplier: float
    experience: int


def _default_renovation_tiers() -> Dict[str, RenovationTier]:
    return {
        "cosmetic": RenovationTier(
            label="косметика", cost_ratio=0.05, duration_ms=60_000, value_multiplier=1.1, experience=40
        ),
        "major": RenovationTier(
            label="капремонт", cost_ratio=0.15, duration_ms=180_000, value_multiplier=1.2, experience=75
        ),
    }


@dataclass
class EngineConfig:
    timers: GameTimers = field(default_factory=GameTimers)

    # Entry point runs catch-up only when more than one tick interval was missed.
    tick_interval_ms: int = 60_000

    # Market
    phase_change_probability: float = 0.05

    # Valuation
    value_floor_ratio: float = 0.7
    phase_value_multipliers: Dict[str, float] = field(
        default_factory=lambda: {"growth": 1.01, "stability": 1.0, "crisis": 0.98}
    )

    # Flip sales: (max asking/market ratio, probability per tick), checked in order
    sale_probability_bands: List[Tuple[float, float]] = field(
        default_factory=lambda: [(0.95, 0.5), (1.0, 0.3), (1.1, 0.15)]
    )
    sale_probability_floor: float = 0.05
    sale_tax_rate: float = 0.13

    renovation_tiers: Dict[str, RenovationTier] = field(default_factory=_default_renovation_tiers)

    # Experience awards
    purchase_experience: int = 25
    sale_experience: int = 50
    rent_experience_divisor: int = 1000  # 1 xp per 1000 of rent income

    # Financing
    mortgage_down_payment_ratio: float = 0.2
    mortgage_term_months: int = 120
    pledge_ltv: float = 0.6
    pledge_term_months: int = 60
    pledge_rate_premium: float = 2.0

    # Monthly expenses are pro-rated against a calendar month when rent is paid.
    expense_period_ms: int = 30 * 24 * 60 * 60 * 1000

    # Narration log retained by storage
    event_retention: int = 100

    @classmethod
    def from_env(cls) -> "EngineConfig":
        """Create config from REALTYGAME_* environment variables."""
        cfg = cls()
        rent_ms = os.getenv("REALTYGAME_RENT_INTERVAL_MS")
        if rent_ms:
            cfg.timers.rent_interval_ms = int(rent_ms)
        loan_ms = os.getenv("REALTYGAME_LOAN_INTERVAL_MS")
        if loan_ms:
            cfg.timers.loan_payment_interval_ms = int(loan_ms)
        tick_ms = os.getenv("REALTYGAME_TICK_INTERVAL_MS")
        if tick_ms:
            cfg.tick_interval_ms = int(tick_ms)
        phase_p = os.getenv("REALTYGAME_PHASE_CHANGE_PROBABILITY")
        if phase_p:
            cfg.phase_change_probability = float(phase_p)
        tax = os.getenv("REALTYGAME_SALE_TAX_RATE")
        if tax:
            cfg.sale_tax_rate = float(tax)
        retention = os.getenv("REALTYGAME_EVENT_RETENTION")
        if retention:
            cfg.event_retention = int(retention)
        return cfg


@dataclass
class ReferenceConfig:
    """Reference data normally delivered by the backend at startup."""

    loan_presets: Dict[str, LoanPreset] = field(default_factory=dict)
    market_events: List[MarketEvent] = field(default_factory=list)
    # Keys look like "murmansk:Центр:rent" / "murmansk:Центр:price"
    rent_coefficients: Dict[str, float] = field(default_factory=dict)
    price_coefficients: Dict[str, float] = field(default_factory=dict)
    starting_cash: Dict[str, int] = field(default_factory=dict)
    listings: List[Property] = field(default_factory=list)

    def loan_preset(self, difficulty: str) -> LoanPreset:
        if not self.loan_presets:
            raise ConfigurationError("reference config has no loan presets loaded")
        preset = self.loan_presets.get(difficulty)
        if preset is None:
            raise ConfigurationError(f"no loan preset for difficulty: {difficulty}")
        return preset

    def starting_cash_for(self, difficulty: str) -> int:
        if difficulty not in self.starting_cash:
            raise ConfigurationError(f"no starting cash for difficulty: {difficulty}")
        return int(self.starting_cash[difficulty])
