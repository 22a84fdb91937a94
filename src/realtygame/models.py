from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Protocol

# Phases of the city market.
PHASE_GROWTH = "growth"
PHASE_STABILITY = "stability"
PHASE_CRISIS = "crisis"
MARKET_PHASES = (PHASE_GROWTH, PHASE_STABILITY, PHASE_CRISIS)

STRATEGIES = ("none", "hold", "rent", "flip")

# Ordered from worst to best; renovation moves one step to the right.
CONDITIONS = ("убитая", "требует ремонта", "нормальная", "после ремонта")

SEVERITIES = ("info", "success", "warning", "error")


class RandomSource(Protocol):
    """Anything with random.Random-compatible random(): a float in [0, 1)."""

    def random(self) -> float: ...


@dataclass
class MarketEvent:
    event_id: str
    name: str
    starts_at: int
    ends_at: int
    description: str = ""
    event_type: str = ""

    # Percentage modifiers, e.g. 15 means x1.15, -8 means x0.92
    price_modifier: float = 0.0
    rent_modifier: float = 0.0
    vacancy_modifier: float = 0.0

    def is_active_at(self, now: int) -> bool:
        return int(self.starts_at) <= int(now) < int(self.ends_at)


@dataclass
class MarketState:
    city_id: str = "murmansk"
    phase: str = PHASE_STABILITY
    price_index: float = 1.0
    rent_index: float = 1.0
    vacancy_rate: float = 0.05
    active_events: List[MarketEvent] = field(default_factory=list)
    last_updated_at: int = 0


@dataclass
class Property:
    property_id: str
    name: str
    purchase_price: int
    current_value: int
    base_rent: int

    city_id: str = "murmansk"
    district: str = ""  # Центр|Спальный район|Возле порта|Отдалённый район
    property_type: str = ""  # Квартира|Студия|Коммерция|Комната
    condition: str = "нормальная"
    monthly_expenses: int = 0

    strategy: str = "none"  # none|hold|rent|flip
    sale_price: Optional[int] = None  # flip only

    # Renovation (deadline based)
    is_under_renovation: bool = False
    renovation_starts_at: Optional[int] = None
    renovation_ends_at: Optional[int] = None
    renovation_cost_total: int = 0

    # Rent schedule
    rent_interval_ms: int = 60_000
    next_rent_at: Optional[int] = None

    loan_id: Optional[str] = None


@dataclass
class Loan:
    loan_id: str
    principal: int
    remaining_principal: int
    annual_rate: float  # percent per year
    monthly_payment: int
    player_id: str = ""
    property_id: Optional[str] = None
    loan_type: str = "ипотека"  # ипотека|залог|потребкредит
    payment_interval_ms: int = 60_000
    next_payment_at: int = 0


@dataclass
class PlayerStats:
    total_sales: int = 0
    total_rent_income: int = 0
    total_renovations: int = 0
    properties_owned: int = 0  # max concurrent properties


@dataclass
class Player:
    player_id: str
    name: str = "Игрок"
    difficulty: str = "normal"  # easy|normal|hard
    city_id: str = "murmansk"

    cash: int = 0
    net_worth: int = 0
    properties: List[Property] = field(default_factory=list)
    loans: List[Loan] = field(default_factory=list)
    stats: PlayerStats = field(default_factory=PlayerStats)

    experience: int = 0
    level: int = 1

    created_at: int = 0
    last_synced_at: int = 0

    # Throttle markers: maintenance and revaluation run at most once per rent interval.
    last_expense_applied_at: int = 0
    last_valuation_applied_at: int = 0

    def find_property(self, property_id: str) -> Optional[Property]:
        for p in self.properties:
            if p.property_id == property_id:
                return p
        return None

    def find_loan(self, loan_id: str) -> Optional[Loan]:
        for loan in self.loans:
            if loan.loan_id == loan_id:
                return loan
        return None


@dataclass
class GameEvent:
    event_id: str
    timestamp: int
    message: str
    severity: str = "info"  # info|success|warning|error


@dataclass
class TickResult:
    player: Player
    market: MarketState
    events: List[GameEvent] = field(default_factory=list)


@dataclass
class ActionResult:
    success: bool
    message: str
    player: Player
    events: List[GameEvent] = field(default_factory=list)


@dataclass
class LoanPreset:
    base_interest_rate: float
    max_ltv: float
    description: str = ""


@dataclass
class Mission:
    mission_id: str
    mission_type: str  # portfolio_value|monthly_rent|districts|properties_count
    title: str
    target: int
    reward: int
    description: str = ""
    current: int = 0
    completed: bool = False
    completed_at: Optional[int] = None


@dataclass
class Achievement:
    achievement_id: str
    achievement_type: str  # novice|first_property|rent_king|flip_master|port_magnate|millionaire
    title: str
    description: str = ""
    icon: str = ""
    unlocked: bool = False
    unlocked_at: Optional[int] = None


@dataclass
class Snapshot:
    player: Player
    market: MarketState
    events: List[GameEvent] = field(default_factory=list)
    last_synced_at: int = 0
    missions: List[Mission] = field(default_factory=list)
    achievements: List[Achievement] = field(default_factory=list)
    available_properties: List[Property] = field(default_factory=list)
