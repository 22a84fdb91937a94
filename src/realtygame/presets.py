from __future__ import annotations

import copy
from typing import Dict, List, Optional

from realtygame.config import ReferenceConfig
from realtygame.market import activate_events, initialize_market
from realtygame.models import (
    Achievement,
    LoanPreset,
    MarketEvent,
    Mission,
    Player,
    Property,
    Snapshot,
)

# One real minute is one game month.
GAME_MONTH_MS = 60_000

DEFAULT_CITY = "murmansk"

LOAN_PRESETS: Dict[str, LoanPreset] = {
    "easy": LoanPreset(base_interest_rate=9.5, max_ltv=0.8, description="Мягкий рынок кредитования, низкие ставки."),
    "normal": LoanPreset(base_interest_rate=12.5, max_ltv=0.75, description="Обычные условия кредитования."),
    "hard": LoanPreset(
        base_interest_rate=15.5,
        max_ltv=0.7,
        description="Жёсткие условия: высокие ставки, меньше доступный кредит.",
    ),
}

STARTING_CASH: Dict[str, int] = {"easy": 2_000_000, "normal": 1_500_000, "hard": 1_000_000}

# district -> (price multiplier, rent multiplier)
MURMANSK_DISTRICTS: Dict[str, tuple] = {
    "Центр": (1.2, 1.15),
    "Спальный район": (0.9, 0.95),
    "Возле порта": (1.1, 1.2),
    "Отдалённый район": (0.7, 0.8),
}


def _listing(pid: str, name: str, district: str, kind: str, price: int, rent: int, condition: str, expenses: int) -> Property:
    return Property(
        property_id=pid,
        name=name,
        purchase_price=price,
        current_value=price,
        base_rent=rent,
        city_id=DEFAULT_CITY,
        district=district,
        property_type=kind,
        condition=condition,
        monthly_expenses=expenses,
    )


def default_listings() -> List[Property]:
    return [
        _listing("p1", "Однушка в центре", "Центр", "Квартира", 4_200_000, 32_000, "нормальная", 5_000),
        _listing("p2", "Студия в спальном районе", "Спальный район", "Студия", 2_800_000, 23_000, "требует ремонта", 4_000),
        _listing("p3", "Коммерция возле порта", "Возле порта", "Коммерция", 5_500_000, 60_000, "нормальная", 12_000),
        _listing("p4", "Комната в хрущёвке", "Спальный район", "Комната", 1_200_000, 14_000, "убитая", 2_500),
        _listing("p5", "Студия у набережной", "Центр", "Студия", 3_500_000, 29_000, "после ремонта", 4_500),
    ]


# (id, name, description, start minute, end minute, price %, rent %, vacancy %, type)
_EXTENDED_EVENTS = [
    ("event-key-rate-up", "Повышение ключевой ставки",
     "Центробанк повысил ключевую ставку. Ипотека подорожала на 2%", 6, 18, -3, 0, 5, "key_rate_change"),
    ("event-key-rate-down", "Снижение ключевой ставки",
     "Центробанк снизил ключевую ставку. Ипотека подешевела на 1.5%", 18, 30, 2, 0, -3, "key_rate_change"),
    ("event-new-construction", "Строительство нового ЖК",
     "В спальном районе началось строительство нового жилого комплекса. Цены на вторичку падают",
     10, 28, -8, -3, 8, "new_construction"),
    ("event-port-expansion", "Расширение порта Мурманска",
     "Порт расширяется! Коммерческая недвижимость резко дорожает", 15, 39, 15, 20, -10, "port_expansion"),
    ("event-anomalous-winter", "Аномально тёплая зима",
     "Зима оказалась тёплой. Туристов меньше, аренда просела", 3, 6, 0, -15, 15, "anomalous_winter"),
    ("event-rental-law", "Новый закон об аренде",
     "Принят закон, защищающий арендаторов. Аренда выросла", 20, 56, 3, 10, -5, "rental_law"),
    ("event-repair-peak", "Сезон ремонтов",
     "Начался сезон ремонтов. Стоимость работ выросла на 20%", 5, 9, 0, 0, 0, "repair_peak"),
]

# (id, name, description, start month, duration months, price %, rent %, vacancy %)
_SEASONAL_EVENTS = [
    ("e1", "Зимний туристический сезон",
     "Всплеск поездок за северным сиянием: растут ставки аренды и загрузка.", 2, 4, 0, 15, -10),
    ("e2", "Лёгкий кризис",
     "Небольшой экономический спад, цены немного падают, аренда проседает.", 8, 6, -10, -5, 10),
    ("e3", "Запуск нового ТЦ",
     "В одном из спальных районов открывается новый ТЦ, что подтягивает спрос.", 12, 8, 5, 5, -5),
]


def build_event_catalogue(game_start: int) -> List[MarketEvent]:
    """Market events with absolute windows for a game started at ``game_start``."""
    start = int(game_start)
    out: List[MarketEvent] = []
    for eid, name, desc, m0, m1, price, rent, vacancy, kind in _EXTENDED_EVENTS:
        out.append(
            MarketEvent(
                event_id=eid,
                name=name,
                description=desc,
                starts_at=start + m0 * GAME_MONTH_MS,
                ends_at=start + m1 * GAME_MONTH_MS,
                price_modifier=price,
                rent_modifier=rent,
                vacancy_modifier=vacancy,
                event_type=kind,
            )
        )
    for eid, name, desc, month, duration, price, rent, vacancy in _SEASONAL_EVENTS:
        starts = start + month * GAME_MONTH_MS
        out.append(
            MarketEvent(
                event_id=eid,
                name=name,
                description=desc,
                starts_at=starts,
                ends_at=starts + duration * GAME_MONTH_MS,
                price_modifier=price,
                rent_modifier=rent,
                vacancy_modifier=vacancy,
                event_type="seasonal",
            )
        )
    return out


def default_reference_config(game_start: int = 0) -> ReferenceConfig:
    rent: Dict[str, float] = {}
    price: Dict[str, float] = {}
    for district, (pm, rm) in MURMANSK_DISTRICTS.items():
        price[f"{DEFAULT_CITY}:{district}:price"] = pm
        rent[f"{DEFAULT_CITY}:{district}:rent"] = rm
    return ReferenceConfig(
        loan_presets=copy.deepcopy(LOAN_PRESETS),
        market_events=build_event_catalogue(game_start),
        rent_coefficients=rent,
        price_coefficients=price,
        starting_cash=dict(STARTING_CASH),
        listings=default_listings(),
    )


def district_coefficient(reference: ReferenceConfig, city_id: str, district: str, kind: str = "price") -> float:
    table = reference.price_coefficients if kind == "price" else reference.rent_coefficients
    return float(table.get(f"{city_id}:{district}:{kind}", 1.0))


def initial_missions() -> List[Mission]:
    return [
        Mission("mission-1", "portfolio_value", "Портфель 10 млн", 10_000_000, 500,
                "Достигните чистого капитала 10 000 000 ₽"),
        Mission("mission-2", "monthly_rent", "Аренда 150 000₽/мес", 150_000, 300,
                "Получайте 150 000 ₽ аренды в месяц"),
        Mission("mission-3", "districts", "Все районы", 4, 400, "Купите объект в каждом районе города"),
        Mission("mission-4", "properties_count", "Портфель из 5 объектов", 5, 250,
                "Владейте одновременно 5 объектами"),
    ]


def initial_achievements() -> List[Achievement]:
    return [
        Achievement("ach-1", "novice", "Инвестор-новичок", "Купите первый объект недвижимости", "🏠"),
        Achievement("ach-2", "rent_king", "Король аренды", "Заработайте 200 000 ₽ на аренде", "👑"),
        Achievement("ach-3", "flip_master", "Флип-мастер", "Успешно продайте 10 объектов", "🔄"),
        Achievement("ach-4", "port_magnate", "Магнат порта", "Владейте 3 коммерческими объектами возле порта", "🚢"),
        Achievement("ach-5", "first_property", "Первый шаг", "Купите первый объект", "🎯"),
        Achievement("ach-6", "millionaire", "Миллионер", "Достигните капитала 5 000 000 ₽", "💰"),
    ]


def create_initial_snapshot(
    player_id: str,
    difficulty: str,
    now: int,
    reference: Optional[ReferenceConfig] = None,
    name: str = "Игрок",
) -> Snapshot:
    ref = reference or default_reference_config(now)
    cash = ref.starting_cash_for(difficulty)
    player = Player(
        player_id=player_id,
        name=name,
        difficulty=difficulty,
        city_id=DEFAULT_CITY,
        cash=cash,
        net_worth=cash,
        created_at=int(now),
        last_synced_at=int(now),
        # First maintenance and revaluation are due one interval after the start.
        last_expense_applied_at=int(now),
        last_valuation_applied_at=int(now),
    )
    market = activate_events(initialize_market(DEFAULT_CITY, now), now, ref.market_events)
    return Snapshot(
        player=player,
        market=market,
        events=[],
        last_synced_at=int(now),
        missions=initial_missions(),
        achievements=initial_achievements(),
        available_properties=copy.deepcopy(ref.listings),
    )
