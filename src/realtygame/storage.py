from __future__ import annotations

import csv
import json
import re
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from realtygame.exceptions import SnapshotLoadError
from realtygame.logging import get_logger
from realtygame.models import (
    PHASE_CRISIS,
    PHASE_GROWTH,
    PHASE_STABILITY,
    Achievement,
    GameEvent,
    Loan,
    MarketEvent,
    MarketState,
    Mission,
    Player,
    PlayerStats,
    Property,
    Snapshot,
)

logger = get_logger(__name__)

SNAPSHOT_VERSION = "1.0.0"
EVENT_RETENTION = 100

_PLAYER_ID_RE = re.compile(r"^[A-Za-z0-9_.-]{1,64}$")

# Phase names as the browser game stored them.
_LEGACY_PHASES = {"рост": PHASE_GROWTH, "стабильность": PHASE_STABILITY, "кризис": PHASE_CRISIS}


def project_root() -> Path:
    # .../src/realtygame/storage.py -> parents[2] == repo root
    return Path(__file__).resolve().parents[2]


def data_dir(root: Optional[Path] = None) -> Path:
    p = Path(root) if root is not None else project_root() / "data"
    p.mkdir(parents=True, exist_ok=True)
    return p


def players_dir(root: Optional[Path] = None) -> Path:
    p = data_dir(root) / "players"
    p.mkdir(parents=True, exist_ok=True)
    return p


def valid_player_id(player_id: str) -> bool:
    return bool(_PLAYER_ID_RE.match(str(player_id or ""))) and str(player_id) not in (".", "..")


def _checked_id(player_id: str) -> str:
    if not valid_player_id(player_id):
        raise SnapshotLoadError(f"invalid player id: {player_id!r}")
    return str(player_id)


def snapshot_path(player_id: str, root: Optional[Path] = None) -> Path:
    return players_dir(root) / f"{_checked_id(player_id)}.json"


def event_log_path(player_id: str, root: Optional[Path] = None) -> Path:
    return players_dir(root) / f"{_checked_id(player_id)}.events.csv"


def list_player_ids(root: Optional[Path] = None) -> List[str]:
    return sorted(p.stem for p in players_dir(root).glob("*.json"))


def save_snapshot(
    snapshot: Snapshot,
    root: Optional[Path] = None,
    retention: int = EVENT_RETENTION,
    path: Optional[Path] = None,
) -> Path:
    """Write ``snapshot`` as JSON, keeping only the newest ``retention`` events."""
    p = path or snapshot_path(snapshot.player.player_id, root)
    state = asdict(snapshot)
    if retention >= 0:
        state["events"] = state["events"][-int(retention):] if retention else []
    payload = {"version": SNAPSHOT_VERSION, "snapshot": state}
    tmp = p.with_suffix(p.suffix + ".tmp")
    tmp.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")
    tmp.replace(p)
    return p


def load_snapshot(
    player_id: Optional[str] = None,
    root: Optional[Path] = None,
    path: Optional[Path] = None,
) -> Snapshot:
    if path is None:
        if player_id is None:
            raise SnapshotLoadError("either player_id or path is required")
        path = snapshot_path(player_id, root)
    if not path.exists():
        raise SnapshotLoadError(f"no saved game at {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        raise SnapshotLoadError(f"cannot read snapshot {path}: {e}") from e
    if not isinstance(payload, dict):
        raise SnapshotLoadError(f"snapshot {path} is not a JSON object")
    # Older saves had no envelope: the snapshot itself is the top-level object.
    d = payload.get("snapshot", payload)
    return snapshot_from_dict(d)


def snapshot_exists(player_id: str, root: Optional[Path] = None) -> bool:
    return snapshot_path(player_id, root).exists()


def reset_data_files(player_id: Optional[str] = None, root: Optional[Path] = None) -> None:
    """Delete one player's save and event log, or every player's when ``player_id`` is None."""
    if player_id is not None:
        targets = [snapshot_path(player_id, root), event_log_path(player_id, root)]
    else:
        pdir = players_dir(root)
        targets = list(pdir.glob("*.json")) + list(pdir.glob("*.events.csv"))
    for fp in targets:
        fp.unlink(missing_ok=True)


# ---- event log export ----

EVENT_LOG_COLUMNS = ["timestamp", "time_utc", "event_id", "severity", "message"]


def append_event_log_csv(player_id: str, events: Iterable[GameEvent], root: Optional[Path] = None) -> int:
    p = event_log_path(player_id, root)
    rows = list(events)
    if not rows:
        return 0
    new_file = not p.exists()
    with p.open("a", encoding="utf-8", newline="") as f:
        w = csv.DictWriter(f, fieldnames=EVENT_LOG_COLUMNS)
        if new_file:
            w.writeheader()
        for ev in rows:
            w.writerow(
                {
                    "timestamp": int(ev.timestamp),
                    "time_utc": datetime.fromtimestamp(int(ev.timestamp) / 1000.0, tz=timezone.utc).isoformat(),
                    "event_id": ev.event_id,
                    "severity": ev.severity,
                    "message": ev.message,
                }
            )
    return len(rows)


# ---- decoding ----

def _get(d: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for k in keys:
        if k in d and d[k] is not None:
            return d[k]
    return default


def to_timestamp(v: Any, default: int = 0) -> int:
    """Epoch milliseconds from an int, a numeric string or an ISO-8601 string."""
    if v is None or v == "":
        return int(default)
    if isinstance(v, bool):
        raise SnapshotLoadError(f"bad timestamp: {v!r}")
    if isinstance(v, (int, float)):
        return int(v)
    s = str(v).strip()
    try:
        return int(float(s))
    except ValueError:
        pass
    try:
        dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    except ValueError as e:
        raise SnapshotLoadError(f"bad timestamp: {v!r}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _opt_timestamp(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    return to_timestamp(v)


def _opt_int(v: Any) -> Optional[int]:
    if v is None or v == "":
        return None
    return int(round(float(v)))


def _money(v: Any) -> int:
    return int(round(float(v or 0)))


def _market_event_from_dict(d: Dict[str, Any]) -> MarketEvent:
    return MarketEvent(
        event_id=str(_get(d, "event_id", "id", default="")),
        name=str(_get(d, "name", default="")),
        starts_at=to_timestamp(_get(d, "starts_at", "startsAt")),
        ends_at=to_timestamp(_get(d, "ends_at", "endsAt")),
        description=str(_get(d, "description", default="")),
        event_type=str(_get(d, "event_type", "eventType", default="")),
        price_modifier=float(_get(d, "price_modifier", "priceIndexModifier", "priceImpactPercent", default=0.0)),
        rent_modifier=float(_get(d, "rent_modifier", "rentIndexModifier", "rentImpactPercent", default=0.0)),
        vacancy_modifier=float(_get(d, "vacancy_modifier", "vacancyModifier", "vacancyImpactPercent", default=0.0)),
    )


def _market_from_dict(d: Dict[str, Any]) -> MarketState:
    phase = str(_get(d, "phase", "currentPhase", default=PHASE_STABILITY))
    phase = _LEGACY_PHASES.get(phase, phase)
    vacancy = float(_get(d, "vacancy_rate", "vacancyRate", default=0.05))
    if vacancy > 1.0:
        # Some saves stored vacancy as a percentage.
        vacancy /= 100.0
    return MarketState(
        city_id=str(_get(d, "city_id", "cityId", default="murmansk")),
        phase=phase,
        price_index=float(_get(d, "price_index", "priceIndex", default=1.0)),
        rent_index=float(_get(d, "rent_index", "rentIndex", default=1.0)),
        vacancy_rate=vacancy,
        active_events=[_market_event_from_dict(e) for e in (_get(d, "active_events", "activeEvents", default=[]))],
        last_updated_at=to_timestamp(_get(d, "last_updated_at", "lastUpdatedAt")),
    )


def property_from_dict(d: Dict[str, Any]) -> Property:
    purchase = _money(_get(d, "purchase_price", "purchasePrice"))
    strategy = _get(d, "strategy", default="none") or "none"
    return Property(
        property_id=str(_get(d, "property_id", "id", default="")),
        name=str(_get(d, "name", default="")),
        purchase_price=purchase,
        current_value=_money(_get(d, "current_value", "currentValue", default=purchase)),
        base_rent=_money(_get(d, "base_rent", "baseRent", "baseMonthlyRent")),
        city_id=str(_get(d, "city_id", "cityId", default="murmansk")),
        district=str(_get(d, "district", default="")),
        property_type=str(_get(d, "property_type", "type", default="")),
        condition=str(_get(d, "condition", default="нормальная")),
        monthly_expenses=_money(_get(d, "monthly_expenses", "monthlyExpenses")),
        strategy=str(strategy),
        sale_price=_opt_int(_get(d, "sale_price", "salePrice")),
        is_under_renovation=bool(_get(d, "is_under_renovation", "isUnderRenovation", default=False)),
        renovation_starts_at=_opt_timestamp(_get(d, "renovation_starts_at", "renovationStartsAt")),
        renovation_ends_at=_opt_timestamp(_get(d, "renovation_ends_at", "renovationEndsAt")),
        renovation_cost_total=_money(_get(d, "renovation_cost_total", "renovationCostTotal")),
        rent_interval_ms=int(_get(d, "rent_interval_ms", "rentIntervalMs", default=60_000)),
        next_rent_at=_opt_timestamp(_get(d, "next_rent_at", "nextRentAt")),
        loan_id=_get(d, "loan_id", "loanId", "mortgageId"),
    )


def _loan_from_dict(d: Dict[str, Any]) -> Loan:
    principal = _money(_get(d, "principal"))
    return Loan(
        loan_id=str(_get(d, "loan_id", "id", default="")),
        principal=principal,
        remaining_principal=_money(_get(d, "remaining_principal", "remainingPrincipal", default=principal)),
        annual_rate=float(_get(d, "annual_rate", "annualRate", "interestRate", default=0.0)),
        monthly_payment=_money(_get(d, "monthly_payment", "monthlyPayment")),
        player_id=str(_get(d, "player_id", "playerId", default="")),
        property_id=_get(d, "property_id", "propertyId"),
        loan_type=str(_get(d, "loan_type", "type", default="ипотека")),
        payment_interval_ms=int(_get(d, "payment_interval_ms", "paymentIntervalMs", default=60_000)),
        next_payment_at=to_timestamp(_get(d, "next_payment_at", "nextPaymentAt")),
    )


def _player_from_dict(d: Dict[str, Any]) -> Player:
    s = _get(d, "stats", default={}) or {}
    stats = PlayerStats(
        total_sales=int(_get(s, "total_sales", "totalSales", default=0)),
        total_rent_income=_money(_get(s, "total_rent_income", "totalRentIncome")),
        total_renovations=int(_get(s, "total_renovations", "totalRenovations", default=0)),
        properties_owned=int(_get(s, "properties_owned", "propertiesOwned", default=0)),
    )
    return Player(
        player_id=str(_get(d, "player_id", "id", default="")),
        name=str(_get(d, "name", default="Игрок")),
        difficulty=str(_get(d, "difficulty", default="normal")),
        city_id=str(_get(d, "city_id", "cityId", default="murmansk")),
        cash=_money(_get(d, "cash")),
        net_worth=_money(_get(d, "net_worth", "netWorth")),
        properties=[property_from_dict(p) for p in (_get(d, "properties", default=[]))],
        loans=[_loan_from_dict(x) for x in (_get(d, "loans", default=[]))],
        stats=stats,
        experience=int(_get(d, "experience", default=0)),
        level=int(_get(d, "level", default=1)),
        created_at=to_timestamp(_get(d, "created_at", "createdAt")),
        last_synced_at=to_timestamp(_get(d, "last_synced_at", "lastSyncedAt")),
        last_expense_applied_at=to_timestamp(_get(d, "last_expense_applied_at", "lastExpenseTime")),
        last_valuation_applied_at=to_timestamp(_get(d, "last_valuation_applied_at", "lastValueUpdateTime")),
    )


def _event_from_dict(d: Dict[str, Any]) -> GameEvent:
    return GameEvent(
        event_id=str(_get(d, "event_id", "id", default="")),
        timestamp=to_timestamp(_get(d, "timestamp")),
        message=str(_get(d, "message", default="")),
        severity=str(_get(d, "severity", "type", default="info")),
    )


def _mission_from_dict(d: Dict[str, Any]) -> Mission:
    return Mission(
        mission_id=str(_get(d, "mission_id", "id", default="")),
        mission_type=str(_get(d, "mission_type", "type", default="")),
        title=str(_get(d, "title", default="")),
        target=int(_get(d, "target", default=0)),
        reward=int(_get(d, "reward", default=0)),
        description=str(_get(d, "description", default="")),
        current=int(_get(d, "current", default=0)),
        completed=bool(_get(d, "completed", default=False)),
        completed_at=_opt_timestamp(_get(d, "completed_at", "completedAt")),
    )


def _achievement_from_dict(d: Dict[str, Any]) -> Achievement:
    return Achievement(
        achievement_id=str(_get(d, "achievement_id", "id", default="")),
        achievement_type=str(_get(d, "achievement_type", "type", default="")),
        title=str(_get(d, "title", default="")),
        description=str(_get(d, "description", default="")),
        icon=str(_get(d, "icon", default="")),
        unlocked=bool(_get(d, "unlocked", default=False)),
        unlocked_at=_opt_timestamp(_get(d, "unlocked_at", "unlockedAt")),
    )


def snapshot_from_dict(d: Any) -> Snapshot:
    if not isinstance(d, dict):
        raise SnapshotLoadError("snapshot must be a JSON object")
    player_d = d.get("player")
    market_d = d.get("market")
    if not isinstance(player_d, dict):
        raise SnapshotLoadError("snapshot has no player")
    if not isinstance(market_d, dict):
        raise SnapshotLoadError("snapshot has no market")
    try:
        player = _player_from_dict(player_d)
        market = _market_from_dict(market_d)
        events = [_event_from_dict(e) for e in (d.get("events") or [])]
        missions = [_mission_from_dict(m) for m in (d.get("missions") or [])]
        achievements = [_achievement_from_dict(a) for a in (d.get("achievements") or [])]
        listings = [
            property_from_dict(p)
            for p in (_get(d, "available_properties", "availableProperties", "marketProperties", default=[]))
        ]
        last_synced = to_timestamp(_get(d, "last_synced_at", "lastSyncedAt"), default=player.last_synced_at)
    except (TypeError, ValueError, AttributeError) as e:
        raise SnapshotLoadError(f"malformed snapshot: {e}") from e
    if not player.player_id:
        raise SnapshotLoadError("snapshot player has no id")

    logger.debug("loaded snapshot for %s (%d properties)", player.player_id, len(player.properties))
    return Snapshot(
        player=player,
        market=market,
        events=events,
        last_synced_at=last_synced,
        missions=missions,
        achievements=achievements,
        available_properties=listings,
    )
