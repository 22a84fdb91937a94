from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from realtygame.models import Achievement, GameEvent, Mission, Player

ACHIEVEMENT_EXPERIENCE = 200

# (level, experience threshold, title)
LEVELS: Tuple[Tuple[int, int, str], ...] = (
    (1, 0, "Начинающий инвестор"),
    (2, 500, "Новичок"),
    (3, 1500, "Опытный инвестор"),
    (4, 3000, "Рантье"),
    (5, 5000, "Профессионал"),
    (6, 7500, "Магнат"),
    (7, 10000, "Титан недвижимости"),
    (8, 15000, "Король рынка"),
    (9, 20000, "Легенда инвестиций"),
    (10, 30000, "Властелин недвижимости"),
)


@dataclass
class LevelInfo:
    level: int
    title: str
    exp_to_next: int


def level_info(experience: int) -> LevelInfo:
    exp = int(experience)
    for i in range(len(LEVELS) - 1, -1, -1):
        level, threshold, title = LEVELS[i]
        if exp >= threshold:
            nxt = LEVELS[i + 1][1] - exp if i + 1 < len(LEVELS) else 0
            return LevelInfo(level=level, title=title, exp_to_next=nxt)
    return LevelInfo(level=1, title=LEVELS[0][2], exp_to_next=LEVELS[1][1])


def calculate_level(experience: int) -> int:
    return level_info(experience).level


def _mission_progress(mission: Mission, player: Player) -> int:
    kind = mission.mission_type
    if kind == "portfolio_value":
        return int(player.net_worth)
    if kind == "monthly_rent":
        return sum(
            int(p.base_rent) for p in player.properties if p.strategy == "rent" and not p.is_under_renovation
        )
    if kind == "districts":
        return len({p.district for p in player.properties})
    if kind == "properties_count":
        return len(player.properties)
    return 0


def update_missions(missions: Sequence[Mission], player: Player, now: int) -> List[Mission]:
    out: List[Mission] = []
    for m in missions:
        m = copy.deepcopy(m)
        if not m.completed:
            m.current = _mission_progress(m, player)
            if m.current >= int(m.target):
                m.completed = True
                m.completed_at = int(now)
        out.append(m)
    return out


def _achievement_unlocked(a: Achievement, player: Player) -> bool:
    kind = a.achievement_type
    if kind in ("novice", "first_property"):
        return len(player.properties) >= 1
    if kind == "rent_king":
        return int(player.stats.total_rent_income) >= 200_000
    if kind == "flip_master":
        return int(player.stats.total_sales) >= 10
    if kind == "port_magnate":
        port = [p for p in player.properties if p.district == "Возле порта" and p.property_type == "Коммерция"]
        return len(port) >= 3
    if kind == "millionaire":
        return int(player.net_worth) >= 5_000_000
    return False


def check_achievements(achievements: Sequence[Achievement], player: Player, now: int) -> List[Achievement]:
    out: List[Achievement] = []
    for a in achievements:
        a = copy.deepcopy(a)
        if not a.unlocked and _achievement_unlocked(a, player):
            a.unlocked = True
            a.unlocked_at = int(now)
        out.append(a)
    return out


def _newly(before: Sequence, after: Sequence, id_attr: str, flag: str) -> List:
    was: Dict[str, bool] = {getattr(x, id_attr): bool(getattr(x, flag)) for x in before}
    return [x for x in after if getattr(x, flag) and not was.get(getattr(x, id_attr), False)]


def apply_mission_rewards(player: Player, before: Sequence[Mission], after: Sequence[Mission]) -> List[Mission]:
    """Credit reward xp for missions completed between ``before`` and ``after`` (in place)."""
    done = _newly(before, after, "mission_id", "completed")
    for m in done:
        player.experience += int(m.reward)
    player.level = calculate_level(player.experience)
    return done


def apply_achievement_rewards(
    player: Player, before: Sequence[Achievement], after: Sequence[Achievement]
) -> List[Achievement]:
    unlocked = _newly(before, after, "achievement_id", "unlocked")
    player.experience += ACHIEVEMENT_EXPERIENCE * len(unlocked)
    player.level = calculate_level(player.experience)
    return unlocked


def evaluate_progression(
    player: Player,
    missions: Sequence[Mission],
    achievements: Sequence[Achievement],
    now: int,
) -> Tuple[Player, List[Mission], List[Achievement], List[GameEvent]]:
    """Refresh missions/achievements against ``player`` and credit new rewards.

    Returns a new player plus the updated lists and one event per newly
    completed mission or unlocked achievement.
    """
    updated = copy.deepcopy(player)
    new_missions = update_missions(missions, updated, now)
    new_achievements = check_achievements(achievements, updated, now)

    events: List[GameEvent] = []
    for m in apply_mission_rewards(updated, missions, new_missions):
        events.append(
            GameEvent(
                event_id=f"mission-{int(now)}-{m.mission_id}",
                timestamp=int(now),
                message=f"🎯 Миссия выполнена: {m.title} (+{m.reward} опыта)",
                severity="success",
            )
        )
    for a in apply_achievement_rewards(updated, achievements, new_achievements):
        events.append(
            GameEvent(
                event_id=f"achievement-{int(now)}-{a.achievement_id}",
                timestamp=int(now),
                message=f"🏆 Достижение: {a.title}",
                severity="success",
            )
        )
    return updated, new_missions, new_achievements, events
