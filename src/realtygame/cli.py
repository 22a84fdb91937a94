from __future__ import annotations

import argparse
import random
from typing import List, Optional

from realtygame.calculations import expected_monthly_cashflow, format_money
from realtygame.config import EngineConfig
from realtygame.exceptions import ConfigurationError, SnapshotLoadError
from realtygame.logging import setup_logging
from realtygame.models import GameEvent, Snapshot
from realtygame.presets import create_initial_snapshot, default_reference_config, district_coefficient
from realtygame.progression import level_info
from realtygame.reporting import describe_property, print_events, print_portfolio, print_summary
from realtygame.session import GameSession, OffsetClock
from realtygame.storage import append_event_log_csv, load_snapshot, save_snapshot, snapshot_exists

DIFFICULTIES = ("easy", "normal", "hard")


def _input_int(prompt: str, default: Optional[int] = None) -> Optional[int]:
    s = input(prompt).strip()
    if not s:
        return default
    try:
        return int(s.replace(" ", ""))
    except ValueError:
        print("Неверный ввод: нужно целое число.")
        return None


def _pick_property_id(session: GameSession) -> Optional[str]:
    player = session.snapshot().player
    if not player.properties:
        print("Объектов пока нет.")
        return None
    for p in player.properties:
        print("- " + describe_property(p))
    return input("ID объекта: ").strip() or None


def _report(message: str, events: List[GameEvent]) -> None:
    print(message)
    if events:
        print_events(events)


def _cmd_market(session: GameSession) -> None:
    s = session.snapshot()
    if not s.available_properties:
        print("На рынке сейчас нет предложений.")
        return
    print("\nПредложения на рынке:")
    for p in s.available_properties:
        kp = district_coefficient(session.reference, p.city_id, p.district, "price")
        kr = district_coefficient(session.reference, p.city_id, p.district, "rent")
        print(f"- {describe_property(p)} | район: цены x{kp:.2f}, аренда x{kr:.2f}")


def _cmd_buy(session: GameSession) -> None:
    _cmd_market(session)
    pid = input("ID объекта для покупки: ").strip()
    if not pid:
        return
    mode = input("1) за наличные  2) в ипотеку (20% взнос): ").strip()
    try:
        result = session.buy(pid, mortgage=(mode == "2"))
    except ConfigurationError as e:
        print(f"Ипотека недоступна: {e}")
        return
    _report(result.message, result.events)


def _cmd_strategy(session: GameSession) -> None:
    pid = _pick_property_id(session)
    if not pid:
        return
    print("Стратегии: none / hold / rent / flip")
    strategy = input("Стратегия: ").strip()
    sale_price = None
    if strategy == "flip":
        sale_price = _input_int("Цена продажи (Enter = рыночная): ")
    result = session.change_strategy(pid, strategy, sale_price)
    _report(result.message, result.events)


def _cmd_renovate(session: GameSession) -> None:
    pid = _pick_property_id(session)
    if not pid:
        return
    for key, tier in session.cfg.renovation_tiers.items():
        print(f"- {key}: {tier.label}, {tier.cost_ratio * 100:.0f}% цены, {tier.duration_ms // 1000} c")
    tier = input("Тип ремонта: ").strip() or "cosmetic"
    result = session.renovate(pid, tier)
    _report(result.message, result.events)


def _cmd_borrow(session: GameSession) -> None:
    pid = _pick_property_id(session)
    if not pid:
        return
    try:
        result = session.borrow(pid)
    except ConfigurationError as e:
        print(f"Кредит недоступен: {e}")
        return
    _report(result.message, result.events)


def advance_time(session: GameSession, clock: OffsetClock, months: int) -> List[GameEvent]:
    """Fast-forward ``months`` tick intervals; the market moves exactly once for the new instant."""
    clock.advance(months * session.cfg.tick_interval_ms)
    if clock() - session.snapshot().last_synced_at > session.cfg.tick_interval_ms:
        return session.enter()
    # Within one interval entry is a no-op; run a live tick instead.
    return session.tick()


def _cmd_advance(session: GameSession, clock: OffsetClock) -> None:
    n = _input_int("Сколько месяцев пропустить (по умолчанию 1): ", 1)
    if not n or n <= 0:
        return
    print_events(advance_time(session, clock, n), limit=20)


def _cmd_stats(session: GameSession) -> None:
    s = session.snapshot()
    info = level_info(s.player.experience)
    print(f"\nУровень {info.level}: {info.title} (до следующего {info.exp_to_next} опыта)")
    print(f"Ожидаемый денежный поток в месяц: {format_money(expected_monthly_cashflow(s.player, s.market, session.cfg))}")
    st = s.player.stats
    print(
        f"Продаж: {st.total_sales}  Доход от аренды: {format_money(st.total_rent_income)}  "
        f"Ремонтов: {st.total_renovations}  Макс. объектов: {st.properties_owned}"
    )
    for m in s.missions:
        mark = "✔" if m.completed else " "
        print(f"[{mark}] {m.title}: {m.current}/{m.target} (+{m.reward})")
    for a in s.achievements:
        if a.unlocked:
            print(f"{a.icon} {a.title}")


def _autosave(snapshot: Snapshot, events: List[GameEvent]) -> None:
    save_snapshot(snapshot)
    append_event_log_csv(snapshot.player.player_id, events)


def _load_or_new(player_id: str, now: int) -> Snapshot:
    if snapshot_exists(player_id):
        try:
            return load_snapshot(player_id)
        except SnapshotLoadError as e:
            print(f"Не удалось загрузить сохранение ({e}); начинаем новую игру.")
    difficulty = input("Сложность (easy/normal/hard, Enter = normal): ").strip() or "normal"
    if difficulty not in DIFFICULTIES:
        print("Неизвестная сложность, используем normal.")
        difficulty = "normal"
    name = input("Имя игрока: ").strip() or "Игрок"
    return create_initial_snapshot(player_id, difficulty, now, name=name)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="realtygame", description="Инвестиции в недвижимость: консольная версия")
    parser.add_argument("--player", default="local", help="player id (save file name)")
    parser.add_argument("--seed", type=int, default=None, help="random seed")
    parser.add_argument("--log-level", default="WARNING")
    args = parser.parse_args(argv)

    setup_logging(args.log_level)
    cfg = EngineConfig.from_env()
    clock = OffsetClock()

    snapshot = _load_or_new(args.player, clock())
    reference = default_reference_config(snapshot.player.created_at)
    session = GameSession(
        snapshot,
        cfg,
        reference,
        random.Random(args.seed),
        clock=clock,
        on_change=_autosave,
    )

    print("\n=== Инвестор: Мурманск ===")
    print("1 реальная минута = 1 игровой месяц.\n")
    welcome = session.enter()
    if welcome:
        print("Пока вас не было:")
        print_events(welcome, limit=20)

    while True:
        s = session.snapshot()
        print_summary(s.player, s.market)
        print("1) Портфель")
        print("2) Рынок")
        print("3) Купить объект")
        print("4) Сменить стратегию")
        print("5) Ремонт")
        print("6) Кредит под залог")
        print("7) Обновить (тик сейчас)")
        print("8) Пропустить время")
        print("9) Прогресс и миссии")
        print("10) Журнал событий")
        print("0) Выход")

        try:
            choice = input("Выбор: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nДо встречи.")
            return 0

        if choice == "1":
            print_portfolio(s.player)
        elif choice == "2":
            _cmd_market(session)
        elif choice == "3":
            _cmd_buy(session)
        elif choice == "4":
            _cmd_strategy(session)
        elif choice == "5":
            _cmd_renovate(session)
        elif choice == "6":
            _cmd_borrow(session)
        elif choice == "7":
            print_events(session.tick())
        elif choice == "8":
            _cmd_advance(session, clock)
        elif choice == "9":
            _cmd_stats(session)
        elif choice == "10":
            print_events(s.events, limit=20)
        elif choice == "0":
            save_snapshot(session.snapshot())
            print("До встречи.")
            return 0
        else:
            print("Неверный пункт: введите 0-10.")


if __name__ == "__main__":
    raise SystemExit(main())
