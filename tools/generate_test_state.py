import argparse
import random
from pathlib import Path

import sys

# Make `src/` importable when running as a script.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

from realtygame.config import EngineConfig
from realtygame.presets import create_initial_snapshot, default_reference_config
from realtygame.session import GameSession
from realtygame.storage import save_snapshot


class _SimClock:
    def __init__(self, start: int):
        self.now = int(start)

    def __call__(self) -> int:
        return self.now


def _pick(rng: random.Random, items):
    return items[rng.randrange(0, len(items))]


def build_snapshot(player_id: str, difficulty: str, months: int, seed: int, start: int):
    """Play a short scripted game: buy what is affordable, pick strategies, run live ticks."""
    rng = random.Random(seed)
    cfg = EngineConfig()
    clock = _SimClock(start)
    snapshot = create_initial_snapshot(player_id, difficulty, start, name="Демо-инвестор")
    session = GameSession(snapshot, cfg, default_reference_config(start), rng, clock=clock)

    # Cheapest first so the demo ends up with several properties.
    for listing in sorted(snapshot.available_properties, key=lambda p: p.purchase_price):
        r = session.buy(listing.property_id, mortgage=False)
        if not r.success:
            session.buy(listing.property_id, mortgage=True)

    for p in session.snapshot().player.properties:
        strategy = _pick(rng, ["rent", "rent", "hold", "flip"])
        sale_price = int(p.current_value * 1.05) if strategy == "flip" else None
        session.change_strategy(p.property_id, strategy, sale_price)
        if p.condition in ("убитая", "требует ремонта"):
            session.renovate(p.property_id, "cosmetic")

    for _ in range(max(0, int(months))):
        clock.now += cfg.tick_interval_ms
        session.tick()

    return session.snapshot()


def main() -> int:
    ap = argparse.ArgumentParser(description="Generate a populated demo save")
    ap.add_argument("--player", type=str, default="demo")
    ap.add_argument("--difficulty", type=str, default="easy", choices=["easy", "normal", "hard"])
    ap.add_argument("--months", type=int, default=24)
    ap.add_argument("--seed", type=int, default=20260129)
    ap.add_argument("--start", type=int, default=1_767_225_600_000, help="game start, epoch ms")
    ap.add_argument(
        "--out",
        type=str,
        default=str(Path(__file__).resolve().parents[1] / "data" / "players" / "demo.json"),
    )
    args = ap.parse_args()

    out = Path(args.out)
    out.parent.mkdir(parents=True, exist_ok=True)

    snapshot = build_snapshot(args.player, args.difficulty, args.months, int(args.seed), int(args.start))
    save_snapshot(snapshot, path=out)
    p = snapshot.player
    print(f"wrote: {out}")
    print(f"properties: {len(p.properties)}  loans: {len(p.loans)}  cash: {p.cash}  net worth: {p.net_worth}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
