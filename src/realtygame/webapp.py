from __future__ import annotations

import json
import random
import threading
from contextlib import asynccontextmanager
from dataclasses import asdict
from html import escape
from pathlib import Path
from typing import Dict, List, Optional

from fastapi import Body, FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, HTMLResponse, RedirectResponse

from realtygame.calculations import expected_monthly_cashflow
from realtygame.config import EngineConfig
from realtygame.exceptions import ConfigurationError, InvariantViolationError, SnapshotLoadError
from realtygame.lifecycle import property_state
from realtygame.logging import get_logger
from realtygame.market import phase_description
from realtygame.models import ActionResult, GameEvent, Snapshot
from realtygame.presets import create_initial_snapshot, default_reference_config
from realtygame.progression import level_info
from realtygame.session import Clock, GameSession, TickScheduler, system_clock
from realtygame.storage import (
    append_event_log_csv,
    data_dir,
    event_log_path,
    list_player_ids,
    load_snapshot,
    reset_data_files,
    save_snapshot,
    snapshot_exists,
    snapshot_from_dict,
    valid_player_id,
)

logger = get_logger(__name__)

_DTO_EVENT_LIMIT = 50


def _events_to_dto(events: List[GameEvent]) -> List[dict]:
    return [asdict(e) for e in events]


def _snapshot_to_dto(snapshot: Snapshot, cfg: EngineConfig) -> dict:
    player = snapshot.player
    info = level_info(player.experience)
    properties = []
    for p in player.properties:
        d = asdict(p)
        d["state"] = property_state(p)
        properties.append(d)
    player_d = asdict(player)
    player_d["properties"] = properties
    return {
        "player": player_d,
        "level": {"level": info.level, "title": info.title, "exp_to_next": info.exp_to_next},
        "market": asdict(snapshot.market),
        "market_phase_description": phase_description(snapshot.market.phase),
        "expected_monthly_cashflow": expected_monthly_cashflow(player, snapshot.market, cfg),
        "available_properties": [asdict(p) for p in snapshot.available_properties],
        "missions": [asdict(m) for m in snapshot.missions],
        "achievements": [asdict(a) for a in snapshot.achievements],
        "events": _events_to_dto(snapshot.events[-_DTO_EVENT_LIMIT:]),
        "last_synced_at": snapshot.last_synced_at,
    }


def create_app(
    data_root: Optional[Path] = None,
    clock: Clock = system_clock,
    rng_seed: Optional[int] = None,
    cfg: Optional[EngineConfig] = None,
    live_ticks: bool = False,
) -> FastAPI:
    """Build the HTTP host.

    One ``GameSession`` per player id is kept in memory and every request for
    that player goes through the session lock. With ``live_ticks`` each session
    also gets a ``TickScheduler`` that is stopped on shutdown.
    """
    engine_cfg = cfg or EngineConfig.from_env()
    root = data_dir(data_root)
    sessions: Dict[str, GameSession] = {}
    schedulers: Dict[str, TickScheduler] = {}
    sessions_lock = threading.Lock()

    def _stop_scheduler(player_id: str) -> None:
        sched = schedulers.pop(player_id, None)
        if sched is not None:
            sched.stop(timeout=1.0)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        yield
        with sessions_lock:
            for pid in list(schedulers):
                _stop_scheduler(pid)

    app = FastAPI(title="Realty Game Simulation API", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    def _persist(snapshot: Snapshot, new_events: List[GameEvent]) -> None:
        save_snapshot(snapshot, root=root, retention=engine_cfg.event_retention)
        append_event_log_csv(snapshot.player.player_id, new_events, root=root)

    def _rng_for(player_id: str) -> random.Random:
        if rng_seed is None:
            return random.Random()
        return random.Random(f"{rng_seed}:{player_id}")

    def _check_id(player_id: str) -> None:
        if not valid_player_id(player_id):
            raise HTTPException(status_code=422, detail=f"invalid player id: {player_id}")

    def _open(snapshot: Snapshot, catch_up: bool = False) -> GameSession:
        """Register a session; a save loaded from disk is reconciled before any tick can run."""
        pid = snapshot.player.player_id
        session = GameSession(
            snapshot,
            engine_cfg,
            default_reference_config(snapshot.player.created_at),
            _rng_for(pid),
            clock=clock,
            on_change=_persist,
        )
        if catch_up:
            try:
                session.enter()
            except InvariantViolationError as e:
                raise HTTPException(status_code=500, detail=f"corrupted game state: {e}") from e
        sessions[pid] = session
        if live_ticks:
            _stop_scheduler(pid)
            schedulers[pid] = TickScheduler(session.tick, engine_cfg.tick_interval_ms, name=f"tick-{pid}").start()
        return session

    def _session(player_id: str) -> GameSession:
        _check_id(player_id)
        with sessions_lock:
            s = sessions.get(player_id)
            if s is not None:
                return s
            try:
                snapshot = load_snapshot(player_id, root=root)
            except SnapshotLoadError as e:
                raise HTTPException(status_code=404, detail=str(e)) from e
            return _open(snapshot, catch_up=True)

    def _require_owned(session: GameSession, property_id: str) -> None:
        if session.snapshot().player.find_property(property_id) is None:
            raise HTTPException(status_code=404, detail=f"property not found: {property_id}")

    def _action_dto(session: GameSession, result: ActionResult) -> dict:
        return {
            "success": result.success,
            "message": result.message,
            "events": _events_to_dto(result.events),
            "state": _snapshot_to_dto(session.snapshot(), engine_cfg),
        }

    def _run(session: GameSession, step) -> dict:
        try:
            events = step()
        except InvariantViolationError as e:
            raise HTTPException(status_code=500, detail=f"corrupted game state: {e}") from e
        return {"events": _events_to_dto(events), "state": _snapshot_to_dto(session.snapshot(), engine_cfg)}

    @app.get("/")
    def root_info():
        return {
            "name": "realtygame",
            "players": list_player_ids(root),
            "api": "/api/players/{player_id}/state",
            "ops": "/ops",
        }

    @app.post("/api/players/{player_id}")
    def api_player_create(player_id: str, payload: dict = Body(default={})):  # {difficulty, name, overwrite}
        _check_id(player_id)
        difficulty = str(payload.get("difficulty") or "normal")
        name = str(payload.get("name") or "Игрок")
        overwrite = bool(payload.get("overwrite", False))
        with sessions_lock:
            if not overwrite and (player_id in sessions or snapshot_exists(player_id, root)):
                raise HTTPException(status_code=409, detail=f"player exists: {player_id}")
            now = clock()
            try:
                snapshot = create_initial_snapshot(player_id, difficulty, now, name=name)
            except ConfigurationError as e:
                raise HTTPException(status_code=422, detail=str(e)) from e
            reset_data_files(player_id, root)
            save_snapshot(snapshot, root=root, retention=engine_cfg.event_retention)
            session = _open(snapshot)
        logger.info("created player %s (%s)", player_id, difficulty)
        return _snapshot_to_dto(session.snapshot(), engine_cfg)

    @app.delete("/api/players/{player_id}")
    def api_player_delete(player_id: str):
        _check_id(player_id)
        with sessions_lock:
            _stop_scheduler(player_id)
            sessions.pop(player_id, None)
            reset_data_files(player_id, root)
        return {"deleted": player_id}

    @app.post("/api/players/{player_id}/entry")
    def api_entry(player_id: str):
        session = _session(player_id)
        return _run(session, session.enter)

    @app.get("/api/players/{player_id}/state")
    def api_state(player_id: str):
        session = _session(player_id)
        return _snapshot_to_dto(session.snapshot(), engine_cfg)

    @app.post("/api/players/{player_id}/tick")
    def api_tick(player_id: str):
        session = _session(player_id)
        return _run(session, session.tick)

    @app.post("/api/players/{player_id}/properties/buy")
    def api_buy(player_id: str, payload: dict = Body(...)):  # {property_id, mortgage}
        session = _session(player_id)
        property_id = str(payload.get("property_id") or "").strip()
        if not property_id:
            raise HTTPException(status_code=422, detail="property_id is required")
        try:
            result = session.buy(property_id, mortgage=bool(payload.get("mortgage", False)))
        except ConfigurationError as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        return _action_dto(session, result)

    @app.post("/api/players/{player_id}/properties/{property_id}/strategy")
    def api_strategy(player_id: str, property_id: str, payload: dict = Body(...)):  # {strategy, sale_price}
        session = _session(player_id)
        _require_owned(session, property_id)
        sale_price = payload.get("sale_price")
        result = session.change_strategy(
            property_id,
            str(payload.get("strategy") or ""),
            int(sale_price) if sale_price not in (None, "") else None,
        )
        return _action_dto(session, result)

    @app.post("/api/players/{player_id}/properties/{property_id}/renovate")
    def api_renovate(player_id: str, property_id: str, payload: dict = Body(default={})):  # {tier}
        session = _session(player_id)
        _require_owned(session, property_id)
        result = session.renovate(property_id, str(payload.get("tier") or "cosmetic"))
        return _action_dto(session, result)

    @app.post("/api/players/{player_id}/properties/{property_id}/loan")
    def api_loan(player_id: str, property_id: str):
        session = _session(player_id)
        _require_owned(session, property_id)
        try:
            result = session.borrow(property_id)
        except ConfigurationError as e:
            raise HTTPException(status_code=503, detail=str(e)) from e
        return _action_dto(session, result)

    @app.get("/download/{player_id}/events")
    def download_events(player_id: str):
        _check_id(player_id)
        p = event_log_path(player_id, root)
        if not p.exists():
            raise HTTPException(status_code=404, detail="no event log yet")
        return FileResponse(str(p), filename=f"{player_id}_events.csv", media_type="text/csv")

    @app.get("/ops", response_class=HTMLResponse)
    def ops_home():
        rows = "".join(
            f'<li>{escape(pid)} <a href="/api/players/{escape(pid)}/state">state</a> '
            f'<a href="/download/{escape(pid)}/events">events.csv</a></li>'
            for pid in list_player_ids(root)
        )
        return f"""
        <html><head><meta charset="utf-8"><title>realtygame ops</title></head><body>
        <h3>Игроки</h3><ul>{rows or "<li>нет сохранений</li>"}</ul>
        <h3>Импорт сохранения (JSON браузерной версии или экспорт сервера)</h3>
        <form action="/ops/import" method="post" enctype="multipart/form-data">
          <input name="player_id" placeholder="player id" required>
          <input type="file" name="file" accept="application/json" required>
          <button type="submit">Импорт</button>
        </form>
        </body></html>
        """

    @app.post("/ops/import")
    async def ops_import(player_id: str = Form(...), file: UploadFile = File(...)):
        if not valid_player_id(player_id):
            return HTMLResponse("Импорт не выполнен: недопустимый id игрока.", status_code=400)
        raw = await file.read()
        try:
            payload = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return HTMLResponse("Импорт не выполнен: файл не является UTF-8 JSON.", status_code=400)
        try:
            snapshot = snapshot_from_dict(payload.get("snapshot", payload) if isinstance(payload, dict) else payload)
        except SnapshotLoadError as e:
            return HTMLResponse(f"Импорт не выполнен: {escape(str(e))}", status_code=422)
        snapshot.player.player_id = player_id
        with sessions_lock:
            _stop_scheduler(player_id)
            sessions.pop(player_id, None)
            save_snapshot(snapshot, root=root, retention=engine_cfg.event_retention)
        logger.info("imported snapshot for %s", player_id)
        return RedirectResponse(url="/ops", status_code=303)

    return app


app = create_app()
