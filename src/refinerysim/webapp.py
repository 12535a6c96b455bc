from __future__ import annotations

import logging
import threading
from typing import Any, Dict

from fastapi import Body, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from refinerysim.config import EngineConfig
from refinerysim.engine import RefinerySimulation, SnapshotError
from refinerysim.models import ActionResult
from refinerysim.storage import data_dir, load_state, reset_data_files, save_state, state_path

logger = logging.getLogger(__name__)

_lock = threading.Lock()

MAX_SIMULATE_HOURS = 24 * 30


def _result_to_dto(result: ActionResult) -> Dict[str, Any]:
    if not result.ok:
        return {"error": result.message, "code": "action_refused", "data": dict(result.data)}
    return {"ok": True, "message": result.message, "data": dict(result.data)}


def _state_to_dto(sim: RefinerySimulation) -> Dict[str, Any]:
    return {
        "time": sim.format_time(),
        "time_minutes": sim.get_time(),
        "running": sim.is_running(),
        "speed_multiplier": sim.get_speed_multiplier(),
        "scenario": sim.get_scenario(),
        "params": sim.get_params(),
        "metrics": sim.get_metrics(),
        "flows": sim.get_flows(),
        "units": sim.get_units(),
        "logistics": sim.get_logistics_state(),
        "market": sim.get_market_state(),
        "directives": sim.get_directives(),
        "alerts": sim.get_active_alerts(),
        "recording": sim.get_recording_summary(),
    }


def create_app() -> FastAPI:
    app = FastAPI(title="Refinery Operations Simulator API")

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    data_dir()
    cfg = EngineConfig()
    holder: Dict[str, RefinerySimulation] = {"sim": load_state(state_path(), cfg=cfg)}

    def _sim() -> RefinerySimulation:
        return holder["sim"]

    def _autosave() -> None:
        try:
            save_state(_sim())
        except OSError as exc:
            logger.warning("autosave failed: %s", exc)

    def _command(method: str, *args, **kwargs) -> Dict[str, Any]:
        # resolve the engine under the lock; reset and import swap it out
        with _lock:
            result = getattr(_sim(), method)(*args, **kwargs)
            _autosave()
        return _result_to_dto(result)

    @app.get("/")
    def root():
        return {
            "name": "refinery-operations-simulator",
            "api": "/api/state",
            "snapshot": "/api/snapshot",
        }

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @app.get("/api/state")
    def api_state():
        with _lock:
            return _state_to_dto(_sim())

    @app.get("/api/units")
    def api_units():
        with _lock:
            return _sim().get_units()

    @app.get("/api/flows")
    def api_flows():
        with _lock:
            return _sim().get_flows()

    @app.get("/api/metrics")
    def api_metrics():
        with _lock:
            return _sim().get_metrics()

    @app.get("/api/logistics")
    def api_logistics():
        with _lock:
            return _sim().get_logistics_state()

    @app.get("/api/market")
    def api_market():
        with _lock:
            return _sim().get_market_state()

    @app.get("/api/directives")
    def api_directives():
        with _lock:
            return _sim().get_directives()

    @app.get("/api/alerts")
    def api_alerts():
        with _lock:
            return _sim().get_active_alerts()

    @app.get("/api/scenarios")
    def api_scenarios():
        with _lock:
            return _sim().get_scenario_list()

    @app.get("/api/history")
    def api_history():
        with _lock:
            return _sim().get_performance_history()

    @app.get("/api/topology")
    def api_topology():
        with _lock:
            sim = _sim()
            return {"units": sim.get_process_topology(), "modes": sim.get_unit_mode_definitions()}

    @app.get("/api/logs")
    def api_logs():
        with _lock:
            return _sim().get_logs()

    # ------------------------------------------------------------------
    # Run control
    # ------------------------------------------------------------------

    @app.post("/api/params")
    def api_params(payload: dict = Body(default={})):  # {name: value, ...}
        with _lock:
            sim = _sim()
            applied: Dict[str, float] = {}
            errors = []
            for name, value in payload.items():
                result = sim.set_param(name, value)
                if result.ok:
                    applied[result.data["name"]] = result.data["value"]
                else:
                    errors.append(result.message)
            _autosave()
            params = sim.get_params()
        if errors and not applied:
            return {"error": "; ".join(errors), "code": "invalid_param"}
        return {"ok": True, "applied": applied, "errors": errors, "params": params}

    @app.post("/api/scenario")
    def api_scenario(payload: dict = Body(default={})):  # {key}
        return _command("apply_scenario", str(payload.get("key") or ""))

    @app.post("/api/preset")
    def api_preset(payload: dict = Body(default={})):  # {name}
        return _command("apply_operating_preset", str(payload.get("name") or ""))

    @app.post("/api/toggle")
    def api_toggle():
        with _lock:
            running = _sim().toggle_running()
            _autosave()
        return {"ok": True, "running": running}

    @app.post("/api/step")
    def api_step():
        with _lock:
            sim = _sim()
            sim.request_step()
            ticks = sim.update(0.0)
            _autosave()
            dto = _state_to_dto(sim)
        return {"ok": True, "ticks": ticks, "state": dto}

    @app.post("/api/reset")
    def api_reset():
        with _lock:
            reset_data_files()
            sim = RefinerySimulation(cfg=cfg)
            holder["sim"] = sim
            _autosave()
            dto = _state_to_dto(sim)
        return dto

    @app.post("/api/simulate")
    def api_simulate(payload: dict = Body(default={})):  # {hours: float}
        try:
            hours = float(payload.get("hours", 1) or 1)
        except (TypeError, ValueError):
            return {"error": "hours must be a number", "code": "invalid_hours"}
        hours = max(0.0, min(float(MAX_SIMULATE_HOURS), hours))
        with _lock:
            sim = _sim()
            ticks = sim.advance(hours * 60.0)
            _autosave()
            dto = _state_to_dto(sim)
        dto["ticks"] = ticks
        return dto

    @app.post("/api/speed")
    def api_speed(payload: dict = Body(default={})):  # {value} or {delta}
        with _lock:
            sim = _sim()
            if "delta" in payload:
                try:
                    speed = sim.adjust_speed_multiplier(float(payload.get("delta") or 0.0))
                except (TypeError, ValueError):
                    return {"error": "delta must be a number", "code": "invalid_speed"}
            else:
                speed = sim.set_speed_multiplier(payload.get("value", 1.0))
            _autosave()
        return {"ok": True, "speed_multiplier": speed}

    # ------------------------------------------------------------------
    # Units
    # ------------------------------------------------------------------

    @app.post("/api/units/{unit_id}/throttle")
    def api_unit_throttle(unit_id: str, payload: dict = Body(default={})):  # {value}
        return _command("set_unit_throttle", unit_id, payload.get("value", 1.0))

    @app.post("/api/units/{unit_id}/offline")
    def api_unit_offline(unit_id: str, payload: dict = Body(default={})):  # {offline: bool}
        return _command("set_unit_offline", unit_id, bool(payload.get("offline", True)))

    @app.post("/api/units/{unit_id}/clear")
    def api_unit_clear(unit_id: str):
        return _command("clear_unit_override", unit_id)

    @app.post("/api/units/{unit_id}/bypass")
    def api_unit_bypass(unit_id: str):
        return _command("deploy_pipeline_bypass", unit_id)

    @app.post("/api/units/{unit_id}/turnaround")
    def api_unit_turnaround(unit_id: str):
        return _command("schedule_turnaround", unit_id)

    @app.post("/api/units/{unit_id}/inspection")
    def api_unit_inspection(unit_id: str):
        return _command("perform_inspection", unit_id)

    @app.post("/api/emergency")
    def api_emergency(payload: dict = Body(default={})):  # {active: bool}
        if bool(payload.get("active", True)):
            return _command("trigger_emergency_shutdown")
        return _command("release_emergency_shutdown")

    # ------------------------------------------------------------------
    # Logistics
    # ------------------------------------------------------------------

    @app.post("/api/logistics/convoy")
    def api_convoy():
        return _command("dispatch_logistics_convoy")

    @app.post("/api/logistics/delay")
    def api_delay(payload: dict = Body(default={})):  # {hours?, product?}
        return _command("delay_next_shipment", hours=payload.get("hours", 4.0), product=payload.get("product"))

    @app.post("/api/logistics/charter")
    def api_charter():
        return _command("request_extra_shipment")

    @app.post("/api/logistics/expand")
    def api_expand():
        return _command("expand_storage_capacity")

    @app.post("/api/recording")
    def api_recording():
        return _command("toggle_performance_recording")

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @app.get("/api/snapshot")
    def api_snapshot_export():
        with _lock:
            return _sim().create_snapshot()

    @app.post("/api/snapshot")
    def api_snapshot_import(payload: Any = Body(default=None)):
        with _lock:
            sim = RefinerySimulation(cfg=cfg)
            try:
                sim.load_snapshot(payload)
            except SnapshotError as exc:
                return {"error": str(exc), "code": "invalid_snapshot"}
            holder["sim"] = sim
            _autosave()
            dto = _state_to_dto(sim)
        return dto

    return app


app = create_app()
