"""Save/restore of a whole simulation run as plain JSON-able data.

``load_snapshot`` never trusts its input: every field is coerced and range
checked on its own and falls back to the fresh-run default when it is
missing or malformed. Only a non-mapping top-level value is an error.
"""

from __future__ import annotations

import math
from dataclasses import asdict, fields
from typing import Any, Dict, List, Mapping, Optional, Type, TypeVar

from refinerysim.config import EngineConfig
from refinerysim.directives import directive_to_dict
from refinerysim.logistics import shipment_to_dict
from refinerysim.market import initial_market
from refinerysim.models import (
    AlertLevel,
    Directive,
    DirectiveStats,
    DirectiveStatus,
    DirectiveType,
    Flows,
    IncidentDetail,
    LogEntry,
    LogLevel,
    Metrics,
    Params,
    PipelineBoost,
    Product,
    Recorder,
    RefineryState,
    Shipment,
    ShipmentStats,
    ShipmentStatus,
    StoragePressure,
    Stream,
    Unit,
    UnitId,
    UnitOverride,
    UnitStatus,
)
from refinerysim.presets import DEFAULT_SCENARIO, PARAM_BOUNDS, SCENARIOS, get_scenario, new_tanks, new_units
from refinerysim.reliability import sync_unit_status

SNAPSHOT_VERSION = 1

E = TypeVar("E")


class SnapshotError(ValueError):
    pass


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------


def _num(v: Any, default: float, lo: Optional[float] = None, hi: Optional[float] = None) -> float:
    if isinstance(v, bool):
        return float(default)
    try:
        x = float(v)
    except (TypeError, ValueError):
        return float(default)
    if not math.isfinite(x):
        return float(default)
    if lo is not None:
        x = max(lo, x)
    if hi is not None:
        x = min(hi, x)
    return x


def _int(v: Any, default: int, lo: Optional[int] = None) -> int:
    x = int(_num(v, float(default)))
    if lo is not None:
        x = max(lo, x)
    return x


def _bool(v: Any, default: bool) -> bool:
    if isinstance(v, bool):
        return v
    if isinstance(v, (int, float)) and not isinstance(v, bool):
        return v != 0
    return default


def _str(v: Any, default: str) -> str:
    return v if isinstance(v, str) else default


def _dict(v: Any) -> Dict[str, Any]:
    return dict(v) if isinstance(v, Mapping) else {}


def _list(v: Any) -> List[Any]:
    return list(v) if isinstance(v, (list, tuple)) else []


def _enum(cls: Type[E], v: Any, default: E) -> E:
    try:
        return cls(v)  # type: ignore[call-arg]
    except (TypeError, ValueError):
        return default


def _opt_enum(cls: Type[E], v: Any) -> Optional[E]:
    if v is None:
        return None
    try:
        return cls(v)  # type: ignore[call-arg]
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------


def _unit_to_dict(u: Unit) -> Dict[str, Any]:
    detail = None
    if u.alert_detail is not None:
        detail = {
            "severity": u.alert_detail.severity.value,
            "summary": u.alert_detail.summary,
            "cause": u.alert_detail.cause,
            "guidance": u.alert_detail.guidance,
            "recorded_at": u.alert_detail.recorded_at,
        }
    return {
        "throughput": u.throughput,
        "utilization": u.utilization,
        "integrity": u.integrity,
        "downtime": u.downtime,
        "status": u.status.value,
        "mode": u.mode,
        "incidents": u.incidents,
        "alert": u.alert.value if u.alert is not None else None,
        "alert_timer": u.alert_timer,
        "alert_detail": detail,
        "override_throttle": u.override_throttle,
        "manual_offline": u.manual_offline,
        "emergency_offline": u.emergency_offline,
        "turnaround": u.turnaround,
        "inspection_ready_at": u.inspection_ready_at,
    }


def create_snapshot(state: RefineryState, rng_state: Optional[List[Any]] = None) -> Dict[str, Any]:
    """Deep, self-contained capture of every mutable entity of the run."""

    return {
        "version": SNAPSHOT_VERSION,
        "time_minutes": state.time_minutes,
        "running": state.running,
        "speed_multiplier": state.speed_multiplier,
        "params": asdict(state.params),
        "scenario": state.scenario_key,
        "units": {uid.value: _unit_to_dict(u) for uid, u in state.units.items()},
        "overrides": {
            uid.value: {"throttle": o.throttle, "offline": o.offline} for uid, o in state.overrides.items()
        },
        "emergency_shutdown": state.emergency_shutdown,
        "pipeline_boosts": {
            stream.value: {"multiplier": b.multiplier, "expires_at": b.expires_at}
            for stream, b in state.pipeline_boosts.items()
        },
        "strain": state.strain,
        "incident_pressure": state.incident_pressure,
        "storage": {
            "tanks": {p.value: {"capacity": t.capacity, "level": t.level} for p, t in state.tanks.items()},
            "pressure": asdict(state.storage_pressure),
            "upgrades": state.storage_upgrades,
        },
        "shipments": [shipment_to_dict(s) for s in state.shipments],
        "shipment_stats": asdict(state.shipment_stats),
        "next_shipment_seq": state.next_shipment_seq,
        "last_shipment_at": {p.value: t for p, t in state.last_shipment_at.items()},
        "market": {p.value: asdict(m) for p, m in state.market.items()},
        "market_stress": state.market_stress,
        "directives": [directive_to_dict(d) for d in state.directives],
        "directive_stats": asdict(state.directive_stats),
        "next_directive_seq": state.next_directive_seq,
        "cooldowns": dict(state.cooldowns),
        "action_cost_total": state.action_cost_total,
        "recorder": asdict(state.recorder),
        "metrics": asdict(state.metrics),
        "flows": asdict(state.flows),
        "performance_history": list(state.performance_history),
        "logs": [
            {"level": e.level.value, "message": e.message, "timestamp": e.timestamp, "meta": dict(e.meta)}
            for e in state.logs
        ],
        "rng_state": rng_state,
    }


# ---------------------------------------------------------------------------
# Restore
# ---------------------------------------------------------------------------


def _load_params(d: Any) -> Params:
    raw = _dict(d)
    base = Params()
    values = {}
    for name, (lo, hi) in PARAM_BOUNDS.items():
        values[name] = _num(raw.get(name), getattr(base, name), lo, hi)
    return Params(**values)


def _load_detail(d: Any) -> Optional[IncidentDetail]:
    if not isinstance(d, Mapping):
        return None
    severity = _opt_enum(AlertLevel, d.get("severity"))
    if severity is None:
        return None
    return IncidentDetail(
        severity=severity,
        summary=_str(d.get("summary"), ""),
        cause=_str(d.get("cause"), ""),
        guidance=_str(d.get("guidance"), ""),
        recorded_at=_str(d.get("recorded_at"), ""),
    )


def _load_units(d: Any, cfg: EngineConfig, emergency: bool = False) -> Dict[UnitId, Unit]:
    units = new_units()
    raw = _dict(d)
    for uid, unit in units.items():
        unit.emergency_offline = emergency
        u = _dict(raw.get(uid.value))
        if not u:
            continue
        unit.throughput = _num(u.get("throughput"), 0.0, 0.0, unit.capacity * cfg.max_utilization)
        unit.utilization = _num(u.get("utilization"), 0.0, 0.0, cfg.max_utilization)
        unit.integrity = _num(u.get("integrity"), 1.0, 0.0, 1.0)
        unit.downtime = _num(u.get("downtime"), 0.0, 0.0)
        unit.status = _enum(UnitStatus, u.get("status"), UnitStatus.ONLINE)
        unit.mode = _str(u.get("mode"), "optimal")
        unit.incidents = _int(u.get("incidents"), 0, 0)
        unit.alert = _opt_enum(AlertLevel, u.get("alert"))
        unit.alert_timer = _num(u.get("alert_timer"), 0.0, 0.0)
        unit.alert_detail = _load_detail(u.get("alert_detail"))
        unit.override_throttle = _num(u.get("override_throttle"), 1.0, 0.0, 1.2)
        unit.manual_offline = _bool(u.get("manual_offline"), False)
        unit.emergency_offline = _bool(u.get("emergency_offline"), emergency)
        unit.turnaround = _bool(u.get("turnaround"), False)
        unit.inspection_ready_at = _num(u.get("inspection_ready_at"), 0.0, 0.0)
    return units


def _load_overrides(d: Any) -> Dict[UnitId, UnitOverride]:
    out: Dict[UnitId, UnitOverride] = {}
    for key, value in _dict(d).items():
        uid = _opt_enum(UnitId, key)
        if uid is None or not isinstance(value, Mapping):
            continue
        throttle = value.get("throttle")
        offline = value.get("offline")
        override = UnitOverride(
            throttle=_num(throttle, 1.0, 0.0, 1.2) if throttle is not None else None,
            offline=_bool(offline, False) if offline is not None else None,
        )
        if override.throttle is None and override.offline is None:
            continue
        out[uid] = override
    return out


def _load_boosts(d: Any) -> Dict[Stream, PipelineBoost]:
    out: Dict[Stream, PipelineBoost] = {}
    for key, value in _dict(d).items():
        stream = _opt_enum(Stream, key)
        if stream is None or not isinstance(value, Mapping):
            continue
        out[stream] = PipelineBoost(
            multiplier=_num(value.get("multiplier"), 1.0, 1.0, 2.0),
            expires_at=_num(value.get("expires_at"), 0.0, 0.0),
        )
    return out


def _load_shipment(d: Any, cfg: EngineConfig) -> Optional[Shipment]:
    if not isinstance(d, Mapping):
        return None
    product = _opt_enum(Product, d.get("product"))
    sid = d.get("id")
    if product is None or not isinstance(sid, str) or not sid:
        return None
    return Shipment(
        shipment_id=sid,
        product=product,
        volume=_num(d.get("volume"), 0.0, 0.0),
        window=_num(d.get("window"), 0.0, 0.0),
        due_in=_num(d.get("due_in"), 0.0, 0.0),
        status=_enum(ShipmentStatus, d.get("status"), ShipmentStatus.PENDING),
        created_at=_num(d.get("created_at"), 0.0, 0.0),
        cooldown=_num(d.get("cooldown"), 0.0, 0.0, float(cfg.shipment_cooldown_hours)),
        shortage=_num(d.get("shortage"), 0.0, 0.0),
        delivered=_num(d.get("delivered"), 0.0, 0.0),
        rush=_bool(d.get("rush"), False),
        delays=_int(d.get("delays"), 0, 0),
    )


def _load_directive(d: Any, cfg: EngineConfig) -> Optional[Directive]:
    if not isinstance(d, Mapping):
        return None
    dtype = _opt_enum(DirectiveType, d.get("type"))
    did = d.get("id")
    if dtype is None or not isinstance(did, str) or not did:
        return None
    duration = _num(d.get("duration"), 0.0, 0.0)
    return Directive(
        directive_id=did,
        directive_type=dtype,
        title=_str(d.get("title"), dtype.value.title()),
        description=_str(d.get("description"), ""),
        threshold=_num(d.get("threshold"), 0.0),
        target=_num(d.get("target"), 0.0, 0.0),
        product=_opt_enum(Product, d.get("product")),
        duration=duration,
        time_remaining=_num(d.get("time_remaining"), duration, 0.0, duration),
        status=_enum(DirectiveStatus, d.get("status"), DirectiveStatus.ACTIVE),
        progress=_num(d.get("progress"), 0.0, 0.0),
        progress_ratio=_num(d.get("progress_ratio"), 0.0, 0.0, 1.0),
        breach_hours=_num(d.get("breach_hours"), 0.0, 0.0),
        allowance=_num(d.get("allowance"), 0.0, 0.0),
        cooldown=_num(d.get("cooldown"), 0.0, 0.0, float(cfg.directive_cooldown_hours)),
    )


def _load_dataclass(cls, d: Any):
    """Rebuild a flat dataclass of numbers/bools/strings field by field."""

    raw = _dict(d)
    base = cls()
    values = {}
    for f in fields(cls):
        default = getattr(base, f.name)
        v = raw.get(f.name)
        if isinstance(default, bool):
            values[f.name] = _bool(v, default)
        elif isinstance(default, int):
            values[f.name] = _int(v, default)
        elif isinstance(default, float):
            values[f.name] = _num(v, default)
        elif isinstance(default, str):
            values[f.name] = _str(v, default)
        else:
            values[f.name] = default
    return cls(**values)


def _load_recorder(d: Any) -> Recorder:
    rec = _load_dataclass(Recorder, d)
    summary = _dict(d).get("last_summary")
    if isinstance(summary, Mapping):
        rec.last_summary = {str(k): _num(v, 0.0) for k, v in summary.items()}
    return rec


def _load_logs(d: Any, limit: int) -> List[LogEntry]:
    out: List[LogEntry] = []
    for item in _list(d):
        if not isinstance(item, Mapping):
            continue
        message = item.get("message")
        if not isinstance(message, str):
            continue
        out.append(
            LogEntry(
                level=_enum(LogLevel, item.get("level"), LogLevel.INFO),
                message=message,
                timestamp=_str(item.get("timestamp"), ""),
                meta=_dict(item.get("meta")),
            )
        )
    return out[:limit]


def load_snapshot(data: Any, cfg: Optional[EngineConfig] = None) -> RefineryState:
    """Build a fresh ``RefineryState`` from snapshot data.

    The accumulator and single-step request are always reset. The RNG state is
    left to the caller (``data["rng_state"]``).
    """

    if not isinstance(data, Mapping):
        raise SnapshotError(f"snapshot must be a mapping, got {type(data).__name__}")
    cfg = cfg or EngineConfig()

    scenario_key = _str(data.get("scenario"), DEFAULT_SCENARIO)
    if scenario_key not in SCENARIOS:
        scenario_key = DEFAULT_SCENARIO
    scenario = get_scenario(scenario_key)

    state = RefineryState(
        time_minutes=_num(data.get("time_minutes"), 0.0, 0.0),
        accumulator=0.0,
        running=_bool(data.get("running"), True),
        step_once=False,
        speed_multiplier=_num(data.get("speed_multiplier"), 1.0, cfg.speed_min, cfg.speed_max),
        params=_load_params(data.get("params")),
        scenario_key=scenario_key,
    )

    # units released one by one during a plant-wide hold keep their own flag
    state.emergency_shutdown = _bool(data.get("emergency_shutdown"), False)
    state.units = _load_units(data.get("units"), cfg, state.emergency_shutdown)
    state.overrides = _load_overrides(data.get("overrides"))
    sync_unit_status(state)
    state.pipeline_boosts = _load_boosts(data.get("pipeline_boosts"))
    state.strain = _num(data.get("strain"), 0.0, 0.0, 12.0)
    state.incident_pressure = _num(data.get("incident_pressure"), 0.0, 0.0)

    storage = _dict(data.get("storage"))
    tanks = new_tanks()
    raw_tanks = _dict(storage.get("tanks"))
    for product, tank in tanks.items():
        t = _dict(raw_tanks.get(product.value))
        if not t:
            continue
        tank.capacity = _num(t.get("capacity"), tank.capacity, tank.capacity)
        tank.level = _num(t.get("level"), tank.level, 0.0, tank.capacity)
    state.tanks = tanks
    pressure = _dict(storage.get("pressure"))
    state.storage_pressure = StoragePressure(
        active=_bool(pressure.get("active"), False),
        throttle=_num(pressure.get("throttle"), 1.0, cfg.storage_pressure_floor, 1.0),
        timer=_num(pressure.get("timer"), 0.0, 0.0, cfg.storage_pressure_timer_minutes),
    )
    state.storage_upgrades = _int(storage.get("upgrades"), 0, 0)

    state.shipments = [s for s in (_load_shipment(x, cfg) for x in _list(data.get("shipments"))) if s is not None]
    state.shipment_stats = _load_dataclass(ShipmentStats, data.get("shipment_stats"))
    state.next_shipment_seq = _int(data.get("next_shipment_seq"), len(state.shipments) + 1, 1)
    state.last_shipment_at = {}
    for key, value in _dict(data.get("last_shipment_at")).items():
        product = _opt_enum(Product, key)
        if product is not None:
            state.last_shipment_at[product] = _num(value, 0.0, 0.0)

    state.market = initial_market(scenario)
    raw_market = _dict(data.get("market"))
    for product, market in state.market.items():
        m = _dict(raw_market.get(product.value))
        if not m:
            continue
        market.futures = _num(m.get("futures"), market.futures, 0.0)
        market.production_cost = _num(m.get("production_cost"), market.production_cost, 0.0)
        market.drift = _num(m.get("drift"), 0.0, -0.5, 0.5)
        market.basis = market.futures - market.production_cost
    state.market_stress = _num(data.get("market_stress"), 0.04, 0.04, 0.65)

    state.directives = [d for d in (_load_directive(x, cfg) for x in _list(data.get("directives"))) if d is not None]
    state.directives = state.directives[: cfg.directive_slots]
    state.directive_stats = _load_dataclass(DirectiveStats, data.get("directive_stats"))
    state.next_directive_seq = _int(data.get("next_directive_seq"), len(state.directives) + 1, 1)

    state.cooldowns = {str(k): _num(v, 0.0, 0.0) for k, v in _dict(data.get("cooldowns")).items()}
    state.action_cost_total = _num(data.get("action_cost_total"), 0.0, 0.0)
    state.recorder = _load_recorder(data.get("recorder"))
    state.metrics = _load_dataclass(Metrics, data.get("metrics"))
    state.flows = _load_dataclass(Flows, data.get("flows"))
    state.performance_history = [
        _num(v, 0.0, 0.0, 100.0) for v in _list(data.get("performance_history"))
    ][-cfg.history_limit :]
    state.logs = _load_logs(data.get("logs"), cfg.log_limit)
    return state
