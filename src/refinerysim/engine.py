from __future__ import annotations

import logging
import math
from dataclasses import asdict, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from refinerysim import snapshot as snapshot_codec
from refinerysim.config import EngineConfig
from refinerysim.directives import credit_delivery, directive_to_dict, fill_directive_slots, update_directives
from refinerysim.flow import FlowResult, flows_as_dict, run_process_flow
from refinerysim.logistics import (
    ShipmentReport,
    StorageReport,
    advance_shipments,
    delay_next_shipment as _delay_next_shipment,
    dispatch_convoy,
    ensure_scheduled_shipments,
    expand_storage_capacity as _expand_storage_capacity,
    logistics_view,
    max_storage_ratio,
    pending_shipments,
    prune_cooldowns,
    request_extra_shipment as _request_extra_shipment,
    update_storage,
    update_storage_pressure,
)
from refinerysim.market import (
    MarketDrivers,
    compute_economy,
    initial_market,
    margin_multiplier,
    market_view,
    update_prices,
    update_stress,
)
from refinerysim.models import (
    ActionResult,
    AlertLevel,
    IncidentDetail,
    LogEntry,
    LogLevel,
    PipelineBoost,
    Product,
    RefineryState,
    Scenario,
    UnitId,
    UnitOverride,
    UnitStatus,
)
from refinerysim.presets import (
    DEFAULT_SCENARIO,
    OPERATING_PRESETS,
    PARAM_BOUNDS,
    PROCESS_TOPOLOGY,
    SCENARIOS,
    UNIT_FEED_STREAM,
    UNIT_MODE_DEFINITIONS,
    get_scenario,
    new_tanks,
    new_units,
    normalize_param_name,
)
from refinerysim.randomness import RandomSource
from refinerysim.reliability import (
    ReliabilityReport,
    advance_downtime,
    downtime_share,
    mean_integrity,
    refresh_unit_modes,
    strain_factor,
    sync_unit_status,
    update_alerts,
    update_reliability,
    update_strain,
)
from refinerysim.scorecard import score_to_grade, update_scorecard

logger = logging.getLogger(__name__)

_PY_LEVEL = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.DANGER: logging.ERROR,
}

BYPASS_COST = 35.0
TURNAROUND_MINUTES = 240.0
TURNAROUND_COST = 120.0
INSPECTION_COOLDOWN_MINUTES = 120.0
INSPECTION_GAIN = 0.05
INSPECTION_COST = 8.0
ALERT_HORIZON_HOURS = 2.0

SnapshotError = snapshot_codec.SnapshotError


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(x)))


def _unit_id(value: Union[UnitId, str, None]) -> Optional[UnitId]:
    if isinstance(value, UnitId):
        return value
    try:
        return UnitId(str(value))
    except ValueError:
        return None


def _plain(link: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in link.items()}


def format_sim_time(minutes: float) -> str:
    total = int(math.floor(max(0.0, float(minutes))))
    days = total // (60 * 24)
    hours = (total % (60 * 24)) // 60
    mins = total % 60
    return f"Day {days + 1}, {hours:02d}:{mins:02d}"


class RefinerySimulation:
    """Tick-based refinery model.

    The host calls ``update(delta_seconds)`` once per frame (or ``advance`` for
    batch stepping). Everything else is an instantaneous read or command applied
    between ticks. Reads return fresh dicts/lists; nothing handed out aliases
    engine state.
    """

    def __init__(
        self,
        cfg: Optional[EngineConfig] = None,
        rng: Optional[RandomSource] = None,
        scenario: str = DEFAULT_SCENARIO,
    ) -> None:
        self.cfg = cfg or EngineConfig()
        self.rng = rng or RandomSource(self.cfg.rng_seed)
        self.state = RefineryState(scenario_key=scenario if scenario in SCENARIOS else DEFAULT_SCENARIO)
        self.reset()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self) -> None:
        """Fresh plant under the current scenario. Parameters, speed and run state are kept."""

        prev = self.state
        scenario = get_scenario(prev.scenario_key)
        state = RefineryState(
            running=prev.running,
            speed_multiplier=prev.speed_multiplier,
            params=replace(prev.params),
            scenario_key=scenario.key,
        )
        state.units = new_units()
        state.tanks = new_tanks()
        state.market = initial_market(scenario)
        self.state = state

        sync_unit_status(state)
        self._preview_metrics(scenario)
        ensure_scheduled_shipments(state, scenario, self.cfg, self.rng, self._log)
        fill_directive_slots(state, self.cfg, self.rng)
        refresh_unit_modes(state)
        self._recompute_derived_metrics()
        # scored for display only; history starts with the first tick
        update_scorecard(state.metrics, [], state.incident_pressure, self.cfg.history_limit)
        self._log(LogLevel.INFO, f"Simulation reset. Scenario: {scenario.name}.")

    def _scenario(self) -> Scenario:
        return get_scenario(self.state.scenario_key)

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def update(self, delta_seconds: float) -> int:
        """Advance by wall-clock time. Returns the number of ticks executed."""

        state = self.state
        if not state.running and not state.step_once:
            return 0
        if state.step_once:
            self._advance_tick()
            state.step_once = False
            state.running = False
            state.accumulator = 0.0
            return 1

        try:
            dt = float(delta_seconds)
        except (TypeError, ValueError):
            return 0
        if not math.isfinite(dt) or dt <= 0:
            return 0

        tick = float(self.cfg.tick_minutes)
        state.accumulator += dt * state.speed_multiplier * self.cfg.base_minutes_per_second
        ticks = 0
        while state.accumulator >= tick:
            state.accumulator -= tick
            self._advance_tick()
            ticks += 1
        return ticks

    def advance(self, minutes: float) -> int:
        """Run whole ticks covering ``minutes`` of sim time, ignoring pause."""

        count = int(max(0.0, float(minutes)) // float(self.cfg.tick_minutes))
        for _ in range(count):
            self._advance_tick()
        return count

    def toggle_running(self) -> bool:
        self.state.running = not self.state.running
        self.state.step_once = False
        self._log(LogLevel.INFO, "Simulation resumed." if self.state.running else "Simulation paused.")
        return self.state.running

    def request_step(self) -> None:
        self.state.step_once = True

    def set_speed_multiplier(self, value: float) -> float:
        try:
            v = float(value)
        except (TypeError, ValueError):
            return self.state.speed_multiplier
        if math.isfinite(v):
            self.state.speed_multiplier = _clamp(v, self.cfg.speed_min, self.cfg.speed_max)
        return self.state.speed_multiplier

    def adjust_speed_multiplier(self, delta: float) -> float:
        return self.set_speed_multiplier(self.state.speed_multiplier + float(delta))

    # ------------------------------------------------------------------
    # Tick body
    # ------------------------------------------------------------------

    def _crude_available(self, scenario: Scenario) -> float:
        lo, hi = PARAM_BOUNDS["crude_intake"]
        intake = _clamp(self.state.params.crude_intake, lo, hi)
        return intake * scenario.crude_multiplier * self.state.storage_pressure.throttle

    @staticmethod
    def _flare_level(flow: FlowResult) -> float:
        denom = flow.crude_throughput * 0.5 or 1.0
        return _clamp((flow.waste + flow.flare * 1.4) / denom, 0.0, 1.0)

    def _carbon(self, flow: FlowResult, incidents: int) -> float:
        base = flow.waste * 3.5 + flow.diesel * 0.6 + flow.gasoline * 0.5 + incidents * 2.8
        mitigation = 1.0 - _clamp(self.state.params.environment * 0.55, 0.0, 0.6)
        return base * mitigation

    def _expire_boosts(self) -> None:
        state = self.state
        for stream, boost in list(state.pipeline_boosts.items()):
            if boost.expires_at <= state.time_minutes:
                del state.pipeline_boosts[stream]
                self._log(LogLevel.INFO, f"Pipeline bypass on {stream.value} expired.", stream=stream.value)

    def _advance_tick(self) -> None:
        cfg = self.cfg
        state = self.state
        scenario = self._scenario()
        minutes = float(cfg.tick_minutes)
        hours = cfg.tick_hours()

        state.time_minutes += minutes
        self._expire_boosts()
        advance_downtime(state, minutes, self.rng, self._log)
        sync_unit_status(state)

        # Process
        flow = run_process_flow(state, scenario, self._crude_available(scenario), cfg)
        flare_level = self._flare_level(flow)
        dist_capacity = state.units[UnitId.DISTILLATION].capacity
        update_strain(state, scenario, flow.crude_throughput / dist_capacity if dist_capacity > 0 else 0.0)
        sf = strain_factor(state)
        rel = update_reliability(state, scenario, flare_level, hours, self.rng, self._log, self.format_time())

        # Logistics
        production = {Product.GASOLINE: flow.gasoline, Product.DIESEL: flow.diesel, Product.JET: flow.jet}
        storage_report = update_storage(state, production, scenario, hours)
        ship_report = advance_shipments(state, hours, cfg, self._log)
        update_storage_pressure(state, minutes, cfg, self._log)
        prune_cooldowns(state)
        ensure_scheduled_shipments(state, scenario, cfg, self.rng, self._log)

        # Market
        drivers = MarketDrivers(
            reliability=rel.reliability,
            shipment_reliability=state.shipment_stats.reliability(),
            directive_reliability=state.directive_stats.reliability(),
            downtime_share=downtime_share(state),
            strain_factor=sf,
        )
        update_prices(state, scenario, production, drivers)
        update_stress(state, storage_report, drivers)
        economy = compute_economy(
            state,
            scenario,
            production,
            flow.lpg,
            flow.crude_throughput,
            rel.penalty,
            sf,
            storage_report,
            ship_report,
        )
        carbon = self._carbon(flow, rel.incidents)

        m = state.metrics
        m.gasoline = flow.gasoline
        m.diesel = flow.diesel
        m.jet = flow.jet
        m.lpg = flow.lpg
        m.hydrogen = flow.hydrogen
        m.sulfur = flow.sulfur
        m.crude_available = flow.crude_available
        m.crude_throughput = flow.crude_throughput
        m.waste = flow.waste
        m.flare_level = flare_level
        m.incidents = rel.incidents
        m.reliability = rel.reliability
        m.carbon = carbon
        m.revenue_per_day = economy.revenue_per_day
        m.expense_per_day = economy.expense_per_day
        m.penalty_per_day = economy.penalty_per_day
        m.profit_per_hour = economy.profit_per_hour
        m.cumulative_profit += economy.profit_per_hour * hours - economy.one_off_penalty
        state.flows = flow.flows

        update_directives(state, hours, rel.reliability, carbon, ship_report.delivered, cfg, self.rng, self._log)
        self._recompute_derived_metrics()
        update_scorecard(m, state.performance_history, state.incident_pressure, cfg.history_limit)
        self._record(hours, flow, rel, economy.profit_per_hour, economy.penalty_per_day, economy.one_off_penalty, carbon, ship_report)

        update_alerts(state, minutes)
        refresh_unit_modes(state)

    def _preview_metrics(self, scenario: Scenario) -> None:
        """Fill output metrics for a fresh plant without advancing time."""

        state = self.state
        flow = run_process_flow(state, scenario, self._crude_available(scenario), self.cfg)
        production = {Product.GASOLINE: flow.gasoline, Product.DIESEL: flow.diesel, Product.JET: flow.jet}
        economy = compute_economy(
            state,
            scenario,
            production,
            flow.lpg,
            flow.crude_throughput,
            0.0,
            strain_factor(state),
            StorageReport(),
            ShipmentReport(),
        )
        m = state.metrics
        m.gasoline = flow.gasoline
        m.diesel = flow.diesel
        m.jet = flow.jet
        m.lpg = flow.lpg
        m.hydrogen = flow.hydrogen
        m.sulfur = flow.sulfur
        m.crude_available = flow.crude_available
        m.crude_throughput = flow.crude_throughput
        m.waste = flow.waste
        m.flare_level = self._flare_level(flow)
        m.reliability = mean_integrity(state)
        m.carbon = self._carbon(flow, 0)
        m.revenue_per_day = economy.revenue_per_day
        m.expense_per_day = economy.expense_per_day
        m.penalty_per_day = economy.penalty_per_day
        m.profit_per_hour = economy.profit_per_hour
        state.flows = flow.flows

    def _recompute_derived_metrics(self) -> None:
        state = self.state
        m = state.metrics
        m.strain = state.strain
        m.strain_factor = strain_factor(state)
        m.market_stress = state.market_stress
        m.margin_multiplier = margin_multiplier(state.market_stress)
        m.storage_throttle = state.storage_pressure.throttle
        m.max_storage_ratio = max_storage_ratio(state)
        m.shipment_reliability = state.shipment_stats.reliability()
        m.directive_reliability = state.directive_stats.reliability()
        m.grade = score_to_grade(m.score)

    def _record(
        self,
        hours: float,
        flow: FlowResult,
        rel: ReliabilityReport,
        profit_per_hour: float,
        penalty_per_day: float,
        one_off_penalty: float,
        carbon: float,
        ship_report: ShipmentReport,
    ) -> None:
        rec = self.state.recorder
        if not rec.active:
            return
        rec.elapsed_hours += hours
        rec.production += flow.liquids() * hours / 24.0
        rec.profit += profit_per_hour * hours - one_off_penalty
        rec.penalty += penalty_per_day * hours / 24.0 + one_off_penalty
        rec.incidents += rel.incidents
        rec.reliability_hours += rel.reliability * hours
        rec.carbon += carbon * hours
        rec.shipments_completed += ship_report.completed
        rec.shipments_missed += ship_report.missed

    # ------------------------------------------------------------------
    # Log
    # ------------------------------------------------------------------

    def _log(self, level: LogLevel, message: str, **meta: Any) -> None:
        entry = LogEntry(level=level, message=str(message), timestamp=self.format_time(), meta=dict(meta))
        self.state.logs.insert(0, entry)
        del self.state.logs[self.cfg.log_limit :]
        logger.log(_PY_LEVEL.get(level, logging.INFO), "[%s] %s", entry.timestamp, entry.message)

    def push_log(self, level: Union[LogLevel, str], message: str, **meta: Any) -> None:
        try:
            lvl = LogLevel(level)
        except ValueError:
            lvl = LogLevel.INFO
        self._log(lvl, message, **meta)

    def _refuse(self, message: str, **data: Any) -> ActionResult:
        self._log(LogLevel.INFO, message)
        return ActionResult(ok=False, message=message, data=data)

    def _charge(self, cost: float) -> None:
        self.state.action_cost_total += cost
        self.state.metrics.cumulative_profit -= cost

    # ------------------------------------------------------------------
    # Parameters / scenario
    # ------------------------------------------------------------------

    def set_param(self, name: str, value: float) -> ActionResult:
        key = normalize_param_name(name)
        if key is None:
            return self._refuse(f"Unknown control '{name}'.")
        try:
            v = float(value)
        except (TypeError, ValueError):
            return self._refuse(f"Ignored non-numeric value for {key}.")
        if not math.isfinite(v):
            return self._refuse(f"Ignored non-numeric value for {key}.")
        lo, hi = PARAM_BOUNDS[key]
        v = _clamp(v, lo, hi)
        setattr(self.state.params, key, v)
        return ActionResult(ok=True, message=f"{key} set to {v:g}.", data={"name": key, "value": v})

    def get_params(self) -> Dict[str, float]:
        return asdict(self.state.params)

    def apply_scenario(self, key: str) -> ActionResult:
        scenario = SCENARIOS.get(str(key))
        if scenario is None:
            return self._refuse(f"Unknown scenario '{key}'.")
        self.state.scenario_key = scenario.key
        self._log(LogLevel.INFO, f"Scenario changed: {scenario.name}. {scenario.description}", scenario=scenario.key)
        return ActionResult(ok=True, message=scenario.name, data={"scenario": scenario.key})

    def apply_operating_preset(self, name: str) -> ActionResult:
        preset = OPERATING_PRESETS.get(str(name))
        if preset is None:
            return self._refuse(f"Unknown operating preset '{name}'.")
        self.state.params = replace(preset["params"])
        if name == "shutdown":
            self.trigger_emergency_shutdown()
        elif self.state.emergency_shutdown:
            self.release_emergency_shutdown()
        self._log(LogLevel.INFO, preset["log"], preset=str(name))
        return ActionResult(ok=True, message=preset["log"], data={"preset": str(name), "label": preset["label"]})

    # ------------------------------------------------------------------
    # Unit commands
    # ------------------------------------------------------------------

    def _override(self, uid: UnitId) -> UnitOverride:
        override = self.state.overrides.get(uid)
        if override is None:
            override = UnitOverride()
            self.state.overrides[uid] = override
        return override

    def _drop_empty_override(self, uid: UnitId) -> None:
        override = self.state.overrides.get(uid)
        if override is not None and override.throttle is None and override.offline is None:
            del self.state.overrides[uid]

    def set_unit_throttle(self, unit_id: Union[UnitId, str], fraction: float, quiet: bool = False) -> ActionResult:
        uid = _unit_id(unit_id)
        if uid is None:
            return self._refuse(f"Unknown unit '{unit_id}'.")
        try:
            v = float(fraction)
        except (TypeError, ValueError):
            return self._refuse(f"Ignored non-numeric throttle for {uid.value}.")
        if not math.isfinite(v):
            return self._refuse(f"Ignored non-numeric throttle for {uid.value}.")
        v = _clamp(v, 0.0, 1.2)
        self._override(uid).throttle = v
        sync_unit_status(self.state)
        unit = self.state.units[uid]
        if not quiet:
            self._log(LogLevel.INFO, f"{unit.name} throttle set to {round(v * 100)}%.", unit_id=uid.value)
        return ActionResult(ok=True, message=f"{unit.name} throttle {round(v * 100)}%", data={"unit_id": uid.value, "throttle": v})

    def set_unit_offline(self, unit_id: Union[UnitId, str], offline: bool, quiet: bool = False) -> ActionResult:
        uid = _unit_id(unit_id)
        if uid is None:
            return self._refuse(f"Unknown unit '{unit_id}'.")
        unit = self.state.units[uid]
        override = self._override(uid)
        if offline:
            override.offline = True
        else:
            override.offline = None
            unit.emergency_offline = False
            self._drop_empty_override(uid)
        sync_unit_status(self.state)
        refresh_unit_modes(self.state)
        if not quiet:
            if offline:
                self._log(LogLevel.WARNING, f"{unit.name} placed on standby by the operator.", unit_id=uid.value)
            else:
                self._log(LogLevel.INFO, f"{unit.name} released back to service.", unit_id=uid.value)
        return ActionResult(ok=True, message=unit.status.value, data={"unit_id": uid.value, "status": unit.status.value})

    def clear_unit_override(self, unit_id: Union[UnitId, str]) -> ActionResult:
        uid = _unit_id(unit_id)
        if uid is None:
            return self._refuse(f"Unknown unit '{unit_id}'.")
        self.state.overrides.pop(uid, None)
        sync_unit_status(self.state)
        refresh_unit_modes(self.state)
        unit = self.state.units[uid]
        self._log(LogLevel.INFO, f"{unit.name} returned to automatic control.", unit_id=uid.value)
        return ActionResult(ok=True, message="cleared", data={"unit_id": uid.value})

    def get_unit_override(self, unit_id: Union[UnitId, str]) -> Optional[Dict[str, Any]]:
        uid = _unit_id(unit_id)
        if uid is None:
            return None
        override = self.state.overrides.get(uid)
        if override is None:
            return None
        return {"throttle": override.throttle, "offline": override.offline}

    def trigger_emergency_shutdown(self) -> ActionResult:
        state = self.state
        state.emergency_shutdown = True
        for unit in state.units.values():
            unit.emergency_offline = True
        sync_unit_status(state)
        refresh_unit_modes(state)
        self._log(LogLevel.DANGER, "Emergency shutdown triggered. All units moved to standby.")
        return ActionResult(ok=True, message="shutdown")

    def release_emergency_shutdown(self) -> ActionResult:
        state = self.state
        state.emergency_shutdown = False
        for unit in state.units.values():
            unit.emergency_offline = False
        sync_unit_status(state)
        refresh_unit_modes(state)
        self._log(LogLevel.INFO, "Emergency shutdown released. Units restarting.")
        return ActionResult(ok=True, message="released")

    def deploy_pipeline_bypass(self, unit_id: Union[UnitId, str]) -> ActionResult:
        uid = _unit_id(unit_id)
        if uid is None:
            return self._refuse(f"Unknown unit '{unit_id}'.")
        stream = UNIT_FEED_STREAM.get(uid)
        unit = self.state.units[uid]
        if stream is None:
            return self._refuse(f"{unit.name} has no feed line to bypass.")
        active = self.state.pipeline_boosts.get(stream)
        if active is not None and active.expires_at > self.state.time_minutes:
            hours = (active.expires_at - self.state.time_minutes) / 60.0
            return self._refuse(f"Bypass on {stream.value} already active ({hours:.1f} h left).", cooldown=hours)
        boost = PipelineBoost(
            multiplier=float(self.cfg.pipeline_boost_multiplier),
            expires_at=self.state.time_minutes + self.cfg.pipeline_boost_hours * 60.0,
        )
        self.state.pipeline_boosts[stream] = boost
        self._charge(BYPASS_COST)
        message = f"Bypass opened on {stream.value}: {unit.name} feed limit raised {round((boost.multiplier - 1) * 100)}%."
        self._log(LogLevel.INFO, message, unit_id=uid.value, stream=stream.value)
        return ActionResult(
            ok=True,
            message=message,
            data={"stream": stream.value, "multiplier": boost.multiplier, "expires_at": boost.expires_at, "cost": BYPASS_COST},
        )

    def schedule_turnaround(self, unit_id: Union[UnitId, str]) -> ActionResult:
        uid = _unit_id(unit_id)
        if uid is None:
            return self._refuse(f"Unknown unit '{unit_id}'.")
        unit = self.state.units[uid]
        if unit.status is UnitStatus.OFFLINE:
            return self._refuse(f"{unit.name} is already down for repairs.")
        unit.turnaround = True
        unit.downtime = TURNAROUND_MINUTES
        unit.status = UnitStatus.OFFLINE
        unit.throughput = 0.0
        unit.utilization = 0.0
        unit.alert = None
        unit.alert_detail = None
        refresh_unit_modes(self.state)
        self._charge(TURNAROUND_COST)
        message = f"{unit.name} taken down for a {TURNAROUND_MINUTES / 60:.0f} h turnaround."
        self._log(LogLevel.WARNING, message, unit_id=uid.value)
        return ActionResult(ok=True, message=message, data={"unit_id": uid.value, "downtime": unit.downtime, "cost": TURNAROUND_COST})

    def perform_inspection(self, unit_id: Union[UnitId, str]) -> ActionResult:
        uid = _unit_id(unit_id)
        if uid is None:
            return self._refuse(f"Unknown unit '{unit_id}'.")
        state = self.state
        unit = state.units[uid]
        if state.time_minutes < unit.inspection_ready_at:
            wait = (unit.inspection_ready_at - state.time_minutes) / 60.0
            return self._refuse(f"{unit.name} was inspected recently ({wait:.1f} h until next slot).", cooldown=wait)
        unit.integrity = _clamp(unit.integrity + INSPECTION_GAIN, 0.0, 1.0)
        unit.inspection_ready_at = state.time_minutes + INSPECTION_COOLDOWN_MINUTES
        self._charge(INSPECTION_COST)
        if unit.integrity < 0.45:
            unit.alert = AlertLevel.DANGER if unit.alert is AlertLevel.DANGER else AlertLevel.WARNING
            unit.alert_timer = max(unit.alert_timer, 30.0)
            unit.alert_detail = IncidentDetail(
                severity=unit.alert,
                summary=f"Inspection flagged {unit.name}",
                cause="Inspectors found advanced wear on internals and seals.",
                guidance="Schedule a turnaround or cut the unit throttle until integrity recovers.",
                recorded_at=self.format_time(),
            )
            message = f"Inspection of {unit.name} found heavy wear ({round(unit.integrity * 100)}% integrity)."
            self._log(LogLevel.WARNING, message, unit_id=uid.value)
        else:
            message = f"Inspection of {unit.name} complete ({round(unit.integrity * 100)}% integrity)."
            self._log(LogLevel.INFO, message, unit_id=uid.value)
        refresh_unit_modes(state)
        return ActionResult(ok=True, message=message, data={"unit_id": uid.value, "integrity": unit.integrity, "cost": INSPECTION_COST})

    # ------------------------------------------------------------------
    # Logistics commands
    # ------------------------------------------------------------------

    def dispatch_logistics_convoy(self) -> ActionResult:
        result = dispatch_convoy(self.state, self.cfg, self._log)
        if result.ok:
            credit_delivery(self.state, {Product(result.data["product"]): result.data["volume"]})
            self._recompute_derived_metrics()
        return result

    def delay_next_shipment(self, hours: float = 4.0, product: Optional[Union[Product, str]] = None) -> ActionResult:
        target: Optional[Product] = None
        if product is not None:
            try:
                target = Product(product)
            except ValueError:
                return self._refuse(f"Unknown product '{product}'.")
        try:
            extra = float(hours)
        except (TypeError, ValueError):
            extra = 4.0
        return _delay_next_shipment(self.state, self._log, hours=extra, product=target)

    def request_extra_shipment(self) -> ActionResult:
        return _request_extra_shipment(self.state, self.cfg, self._log)

    def expand_storage_capacity(self) -> ActionResult:
        result = _expand_storage_capacity(self.state, self._log)
        if result.ok:
            self._recompute_derived_metrics()
        return result

    # ------------------------------------------------------------------
    # Recorder
    # ------------------------------------------------------------------

    def toggle_performance_recording(self) -> ActionResult:
        rec = self.state.recorder
        if not rec.active:
            rec.reset_window()
            rec.active = True
            self._log(LogLevel.INFO, "Performance recording started.")
            return ActionResult(ok=True, message="recording", data={"active": True})
        rec.active = False
        summary = self._recording_summary()
        rec.last_summary = summary
        self._log(
            LogLevel.INFO,
            f"Performance recording stopped after {summary['elapsed_hours']:.1f} h: profit ${summary['profit']:.0f}k, "
            f"{summary['incidents']:.0f} incidents.",
        )
        return ActionResult(ok=True, message="stopped", data={"active": False, "summary": dict(summary)})

    def _recording_summary(self) -> Dict[str, float]:
        rec = self.state.recorder
        hours = rec.elapsed_hours
        return {
            "elapsed_hours": hours,
            "production": rec.production,
            "profit": rec.profit,
            "penalty": rec.penalty,
            "incidents": float(rec.incidents),
            "avg_reliability": rec.reliability_hours / hours if hours > 0 else 0.0,
            "avg_carbon": rec.carbon / hours if hours > 0 else 0.0,
            "shipments_completed": float(rec.shipments_completed),
            "shipments_missed": float(rec.shipments_missed),
        }

    def get_recording_summary(self) -> Dict[str, Any]:
        rec = self.state.recorder
        return {
            "active": rec.active,
            "current": self._recording_summary() if rec.active else None,
            "last": dict(rec.last_summary) if rec.last_summary is not None else None,
        }

    # ------------------------------------------------------------------
    # Read surface
    # ------------------------------------------------------------------

    def get_time(self) -> float:
        return self.state.time_minutes

    def format_time(self) -> str:
        return format_sim_time(self.state.time_minutes)

    def is_running(self) -> bool:
        return self.state.running

    def get_speed_multiplier(self) -> float:
        return self.state.speed_multiplier

    def get_scenario(self) -> Dict[str, Any]:
        s = self._scenario()
        return {"key": s.key, "name": s.name, "description": s.description}

    def get_units(self) -> List[Dict[str, Any]]:
        out = []
        for uid, u in self.state.units.items():
            detail = None
            if u.alert_detail is not None:
                detail = {
                    "severity": u.alert_detail.severity.value,
                    "summary": u.alert_detail.summary,
                    "cause": u.alert_detail.cause,
                    "guidance": u.alert_detail.guidance,
                    "recorded_at": u.alert_detail.recorded_at,
                }
            out.append(
                {
                    "id": uid.value,
                    "name": u.name,
                    "capacity": u.capacity,
                    "category": u.category,
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
                    "override": self.get_unit_override(uid),
                }
            )
        return out

    def get_flows(self) -> Dict[str, float]:
        return flows_as_dict(self.state.flows)

    def get_metrics(self) -> Dict[str, Any]:
        self._recompute_derived_metrics()
        return asdict(self.state.metrics)

    def get_logistics_state(self) -> Dict[str, Any]:
        return logistics_view(self.state)

    def get_market_state(self) -> Dict[str, Any]:
        return market_view(self.state, self._scenario())

    def get_directives(self) -> Dict[str, Any]:
        stats = self.state.directive_stats
        return {
            "directives": [directive_to_dict(d) for d in self.state.directives],
            "stats": {"completed": stats.completed, "failed": stats.failed, "reliability": stats.reliability()},
        }

    def get_active_alerts(self) -> List[Dict[str, Any]]:
        state = self.state
        alerts: List[Dict[str, Any]] = []
        for uid, u in state.units.items():
            if u.alert is None:
                continue
            detail = u.alert_detail
            alerts.append(
                {
                    "source": "unit",
                    "id": uid.value,
                    "level": u.alert.value,
                    "message": detail.summary if detail is not None else f"{u.name} needs attention",
                    "cause": detail.cause if detail is not None else "",
                    "guidance": detail.guidance if detail is not None else "",
                }
            )
        for product, tank in state.tanks.items():
            if tank.ratio() >= self.cfg.storage_pressure_engage:
                alerts.append(
                    {
                        "source": "storage",
                        "id": product.value,
                        "level": AlertLevel.DANGER.value if tank.ratio() >= 0.99 else AlertLevel.WARNING.value,
                        "message": f"{product.value.title()} tanks at {round(tank.ratio() * 100)}% capacity",
                        "cause": "Production is outrunning offtake.",
                        "guidance": "Dispatch a convoy, charter a vessel or trim crude intake.",
                    }
                )
        for shipment in pending_shipments(state):
            if shipment.due_in > ALERT_HORIZON_HOURS:
                continue
            tank = state.tanks[shipment.product]
            if tank.level + 1e-9 >= shipment.volume:
                continue
            alerts.append(
                {
                    "source": "shipment",
                    "id": shipment.shipment_id,
                    "level": AlertLevel.WARNING.value,
                    "message": f"Shipment {shipment.shipment_id} due in {shipment.due_in:.1f} h is short on {shipment.product.value}",
                    "cause": f"Needs {shipment.volume:.1f} kb, {tank.level:.1f} kb on hand.",
                    "guidance": "Delay the shipment or raise output of this product.",
                }
            )
        return alerts

    def get_scenario_list(self) -> List[Dict[str, Any]]:
        return [
            {"key": s.key, "name": s.name, "description": s.description, "active": s.key == self.state.scenario_key}
            for s in SCENARIOS.values()
        ]

    def get_performance_history(self) -> List[float]:
        return list(self.state.performance_history)

    def get_process_topology(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {}
        for uid, node in PROCESS_TOPOLOGY.items():
            out[uid.value] = {
                "name": self.state.units[uid].name,
                "summary": node["summary"],
                "feeds": [_plain(f) for f in node["feeds"]],
                "outputs": [_plain(o) for o in node["outputs"]],
            }
        return out

    def get_unit_mode_definitions(self) -> List[Dict[str, str]]:
        return [dict(d) for d in UNIT_MODE_DEFINITIONS]

    def get_logs(self) -> List[Dict[str, Any]]:
        return [
            {"level": e.level.value, "message": e.message, "timestamp": e.timestamp, "meta": dict(e.meta)}
            for e in self.state.logs
        ]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def create_snapshot(self) -> Dict[str, Any]:
        return snapshot_codec.create_snapshot(self.state, self.rng.get_state())

    def load_snapshot(self, data: Any) -> None:
        """Replace the run with ``data``. Raises ``SnapshotError`` if it is not a mapping."""

        state = snapshot_codec.load_snapshot(data, self.cfg)
        rng_state = data.get("rng_state")
        if rng_state is not None and not self.rng.set_state(rng_state):
            logger.warning("snapshot rng_state rejected; keeping current random stream")
        self.state = state
        if len(state.directives) < self.cfg.directive_slots:
            fill_directive_slots(state, self.cfg, self.rng)
        refresh_unit_modes(state)
        self._recompute_derived_metrics()
        self._log(LogLevel.INFO, "Snapshot loaded.")

