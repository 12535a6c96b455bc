from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Tuple

from refinerysim.models import (
    AlertLevel,
    IncidentDetail,
    LogLevel,
    RefineryState,
    Scenario,
    Unit,
    UnitStatus,
)

LogFn = Callable[..., None]

STRAIN_MAX = 12.0
TRIP_INTEGRITY = 0.35
TRIP_PROBABILITY_CAP = 0.85


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(x)))


@dataclass
class ReliabilityReport:
    incidents: int = 0
    penalty: float = 0.0
    reliability: float = 1.0
    tripped: int = 0


def strain_factor(state: RefineryState) -> float:
    return _clamp(state.strain / STRAIN_MAX, 0.0, 1.0)


def advance_downtime(state: RefineryState, minutes: float, rng, log: LogFn) -> None:
    """Count down repairs; units whose downtime expires come back with fresh integrity."""

    for unit in state.units.values():
        if unit.downtime <= 0:
            continue
        unit.downtime = max(0.0, unit.downtime - float(minutes))
        if unit.downtime > 0:
            continue
        if unit.turnaround:
            unit.integrity = 0.98
            unit.turnaround = False
            message = f"{unit.name} completed its turnaround and is back online."
        else:
            unit.integrity = _clamp(0.65 + rng.recovery_integrity() * 0.25, 0.0, 1.0)
            message = f"{unit.name} cleared maintenance and is back online."
        unit.alert = None
        unit.alert_detail = None
        unit.alert_timer = 6.0
        log(LogLevel.INFO, message, unit_id=unit.unit_id.value)


def sync_unit_status(state: RefineryState) -> None:
    """Resolve each unit's status from repairs, operator overrides and the emergency hold."""

    for uid, unit in state.units.items():
        override = state.overrides.get(uid)
        throttle = override.throttle if override is not None else None
        unit.override_throttle = _clamp(throttle, 0.0, 1.2) if throttle is not None else 1.0
        unit.manual_offline = bool(override.offline) if override is not None else False

        if unit.downtime > 0:
            unit.status = UnitStatus.OFFLINE
        elif unit.emergency_offline or unit.manual_offline:
            unit.status = UnitStatus.STANDBY
            unit.throughput = 0.0
            unit.utilization = 0.0
        else:
            unit.status = UnitStatus.ONLINE
        if unit.status is UnitStatus.OFFLINE:
            unit.throughput = 0.0
            unit.utilization = 0.0


def update_strain(state: RefineryState, scenario: Scenario, load: float) -> float:
    p = state.params
    m = _clamp(p.maintenance, 0.0, 1.0)
    s = _clamp(p.safety, 0.0, 1.0)
    e = _clamp(p.environment, 0.0, 1.0)

    mitigation = m * 0.35 + s * 0.3 + e * 0.15
    pressure = 1.0 + scenario.maintenance_penalty * 0.9 + state.market_stress * 0.45
    target = _clamp((max(0.0, load) * pressure - mitigation + 0.08) * 5.2, 0.0, STRAIN_MAX)

    rate = 0.02 + m * 0.03 + s * 0.02
    strain = state.strain + (target - state.strain) * rate
    strain -= e * 0.004 + m * 0.003 + s * 0.003
    state.strain = _clamp(strain, 0.0, STRAIN_MAX)
    return state.strain


def _incident_narrative(
    unit: Unit,
    severity: AlertLevel,
    overload: float,
    maintenance: float,
    factor: float,
    scenario: Scenario,
    flare_level: float,
) -> Tuple[str, str, str]:
    drivers: List[Tuple[float, str, str]] = [
        (
            overload * 1.8,
            f"Sustained overdrive at {round(unit.utilization * 100)}% of nameplate overheated internals.",
            "Ease the unit throttle below 100% or deploy a pipeline bypass to spread the load.",
        ),
        (
            max(0.0, 0.8 - maintenance),
            "Deferred maintenance left worn seals and fouled exchangers in service.",
            "Raise the maintenance budget or schedule a turnaround before restarting hard.",
        ),
        (
            factor,
            "Plant-wide strain pushed operators and utilities past their comfort zone.",
            "Trim crude intake and raise safety spend until strain settles.",
        ),
        (
            max(0.0, scenario.risk_multiplier - 1.0),
            f"{scenario.name} conditions amplified equipment stress.",
            "Expect fragile equipment under this scenario; keep spare capacity in reserve.",
        ),
        (
            flare_level * 0.8,
            "Heavy flaring destabilized the relief system.",
            "Increase environmental spend and cut waste-heavy operation.",
        ),
    ]
    drivers.sort(key=lambda d: d[0], reverse=True)
    _, cause, guidance = drivers[0]
    if severity is AlertLevel.DANGER:
        summary = f"Critical upset at {unit.name}"
    else:
        summary = f"Process upset at {unit.name}"
    return summary, cause, guidance


def update_reliability(
    state: RefineryState,
    scenario: Scenario,
    flare_level: float,
    hours: float,
    rng,
    log: LogFn,
    timestamp: str = "",
) -> ReliabilityReport:
    p = state.params
    maintenance = _clamp(p.maintenance, 0.0, 1.0)
    safety = _clamp(p.safety, 0.0, 1.0)
    env = _clamp(p.environment, 0.0, 1.0)
    factor = strain_factor(state)

    maintenance_factor = max(0.15, 1.3 - maintenance * 0.9 - safety * 0.4)
    strain_wear = 1.0 + factor * 0.8
    env_relief = 1.0 - env * 0.12

    report = ReliabilityReport()
    integrity_sum = 0.0

    for unit in state.units.values():
        if unit.status is UnitStatus.ONLINE:
            utilization = unit.utilization
            base_wear = 0.004 * hours
            stress_wear = max(0.0, utilization - 1.0) * 0.04 * hours
            wear = (base_wear + stress_wear) * maintenance_factor * scenario.risk_multiplier * strain_wear * env_relief
            unit.integrity = _clamp(unit.integrity - wear, 0.0, 1.0)

            if unit.integrity < TRIP_INTEGRITY:
                failure_pressure = _clamp(TRIP_INTEGRITY - unit.integrity, 0.0, TRIP_INTEGRITY)
                overload = max(0.0, utilization - 0.95)
                risk = (
                    failure_pressure
                    * (0.9 + overload * 1.8)
                    * (1.1 - maintenance)
                    * scenario.risk_multiplier
                    * (1.0 + factor * 0.6)
                    * (1.0 + _clamp(flare_level, 0.0, 1.0) * 0.5)
                )
                risk = _clamp(risk, 0.0, TRIP_PROBABILITY_CAP)
                if rng.incident_roll() < risk:
                    _trip_unit(state, unit, scenario, overload, maintenance, safety, factor, flare_level, rng, log, timestamp, report)

        integrity_sum += unit.integrity

    report.reliability = _clamp(integrity_sum / max(1, len(state.units)), 0.0, 1.0)
    state.incident_pressure = state.incident_pressure * 0.98 + report.incidents
    return report


def _trip_unit(
    state: RefineryState,
    unit: Unit,
    scenario: Scenario,
    overload: float,
    maintenance: float,
    safety: float,
    factor: float,
    flare_level: float,
    rng,
    log: LogFn,
    timestamp: str,
    report: ReliabilityReport,
) -> None:
    danger = overload > 0.2 and safety < 0.45
    severity = AlertLevel.DANGER if danger else AlertLevel.WARNING
    downtime = 30.0 + rng.incident_downtime() * 90.0 + overload * 120.0 + (60.0 if danger else 0.0)

    unit.status = UnitStatus.OFFLINE
    unit.downtime = downtime
    unit.throughput = 0.0
    unit.utilization = 0.0
    unit.incidents += 1
    report.tripped += 1
    report.incidents += 2 if danger else 1
    report.penalty += 320.0 if danger else 140.0

    summary, cause, guidance = _incident_narrative(unit, severity, overload, maintenance, factor, scenario, flare_level)
    unit.alert = severity
    unit.alert_timer = max(unit.alert_timer, 180.0 if danger else 90.0)
    unit.alert_detail = IncidentDetail(
        severity=severity,
        summary=summary,
        cause=cause,
        guidance=guidance,
        recorded_at=timestamp,
    )

    level = LogLevel.DANGER if danger else LogLevel.WARNING
    kind = "critical" if danger else "process"
    log(level, f"{unit.name} tripped offline after a {kind} upset. {cause}", unit_id=unit.unit_id.value)
    if danger:
        log(
            LogLevel.DANGER,
            f"Emergency crews respond to pressure surge at {unit.name}. Throughput curtailed.",
            unit_id=unit.unit_id.value,
        )


def update_alerts(state: RefineryState, minutes: float) -> None:
    for unit in state.units.values():
        if unit.status is UnitStatus.OFFLINE:
            unit.alert = AlertLevel.DANGER if unit.alert is AlertLevel.DANGER else AlertLevel.WARNING
            unit.alert_timer = max(unit.alert_timer, 45.0)
        elif unit.integrity < 0.45:
            unit.alert = AlertLevel.DANGER if unit.alert is AlertLevel.DANGER else AlertLevel.WARNING
            unit.alert_timer = max(unit.alert_timer, 30.0)

        if unit.alert_timer > 0:
            unit.alert_timer = max(0.0, unit.alert_timer - float(minutes))
            if (
                unit.alert_timer == 0
                and unit.status is UnitStatus.ONLINE
                and unit.integrity >= 0.5
                and unit.alert is not AlertLevel.DANGER
            ):
                unit.alert = None
        elif unit.alert is not None and unit.status is UnitStatus.ONLINE and unit.integrity >= 0.6:
            unit.alert = None

        if unit.alert is None and unit.status is UnitStatus.ONLINE:
            unit.alert_detail = None


def derive_unit_mode(unit: Unit) -> str:
    if unit.status is UnitStatus.STANDBY:
        return "emergency" if unit.emergency_offline else "standby"
    if unit.status is UnitStatus.OFFLINE:
        return "turnaround" if unit.turnaround else "offline"
    if unit.throughput <= 1e-9:
        return "idle"
    if unit.utilization > 1.0:
        return "overdrive"
    if unit.integrity < 0.5:
        return "strained"
    return "optimal"


def refresh_unit_modes(state: RefineryState) -> None:
    for unit in state.units.values():
        unit.mode = derive_unit_mode(unit)


def downtime_share(state: RefineryState) -> float:
    if not state.units:
        return 0.0
    down = sum(1 for u in state.units.values() if u.status is not UnitStatus.ONLINE)
    return down / float(len(state.units))


def mean_integrity(state: RefineryState) -> float:
    if not state.units:
        return 1.0
    return _clamp(sum(u.integrity for u in state.units.values()) / float(len(state.units)), 0.0, 1.0)
