from __future__ import annotations

from refinerysim.models import AlertLevel, LogLevel, RefineryState, UnitId, UnitStatus
from refinerysim.presets import get_scenario, new_tanks, new_units
from refinerysim.randomness import RandomSource
from refinerysim.reliability import (
    STRAIN_MAX,
    advance_downtime,
    derive_unit_mode,
    sync_unit_status,
    update_alerts,
    update_reliability,
    update_strain,
)


class _AlwaysTrip(RandomSource):
    def incident_roll(self) -> float:
        return 0.0


class _NeverTrip(RandomSource):
    def incident_roll(self) -> float:
        return 1.0


def _make_state() -> RefineryState:
    s = RefineryState()
    s.units = new_units()
    s.tanks = new_tanks()
    sync_unit_status(s)
    return s


def _collector():
    entries = []

    def log(level, message, **meta):
        entries.append((level, message, meta))

    return entries, log


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def test_strain_stays_bounded() -> None:
    s = _make_state()
    scenario = get_scenario("quakeDrill")
    s.params.maintenance = 0.0
    s.params.safety = 0.0
    s.params.environment = 0.0
    for _ in range(5000):
        update_strain(s, scenario, 3.0)
        _assert(0.0 <= s.strain <= STRAIN_MAX, "strain must stay within [0, 12]")
    _assert(s.strain > 6.0, "sustained overload should build strain")

    for _ in range(5000):
        update_strain(s, get_scenario("steady"), 0.0)
    _assert(s.strain < 1.0, "an idle plant should shed strain")


def test_worn_unit_trips_offline() -> None:
    s = _make_state()
    entries, log = _collector()
    fcc = s.units[UnitId.FCC]
    fcc.integrity = 0.1
    fcc.utilization = 1.3

    report = update_reliability(s, get_scenario("steady"), 0.2, 1.0 / 60.0, _AlwaysTrip(7), log, "Day 1, 00:01")

    _assert(fcc.status is UnitStatus.OFFLINE, "tripped unit should be offline")
    _assert(fcc.downtime >= 30.0, "trip downtime has a 30 minute floor")
    _assert(fcc.incidents == 1, "incident counter should increase")
    _assert(fcc.alert is not None and fcc.alert_detail is not None, "trip should raise an alert with a narrative")
    _assert(fcc.alert_detail.recorded_at == "Day 1, 00:01", "narrative should carry the timestamp")
    _assert(report.tripped == 1 and report.incidents >= 1 and report.penalty > 0, "report should count the trip")
    _assert(s.incident_pressure >= 1.0, "incident pressure should rise")
    _assert(any(level in (LogLevel.WARNING, LogLevel.DANGER) for level, _, _ in entries), "trip should be logged")


def test_overdrive_with_low_safety_is_critical() -> None:
    s = _make_state()
    s.params.safety = 0.2
    _, log = _collector()
    fcc = s.units[UnitId.FCC]
    fcc.integrity = 0.05
    fcc.utilization = 1.4
    update_reliability(s, get_scenario("steady"), 0.0, 1.0 / 60.0, _AlwaysTrip(7), log)
    _assert(fcc.alert is AlertLevel.DANGER, "overdrive above 20% with thin safety is a critical upset")


def test_healthy_units_never_trip() -> None:
    s = _make_state()
    _, log = _collector()
    for _ in range(200):
        report = update_reliability(s, get_scenario("steady"), 0.0, 1.0 / 60.0, _AlwaysTrip(7), log)
        _assert(report.tripped == 0, "units above the trip line cannot trip")
    _assert(all(u.integrity < 1.0 for u in s.units.values()), "online units should wear")


def test_pinned_roll_suppresses_trips() -> None:
    s = _make_state()
    _, log = _collector()
    for u in s.units.values():
        u.integrity = 0.05
        u.utilization = 1.4
    report = update_reliability(s, get_scenario("quakeDrill"), 1.0, 1.0 / 60.0, _NeverTrip(7), log)
    _assert(report.tripped == 0, "trip probability is capped below 1")
    _assert(all(u.status is UnitStatus.ONLINE for u in s.units.values()), "nothing should trip")


def test_turnaround_restores_integrity() -> None:
    s = _make_state()
    entries, log = _collector()
    reformer = s.units[UnitId.REFORMER]
    reformer.integrity = 0.3
    reformer.turnaround = True
    reformer.downtime = 10.0
    sync_unit_status(s)
    _assert(reformer.status is UnitStatus.OFFLINE, "unit under repair is offline")
    _assert(derive_unit_mode(reformer) == "turnaround", "mode should show the turnaround")

    advance_downtime(s, 10.0, RandomSource(3), log)
    sync_unit_status(s)
    _assert(reformer.status is UnitStatus.ONLINE, "unit should return when downtime runs out")
    _assert(abs(reformer.integrity - 0.98) < 1e-9, "turnaround returns the unit at 98% integrity")
    _assert(not reformer.turnaround, "turnaround flag should clear")
    _assert(entries and entries[-1][0] is LogLevel.INFO, "return to service should be logged")


def test_repair_recovery_range() -> None:
    s = _make_state()
    _, log = _collector()
    alky = s.units[UnitId.ALKYLATION]
    alky.integrity = 0.1
    alky.downtime = 5.0
    advance_downtime(s, 60.0, RandomSource(11), log)
    _assert(alky.downtime == 0.0, "downtime should not go negative")
    _assert(0.65 <= alky.integrity <= 0.9, "repaired unit comes back between 65% and 90%")


def test_alerts_follow_unit_state() -> None:
    s = _make_state()
    sulfur = s.units[UnitId.SULFUR]
    sulfur.integrity = 0.4
    update_alerts(s, 1.0)
    _assert(sulfur.alert is AlertLevel.WARNING, "low integrity raises a warning")

    sulfur.integrity = 0.9
    for _ in range(60):
        update_alerts(s, 1.0)
    _assert(sulfur.alert is None, "warning should clear once the unit recovers")


def test_unit_modes() -> None:
    s = _make_state()
    dist = s.units[UnitId.DISTILLATION]
    _assert(derive_unit_mode(dist) == "idle", "no feed means idle")
    dist.throughput = 100.0
    dist.utilization = 0.55
    _assert(derive_unit_mode(dist) == "optimal", "healthy unit in envelope is optimal")
    dist.utilization = 1.1
    _assert(derive_unit_mode(dist) == "overdrive", "above nameplate is overdrive")
    dist.utilization = 0.9
    dist.integrity = 0.4
    _assert(derive_unit_mode(dist) == "strained", "low integrity is strained")
    dist.emergency_offline = True
    sync_unit_status(s)
    _assert(derive_unit_mode(dist) == "emergency", "emergency hold has its own mode")


def main() -> None:
    tests = [
        test_strain_stays_bounded,
        test_worn_unit_trips_offline,
        test_overdrive_with_low_safety_is_critical,
        test_healthy_units_never_trip,
        test_pinned_roll_suppresses_trips,
        test_turnaround_restores_integrity,
        test_repair_recovery_range,
        test_alerts_follow_unit_state,
        test_unit_modes,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
