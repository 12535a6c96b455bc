from __future__ import annotations

from refinerysim.engine import RefinerySimulation, format_sim_time
from refinerysim.models import Product, Shipment, UnitId, UnitStatus
from refinerysim.randomness import RandomSource


class _NeverTrip(RandomSource):
    def incident_roll(self) -> float:
        return 1.0


def _quiet_sim(**kwargs) -> RefinerySimulation:
    return RefinerySimulation(rng=_NeverTrip(20240601), **kwargs)


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def _check_invariants(sim: RefinerySimulation) -> None:
    s = sim.state
    cfg = sim.cfg
    for product, tank in s.tanks.items():
        _assert(-1e-9 <= tank.level <= tank.capacity + 1e-9, f"{product.value} tank out of bounds")
    for uid, u in s.units.items():
        _assert(0.0 <= u.integrity <= 1.0, f"{uid.value} integrity out of range")
        _assert(0.0 <= u.utilization <= cfg.max_utilization, f"{uid.value} utilization out of range")
        _assert(u.downtime >= 0.0, f"{uid.value} negative downtime")
        _assert((u.downtime > 0) == (u.status is UnitStatus.OFFLINE), f"{uid.value} offline iff under repair")
    _assert(0.0 <= s.strain <= 12.0, "strain out of range")
    _assert(0.04 <= s.market_stress <= 0.65, "market stress out of range")
    _assert(cfg.storage_pressure_floor <= s.storage_pressure.throttle <= 1.0, "storage throttle out of range")
    _assert(len(s.logs) <= cfg.log_limit, "log is bounded")
    _assert(len(s.performance_history) <= cfg.history_limit, "history is bounded")
    _assert(len(s.directives) <= cfg.directive_slots, "directive slots are bounded")
    m = s.metrics
    _assert(m.gasoline + m.diesel + m.jet <= m.crude_throughput * 1.02 + 1e-6, "liquids exceed crude")
    _assert(0.0 <= m.score <= 100.0, "score out of range")


def test_fresh_plant() -> None:
    sim = RefinerySimulation()
    _assert(sim.get_time() == 0.0 and sim.format_time() == "Day 1, 00:00", "clock starts at day 1")
    _assert(len(sim.get_units()) == 6, "six process units")
    _assert(len(sim.get_directives()["directives"]) == 3, "directive board starts full")
    _assert(any(s["status"] == "pending" for s in sim.get_logistics_state()["shipments"]), "shipments are scheduled at reset")
    m = sim.get_metrics()
    _assert(m["crude_throughput"] > 0 and m["gasoline"] > 0, "metrics are previewed before the first tick")
    _assert(sim.get_logs()[0]["message"].startswith("Simulation reset"), "reset is logged")
    _assert(m["score"] >= 50.0 and m["grade"] != "F", "fresh plant is scored before the first tick")
    _assert(sim.get_performance_history() == [], "preview score is not added to history")


def test_time_formatting() -> None:
    _assert(format_sim_time(0) == "Day 1, 00:00", "midnight of day one")
    _assert(format_sim_time(1500) == "Day 2, 01:00", "1500 minutes is day two 01:00")
    _assert(format_sim_time(-5) == "Day 1, 00:00", "negative time clamps")


def test_wall_clock_scheduler() -> None:
    sim = _quiet_sim()
    _assert(sim.update(1.0) == 35, "one second at 1x runs 35 ticks")
    _assert(sim.get_time() == 35.0, "each tick is one minute")
    sim.set_speed_multiplier(2.0)
    _assert(sim.update(0.5) == 35, "speed scales the accumulator")
    _assert(sim.update(float("nan")) == 0 and sim.update(-1.0) == 0, "bad deltas run nothing")

    sim.toggle_running()
    _assert(sim.update(10.0) == 0, "paused engine does not tick")
    sim.request_step()
    _assert(sim.update(0.0) == 1, "step runs exactly one tick")
    _assert(not sim.is_running() and sim.update(10.0) == 0, "step leaves the engine paused")


def test_speed_clamped() -> None:
    sim = _quiet_sim()
    _assert(sim.set_speed_multiplier(100) == 4.0, "speed has a ceiling")
    _assert(sim.set_speed_multiplier(0.01) == 0.25, "speed has a floor")
    _assert(sim.set_speed_multiplier("fast") == 0.25, "non-numeric speed is ignored")
    _assert(sim.adjust_speed_multiplier(0.5) == 0.75, "speed can be nudged")


def test_invariants_over_long_run() -> None:
    sim = RefinerySimulation()
    sim.apply_scenario("maintenanceCrunch")
    sim.apply_operating_preset("manual")
    for _ in range(24):
        sim.advance(60)
        _check_invariants(sim)


def test_deterministic_with_seed() -> None:
    a = RefinerySimulation()
    b = RefinerySimulation()
    a.advance(600)
    b.advance(600)
    _assert(a.create_snapshot() == b.create_snapshot(), "same seed and inputs give the same run")


def test_emergency_shutdown() -> None:
    sim = _quiet_sim()
    sim.trigger_emergency_shutdown()
    _assert(all(u["status"] == "standby" and u["mode"] == "emergency" for u in sim.get_units()), "every unit is held")
    sim.advance(5)
    m = sim.get_metrics()
    _assert(m["crude_throughput"] == 0.0 and m["gasoline"] == 0.0, "held plant makes nothing")
    sim.release_emergency_shutdown()
    sim.advance(1)
    _assert(all(u["status"] == "online" for u in sim.get_units()), "release restarts every unit")
    _assert(sim.get_metrics()["crude_throughput"] > 0.0, "crude flows again")


def test_shutdown_preset_holds_plant() -> None:
    sim = _quiet_sim()
    sim.apply_operating_preset("shutdown")
    _assert(sim.state.emergency_shutdown, "shutdown preset triggers the hold")
    _assert(sim.get_params()["crude_intake"] == 0.0, "shutdown preset cuts crude")
    sim.apply_operating_preset("auto")
    _assert(not sim.state.emergency_shutdown, "auto releases the hold")
    _assert(not sim.apply_operating_preset("turbo").ok, "unknown preset is refused")


def test_storage_pressure_throttles_next_tick() -> None:
    sim = _quiet_sim()
    gas = sim.state.tanks[Product.GASOLINE]
    gas.level = gas.capacity * 0.98
    sim.advance(1)
    _assert(sim.state.storage_pressure.active, "full tank engages storage pressure")
    first = sim.get_metrics()["crude_available"]
    sim.advance(1)
    second = sim.get_metrics()["crude_available"]
    _assert(second < first, "crude offered to the plant drops on the following tick")
    _assert(sim.get_metrics()["storage_throttle"] < 1.0, "metrics report the throttle")
    _assert(any(a["source"] == "storage" for a in sim.get_active_alerts()), "full tank raises an alert")


def test_missed_shipment_books_penalty() -> None:
    sim = _quiet_sim()
    sim.state.shipments.append(
        Shipment(shipment_id="SHP-9999", product=Product.JET, volume=5000.0, window=8.0, due_in=0.5 / 60.0)
    )
    alerts = sim.get_active_alerts()
    _assert(any(a["source"] == "shipment" and a["id"] == "SHP-9999" for a in alerts), "short shipment is flagged before it is due")
    before = sim.state.shipment_stats.missed
    sim.advance(1)
    _assert(sim.state.shipment_stats.missed == before + 1, "shipment should be missed")
    _assert(sim.state.shipment_stats.penalty_total > 0, "miss is penalized")
    _assert(sim.get_metrics()["shipment_reliability"] < 1.0, "reliability reflects the miss")
    _assert(any("SHP-9999" in e["message"] for e in sim.get_logs()), "miss is logged")


def test_unit_overrides() -> None:
    sim = _quiet_sim()
    _assert(sim.set_unit_throttle("fcc", 2.0).data["throttle"] == 1.2, "throttle is clamped")
    _assert(sim.get_unit_override("fcc") == {"throttle": 1.2, "offline": None}, "override is readable")
    sim.set_unit_offline(UnitId.FCC, True)
    _assert(sim.state.units[UnitId.FCC].status is UnitStatus.STANDBY, "operator standby")
    sim.advance(2)
    _assert(sim.get_flows()["to_cracker"] == 0.0, "standby cracker takes no feed")
    sim.set_unit_offline("fcc", False)
    _assert(sim.get_unit_override("fcc") == {"throttle": 1.2, "offline": None}, "release keeps the throttle")
    sim.clear_unit_override("fcc")
    _assert(sim.get_unit_override("fcc") is None, "clear drops the override")
    _assert(not sim.set_unit_throttle("coker", 0.5).ok, "unknown unit is refused")


def test_turnaround_cycle() -> None:
    sim = _quiet_sim()
    result = sim.schedule_turnaround("hydrocracker")
    _assert(result.ok, "turnaround should start")
    _assert(not sim.schedule_turnaround("hydrocracker").ok, "unit already down")
    unit = next(u for u in sim.get_units() if u["id"] == "hydrocracker")
    _assert(unit["status"] == "offline" and unit["mode"] == "turnaround", "unit shows its turnaround")
    sim.advance(240)
    unit = next(u for u in sim.get_units() if u["id"] == "hydrocracker")
    _assert(unit["status"] == "online", "unit returns after four hours")
    _assert(unit["integrity"] > 0.95, "turnaround restores integrity")


def test_inspection_and_bypass_cooldowns() -> None:
    sim = _quiet_sim()
    sim.state.units[UnitId.SULFUR].integrity = 0.4
    first = sim.perform_inspection("sulfur")
    _assert(first.ok and abs(first.data["integrity"] - 0.45) < 1e-9, "inspection adds integrity")
    _assert(not sim.perform_inspection("sulfur").ok, "inspection has a cooldown")
    sim.advance(120)
    _assert(sim.perform_inspection("sulfur").ok, "inspection is available again")

    _assert(not sim.deploy_pipeline_bypass("distillation").ok, "distillation has no feed line")
    _assert(sim.deploy_pipeline_bypass("reformer").ok, "reformer bypass opens")
    _assert(not sim.deploy_pipeline_bypass("reformer").ok, "bypass cannot stack")
    sim.advance(6 * 60)
    _assert(not sim.state.pipeline_boosts, "bypass expires")


def test_params_and_scenarios() -> None:
    sim = _quiet_sim()
    _assert(sim.set_param("crudeIntake", 500).data["value"] == 220.0, "alias accepted and clamped")
    _assert(not sim.set_param("octane", 1).ok, "unknown control is refused")
    _assert(not sim.set_param("safety", "lots").ok, "non-numeric value is refused")
    _assert(sim.apply_scenario("winterDiesel").ok, "known scenario applies")
    _assert(sim.get_scenario()["key"] == "winterDiesel", "scenario is active")
    _assert(not sim.apply_scenario("volcano").ok, "unknown scenario is refused")
    listed = [s for s in sim.get_scenario_list() if s["active"]]
    _assert(len(listed) == 1 and listed[0]["key"] == "winterDiesel", "scenario list marks the active one")


def test_logistics_actions_charge_profit() -> None:
    sim = _quiet_sim()
    before = sim.get_metrics()["cumulative_profit"]
    _assert(sim.dispatch_logistics_convoy().ok, "convoy dispatches")
    _assert(sim.expand_storage_capacity().ok, "storage expands")
    _assert(sim.get_metrics()["cumulative_profit"] < before, "actions cost money")
    _assert(not sim.delay_next_shipment(product="kerosene").ok, "unknown product is refused")
    _assert(sim.delay_next_shipment(hours=2).ok, "pending shipment is delayed")


def test_recording_summary() -> None:
    sim = _quiet_sim()
    _assert(sim.toggle_performance_recording().data["active"], "recording starts")
    sim.advance(120)
    current = sim.get_recording_summary()["current"]
    _assert(abs(current["elapsed_hours"] - 2.0) < 1e-6, "recorder tracks elapsed time")
    result = sim.toggle_performance_recording()
    summary = result.data["summary"]
    _assert(summary["production"] > 0 and summary["avg_reliability"] > 0, "summary aggregates the window")
    _assert(sim.get_recording_summary()["last"] == summary, "last summary is kept")


def test_reads_are_copies() -> None:
    sim = _quiet_sim()
    units = sim.get_units()
    units[0]["integrity"] = -5.0
    _assert(sim.get_units()[0]["integrity"] == 1.0, "unit dicts do not alias the engine")
    history = sim.get_performance_history()
    history.append(999.0)
    _assert(999.0 not in sim.get_performance_history(), "history is copied")
    topo = sim.get_process_topology()
    _assert(topo["fcc"]["outputs"][2]["pipeline"] == "to_alkylation", "topology exports plain values")
    _assert(len(sim.get_unit_mode_definitions()) == 8, "all unit modes are described")


def test_reset_keeps_operator_params() -> None:
    sim = _quiet_sim()
    sim.set_param("crude_intake", 60)
    sim.set_param("product_focus", 0.8)
    sim.advance(30)
    sim.reset()
    _assert(sim.get_time() == 0.0, "reset rewinds the clock")
    params = sim.get_params()
    _assert(params["crude_intake"] == 60.0 and params["product_focus"] == 0.8, "reset keeps the operator's settings")
    _assert(sim.get_metrics()["crude_throughput"] <= 60.0 + 1e-9, "preview runs at the kept intake")


def test_partial_release_survives_snapshot() -> None:
    a = _quiet_sim()
    a.trigger_emergency_shutdown()
    a.set_unit_offline("fcc", False)
    a.advance(2)
    fcc = a.state.units[UnitId.FCC]
    _assert(fcc.status is UnitStatus.ONLINE and not fcc.emergency_offline, "released unit runs during the hold")

    b = RefinerySimulation(rng=_NeverTrip(1))
    b.load_snapshot(a.create_snapshot())
    _assert(b.get_units() == a.get_units(), "units match after reload")
    _assert(b.get_metrics() == a.get_metrics(), "metrics match after reload")
    _assert(b.get_logistics_state() == a.get_logistics_state(), "logistics match after reload")

    a.advance(1)
    b.advance(1)
    _assert(b.state.units[UnitId.FCC].status is UnitStatus.ONLINE, "released unit stays online after reload")
    _assert(b.get_units() == a.get_units(), "next tick matches")


def test_shipment_resolves_after_its_due_time() -> None:
    for due in (0.5, 1.0, 3.0, 7.3):
        sim = _quiet_sim()
        shipment = Shipment(shipment_id="SHP-9000", product=Product.GASOLINE, volume=1.0, window=12.0, due_in=due)
        sim.state.shipments.append(shipment)
        ticks = int(round(due * 60))
        sim.advance(ticks - 1)
        _assert(shipment.status.value == "pending", f"{due} h shipment still pending a tick early")
        sim.advance(1)
        _assert(shipment.status.value != "pending", f"{due} h shipment resolved on time")


def main() -> None:
    tests = [
        test_fresh_plant,
        test_time_formatting,
        test_wall_clock_scheduler,
        test_speed_clamped,
        test_invariants_over_long_run,
        test_deterministic_with_seed,
        test_emergency_shutdown,
        test_shutdown_preset_holds_plant,
        test_storage_pressure_throttles_next_tick,
        test_missed_shipment_books_penalty,
        test_unit_overrides,
        test_turnaround_cycle,
        test_inspection_and_bypass_cooldowns,
        test_params_and_scenarios,
        test_logistics_actions_charge_profit,
        test_recording_summary,
        test_reads_are_copies,
        test_reset_keeps_operator_params,
        test_partial_release_survives_snapshot,
        test_shipment_resolves_after_its_due_time,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
