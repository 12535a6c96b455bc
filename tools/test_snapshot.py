from __future__ import annotations

import json

from refinerysim.config import EngineConfig
from refinerysim.engine import RefinerySimulation
from refinerysim.models import Product, UnitId, UnitStatus
from refinerysim.randomness import RandomSource
from refinerysim.snapshot import SNAPSHOT_VERSION, SnapshotError, create_snapshot, load_snapshot


class _NeverTrip(RandomSource):
    def incident_roll(self) -> float:
        return 1.0


def _busy_sim() -> RefinerySimulation:
    sim = RefinerySimulation(rng=_NeverTrip(20240601))
    sim.set_param("crude_intake", 150)
    sim.set_unit_throttle("fcc", 0.8)
    sim.deploy_pipeline_bypass("reformer")
    sim.schedule_turnaround("alkylation")
    sim.dispatch_logistics_convoy()
    sim.toggle_performance_recording()
    sim.advance(180)
    return sim


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def test_round_trip_is_exact() -> None:
    sim = _busy_sim()
    snap = sim.create_snapshot()
    _assert(snap["version"] == SNAPSHOT_VERSION, "snapshot carries its version")
    restored = load_snapshot(snap, sim.cfg)
    again = create_snapshot(restored, snap["rng_state"])
    _assert(again == snap, "restoring a snapshot and capturing it again should be lossless")


def test_snapshot_survives_json() -> None:
    sim = _busy_sim()
    snap = sim.create_snapshot()
    text = json.dumps(snap)
    restored = load_snapshot(json.loads(text), sim.cfg)
    _assert(restored.time_minutes == sim.get_time(), "time survives")
    _assert(restored.units[UnitId.ALKYLATION].turnaround, "turnaround survives")
    _assert(restored.overrides[UnitId.FCC].throttle == 0.8, "unit override survives")
    _assert(restored.recorder.active, "recorder state survives")


def test_snapshot_is_detached() -> None:
    sim = _busy_sim()
    snap = sim.create_snapshot()
    snap["metrics"]["score"] = -1.0
    snap["storage"]["tanks"]["gasoline"]["level"] = 0.0
    _assert(sim.get_metrics()["score"] >= 0.0, "editing a snapshot must not touch the engine")
    _assert(sim.state.tanks[Product.GASOLINE].level > 0.0, "tanks are copied, not shared")


def test_continuation_is_deterministic() -> None:
    a = _busy_sim()
    snap = a.create_snapshot()
    b = RefinerySimulation(rng=_NeverTrip(1))
    b.load_snapshot(snap)
    a.advance(240)
    b.advance(240)
    sa = a.create_snapshot()
    sb = b.create_snapshot()
    sa.pop("logs")
    sb.pop("logs")
    _assert(sa == sb, "a restored run should continue exactly like the uninterrupted run")


def test_non_mapping_rejected() -> None:
    for bad in (None, [], "state", 42):
        try:
            load_snapshot(bad)
        except SnapshotError:
            continue
        raise AssertionError(f"{bad!r} should be rejected")

    sim = RefinerySimulation()
    before = sim.create_snapshot()
    try:
        sim.load_snapshot(["not", "a", "snapshot"])
    except SnapshotError:
        pass
    else:
        raise AssertionError("engine should refuse a non-mapping snapshot")
    _assert(sim.create_snapshot() == before, "a rejected load leaves the run untouched")


def test_malformed_fields_fall_back() -> None:
    cfg = EngineConfig()
    state = load_snapshot(
        {
            "time_minutes": "abc",
            "speed_multiplier": 99,
            "scenario": "mars",
            "params": {"crude_intake": 9999, "safety": "high"},
            "units": {"fcc": {"downtime": 30, "status": "online"}, "reformer": {"status": "offline"}, "bogus": {}},
            "storage": {"tanks": {"jet": {"capacity": 1.0, "level": 5000}}},
            "shipments": [{"id": "SHP-0001", "product": "kerosene"}, "junk", {"id": "SHP-0002", "product": "diesel", "volume": 20}],
            "directives": [{"id": "DIR-0001", "type": "carbon", "duration": 10, "time_remaining": 50}],
            "performance_history": [50, "x", 400],
            "market_stress": float("nan"),
        },
        cfg,
    )
    _assert(state.time_minutes == 0.0, "bad time falls back to zero")
    _assert(state.speed_multiplier == cfg.speed_max, "speed is clamped")
    _assert(state.scenario_key == "steady", "unknown scenario falls back")
    _assert(state.params.crude_intake == 220.0, "params are clamped to bounds")
    _assert(state.params.safety == 0.45, "non-numeric params use defaults")
    _assert(state.units[UnitId.FCC].status is UnitStatus.OFFLINE, "downtime forces offline")
    _assert(state.units[UnitId.REFORMER].status is UnitStatus.ONLINE, "offline without downtime comes back online")
    _assert(state.tanks[Product.JET].capacity == 420.0, "tank capacity never shrinks below nameplate")
    _assert(state.tanks[Product.JET].level == 420.0, "tank level is clamped to capacity")
    _assert([s.shipment_id for s in state.shipments] == ["SHP-0002"], "invalid shipments are dropped")
    _assert(state.directives[0].time_remaining == 10.0, "directive time cannot exceed its duration")
    _assert(state.performance_history == [50.0, 0.0, 100.0], "history entries are coerced into range")
    _assert(state.market_stress == 0.04, "non-finite stress falls back")
    _assert(state.accumulator == 0.0 and not state.step_once, "scheduler state is reset")


def main() -> None:
    tests = [
        test_round_trip_is_exact,
        test_snapshot_survives_json,
        test_snapshot_is_detached,
        test_continuation_is_deterministic,
        test_non_mapping_rejected,
        test_malformed_fields_fall_back,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
