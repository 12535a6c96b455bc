from __future__ import annotations

from typing import Optional

from refinerysim.engine import RefinerySimulation
from refinerysim.presets import OPERATING_PRESETS, PARAM_BOUNDS
from refinerysim.reporting import (
    print_alerts,
    print_directives,
    print_header,
    print_logistics,
    print_logs,
    print_metrics,
    print_units,
)
from refinerysim.storage import list_snapshots, load_state, save_named_snapshot, save_state, snapshot_path, state_path


def _input_float(prompt: str, default: Optional[float] = None) -> Optional[float]:
    s = input(prompt).strip()
    if not s:
        return default
    try:
        return float(s)
    except ValueError:
        print("Invalid input: enter a number.")
        return None


def _pick_unit_id(sim: RefinerySimulation) -> Optional[str]:
    print("Units:")
    for u in sim.get_units():
        print(f"- {u['id']}: {u['name']} ({u['status']})")
    return input("Unit id: ").strip() or None


def _report(result) -> None:
    print(("OK: " if result.ok else "Skipped: ") + result.message)


def _cmd_advance(sim: RefinerySimulation) -> None:
    hours = _input_float("Advance how many hours? [1]: ", 1.0)
    if hours is None or hours <= 0:
        return
    ticks = sim.advance(hours * 60.0)
    print(f"Ran {ticks} ticks.")
    print_metrics(sim)


def _cmd_params(sim: RefinerySimulation) -> None:
    params = sim.get_params()
    for name, (lo, hi) in PARAM_BOUNDS.items():
        v = _input_float(f"{name} [{lo:g}-{hi:g}] (now {params[name]:g}): ", params[name])
        if v is not None and v != params[name]:
            _report(sim.set_param(name, v))


def _cmd_scenario(sim: RefinerySimulation) -> None:
    for s in sim.get_scenario_list():
        mark = "*" if s["active"] else " "
        print(f"{mark} {s['key']}: {s['name']}")
    key = input("Scenario key: ").strip()
    if key:
        _report(sim.apply_scenario(key))


def _cmd_preset(sim: RefinerySimulation) -> None:
    print("Presets: " + ", ".join(OPERATING_PRESETS.keys()))
    name = input("Preset: ").strip()
    if name:
        _report(sim.apply_operating_preset(name))


def _cmd_units(sim: RefinerySimulation) -> None:
    print_units(sim)
    print("1) Throttle  2) Standby  3) Release  4) Clear override  5) Bypass  6) Turnaround  7) Inspect")
    print("8) Emergency shutdown  9) Release shutdown")
    sub = input("Choice: ").strip()
    if sub == "8":
        _report(sim.trigger_emergency_shutdown())
        return
    if sub == "9":
        _report(sim.release_emergency_shutdown())
        return
    if sub not in {"1", "2", "3", "4", "5", "6", "7"}:
        return
    uid = _pick_unit_id(sim)
    if not uid:
        return
    if sub == "1":
        v = _input_float("Throttle 0-1.2: ")
        if v is not None:
            _report(sim.set_unit_throttle(uid, v))
    elif sub == "2":
        _report(sim.set_unit_offline(uid, True))
    elif sub == "3":
        _report(sim.set_unit_offline(uid, False))
    elif sub == "4":
        _report(sim.clear_unit_override(uid))
    elif sub == "5":
        _report(sim.deploy_pipeline_bypass(uid))
    elif sub == "6":
        _report(sim.schedule_turnaround(uid))
    elif sub == "7":
        _report(sim.perform_inspection(uid))


def _cmd_logistics(sim: RefinerySimulation) -> None:
    print_logistics(sim)
    print("1) Rush convoy  2) Delay next shipment  3) Charter vessel  4) Expand storage")
    sub = input("Choice: ").strip()
    if sub == "1":
        _report(sim.dispatch_logistics_convoy())
    elif sub == "2":
        hours = _input_float("Delay by hours [4]: ", 4.0)
        _report(sim.delay_next_shipment(hours=hours if hours is not None else 4.0))
    elif sub == "3":
        _report(sim.request_extra_shipment())
    elif sub == "4":
        _report(sim.expand_storage_capacity())


def _cmd_reports(sim: RefinerySimulation) -> None:
    print("1) Plant  2) Units  3) Logistics  4) Directives  5) Alerts  6) Log  7) Recording")
    sub = input("Choice: ").strip()
    if sub == "1":
        print_metrics(sim)
    elif sub == "2":
        print_units(sim)
    elif sub == "3":
        print_logistics(sim)
    elif sub == "4":
        print_directives(sim)
    elif sub == "5":
        print_alerts(sim)
    elif sub == "6":
        print_logs(sim)
    elif sub == "7":
        result = sim.toggle_performance_recording()
        _report(result)
        summary = result.data.get("summary")
        if summary:
            for k, v in summary.items():
                print(f"  {k}: {v:.2f}")


def _cmd_snapshots(sim: RefinerySimulation) -> RefinerySimulation:
    names = list_snapshots()
    print("Saved snapshots: " + (", ".join(names) if names else "(none)"))
    print("1) Save snapshot  2) Load snapshot")
    sub = input("Choice: ").strip()
    if sub == "1":
        name = input("Name: ").strip()
        if name:
            print(f"Saved to {save_named_snapshot(sim, name)}")
    elif sub == "2":
        name = input("Name: ").strip()
        if name in names:
            return load_state(snapshot_path(name), cfg=sim.cfg)
        print("No such snapshot.")
    return sim


def _autosave(sim: RefinerySimulation) -> None:
    try:
        save_state(sim)
    except OSError as e:
        print(f"Save failed: {e}")


def main() -> int:
    sim = load_state(state_path())

    print("Refinery operations simulator (CLI)")
    print("Run crude through six units, keep the docks supplied, and hold the score up.\n")

    while True:
        print_header(sim)
        print("1) Advance time")
        print("2) Set operating parameters")
        print("3) Change scenario")
        print("4) Operating preset")
        print("5) Unit actions")
        print("6) Logistics actions")
        print("7) Reports")
        print("8) Snapshots")
        print("9) Reset plant")
        print("0) Quit")

        try:
            choice = input("Choice: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nBye.")
            return 0

        if choice == "1":
            _cmd_advance(sim)
            _autosave(sim)
        elif choice == "2":
            _cmd_params(sim)
            _autosave(sim)
        elif choice == "3":
            _cmd_scenario(sim)
            _autosave(sim)
        elif choice == "4":
            _cmd_preset(sim)
            _autosave(sim)
        elif choice == "5":
            _cmd_units(sim)
            _autosave(sim)
        elif choice == "6":
            _cmd_logistics(sim)
            _autosave(sim)
        elif choice == "7":
            _cmd_reports(sim)
        elif choice == "8":
            sim = _cmd_snapshots(sim)
            _autosave(sim)
        elif choice == "9":
            sim.reset()
            _autosave(sim)
        elif choice == "0":
            _autosave(sim)
            print("Bye.")
            return 0
        else:
            print("Invalid choice: enter 0-9.")
