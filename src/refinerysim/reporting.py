from __future__ import annotations

from typing import Any, Dict, List

from refinerysim.engine import RefinerySimulation


def format_money(x: float) -> str:
    """k$ with thousands separators."""

    return f"${x:,.1f}k"


def format_pct(x: float) -> str:
    return f"{x * 100:.0f}%"


def print_header(sim: RefinerySimulation) -> None:
    m = sim.get_metrics()
    scenario = sim.get_scenario()
    state = "RUN" if sim.is_running() else "PAUSED"
    print("\n------------------------------")
    print(f"{sim.format_time()}  [{state} x{sim.get_speed_multiplier():g}]  {scenario['name']}")
    print(f"Score {m['score']:.1f} ({m['grade']})  {m['score_note']}")
    print(f"Profit/h {format_money(m['profit_per_hour'])}  cumulative {format_money(m['cumulative_profit'])}")
    print("------------------------------\n")


def print_metrics(sim: RefinerySimulation) -> None:
    m = sim.get_metrics()
    print("\n=== Plant ===")
    print(f"Crude: {m['crude_throughput']:.1f} of {m['crude_available']:.1f} kbpd available (storage throttle {format_pct(m['storage_throttle'])})")
    print(f"Gasoline {m['gasoline']:.1f}  Diesel {m['diesel']:.1f}  Jet {m['jet']:.1f}  LPG {m['lpg']:.1f} kbpd")
    print(f"Hydrogen {m['hydrogen']:.1f}  Sulfur {m['sulfur']:.1f}  Waste {m['waste']:.1f}  Flare {format_pct(m['flare_level'])}")
    print(f"Revenue/day {format_money(m['revenue_per_day'])}  Expense/day {format_money(m['expense_per_day'])}  Penalty/day {format_money(m['penalty_per_day'])}")
    print(f"Reliability {format_pct(m['reliability'])}  Carbon {m['carbon']:.1f}  Strain {m['strain']:.2f}/12")
    print(f"Market stress {m['market_stress']:.2f}  Margin x{m['margin_multiplier']:.2f}")
    print(f"Shipments on time {format_pct(m['shipment_reliability'])}  Directives {format_pct(m['directive_reliability'])}")


def print_units(sim: RefinerySimulation) -> None:
    print("\n=== Units ===")
    for u in sim.get_units():
        alert = f"  !{u['alert']}" if u["alert"] else ""
        down = f"  down {u['downtime']:.0f} min" if u["downtime"] > 0 else ""
        print(
            f"- {u['id']:<13} {u['status']:<8} {u['mode']:<10} "
            f"{u['throughput']:6.1f}/{u['capacity']:.0f} kbpd  util {format_pct(u['utilization']):>5}  "
            f"integrity {format_pct(u['integrity']):>5}{down}{alert}"
        )


def print_logistics(sim: RefinerySimulation) -> None:
    view = sim.get_logistics_state()
    storage = view["storage"]
    print("\n=== Tank farm ===")
    for product, level in storage["levels"].items():
        cap = storage["capacity"][product]
        print(f"- {product:<9} {level:7.1f} / {cap:7.1f} kb  ({format_pct(storage['ratios'][product])})")
    pressure = view["pressure"]
    if pressure["active"]:
        print(f"Storage pressure: crude throttled to {format_pct(pressure['throttle'])}")
    stats = view["stats"]
    print(f"Shipments: {stats['on_time']} on time, {stats['missed']} missed, penalties {format_money(stats['penalty_total'])}")
    pending = [s for s in view["shipments"] if s["status"] == "pending"]
    for s in pending[:8]:
        rush = " rush" if s["rush"] else ""
        print(f"  {s['id']} {s['product']:<9} {s['volume']:6.1f} kb due in {s['due_in']:5.1f} h{rush}")
    ready = {k: v for k, v in view["cooldowns"].items() if v > 0}
    if ready:
        print("Cooldowns: " + ", ".join(f"{k} {v:.1f} h" for k, v in ready.items()))


def print_directives(sim: RefinerySimulation) -> None:
    data = sim.get_directives()
    print("\n=== Directives ===")
    for d in data["directives"]:
        print(f"- [{d['status']}] {d['title']}  ({d['time_remaining']:.1f} h left, {format_pct(d['progress_ratio'])})")
    stats = data["stats"]
    print(f"Completed {stats['completed']}  Failed {stats['failed']}")


def print_alerts(sim: RefinerySimulation) -> None:
    alerts: List[Dict[str, Any]] = sim.get_active_alerts()
    print("\n=== Alerts ===")
    if not alerts:
        print("No active alerts.")
        return
    for a in alerts:
        print(f"- [{a['level']}] {a['message']}")
        if a.get("guidance"):
            print(f"    {a['guidance']}")


def print_logs(sim: RefinerySimulation, limit: int = 12) -> None:
    print("\n=== Log ===")
    for entry in sim.get_logs()[:limit]:
        print(f"{entry['timestamp']}  {entry['level']:<7} {entry['message']}")
