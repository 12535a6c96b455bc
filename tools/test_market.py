from __future__ import annotations

from refinerysim.logistics import ShipmentReport, StorageReport
from refinerysim.market import (
    STRESS_MAX,
    STRESS_MIN,
    MarketDrivers,
    compute_economy,
    feed_cost,
    initial_market,
    lpg_price,
    margin_multiplier,
    update_prices,
    update_stress,
)
from refinerysim.models import Product, RefineryState
from refinerysim.presets import SCENARIOS, get_scenario, new_tanks, new_units


def _make_state(scenario_key: str = "steady") -> RefineryState:
    s = RefineryState(scenario_key=scenario_key)
    s.units = new_units()
    s.tanks = new_tanks()
    s.market = initial_market(get_scenario(scenario_key))
    return s


def _assert(cond: bool, msg: str) -> None:
    if not cond:
        raise AssertionError(msg)


def test_initial_market_floors() -> None:
    for scenario in SCENARIOS.values():
        market = initial_market(scenario)
        feed = feed_cost(scenario)
        for product, m in market.items():
            _assert(m.futures >= feed * 1.05 - 1e-9, f"{product.value} futures below feed floor in {scenario.key}")
            _assert(m.production_cost >= feed - 1e-9, f"{product.value} cost below feed in {scenario.key}")
            _assert(abs(m.basis - (m.futures - m.production_cost)) < 1e-9, "basis is futures minus cost")


def test_scenario_bias_moves_prices() -> None:
    steady = initial_market(get_scenario("steady"))
    jet_push = initial_market(get_scenario("exportPush"))
    _assert(jet_push[Product.JET].futures > steady[Product.JET].futures, "jet push should lift jet futures")
    _assert(lpg_price(get_scenario("summerRush")) > lpg_price(get_scenario("steady")), "summer rush lifts lpg")


def test_margin_multiplier_bounds() -> None:
    _assert(margin_multiplier(0.0) == 1.0, "no stress means full margin")
    _assert(margin_multiplier(STRESS_MAX) >= 0.55, "margin multiplier has a floor")
    _assert(margin_multiplier(0.3) < margin_multiplier(0.1), "stress erodes margin")


def test_shortfall_lifts_drift() -> None:
    scenario = get_scenario("steady")
    short = _make_state()
    for _ in range(50):
        update_prices(short, scenario, {p: 0.0 for p in Product}, MarketDrivers())
    glut = _make_state()
    for _ in range(50):
        update_prices(glut, scenario, {p: 1000.0 for p in Product}, MarketDrivers())
    for product in Product:
        _assert(short.market[product].drift > 0, f"{product.value} drift should rise when supply is short")
        _assert(glut.market[product].drift < 0, f"{product.value} drift should fall when supply floods")
        _assert(short.market[product].futures > glut.market[product].futures, "short market quotes higher")
        _assert(-0.5 <= short.market[product].drift <= 0.5, "drift is clamped")


def test_stress_bounded() -> None:
    s = _make_state()
    storage = StorageReport(demand={p: 1.0 for p in Product}, shortage={p: 1.0 for p in Product})
    bad = MarketDrivers(reliability=0.0, shipment_reliability=0.0, directive_reliability=0.0, downtime_share=1.0, strain_factor=1.0)
    s.storage_pressure.throttle = 0.45
    s.incident_pressure = 50.0
    for _ in range(2000):
        stress = update_stress(s, storage, bad)
        _assert(STRESS_MIN <= stress <= STRESS_MAX, "stress must stay in range")
    _assert(stress > 0.6, "sustained trouble should push stress toward its ceiling")

    calm = _make_state()
    for _ in range(2000):
        stress = update_stress(calm, StorageReport(), MarketDrivers())
    _assert(abs(stress - STRESS_MIN) < 1e-6, "a calm plant settles at the stress floor")


def test_economy_rollup() -> None:
    s = _make_state()
    scenario = get_scenario("steady")
    production = {Product.GASOLINE: 50.0, Product.DIESEL: 30.0, Product.JET: 12.0}
    ships = ShipmentReport(penalty=12.5)
    storage = StorageReport(shortage_penalty=2.5)
    report = compute_economy(s, scenario, production, 5.0, 100.0, 140.0, 0.5, storage, ships)
    _assert(report.revenue_per_day > report.expense_per_day, "a healthy slate earns more than it spends")
    _assert(abs(report.profit_per_day - (report.revenue_per_day - report.expense_per_day - report.penalty_per_day)) < 1e-9, "profit is revenue less cost")
    _assert(abs(report.profit_per_hour * 24.0 - report.profit_per_day) < 1e-9, "hourly profit is a 24th of daily")
    _assert(report.one_off_penalty == 15.0, "shipment and shortage penalties are booked once")
    _assert(report.strain_cost == 210.0, "strain cost scales with strain factor")
    _assert(report.breakdown["crude"] == 100.0 * feed_cost(scenario), "crude cost is throughput times feed price")


def main() -> None:
    tests = [
        test_initial_market_floors,
        test_scenario_bias_moves_prices,
        test_margin_multiplier_bounds,
        test_shortfall_lifts_drift,
        test_stress_bounded,
        test_economy_rollup,
    ]
    for t in tests:
        t()
        print(f"OK  {t.__name__}")
    print(f"ALL OK ({len(tests)} tests)")


if __name__ == "__main__":
    main()
