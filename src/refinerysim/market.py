"""Futures, production cost and market stress, plus the per-tick profit roll-up.

Prices are $/bbl; product rates are kbpd, so rate * price is k$ per day.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

from refinerysim.logistics import ShipmentReport, StorageReport, demand_rate
from refinerysim.models import Params, Product, ProductMarket, RefineryState, Scenario
from refinerysim.presets import BASE_PRICE, COST_FACTOR, CRUDE_COST_PER_BBL, LPG_PRICE

DRIFT_SMOOTHING = 0.28
COST_SMOOTHING = 0.35
FUTURES_SMOOTHING = 0.25
STRESS_SMOOTHING = 0.05
STRESS_MIN = 0.04
STRESS_MAX = 0.65
STRAIN_COST_PER_DAY = 420.0

# Scenario demand bias feeds straight into the quoted price.
PRICE_BIAS_WEIGHT: Dict[Product, float] = {
    Product.GASOLINE: 0.3,
    Product.DIESEL: 0.25,
    Product.JET: 0.35,
}


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(x)))


@dataclass
class MarketDrivers:
    reliability: float = 1.0
    shipment_reliability: float = 1.0
    directive_reliability: float = 1.0
    downtime_share: float = 0.0
    strain_factor: float = 0.0


@dataclass
class EconomyReport:
    revenue_per_day: float = 0.0
    expense_per_day: float = 0.0
    penalty_per_day: float = 0.0
    profit_per_day: float = 0.0
    profit_per_hour: float = 0.0
    one_off_penalty: float = 0.0  # k$ booked once this tick
    carrying_cost: float = 0.0
    strain_cost: float = 0.0
    breakdown: Dict[str, float] = field(default_factory=dict)


def feed_cost(scenario: Scenario) -> float:
    return CRUDE_COST_PER_BBL * (1.0 + scenario.quality_shift * 0.8)


def base_futures(product: Product, scenario: Scenario) -> float:
    return BASE_PRICE[product] * scenario.price_modifier * (1.0 + scenario.demand_bias(product) * PRICE_BIAS_WEIGHT[product])


def lpg_price(scenario: Scenario) -> float:
    return LPG_PRICE * scenario.price_modifier * (1.0 + scenario.gasoline_bias * 0.1)


def initial_market(scenario: Scenario) -> Dict[Product, ProductMarket]:
    feed = feed_cost(scenario)
    out: Dict[Product, ProductMarket] = {}
    for product in Product:
        futures = max(feed * 1.05, base_futures(product, scenario))
        cost = max(feed, feed * COST_FACTOR[product])
        out[product] = ProductMarket(futures=futures, production_cost=cost, basis=futures - cost, drift=0.0)
    return out


def margin_multiplier(stress: float) -> float:
    return _clamp(1.0 - stress * 0.7, 0.55, 1.05)


def _mix_bias(product: Product, params: Params) -> float:
    # Leaning the slate toward a product softens its own price.
    lean = _clamp(params.product_focus, 0.0, 1.0) - 0.5
    if product is Product.GASOLINE:
        return -lean * 0.08
    if product is Product.DIESEL:
        return lean * 0.08
    return 0.0


def update_prices(
    state: RefineryState,
    scenario: Scenario,
    production: Dict[Product, float],
    drivers: MarketDrivers,
) -> None:
    feed = feed_cost(scenario)
    drag = (
        (1.0 - _clamp(drivers.reliability, 0.0, 1.0)) * 0.5
        + (1.0 - _clamp(drivers.shipment_reliability, 0.0, 1.0)) * 0.3
        + _clamp(drivers.downtime_share, 0.0, 1.0) * 0.4
        + (1.0 - _clamp(drivers.directive_reliability, 0.0, 1.0)) * 0.2
    )

    for product in Product:
        market = state.market.get(product)
        if market is None:
            market = initial_market(scenario)[product]
            state.market[product] = market

        demand = demand_rate(product, scenario)
        supply = max(0.0, float(production.get(product, 0.0)))
        gap = _clamp((demand - supply) / max(demand, 1.0), -1.0, 1.0)
        tank = state.tanks.get(product)
        inventory = (tank.ratio() - 0.5) if tank is not None else 0.0

        target_drift = gap * 0.25 - inventory * 0.18 + drag * 0.12 + _mix_bias(product, state.params)
        market.drift += (target_drift - market.drift) * DRIFT_SMOOTHING
        market.drift = _clamp(market.drift, -0.5, 0.5)

        target_cost = max(feed, feed * COST_FACTOR[product] * (1.0 + drag * 0.3 + drivers.strain_factor * 0.1))
        target_futures = max(feed * 1.05, base_futures(product, scenario) * (1.0 + market.drift))

        market.production_cost += (target_cost - market.production_cost) * COST_SMOOTHING
        market.futures += (target_futures - market.futures) * FUTURES_SMOOTHING
        market.production_cost = max(feed, market.production_cost)
        market.futures = max(feed * 1.05, market.futures)
        market.basis = market.futures - market.production_cost


def stress_target(
    state: RefineryState,
    storage: StorageReport,
    drivers: MarketDrivers,
) -> float:
    demand = sum(storage.demand.values())
    shortage_ratio = storage.total_shortage() / demand if demand > 0 else 0.0
    target = (
        STRESS_MIN
        + (1.0 - state.storage_pressure.throttle) * 0.5
        + max(0.0, 0.85 - drivers.reliability) * 0.6
        + (1.0 - drivers.shipment_reliability) * 0.25
        + (1.0 - drivers.directive_reliability) * 0.15
        + min(0.15, shortage_ratio * 0.5)
        + min(0.2, state.incident_pressure * 0.04)
    )
    return _clamp(target, STRESS_MIN, STRESS_MAX)


def update_stress(state: RefineryState, storage: StorageReport, drivers: MarketDrivers) -> float:
    target = stress_target(state, storage, drivers)
    stress = state.market_stress + (target - state.market_stress) * STRESS_SMOOTHING
    state.market_stress = _clamp(stress, STRESS_MIN, STRESS_MAX)
    return state.market_stress


def carrying_cost(state: RefineryState) -> float:
    """Inventory holding cost per day; superlinear once a tank is past 55% full."""

    total = 0.0
    for tank in state.tanks.values():
        over = max(0.0, tank.ratio() - 0.55)
        total += tank.level * 0.02 * (1.0 + 6.0 * over * over)
    return total


def operating_expense(params: Params, scenario: Scenario, unit_count: int) -> Dict[str, float]:
    m = _clamp(params.maintenance, 0.0, 1.0)
    s = _clamp(params.safety, 0.0, 1.0)
    e = _clamp(params.environment, 0.0, 1.0)
    return {
        "maintenance": 2.2 * unit_count * (0.5 + m * 1.4 + scenario.maintenance_penalty),
        "safety": 1.1 * s * unit_count,
        "environment": 1.6 * e * (1.0 + scenario.environment_pressure),
    }


def compute_economy(
    state: RefineryState,
    scenario: Scenario,
    production: Dict[Product, float],
    lpg: float,
    crude_throughput: float,
    incident_penalty: float,
    strain_factor: float,
    storage: StorageReport,
    shipments: ShipmentReport,
) -> EconomyReport:
    multiplier = margin_multiplier(state.market_stress)
    revenue = sum(
        max(0.0, float(production.get(p, 0.0))) * state.market[p].futures * multiplier for p in Product
    )
    revenue += max(0.0, lpg) * lpg_price(scenario)

    crude_expense = max(0.0, crude_throughput) * feed_cost(scenario)
    opex = operating_expense(state.params, scenario, len(state.units))
    expenses = crude_expense + sum(opex.values())

    strain_cost = _clamp(strain_factor, 0.0, 1.0) * STRAIN_COST_PER_DAY
    carry = carrying_cost(state)
    penalty = incident_penalty + strain_cost + carry

    report = EconomyReport(
        revenue_per_day=revenue,
        expense_per_day=expenses,
        penalty_per_day=penalty,
        one_off_penalty=shipments.penalty + storage.shortage_penalty,
        carrying_cost=carry,
        strain_cost=strain_cost,
    )
    report.profit_per_day = revenue - expenses - penalty
    report.profit_per_hour = report.profit_per_day / 24.0
    report.breakdown = {
        "revenue": revenue,
        "crude": crude_expense,
        "maintenance": opex["maintenance"],
        "safety": opex["safety"],
        "environment": opex["environment"],
        "incidents": incident_penalty,
        "strain": strain_cost,
        "carrying": carry,
        "shipments": shipments.penalty,
        "shortage": storage.shortage_penalty,
    }
    return report


def market_view(state: RefineryState, scenario: Scenario) -> dict:
    products = {}
    for product, market in state.market.items():
        products[product.value] = {
            "futures": market.futures,
            "production_cost": market.production_cost,
            "basis": market.basis,
            "drift": market.drift,
        }
    return {
        "products": products,
        "lpg_price": lpg_price(scenario),
        "feed_cost": feed_cost(scenario),
        "stress": state.market_stress,
        "margin_multiplier": margin_multiplier(state.market_stress),
    }
