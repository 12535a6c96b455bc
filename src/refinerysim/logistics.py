"""Tank farm, dock shipments and the operator logistics actions.

Volumes are kb, rates kbpd, shipment clocks in hours. Action cooldowns live in
``state.cooldowns`` as the sim minute at which the action is available again.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from refinerysim.config import EngineConfig
from refinerysim.models import (
    ActionResult,
    LogLevel,
    Product,
    RefineryState,
    Scenario,
    Shipment,
    ShipmentStatus,
)
from refinerysim.presets import BASE_DEMAND

LogFn = Callable[..., None]

SHORTAGE_PENALTY_RATE = 0.35
MISSED_SHIPMENT_PENALTY_RATE = 0.6
MIN_PLANNER_TANK_RATIO = 0.12
MIN_PLANNER_OVERALL_RATIO = 0.10

CONVOY_COOLDOWN_HOURS = 6.0
CONVOY_COST = 45.0
CONVOY_SHARE = 0.35
CONVOY_MAX_VOLUME = 60.0
CONVOY_MIN_VOLUME = 15.0

DELAY_COOLDOWN_HOURS = 2.0
DELAY_DEFAULT_HOURS = 4.0
DELAY_MAX_PER_SHIPMENT = 2
DELAY_COST_PER_KB = 0.8

CHARTER_COOLDOWN_HOURS = 8.0
CHARTER_COST = 25.0
CHARTER_MIN_RATIO = 0.55
CHARTER_SHARE = 0.3
CHARTER_DUE_HOURS = 3.0

EXPANSION_COOLDOWN_HOURS = 24.0
EXPANSION_STEP = 0.15
EXPANSION_MAX_UPGRADES = 3
EXPANSION_COST = 600.0


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(x)))


@dataclass
class StorageReport:
    produced: Dict[Product, float] = field(default_factory=dict)
    overflow: Dict[Product, float] = field(default_factory=dict)
    demand: Dict[Product, float] = field(default_factory=dict)
    shortage: Dict[Product, float] = field(default_factory=dict)
    shortage_penalty: float = 0.0  # k$ this tick

    def total_shortage(self) -> float:
        return sum(self.shortage.values())


@dataclass
class ShipmentReport:
    delivered: Dict[Product, float] = field(default_factory=dict)
    completed: int = 0
    missed: int = 0
    penalty: float = 0.0  # k$ this tick


def demand_rate(product: Product, scenario: Scenario) -> float:
    """Downstream offtake in kbpd."""

    return BASE_DEMAND[product] * max(0.2, 1.0 + scenario.demand_bias(product))


def max_storage_ratio(state: RefineryState) -> float:
    if not state.tanks:
        return 0.0
    return max(t.ratio() for t in state.tanks.values())


def overall_storage_ratio(state: RefineryState) -> float:
    cap = sum(t.capacity for t in state.tanks.values())
    if cap <= 0:
        return 0.0
    return sum(t.level for t in state.tanks.values()) / cap


def fullest_product(state: RefineryState) -> Optional[Product]:
    best: Optional[Product] = None
    best_ratio = -1.0
    for product, tank in state.tanks.items():
        if tank.ratio() > best_ratio:
            best = product
            best_ratio = tank.ratio()
    return best


def _spot_price(state: RefineryState, product: Product) -> float:
    market = state.market.get(product)
    return float(market.futures) if market is not None else 0.0


def update_storage(
    state: RefineryState,
    production: Dict[Product, float],
    scenario: Scenario,
    hours: float,
) -> StorageReport:
    """Fill tanks with this tick's output, then draw downstream demand."""

    report = StorageReport()
    for product, tank in state.tanks.items():
        made = max(0.0, float(production.get(product, 0.0))) * hours / 24.0
        report.produced[product] = made
        level = tank.level + made
        report.overflow[product] = max(0.0, level - tank.capacity)
        tank.level = _clamp(level, 0.0, tank.capacity)

        draw = demand_rate(product, scenario) * hours / 24.0
        taken = min(tank.level, draw)
        tank.level = _clamp(tank.level - taken, 0.0, tank.capacity)
        short = max(0.0, draw - taken)
        report.demand[product] = draw
        report.shortage[product] = short
        report.shortage_penalty += short * _spot_price(state, product) * SHORTAGE_PENALTY_RATE
    return report


def update_storage_pressure(state: RefineryState, minutes: float, cfg: EngineConfig, log: LogFn) -> float:
    """Hysteretic crude throttle driven by the fullest tank. Returns the new throttle."""

    sp = state.storage_pressure
    ratio = max_storage_ratio(state)

    if ratio >= cfg.storage_pressure_engage:
        target = _clamp(1.0 - (ratio - 0.9) * 5.5, cfg.storage_pressure_floor, 1.0)
        if not sp.active:
            log(
                LogLevel.WARNING,
                f"Tank farm at {round(ratio * 100)}% capacity. Crude intake throttled to {round(target * 100)}%.",
                ratio=round(ratio, 4),
            )
        sp.active = True
        sp.timer = float(cfg.storage_pressure_timer_minutes)
        sp.throttle = min(sp.throttle, target)
    elif sp.active:
        sp.timer = max(0.0, sp.timer - float(minutes))
        if sp.timer <= 0 and ratio < cfg.storage_pressure_release:
            sp.throttle = min(1.0, sp.throttle + 0.05)
            if sp.throttle >= 1.0:
                sp.active = False
                sp.throttle = 1.0
                log(LogLevel.INFO, "Storage pressure relieved. Crude intake restored.")

    sp.throttle = _clamp(sp.throttle, cfg.storage_pressure_floor, 1.0)
    return sp.throttle


def _resolve_shipment(state: RefineryState, shipment: Shipment, cfg: EngineConfig, report: ShipmentReport, log: LogFn) -> None:
    tank = state.tanks[shipment.product]
    stats = state.shipment_stats
    stats.total += 1
    shipment.cooldown = float(cfg.shipment_cooldown_hours)
    shipment.due_in = 0.0

    if tank.level + 1e-9 >= shipment.volume:
        tank.level = _clamp(tank.level - shipment.volume, 0.0, tank.capacity)
        shipment.status = ShipmentStatus.COMPLETED
        shipment.delivered = shipment.volume
        stats.on_time += 1
        stats.delivered_volume += shipment.volume
        report.completed += 1
        report.delivered[shipment.product] = report.delivered.get(shipment.product, 0.0) + shipment.volume
        log(
            LogLevel.INFO,
            f"Shipment {shipment.shipment_id} departed with {shipment.volume:.1f} kb of {shipment.product.value}.",
            shipment_id=shipment.shipment_id,
        )
        return

    delivered = tank.level
    short = shipment.volume - delivered
    tank.level = 0.0
    penalty = short * _spot_price(state, shipment.product) * MISSED_SHIPMENT_PENALTY_RATE
    shipment.status = ShipmentStatus.MISSED
    shipment.delivered = delivered
    shipment.shortage = short
    stats.missed += 1
    stats.delivered_volume += delivered
    stats.missed_volume += short
    stats.penalty_total += penalty
    report.missed += 1
    report.penalty += penalty
    if delivered > 0:
        report.delivered[shipment.product] = report.delivered.get(shipment.product, 0.0) + delivered
    log(
        LogLevel.WARNING,
        f"Shipment {shipment.shipment_id} missed: {short:.1f} kb of {shipment.product.value} short. Penalty ${penalty:.0f}k.",
        shipment_id=shipment.shipment_id,
    )


def advance_shipments(state: RefineryState, hours: float, cfg: EngineConfig, log: LogFn) -> ShipmentReport:
    report = ShipmentReport()
    kept: List[Shipment] = []
    for shipment in state.shipments:
        if shipment.status is not ShipmentStatus.PENDING:
            shipment.cooldown = max(0.0, shipment.cooldown - hours)
            if shipment.cooldown > 0:
                kept.append(shipment)
            continue
        shipment.due_in = max(0.0, shipment.due_in - hours)
        if shipment.due_in <= 1e-6:
            _resolve_shipment(state, shipment, cfg, report, log)
        kept.append(shipment)
    state.shipments = kept
    return report


def _next_shipment_id(state: RefineryState) -> str:
    sid = f"SHP-{state.next_shipment_seq:04d}"
    state.next_shipment_seq += 1
    return sid


def pending_shipments(state: RefineryState, product: Optional[Product] = None) -> List[Shipment]:
    return [
        s
        for s in state.shipments
        if s.status is ShipmentStatus.PENDING and (product is None or s.product is product)
    ]


def ensure_scheduled_shipments(
    state: RefineryState,
    scenario: Scenario,
    cfg: EngineConfig,
    rng,
    log: LogFn,
) -> int:
    """Keep the rolling horizon of pending shipments populated. Returns how many were created."""

    created = 0
    overall = overall_storage_ratio(state)
    now_hours = state.time_minutes / 60.0

    for product, tank in state.tanks.items():
        rate = demand_rate(product, scenario) / 24.0  # kb per hour
        if rate <= 0:
            continue
        queue = pending_shipments(state, product)
        last_at = state.last_shipment_at.get(product)
        stale = last_at is None or (now_hours - last_at / 60.0) >= cfg.stale_shipment_hours

        horizon = max((s.due_in for s in queue), default=0.0)
        while len(queue) < cfg.max_pending_per_product and horizon < cfg.shipment_horizon_hours:
            too_empty = tank.ratio() < MIN_PLANNER_TANK_RATIO or overall < MIN_PLANNER_OVERALL_RATIO
            if too_empty and not stale:
                break
            volume = rate * 10.0 * rng.shipment_volume_jitter()
            interval = volume / rate * 1.4 * rng.shipment_interval_jitter()
            window = rng.shipment_window()
            due = horizon + interval
            shipment = Shipment(
                shipment_id=_next_shipment_id(state),
                product=product,
                volume=volume,
                window=window,
                due_in=due,
                created_at=state.time_minutes,
            )
            state.shipments.append(shipment)
            queue.append(shipment)
            state.last_shipment_at[product] = state.time_minutes
            horizon = due
            stale = False
            created += 1
    return created


def _cooldown_remaining(state: RefineryState, key: str) -> float:
    """Hours left on an action cooldown."""

    ready_at = state.cooldowns.get(key, 0.0)
    return max(0.0, (ready_at - state.time_minutes) / 60.0)


def _start_cooldown(state: RefineryState, key: str, hours: float) -> None:
    state.cooldowns[key] = state.time_minutes + hours * 60.0


def prune_cooldowns(state: RefineryState) -> None:
    for key in [k for k, ready in state.cooldowns.items() if ready <= state.time_minutes]:
        del state.cooldowns[key]


def _refuse(log: LogFn, message: str, **data) -> ActionResult:
    log(LogLevel.INFO, message)
    return ActionResult(ok=False, message=message, data=data)


def _charge(state: RefineryState, cost: float) -> None:
    state.action_cost_total += cost
    state.metrics.cumulative_profit -= cost


def dispatch_convoy(state: RefineryState, cfg: EngineConfig, log: LogFn) -> ActionResult:
    """Truck a slug of the fullest product out of the tank farm."""

    wait = _cooldown_remaining(state, "convoy")
    if wait > 0:
        return _refuse(log, f"Convoy crews are still on the road ({wait:.1f} h until available).", cooldown=wait)
    product = fullest_product(state)
    if product is None:
        return _refuse(log, "No tank is eligible for a rush convoy.")
    tank = state.tanks[product]
    volume = min(tank.level * CONVOY_SHARE, CONVOY_MAX_VOLUME)
    if volume < CONVOY_MIN_VOLUME:
        return _refuse(log, "Not enough inventory on hand to justify a rush convoy.", available=tank.level)

    tank.level = _clamp(tank.level - volume, 0.0, tank.capacity)
    shipment = Shipment(
        shipment_id=_next_shipment_id(state),
        product=product,
        volume=volume,
        window=0.0,
        due_in=0.0,
        status=ShipmentStatus.COMPLETED,
        created_at=state.time_minutes,
        cooldown=float(cfg.shipment_cooldown_hours),
        delivered=volume,
        rush=True,
    )
    state.shipments.append(shipment)
    stats = state.shipment_stats
    stats.total += 1
    stats.on_time += 1
    stats.delivered_volume += volume

    sp = state.storage_pressure
    sp.timer = 0.0
    if sp.active:
        sp.throttle = min(1.0, sp.throttle + 0.15)

    _charge(state, CONVOY_COST)
    _start_cooldown(state, "convoy", CONVOY_COOLDOWN_HOURS)
    message = f"Rush convoy hauled {volume:.1f} kb of {product.value} off site."
    log(LogLevel.INFO, message, shipment_id=shipment.shipment_id)
    return ActionResult(
        ok=True,
        message=message,
        data={"product": product.value, "volume": volume, "cost": CONVOY_COST, "shipment_id": shipment.shipment_id},
    )


def delay_next_shipment(
    state: RefineryState,
    log: LogFn,
    hours: float = DELAY_DEFAULT_HOURS,
    product: Optional[Product] = None,
) -> ActionResult:
    wait = _cooldown_remaining(state, "delay")
    if wait > 0:
        return _refuse(log, f"Dispatch is still renegotiating the last slot ({wait:.1f} h).", cooldown=wait)
    candidates = [s for s in pending_shipments(state, product) if s.delays < DELAY_MAX_PER_SHIPMENT]
    if not candidates:
        return _refuse(log, "No pending shipment can be delayed.")
    shipment = min(candidates, key=lambda s: s.due_in)
    extra = _clamp(hours, 0.5, 12.0)
    shipment.due_in += extra
    shipment.delays += 1
    cost = shipment.volume * DELAY_COST_PER_KB
    _charge(state, cost)
    _start_cooldown(state, "delay", DELAY_COOLDOWN_HOURS)
    message = f"Shipment {shipment.shipment_id} pushed back {extra:.1f} h. Demurrage ${cost:.0f}k."
    log(LogLevel.INFO, message, shipment_id=shipment.shipment_id)
    return ActionResult(
        ok=True,
        message=message,
        data={"shipment_id": shipment.shipment_id, "due_in": shipment.due_in, "cost": cost},
    )


def request_extra_shipment(state: RefineryState, cfg: EngineConfig, log: LogFn) -> ActionResult:
    """Charter an extra vessel for the fullest product."""

    wait = _cooldown_remaining(state, "charter")
    if wait > 0:
        return _refuse(log, f"No charter vessels available for {wait:.1f} h.", cooldown=wait)
    product = fullest_product(state)
    if product is None or state.tanks[product].ratio() < CHARTER_MIN_RATIO:
        return _refuse(log, "Tanks are not full enough to fill a chartered vessel.")
    tank = state.tanks[product]
    volume = tank.level * CHARTER_SHARE
    shipment = Shipment(
        shipment_id=_next_shipment_id(state),
        product=product,
        volume=volume,
        window=CHARTER_DUE_HOURS,
        due_in=CHARTER_DUE_HOURS,
        created_at=state.time_minutes,
        rush=True,
    )
    state.shipments.append(shipment)
    state.last_shipment_at[product] = state.time_minutes
    _charge(state, CHARTER_COST)
    _start_cooldown(state, "charter", CHARTER_COOLDOWN_HOURS)
    message = f"Chartered vessel booked for {volume:.1f} kb of {product.value}, loading in {CHARTER_DUE_HOURS:.0f} h."
    log(LogLevel.INFO, message, shipment_id=shipment.shipment_id)
    return ActionResult(
        ok=True,
        message=message,
        data={"shipment_id": shipment.shipment_id, "product": product.value, "volume": volume, "cost": CHARTER_COST},
    )


def expand_storage_capacity(state: RefineryState, log: LogFn) -> ActionResult:
    if state.storage_upgrades >= EXPANSION_MAX_UPGRADES:
        return _refuse(log, "Tank farm is already at its permitted footprint.")
    wait = _cooldown_remaining(state, "expand")
    if wait > 0:
        return _refuse(log, f"Construction crews are busy for another {wait:.1f} h.", cooldown=wait)
    for tank in state.tanks.values():
        tank.capacity = max(tank.level, tank.capacity * (1.0 + EXPANSION_STEP))
    state.storage_upgrades += 1
    _charge(state, EXPANSION_COST)
    _start_cooldown(state, "expand", EXPANSION_COOLDOWN_HOURS)
    message = f"Tank farm expanded by {round(EXPANSION_STEP * 100)}% (upgrade {state.storage_upgrades}/{EXPANSION_MAX_UPGRADES})."
    log(LogLevel.INFO, message)
    return ActionResult(
        ok=True,
        message=message,
        data={"upgrades": state.storage_upgrades, "cost": EXPANSION_COST},
    )


def shipment_to_dict(s: Shipment) -> dict:
    return {
        "id": s.shipment_id,
        "product": s.product.value,
        "volume": s.volume,
        "window": s.window,
        "due_in": s.due_in,
        "status": s.status.value,
        "created_at": s.created_at,
        "cooldown": s.cooldown,
        "shortage": s.shortage,
        "delivered": s.delivered,
        "rush": s.rush,
        "delays": s.delays,
    }


def logistics_view(state: RefineryState) -> dict:
    stats = state.shipment_stats
    sp = state.storage_pressure
    return {
        "storage": {
            "capacity": {p.value: t.capacity for p, t in state.tanks.items()},
            "levels": {p.value: t.level for p, t in state.tanks.items()},
            "ratios": {p.value: t.ratio() for p, t in state.tanks.items()},
            "upgrades": state.storage_upgrades,
            "max_upgrades": EXPANSION_MAX_UPGRADES,
        },
        "pressure": {"active": sp.active, "throttle": sp.throttle, "timer": sp.timer},
        "shipments": [shipment_to_dict(s) for s in sorted(state.shipments, key=lambda s: (s.status is not ShipmentStatus.PENDING, s.due_in))],
        "stats": {
            "total": stats.total,
            "on_time": stats.on_time,
            "missed": stats.missed,
            "delivered_volume": stats.delivered_volume,
            "missed_volume": stats.missed_volume,
            "penalty_total": stats.penalty_total,
            "reliability": stats.reliability(),
        },
        "cooldowns": {key: _cooldown_remaining(state, key) for key in ("convoy", "delay", "charter", "expand")},
    }
