from __future__ import annotations

from typing import Callable, Dict, List, Optional

from refinerysim.config import EngineConfig
from refinerysim.models import (
    Directive,
    DirectiveStatus,
    DirectiveType,
    LogLevel,
    Product,
    RefineryState,
)

LogFn = Callable[..., None]

RELIABILITY_HOURS = 8.0
DELIVERY_HOURS = 12.0
CARBON_HOURS = 10.0
CARBON_ALLOWANCE_HOURS = 1.5


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(x)))


def _next_directive_id(state: RefineryState) -> str:
    did = f"DIR-{state.next_directive_seq:04d}"
    state.next_directive_seq += 1
    return did


def _make_reliability(state: RefineryState, did: str) -> Directive:
    threshold = _clamp(state.metrics.reliability - 0.08, 0.55, 0.9)
    return Directive(
        directive_id=did,
        directive_type=DirectiveType.RELIABILITY,
        title=f"Hold reliability above {round(threshold * 100)}%",
        description="Corporate wants a clean shift. Keep average unit integrity above the line until the clock runs out.",
        threshold=threshold,
        duration=RELIABILITY_HOURS,
        time_remaining=RELIABILITY_HOURS,
    )


def _make_delivery(state: RefineryState, did: str, rng) -> Directive:
    product: Product = rng.directive_pick(list(Product))
    target = 40.0 + rng.directive_roll() * 50.0
    return Directive(
        directive_id=did,
        directive_type=DirectiveType.DELIVERY,
        title=f"Deliver {target:.0f} kb of {product.value}",
        description="A key customer needs product on the water. Only product that actually leaves the dock counts.",
        target=target,
        product=product,
        duration=DELIVERY_HOURS,
        time_remaining=DELIVERY_HOURS,
    )


def _make_carbon(state: RefineryState, did: str) -> Directive:
    threshold = max(40.0, state.metrics.carbon * 1.05)
    return Directive(
        directive_id=did,
        directive_type=DirectiveType.CARBON,
        title=f"Keep carbon intensity under {threshold:.0f}",
        description="Regulators are watching the stack. Short excursions are tolerated, sustained ones are not.",
        threshold=threshold,
        allowance=CARBON_ALLOWANCE_HOURS,
        duration=CARBON_HOURS,
        time_remaining=CARBON_HOURS,
    )


def create_directive(state: RefineryState, rng, directive_type: Optional[DirectiveType] = None) -> Directive:
    if directive_type is None:
        active = {d.directive_type for d in state.directives}
        options = [t for t in DirectiveType if t not in active] or list(DirectiveType)
        directive_type = rng.directive_pick(options)
    did = _next_directive_id(state)
    if directive_type is DirectiveType.RELIABILITY:
        directive = _make_reliability(state, did)
    elif directive_type is DirectiveType.DELIVERY:
        directive = _make_delivery(state, did, rng)
    else:
        directive = _make_carbon(state, did)
    state.directives.append(directive)
    return directive


def fill_directive_slots(state: RefineryState, cfg: EngineConfig, rng, log: Optional[LogFn] = None) -> int:
    created = 0
    while len(state.directives) < cfg.directive_slots:
        directive = create_directive(state, rng)
        created += 1
        if log is not None:
            log(LogLevel.INFO, f"New directive: {directive.title}.", directive_id=directive.directive_id)
    return created


def _resolve(state: RefineryState, directive: Directive, status: DirectiveStatus, cfg: EngineConfig, log: LogFn) -> None:
    directive.status = status
    directive.cooldown = float(cfg.directive_cooldown_hours)
    if status is DirectiveStatus.COMPLETED:
        directive.progress_ratio = 1.0
        state.directive_stats.completed += 1
        log(LogLevel.INFO, f"Directive complete: {directive.title}.", directive_id=directive.directive_id)
    else:
        state.directive_stats.failed += 1
        log(LogLevel.WARNING, f"Directive failed: {directive.title}.", directive_id=directive.directive_id)


def credit_delivery(state: RefineryState, delivered: Dict[Product, float]) -> None:
    for directive in state.directives:
        if directive.status is not DirectiveStatus.ACTIVE or directive.directive_type is not DirectiveType.DELIVERY:
            continue
        if directive.product is None:
            continue
        directive.progress += max(0.0, float(delivered.get(directive.product, 0.0)))
        if directive.target > 0:
            directive.progress_ratio = _clamp(directive.progress / directive.target, 0.0, 1.0)


def update_directives(
    state: RefineryState,
    hours: float,
    reliability: float,
    carbon: float,
    delivered: Dict[Product, float],
    cfg: EngineConfig,
    rng,
    log: LogFn,
) -> None:
    """Evaluate every active directive, age out resolved ones and refill the slots."""

    credit_delivery(state, delivered)

    kept: List[Directive] = []
    for directive in state.directives:
        if directive.status is not DirectiveStatus.ACTIVE:
            directive.cooldown = max(0.0, directive.cooldown - hours)
            if directive.cooldown > 0:
                kept.append(directive)
            continue

        directive.time_remaining = max(0.0, directive.time_remaining - hours)
        elapsed = directive.duration - directive.time_remaining
        expired = directive.time_remaining <= 1e-9

        if directive.directive_type is DirectiveType.RELIABILITY:
            directive.progress = elapsed
            directive.progress_ratio = _clamp(elapsed / directive.duration, 0.0, 1.0) if directive.duration > 0 else 1.0
            if reliability < directive.threshold:
                _resolve(state, directive, DirectiveStatus.FAILED, cfg, log)
            elif expired:
                _resolve(state, directive, DirectiveStatus.COMPLETED, cfg, log)
        elif directive.directive_type is DirectiveType.DELIVERY:
            if directive.progress >= directive.target:
                _resolve(state, directive, DirectiveStatus.COMPLETED, cfg, log)
            elif expired:
                _resolve(state, directive, DirectiveStatus.FAILED, cfg, log)
        elif directive.directive_type is DirectiveType.CARBON:
            if carbon > directive.threshold:
                directive.breach_hours += hours
            else:
                directive.breach_hours = max(0.0, directive.breach_hours - hours * 0.5)
            directive.progress = elapsed
            directive.progress_ratio = _clamp(elapsed / directive.duration, 0.0, 1.0) if directive.duration > 0 else 1.0
            if directive.breach_hours > directive.allowance:
                _resolve(state, directive, DirectiveStatus.FAILED, cfg, log)
            elif expired:
                _resolve(state, directive, DirectiveStatus.COMPLETED, cfg, log)
        kept.append(directive)

    state.directives = kept
    fill_directive_slots(state, cfg, rng, log)


def directive_to_dict(d: Directive) -> dict:
    return {
        "id": d.directive_id,
        "type": d.directive_type.value,
        "title": d.title,
        "description": d.description,
        "threshold": d.threshold,
        "target": d.target,
        "product": d.product.value if d.product is not None else None,
        "duration": d.duration,
        "time_remaining": d.time_remaining,
        "status": d.status.value,
        "progress": d.progress,
        "progress_ratio": d.progress_ratio,
        "breach_hours": d.breach_hours,
        "allowance": d.allowance,
        "cooldown": d.cooldown,
    }
