from __future__ import annotations

from dataclasses import dataclass


@dataclass
class EngineConfig:
    tick_minutes: float = 1.0
    base_minutes_per_second: float = 35.0
    speed_min: float = 0.25
    speed_max: float = 4.0

    log_limit: int = 80
    history_limit: int = 240

    shipment_horizon_hours: float = 48.0
    shipment_cooldown_hours: float = 2.0
    max_pending_per_product: int = 6
    stale_shipment_hours: float = 10.0

    directive_slots: int = 3
    directive_cooldown_hours: float = 1.5

    pipeline_boost_multiplier: float = 1.25
    pipeline_boost_hours: float = 6.0
    max_utilization: float = 1.5

    storage_pressure_engage: float = 0.95
    storage_pressure_release: float = 0.86
    storage_pressure_timer_minutes: float = 90.0
    storage_pressure_floor: float = 0.45

    rng_seed: int = 19920101

    def tick_hours(self) -> float:
        return float(self.tick_minutes) / 60.0
