from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class UnitId(str, Enum):
    DISTILLATION = "distillation"
    REFORMER = "reformer"
    FCC = "fcc"
    HYDROCRACKER = "hydrocracker"
    ALKYLATION = "alkylation"
    SULFUR = "sulfur"


class UnitStatus(str, Enum):
    ONLINE = "online"
    STANDBY = "standby"
    OFFLINE = "offline"


class AlertLevel(str, Enum):
    WARNING = "warning"
    DANGER = "danger"


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"


class Product(str, Enum):
    GASOLINE = "gasoline"
    DIESEL = "diesel"
    JET = "jet"


class Stream(str, Enum):
    TO_REFORMER = "to_reformer"
    TO_CRACKER = "to_cracker"
    TO_HYDROCRACKER = "to_hydrocracker"
    TO_ALKYLATION = "to_alkylation"
    TO_EXPORT = "to_export"


class ShipmentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    MISSED = "missed"


class DirectiveType(str, Enum):
    RELIABILITY = "reliability"
    DELIVERY = "delivery"
    CARBON = "carbon"


class DirectiveStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class Params:
    crude_intake: float = 120.0  # kbpd
    product_focus: float = 0.5  # 0 diesel .. 1 gasoline
    maintenance: float = 0.65
    safety: float = 0.45
    environment: float = 0.35


@dataclass(frozen=True)
class Scenario:
    key: str
    name: str
    description: str
    crude_multiplier: float = 1.0
    quality_shift: float = 0.0
    price_modifier: float = 1.0
    gasoline_bias: float = 0.0
    diesel_bias: float = 0.0
    jet_bias: float = 0.0
    risk_multiplier: float = 1.0
    maintenance_penalty: float = 0.0
    environment_pressure: float = 0.0

    def demand_bias(self, product: Product) -> float:
        if product is Product.GASOLINE:
            return self.gasoline_bias
        if product is Product.DIESEL:
            return self.diesel_bias
        return self.jet_bias


@dataclass
class IncidentDetail:
    severity: AlertLevel
    summary: str
    cause: str = ""
    guidance: str = ""
    recorded_at: str = ""


@dataclass
class Unit:
    unit_id: UnitId
    name: str
    capacity: float
    category: str

    throughput: float = 0.0
    utilization: float = 0.0
    integrity: float = 1.0
    downtime: float = 0.0  # minutes
    status: UnitStatus = UnitStatus.ONLINE
    mode: str = "optimal"
    incidents: int = 0

    alert: Optional[AlertLevel] = None
    alert_timer: float = 0.0
    alert_detail: Optional[IncidentDetail] = None

    override_throttle: float = 1.0
    manual_offline: bool = False
    emergency_offline: bool = False
    turnaround: bool = False
    inspection_ready_at: float = 0.0  # sim minutes


@dataclass
class UnitOverride:
    throttle: Optional[float] = None  # 0..1.2
    offline: Optional[bool] = None


@dataclass
class Shipment:
    shipment_id: str
    product: Product
    volume: float  # kb
    window: float  # hours
    due_in: float  # hours
    status: ShipmentStatus = ShipmentStatus.PENDING
    created_at: float = 0.0  # sim minutes
    cooldown: float = 0.0  # hours, counts down once resolved
    shortage: float = 0.0
    delivered: float = 0.0
    rush: bool = False
    delays: int = 0


@dataclass
class ShipmentStats:
    total: int = 0
    on_time: int = 0
    missed: int = 0
    delivered_volume: float = 0.0
    missed_volume: float = 0.0
    penalty_total: float = 0.0

    def reliability(self) -> float:
        if self.total <= 0:
            return 1.0
        return self.on_time / float(self.total)


@dataclass
class Tank:
    capacity: float
    level: float = 0.0

    def ratio(self) -> float:
        if self.capacity <= 0:
            return 0.0
        return self.level / self.capacity


@dataclass
class StoragePressure:
    active: bool = False
    throttle: float = 1.0  # 0.45..1
    timer: float = 0.0  # minutes


@dataclass
class ProductMarket:
    futures: float
    production_cost: float
    basis: float = 0.0
    drift: float = 0.0


@dataclass
class Directive:
    directive_id: str
    directive_type: DirectiveType
    title: str
    description: str = ""
    threshold: float = 0.0
    target: float = 0.0
    product: Optional[Product] = None
    duration: float = 0.0  # hours
    time_remaining: float = 0.0  # hours
    status: DirectiveStatus = DirectiveStatus.ACTIVE
    progress: float = 0.0
    progress_ratio: float = 0.0
    breach_hours: float = 0.0
    allowance: float = 0.0
    cooldown: float = 0.0  # hours, counts down once resolved


@dataclass
class DirectiveStats:
    completed: int = 0
    failed: int = 0

    def reliability(self) -> float:
        total = self.completed + self.failed
        if total <= 0:
            return 1.0
        return self.completed / float(total)


@dataclass
class PipelineBoost:
    multiplier: float
    expires_at: float  # sim minutes


@dataclass
class Recorder:
    active: bool = False
    elapsed_hours: float = 0.0
    production: float = 0.0
    profit: float = 0.0
    penalty: float = 0.0
    incidents: int = 0
    reliability_hours: float = 0.0
    carbon: float = 0.0
    shipments_completed: int = 0
    shipments_missed: int = 0
    last_summary: Optional[Dict[str, float]] = None

    def reset_window(self) -> None:
        self.elapsed_hours = 0.0
        self.production = 0.0
        self.profit = 0.0
        self.penalty = 0.0
        self.incidents = 0
        self.reliability_hours = 0.0
        self.carbon = 0.0
        self.shipments_completed = 0
        self.shipments_missed = 0


@dataclass
class LogEntry:
    level: LogLevel
    message: str
    timestamp: str
    meta: Dict[str, Any] = field(default_factory=dict)


@dataclass
class Flows:
    to_reformer: float = 0.0
    to_cracker: float = 0.0
    to_hydrocracker: float = 0.0
    to_alkylation: float = 0.0
    to_export: float = 0.0


@dataclass
class Metrics:
    gasoline: float = 0.0
    diesel: float = 0.0
    jet: float = 0.0
    lpg: float = 0.0
    hydrogen: float = 0.0
    sulfur: float = 0.0
    crude_available: float = 0.0
    crude_throughput: float = 0.0
    profit_per_hour: float = 0.0
    revenue_per_day: float = 0.0
    expense_per_day: float = 0.0
    penalty_per_day: float = 0.0
    margin_multiplier: float = 1.0
    cumulative_profit: float = 0.0
    reliability: float = 1.0
    carbon: float = 0.0
    waste: float = 0.0
    flare_level: float = 0.0
    incidents: int = 0
    strain: float = 0.0
    strain_factor: float = 0.0
    market_stress: float = 0.04
    storage_throttle: float = 1.0
    max_storage_ratio: float = 0.0
    shipment_reliability: float = 1.0
    directive_reliability: float = 1.0
    score: float = 0.0
    grade: str = "B"
    score_note: str = "Plant stabilizing…"
    score_delta: float = 0.0


@dataclass
class ActionResult:
    ok: bool
    message: str = ""
    data: Dict[str, Any] = field(default_factory=dict)

    def __bool__(self) -> bool:
        return bool(self.ok)


@dataclass
class RefineryState:
    """Every mutable entity of one simulation run."""

    time_minutes: float = 0.0
    accumulator: float = 0.0
    running: bool = True
    step_once: bool = False
    speed_multiplier: float = 1.0

    params: Params = field(default_factory=Params)
    scenario_key: str = "steady"

    units: Dict[UnitId, Unit] = field(default_factory=dict)
    overrides: Dict[UnitId, UnitOverride] = field(default_factory=dict)
    emergency_shutdown: bool = False
    pipeline_boosts: Dict[Stream, PipelineBoost] = field(default_factory=dict)

    strain: float = 0.0
    incident_pressure: float = 0.0

    tanks: Dict[Product, Tank] = field(default_factory=dict)
    storage_pressure: StoragePressure = field(default_factory=StoragePressure)
    storage_upgrades: int = 0
    shipments: List[Shipment] = field(default_factory=list)
    shipment_stats: ShipmentStats = field(default_factory=ShipmentStats)
    next_shipment_seq: int = 1
    last_shipment_at: Dict[Product, float] = field(default_factory=dict)

    market: Dict[Product, ProductMarket] = field(default_factory=dict)
    market_stress: float = 0.04

    directives: List[Directive] = field(default_factory=list)
    directive_stats: DirectiveStats = field(default_factory=DirectiveStats)
    next_directive_seq: int = 1

    cooldowns: Dict[str, float] = field(default_factory=dict)  # action key -> ready at (sim minutes)
    action_cost_total: float = 0.0
    recorder: Recorder = field(default_factory=Recorder)

    metrics: Metrics = field(default_factory=Metrics)
    flows: Flows = field(default_factory=Flows)
    performance_history: List[float] = field(default_factory=list)
    logs: List[LogEntry] = field(default_factory=list)
