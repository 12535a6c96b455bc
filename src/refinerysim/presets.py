from __future__ import annotations

from typing import Dict, List, Optional, Tuple

from refinerysim.models import Params, Product, Scenario, Stream, Tank, Unit, UnitId


SCENARIOS: Dict[str, Scenario] = {
    "steady": Scenario(
        key="steady",
        name="Steady Operations",
        description="Balanced demand and average Bay Area crude quality.",
        environment_pressure=0.2,
    ),
    "summerRush": Scenario(
        key="summerRush",
        name="Summer Driving Rush",
        description="Gasoline demand surges with tourist traffic. Lighter crudes are available but the plant runs hot.",
        crude_multiplier=1.05,
        quality_shift=-0.05,
        price_modifier=1.08,
        gasoline_bias=0.24,
        diesel_bias=-0.12,
        jet_bias=-0.05,
        risk_multiplier=1.12,
        maintenance_penalty=0.05,
        environment_pressure=0.1,
    ),
    "winterDiesel": Scenario(
        key="winterDiesel",
        name="Winter Heating Demand",
        description="Heating oil and diesel spike while heavy, sour crude dominates supply.",
        crude_multiplier=0.95,
        quality_shift=0.08,
        price_modifier=1.02,
        gasoline_bias=-0.1,
        diesel_bias=0.28,
        jet_bias=-0.04,
        risk_multiplier=1.2,
        maintenance_penalty=0.12,
        environment_pressure=0.28,
    ),
    "exportPush": Scenario(
        key="exportPush",
        name="Pacific Jet Fuel Push",
        description="Airlines pre-buy jet fuel for Pacific routes. Margins improve for kerosene and hydrogen-hungry units.",
        crude_multiplier=1.0,
        quality_shift=-0.02,
        price_modifier=1.06,
        gasoline_bias=-0.04,
        diesel_bias=-0.08,
        jet_bias=0.32,
        risk_multiplier=1.15,
        maintenance_penalty=0.08,
        environment_pressure=0.18,
    ),
    "maintenanceCrunch": Scenario(
        key="maintenanceCrunch",
        name="Deferred Maintenance",
        description="Budget cuts delayed turnarounds. Equipment is fragile and utilities are strained.",
        crude_multiplier=0.9,
        quality_shift=0.05,
        price_modifier=0.97,
        diesel_bias=0.05,
        risk_multiplier=1.45,
        maintenance_penalty=0.3,
        environment_pressure=0.35,
    ),
    "quakeDrill": Scenario(
        key="quakeDrill",
        name="Earthquake Drill",
        description="A simulated quake tests emergency response. Utilities cut, shipments disrupted, and accidents spike.",
        crude_multiplier=0.82,
        quality_shift=0.12,
        price_modifier=1.11,
        gasoline_bias=-0.06,
        diesel_bias=0.12,
        risk_multiplier=1.85,
        maintenance_penalty=0.42,
        environment_pressure=0.42,
    ),
}

DEFAULT_SCENARIO = "steady"

# (id, name, capacity kbpd, category)
UNIT_CATALOG: List[Tuple[UnitId, str, float, str]] = [
    (UnitId.DISTILLATION, "Crude Distillation Unit", 180.0, "core"),
    (UnitId.REFORMER, "Naphtha Reformer", 60.0, "naphtha"),
    (UnitId.FCC, "Catalytic Cracker", 85.0, "conversion"),
    (UnitId.HYDROCRACKER, "Hydrocracker", 65.0, "conversion"),
    (UnitId.ALKYLATION, "Alkylation", 45.0, "finishing"),
    (UnitId.SULFUR, "Sulfur Recovery", 35.0, "support"),
]

# Stream feeding each conversion unit; distillation and sulfur recovery have none.
UNIT_FEED_STREAM: Dict[UnitId, Stream] = {
    UnitId.REFORMER: Stream.TO_REFORMER,
    UnitId.FCC: Stream.TO_CRACKER,
    UnitId.HYDROCRACKER: Stream.TO_HYDROCRACKER,
    UnitId.ALKYLATION: Stream.TO_ALKYLATION,
}

PIPELINE_CAPACITY: Dict[Stream, float] = {
    Stream.TO_REFORMER: 70.0,
    Stream.TO_CRACKER: 90.0,
    Stream.TO_HYDROCRACKER: 70.0,
    Stream.TO_ALKYLATION: 45.0,
    Stream.TO_EXPORT: 160.0,
}

PARAM_BOUNDS: Dict[str, Tuple[float, float]] = {
    "crude_intake": (0.0, 220.0),
    "product_focus": (0.0, 1.0),
    "maintenance": (0.0, 1.0),
    "safety": (0.0, 1.0),
    "environment": (0.0, 1.0),
}

PARAM_ALIASES: Dict[str, str] = {
    "crudeIntake": "crude_intake",
    "productFocus": "product_focus",
}

# Tank capacity in kb and downstream demand in kbpd
TANK_CAPACITY: Dict[Product, float] = {
    Product.GASOLINE: 900.0,
    Product.DIESEL: 700.0,
    Product.JET: 420.0,
}
INITIAL_FILL = 0.45
BASE_DEMAND: Dict[Product, float] = {
    Product.GASOLINE: 52.0,
    Product.DIESEL: 34.0,
    Product.JET: 14.0,
}

BASE_PRICE: Dict[Product, float] = {
    Product.GASOLINE: 96.0,
    Product.DIESEL: 88.0,
    Product.JET: 112.0,
}
LPG_PRICE = 54.0
COST_FACTOR: Dict[Product, float] = {
    Product.GASOLINE: 1.08,
    Product.DIESEL: 1.04,
    Product.JET: 1.12,
}
CRUDE_COST_PER_BBL = 53.0

OPERATING_PRESETS: Dict[str, dict] = {
    "auto": {
        "label": "AUTO",
        "params": Params(crude_intake=120.0, product_focus=0.5, maintenance=0.65, safety=0.45, environment=0.35),
        "log": "Operator returned controls to automatic balancing.",
    },
    "manual": {
        "label": "MANUAL",
        "params": Params(crude_intake=180.0, product_focus=0.68, maintenance=0.45, safety=0.36, environment=0.22),
        "log": "Manual push: throughput prioritized for gasoline blending.",
    },
    "shutdown": {
        "label": "SHUTDN",
        "params": Params(crude_intake=0.0, product_focus=0.5, maintenance=0.82, safety=0.72, environment=0.55),
        "log": "Emergency shutdown drill initiated.",
    },
}

UNIT_MODE_DEFINITIONS: List[Dict[str, str]] = [
    {"key": "optimal", "label": "Optimal", "description": "Running inside its design envelope."},
    {"key": "overdrive", "label": "Overdrive", "description": "Pushed above nameplate capacity; wear accelerates."},
    {"key": "strained", "label": "Strained", "description": "Integrity is low; trips become likely."},
    {"key": "idle", "label": "Idle", "description": "Online but receiving no feed."},
    {"key": "standby", "label": "Standby", "description": "Held out of service by the operator."},
    {"key": "emergency", "label": "Emergency Hold", "description": "Held by the emergency shutdown."},
    {"key": "offline", "label": "Offline", "description": "Tripped; crews are repairing the unit."},
    {"key": "turnaround", "label": "Turnaround", "description": "Planned overhaul in progress."},
]

PROCESS_TOPOLOGY: Dict[UnitId, dict] = {
    UnitId.DISTILLATION: {
        "summary": "Splits crude into gas, naphtha, kerosene, diesel, heavy gas oil and residue.",
        "feeds": [{"label": "Crude oil", "kind": "crude"}],
        "outputs": [
            {"label": "Naphtha", "unit": UnitId.REFORMER, "pipeline": Stream.TO_REFORMER},
            {"label": "Heavy gas oil", "unit": UnitId.FCC, "pipeline": Stream.TO_CRACKER},
            {"label": "Residue", "unit": UnitId.HYDROCRACKER, "pipeline": Stream.TO_HYDROCRACKER},
            {"label": "Finished blendstock", "kind": "export", "pipeline": Stream.TO_EXPORT},
        ],
    },
    UnitId.REFORMER: {
        "summary": "Upgrades naphtha into high-octane reformate and hydrogen.",
        "feeds": [{"label": "Naphtha", "unit": UnitId.DISTILLATION, "pipeline": Stream.TO_REFORMER}],
        "outputs": [{"label": "Reformate", "kind": "gasoline"}, {"label": "Hydrogen", "kind": "hydrogen"}],
    },
    UnitId.FCC: {
        "summary": "Cracks heavy gas oil and residue into gasoline, diesel and LPG.",
        "feeds": [{"label": "Heavy gas oil", "unit": UnitId.DISTILLATION, "pipeline": Stream.TO_CRACKER}],
        "outputs": [
            {"label": "Cat gasoline", "kind": "gasoline"},
            {"label": "Light cycle oil", "kind": "diesel"},
            {"label": "LPG", "unit": UnitId.ALKYLATION, "pipeline": Stream.TO_ALKYLATION},
        ],
    },
    UnitId.HYDROCRACKER: {
        "summary": "Hydrogen-assisted cracking of residue and diesel into gasoline, diesel and jet.",
        "feeds": [{"label": "Residue / diesel", "unit": UnitId.DISTILLATION, "pipeline": Stream.TO_HYDROCRACKER}],
        "outputs": [
            {"label": "Hydrocrackate", "kind": "gasoline"},
            {"label": "Ultra-low sulfur diesel", "kind": "diesel"},
            {"label": "Jet fuel", "kind": "jet"},
        ],
    },
    UnitId.ALKYLATION: {
        "summary": "Combines light olefins into alkylate for premium gasoline.",
        "feeds": [{"label": "LPG", "unit": UnitId.FCC, "pipeline": Stream.TO_ALKYLATION}],
        "outputs": [{"label": "Alkylate", "kind": "gasoline"}],
    },
    UnitId.SULFUR: {
        "summary": "Strips sulfur from residue streams before disposal.",
        "feeds": [{"label": "Sour residue", "unit": UnitId.DISTILLATION}],
        "outputs": [{"label": "Elemental sulfur", "kind": "sulfur"}],
    },
}


def new_units() -> Dict[UnitId, Unit]:
    return {uid: Unit(unit_id=uid, name=name, capacity=cap, category=cat) for uid, name, cap, cat in UNIT_CATALOG}


def new_tanks() -> Dict[Product, Tank]:
    return {p: Tank(capacity=cap, level=cap * INITIAL_FILL) for p, cap in TANK_CAPACITY.items()}


def get_scenario(key: str) -> Scenario:
    return SCENARIOS.get(key) or SCENARIOS[DEFAULT_SCENARIO]


def normalize_param_name(name: str) -> Optional[str]:
    key = PARAM_ALIASES.get(str(name), str(name))
    if key in PARAM_BOUNDS:
        return key
    return None
