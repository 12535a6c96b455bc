"""Per-tick material balance through the six process units.

Rates are in kbpd. A unit that is not online has zero ceiling; whatever it
would have consumed either blends through unconverted or is booked as waste.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Optional

from refinerysim.config import EngineConfig
from refinerysim.models import Flows, RefineryState, Scenario, Stream, Unit, UnitId, UnitStatus
from refinerysim.presets import PIPELINE_CAPACITY, UNIT_FEED_STREAM


LIQUID_CAP_RATIO = 1.02
LPG_CAP_RATIO = 0.12


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(x)))


@dataclass
class FractionShares:
    gas: float
    naphtha: float
    kerosene: float
    diesel: float
    heavy: float
    resid: float

    def total(self) -> float:
        return self.gas + self.naphtha + self.kerosene + self.diesel + self.heavy + self.resid


@dataclass
class FlowResult:
    crude_available: float = 0.0
    crude_throughput: float = 0.0
    gasoline: float = 0.0
    diesel: float = 0.0
    jet: float = 0.0
    lpg: float = 0.0
    hydrogen: float = 0.0
    sulfur: float = 0.0
    waste: float = 0.0
    flare: float = 0.0
    flows: Flows = field(default_factory=Flows)

    def liquids(self) -> float:
        return self.gasoline + self.diesel + self.jet


def fraction_shares(product_focus: float, scenario: Scenario) -> FractionShares:
    focus = _clamp(product_focus, 0.0, 1.0)
    centered = focus - 0.5

    gas = _clamp(0.05 + centered * 0.05, 0.02, 0.12)
    naphtha = _clamp(0.32 + centered * 0.22, 0.22, 0.5)
    kerosene = 0.11 + scenario.jet_bias * 0.05
    diesel = _clamp(0.28 - centered * 0.16 + scenario.diesel_bias * 0.06, 0.18, 0.38)
    heavy = _clamp(0.19 - centered * 0.08, 0.12, 0.28)
    resid = max(0.06, 1.0 - (gas + naphtha + kerosene + diesel + heavy))

    shift = scenario.quality_shift
    if shift != 0:
        heavy_adjust = 1.0 + shift
        naphtha *= 1.0 - 0.35 * shift
        diesel *= 1.0 - 0.18 * shift
        heavy *= heavy_adjust
        resid *= heavy_adjust * 1.2

    shares = FractionShares(gas, naphtha, kerosene, diesel, heavy, resid)
    total = shares.total()
    return FractionShares(
        gas=gas / total,
        naphtha=naphtha / total,
        kerosene=kerosene / total,
        diesel=diesel / total,
        heavy=heavy / total,
        resid=resid / total,
    )


def stream_multiplier(state: RefineryState, stream: Optional[Stream]) -> float:
    if stream is None:
        return 1.0
    boost = state.pipeline_boosts.get(stream)
    if boost is None:
        return 1.0
    return max(1.0, float(boost.multiplier))


def unit_ceiling(state: RefineryState, unit_id: UnitId) -> float:
    """Feed ceiling for a unit: capacity and pipeline are independent limits."""

    unit = state.units[unit_id]
    if unit.status is not UnitStatus.ONLINE:
        return 0.0
    throttle = _clamp(unit.override_throttle, 0.0, 1.2)
    stream = UNIT_FEED_STREAM.get(unit_id)
    mult = stream_multiplier(state, stream)
    ceiling = unit.capacity * throttle * mult
    if stream is not None:
        ceiling = min(ceiling, PIPELINE_CAPACITY[stream] * mult)
    return max(0.0, ceiling)


def _load_unit(unit: Unit, feed: float, cfg: EngineConfig) -> None:
    unit.throughput = max(0.0, float(feed))
    if unit.capacity > 0:
        unit.utilization = _clamp(unit.throughput / unit.capacity, 0.0, cfg.max_utilization)
    else:
        unit.utilization = 0.0


def strain_yield_penalty(strain_factor: float) -> float:
    factor = _clamp(strain_factor, 0.0, 1.0)
    if factor <= 0.35:
        return 0.0
    return min(0.22, (factor - 0.35) * 0.4)


def run_process_flow(
    state: RefineryState,
    scenario: Scenario,
    crude_available: float,
    cfg: EngineConfig,
) -> FlowResult:
    params = state.params
    units = state.units
    res = FlowResult(crude_available=max(0.0, float(crude_available)))

    # 1) Distillation
    distillation = units[UnitId.DISTILLATION]
    crude = min(res.crude_available, unit_ceiling(state, UnitId.DISTILLATION))
    _load_unit(distillation, crude, cfg)
    res.crude_throughput = crude

    # 2) Fraction pools
    shares = fraction_shares(params.product_focus, scenario)
    dist_gas = crude * shares.gas
    naphtha = crude * shares.naphtha
    kerosene = crude * shares.kerosene
    diesel = crude * shares.diesel
    heavy = crude * shares.heavy
    resid = crude * shares.resid

    res.waste = crude * 0.01

    # 3) Reformer
    reform_feed = min(naphtha, unit_ceiling(state, UnitId.REFORMER))
    naphtha -= reform_feed
    _load_unit(units[UnitId.REFORMER], reform_feed, cfg)
    res.gasoline += reform_feed * 0.92
    res.hydrogen += reform_feed * 0.05
    res.waste += reform_feed * 0.03

    # 4) Catalytic cracker
    fcc_feed = min(heavy + resid * 0.6, unit_ceiling(state, UnitId.FCC))
    heavy_used = min(heavy, fcc_feed * 0.7)
    heavy -= heavy_used
    resid_used = min(resid, fcc_feed - heavy_used)
    resid -= resid_used
    fcc_feed = heavy_used + resid_used
    _load_unit(units[UnitId.FCC], fcc_feed, cfg)
    res.gasoline += fcc_feed * 0.54
    diesel += fcc_feed * 0.12
    lpg = dist_gas + fcc_feed * 0.18
    fcc_loss = fcc_feed * 0.08
    res.waste += fcc_loss
    res.flare += fcc_loss * 0.5

    # 5) Hydrocracker
    hydro_cap = unit_ceiling(state, UnitId.HYDROCRACKER)
    hydro_feed = min(heavy + resid + diesel * 0.25, hydro_cap)
    heavy_used = min(heavy, hydro_feed * 0.55)
    heavy -= heavy_used
    resid_used = min(resid, hydro_feed * 0.35)
    resid -= resid_used
    diesel_used = max(0.0, min(diesel * 0.5, hydro_feed - heavy_used - resid_used))
    diesel -= diesel_used
    hydro_feed = heavy_used + resid_used + diesel_used
    _load_unit(units[UnitId.HYDROCRACKER], hydro_feed, cfg)
    res.gasoline += hydro_feed * 0.42
    diesel += hydro_feed * 0.3
    kerosene += hydro_feed * 0.2
    res.hydrogen += hydro_feed * 0.04
    res.waste += hydro_feed * 0.08

    # 6) Alkylation
    alk_feed = min(lpg, unit_ceiling(state, UnitId.ALKYLATION))
    lpg -= alk_feed
    _load_unit(units[UnitId.ALKYLATION], alk_feed, cfg)
    res.gasoline += alk_feed * 0.88
    res.waste += alk_feed * 0.06

    # 7) Sulfur recovery
    sulfur_feed = min(resid + heavy, unit_ceiling(state, UnitId.SULFUR))
    _load_unit(units[UnitId.SULFUR], sulfur_feed, cfg)
    env = _clamp(params.environment, 0.0, 1.0)
    removed = sulfur_feed * (0.55 + env * 0.4)
    resid_taken = min(resid, sulfur_feed * 0.6)
    resid -= resid_taken
    heavy -= min(heavy, sulfur_feed - resid_taken)
    res.sulfur += removed
    res.waste += max(0.0, sulfur_feed - removed)

    # 8) Pass-through blending
    res.gasoline += naphtha * 0.82
    res.waste += naphtha * 0.18
    res.diesel += diesel
    res.jet += kerosene * (1.0 + scenario.jet_bias * 0.2)
    res.waste += max(0.0, resid) + max(0.0, heavy)
    res.lpg += max(0.0, lpg)

    # Mass-balance caps. Liquids excess is booked as waste, LPG excess is dropped.
    liquid_cap = crude * LIQUID_CAP_RATIO
    liquids = res.liquids()
    if liquids > liquid_cap and liquids > 0:
        scale = liquid_cap / liquids
        res.waste += liquids - liquid_cap
        res.gasoline *= scale
        res.diesel *= scale
        res.jet *= scale
    res.lpg = min(res.lpg, crude * LPG_CAP_RATIO)

    penalty = strain_yield_penalty(state.strain / 12.0)
    if penalty > 0:
        before = res.liquids()
        res.gasoline *= 1.0 - penalty
        res.diesel *= 1.0 - penalty
        res.jet *= 1.0 - penalty
        diverted = before - res.liquids()
        res.waste += diverted
        res.flare += diverted * 0.5

    res.flows = Flows(
        to_reformer=reform_feed,
        to_cracker=fcc_feed,
        to_hydrocracker=hydro_feed,
        to_alkylation=alk_feed,
        to_export=res.liquids(),
    )
    return res


def flows_as_dict(flows: Flows) -> Dict[str, float]:
    return {
        Stream.TO_REFORMER.value: flows.to_reformer,
        Stream.TO_CRACKER.value: flows.to_cracker,
        Stream.TO_HYDROCRACKER.value: flows.to_hydrocracker,
        Stream.TO_ALKYLATION.value: flows.to_alkylation,
        Stream.TO_EXPORT.value: flows.to_export,
    }
