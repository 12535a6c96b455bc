from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from refinerysim.models import Metrics

WEIGHTS = {
    "throughput": 0.18,
    "profit": 0.16,
    "reliability": 0.18,
    "carbon": 0.12,
    "incidents": 0.10,
    "shipments": 0.10,
    "directives": 0.08,
    "strain": 0.08,
}

GRADE_CUTOFFS: List[Tuple[float, str]] = [
    (92.0, "A"),
    (88.0, "A-"),
    (82.0, "B+"),
    (76.0, "B"),
    (70.0, "B-"),
    (64.0, "C+"),
    (58.0, "C"),
    (50.0, "C-"),
    (40.0, "D"),
]

DEFAULT_NOTE = "Plant stabilizing…"


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(x)))


@dataclass
class SubScores:
    throughput: float = 1.0
    profit: float = 0.5
    reliability: float = 1.0
    carbon: float = 1.0
    incidents: float = 1.0
    shipments: float = 1.0
    directives: float = 1.0
    strain: float = 1.0

    def composite(self) -> float:
        total = sum(getattr(self, key) * weight for key, weight in WEIGHTS.items())
        return _clamp(total, 0.0, 1.0) * 100.0


def sub_scores(metrics: Metrics, incident_pressure: float) -> SubScores:
    liquids = metrics.gasoline + metrics.diesel + metrics.jet
    return SubScores(
        throughput=_clamp(liquids / max(1.0, metrics.crude_throughput * 0.92), 0.0, 1.0),
        profit=_clamp((metrics.profit_per_hour + 140.0) / 320.0, 0.0, 1.0),
        reliability=_clamp(metrics.reliability, 0.0, 1.0),
        carbon=_clamp(1.0 - metrics.carbon / 140.0, 0.0, 1.0),
        incidents=_clamp(1.0 - incident_pressure * 0.18, 0.0, 1.0),
        shipments=_clamp(metrics.shipment_reliability, 0.0, 1.0),
        directives=_clamp(metrics.directive_reliability, 0.0, 1.0),
        strain=_clamp(1.0 - metrics.strain_factor, 0.0, 1.0),
    )


def score_to_grade(score: float) -> str:
    for cutoff, grade in GRADE_CUTOFFS:
        if score >= cutoff:
            return grade
    return "F"


def score_narrative(scores: SubScores) -> str:
    issues: List[str] = []
    highlights: List[str] = []

    if scores.profit < 0.45:
        issues.append("Margins are tightening; rebalance crude or product slate.")
    elif scores.profit > 0.75:
        highlights.append("Commercial returns are strong this shift.")

    if scores.reliability < 0.6:
        issues.append("Unit integrity is slipping; schedule maintenance time.")
    elif scores.reliability > 0.85:
        highlights.append("Equipment health remains excellent.")

    if scores.carbon < 0.55:
        issues.append("Environmental controls are lagging; increase mitigation spend.")
    elif scores.carbon > 0.8:
        highlights.append("Environmental intensity is well managed.")

    if scores.incidents < 0.75:
        issues.append("Recent upsets rattled crews; stabilize operations.")

    if scores.throughput < 0.55:
        issues.append("Throughput is under target; inspect front-end feed handling.")
    elif scores.throughput > 0.8:
        highlights.append("Product output is beating plan.")

    if scores.shipments < 0.75:
        issues.append("Customers are waiting on late cargoes; clear the dock backlog.")
    elif scores.shipments > 0.95:
        highlights.append("Dock schedule is running on time.")

    if scores.directives < 0.5:
        issues.append("Head office directives keep slipping; pick achievable goals.")

    if scores.strain < 0.45:
        issues.append("Crews are stretched thin; ease throughput or raise safety spend.")

    if issues:
        return issues[0]
    if highlights:
        return highlights[0]
    return DEFAULT_NOTE


def update_scorecard(metrics: Metrics, history: List[float], incident_pressure: float, history_limit: int = 240) -> SubScores:
    """Score the current tick into ``metrics`` and append it to the bounded history."""

    scores = sub_scores(metrics, incident_pressure)
    score = scores.composite()
    previous = history[-1] if history else score

    metrics.score = score
    metrics.grade = score_to_grade(score)
    metrics.score_note = score_narrative(scores)
    metrics.score_delta = score - previous

    history.append(score)
    if len(history) > history_limit:
        del history[: len(history) - history_limit]
    return scores
