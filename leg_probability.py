"""
Leg Probability Estimator

For each merged candidate:
1. Every registered signal present on the leg yields a probability inside its
   own reliability range; they are combined by a reliability-weighted average.
2. No signal at all -> the price-implied probability.
3. A learned category weight (calibration output, times the regime
   multiplier) scales the distance from a coin flip.
4. A corroboration bonus is added per extra contributing engine
   (+0.015 each, capped at +0.05).
5. Clamp to [PROBABILITY_FLOOR, PROBABILITY_CEILING]; stacked signals never
   push a leg past 0.85.

Edge comes from a calibrated signal when one supplies it, otherwise from
the distance between the estimate and the implied probability.
Volatility is a fixed lookup by category.
"""

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Set, Tuple

from core.odds_math import american_to_implied
from core.slip_types import CandidateLeg
from signals.category_correlation import volatility_for
from signals.signal_registry import SignalRegistry, get_registry

logger = logging.getLogger(__name__)

# ============================================
# CONSTANTS
# ============================================

PROBABILITY_CEILING = 0.85
PROBABILITY_FLOOR = 0.01
CORROBORATION_STEP = 0.015
CORROBORATION_CAP = 0.05
# Fallback edge is (p - implied) in tenths, same scale as engine-supplied edges
FALLBACK_EDGE_SCALE = 10.0

CategoryKey = Tuple[str, str]  # (category_key, side)


@dataclass
class EstimateReport:
    """Pool-level counts from one estimation pass."""
    estimated: int = 0
    implied_fallback: int = 0
    blocked_removed: int = 0
    signals_used: Dict[str, int] = field(default_factory=dict)


def corroboration_bonus(source_count: int) -> float:
    """Monotonic bonus for engines agreeing on one leg."""
    if source_count <= 1:
        return 0.0
    return min(CORROBORATION_CAP, (source_count - 1) * CORROBORATION_STEP)


def clamp_probability(value: float) -> float:
    return max(PROBABILITY_FLOOR, min(PROBABILITY_CEILING, value))


def blend_signals(found: List[Tuple[str, float, float]]) -> Optional[float]:
    """Reliability-weighted average of (name, probability, weight) triples."""
    total_weight = sum(w for _, _, w in found)
    if total_weight <= 0:
        return None
    return sum(p * w for _, p, w in found) / total_weight


def estimate_leg(
    leg: CandidateLeg,
    registry: Optional[SignalRegistry] = None,
    category_weights: Optional[Dict[CategoryKey, float]] = None,
) -> Tuple[CandidateLeg, List[str]]:
    """
    Estimate probability, edge and volatility for one candidate.

    Returns:
        (new CandidateLeg with derived fields set, names of signals used)
    """
    registry = registry or get_registry()
    implied = american_to_implied(leg.price)

    found = registry.collect(leg.raw_scores, leg.sources)
    blended = blend_signals(found)
    probability = blended if blended is not None else implied

    weight = (category_weights or {}).get((leg.category_key, leg.side))
    if weight is not None and weight > 0:
        probability = 0.5 + (probability - 0.5) * weight

    probability = clamp_probability(probability + corroboration_bonus(len(leg.sources)))

    edge = registry.explicit_edge(leg.raw_scores, leg.sources)
    if edge is None:
        edge = (probability - implied) * FALLBACK_EDGE_SCALE

    estimated = replace(
        leg,
        sources=list(leg.sources),
        raw_scores={k: dict(v) for k, v in leg.raw_scores.items()},
        probability=probability,
        edge=edge,
        volatility=volatility_for(leg.category_key),
    )
    return estimated, [name for name, _, _ in found]


def estimate_candidates(
    candidates: Iterable[CandidateLeg],
    registry: Optional[SignalRegistry] = None,
    category_weights: Optional[Dict[CategoryKey, float]] = None,
    blocked: Optional[Set[CategoryKey]] = None,
) -> Tuple[List[CandidateLeg], EstimateReport]:
    """
    Estimate every candidate; blocked (category, side) pairs are removed first.

    Returns:
        (estimated candidates in input order, EstimateReport)
    """
    blocked = blocked or set()
    report = EstimateReport()
    estimated: List[CandidateLeg] = []

    for leg in candidates:
        if (leg.category_key, leg.side) in blocked:
            report.blocked_removed += 1
            continue
        new_leg, used = estimate_leg(leg, registry, category_weights)
        if not used:
            report.implied_fallback += 1
        for name in used:
            report.signals_used[name] = report.signals_used.get(name, 0) + 1
        estimated.append(new_leg)

    report.estimated = len(estimated)
    if report.blocked_removed:
        logger.info("Estimator: removed %d candidate(s) in blocked categories", report.blocked_removed)
    logger.info(
        "Estimator: %d estimated (%d on implied fallback)",
        report.estimated, report.implied_fallback,
    )
    return estimated, report
