"""
Pattern Learning - Mine loss and matchup patterns from settled history
======================================================================
Post-settlement: count how each structural signature has done, then turn
accuracy into a penalty the scorer reads on the next selection cycle.

Loss patterns (from settled slips):
- engine_concentration: "all_{engine}_slip" when every leg came from one
  engine; counted on the slip outcome
- category_side: "{category}_{side}" per leg; counted on the leg result
  (pushes count as hits, the leg did not lose)

    accuracy < 0.40 with >= 3 samples -> block   (penalty 1.0)
    accuracy < 0.45 with >= 2 samples -> penalize 0.5
    accuracy < 0.50                   -> penalize 0.3
    accuracy < 0.55                   -> penalize 0.15
    otherwise                         -> inactive (penalty 0)

Matchup patterns (from settled legs carrying an opponent defense rank),
keyed by sport + category + side + defense tier:

    accuracy < 0.40 with >= 3 -> 0.5
    accuracy < 0.45 with >= 2 -> 0.35
    accuracy < 0.50           -> 0.2
    accuracy >= 0.65 with >= 3 -> boost 0.15

Outputs are plain dicts in the database row shape (see database.py) so
they can be upserted directly and loaded with PatternBook.from_records().
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Tuple

from calibration.correlation_miner import leg_hit
from core.slip_types import LegResult, SettledLeg, SettledSlip
from signals.category_correlation import normalize_category
from slip_scorer import (
    PatternKind,
    Severity,
    category_side_key,
    defense_tier,
    engine_concentration_key,
)
from utils.leg_normalizer import normalize_side

logger = logging.getLogger(__name__)

# ============================================
# CONFIGURATION
# ============================================

# (max accuracy exclusive, min samples, penalty, severity)
LOSS_PENALTY_LADDER = (
    (0.40, 3, 1.0, Severity.BLOCK),
    (0.45, 2, 0.5, Severity.PENALIZE),
    (0.50, 1, 0.3, Severity.PENALIZE),
    (0.55, 1, 0.15, Severity.PENALIZE),
)

MATCHUP_PENALTY_LADDER = (
    (0.40, 3, 0.5),
    (0.45, 2, 0.35),
    (0.50, 1, 0.2),
)
MATCHUP_BOOST_ACCURACY = 0.65
MATCHUP_BOOST_MIN_SAMPLES = 3
MATCHUP_BOOST_AMOUNT = 0.15


@dataclass
class PatternTally:
    hits: int = 0
    misses: int = 0

    @property
    def total(self) -> int:
        return self.hits + self.misses

    @property
    def accuracy(self) -> float:
        return self.hits / self.total if self.total else 0.0

    def add(self, hit: bool) -> None:
        if hit:
            self.hits += 1
        else:
            self.misses += 1


def loss_penalty(accuracy: float, samples: int) -> Tuple[float, Severity]:
    for max_accuracy, min_samples, penalty, severity in LOSS_PENALTY_LADDER:
        if accuracy < max_accuracy and samples >= min_samples:
            return penalty, severity
    return 0.0, Severity.PENALIZE


def matchup_penalty(accuracy: float, samples: int) -> Tuple[float, bool]:
    """(magnitude, is_boost)."""
    for max_accuracy, min_samples, penalty in MATCHUP_PENALTY_LADDER:
        if accuracy < max_accuracy and samples >= min_samples:
            return penalty, False
    if accuracy >= MATCHUP_BOOST_ACCURACY and samples >= MATCHUP_BOOST_MIN_SAMPLES:
        return MATCHUP_BOOST_AMOUNT, True
    return 0.0, False


def _leg_engines(legs: List[Dict[str, Any]]) -> List[str]:
    engines: List[str] = []
    for leg in legs:
        for source in leg.get("sources") or []:
            if source not in engines:
                engines.append(source)
    return engines


def _leg_not_lost(leg: Dict[str, Any]) -> bool:
    return leg_hit(leg) or str(leg.get("result") or "").lower() == LegResult.PUSH.value


def _leg_settled(leg: Dict[str, Any]) -> bool:
    return leg.get("hit") is not None or bool(leg.get("result"))


def mine_loss_patterns(slips: Iterable[SettledSlip]) -> List[Dict[str, Any]]:
    """Loss-pattern rows for every signature seen in decided slips."""
    tallies: Dict[Tuple[PatternKind, str], PatternTally] = {}

    for slip in slips:
        if not slip.decided:
            continue
        engines = _leg_engines(slip.legs)
        if len(engines) == 1:
            key = (PatternKind.ENGINE_CONCENTRATION, engine_concentration_key(engines[0]))
            tallies.setdefault(key, PatternTally()).add(slip.won)

        for leg in slip.legs:
            if not _leg_settled(leg):
                continue
            category = normalize_category(leg.get("category_key") or leg.get("category"))
            side = normalize_side(leg.get("side"))
            if not category or not side:
                continue
            key = (PatternKind.CATEGORY_SIDE, category_side_key(category, side))
            tallies.setdefault(key, PatternTally()).add(_leg_not_lost(leg))

    rows = []
    for (kind, key), tally in sorted(tallies.items(), key=lambda kv: (kv[0][0].value, kv[0][1])):
        penalty, severity = loss_penalty(tally.accuracy, tally.total)
        rows.append({
            "pattern_type": kind.value,
            "pattern_key": key,
            "hits": tally.hits,
            "misses": tally.misses,
            "total_count": tally.total,
            "accuracy_rate": round(tally.accuracy, 4),
            "penalty_amount": penalty,
            "severity": severity.value,
            "is_active": penalty > 0,
        })

    blocked = sum(1 for r in rows if r["severity"] == Severity.BLOCK.value)
    logger.info("Loss patterns: %d signatures (%d blocking)", len(rows), blocked)
    return rows


def mine_matchup_patterns(outcomes: Iterable[SettledLeg]) -> List[Dict[str, Any]]:
    """Matchup-pattern rows from settled legs with a known opponent defense rank."""
    tallies: Dict[Tuple[str, str, str, str], PatternTally] = {}

    for outcome in outcomes:
        tier = defense_tier(outcome.defense_rank)
        if tier is None:
            continue
        key = (
            (outcome.sport or "").upper(),
            normalize_category(outcome.category),
            normalize_side(outcome.side),
            tier,
        )
        tallies.setdefault(key, PatternTally()).add(outcome.is_hit or outcome.is_push)

    rows = []
    for (sport, category, side, tier), tally in sorted(tallies.items()):
        penalty, is_boost = matchup_penalty(tally.accuracy, tally.total)
        rows.append({
            "sport": sport,
            "category": category,
            "side": side,
            "defense_tier": tier,
            "hits": tally.hits,
            "misses": tally.misses,
            "total_count": tally.total,
            "accuracy_rate": round(tally.accuracy, 4),
            "penalty_amount": penalty,
            "is_boost": is_boost,
            "is_active": penalty > 0,
        })

    logger.info(
        "Matchup patterns: %d signatures (%d boosts)",
        len(rows), sum(1 for r in rows if r["is_boost"]),
    )
    return rows
