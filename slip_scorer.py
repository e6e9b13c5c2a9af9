"""
Slip Scorer - SlipScore for a complete legal combination
=========================================================

    score = Σ log(p_i) + W_EDGE·Σ edge_i − W_VAR·Σ variance_i
            + diversity_bonus − pattern_penalty − matchup_penalty

The score only ranks combinations inside one generation cycle; it has no
fixed scale.

Learned penalties are looked up by structural signature. Each signature is
a PatternKind with its own exact-key table:
- ENGINE_CONCENTRATION: "all_{engine}_slip" when every leg comes from one engine
- CATEGORY_SIDE:        "{category}_{side}" per leg
- MATCHUP:              "{sport}|{category}|{side}|{defense_tier}" per leg

A loss pattern with severity "block" makes the combination illegal.
Matchup patterns only count with enough samples and a decisive accuracy:
boost when accuracy >= MATCHUP_BOOST_ACCURACY, penalty when below
MATCHUP_PENALTY_ACCURACY; the middle band is ignored.
"""

import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Sequence

from core.odds_math import combined_american_price
from core.slip_types import CandidateLeg, Slip

logger = logging.getLogger(__name__)

# ============================================
# CONSTANTS (Single Source of Truth)
# ============================================

W_EDGE = 0.3
W_VAR = 0.2
DIVERSITY_STEP = 0.1

MATCHUP_MIN_SAMPLES = 2
MATCHUP_BOOST_ACCURACY = 0.65
MATCHUP_BOOST_MIN_SAMPLES = 3
MATCHUP_PENALTY_ACCURACY = 0.50


class PatternKind(str, Enum):
    """Structural signature families."""
    ENGINE_CONCENTRATION = "engine_concentration"
    CATEGORY_SIDE = "category_side"
    MATCHUP = "matchup"


class Severity(str, Enum):
    BLOCK = "block"
    PENALIZE = "penalize"


def defense_tier(rank: Optional[int]) -> Optional[str]:
    """Opponent defense rank -> tier (1 is the best defense)."""
    if rank is None or rank <= 0:
        return None
    if rank <= 5:
        return "elite"
    if rank <= 12:
        return "good"
    if rank <= 20:
        return "average"
    return "weak"


def engine_concentration_key(engine: str) -> str:
    return f"all_{engine.lower()}_slip"


def category_side_key(category_key: str, side: str) -> str:
    return f"{category_key}_{side.lower()}"


def matchup_key(sport: Optional[str], category_key: str, side: str, tier: str) -> str:
    return f"{(sport or '').upper()}|{category_key}|{side.lower()}|{tier}"


@dataclass(frozen=True)
class PatternEntry:
    """One learned penalty (or boost) record."""
    kind: PatternKind
    key: str
    accuracy: float
    sample_size: int
    penalty: float
    severity: Severity = Severity.PENALIZE
    is_boost: bool = False
    active: bool = True


class PatternBook:
    """One exact-key table per PatternKind, consulted read-only by the scorer."""

    def __init__(self, entries: Optional[Iterable[PatternEntry]] = None):
        self.tables: Dict[PatternKind, Dict[str, PatternEntry]] = {kind: {} for kind in PatternKind}
        for entry in entries or []:
            self.add(entry)

    def add(self, entry: PatternEntry) -> None:
        self.tables[entry.kind][entry.key] = entry

    def lookup(self, kind: PatternKind, key: str) -> Optional[PatternEntry]:
        entry = self.tables[kind].get(key)
        if entry is None or not entry.active:
            return None
        return entry

    def __len__(self) -> int:
        return sum(len(t) for t in self.tables.values())

    @classmethod
    def from_records(
        cls,
        loss_patterns: Iterable[Dict[str, Any]] = (),
        matchup_patterns: Iterable[Dict[str, Any]] = (),
    ) -> "PatternBook":
        """Build from persisted pattern dicts (database to_dict() shape)."""
        book = cls()
        for rec in loss_patterns:
            try:
                kind = PatternKind(rec["pattern_type"])
            except (KeyError, ValueError):
                logger.debug("Skipping loss pattern with unknown type: %s", rec.get("pattern_type"))
                continue
            book.add(PatternEntry(
                kind=kind,
                key=rec["pattern_key"],
                accuracy=float(rec.get("accuracy_rate") or 0.0),
                sample_size=int(rec.get("total_count") or 0),
                penalty=float(rec.get("penalty_amount") or 0.0),
                severity=Severity(rec.get("severity") or Severity.PENALIZE.value),
                active=bool(rec.get("is_active", True)),
            ))
        for rec in matchup_patterns:
            book.add(PatternEntry(
                kind=PatternKind.MATCHUP,
                key=matchup_key(rec.get("sport"), rec["category"], rec["side"], rec["defense_tier"]),
                accuracy=float(rec.get("accuracy_rate") or 0.0),
                sample_size=int(rec.get("total_count") or 0),
                penalty=float(rec.get("penalty_amount") or 0.0),
                is_boost=bool(rec.get("is_boost", False)),
                active=bool(rec.get("is_active", True)),
            ))
        return book


@dataclass
class ScoreBreakdown:
    """Every term of a SlipScore, kept for audit."""
    log_prob_sum: float = 0.0
    combined_probability: float = 1.0
    total_edge: float = 0.0
    variance_penalty: float = 0.0
    diversity_bonus: float = 0.0
    pattern_penalty: float = 0.0
    matchup_penalty: float = 0.0
    score: float = 0.0
    blocked: bool = False
    blocked_by: Optional[str] = None
    matched_patterns: List[str] = field(default_factory=list)


def distinct_engines(legs: Sequence[CandidateLeg]) -> List[str]:
    seen: List[str] = []
    for leg in legs:
        for source in leg.sources:
            if source not in seen:
                seen.append(source)
    return seen


def diversity_bonus(legs: Sequence[CandidateLeg]) -> float:
    """Zero for a single-engine slip, DIVERSITY_STEP per extra engine."""
    engines = distinct_engines(legs)
    return DIVERSITY_STEP * max(0, len(engines) - 1)


def _pattern_terms(legs: Sequence[CandidateLeg], book: PatternBook, breakdown: ScoreBreakdown) -> None:
    engines = distinct_engines(legs)
    keys = []
    if len(engines) == 1:
        keys.append((PatternKind.ENGINE_CONCENTRATION, engine_concentration_key(engines[0])))
    for leg in legs:
        keys.append((PatternKind.CATEGORY_SIDE, category_side_key(leg.category_key, leg.side)))

    for kind, key in keys:
        entry = book.lookup(kind, key)
        if entry is None:
            continue
        breakdown.matched_patterns.append(f"{kind.value}:{key}")
        if entry.severity == Severity.BLOCK:
            breakdown.blocked = True
            breakdown.blocked_by = f"{kind.value}:{key}"
            continue
        breakdown.pattern_penalty += entry.penalty


def _matchup_terms(legs: Sequence[CandidateLeg], book: PatternBook, breakdown: ScoreBreakdown) -> None:
    for leg in legs:
        tier = defense_tier(leg.defense_rank)
        if tier is None:
            continue
        key = matchup_key(leg.sport, leg.category_key, leg.side, tier)
        entry = book.lookup(PatternKind.MATCHUP, key)
        if entry is None or entry.sample_size < MATCHUP_MIN_SAMPLES:
            continue
        if entry.is_boost:
            if entry.accuracy >= MATCHUP_BOOST_ACCURACY and entry.sample_size >= MATCHUP_BOOST_MIN_SAMPLES:
                breakdown.matchup_penalty -= entry.penalty
                breakdown.matched_patterns.append(f"matchup_boost:{key}")
        elif entry.accuracy < MATCHUP_PENALTY_ACCURACY:
            breakdown.matchup_penalty += entry.penalty
            breakdown.matched_patterns.append(f"matchup_penalty:{key}")


def score_combination(
    legs: Sequence[CandidateLeg],
    patterns: Optional[PatternBook] = None,
    w_edge: float = W_EDGE,
    w_var: float = W_VAR,
) -> ScoreBreakdown:
    """
    SlipScore for a legal combination of estimated legs.

    Every leg must carry a probability in (0, 1).
    """
    breakdown = ScoreBreakdown()
    for leg in legs:
        p = leg.probability
        if p is None or not 0.0 < p < 1.0:
            raise ValueError(f"leg {leg.subject_key}/{leg.category_key} has invalid probability {p}")
        breakdown.log_prob_sum += math.log(p)
        breakdown.combined_probability *= p
        breakdown.total_edge += leg.edge or 0.0
        breakdown.variance_penalty += leg.volatility

    breakdown.diversity_bonus = diversity_bonus(legs)
    if patterns is not None and len(patterns):
        _pattern_terms(legs, patterns, breakdown)
        _matchup_terms(legs, patterns, breakdown)

    breakdown.score = (
        breakdown.log_prob_sum
        + w_edge * breakdown.total_edge
        - w_var * breakdown.variance_penalty
        + breakdown.diversity_bonus
        - breakdown.pattern_penalty
        - breakdown.matchup_penalty
    )
    return breakdown


def build_slip(legs: Sequence[CandidateLeg], breakdown: ScoreBreakdown, replay: bool = False) -> Slip:
    """Freeze a scored combination into a Slip."""
    return Slip(
        legs=tuple(legs),
        combined_probability=breakdown.combined_probability,
        total_edge=breakdown.total_edge,
        variance_penalty=breakdown.variance_penalty,
        diversity_bonus=breakdown.diversity_bonus,
        pattern_penalty=breakdown.pattern_penalty,
        matchup_penalty=breakdown.matchup_penalty,
        score=breakdown.score,
        combined_price=combined_american_price(leg.price for leg in legs),
        replay=replay,
    )
