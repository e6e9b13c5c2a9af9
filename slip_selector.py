"""
Slip Selector - Enumerate, rank and pick the cycle's slips
===========================================================

One selection cycle:
1. Probability floor: keep legs with p >= probability_floor. If fewer than
   leg_count survive, relax once to relaxed_probability_floor. Still short
   -> explicit "insufficient_quality" refusal (success=False, not an error).
2. Cap the pool to the top `pool_cap` legs by probability, enumerate every
   leg_count-sized combination and keep the legal ones.
3. Score each (pattern-blocked combinations are dropped) and sort:
   score desc, combined probability desc, then earliest candidate order.
4. Primary: first ranked slip clearing the primary combined-probability
   floor with >= min_trusted_legs legs from the trusted engine. Alternates:
   remaining ranked slips clearing the alternate floor. Every pick must
   clear the calibration gates and the cross-slip subject cap. A subject
   reused across slips must keep the leg it was first selected with.
5. No primary -> retry once without the trusted-engine requirement.

Terminal states: produced (K), underfilled (< K), insufficient_quality (0).

Replay: a prior slip's (category, side) slots are refilled from the current
pool (best legal match per slot, best legal leg when a slot has no match).
The replay slip leads the output when it clears the primary floor and the
gates; normal selection fills the rest. Within-slip and cross-slip subject
rules both apply to replay slips.
"""

import itertools
import logging
import math
from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Set, Tuple

from core.slip_types import CandidateLeg, Gates, SelectionResult, SelectionStatus, Slip
from env_config import Config
from signals.category_correlation import normalize_category
from slip_scorer import PatternBook, build_slip, score_combination
from tiering import TIER_ALTERNATE, TIER_CONFIG, TIER_PRIMARY, tier_for_rank
from utils.leg_normalizer import normalize_side
from utils.usage_tracker import UsageAccumulator
from validators.slip_constraints import ConstraintConfig, count_events, first_violation, validate_leg

logger = logging.getLogger(__name__)

REASON_INSUFFICIENT = "insufficient_quality"


@dataclass
class SelectorConfig:
    """Per-run selection settings (defaults come from env_config.Config)."""
    leg_count: int = Config.SLIP_LEG_COUNT
    max_slips: int = Config.SLIPS_PER_CYCLE
    probability_floor: float = Config.LEG_PROBABILITY_FLOOR
    relaxed_probability_floor: float = Config.LEG_PROBABILITY_FLOOR_RELAXED
    pool_cap: int = Config.CANDIDATE_POOL_CAP
    primary_min_combined_prob: float = TIER_CONFIG[TIER_PRIMARY]["min_combined_prob"]
    alternate_min_combined_prob: float = TIER_CONFIG[TIER_ALTERNATE]["min_combined_prob"]
    trusted_source: str = Config.TRUSTED_SOURCE
    min_trusted_legs: int = 1
    max_slips_per_subject: int = Config.MAX_SLIPS_PER_SUBJECT
    apply_gates: bool = True
    constraints: ConstraintConfig = field(default_factory=ConstraintConfig)

    def __post_init__(self):
        if self.leg_count < 2:
            raise ValueError(f"leg_count must be >= 2, got {self.leg_count}")
        if self.relaxed_probability_floor > self.probability_floor:
            raise ValueError("relaxed_probability_floor must not exceed probability_floor")
        if self.pool_cap < self.leg_count:
            raise ValueError("pool_cap must be >= leg_count")


# ============================================
# GATES
# ============================================

def slip_gate_metrics(slip: Slip) -> Dict[str, float]:
    """The four gated quantities for a slip."""
    n = slip.leg_count
    mean_edge = slip.total_edge / n / 100.0
    mean_vol = slip.variance_penalty / n
    return {
        "edge": mean_edge,
        "hit_rate": min(leg.probability for leg in slip.legs) * 100.0,
        "sharpe": mean_edge / mean_vol if mean_vol > 0 else mean_edge,
        "composite": 100.0 * math.pow(slip.combined_probability, 1.0 / n),
    }


def gate_failure(slip: Slip, gates: Gates) -> Optional[str]:
    """Name of the first gate the slip misses, or None."""
    metrics = slip_gate_metrics(slip)
    if metrics["edge"] < gates.min_edge:
        return "min_edge"
    if metrics["hit_rate"] < gates.min_hit_rate:
        return "min_hit_rate"
    if metrics["sharpe"] < gates.min_sharpe:
        return "min_sharpe"
    if metrics["composite"] < gates.min_composite:
        return "min_composite"
    return None


# ============================================
# POOL + ENUMERATION
# ============================================

def _pool_order(leg: CandidateLeg) -> Tuple[float, int]:
    return (-(leg.probability or 0.0), leg.order)


def _rank_key(slip: Slip) -> Tuple[float, float, Tuple[int, ...]]:
    return (-slip.score, -slip.combined_probability, tuple(sorted(leg.order for leg in slip.legs)))


def filter_pool(
    candidates: Sequence[CandidateLeg],
    config: SelectorConfig,
) -> Tuple[List[CandidateLeg], Optional[float]]:
    """
    Apply the probability floor, relaxing once.

    Returns:
        (surviving legs sorted by probability, floor used) - floor is None on refusal
    """
    for floor in (config.probability_floor, config.relaxed_probability_floor):
        survivors = [c for c in candidates if c.probability is not None and c.probability >= floor]
        if len(survivors) >= config.leg_count:
            if floor != config.probability_floor:
                logger.info("Selector: relaxed probability floor to %.2f (%d legs)", floor, len(survivors))
            return sorted(survivors, key=_pool_order), floor
    return [], None


def enumerate_slips(
    pool: Sequence[CandidateLeg],
    config: SelectorConfig,
    patterns: Optional[PatternBook] = None,
    counts: Optional[Dict[str, int]] = None,
) -> List[Slip]:
    """Every legal, non-blocked leg_count-sized combination of `pool`, ranked."""
    counts = counts if counts is not None else {}
    ranked: List[Slip] = []
    enumerated = legal = blocked = 0

    for combo in itertools.combinations(pool, config.leg_count):
        enumerated += 1
        if first_violation(combo, config.constraints) is not None:
            continue
        legal += 1
        breakdown = score_combination(combo, patterns)
        if breakdown.blocked:
            blocked += 1
            logger.debug("Selector: combination blocked by %s", breakdown.blocked_by)
            continue
        ranked.append(build_slip(combo, breakdown))

    ranked.sort(key=_rank_key)
    counts["combinations_enumerated"] = enumerated
    counts["combinations_legal"] = legal
    counts["combinations_blocked"] = blocked
    return ranked


# ============================================
# SELECTION
# ============================================

def trusted_leg_count(slip: Slip, trusted_source: str) -> int:
    return sum(1 for leg in slip.legs if trusted_source in leg.sources)


def _eligible(
    slip: Slip,
    min_combined: float,
    gates: Optional[Gates],
    usage: UsageAccumulator,
) -> bool:
    if slip.combined_probability < min_combined:
        return False
    if gates is not None and gate_failure(slip, gates) is not None:
        return False
    return usage.can_accept(slip)


def _pick_primary(
    ranked: Sequence[Slip],
    config: SelectorConfig,
    gates: Optional[Gates],
    usage: UsageAccumulator,
    require_trusted: bool,
) -> Optional[Slip]:
    for slip in ranked:
        if require_trusted and trusted_leg_count(slip, config.trusted_source) < config.min_trusted_legs:
            continue
        if _eligible(slip, config.primary_min_combined_prob, gates, usage):
            return slip
    return None


def _pick_alternates(
    ranked: Sequence[Slip],
    taken: List[Slip],
    config: SelectorConfig,
    gates: Optional[Gates],
    usage: UsageAccumulator,
) -> List[Slip]:
    taken_keys = {frozenset(leg.merge_key for leg in s.legs) for s in taken}
    alternates: List[Slip] = []
    for slip in ranked:
        if len(taken) + len(alternates) >= config.max_slips:
            break
        if frozenset(leg.merge_key for leg in slip.legs) in taken_keys:
            continue
        if _eligible(slip, config.alternate_min_combined_prob, gates, usage):
            usage.record(slip)
            alternates.append(slip)
    return alternates


def build_replay_slip(
    pool: Sequence[CandidateLeg],
    replay_pattern: Sequence[Tuple[str, str]],
    config: SelectorConfig,
    patterns: Optional[PatternBook],
    usage: UsageAccumulator,
) -> Tuple[Optional[Slip], int]:
    """
    Rebuild a prior slip's (category, side) shape from the current pool.

    Returns:
        (replay slip or None, number of slots filled by an exact match)
    """
    legs: List[CandidateLeg] = []
    matched = 0

    def _usable(candidate: CandidateLeg) -> bool:
        if any(candidate is leg for leg in legs):
            return False
        if not usage.leg_available(candidate):
            return False
        return validate_leg(candidate, legs, count_events(legs), config.constraints).ok

    slots = list(replay_pattern)[: config.leg_count]
    slots += [None] * (config.leg_count - len(slots))
    for slot in slots:
        chosen = None
        if slot is not None:
            category_key = normalize_category(slot[0])
            side = normalize_side(slot[1])
            chosen = next(
                (c for c in pool if c.category_key == category_key and c.side == side and _usable(c)),
                None,
            )
            if chosen is not None:
                matched += 1
        if chosen is None:
            chosen = next((c for c in pool if _usable(c)), None)
        if chosen is None:
            logger.info("Replay: pool exhausted after %d leg(s)", len(legs))
            return None, matched
        legs.append(chosen)

    breakdown = score_combination(legs, patterns)
    if breakdown.blocked:
        logger.info("Replay: rebuilt slip blocked by %s", breakdown.blocked_by)
        return None, matched
    return build_slip(legs, breakdown, replay=True), matched


def _refusal(reason: str, counts: Dict[str, int], floor: Optional[float] = None) -> SelectionResult:
    logger.warning("Selector refusal: %s", reason)
    counts["combinations_selected"] = 0
    return SelectionResult(
        success=False,
        status=SelectionStatus.INSUFFICIENT,
        reason=reason,
        probability_floor=floor,
        counts=counts,
    )


def select_slips(
    candidates: Sequence[CandidateLeg],
    config: Optional[SelectorConfig] = None,
    gates: Optional[Gates] = None,
    patterns: Optional[PatternBook] = None,
    usage: Optional[UsageAccumulator] = None,
    replay_pattern: Optional[Sequence[Tuple[str, str]]] = None,
    blocked: Optional[Set[Tuple[str, str]]] = None,
) -> SelectionResult:
    """
    Run one selection cycle over estimated candidates.

    Args:
        candidates: legs with probability/edge/volatility set
        config: selection settings
        gates: calibration gates (defaults when None and config.apply_gates)
        patterns: learned loss/matchup patterns
        usage: cross-slip accumulator for this run (fresh one when None)
        replay_pattern: (category, side) slots of a prior slip to reproduce
        blocked: (category, side) pairs that must never appear
    """
    config = config or SelectorConfig()
    if config.apply_gates and gates is None:
        gates = Gates()
    if not config.apply_gates:
        gates = None
    usage = usage or UsageAccumulator(max_slips_per_subject=config.max_slips_per_subject)
    blocked = blocked or set()

    counts: Dict[str, int] = {"candidates_in": len(candidates)}
    usable = [
        c for c in candidates
        if (c.category_key, c.side) not in blocked and not usage.is_excluded(c.subject_key)
    ]
    counts["candidates_excluded"] = len(candidates) - len(usable)

    pool, floor = filter_pool(usable, config)
    counts["candidates_filtered"] = len(pool)
    if floor is None:
        return _refusal(
            f"{REASON_INSUFFICIENT}: fewer than {config.leg_count} legs clear probability "
            f"floor {config.relaxed_probability_floor:.2f}",
            counts,
        )

    capped = pool[: config.pool_cap]
    counts["pool_size"] = len(capped)
    ranked = enumerate_slips(capped, config, patterns, counts)
    if not ranked:
        return _refusal(f"{REASON_INSUFFICIENT}: no legal {config.leg_count}-leg combination", counts, floor)

    selected: List[Slip] = []
    if replay_pattern:
        replay_slip, matched = build_replay_slip(pool, replay_pattern, config, patterns, usage)
        counts["replay_slots_matched"] = matched
        if replay_slip is not None and _eligible(replay_slip, config.primary_min_combined_prob, gates, usage):
            usage.record(replay_slip)
            selected.append(replay_slip)
        else:
            logger.info("Replay: no eligible replay slip, using normal selection")

    trusted_relaxed = False
    if not selected:
        primary = _pick_primary(ranked, config, gates, usage, require_trusted=config.min_trusted_legs > 0)
        if primary is None and config.min_trusted_legs > 0:
            logger.info("Selector: no primary with a %s leg, retrying without it", config.trusted_source)
            trusted_relaxed = True
            primary = _pick_primary(ranked, config, gates, usage, require_trusted=False)
        if primary is None:
            return _refusal(f"{REASON_INSUFFICIENT}: no combination clears primary requirements", counts, floor)
        usage.record(primary)
        selected.append(primary)

    selected.extend(_pick_alternates(ranked, selected, config, gates, usage))

    final = [
        replace(slip, rank=i + 1, tier=tier_for_rank(i + 1))
        for i, slip in enumerate(selected)
    ]
    counts["combinations_selected"] = len(final)
    status = SelectionStatus.PRODUCED if len(final) >= config.max_slips else SelectionStatus.UNDERFILLED

    logger.info(
        "Selector: %s %d/%d slip(s) (floor=%.2f, ranked=%d, trusted_relaxed=%s)",
        status.value, len(final), config.max_slips, floor, len(ranked), trusted_relaxed,
    )
    return SelectionResult(
        success=True,
        status=status,
        slips=final,
        reason=None if status == SelectionStatus.PRODUCED else f"underfilled: {len(final)} of {config.max_slips}",
        probability_floor=floor,
        trusted_rule_relaxed=trusted_relaxed,
        counts=counts,
    )
