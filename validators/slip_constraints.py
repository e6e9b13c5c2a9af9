"""
validators/slip_constraints.py - Within-slip legality rules
Version: 1.0

Stateless predicate: (candidate, legs already in the slip, per-event counter)
-> legal / illegal. Rules, all must hold:

1. event_cap     - grouping key already used `event_cap` times (default 2)
2. same_subject  - subject already in the slip (always exclusive)
3. correlated    - category entangled with a same-subject category
                   (composite vs constituent), or a second team-level
                   market on the same event
4. category_cap  - normalized category already used `category_cap` times (default 2)
5. min_line      - low-magnitude category below its minimum line

Any failing rule rejects. Rules are independent; cheap dictionary checks run
before the pairwise correlation scan.

DOES NOT MUTATE INPUT.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Sequence

from core.slip_types import CandidateLeg, MarketType
from signals.category_correlation import MIN_LINE_FLOORS, are_correlated

logger = logging.getLogger(__name__)

DEFAULT_EVENT_CAP = 2
DEFAULT_CATEGORY_CAP = 2

RULE_EVENT_CAP = "event_cap"
RULE_SAME_SUBJECT = "same_subject"
RULE_CORRELATED = "correlated"
RULE_CATEGORY_CAP = "category_cap"
RULE_MIN_LINE = "min_line"


@dataclass
class ConstraintConfig:
    """Caps and floors for within-slip legality."""
    event_cap: int = DEFAULT_EVENT_CAP
    category_cap: int = DEFAULT_CATEGORY_CAP
    min_line_floors: Dict[str, float] = field(default_factory=lambda: dict(MIN_LINE_FLOORS))


@dataclass
class ConstraintCheck:
    """Result of one legality check."""
    ok: bool
    rule: Optional[str] = None
    detail: Optional[str] = None

    def __bool__(self) -> bool:
        return self.ok


_PASS = ConstraintCheck(ok=True)


def count_events(legs: Iterable[CandidateLeg]) -> Counter:
    """Per-grouping-key leg counter for a partial slip."""
    return Counter(leg.grouping_key for leg in legs if leg.grouping_key)


def validate_leg(
    candidate: CandidateLeg,
    legs: Sequence[CandidateLeg],
    event_counts: Optional[Mapping[str, int]] = None,
    config: Optional[ConstraintConfig] = None,
) -> ConstraintCheck:
    """
    Check whether `candidate` may join `legs`.

    Args:
        candidate: leg being considered
        legs: legs already in the slip
        event_counts: grouping key -> count for `legs` (computed if omitted)
        config: caps and floors (defaults if omitted)
    """
    config = config or ConstraintConfig()
    if event_counts is None:
        event_counts = count_events(legs)

    # 1. Exposure cap per event
    if candidate.grouping_key and event_counts.get(candidate.grouping_key, 0) >= config.event_cap:
        return ConstraintCheck(False, RULE_EVENT_CAP, f"{candidate.grouping_key} at cap {config.event_cap}")

    # 5. Minimum line (single dict lookup, so checked early)
    floor = config.min_line_floors.get(candidate.category_key)
    if floor is not None and (candidate.line is None or candidate.line < floor):
        return ConstraintCheck(False, RULE_MIN_LINE, f"{candidate.category_key} line {candidate.line} < {floor}")

    same_category = 0
    for leg in legs:
        # 2. Same subject
        if leg.subject_key == candidate.subject_key:
            return ConstraintCheck(False, RULE_SAME_SUBJECT, candidate.subject_key)
        if leg.category_key == candidate.category_key:
            same_category += 1

    # 4. Category repetition
    if same_category >= config.category_cap:
        return ConstraintCheck(False, RULE_CATEGORY_CAP, f"{candidate.category_key} at cap {config.category_cap}")

    # 3. Correlation
    for leg in legs:
        if leg.subject_key == candidate.subject_key and are_correlated(leg.category_key, candidate.category_key):
            return ConstraintCheck(False, RULE_CORRELATED, f"{leg.category_key}~{candidate.category_key}")
        if (
            candidate.market_type == MarketType.TEAM_BET.value
            and leg.market_type == MarketType.TEAM_BET.value
            and candidate.grouping_key
            and leg.grouping_key == candidate.grouping_key
        ):
            return ConstraintCheck(False, RULE_CORRELATED, f"team stack on {candidate.grouping_key}")

    return _PASS


def is_legal_combination(legs: Sequence[CandidateLeg], config: Optional[ConstraintConfig] = None) -> bool:
    """Re-check a whole combination leg by leg."""
    return first_violation(legs, config) is None


def first_violation(legs: Sequence[CandidateLeg], config: Optional[ConstraintConfig] = None) -> Optional[ConstraintCheck]:
    """The first failing check when building `legs` in order, or None."""
    config = config or ConstraintConfig()
    built: List[CandidateLeg] = []
    counts: Counter = Counter()
    for leg in legs:
        check = validate_leg(leg, built, counts, config)
        if not check.ok:
            logger.debug("Combination rejected at %s: %s (%s)", leg.subject_key, check.rule, check.detail)
            return check
        built.append(leg)
        if leg.grouping_key:
            counts[leg.grouping_key] += 1
    return None
