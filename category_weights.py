"""
Category Weights - Per (category, side) multiplicative weights

Responsibilities:
1. Tally settled leg outcomes per (category, side): hits, misses, streaks
2. Derive a weight from the Bayesian-smoothed hit rate plus a sample bonus
3. Nudge it by the current streak (hot categories up, cold ones down)
4. Block categories that keep losing

Rules:
    base   = 1 + (smoothed_hr - 0.5) * 0.8 + sample bonus (0.05 at 50, 0.10 at 100)
    streak = hit run of n adds   sum(0.02 + 0.005*(k-1)) for k in 1..n
             miss run of n takes sum(0.03 + 0.01*(k-1))  for k in 1..n
    weight = clamp(base + streak, 0.5, 1.5)

Blocking (weight 0, excluded from candidate pools):
- smoothed hit rate < 0.40 with >= 10 samples, or
- a miss streak of 5
Blocking is terminal: only unblock_category() clears it.
"""
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from calibration.bayesian import smoothed_hit_rate
from calibration.regime import regime_multiplier
from core.slip_types import SettledLeg
from core.time_et import parse_timestamp, utc_now
from signals.category_correlation import normalize_category
from utils.leg_normalizer import normalize_side

logger = logging.getLogger(__name__)


# ============================================================================
# CONSTANTS
# ============================================================================

WEIGHT_MIN = 0.5
WEIGHT_MAX = 1.5
HIT_RATE_SCALE = 0.8
SAMPLE_BONUSES = ((100, 0.10), (50, 0.05))  # (min samples, bonus), largest first

HIT_STEP = 0.02
HIT_STEP_GROWTH = 0.005
MISS_STEP = 0.03
MISS_STEP_GROWTH = 0.01

BLOCK_HIT_RATE = 0.40
BLOCK_MIN_SAMPLES = 10
BLOCK_STREAK = -5

CategoryKey = Tuple[str, str]


@dataclass
class CategoryWeightState:
    """In-memory view of one CategoryWeight row."""
    category: str
    side: str
    weight: float = 1.0
    total_picks: int = 0
    hits: int = 0
    misses: int = 0
    raw_hit_rate: Optional[float] = None
    recency_hit_rate: Optional[float] = None
    bayesian_hit_rate: Optional[float] = None
    current_streak: int = 0
    best_streak: int = 0
    worst_streak: int = 0
    is_blocked: bool = False
    block_reason: Optional[str] = None
    regime_multiplier: float = 1.0
    unblocked_at: Optional[str] = None

    @property
    def key(self) -> CategoryKey:
        return (self.category, self.side)

    @property
    def effective_weight(self) -> float:
        if self.is_blocked:
            return 0.0
        return self.weight * self.regime_multiplier

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["effective_weight"] = round(self.effective_weight, 4)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CategoryWeightState":
        fields = cls.__dataclass_fields__
        return cls(**{k: v for k, v in data.items() if k in fields})


# ============================================================================
# WEIGHT MATH
# ============================================================================

def sample_bonus(samples: int) -> float:
    for threshold, bonus in SAMPLE_BONUSES:
        if samples >= threshold:
            return bonus
    return 0.0


def base_weight(hit_rate: float, samples: int) -> float:
    return 1.0 + (hit_rate - 0.5) * HIT_RATE_SCALE + sample_bonus(samples)


def streak_adjustment(streak: int) -> float:
    """Cumulative weight change carried by the current hit or miss run."""
    if streak > 0:
        return sum(HIT_STEP + HIT_STEP_GROWTH * k for k in range(streak))
    if streak < 0:
        return -sum(MISS_STEP + MISS_STEP_GROWTH * k for k in range(-streak))
    return 0.0


def clamp_weight(value: float) -> float:
    return max(WEIGHT_MIN, min(WEIGHT_MAX, value))


def block(state: CategoryWeightState, reason: str) -> None:
    if not state.is_blocked:
        logger.warning("Blocking category %s/%s: %s", state.category, state.side, reason)
    state.is_blocked = True
    state.block_reason = state.block_reason or reason
    state.weight = 0.0


def apply_outcome(state: CategoryWeightState, hit: bool) -> CategoryWeightState:
    """Count one decided outcome and advance the streak (pushes are never passed in)."""
    state.total_picks += 1
    if hit:
        state.hits += 1
        state.current_streak = max(1, state.current_streak + 1)
        state.best_streak = max(state.best_streak, state.current_streak)
    else:
        state.misses += 1
        state.current_streak = min(-1, state.current_streak - 1)
        state.worst_streak = min(state.worst_streak, state.current_streak)
        if state.current_streak <= BLOCK_STREAK:
            block(state, f"{-state.current_streak} straight misses")
    return state


def recompute_weight(state: CategoryWeightState) -> CategoryWeightState:
    """Refresh rates and weight from the tallies; blocked rows stay blocked at weight 0."""
    if state.total_picks:
        state.raw_hit_rate = state.hits / state.total_picks
    state.bayesian_hit_rate = smoothed_hit_rate(state.category, state.hits, state.total_picks)

    if state.is_blocked:
        state.weight = 0.0
        return state

    if state.total_picks >= BLOCK_MIN_SAMPLES and state.bayesian_hit_rate < BLOCK_HIT_RATE:
        block(state, f"smoothed hit rate {state.bayesian_hit_rate:.2f} over {state.total_picks} picks")
        return state

    rate = state.bayesian_hit_rate
    state.weight = round(clamp_weight(base_weight(rate, state.total_picks) + streak_adjustment(state.current_streak)), 4)
    return state


def unblock_category(state: CategoryWeightState, when: Optional[datetime] = None) -> CategoryWeightState:
    """
    Manual unblock: weight resets to neutral and the miss streak is forgotten.

    Outcomes settled before `unblocked_at` no longer count for this key when
    weights are rebuilt, so the old losing run cannot re-block it.
    """
    state.is_blocked = False
    state.block_reason = None
    state.current_streak = 0
    state.weight = 1.0
    state.unblocked_at = (when or utc_now()).isoformat()
    logger.info("Unblocked category %s/%s", state.category, state.side)
    return state


# ============================================================================
# CALIBRATION ENTRY POINT
# ============================================================================

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def _settled_sort_key(outcome: SettledLeg) -> datetime:
    return parse_timestamp(outcome.settled_at) or _EPOCH


def rebuild_category_weights(
    outcomes: Iterable[SettledLeg],
    previous: Optional[Iterable[CategoryWeightState]] = None,
    recency_rates: Optional[Dict[CategoryKey, float]] = None,
    regime: Optional[str] = None,
) -> List[CategoryWeightState]:
    """
    Replay settled outcomes in settlement order into fresh weight records.

    Block flags from `previous` carry over (terminal). Keys that only exist in
    `previous` are kept so a quiet category never silently loses its block.
    """
    carried = {s.key: s for s in (previous or [])}
    states: Dict[CategoryKey, CategoryWeightState] = {}

    def _state_for(key: CategoryKey) -> CategoryWeightState:
        if key not in states:
            state = CategoryWeightState(category=key[0], side=key[1])
            old = carried.get(key)
            if old is not None:
                state.unblocked_at = old.unblocked_at
                if old.is_blocked:
                    state.is_blocked = True
                    state.block_reason = old.block_reason
            states[key] = state
        return states[key]

    ordered = sorted((o for o in outcomes if not o.is_push), key=_settled_sort_key)
    for outcome in ordered:
        key = (normalize_category(outcome.category), normalize_side(outcome.side))
        state = _state_for(key)
        since = parse_timestamp(state.unblocked_at)
        if since is not None and _settled_sort_key(outcome) < since:
            continue
        apply_outcome(state, outcome.is_hit)

    for key in carried:
        _state_for(key)

    recency_rates = recency_rates or {}
    for key, state in states.items():
        recompute_weight(state)
        if key in recency_rates:
            state.recency_hit_rate = round(recency_rates[key], 4)
        state.regime_multiplier = regime_multiplier(regime, key[0], key[1]) if regime else 1.0

    blocked = sum(1 for s in states.values() if s.is_blocked)
    logger.info("Category weights: %d records rebuilt (%d blocked)", len(states), blocked)
    return sorted(states.values(), key=lambda s: s.key)


def effective_weights(states: Iterable[CategoryWeightState]) -> Dict[CategoryKey, float]:
    """(category, side) -> weight * regime multiplier, blocked keys excluded."""
    return {s.key: s.effective_weight for s in states if not s.is_blocked}


def blocked_keys(states: Iterable[CategoryWeightState]) -> Set[CategoryKey]:
    return {s.key for s in states if s.is_blocked}
