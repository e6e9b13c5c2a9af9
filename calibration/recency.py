"""
Recency reweighting - exponential decay over settled leg outcomes.

    weight = 0.5 ** (days_since_settled / half_life)

Weighted hits / weighted total per (category, side) over a trailing window.
Pushes carry no information about direction and are ignored. Keys whose
weighted total stays under MIN_WEIGHTED_TOTAL are left out so a handful of
recent results never overwrite a category's rate.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, Optional, Tuple

from core.slip_types import SettledLeg
from core.time_et import age_days, utc_now
from signals.category_correlation import normalize_category
from utils.leg_normalizer import normalize_side

logger = logging.getLogger(__name__)

HALF_LIFE_DAYS = 14.0
WINDOW_DAYS = 90
MIN_WEIGHTED_TOTAL = 3.0


def recency_weight(days_since: float, half_life: float = HALF_LIFE_DAYS) -> float:
    """1.0 at zero elapsed time, 0.5 at one half-life, strictly decreasing."""
    if half_life <= 0:
        raise ValueError(f"half_life must be positive, got {half_life}")
    return 0.5 ** (max(0.0, days_since) / half_life)


@dataclass
class RecencyStat:
    weighted_hits: float = 0.0
    weighted_total: float = 0.0
    outcomes: int = 0

    @property
    def hit_rate(self) -> Optional[float]:
        if self.weighted_total <= 0:
            return None
        return self.weighted_hits / self.weighted_total


def recency_hit_rates(
    outcomes: Iterable[SettledLeg],
    now: Optional[datetime] = None,
    half_life: float = HALF_LIFE_DAYS,
    window_days: int = WINDOW_DAYS,
    min_weighted_total: float = MIN_WEIGHTED_TOTAL,
) -> Dict[Tuple[str, str], RecencyStat]:
    """
    Recency-weighted stats per (category_key, side).

    Only keys with weighted_total >= min_weighted_total are returned.
    """
    now = now or utc_now()
    stats: Dict[Tuple[str, str], RecencyStat] = {}

    for outcome in outcomes:
        if outcome.is_push:
            continue
        days = age_days(outcome.settled_at, now)
        if days is None or days > window_days:
            continue
        key = (normalize_category(outcome.category), normalize_side(outcome.side))
        weight = recency_weight(days, half_life)
        stat = stats.setdefault(key, RecencyStat())
        stat.weighted_total += weight
        stat.outcomes += 1
        if outcome.is_hit:
            stat.weighted_hits += weight

    kept = {k: s for k, s in stats.items() if s.weighted_total >= min_weighted_total}
    logger.debug("Recency: %d keys seen, %d above weighted floor", len(stats), len(kept))
    return kept
