"""
Tier optimizer - which slip size and tier have been winning lately.

Recommends the leg count with the best win rate among sizes that have at
least MIN_PER_LEG_COUNT settled slips. The recommendation is advisory:
it is stored on the adaptation state, the selector's leg count is still
configuration.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Optional

from core.slip_types import SettledSlip
from core.time_et import age_days, utc_now

logger = logging.getLogger(__name__)

WINDOW_DAYS = 30
MIN_SLIPS = 10
MIN_PER_LEG_COUNT = 5
DEFAULT_LEG_COUNT = 3


def optimize_tiers(
    slips: Iterable[SettledSlip],
    now: Optional[datetime] = None,
    window_days: int = WINDOW_DAYS,
    min_slips: int = MIN_SLIPS,
    min_per_leg_count: int = MIN_PER_LEG_COUNT,
) -> Dict[str, Any]:
    """Empty dict when there is not enough settled history."""
    now = now or utc_now()
    recent = []
    for slip in slips:
        days = age_days(slip.settled_at, now)
        if slip.decided and days is not None and days <= window_days:
            recent.append(slip)
    if len(recent) < min_slips:
        logger.info("Tier optimizer: %d settled slips, need %d", len(recent), min_slips)
        return {}

    by_legs: Dict[int, Dict[str, int]] = {}
    by_tier: Dict[str, Dict[str, int]] = {}
    for slip in recent:
        for table, key in ((by_legs, slip.leg_count), (by_tier, slip.tier or "alternate")):
            row = table.setdefault(key, {"wins": 0, "total": 0})
            row["total"] += 1
            row["wins"] += int(slip.won)

    best_count, best_rate = DEFAULT_LEG_COUNT, 0.0
    for leg_count in sorted(by_legs):
        row = by_legs[leg_count]
        if row["total"] < min_per_leg_count:
            continue
        rate = row["wins"] / row["total"]
        if rate > best_rate:
            best_count, best_rate = leg_count, rate

    return {
        "optimal_leg_count": best_count,
        "optimal_leg_win_rate": round(best_rate * 100),
        "leg_count_breakdown": {
            str(k): {"win_rate": round(v["wins"] / v["total"] * 100), "sample": v["total"]}
            for k, v in sorted(by_legs.items())
        },
        "tier_breakdown": {
            k: {"win_rate": round(v["wins"] / v["total"] * 100), "sample": v["total"]}
            for k, v in sorted(by_tier.items())
        },
    }
