"""
Category-pair correlation mining over settled slips.

Every leg pair inside a decided slip is keyed by its sorted
"{category}__{side}" labels and counted as co-win, co-loss or split.

    co_rate     = (co_win + co_loss) / total
    correlation = (co_rate - 0.5) * 200      # -100 .. +100

Needs MIN_SLIPS decided slips in the window; pairs need MIN_PAIR_SAMPLES.
Only the TOP_N strongest pairs (by |correlation|) are kept.
"""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from core.slip_types import LegResult, SettledSlip
from core.time_et import age_days, utc_now
from signals.category_correlation import normalize_category
from utils.leg_normalizer import normalize_side

logger = logging.getLogger(__name__)

WINDOW_DAYS = 30
MIN_SLIPS = 20
MIN_PAIR_SAMPLES = 5
TOP_N = 20


def leg_label(leg: Dict[str, Any]) -> str:
    category = normalize_category(leg.get("category_key") or leg.get("category") or "unknown")
    side = normalize_side(leg.get("side") or "OVER")
    return f"{category}__{side.lower()}"


def leg_hit(leg: Dict[str, Any]) -> bool:
    """A settled leg dict counts as a hit on hit=True or result="hit"."""
    if leg.get("hit") is True:
        return True
    return str(leg.get("result") or "").lower() == LegResult.HIT.value


@dataclass
class PairStat:
    co_win: int = 0
    co_loss: int = 0
    split: int = 0

    @property
    def total(self) -> int:
        return self.co_win + self.co_loss + self.split

    @property
    def correlation(self) -> float:
        co_rate = (self.co_win + self.co_loss) / self.total
        return (co_rate - 0.5) * 200.0


@dataclass
class CorrelationReport:
    slips_used: int = 0
    sufficient: bool = False
    pairs: List[Dict[str, Any]] = field(default_factory=list)


def mine_correlations(
    slips: Iterable[SettledSlip],
    now: Optional[datetime] = None,
    window_days: int = WINDOW_DAYS,
    min_slips: int = MIN_SLIPS,
    min_pair_samples: int = MIN_PAIR_SAMPLES,
    top_n: int = TOP_N,
) -> CorrelationReport:
    now = now or utc_now()
    recent = []
    for slip in slips:
        days = age_days(slip.settled_at, now)
        if slip.decided and days is not None and days <= window_days:
            recent.append(slip)

    report = CorrelationReport(slips_used=len(recent))
    if len(recent) < min_slips:
        logger.info("Correlation: %d settled slips in window, need %d", len(recent), min_slips)
        return report

    stats: Dict[str, PairStat] = {}
    for slip in recent:
        for a, b in itertools.combinations(slip.legs, 2):
            key = "|".join(sorted((leg_label(a), leg_label(b))))
            stat = stats.setdefault(key, PairStat())
            a_hit, b_hit = leg_hit(a), leg_hit(b)
            if a_hit and b_hit:
                stat.co_win += 1
            elif not a_hit and not b_hit:
                stat.co_loss += 1
            else:
                stat.split += 1

    rows = []
    for key, stat in stats.items():
        if stat.total < min_pair_samples:
            continue
        rows.append({
            "pair": key.split("|"),
            "co_win_rate": round(stat.co_win / stat.total * 100),
            "anti_rate": round(stat.split / stat.total * 100),
            "correlation": round(stat.correlation),
            "sample_size": stat.total,
        })
    rows.sort(key=lambda r: (-abs(r["correlation"]), r["pair"]))

    report.sufficient = True
    report.pairs = rows[:top_n]
    return report
