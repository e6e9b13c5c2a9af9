"""
Regime detection - classify today's slate and map it to weight multipliers.

Slate rules are checked in order (first match wins):
    playoff_mode  months 4-6 with >= 2 active sports          (conf 85)
    injury_storm  >= 5 players listed OUT                      (conf 70)
    light_slate   < 6 games or <= 1 sport                      (conf 80)
    full_slate    >= 8 games and >= 3 sports (conf 90), else  (conf 60)

A trailing 3-day settled win rate overrides the slate label once at least
10 slips have settled: >= 0.65 -> chalk_day, <= 0.35 -> upset_wave, with
confidence taken from the win (or loss) rate itself.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

from utils.leg_normalizer import normalize_side

logger = logging.getLogger(__name__)

# ============================================
# CONSTANTS (Single Source of Truth)
# ============================================

PLAYOFF_MODE = "playoff_mode"
INJURY_STORM = "injury_storm"
LIGHT_SLATE = "light_slate"
FULL_SLATE = "full_slate"
CHALK_DAY = "chalk_day"
UPSET_WAVE = "upset_wave"

PLAYOFF_MONTHS = (4, 5, 6)
INJURY_STORM_OUT_COUNT = 5
LIGHT_SLATE_MAX_GAMES = 6
FULL_SLATE_MIN_GAMES = 8
FULL_SLATE_MIN_SPORTS = 3

TRAILING_DAYS = 3
TRAILING_MIN_SETTLED = 10
CHALK_WIN_RATE = 0.65
UPSET_WIN_RATE = 0.35

# (category_key, side) beats (category_key, None); anything else is 1.0
RegimeKey = Tuple[str, Optional[str]]
REGIME_MULTIPLIERS: Dict[str, Dict[RegimeKey, float]] = {
    PLAYOFF_MODE: {
        ("total", "UNDER"): 1.15,
        ("spread", None): 1.10,
        ("moneyline", None): 0.90,
    },
    INJURY_STORM: {
        ("total", "UNDER"): 1.20,
        ("rebounds", None): 1.10,
    },
    LIGHT_SLATE: {
        ("spread", None): 1.10,
        ("total", None): 1.05,
    },
    FULL_SLATE: {},
    CHALK_DAY: {
        ("spread", None): 1.15,
        ("moneyline", None): 1.10,
        ("total", "OVER"): 0.90,
    },
    UPSET_WAVE: {
        ("moneyline", None): 0.85,
        ("total", "UNDER"): 1.15,
        ("spread", None): 0.95,
    },
}


@dataclass
class SlateContext:
    """Live slate counts fed in by the caller."""
    game_count: int = 0
    sport_count: int = 0
    injury_out_count: int = 0
    month: int = 1
    trailing_settled: int = 0
    trailing_wins: int = 0

    @property
    def trailing_win_rate(self) -> Optional[float]:
        if self.trailing_settled <= 0:
            return None
        return self.trailing_wins / self.trailing_settled


@dataclass
class RegimeReading:
    regime: str
    confidence: int
    multipliers: Dict[str, float] = field(default_factory=dict)

    def to_dict(self):
        return {"regime": self.regime, "confidence": self.confidence, "multipliers": dict(self.multipliers)}


def _slate_regime(ctx: SlateContext) -> Tuple[str, int]:
    if ctx.month in PLAYOFF_MONTHS and ctx.sport_count >= 2:
        return PLAYOFF_MODE, 85
    if ctx.injury_out_count >= INJURY_STORM_OUT_COUNT:
        return INJURY_STORM, 70
    if ctx.game_count < LIGHT_SLATE_MAX_GAMES or ctx.sport_count <= 1:
        return LIGHT_SLATE, 80
    if ctx.game_count >= FULL_SLATE_MIN_GAMES and ctx.sport_count >= FULL_SLATE_MIN_SPORTS:
        return FULL_SLATE, 90
    return FULL_SLATE, 60


def detect_regime(ctx: SlateContext) -> RegimeReading:
    regime, confidence = _slate_regime(ctx)

    win_rate = ctx.trailing_win_rate
    if win_rate is not None and ctx.trailing_settled >= TRAILING_MIN_SETTLED:
        if win_rate >= CHALK_WIN_RATE:
            regime, confidence = CHALK_DAY, round(win_rate * 100)
        elif win_rate <= UPSET_WIN_RATE:
            regime, confidence = UPSET_WAVE, round((1 - win_rate) * 100)

    multipliers = {
        f"{category}__{side}" if side else category: value
        for (category, side), value in REGIME_MULTIPLIERS.get(regime, {}).items()
    }
    logger.info(
        "Regime: %s (%d%%) games=%d sports=%d out=%d trailing=%d/%d",
        regime, confidence, ctx.game_count, ctx.sport_count, ctx.injury_out_count,
        ctx.trailing_wins, ctx.trailing_settled,
    )
    return RegimeReading(regime=regime, confidence=confidence, multipliers=multipliers)


def regime_multiplier(regime: str, category_key: str, side: str) -> float:
    table = REGIME_MULTIPLIERS.get(regime, {})
    side = normalize_side(side)
    if (category_key, side) in table:
        return table[(category_key, side)]
    return table.get((category_key, None), 1.0)
