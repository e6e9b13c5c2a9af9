"""
TIERING.PY - SINGLE SOURCE OF TRUTH FOR SLIP QUALITY TIERS
==========================================================

This module is the ONLY place slip tier configurations should be defined.
All other files should import from here via:
    from tiering import tier_for_rank, get_tier_config, recommended_stake

TIER HIERARCHY (highest to lowest):
1. primary   - the top-ranked slip of a cycle; stricter combined-probability
               floor and must carry a leg from the most-trusted engine
2. alternate - every other selected slip; relaxed combined-probability floor

Stakes are half-Kelly on the slip's combined probability and price, capped
at MAX_RISK_FRACTION of bankroll, then scaled by the tier's kelly_multiplier.
"""

from typing import Any, Dict

from core.odds_math import american_to_decimal

TIER_PRIMARY = "primary"
TIER_ALTERNATE = "alternate"

MAX_RISK_FRACTION = 0.03  # Never stake more than 3% of bankroll on one slip

# =============================================================================
# TIER CONFIGURATION - SINGLE SOURCE OF TRUTH
# =============================================================================
TIER_CONFIG: Dict[str, Dict[str, Any]] = {
    TIER_PRIMARY: {
        "min_combined_prob": 0.15,
        "requires_trusted_source": True,
        "kelly_multiplier": 1.0,
        "priority": 1,
        "description": "Top-ranked slip - strict combined probability + trusted-engine leg",
    },
    TIER_ALTERNATE: {
        "min_combined_prob": 0.08,
        "requires_trusted_source": False,
        "kelly_multiplier": 0.5,
        "priority": 2,
        "description": "Alternate slip - relaxed combined probability",
    },
}


def get_tier_config(tier: str) -> Dict[str, Any]:
    """Config for a tier (alternate config for unknown tiers)."""
    return TIER_CONFIG.get(tier, TIER_CONFIG[TIER_ALTERNATE])


def tier_for_rank(rank: int) -> str:
    """Rank 1 is the primary slip; everything after it is an alternate."""
    return TIER_PRIMARY if rank == 1 else TIER_ALTERNATE


def kelly_fraction(win_probability: float, american_price: int) -> float:
    """Half-Kelly fraction of bankroll, floored at 0 and capped at MAX_RISK_FRACTION."""
    b = american_to_decimal(american_price) - 1.0
    if b <= 0:
        return 0.0
    kelly = (b * win_probability - (1.0 - win_probability)) / b
    return min(max(0.0, kelly / 2.0), MAX_RISK_FRACTION)


def recommended_stake(win_probability: float, american_price: int, tier: str, bankroll: float = 100.0) -> float:
    """Stake in bankroll units for a slip of the given tier (rounded to cents)."""
    fraction = kelly_fraction(win_probability, american_price) * get_tier_config(tier)["kelly_multiplier"]
    return round(fraction * bankroll, 2)
