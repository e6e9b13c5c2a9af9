"""
Category Correlation - Composite/constituent stat relationships
================================================================

A composite category (points+rebounds+assists, points+rebounds, ...) is
built from base stats, so a leg on the composite and a leg on any of its
constituents for the same subject are mathematically entangled. Two
composites sharing a constituent are entangled too.

Also owns the per-category lookups the rest of the slip engine needs:
- normalize_category(): one spelling per category
- volatility_for(): variance tier used as a score penalty
- MIN_LINE_FLOORS: low-magnitude categories that need a minimum line
- TEAM_CATEGORIES: team-level markets (stacking on one event is correlated)
"""

import logging
import re
from typing import Dict, FrozenSet, Optional

logger = logging.getLogger(__name__)

# ============================================
# CONSTANTS (Single Source of Truth)
# ============================================

COMBO_BASES: Dict[str, FrozenSet[str]] = {
    "pra": frozenset({"points", "rebounds", "assists"}),
    "pr": frozenset({"points", "rebounds"}),
    "pa": frozenset({"points", "assists"}),
    "ra": frozenset({"rebounds", "assists"}),
}

# Variance tiers (higher = noisier outcome)
VOLATILITY_HIGH = 0.2
VOLATILITY_MEDIUM = 0.1
VOLATILITY_LOW = 0.05

HIGH_VOLATILITY_STATS = ("rebounds", "assists", "blocks", "steals", "turnovers")
MEDIUM_VOLATILITY_STATS = ("threes", "3pm", "fantasy")

# Minimum line a leg must carry for these categories
MIN_LINE_FLOORS: Dict[str, float] = {
    "blocks": 1.5,
    "steals": 1.5,
}

TEAM_CATEGORIES = frozenset({"moneyline", "spread", "total", "team_total"})

_PREFIX_RE = re.compile(r"^(player_|batter_|pitcher_)")

# Ordered: longest composite first so "points_rebounds_assists" never lands on "pr"
_CATEGORY_PATTERNS = [
    (re.compile(r"points.*rebounds.*assists|pts.*rebs.*asts|^pra$"), "pra"),
    (re.compile(r"points.*rebounds|pts.*rebs|^pr$"), "pr"),
    (re.compile(r"points.*assists|pts.*asts|^pa$"), "pa"),
    (re.compile(r"rebounds.*assists|rebs.*asts|^ra$"), "ra"),
    (re.compile(r"three_pointers|threes_made|^threes$|^3pm$"), "threes"),
    (re.compile(r"^(pts|points)$"), "points"),
    (re.compile(r"^(reb|rebs|rebounds)$"), "rebounds"),
    (re.compile(r"^(ast|asts|assists)$"), "assists"),
    (re.compile(r"^(h2h|moneyline|ml)$"), "moneyline"),
    (re.compile(r"^(spreads?|ats)$"), "spread"),
    (re.compile(r"^(totals?|game_total)$"), "total"),
    (re.compile(r"^team_totals?$"), "team_total"),
]


def normalize_category(raw: Optional[str]) -> str:
    """
    Collapse provider spellings to one category key.

    "player_points_rebounds_assists" -> "pra", "Player Threes" -> "threes",
    "h2h" -> "moneyline". Unknown categories pass through lowercased.
    """
    text = (raw or "").strip().lower()
    text = re.sub(r"[\s\-+]+", "_", text)
    text = _PREFIX_RE.sub("", text)
    for pattern, key in _CATEGORY_PATTERNS:
        if pattern.search(text):
            return key
    return text


def constituents(category_key: str) -> FrozenSet[str]:
    """Base stats a category is built from (a base stat is its own constituent)."""
    return COMBO_BASES.get(category_key, frozenset({category_key}))


def is_composite(category_key: str) -> bool:
    return category_key in COMBO_BASES


def are_correlated(category_a: str, category_b: str) -> bool:
    """
    True when two normalized categories share any base stat and at least one
    of them is a composite (or they are the same category).

    Symmetric: are_correlated(a, b) == are_correlated(b, a).
    """
    if category_a == category_b:
        return True
    if not (is_composite(category_a) or is_composite(category_b)):
        return False
    return bool(constituents(category_a) & constituents(category_b))


def volatility_for(category_key: str) -> float:
    """Fixed variance tier lookup for a normalized category."""
    key = (category_key or "").lower()
    # Composites inherit the noisiest constituent
    for stat in constituents(key):
        if any(v in stat for v in HIGH_VOLATILITY_STATS):
            return VOLATILITY_HIGH
    if any(v in key for v in HIGH_VOLATILITY_STATS):
        return VOLATILITY_HIGH
    if any(v in key for v in MEDIUM_VOLATILITY_STATS):
        return VOLATILITY_MEDIUM
    return VOLATILITY_LOW


def min_line_for(category_key: str) -> Optional[float]:
    return MIN_LINE_FLOORS.get(category_key)


def is_team_category(category_key: str) -> bool:
    return category_key in TEAM_CATEGORIES
