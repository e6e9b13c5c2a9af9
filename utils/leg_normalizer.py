"""
Leg Normalizer - Engine record -> CandidateLeg

Every upstream engine ships its own record shape. This module is the only
place that knows those spellings; everything downstream sees CandidateLeg.

IDENTITY FIELDS (first non-empty alias wins):
- subject: player_name | player | subject | team | selection
- category: prop_type | category | stat_type | market
- side: side | recommended_side | bet_side | recommendation | direction | over_under
- line: line | current_line | median_line
- price: odds | price | odds_american | over_price/under_price (by side)
- grouping key: grouping_key | event_id | game_id | game | matchup

SCORE FIELDS:
Every remaining numeric field is copied into raw_scores[engine]; known
engine aliases are renamed to the registry's field names (ses_score ->
sharp_score, pvs_final_score -> pvs_score, ...).

A record missing subject, category or side is an input defect: it is
skipped and counted, never fatal.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from core.slip_types import CandidateLeg, MarketType, Side
from identity.name_normalizer import normalize_subject_name
from signals.category_correlation import is_team_category, normalize_category

logger = logging.getLogger(__name__)

SUBJECT_FIELDS = ("player_name", "player", "subject", "team", "selection")
CATEGORY_FIELDS = ("prop_type", "category", "stat_type", "market")
SIDE_FIELDS = ("side", "recommended_side", "bet_side", "recommendation", "direction", "over_under")
LINE_FIELDS = ("line", "current_line", "median_line")
PRICE_FIELDS = ("odds", "price", "odds_american")
GROUPING_FIELDS = ("grouping_key", "event_id", "game_id", "game", "matchup")
DEFENSE_RANK_FIELDS = ("defense_rank", "opponent_defense_rank", "opp_defense_rank")

IDENTITY_FIELDS = frozenset(
    SUBJECT_FIELDS + CATEGORY_FIELDS + SIDE_FIELDS + LINE_FIELDS + PRICE_FIELDS
    + GROUPING_FIELDS + DEFENSE_RANK_FIELDS
    + ("sport", "over_price", "under_price", "pick_type", "market_type", "id")
)

SCORE_FIELD_ALIASES = {
    "hitRate": "hit_rate",
    "l10_hit_rate": "hit_rate",
    "ses_score": "sharp_score",
    "sharpScore": "sharp_score",
    "pvs_final_score": "pvs_score",
    "pvsScore": "pvs_score",
    "medianLockEdge": "edge_percentage",
    "median_lock_edge": "edge_percentage",
    "fatigueImpact": "fatigue_impact",
}

_SIDE_ALIASES = {
    "over": Side.OVER.value,
    "o": Side.OVER.value,
    "under": Side.UNDER.value,
    "u": Side.UNDER.value,
    "home": Side.HOME.value,
    "away": Side.AWAY.value,
    "yes": Side.YES.value,
    "no": Side.NO.value,
}


def _first(record: Dict[str, Any], fields: Tuple[str, ...]) -> Any:
    for name in fields:
        value = record.get(name)
        if value is not None and value != "":
            return value
    return None


def _to_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def normalize_side(raw_side: Any) -> Optional[str]:
    """Map side spellings to OVER/UNDER/HOME/AWAY/YES/NO; other text is upper-cased."""
    if raw_side is None:
        return None
    text = str(raw_side).strip()
    if not text:
        return None
    lowered = text.lower()
    if lowered in _SIDE_ALIASES:
        return _SIDE_ALIASES[lowered]
    # Recommendation strings like "STRONG OVER"
    upper = text.upper()
    if "OVER" in upper.split():
        return Side.OVER.value
    if "UNDER" in upper.split():
        return Side.UNDER.value
    return upper


def _price_for(record: Dict[str, Any], side: str) -> Optional[int]:
    price = _to_float(_first(record, PRICE_FIELDS))
    if price is None:
        side_field = "over_price" if side == Side.OVER.value else "under_price"
        price = _to_float(record.get(side_field))
    if price is None or price == 0:
        return None
    return int(round(price))


def _hit_rate_for_side(record: Dict[str, Any], side: str) -> Optional[float]:
    """Split over/under hit rates collapse onto the leg's side."""
    if side == Side.OVER.value:
        return _to_float(record.get("hit_rate_over"))
    if side == Side.UNDER.value:
        return _to_float(record.get("hit_rate_under"))
    return None


def extract_scores(record: Dict[str, Any], side: str) -> Dict[str, Any]:
    """Copy engine-specific numeric score fields under canonical names."""
    scores: Dict[str, Any] = {}
    for key, value in record.items():
        if key in IDENTITY_FIELDS or key in ("hit_rate_over", "hit_rate_under"):
            continue
        number = _to_float(value)
        if number is None:
            continue
        scores[SCORE_FIELD_ALIASES.get(key, key)] = number
    if "hit_rate" not in scores:
        side_rate = _hit_rate_for_side(record, side)
        if side_rate is not None:
            scores["hit_rate"] = side_rate
    return scores


def normalize_engine_record(record: Dict[str, Any], engine: str) -> Optional[CandidateLeg]:
    """
    Convert one engine record into a CandidateLeg.

    Returns:
        CandidateLeg, or None when the record is malformed
    """
    if not isinstance(record, dict):
        return None

    subject = _first(record, SUBJECT_FIELDS)
    category = _first(record, CATEGORY_FIELDS)
    side = normalize_side(_first(record, SIDE_FIELDS))
    if not subject or not category or not side:
        return None

    subject_key = normalize_subject_name(str(subject))
    category_key = normalize_category(str(category))
    if not subject_key or not category_key:
        return None

    raw_line = _first(record, LINE_FIELDS)
    line = _to_float(raw_line)
    if raw_line is not None and line is None:
        # A line that exists but does not parse is a defect, not a binary market
        return None

    market_type = record.get("market_type") or record.get("pick_type")
    if market_type not in (MarketType.PLAYER_PROP.value, MarketType.TEAM_BET.value):
        market_type = MarketType.TEAM_BET.value if is_team_category(category_key) else MarketType.PLAYER_PROP.value

    defense_rank = _to_float(_first(record, DEFENSE_RANK_FIELDS))
    grouping = _first(record, GROUPING_FIELDS)

    return CandidateLeg(
        subject=str(subject).strip(),
        subject_key=subject_key,
        category=str(category).strip(),
        category_key=category_key,
        side=side,
        line=line,
        price=_price_for(record, side),
        grouping_key=str(grouping).strip().lower() if grouping is not None else "",
        sport=(str(record["sport"]).upper() if record.get("sport") else None),
        market_type=market_type,
        defense_rank=int(defense_rank) if defense_rank is not None else None,
        sources=[engine],
        raw_scores={engine: extract_scores(record, side)},
    )


def normalize_engine_batch(records: List[Dict[str, Any]], engine: str) -> Tuple[List[CandidateLeg], int]:
    """
    Normalize one engine's feed.

    Returns:
        (legs, skipped_count)
    """
    legs: List[CandidateLeg] = []
    skipped = 0
    for record in records or []:
        leg = normalize_engine_record(record, engine)
        if leg is None:
            skipped += 1
            continue
        legs.append(leg)

    if skipped:
        logger.warning("Leg normalizer: skipped %d malformed record(s) from %s", skipped, engine)
    logger.debug("Leg normalizer: %s -> %d legs", engine, len(legs))
    return legs, skipped
