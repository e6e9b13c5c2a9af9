"""
TEST_LEG_NORMALIZER.PY - Engine record -> CandidateLeg
======================================================

Tests verify:
1. Subject names normalize to one merge key (accents, suffixes, hyphens)
2. Category spellings collapse to one key; composite correlation is symmetric
3. Engine records map field aliases onto CandidateLeg; malformed ones are skipped

Run with: python -m pytest tests/test_leg_normalizer.py -v
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from identity.name_normalizer import normalize_subject_name, subjects_match
from signals.category_correlation import (
    are_correlated,
    is_team_category,
    min_line_for,
    normalize_category,
    volatility_for,
)
from utils.leg_normalizer import normalize_engine_batch, normalize_engine_record, normalize_side


# =============================================================================
# SUBJECT NAMES
# =============================================================================

class TestSubjectNames:
    """Subject name normalization."""

    @pytest.mark.parametrize("raw,expected", [
        ("Luka Dončić", "luka doncic"),
        ("Gary Payton Jr.", "gary payton"),
        ("Shai Gilgeous-Alexander", "shai gilgeous alexander"),
        ("  LeBron   James ", "lebron james"),
        ("Marvin Bagley III", "marvin bagley"),
        ("", ""),
    ])
    def test_normalize(self, raw, expected):
        assert normalize_subject_name(raw) == expected

    def test_subjects_match(self):
        """Spelling variants of one player match."""
        assert subjects_match("Nikola Jokić", "nikola jokic")
        assert not subjects_match("", "")
        assert not subjects_match("Jalen Williams", "Jaylin Williams")


# =============================================================================
# CATEGORIES
# =============================================================================

class TestCategories:
    """Category keys, correlation and per-category lookups."""

    @pytest.mark.parametrize("raw,expected", [
        ("player_points_rebounds_assists", "pra"),
        ("Player Threes", "threes"),
        ("pts+rebs", "pr"),
        ("player_points", "points"),
        ("h2h", "moneyline"),
        ("Spreads", "spread"),
        ("steals", "steals"),
        (None, ""),
    ])
    def test_normalize_category(self, raw, expected):
        assert normalize_category(raw) == expected

    def test_composite_correlates_with_constituent(self):
        assert are_correlated("pra", "points")
        assert are_correlated("points", "pra")

    def test_composites_sharing_a_stat(self):
        assert are_correlated("pr", "pa")

    def test_independent_base_stats(self):
        """Two base stats never correlate, and a composite without the stat does not either."""
        assert not are_correlated("points", "rebounds")
        assert not are_correlated("ra", "points")

    def test_same_category_correlates(self):
        assert are_correlated("threes", "threes")

    @pytest.mark.parametrize("category,expected", [
        ("rebounds", 0.2),
        ("pra", 0.2),
        ("pa", 0.2),
        ("threes", 0.1),
        ("points", 0.05),
    ])
    def test_volatility(self, category, expected):
        assert volatility_for(category) == expected

    def test_min_line_floors(self):
        assert min_line_for("blocks") == 1.5
        assert min_line_for("points") is None

    def test_team_categories(self):
        assert is_team_category("spread")
        assert not is_team_category("points")


# =============================================================================
# SIDES
# =============================================================================

class TestSides:
    """Side spellings."""

    @pytest.mark.parametrize("raw,expected", [
        ("over", "OVER"),
        ("o", "OVER"),
        ("U", "UNDER"),
        ("STRONG OVER", "OVER"),
        ("lean under", "UNDER"),
        ("Home", "HOME"),
        ("", None),
        (None, None),
    ])
    def test_normalize_side(self, raw, expected):
        assert normalize_side(raw) == expected


# =============================================================================
# ENGINE RECORDS
# =============================================================================

class TestEngineRecords:
    """normalize_engine_record field mapping."""

    def test_full_record(self):
        leg = normalize_engine_record({
            "player_name": "Luka Dončić",
            "prop_type": "player_points",
            "side": "over",
            "line": "32.5",
            "odds": -115,
            "game_id": "NBA-DAL-LAL",
            "sport": "nba",
            "hit_rate": 71,
            "defense_rank": 4,
        }, "hit_rate")

        assert leg is not None
        assert leg.subject == "Luka Dončić"
        assert leg.subject_key == "luka doncic"
        assert leg.category_key == "points"
        assert leg.side == "OVER"
        assert leg.line == 32.5
        assert leg.price == -115
        assert leg.grouping_key == "nba-dal-lal"
        assert leg.sport == "NBA"
        assert leg.defense_rank == 4
        assert leg.market_type == "player_prop"
        assert leg.sources == ["hit_rate"]
        assert leg.raw_scores == {"hit_rate": {"hit_rate": 71.0}}

    def test_alias_fields(self):
        """Alternate field spellings from other engines."""
        leg = normalize_engine_record({
            "player": "Devin Booker",
            "stat_type": "points",
            "recommendation": "STRONG OVER",
            "current_line": 27.5,
            "price": -105,
            "event_id": "G5",
            "ses_score": 80,
        }, "sharp_feed")

        assert leg.subject_key == "devin booker"
        assert leg.side == "OVER"
        assert leg.line == 27.5
        assert leg.price == -105
        assert leg.grouping_key == "g5"
        assert leg.raw_scores["sharp_feed"] == {"sharp_score": 80.0}

    def test_side_price_fallback(self):
        leg = normalize_engine_record({
            "player_name": "A", "prop_type": "points", "side": "under",
            "over_price": -130, "under_price": 110,
        }, "e")
        assert leg.price == 110

    def test_split_hit_rate_collapses_to_side(self):
        leg = normalize_engine_record({
            "player_name": "A", "prop_type": "rebounds", "side": "under",
            "hit_rate_over": 40, "hit_rate_under": 64,
        }, "e")
        assert leg.raw_scores["e"]["hit_rate"] == 64.0

    def test_team_market(self):
        leg = normalize_engine_record({"team": "Celtics", "market": "spreads", "side": "home"}, "e")
        assert leg.category_key == "spread"
        assert leg.market_type == "team_bet"
        assert leg.line is None

    @pytest.mark.parametrize("record", [
        {"prop_type": "points", "side": "over"},
        {"player_name": "A", "side": "over"},
        {"player_name": "A", "prop_type": "points"},
        {"player_name": "!!!", "prop_type": "points", "side": "over"},
        {"player_name": "A", "prop_type": "points", "side": "over", "line": "n/a"},
        "not a dict",
    ])
    def test_malformed_records(self, record):
        assert normalize_engine_record(record, "e") is None

    def test_batch_counts_skipped(self):
        legs, skipped = normalize_engine_batch([
            {"player_name": "A", "prop_type": "points", "side": "over"},
            {"player_name": "", "prop_type": "points", "side": "over"},
            {"player_name": "B", "prop_type": "assists", "side": "under"},
        ], "e")
        assert [leg.subject_key for leg in legs] == ["a", "b"]
        assert skipped == 1
