"""
TEST_PICK_AGGREGATOR.PY - Cross-engine candidate merging
========================================================

Tests verify:
1. One candidate per (subject, category); engine tags accumulate in order
2. Raw scores stay under each engine's tag
3. First-seen side wins; conflicts are counted
4. Identity fields are back-filled only when missing

Run with: python -m pytest tests/test_pick_aggregator.py -v
"""

import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from pick_aggregator import aggregate_candidates


def _rec(name, category="points", side="over", **extra):
    record = {"player_name": name, "prop_type": category, "side": side}
    record.update(extra)
    return record


class TestMerge:
    """Merge behavior across engines."""

    def test_same_subject_merges(self):
        """Spelling variants of one subject/category merge into one candidate."""
        result = aggregate_candidates({
            "hit_rate": [_rec("Luka Dončić", hit_rate=70)],
            "sharp_feed": [_rec("luka doncic", category="player_points", sharp_score=80)],
        })

        assert len(result.candidates) == 1
        leg = result.candidates[0]
        assert leg.sources == ["hit_rate", "sharp_feed"]
        assert leg.primary_source == "hit_rate"
        assert leg.raw_scores["hit_rate"] == {"hit_rate": 70.0}
        assert leg.raw_scores["sharp_feed"] == {"sharp_score": 80.0}
        assert result.merged == 1

    def test_scores_never_overwritten(self):
        result = aggregate_candidates({
            "a": [_rec("A", hit_rate=70)],
            "b": [_rec("A", hit_rate=55)],
        })
        leg = result.candidates[0]
        assert leg.raw_scores["a"]["hit_rate"] == 70.0
        assert leg.raw_scores["b"]["hit_rate"] == 55.0

    def test_repeat_from_same_engine(self):
        """A duplicate from the same engine neither re-tags nor overwrites."""
        result = aggregate_candidates({"a": [_rec("A", hit_rate=70), _rec("A", hit_rate=40)]})
        leg = result.candidates[0]
        assert leg.sources == ["a"]
        assert leg.raw_scores["a"]["hit_rate"] == 70.0

    def test_different_categories_stay_separate(self):
        result = aggregate_candidates({"a": [_rec("A"), _rec("A", category="rebounds")]})
        assert [c.category_key for c in result.candidates] == ["points", "rebounds"]


class TestSideConflicts:
    """First-seen side wins."""

    def test_conflict_counted(self):
        result = aggregate_candidates({
            "a": [_rec("A", side="over")],
            "b": [_rec("A", side="under", sharp_score=60)],
        })
        leg = result.candidates[0]
        assert leg.side == "OVER"
        assert leg.sources == ["a", "b"]
        assert result.side_conflicts == 1


class TestBackfill:
    """Identity fields fill gaps only."""

    def test_missing_fields_backfilled(self):
        result = aggregate_candidates({
            "a": [_rec("A")],
            "b": [_rec("A", line=20.5, odds=-120, game_id="G1", sport="nba", defense_rank=7)],
        })
        leg = result.candidates[0]
        assert leg.line == 20.5
        assert leg.price == -120
        assert leg.grouping_key == "g1"
        assert leg.sport == "NBA"
        assert leg.defense_rank == 7

    def test_existing_fields_kept(self):
        result = aggregate_candidates({
            "a": [_rec("A", line=19.5, odds=-110, game_id="G1")],
            "b": [_rec("A", line=20.5, odds=-120, game_id="G2")],
        })
        leg = result.candidates[0]
        assert (leg.line, leg.price, leg.grouping_key) == (19.5, -110, "g1")


class TestCounts:
    """Counts and ordering."""

    def test_malformed_counted_per_engine(self):
        result = aggregate_candidates({
            "a": [_rec("A"), {"prop_type": "points"}],
            "b": [{"player_name": "B"}, {"player_name": "C"}, _rec("D")],
        })
        assert result.records_in == 5
        assert result.skipped == {"a": 1, "b": 2}
        assert result.total_skipped == 3
        assert result.to_dict()["candidates"] == 2

    def test_order_is_first_appearance(self):
        result = aggregate_candidates({
            "a": [_rec("A"), _rec("B")],
            "b": [_rec("C"), _rec("A")],
        })
        assert [(c.subject_key, c.order) for c in result.candidates] == [("a", 0), ("b", 1), ("c", 2)]

    def test_empty_batches(self):
        result = aggregate_candidates({"a": [], "b": None})
        assert result.candidates == []
        assert result.records_in == 0
