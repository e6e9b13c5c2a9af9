"""
TEST_PATTERN_LEARNING.PY - Loss and matchup pattern mining
==========================================================

Run with: python -m pytest tests/test_pattern_learning.py -v
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import settled_leg, settled_slip
from pattern_learning import loss_penalty, matchup_penalty, mine_loss_patterns, mine_matchup_patterns
from slip_scorer import PatternBook, PatternKind, Severity


def _by_key(rows):
    return {row["pattern_key"]: row for row in rows}


class TestPenaltyLadders:
    """Accuracy -> penalty mapping."""

    @pytest.mark.parametrize("accuracy,samples,expected", [
        (0.30, 3, (1.0, Severity.BLOCK)),
        (0.30, 2, (0.5, Severity.PENALIZE)),
        (0.42, 1, (0.3, Severity.PENALIZE)),
        (0.52, 5, (0.15, Severity.PENALIZE)),
        (0.60, 5, (0.0, Severity.PENALIZE)),
    ])
    def test_loss_penalty(self, accuracy, samples, expected):
        assert loss_penalty(accuracy, samples) == expected

    @pytest.mark.parametrize("accuracy,samples,expected", [
        (0.30, 3, (0.5, False)),
        (0.42, 2, (0.35, False)),
        (0.48, 1, (0.2, False)),
        (0.70, 3, (0.15, True)),
        (0.70, 2, (0.0, False)),
        (0.55, 10, (0.0, False)),
    ])
    def test_matchup_penalty(self, accuracy, samples, expected):
        assert matchup_penalty(accuracy, samples) == expected


class TestLossPatterns:
    """Signatures mined from settled slips."""

    def test_engine_concentration_block(self):
        shape = [("points", "OVER", "miss", ["engine_a"]), ("rebounds", "OVER", "hit", ["engine_a"])]
        rows = _by_key(mine_loss_patterns([settled_slip(shape, "lost", d) for d in range(1, 4)]))

        row = rows["all_engine_a_slip"]
        assert row["pattern_type"] == "engine_concentration"
        assert row["total_count"] == 3
        assert row["accuracy_rate"] == 0.0
        assert row["severity"] == "block"
        assert row["is_active"]

    def test_mixed_engines_not_concentrated(self):
        shape = [("points", "OVER", "miss", ["a"]), ("rebounds", "OVER", "miss", ["b"])]
        rows = _by_key(mine_loss_patterns([settled_slip(shape, "lost", 1)]))
        assert not any(key.startswith("all_") for key in rows)

    def test_category_side_counts_legs(self):
        shape = [("points", "OVER", "miss", ["a"]), ("rebounds", "UNDER", "push", ["b"])]
        rows = _by_key(mine_loss_patterns([settled_slip(shape, "lost", d) for d in range(1, 4)]))

        assert rows["points_over"]["misses"] == 3
        assert rows["points_over"]["severity"] == "block"
        assert rows["rebounds_under"]["hits"] == 3
        assert not rows["rebounds_under"]["is_active"]

    def test_pending_ignored(self):
        shape = [("points", "OVER", "miss", ["a"])]
        assert mine_loss_patterns([settled_slip(shape, "pending", 1)]) == []

    def test_rows_load_into_pattern_book(self):
        shape = [("points", "OVER", "miss", ["engine_a"]), ("assists", "OVER", "miss", ["engine_a"])]
        rows = mine_loss_patterns([settled_slip(shape, "lost", d) for d in range(1, 4)])
        book = PatternBook.from_records(rows)
        entry = book.lookup(PatternKind.ENGINE_CONCENTRATION, "all_engine_a_slip")
        assert entry.severity == Severity.BLOCK


class TestMatchupPatterns:
    """Signatures mined from settled legs with a defense rank."""

    def test_penalty_and_boost(self):
        outcomes = [settled_leg("points", "OVER", "miss", 1, defense_rank=3) for _ in range(3)]
        outcomes += [settled_leg("rebounds", "UNDER", "hit", 1, defense_rank=25) for _ in range(3)]
        outcomes.append(settled_leg("assists", "OVER", "miss", 1))

        rows = {(r["category"], r["defense_tier"]): r for r in mine_matchup_patterns(outcomes)}
        assert len(rows) == 2

        elite = rows[("points", "elite")]
        assert elite["sport"] == "NBA"
        assert elite["penalty_amount"] == 0.5
        assert not elite["is_boost"]

        weak = rows[("rebounds", "weak")]
        assert weak["penalty_amount"] == 0.15
        assert weak["is_boost"]
        assert weak["accuracy_rate"] == 1.0
