"""
TEST_CATEGORY_WEIGHTS.PY - Per (category, side) weights, streaks and blocking
=============================================================================

Run with: python -m pytest tests/test_category_weights.py -v
"""

import os
import sys
from datetime import timedelta

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from category_weights import (
    CategoryWeightState,
    base_weight,
    blocked_keys,
    effective_weights,
    rebuild_category_weights,
    streak_adjustment,
    unblock_category,
)
from conftest import FIXED_NOW, settled_leg


def _run(results, category="points", side="OVER", start_days_ago=30):
    """Settled legs in chronological order (oldest first)."""
    return [
        settled_leg(category, side, result, start_days_ago - i)
        for i, result in enumerate(results)
    ]


def _only(states):
    assert len(states) == 1
    return states[0]


class TestWeightMath:
    """Base weight and streak steps."""

    def test_base_weight(self):
        assert base_weight(0.5, 10) == pytest.approx(1.0)
        assert base_weight(0.6, 50) == pytest.approx(1.13)
        assert base_weight(0.6, 100) == pytest.approx(1.18)

    @pytest.mark.parametrize("streak,expected", [
        (0, 0.0),
        (1, 0.02),
        (3, 0.075),
        (-1, -0.03),
        (-2, -0.07),
    ])
    def test_streak_adjustment(self, streak, expected):
        assert streak_adjustment(streak) == pytest.approx(expected)


class TestRebuild:
    """Replaying settled outcomes into weight records."""

    def test_hot_category_weighted_up(self):
        state = _only(rebuild_category_weights(_run(["hit"] * 6)))
        assert state.current_streak == 6
        assert state.best_streak == 6
        assert 1.0 < state.weight <= 1.5
        assert state.raw_hit_rate == 1.0

    def test_weight_clamped(self):
        state = _only(rebuild_category_weights(_run(["hit"] * 20)))
        assert state.weight == 1.5

    def test_five_straight_misses_block(self):
        state = _only(rebuild_category_weights(_run(["hit", "miss", "miss", "miss", "miss", "miss"])))
        assert state.is_blocked
        assert state.block_reason == "5 straight misses"
        assert state.weight == 0.0
        assert state.effective_weight == 0.0
        assert state.worst_streak == -5

    def test_low_smoothed_rate_blocks(self):
        """12 picks, 2 hits, never five misses in a row."""
        results = ["miss"] * 4 + ["hit"] + ["miss"] * 4 + ["hit"] + ["miss"] * 2
        state = _only(rebuild_category_weights(_run(results)))
        assert state.is_blocked
        assert state.block_reason.startswith("smoothed hit rate")

    def test_pushes_ignored(self):
        state = _only(rebuild_category_weights(_run(["hit", "push", "hit"])))
        assert state.total_picks == 2
        assert state.current_streak == 2

    def test_settlement_order(self):
        """Outcomes are replayed oldest first regardless of input order."""
        outcomes = [settled_leg("points", "OVER", "miss", 1)] + _run(["hit"] * 4, start_days_ago=5)
        outcomes.reverse()
        state = _only(rebuild_category_weights(outcomes))
        assert state.current_streak == -1

    def test_keys_normalized(self):
        states = rebuild_category_weights([
            settled_leg("player_points", "over", "hit", 2),
            settled_leg("points", "OVER", "hit", 1),
        ])
        assert _only(states).key == ("points", "OVER")

    def test_blocked_stays_blocked(self):
        previous = [CategoryWeightState("points", "OVER", is_blocked=True, block_reason="5 straight misses")]
        state = _only(rebuild_category_weights(_run(["hit"] * 10), previous))
        assert state.is_blocked
        assert state.weight == 0.0

    def test_quiet_blocked_key_kept(self):
        previous = [CategoryWeightState("steals", "UNDER", is_blocked=True, block_reason="x")]
        states = rebuild_category_weights(_run(["hit"]), previous)
        assert blocked_keys(states) == {("steals", "UNDER")}
        assert ("points", "OVER") in effective_weights(states)

    def test_regime_and_recency_recorded(self):
        states = rebuild_category_weights(
            [settled_leg("spread", "HOME", "hit", 1)],
            recency_rates={("spread", "HOME"): 0.61234},
            regime="chalk_day",
        )
        state = _only(states)
        assert state.regime_multiplier == 1.15
        assert state.recency_hit_rate == 0.6123
        assert state.effective_weight == pytest.approx(state.weight * 1.15)


class TestUnblock:
    """Manual unblock is the only way out of a block."""

    def test_unblock_resets(self):
        state = CategoryWeightState("points", "OVER", weight=0.0, is_blocked=True,
                                    block_reason="5 straight misses", current_streak=-5)
        unblock_category(state, FIXED_NOW)
        assert not state.is_blocked
        assert state.block_reason is None
        assert state.weight == 1.0
        assert state.current_streak == 0
        assert state.unblocked_at == FIXED_NOW.isoformat()

    def test_old_losses_do_not_reblock(self):
        losses = _run(["miss"] * 5, start_days_ago=10)
        previous = [unblock_category(
            CategoryWeightState("points", "OVER", is_blocked=True, block_reason="5 straight misses"),
            FIXED_NOW - timedelta(days=5),
        )]
        later = [settled_leg("points", "OVER", "hit", 2)]

        state = _only(rebuild_category_weights(losses + later, previous))
        assert not state.is_blocked
        assert state.total_picks == 1
        assert state.current_streak == 1
        assert state.unblocked_at == previous[0].unblocked_at
