"""
TEST_CALIBRATION_STAGES.PY - Pure calibration stage functions
=============================================================

Tests verify:
1. Recency decay (1.0 at t=0, 0.5 at one half-life) and the weighted floor
2. Bayesian smoothing toward class priors, converging on the raw rate
3. Regime rules and trailing win-rate override
4. Category-pair correlation mining thresholds
5. Tier optimizer minimums
6. Gate tuner: relax / tighten / hold / insufficient data, inside the band for any sequence

Run with: python -m pytest tests/test_calibration_stages.py -v
"""

import os
import random
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from calibration.bayesian import bayesian_rate, prior_for, smoothed_hit_rate
from calibration.correlation_miner import mine_correlations
from calibration.gate_tuner import (
    ACTION_HOLD,
    ACTION_INSUFFICIENT,
    ACTION_RELAX,
    ACTION_TIGHTEN,
    GATE_CEILINGS,
    GATE_FIELDS,
    GATE_FLOORS,
    clamp_gates,
    primary_win_rate,
    tune_gates,
)
from calibration.recency import recency_hit_rates, recency_weight
from calibration.regime import SlateContext, detect_regime, regime_multiplier
from calibration.tier_optimizer import optimize_tiers
from conftest import FIXED_NOW, settled_leg, settled_slip
from core.slip_types import Gates


# =============================================================================
# RECENCY
# =============================================================================

class TestRecency:
    """Exponential decay and recency-weighted hit rates."""

    def test_weight_curve(self):
        assert recency_weight(0) == 1.0
        assert recency_weight(14) == pytest.approx(0.5)
        assert recency_weight(28) == pytest.approx(0.25)
        weights = [recency_weight(d) for d in range(0, 60, 5)]
        assert weights == sorted(weights, reverse=True)

    def test_half_life_must_be_positive(self):
        with pytest.raises(ValueError):
            recency_weight(1, half_life=0)

    def test_hit_rates(self):
        outcomes = [
            settled_leg("points", "OVER", "hit", 0),
            settled_leg("points", "OVER", "hit", 0),
            settled_leg("points", "OVER", "miss", 0),
            settled_leg("points", "OVER", "miss", 14),
            settled_leg("points", "OVER", "push", 0),
        ]
        stats = recency_hit_rates(outcomes, FIXED_NOW)
        stat = stats[("points", "OVER")]
        assert stat.outcomes == 4
        assert stat.weighted_total == pytest.approx(3.5)
        assert stat.hit_rate == pytest.approx(2 / 3.5)

    def test_sparse_keys_left_out(self):
        outcomes = [settled_leg("assists", "UNDER", "hit", 0), settled_leg("assists", "UNDER", "hit", 1)]
        assert recency_hit_rates(outcomes, FIXED_NOW) == {}

    def test_window(self):
        outcomes = [settled_leg("points", "OVER", "hit", 100) for _ in range(10)]
        assert recency_hit_rates(outcomes, FIXED_NOW) == {}

    def test_keys_normalized(self):
        outcomes = [settled_leg("player_points", "over", "hit", 0) for _ in range(3)]
        assert list(recency_hit_rates(outcomes, FIXED_NOW)) == [("points", "OVER")]


# =============================================================================
# BAYESIAN
# =============================================================================

class TestBayesian:
    """Smoothing toward class priors."""

    def test_priors(self):
        assert prior_for("points") == 0.52
        assert prior_for("moneyline") == 0.48
        assert prior_for("spread") == 0.50

    def test_no_data_returns_prior(self):
        assert smoothed_hit_rate("points", 0, 0) == 0.52

    def test_smoothing(self):
        assert smoothed_hit_rate("moneyline", 10, 10) == pytest.approx((0.48 * 20 + 10) / 30)

    def test_zero_strength_is_raw_rate(self):
        assert bayesian_rate(3, 4, 0.5, strength=0) == 0.75

    def test_converges_on_raw_rate(self):
        """At a constant raw rate of 0.7 the smoothed rate gets closer as n grows."""
        gaps = [abs(bayesian_rate(0.7 * n, n, 0.5, strength=20) - 0.7) for n in (1, 5, 20, 100, 1000)]
        assert all(later < earlier for earlier, later in zip(gaps, gaps[1:]))
        assert gaps[-1] < 0.005

    @pytest.mark.parametrize("prior", [0.48, 0.52, 0.9])
    def test_moves_toward_raw_rate_from_any_prior(self, prior):
        rates = [bayesian_rate(0.3 * n, n, prior, strength=20) for n in (0, 10, 50, 500)]
        gaps = [abs(r - 0.3) for r in rates]
        assert rates[0] == pytest.approx(prior)
        assert all(later < earlier for earlier, later in zip(gaps, gaps[1:]))

    def test_negative_strength(self):
        with pytest.raises(ValueError):
            bayesian_rate(1, 2, 0.5, strength=-1)


# =============================================================================
# REGIME
# =============================================================================

class TestRegime:
    """Slate classification."""

    @pytest.mark.parametrize("ctx,regime,confidence", [
        (SlateContext(game_count=10, sport_count=3, month=10), "full_slate", 90),
        (SlateContext(game_count=7, sport_count=2, month=10), "full_slate", 60),
        (SlateContext(game_count=10, sport_count=2, month=5), "playoff_mode", 85),
        (SlateContext(game_count=10, sport_count=3, injury_out_count=6, month=10), "injury_storm", 70),
        (SlateContext(game_count=4, sport_count=3, month=10), "light_slate", 80),
        (SlateContext(game_count=12, sport_count=1, month=10), "light_slate", 80),
    ])
    def test_slate_rules(self, ctx, regime, confidence):
        reading = detect_regime(ctx)
        assert (reading.regime, reading.confidence) == (regime, confidence)

    def test_chalk_day(self):
        reading = detect_regime(SlateContext(10, 3, month=10, trailing_settled=10, trailing_wins=8))
        assert (reading.regime, reading.confidence) == ("chalk_day", 80)
        assert reading.multipliers["spread"] == 1.15

    def test_upset_wave(self):
        reading = detect_regime(SlateContext(10, 3, month=10, trailing_settled=10, trailing_wins=3))
        assert (reading.regime, reading.confidence) == ("upset_wave", 70)
        assert reading.multipliers["total__UNDER"] == 1.15

    def test_trailing_needs_ten_settled(self):
        reading = detect_regime(SlateContext(10, 3, month=10, trailing_settled=9, trailing_wins=9))
        assert reading.regime == "full_slate"

    def test_multiplier_lookup(self):
        assert regime_multiplier("chalk_day", "total", "OVER") == 0.90
        assert regime_multiplier("chalk_day", "spread", "home") == 1.15
        assert regime_multiplier("full_slate", "points", "OVER") == 1.0
        assert regime_multiplier("unknown", "points", "OVER") == 1.0


# =============================================================================
# CORRELATION
# =============================================================================

def _pair_slip(a_result, b_result, days_ago=1):
    outcome = "won" if a_result == b_result == "hit" else "lost"
    return settled_slip(
        [("points", "OVER", a_result, ["hit_rate"]), ("rebounds", "OVER", b_result, ["hit_rate"])],
        outcome, days_ago,
    )


class TestCorrelation:
    """Category-pair co-movement."""

    def test_needs_twenty_slips(self):
        report = mine_correlations([_pair_slip("hit", "hit") for _ in range(19)], FIXED_NOW)
        assert not report.sufficient
        assert report.slips_used == 19
        assert report.pairs == []

    def test_fully_correlated_pair(self):
        slips = [_pair_slip("hit", "hit") for _ in range(15)] + [_pair_slip("miss", "miss") for _ in range(5)]
        report = mine_correlations(slips, FIXED_NOW)
        assert report.sufficient
        pair = report.pairs[0]
        assert pair["pair"] == ["points__over", "rebounds__over"]
        assert pair["correlation"] == 100
        assert pair["co_win_rate"] == 75
        assert pair["sample_size"] == 20

    def test_split_pair_is_negative(self):
        slips = [_pair_slip("hit", "miss") for _ in range(20)]
        report = mine_correlations(slips, FIXED_NOW)
        assert report.pairs[0]["correlation"] == -100
        assert report.pairs[0]["anti_rate"] == 100

    def test_old_and_pending_slips_ignored(self):
        slips = [_pair_slip("hit", "hit", days_ago=40) for _ in range(25)]
        slips += [settled_slip([("points", "OVER", "hit", [])], "pending", 1) for _ in range(25)]
        assert mine_correlations(slips, FIXED_NOW).slips_used == 0


# =============================================================================
# TIERS
# =============================================================================

class TestTierOptimizer:
    """Best leg count among sizes with enough history."""

    def _slips(self, legs, wins, losses):
        shape = [("points", "OVER", "hit", [])] * legs
        return [settled_slip(shape, "won", 1) for _ in range(wins)] + [settled_slip(shape, "lost", 1) for _ in range(losses)]

    def test_optimal_leg_count(self):
        slips = self._slips(3, 4, 1) + self._slips(2, 1, 4)
        recs = optimize_tiers(slips, FIXED_NOW)
        assert recs["optimal_leg_count"] == 3
        assert recs["optimal_leg_win_rate"] == 80
        assert recs["leg_count_breakdown"]["2"] == {"win_rate": 20, "sample": 5}
        assert recs["tier_breakdown"]["primary"]["sample"] == 10

    def test_size_below_minimum_ignored(self):
        slips = self._slips(3, 3, 4) + self._slips(4, 3, 0)
        assert optimize_tiers(slips, FIXED_NOW)["optimal_leg_count"] == 3

    def test_not_enough_history(self):
        assert optimize_tiers(self._slips(3, 5, 4), FIXED_NOW) == {}


# =============================================================================
# GATE TUNER
# =============================================================================

class TestGateTuner:
    """Gate tuning steps and the floor/ceiling band."""

    def test_relax(self):
        decision = tune_gates(Gates(), 0.7, 10)
        assert decision.action == ACTION_RELAX
        assert decision.gates.min_edge == pytest.approx(0.0076)
        assert decision.gates.min_composite == pytest.approx(57.0)

    def test_tighten(self):
        decision = tune_gates(Gates(), 0.2, 10)
        assert decision.action == ACTION_TIGHTEN
        assert decision.gates.min_edge == pytest.approx(0.0084)
        assert decision.gates.min_hit_rate == pytest.approx(47.25)

    def test_hold(self):
        decision = tune_gates(Gates(), 0.5, 10)
        assert decision.action == ACTION_HOLD
        assert decision.gates == Gates()

    def test_insufficient_data_keeps_gates(self):
        previous = Gates(min_edge=0.02, min_hit_rate=50.0, min_sharpe=0.02, min_composite=65.0)
        decision = tune_gates(previous, 0.1, 3)
        assert decision.action == ACTION_INSUFFICIENT
        assert decision.gates == previous
        assert tune_gates(previous, None, 0).gates == previous

    def test_losing_streak_never_passes_ceiling(self):
        """Sixty tightening cycles pin every gate at its ceiling, never above."""
        gates = Gates()
        for _ in range(60):
            gates = tune_gates(gates, 0.2, 10).gates
            assert gates.min_edge <= 0.05
            assert gates.min_composite <= 95.0
        assert gates.min_edge == 0.05
        assert gates == GATE_CEILINGS

    def test_winning_streak_never_passes_floor(self):
        gates = Gates()
        for _ in range(80):
            gates = tune_gates(gates, 0.9, 10).gates
            assert gates.min_edge >= 0.001
        assert gates == GATE_FLOORS

    def _assert_in_band(self, gates):
        for name in GATE_FIELDS:
            value = getattr(gates, name)
            assert getattr(GATE_FLOORS, name) <= value <= getattr(GATE_CEILINGS, name), name

    def test_alternating_streaks_stay_in_band(self):
        gates = Gates()
        for cycle in range(100):
            win_rate = 0.9 if cycle % 2 == 0 else 0.2
            gates = tune_gates(gates, win_rate, 10).gates
            self._assert_in_band(gates)

    @pytest.mark.parametrize("seed", [3, 17, 2026])
    def test_random_sequences_stay_in_band(self, seed):
        rng = random.Random(seed)
        gates = Gates()
        for _ in range(200):
            gates = tune_gates(gates, rng.random(), rng.randint(0, 30)).gates
            self._assert_in_band(gates)

    def test_out_of_band_previous_clamped(self):
        decision = tune_gates(Gates(min_edge=0.5, min_hit_rate=10.0), 0.5, 10)
        assert decision.gates.min_edge == 0.05
        assert decision.gates.min_hit_rate == 40.0

    def test_bad_band(self):
        with pytest.raises(ValueError):
            tune_gates(Gates(), 0.5, 10, floors=Gates(min_edge=0.1), ceilings=Gates(min_edge=0.05))

    def test_bad_step(self):
        with pytest.raises(ValueError):
            tune_gates(Gates(), 0.5, 10, step=0)

    def test_clamp(self):
        clamped = clamp_gates(Gates(min_edge=1.0, min_hit_rate=0.0, min_sharpe=0.01, min_composite=60.0))
        assert clamped == Gates(min_edge=0.05, min_hit_rate=40.0, min_sharpe=0.01, min_composite=60.0)


class TestPrimaryWinRate:
    """Win rate of decided primary slips inside the window."""

    def test_only_recent_decided_primaries(self):
        shape = [("points", "OVER", "hit", [])]
        slips = [
            settled_slip(shape, "won", 1),
            settled_slip(shape, "lost", 2),
            settled_slip(shape, "won", 3, tier="alternate"),
            settled_slip(shape, "void", 1),
            settled_slip(shape, "won", 30),
        ]
        rate, samples = primary_win_rate(slips, FIXED_NOW)
        assert samples == 2
        assert rate == 0.5

    def test_no_samples(self):
        assert primary_win_rate([], FIXED_NOW) == (None, 0)
