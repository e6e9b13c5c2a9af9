"""
tests/conftest.py - Pytest configuration and fixtures

- Puts the repo root on sys.path so flat modules import the same way the
  app imports them
- memory_db: a fresh in-memory SQLite database per test
- Builders for estimated candidate legs and settled history
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database  # noqa: E402
from core.slip_types import CandidateLeg, SettledLeg, SettledSlip  # noqa: E402
from identity.name_normalizer import normalize_subject_name  # noqa: E402
from signals.category_correlation import normalize_category, volatility_for  # noqa: E402

FIXED_NOW = datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    """A fixed cycle time (10:00 ET on 2026-10-19)."""
    return FIXED_NOW


@pytest.fixture
def memory_db():
    """
    Fresh in-memory database for one test.

    Yields the module so tests can call repository functions directly.
    """
    assert database.init_database("sqlite://")
    yield database
    database.close_database()


def make_leg(
    subject,
    category="points",
    side="OVER",
    probability=0.70,
    edge=1.0,
    sources=("hit_rate",),
    grouping_key="",
    order=0,
    price=-110,
    line=20.5,
    sport="NBA",
    defense_rank=None,
    market_type="player_prop",
):
    """An already-estimated CandidateLeg."""
    category_key = normalize_category(category)
    return CandidateLeg(
        subject=subject,
        subject_key=normalize_subject_name(subject),
        category=category,
        category_key=category_key,
        side=side,
        line=line,
        price=price,
        grouping_key=grouping_key,
        sport=sport,
        market_type=market_type,
        defense_rank=defense_rank,
        sources=list(sources),
        raw_scores={s: {} for s in sources},
        probability=probability,
        edge=edge,
        volatility=volatility_for(category_key),
        order=order,
    )


@pytest.fixture
def leg_factory():
    return make_leg


def settled_leg(category, side, result, days_ago, now=FIXED_NOW, sport="NBA", defense_rank=None, subject="Player"):
    return SettledLeg(
        subject=subject,
        category=category,
        side=side,
        result=result,
        settled_at=now - timedelta(days=days_ago),
        sport=sport,
        defense_rank=defense_rank,
    )


def settled_slip(legs, outcome, days_ago, tier="primary", now=FIXED_NOW):
    """legs: list of (category, side, result, sources)."""
    return SettledSlip(
        legs=[
            {"category_key": c, "side": s, "result": r, "sources": list(src)}
            for c, s, r, src in legs
        ],
        outcome=outcome,
        settled_at=now - timedelta(days=days_ago),
        tier=tier,
    )


def engine_record(subject, category, hit_rate, game_id, side="over", line=20.5, odds=-110, **extra):
    """A raw engine feed record in the shape the normalizer accepts."""
    record = {
        "player_name": subject,
        "prop_type": category,
        "side": side,
        "line": line,
        "odds": odds,
        "hit_rate": hit_rate,
        "game_id": game_id,
        "sport": "nba",
    }
    record.update(extra)
    return record


@pytest.fixture
def six_record_batches():
    """Two engines, six distinct subjects on six games; all clear the default gates."""
    return {
        "hit_rate": [
            engine_record("Jayson Tatum", "points", 74, "g1"),
            engine_record("Nikola Jokic", "rebounds", 72, "g2", line=12.5),
            engine_record("Trae Young", "assists", 70, "g3", line=10.5),
            engine_record("Stephen Curry", "threes", 71, "g4", line=4.5),
        ],
        "sharp_feed": [
            {"player": "Devin Booker", "stat_type": "points", "recommendation": "OVER",
             "line": 27.5, "price": -115, "sharp_score": 80, "event_id": "g5"},
            {"player": "Bam Adebayo", "stat_type": "rebounds", "recommendation": "OVER",
             "line": 9.5, "price": -105, "sharp_score": 76, "event_id": "g6"},
            {"player": "", "stat_type": "points", "recommendation": "OVER"},
        ],
    }
