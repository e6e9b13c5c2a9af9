"""
TEST_CORE.PY - Config parsing, staking, structured logging, error envelope
==========================================================================

Run with: python -m pytest tests/test_core.py -v
"""

import json
import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.error_responses import (
    HTTP_STATUS_BY_CODE,
    ErrorCode,
    InvalidParameterError,
    PersistenceError,
    SlipEngineError,
    make_error,
)
from core.structured_logging import REDACTED, JSONFormatter, cycle_scope, get_correlation_id
from env_config import get_env, get_env_bool, get_env_float, get_env_int, parse_feed_urls
from tiering import TIER_ALTERNATE, TIER_PRIMARY, kelly_fraction, recommended_stake, tier_for_rank


# =============================================================================
# CONFIG
# =============================================================================

class TestEnvConfig:
    """Environment parsing helpers."""

    def test_feed_urls_keep_order(self):
        feeds = parse_feed_urls("hit_rate=http://a/feed, sharp=http://b/feed?x=1,junk,=http://c")
        assert list(feeds) == ["hit_rate", "sharp"]
        assert feeds["sharp"] == "http://b/feed?x=1"

    def test_feed_urls_empty(self):
        assert parse_feed_urls(None) == {}
        assert parse_feed_urls("") == {}

    def test_get_env_fallback_names(self, monkeypatch):
        monkeypatch.delenv("SLIP_TEST_A", raising=False)
        monkeypatch.setenv("SLIP_TEST_B", "  value ")
        assert get_env("SLIP_TEST_A", "SLIP_TEST_B") == "value"
        assert get_env("SLIP_TEST_A", default="x") == "x"

    def test_bool(self, monkeypatch):
        monkeypatch.setenv("SLIP_TEST_FLAG", "off")
        assert get_env_bool("SLIP_TEST_FLAG", True) is False
        monkeypatch.setenv("SLIP_TEST_FLAG", "maybe")
        assert get_env_bool("SLIP_TEST_FLAG", True) is True

    def test_bad_numbers_fall_back(self, monkeypatch):
        monkeypatch.setenv("SLIP_TEST_NUM", "ten")
        assert get_env_float("SLIP_TEST_NUM", 2.5) == 2.5
        assert get_env_int("SLIP_TEST_NUM", 3) == 3
        monkeypatch.setenv("SLIP_TEST_NUM", "7")
        assert get_env_int("SLIP_TEST_NUM", 3) == 7


# =============================================================================
# STAKING
# =============================================================================

class TestTiering:
    """Tiers by rank and half-Kelly stakes."""

    def test_tier_for_rank(self):
        assert tier_for_rank(1) == TIER_PRIMARY
        assert tier_for_rank(2) == TIER_ALTERNATE
        assert tier_for_rank(5) == TIER_ALTERNATE

    def test_stakes(self):
        assert recommended_stake(0.3, 264, TIER_PRIMARY) == 1.74
        assert recommended_stake(0.3, 264, TIER_ALTERNATE) == 0.87

    def test_risk_cap(self):
        assert kelly_fraction(0.9, 100) == 0.03
        assert recommended_stake(0.9, 100, TIER_PRIMARY) == 3.0

    def test_no_edge_no_stake(self):
        assert kelly_fraction(0.2, 264) == 0.0
        assert recommended_stake(0.2, 264, TIER_PRIMARY, bankroll=1000) == 0.0


# =============================================================================
# LOGGING
# =============================================================================

def _record(**extra):
    record = logging.LogRecord("slip_pipeline", logging.INFO, __file__, 10, "Selected %d slip(s)", (3,), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestStructuredLogging:
    """JSON lines with correlation ids and redaction."""

    def test_json_line(self):
        entry = json.loads(JSONFormatter().format(_record(period="2026-10-19")))
        assert entry["level"] == "INFO"
        assert entry["logger"] == "slip_pipeline"
        assert entry["message"] == "Selected 3 slip(s)"
        assert entry["period"] == "2026-10-19"

    def test_redaction(self):
        entry = json.loads(JSONFormatter().format(_record(
            feed_token="abc", config={"webhook_url": "http://hook", "timeout": 5},
        )))
        assert entry["feed_token"] == REDACTED
        assert entry["config"] == {"webhook_url": REDACTED, "timeout": 5}

    def test_cycle_scope(self):
        assert get_correlation_id() is None
        with cycle_scope("selection") as cycle_id:
            assert cycle_id.startswith("cyc-selection-")
            entry = json.loads(JSONFormatter().format(_record()))
            assert entry["correlation_id"] == cycle_id
        assert get_correlation_id() is None


# =============================================================================
# ERRORS
# =============================================================================

class TestErrorEnvelope:
    """Standard error body and status mapping."""

    def test_make_error(self):
        body = make_error(ErrorCode.INVALID_PARAMETER, "leg_count must be >= 2", field="leg_count", request_id="req-1")
        assert body["status"] == "error"
        assert body["error"] == "leg_count must be >= 2"
        assert body["errors"] == [
            {"code": "INVALID_PARAMETER", "message": "leg_count must be >= 2", "field": "leg_count"},
        ]
        assert body["request_id"] == "req-1"
        assert "timestamp" in body

    def test_no_timestamp(self):
        assert "timestamp" not in make_error(ErrorCode.NOT_FOUND, "missing", include_timestamp=False)

    @pytest.mark.parametrize("error,status", [
        (InvalidParameterError("bad"), 400),
        (PersistenceError("disk full"), 503),
        (SlipEngineError("gone", code=ErrorCode.NOT_FOUND), 404),
        (SlipEngineError("boom"), 500),
    ])
    def test_http_status(self, error, status):
        assert error.http_status == status

    def test_insufficient_quality_is_not_an_http_error(self):
        assert HTTP_STATUS_BY_CODE[ErrorCode.INSUFFICIENT_QUALITY] == 200
