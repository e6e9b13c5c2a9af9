"""
Environment Configuration Helper
================================
Centralized env var loading with fallbacks and typed defaults for the slip
engine. Tuning constants that are not deployment-specific live as
CONSTANTS blocks in their own modules; this file only carries what an
operator may override per environment.
"""

import os
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def get_env(*names: str, default: Any = None) -> Optional[str]:
    """
    Get environment variable with fallback names.

    Tries each name in order, returns first non-empty value.

    Example:
        get_env("SLIP_DATABASE_URL", "DATABASE_URL")

    Args:
        *names: Variable names to try in order
        default: Default value if none found

    Returns:
        First non-empty value found, or default
    """
    for name in names:
        value = os.getenv(name)
        if value and str(value).strip():
            return value.strip()
    return default


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean env var (true/false/1/0)."""
    value = os.getenv(name, "").lower().strip()
    if value in ("true", "1", "yes", "on"):
        return True
    if value in ("false", "0", "no", "off"):
        return False
    return default


def get_env_float(name: str, default: float) -> float:
    """Get float env var; unparseable values fall back to default with a warning."""
    value = get_env(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, value, default)
        return default


def get_env_int(name: str, default: int) -> int:
    """Get int env var; unparseable values fall back to default with a warning."""
    value = get_env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r, using %s", name, value, default)
        return default


def parse_feed_urls(raw: Optional[str]) -> Dict[str, str]:
    """
    Parse "engine=url,engine2=url2" into an ordered dict.

    Order is preserved: the first engine listed is treated as the primary
    source of any leg it proposes.
    """
    feeds: Dict[str, str] = {}
    for chunk in (raw or "").split(","):
        if "=" not in chunk:
            continue
        engine, url = chunk.split("=", 1)
        engine, url = engine.strip(), url.strip()
        if engine and url:
            feeds[engine] = url
    return feeds


# ============================================================================
# CENTRALIZED CONFIG (loaded once at import)
# ============================================================================

class Config:
    """Centralized configuration from env vars."""

    ENGINE_VERSION = "1.4.0"
    TIMEZONE = "America/New_York"

    # Database
    DATABASE_URL = get_env("SLIP_DATABASE_URL", "DATABASE_URL")

    # Signal feeds (engine=url pairs) and fan-out timeout
    SIGNAL_FEED_URLS = parse_feed_urls(get_env("SIGNAL_FEED_URLS"))
    SIGNAL_FEED_TOKEN = get_env("SIGNAL_FEED_TOKEN")
    SIGNAL_TIMEOUT_S = get_env_float("SIGNAL_TIMEOUT_S", 10.0)

    # Outbound cycle summaries
    NOTIFY_WEBHOOK_URL = get_env("NOTIFY_WEBHOOK_URL")
    NOTIFY_TIMEOUT_S = get_env_float("NOTIFY_TIMEOUT_S", 5.0)

    # Selection defaults
    SLIP_LEG_COUNT = get_env_int("SLIP_LEG_COUNT", 3)
    SLIPS_PER_CYCLE = get_env_int("SLIPS_PER_CYCLE", 3)
    LEG_PROBABILITY_FLOOR = get_env_float("LEG_PROBABILITY_FLOOR", 0.55)
    LEG_PROBABILITY_FLOOR_RELAXED = get_env_float("LEG_PROBABILITY_FLOOR_RELAXED", 0.45)
    CANDIDATE_POOL_CAP = get_env_int("CANDIDATE_POOL_CAP", 18)
    MAX_SLIPS_PER_SUBJECT = get_env_int("MAX_SLIPS_PER_SUBJECT", 2)
    TRUSTED_SOURCE = get_env("TRUSTED_SOURCE", default="hit_rate")
    BANKROLL_UNITS = get_env_float("BANKROLL_UNITS", 100.0)

    # Scheduler (ET)
    SCHEDULER_ENABLED = get_env_bool("SCHEDULER_ENABLED", True)
    CALIBRATION_HOUR = get_env_int("CALIBRATION_HOUR", 5)
    SELECTION_HOUR = get_env_int("SELECTION_HOUR", 10)

    @classmethod
    def log_status(cls):
        """Log config status at boot (no secrets, just availability)."""
        status = {
            "db": bool(cls.DATABASE_URL),
            "feeds": len(cls.SIGNAL_FEED_URLS),
            "feed_token": bool(cls.SIGNAL_FEED_TOKEN),
            "notify": bool(cls.NOTIFY_WEBHOOK_URL),
            "scheduler": cls.SCHEDULER_ENABLED,
        }

        status_str = " ".join(f"{k}={v}" for k, v in status.items())
        logger.info("ENV OK: %s", status_str)

        return status
