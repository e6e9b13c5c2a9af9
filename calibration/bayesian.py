"""
Bayesian smoothing of category hit rates toward a class prior.

    smoothed = (prior * strength + hits) / (strength + total)
"""

from signals.category_correlation import is_team_category

PRIOR_STRENGTH = 20

CATEGORY_PRIORS = {
    "player_props": 0.52,
    "team_totals": 0.50,
    "team_spreads": 0.50,
    "moneyline": 0.48,
    "default": 0.50,
}

_TEAM_PRIOR_CLASS = {
    "moneyline": "moneyline",
    "spread": "team_spreads",
    "total": "team_totals",
    "team_total": "team_totals",
}


def prior_for(category_key: str) -> float:
    """Class prior: player props lean slightly above a coin flip, moneylines below."""
    if not is_team_category(category_key):
        return CATEGORY_PRIORS["player_props"]
    return CATEGORY_PRIORS[_TEAM_PRIOR_CLASS.get(category_key, "default")]


def bayesian_rate(hits: float, total: float, prior: float, strength: float = PRIOR_STRENGTH) -> float:
    if strength < 0:
        raise ValueError(f"prior strength must be >= 0, got {strength}")
    if strength + total <= 0:
        return prior
    return (prior * strength + hits) / (strength + total)


def smoothed_hit_rate(category_key: str, hits: int, total: int, strength: float = PRIOR_STRENGTH) -> float:
    return bayesian_rate(hits, total, prior_for(category_key), strength)
