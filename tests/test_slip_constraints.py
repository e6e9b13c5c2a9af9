"""
TEST_SLIP_CONSTRAINTS.PY - Within-slip legality rules
=====================================================

Tests verify each rule independently:
1. event_cap     - at most 2 legs per grouping key
2. same_subject  - a subject appears once per slip
3. correlated    - team markets on one event are entangled
4. category_cap  - at most 2 legs per category
5. min_line      - blocks/steals need line >= 1.5

Run with: python -m pytest tests/test_slip_constraints.py -v
"""

import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from conftest import make_leg
from validators.slip_constraints import (
    RULE_CATEGORY_CAP,
    RULE_CORRELATED,
    RULE_EVENT_CAP,
    RULE_MIN_LINE,
    RULE_SAME_SUBJECT,
    ConstraintConfig,
    first_violation,
    is_legal_combination,
    validate_leg,
)


class TestRules:
    """One test per rule."""

    def test_legal_leg(self):
        legs = [make_leg("A", "points", grouping_key="g1")]
        check = validate_leg(make_leg("B", "rebounds", grouping_key="g1"), legs)
        assert check.ok
        assert bool(check)

    def test_event_cap(self):
        legs = [make_leg("A", "points", grouping_key="g1"), make_leg("B", "rebounds", grouping_key="g1")]
        check = validate_leg(make_leg("C", "assists", grouping_key="g1"), legs)
        assert not check
        assert check.rule == RULE_EVENT_CAP

    def test_event_cap_configurable(self):
        legs = [make_leg("A", "points", grouping_key="g1")]
        check = validate_leg(make_leg("B", "rebounds", grouping_key="g1"), legs, config=ConstraintConfig(event_cap=1))
        assert check.rule == RULE_EVENT_CAP

    def test_missing_grouping_key_is_uncapped(self):
        legs = [make_leg("A", "points"), make_leg("B", "rebounds")]
        assert validate_leg(make_leg("C", "assists"), legs).ok

    def test_same_subject(self):
        legs = [make_leg("Nikola Jokic", "rebounds")]
        check = validate_leg(make_leg("Nikola Jokić", "assists"), legs)
        assert check.rule == RULE_SAME_SUBJECT

    def test_same_subject_composite(self):
        """A composite and its constituent on one subject never share a slip."""
        legs = [make_leg("A", "pra")]
        assert not validate_leg(make_leg("A", "points"), legs).ok

    def test_team_stack_on_one_event(self):
        legs = [make_leg("Celtics", "moneyline", side="HOME", grouping_key="g1", market_type="team_bet")]
        candidate = make_leg("Knicks", "spread", side="AWAY", grouping_key="g1", market_type="team_bet")
        check = validate_leg(candidate, legs)
        assert check.rule == RULE_CORRELATED

    def test_team_markets_on_different_events(self):
        legs = [make_leg("Celtics", "moneyline", side="HOME", grouping_key="g1", market_type="team_bet")]
        candidate = make_leg("Knicks", "spread", side="AWAY", grouping_key="g2", market_type="team_bet")
        assert validate_leg(candidate, legs).ok

    def test_category_cap(self):
        legs = [make_leg("A", "points", grouping_key="g1"), make_leg("B", "points", grouping_key="g2")]
        check = validate_leg(make_leg("C", "points", grouping_key="g3"), legs)
        assert check.rule == RULE_CATEGORY_CAP

    def test_min_line(self):
        assert validate_leg(make_leg("A", "blocks", line=0.5), []).rule == RULE_MIN_LINE
        assert validate_leg(make_leg("A", "steals", line=None), []).rule == RULE_MIN_LINE
        assert validate_leg(make_leg("A", "blocks", line=1.5), []).ok


class TestCombinations:
    """Whole-combination checks."""

    def test_first_violation(self):
        legs = [
            make_leg("A", "points", grouping_key="g1"),
            make_leg("B", "rebounds", grouping_key="g1"),
            make_leg("C", "assists", grouping_key="g1"),
        ]
        assert first_violation(legs).rule == RULE_EVENT_CAP
        assert not is_legal_combination(legs)

    def test_legal_combination(self):
        legs = [
            make_leg("A", "points", grouping_key="g1"),
            make_leg("B", "rebounds", grouping_key="g1"),
            make_leg("C", "assists", grouping_key="g2"),
        ]
        assert first_violation(legs) is None
        assert is_legal_combination(legs)

    def test_rejection_logged(self, caplog):
        legs = [make_leg("A", "points", grouping_key="g1"), make_leg("A", "rebounds", grouping_key="g2")]
        with caplog.at_level(logging.DEBUG, logger="validators.slip_constraints"):
            first_violation(legs)
        assert any(
            r.name == "validators.slip_constraints" and "same_subject" in r.getMessage()
            for r in caplog.records
        )

    def test_does_not_mutate(self):
        legs = [make_leg("A", "points", grouping_key="g1")]
        snapshot = [leg.to_dict() for leg in legs]
        validate_leg(make_leg("A", "rebounds"), legs)
        assert [leg.to_dict() for leg in legs] == snapshot
