"""
Tests for rule conditions, the rule model and the rule store.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from alertflow.services.notifications import (
    Channel,
    Condition,
    Priority,
    Rule,
    RuleStore,
    RuleValidationError,
    default_rules,
    select_rule,
)
from alertflow.services.notifications.rules import (
    evaluate_condition,
    evaluate_conditions,
    resolve_field,
)

from .conftest import BASE_TIME, make_event, make_rule


def _context(data: dict | None = None, **event) -> dict:
    return make_event(data=data or {}, **event).context()


# =============================================================================
# Field Resolution
# =============================================================================


class TestResolveField:
    """Tests for dotted-path field resolution."""

    def test_bare_name_resolves_in_data(self):
        assert resolve_field(_context({"dealValue": 5}), "dealValue") == 5

    def test_event_attribute_resolves_on_event(self):
        assert resolve_field(_context(type="nba_priority"), "type") == "nba_priority"

    def test_explicit_data_prefix(self):
        assert resolve_field(_context({"dealValue": 5}), "data.dealValue") == 5

    def test_nested_path(self):
        context = _context({"account": {"tier": "gold"}})
        assert resolve_field(context, "account.tier") == "gold"

    def test_missing_field_is_false_for_every_operator(self):
        context = _context({})
        for operator in ("equals", "not_equals", "not_contains", "not_in"):
            condition = Condition("absent", operator, [1])
            assert evaluate_condition(condition, context) is False


# =============================================================================
# Operators
# =============================================================================


class TestOperators:
    """Tests for individual condition operators."""

    @pytest.mark.parametrize(
        "operator,value,expected",
        [
            ("equals", 150_000, True),
            ("equals", 150_000.0, True),
            ("not_equals", 1, True),
            ("greater_than", 100_000, True),
            ("greater_than", 150_000, False),
            ("less_than", 200_000, True),
            ("in", [1, 150_000], True),
            ("not_in", [1, 2], True),
        ],
    )
    def test_numeric_operators(self, operator, value, expected):
        context = _context({"dealValue": 150_000})
        assert evaluate_condition(Condition("dealValue", operator, value), context) is expected

    def test_contains_on_string(self):
        context = _context({"note": "competitor mentioned pricing"})
        assert evaluate_condition(Condition("note", "contains", "pricing"), context)
        assert evaluate_condition(Condition("note", "not_contains", "budget"), context)

    def test_contains_on_list(self):
        context = _context({"tags": ["renewal", "enterprise"]})
        assert evaluate_condition(Condition("tags", "contains", "renewal"), context)

    def test_greater_than_on_non_numbers_is_false(self):
        context = _context({"stage": "negotiation"})
        assert evaluate_condition(Condition("stage", "greater_than", 3), context) is False

    def test_compares_iso_timestamps(self):
        context = _context({"dueAt": "2024-01-20T00:00:00Z"})
        condition = Condition("dueAt", "greater_than", "2024-01-15T00:00:00Z")
        assert evaluate_condition(condition, context) is True

    def test_in_requires_list_value(self):
        context = _context({"insightType": "next_steps"})
        assert evaluate_condition(Condition("insightType", "in", "next_steps"), context) is False


# =============================================================================
# Flat AND/OR Fold
# =============================================================================


class TestEvaluateConditions:
    """Conditions fold left to right with no precedence."""

    def test_empty_list_matches(self):
        assert evaluate_conditions([], _context()) is True

    def test_and_chain(self):
        context = _context({"a": 1, "b": 2})
        conditions = [Condition("a", "equals", 1), Condition("b", "equals", 3)]
        assert evaluate_conditions(conditions, context) is False

    def test_a_and_b_or_c(self):
        """a AND b OR c evaluates as (a and b) or c."""
        context = _context({"a": 0, "b": 0, "c": 1})
        conditions = [
            Condition("a", "equals", 1, logic="AND"),
            Condition("b", "equals", 1, logic="OR"),
            Condition("c", "equals", 1),
        ]
        assert evaluate_conditions(conditions, context) is True

    def test_a_or_b_and_c(self):
        """a OR b AND c evaluates as (a or b) and c, unlike boolean precedence."""
        context = _context({"a": 1, "b": 0, "c": 0})
        conditions = [
            Condition("a", "equals", 1, logic="OR"),
            Condition("b", "equals", 1, logic="AND"),
            Condition("c", "equals", 1),
        ]
        assert evaluate_conditions(conditions, context) is False


# =============================================================================
# Rule Model
# =============================================================================


class TestRule:
    """Tests for rule validation and serialization."""

    def test_from_dict(self):
        rule = Rule.from_dict(
            {
                "name": "Large deals",
                "conditions": [{"field": "dealValue", "operator": "greater_than", "value": 10}],
                "actions": [{"type": "create_notification", "config": {"title": "Hi {dealName}"}}],
                "priority": "high",
                "channels": ["in_app", "slack"],
                "cooldown_minutes": 5,
            },
            rule_id="large-deals",
        )

        assert rule.id == "large-deals"
        assert rule.priority == Priority.HIGH
        assert rule.channels == [Channel.IN_APP, Channel.SLACK]
        assert rule.template == {"title": "Hi {dealName}"}

    def test_unknown_operator_rejected(self):
        with pytest.raises(RuleValidationError) as exc_info:
            Rule.from_dict(
                {"name": "Bad", "conditions": [{"field": "x", "operator": "matches", "value": 1}]}
            )
        assert any("operator" in e for e in exc_info.value.errors)

    def test_unknown_channel_rejected(self):
        with pytest.raises(RuleValidationError):
            Rule.from_dict({"name": "Bad", "channels": ["carrier_pigeon"]})

    def test_missing_name_rejected(self):
        with pytest.raises(RuleValidationError):
            Rule.from_dict({"conditions": []})

    def test_round_trip_keeps_definition(self):
        rule = default_rules()[0]
        restored = Rule.from_dict(rule.to_dict())
        assert restored.id == rule.id
        assert restored.conditions == rule.conditions
        assert restored.channels == rule.channels

    def test_user_scoped_rule(self):
        rule = make_rule(user_id="user-2")
        assert rule.applies_to("user-2")
        assert not rule.applies_to("user-1")


class TestSelectRule:
    """Tests for choosing among matching rules."""

    def test_highest_priority_wins(self):
        low = make_rule("low", priority=Priority.LOW)
        high = make_rule("high", priority=Priority.HIGH)
        assert select_rule([low, high]) is high

    def test_first_wins_on_tie(self):
        first = make_rule("first", priority=Priority.HIGH)
        second = make_rule("second", priority=Priority.HIGH)
        assert select_rule([first, second]) is first

    def test_no_matches(self):
        assert select_rule([]) is None


# =============================================================================
# Rule Store
# =============================================================================


class TestRuleStore:
    """Tests for matching, cooldowns and daily caps."""

    def test_builtin_churn_rule_matches(self):
        store = RuleStore()
        for rule in default_rules():
            store.add(rule)

        matches = store.match(make_event(), BASE_TIME)

        assert [r.id for r in matches] == ["rule-churn-risk"]

    def test_builtin_rules_gate_on_type(self):
        store = RuleStore()
        for rule in default_rules():
            store.add(rule)

        event = make_event(type="pipeline_health")
        assert store.match(event, BASE_TIME) == []

    def test_inactive_rule_skipped(self):
        store = RuleStore()
        store.add(make_rule(is_active=False))
        assert store.match(make_event(), BASE_TIME) == []

    def test_add_rejects_invalid_rule(self):
        store = RuleStore()
        with pytest.raises(RuleValidationError):
            store.add(make_rule(channels=[]))

    def test_cooldown_blocks_refire(self):
        store = RuleStore()
        rule = store.add(make_rule(cooldown_minutes=15))
        store.record_firing(rule, "user-1", BASE_TIME)

        assert store.match(make_event(), BASE_TIME + timedelta(minutes=10)) == []
        assert store.match(make_event(), BASE_TIME + timedelta(minutes=15)) == [rule]

    def test_cooldown_is_per_user(self):
        store = RuleStore()
        rule = store.add(make_rule(cooldown_minutes=15))
        store.record_firing(rule, "user-1", BASE_TIME)

        assert store.match(make_event(user_id="user-2"), BASE_TIME) == [rule]

    def test_daily_cap(self):
        store = RuleStore()
        rule = store.add(make_rule(max_per_day=2))
        store.record_firing(rule, "user-1", BASE_TIME)
        store.record_firing(rule, "user-1", BASE_TIME + timedelta(minutes=1))

        assert store.match(make_event(), BASE_TIME + timedelta(hours=1)) == []
        # The first firing leaves the trailing 24h window
        assert store.match(make_event(), BASE_TIME + timedelta(days=1)) == [rule]

    def test_cleanup_expired(self):
        store = RuleStore()
        rule = store.add(make_rule())
        store.record_firing(rule, "user-1", BASE_TIME)

        assert store.cleanup_expired(BASE_TIME + timedelta(hours=1)) == 0
        assert store.cleanup_expired(BASE_TIME + timedelta(days=2)) == 1
