import logging
from decimal import Decimal

import pytest

from tally.categorizer import (
    CONFIDENCE, DEFAULT_RULES, apply_classification, classify, classify_all, order_rules,
    tally_matches, validate_rule,
)
from tally.models import (
    AmountDirection, ClassificationRule, Kind, MatchEvent, ParsedTransaction, PatternType, RuleScope,
)


def _txn(description, kind=Kind.EXPENSE, amount="10.00"):
    return ParsedTransaction(date="2024-01-02", amount=Decimal(amount), kind=kind, description=description)


def _rule(rule_id, pattern, category="Fuel", **kwargs):
    return ClassificationRule(id=rule_id, pattern=pattern, category=category, **kwargs)


def test_contains_match():
    result = classify(_txn("Chevron Plantation FL"), [_rule(1, "CHEVRON")])
    assert result.category == "Fuel"
    assert result.matched_rule_id == 1
    assert result.confidence == CONFIDENCE[PatternType.CONTAINS]


def test_each_pattern_type():
    txn = _txn("Adobe Creative Cloud")
    cases = [
        (PatternType.EXACT, "adobe creative cloud"),
        (PatternType.STARTS_WITH, "ADOBE"),
        (PatternType.ENDS_WITH, "cloud"),
        (PatternType.REGEX, r"adobe\s+creative"),
    ]
    for pattern_type, pattern in cases:
        result = classify(txn, [_rule(1, pattern, "Software", pattern_type=pattern_type)])
        assert result.matched_rule_id == 1, pattern_type
    assert classify(txn, [_rule(1, "adobe", pattern_type=PatternType.EXACT)]).matched_rule_id is None
    assert classify(txn, [_rule(1, "cloud", pattern_type=PatternType.STARTS_WITH)]).matched_rule_id is None


def test_confidence_is_monotonic_in_specificity():
    assert CONFIDENCE[PatternType.EXACT] >= CONFIDENCE[PatternType.STARTS_WITH]
    assert CONFIDENCE[PatternType.STARTS_WITH] == CONFIDENCE[PatternType.ENDS_WITH]
    assert CONFIDENCE[PatternType.STARTS_WITH] >= CONFIDENCE[PatternType.CONTAINS]
    assert CONFIDENCE[PatternType.CONTAINS] >= CONFIDENCE[PatternType.REGEX]


def test_high_trust_regex():
    rule = _rule(1, r"chevron \d+", pattern_type=PatternType.REGEX, high_trust=True)
    assert classify(_txn("CHEVRON 0042"), [rule]).confidence == 0.95


def test_no_match_is_uncategorized():
    result = classify(_txn("Mystery Vendor"), [_rule(1, "CHEVRON")])
    assert result.category == "Uncategorized"
    assert result.subcategory is None
    assert result.confidence == 0.0
    assert result.matched_rule_id is None


def test_empty_rule_set():
    assert classify(_txn("Chevron"), []).matched_rule_id is None


def test_direction_filter():
    fuel = _rule(1, "CHEVRON", amount_direction=AmountDirection.NEGATIVE)
    income = _rule(2, "CHEVRON", "Refunds", amount_direction=AmountDirection.POSITIVE)
    assert classify(_txn("Chevron refund", Kind.INCOME), [fuel]).matched_rule_id is None
    assert classify(_txn("Chevron", Kind.EXPENSE), [fuel]).matched_rule_id == 1
    assert classify(_txn("Chevron", Kind.EXPENSE), [income]).matched_rule_id is None


def test_directional_rule_only_returned_for_matching_kind():
    rules = [
        _rule(1, "ACME", amount_direction=AmountDirection.NEGATIVE),
        _rule(2, "ACME", amount_direction=AmountDirection.POSITIVE),
        _rule(3, "ACME", amount_direction=AmountDirection.ANY),
    ]
    allowed = {
        Kind.EXPENSE: {AmountDirection.NEGATIVE, AmountDirection.ANY},
        Kind.INCOME: {AmountDirection.POSITIVE, AmountDirection.ANY},
        Kind.TRANSFER: {AmountDirection.ANY},
    }
    by_id = {r.id: r for r in rules}
    for kind, directions in allowed.items():
        for start in range(len(rules)):
            result = classify(_txn("ACME Corp", kind), rules[start:])
            assert by_id[result.matched_rule_id].amount_direction in directions


def test_transfer_only_matches_any():
    rules = [_rule(1, "XFER", amount_direction=AmountDirection.NEGATIVE), _rule(2, "XFER")]
    assert classify(_txn("XFER to savings", Kind.TRANSFER), rules).matched_rule_id == 2


def test_user_rules_before_global():
    global_rule = _rule(1, "CHEVRON", "Car and Truck", scope=RuleScope.GLOBAL, priority=-5)
    user_rule = _rule(2, "CHEVRON", "Fuel", scope=RuleScope.USER, priority=10)
    assert classify(_txn("Chevron"), [global_rule, user_rule]).matched_rule_id == 2


def test_priority_then_insertion_order():
    rules = [_rule(1, "SHELL", "A", priority=5), _rule(2, "SHELL", "B", priority=1), _rule(3, "SHELL", "C", priority=1)]
    assert classify(_txn("Shell Oil"), rules).matched_rule_id == 2
    assert [r.id for r in order_rules(rules)] == [2, 3, 1]


def test_inactive_rules_are_skipped():
    rules = [_rule(1, "SHELL", is_active=False), _rule(2, "SHELL", "Other")]
    assert classify(_txn("Shell"), rules).matched_rule_id == 2


def test_amount_bounds():
    rule = _rule(1, "AMAZON", amount_min=Decimal("20.00"), amount_max=Decimal("100.00"))
    assert classify(_txn("Amazon", amount="10.00"), [rule]).matched_rule_id is None
    assert classify(_txn("Amazon", amount="20.00"), [rule]).matched_rule_id == 1
    assert classify(_txn("Amazon", amount="100.00"), [rule]).matched_rule_id == 1
    assert classify(_txn("Amazon", amount="100.01"), [rule]).matched_rule_id is None


def test_invalid_regex_does_not_match_and_evaluation_continues(caplog):
    rules = [_rule(1, "chev(ron", pattern_type=PatternType.REGEX), _rule(2, "CHEVRON", "Fuel B")]
    with caplog.at_level(logging.WARNING):
        result = classify(_txn("Chevron"), rules)
    assert result.matched_rule_id == 2
    assert "invalid regex" in caplog.text


def test_classify_is_deterministic_and_leaves_counts_alone():
    rules = [_rule(1, "CHEVRON", match_count=7), _rule(2, "SHELL")]
    txn = _txn("Chevron")
    first = classify(txn, rules)
    second = classify(txn, rules)
    assert first == second
    assert rules[0].match_count == 7


def test_subcategory_and_vendor_flow_through():
    rule = _rule(1, "CHEVRON", "Car and Truck Expenses", subcategory="Fuel", vendor="Chevron")
    txn = _txn("CHEVRON 0202648")
    result = classify(txn, [rule])
    assert (result.subcategory, result.vendor) == ("Fuel", "Chevron")
    updated = apply_classification(txn, result)
    assert updated.payee == "Chevron"
    assert updated.subcategory == "Fuel"
    assert txn.category == "Uncategorized"


def test_apply_classification_review_flag():
    txn = _txn("Chevron")
    matched = classify(txn, [_rule(1, "CHEVRON")])
    assert apply_classification(txn, matched).needs_review is False
    assert apply_classification(txn, matched, threshold=0.9).needs_review is True
    unmatched = classify(txn, [])
    assert apply_classification(txn, unmatched).needs_review is True


def test_unsaved_rule_match_does_not_need_review():
    txn = _txn("STAPLES 123")
    result = classify(txn, [_rule(None, "staples", category="Office Expenses")])
    assert result.matched_rule_id is None
    assert result.confidence == 0.8
    classified = apply_classification(txn, result)
    assert classified.category == "Office Expenses"
    assert classified.needs_review is False


def test_classify_all_emits_match_events():
    txns = [_txn("Chevron"), _txn("Mystery"), _txn("Chevron 2"), _txn("Shell")]
    rules = [_rule(1, "CHEVRON"), _rule(2, "SHELL")]
    classified, events = classify_all(txns, rules)
    assert [t.category for t in classified] == ["Fuel", "Uncategorized", "Fuel", "Fuel"]
    assert events == [MatchEvent(1, 0), MatchEvent(1, 2), MatchEvent(2, 3)]
    assert tally_matches(events) == {1: 2, 2: 1}
    assert tally_matches([]) == {}


def test_validate_rule():
    validate_rule(_rule(None, "CHEVRON"))
    bad = [
        _rule(None, "   "),
        _rule(None, "CHEVRON", category=""),
        _rule(None, "chev(ron", pattern_type=PatternType.REGEX),
        _rule(None, "CHEVRON", amount_min=Decimal("50"), amount_max=Decimal("10")),
    ]
    for rule in bad:
        with pytest.raises(ValueError):
            validate_rule(rule)


def test_default_rules_are_valid_global_rules():
    assert DEFAULT_RULES
    for rule in DEFAULT_RULES:
        validate_rule(rule)
        assert rule.scope == RuleScope.GLOBAL
        assert rule.id < 0
    assert len({r.id for r in DEFAULT_RULES}) == len(DEFAULT_RULES)


def test_default_rules():
    fuel = classify(_txn("Chevron Plantation FL"), DEFAULT_RULES)
    assert fuel.category == "Car and Truck Expenses"
    assert fuel.subcategory == "Fuel"
    assert classify(_txn("Remote Online Deposit 1", Kind.INCOME), DEFAULT_RULES).category == "Gross Receipts or Sales"
    assert classify(_txn("Electronic Payment: Comcast"), DEFAULT_RULES).category == "Utilities"
    # whole words only
    assert classify(_txn("BPX Holdings"), DEFAULT_RULES).matched_rule_id is None
    assert classify(_txn("Parental Leave"), DEFAULT_RULES).matched_rule_id is None


def test_default_fuel_rule_ignores_income():
    result = classify(_txn("Chevron refund", Kind.INCOME), DEFAULT_RULES)
    assert result.category != "Car and Truck Expenses"


def test_default_rules_used_when_no_rules_given():
    assert classify(_txn("Starbucks #123")).category == "Meals and Entertainment"
    classified, events = classify_all([_txn("Shell Oil 4455")])
    assert classified[0].subcategory == "Fuel"
    assert events[0].rule_id < 0
