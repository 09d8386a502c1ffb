from decimal import Decimal

import pytest

from tally.db import add_rule, get_connection, init_db, load_rules, record_matches
from tally.models import AmountDirection, ClassificationRule, PatternType, RuleScope


def test_init_db_creates_rules_table(tmp_path):
    conn = get_connection(tmp_path / "test.db")
    init_db(conn)
    tables = [row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")]
    assert "rules" in tables


def test_init_db_is_idempotent(db):
    init_db(db)  # Should not raise
    count = db.execute("SELECT count(*) FROM sqlite_master WHERE type='table' AND name='rules'").fetchone()[0]
    assert count == 1


def test_add_and_load_rule_roundtrip(db):
    rule = ClassificationRule(
        id=None, pattern=r"chevron \d+", category="Car and Truck Expenses", subcategory="Fuel",
        vendor="Chevron", pattern_type=PatternType.REGEX, amount_direction=AmountDirection.NEGATIVE,
        amount_min=Decimal("5.00"), amount_max=Decimal("250.00"), scope=RuleScope.GLOBAL,
        priority=3, high_trust=True,
    )
    rule_id = add_rule(db, rule)
    [loaded] = load_rules(db)
    assert loaded.id == rule_id
    assert loaded.pattern_type == PatternType.REGEX
    assert loaded.amount_direction == AmountDirection.NEGATIVE
    assert loaded.amount_min == Decimal("5.00")
    assert loaded.amount_max == Decimal("250.00")
    assert loaded.scope == RuleScope.GLOBAL
    assert loaded.high_trust is True
    assert loaded.match_count == 0


def test_add_rule_rejects_invalid_regex(db):
    with pytest.raises(ValueError):
        add_rule(db, ClassificationRule(id=None, pattern="chev(ron", category="Fuel", pattern_type=PatternType.REGEX))
    assert load_rules(db) == []


def test_load_rules_keeps_insertion_order_and_skips_inactive(db):
    add_rule(db, ClassificationRule(id=None, pattern="B", category="x"))
    add_rule(db, ClassificationRule(id=None, pattern="A", category="x", is_active=False))
    add_rule(db, ClassificationRule(id=None, pattern="C", category="x"))
    assert [r.pattern for r in load_rules(db)] == ["B", "C"]
    assert [r.pattern for r in load_rules(db, include_inactive=True)] == ["B", "A", "C"]


def test_record_matches_increments(db):
    first = add_rule(db, ClassificationRule(id=None, pattern="CHEVRON", category="Fuel"))
    second = add_rule(db, ClassificationRule(id=None, pattern="SHELL", category="Fuel"))
    record_matches(db, {first: 2, second: 1})
    record_matches(db, {first: 3})
    counts = {r.id: r.match_count for r in load_rules(db)}
    assert counts == {first: 5, second: 1}


def test_record_matches_from_two_connections(tmp_path):
    path = tmp_path / "shared.db"
    a = get_connection(path)
    init_db(a)
    rule_id = add_rule(a, ClassificationRule(id=None, pattern="CHEVRON", category="Fuel"))
    b = get_connection(path)
    record_matches(a, {rule_id: 1})
    record_matches(b, {rule_id: 1})
    assert load_rules(a)[0].match_count == 2
    a.close()
    b.close()


def test_record_matches_ignores_unknown_ids(db):
    add_rule(db, ClassificationRule(id=None, pattern="CHEVRON", category="Fuel"))
    record_matches(db, {})
    record_matches(db, {-4: 3})
    assert load_rules(db)[0].match_count == 0
