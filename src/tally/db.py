import sqlite3
from decimal import Decimal
from pathlib import Path

from tally.categorizer import validate_rule
from tally.models import AmountDirection, ClassificationRule, PatternType, RuleScope

SCHEMA = """
CREATE TABLE IF NOT EXISTS rules (
    id INTEGER PRIMARY KEY,
    pattern TEXT NOT NULL,
    pattern_type TEXT NOT NULL DEFAULT 'contains',
    category TEXT NOT NULL,
    subcategory TEXT,
    vendor TEXT,
    amount_direction TEXT NOT NULL DEFAULT 'any',
    amount_min TEXT,
    amount_max TEXT,
    scope TEXT NOT NULL DEFAULT 'user',
    priority INTEGER DEFAULT 0,
    is_active INTEGER DEFAULT 1,
    high_trust INTEGER DEFAULT 0,
    match_count INTEGER DEFAULT 0,
    created_at TEXT DEFAULT (datetime('now'))
);
"""


def get_connection(db_path: Path) -> sqlite3.Connection:
    """Open a SQLite connection with WAL mode and foreign keys enabled."""
    conn = sqlite3.connect(str(db_path))
    conn.execute("PRAGMA journal_mode=WAL")
    conn.execute("PRAGMA foreign_keys=ON")
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    """Create the rules table. Idempotent."""
    conn.executescript(SCHEMA)


def _decimal_text(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def add_rule(conn: sqlite3.Connection, rule: ClassificationRule) -> int:
    """Validate and store a rule, returning its new id. Raises ValueError on a malformed rule."""
    validate_rule(rule)
    cursor = conn.execute(
        "INSERT INTO rules (pattern, pattern_type, category, subcategory, vendor, amount_direction, "
        "amount_min, amount_max, scope, priority, is_active, high_trust) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            rule.pattern, rule.pattern_type.value, rule.category, rule.subcategory, rule.vendor,
            rule.amount_direction.value, _decimal_text(rule.amount_min), _decimal_text(rule.amount_max),
            rule.scope.value, rule.priority, int(rule.is_active), int(rule.high_trust),
        ),
    )
    conn.commit()
    return cursor.lastrowid


def _row_to_rule(row: sqlite3.Row) -> ClassificationRule:
    return ClassificationRule(
        id=row["id"],
        pattern=row["pattern"],
        category=row["category"],
        pattern_type=PatternType(row["pattern_type"]),
        subcategory=row["subcategory"],
        vendor=row["vendor"],
        amount_direction=AmountDirection(row["amount_direction"]),
        amount_min=Decimal(row["amount_min"]) if row["amount_min"] is not None else None,
        amount_max=Decimal(row["amount_max"]) if row["amount_max"] is not None else None,
        scope=RuleScope(row["scope"]),
        priority=row["priority"],
        is_active=bool(row["is_active"]),
        high_trust=bool(row["high_trust"]),
        match_count=row["match_count"],
    )


def load_rules(conn: sqlite3.Connection, include_inactive: bool = False) -> list[ClassificationRule]:
    """Stored rules in insertion order."""
    sql = "SELECT * FROM rules"
    if not include_inactive:
        sql += " WHERE is_active = 1"
    rows = conn.execute(sql + " ORDER BY id").fetchall()
    return [_row_to_rule(row) for row in rows]


def record_matches(conn: sqlite3.Connection, deltas: dict[int, int]) -> None:
    """Apply per-rule match deltas from one classification pass in a single commit."""
    if not deltas:
        return
    with conn:
        conn.executemany(
            "UPDATE rules SET match_count = match_count + ? WHERE id = ?",
            [(count, rule_id) for rule_id, count in deltas.items()],
        )
