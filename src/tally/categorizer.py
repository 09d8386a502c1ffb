import logging
import re
from collections import Counter
from dataclasses import replace
from decimal import Decimal

from tally.models import (
    UNCATEGORIZED, AmountDirection, ClassificationResult, ClassificationRule, Kind, MatchEvent,
    ParsedTransaction, PatternType, RuleScope,
)

logger = logging.getLogger(__name__)

REVIEW_THRESHOLD = 0.5

# More specific pattern types never score below less specific ones.
CONFIDENCE = {
    PatternType.REGEX: 0.7,
    PatternType.CONTAINS: 0.8,
    PatternType.STARTS_WITH: 0.85,
    PatternType.ENDS_WITH: 0.85,
    PatternType.EXACT: 0.9,
}
HIGH_TRUST_CONFIDENCE = 0.95

_SCOPE_TIER = {RuleScope.USER: 0, RuleScope.GLOBAL: 1}

NO_MATCH = ClassificationResult(
    category=UNCATEGORIZED, subcategory=None, confidence=0.0, matched_rule_id=None,
)


def _matches(description: str, pattern: str, pattern_type: PatternType) -> bool:
    desc_upper = description.strip().upper()
    pat_upper = pattern.strip().upper()
    if pattern_type is PatternType.CONTAINS:
        return pat_upper in desc_upper
    elif pattern_type is PatternType.EXACT:
        return desc_upper == pat_upper
    elif pattern_type is PatternType.STARTS_WITH:
        return desc_upper.startswith(pat_upper)
    elif pattern_type is PatternType.ENDS_WITH:
        return desc_upper.endswith(pat_upper)
    elif pattern_type is PatternType.REGEX:
        try:
            return bool(re.search(pattern, description, re.IGNORECASE))
        except re.error as e:
            logger.warning("skipping rule with invalid regex %r: %s", pattern, e)
            return False
    return False


def _direction_allows(direction: AmountDirection, kind: Kind) -> bool:
    if direction is AmountDirection.POSITIVE:
        return kind is Kind.INCOME
    if direction is AmountDirection.NEGATIVE:
        return kind is Kind.EXPENSE
    return True


def _amount_allows(rule: ClassificationRule, amount: Decimal) -> bool:
    magnitude = abs(amount)
    if rule.amount_min is not None and magnitude < rule.amount_min:
        return False
    if rule.amount_max is not None and magnitude > rule.amount_max:
        return False
    return True


def order_rules(rules: list[ClassificationRule]) -> list[ClassificationRule]:
    """User rules before global ones, then ascending priority, then list order."""
    ranked = sorted(
        enumerate(rules),
        key=lambda pair: (_SCOPE_TIER[pair[1].scope], pair[1].priority, pair[0]),
    )
    return [rule for _, rule in ranked]


def confidence_for(rule: ClassificationRule) -> float:
    if rule.pattern_type is PatternType.REGEX and rule.high_trust:
        return HIGH_TRUST_CONFIDENCE
    return CONFIDENCE[rule.pattern_type]


def rule_applies(rule: ClassificationRule, transaction: ParsedTransaction) -> bool:
    if not rule.is_active:
        return False
    if not _direction_allows(rule.amount_direction, transaction.kind):
        return False
    if not _amount_allows(rule, transaction.amount):
        return False
    return _matches(transaction.description, rule.pattern, rule.pattern_type)


def classify(
    transaction: ParsedTransaction, rules: list[ClassificationRule] | None = None,
) -> ClassificationResult:
    """Find the first applicable rule. Never mutates rules or their match counts.

    Without a rule set the built-in ``DEFAULT_RULES`` are used.
    """
    for rule in order_rules(DEFAULT_RULES if rules is None else rules):
        if rule_applies(rule, transaction):
            return ClassificationResult(
                category=rule.category,
                subcategory=rule.subcategory,
                confidence=confidence_for(rule),
                matched_rule_id=rule.id,
                vendor=rule.vendor,
            )
    return NO_MATCH


def apply_classification(
    transaction: ParsedTransaction,
    result: ClassificationResult,
    threshold: float = REVIEW_THRESHOLD,
) -> ParsedTransaction:
    return replace(
        transaction,
        category=result.category,
        subcategory=result.subcategory,
        confidence=result.confidence,
        payee=result.vendor or transaction.payee,
        needs_review=result.confidence == 0.0 or result.confidence < threshold,
    )


def classify_all(
    transactions: list[ParsedTransaction],
    rules: list[ClassificationRule] | None = None,
    threshold: float = REVIEW_THRESHOLD,
) -> tuple[list[ParsedTransaction], list[MatchEvent]]:
    """Classify a batch. Returns new transactions and the rule matches as data."""
    ordered = order_rules(DEFAULT_RULES if rules is None else rules)
    classified: list[ParsedTransaction] = []
    events: list[MatchEvent] = []
    for index, txn in enumerate(transactions):
        result = classify(txn, ordered)
        classified.append(apply_classification(txn, result, threshold))
        if result.matched_rule_id is not None:
            events.append(MatchEvent(rule_id=result.matched_rule_id, transaction_index=index))
    logger.info("classified %d of %d transactions", len(events), len(transactions))
    return classified, events


def tally_matches(events: list[MatchEvent]) -> dict[int, int]:
    """Per-rule match deltas for one pass, ready for a single store update."""
    return dict(Counter(event.rule_id for event in events))


def validate_rule(rule: ClassificationRule) -> None:
    """Reject rules that could never be evaluated sensibly. Raises ValueError."""
    if not rule.pattern or not rule.pattern.strip():
        raise ValueError("rule pattern must not be empty")
    if not rule.category or not rule.category.strip():
        raise ValueError("rule category must not be empty")
    if rule.pattern_type is PatternType.REGEX:
        try:
            re.compile(rule.pattern)
        except re.error as e:
            raise ValueError(f"invalid regex {rule.pattern!r}: {e}")
    if rule.amount_min is not None and rule.amount_max is not None and rule.amount_min > rule.amount_max:
        raise ValueError("amount_min must not exceed amount_max")


# (category, subcategory, direction, keywords). Keywords are matched as whole words.
_DEFAULT_VENDORS = [
    ("Gross Receipts or Sales", None, AmountDirection.POSITIVE,
     ["deposit", "payment received", "invoice payment", "customer payment"]),
    ("Office Expenses", None, AmountDirection.NEGATIVE, ["staples", "office depot", "office supplies"]),
    ("Other Expenses", "Software & Subscriptions", AmountDirection.NEGATIVE,
     ["microsoft", "adobe", "quickbooks", "software", "subscription"]),
    ("Car and Truck Expenses", "Fuel", AmountDirection.NEGATIVE,
     ["shell", "exxon", "mobil", "chevron", "bp", "sunshine", "westar", "gas station", "fuel"]),
    ("Travel", None, AmountDirection.NEGATIVE,
     ["hotel", "marriott", "hilton", "american airlines", "delta", "uber", "lyft", "rental car"]),
    ("Meals and Entertainment", None, AmountDirection.NEGATIVE,
     ["restaurant", "starbucks", "coffee", "lunch", "dinner", "catering"]),
    ("Utilities", None, AmountDirection.NEGATIVE,
     ["verizon", "at&t", "comcast", "internet", "phone service", "electric"]),
    ("Other Expenses", "Bank Fees", AmountDirection.NEGATIVE,
     ["overdraft", "maintenance fee", "atm fee", "service charge"]),
    ("Rent or Lease (Other Business Property)", None, AmountDirection.NEGATIVE,
     ["rent", "lease", "property management", "landlord"]),
    ("Insurance (Other than Health)", None, AmountDirection.NEGATIVE,
     ["insurance", "policy premium"]),
    ("Advertising", None, AmountDirection.NEGATIVE,
     ["google ads", "facebook ads", "marketing", "advertising"]),
]


def _keyword_pattern(keywords: list[str]) -> str:
    return r"(?<![A-Za-z])(?:" + "|".join(re.escape(k) for k in keywords) + r")(?![A-Za-z])"


# Built-in rules carry negative ids so they never collide with stored rows.
DEFAULT_RULES: list[ClassificationRule] = [
    ClassificationRule(
        id=-n,
        pattern=_keyword_pattern(keywords),
        category=category,
        subcategory=subcategory,
        pattern_type=PatternType.REGEX,
        amount_direction=direction,
        scope=RuleScope.GLOBAL,
        priority=100 + n,
    )
    for n, (category, subcategory, direction, keywords) in enumerate(_DEFAULT_VENDORS, 1)
]
