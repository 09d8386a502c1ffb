from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class Kind(str, Enum):
    INCOME = "income"
    EXPENSE = "expense"
    TRANSFER = "transfer"


class SectionCode(str, Enum):
    DEPOSITS = "deposits"
    CHECKS = "checks"
    CARD = "card"
    ELECTRONIC = "electronic"
    MANUAL = "manual"
    UNCATEGORIZED = "uncategorized"


class PatternType(str, Enum):
    CONTAINS = "contains"
    EXACT = "exact"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    REGEX = "regex"


class AmountDirection(str, Enum):
    POSITIVE = "positive"  # income only
    NEGATIVE = "negative"  # expense only
    ANY = "any"


class RuleScope(str, Enum):
    GLOBAL = "global"
    USER = "user"


class ParseErrorKind(str, Enum):
    MISSING_AMOUNT = "missing_amount"
    MISSING_DATE = "missing_date"
    UNRECOGNIZED_FORMAT = "unrecognized_format"
    TOO_FEW_FIELDS = "too_few_fields"
    AMOUNT_OUT_OF_BOUNDS = "amount_out_of_bounds"
    INVALID_CALENDAR_DATE = "invalid_calendar_date"


UNCATEGORIZED = "Uncategorized"


class ParseError(ValueError):
    """A token or line could not be turned into a transaction field."""

    def __init__(self, kind: ParseErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message


@dataclass(frozen=True)
class RawLine:
    index: int
    text: str
    section: SectionCode


@dataclass(frozen=True)
class StatementSection:
    code: SectionCode
    header: str
    lines: list[RawLine]
    reported_total: Decimal | None = None


@dataclass(frozen=True)
class ParsedTransaction:
    date: str  # ISO 8601
    amount: Decimal  # magnitude, sign carried by kind
    kind: Kind
    description: str
    payee: str = ""
    section: SectionCode = SectionCode.UNCATEGORIZED
    category: str = UNCATEGORIZED
    subcategory: str | None = None
    confidence: float = 0.0
    needs_review: bool = True
    check_number: str | None = None
    line_number: int | None = None


@dataclass(frozen=True)
class LineError:
    line_number: int
    section: SectionCode
    text: str
    reason: ParseErrorKind
    message: str


@dataclass(frozen=True)
class ClassificationRule:
    id: int | None
    pattern: str
    category: str
    pattern_type: PatternType = PatternType.CONTAINS
    subcategory: str | None = None
    vendor: str | None = None
    amount_direction: AmountDirection = AmountDirection.ANY
    amount_min: Decimal | None = None
    amount_max: Decimal | None = None
    scope: RuleScope = RuleScope.USER
    priority: int = 0  # lower runs first
    is_active: bool = True
    high_trust: bool = False
    match_count: int = 0


@dataclass(frozen=True)
class ClassificationResult:
    category: str
    subcategory: str | None
    confidence: float
    matched_rule_id: int | None
    vendor: str | None = None


@dataclass(frozen=True)
class MatchEvent:
    """One rule classified one transaction. Counters are applied by the rule store."""
    rule_id: int
    transaction_index: int


@dataclass
class BulkPasteEntry:
    """Staging row from pasted receipt text; the caller may edit it before committing."""
    amount: str
    date: str  # ISO 8601
    vendor: str
    category: str
    line_number: int


@dataclass
class BulkPasteResult:
    entries: list[BulkPasteEntry] = field(default_factory=list)
    errors: list[dict] = field(default_factory=list)
    stats: dict = field(default_factory=lambda: {"total": 0, "parsed": 0, "failed": 0})


@dataclass
class AccountInfo:
    account_number: str | None = None
    period_start: str | None = None  # ISO 8601
    period_end: str | None = None
    beginning_balance: Decimal | None = None
    ending_balance: Decimal | None = None

