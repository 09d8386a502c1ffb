"""Amount and date token normalizers shared by every parser.

Everything here is pure: a token goes in, a normalized value comes out or a
``ParseError`` is raised with the reason attached.
"""

import calendar
import re
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation

from tally.models import ParseError, ParseErrorKind

# Two-digit years below the pivot land in the 2000s, the rest in the 1900s.
CENTURY_PIVOT = 50

CENTS = Decimal("0.01")

_CURRENCY_CHARS = "$€£"
_AMOUNT_BODY = re.compile(r"^-?(?:\d+\.?\d*|\.\d+)$")

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")
_FULL_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{2}|\d{4})$")
_SHORT_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})$")

# Amount-shaped text inside a longer statement line, e.g. "$3,640.00" or "2,500.00".
AMOUNT_IN_TEXT = re.compile(r"-?\$?\s?\d{1,3}(?:,\d{3})*\.\d{2}|-?\$?\s?\d+\.\d{2}")

_DAYS_IN_MONTH = (31, 29, 31, 30, 31, 30, 31, 31, 30, 31, 30, 31)


def normalize_amount(token: str) -> Decimal:
    """Parse "$1,234.56", "-$145.24", "(12.50)", "500" into a Decimal.

    The sign is preserved; callers that need a magnitude take ``abs()``.
    """
    if token is None:
        raise ParseError(ParseErrorKind.MISSING_AMOUNT, "amount is missing")
    raw = token.strip()
    negative = False
    if raw.startswith("(") and raw.endswith(")"):
        negative = True
        raw = raw[1:-1].strip()
    for ch in _CURRENCY_CHARS:
        raw = raw.replace(ch, "")
    raw = raw.replace(",", "").replace(" ", "")
    if raw.startswith("-"):
        negative = not negative
        raw = raw[1:]
    if not any(ch.isdigit() for ch in raw):
        raise ParseError(ParseErrorKind.MISSING_AMOUNT, f"invalid amount: {token!r}")
    if raw.count(".") > 1 or not _AMOUNT_BODY.match(raw):
        raise ParseError(ParseErrorKind.MISSING_AMOUNT, f"invalid amount: {token!r}")
    try:
        value = Decimal(raw).quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ParseError(ParseErrorKind.MISSING_AMOUNT, f"invalid amount: {token!r}")
    return -value if negative else value


def format_amount(value: Decimal) -> str:
    return f"{value.quantize(CENTS, rounding=ROUND_HALF_UP)}"


def expand_two_digit_year(yy: int) -> int:
    return 2000 + yy if yy < CENTURY_PIVOT else 1900 + yy


def is_valid_calendar_date(month: int, day: int, year: int | None = None) -> bool:
    if month < 1 or month > 12 or day < 1:
        return False
    if year is None:
        return day <= _DAYS_IN_MONTH[month - 1]
    return day <= calendar.monthrange(year, month)[1]


def normalize_date(token: str, reference_year: int | None = None) -> str:
    """Convert a statement or receipt date token to ISO 8601 YYYY-MM-DD.

    Accepts M/D/YY, M/D/YYYY, MM/DD/YY, MM/DD/YYYY and YYYY-MM-DD. A bare
    MM/DD only resolves when ``reference_year`` is given; rolling the year
    back across a statement boundary is the caller's job.
    """
    if token is None or not token.strip():
        raise ParseError(ParseErrorKind.MISSING_DATE, "date is missing")
    raw = token.strip()

    if m := _ISO_DATE.match(raw):
        year, month, day = int(m.group(1)), int(m.group(2)), int(m.group(3))
    elif m := _FULL_DATE.match(raw):
        month, day = int(m.group(1)), int(m.group(2))
        year_str = m.group(3)
        year = expand_two_digit_year(int(year_str)) if len(year_str) == 2 else int(year_str)
    elif m := _SHORT_DATE.match(raw):
        if reference_year is None:
            raise ParseError(ParseErrorKind.MISSING_DATE, f"date has no year: {token!r}")
        month, day, year = int(m.group(1)), int(m.group(2)), reference_year
    else:
        raise ParseError(ParseErrorKind.MISSING_DATE, f"invalid date: {token!r}")

    if not is_valid_calendar_date(month, day, year):
        raise ParseError(ParseErrorKind.INVALID_CALENDAR_DATE, f"invalid calendar date: {token!r}")
    return f"{year:04d}-{month:02d}-{day:02d}"


def looks_like_amount(token: str) -> bool:
    try:
        normalize_amount(token)
    except ParseError:
        return False
    return True


def looks_like_date(token: str) -> bool:
    raw = token.strip()
    return bool(_ISO_DATE.match(raw) or _FULL_DATE.match(raw))
