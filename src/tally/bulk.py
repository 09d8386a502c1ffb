import logging
import re

from tally.merchants import UNKNOWN_PAYEE, extract_payee
from tally.models import (
    BulkPasteEntry, BulkPasteResult, Kind, ParseError, ParseErrorKind, ParsedTransaction, SectionCode,
)
from tally.tokens import looks_like_amount, looks_like_date, normalize_amount, normalize_date

logger = logging.getLogger(__name__)

EMPTY_INPUT_ERROR = "No data found in pasted text"


def _literal_amount(token: str) -> str:
    """Keep the typed sign and decimals, drop currency symbols and separators."""
    return re.sub(r"[$,\s]", "", token)


def _parse_line(line: str, line_number: int, default_category: str, default_vendor: str) -> BulkPasteEntry:
    parts = line.split()
    if len(parts) < 2:
        raise ParseError(ParseErrorKind.TOO_FEW_FIELDS, "at least two fields required (amount and date)")

    first, second, rest = parts[0], parts[1], parts[2:]
    if looks_like_amount(first):
        amount_token, date_token = first, second
    elif looks_like_date(first):
        date_token, amount_token = first, second
    else:
        raise ParseError(ParseErrorKind.UNRECOGNIZED_FORMAT, f"could not find amount or date in first field: {first!r}")

    try:
        normalize_amount(amount_token)
    except ParseError:
        raise ParseError(ParseErrorKind.MISSING_AMOUNT, f"invalid amount: {amount_token!r}")
    try:
        date = normalize_date(date_token)
    except ParseError as e:
        raise ParseError(e.kind, f"invalid date: {date_token!r} (use M/D/YY or YYYY-MM-DD)")

    return BulkPasteEntry(
        amount=_literal_amount(amount_token),
        date=date,
        vendor=" ".join(rest) if rest else default_vendor,
        category=default_category,
        line_number=line_number,
    )


def parse_pasted_data(text: str, default_category: str = "", default_vendor: str = "") -> BulkPasteResult:
    """Parse pasted receipt lines of the form ``amount date [vendor...]`` or
    ``date amount [vendor...]``.

    Blank lines are ignored. Every other line becomes either an entry or an
    error naming the field that failed, so ``parsed + failed == total``.
    """
    result = BulkPasteResult()
    lines = [(n, line.strip()) for n, line in enumerate((text or "").splitlines(), 1) if line.strip()]
    if not lines:
        result.errors.append({"line_number": None, "text": "", "error": EMPTY_INPUT_ERROR, "reason": None})
        return result

    for line_number, line in lines:
        try:
            entry = _parse_line(line, line_number, default_category, default_vendor)
        except ParseError as e:
            logger.debug("paste line %d rejected: %s", line_number, e)
            result.errors.append({"line_number": line_number, "text": line, "error": e.message, "reason": e.kind})
            continue
        result.entries.append(entry)

    result.stats = {
        "total": len(lines),
        "parsed": len(result.entries),
        "failed": len(result.errors),
    }
    return result


def to_transaction(entry: BulkPasteEntry) -> ParsedTransaction:
    """Commit a staging entry as a manual transaction. Negative amounts are refunds."""
    amount = normalize_amount(entry.amount)
    vendor = entry.vendor.strip()
    return ParsedTransaction(
        date=entry.date,
        amount=abs(amount),
        kind=Kind.INCOME if amount < 0 else Kind.EXPENSE,
        description=vendor or "Receipt",
        payee=extract_payee(vendor) if vendor else UNKNOWN_PAYEE,
        section=SectionCode.MANUAL,
        line_number=entry.line_number,
    )
