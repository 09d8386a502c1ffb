import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from tally.extractors import LineCandidate, StatementContext, extract_section
from tally.merchants import CARD_FALLBACK, UNKNOWN_PAYEE, extract_payee, normalize_merchant
from tally.models import (
    AccountInfo, Kind, LineError, ParseError, ParsedTransaction, SectionCode, StatementSection,
)
from tally.sections import segment
from tally.tokens import normalize_amount, normalize_date

logger = logging.getLogger(__name__)

ACCOUNT_NUMBER = re.compile(r"Account\s+Number[:\s]+(\d+)", re.IGNORECASE)
PERIOD_SLASH = re.compile(
    r"Statement\s+Period[:\s]+(\d{1,2}/\d{1,2}/\d{2,4})\s*-\s*(\d{1,2}/\d{1,2}/\d{2,4})", re.IGNORECASE
)
PERIOD_THROUGH = re.compile(r"([A-Za-z]+\.?\s+\d{1,2},\s+\d{4})\s*through\s*([A-Za-z]+\.?\s+\d{1,2},\s+\d{4})")
BEGINNING_BALANCE = re.compile(r"Beginning\s+Balance\s*\$?(-?[\d,]+\.\d{2})", re.IGNORECASE)
ENDING_BALANCE = re.compile(r"Ending\s+Balance\s*\$?(-?[\d,]+\.\d{2})", re.IGNORECASE)


@dataclass
class StatementResult:
    transactions: list[ParsedTransaction]
    errors: list[LineError]
    sections: list[StatementSection] = field(default_factory=list)
    account: AccountInfo = field(default_factory=AccountInfo)
    debug: dict = field(default_factory=dict)

    @property
    def summary(self) -> dict:
        return summarize(self.transactions)


def _long_date(raw: str) -> str | None:
    cleaned = raw.replace(".", "")
    for fmt in ("%B %d, %Y", "%b %d, %Y"):
        try:
            return datetime.strptime(cleaned, fmt).strftime("%Y-%m-%d")
        except ValueError:
            continue
    return None


def _slash_date(raw: str) -> str | None:
    try:
        return normalize_date(raw)
    except ParseError:
        return None


def _balance(pattern: re.Pattern, text: str) -> Decimal | None:
    m = pattern.search(text)
    return normalize_amount(m.group(1)) if m else None


def extract_account_info(text: str) -> AccountInfo:
    info = AccountInfo()
    if m := ACCOUNT_NUMBER.search(text):
        info.account_number = m.group(1)
    if m := PERIOD_SLASH.search(text):
        info.period_start, info.period_end = _slash_date(m.group(1)), _slash_date(m.group(2))
    elif m := PERIOD_THROUGH.search(text):
        info.period_start, info.period_end = _long_date(m.group(1)), _long_date(m.group(2))
    info.beginning_balance = _balance(BEGINNING_BALANCE, text)
    info.ending_balance = _balance(ENDING_BALANCE, text)
    return info


def statement_context(account: AccountInfo, reference_year: int | None = None) -> StatementContext:
    """Pick the year for MM/DD lines, rolling back months past a January period end."""
    year = reference_year
    if year is None and account.period_end:
        year = int(account.period_end[:4])
    if year is None:
        year = date.today().year

    rollover_month = None
    if account.period_start and account.period_end and account.period_start[:4] < account.period_end[:4]:
        rollover_month = int(account.period_end[5:7])
    return StatementContext(reference_year=year, rollover_month=rollover_month)


def to_transaction(candidate: LineCandidate) -> ParsedTransaction:
    if candidate.section is SectionCode.CARD:
        payee = normalize_merchant(candidate.merchant or candidate.description, CARD_FALLBACK)
    elif candidate.section is SectionCode.ELECTRONIC:
        payee = normalize_merchant(candidate.merchant or candidate.description, UNKNOWN_PAYEE)
    elif candidate.section is SectionCode.CHECKS:
        payee = ""  # check payees are assigned by hand downstream
    else:
        payee = extract_payee(candidate.description)
    return ParsedTransaction(
        date=candidate.date,
        amount=candidate.amount,
        kind=candidate.kind,
        description=candidate.description,
        payee=payee,
        section=candidate.section,
        check_number=candidate.check_number,
        line_number=candidate.line_number,
    )


def parse_statement_text(text: str, reference_year: int | None = None) -> StatementResult:
    """Parse extracted statement text into transactions plus per-line errors.

    A bad line becomes one ``LineError``; it never stops the rest of the
    statement from parsing.
    """
    account = extract_account_info(text)
    context = statement_context(account, reference_year)
    sections = segment(text)

    transactions: list[ParsedTransaction] = []
    errors: list[LineError] = []
    counts: dict[str, int] = {}
    log = [f"statement year {context.reference_year}"]
    if context.rollover_month is not None:
        log.append(f"months after {context.rollover_month:02d} use {context.reference_year - 1}")
    for section in sections:
        parsed = failed = 0
        for item in extract_section(section, context):
            if isinstance(item, LineError):
                errors.append(item)
                log.append(f"line {item.line_number} ({section.code.value}): {item.message}")
                failed += 1
                continue
            transactions.append(to_transaction(item))
            counts[section.code.value] = counts.get(section.code.value, 0) + 1
            parsed += 1
        log.append(f"{section.code.value}: {parsed} transactions, {failed} errors from {len(section.lines)} lines")

    transactions.sort(key=lambda t: t.date)

    sections_found = list(dict.fromkeys(s.code.value for s in sections))
    logger.info(
        "parsed %d transactions, %d errors from sections %s (year %d)",
        len(transactions), len(errors), sections_found, context.reference_year,
    )
    return StatementResult(
        transactions=transactions,
        errors=errors,
        sections=sections,
        account=account,
        debug={
            "sections_found": sections_found,
            "counts": {code: counts.get(code, 0) for code in sections_found},
            "error_count": len(errors),
            "reference_year": context.reference_year,
            "rollover_month": context.rollover_month,
            "log": log,
        },
    )


def summarize(transactions: list[ParsedTransaction]) -> dict:
    zero = Decimal("0.00")
    by_kind = {kind.value: 0 for kind in Kind}
    total_income = zero
    total_expenses = zero
    needs_review = 0
    categories: dict[str, dict] = {}
    for txn in transactions:
        by_kind[txn.kind.value] += 1
        if txn.kind is Kind.INCOME:
            total_income += txn.amount
        elif txn.kind is Kind.EXPENSE:
            total_expenses += txn.amount
        if txn.needs_review:
            needs_review += 1
        cat = categories.setdefault(txn.category, {"total": zero, "count": 0})
        cat["total"] += txn.amount
        cat["count"] += 1
    return {
        "total_transactions": len(transactions),
        "by_kind": by_kind,
        "total_income": total_income,
        "total_expenses": total_expenses,
        "net": total_income - total_expenses,
        "needs_review": needs_review,
        "categories": categories,
    }


def reconcile_totals(result: StatementResult) -> dict[SectionCode, dict]:
    """Compare parsed section sums with the statement's own "Total ..." footers."""
    reported: dict[SectionCode, Decimal] = {}
    for section in result.sections:
        if section.reported_total is not None:
            reported[section.code] = reported.get(section.code, Decimal("0.00")) + section.reported_total

    checks = {}
    for code, total in reported.items():
        parsed = sum((t.amount for t in result.transactions if t.section is code), Decimal("0.00"))
        checks[code] = {"reported": total, "parsed": parsed, "matches": parsed == total}
        if parsed != total:
            logger.warning("%s: parsed %s but statement reports %s", code.value, parsed, total)
    return checks
