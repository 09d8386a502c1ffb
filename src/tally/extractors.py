"""Per-section line grammars for Chase-style statement text.

Each extractor walks the lines of one section and yields either a
``LineCandidate`` or a ``LineError`` for every line that looks like a
transaction. Column headers, page furniture and other noise are skipped.
"""

import logging
import re
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Iterator

from tally.models import (
    Kind, LineError, ParseError, ParseErrorKind, RawLine, SectionCode, StatementSection,
)
from tally.tokens import AMOUNT_IN_TEXT, normalize_amount, normalize_date

logger = logging.getLogger(__name__)

MAX_AMOUNT = Decimal("1000000")

# Lines after an "Orig CO Name:" line that may carry its amount.
ELECTRONIC_LOOKAHEAD = 3

_DATE = r"\d{1,2}/\d{1,2}"
_AMOUNT = r"-?\$?\s?(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2}"

_LEADING_DATE = re.compile(rf"^\s*(?P<date>{_DATE})(?!/)")
_AMOUNT_AT_END = re.compile(rf"(?P<amount>{_AMOUNT})\s*$")
# Column headings, possibly glued together: "DATEDESCRIPTIONAMOUNT", "CHECK NO. DESCRIPTION DATE PAID AMOUNT"
_COLUMN_HEADER = re.compile(r"^(?:\s*(?:DATE|DESCRIPTION|AMOUNT|CHECK|NO\.?|PAID|NUMBER))+\s*$")
_PAGE_MARKERS = ("*start*", "*end*", "(continued)")

DEPOSIT_LINE = re.compile(rf"^\s*(?P<date>{_DATE})\s*(?P<label>.*?)\s*(?P<amount>{_AMOUNT})\s*$")
# "Remote Online Deposit 1" + "2,910.00" extracted as "Remote Online Deposit 12,910.00"
_GLUED_DEPOSIT_LABEL = re.compile(r"remote online deposit$", re.IGNORECASE)
_BARE_AMOUNT = re.compile(r"^(?:\d{1,3}(?:,\d{3})+|\d+)\.\d{2}$")

CHECK_LINE = re.compile(
    rf"^\s*(?P<number>\d+)(?![\d/])\s*(?:[*^]\s*)*(?P<memo>[A-Za-z][^\d]*?)?\s*"
    rf"(?P<date>{_DATE})(?:\s*(?P<paid>{_DATE}))?\s*(?P<amount>{_AMOUNT})\s*$"
)
_CHECK_NUMBER = re.compile(r"^\s*\d{3,}\b")

CARD_LINE = re.compile(
    rf"^\s*(?P<date>{_DATE})\s*(?:Recurring\s+)?Card Purchase(?:\s+With Pin)?\s*"
    rf"(?:(?P<txn_date>{_DATE})\s*)?(?P<merchant>.+?)\s+Card\s*(?P<last4>\d{{4}})\s*"
    rf"(?P<amount>{_AMOUNT})\s*$",
    re.IGNORECASE,
)
DATED_LINE = re.compile(rf"^\s*(?P<date>{_DATE})\s*(?P<label>.*?)\s*(?P<amount>{_AMOUNT})\s*$")

ELECTRONIC_LINE = re.compile(rf"^\s*(?P<date>{_DATE})\s*.*?Orig CO Name:\s*(?P<rest>.*)$", re.IGNORECASE)
_ELECTRONIC_TRAILERS = re.compile(
    r"\s*(?:Orig ID|Desc Date|CO Entry|Sec:|Trace#|Eed:|Ind ID|Ind Name|Trn:).*$", re.IGNORECASE
)


@dataclass(frozen=True)
class StatementContext:
    """Year resolution for MM/DD tokens.

    ``rollover_month`` is the period's closing month when the statement spans
    a year boundary; later months belong to the previous year.
    """
    reference_year: int
    rollover_month: int | None = None

    def resolve(self, token: str) -> str:
        year = self.reference_year
        if self.rollover_month is not None:
            month = int(token.split("/")[0])
            if month > self.rollover_month:
                year -= 1
        return normalize_date(token, year)


@dataclass(frozen=True)
class LineCandidate:
    line_number: int
    section: SectionCode
    date: str  # ISO 8601
    amount: Decimal
    kind: Kind
    description: str
    merchant: str | None = None
    check_number: str | None = None


Extracted = LineCandidate | LineError


def is_noise(text: str) -> bool:
    stripped = text.strip()
    if not stripped:
        return True
    lowered = stripped.lower()
    if lowered.startswith("total") or lowered.startswith("page "):
        return True
    if any(marker in lowered for marker in _PAGE_MARKERS):
        return True
    return bool(_COLUMN_HEADER.match(stripped))


def _error(line: RawLine, kind: ParseErrorKind, message: str) -> LineError:
    logger.debug("line %d (%s): %s", line.index, line.section.value, message)
    return LineError(
        line_number=line.index, section=line.section, text=line.text.strip(),
        reason=kind, message=message,
    )


def _bounded_amount(token: str) -> Decimal:
    amount = abs(normalize_amount(token))
    if amount == 0 or amount > MAX_AMOUNT:
        raise ParseError(ParseErrorKind.AMOUNT_OUT_OF_BOUNDS, f"amount out of bounds: {token.strip()}")
    return amount


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _diagnose(line: RawLine) -> LineError:
    """Explain why a line that looked like a transaction did not parse."""
    text = line.text
    if not _LEADING_DATE.match(text):
        return _error(line, ParseErrorKind.MISSING_DATE, "no MM/DD date at start of line")
    if not AMOUNT_IN_TEXT.search(text[_LEADING_DATE.match(text).end():]):
        return _error(line, ParseErrorKind.MISSING_AMOUNT, "no amount found on line")
    return _error(line, ParseErrorKind.UNRECOGNIZED_FORMAT, "line does not match section format")


def _build(
    line: RawLine,
    context: StatementContext,
    date_token: str,
    amount_token: str,
    kind: Kind,
    description: str,
    merchant: str | None = None,
    check_number: str | None = None,
) -> Extracted:
    try:
        date = context.resolve(date_token)
        amount = _bounded_amount(amount_token)
    except ParseError as e:
        return _error(line, e.kind, e.message)
    description = _collapse(description)
    if not description:
        return _error(line, ParseErrorKind.TOO_FEW_FIELDS, "line has no description")
    return LineCandidate(
        line_number=line.index, section=line.section, date=date, amount=amount, kind=kind,
        description=description, merchant=merchant, check_number=check_number,
    )


def _is_glued_sequence(label: str, amount: str) -> bool:
    """Sequence digit 1 glued onto the amount, e.g. "Deposit 12,910.00" for "Deposit 1" and 2,910.00."""
    if not _GLUED_DEPOSIT_LABEL.search(label) or not amount.startswith("1"):
        return False
    rest = amount[1:]
    if rest.startswith("0") or not ("," in amount or len(amount) >= 6):
        return False
    return bool(_BARE_AMOUNT.match(rest))


def extract_deposits(lines: Iterable[RawLine], context: StatementContext) -> Iterator[Extracted]:
    for line in lines:
        if is_noise(line.text):
            continue
        m = DEPOSIT_LINE.match(line.text)
        if m is None:
            if _LEADING_DATE.match(line.text) or "deposit" in line.text.lower():
                yield _diagnose(line)
            continue
        label, amount = m.group("label"), m.group("amount")
        if _is_glued_sequence(label, amount):
            label, amount = f"{label} 1", amount[1:]
        yield _build(line, context, m.group("date"), amount, Kind.INCOME, label)


def extract_checks(lines: Iterable[RawLine], context: StatementContext) -> Iterator[Extracted]:
    for line in lines:
        if is_noise(line.text):
            continue
        m = CHECK_LINE.match(line.text)
        if m is None:
            if _CHECK_NUMBER.match(line.text):
                if not re.search(_DATE, line.text):
                    yield _error(line, ParseErrorKind.MISSING_DATE, "check line has no date")
                elif not AMOUNT_IN_TEXT.search(line.text):
                    yield _error(line, ParseErrorKind.MISSING_AMOUNT, "check line has no amount")
                else:
                    yield _error(line, ParseErrorKind.UNRECOGNIZED_FORMAT, "line does not match check format")
            continue
        number = m.group("number")
        date_token = m.group("paid") or m.group("date")
        yield _build(line, context, date_token, m.group("amount"), Kind.EXPENSE,
                     f"Check #{number}", check_number=number)


def extract_card(lines: Iterable[RawLine], context: StatementContext) -> Iterator[Extracted]:
    for line in lines:
        if is_noise(line.text):
            continue
        m = CARD_LINE.match(line.text)
        if m is not None:
            merchant = m.group("merchant")
            yield _build(line, context, m.group("date"), m.group("amount"), Kind.EXPENSE,
                         re.sub(r"\b\d{7,}\b", " ", merchant), merchant=merchant)
            continue
        # ATM withdrawals and other dated card activity without the "Card Purchase" grammar
        m = DATED_LINE.match(line.text)
        if m is not None and "card purchase" not in line.text.lower():
            label = m.group("label")
            yield _build(line, context, m.group("date"), m.group("amount"), Kind.EXPENSE,
                         label, merchant=label)
            continue
        if _LEADING_DATE.match(line.text) or "card purchase" in line.text.lower():
            yield _diagnose(line)


class ElectronicState(Enum):
    IDLE = "idle"
    AWAITING_AMOUNT = "awaiting_amount"


@dataclass
class _PendingPayment:
    line: RawLine
    date_token: str
    company: str
    remaining: int = ELECTRONIC_LOOKAHEAD


def _split_company(rest: str) -> tuple[str, str | None]:
    """Company name and same-line amount from the text after "Orig CO Name:"."""
    amount = None
    m = _AMOUNT_AT_END.search(rest)
    if m is not None:
        amount = m.group("amount")
        rest = rest[:m.start()]
    return _collapse(_ELECTRONIC_TRAILERS.sub("", rest)), amount


def extract_electronic(lines: Iterable[RawLine], context: StatementContext) -> Iterator[Extracted]:
    """Electronic withdrawals carry their amount up to ``ELECTRONIC_LOOKAHEAD`` lines
    below the "Orig CO Name:" line, so this extractor keeps one pending payment."""
    state = ElectronicState.IDLE
    pending: _PendingPayment | None = None

    def emit(p: _PendingPayment, amount_token: str) -> Extracted:
        return _build(p.line, context, p.date_token, amount_token, Kind.EXPENSE,
                      f"Electronic Payment: {p.company}", merchant=p.company)

    def abandon(p: _PendingPayment) -> LineError:
        return _error(p.line, ParseErrorKind.MISSING_AMOUNT,
                      f"no amount within {ELECTRONIC_LOOKAHEAD} lines of Orig CO Name")

    for line in lines:
        if is_noise(line.text):
            continue

        header = ELECTRONIC_LINE.match(line.text)
        dated = _LEADING_DATE.match(line.text)

        if state is ElectronicState.AWAITING_AMOUNT and (header or dated):
            yield abandon(pending)
            state, pending = ElectronicState.IDLE, None

        if state is ElectronicState.AWAITING_AMOUNT:
            if "co name" not in line.text.lower():
                found = AMOUNT_IN_TEXT.search(line.text)
                if found is not None:
                    yield emit(pending, found.group(0))
                    state, pending = ElectronicState.IDLE, None
                    continue
            pending.remaining -= 1
            if pending.remaining == 0:
                yield abandon(pending)
                state, pending = ElectronicState.IDLE, None
            continue

        if header is not None:
            company, amount = _split_company(header.group("rest"))
            pending = _PendingPayment(line=line, date_token=header.group("date"), company=company)
            if amount is not None:
                yield emit(pending, amount)
                pending = None
            else:
                state = ElectronicState.AWAITING_AMOUNT
            continue

        if dated is not None:
            m = DATED_LINE.match(line.text)
            if m is not None:
                label = m.group("label")
                yield _build(line, context, m.group("date"), m.group("amount"), Kind.EXPENSE,
                             label, merchant=label)
            else:
                yield _diagnose(line)
        elif "orig co name" in line.text.lower():
            yield _error(line, ParseErrorKind.MISSING_DATE, "Orig CO Name line has no date")

    if state is ElectronicState.AWAITING_AMOUNT:
        yield abandon(pending)


EXTRACTORS: dict[SectionCode, Callable[[Iterable[RawLine], StatementContext], Iterator[Extracted]]] = {
    SectionCode.DEPOSITS: extract_deposits,
    SectionCode.CHECKS: extract_checks,
    SectionCode.CARD: extract_card,
    SectionCode.ELECTRONIC: extract_electronic,
}


def extract_section(section: StatementSection, context: StatementContext) -> list[Extracted]:
    extractor = EXTRACTORS[section.code]
    results = list(extractor(section.lines, context))
    logger.debug("%s: %d results from %d lines", section.code.value, len(results), len(section.lines))
    return results
