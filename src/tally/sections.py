import logging
import re
from dataclasses import dataclass
from decimal import Decimal

from tally.models import ParseError, RawLine, SectionCode, StatementSection
from tally.tokens import AMOUNT_IN_TEXT, normalize_amount

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SectionSpec:
    code: SectionCode
    header: str
    footers: tuple[str, ...]


SECTION_SPECS = [
    SectionSpec(SectionCode.DEPOSITS, "DEPOSITS AND ADDITIONS",
                ("Total Deposits and Additions", "Total Deposits")),
    SectionSpec(SectionCode.CHECKS, "CHECKS PAID", ("Total Checks Paid",)),
    SectionSpec(SectionCode.CARD, "ATM & DEBIT CARD WITHDRAWALS",
                ("Total ATM & Debit Card Withdrawals",)),
    SectionSpec(SectionCode.ELECTRONIC, "ELECTRONIC WITHDRAWALS",
                ("Total Electronic Withdrawals",)),
]


def _phrase_regex(phrase: str) -> str:
    # "ATM & DEBIT" must also match "ATM &DEBIT" and "ATM  &  DEBIT"
    return r"\s*".join(re.escape(word) for word in phrase.split())


def _header_pattern(spec: SectionSpec) -> re.Pattern:
    return re.compile(
        rf"^\s*{_phrase_regex(spec.header)}\s*(?:\(continued\))?\s*$", re.IGNORECASE
    )


def _footer_pattern(spec: SectionSpec) -> re.Pattern:
    alternatives = "|".join(_phrase_regex(f) for f in spec.footers)
    return re.compile(rf"^\s*(?:{alternatives})\b(?P<rest>.*)$", re.IGNORECASE)


_HEADERS = [(spec, _header_pattern(spec)) for spec in SECTION_SPECS]
_FOOTERS = {spec.code: _footer_pattern(spec) for spec in SECTION_SPECS}


def match_header(line: str) -> SectionSpec | None:
    for spec, pattern in _HEADERS:
        if pattern.match(line):
            return spec
    return None


def _footer_total(rest: str) -> Decimal | None:
    found = AMOUNT_IN_TEXT.findall(rest)
    if not found:
        return None
    try:
        return abs(normalize_amount(found[-1]))
    except ParseError:
        return None


def segment(text: str) -> list[StatementSection]:
    """Split statement text into typed sections in document order.

    A section runs from its header to the next header of any kind or to its
    own "Total ..." footer, whichever comes first. Headers that never occur
    produce no section.
    """
    sections: list[StatementSection] = []
    current: SectionSpec | None = None
    lines: list[RawLine] = []

    def close(total: Decimal | None = None) -> None:
        if current is not None:
            sections.append(StatementSection(
                code=current.code, header=current.header, lines=lines, reported_total=total,
            ))
            logger.debug("section %s: %d lines, total=%s", current.code.value, len(lines), total)

    for index, line in enumerate(text.splitlines(), 1):
        spec = match_header(line)
        if spec is not None:
            close()
            current, lines = spec, []
            continue
        if current is None:
            continue
        footer = _FOOTERS[current.code].match(line)
        if footer:
            close(_footer_total(footer.group("rest")))
            current, lines = None, []
            continue
        lines.append(RawLine(index=index, text=line, section=current.code))

    close()
    return sections
