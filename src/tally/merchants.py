"""Heuristic cleanup of raw payee text into short canonical merchant names.

Vendor special cases live in ``VENDOR_RULES``, an ordered table where the
first matching entry wins. Adding a vendor means adding a row (and a
regression case in tests/test_merchants.py), not new control flow.
"""

import re
from dataclasses import dataclass
from typing import Callable

MAX_PAYEE_LENGTH = 50
CARD_FALLBACK = "Card Purchase"
UNKNOWN_PAYEE = "Unknown Payee"

_LONG_ID = re.compile(r"\b\d{7,}\b")
_CITY_STATE = re.compile(r"\s+[A-Z][A-Za-z.'-]*\s+[A-Z]{2}$")
_STATE = re.compile(r"\s+[A-Z]{2}$")


@dataclass(frozen=True)
class VendorRule:
    name: str
    pattern: re.Pattern
    canonical: Callable[[re.Match], str]


def _rule(name: str, pattern: str, canonical: Callable[[re.Match], str]) -> VendorRule:
    return VendorRule(name, re.compile(pattern, re.IGNORECASE), canonical)


VENDOR_RULES: list[VendorRule] = [
    _rule("chevron_sunshine", r"(?=.*chevron)(?=.*sunshine)", lambda m: "Chevron/Sunshine"),
    _rule("exxon_sunshine", r"(?=.*exxon)(?=.*sunshine)", lambda m: "Exxon Sunshine"),
    _rule("lowes_store", r"lowe'?s\s*#\s*(\d+)", lambda m: f"Lowe's #{m.group(1)}"),
    _rule("lowes", r"\blowe'?s\b", lambda m: "Lowe's"),
    _rule("sunshine_store", r"sunshine\s*#?\s*(\d+)", lambda m: f"Sunshine #{m.group(1)}"),
    _rule("westar_store", r"westar\s+(\d+)", lambda m: f"Westar {m.group(1)}"),
    _rule("chevron", r"\bchevron", lambda m: "Chevron"),
    _rule("exxon", r"\bexxon", lambda m: "Exxon"),
]


def strip_noise(fragment: str) -> str:
    """Drop long transaction IDs and a trailing "City ST" location."""
    text = _LONG_ID.sub(" ", fragment or "")
    text = re.sub(r"\s+", " ", text).strip()
    if len(text.split()) > 2:
        text = _CITY_STATE.sub("", text)
    if len(text.split()) > 2:
        text = _STATE.sub("", text)
    return text.strip()


def normalize_merchant(
    fragment: str,
    fallback: str = CARD_FALLBACK,
    rules: list[VendorRule] | None = None,
) -> str:
    text = strip_noise(fragment)
    for rule in VENDOR_RULES if rules is None else rules:
        m = rule.pattern.search(text)
        if m:
            return rule.canonical(m)[:MAX_PAYEE_LENGTH]
    result = " ".join(text.split()[:3])[:MAX_PAYEE_LENGTH].strip()
    if len(result) < 2:
        return fallback
    return result


# Bank-inserted prefixes that precede the merchant on many statements.
TRANSACTION_PREFIXES = sorted([
    "CHECKCARD", "CHECK CARD", "DEBIT CARD", "POS PURCHASE", "POS DEBIT", "POS REFUND",
    "ACH DEBIT", "ACH CREDIT", "ACH WITHDRAWAL", "ACH DEPOSIT", "ELECTRONIC DEBIT",
    "ELECTRONIC CREDIT", "BILL PAY", "BILL PAYMENT", "ONLINE PAYMENT", "WEB PMNT",
    "INTERNET PMT", "AUTOPAY", "AUTO PAY", "RECURRING", "PREAUTHORIZED", "PRE-AUTHORIZED",
    "PURCHASE AUTHORIZED", "VISA", "MASTERCARD", "AMEX", "DISCOVER", "DEBIT", "CREDIT",
], key=len, reverse=True)

TRANSACTION_SUFFIXES = [
    re.compile(r"\s*\d{2}/\d{2}$"),
    re.compile(r"\s+\d{4,}$"),
    re.compile(r"\s*#\d+$"),
    re.compile(r"\s+[A-Z]{2}$"),
    re.compile(r"\s+\d{5}(?:-\d{4})?$"),
    re.compile(r"\s+USA?$", re.IGNORECASE),
]


def clean_description(description: str) -> str:
    """Uppercase, drop one bank prefix and trailing dates/store numbers/locations."""
    cleaned = (description or "").upper().strip()
    for prefix in TRANSACTION_PREFIXES:
        if cleaned.startswith(prefix):
            cleaned = cleaned[len(prefix):].strip()
            break
    for suffix in TRANSACTION_SUFFIXES:
        cleaned = suffix.sub("", cleaned).strip()
    return re.sub(r"\s+", " ", cleaned)


def extract_payee(description: str) -> str:
    """Best-effort payee from a free-form description."""
    payee = re.sub(r"^(?:DEBIT|CREDIT|CHECK|DEPOSIT|WITHDRAWAL)\s+", "", description or "", flags=re.IGNORECASE)
    payee = re.sub(r"\s+(?:DEBIT|CREDIT|DEPOSIT|WITHDRAWAL)$", "", payee, flags=re.IGNORECASE)
    payee = re.sub(r"^#?\d+\s+", "", payee)
    payee = re.sub(r"\s+\d{2}/\d{2}$", "", payee).strip()
    for sep in (" - ", " / ", " * ", "  "):
        if sep in payee:
            payee = payee.split(sep)[0].strip()
            break
    payee = payee[:MAX_PAYEE_LENGTH].strip()
    return payee or UNKNOWN_PAYEE
