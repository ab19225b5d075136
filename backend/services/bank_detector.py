"""Pattern-based bank detection for statement text.

Institutions are checked in table order and the first match wins, so more
specific patterns must be listed before generic ones.
"""
import logging
import re
from typing import Optional

from schemas import BankDetection

logger = logging.getLogger("Ledger.BankDetector")

MATCH_CONFIDENCE = 0.95

# name -> (patterns, candidate countries in preference order)
BANK_PATTERNS = {
    "HSBC": (
        [r"HSBC\s+(Bank|UK|India)", r"hsbc\.co\.uk", r"hsbc\.co\.in"],
        ["UK", "IN"],
    ),
    "Revolut": (
        [r"Revolut", r"revolut\.com"],
        ["UK"],
    ),
    "AMEX": (
        [r"American\s+Express", r"\bAMEX\b", r"amex\.com"],
        ["UK"],
    ),
    "ICICI": (
        [r"ICICI\s+Bank", r"icicibank\.com"],
        ["IN"],
    ),
}

COUNTRY_HINTS = {
    "UK": re.compile(r"£|\bGBP\b|\bUK\b|United Kingdom|London", re.IGNORECASE),
    "IN": re.compile(r"₹|\bINR\b|\bRs\.|India|Mumbai|Bangalore|Bengaluru|Delhi", re.IGNORECASE),
}

_COMPILED = {
    name: ([re.compile(p, re.IGNORECASE) for p in patterns], countries)
    for name, (patterns, countries) in BANK_PATTERNS.items()
}


def infer_country(text: str, candidates: list[str]) -> str:
    """Pick the candidate country whose currency/place hints appear in the text."""
    if len(candidates) == 1:
        return candidates[0]
    for country in candidates:
        hint = COUNTRY_HINTS.get(country)
        if hint and hint.search(text):
            return country
    return candidates[0]


def detect_bank(statement_text: str) -> Optional[BankDetection]:
    """Return the first institution whose pattern matches, or None.

    None means "ask the user to pick", never an error.
    """
    if not statement_text:
        return None

    for bank_name, (patterns, countries) in _COMPILED.items():
        if any(p.search(statement_text) for p in patterns):
            country = infer_country(statement_text, countries)
            logger.info(f"  🏦 Detected bank: {bank_name} ({country})")
            return BankDetection(bank=bank_name, country=country, confidence=MATCH_CONFIDENCE)

    logger.info("  🏦 No bank pattern matched")
    return None
