"""Layer 1 — fast regex patterns for structured PII.

These run BEFORE Presidio and are near-zero cost.  They catch the
deterministic stuff: emails, phones, IPs, credit cards, SSNs, IBANs.
Entity names follow Presidio's, so a regex hit and an NER hit on the same
value merge instead of competing.

Overlaps are NOT resolved here; the detector resolves all layers together.
"""

from __future__ import annotations
import re
from .types import EntityMatch

# Each pattern: (entity_type, compiled_regex, score)
_PATTERNS: list[tuple[str, re.Pattern, float]] = [
    # Email, high confidence
    ("EMAIL_ADDRESS", re.compile(
        r"\b[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}\b"
    ), 1.0),

    # Phone: international and domestic formats
    ("PHONE_NUMBER", re.compile(
        r"(?<!\d)"
        r"(?:\+?\d{1,3}[\s\-.]?)?"
        r"(?:\(?\d{2,4}\)?[\s\-.]?)"
        r"\d{3,4}[\s\-.]?\d{3,4}"
        r"(?!\d)"
    ), 0.75),

    # Credit card: Visa, MC, Amex, Discover (with optional separators)
    ("CREDIT_CARD", re.compile(
        r"\b(?:4\d{3}|5[1-5]\d{2}|3[47]\d{2}|6(?:011|5\d{2}))"
        r"[\s\-.]?\d{4}[\s\-.]?\d{4}[\s\-.]?\d{1,4}\b"
    ), 0.95),

    # SSN (US)
    ("US_SSN", re.compile(
        r"\b\d{3}[\s\-]\d{2}[\s\-]\d{4}\b"
    ), 0.9),

    # IPv4
    ("IP_ADDRESS", re.compile(
        r"\b(?:(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\.){3}"
        r"(?:25[0-5]|2[0-4]\d|[01]?\d\d?)\b"
    ), 0.9),

    # IBAN: country code, check digits, up to 30 alphanumerics in groups
    ("IBAN_CODE", re.compile(
        r"\b[A-Z]{2}\d{2}(?:[ ]?[A-Z0-9]{4}){2,7}(?:[ ]?[A-Z0-9]{1,3})?\b"
    ), 0.8),

    # Date of birth patterns (YYYY-MM-DD, DD/MM/YYYY, MM/DD/YYYY)
    ("DATE_OF_BIRTH", re.compile(
        r"\b(?:\d{4}[\-/]\d{1,2}[\-/]\d{1,2}|\d{1,2}[\-/]\d{1,2}[\-/]\d{4})\b"
    ), 0.6),
]


def scan_regex(text: str) -> list[EntityMatch]:
    """Run all regex patterns against text.  Matches may overlap."""
    matches: list[EntityMatch] = []
    for entity_type, pattern, score in _PATTERNS:
        for m in pattern.finditer(text):
            matches.append(EntityMatch(
                entity_type=entity_type,
                start=m.start(),
                end=m.end(),
                score=score,
                text=m.group(),
                source="regex",
            ))
    return matches
