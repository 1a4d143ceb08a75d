# marksheet_digitizer/question_keys.py
"""
Question-key parsing and canonical ordering.

A question key is a question number with an optional sub-part letter
("Q1a", "6.b", "6b", "1"), or the sentinel TOTAL_KEY that stores a sheet's
total. Canonical order: number ascending, then sub-part ("" < "a" < ... "d"),
unparseable keys after every numeric key, TOTAL_KEY last.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Tuple

TOTAL_KEY = "TotalMarks"
TOTAL_LABEL = "Total Marks"
SUBPARTS = ("a", "b", "c", "d")

# optional letter prefix ("Q"), number, optional "." separator, optional sub-part, nothing after
_KEY_RE = re.compile(r"^\s*[A-Za-z]*\s*(\d+)\.?([a-dA-D]?)\s*$")


@dataclass(frozen=True)
class ParsedKey:
    number: int
    subpart: str  # "" or one of a..d


def parse_key(key: str) -> Optional[ParsedKey]:
    """Return (number, subpart) for a question key, None for TOTAL_KEY or any other text ("Q1e", "Name")."""
    if key == TOTAL_KEY:
        return None
    m = _KEY_RE.match(key)
    if not m:
        return None
    return ParsedKey(int(m.group(1)), m.group(2).lower())


def _sort_tuple(key: str) -> Tuple[int, int, str, str]:
    if key == TOTAL_KEY:
        return (2, 0, "", key)
    parsed = parse_key(key)
    if parsed is None:
        return (1, 0, "", key)
    # full text breaks ties so that "Q1a" and "1a" never compare equal
    return (0, parsed.number, parsed.subpart, key)


def compare_keys(k1: str, k2: str) -> int:
    """-1, 0 or 1. Strict total order; 0 only for identical texts."""
    a, b = _sort_tuple(k1), _sort_tuple(k2)
    return (a > b) - (a < b)


def sort_keys(keys: Iterable[str]) -> List[str]:
    return sorted(keys, key=_sort_tuple)


def make_key(question_number: str, subpart: str) -> str:
    return f"Q{question_number}{subpart}"


def display_label(key: str) -> str:
    return TOTAL_LABEL if key == TOTAL_KEY else key
