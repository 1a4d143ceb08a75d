# marksheet_digitizer/roster.py
"""
External roster (student list CSV) parsing and reconciliation.

Roster rows are matched to aggregated sheets by comparing the last three
characters of the roster's admission number with those of each register
number. For a matched sheet, every non-empty mark is written into the roster
column that represents its question:

  TotalMarks -> first header starting with "total" (case-insensitive)
  Q{n}{s}    -> first header whose leading token equals, in priority order:
                "{n}" (only when s == "a"), "{n}{s}", "{n}.{s}"

A header's leading token is its first whitespace-delimited word, lowercased,
so "6.a (7.00) CO1" is addressed as "6.a".
"""
from __future__ import annotations

import copy
import csv
import io
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .aggregate import AggregatedData
from .log import get_logger
from .question_keys import TOTAL_KEY, parse_key, sort_keys
from .settings import DEFAULTS

logger = get_logger("roster")

SUFFIX_LEN = 3

RosterRow = Dict[str, str]


class RosterError(ValueError):
    """The uploaded roster cannot be used (unreadable or required headers missing)."""


@dataclass
class RosterTable:
    headers: List[str]
    rows: List[RosterRow]
    preamble: List[str] = field(default_factory=list)  # raw lines above the header row


def _decode(data: bytes | str) -> str:
    if isinstance(data, str):
        return data
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise RosterError(f"Roster is not UTF-8 text: {e}") from e


def find_header_index(
    lines: Sequence[str],
    identity_header: str = DEFAULTS.identity_header,
    name_header: str = DEFAULTS.name_header,
    scan_lines: int = DEFAULTS.header_scan_lines,
) -> int:
    for i, line in enumerate(lines[:scan_lines]):
        if identity_header in line and name_header in line:
            return i
    return -1


def parse_roster(
    data: bytes | str,
    identity_header: str = DEFAULTS.identity_header,
    name_header: str = DEFAULTS.name_header,
    scan_lines: int = DEFAULTS.header_scan_lines,
) -> RosterTable:
    """
    Parse roster CSV text. The header row is the first of the first `scan_lines`
    lines containing both `identity_header` and `name_header`; everything above
    it is kept verbatim as preamble. Raises RosterError when no header is found
    or the identity column is not an exact header.
    """
    text = _decode(data)
    lines = text.splitlines()
    idx = find_header_index(lines, identity_header, name_header, scan_lines)
    if idx < 0:
        raise RosterError(
            f"Required headers '{identity_header}' and '{name_header}' not found "
            f"in the first {scan_lines} lines of the roster."
        )

    body = "\n".join(lines[idx:])
    reader = csv.reader(io.StringIO(body))
    headers = [h.strip() for h in next(reader)]
    if identity_header not in headers:
        raise RosterError(f"Roster must contain a '{identity_header}' column.")

    rows: List[RosterRow] = []
    for values in reader:
        if not any(v.strip() for v in values):
            continue
        values = [v.strip() for v in values]
        rows.append({h: (values[i] if i < len(values) else "") for i, h in enumerate(headers)})

    logger.debug("Parsed roster: %d header(s), %d row(s), header at line %d", len(headers), len(rows), idx + 1)
    return RosterTable(headers=headers, rows=rows, preamble=lines[:idx])


def _header_token(header: str) -> str:
    parts = header.split()
    return parts[0].lower() if parts else ""


def find_column(question_key: str, headers: Sequence[str]) -> Optional[str]:
    """Roster header that holds `question_key`, or None."""
    if question_key == TOTAL_KEY:
        return next((h for h in headers if h.lower().startswith("total")), None)

    parsed = parse_key(question_key)
    if parsed is None:
        return None
    num, sub = str(parsed.number), parsed.subpart

    candidates: List[str] = []
    if sub == "a":
        # an unqualified column ("1") stands for sub-part a
        candidates.append(num)
    if sub:
        candidates.extend([f"{num}{sub}", f"{num}.{sub}"])

    tokens = [(_header_token(h), h) for h in headers]
    for cand in candidates:
        for token, header in tokens:
            if token == cand:
                return header
    return None


def suffix_of(value: str) -> str:
    return value[-SUFFIX_LEN:]


def _suffix_index(aggregate: AggregatedData) -> Dict[str, str]:
    """suffix -> first register number (insertion order) carrying it."""
    index: Dict[str, str] = {}
    for reg_no in aggregate.sheets:
        sfx = suffix_of(reg_no)
        if sfx in index:
            logger.warning(
                "Register numbers %s and %s share suffix %r; roster rows will match %s",
                index[sfx], reg_no, sfx, index[sfx],
            )
            continue
        index[sfx] = reg_no
    return index


def reconcile(
    rows: Sequence[RosterRow],
    aggregate: AggregatedData,
    headers: Optional[Sequence[str]] = None,
    identity_header: str = DEFAULTS.identity_header,
) -> Tuple[List[RosterRow], int]:
    """
    Overwrite roster cells with aggregated marks.
    Returns (updated copies of the rows, number of rows with at least one changed cell).
    Neither `rows` nor `aggregate` is mutated.
    """
    index = _suffix_index(aggregate)
    out: List[RosterRow] = []
    updated_count = 0

    for row in rows:
        row = copy.copy(row)
        out.append(row)

        admission_no = row.get(identity_header)
        if not admission_no or not isinstance(admission_no, str):
            continue
        reg_no = index.get(suffix_of(admission_no))
        if reg_no is None:
            logger.debug("No sheet matches admission number %s", admission_no)
            continue

        row_headers = list(headers) if headers is not None else list(row.keys())
        marks = aggregate.sheets[reg_no]
        changed = False
        for key in sort_keys(marks):
            value = marks[key]
            if value == "":
                continue
            column = find_column(key, row_headers)
            if column is None:
                logger.debug("No roster column for %s (sheet %s)", key, reg_no)
                continue
            if row.get(column) != value:
                row[column] = value
                changed = True

        if changed:
            updated_count += 1
            logger.debug("Updated roster row %s from sheet %s", admission_no, reg_no)

    logger.info("Reconciled %d roster row(s); %d updated", len(out), updated_count)
    return out, updated_count


def render_merged_csv(table: RosterTable, rows: Optional[Sequence[RosterRow]] = None) -> bytes:
    """Preamble lines verbatim, then the header row, then every data row fully quoted."""
    rows = table.rows if rows is None else rows
    buf = io.StringIO()
    for line in table.preamble:
        buf.write(line + "\n")
    csv.writer(buf, lineterminator="\n").writerow(table.headers)
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for row in rows:
        writer.writerow([row.get(h, "") for h in table.headers])
    return buf.getvalue().encode("utf-8")
