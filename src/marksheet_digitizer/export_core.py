# marksheet_digitizer/export_core.py
from __future__ import annotations

import csv
import io
from pathlib import Path
from typing import List

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from .aggregate import AggregatedData
from .question_keys import display_label, sort_keys

REG_NO_HEADER = "Register No."
SHEET_TITLE = "Consolidated Marks"
XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
EXPORT_FORMATS = ("xlsx", "csv")


def build_rows(data: AggregatedData) -> List[List[str]]:
    """Header row plus one row per register number (ascending); blank where a sheet has no mark."""
    questions = sort_keys(data.questions)
    rows: List[List[str]] = [[REG_NO_HEADER] + [display_label(q) for q in questions]]
    for reg_no in sorted(data.sheets):
        marks = data.sheets[reg_no]
        rows.append([reg_no] + [marks.get(q, "") for q in questions])
    return rows


def to_xlsx_bytes(data: AggregatedData) -> bytes:
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_TITLE

    rows = build_rows(data)
    for row in rows:
        ws.append(row)
    # marks and register numbers are text; "=5" must not become a formula
    for row in ws.iter_rows(min_row=2):
        for cell in row:
            cell.data_type = "s"

    for cell in ws[1]:
        cell.font = Font(bold=True)
    ws.freeze_panes = "B2"
    ws.column_dimensions[get_column_letter(1)].width = max(14, max(len(r[0]) for r in rows) + 2)

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()


def to_csv_bytes(data: AggregatedData) -> bytes:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerows(build_rows(data))
    return buf.getvalue().encode("utf-8")


def export_bytes(data: AggregatedData, fmt: str = "xlsx") -> bytes:
    if fmt == "xlsx":
        return to_xlsx_bytes(data)
    if fmt == "csv":
        return to_csv_bytes(data)
    raise ValueError(f"Unsupported export format {fmt!r}; expected one of {', '.join(EXPORT_FORMATS)}")


def write_export(data: AggregatedData, out_path: str | Path, fmt: str | None = None) -> str:
    """Write the consolidated table; format defaults to the file extension."""
    out = Path(out_path).expanduser().resolve()
    fmt = fmt or out.suffix.lstrip(".").lower() or "xlsx"
    payload = export_bytes(data, fmt)
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_bytes(payload)
    return str(out)
