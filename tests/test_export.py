import io

import pytest
from openpyxl import load_workbook

from marksheet_digitizer.aggregate import AggregatedData
from marksheet_digitizer.export_core import (
    SHEET_TITLE,
    build_rows,
    export_bytes,
    to_csv_bytes,
    to_xlsx_bytes,
    write_export,
)


@pytest.fixture
def data():
    return (
        AggregatedData()
        .with_sheet("JEC23AD017", {"Q2a": "1"}, total="1")
        .with_sheet("JEC23AD016", {"Q1a": "3", "Q10b": "4"})
    )


class TestBuildRows:
    def test_header_and_sorted_rows(self, data):
        assert build_rows(data) == [
            ["Register No.", "Q1a", "Q2a", "Q10b", "Total Marks"],
            ["JEC23AD016", "3", "", "4", ""],
            ["JEC23AD017", "", "1", "", "1"],
        ]

    def test_empty_aggregate(self):
        assert build_rows(AggregatedData()) == [["Register No."]]


class TestFormats:
    def test_csv(self, data):
        lines = to_csv_bytes(data).decode("utf-8").splitlines()
        assert lines[0] == "Register No.,Q1a,Q2a,Q10b,Total Marks"
        assert lines[1] == "JEC23AD016,3,,4,"

    def test_xlsx(self, data):
        wb = load_workbook(io.BytesIO(to_xlsx_bytes(data)))
        ws = wb[SHEET_TITLE]
        assert [c.value for c in ws[1]] == ["Register No.", "Q1a", "Q2a", "Q10b", "Total Marks"]
        assert ws["A2"].value == "JEC23AD016"
        assert ws["B2"].value == "3"
        assert ws["E3"].value == "1"
        assert ws.freeze_panes == "B2"
        assert ws["A1"].font.bold

    def test_marks_stay_text(self, data):
        ws = load_workbook(io.BytesIO(to_xlsx_bytes(data)))[SHEET_TITLE]
        assert isinstance(ws["D2"].value, str)

    def test_formula_like_values_stay_text(self):
        data = AggregatedData().with_sheet("=A1", {"Q1a": "=5", "Q2a": "=SUM(B2:B9)"})
        ws = load_workbook(io.BytesIO(to_xlsx_bytes(data)))[SHEET_TITLE]
        assert [ws["A2"].value, ws["B2"].value, ws["C2"].value] == ["=A1", "=5", "=SUM(B2:B9)"]
        assert ws["B2"].data_type == "s"

    def test_unknown_format(self, data):
        with pytest.raises(ValueError, match="Unsupported"):
            export_bytes(data, "pdf")


class TestWriteExport:
    def test_format_from_extension(self, data, tmp_path):
        out = write_export(data, tmp_path / "nested" / "marks.csv")
        assert out.endswith("marks.csv")
        assert (tmp_path / "nested" / "marks.csv").read_text(encoding="utf-8").startswith("Register No.,")

    def test_explicit_format_wins(self, data, tmp_path):
        out = tmp_path / "marks.dat"
        write_export(data, out, fmt="xlsx")
        assert load_workbook(io.BytesIO(out.read_bytes()))[SHEET_TITLE]["A2"].value == "JEC23AD016"
