import logging

import pytest

from marksheet_digitizer.aggregate import AggregatedData
from marksheet_digitizer.question_keys import TOTAL_KEY
from marksheet_digitizer.roster import (
    RosterError,
    find_column,
    parse_roster,
    reconcile,
    render_merged_csv,
)

ROSTER = (
    "Course: CS101,,,,\n"
    "Semester 5,,,,\n"
    "Admission No,Name,1,6.a (7.00) CO1,Total\n"
    "JEC23AD016,Alice,,,\n"
    ",,,,\n"
    "JEC23AD017,Bob,4\n"
)


@pytest.fixture
def aggregate():
    return AggregatedData().with_sheet("JEC23AD016", {"Q1a": "5", "Q1b": "3", TOTAL_KEY: "8"})


class TestReconcile:
    def test_suffix_match_updates_bare_column(self, aggregate):
        rows = [{"AdmissionNo": "XYZ016", "1": "", "6.a": ""}]
        out, updated = reconcile(rows, aggregate, identity_header="AdmissionNo")
        assert out == [{"AdmissionNo": "XYZ016", "1": "5", "6.a": ""}]
        assert updated == 1

    def test_input_rows_not_mutated(self, aggregate):
        rows = [{"AdmissionNo": "XYZ016", "1": "", "6.a": ""}]
        reconcile(rows, aggregate, identity_header="AdmissionNo")
        assert rows == [{"AdmissionNo": "XYZ016", "1": "", "6.a": ""}]

    def test_no_suffix_match_leaves_row_identical(self, aggregate):
        rows = [{"AdmissionNo": "XYZ999", "1": "", "6.a": ""}]
        out, updated = reconcile(rows, aggregate, identity_header="AdmissionNo")
        assert out == rows
        assert updated == 0

    def test_same_value_is_not_an_update(self, aggregate):
        rows = [{"AdmissionNo": "XYZ016", "1": "5"}]
        _, updated = reconcile(rows, aggregate, identity_header="AdmissionNo")
        assert updated == 0

    def test_empty_mark_never_overwrites(self):
        data = AggregatedData().with_sheet("A016", {"Q1a": ""})
        rows = [{"Admission No": "B016", "1": "7"}]
        out, updated = reconcile(rows, data)
        assert out[0]["1"] == "7"
        assert updated == 0

    def test_missing_identity_value_skipped(self, aggregate):
        rows = [{"Admission No": "", "1": ""}, {"Name": "no id", "1": ""}]
        out, updated = reconcile(rows, aggregate)
        assert out == rows
        assert updated == 0

    def test_total_goes_to_total_column(self, aggregate):
        rows = [{"Admission No": "K016", "Total Marks (50)": ""}]
        out, _ = reconcile(rows, aggregate)
        assert out[0]["Total Marks (50)"] == "8"

    def test_suffix_collision_first_register_number_wins(self, caplog):
        data = (
            AggregatedData()
            .with_sheet("AAA016", {"Q1a": "1"})
            .with_sheet("BBB016", {"Q1a": "2"})
        )
        with caplog.at_level(logging.WARNING, logger="marksheet_digitizer"):
            out, _ = reconcile([{"Admission No": "X016", "1": ""}], data)
        assert out[0]["1"] == "1"
        assert "share suffix" in caplog.text

    def test_short_identifiers_compare_whole(self):
        data = AggregatedData().with_sheet("16", {"Q1a": "3"})
        out, updated = reconcile([{"Admission No": "16", "1": ""}], data)
        assert out[0]["1"] == "3"
        assert updated == 1


class TestFindColumn:
    def test_bare_number_wins_for_subpart_a(self):
        headers = ["1.a (2.00)", "1a", "1"]
        assert find_column("Q1a", headers) == "1"

    def test_compact_before_dotted(self):
        assert find_column("Q1a", ["1.a (2.00) CO1", "1a"]) == "1a"

    def test_header_token_is_first_word(self):
        assert find_column("Q6b", ["Name", "6.b (7.00) CO2"]) == "6.b (7.00) CO2"

    def test_bare_number_only_for_subpart_a(self):
        assert find_column("Q1b", ["1"]) is None

    def test_key_without_subpart_has_no_column(self):
        assert find_column("Q6", ["6", "6a"]) is None

    def test_case_insensitive_tokens(self):
        assert find_column("Q2c", ["2C"]) == "2C"

    def test_no_prefix_confusion(self):
        assert find_column("Q1a", ["10", "11a"]) is None

    def test_total(self):
        assert find_column(TOTAL_KEY, ["Name", "TOTAL (50)"]) == "TOTAL (50)"
        assert find_column(TOTAL_KEY, ["Name"]) is None


class TestParseRoster:
    def test_header_found_after_preamble(self):
        table = parse_roster(ROSTER)
        assert table.preamble == ["Course: CS101,,,,", "Semester 5,,,,"]
        assert table.headers == ["Admission No", "Name", "1", "6.a (7.00) CO1", "Total"]
        assert [r["Name"] for r in table.rows] == ["Alice", "Bob"]

    def test_short_rows_padded(self):
        bob = parse_roster(ROSTER).rows[1]
        assert bob == {"Admission No": "JEC23AD017", "Name": "Bob", "1": "4", "6.a (7.00) CO1": "", "Total": ""}

    def test_bytes_with_bom(self):
        table = parse_roster(b"\xef\xbb\xbf" + ROSTER.encode("utf-8"))
        assert table.headers[0] == "Admission No"

    def test_missing_headers(self):
        with pytest.raises(RosterError, match="not found"):
            parse_roster("Roll,Student\n1,Alice\n")

    def test_header_beyond_scan_window(self):
        text = "x\n" * 10 + "Admission No,Name\n"
        with pytest.raises(RosterError):
            parse_roster(text)
        assert parse_roster(text, scan_lines=11).headers == ["Admission No", "Name"]

    def test_identity_column_must_match_exactly(self):
        with pytest.raises(RosterError, match="column"):
            parse_roster("Admission No.,Name\nA1,Alice\n")

    def test_not_utf8(self):
        with pytest.raises(RosterError):
            parse_roster(b"Admission No,Name\n\xff\xfe,\n")


class TestRenderMergedCsv:
    def test_merge_and_render(self):
        data = AggregatedData().with_sheet("JEC23AD016", {"Q1a": "5", "Q6a": "6"}, total="11")
        table = parse_roster(ROSTER)
        rows, updated = reconcile(table.rows, data, headers=table.headers)
        assert updated == 1

        text = render_merged_csv(table, rows).decode("utf-8")
        assert text.splitlines() == [
            "Course: CS101,,,,",
            "Semester 5,,,,",
            "Admission No,Name,1,6.a (7.00) CO1,Total",
            '"JEC23AD016","Alice","5","6","11"',
            '"JEC23AD017","Bob","4","",""',
        ]

    def test_defaults_to_parsed_rows(self):
        table = parse_roster(ROSTER)
        assert render_merged_csv(table).decode("utf-8").splitlines()[3] == '"JEC23AD016","Alice","","",""'
