import json

import pytest
from google.api_core import exceptions as gexc

from marksheet_digitizer.ocr_client import ExtractionError, GeminiMarksheetReader
from marksheet_digitizer.sheet_mapper import map_ocr_result

from helpers import FakeModel, ocr

GOOD = json.dumps({
    "regNo": "JEC23AD016",
    "questionsAndMarks": [{"questionNumber": "1", "a": "5", "b": "3"}],
    "totalMarks": "8",
})


def reader_for(*answers, retries=2):
    model = FakeModel(*answers)
    return GeminiMarksheetReader(client=model, retries=retries, retry_delay=0), model


class TestExtraction:
    def test_parses_result(self):
        reader, model = reader_for(GOOD)
        result = reader(b"jpeg")
        assert result.reg_no == "JEC23AD016"
        assert result.total_marks == "8"
        assert model.calls[0][1] == {"mime_type": "image/jpeg", "data": b"jpeg"}

    def test_fenced_json_accepted(self):
        reader, _ = reader_for(f"```json\n{GOOD}\n```")
        assert reader(b"x").reg_no == "JEC23AD016"

    def test_retries_bad_json(self):
        reader, model = reader_for("sorry, no", GOOD)
        assert reader(b"x").reg_no == "JEC23AD016"
        assert len(model.calls) == 2

    def test_retries_transient_api_errors(self):
        reader, model = reader_for(gexc.ServiceUnavailable("busy"), gexc.ResourceExhausted("quota"), GOOD)
        assert reader(b"x").reg_no == "JEC23AD016"
        assert len(model.calls) == 3

    def test_gives_up_after_retries(self):
        reader, model = reader_for("bad", "bad", retries=1)
        with pytest.raises(ExtractionError):
            reader(b"x")
        assert len(model.calls) == 2

    @pytest.mark.parametrize("error", [gexc.InvalidArgument("bad image"), gexc.PermissionDenied("blocked")])
    def test_permanent_api_errors_not_retried(self, error):
        reader, model = reader_for(error, GOOD)
        with pytest.raises(ExtractionError, match="request failed"):
            reader(b"x")
        assert len(model.calls) == 1

    def test_blocked_response(self):
        class Blocked:
            @property
            def text(self):
                raise ValueError("response was blocked")

        reader, _ = reader_for(Blocked())
        with pytest.raises(ExtractionError, match="blocked"):
            reader(b"x")

    def test_non_object_answer(self):
        reader, _ = reader_for("[]")
        with pytest.raises(ExtractionError, match="JSON object"):
            reader(b"x")

    def test_requires_api_key_without_client(self):
        with pytest.raises(ExtractionError, match="API key"):
            GeminiMarksheetReader(api_key=None)


class TestVerifyMarks:
    def _sheet(self):
        return map_ocr_result(ocr("A1", [{"questionNumber": "1", "a": "5", "b": "3"}]))

    def test_applies_flagged_corrections_only(self):
        answer = json.dumps([
            {"question": "Q1a", "extractedMark": "5", "correctedMark": "", "isAccurate": True},
            {"question": "Q1b", "extractedMark": "3", "correctedMark": "8", "isAccurate": False},
            {"question": "Q9a", "extractedMark": "", "correctedMark": "1", "isAccurate": False},
        ])
        reader, model = reader_for(answer)
        sheet = self._sheet()

        assert reader.verify_marks(sheet) == 1
        assert sheet.effective_marks() == {"Q1a": "5", "Q1b": "8"}
        assert sheet.marks[1].extracted_mark == "3"
        assert "Question: Q1b, Extracted Mark: 3" in model.calls[0][0]

    def test_flag_without_correction_ignored(self):
        answer = json.dumps([{"question": "Q1a", "correctedMark": "", "isAccurate": False}])
        reader, _ = reader_for(answer)
        sheet = self._sheet()
        assert reader.verify_marks(sheet) == 0
        assert sheet.effective_marks()["Q1a"] == "5"

    def test_non_list_answer(self):
        reader, _ = reader_for("{}")
        with pytest.raises(ExtractionError):
            reader.verify_marks(self._sheet())

    def test_api_error_becomes_extraction_error(self):
        reader, _ = reader_for(gexc.PermissionDenied("blocked"))
        sheet = self._sheet()
        with pytest.raises(ExtractionError):
            reader.verify_marks(sheet)
        assert sheet.effective_marks() == {"Q1a": "5", "Q1b": "3"}

    def test_empty_sheet_skips_model(self):
        reader, model = reader_for()
        assert reader.verify_marks(map_ocr_result(ocr("A1", total="4"))) == 0
        assert model.calls == []
