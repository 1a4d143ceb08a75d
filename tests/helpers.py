from types import SimpleNamespace

from marksheet_digitizer.sheet_mapper import OcrResult


def ocr(reg_no, questions=(), total=None):
    """Build an OcrResult the way the model's JSON arrives."""
    data = {"regNo": reg_no, "questionsAndMarks": list(questions)}
    if total is not None:
        data["totalMarks"] = total
    return OcrResult.from_dict(data)


class FakeModel:
    """Stands in for genai.GenerativeModel: replays canned answers (text or response objects) or raises."""

    def __init__(self, *answers):
        self.answers = list(answers)
        self.calls = []

    def generate_content(self, parts, generation_config=None):
        self.calls.append(parts)
        answer = self.answers.pop(0)
        if isinstance(answer, Exception):
            raise answer
        if isinstance(answer, str):
            return SimpleNamespace(text=answer)
        return answer
