# marksheet_digitizer/sheet_mapper.py
"""
Map one OCR extraction into a reviewable SheetRecord.

The OCR collaborator returns
  {"regNo": str, "questionsAndMarks": [{"questionNumber": str, "a"?: str, ...}], "totalMarks"?: str}
Each non-empty sub-part mark becomes one `Q{N}{p}` entry; a question with no
marks at all still gets a `Q{N}a` placeholder so it can be filled during review.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .log import get_logger
from .question_keys import SUBPARTS, make_key, sort_keys

logger = get_logger("sheet_mapper")


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


@dataclass(frozen=True)
class QuestionMarks:
    question_number: str
    a: str = ""
    b: str = ""
    c: str = ""
    d: str = ""

    def mark(self, subpart: str) -> str:
        return getattr(self, subpart)

    def has_any_mark(self) -> bool:
        return any(self.mark(p) for p in SUBPARTS)


@dataclass(frozen=True)
class OcrResult:
    reg_no: str
    questions_and_marks: List[QuestionMarks] = field(default_factory=list)
    total_marks: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "OcrResult":
        entries = []
        for raw in data.get("questionsAndMarks") or []:
            if not isinstance(raw, Mapping):
                continue
            entries.append(QuestionMarks(
                question_number=_text(raw.get("questionNumber")),
                **{p: _text(raw.get(p)) for p in SUBPARTS},
            ))
        total = data.get("totalMarks")
        return cls(
            reg_no=_text(data.get("regNo")),
            questions_and_marks=entries,
            total_marks=None if total is None else _text(total),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "regNo": self.reg_no,
            "questionsAndMarks": [
                {"questionNumber": q.question_number, **{p: q.mark(p) for p in SUBPARTS if q.mark(p)}}
                for q in self.questions_and_marks
            ],
        }
        if self.total_marks is not None:
            out["totalMarks"] = self.total_marks
        return out

    def subpart_mark_count(self) -> int:
        return sum(1 for q in self.questions_and_marks for p in SUBPARTS if q.mark(p))


def is_usable(result: Optional[OcrResult]) -> bool:
    """An extraction is usable only with a register number and at least one mark or a total."""
    if result is None or not result.reg_no:
        return False
    return result.subpart_mark_count() > 0 or bool(result.total_marks)


@dataclass
class SheetMark:
    question: str
    extracted_mark: str
    corrected_mark: str

    @property
    def effective(self) -> str:
        return self.corrected_mark if self.corrected_mark.strip() else self.extracted_mark


@dataclass
class SheetRecord:
    reg_no: str
    marks: List[SheetMark] = field(default_factory=list)
    extracted_total: Optional[str] = None
    corrected_total: Optional[str] = None

    def _find(self, question: str) -> SheetMark:
        for m in self.marks:
            if m.question == question:
                return m
        raise KeyError(question)

    def set_mark(self, question: str, value: str) -> None:
        self._find(question).corrected_mark = value

    def set_total(self, value: str) -> None:
        self.corrected_total = value

    def effective_marks(self) -> Dict[str, str]:
        return {m.question: m.effective for m in self.marks}

    def effective_total(self) -> str:
        corrected = self.corrected_total or ""
        if corrected.strip():
            return corrected
        return self.extracted_total or ""


def map_ocr_result(result: OcrResult) -> SheetRecord:
    by_key: Dict[str, SheetMark] = {}

    def _add(key: str, mark: str) -> None:
        if key in by_key:
            logger.warning("Duplicate question %s on sheet %s; keeping the first value", key, result.reg_no)
            return
        by_key[key] = SheetMark(question=key, extracted_mark=mark, corrected_mark=mark)

    for qm in result.questions_and_marks:
        if not qm.question_number:
            logger.debug("Skipping entry without a question number on sheet %s", result.reg_no)
            continue
        if not qm.has_any_mark():
            _add(make_key(qm.question_number, "a"), "")
            continue
        for p in SUBPARTS:
            if qm.mark(p):
                _add(make_key(qm.question_number, p), qm.mark(p))

    ordered = [by_key[k] for k in sort_keys(by_key)]
    return SheetRecord(
        reg_no=result.reg_no,
        marks=ordered,
        extracted_total=result.total_marks,
        corrected_total=result.total_marks,
    )
