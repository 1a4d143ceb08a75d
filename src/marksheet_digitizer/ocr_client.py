# marksheet_digitizer/ocr_client.py
"""
Gemini-backed mark-sheet reader.

`GeminiMarksheetReader` is the OCR collaborator: one JPEG payload in, one
OcrResult out. `verify_marks` is the optional second pass that asks the model
to double-check a reviewed sheet and pre-fills corrected marks it disagrees with.
"""
from __future__ import annotations

import json
import time
from typing import Any, Callable, List, Optional

import google.generativeai as genai
from google.api_core import exceptions as gexc

from .log import get_logger
from .settings import DEFAULTS, Settings
from .sheet_mapper import OcrResult, SheetRecord

logger = get_logger("ocr")

Extractor = Callable[[bytes], OcrResult]

# transient API failures worth another attempt
RETRYABLE = (
    gexc.ServiceUnavailable,
    gexc.ResourceExhausted,
    gexc.DeadlineExceeded,
    gexc.InternalServerError,
)

EXTRACT_PROMPT = """You read handwritten university mark-sheets.
The sheet has a register number near the top, usually in a row of boxes with
one character per box; join those characters into one string (e.g. "JEC23AD016").
Below it is a table of question numbers (typically 1 to 34). Each question may
have sub-parts a, b, c and d with a mark written in red ink.
At the bottom or side of the table there is a "Total Marks" value.

Return JSON only, in exactly this shape:
{
  "regNo": "<register number>",
  "questionsAndMarks": [
    {"questionNumber": "<number as string>", "a": "<mark>", "b": "<mark>", "c": "<mark>", "d": "<mark>"}
  ],
  "totalMarks": "<total>"
}

Rules:
- Every value is a string. Marks are the numbers as written (e.g. "4", "2.5").
- Leave a sub-part out (or empty) when it has no mark, was not attempted, or does not exist.
- A question with no marks in any sub-part may be omitted or listed with empty sub-parts.
- Leave "totalMarks" empty when no total is written.
- Double-check the register number and every digit; accuracy matters more than speed.
"""

VERIFY_PROMPT = """You check marks that were read from a handwritten mark-sheet.
For every row below decide whether the extracted mark is plausible and correctly read.

{rows}

Return JSON only: a list with one object per row, in the same order:
[{{"question": "<question>", "extractedMark": "<as given>", "correctedMark": "<fix or empty>", "isAccurate": true}}]
Set "isAccurate" to false and fill "correctedMark" only when the extracted mark is wrong.
"""


class ExtractionError(RuntimeError):
    """The OCR model could not produce a parseable answer."""


def _parse_json(text: str) -> Any:
    text = (text or "").strip()
    if text.startswith("```"):
        # tolerate a fenced block even with response_mime_type set
        text = text.strip("`")
        if text.lower().startswith("json"):
            text = text[4:]
    return json.loads(text)


class GeminiMarksheetReader:
    """Callable OCR collaborator: reader(jpeg_bytes) -> OcrResult."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULTS.model,
        retries: int = DEFAULTS.ocr_retries,
        retry_delay: float = DEFAULTS.ocr_retry_delay,
        client: Any = None,
    ):
        if client is None:
            if not api_key:
                raise ExtractionError("No Gemini API key configured (set GEMINI_API_KEY or api_key in the config file).")
            genai.configure(api_key=api_key)
            client = genai.GenerativeModel(model)
        self.client = client
        self.model = model
        self.retries = retries
        self.retry_delay = retry_delay

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiMarksheetReader":
        return cls(
            api_key=settings.api_key,
            model=settings.model,
            retries=settings.ocr_retries,
            retry_delay=settings.ocr_retry_delay,
        )

    def _generate(self, parts: List[Any]) -> Any:
        """generate_content + JSON parse, retried with exponential backoff."""
        last_exc: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            try:
                response = self.client.generate_content(
                    parts,
                    generation_config=genai.types.GenerationConfig(
                        temperature=0.0,
                        response_mime_type="application/json",
                    ),
                )
                return _parse_json(response.text)
            except (json.JSONDecodeError, *RETRYABLE) as e:
                last_exc = e
                logger.warning("Gemini attempt %d/%d failed: %s", attempt + 1, self.retries + 1, e)
                if attempt < self.retries:
                    time.sleep(self.retry_delay * (2 ** attempt))
            except (gexc.GoogleAPICallError, ValueError) as e:
                # permanent API errors, and response.text on a blocked answer
                raise ExtractionError(f"Gemini request failed: {e!r}") from e
        raise ExtractionError(f"Gemini gave no usable answer after {self.retries + 1} attempt(s): {last_exc!r}")

    def __call__(self, payload: bytes, mime_type: str = "image/jpeg") -> OcrResult:
        data = self._generate([EXTRACT_PROMPT, {"mime_type": mime_type, "data": payload}])
        if not isinstance(data, dict):
            raise ExtractionError(f"Expected a JSON object from the model, got {type(data).__name__}")
        result = OcrResult.from_dict(data)
        logger.info(
            "Extracted sheet %s: %d sub-part mark(s), total %s",
            result.reg_no or "?", result.subpart_mark_count(), result.total_marks or "N/A",
        )
        return result

    def verify_marks(self, sheet: SheetRecord) -> int:
        """
        Ask the model to re-check the extracted marks of `sheet`; apply its
        corrections to rows it flags as inaccurate. Returns how many were applied.
        """
        if not sheet.marks:
            return 0
        rows = "\n".join(f"Question: {m.question}, Extracted Mark: {m.extracted_mark}" for m in sheet.marks)
        data = self._generate([VERIFY_PROMPT.format(rows=rows)])
        if not isinstance(data, list):
            raise ExtractionError("Expected a JSON list from the verification pass")

        known = {m.question for m in sheet.marks}
        applied = 0
        for item in data:
            if not isinstance(item, dict):
                continue
            question = str(item.get("question", "")).strip()
            corrected = str(item.get("correctedMark") or "").strip()
            if question in known and item.get("isAccurate") is False and corrected:
                sheet.set_mark(question, corrected)
                applied += 1
        logger.info("Verification suggested %d correction(s) for sheet %s", applied, sheet.reg_no)
        return applied
