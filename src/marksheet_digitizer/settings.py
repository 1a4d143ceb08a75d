# marksheet_digitizer/settings.py
from __future__ import annotations

from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class Settings:
    # Single source of truth for runtime defaults
    store_dir: str = str(Path.home() / ".marksheet-digitizer")
    store_key: str = "markSheetData"      # snapshot name inside store_dir
    model: str = "gemini-2.5-flash"
    api_key: Optional[str] = None
    max_image_side: int = 2000            # px, longest side sent to the OCR model
    pdf_dpi: int = 200
    ocr_retries: int = 2
    ocr_retry_delay: float = 1.0          # seconds, doubled per attempt
    identity_header: str = "Admission No"
    name_header: str = "Name"
    header_scan_lines: int = 10
    log_level: str = "INFO"


DEFAULTS = Settings()

_FIELD_NAMES = {f.name for f in fields(Settings)}


def apply_overrides(base: Settings = DEFAULTS, **values) -> Settings:
    # produce an overridden immutable config without mutating base; None means "keep"
    unknown = set(values) - _FIELD_NAMES
    if unknown:
        raise ValueError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
    changes = {k: v for k, v in values.items() if v is not None}
    return replace(base, **changes)
