# marksheet_digitizer/aggregate.py
"""
Consolidated marks: register number -> {question key -> effective mark}.

`AggregatedData` is the value (treated as immutable: every operation returns a
new one). `AggregationStore` owns the current value and persists a full
snapshot after each mutation. Invariant kept by every operation: `questions`
is exactly the sorted union of the keys of all sheets.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from .log import get_logger
from .question_keys import TOTAL_KEY, sort_keys
from .snapshot_io import SnapshotStore

logger = get_logger("aggregate")

DEFAULT_STORE_KEY = "markSheetData"

Marks = Dict[str, str]


def _union_keys(sheets: Mapping[str, Mapping[str, str]]) -> List[str]:
    keys = set()
    for marks in sheets.values():
        keys.update(marks)
    return sort_keys(keys)


@dataclass(frozen=True)
class AggregatedData:
    questions: List[str] = field(default_factory=list)
    sheets: Dict[str, Marks] = field(default_factory=dict)

    @classmethod
    def from_sheets(cls, sheets: Mapping[str, Mapping[str, str]]) -> "AggregatedData":
        copied = {reg: dict(marks) for reg, marks in sheets.items()}
        return cls(questions=_union_keys(copied), sheets=copied)

    def with_sheet(self, reg_no: str, marks: Mapping[str, str], total: Optional[str] = None) -> "AggregatedData":
        record = dict(marks)
        if total:
            record[TOTAL_KEY] = total
        sheets = dict(self.sheets)
        sheets[reg_no] = record
        return AggregatedData.from_sheets(sheets)

    def without_sheet(self, reg_no: str) -> "AggregatedData":
        if reg_no not in self.sheets:
            return self
        sheets = {reg: marks for reg, marks in self.sheets.items() if reg != reg_no}
        return AggregatedData.from_sheets(sheets)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "questions": list(self.questions),
            "sheets": {reg: dict(marks) for reg, marks in self.sheets.items()},
        }

    @classmethod
    def from_dict(cls, data: Any) -> "AggregatedData":
        """Validate a persisted snapshot. Raises ValueError when the shape is wrong."""
        if not isinstance(data, Mapping):
            raise ValueError("snapshot root must be an object")
        questions = data.get("questions")
        sheets = data.get("sheets")
        if not isinstance(questions, list) or not isinstance(sheets, Mapping):
            raise ValueError("snapshot needs a 'questions' list and a 'sheets' object")
        for reg, marks in sheets.items():
            if not isinstance(marks, Mapping):
                raise ValueError(f"sheet {reg!r} is not an object")
            for key, value in marks.items():
                if not isinstance(value, str):
                    raise ValueError(f"mark {reg!r}/{key!r} is not a string")
        # questions is recomputed so a hand-edited snapshot cannot break the union invariant
        return cls.from_sheets(sheets)

    def __len__(self) -> int:
        return len(self.sheets)


class AggregationStore:
    """The durable aggregate. Load at start, persist after every mutation, explicit clear."""

    def __init__(self, snapshots: SnapshotStore, key: str = DEFAULT_STORE_KEY):
        self.snapshots = snapshots
        self.key = key
        self.data = self._load()

    def _load(self) -> AggregatedData:
        try:
            raw = self.snapshots.read(self.key)
            if raw is None:
                return AggregatedData()
            data = AggregatedData.from_dict(raw)
        except ValueError as e:
            logger.warning("Discarding corrupt snapshot %s: %s", self.snapshots.path_for(self.key), e)
            self.snapshots.remove(self.key)
            return AggregatedData()
        logger.debug("Loaded %d sheet(s) from %s", len(data), self.snapshots.path_for(self.key))
        return data

    def _persist(self, data: AggregatedData) -> AggregatedData:
        self.snapshots.write(self.key, data.to_dict())
        self.data = data
        return data

    @property
    def questions(self) -> List[str]:
        return self.data.questions

    @property
    def sheets(self) -> Dict[str, Marks]:
        return self.data.sheets

    def __contains__(self, reg_no: str) -> bool:
        return reg_no in self.data.sheets

    def upsert(self, reg_no: str, marks: Mapping[str, str], total: Optional[str] = None) -> AggregatedData:
        """Insert or fully replace the record for `reg_no`."""
        replaced = reg_no in self.data.sheets
        data = self._persist(self.data.with_sheet(reg_no, marks, total))
        logger.info("%s sheet %s (%d sheet(s) total)", "Replaced" if replaced else "Added", reg_no, len(data))
        return data

    def delete(self, reg_no: str) -> AggregatedData:
        """Remove the record for `reg_no`; absent register numbers are a no-op."""
        if reg_no not in self.data.sheets:
            logger.debug("Delete of unknown sheet %s ignored", reg_no)
            return self.data
        data = self._persist(self.data.without_sheet(reg_no))
        logger.info("Deleted sheet %s (%d sheet(s) left)", reg_no, len(data))
        return data

    def clear(self) -> AggregatedData:
        self.snapshots.remove(self.key)
        self.data = AggregatedData()
        logger.info("Cleared all sheet data")
        return self.data

    def reload(self) -> AggregatedData:
        self.data = self._load()
        return self.data
