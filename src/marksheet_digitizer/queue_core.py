# marksheet_digitizer/queue_core.py
"""
Sequential OCR worklist and the single "current review sheet".

Items are processed one at a time, in order, so at most one OCR call is in
flight. A failed item is marked "error" and the run continues; error items are
picked up again by the next `process` call. A stop request only keeps items
that have not started yet from starting.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from .aggregate import AggregatedData, AggregationStore
from .log import get_logger
from .sheet_mapper import OcrResult, SheetRecord, is_usable, map_ocr_result

logger = get_logger("queue")

PENDING = "pending"
PROCESSING = "processing"
DONE = "done"
ERROR = "error"

UNUSABLE_MESSAGE = "Could not find a register number or any marks/total marks. Try a clearer image."


class ReviewError(RuntimeError):
    """A review action was requested without a sheet to act on."""


@dataclass
class QueueItem:
    name: str
    payload: bytes = field(repr=False)
    status: str = PENDING
    progress: int = 0
    result: Optional[OcrResult] = None
    error: Optional[str] = None

    @property
    def runnable(self) -> bool:
        return self.status in (PENDING, ERROR)


@dataclass
class QueueSummary:
    processed: int = 0
    done: int = 0
    failed: int = 0
    stopped: bool = False


class ProcessingQueue:
    def __init__(self, max_items: Optional[int] = None):
        self.items: List[QueueItem] = []
        self.max_items = max_items

    def add(self, name: str, payload: bytes) -> QueueItem:
        if self.max_items is not None and len(self.items) >= self.max_items:
            raise ValueError(f"Queue is full ({self.max_items} item(s))")
        item = QueueItem(name=name, payload=payload)
        self.items.append(item)
        return item

    def remove(self, index: int) -> QueueItem:
        return self.items.pop(index)

    def pending(self) -> List[QueueItem]:
        return [it for it in self.items if it.runnable]

    def done(self) -> List[QueueItem]:
        return [it for it in self.items if it.status == DONE and it.result is not None]

    def process(
        self,
        extract: Callable[[bytes], OcrResult],
        should_stop: Optional[Callable[[], bool]] = None,
        on_update: Optional[Callable[[QueueItem], None]] = None,
    ) -> QueueSummary:
        summary = QueueSummary()

        def _set(item: QueueItem, **changes) -> None:
            for k, v in changes.items():
                setattr(item, k, v)
            if on_update:
                on_update(item)

        for item in self.pending():
            if should_stop and should_stop():
                summary.stopped = True
                logger.info("Stop requested; %d item(s) left unprocessed", len(self.pending()))
                break

            _set(item, status=PROCESSING, progress=10, error=None)
            try:
                result = extract(item.payload)
            except Exception as e:  # isolated per item
                logger.exception("Extraction failed for %s", item.name)
                _set(item, status=ERROR, progress=100, result=None, error=str(e) or type(e).__name__)
                summary.failed += 1
            else:
                if is_usable(result):
                    _set(item, status=DONE, progress=100, result=result)
                    summary.done += 1
                else:
                    logger.warning("Unusable extraction for %s", item.name)
                    _set(item, status=ERROR, progress=100, result=None, error=UNUSABLE_MESSAGE)
                    summary.failed += 1
            summary.processed += 1

        return summary


class ReviewSession:
    """Holds at most one sheet under review and folds it into the store on finalize."""

    def __init__(self, store: AggregationStore, queue: ProcessingQueue):
        self.store = store
        self.queue = queue
        self.current: Optional[SheetRecord] = None

    def reviewable(self) -> List[QueueItem]:
        return [it for it in self.queue.done() if it.result.reg_no not in self.store]

    def candidates(self) -> List[QueueItem]:
        """Every processed sheet once per register number, not yet finalized ones first."""
        seen = set()
        fresh: List[QueueItem] = []
        stored: List[QueueItem] = []
        for item in self.queue.done():
            reg_no = item.result.reg_no
            if reg_no in seen:
                continue
            seen.add(reg_no)
            (stored if reg_no in self.store else fresh).append(item)
        return fresh + stored

    def load_next(self) -> Optional[SheetRecord]:
        """Start reviewing the first processed, not yet finalized sheet (if none is under review)."""
        if self.current is None:
            items = self.reviewable()
            if items:
                self.current = map_ocr_result(items[0].result)
        return self.current

    def select(self, reg_no: str) -> SheetRecord:
        for item in self.queue.done():
            if item.result.reg_no == reg_no:
                self.current = map_ocr_result(item.result)
                return self.current
        raise ReviewError(f"No processed sheet with register number {reg_no}")

    def finalize(self) -> AggregatedData:
        if self.current is None:
            raise ReviewError("No sheet data available to finalize.")
        sheet = self.current
        data = self.store.upsert(sheet.reg_no, sheet.effective_marks(), sheet.effective_total())
        self.current = None
        self.load_next()
        return data

    def discard(self) -> None:
        self.current = None
