# marksheet_digitizer/snapshot_io.py
from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any, Optional

from .log import get_logger

logger = get_logger("snapshot_io")


class SnapshotStore:
    """
    Process-wide keyed JSON store: one file per key under `root`.
    Writes replace the whole snapshot (temp file + os.replace), so a reader
    sees either the previous or the new snapshot, never a partial one.
    """

    def __init__(self, root: str | Path):
        self.root = Path(root).expanduser()

    def path_for(self, key: str) -> Path:
        return self.root / f"{key}.json"

    def read(self, key: str) -> Optional[Any]:
        """Parsed JSON for `key`, or None when absent. Malformed JSON raises ValueError."""
        p = self.path_for(key)
        if not p.exists():
            return None
        return json.loads(p.read_text(encoding="utf-8"))

    def write(self, key: str, value: Any) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        p = self.path_for(key)
        tmp = p.with_suffix(".json.tmp")
        tmp.write_text(json.dumps(value, ensure_ascii=False, indent=2), encoding="utf-8")
        os.replace(tmp, p)
        return p

    def remove(self, key: str) -> None:
        p = self.path_for(key)
        if p.exists():
            p.unlink()
            logger.debug("Removed snapshot %s", p)
