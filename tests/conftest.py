import pytest

from marksheet_digitizer.aggregate import AggregationStore
from marksheet_digitizer.snapshot_io import SnapshotStore


@pytest.fixture
def snapshots(tmp_path):
    return SnapshotStore(tmp_path / "store")


@pytest.fixture
def store(snapshots):
    return AggregationStore(snapshots)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for name in ("GEMINI_API_KEY", "GOOGLE_API_KEY", "MARKSHEET_STORE_DIR"):
        monkeypatch.delenv(name, raising=False)
