"""Shared pytest fixtures for remote-mirror tests."""

from __future__ import annotations

import os
from pathlib import Path

import pytest

from remote_mirror.config import Config
from remote_mirror.mirror.catalog import ChangeCatalog
from remote_mirror.mirror.copier import TreeCopier
from remote_mirror.mirror.detector import ChangeDetector
from remote_mirror.mirror.engine import ReplicationEngine, Replica
from remote_mirror.mirror.filters import FilterSet

_ENV_KEYS = (
    "MIRROR_PATH1",
    "MIRROR_PATH2",
    "MIRROR_CHECK_INTERVAL_SEC",
    "MIRROR_EXCLUDED_FILES",
    "MIRROR_EXCLUDED_FOLDERS",
    "MIRROR_LOGGER_VERBOSITY",
    "MIRROR_STATE_DIR",
    "MIRROR_RECYCLE_DIR",
    "REMOTE_MIRROR_CONFIG",
    "LOG_LEVEL",
    "LOG_FILE",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Keep the developer's shell settings out of every test."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# Filesystem helpers
# ---------------------------------------------------------------------------


def write(path: Path, text: str, mtime_ns: int | None = None) -> Path:
    """Write *text* to *path*, creating parents, optionally pinning mtime.

    Tests that rewrite a file pin the mtime so the change is visible even
    on filesystems with coarse timestamps.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")
    if mtime_ns is not None:
        os.utime(path, ns=(mtime_ns, mtime_ns))
    return path


def tree_files(root: Path) -> dict[str, str]:
    """Relative path -> content for every file under *root*."""
    return {
        p.relative_to(root).as_posix(): p.read_text(encoding="utf-8")
        for p in sorted(root.rglob("*"))
        if p.is_file()
    }


class FakeLocks:
    """Lock check whose answer the test controls."""

    def __init__(self) -> None:
        self.locked: set[Path] = set()

    def __call__(self, path: Path) -> bool:
        return Path(path) in self.locked


# ---------------------------------------------------------------------------
# Tree fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def root_a(tmp_path: Path) -> Path:
    path = tmp_path / "a"
    path.mkdir()
    return path


@pytest.fixture
def root_b(tmp_path: Path) -> Path:
    path = tmp_path / "b"
    path.mkdir()
    return path


@pytest.fixture
def state_dir(tmp_path: Path) -> Path:
    return tmp_path / "state"


@pytest.fixture
def locks() -> FakeLocks:
    return FakeLocks()


class Mirror:
    """Two replicas wired together the way the scheduler wires them."""

    def __init__(
        self,
        root_a: Path,
        root_b: Path,
        state_dir: Path,
        locks: FakeLocks,
        filters: FilterSet | None = None,
        recycle_dir: str | None = None,
    ) -> None:
        filters = filters or FilterSet()
        self.a = Replica(root_a, ChangeCatalog(root_a, state_dir))
        self.b = Replica(root_b, ChangeCatalog(root_b, state_dir))
        self.detector_a = ChangeDetector(root_a, filters, self.a.catalog)
        self.detector_b = ChangeDetector(root_b, filters, self.b.catalog)
        self.engine = ReplicationEngine(
            copier=TreeCopier(lock_probe=locks, sleep=lambda _s: None),
            lock_probe=locks,
            source_probe=locks,
            recycle_dir=recycle_dir,
        )

    def cycle(self):
        """One full cycle: detect both, replicate A->B then B->A."""
        work_a = self.detector_a.outstanding(self.detector_a.detect())
        work_b = self.detector_b.outstanding(self.detector_b.detect())
        forward = self.engine.replicate_one_way(
            work_a, self.a, self.b, defer_conflicts=True
        )
        backward = self.engine.replicate_one_way(work_b, self.b, self.a)
        return forward, backward


@pytest.fixture
def mirror(root_a, root_b, state_dir, locks) -> Mirror:
    return Mirror(root_a, root_b, state_dir, locks)


@pytest.fixture
def mirror_config(root_a, root_b, state_dir) -> Config:
    """A Config over the two tmp trees."""
    return Config(
        path1=str(root_a),
        path2=str(root_b),
        check_interval_sec=1,
        state_dir=str(state_dir),
        lock_wait_attempts=1,
        lock_wait_interval_sec=0.01,
    )
