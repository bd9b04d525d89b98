"""Tests for ChangeDetector.

Covers:
- First pass reports every entry as created; second pass is empty
- Updates, deletes (tombstones), and directory entries
- Exclusions never produce change records
- Rename coalescing, including the ambiguous case
- Unreachable roots and unreadable subtrees delete nothing
- outstanding() re-sends pending records
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path

import pytest
from conftest import write

from remote_mirror.errors import AccessError
from remote_mirror.mirror.catalog import ChangeCatalog
from remote_mirror.mirror.copier import PARTIAL_SUFFIX
from remote_mirror.mirror.detector import ChangeDetector, observe
from remote_mirror.mirror.filters import FilterSet
from remote_mirror.mirror.models import ChangeKind, EntryKind

T0 = 1_700_000_000_000_000_000


def _detector(root: Path, state_dir: Path, filters=None) -> ChangeDetector:
    return ChangeDetector(
        root, filters or FilterSet(), ChangeCatalog(root, state_dir)
    )


def _kinds(changes) -> list[tuple[str, str]]:
    return [(c.kind.value, c.path) for c in changes]


class TestObserve:
    def test_file(self, tmp_path: Path):
        path = write(tmp_path / "f.txt", "abc", mtime_ns=T0)
        assert observe(path) == (EntryKind.FILE, 3, T0)

    def test_directory_has_zero_signature(self, tmp_path: Path):
        assert observe(tmp_path) == (EntryKind.DIRECTORY, 0, 0)

    def test_missing(self, tmp_path: Path):
        assert observe(tmp_path / "nope") is None


class TestDetectBasics:
    def test_first_pass_reports_creates(self, root_a, state_dir):
        write(root_a / "b.txt", "b")
        write(root_a / "a" / "x.txt", "x")
        det = _detector(root_a, state_dir)

        changes = det.detect()

        assert _kinds(changes) == [
            ("create", "a"),
            ("create", "a/x.txt"),
            ("create", "b.txt"),
        ]
        assert changes[0].entry_kind == EntryKind.DIRECTORY
        assert all(c.version == 1 for c in changes)

    def test_idempotent_on_unchanged_tree(self, root_a, state_dir):
        write(root_a / "x.txt", "x")
        write(root_a / "d" / "y.txt", "y")
        det = _detector(root_a, state_dir)

        det.detect()
        assert det.detect() == []

    def test_update_on_signature_change(self, root_a, state_dir):
        path = write(root_a / "x.txt", "one", mtime_ns=T0)
        det = _detector(root_a, state_dir)
        det.detect()

        write(path, "two", mtime_ns=T0 + 1_000_000_000)
        changes = det.detect()

        assert _kinds(changes) == [("update", "x.txt")]
        assert changes[0].version == 2

    def test_activity_inside_directory_is_not_a_directory_change(
        self, root_a, state_dir
    ):
        (root_a / "d").mkdir()
        det = _detector(root_a, state_dir)
        det.detect()

        write(root_a / "d" / "new.txt", "n")
        assert _kinds(det.detect()) == [("create", "d/new.txt")]

    def test_delete_sets_tombstone(self, root_a, state_dir):
        path = write(root_a / "x.txt", "x")
        det = _detector(root_a, state_dir)
        det.detect()

        path.unlink()
        changes = det.detect()

        assert _kinds(changes) == [("delete", "x.txt")]
        rec = det.catalog.lookup("x.txt")
        assert rec.tombstone
        assert rec.deleted_at is not None
        assert rec.version == 2

    def test_recreated_after_delete_is_create(self, root_a, state_dir):
        path = write(root_a / "x.txt", "x")
        det = _detector(root_a, state_dir)
        det.detect()
        path.unlink()
        det.detect()

        write(path, "back again")
        changes = det.detect()

        assert _kinds(changes) == [("create", "x.txt")]
        assert changes[0].version == 3

    def test_changes_sorted_by_path(self, root_a, state_dir):
        for name in ("zeta.txt", "alpha.txt", "mid/x.txt"):
            write(root_a / name, name)
        det = _detector(root_a, state_dir)
        paths = [c.path for c in det.detect()]
        assert paths == sorted(paths)


class TestDetectFilters:
    def test_excluded_entries_never_reported(self, root_a, state_dir):
        write(root_a / "keep.txt", "k")
        write(root_a / "junk.tmp", "j")
        write(root_a / "cache" / "blob.bin", "b")
        write(root_a / "src" / "cache" / "deep.txt", "d")
        filters = FilterSet.from_settings("*.tmp", "cache")

        changes = _detector(root_a, state_dir, filters).detect()

        assert [c.path for c in changes] == ["keep.txt", "src"]

    def test_partial_copies_ignored(self, root_a, state_dir):
        write(root_a / f".x.txt.abc{PARTIAL_SUFFIX}", "half")
        assert _detector(root_a, state_dir).detect() == []

    def test_newly_excluded_purged_without_delete(self, root_a, state_dir):
        write(root_a / "a.log", "l")
        catalog = ChangeCatalog(root_a, state_dir)
        ChangeDetector(root_a, FilterSet(), catalog).detect()

        filtered = ChangeDetector(
            root_a, FilterSet.from_settings("*.log", None), catalog
        )
        assert filtered.detect() == []
        assert catalog.lookup("a.log") is None

    @pytest.mark.skipif(os.name == "nt", reason="POSIX symlinks")
    def test_symlinks_ignored(self, root_a, state_dir, tmp_path):
        target = write(tmp_path / "outside.txt", "o")
        (root_a / "link.txt").symlink_to(target)
        assert _detector(root_a, state_dir).detect() == []


class TestRenameCoalescing:
    def test_rename_is_one_record(self, root_a, state_dir):
        write(root_a / "a.txt", "content")
        det = _detector(root_a, state_dir)
        det.detect()

        os.rename(root_a / "a.txt", root_a / "b.txt")
        changes = det.detect()

        assert len(changes) == 1
        assert changes[0].kind == ChangeKind.RENAME
        assert changes[0].path == "b.txt"
        assert changes[0].old_path == "a.txt"
        assert changes[0].describe() == "RENAME a.txt -> b.txt"
        # The old path is kept as a tombstone until the peer confirms.
        assert det.catalog.lookup("a.txt").tombstone

    def test_ambiguous_moves_not_paired(self, root_a, state_dir):
        for name in ("a1.txt", "a2.txt"):
            write(root_a / name, "same", mtime_ns=T0)
        det = _detector(root_a, state_dir)
        det.detect()

        os.rename(root_a / "a1.txt", root_a / "b1.txt")
        os.rename(root_a / "a2.txt", root_a / "b2.txt")
        changes = det.detect()

        assert sorted(_kinds(changes)) == [
            ("create", "b1.txt"),
            ("create", "b2.txt"),
            ("delete", "a1.txt"),
            ("delete", "a2.txt"),
        ]

    def test_directory_moves_are_create_and_delete(self, root_a, state_dir):
        (root_a / "old").mkdir()
        det = _detector(root_a, state_dir)
        det.detect()

        os.rename(root_a / "old", root_a / "new")
        assert _kinds(det.detect()) == [("create", "new"), ("delete", "old")]


class TestUnreachable:
    def test_missing_root_raises_and_keeps_catalog(self, root_a, state_dir):
        write(root_a / "x.txt", "x")
        det = _detector(root_a, state_dir)
        det.detect()

        shutil.rmtree(root_a)
        with pytest.raises(AccessError):
            det.detect()
        assert not det.catalog.lookup("x.txt").tombstone

    @pytest.mark.skipif(
        os.name == "nt" or os.geteuid() == 0,
        reason="needs POSIX permissions enforced",
    )
    def test_unreadable_subtree_not_deleted(self, root_a, state_dir):
        write(root_a / "locked" / "x.txt", "x")
        det = _detector(root_a, state_dir)
        det.detect()

        (root_a / "locked").chmod(0)
        try:
            assert det.detect() == []
        finally:
            (root_a / "locked").chmod(0o755)
        assert not det.catalog.lookup("locked/x.txt").tombstone


class TestOutstanding:
    def test_pending_records_resent(self, root_a, state_dir):
        write(root_a / "new.txt", "n")
        det = _detector(root_a, state_dir)
        det.detect()
        # Nothing replicated yet: the next pass is empty but the record
        # is still owed to the peer.
        fresh = det.detect()
        assert fresh == []

        work = det.outstanding(fresh)
        assert _kinds(work) == [("create", "new.txt")]

    def test_synced_records_not_resent(self, root_a, state_dir):
        write(root_a / "x.txt", "x")
        det = _detector(root_a, state_dir)
        change = det.detect()[0]
        det.catalog.mark_synced("x.txt", change.version)

        assert det.outstanding(det.detect()) == []

    def test_kinds_follow_record_state(self, root_a, state_dir):
        upd = write(root_a / "upd.txt", "1", mtime_ns=T0)
        gone = write(root_a / "gone.txt", "g")
        det = _detector(root_a, state_dir)
        for c in det.detect():
            det.catalog.mark_synced(c.path, c.version)

        write(upd, "22", mtime_ns=T0 + 1)
        gone.unlink()
        det.detect()

        assert _kinds(det.outstanding([])) == [
            ("delete", "gone.txt"),
            ("update", "upd.txt"),
        ]

    def test_fresh_changes_not_duplicated(self, root_a, state_dir):
        write(root_a / "a.txt", "a")
        det = _detector(root_a, state_dir)
        fresh = det.detect()
        assert det.outstanding(fresh) == fresh
