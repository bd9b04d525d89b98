"""Snapshot-based change detection for one tree.

``ChangeDetector.detect()`` walks the tree, compares each surviving entry
against the tree's ``ChangeCatalog`` and returns the changes since the
previous pass, updating the catalog as it goes:

1. **Scan** -- ``os.scandir`` walk without following symlinks; excluded
   names, excluded folders (and their subtrees) and in-flight copy
   temporaries are skipped.
2. **Compare** -- unknown or tombstoned path -> Create; signature changed
   -> Update; tracked path gone -> Delete (tombstone).
3. **Coalesce** -- a file Delete and a file Create with the same
   signature in the same pass become one Rename, when the pairing is
   unambiguous.
4. **Order** -- changes are sorted by relative path, so repeated passes
   over the same tree produce identical change sets.

``outstanding()`` adds the catalog's still-pending records to a fresh
change set, which is how skipped or failed changes are retried on the
next cycle.
"""

from __future__ import annotations

import logging
import os
import time
from collections import defaultdict
from pathlib import Path

from remote_mirror.errors import AccessError
from remote_mirror.mirror.catalog import ChangeCatalog
from remote_mirror.mirror.copier import PARTIAL_SUFFIX
from remote_mirror.mirror.filters import FilterSet
from remote_mirror.mirror.models import (
    ChangeKind,
    ChangeRecord,
    EntryKind,
    FileRecord,
)

logger = logging.getLogger(__name__)

# (kind, size, mtime_ns) as observed on disk
Observed = tuple[EntryKind, int, int]


def observe(path: Path) -> Observed | None:
    """Stat *path* and return its signature, or ``None`` if absent.

    Directories always report size and mtime 0 so that activity inside a
    directory never registers as a change of the directory itself.
    """
    try:
        st = os.stat(path, follow_symlinks=False)
    except FileNotFoundError:
        return None
    if os.path.isdir(path) and not os.path.islink(path):
        return (EntryKind.DIRECTORY, 0, 0)
    return (EntryKind.FILE, st.st_size, st.st_mtime_ns)


class ChangeDetector:
    """Detect changes in one tree against its catalog.

    Args:
        root: Tree root to scan.
        filters: Exclusion rules (shared by both trees).
        catalog: The tree's catalog; updated in place by ``detect()``.
    """

    def __init__(
        self, root: Path, filters: FilterSet, catalog: ChangeCatalog
    ) -> None:
        self.root = root
        self.filters = filters
        self.catalog = catalog
        self._unreadable: set[str] = set()

    # ------------------------------------------------------------------
    # Scanning
    # ------------------------------------------------------------------

    def scan(self) -> dict[str, Observed]:
        """Return the current, filtered state of the tree.

        Raises:
            AccessError: If the tree root itself is not reachable.
        """
        if not self.root.is_dir():
            raise AccessError(str(self.root), "tree root unreachable")

        self._unreadable = set()
        found: dict[str, Observed] = {}
        self._scan_dir(self.root, "", found)
        return found

    def _scan_dir(
        self, directory: Path, rel_dir: str, found: dict[str, Observed]
    ) -> None:
        try:
            entries = list(os.scandir(directory))
        except OSError as exc:
            # Unreadable subtree: keep its catalog entries untouched
            # instead of reporting everything under it as deleted.
            logger.warning("Cannot scan %s: %s", directory, exc)
            self._unreadable.add(rel_dir)
            return

        for entry in entries:
            rel = f"{rel_dir}/{entry.name}" if rel_dir else entry.name
            try:
                if entry.is_symlink():
                    logger.debug("Ignoring symlink %s", entry.path)
                    continue
                is_dir = entry.is_dir(follow_symlinks=False)
                if self.filters.excludes(rel, is_dir):
                    continue
                if is_dir:
                    found[rel] = (EntryKind.DIRECTORY, 0, 0)
                    self._scan_dir(Path(entry.path), rel, found)
                elif entry.name.endswith(PARTIAL_SUFFIX):
                    continue
                else:
                    st = entry.stat(follow_symlinks=False)
                    found[rel] = (EntryKind.FILE, st.st_size, st.st_mtime_ns)
            except FileNotFoundError:
                # Vanished mid-scan; the next pass sees the final state.
                continue

    def _in_unreadable(self, rel: str) -> bool:
        for prefix in self._unreadable:
            if prefix == "" or rel == prefix or rel.startswith(prefix + "/"):
                return True
        return False

    # ------------------------------------------------------------------
    # Detection
    # ------------------------------------------------------------------

    def detect(self) -> list[ChangeRecord]:
        """Compare the tree against the catalog and return the changes.

        The catalog is updated for every emitted change.  Running
        ``detect()`` again on an unchanged tree returns an empty list.
        """
        current = self.scan()
        now = time.time()

        created: list[FileRecord] = []
        updated: list[FileRecord] = []
        deleted: list[FileRecord] = []

        for rel in sorted(current):
            kind, size, mtime_ns = current[rel]
            prior = self.catalog.lookup(rel)
            if prior is None or prior.tombstone:
                created.append(
                    FileRecord(
                        path=rel,
                        kind=kind,
                        size=size,
                        mtime_ns=mtime_ns,
                        version=prior.version + 1 if prior else 1,
                        synced_version=prior.synced_version if prior else 0,
                    )
                )
            elif prior.signature != (kind.value, size, mtime_ns):
                updated.append(
                    prior.model_copy(
                        update={
                            "kind": kind,
                            "size": size,
                            "mtime_ns": mtime_ns,
                            "version": prior.version + 1,
                        }
                    )
                )

        for prior in self.catalog.records():
            if prior.tombstone or prior.path in current:
                continue
            if self._in_unreadable(prior.path):
                continue
            if self.filters.excludes(
                prior.path, prior.kind == EntryKind.DIRECTORY
            ):
                # Newly excluded: stop tracking without propagating a delete.
                self.catalog.purge(prior.path)
                continue
            deleted.append(
                prior.model_copy(
                    update={
                        "tombstone": True,
                        "deleted_at": now,
                        "version": prior.version + 1,
                    }
                )
            )

        for record in created + updated + deleted:
            self.catalog.upsert(record)

        renames = self._pair_renames(deleted, created)
        renamed_old = set(renames.values())

        changes: list[ChangeRecord] = []
        for rec in created:
            if rec.path in renames:
                changes.append(
                    self._change(rec, ChangeKind.RENAME, renames[rec.path])
                )
            else:
                changes.append(self._change(rec, ChangeKind.CREATE))
        changes.extend(self._change(r, ChangeKind.UPDATE) for r in updated)
        changes.extend(
            self._change(r, ChangeKind.DELETE)
            for r in deleted
            if r.path not in renamed_old
        )
        changes.sort(key=lambda c: c.path)

        if changes:
            logger.debug(
                "Detected %d change(s) in %s", len(changes), self.root
            )
        return changes

    @staticmethod
    def _pair_renames(
        deleted: list[FileRecord], created: list[FileRecord]
    ) -> dict[str, str]:
        """Map new path -> old path for unambiguous file moves."""
        gone: dict[tuple, list[FileRecord]] = defaultdict(list)
        new: dict[tuple, list[FileRecord]] = defaultdict(list)
        for rec in deleted:
            if rec.kind == EntryKind.FILE:
                gone[rec.signature].append(rec)
        for rec in created:
            if rec.kind == EntryKind.FILE:
                new[rec.signature].append(rec)

        pairs: dict[str, str] = {}
        for sig, olds in gone.items():
            news = new.get(sig, [])
            if len(olds) == 1 and len(news) == 1:
                pairs[news[0].path] = olds[0].path
        return pairs

    @staticmethod
    def _change(
        rec: FileRecord, kind: ChangeKind, old_path: str | None = None
    ) -> ChangeRecord:
        return ChangeRecord(
            path=rec.path,
            kind=kind,
            entry_kind=rec.kind,
            version=rec.version,
            old_path=old_path,
            size=rec.size,
            mtime_ns=rec.mtime_ns,
        )

    # ------------------------------------------------------------------
    # Retry work list
    # ------------------------------------------------------------------

    def outstanding(self, fresh: list[ChangeRecord]) -> list[ChangeRecord]:
        """Return *fresh* plus changes rebuilt from pending catalog records.

        A pending record not covered by *fresh* is one whose earlier
        change was skipped or failed.  It is re-sent as Delete when
        tombstoned, Create when it never reached the peer, else Update.
        """
        covered = {c.path for c in fresh}
        covered.update(c.old_path for c in fresh if c.old_path)

        work = list(fresh)
        for rec in self.catalog.pending():
            if rec.path in covered:
                continue
            if rec.tombstone:
                kind = ChangeKind.DELETE
            elif rec.synced_version == 0:
                kind = ChangeKind.CREATE
            else:
                kind = ChangeKind.UPDATE
            work.append(self._change(rec, kind))
        work.sort(key=lambda c: c.path)
        return work
