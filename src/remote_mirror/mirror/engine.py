"""One-way replication of detected changes into the peer tree.

``ReplicationEngine.replicate_one_way`` applies one tree's change set to
the other tree, in detection order, and returns a ``SyncOutcome``.  A
full sync cycle is two such passes, A->B then B->A.

Per change:

- **Create/Update** -- copy the file (or create the directory) unless the
  source vanished or is still being written, the destination is locked,
  or the destination already holds an identical entry.
- **Delete** -- remove the destination entry, unless it changed on the
  destination since the last sync.
- **Rename** -- move the destination entry when the destination still has
  the old path, otherwise copy as a plain create.

After a successful apply the source record is marked synced, and the
destination's new state is written to the destination catalog as already
synced, so the next detection on the destination does not send the same
change back.

Error handling is per-change: an ``OSError`` or ``CopyError`` is recorded
as a failure and the change is retried on the next cycle.  It never
aborts the pass.

Conflicts (a path changed on both sides between polls) resolve as
last-pass-wins: the first pass of a cycle runs with
``defer_conflicts=True`` and leaves such paths alone, the second pass
overwrites them and logs a warning.

With a recycle folder configured, nothing is destroyed: deleted entries
and the losing copy of a conflict are moved to
``<root>/<recycle_dir>/<timestamp>/<path>`` in the destination tree.
"""

from __future__ import annotations

import logging
import os
import shutil
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from remote_mirror.errors import CopyError
from remote_mirror.logger import V2, log
from remote_mirror.mirror.catalog import ChangeCatalog
from remote_mirror.mirror.copier import TreeCopier
from remote_mirror.mirror.detector import Observed, observe
from remote_mirror.mirror.lock import LockProbe, has_active_writer, is_locked
from remote_mirror.mirror.models import (
    ApplyResult,
    ApplyStatus,
    ChangeKind,
    ChangeRecord,
    EntryKind,
    FileRecord,
    SyncOutcome,
)

logger = logging.getLogger(__name__)

# Skip reasons
SOURCE_VANISHED = "source vanished"
SOURCE_BUSY = "source busy"
DEST_BUSY = "destination busy"
ALREADY_SYNCED = "already synced"
ALREADY_IN_SYNC = "already in sync"
ALREADY_ABSENT = "already absent"
SUPERSEDED = "superseded"
NEVER_REPLICATED = "never replicated"
DEST_CHANGED = "destination changed since last sync"
CONFLICT_DEFERRED = "changed on both sides, deferred to reverse pass"


@dataclass
class Replica:
    """A tree root paired with the catalog that describes it."""

    root: Path
    catalog: ChangeCatalog

    def abs(self, rel_path: str) -> Path:
        return self.root / rel_path


class ReplicationEngine:
    """Apply change sets from one replica to another.

    Args:
        copier: File copy primitive.
        lock_probe: Callable reporting whether a destination path is busy.
        source_probe: Callable reporting whether a source file is still
            being written.
        recycle_dir: Folder name, relative to each tree root, that
            receives removed and overwritten entries.  ``None`` or an
            empty string removes them outright.
    """

    def __init__(
        self,
        copier: TreeCopier | None = None,
        lock_probe: LockProbe = is_locked,
        source_probe: LockProbe = has_active_writer,
        recycle_dir: str | None = None,
    ) -> None:
        self.lock_probe = lock_probe
        self.source_probe = source_probe
        self.recycle_dir = recycle_dir or None
        self.copier = copier or TreeCopier(lock_probe=source_probe)

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    def replicate_one_way(
        self,
        source_changes: list[ChangeRecord],
        source: Replica,
        dest: Replica,
        defer_conflicts: bool = False,
        cancel: threading.Event | None = None,
    ) -> SyncOutcome:
        """Apply *source_changes* from *source* into *dest*.

        Args:
            source_changes: Changes detected in the source tree, in
                detection order.
            source: Replica the changes came from.
            dest: Replica to apply them to.
            defer_conflicts: Leave paths changed on both sides untouched
                (the reverse pass will overwrite them).
            cancel: When set, stop before the next change.  Changes not
                reached stay pending in the source catalog.

        Returns:
            A ``SyncOutcome`` with one result per change.
        """
        started_at = datetime.now(timezone.utc).isoformat()
        results: list[ApplyResult] = []

        for change in source_changes:
            if cancel is not None and cancel.is_set():
                break
            try:
                result = self._apply(change, source, dest, defer_conflicts)
            except (CopyError, OSError) as exc:
                result = self._result(
                    change, ApplyStatus.FAILED, error=str(exc)
                )
            results.append(result)
            self._log_result(change, result, dest)

        source.catalog.flush()
        dest.catalog.flush()

        return SyncOutcome(
            source_root=str(source.root),
            dest_root=str(dest.root),
            results=results,
            started_at=started_at,
            completed_at=datetime.now(timezone.utc).isoformat(),
        )

    def _apply(
        self,
        change: ChangeRecord,
        source: Replica,
        dest: Replica,
        defer_conflicts: bool,
    ) -> ApplyResult:
        if change.kind == ChangeKind.DELETE:
            return self._apply_delete(change, source, dest)

        src_rec = source.catalog.lookup(change.path)
        if src_rec is None or src_rec.tombstone:
            return self._result(change, ApplyStatus.SKIPPED, SUPERSEDED)
        if src_rec.synced_version >= change.version:
            return self._result(change, ApplyStatus.SKIPPED, ALREADY_SYNCED)

        if change.kind == ChangeKind.RENAME:
            return self._apply_rename(change, source, dest, defer_conflicts)
        return self._apply_copy(change, source, dest, defer_conflicts)

    # ------------------------------------------------------------------
    # Create / Update
    # ------------------------------------------------------------------

    def _apply_copy(
        self,
        change: ChangeRecord,
        source: Replica,
        dest: Replica,
        defer_conflicts: bool,
    ) -> ApplyResult:
        src_path = source.abs(change.path)
        dest_path = dest.abs(change.path)

        src_state = observe(src_path)
        if src_state is None:
            return self._result(change, ApplyStatus.SKIPPED, SOURCE_VANISHED)
        if src_state[0] == EntryKind.FILE and self.source_probe(src_path):
            return self._result(change, ApplyStatus.SKIPPED, SOURCE_BUSY)

        dest_state = observe(dest_path)
        if dest_state == src_state:
            self._settle(change, source, dest, dest_state)
            return self._result(change, ApplyStatus.SKIPPED, ALREADY_IN_SYNC)

        existed = dest_state is not None
        if dest_state is not None:
            if self.lock_probe(dest_path):
                return self._result(change, ApplyStatus.SKIPPED, DEST_BUSY)
            conflict = self._changed_at_dest(dest, change.path)
            if conflict:
                if defer_conflicts:
                    return self._result(
                        change, ApplyStatus.SKIPPED, CONFLICT_DEFERRED
                    )
                logger.warning(
                    "Conflict on %s: changed on both sides, overwriting "
                    "%s with the copy from %s",
                    change.path,
                    dest.root,
                    source.root,
                )
            if dest_state[0] != src_state[0]:
                nested = [
                    r
                    for r in dest.catalog.records_under(change.path)
                    if r.path != change.path
                ]
                if any(r.pending and not r.tombstone for r in nested):
                    return self._result(
                        change, ApplyStatus.SKIPPED, DEST_CHANGED
                    )
                self._discard(dest, change.path)
                for rec in nested:
                    dest.catalog.purge(rec.path)
                dest_state = None
            elif conflict and self.recycle_dir:
                self._discard(dest, change.path)
                dest_state = None

        if src_state[0] == EntryKind.DIRECTORY:
            dest_path.mkdir(parents=True, exist_ok=True)
            how = "directory created"
        else:
            self.copier.copy_file(src_path, dest_path, overwrite=True)
            how = "overwritten" if existed else "copied"

        final_state = observe(dest_path)
        if final_state is None:
            raise CopyError(f"{dest_path} missing after copy")
        self._settle(change, source, dest, final_state)
        return self._result(change, ApplyStatus.APPLIED, how)

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def _apply_delete(
        self, change: ChangeRecord, source: Replica, dest: Replica
    ) -> ApplyResult:
        src_rec = source.catalog.lookup(change.path)
        if src_rec is None or not src_rec.tombstone:
            return self._result(change, ApplyStatus.SKIPPED, SUPERSEDED)
        if src_rec.synced_version == 0:
            # The peer never received this path; nothing to delete there.
            source.catalog.purge(change.path)
            return self._result(
                change, ApplyStatus.SKIPPED, NEVER_REPLICATED
            )

        if any(
            r.pending and not r.tombstone
            for r in dest.catalog.records_under(change.path)
        ):
            return self._result(change, ApplyStatus.SKIPPED, DEST_CHANGED)

        dest_path = dest.abs(change.path)
        if os.path.lexists(dest_path):
            if self.lock_probe(dest_path):
                return self._result(change, ApplyStatus.SKIPPED, DEST_BUSY)
            recycled = self._discard(dest, change.path)
            how = "recycled" if recycled else "removed"
            result = self._result(change, ApplyStatus.APPLIED, how)
        else:
            result = self._result(change, ApplyStatus.SKIPPED, ALREADY_ABSENT)

        # Destination confirms absence: drop both sides' records.
        for rec in dest.catalog.records_under(change.path):
            dest.catalog.purge(rec.path)
        source.catalog.purge(change.path)
        return result

    # ------------------------------------------------------------------
    # Rename
    # ------------------------------------------------------------------

    def _apply_rename(
        self,
        change: ChangeRecord,
        source: Replica,
        dest: Replica,
        defer_conflicts: bool,
    ) -> ApplyResult:
        if change.old_path is None:
            return self._apply_copy(change, source, dest, defer_conflicts)
        src_path = source.abs(change.path)
        dest_old = dest.abs(change.old_path)
        dest_new = dest.abs(change.path)

        src_state = observe(src_path)
        if src_state is None:
            return self._result(change, ApplyStatus.SKIPPED, SOURCE_VANISHED)
        if self.source_probe(src_path):
            return self._result(change, ApplyStatus.SKIPPED, SOURCE_BUSY)

        old_present = dest_old.is_file() and not dest_old.is_symlink()
        old_changed = self._changed_at_dest(dest, change.old_path)
        if old_present and not old_changed and self.lock_probe(dest_old):
            return self._result(change, ApplyStatus.SKIPPED, DEST_BUSY)

        if old_present and not old_changed and not os.path.lexists(dest_new):
            dest_new.parent.mkdir(parents=True, exist_ok=True)
            os.replace(dest_old, dest_new)
            how = "moved"
            if observe(dest_new) != src_state:
                self.copier.copy_file(src_path, dest_new, overwrite=True)
                how = "moved and refreshed"
            final_state = observe(dest_new)
            if final_state is None:
                raise CopyError(f"{dest_new} missing after move")
            dest.catalog.purge(change.old_path)
            self._settle(change, source, dest, final_state)
            self._purge_source_old(change, source)
            return self._result(change, ApplyStatus.APPLIED, how)

        # Fall back to a plain create of the new path.
        result = self._apply_copy(change, source, dest, defer_conflicts)
        if result.status == ApplyStatus.FAILED or (
            result.status == ApplyStatus.SKIPPED
            and result.reason != ALREADY_IN_SYNC
        ):
            return result

        if old_present and not old_changed:
            self._discard(dest, change.old_path)
        if not old_changed:
            dest.catalog.purge(change.old_path)
        self._purge_source_old(change, source)
        return result

    @staticmethod
    def _purge_source_old(change: ChangeRecord, source: Replica) -> None:
        if change.old_path is None:
            return
        old = source.catalog.lookup(change.old_path)
        if old is not None and old.tombstone:
            source.catalog.purge(change.old_path)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _changed_at_dest(dest: Replica, rel_path: str) -> bool:
        """True if *rel_path* changed on the destination since the last sync.

        An existing entry the destination catalog does not track at all
        also counts: it appeared after the destination was scanned.
        """
        rec = dest.catalog.lookup(rel_path)
        if rec is None:
            return os.path.lexists(dest.abs(rel_path))
        return rec.pending and not rec.tombstone

    @staticmethod
    def _settle(
        change: ChangeRecord,
        source: Replica,
        dest: Replica,
        dest_state: Observed,
    ) -> None:
        """Mark the source synced and record the destination as in sync."""
        source.catalog.mark_synced(change.path, change.version)

        kind, size, mtime_ns = dest_state
        existing = dest.catalog.lookup(change.path)
        if (
            existing is not None
            and not existing.tombstone
            and existing.signature == (kind.value, size, mtime_ns)
        ):
            dest.catalog.mark_synced(change.path, existing.version)
            return
        version = existing.version + 1 if existing else 1
        dest.catalog.upsert(
            FileRecord(
                path=change.path,
                kind=kind,
                size=size,
                mtime_ns=mtime_ns,
                version=version,
                synced_version=version,
            )
        )

    def _discard(self, dest: Replica, rel_path: str) -> Path | None:
        """Take *rel_path* out of *dest*.

        Moves the entry into the recycle folder when one is configured
        and returns where it went; otherwise removes it and returns
        ``None``.
        """
        path = dest.abs(rel_path)
        if not self.recycle_dir:
            self._remove(path)
            return None

        stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        target = dest.root / self.recycle_dir / stamp / rel_path
        suffix = 1
        while os.path.lexists(target):
            target = target.with_name(f"{Path(rel_path).name}.{suffix}")
            suffix += 1
        target.parent.mkdir(parents=True, exist_ok=True)
        shutil.move(str(path), str(target))
        log(logger, logging.INFO, V2, "Recycled %s to %s", path, target)
        return target

    @staticmethod
    def _remove(path: Path) -> None:
        if path.is_dir() and not path.is_symlink():
            shutil.rmtree(path)
        else:
            path.unlink()

    @staticmethod
    def _result(
        change: ChangeRecord,
        status: ApplyStatus,
        reason: str | None = None,
        error: str | None = None,
    ) -> ApplyResult:
        return ApplyResult(
            path=change.path,
            change=change.kind,
            status=status,
            old_path=change.old_path,
            reason=reason,
            error=error,
        )

    @staticmethod
    def _log_result(
        change: ChangeRecord, result: ApplyResult, dest: Replica
    ) -> None:
        if result.status == ApplyStatus.FAILED:
            logger.error(
                "FAILED %s on %s: %s", change.describe(), dest.root, result.error
            )
        elif result.status == ApplyStatus.SKIPPED:
            log(
                logger,
                logging.INFO,
                V2,
                "SKIP %s on %s (%s)",
                change.describe(),
                dest.root,
                result.reason,
            )
        else:
            log(
                logger,
                logging.INFO,
                V2,
                "APPLIED %s on %s (%s)",
                change.describe(),
                dest.root,
                result.reason,
            )
