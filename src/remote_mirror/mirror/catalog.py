"""Per-tree persistent catalog of tracked paths.

Each tree root owns one ``ChangeCatalog`` stored as a JSON file in the
state directory.  The file name is derived from a hash of the resolved
root path, so the same root always maps to the same catalog across
restarts and a restart does not re-treat the whole tree as new.

Key design choices:

* **Atomic writes** -- ``save()`` writes to a temp file then calls
  ``os.replace()`` so readers never see partial data.
* **Deferred persistence** -- mutations only mark the catalog dirty;
  ``flush()`` writes once per replication pass and on shutdown.
* **Single writer** -- only the owning tree's detector and the
  replication passes touching that tree mutate it, sequentially, so no
  locking is done here.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path

from pydantic import ValidationError

from remote_mirror.mirror.models import FileRecord

logger = logging.getLogger(__name__)

CATALOG_FORMAT_VERSION = 1


def catalog_filename(root: Path) -> str:
    """Return the catalog file name for the tree *root*."""
    key = str(root.resolve()).encode("utf-8")
    return f"catalog_{hashlib.sha256(key).hexdigest()[:16]}.json"


class ChangeCatalog:
    """Load, save, and query the tracked state of one tree.

    Args:
        root: The tree root this catalog describes.
        state_dir: Directory where catalog files are stored.
    """

    def __init__(self, root: Path, state_dir: Path) -> None:
        self.root = root
        self._state_dir = state_dir
        self._records: dict[str, FileRecord] = {}
        self._dirty = False

    @property
    def path(self) -> Path:
        """Location of the backing JSON file."""
        return self._state_dir / catalog_filename(self.root)

    @property
    def dirty(self) -> bool:
        return self._dirty

    def __len__(self) -> int:
        return len(self._records)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> None:
        """Load records from disk, replacing anything held in memory.

        A missing file yields an empty catalog.  An unreadable or
        malformed file is logged and also treated as empty: the next
        detection then reports every path as created, and the replication
        engine finds the peer already in sync wherever the trees agree.
        """
        self._records = {}
        self._dirty = False
        path = self.path
        if not path.exists():
            return
        try:
            with open(path, encoding="utf-8") as fh:
                data = json.load(fh)
            for rel, raw in data.get("records", {}).items():
                self._records[rel] = FileRecord(**raw)
        except (OSError, ValueError, ValidationError) as exc:
            logger.warning(
                "Catalog %s for %s unreadable, starting empty: %s",
                path,
                self.root,
                exc,
            )
            self._records = {}

    def save(self) -> None:
        """Persist the catalog to disk atomically.

        Creates ``state_dir`` if it does not exist.
        """
        self._state_dir.mkdir(parents=True, exist_ok=True)
        data = {
            "version": CATALOG_FORMAT_VERSION,
            "root": str(self.root),
            "last_saved": datetime.now(timezone.utc).isoformat(),
            "records": {
                rel: rec.model_dump(mode="json")
                for rel, rec in sorted(self._records.items())
            },
        }

        fd, tmp_path = tempfile.mkstemp(
            dir=str(self._state_dir), suffix=".tmp"
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh, indent=2)
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise
        self._dirty = False

    def flush(self) -> None:
        """Save only if something changed since the last save."""
        if self._dirty:
            self.save()

    # ------------------------------------------------------------------
    # Record access
    # ------------------------------------------------------------------

    def lookup(self, rel_path: str) -> FileRecord | None:
        """Return the record for *rel_path*, or ``None`` if untracked."""
        return self._records.get(rel_path)

    def upsert(self, record: FileRecord) -> None:
        """Insert or replace the record keyed by ``record.path``."""
        self._records[record.path] = record
        self._dirty = True

    def mark_synced(self, rel_path: str, version: int) -> None:
        """Record that *version* of *rel_path* has reached the peer.

        Never moves ``synced_version`` backwards.  No-op for untracked
        paths.
        """
        record = self._records.get(rel_path)
        if record is None or record.synced_version >= version:
            return
        self._records[rel_path] = record.model_copy(
            update={"synced_version": version}
        )
        self._dirty = True

    def purge(self, rel_path: str) -> None:
        """Forget *rel_path* entirely.  No-op if not present."""
        if self._records.pop(rel_path, None) is not None:
            self._dirty = True

    def records(self) -> list[FileRecord]:
        """All records, sorted by path."""
        return [self._records[k] for k in sorted(self._records)]

    def all_tombstones(self) -> list[FileRecord]:
        """Tombstoned records, sorted by path."""
        return [r for r in self.records() if r.tombstone]

    def pending(self) -> list[FileRecord]:
        """Records whose latest version has not reached the peer."""
        return [r for r in self.records() if r.pending]

    def records_under(self, rel_path: str) -> list[FileRecord]:
        """Records for *rel_path* itself and everything beneath it."""
        prefix = rel_path.rstrip("/") + "/"
        return [
            r
            for r in self.records()
            if r.path == rel_path or r.path.startswith(prefix)
        ]

    def expire_tombstones(self, now: float, retention: float) -> list[str]:
        """Purge tombstones older than *retention* seconds.

        Covers a peer that stays unreachable: the deletion is dropped
        rather than kept forever.

        Returns:
            The purged paths.
        """
        expired = [
            r.path
            for r in self.all_tombstones()
            if r.deleted_at is not None and now - r.deleted_at > retention
        ]
        for rel in expired:
            self.purge(rel)
        return expired
