"""Pydantic models for the mirroring engine.

Defines the data contracts passed between the mirror modules:

- ``EntryKind``: File or directory.
- ``ChangeKind``: Enum of detected change types.
- ``FileRecord``: Catalog state of one tracked path.
- ``ChangeRecord``: One change emitted by a detection pass.
- ``ApplyResult``: Outcome of replicating one change.
- ``SyncOutcome``: Aggregate results for one one-way pass.

All models are frozen (immutable); catalog updates replace records with
``model_copy(update=...)``.
"""

from __future__ import annotations

from collections import Counter
from enum import Enum

from pydantic import BaseModel


class EntryKind(str, Enum):
    """Kind of filesystem entry a record tracks."""

    FILE = "file"
    DIRECTORY = "directory"


class ChangeKind(str, Enum):
    """Change types produced by detection."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    RENAME = "rename"


class ApplyStatus(str, Enum):
    """Per-change replication status."""

    APPLIED = "applied"
    SKIPPED = "skipped"
    FAILED = "failed"


class FileRecord(BaseModel):
    """Last-known state of one path inside a tree.

    Attributes:
        path: POSIX-style path relative to the tree root.
        kind: File or directory.
        size: Size in bytes (0 for directories).
        mtime_ns: Modification time in nanoseconds (0 for directories).
        version: Incremented on every detected change.
        synced_version: Version already propagated to the peer tree.
        tombstone: True once the path no longer exists.
        deleted_at: Epoch seconds when the tombstone was set.
    """

    path: str
    kind: EntryKind
    size: int = 0
    mtime_ns: int = 0
    version: int = 1
    synced_version: int = 0
    tombstone: bool = False
    deleted_at: float | None = None

    model_config = {"frozen": True}

    @property
    def signature(self) -> tuple[str, int, int]:
        """Cheap content identity: kind, size and modification time."""
        return (self.kind.value, self.size, self.mtime_ns)

    @property
    def pending(self) -> bool:
        """True if this version has not yet reached the peer tree."""
        return self.version > self.synced_version


class ChangeRecord(BaseModel):
    """A single change observed in one tree.

    Attributes:
        path: Relative path affected (the new path for renames).
        kind: Type of change.
        entry_kind: File or directory.
        version: Version of the ``FileRecord`` that produced the change.
        old_path: Previous relative path (renames only).
        size: Size observed at detection.
        mtime_ns: Modification time observed at detection.
    """

    path: str
    kind: ChangeKind
    entry_kind: EntryKind
    version: int
    old_path: str | None = None
    size: int = 0
    mtime_ns: int = 0

    model_config = {"frozen": True}

    @property
    def signature(self) -> tuple[str, int, int]:
        return (self.entry_kind.value, self.size, self.mtime_ns)

    def describe(self) -> str:
        """Short human-readable form used in log lines."""
        if self.kind == ChangeKind.RENAME:
            return f"RENAME {self.old_path} -> {self.path}"
        return f"{self.kind.value.upper()} {self.path}"


class ApplyResult(BaseModel):
    """Result of replicating one change into the destination tree.

    Attributes:
        path: Relative path the change applies to.
        change: Change kind that was replicated.
        status: Applied, skipped, or failed.
        old_path: Previous path for renames.
        reason: Why the change was skipped (or how it was applied).
        error: Error message if the change failed.
    """

    path: str
    change: ChangeKind
    status: ApplyStatus
    old_path: str | None = None
    reason: str | None = None
    error: str | None = None

    model_config = {"frozen": True}


class SyncOutcome(BaseModel):
    """Aggregate report for one one-way replication pass.

    Attributes:
        source_root: Tree the changes came from.
        dest_root: Tree the changes were applied to.
        results: Individual apply results, in processing order.
        started_at: ISO 8601 timestamp when the pass started.
        completed_at: ISO 8601 timestamp when the pass completed.
    """

    source_root: str
    dest_root: str
    results: list[ApplyResult] = []
    started_at: str
    completed_at: str | None = None

    model_config = {"frozen": True}

    @property
    def direction(self) -> str:
        return f"{self.source_root} -> {self.dest_root}"

    @property
    def considered(self) -> int:
        return len(self.results)

    @property
    def applied(self) -> list[ApplyResult]:
        """Results that changed the destination tree."""
        return [r for r in self.results if r.status == ApplyStatus.APPLIED]

    @property
    def skipped(self) -> list[ApplyResult]:
        """Results deferred or found already in sync."""
        return [r for r in self.results if r.status == ApplyStatus.SKIPPED]

    @property
    def failed(self) -> list[ApplyResult]:
        """Results whose apply raised an error."""
        return [r for r in self.results if r.status == ApplyStatus.FAILED]

    def skip_reasons(self) -> dict[str, int]:
        """Count skipped results by reason."""
        return dict(Counter(r.reason or "unspecified" for r in self.skipped))

    def summary(self) -> str:
        """One-line totals for the pass."""
        return (
            f"{self.direction}: {self.considered} considered, "
            f"{len(self.applied)} applied, {len(self.skipped)} skipped, "
            f"{len(self.failed)} failed"
        )
