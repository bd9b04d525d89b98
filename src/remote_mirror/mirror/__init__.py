"""Two-way polling mirror between two directory trees.

Keeps two trees (local paths or UNC shares) converged by polling both on
a fixed interval and replicating each side's changes to the other.

Architecture
------------
Each tree has its own persistent **catalog**: the last-known signature
(kind, size, mtime) and a version counter per relative path.  Detection
compares a fresh scan against the catalog; replication applies one
tree's changes to the other and records the peer's resulting state as
already synced, so applied changes are never echoed back.

Modules:

- ``lock``      -- ``is_locked`` / ``has_active_writer``: busy-path checks.
- ``copier``    -- ``TreeCopier``: staged file copy and best-effort tree copy.
- ``filters``   -- ``FilterSet``: excluded file patterns and folder names.
- ``catalog``   -- ``ChangeCatalog``: load/save/query JSON catalog files.
- ``detector``  -- ``ChangeDetector``: scan a tree and emit changes.
- ``engine``    -- ``ReplicationEngine``: apply changes one way.
- ``scheduler`` -- ``SyncScheduler``: the periodic two-way loop.
- ``models``    -- ``FileRecord``, ``ChangeRecord``, ``ApplyResult``,
  ``SyncOutcome``: core data contracts.
- ``reporter``  -- Human-readable and JSON cycle reports.

Usage example
-------------
::

    from remote_mirror.config import load_config
    from remote_mirror.mirror import SyncScheduler, format_cycle_report

    config = load_config(path1="/srv/a", path2="//fileserver/b")
    scheduler = SyncScheduler(config)

    # One cycle in the foreground
    print(format_cycle_report(scheduler.run_cycle()))

    # Or poll in the background until stopped
    scheduler.start()
    ...
    scheduler.stop()
"""

from .catalog import ChangeCatalog
from .copier import CopyReport, TreeCopier
from .detector import ChangeDetector
from .engine import ReplicationEngine, Replica
from .filters import FilterSet
from .lock import has_active_writer, is_locked
from .models import (
    ApplyResult,
    ApplyStatus,
    ChangeKind,
    ChangeRecord,
    EntryKind,
    FileRecord,
    SyncOutcome,
)
from .reporter import format_cycle_report, format_outcome, outcome_to_json
from .scheduler import SchedulerState, SyncScheduler

__all__ = [
    "ApplyResult",
    "ApplyStatus",
    "ChangeCatalog",
    "ChangeDetector",
    "ChangeKind",
    "ChangeRecord",
    "CopyReport",
    "EntryKind",
    "FileRecord",
    "FilterSet",
    "Replica",
    "ReplicationEngine",
    "SchedulerState",
    "SyncOutcome",
    "SyncScheduler",
    "TreeCopier",
    "format_cycle_report",
    "format_outcome",
    "has_active_writer",
    "is_locked",
    "outcome_to_json",
]
