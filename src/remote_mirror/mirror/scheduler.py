"""Periodic driver for the two-way mirror.

``SyncScheduler`` owns the two replicas and runs one sync cycle per
interval on a background daemon thread:

1. expire old tombstones,
2. detect changes in tree A, then in tree B,
3. replicate A->B (conflicting paths deferred),
4. replicate B->A (conflicting paths overwritten, last pass wins),
5. log the cycle totals.

A failing cycle is logged and the loop carries on; only an unreachable
tree root at ``start()`` is fatal.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING

from remote_mirror import __version__
from remote_mirror.errors import ConfigurationError, TransientCycleError
from remote_mirror.logger import V1, V2, V3, log
from remote_mirror.mirror.catalog import ChangeCatalog
from remote_mirror.mirror.copier import TreeCopier
from remote_mirror.mirror.detector import ChangeDetector
from remote_mirror.mirror.engine import ReplicationEngine, Replica
from remote_mirror.mirror.lock import LockProbe, has_active_writer, is_locked
from remote_mirror.mirror.models import SyncOutcome

if TYPE_CHECKING:
    from remote_mirror.config import Config

logger = logging.getLogger(__name__)


class SchedulerState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    STOPPING = "stopping"


class SyncScheduler:
    """Run sync cycles between ``config.path1`` and ``config.path2``.

    Args:
        config: Validated service configuration.
        lock_probe: Callable reporting whether a destination path is busy.
        source_probe: Callable reporting whether a source file is still
            being written.
        sleep: Sleep function used while waiting out locks during seeding.
    """

    def __init__(
        self,
        config: Config,
        lock_probe: LockProbe = is_locked,
        source_probe: LockProbe = has_active_writer,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.filters = config.filters
        self.interval = config.check_interval_sec

        state_dir = Path(config.state_dir).expanduser()
        root_a = Path(config.path1).expanduser()
        root_b = Path(config.path2).expanduser()
        self.replica_a = Replica(root_a, ChangeCatalog(root_a, state_dir))
        self.replica_b = Replica(root_b, ChangeCatalog(root_b, state_dir))

        self.copier = TreeCopier(
            lock_probe=source_probe,
            wait_interval=config.lock_wait_interval_sec,
            max_attempts=config.lock_wait_attempts,
            sleep=sleep,
        )
        self.engine = ReplicationEngine(
            copier=self.copier,
            lock_probe=lock_probe,
            source_probe=source_probe,
            recycle_dir=config.recycle_dir,
        )
        self.detector_a = ChangeDetector(
            root_a, self.filters, self.replica_a.catalog
        )
        self.detector_b = ChangeDetector(
            root_b, self.filters, self.replica_b.catalog
        )

        self._state = SchedulerState.STOPPED
        # Reentrant: a signal handler may call stop() while start() holds it
        self._state_lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._prepared = False
        self._starting = False
        self.cycles = 0

    @property
    def state(self) -> SchedulerState:
        return self._state

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def prepare(self) -> None:
        """Check both roots are reachable and load their catalogs.

        Raises:
            ConfigurationError: If either tree root is not a reachable
                directory.
        """
        for replica in (self.replica_a, self.replica_b):
            if not replica.root.is_dir():
                raise ConfigurationError(
                    f"Tree root '{replica.root}' does not exist or is "
                    "not reachable"
                )
        self.replica_a.catalog.load()
        self.replica_b.catalog.load()
        self._prepared = True

    def start(self) -> None:
        """Validate, log the startup summary, and start the poll thread.

        A ``stop()`` that lands while seeding is still running (from a
        signal handler, say) cancels the start: no thread is launched and
        the scheduler stays stopped.

        Raises:
            RuntimeError: If the scheduler is not stopped.
            ConfigurationError: If a tree root is unreachable.  The
                scheduler stays stopped.
        """
        with self._state_lock:
            if self._state != SchedulerState.STOPPED:
                raise RuntimeError(
                    f"Cannot start scheduler in state {self._state.value}"
                )
            self._stop_event.clear()
            self._starting = True
            try:
                self._launch()
            finally:
                self._starting = False

    def _launch(self) -> None:
        self.prepare()

        log(
            logger,
            logging.INFO,
            V1,
            "Mirror started (version %s)",
            __version__,
        )
        log(logger, logging.INFO, V1, "Path1: %s", self.replica_a.root)
        log(logger, logging.INFO, V1, "Path2: %s", self.replica_b.root)
        log(
            logger,
            logging.INFO,
            V2,
            "Filters: %s; check interval %ds",
            self.filters.describe(),
            self.interval,
        )

        if self.config.seed_empty_peer:
            self.seed_empty_peer()
        if self._stop_event.is_set():
            log(logger, logging.INFO, V1, "Mirror stopped before first cycle")
            return

        self._thread = threading.Thread(
            target=self._loop, name="remote-mirror-sync", daemon=True
        )
        self._state = SchedulerState.RUNNING
        self._thread.start()

    def stop(self) -> None:
        """Stop the poll thread after its current change and flush state.

        Blocks until the poll thread has exited, so a following
        ``start()`` never overlaps the old loop.  Callable from any thread
        but the poll thread itself, and from a signal handler: one that
        lands while ``start()`` is seeding cancels that start.  No-op when
        already stopped.

        Raises:
            RuntimeError: If called from the poll thread.
        """
        with self._state_lock:
            if self._thread is threading.current_thread():
                raise RuntimeError(
                    "stop() cannot be called from the poll thread"
                )
            if self._state != SchedulerState.RUNNING:
                if self._starting:
                    # Lands mid-seed (signal handler): cancel the start
                    self._stop_event.set()
                return
            self._state = SchedulerState.STOPPING
            thread = self._thread

        self._stop_event.set()
        if thread is not None:
            thread.join()

        self.replica_a.catalog.flush()
        self.replica_b.catalog.flush()

        with self._state_lock:
            self._thread = None
            self._state = SchedulerState.STOPPED
        log(logger, logging.INFO, V1, "Mirror stopped")

    # ------------------------------------------------------------------
    # Cycle
    # ------------------------------------------------------------------

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.run_cycle()
            except Exception as exc:
                err = TransientCycleError(self.cycles, exc)
                logger.error("%s; retrying next cycle", err)
                logger.debug("Cycle failure detail", exc_info=True)
            self._stop_event.wait(self.interval)

    def run_cycle(self) -> list[SyncOutcome]:
        """Run one full detect-and-replicate cycle in both directions.

        Returns:
            The A->B and B->A outcomes, in that order.

        Raises:
            AccessError: If a tree root became unreachable.  Nothing is
                deleted on the peer in that case.
        """
        if not self._prepared:
            self.prepare()
        self.cycles += 1

        now = time.time()
        retention = self.config.tombstone_retention_sec
        for replica in (self.replica_a, self.replica_b):
            expired = replica.catalog.expire_tombstones(now, retention)
            if expired:
                logger.warning(
                    "Dropped %d deletion(s) in %s never replicated within "
                    "%ds",
                    len(expired),
                    replica.root,
                    retention,
                )

        fresh_a = self.detector_a.detect()
        fresh_b = self.detector_b.detect()
        work_a = self.detector_a.outstanding(fresh_a)
        work_b = self.detector_b.outstanding(fresh_b)

        forward = self.engine.replicate_one_way(
            work_a,
            self.replica_a,
            self.replica_b,
            defer_conflicts=True,
            cancel=self._stop_event,
        )
        backward = self.engine.replicate_one_way(
            work_b, self.replica_b, self.replica_a, cancel=self._stop_event
        )

        for outcome in (forward, backward):
            log(
                logger,
                logging.INFO,
                V3,
                "Cycle %d %s",
                self.cycles,
                outcome.summary(),
            )
        return [forward, backward]

    # ------------------------------------------------------------------
    # Initial seeding
    # ------------------------------------------------------------------

    def seed_empty_peer(self) -> bool:
        """Bulk-copy one tree into the other when exactly one is empty.

        Returns:
            ``True`` if a copy was made.
        """
        empty_a = self._is_empty(self.replica_a.root)
        empty_b = self._is_empty(self.replica_b.root)
        if empty_a == empty_b:
            return False

        source, dest = (
            (self.replica_b, self.replica_a)
            if empty_a
            else (self.replica_a, self.replica_b)
        )
        log(
            logger,
            logging.INFO,
            V1,
            "Seeding empty tree %s from %s",
            dest.root,
            source.root,
        )
        report = self.copier.copy_tree(
            source.root, dest.root, filters=self.filters
        )
        log(
            logger,
            logging.INFO,
            V1,
            "Seeding done: %d copied, %d skipped, %d failed",
            len(report.copied),
            len(report.skipped),
            len(report.failed),
        )
        return True

    def _is_empty(self, root: Path) -> bool:
        # Excluded entries (the recycle folder, say) do not count
        return not any(
            not self.filters.excludes(entry.name, entry.is_dir())
            for entry in root.iterdir()
        )
