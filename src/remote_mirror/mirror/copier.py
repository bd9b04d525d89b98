"""Recursive file/directory copy with wait-until-available semantics.

``TreeCopier.copy_file`` is the primitive the replication engine uses for
every file it transfers.  ``TreeCopier.copy_tree`` mirrors a whole tree
for the initial seeding of an empty peer and is best-effort: a file that
stays locked, or any per-file or per-subdirectory failure, is logged and
skipped while the siblings carry on.

Files are written to a hidden temporary sibling and moved into place with
``os.replace()``, so a destination is never observed half-written.  The
temporary is removed again on any failure, interruption included.  Copies
keep the source timestamps and mode bits, except that they stay
owner-writable so a later update can replace them.
"""

from __future__ import annotations

import logging
import os
import shutil
import stat
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path

from remote_mirror.errors import CopyError
from remote_mirror.mirror.filters import FilterSet
from remote_mirror.mirror.lock import LockProbe, has_active_writer

logger = logging.getLogger(__name__)

# Suffix of in-flight temporary files; detection ignores them.
PARTIAL_SUFFIX = ".rm-partial"


@dataclass
class CopyReport:
    """What a ``copy_tree`` call did."""

    copied: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    failed: list[tuple[Path, str]] = field(default_factory=list)

    def merge(self, other: CopyReport) -> None:
        self.copied.extend(other.copied)
        self.skipped.extend(other.skipped)
        self.failed.extend(other.failed)


class TreeCopier:
    """Copy files and directory trees, waiting out locked files.

    Args:
        lock_probe: Callable reporting whether a source file is still being
            written.
        wait_interval: Seconds between lock re-checks.
        max_attempts: Lock re-checks before a file is given up on.
        sleep: Sleep function (injectable for tests).
    """

    def __init__(
        self,
        lock_probe: LockProbe = has_active_writer,
        wait_interval: float = 1.0,
        max_attempts: int = 30,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.lock_probe = lock_probe
        self.wait_interval = wait_interval
        self.max_attempts = max_attempts
        self._sleep = sleep

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def copy(
        self, source: Path, dest: Path, overwrite: bool = False
    ) -> CopyReport:
        """Copy *source* to *dest*, dispatching on the source kind.

        Raises:
            CopyError: For a file source, if *dest* exists and
                *overwrite* is false, or the copy fails.
        """
        if source.is_dir():
            return self.copy_tree(source, dest, overwrite=overwrite)
        self.copy_file(source, dest, overwrite=overwrite)
        return CopyReport(copied=[dest])

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def copy_file(
        self, source: Path, dest: Path, overwrite: bool = False
    ) -> None:
        """Copy one file's bytes and timestamps to *dest*.

        Raises:
            CopyError: If *dest* exists and *overwrite* is false, or if
                any step of the copy fails.
        """
        if dest.exists() and not overwrite:
            raise CopyError(f"Destination already exists: {dest}")

        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=str(dest.parent),
                prefix=f".{dest.name}.",
                suffix=PARTIAL_SUFFIX,
            )
            os.close(fd)
        except OSError as exc:
            raise CopyError(f"Cannot stage copy of {source}: {exc}") from exc

        try:
            shutil.copyfile(source, tmp_name)
            shutil.copystat(source, tmp_name)
            mode = os.stat(tmp_name).st_mode
            if not mode & stat.S_IWUSR:
                os.chmod(tmp_name, stat.S_IMODE(mode) | stat.S_IWUSR)
            os.replace(tmp_name, dest)
        except BaseException as exc:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            if isinstance(exc, OSError):
                raise CopyError(
                    f"Copy {source} -> {dest} failed: {exc}"
                ) from exc
            raise

    def wait_until_available(self, path: Path) -> bool:
        """Poll the lock check until *path* is free or attempts run out.

        Returns:
            ``True`` if the path became available.
        """
        attempts = 0
        while self.lock_probe(path):
            if attempts >= self.max_attempts:
                return False
            attempts += 1
            self._sleep(self.wait_interval)
        return True

    # ------------------------------------------------------------------
    # Trees
    # ------------------------------------------------------------------

    def copy_tree(
        self,
        source: Path,
        dest: Path,
        overwrite: bool = False,
        wait_for_available: bool = True,
        filters: FilterSet | None = None,
    ) -> CopyReport:
        """Mirror the directory *source* into *dest*, best-effort.

        Files already present at the destination are reported as failed
        unless *overwrite* is set.  Subdirectories are always recursed.
        """
        report = CopyReport()
        dest.mkdir(parents=True, exist_ok=True)

        entries = sorted(os.scandir(source), key=lambda e: e.name)
        files = [e for e in entries if e.is_file(follow_symlinks=False)]
        dirs = [e for e in entries if e.is_dir(follow_symlinks=False)]

        for entry in files:
            if filters and filters.excludes_file(entry.name):
                continue
            src = Path(entry.path)
            target = dest / entry.name
            try:
                if wait_for_available and not self.wait_until_available(src):
                    logger.warning(
                        "Skipping %s: still locked after %d attempts",
                        src,
                        self.max_attempts,
                    )
                    report.skipped.append(src)
                    continue
                self.copy_file(src, target, overwrite=overwrite)
                report.copied.append(target)
            except (CopyError, OSError) as exc:
                logger.error("Copy of %s failed: %s", src, exc)
                report.failed.append((src, str(exc)))

        for entry in dirs:
            if filters and filters.excludes_folder(entry.name):
                continue
            try:
                report.merge(
                    self.copy_tree(
                        Path(entry.path),
                        dest / entry.name,
                        overwrite=overwrite,
                        wait_for_available=wait_for_available,
                        filters=filters,
                    )
                )
            except OSError as exc:
                logger.error(
                    "Copy of subdirectory %s failed: %s", entry.path, exc
                )
                report.failed.append((Path(entry.path), str(exc)))

        return report
