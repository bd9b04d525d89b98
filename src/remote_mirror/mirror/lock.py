"""Check whether a path is safe to touch right now.

Two questions are asked, depending on which side of a copy a file is on:

* ``is_file_locked`` -- may this file be replaced?  It must open for
  exclusive read/write.  A file still being written, held by another
  process (an antivirus scanner, an editor), permission-denied, or
  already gone counts as locked; the causes are not distinguished.
* ``has_active_writer`` -- may this file be read as a consistent copy
  source?  Only a file some other process holds for writing (or that
  cannot be opened at all) is busy.  Read-only files are fine to read.

Directories are busy while any file inside them has an active writer.
Moving or removing a directory never writes into its files, so the
read-only bit on a contained file does not block it.

Answers are hints only.  Another process can grab the file between the
check and the caller's next operation, so callers re-check right before
acting and still handle ``OSError`` from the operation itself.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Callable
from pathlib import Path

LockProbe = Callable[[Path], bool]

if sys.platform == "win32":  # pragma: no cover - exercised on Windows only
    import msvcrt

    def _try_lock(fd: int, shared: bool) -> None:
        mode = msvcrt.LK_NBRLCK if shared else msvcrt.LK_NBLCK
        msvcrt.locking(fd, mode, 1)
        msvcrt.locking(fd, msvcrt.LK_UNLCK, 1)

else:
    import fcntl

    def _try_lock(fd: int, shared: bool) -> None:
        mode = fcntl.LOCK_SH if shared else fcntl.LOCK_EX
        fcntl.flock(fd, mode | fcntl.LOCK_NB)
        fcntl.flock(fd, fcntl.LOCK_UN)


def is_file_locked(path: Path) -> bool:
    """Return ``True`` if *path* cannot be opened for exclusive read/write."""
    try:
        with open(path, "r+b") as fh:
            _try_lock(fh.fileno(), shared=False)
    except OSError:
        return True
    return False


def has_active_writer(path: Path) -> bool:
    """Return ``True`` if *path* is held for writing or cannot be read.

    Opens read-only and takes a non-blocking shared lock, which only
    conflicts with an exclusive (writer) lock held elsewhere.
    """
    try:
        with open(path, "rb") as fh:
            _try_lock(fh.fileno(), shared=True)
    except OSError:
        return True
    return False


def is_folder_settled(path: Path) -> bool:
    """Return ``True`` when no file under *path* has an active writer.

    An absent directory is settled: there is nothing left to wait for.
    """
    try:
        entries = list(os.scandir(path))
    except FileNotFoundError:
        return True
    except OSError:
        return False

    for entry in entries:
        if entry.is_file(follow_symlinks=False) and has_active_writer(
            Path(entry.path)
        ):
            return False
    for entry in entries:
        if entry.is_dir(follow_symlinks=False) and not is_folder_settled(
            Path(entry.path)
        ):
            return False
    return True


def is_locked(path: Path) -> bool:
    """Return ``True`` if *path* is busy as a replacement target.

    Files use ``is_file_locked``; directories use ``is_folder_settled``.
    """
    if path.is_dir():
        return not is_folder_settled(path)
    return is_file_locked(path)
