"""Exclusion rules shared by both trees.

Patterns are the comma-separated lists from the ``ExcludedFiles`` and
``ExcludedFolders`` settings.  File patterns are fnmatch globs tested
against the entry name; folder names are tested against each path
component, so an excluded folder hides its whole subtree.  Matching is
case-insensitive because trees commonly live on Windows shares.
"""

from __future__ import annotations

import fnmatch
from collections.abc import Iterable
from pathlib import PurePosixPath

from pydantic import BaseModel


def split_patterns(value: str | Iterable[str] | None) -> frozenset[str]:
    """Normalise a comma-separated string (or iterable) into a pattern set.

    Blank items are dropped and surrounding whitespace stripped.
    """
    if value is None:
        return frozenset()
    items = value.split(",") if isinstance(value, str) else value
    return frozenset(i.strip() for i in items if i and i.strip())


class FilterSet(BaseModel):
    """Immutable exclusion configuration.

    Attributes:
        excluded_files: fnmatch patterns matched against file names.
        excluded_folders: Directory names excluded anywhere in the tree.
    """

    excluded_files: frozenset[str] = frozenset()
    excluded_folders: frozenset[str] = frozenset()

    model_config = {"frozen": True}

    @classmethod
    def from_settings(
        cls,
        excluded_files: str | Iterable[str] | None,
        excluded_folders: str | Iterable[str] | None,
    ) -> FilterSet:
        return cls(
            excluded_files=split_patterns(excluded_files),
            excluded_folders=split_patterns(excluded_folders),
        )

    def excludes_file(self, name: str) -> bool:
        """Return ``True`` if a file named *name* is excluded."""
        lowered = name.lower()
        return any(
            fnmatch.fnmatchcase(lowered, p.lower())
            for p in self.excluded_files
        )

    def excludes_folder(self, name: str) -> bool:
        """Return ``True`` if a directory named *name* is excluded."""
        lowered = name.lower()
        return any(lowered == f.lower() for f in self.excluded_folders)

    def excludes(self, rel_path: str, is_dir: bool) -> bool:
        """Return ``True`` if *rel_path* (or any parent folder) is excluded."""
        parts = PurePosixPath(rel_path).parts
        if not parts:
            return False
        if any(self.excludes_folder(p) for p in parts[:-1]):
            return True
        if is_dir:
            return self.excludes_folder(parts[-1])
        return self.excludes_file(parts[-1])

    def describe(self) -> str:
        files = ",".join(sorted(self.excluded_files)) or "none"
        folders = ",".join(sorted(self.excluded_folders)) or "none"
        return f"files={files} folders={folders}"
