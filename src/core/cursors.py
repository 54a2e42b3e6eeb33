"""Cursor bookkeeping rules shared by every cursor store backend."""

from __future__ import annotations

import posixpath
from typing import Iterable, List, Sequence

MAX_PROCESSED_FILES = 100
RETAINED_PROCESSED_FILES = 50


def is_rotation(reported_size: int, current_offset: int) -> bool:
    """A remote file smaller than what we consumed was truncated or replaced."""

    return reported_size < current_offset


def death_log_sort_key(filename: str) -> tuple[str, str]:
    """Sort key for death-log filenames.

    Filenames embed their timestamp, so ordering on the basename gives the
    chronological order even when files live in per-world subdirectories.
    """

    return posixpath.basename(filename), filename


def sort_death_log_files(filenames: Iterable[str]) -> List[str]:
    return sorted(filenames, key=death_log_sort_key)


def files_to_prune(
    filenames: Iterable[str],
    max_entries: int = MAX_PROCESSED_FILES,
    keep: int = RETAINED_PROCESSED_FILES,
) -> List[str]:
    """Return the registry entries to drop once it grows past ``max_entries``."""

    ordered = sort_death_log_files(set(filenames))
    if len(ordered) <= max_entries:
        return []
    return ordered[: len(ordered) - keep]


def predates_registry(filename: str, registered: Sequence[str]) -> bool:
    """True when ``filename`` sorts before the oldest registered file.

    Such a file was either pruned from the registry or arrived out of order
    behind files already ingested; in both cases its lines are older than
    the death log watermark.
    """

    if not registered:
        return False
    oldest = min(registered, key=death_log_sort_key)
    return death_log_sort_key(filename) < death_log_sort_key(oldest)
