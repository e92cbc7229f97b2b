"""Find application bundles (and embedded disk images) inside an extracted tree."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Iterator, Optional, Sequence, Tuple

# Directories ending in these suffixes are bundles: never descend into them.
BUNDLE_SUFFIXES = (".app", ".framework", ".bundle", ".plugin", ".appex")

DEFAULT_MAX_DEPTH = 20


def _has_suffix(name: str, suffixes: Sequence[str]) -> bool:
    lower = name.lower()
    return any(lower.endswith(s) for s in suffixes)


def _walk(root: Path, max_depth: int) -> Iterator[Tuple[Path, list, list]]:
    # os.walk does not follow directory symlinks unless asked to, which keeps
    # the search free of cycles.
    root_depth = len(root.parts)
    for dirpath, dirnames, filenames in os.walk(root, topdown=True, followlinks=False):
        current = Path(dirpath)
        dirnames.sort()
        filenames.sort()
        yield current, dirnames, filenames
        if len(current.parts) - root_depth + 1 >= max_depth:
            dirnames[:] = []


def find_bundle(
    root: Path,
    suffixes: Sequence[str] = (".app",),
    max_depth: int = DEFAULT_MAX_DEPTH,
) -> Optional[Path]:
    """Return the first directory under root whose name ends with one of suffixes.

    Ordering between several candidates is not meaningful; callers that need a
    specific bundle must narrow root first.
    """
    if not root.is_dir():
        return None
    for current, dirnames, _ in _walk(root, max_depth):
        for name in list(dirnames):
            if _has_suffix(name, suffixes) and not (current / name).is_symlink():
                return current / name
        dirnames[:] = [d for d in dirnames if not _has_suffix(d, BUNDLE_SUFFIXES)]
    return None


def find_file(root: Path, suffixes: Sequence[str], max_depth: int = DEFAULT_MAX_DEPTH) -> Optional[Path]:
    if not root.is_dir():
        return None
    for current, dirnames, filenames in _walk(root, max_depth):
        for name in filenames:
            if _has_suffix(name, suffixes) and (current / name).is_file():
                return current / name
        dirnames[:] = [d for d in dirnames if not _has_suffix(d, BUNDLE_SUFFIXES)]
    return None
