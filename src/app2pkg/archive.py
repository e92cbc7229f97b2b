"""Expand zip and tar+bzip2 archives into a scratch directory."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Sequence

from .config import BuildConfig
from .errors import InputError
from .util import ToolRunner, fresh_dir

ZIP_SUFFIXES = (".zip",)
TBZ_SUFFIXES = (".tbz", ".tbz2", ".tar.bz2")


def archive_kind(path: Path) -> Optional[str]:
    name = path.name.lower()
    if name.endswith(ZIP_SUFFIXES):
        return "zip"
    if name.endswith(TBZ_SUFFIXES):
        return "tbz"
    return None


class ArchiveExtractor:
    def __init__(
        self,
        runner: ToolRunner,
        config: Optional[BuildConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.runner = runner
        self.config = config or BuildConfig()
        self.logger = logger or logging.getLogger(__name__)

    def extract(self, archive: Path, scratch_parent: Path) -> Path:
        """Expand archive below scratch_parent and return the extraction root.

        Stale content from an earlier extraction is removed first.
        """
        kind = archive_kind(archive)
        if kind == "zip":
            dest = fresh_dir(scratch_parent / "unzipped")
            cmd = [self.config.tool("ditto"), "-x", "-k", str(archive), str(dest)]
        elif kind == "tbz":
            dest = fresh_dir(scratch_parent / "extracted")
            cmd = [self.config.tool("tar"), "-xf", str(archive), "-C", str(dest)]
        else:
            raise InputError(f"not a supported archive: {archive}")
        self.runner.check(cmd)
        self.logger.info("extracted %s to %s", archive.name, dest)
        return dest

    @staticmethod
    def top_level_entry(root: Path, suffixes: Sequence[str]) -> Optional[Path]:
        if not root.is_dir():
            return None
        for child in sorted(root.iterdir()):
            if child.name.lower().endswith(tuple(s.lower() for s in suffixes)):
                return child
        return None
