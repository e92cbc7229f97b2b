"""
Component packages via pkgbuild.

pkgbuild --analyze writes one component plist entry per top-level bundle in
the root. Every entry is forced non-relocatable so Installer never redirects
the payload onto an existing copy of the app somewhere else on disk.
"""

from __future__ import annotations

import logging
import os
import plistlib
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from xml.parsers.expat import ExpatError

from .config import BuildConfig
from .errors import StagingError
from .pkg_root import StagedRoot
from .util import ToolRunner


@dataclass(frozen=True)
class ComponentPackage:
    path: Path
    identifier: str
    version: str
    pkg_ref_id: str
    arch_label: str


class ComponentPackageBuilder:
    def __init__(
        self,
        runner: ToolRunner,
        config: Optional[BuildConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.runner = runner
        self.config = config or BuildConfig()
        self.logger = logger or logging.getLogger(__name__)

    @property
    def pkgbuild(self) -> str:
        return self.config.tool("pkgbuild")

    def analyze(self, root: Path, plist_path: Path) -> Path:
        self.runner.check([self.pkgbuild, "--analyze", "--root", str(root), str(plist_path)])
        return plist_path

    def make_non_relocatable(self, plist_path: Path) -> int:
        """Set BundleIsRelocatable to false on every entry; return the entry count."""
        try:
            with plist_path.open("rb") as fh:
                entries = plistlib.load(fh)
        except (OSError, plistlib.InvalidFileException, ExpatError, ValueError) as e:
            raise StagingError(f"unable to read component plist {plist_path}: {e}") from e
        if not isinstance(entries, list):
            raise StagingError(f"component plist {plist_path} is not an array")

        count = 0
        for entry in entries:
            if isinstance(entry, dict):
                entry["BundleIsRelocatable"] = False
                count += 1

        fd, tmp = tempfile.mkstemp(prefix=".component-", suffix=".plist", dir=str(plist_path.parent))
        try:
            with os.fdopen(fd, "wb") as fh:
                plistlib.dump(entries, fh)
            os.replace(tmp, plist_path)
        except OSError as e:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise StagingError(f"unable to write component plist {plist_path}: {e}") from e
        self.logger.info("marked %d bundle(s) non-relocatable in %s", count, plist_path.name)
        return count

    def build(
        self,
        root: Path,
        identifier: str,
        version: str,
        plist_path: Path,
        output: Path,
        scripts_dir: Optional[Path] = None,
    ) -> Path:
        cmd = [self.pkgbuild, "--root", str(root)]
        if scripts_dir is not None:
            cmd += ["--scripts", str(scripts_dir)]
        cmd += [
            "--identifier",
            identifier,
            "--version",
            version,
            "--component-plist",
            str(plist_path),
            str(output),
        ]
        self.runner.check(cmd)
        return output

    def build_staged(self, staged: StagedRoot, identifier: str, version: str, package_dir: Path) -> ComponentPackage:
        self.analyze(staged.root, staged.plist_path)
        self.make_non_relocatable(staged.plist_path)
        output = package_dir / staged.package_name
        self.build(staged.root, identifier, version, staged.plist_path, output, scripts_dir=staged.scripts_dir)
        self.logger.info("built component package %s", output.name)
        return ComponentPackage(
            path=output,
            identifier=identifier,
            version=version,
            pkg_ref_id=staged.pkg_ref_id,
            arch_label=staged.arch_label,
        )
