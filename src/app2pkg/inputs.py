"""
Input artifacts and their resolution to an application bundle.

    .app  -> used as is
    .dmg  -> mounted, first .app on the volume
    .zip  -> extracted; an embedded .dmg wins over a loose .app
    .tbz  -> extracted, first .app in the tree
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Union

from .archive import TBZ_SUFFIXES, ArchiveExtractor
from .bundle_locator import find_bundle, find_file
from .config import BuildConfig
from .dmg_mgr import DiskImageManager, MountedVolume
from .errors import InputError
from .pkg_root import BuildWorkspace
from .util import fresh_dir


class InputKind(str, enum.Enum):
    APP = "app"
    DMG = "dmg"
    ZIP = "zip"
    TBZ = "tbz"


@dataclass(frozen=True)
class InputArtifact:
    kind: InputKind
    path: Path

    @classmethod
    def from_path(cls, path: Union[str, os.PathLike]) -> "InputArtifact":
        p = Path(path).expanduser()
        name = p.name.lower()
        if name.endswith(".app"):
            kind = InputKind.APP
        elif name.endswith(".dmg"):
            kind = InputKind.DMG
        elif name.endswith(".zip"):
            kind = InputKind.ZIP
        elif name.endswith(TBZ_SUFFIXES):
            kind = InputKind.TBZ
        else:
            raise InputError(f"input file must be a .app, .dmg, .zip, or .tbz: {p}")
        return cls(kind=kind, path=p.resolve())


class InputResolver:
    def __init__(
        self,
        volumes: DiskImageManager,
        extractor: ArchiveExtractor,
        config: Optional[BuildConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.volumes = volumes
        self.extractor = extractor
        self.config = config or BuildConfig()
        self.logger = logger or logging.getLogger(__name__)

    def _locate_app(self, root: Path, where: str) -> Path:
        app = ArchiveExtractor.top_level_entry(root, [".app"]) or find_bundle(
            root, (".app",), max_depth=self.config.search_depth
        )
        if app is None:
            raise InputError(f"unable to locate .app in {where}")
        self.logger.info("found %s in %s", app.name, where)
        return app

    async def _mount_and_locate(self, dmg: Path, mounts: List[MountedVolume]) -> Path:
        volume = await self.volumes.mount(dmg)
        # registered before searching so cleanup detaches it whatever happens next
        mounts.append(volume)
        return self._locate_app(volume.mount_point, dmg.name)

    async def resolve(
        self,
        artifact: InputArtifact,
        workspace: BuildWorkspace,
        mounts: List[MountedVolume],
        tag: str = "input",
    ) -> Path:
        if not artifact.path.exists():
            raise InputError(f"input not found: {artifact.path}")

        if artifact.kind is InputKind.APP:
            if not artifact.path.is_dir():
                raise InputError(f"{artifact.path} is not an application bundle")
            return artifact.path

        if artifact.kind is InputKind.DMG:
            return await self._mount_and_locate(artifact.path, mounts)

        scratch = fresh_dir(workspace.scratch / tag)
        extracted = await asyncio.to_thread(self.extractor.extract, artifact.path, scratch)

        if artifact.kind is InputKind.ZIP:
            dmg = ArchiveExtractor.top_level_entry(extracted, [".dmg"]) or find_file(
                extracted, (".dmg",), max_depth=self.config.search_depth
            )
            if dmg is not None:
                self.logger.info("%s contains disk image %s", artifact.path.name, dmg.name)
                return await self._mount_and_locate(dmg, mounts)

        return self._locate_app(extracted, artifact.path.name)
