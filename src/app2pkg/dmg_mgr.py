"""
Disk image attach/detach.

Images carrying a Software License Agreement cannot be attached without an
interactive acknowledgment, so they are converted to a writable (UDRW) image
first and the converted copy replaces the original file in place.
"""

from __future__ import annotations

import logging
import os
import plistlib
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
from xml.parsers.expat import ExpatError

from .config import BuildConfig
from .errors import StagingError, ToolError
from .util import ToolRunner, first_plist

SLA_KEY = "Software License Agreement"


@dataclass(frozen=True)
class MountedVolume:
    dmg_path: Path
    mount_point: Path


def _parse_plist_output(output: str) -> Optional[Dict[str, Any]]:
    text = first_plist(output)
    if not text:
        return None
    try:
        data = plistlib.loads(text.encode("utf-8"))
    except (plistlib.InvalidFileException, ExpatError, ValueError):
        return None
    return data if isinstance(data, dict) else None


class DiskImageManager:
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
    def hdiutil(self) -> str:
        return self.config.tool("hdiutil")

    async def has_license_agreement(self, dmg: Path) -> bool:
        try:
            result = await self.runner.run_async([self.hdiutil, "imageinfo", str(dmg), "-plist"])
        except ToolError:
            return False
        if not result.ok:
            self.logger.warning("could not read image info for %s, assuming no license agreement", dmg)
            return False
        info = _parse_plist_output(result.output)
        if info is None:
            return False
        properties = info.get("Properties")
        if not isinstance(properties, dict):
            return False
        return properties.get(SLA_KEY) is True

    async def convert_licensed_image(self, dmg: Path) -> bool:
        """Convert a license-gated image to UDRW and replace the original.

        Returns False when the image has no license agreement.
        """
        if not await self.has_license_agreement(dmg):
            return False
        self.logger.info("%s has a license agreement, converting before mount", dmg.name)
        tmp_dir = Path(tempfile.mkdtemp(prefix="app2pkg-convert-", dir=str(dmg.parent)))
        try:
            converted = tmp_dir / dmg.name
            await self.runner.check_async(
                [self.hdiutil, "convert", "-format", "UDRW", "-o", str(converted), str(dmg)]
            )
            if not converted.exists():
                raise ToolError(f"converted image not found at {converted}", cmd=[self.hdiutil, "convert"])
            try:
                os.replace(converted, dmg)
            except OSError as e:
                raise StagingError(f"failed to replace {dmg} with converted image: {e}") from e
        finally:
            shutil.rmtree(tmp_dir, ignore_errors=True)
        self.logger.info("converted %s", dmg)
        return True

    async def mount(self, dmg: Path) -> MountedVolume:
        await self.convert_licensed_image(dmg)
        result = await self.runner.check_async(
            [
                self.hdiutil,
                "attach",
                str(dmg),
                "-plist",
                "-mountrandom",
                self.config.mount_root,
                "-nobrowse",
            ]
        )
        data = _parse_plist_output(result.output)
        if data is None:
            raise ToolError(f"unexpected hdiutil attach output for {dmg}", cmd=result.cmd, output=result.output)
        for entity in data.get("system-entities", []) or []:
            if isinstance(entity, dict) and entity.get("mount-point"):
                volume = MountedVolume(dmg_path=dmg, mount_point=Path(entity["mount-point"]))
                self.logger.info("mounted %s at %s", dmg.name, volume.mount_point)
                return volume
        raise ToolError(f"no mount point found attaching {dmg}", cmd=result.cmd, output=result.output)

    def unmount(self, volume: MountedVolume) -> None:
        # best effort: called from cleanup, never raises
        try:
            result = self.runner.run([self.hdiutil, "detach", str(volume.mount_point), "-quiet"])
        except ToolError as e:
            self.logger.error("detach %s failed: %s", volume.mount_point, e)
            return
        if result.ok:
            self.logger.info("detached %s", volume.mount_point)
        else:
            self.logger.error("detach %s failed (exit %d)", volume.mount_point, result.returncode)
