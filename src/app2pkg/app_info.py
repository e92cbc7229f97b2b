"""
Bundle metadata: Info.plist fields and executable architecture.

The architecture comes from running `file` on the main executable named by
CFBundleExecutable. Fat binaries list both slices:

    Mach-O universal binary with 2 architectures: [x86_64:...] [arm64:...]
"""

from __future__ import annotations

import enum
import logging
import plistlib
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple
from xml.parsers.expat import ExpatError

from .config import BuildConfig
from .errors import InputError
from .util import ToolRunner


class Architecture(str, enum.Enum):
    ARM64 = "arm64"
    X86_64 = "x86_64"
    UNIVERSAL = "universal"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class AppBundleInfo:
    name: str
    bundle_identifier: str
    version: str
    architecture: Architecture


@dataclass(frozen=True)
class AdobeApplicationInfo:
    name: str
    architecture: Architecture
    version: str


def read_info_plist(bundle: Path) -> Dict[str, Any]:
    plist_path = bundle / "Contents" / "Info.plist"
    try:
        with plist_path.open("rb") as fh:
            data = plistlib.load(fh)
    except (OSError, plistlib.InvalidFileException, ExpatError, ValueError) as e:
        raise InputError(f"unable to read Info.plist from {bundle}: {e}") from e
    if not isinstance(data, dict):
        raise InputError(f"Info.plist in {bundle} is not a dictionary")
    return data


def _required_str(plist: Mapping[str, Any], key: str, bundle: Path) -> str:
    value = plist.get(key)
    if not isinstance(value, str) or not value.strip():
        raise InputError(f"{key} missing from Info.plist in {bundle}")
    return value.strip()


def classify_file_output(text: str) -> Architecture:
    has_arm = "arm64" in text
    has_x86 = "x86_64" in text
    if has_arm and has_x86:
        return Architecture.UNIVERSAL
    if has_arm:
        return Architecture.ARM64
    if has_x86:
        return Architecture.X86_64
    return Architecture.UNKNOWN


class AppInfoReader:
    def __init__(
        self,
        runner: ToolRunner,
        config: Optional[BuildConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.runner = runner
        self.config = config or BuildConfig()
        self.logger = logger or logging.getLogger(__name__)

    def detect_architecture(self, bundle: Path, plist: Optional[Mapping[str, Any]] = None) -> Architecture:
        plist = plist if plist is not None else read_info_plist(bundle)
        executable = plist.get("CFBundleExecutable")
        if not isinstance(executable, str) or not executable:
            self.logger.warning("CFBundleExecutable missing from %s", bundle)
            return Architecture.UNKNOWN
        exe_path = bundle / "Contents" / "MacOS" / executable
        # -b keeps the path (which may itself contain "arm64") out of the output
        result = self.runner.run([self.config.tool("file"), "-b", str(exe_path)])
        if not result.ok:
            return Architecture.UNKNOWN
        return classify_file_output(result.output)

    def read(self, bundle: Path) -> AppBundleInfo:
        plist = read_info_plist(bundle)
        identifier = _required_str(plist, "CFBundleIdentifier", bundle)
        version = _required_str(plist, "CFBundleShortVersionString", bundle)
        name = _required_str(plist, "CFBundleName", bundle)

        arch = self.detect_architecture(bundle, plist)
        if arch is Architecture.UNKNOWN:
            if not self.config.tolerate_unknown_arch:
                raise InputError(f"unable to determine executable architecture of {bundle}")
            self.logger.warning("architecture of %s unknown, continuing (tolerant policy)", bundle)

        info = AppBundleInfo(name=name, bundle_identifier=identifier, version=version, architecture=arch)
        self.logger.info(
            "app %s id=%s version=%s arch=%s", info.name, info.bundle_identifier, info.version, info.architecture.value
        )
        return info


def _application_field(app: ET.Element, tag: str, manifest: Path) -> str:
    node = app.find(tag)
    if node is None or node.text is None or not node.text.strip():
        raise InputError(f"<{tag}> missing from {manifest}")
    return node.text.strip()


def read_vendor_manifest(manifest: Path, platforms: Mapping[str, str]) -> AdobeApplicationInfo:
    """Parse an ApplicationInfo.xml style manifest (`<application>` name/platform/version)."""
    if not manifest.is_file():
        raise InputError(f"vendor manifest not found at {manifest}")
    try:
        root = ET.parse(manifest).getroot()
    except (ET.ParseError, OSError) as e:
        raise InputError(f"failed to parse {manifest}: {e}") from e

    app = root if root.tag == "application" else root.find(".//application")
    if app is None:
        raise InputError(f"<application> missing from {manifest}")

    name = _application_field(app, "name", manifest)
    platform_code = _application_field(app, "platform", manifest)
    version = _application_field(app, "version", manifest)

    mapped = platforms.get(platform_code)
    if mapped is None:
        raise InputError(f"unknown vendor platform code {platform_code!r} in {manifest}")
    try:
        arch = Architecture(mapped)
    except ValueError:
        raise InputError(f"platform {platform_code!r} maps to unsupported architecture {mapped!r}") from None
    return AdobeApplicationInfo(name=name, architecture=arch, version=version)


def inspect_app(bundle: Path) -> Tuple[str, str, str]:
    """Return (bundle identifier, short version, minimum OS) for a finished app."""
    plist = read_info_plist(bundle)
    identifier = _required_str(plist, "CFBundleIdentifier", bundle)
    version = _required_str(plist, "CFBundleShortVersionString", bundle)
    min_os = plist.get("LSMinimumSystemVersion")
    return identifier, version, min_os if isinstance(min_os, str) and min_os else "Unknown"


def get_app_version(bundle: Path, expected_identifier: str) -> Optional[str]:
    identifier, version, _ = inspect_app(bundle)
    if identifier != expected_identifier:
        return None
    return version
