"""
Post-build inspection of packages and signatures.

These do not take part in a build run; they check what a run (or someone
else) produced: Gatekeeper's verdict on a signature, and the identifiers and
versions a package declares.
"""

from __future__ import annotations

import logging
import tempfile
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from .config import BuildConfig
from .errors import InspectionError, ToolError
from .util import ToolRunner

logger = logging.getLogger(__name__)

SIGNATURE_KINDS = ("install", "execute")


@dataclass(frozen=True)
class SignatureInfo:
    accepted: bool
    source: Optional[str] = None
    developer_id: Optional[str] = None
    developer_team: Optional[str] = None


def _line_value(output: str, key: str) -> Optional[str]:
    for line in output.splitlines():
        if f"{key}=" in line:
            _, _, value = line.partition("=")
            value = value.strip()
            return value or None
    return None


def parse_spctl_output(output: str) -> SignatureInfo:
    """Parse `spctl -a -vv` output.

        /path/App.pkg: accepted
        source=Notarized Developer ID
        origin=Developer ID Installer: Example Corp (ABCDE12345)
    """
    if "accepted" in output:
        accepted = True
    elif "rejected" in output:
        accepted = False
    else:
        raise InspectionError(f"unknown spctl response: {output.strip()}")

    developer_id = developer_team = None
    origin = _line_value(output, "origin")
    if origin:
        open_idx = origin.rfind("(")
        close_idx = origin.rfind(")")
        if open_idx != -1 and close_idx > open_idx:
            developer_team = origin[open_idx + 1 : close_idx]
            raw = origin[:open_idx].strip()
            _, colon, rest = raw.partition(":")
            developer_id = rest.strip() if colon else raw
        else:
            developer_team = developer_id = origin

    return SignatureInfo(
        accepted=accepted,
        source=_line_value(output, "source"),
        developer_id=developer_id,
        developer_team=developer_team,
    )


def inspect_signature(
    path: Path,
    kind: str = "install",
    runner: Optional[ToolRunner] = None,
    config: Optional[BuildConfig] = None,
) -> SignatureInfo:
    """Ask Gatekeeper about path: kind "install" for a .pkg, "execute" for a .app."""
    if kind not in SIGNATURE_KINDS:
        raise InspectionError(f"signature type must be one of {SIGNATURE_KINDS}, got {kind!r}")
    path = Path(path)
    if not path.exists():
        raise InspectionError(f"file not found: {path}")
    runner = runner or ToolRunner(logger)
    config = config or BuildConfig()
    # spctl exits non-zero on rejection; the verdict is in the output either way
    result = runner.run([config.tool("spctl"), "-a", "-vv", "-t", kind, str(path)])
    return parse_spctl_output(result.output)


def _parse_xml(path: Path) -> ET.Element:
    try:
        return ET.fromstring(path.read_text(encoding="utf-8", errors="ignore"))
    except (OSError, ET.ParseError) as e:
        raise InspectionError(f"failed to parse {path.name}: {e}") from e


def _distribution_refs(root: ET.Element) -> List[Tuple[str, str]]:
    items = []
    for ref in root.iter("pkg-ref"):
        ref_id = ref.attrib.get("id")
        version = ref.attrib.get("version")
        if ref_id and version:
            items.append((ref_id, version))
    return items


def _package_info(root: ET.Element) -> List[Tuple[str, str]]:
    nodes = [root] if root.tag == "pkg-info" else list(root.iter("pkg-info"))
    items = []
    for node in nodes:
        ident = node.attrib.get("identifier")
        version = node.attrib.get("version")
        if ident and version:
            items.append((ident, version))
    return items


def inspect_package(
    pkg: Path,
    runner: Optional[ToolRunner] = None,
    config: Optional[BuildConfig] = None,
) -> List[Tuple[str, str]]:
    """List the (identifier, version) pairs a package declares.

    A product archive answers from its Distribution pkg-refs, a bare
    component package from its PackageInfo.
    """
    pkg = Path(pkg)
    if not pkg.exists():
        raise InspectionError(f"file not found: {pkg}")
    runner = runner or ToolRunner(logger)
    config = config or BuildConfig()

    with tempfile.TemporaryDirectory(prefix="app2pkg-inspect-") as td:
        expanded = Path(td) / "expanded"
        try:
            runner.check([config.tool("pkgutil"), "--expand-full", str(pkg), str(expanded)])
        except ToolError as e:
            raise InspectionError(f"failed to expand {pkg.name}: {e}") from e

        distribution = expanded / "Distribution"
        package_info = expanded / "PackageInfo"
        if distribution.exists():
            return _distribution_refs(_parse_xml(distribution))
        if package_info.exists():
            return _package_info(_parse_xml(package_info))
    raise InspectionError(f"no Distribution or PackageInfo in {pkg.name}")


def get_package_version(
    pkg: Path,
    identifier: str,
    runner: Optional[ToolRunner] = None,
    config: Optional[BuildConfig] = None,
) -> Optional[str]:
    for ref_id, version in inspect_package(pkg, runner=runner, config=config):
        if ref_id == identifier:
            return version
    return None
