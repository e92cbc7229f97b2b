"""
Build configuration.

Defaults describe a stock macOS host. A YAML file can override any of them:

    tools:
      pkgbuild: /usr/bin/pkgbuild
    work_root: ${TMPDIR}/app2pkg
    mount_root: /private/tmp
    arch_policy: strict        # strict | tolerant
    search_depth: 20
    vendors:
      adobe-cc:
        identifier: com.adobe.acc.AdobeCreativeCloud
        target_path: /private/tmp/AdobeInstall
        installer: Install.app/Contents/MacOS/Install
        manifest: packages/ApplicationInfo.xml
        platforms: {macarm64: arm64, osx10: x86_64}

APP2PKG_WORK_ROOT and APP2PKG_ARCH_POLICY override the file.
"""

from __future__ import annotations

import os
import re
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml

ARCH_POLICIES = ("strict", "tolerant")

DEFAULT_TOOLS: Dict[str, str] = {
    "hdiutil": "/usr/bin/hdiutil",
    "pkgbuild": "/usr/bin/pkgbuild",
    "productbuild": "/usr/bin/productbuild",
    "ditto": "/usr/bin/ditto",
    "tar": "/usr/bin/tar",
    "file": "/usr/bin/file",
    "spctl": "/usr/sbin/spctl",
    "pkgutil": "/usr/sbin/pkgutil",
}


@dataclass(frozen=True)
class VendorProfile:
    """Where a vendor installer driver is staged and how it is launched."""

    name: str
    identifier: str
    target_path: str
    installer: str
    manifest: str
    platforms: Mapping[str, str]
    installer_args: Tuple[str, ...] = ("--mode=silent",)


ADOBE_CC = VendorProfile(
    name="adobe-cc",
    identifier="com.adobe.acc.AdobeCreativeCloud",
    target_path="/private/tmp/AdobeInstall",
    installer="Install.app/Contents/MacOS/Install",
    manifest="packages/ApplicationInfo.xml",
    platforms={"macarm64": "arm64", "osx10": "x86_64"},
)


@dataclass(frozen=True)
class BuildConfig:
    tools: Mapping[str, str] = field(default_factory=lambda: dict(DEFAULT_TOOLS))
    work_root: Path = field(default_factory=lambda: Path(tempfile.gettempdir()))
    mount_root: str = "/private/tmp"
    arch_policy: str = "strict"
    search_depth: int = 20
    vendors: Mapping[str, VendorProfile] = field(default_factory=lambda: {ADOBE_CC.name: ADOBE_CC})

    def __post_init__(self) -> None:
        if self.arch_policy not in ARCH_POLICIES:
            raise ValueError(f"arch_policy must be one of {ARCH_POLICIES}, got {self.arch_policy!r}")
        if self.search_depth <= 0:
            raise ValueError(f"search_depth must be positive, got {self.search_depth}")

    def tool(self, name: str) -> str:
        return self.tools.get(name) or DEFAULT_TOOLS[name]

    @property
    def tolerate_unknown_arch(self) -> bool:
        return self.arch_policy == "tolerant"

    def vendor(self, name: str) -> VendorProfile:
        try:
            return self.vendors[name]
        except KeyError:
            raise ValueError(f"unknown vendor profile: {name} (known: {', '.join(sorted(self.vendors))})") from None


def yaml_load_file(path: Path) -> Dict[str, Any]:
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"YAML root must be a map: {path}")
    return data


_VAR_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")


def _expand_vars(s: str) -> str:
    # ${VAR} and ${VAR:-default}; unset without default expands to "".
    def sub(m: "re.Match[str]") -> str:
        return os.environ.get(m.group(1), m.group(2) or "")

    return os.path.expanduser(_VAR_RE.sub(sub, s))


def _load_vendor(name: str, cfg: Mapping[str, Any], base: Optional[VendorProfile]) -> VendorProfile:
    if not isinstance(cfg, Mapping):
        raise ValueError(f"vendors.{name} must be a map")
    values: Dict[str, Any] = {}
    for key in ("identifier", "target_path", "installer", "manifest"):
        if key in cfg:
            values[key] = _expand_vars(str(cfg[key]))
    if "platforms" in cfg:
        platforms = cfg["platforms"] or {}
        if not isinstance(platforms, Mapping):
            raise ValueError(f"vendors.{name}.platforms must be a map")
        values["platforms"] = {str(k): str(v) for k, v in platforms.items()}
    if "installer_args" in cfg:
        values["installer_args"] = tuple(str(a) for a in (cfg["installer_args"] or []))
    if base is not None:
        return replace(base, **values)
    missing = [k for k in ("identifier", "target_path", "installer", "manifest", "platforms") if k not in values]
    if missing:
        raise ValueError(f"vendors.{name} missing keys: {', '.join(missing)}")
    return VendorProfile(name=name, **values)


def load_config(path: Optional[Path] = None) -> BuildConfig:
    data: Dict[str, Any] = yaml_load_file(path) if path is not None else {}

    tools = dict(DEFAULT_TOOLS)
    for name, tool_path in (data.get("tools", {}) or {}).items():
        tools[str(name)] = _expand_vars(str(tool_path))

    defaults = BuildConfig()
    work_root = os.environ.get("APP2PKG_WORK_ROOT") or data.get("work_root")
    arch_policy = os.environ.get("APP2PKG_ARCH_POLICY") or data.get("arch_policy") or defaults.arch_policy

    vendors: Dict[str, VendorProfile] = dict(defaults.vendors)
    for name, cfg in (data.get("vendors", {}) or {}).items():
        vendors[str(name)] = _load_vendor(str(name), cfg or {}, vendors.get(str(name)))

    return BuildConfig(
        tools=tools,
        work_root=Path(_expand_vars(str(work_root))) if work_root else defaults.work_root,
        mount_root=_expand_vars(str(data.get("mount_root", defaults.mount_root))),
        arch_policy=str(arch_policy),
        search_depth=int(data.get("search_depth", defaults.search_depth)),
        vendors=vendors,
    )
