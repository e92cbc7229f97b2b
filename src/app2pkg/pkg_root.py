"""
Per-run workspace and package root staging.

A package root mirrors the filesystem as the installer should lay it down,
e.g. `{workspace}/root/Applications/Foo.app` installs `/Applications/Foo.app`.
"""

from __future__ import annotations

import logging
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .errors import StagingError
from .util import copy_path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StagedRoot:
    """One payload tree plus what is needed to turn it into a component package."""

    root: Path
    arch_label: str
    plist_path: Path
    package_name: str
    pkg_ref_id: str
    scripts_dir: Optional[Path] = None


@dataclass(frozen=True)
class BuildWorkspace:
    path: Path

    @classmethod
    def create(cls, work_root: Path) -> "BuildWorkspace":
        path = Path(work_root) / f"app2pkg-{uuid.uuid4().hex}"
        try:
            path.mkdir(parents=True)
        except OSError as e:
            raise StagingError(f"failed to create workspace {path}: {e}") from e
        return cls(path=path)

    @property
    def distribution_xml(self) -> Path:
        return self.path / "distribution.xml"

    @property
    def scripts(self) -> Path:
        return self.path / "Scripts"

    @property
    def packages(self) -> Path:
        # productbuild --package-path; component packages are written here
        return self.path

    @property
    def scratch(self) -> Path:
        return self.path / "scratch"

    def root(self, name: str = "root") -> Path:
        return self.path / name

    def component_plist(self, label: str = "") -> Path:
        return self.path / (f"component_{label}.plist" if label else "component.plist")

    def remove(self) -> None:
        shutil.rmtree(self.path, ignore_errors=True)
        if self.path.exists():
            logger.error("workspace %s could not be fully removed", self.path)


def _relative_target(target_path: str) -> str:
    rel = target_path.strip().lstrip("/").rstrip("/")
    if not rel or ".." in Path(rel).parts:
        raise StagingError(f"invalid install target path: {target_path!r}")
    return rel


def stage_application_root(workspace: BuildWorkspace, bundle: Path, root_name: str = "root") -> Path:
    """Copy bundle verbatim to `{root}/Applications/{bundle name}` and return the root."""
    package_root = workspace.root(root_name)
    applications = package_root / "Applications"
    try:
        applications.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise StagingError(f"failed to create {applications}: {e}") from e
    copy_path(bundle, applications / bundle.name)
    logger.info("staged %s into %s", bundle.name, applications)
    return package_root


def stage_vendor_root(workspace: BuildWorkspace, bundle: Path, target_path: str, root_name: str = "root") -> Path:
    """Copy the bundle and every sibling next to it into `{root}/{target_path}`.

    Vendor installer drivers load resources that sit beside the .app.
    """
    package_root = workspace.root(root_name)
    dest = package_root / _relative_target(target_path)
    try:
        dest.mkdir(parents=True, exist_ok=True)
        items = sorted(bundle.parent.iterdir())
    except OSError as e:
        raise StagingError(f"failed to prepare vendor root {dest}: {e}") from e
    for item in items:
        copy_path(item, dest / item.name)
        logger.debug("copied item: %s", item.name)
    logger.info("copied %d items from %s to %s", len(items), bundle.parent, dest)
    return package_root


POSTINSTALL_TEMPLATE = """#!/bin/zsh

tempDir="{target}"

"${{tempDir}}/{installer}"{args}
exitCode=$?

/bin/rm -R "${{tempDir}}"

exit "${{exitCode}}"
"""


def _shell_quote(arg: str) -> str:
    return "'" + arg.replace("'", "'\\''") + "'"


def write_vendor_postinstall(
    scripts_dir: Path,
    target_path: str,
    installer_rel_path: str,
    installer_args: Sequence[str] = ("--mode=silent",),
) -> Path:
    """Write a postinstall that runs the staged vendor installer, then deletes the staging tree.

    The package exits with the vendor installer's exit code.
    """
    target = "/" + _relative_target(target_path)
    installer = installer_rel_path.strip().lstrip("/")
    args = "".join(" " + _shell_quote(a) for a in installer_args)
    script = POSTINSTALL_TEMPLATE.format(target=target, installer=installer, args=args)
    postinstall = scripts_dir / "postinstall"
    try:
        scripts_dir.mkdir(parents=True, exist_ok=True)
        postinstall.write_text(script, encoding="utf-8")
        postinstall.chmod(0o755)
    except OSError as e:
        raise StagingError(f"failed to write {postinstall}: {e}") from e
    logger.info("wrote postinstall script %s", postinstall)
    return postinstall
