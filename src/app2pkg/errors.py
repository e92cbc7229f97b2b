"""Exception types raised by the package build pipeline."""

from __future__ import annotations

from typing import List, Optional


class PkgBuildError(Exception):
    """Base class for every failure that aborts a build run."""


class InputError(PkgBuildError):
    """The input artifact cannot be turned into a package.

    Unsupported extension, no bundle inside an archive or image, an incomplete
    Info.plist, or an architecture that cannot be determined.
    """


class ToolError(PkgBuildError):
    def __init__(
        self,
        message: str,
        cmd: Optional[List[str]] = None,
        returncode: Optional[int] = None,
        output: str = "",
    ) -> None:
        super().__init__(message)
        self.cmd = list(cmd or [])
        self.returncode = returncode
        self.output = output


class StagingError(PkgBuildError):
    """Creating, copying or removing something on disk failed."""


class InspectionError(Exception):
    """Raised by the post-build inspectors (signature, package, app)."""
