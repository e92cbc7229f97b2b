"""Build macOS installer packages from .app, .dmg, .zip and .tbz inputs."""

from .errors import InputError, InspectionError, PkgBuildError, StagingError, ToolError
from .pipeline import (
    PackagePipeline,
    PackageResult,
    RunState,
    create_package,
    create_universal_package,
    create_vendor_package,
)

__version__ = "0.1.0"

__all__ = [
    "InputError",
    "InspectionError",
    "PackagePipeline",
    "PackageResult",
    "PkgBuildError",
    "RunState",
    "StagingError",
    "ToolError",
    "create_package",
    "create_universal_package",
    "create_vendor_package",
]
