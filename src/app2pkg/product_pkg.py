"""Final distribution package via productbuild."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from .config import BuildConfig
from .errors import StagingError, ToolError
from .util import ToolRunner, remove_path


def output_package_name(app_name: str, version: str, architecture: str) -> str:
    return f"{app_name}-{version}-{architecture}.pkg"


class DistributionPackageAssembler:
    def __init__(
        self,
        runner: ToolRunner,
        config: Optional[BuildConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.runner = runner
        self.config = config or BuildConfig()
        self.logger = logger or logging.getLogger(__name__)

    def assemble(self, distribution: Path, package_dir: Path, output: Path) -> Path:
        """Write the product archive to output, replacing any file already there.

        Two concurrent runs producing the same output name race here; the
        survivor is whichever productbuild finishes last.
        """
        remove_path(output)
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StagingError(f"failed to create output directory {output.parent}: {e}") from e
        try:
            self.runner.check(
                [
                    self.config.tool("productbuild"),
                    "--distribution",
                    str(distribution),
                    "--package-path",
                    str(package_dir),
                    str(output),
                ]
            )
        except ToolError:
            if output.exists():
                self.logger.warning("removing partial package %s", output)
                remove_path(output)
            raise
        if not output.exists():
            raise ToolError(f"productbuild reported success but {output} is missing")
        self.logger.info("distribution package created at %s", output)
        return output
