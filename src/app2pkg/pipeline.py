"""
Build pipeline: input artifact(s) in, one distribution package out.

    RESOLVING -> METADATA_EXTRACTED -> ROOT_STAGED -> COMPONENT_BUILT
              -> DISTRIBUTION_SYNTHESIZED -> ASSEMBLED

Any stage may fail; the run then ends in FAILED and the error propagates.
There is no resume: a failed run is retried from scratch by the caller.
Mounted volumes and the per-run workspace are released exactly once on every
exit path.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, List, Optional, Sequence, Union

from .app_info import AppInfoReader
from .archive import ArchiveExtractor
from .component_pkg import ComponentPackageBuilder
from .config import BuildConfig
from .distribution import DistributionSynthesizer
from .dmg_mgr import DiskImageManager, MountedVolume
from .errors import PkgBuildError, StagingError
from .inputs import InputArtifact, InputResolver
from .pkg_root import BuildWorkspace
from .product_pkg import DistributionPackageAssembler, output_package_name
from .util import ToolRunner
from .variants import BuildVariant, RunContext, StandardVariant, UniversalVariant, VendorVariant

PathLike = Union[str, os.PathLike]


class RunState(str, enum.Enum):
    RESOLVING = "resolving"
    METADATA_EXTRACTED = "metadata_extracted"
    ROOT_STAGED = "root_staged"
    COMPONENT_BUILT = "component_built"
    DISTRIBUTION_SYNTHESIZED = "distribution_synthesized"
    ASSEMBLED = "assembled"
    FAILED = "failed"


@dataclass(frozen=True)
class PackageResult:
    package_path: Path
    app_name: str
    bundle_identifier: str
    version: str
    architecture: str

    def __iter__(self) -> Iterator[Union[Path, str]]:
        # unpacks as (package path, app name, bundle identifier, version)
        return iter((self.package_path, self.app_name, self.bundle_identifier, self.version))


class PackagePipeline:
    def __init__(
        self,
        variant: Optional[BuildVariant] = None,
        config: Optional[BuildConfig] = None,
        runner: Optional[ToolRunner] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.variant = variant or StandardVariant()
        self.config = config or BuildConfig()
        self.logger = logger or logging.getLogger(__name__)
        self.runner = runner or ToolRunner(self.logger)

        self.volumes = DiskImageManager(self.runner, self.config, self.logger)
        self.extractor = ArchiveExtractor(self.runner, self.config, self.logger)
        self.resolver = InputResolver(self.volumes, self.extractor, self.config, self.logger)
        self.reader = AppInfoReader(self.runner, self.config, self.logger)
        self.components = ComponentPackageBuilder(self.runner, self.config, self.logger)
        self.synthesizer = DistributionSynthesizer(self.runner, self.config, self.logger)
        self.assembler = DistributionPackageAssembler(self.runner, self.config, self.logger)

        self.state: Optional[RunState] = None
        self.history: List[RunState] = []

    def _transition(self, state: RunState) -> None:
        self.state = state
        self.history.append(state)
        self.logger.info("[%s] %s", self.variant.name, state.value)

    def _cleanup(self, workspace: Optional[BuildWorkspace], mounts: List[MountedVolume]) -> None:
        for volume in reversed(mounts):
            self.volumes.unmount(volume)
        mounts.clear()
        if workspace is not None:
            workspace.remove()
            self.logger.debug("removed workspace %s", workspace.path)

    async def run(self, inputs: Sequence[PathLike], output_dir: Optional[PathLike] = None) -> PackageResult:
        self.history = []
        self._transition(RunState.RESOLVING)
        workspace: Optional[BuildWorkspace] = None
        mounts: List[MountedVolume] = []
        try:
            artifacts = [InputArtifact.from_path(p) for p in inputs]
            self.variant.check_inputs(artifacts)
            out_dir = Path(output_dir).expanduser().resolve() if output_dir else artifacts[0].path.parent
            for artifact in artifacts:
                self.logger.info("input %s (%s)", artifact.path, artifact.kind.value)
            self.logger.info("output directory %s", out_dir)

            workspace = BuildWorkspace.create(self.config.work_root)
            ctx = RunContext(
                workspace=workspace,
                config=self.config,
                reader=self.reader,
                synthesizer=self.synthesizer,
                logger=self.logger,
            )

            bundles = []
            for artifact, tag in zip(artifacts, self.variant.input_tags):
                bundles.append(await self.resolver.resolve(artifact, workspace, mounts, tag=tag))

            # stages below block on tools and file copies; keep them off the event loop
            info = await asyncio.to_thread(self.variant.read_metadata, ctx, bundles)
            self._transition(RunState.METADATA_EXTRACTED)

            staged = await asyncio.to_thread(self.variant.stage, ctx, bundles, info)
            self._transition(RunState.ROOT_STAGED)

            identifier = self.variant.package_identifier(info)
            components = []
            for s in staged:
                components.append(
                    await asyncio.to_thread(
                        self.components.build_staged, s, identifier, info.version, workspace.packages
                    )
                )
            self._transition(RunState.COMPONENT_BUILT)

            distribution = await asyncio.to_thread(self.variant.write_distribution, ctx, components, info)
            self._transition(RunState.DISTRIBUTION_SYNTHESIZED)

            arch = self.variant.output_architecture(info)
            output = out_dir / output_package_name(info.name, info.version, arch)
            await asyncio.to_thread(self.assembler.assemble, distribution, workspace.packages, output)
            self._transition(RunState.ASSEMBLED)

            return PackageResult(
                package_path=output,
                app_name=info.name,
                bundle_identifier=info.bundle_identifier,
                version=info.version,
                architecture=arch,
            )
        except PkgBuildError as e:
            self._transition(RunState.FAILED)
            self.logger.error("%s build failed: %s", self.variant.name, e)
            raise
        except OSError as e:
            self._transition(RunState.FAILED)
            self.logger.error("%s build failed: %s", self.variant.name, e)
            raise StagingError(str(e)) from e
        except Exception:
            self._transition(RunState.FAILED)
            self.logger.exception("%s build failed unexpectedly", self.variant.name)
            raise
        finally:
            await asyncio.to_thread(self._cleanup, workspace, mounts)


def _run_sync(pipeline: PackagePipeline, inputs: Sequence[PathLike], output_dir: Optional[PathLike]) -> Optional[PackageResult]:
    try:
        return asyncio.run(pipeline.run(inputs, output_dir))
    except PkgBuildError:
        return None


def create_package(
    input_path: PathLike,
    output_dir: Optional[PathLike] = None,
    *,
    config: Optional[BuildConfig] = None,
    runner: Optional[ToolRunner] = None,
    logger: Optional[logging.Logger] = None,
) -> Optional[PackageResult]:
    """Build `{App}-{Version}-{Arch}.pkg` from a .app, .dmg, .zip or .tbz.

    Returns None when the build fails; the reason is in the log.
    """
    pipeline = PackagePipeline(StandardVariant(), config=config, runner=runner, logger=logger)
    return _run_sync(pipeline, [input_path], output_dir)


def create_universal_package(
    arm_input: PathLike,
    x86_input: PathLike,
    output_dir: Optional[PathLike] = None,
    *,
    config: Optional[BuildConfig] = None,
    runner: Optional[ToolRunner] = None,
    logger: Optional[logging.Logger] = None,
) -> Optional[PackageResult]:
    pipeline = PackagePipeline(UniversalVariant(), config=config, runner=runner, logger=logger)
    return _run_sync(pipeline, [arm_input, x86_input], output_dir)


def create_vendor_package(
    input_path: PathLike,
    output_dir: Optional[PathLike] = None,
    *,
    vendor: str = "adobe-cc",
    config: Optional[BuildConfig] = None,
    runner: Optional[ToolRunner] = None,
    logger: Optional[logging.Logger] = None,
) -> Optional[PackageResult]:
    config = config or BuildConfig()
    pipeline = PackagePipeline(VendorVariant(config.vendor(vendor)), config=config, runner=runner, logger=logger)
    return _run_sync(pipeline, [input_path], output_dir)
