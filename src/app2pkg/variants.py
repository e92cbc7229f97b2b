"""
Build variants.

The pipeline is the same for every build; a variant decides

- how many inputs it takes and what they may be,
- where the metadata comes from,
- how the package root(s) are populated (and therefore how many component
  packages get built),
- how the distribution descriptor is produced,
- which architecture label the output file carries.
"""

from __future__ import annotations

import abc
import dataclasses
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

from .app_info import AppBundleInfo, AppInfoReader, Architecture, read_vendor_manifest
from .component_pkg import ComponentPackage
from .config import BuildConfig, VendorProfile
from .distribution import DistributionSynthesizer
from .errors import InputError
from .inputs import InputArtifact, InputKind
from .pkg_root import BuildWorkspace, StagedRoot, stage_application_root, stage_vendor_root, write_vendor_postinstall


@dataclass(frozen=True)
class RunContext:
    workspace: BuildWorkspace
    config: BuildConfig
    reader: AppInfoReader
    synthesizer: DistributionSynthesizer
    logger: logging.Logger


class BuildVariant(abc.ABC):
    name: str = "base"
    input_tags: Tuple[str, ...] = ("input",)

    def check_inputs(self, artifacts: Sequence[InputArtifact]) -> None:
        if len(artifacts) != len(self.input_tags):
            raise InputError(f"{self.name} build takes {len(self.input_tags)} input(s), got {len(artifacts)}")

    @abc.abstractmethod
    def read_metadata(self, ctx: RunContext, bundles: Sequence[Path]) -> AppBundleInfo:
        ...

    @abc.abstractmethod
    def stage(self, ctx: RunContext, bundles: Sequence[Path], info: AppBundleInfo) -> List[StagedRoot]:
        ...

    def package_identifier(self, info: AppBundleInfo) -> str:
        return info.bundle_identifier

    @abc.abstractmethod
    def write_distribution(
        self, ctx: RunContext, components: Sequence[ComponentPackage], info: AppBundleInfo
    ) -> Path:
        ...

    def output_architecture(self, info: AppBundleInfo) -> str:
        return info.architecture.value


class _SynthesizedDistribution:
    """Mixin: one component package, descriptor from productbuild --synthesize."""

    def write_distribution(
        self, ctx: RunContext, components: Sequence[ComponentPackage], info: AppBundleInfo
    ) -> Path:
        (component,) = components
        return ctx.synthesizer.synthesize(
            component, ctx.workspace.distribution_xml, title=f"{info.name} - {info.version}"
        )


class StandardVariant(_SynthesizedDistribution, BuildVariant):
    """One app, installed to /Applications."""

    name = "standard"

    def read_metadata(self, ctx: RunContext, bundles: Sequence[Path]) -> AppBundleInfo:
        return ctx.reader.read(bundles[0])

    def stage(self, ctx: RunContext, bundles: Sequence[Path], info: AppBundleInfo) -> List[StagedRoot]:
        root = stage_application_root(ctx.workspace, bundles[0])
        return [
            StagedRoot(
                root=root,
                arch_label=info.architecture.value,
                plist_path=ctx.workspace.component_plist(),
                package_name=f"{info.name}-{info.version}-component.pkg",
                pkg_ref_id=info.bundle_identifier,
            )
        ]


class VendorVariant(_SynthesizedDistribution, BuildVariant):
    """A vendor installer driver shipped on a disk image.

    The driver app and everything beside it is staged into a temporary
    location; the package postinstall runs it silently and removes it again.
    """

    name = "vendor"

    def __init__(self, profile: VendorProfile) -> None:
        self.profile = profile

    def check_inputs(self, artifacts: Sequence[InputArtifact]) -> None:
        super().check_inputs(artifacts)
        if artifacts[0].kind is not InputKind.DMG:
            raise InputError(f"{self.profile.name} builds take a .dmg, got {artifacts[0].path.name}")

    def read_metadata(self, ctx: RunContext, bundles: Sequence[Path]) -> AppBundleInfo:
        manifest = bundles[0].parent / self.profile.manifest
        vendor_info = read_vendor_manifest(manifest, self.profile.platforms)
        ctx.logger.info(
            "vendor app %s version=%s arch=%s", vendor_info.name, vendor_info.version, vendor_info.architecture.value
        )
        return AppBundleInfo(
            name=vendor_info.name,
            bundle_identifier=self.profile.identifier,
            version=vendor_info.version,
            architecture=vendor_info.architecture,
        )

    def stage(self, ctx: RunContext, bundles: Sequence[Path], info: AppBundleInfo) -> List[StagedRoot]:
        root = stage_vendor_root(ctx.workspace, bundles[0], self.profile.target_path)
        write_vendor_postinstall(
            ctx.workspace.scripts,
            self.profile.target_path,
            self.profile.installer,
            self.profile.installer_args,
        )
        return [
            StagedRoot(
                root=root,
                arch_label=info.architecture.value,
                plist_path=ctx.workspace.component_plist(),
                package_name=f"{info.name}-{info.version}-component.pkg",
                pkg_ref_id=self.profile.identifier,
                scripts_dir=ctx.workspace.scripts,
            )
        ]

    def package_identifier(self, info: AppBundleInfo) -> str:
        return self.profile.identifier


class UniversalVariant(BuildVariant):
    """An ARM build and an Intel build of the same app in one installer.

    Metadata comes from the ARM bundle; the descriptor installs whichever
    component matches the host CPU.
    """

    name = "universal"
    input_tags = ("arm", "x86")

    def read_metadata(self, ctx: RunContext, bundles: Sequence[Path]) -> AppBundleInfo:
        arm_info = ctx.reader.read(bundles[0])
        x86_info = ctx.reader.read(bundles[1])
        if (arm_info.bundle_identifier, arm_info.version) != (x86_info.bundle_identifier, x86_info.version):
            ctx.logger.warning(
                "ARM and x86 bundles differ: %s %s vs %s %s; using the ARM values",
                arm_info.bundle_identifier,
                arm_info.version,
                x86_info.bundle_identifier,
                x86_info.version,
            )
        if arm_info.architecture is Architecture.X86_64:
            ctx.logger.warning("%s has no arm64 slice", bundles[0].name)
        if x86_info.architecture is Architecture.ARM64:
            ctx.logger.warning("%s has no x86_64 slice", bundles[1].name)
        return dataclasses.replace(arm_info, architecture=Architecture.UNIVERSAL)

    def stage(self, ctx: RunContext, bundles: Sequence[Path], info: AppBundleInfo) -> List[StagedRoot]:
        staged = []
        for bundle, label in zip(bundles, self.input_tags):
            root = stage_application_root(ctx.workspace, bundle, root_name=f"root_{label}")
            staged.append(
                StagedRoot(
                    root=root,
                    arch_label=label,
                    plist_path=ctx.workspace.component_plist(label),
                    package_name=f"component-{label}.pkg",
                    pkg_ref_id=f"{info.bundle_identifier}-{label}",
                )
            )
        return staged

    def write_distribution(
        self, ctx: RunContext, components: Sequence[ComponentPackage], info: AppBundleInfo
    ) -> Path:
        arm, x86 = components
        return ctx.synthesizer.write_universal(info, arm, x86, ctx.workspace.distribution_xml)

    def output_architecture(self, info: AppBundleInfo) -> str:
        return Architecture.UNIVERSAL.value
