"""
Distribution descriptors (the `Distribution` XML that Installer reads).

Single-component builds start from `productbuild --synthesize` and patch the
result as text: a title, a domains element limiting installs to the local
system volume, and rootVolumeOnly on the options element.

Universal builds write the descriptor by hand: two pkg-refs, one per
architecture, each behind a choice that is enabled and selected only when
the host CPU matches, so exactly one payload installs.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List, Optional

from .app_info import AppBundleInfo
from .component_pkg import ComponentPackage
from .config import BuildConfig
from .errors import StagingError
from .util import ToolRunner, xml_escape

DOMAINS_ELEMENT = '<domains enable_anywhere="false" enable_currentUserHome="false" enable_localSystem="true"/>'

IS_ARM_SCRIPT = """function is_arm() {
  if(system.sysctl("machdep.cpu.brand_string").includes("Apple")) {
    return true;
  }
  return false;
}"""

_ROOT_OPEN_RE = re.compile(r"<installer-gui-script\b[^>]*>")
_OPTIONS_RE = re.compile(r"<options\b[^>]*?(/?)>")


def patch_distribution_xml(text: str, title: str) -> str:
    out = text

    if "<title>" not in out:
        m = _ROOT_OPEN_RE.search(out)
        if m:
            out = out[: m.end()] + f"\n    <title>{xml_escape(title)}</title>" + out[m.end() :]

    if "<domains" not in out:
        idx = out.find("<options")
        if idx == -1:
            idx = out.rfind("</installer-gui-script>")
        if idx != -1:
            out = out[:idx] + DOMAINS_ELEMENT + "\n    " + out[idx:]

    m = _OPTIONS_RE.search(out)
    if m and "rootVolumeOnly" not in m.group(0):
        element = m.group(0)
        closing = "/>" if m.group(1) else ">"
        body = element[: -len(closing)].rstrip()
        out = out[: m.start()] + f'{body} rootVolumeOnly="true" {closing}' + out[m.end() :]

    return out


def render_universal_distribution(
    info: AppBundleInfo,
    arm: ComponentPackage,
    x86: ComponentPackage,
) -> str:
    """Build the descriptor for a universal (ARM + Intel) installer."""
    name = xml_escape(info.name)
    version = xml_escape(info.version)
    arm_id = xml_escape(arm.pkg_ref_id)
    x86_id = xml_escape(x86.pkg_ref_id)

    lines: List[str] = []
    lines.append('<?xml version="1.0" encoding="utf-8"?>')
    lines.append('<installer-gui-script minSpecVersion="1">')
    lines.append(f"    <title>{name}-{version}</title>")
    lines.append(f'    <pkg-ref id="{arm_id}"/>')
    lines.append(f'    <pkg-ref id="{x86_id}"/>')
    lines.append(f"    {DOMAINS_ELEMENT}")
    lines.append(
        '    <options customize="allow" require-scripts="false" rootVolumeOnly="true" '
        'hostArchitectures="x86_64,arm64"/>'
    )
    lines.append("    <script>")
    lines.append("    <![CDATA[")
    lines += [f"    {line}" for line in IS_ARM_SCRIPT.splitlines()]
    lines.append("    ]]>")
    lines.append("    </script>")
    lines.append("    <choices-outline>")
    lines.append('        <line choice="default">')
    lines.append(f'            <line choice="{arm_id}"/>')
    lines.append(f'            <line choice="{x86_id}"/>')
    lines.append("        </line>")
    lines.append("    </choices-outline>")
    lines.append(f'    <choice id="default" title="{name}-{version}"/>')
    for ref_id, comp, label, predicate in (
        (arm_id, arm, "ARM", "is_arm()"),
        (x86_id, x86, "x86", "! is_arm()"),
    ):
        lines.append(
            f'    <choice id="{ref_id}" title="{name} {label}" visible="true" '
            f'enabled="{predicate}" selected="{predicate}">'
        )
        lines.append(f'        <pkg-ref id="{ref_id}"/>')
        lines.append("    </choice>")
        lines.append(
            f'    <pkg-ref id="{ref_id}" version="{version}" onConclusion="none">'
            f"{xml_escape(comp.path.name)}</pkg-ref>"
        )
    lines.append("</installer-gui-script>")
    return "\n".join(lines) + "\n"


class DistributionSynthesizer:
    def __init__(
        self,
        runner: ToolRunner,
        config: Optional[BuildConfig] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.runner = runner
        self.config = config or BuildConfig()
        self.logger = logger or logging.getLogger(__name__)

    def synthesize(self, component: ComponentPackage, out_path: Path, title: str) -> Path:
        self.runner.check(
            [self.config.tool("productbuild"), "--synthesize", "--package", str(component.path), str(out_path)]
        )
        try:
            text = out_path.read_text(encoding="utf-8")
            out_path.write_text(patch_distribution_xml(text, title), encoding="utf-8")
        except OSError as e:
            raise StagingError(f"failed to patch {out_path}: {e}") from e
        self.logger.info("synthesized distribution %s", out_path)
        return out_path

    def write_universal(
        self,
        info: AppBundleInfo,
        arm: ComponentPackage,
        x86: ComponentPackage,
        out_path: Path,
    ) -> Path:
        try:
            out_path.write_text(render_universal_distribution(info, arm, x86), encoding="utf-8")
        except OSError as e:
            raise StagingError(f"failed to write {out_path}: {e}") from e
        self.logger.info("wrote universal distribution %s", out_path)
        return out_path
