from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from .app_info import inspect_app
from .config import ARCH_POLICIES, BuildConfig, load_config
from .errors import InspectionError, PkgBuildError
from .inspectors import SIGNATURE_KINDS, inspect_package, inspect_signature
from .log import configure_logging
from .pipeline import PackagePipeline, PackageResult
from .variants import BuildVariant, StandardVariant, UniversalVariant, VendorVariant


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="app2pkg", description="Turn a macOS app into an installer package")
    parser.add_argument(
        "--config",
        default=os.environ.get("APP2PKG_CONFIG"),
        help="YAML config file (default: $APP2PKG_CONFIG)",
    )
    parser.add_argument("--arch-policy", choices=ARCH_POLICIES, default=None, help="Override arch_policy from config")
    parser.add_argument("--log-file", default=None, help="Also write the log to this file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log tool output (DEBUG)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_build = sub.add_parser("build-pkg", help="Build {App}-{Version}-{Arch}.pkg from a .app, .dmg, .zip or .tbz")
    p_build.add_argument("input", help="Path to the input artifact")
    p_build.add_argument("--out-dir", default=None, help="Output directory (default: beside the input)")

    p_univ = sub.add_parser("build-universal", help="Build one installer from an ARM and an Intel build")
    p_univ.add_argument("arm_input", help="ARM build (.app, .dmg, .zip or .tbz)")
    p_univ.add_argument("x86_input", help="Intel build (.app, .dmg, .zip or .tbz)")
    p_univ.add_argument("--out-dir", default=None, help="Output directory (default: beside the ARM input)")

    p_vendor = sub.add_parser("build-vendor", help="Wrap a vendor installer disk image in a package")
    p_vendor.add_argument("input", help="Path to the vendor .dmg")
    p_vendor.add_argument("--vendor", default="adobe-cc", help='Vendor profile name (default: "adobe-cc")')
    p_vendor.add_argument("--out-dir", default=None, help="Output directory (default: beside the input)")

    p_app = sub.add_parser("inspect-app", help="Print identifier, version and minimum OS of an app")
    p_app.add_argument("app", help="Path to .app")

    p_pkg = sub.add_parser("inspect-pkg", help="List the identifiers and versions a .pkg declares")
    p_pkg.add_argument("pkg", help="Path to .pkg")
    p_pkg.add_argument("--expect-id", default=None, help="Fail unless this identifier is present")
    p_pkg.add_argument("--expect-version", default=None, help="With --expect-id: fail unless it has this version")

    p_sig = sub.add_parser("inspect-signature", help="Ask Gatekeeper about a signed .pkg or .app")
    p_sig.add_argument("path", help="Path to .pkg or .app")
    p_sig.add_argument("--type", dest="kind", choices=SIGNATURE_KINDS, default="install")

    return parser


def _result_json(result: PackageResult) -> str:
    return json.dumps(
        {
            "packagePath": str(result.package_path),
            "appName": result.app_name,
            "bundleIdentifier": result.bundle_identifier,
            "version": result.version,
        },
        indent=2,
    )


def _run_build(
    variant: BuildVariant,
    inputs: List[str],
    out_dir: Optional[str],
    config: BuildConfig,
    logger: logging.Logger,
) -> int:
    pipeline = PackagePipeline(variant, config=config, logger=logger)
    try:
        result = asyncio.run(pipeline.run(inputs, out_dir))
    except PkgBuildError as e:
        print(f"build failed: {e}", file=sys.stderr)
        return 1
    print(_result_json(result))
    return 0


def main(argv: List[str]) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv[1:])

    logger = configure_logging(
        Path(args.log_file).expanduser() if args.log_file else None,
        level=logging.DEBUG if args.verbose else logging.INFO,
    )

    try:
        config = load_config(Path(args.config).expanduser() if args.config else None)
        if args.arch_policy:
            config = dataclasses.replace(config, arch_policy=args.arch_policy)
    except (OSError, ValueError) as e:
        print(f"invalid configuration: {e}", file=sys.stderr)
        return 2

    if args.cmd == "build-pkg":
        return _run_build(StandardVariant(), [args.input], args.out_dir, config, logger)

    if args.cmd == "build-universal":
        return _run_build(UniversalVariant(), [args.arm_input, args.x86_input], args.out_dir, config, logger)

    if args.cmd == "build-vendor":
        try:
            profile = config.vendor(args.vendor)
        except ValueError as e:
            print(str(e), file=sys.stderr)
            return 2
        return _run_build(VendorVariant(profile), [args.input], args.out_dir, config, logger)

    if args.cmd == "inspect-app":
        try:
            identifier, version, min_os = inspect_app(Path(args.app).expanduser())
        except PkgBuildError as e:
            print(f"inspect failed: {e}", file=sys.stderr)
            return 1
        print(json.dumps({"bundleIdentifier": identifier, "version": version, "minimumOSVersion": min_os}, indent=2))
        return 0

    if args.cmd == "inspect-pkg":
        try:
            items = inspect_package(Path(args.pkg).expanduser(), config=config)
        except InspectionError as e:
            print(f"inspect failed: {e}", file=sys.stderr)
            return 1
        print(json.dumps([{"identifier": i, "version": v} for i, v in items], indent=2))
        if args.expect_id:
            found = dict(items).get(args.expect_id)
            if found is None:
                print(f"identifier {args.expect_id} not in package", file=sys.stderr)
                return 1
            if args.expect_version and found != args.expect_version:
                print(f"{args.expect_id}: expected version {args.expect_version}, got {found}", file=sys.stderr)
                return 1
        return 0

    if args.cmd == "inspect-signature":
        try:
            info = inspect_signature(Path(args.path).expanduser(), kind=args.kind, config=config)
        except InspectionError as e:
            print(f"inspect failed: {e}", file=sys.stderr)
            return 1
        print(
            json.dumps(
                {
                    "accepted": info.accepted,
                    "source": info.source,
                    "developerID": info.developer_id,
                    "developerTeam": info.developer_team,
                },
                indent=2,
            )
        )
        return 0 if info.accepted else 1

    parser.error(f"unknown command: {args.cmd}")
    return 2


def run() -> None:
    sys.exit(main(sys.argv))


if __name__ == "__main__":
    sys.exit(main(sys.argv))
