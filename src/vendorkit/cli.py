"""Command line entry point.

Usage:
    vendorkit [NAMES...] [-p PLATFORM] [-a ARCH] [-o OUTPUT] [--debug] ...
"""

from __future__ import annotations

import argparse
import os
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

from vendorkit.errors import VendorKitError
from vendorkit.manifest import DEFAULT_MANIFEST_NAME, load_manifest
from vendorkit.observability import StructuredLogger
from vendorkit.orchestrator import BuildOrchestrator
from vendorkit.platforms import create_toolchain, host_platform
from vendorkit.settings import KNOWN_PLATFORMS, settings_from_env


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vendorkit",
        description="Build the native vendor libraries declared in a vendor manifest.",
    )
    parser.add_argument("names", nargs="*", help="Vendors to build (default: all)")
    parser.add_argument(
        "-m",
        "--manifest",
        default=DEFAULT_MANIFEST_NAME,
        help=f"Manifest path (default: ./{DEFAULT_MANIFEST_NAME})",
    )
    parser.add_argument(
        "-p",
        "--platform",
        choices=KNOWN_PLATFORMS,
        default=host_platform(),
        help="Target platform (default: the host platform)",
    )
    parser.add_argument("-a", "--arch", help="Build only this architecture")
    parser.add_argument("-o", "--output", help="Publish merged libraries into this directory")
    parser.add_argument("--debug", action="store_true", help="Debug build type")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show tool commands and output")
    parser.add_argument("--incremental", action="store_true", help="Keep CMake build directories")
    parser.add_argument("--no-strip", action="store_true", help="Keep debug symbols")
    parser.add_argument(
        "--xcframework",
        action="store_true",
        help="Package published Apple libraries as XCFrameworks",
    )
    parser.add_argument("--log-json", help="Write structured build records to this file")
    return parser


def main(argv: Sequence[str] | None = None, environ: Mapping[str, str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    env = os.environ if environ is None else environ
    logger = StructuredLogger(echo=sys.stdout, echo_errors=sys.stderr, verbose=args.verbose)
    try:
        settings = settings_from_env(
            env,
            platform=args.platform,
            archs=(args.arch.lower(),) if args.arch else None,
            debug=args.debug,
            verbose=args.verbose,
            incremental=args.incremental,
            strip=not args.no_strip,
            xcframework=args.xcframework,
        )
        toolchain = create_toolchain(settings, environ=env, logger=logger)
        manifest = load_manifest(
            args.manifest,
            platform=settings.platform,
            debug=settings.debug,
            logger=logger,
        )
        orchestrator = BuildOrchestrator(manifest, settings, toolchain, logger=logger)
        publish_dir = Path(args.output).resolve() if args.output else None
        report = orchestrator.build_all(args.names, publish_dir)
    except VendorKitError as exc:
        print(f"error[{exc.code}]: {exc}", file=sys.stderr)
        return 1
    finally:
        if args.log_json:
            logger.to_json_lines(args.log_json)
    built = report.built_vendors
    summary = f"built: {', '.join(built)}" if built else "everything up to date"
    print(f"vendorkit: {summary}")
    return 0
