"""Build every vendor in ./vendor.json for the host platform."""

import sys
from pathlib import Path

from vendorkit import BuildOrchestrator, BuildSettings, create_toolchain, load_manifest
from vendorkit.observability import StructuredLogger
from vendorkit.platforms import host_platform


def build_host_vendors() -> None:
    logger = StructuredLogger(echo=sys.stdout, echo_errors=sys.stderr)
    settings = BuildSettings(platform=host_platform())
    toolchain = create_toolchain(settings, logger=logger)
    manifest = load_manifest(Path(__file__).with_name("vendor.json"), platform=settings.platform)

    report = BuildOrchestrator(manifest, settings, toolchain, logger=logger).build_all()
    for name, result in report.vendors.items():
        state = "cached" if result.cache_hit else f"built {', '.join(result.built_archs)}"
        print(f"{name}: {state}")


if __name__ == "__main__":
    build_host_vendors()
