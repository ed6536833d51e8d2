"""Script-based vendor builds."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from vendorkit.builders.base import BuildTools
from vendorkit.errors import ConfigError
from vendorkit.libraries import find_frameworks, find_libraries
from vendorkit.models import ArtifactSet, VendorSpec


@dataclass(slots=True)
class ScriptBuilder:
    """Runs a vendor's own build script for every platform arch.

    The script owns its output layout; it is expected to write
    ``$VENDOR_OUT_DIR/<platform>/<arch>/`` itself.
    """

    tools: BuildTools

    def build(
        self,
        vendor: VendorSpec,
        out_path: Path,
        archs: Sequence[str],
        deps: Mapping[str, VendorSpec],
    ) -> dict[str, ArtifactSet]:
        script = vendor.script
        if script is None:
            raise ConfigError(f"Vendor '{vendor.name}' has no build script for this platform.")
        settings = self.tools.settings
        all_archs = self.tools.toolchain.archs
        command = [*([script.executor] if script.executor else []), str(script.file)]
        command += list(script.arguments)
        env = script_environment(
            vendor,
            deps,
            build_type=settings.build_type,
            platform=self.tools.toolchain.name,
            archs=all_archs,
        )
        for key, value in env.items():
            self.tools.logger.debug("exec", f"env: {key}={value}", vendor=vendor.name)
        self.tools.logger.info(
            "build_start",
            f"Running build script {script.file.name}",
            vendor=vendor.name,
            platform=self.tools.toolchain.name,
        )
        self.tools.runner.run(command, cwd=vendor.source_dir, env=env, vendor=vendor.name)
        return {
            arch: ArtifactSet(
                arch,
                tuple(find_libraries(out_path / arch) + find_frameworks(out_path / arch)),
            )
            for arch in all_archs
        }


def script_environment(
    vendor: VendorSpec,
    deps: Mapping[str, VendorSpec],
    *,
    build_type: str,
    platform: str,
    archs: Sequence[str],
) -> dict[str, str]:
    env = {
        "VENDOR_BUILD_TYPE": build_type,
        "VENDOR_OUT_DIR": str(vendor.out_dir),
        "VENDOR_PLATFORM": platform,
        "VENDOR_ARCHS": ",".join(archs),
    }
    for alias, dep in deps.items():
        env[f"VENDOR_DEPS_{alias}"] = str(dep.out_dir)
    return env
