"""Depth-first vendor builds with per-arch caching."""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from pathlib import Path

from vendorkit.builders.base import VendorBuilder
from vendorkit.errors import BuildFailure, ConfigError, CyclicDependencyError
from vendorkit.fingerprint import compute_fingerprint
from vendorkit.fsops import list_directory
from vendorkit.lock import with_lock
from vendorkit.models import ArtifactSet, BuildState, VendorBuildResult, VendorSpec
from vendorkit.observability import StructuredLogger
from vendorkit.platforms import PlatformToolchain
from vendorkit.records import purge_arch, stale_archs, write_record
from vendorkit.settings import BuildSettings

BuilderFactory = Callable[[VendorSpec], VendorBuilder]


@dataclass(slots=True)
class VendorGraph:
    """Builds vendors dependencies-first, skipping archs whose record matches.

    Each vendor is visited at most once per run; later requests return the
    memoized result.
    """

    vendors: Mapping[str, VendorSpec]
    settings: BuildSettings
    toolchain: PlatformToolchain
    builder_for: BuilderFactory
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    _states: dict[str, BuildState] = field(init=False, default_factory=dict)
    _results: dict[str, VendorBuildResult] = field(init=False, default_factory=dict)
    _stack: list[str] = field(init=False, default_factory=list)

    def state(self, name: str) -> BuildState:
        return self._states.get(name, BuildState.NOT_VISITED)

    def build_vendor(self, name: str) -> VendorBuildResult:
        vendor = self.vendors.get(name)
        if vendor is None:
            raise ConfigError(
                f"Could not find any vendor name that matches '{name}'.",
                context={"platform": self.toolchain.name},
            )
        state = self.state(name)
        if state is BuildState.BUILT:
            return self._results[name]
        if state is BuildState.DEPENDENCIES_BUILDING:
            cycle = " -> ".join((*self._stack[self._stack.index(name) :], name))
            raise CyclicDependencyError(
                f"Cyclic vendor dependency: {cycle}",
                context={"cycle": cycle},
            )
        if state is BuildState.FAILED:
            raise BuildFailure(f"Vendor '{name}' already failed to build in this run.")

        self._states[name] = BuildState.DEPENDENCIES_BUILDING
        self._stack.append(name)
        try:
            library_dirs = [vendor.platform_out(self.toolchain.name)]
            for dep in vendor.deps.values():
                library_dirs.extend(self.build_vendor(dep.name).library_dirs)
            result = self._build_own(vendor, _unique(library_dirs))
        except BaseException:
            self._states[name] = BuildState.FAILED
            raise
        finally:
            self._stack.pop()
        self._states[name] = BuildState.BUILT
        self._results[name] = result
        return result

    def _build_own(self, vendor: VendorSpec, library_dirs: tuple[Path, ...]) -> VendorBuildResult:
        out_path = vendor.platform_out(self.toolchain.name)
        expected = compute_fingerprint(vendor, self.toolchain.identity())
        archs = self.toolchain.archs
        if not stale_archs(out_path, archs, expected):
            self.logger.info(
                "cache_hit",
                f"{vendor.name} is up to date for {', '.join(archs)}",
                vendor=vendor.name,
                platform=self.toolchain.name,
            )
            return VendorBuildResult(vendor.name, library_dirs, cached_archs=archs)

        try:
            built = with_lock(
                out_path,
                lambda: self._rebuild(vendor, out_path, expected),
                timeout=self.settings.lock_timeout,
                stale_after=self.settings.stale_lock_after,
                logger=self.logger,
            )
        except OSError as exc:
            raise BuildFailure(
                f"Could not build {vendor.name} for {self.toolchain.name}: {exc}",
                hint="Check permissions and free space in the output directory.",
                context={"vendor": vendor.name, "path": str(exc.filename or out_path)},
            ) from exc
        cached = tuple(arch for arch in archs if arch not in built)
        return VendorBuildResult(vendor.name, library_dirs, built_archs=built, cached_archs=cached)

    def _rebuild(self, vendor: VendorSpec, out_path: Path, expected: str) -> tuple[str, ...]:
        platform = self.toolchain.name
        # Another process may have finished this build while we waited.
        queued = stale_archs(out_path, self.toolchain.archs, expected)
        if not queued:
            self.logger.info(
                "cache_hit",
                f"{vendor.name} was built by another process",
                vendor=vendor.name,
                platform=platform,
            )
            return ()
        if vendor.script is not None:
            # Scripts always produce every arch.
            queued = list(self.toolchain.archs)
        for arch in queued:
            purge_arch(out_path, arch)

        build_type = self.settings.build_type.lower()
        self.logger.info(
            "build_start",
            f"build {vendor.name}-{platform}-{build_type} start: [{', '.join(queued)}]",
            vendor=vendor.name,
            platform=platform,
        )
        artifacts = self.builder_for(vendor).build(vendor, out_path, queued, vendor.deps)
        self._check_outputs(vendor, out_path, queued, artifacts)
        for arch in queued:
            write_record(out_path, arch, expected)
        self.logger.info(
            "build_complete",
            f"build {vendor.name}-{platform}-{build_type} end",
            vendor=vendor.name,
            platform=platform,
        )
        return tuple(queued)

    def _check_outputs(
        self,
        vendor: VendorSpec,
        out_path: Path,
        queued: Iterable[str],
        artifacts: Mapping[str, ArtifactSet],
    ) -> None:
        for arch in queued:
            artifact_set = artifacts.get(arch)
            if artifact_set is None or not len(artifact_set):
                raise BuildFailure(
                    f"Build tool reported success but output missing for {vendor.name} ({arch}).",
                    hint="Check that the build writes its libraries into the arch directory.",
                    context={
                        "vendor": vendor.name,
                        "arch": arch,
                        "build_dir": list_directory(out_path, limit=40),
                    },
                )


def _unique(paths: Iterable[Path]) -> tuple[Path, ...]:
    return tuple(dict.fromkeys(paths))
