"""Core typed dataclasses for vendor declarations and build results."""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


@dataclass(frozen=True, slots=True)
class CMakeConfig:
    targets: tuple[str, ...]
    arguments: tuple[str, ...] = ()
    includes: tuple[str, ...] = ()
    platforms: tuple[str, ...] | None = None
    native: bool = False

    @property
    def has_platform_filter(self) -> bool:
        return self.platforms is not None


@dataclass(frozen=True, slots=True)
class ScriptConfig:
    file: Path
    executor: str | None = None
    arguments: tuple[str, ...] = ()


@dataclass(eq=False, slots=True)
class VendorSpec:
    """One resolved vendor.

    ``deps`` maps a local alias to the dependency object itself, so the
    resolved manifest forms a graph. ``fingerprint`` is filled once per
    process run and never recomputed.
    """

    name: str
    source_dir: Path
    out_dir: Path
    deps: dict[str, VendorSpec] = field(default_factory=dict)
    cmake: CMakeConfig | None = None
    script: ScriptConfig | None = None
    fingerprint: str | None = None

    @property
    def build_config(self) -> CMakeConfig | ScriptConfig:
        if self.script is not None:
            return self.script
        if self.cmake is not None:
            return self.cmake
        raise ValueError(f"Vendor '{self.name}' has no build configuration.")

    def platform_out(self, platform: str) -> Path:
        return self.out_dir / platform

    def __repr__(self) -> str:
        return f"VendorSpec(name={self.name!r}, deps={sorted(self.deps)!r})"


@dataclass(frozen=True, slots=True)
class ArtifactSet:
    """Files produced by one build invocation for one architecture."""

    arch: str
    paths: tuple[Path, ...] = ()

    def __iter__(self) -> Iterator[Path]:
        return iter(self.paths)

    def __len__(self) -> int:
        return len(self.paths)


@dataclass(frozen=True, slots=True)
class LockOwner:
    pid: int
    timestamp_ms: int
    hostname: str
    token: str = ""


class BuildState(Enum):
    NOT_VISITED = "not_visited"
    DEPENDENCIES_BUILDING = "dependencies_building"
    BUILT = "built"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class VendorBuildResult:
    name: str
    library_dirs: tuple[Path, ...]
    built_archs: tuple[str, ...] = ()
    cached_archs: tuple[str, ...] = ()

    @property
    def cache_hit(self) -> bool:
        return not self.built_archs


@dataclass(slots=True)
class BuildReport:
    vendors: dict[str, VendorBuildResult] = field(default_factory=dict)
    library_dirs: list[Path] = field(default_factory=list)
    published_archs: list[str] = field(default_factory=list)
    published_files: list[Path] = field(default_factory=list)
    removed_dirs: list[Path] = field(default_factory=list)

    @property
    def built_vendors(self) -> list[str]:
        return [name for name, result in self.vendors.items() if result.built_archs]
