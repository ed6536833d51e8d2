"""Shared test fixtures."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import pytest

from vendorkit.errors import BuildFailure
from vendorkit.models import ArtifactSet, VendorSpec
from vendorkit.platforms import MacToolchain
from vendorkit.process import ProcessResult
from vendorkit.settings import BuildSettings


@dataclass
class FakeBuilder:
    """In-process builder writing one placeholder static library per arch."""

    calls: list[tuple[str, tuple[str, ...]]] = field(default_factory=list)
    fail_vendors: set[str] = field(default_factory=set)

    def build(
        self,
        vendor: VendorSpec,
        out_path: Path,
        archs: Sequence[str],
        deps: Mapping[str, VendorSpec],
    ) -> dict[str, ArtifactSet]:
        self.calls.append((vendor.name, tuple(archs)))
        results: dict[str, ArtifactSet] = {}
        for arch in archs:
            library = out_path / arch / f"lib{vendor.name}.a"
            library.parent.mkdir(parents=True, exist_ok=True)
            library.write_text(f"{vendor.name}:{arch}:{len(self.calls)}\n", encoding="utf-8")
            results[arch] = ArtifactSet(arch, (library,))
        if vendor.name in self.fail_vendors:
            raise BuildFailure(f"{vendor.name} failed", context={"vendor": vendor.name})
        return results

    def built_names(self) -> list[str]:
        return [name for name, _ in self.calls]


@dataclass
class FakeRunner:
    """Process runner returning queued results and recording every call."""

    results: list[ProcessResult] = field(default_factory=list)
    calls: list[dict[str, Any]] = field(default_factory=list)
    on_call: Callable[[Sequence[str], Path], None] | None = None

    def __call__(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        self.calls.append({"argv": list(argv), "cwd": cwd, "env": dict(env or {})})
        if self.on_call is not None:
            self.on_call(argv, cwd)
        if self.results:
            return self.results.pop(0)
        return ProcessResult(argv=tuple(argv), cwd=cwd, returncode=0)

    def commands(self) -> list[list[str]]:
        return [call["argv"] for call in self.calls]


@dataclass
class FakeLibraryTool:
    merged: list[tuple[list[Path], Path]] = field(default_factory=list)
    stripped: list[Path] = field(default_factory=list)
    xcframeworks: list[Path] = field(default_factory=list)

    def merge(self, libraries: Sequence[Path], output: Path, arch: str) -> Path:
        self.merged.append((list(libraries), output))
        output.write_bytes(b"".join(path.read_bytes() for path in libraries))
        return output

    def strip(self, library: Path, arch: str) -> None:
        self.stripped.append(library)

    def create_fat_library(self, libraries: Sequence[Path], output: Path) -> bool:
        return False

    def create_xcframework(
        self,
        library_dir: Path,
        output_dir: Path,
        *,
        header_dir: Path | None = None,
    ) -> list[Path]:
        output = output_dir / "vendors.xcframework"
        output.mkdir(parents=True, exist_ok=True)
        self.xcframeworks.append(output)
        return [output]


def failed(argv: Sequence[str], cwd: Path, output: str, returncode: int = 1) -> ProcessResult:
    return ProcessResult(argv=tuple(argv), cwd=cwd, returncode=returncode, stderr=output)


def write_manifest(root: Path, vendors: list[dict[str, Any]], **extra: Any) -> Path:
    payload = {"source": "third_party", "out": "out", "vendors": vendors, **extra}
    for vendor in vendors:
        source = root / "third_party" / vendor.get("dir", vendor["name"])
        source.mkdir(parents=True, exist_ok=True)
        (source / "CMakeLists.txt").write_text("project(x)\n", encoding="utf-8")
    path = root / "vendor.json"
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path


@pytest.fixture
def fake_builder() -> FakeBuilder:
    return FakeBuilder()


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def library_tool() -> FakeLibraryTool:
    return FakeLibraryTool()


@pytest.fixture
def settings() -> BuildSettings:
    return BuildSettings(platform="mac", jobs=2, lock_timeout=5.0)


@pytest.fixture
def toolchain() -> MacToolchain:
    return MacToolchain(archs=("arm64", "x64"), versions={"cmake": "3.28.1"})
