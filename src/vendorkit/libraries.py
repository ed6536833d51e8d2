"""Library discovery and per-platform library tools.

A ``LibraryTool`` wraps the archiver/lipo/strip tooling of one platform
family. Every operation fully rewrites its output path, so calling it again
with the same output is safe.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from vendorkit.fsops import copy_path, delete_path, iter_files
from vendorkit.process import ProcessResult
from vendorkit.retry import RetryingRunner

STATIC_EXTENSIONS = (".a", ".lib")
SHARED_EXTENSIONS = (".so", ".dylib", ".dll", ".wasm")
LIBRARY_EXTENSIONS = STATIC_EXTENSIONS + SHARED_EXTENSIONS


def find_libraries(directory: Path) -> list[Path]:
    return list(iter_files(directory, lambda path: path.suffix in LIBRARY_EXTENSIONS))


def find_static_libraries(directory: Path) -> list[Path]:
    return list(iter_files(directory, lambda path: path.suffix in STATIC_EXTENSIONS))


def find_shared_libraries(directory: Path) -> list[Path]:
    return list(iter_files(directory, lambda path: path.suffix in SHARED_EXTENSIONS))


def find_frameworks(directory: Path) -> list[Path]:
    """Framework bundles (``Name.framework/Name``) anywhere below ``directory``."""
    if not directory.is_dir():
        return []
    found: list[Path] = []
    for child in sorted(directory.iterdir()):
        if not child.is_dir():
            continue
        if child.name.lower().endswith(".framework"):
            if (child / child.stem).exists():
                found.append(child)
        else:
            found.extend(find_frameworks(child))
    return found


def is_static_library(path: Path) -> bool:
    return path.suffix in STATIC_EXTENSIONS


def is_framework(path: Path) -> bool:
    return path.name.lower().endswith(".framework")


def framework_binary(path: Path) -> Path:
    return path / path.stem if is_framework(path) else path


class CommandSource(Protocol):
    name: str
    archs: tuple[str, ...]

    def command(self, tool: str, arch: str) -> str:
        """Resolve the executable used for ``tool`` when targeting ``arch``."""

    def wrap(self, argv: Sequence[str], arch: str) -> list[str]:
        """Prepare ``argv`` to run inside the platform's tool environment."""


class LibraryTool(Protocol):
    def merge(self, libraries: Sequence[Path], output: Path, arch: str) -> Path:
        """Combine static libraries into one archive at ``output``."""

    def strip(self, library: Path, arch: str) -> None:
        """Remove debug symbols in place."""

    def create_fat_library(self, libraries: Sequence[Path], output: Path) -> bool:
        """Combine one library built for several archs into one file."""

    def create_xcframework(
        self,
        library_dir: Path,
        output_dir: Path,
        *,
        header_dir: Path | None = None,
    ) -> list[Path]:
        """Package per-arch libraries under ``library_dir`` as XCFrameworks."""


@dataclass(slots=True)
class ArLibraryTool:
    """``ar`` based tools: linux, android, ohos and web (``emar``)."""

    toolchain: CommandSource
    runner: RetryingRunner
    strip_symbols: bool = True

    def merge(self, libraries: Sequence[Path], output: Path, arch: str) -> Path:
        ar = self.toolchain.command("ar", arch)
        temp_dir = output.parent / "temp"
        delete_path(temp_dir)
        temp_dir.mkdir(parents=True)
        try:
            for index, library in enumerate(libraries):
                self._extract(ar, temp_dir / f"{index}-{library.stem}", library, arch)
            objects = sorted(
                str(path.relative_to(temp_dir))
                for path in iter_files(temp_dir, lambda path: path.suffix in (".o", ".obj"))
            )
            delete_path(output)
            self._run([ar, "rc", str(output), *objects], cwd=temp_dir, arch=arch)
        finally:
            delete_path(temp_dir)
        return output

    def strip(self, library: Path, arch: str) -> None:
        if not self.strip_symbols or not library.exists():
            return
        strip = self.toolchain.command("strip", arch)
        self._run([strip, "-S", str(library)], cwd=library.parent, arch=arch)

    def create_fat_library(self, libraries: Sequence[Path], output: Path) -> bool:
        return False

    def create_xcframework(
        self,
        library_dir: Path,
        output_dir: Path,
        *,
        header_dir: Path | None = None,
    ) -> list[Path]:
        return []

    def _extract(self, ar: str, directory: Path, library: Path, arch: str) -> None:
        directory.mkdir(parents=True)
        self._run([ar, "x", str(library)], cwd=directory, arch=arch)
        listing = self._run([ar, "t", str(library)], cwd=directory, arch=arch).stdout
        members = [line.strip() for line in listing.splitlines() if line.strip()]
        # Archives may hold several members with the same name; plain `ar x`
        # keeps only the last one, so pull each copy out by index.
        for member, count in Counter(members).items():
            if count == 1:
                continue
            delete_path(directory / member)
            for position in range(1, count + 1):
                self._run(
                    [ar, "xN", str(position), str(library), member],
                    cwd=directory,
                    arch=arch,
                )
                (directory / member).rename(directory / f"{position}.{member}")

    def _run(self, argv: list[str], *, cwd: Path, arch: str) -> ProcessResult:
        return self.runner.run(self.toolchain.wrap(argv, arch), cwd=cwd, arch=arch)


@dataclass(slots=True)
class AppleLibraryTool:
    """``libtool``/``lipo``/``xcodebuild`` tools for ios and mac."""

    toolchain: CommandSource
    runner: RetryingRunner

    def merge(self, libraries: Sequence[Path], output: Path, arch: str) -> Path:
        delete_path(output)
        self.runner.run(
            ["libtool", "-static", *(str(library) for library in libraries), "-o", str(output)],
            cwd=output.parent,
            arch=arch,
        )
        return output

    def strip(self, library: Path, arch: str) -> None:
        if not library.exists():
            return
        binary = framework_binary(library)
        self.runner.run(["strip", "-S", str(binary)], cwd=binary.parent, arch=arch)

    def create_fat_library(self, libraries: Sequence[Path], output: Path) -> bool:
        if not libraries:
            return False
        delete_path(output)
        copy_path(libraries[0], output)
        if len(libraries) > 1:
            inputs = [str(framework_binary(library)) for library in libraries]
            self.runner.run(
                ["lipo", "-create", *inputs, "-o", str(framework_binary(output))],
                cwd=output.parent,
            )
        return True

    def create_xcframework(
        self,
        library_dir: Path,
        output_dir: Path,
        *,
        header_dir: Path | None = None,
    ) -> list[Path]:
        slices = xcframework_slices(self.toolchain.name, self.toolchain.archs)
        if not slices:
            return []
        first_arch = next(iter(slices.values()))[0]
        candidates = find_libraries(library_dir / first_arch) + find_frameworks(
            library_dir / first_arch
        )
        created: list[Path] = []
        for library in candidates:
            framework = is_framework(library)
            fat_libraries: list[Path] = []
            for slice_name, archs in slices.items():
                fat = library_dir / f"{library.stem}-{slice_name}" / library.name
                self.create_fat_library([library_dir / arch / library.name for arch in archs], fat)
                fat_libraries.append(fat)
            argv = ["xcodebuild", "-create-xcframework"]
            for fat in fat_libraries:
                argv += ["-framework" if framework else "-library", str(fat)]
                if not framework and header_dir is not None:
                    argv += ["-headers", str(header_dir)]
            output = output_dir / f"{library.stem}.xcframework"
            delete_path(output)
            argv += ["-output", str(output)]
            try:
                self.runner.run(argv, cwd=output_dir)
            finally:
                for fat in fat_libraries:
                    delete_path(fat.parent)
            created.append(output)
        return created


@dataclass(slots=True)
class MsvcLibraryTool:
    """``lib.exe`` for win."""

    toolchain: CommandSource
    runner: RetryingRunner

    def merge(self, libraries: Sequence[Path], output: Path, arch: str) -> Path:
        delete_path(output)
        lib = self.toolchain.command("lib", arch)
        argv = [lib, f"/out:{output}", *(str(library) for library in libraries)]
        self.runner.run(self.toolchain.wrap(argv, arch), cwd=output.parent, arch=arch)
        return output

    def strip(self, library: Path, arch: str) -> None:
        # MSVC keeps debug info in separate .pdb files.
        return None

    def create_fat_library(self, libraries: Sequence[Path], output: Path) -> bool:
        return False

    def create_xcframework(
        self,
        library_dir: Path,
        output_dir: Path,
        *,
        header_dir: Path | None = None,
    ) -> list[Path]:
        return []


def xcframework_slices(platform: str, archs: Sequence[str]) -> dict[str, list[str]]:
    """Group archs into XCFramework slices, e.g. ``ios-arm64`` / ``ios-x86_64-simulator``."""
    if platform == "mac":
        return {"macos-" + "_".join(archs): list(archs)} if archs else {}
    if platform != "ios":
        return {}
    device = [arch for arch in archs if arch in ("arm", "arm64")]
    simulator = [arch for arch in archs if arch not in device]
    slices: dict[str, list[str]] = {}
    if device:
        slices["ios-" + "_".join(device)] = device
    if simulator:
        names = ["arm64" if arch == "arm64-simulator" else arch for arch in simulator]
        slices["ios-" + "_".join(names) + "-simulator"] = simulator
    return slices

