"""CMake + Ninja (or native generator) vendor builds."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path

from vendorkit.builders.base import BuildTools
from vendorkit.errors import BuildFailure, ConfigError
from vendorkit.fsops import copy_path, delete_path, iter_files, list_directory
from vendorkit.libraries import find_frameworks, find_libraries
from vendorkit.models import ArtifactSet, CMakeConfig, VendorSpec
from vendorkit.platforms import PlatformToolchain

SOURCE_DIR_KEY = "${SOURCE_DIR}"
BUILD_DIR_KEY = "${BUILD_DIR}"
INSTALL_MACRO = "macro (install)\nendmacro ()\n"
SHARED_LIBS_PROPERTY = (
    "# Disable error for the web platform.\n"
    "SET_PROPERTY(GLOBAL PROPERTY TARGET_SUPPORTS_SHARED_LIBS true)\n"
)
PROJECT_KEYS = ("project(", "project (", "PROJECT(", "PROJECT (")


@dataclass(slots=True)
class CMakeBuilder:
    tools: BuildTools

    def build(
        self,
        vendor: VendorSpec,
        out_path: Path,
        archs: Sequence[str],
        deps: Mapping[str, VendorSpec],
    ) -> dict[str, ArtifactSet]:
        config = vendor.cmake
        if config is None:
            raise ConfigError(f"Vendor '{vendor.name}' has no cmake configuration.")
        settings = self.tools.settings
        toolchain = self.tools.toolchain
        self.tools.logger.info(
            "toolchain",
            f"[Toolchains] {toolchain.identity()}",
            vendor=vendor.name,
            platform=toolchain.name,
        )
        build_root = out_path / f"build-{'-'.join(config.targets)}"
        if not settings.incremental:
            delete_path(build_root)
        build_root.mkdir(parents=True, exist_ok=True)

        cmake_lists = vendor.source_dir / "CMakeLists.txt"
        original = transform_cmake_lists(cmake_lists, toolchain.name)
        try:
            produced = {
                arch: self._build_arch(vendor, config, build_root / arch, arch, deps)
                for arch in archs
            }
        finally:
            if original is not None:
                cmake_lists.write_text(original, encoding="utf-8")

        results = self.tools.publisher.copy_libraries(produced, out_path)
        if config.includes and archs:
            copy_includes(vendor.source_dir, build_root / archs[0], out_path, config.includes)
        if not settings.incremental:
            delete_path(build_root)
        return results

    def _build_arch(
        self,
        vendor: VendorSpec,
        config: CMakeConfig,
        build_dir: Path,
        arch: str,
        deps: Mapping[str, VendorSpec],
    ) -> ArtifactSet:
        settings = self.tools.settings
        toolchain = self.tools.toolchain
        self.tools.logger.info(
            "build_start",
            f"Building the '{arch}' arch of [{', '.join(config.targets)}]",
            vendor=vendor.name,
            platform=toolchain.name,
            arch=arch,
        )
        build_dir.mkdir(parents=True, exist_ok=True)
        argv = [
            *toolchain.cmake_command(arch),
            *toolchain.generator(config.native),
            f"-DCMAKE_BUILD_TYPE={settings.build_type}",
        ]
        if settings.verbose:
            argv.append("-DCMAKE_VERBOSE_MAKEFILE=ON")
        argv += cmake_arguments(config, deps, toolchain, arch)
        argv.append(str(vendor.source_dir))
        self._run(argv, build_dir, vendor, arch)

        libraries: list[Path] = []
        for target in config.targets:
            command = toolchain.build_command(
                target,
                arch,
                build_type=settings.build_type,
                jobs=self.tools.jobs,
                native=config.native,
            )
            self._run(command, build_dir, vendor, arch)
            found = find_target_files(target, build_dir, libraries, keep_all=toolchain.name == "win")
            if not found:
                raise BuildFailure(
                    f"Build tool reported success but output missing for target '{target}'.",
                    hint="Check the target name, or that the target builds a library.",
                    context={
                        "vendor": vendor.name,
                        "arch": arch,
                        "cwd": str(build_dir),
                        "build_dir": list_directory(build_dir, limit=40),
                    },
                )
            libraries.extend(found)
        return ArtifactSet(arch, tuple(libraries))

    def _run(self, argv: list[str], cwd: Path, vendor: VendorSpec, arch: str) -> None:
        self.tools.runner.run(
            self.tools.toolchain.wrap(argv, arch),
            cwd=cwd,
            vendor=vendor.name,
            arch=arch,
        )


def cmake_arguments(
    config: CMakeConfig,
    deps: Mapping[str, VendorSpec],
    toolchain: PlatformToolchain,
    arch: str,
) -> list[str]:
    return [
        *toolchain.platform_args(arch),
        *config.arguments,
        *dependency_arguments(deps, toolchain.name, arch),
    ]


def dependency_arguments(
    deps: Mapping[str, VendorSpec],
    platform: str,
    arch: str,
) -> list[str]:
    """Point CMake's ``find_package`` results for each alias at built deps."""
    args: list[str] = []
    for alias, dep in deps.items():
        dep_out = dep.platform_out(platform)
        include_dir = dep_out / "include"
        if not include_dir.exists():
            include_dir = dep.source_dir
        args += [
            f"-DCMAKE_DISABLE_FIND_PACKAGE_{alias}=TRUE",
            f"-D{alias}_FOUND=TRUE",
            f"-D{alias}_INCLUDE_DIR={include_dir}",
            f"-D{alias}_INCLUDE_DIRS={include_dir}",
        ]
        library_dir = dep_out / arch
        libraries = find_libraries(library_dir if library_dir.exists() else dep_out)
        if libraries:
            joined = ";".join(str(path) for path in libraries)
            args += [f"-D{alias}_LIBRARY={joined}", f"-D{alias}_LIBRARIES={joined}"]
    return args


def find_target_files(
    target: str,
    directory: Path,
    claimed: Sequence[Path],
    *,
    keep_all: bool = False,
) -> list[Path]:
    """Locate the output(s) of ``target`` below ``directory``.

    Files already in ``claimed`` are never returned twice. Windows shared
    library builds produce an import library next to the dll, so
    ``keep_all`` collects every match instead of stopping at the first.
    """
    candidates = find_libraries(directory) + find_frameworks(directory)
    found: list[Path] = []
    for candidate in candidates:
        if candidate in claimed or candidate in found:
            continue
        if not candidate.stem.endswith(target):
            continue
        found.append(candidate)
        if candidate.suffix == ".wasm":
            companion = candidate.with_suffix(".js")
            if companion.exists():
                found.append(companion)
        if not keep_all:
            return found
    if found:
        return found
    for candidate in iter_files(directory, lambda path: path.name == target):
        return [candidate]
    # Renamed outputs: fall back to the first library nobody has claimed.
    for candidate in candidates:
        if candidate not in claimed:
            return [candidate]
    return []


def transform_cmake_lists(path: Path, platform: str) -> str | None:
    """Patch ``CMakeLists.txt`` for vendoring and return the text to restore.

    ``install()`` calls become no-ops, and on web shared-library targets are
    allowed. Returns None when the file needed no change.
    """
    if not path.is_file():
        return None
    text = path.read_text(encoding="utf-8")
    restore = text
    if "install(" in text or "INSTALL(" in text:
        if text.startswith(INSTALL_MACRO):
            # Left behind by an interrupted run.
            restore = text[len(INSTALL_MACRO) :]
        else:
            text = INSTALL_MACRO + text
    if platform == "web":
        if SHARED_LIBS_PROPERTY in restore:
            restore = restore.replace(SHARED_LIBS_PROPERTY, "", 1)
        else:
            text = _insert_after_project(text, SHARED_LIBS_PROPERTY)
    if text == restore:
        return None
    path.write_text(text, encoding="utf-8")
    return restore


def copy_includes(
    source_dir: Path,
    build_dir: Path,
    out_path: Path,
    includes: Sequence[str],
) -> list[Path]:
    """Copy ``.h`` headers named by ``includes`` into ``out_path/include``."""
    copied: list[Path] = []
    for entry in includes:
        if entry.startswith(BUILD_DIR_KEY):
            root, relative = build_dir, entry[len(BUILD_DIR_KEY) :]
        elif entry.startswith(SOURCE_DIR_KEY):
            root, relative = source_dir, entry[len(SOURCE_DIR_KEY) :]
        else:
            root, relative = source_dir, entry
        relative = relative.lstrip("/\\")
        if any(char in relative for char in "*?["):
            matches = sorted(root.glob(relative))
            base = root / Path(relative).parent
        else:
            matches = [root / relative]
            base = (root / relative).parent
        for match in matches:
            for header in iter_files(match, lambda path: path.suffix.lower() == ".h"):
                target = out_path / "include" / header.relative_to(base)
                copy_path(header, target)
                copied.append(target)
    return copied


def _insert_after_project(text: str, snippet: str) -> str:
    for key in PROJECT_KEYS:
        index = text.find(key)
        if index == -1:
            continue
        line_end = text.find("\n", index)
        if line_end == -1:
            return text + "\n" + snippet
        return text[: line_end + 1] + snippet + text[line_end + 1 :]
    return text
