"""Per-platform toolchain knowledge.

Each target platform is one small dataclass carrying what differs between
platforms: default architectures, detected tool versions, CMake arguments,
native generator commands and the library tool to use. ``create_toolchain``
picks the variant by platform name and runs its tool discovery once.
"""

from __future__ import annotations

import os
import re
import sys
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from vendorkit.errors import ConfigError, ToolchainError
from vendorkit.libraries import AppleLibraryTool, ArLibraryTool, LibraryTool, MsvcLibraryTool
from vendorkit.observability import StructuredLogger
from vendorkit.process import capture_output
from vendorkit.retry import RetryingRunner
from vendorkit.settings import BuildSettings

# Bumping this invalidates every cached build.
TOOL_VERSION = "1.0.3"

PREFERRED_NDK_VERSIONS = ("19.2.5345600", "20.1.5948944", "21.0.6113669")
NDK_ENVS = ("NDK_HOME", "NDK_PATH", "ANDROID_NDK_HOME", "ANDROID_NDK")
ANDROID_API_LEVEL = 19
ANDROID_ABIS = {"arm": "armeabi-v7a", "arm64": "arm64-v8a", "x64": "x86_64", "x86": "x86"}
OHOS_ABIS = {"arm": "armeabi-v7a", "arm64": "arm64-v8a", "x64": "x86_64"}
APPLE_ARCH_NAMES = {"arm64": "arm64", "arm64-simulator": "arm64", "x64": "x86_64", "arm": "armv7"}
MSVC_COMPONENT = "Microsoft.VisualStudio.Component.VC.Tools.x86.x64"


@dataclass(slots=True)
class PlatformToolchain:
    """Shared behaviour; variants override only what their platform changes."""

    name: ClassVar[str] = ""
    default_archs: ClassVar[tuple[str, ...]] = ("x64",)

    archs: tuple[str, ...] = ()
    versions: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.archs:
            self.archs = self.default_archs

    def tool_versions(self) -> dict[str, str]:
        return dict(self.versions)

    def identity(self) -> str:
        """Toolchain identity folded into every vendor fingerprint."""
        info = f"{self.name} {TOOL_VERSION}"
        versions = self.tool_versions()
        if versions:
            info += " (" + ", ".join(f"{tool}: {version}" for tool, version in versions.items()) + ")"
        return info

    def command(self, tool: str, arch: str) -> str:
        return tool

    def cmake_command(self, arch: str) -> list[str]:
        return [self.command("cmake", arch)]

    def platform_args(self, arch: str) -> list[str]:
        return []

    def generator(self, native: bool) -> list[str]:
        return [] if native else ["-G", "Ninja"]

    def build_command(
        self,
        target: str,
        arch: str,
        *,
        build_type: str,
        jobs: int,
        native: bool,
    ) -> list[str]:
        if native:
            return self.native_build_command(target, arch, build_type=build_type, jobs=jobs)
        return [self.command("ninja", arch), "-j", str(jobs), target]

    def native_build_command(
        self,
        target: str,
        arch: str,
        *,
        build_type: str,
        jobs: int,
    ) -> list[str]:
        return [
            self.command("cmake", arch),
            "--build",
            ".",
            "--config",
            build_type,
            "--target",
            target,
            "-j",
            str(jobs),
        ]

    def wrap(self, argv: Sequence[str], arch: str) -> list[str]:
        return list(argv)

    def library_tool(self, runner: RetryingRunner) -> LibraryTool:
        return ArLibraryTool(self, runner, strip_symbols=False)


@dataclass(slots=True)
class LinuxToolchain(PlatformToolchain):
    name: ClassVar[str] = "linux"
    default_archs: ClassVar[tuple[str, ...]] = ("x64",)

    def platform_args(self, arch: str) -> list[str]:
        return ["-DCMAKE_POSITION_INDEPENDENT_CODE=ON"]

    def library_tool(self, runner: RetryingRunner) -> LibraryTool:
        return ArLibraryTool(self, runner)


@dataclass(slots=True)
class AndroidToolchain(PlatformToolchain):
    name: ClassVar[str] = "android"
    default_archs: ClassVar[tuple[str, ...]] = ("arm", "arm64")

    ndk_home: Path = Path()

    def command(self, tool: str, arch: str) -> str:
        host = {"darwin": "darwin", "win32": "windows"}.get(sys.platform, "linux")
        bin_dir = self.ndk_home / "toolchains" / "llvm" / "prebuilt" / f"{host}-x86_64" / "bin"
        prefix = "aarch64-linux-android-" if arch == "arm64" else "arm-linux-androideabi-"
        for candidate in (bin_dir / f"llvm-{tool}", bin_dir / f"{prefix}{tool}"):
            if candidate.exists():
                return str(candidate)
        return tool

    def platform_args(self, arch: str) -> list[str]:
        args = [
            f"-DCMAKE_TOOLCHAIN_FILE={self.ndk_home / 'build' / 'cmake' / 'android.toolchain.cmake'}",
            f"-DANDROID_PLATFORM=android-{ANDROID_API_LEVEL}",
            f"-DANDROID_NDK={self.ndk_home}",
        ]
        abi = ANDROID_ABIS.get(arch)
        if abi is not None:
            args.append(f"-DANDROID_ABI={abi}")
        if arch == "arm":
            args.append("-DANDROID_ARM_NEON=ON")
        return args

    def library_tool(self, runner: RetryingRunner) -> LibraryTool:
        return ArLibraryTool(self, runner)


@dataclass(slots=True)
class OhosToolchain(PlatformToolchain):
    name: ClassVar[str] = "ohos"
    default_archs: ClassVar[tuple[str, ...]] = ("arm64",)

    sdk_native: Path | None = None

    def command(self, tool: str, arch: str) -> str:
        if self.sdk_native is not None:
            candidate = self.sdk_native / "llvm" / "bin" / f"llvm-{tool}"
            if candidate.exists():
                return str(candidate)
        return tool

    def platform_args(self, arch: str) -> list[str]:
        if self.sdk_native is None:
            return []
        args = [
            f"-DCMAKE_TOOLCHAIN_FILE={self.sdk_native / 'build' / 'cmake' / 'ohos.toolchain.cmake'}"
        ]
        abi = OHOS_ABIS.get(arch)
        if abi is not None:
            args.append(f"-DOHOS_ARCH={abi}")
        return args

    def library_tool(self, runner: RetryingRunner) -> LibraryTool:
        return ArLibraryTool(self, runner)


@dataclass(slots=True)
class AppleToolchain(PlatformToolchain):
    """Common Xcode handling for ios and mac."""

    def generator(self, native: bool) -> list[str]:
        return ["-G", "Xcode"] if native else ["-G", "Ninja"]

    def sdk_name(self, arch: str) -> str:
        return "macosx"

    def native_build_command(
        self,
        target: str,
        arch: str,
        *,
        build_type: str,
        jobs: int,
    ) -> list[str]:
        argv = ["xcodebuild", "-target", target, "-configuration", build_type]
        argv += ["-sdk", self.sdk_name(arch)]
        arch_name = APPLE_ARCH_NAMES.get(arch)
        if arch_name:
            argv += ["-arch", arch_name]
        if build_type == "Release":
            argv.append("BUILD_LIBRARY_FOR_DISTRIBUTION=YES")
        return argv + ["-jobs", str(jobs)]

    def library_tool(self, runner: RetryingRunner) -> LibraryTool:
        return AppleLibraryTool(self, runner)


@dataclass(slots=True)
class IosToolchain(AppleToolchain):
    name: ClassVar[str] = "ios"
    default_archs: ClassVar[tuple[str, ...]] = ("arm64", "arm64-simulator", "x64")

    def sdk_name(self, arch: str) -> str:
        return "iphoneos" if arch in ("arm", "arm64") else "iphonesimulator"

    def platform_args(self, arch: str) -> list[str]:
        return [
            "-DCMAKE_SYSTEM_NAME=iOS",
            f"-DCMAKE_OSX_ARCHITECTURES={APPLE_ARCH_NAMES.get(arch, arch)}",
            f"-DCMAKE_OSX_SYSROOT={self.sdk_name(arch)}",
        ]


@dataclass(slots=True)
class MacToolchain(AppleToolchain):
    name: ClassVar[str] = "mac"
    default_archs: ClassVar[tuple[str, ...]] = ("arm64", "x64")

    def platform_args(self, arch: str) -> list[str]:
        return [f"-DCMAKE_OSX_ARCHITECTURES={APPLE_ARCH_NAMES.get(arch, arch)}"]


@dataclass(slots=True)
class WinToolchain(PlatformToolchain):
    name: ClassVar[str] = "win"
    default_archs: ClassVar[tuple[str, ...]] = ("x64", "x86")

    vcvars: dict[str, Path] = field(default_factory=dict)
    # (DevEnvDir, Platform) of an already initialised developer prompt.
    dev_env: tuple[str, str] | None = None

    def command(self, tool: str, arch: str) -> str:
        return tool if Path(tool).suffix else f"{tool}.exe"

    def platform_args(self, arch: str) -> list[str]:
        return ["-DCMAKE_C_FLAGS_RELEASE=/Zc:inline /O2 /Ob2 /DNDEBUG"]

    def wrap(self, argv: Sequence[str], arch: str) -> list[str]:
        if self.dev_env is not None and self.dev_env[1] == arch:
            return list(argv)
        script = self.vcvars.get("x86" if arch == "x86" else "x64")
        if script is None:
            return list(argv)
        return ["cmd", "/c", str(script), "&&", *argv]

    def library_tool(self, runner: RetryingRunner) -> LibraryTool:
        return MsvcLibraryTool(self, runner)


@dataclass(slots=True)
class WebToolchain(PlatformToolchain):
    name: ClassVar[str] = "web"
    default_archs: ClassVar[tuple[str, ...]] = ("wasm",)

    def command(self, tool: str, arch: str) -> str:
        return tool if tool == "ninja" else f"em{tool}"

    def cmake_command(self, arch: str) -> list[str]:
        return [self.command("cmake", arch), "cmake"]

    def library_tool(self, runner: RetryingRunner) -> LibraryTool:
        return ArLibraryTool(self, runner, strip_symbols=False)


ToolchainFactory = Callable[[tuple[str, ...], Mapping[str, str], StructuredLogger], PlatformToolchain]


def create_toolchain(
    settings: BuildSettings,
    *,
    environ: Mapping[str, str] | None = None,
    logger: StructuredLogger | None = None,
) -> PlatformToolchain:
    """Construct the toolchain for ``settings.platform``, discovering its tools."""
    log = logger if logger is not None else StructuredLogger()
    env = os.environ if environ is None else environ
    factory = _FACTORIES[settings.platform]
    variant = _VARIANTS[settings.platform]
    archs = _select_archs(variant, settings.archs)
    return factory(archs, env, log)


def supported_archs(platform: str) -> tuple[str, ...]:
    return _VARIANTS[platform].default_archs


def host_platform() -> str:
    if sys.platform == "darwin":
        return "mac"
    if sys.platform == "win32":
        return "win"
    return "linux"


def find_ndk(environ: Mapping[str, str]) -> tuple[Path, str] | None:
    """Locate an Android NDK, preferring the known-good versions."""
    candidates: list[Path] = [Path(environ[key]) for key in NDK_ENVS if environ.get(key)]
    sdk = _android_sdk_home(environ)
    candidates.append(sdk / "ndk-bundle")
    ndk_root = sdk / "ndk"
    if ndk_root.is_dir():
        candidates.extend(sorted(ndk_root.iterdir()))
    found: list[tuple[Path, str]] = []
    for candidate in candidates:
        version = ndk_version(candidate)
        if version:
            found.append((candidate, version))
    for preferred in PREFERRED_NDK_VERSIONS:
        for path, version in found:
            if version == preferred:
                return path, version
    return found[0] if found else None


def ndk_version(ndk_path: Path) -> str:
    if not (ndk_path / "ndk-build").exists():
        return ""
    properties = ndk_path / "source.properties"
    if not properties.is_file():
        return ""
    for line in properties.read_text(encoding="utf-8").splitlines():
        key, sep, value = line.partition("=")
        if sep and key.strip() == "Pkg.Revision":
            return value.strip()
    return ""


def find_msvc(environ: Mapping[str, str]) -> tuple[Path, str] | None:
    program_files = environ.get("ProgramFiles(x86)", r"C:\Program Files (x86)")
    vswhere = Path(program_files) / "Microsoft Visual Studio" / "Installer" / "vswhere.exe"
    query = [str(vswhere), "-latest", "-products", "*", "-requires", MSVC_COMPONENT, "-property"]
    install_path = _last_line(capture_output(query + ["installationPath"]))
    if not install_path or not Path(install_path).is_dir():
        return None
    version = _last_line(capture_output(query + ["installationVersion"]))
    return Path(install_path), version


def emscripten_version() -> str:
    for line in capture_output(["emcc", "--version"]).splitlines():
        if "emcc" not in line:
            continue
        match = re.search(r"\d+\.\d+\.\d+", line)
        return match.group(0) if match else ""
    return ""


def _select_archs(
    variant: type[PlatformToolchain],
    requested: tuple[str, ...] | None,
) -> tuple[str, ...]:
    if not requested:
        return variant.default_archs
    unsupported = [arch for arch in requested if arch not in variant.default_archs]
    if unsupported:
        raise ConfigError(
            f"Unsupported arch for {variant.name}: {', '.join(unsupported)}",
            hint=f"Supported archs: {', '.join(variant.default_archs)}.",
        )
    return requested


def _android(archs: tuple[str, ...], env: Mapping[str, str], log: StructuredLogger) -> PlatformToolchain:
    ndk = find_ndk(env)
    if ndk is None:
        raise ToolchainError(
            "Could not find the Android NDK.",
            hint=f"Set one of {', '.join(NDK_ENVS)} or install the NDK through the Android SDK.",
        )
    path, version = ndk
    log.info("toolchain", f"Found working NDK version '{version}' in '{path}'", platform="android")
    return AndroidToolchain(archs=archs, versions={"NDK": version}, ndk_home=path)


def _win(archs: tuple[str, ...], env: Mapping[str, str], log: StructuredLogger) -> PlatformToolchain:
    msvc = find_msvc(env)
    vcvars: dict[str, Path] = {}
    if msvc is not None:
        build_dir = msvc[0] / "VC" / "Auxiliary" / "Build"
        for arch, script in (("x64", "vcvars64.bat"), ("x86", "vcvars32.bat")):
            if (build_dir / script).exists():
                vcvars[arch] = build_dir / script
    if msvc is None or len(vcvars) < 2:
        raise ToolchainError(
            "Could not find MSVC.",
            hint=f"Install Visual Studio with the {MSVC_COMPONENT} component.",
        )
    path, version = msvc
    log.info("toolchain", f"Found working MSVC version '{version}' in '{path}'", platform="win")
    dev_env = None
    if env.get("DevEnvDir") is not None:
        dev_env = (env["DevEnvDir"], env.get("Platform", ""))
    return WinToolchain(archs=archs, versions={"MSVC": version}, vcvars=vcvars, dev_env=dev_env)


def _web(archs: tuple[str, ...], env: Mapping[str, str], log: StructuredLogger) -> PlatformToolchain:
    version = emscripten_version()
    if not version:
        raise ToolchainError(
            "Could not find Emscripten.",
            hint="Activate the emsdk environment so `emcc` is on PATH.",
        )
    log.info("toolchain", f"Found working Emscripten version '{version}'", platform="web")
    return WebToolchain(archs=archs, versions={"Emscripten": version})


def _ohos(archs: tuple[str, ...], env: Mapping[str, str], log: StructuredLogger) -> PlatformToolchain:
    native = env.get("OHOS_NDK_HOME") or env.get("OHOS_SDK_NATIVE")
    return OhosToolchain(archs=archs, sdk_native=Path(native) if native else None)


def _plain(variant: type[PlatformToolchain]) -> ToolchainFactory:
    def factory(
        archs: tuple[str, ...], env: Mapping[str, str], log: StructuredLogger
    ) -> PlatformToolchain:
        return variant(archs=archs)

    return factory


def _android_sdk_home(environ: Mapping[str, str]) -> Path:
    for key in ("ANDROID_HOME", "ANDROID_SDK_ROOT"):
        if environ.get(key):
            return Path(environ[key])
    home = Path.home()
    if sys.platform == "darwin":
        return home / "Library" / "Android" / "sdk"
    if sys.platform == "win32":
        return Path(environ.get("LOCALAPPDATA", str(home))) / "Android" / "Sdk"
    return home / "Android" / "Sdk"


def _last_line(output: str) -> str:
    lines = [line.strip() for line in output.strip().splitlines() if line.strip()]
    return lines[-1] if lines else ""


_VARIANTS: dict[str, type[PlatformToolchain]] = {
    "android": AndroidToolchain,
    "ios": IosToolchain,
    "mac": MacToolchain,
    "win": WinToolchain,
    "web": WebToolchain,
    "linux": LinuxToolchain,
    "ohos": OhosToolchain,
}

_FACTORIES: dict[str, ToolchainFactory] = {
    "android": _android,
    "ios": _plain(IosToolchain),
    "mac": _plain(MacToolchain),
    "win": _win,
    "web": _web,
    "linux": _plain(LinuxToolchain),
    "ohos": _ohos,
}
