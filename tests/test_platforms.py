from pathlib import Path

import pytest

from vendorkit import platforms
from vendorkit.errors import ConfigError, ToolchainError
from vendorkit.libraries import AppleLibraryTool, ArLibraryTool, MsvcLibraryTool
from vendorkit.platforms import (
    TOOL_VERSION,
    AndroidToolchain,
    IosToolchain,
    LinuxToolchain,
    MacToolchain,
    OhosToolchain,
    WebToolchain,
    WinToolchain,
    create_toolchain,
    find_ndk,
    ndk_version,
    supported_archs,
)
from vendorkit.retry import RetryingRunner
from vendorkit.settings import BuildSettings


def _fake_ndk(root: Path, version: str) -> Path:
    root.mkdir(parents=True)
    (root / "ndk-build").write_text("", encoding="utf-8")
    (root / "source.properties").write_text(
        f"Pkg.Desc = Android NDK\nPkg.Revision = {version}\n", encoding="utf-8"
    )
    return root


def test_identity_includes_tool_versions() -> None:
    toolchain = AndroidToolchain(versions={"NDK": "21.0.6113669"})
    assert toolchain.identity() == f"android {TOOL_VERSION} (NDK: 21.0.6113669)"
    assert LinuxToolchain().identity() == f"linux {TOOL_VERSION}"


def test_default_archs_per_platform() -> None:
    assert LinuxToolchain().archs == ("x64",)
    assert IosToolchain().archs == ("arm64", "arm64-simulator", "x64")
    assert MacToolchain(archs=("arm64",)).archs == ("arm64",)
    assert supported_archs("android") == ("arm", "arm64")
    assert supported_archs("web") == ("wasm",)


def test_create_toolchain_dispatches_on_platform() -> None:
    toolchain = create_toolchain(BuildSettings(platform="mac", archs=("x64",)), environ={})
    assert isinstance(toolchain, MacToolchain)
    assert toolchain.archs == ("x64",)
    assert isinstance(create_toolchain(BuildSettings(platform="linux"), environ={}), LinuxToolchain)


def test_unsupported_arch_is_a_config_error() -> None:
    with pytest.raises(ConfigError) as exc_info:
        create_toolchain(BuildSettings(platform="linux", archs=("arm64",)), environ={})
    assert "arm64" in str(exc_info.value)


def test_missing_emscripten_is_a_toolchain_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(platforms, "capture_output", lambda argv, cwd=None: "")
    with pytest.raises(ToolchainError):
        create_toolchain(BuildSettings(platform="web"), environ={})


def test_emscripten_version_is_parsed(monkeypatch: pytest.MonkeyPatch) -> None:
    output = "emcc (Emscripten gcc/clang-like replacement) 3.1.45 (ef3e4e3)\nclang version 17\n"
    monkeypatch.setattr(platforms, "capture_output", lambda argv, cwd=None: output)
    toolchain = create_toolchain(BuildSettings(platform="web"), environ={})
    assert toolchain.versions == {"Emscripten": "3.1.45"}


def test_missing_ndk_is_a_toolchain_error(tmp_path: Path) -> None:
    env = {"ANDROID_HOME": str(tmp_path / "sdk")}
    with pytest.raises(ToolchainError) as exc_info:
        create_toolchain(BuildSettings(platform="android"), environ=env)
    assert exc_info.value.code == "E_TOOLCHAIN"


def test_find_ndk_prefers_known_versions(tmp_path: Path) -> None:
    sdk = tmp_path / "sdk"
    _fake_ndk(sdk / "ndk" / "25.1.8937393", "25.1.8937393")
    preferred = _fake_ndk(sdk / "ndk" / "21.0.6113669", "21.0.6113669")

    assert find_ndk({"ANDROID_HOME": str(sdk)}) == (preferred, "21.0.6113669")


def test_android_toolchain_from_env(tmp_path: Path) -> None:
    ndk = _fake_ndk(tmp_path / "ndk", "25.1.8937393")
    env = {"NDK_HOME": str(ndk), "ANDROID_HOME": str(tmp_path / "sdk")}

    toolchain = create_toolchain(BuildSettings(platform="android", archs=("arm64",)), environ=env)

    assert isinstance(toolchain, AndroidToolchain)
    assert toolchain.versions == {"NDK": "25.1.8937393"}
    args = toolchain.platform_args("arm64")
    assert f"-DANDROID_NDK={ndk}" in args
    assert "-DANDROID_ABI=arm64-v8a" in args
    assert "-DANDROID_PLATFORM=android-19" in args
    assert "-DANDROID_ARM_NEON=ON" in toolchain.platform_args("arm")


def test_ndk_version_requires_ndk_build(tmp_path: Path) -> None:
    (tmp_path / "source.properties").write_text("Pkg.Revision = 21.0.1\n", encoding="utf-8")
    assert ndk_version(tmp_path) == ""


def test_ohos_tool_lookup(tmp_path: Path) -> None:
    ar = tmp_path / "llvm" / "bin" / "llvm-ar"
    ar.parent.mkdir(parents=True)
    ar.write_text("", encoding="utf-8")
    toolchain = create_toolchain(
        BuildSettings(platform="ohos"), environ={"OHOS_NDK_HOME": str(tmp_path)}
    )
    assert isinstance(toolchain, OhosToolchain)
    assert toolchain.command("ar", "arm64") == str(ar)
    assert toolchain.command("strip", "arm64") == "strip"
    assert "-DOHOS_ARCH=arm64-v8a" in toolchain.platform_args("arm64")


def test_web_commands_use_emscripten_wrappers() -> None:
    toolchain = WebToolchain(versions={"Emscripten": "3.1.45"})
    assert toolchain.cmake_command("wasm") == ["emcmake", "cmake"]
    assert toolchain.command("ar", "wasm") == "emar"
    assert toolchain.build_command("z", "wasm", build_type="Release", jobs=4, native=False) == [
        "ninja",
        "-j",
        "4",
        "z",
    ]


def test_ios_native_build_command() -> None:
    toolchain = IosToolchain()
    command = toolchain.build_command(
        "z", "arm64-simulator", build_type="Release", jobs=3, native=True
    )
    assert command == [
        "xcodebuild",
        "-target",
        "z",
        "-configuration",
        "Release",
        "-sdk",
        "iphonesimulator",
        "-arch",
        "arm64",
        "BUILD_LIBRARY_FOR_DISTRIBUTION=YES",
        "-jobs",
        "3",
    ]
    assert toolchain.generator(native=True) == ["-G", "Xcode"]
    assert "-DCMAKE_OSX_SYSROOT=iphoneos" in toolchain.platform_args("arm64")


def test_win_wraps_commands_in_vcvars() -> None:
    vcvars = {"x64": Path("vcvars64.bat"), "x86": Path("vcvars32.bat")}
    toolchain = WinToolchain(vcvars=vcvars)
    assert toolchain.wrap(["lib.exe", "/out:z.lib"], "x86") == [
        "cmd",
        "/c",
        "vcvars32.bat",
        "&&",
        "lib.exe",
        "/out:z.lib",
    ]
    assert toolchain.command("lib", "x64") == "lib.exe"
    inside_prompt = WinToolchain(vcvars=vcvars, dev_env=("C:/VS/Common7/IDE", "x64"))
    assert inside_prompt.wrap(["ninja"], "x64") == ["ninja"]


def test_library_tool_per_platform() -> None:
    runner = RetryingRunner()
    assert isinstance(LinuxToolchain().library_tool(runner), ArLibraryTool)
    assert isinstance(MacToolchain().library_tool(runner), AppleLibraryTool)
    assert isinstance(WinToolchain().library_tool(runner), MsvcLibraryTool)
    web_tool = WebToolchain().library_tool(runner)
    assert isinstance(web_tool, ArLibraryTool)
    assert not web_tool.strip_symbols
