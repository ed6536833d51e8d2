from collections.abc import Sequence
from pathlib import Path

import pytest
from conftest import FakeLibraryTool, FakeRunner

from vendorkit.builders import BuildTools, CMakeBuilder, ScriptBuilder, get_builder
from vendorkit.builders.cmake import (
    INSTALL_MACRO,
    SHARED_LIBS_PROPERTY,
    cmake_arguments,
    copy_includes,
    dependency_arguments,
    find_target_files,
    transform_cmake_lists,
)
from vendorkit.builders.script import script_environment
from vendorkit.errors import BuildFailure
from vendorkit.models import ArtifactSet, CMakeConfig, ScriptConfig, VendorSpec
from vendorkit.platforms import LinuxToolchain, MacToolchain
from vendorkit.publish import ArtifactPublisher
from vendorkit.retry import RetryingRunner
from vendorkit.settings import BuildSettings

CMAKE_LISTS = "cmake_minimum_required(VERSION 3.10)\nproject(zlib C)\ninstall(TARGETS zlib)\n"


def _touch(path: Path, content: str = "x") -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
    return path


def _tools(fake: FakeRunner, toolchain: LinuxToolchain, **settings: object) -> BuildTools:
    return BuildTools(
        settings=BuildSettings(platform="linux", jobs=2, **settings),
        toolchain=toolchain,
        runner=RetryingRunner(fake, sleep=lambda _: None),
        publisher=ArtifactPublisher(FakeLibraryTool()),
        jobs=2,
    )


def _cmake_vendor(root: Path, **config: object) -> VendorSpec:
    source = root / "src" / "zlib"
    _touch(source / "CMakeLists.txt", CMAKE_LISTS)
    _touch(source / "zlib.h", "/* zlib */")
    return VendorSpec(
        name="zlib",
        source_dir=source,
        out_dir=root / "out" / "zlib",
        cmake=CMakeConfig(targets=("zlibstatic",), **config),
    )


def test_cmake_builder_configures_builds_and_publishes(tmp_path: Path) -> None:
    vendor = _cmake_vendor(tmp_path, includes=("zlib.h",))
    seen_lists: list[str] = []

    def on_call(argv: Sequence[str], cwd: Path) -> None:
        if argv[0] == "cmake":
            seen_lists.append((vendor.source_dir / "CMakeLists.txt").read_text(encoding="utf-8"))
        if argv[0] == "ninja":
            _touch(cwd / f"lib{argv[-1]}.a", "archive")

    fake = FakeRunner(on_call=on_call)
    out_path = vendor.platform_out("linux")

    results = CMakeBuilder(_tools(fake, LinuxToolchain())).build(vendor, out_path, ["x64"], {})

    assert results == {"x64": ArtifactSet("x64", (out_path / "x64" / "libzlibstatic.a",))}
    configure, build = fake.commands()
    assert configure[:4] == ["cmake", "-G", "Ninja", "-DCMAKE_BUILD_TYPE=Release"]
    assert "-DCMAKE_POSITION_INDEPENDENT_CODE=ON" in configure
    assert configure[-1] == str(vendor.source_dir)
    assert build == ["ninja", "-j", "2", "zlibstatic"]
    assert seen_lists[0].startswith(INSTALL_MACRO)
    assert (vendor.source_dir / "CMakeLists.txt").read_text(encoding="utf-8") == CMAKE_LISTS
    assert (out_path / "include" / "zlib.h").exists()
    assert not (out_path / "build-zlibstatic").exists()


def test_missing_target_output_is_a_build_failure(tmp_path: Path) -> None:
    vendor = _cmake_vendor(tmp_path)
    fake = FakeRunner()

    with pytest.raises(BuildFailure) as exc_info:
        CMakeBuilder(_tools(fake, LinuxToolchain())).build(
            vendor, vendor.platform_out("linux"), ["x64"], {}
        )

    assert "output missing" in str(exc_info.value)
    assert exc_info.value.context["arch"] == "x64"
    assert (vendor.source_dir / "CMakeLists.txt").read_text(encoding="utf-8") == CMAKE_LISTS


def test_incremental_build_keeps_build_directory(tmp_path: Path) -> None:
    vendor = _cmake_vendor(tmp_path)
    fake = FakeRunner(
        on_call=lambda argv, cwd: _touch(cwd / "libzlibstatic.a") if argv[0] == "ninja" else None
    )
    out_path = vendor.platform_out("linux")

    CMakeBuilder(_tools(fake, LinuxToolchain(), incremental=True)).build(
        vendor, out_path, ["x64"], {}
    )

    assert (out_path / "build-zlibstatic" / "x64" / "libzlibstatic.a").exists()


def test_dependency_arguments_point_at_built_outputs(tmp_path: Path) -> None:
    dep = VendorSpec(name="zlib", source_dir=tmp_path / "src", out_dir=tmp_path / "out" / "zlib")
    dep_out = dep.platform_out("linux")
    (dep_out / "include").mkdir(parents=True)
    library = _touch(dep_out / "x64" / "libz.a")

    args = dependency_arguments({"ZLIB": dep}, "linux", "x64")

    assert args == [
        "-DCMAKE_DISABLE_FIND_PACKAGE_ZLIB=TRUE",
        "-DZLIB_FOUND=TRUE",
        f"-DZLIB_INCLUDE_DIR={dep_out / 'include'}",
        f"-DZLIB_INCLUDE_DIRS={dep_out / 'include'}",
        f"-DZLIB_LIBRARY={library}",
        f"-DZLIB_LIBRARIES={library}",
    ]


def test_dependency_without_headers_uses_its_source(tmp_path: Path) -> None:
    dep = VendorSpec(name="zlib", source_dir=tmp_path / "src", out_dir=tmp_path / "out" / "zlib")
    args = dependency_arguments({"ZLIB": dep}, "linux", "x64")
    assert f"-DZLIB_INCLUDE_DIR={tmp_path / 'src'}" in args
    assert not any(arg.startswith("-DZLIB_LIBRARY=") for arg in args)


def test_cmake_arguments_order() -> None:
    config = CMakeConfig(targets=("z",), arguments=("-DZ_SOLO=ON",))
    args = cmake_arguments(config, {}, MacToolchain(), "x64")
    assert args == ["-DCMAKE_OSX_ARCHITECTURES=x86_64", "-DZ_SOLO=ON"]


def test_find_target_files_includes_wasm_companion(tmp_path: Path) -> None:
    wasm = _touch(tmp_path / "bin" / "z.wasm")
    js = _touch(tmp_path / "bin" / "z.js")
    assert find_target_files("z", tmp_path, []) == [wasm, js]


def test_find_target_files_keeps_import_libraries(tmp_path: Path) -> None:
    dll = _touch(tmp_path / "Release" / "z.dll")
    lib = _touch(tmp_path / "Release" / "z.lib")
    assert find_target_files("z", tmp_path, [], keep_all=True) == [dll, lib]
    assert find_target_files("z", tmp_path, []) == [dll]


def test_find_target_files_fallbacks(tmp_path: Path) -> None:
    exact = _touch(tmp_path / "out" / "weird")
    other = _touch(tmp_path / "libother.a")
    assert find_target_files("weird", tmp_path, []) == [exact]
    assert find_target_files("renamed", tmp_path, []) == [other]
    assert find_target_files("renamed", tmp_path, [other]) == []


def test_transform_is_a_no_op_without_install(tmp_path: Path) -> None:
    lists = _touch(tmp_path / "CMakeLists.txt", "project(z)\nadd_library(z z.c)\n")
    assert transform_cmake_lists(lists, "linux") is None
    assert transform_cmake_lists(tmp_path / "missing.txt", "linux") is None


def test_transform_allows_shared_libs_on_web(tmp_path: Path) -> None:
    original = "cmake_minimum_required(VERSION 3.10)\nproject(z)\nadd_library(z z.c)\n"
    lists = _touch(tmp_path / "CMakeLists.txt", original)

    restore = transform_cmake_lists(lists, "web")

    assert restore == original
    patched = lists.read_text(encoding="utf-8")
    assert patched == original.replace("project(z)\n", "project(z)\n" + SHARED_LIBS_PROPERTY)


def test_transform_recovers_from_interrupted_run(tmp_path: Path) -> None:
    lists = _touch(tmp_path / "CMakeLists.txt", INSTALL_MACRO + CMAKE_LISTS)
    assert transform_cmake_lists(lists, "linux") == CMAKE_LISTS
    assert lists.read_text(encoding="utf-8") == INSTALL_MACRO + CMAKE_LISTS


def test_copy_includes_resolves_placeholders_and_globs(tmp_path: Path) -> None:
    source = tmp_path / "src"
    build = tmp_path / "build"
    _touch(source / "include" / "z.h")
    _touch(source / "include" / "detail" / "zutil.h")
    _touch(source / "include" / "README")
    _touch(source / "png.h")
    _touch(build / "zconf.h")
    out = tmp_path / "out"

    copied = copy_includes(
        source,
        build,
        out,
        ["${SOURCE_DIR}/include", "${BUILD_DIR}/zconf.h", "*.h"],
    )

    assert sorted(path.relative_to(out).as_posix() for path in copied) == [
        "include/include/detail/zutil.h",
        "include/include/z.h",
        "include/png.h",
        "include/zconf.h",
    ]


def test_script_builder_runs_with_vendor_environment(tmp_path: Path) -> None:
    script = _touch(tmp_path / "scripts" / "build_png.sh", "#!/bin/sh\n")
    dep = VendorSpec(
        name="zlib",
        source_dir=tmp_path / "src" / "zlib",
        out_dir=tmp_path / "out" / "zlib",
    )
    vendor = VendorSpec(
        name="png",
        source_dir=tmp_path / "src" / "png",
        out_dir=tmp_path / "out" / "png",
        deps={"ZLIB": dep},
        script=ScriptConfig(file=script, executor="sh", arguments=("--fast",)),
    )
    vendor.source_dir.mkdir(parents=True)
    out_path = vendor.platform_out("linux")
    fake = FakeRunner(on_call=lambda argv, cwd: _touch(out_path / "x64" / "libpng.a"))
    tools = _tools(fake, LinuxToolchain())

    builder = get_builder(vendor, tools)
    results = builder.build(vendor, out_path, ["x64"], vendor.deps)

    assert isinstance(builder, ScriptBuilder)
    assert results == {"x64": ArtifactSet("x64", (out_path / "x64" / "libpng.a",))}
    (call,) = fake.calls
    assert call["argv"] == ["sh", str(script), "--fast"]
    assert call["cwd"] == vendor.source_dir
    assert call["env"]["VENDOR_DEPS_ZLIB"] == str(dep.out_dir)
    assert call["env"]["VENDOR_PLATFORM"] == "linux"


def test_script_environment_lists_every_arch(tmp_path: Path) -> None:
    vendor = VendorSpec(name="png", source_dir=tmp_path, out_dir=tmp_path / "out" / "png")
    env = script_environment(
        vendor, {}, build_type="Debug", platform="android", archs=("arm", "arm64")
    )
    assert env == {
        "VENDOR_BUILD_TYPE": "Debug",
        "VENDOR_OUT_DIR": str(tmp_path / "out" / "png"),
        "VENDOR_PLATFORM": "android",
        "VENDOR_ARCHS": "arm,arm64",
    }


def test_get_builder_defaults_to_cmake(tmp_path: Path) -> None:
    vendor = _cmake_vendor(tmp_path)
    assert isinstance(get_builder(vendor, _tools(FakeRunner(), LinuxToolchain())), CMakeBuilder)
