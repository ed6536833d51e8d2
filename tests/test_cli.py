import json
import sys
from pathlib import Path

import pytest

from vendorkit import publish as publish_module
from vendorkit.cli import build_parser, main

BUILD_SCRIPT = """\
import os
from pathlib import Path

out = Path(os.environ["VENDOR_OUT_DIR"]) / os.environ["VENDOR_PLATFORM"]
for arch in os.environ["VENDOR_ARCHS"].split(","):
    (out / arch).mkdir(parents=True, exist_ok=True)
    (out / arch / "libhello.a").write_bytes(b"!<arch>\\n")
"""


def _script_manifest(root: Path, script: str = BUILD_SCRIPT) -> Path:
    (root / "third_party" / "hello").mkdir(parents=True)
    (root / "build_hello.py").write_text(script, encoding="utf-8")
    manifest = {
        "source": "third_party",
        "out": "out",
        "vendors": [
            {
                "name": "hello",
                "scripts": {"linux": {"file": "build_hello.py", "executor": sys.executable}},
            }
        ],
    }
    path = root / "vendor.json"
    path.write_text(json.dumps(manifest), encoding="utf-8")
    return path


def _argv(manifest: Path, *extra: str) -> list[str]:
    return ["-m", str(manifest), "-p", "linux", "-a", "x64", "--no-strip", *extra]


def test_parser_defaults() -> None:
    args = build_parser().parse_args(["-p", "android", "zlib", "png"])
    assert args.names == ["zlib", "png"]
    assert args.manifest == "vendor.json"
    assert not args.debug
    assert args.output is None


def test_build_then_cache_hit(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    manifest = _script_manifest(tmp_path)
    published = tmp_path / "published"

    assert main(_argv(manifest, "-o", str(published)), environ={}) == 0
    assert "vendorkit: built: hello" in capsys.readouterr().out
    assert (tmp_path / "out" / "hello" / "linux" / "x64" / "libhello.a").exists()
    assert (tmp_path / "out" / "hello" / "linux" / ".x64.sha256").exists()
    assert (published / "x64" / "libpublished.a").read_bytes() == b"!<arch>\n"

    assert main(_argv(manifest, "-o", str(published)), environ={}) == 0
    assert "vendorkit: everything up to date" in capsys.readouterr().out


def test_config_error_exits_with_code(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    log_path = tmp_path / "logs" / "build.jsonl"

    code = main(_argv(tmp_path / "missing.json", "--log-json", str(log_path)), environ={})

    assert code == 1
    assert "error[E_CONFIG]: Vendor manifest does not exist." in capsys.readouterr().err
    assert log_path.exists()


def test_unknown_vendor_name(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    manifest = _script_manifest(tmp_path)
    assert main([*_argv(manifest), "nope"], environ={}) == 1
    assert "Could not find any vendor name that matches 'nope'" in capsys.readouterr().err


def test_unsupported_arch(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    manifest = _script_manifest(tmp_path)
    assert main(["-m", str(manifest), "-p", "linux", "-a", "ARM64"], environ={}) == 1
    assert "Unsupported arch for linux: arm64" in capsys.readouterr().err


def test_invalid_env_override(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    manifest = _script_manifest(tmp_path)
    assert main(_argv(manifest), environ={"VENDOR_BUILD_JOBS": "many"}) == 1
    assert "VENDOR_BUILD_JOBS" in capsys.readouterr().err


def test_script_without_output_fails_and_is_not_cached(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
) -> None:
    manifest = _script_manifest(tmp_path, "print('nothing to do')\n")

    assert main(_argv(manifest), environ={}) == 1
    assert "error[E_BUILD]: Build tool reported success but output missing" in (
        capsys.readouterr().err
    )
    assert not (tmp_path / "out" / "hello" / "linux" / ".x64.sha256").exists()

    assert main(_argv(manifest), environ={}) == 1


def test_filesystem_error_while_publishing_is_reported(
    tmp_path: Path,
    capsys: pytest.CaptureFixture[str],
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    def denied(source: Path, target: Path) -> None:
        raise PermissionError(13, "Permission denied", str(target))

    manifest = _script_manifest(tmp_path)
    monkeypatch.setattr(publish_module, "copy_path", denied)

    assert main(_argv(manifest, "-o", str(tmp_path / "published")), environ={}) == 1
    err = capsys.readouterr().err
    assert "error[E_PUBLISH]: Could not publish libraries into" in err
    assert "Traceback" not in err
