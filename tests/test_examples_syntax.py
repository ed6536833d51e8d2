import ast
import json
from pathlib import Path

from vendorkit.manifest import parse_manifest

EXAMPLES = Path(__file__).resolve().parents[1] / "examples"


def test_examples_are_syntax_valid() -> None:
    examples = sorted(EXAMPLES.glob("*.py"))
    assert examples

    for path in examples:
        source = path.read_text(encoding="utf-8")
        ast.parse(source, filename=str(path))


def test_example_manifest_resolves_per_platform() -> None:
    raw = (EXAMPLES / "vendor.json").read_text(encoding="utf-8")
    json.loads(raw)

    linux = parse_manifest(raw, base_dir=EXAMPLES, platform="linux")
    web = parse_manifest(raw, base_dir=EXAMPLES, platform="web")

    assert list(linux.vendors) == ["zlib", "libpng", "ffmpeg"]
    assert linux.vendors["libpng"].source_dir.name == "libpng"
    assert linux.vendors["libpng"].deps["ZLIB"] is linux.vendors["zlib"]
    assert linux.vendors["ffmpeg"].script is not None
    assert web.vendors["libpng"].source_dir.name == "libpng-web"
    assert "ffmpeg" not in web.vendors
    assert web.declared_names == ("zlib", "libpng", "ffmpeg")
