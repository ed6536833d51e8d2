"""Build the Android vendors and publish one merged library per ABI."""

from pathlib import Path

from vendorkit import BuildOrchestrator, VendorKitError, create_toolchain, load_manifest
from vendorkit.observability import StructuredLogger
from vendorkit.settings import settings_from_env


def publish_android(output: Path) -> int:
    logger = StructuredLogger()
    try:
        settings = settings_from_env(platform="android", archs=("arm64",), strip=True)
        toolchain = create_toolchain(settings, logger=logger)
        manifest = load_manifest(
            Path(__file__).with_name("vendor.json"),
            platform="android",
            logger=logger,
        )
        report = BuildOrchestrator(manifest, settings, toolchain, logger=logger).build_all(
            ["libpng", "ffmpeg"],
            publish_dir=output,
        )
    except VendorKitError as exc:
        print(exc.to_dict())
        return 1
    finally:
        logger.to_json_lines(output.parent / "vendor-build.jsonl")
    for path in report.published_files:
        print(path)
    return 0


if __name__ == "__main__":
    raise SystemExit(publish_android(Path("app/src/main/jniLibs/vendor").resolve()))
