"""Whole-manifest builds: vendor graph, aggregate publish and cleanup."""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from pathlib import Path

import cbor2

from vendorkit.builders import BuildTools, get_builder
from vendorkit.errors import BuildFailure, PublishError
from vendorkit.fsops import delete_path, modify_time_ns
from vendorkit.graph import BuilderFactory, VendorGraph
from vendorkit.libraries import LibraryTool
from vendorkit.lock import with_lock
from vendorkit.manifest import Manifest
from vendorkit.models import BuildReport
from vendorkit.observability import StructuredLogger
from vendorkit.platforms import PlatformToolchain
from vendorkit.process import ProcessRunner, run_process
from vendorkit.publish import ArtifactPublisher
from vendorkit.records import has_hash_record, purge_arch, read_record, record_path, write_record
from vendorkit.retry import RetryingRunner
from vendorkit.settings import BuildSettings, resolve_job_count


def aggregate_hash(platform: str, library_dirs: Sequence[Path], arch: str) -> str:
    """Composite of every contributing record's content and modification time."""
    entries = [
        [read_record(directory, arch), modify_time_ns(record_path(directory, arch)) or 0]
        for directory in sorted(library_dirs)
    ]
    encoded = cbor2.dumps([platform, arch, entries], canonical=True)
    return hashlib.sha256(encoded).hexdigest()


@dataclass(slots=True)
class BuildOrchestrator:
    manifest: Manifest
    settings: BuildSettings
    toolchain: PlatformToolchain
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    runner: ProcessRunner = run_process
    builder_factory: BuilderFactory | None = None
    library_tool: LibraryTool | None = None
    graph: VendorGraph = field(init=False)
    publisher: ArtifactPublisher = field(init=False)

    def __post_init__(self) -> None:
        retrying = RetryingRunner(
            self.runner,
            max_attempts=self.settings.max_build_attempts,
            logger=self.logger,
        )
        if self.library_tool is None:
            self.library_tool = self.toolchain.library_tool(retrying)
        self.publisher = ArtifactPublisher(
            self.library_tool,
            logger=self.logger,
            strip=self.settings.strip and not self.settings.debug,
        )
        tools = BuildTools(
            settings=self.settings,
            toolchain=self.toolchain,
            runner=retrying,
            publisher=self.publisher,
            jobs=resolve_job_count(self.settings),
            logger=self.logger,
        )
        factory = self.builder_factory or (lambda vendor: get_builder(vendor, tools))
        self.graph = VendorGraph(
            self.manifest.vendors,
            self.settings,
            self.toolchain,
            factory,
            logger=self.logger,
        )

    def build_all(
        self,
        names: Iterable[str] = (),
        publish_dir: Path | None = None,
    ) -> BuildReport:
        """Build ``names`` (default: every vendor) and optionally publish them together."""
        selected = self.manifest.select(names)
        report = BuildReport()
        library_dirs: list[Path] = []
        for name in selected:
            result = self.graph.build_vendor(name)
            report.vendors[name] = result
            for directory in result.library_dirs:
                if directory not in library_dirs:
                    library_dirs.append(directory)
        report.library_dirs = library_dirs
        if publish_dir is not None and library_dirs:
            archs, files = self.publish_aggregate(selected, sorted(library_dirs), publish_dir)
            report.published_archs = archs
            report.published_files = files
        report.removed_dirs = self.collect_garbage(publish_dir)
        return report

    def publish_aggregate(
        self,
        names: Sequence[str],
        library_dirs: Sequence[Path],
        publish_dir: Path,
    ) -> tuple[list[str], list[Path]]:
        """Republish only the archs whose composite record hash changed."""
        platform = self.toolchain.name
        if not self._changed_archs(library_dirs, publish_dir):
            self.logger.info(
                "publish_skip",
                f"Published libraries in {publish_dir} are up to date",
                platform=platform,
            )
            return [], []
        try:
            return with_lock(
                publish_dir,
                lambda: self._publish_locked(names, library_dirs, publish_dir),
                timeout=self.settings.lock_timeout,
                stale_after=self.settings.stale_lock_after,
                logger=self.logger,
            )
        except OSError as exc:
            raise PublishError(
                f"Could not publish vendor libraries into {publish_dir}: {exc}",
                context={"path": str(exc.filename or publish_dir)},
            ) from exc

    def collect_garbage(self, publish_dir: Path | None = None) -> list[Path]:
        """Remove outputs of vendors no longer in the manifest.

        Only directories holding a hash record somewhere below them are
        eligible; anything else under the output root is left alone.
        """
        out_root = self.manifest.out_root
        if not out_root.is_dir():
            return []
        declared = set(self.manifest.declared_names)
        protected = publish_dir.resolve() if publish_dir is not None else None
        removed: list[Path] = []
        for child in sorted(out_root.iterdir()):
            if child.name in declared or child.is_symlink() or not child.is_dir():
                continue
            resolved = child.resolve()
            if protected is not None and (
                resolved == protected or resolved in protected.parents
            ):
                continue
            if not has_hash_record(child):
                continue
            self.logger.info("gc_remove", f"Removing unused vendor output: {child}")
            try:
                delete_path(child)
            except OSError as exc:
                raise BuildFailure(
                    f"Could not remove unused vendor output: {child}",
                    hint="Check permissions on the output directory.",
                    context={"path": str(child), "error": str(exc)},
                ) from exc
            removed.append(child)
        return removed

    def _changed_archs(self, library_dirs: Sequence[Path], publish_dir: Path) -> dict[str, str]:
        changed: dict[str, str] = {}
        for arch in self.toolchain.archs:
            current = aggregate_hash(self.toolchain.name, library_dirs, arch)
            if read_record(publish_dir, arch) != current:
                changed[arch] = current
        return changed

    def _publish_locked(
        self,
        names: Sequence[str],
        library_dirs: Sequence[Path],
        publish_dir: Path,
    ) -> tuple[list[str], list[Path]]:
        changed = self._changed_archs(library_dirs, publish_dir)
        if not changed:
            return [], []
        for arch in changed:
            purge_arch(publish_dir, arch)
        self.logger.info(
            "publish",
            f"Publishing vendor libraries: [{','.join(names)}] into {publish_dir}",
            platform=self.toolchain.name,
            extra={"archs": list(changed)},
        )
        files: list[Path] = []
        for arch in changed:
            files.extend(self.publisher.publish_libraries(library_dirs, publish_dir, arch))
        if self.settings.xcframework and self.library_tool is not None:
            files.extend(self.library_tool.create_xcframework(publish_dir, publish_dir))
        for arch, value in changed.items():
            write_record(publish_dir, arch, value)
        return list(changed), files
