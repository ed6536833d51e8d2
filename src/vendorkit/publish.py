"""Copying build artifacts into arch-scoped output directories."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from vendorkit.errors import PublishError
from vendorkit.fsops import copy_path, delete_path
from vendorkit.libraries import LibraryTool, find_static_libraries, is_framework, is_static_library
from vendorkit.models import ArtifactSet
from vendorkit.observability import StructuredLogger


@dataclass(slots=True)
class ArtifactPublisher:
    library_tool: LibraryTool
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    strip: bool = False

    def publish(self, artifacts: ArtifactSet, destination: Path) -> list[Path]:
        """Copy ``artifacts`` into ``destination/<arch>/``, keeping file names.

        Every source is checked before anything is copied; a missing one fails
        the whole step.
        """
        missing = [str(path) for path in artifacts if not path.exists()]
        if missing:
            raise PublishError(
                f"Cannot publish {len(missing)} missing artifact(s) for arch '{artifacts.arch}'.",
                context={"arch": artifacts.arch, "missing": "\n".join(missing)},
            )
        target_dir = destination / artifacts.arch
        published: list[Path] = []
        for source in artifacts:
            target = target_dir / source.name
            try:
                target_dir.mkdir(parents=True, exist_ok=True)
                delete_path(target)
                copy_path(source, target)
            except OSError as exc:
                raise PublishError(
                    f"Could not copy artifact: {source}",
                    context={"source": str(source), "target": str(target), "error": str(exc)},
                ) from exc
            if self.strip and _strippable(target):
                self.library_tool.strip(target, artifacts.arch)
            published.append(target)
        self.logger.debug(
            "publish",
            f"Published {len(published)} file(s) into {target_dir}",
            arch=artifacts.arch,
        )
        return published

    def copy_libraries(
        self,
        artifacts: Mapping[str, ArtifactSet],
        destination: Path,
    ) -> dict[str, ArtifactSet]:
        return {
            arch: ArtifactSet(arch, tuple(self.publish(artifact_set, destination)))
            for arch, artifact_set in artifacts.items()
        }

    def publish_libraries(
        self,
        library_dirs: Sequence[Path],
        destination: Path,
        arch: str,
    ) -> list[Path]:
        """Combine the static libraries of several vendor outputs for one arch.

        More than one input is merged into ``lib<destination name><ext>``;
        exactly one is copied under that name. The arch directory is always
        recreated, so a rerun never appends to stale output.
        """
        libraries: list[Path] = []
        for library_dir in library_dirs:
            libraries.extend(find_static_libraries(library_dir / arch))
        arch_dir = destination / arch
        try:
            delete_path(arch_dir)
            if not libraries:
                return []
            arch_dir.mkdir(parents=True)
            output = arch_dir / f"lib{destination.name}{libraries[0].suffix}"
            if len(libraries) > 1:
                self.library_tool.merge(libraries, output, arch)
            else:
                copy_path(libraries[0], output)
        except OSError as exc:
            raise PublishError(
                f"Could not publish libraries into {arch_dir}",
                context={"arch": arch, "error": str(exc)},
            ) from exc
        if not output.exists():
            raise PublishError(
                f"Library tool did not produce {output}",
                context={"arch": arch, "inputs": "\n".join(str(path) for path in libraries)},
            )
        self.logger.info(
            "publish",
            f"Published {len(libraries)} static librar{'y' if len(libraries) == 1 else 'ies'} "
            f"into {output}",
            arch=arch,
        )
        return [output]


def _strippable(path: Path) -> bool:
    return is_static_library(path) or is_framework(path) or path.suffix in (".so", ".dylib")
