"""Typed interfaces for vendor builders."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from vendorkit.models import ArtifactSet, VendorSpec
from vendorkit.observability import StructuredLogger
from vendorkit.platforms import PlatformToolchain
from vendorkit.publish import ArtifactPublisher
from vendorkit.retry import RetryingRunner
from vendorkit.settings import BuildSettings


@dataclass(frozen=True, slots=True)
class BuildTools:
    """Collaborators shared by every builder in one run."""

    settings: BuildSettings
    toolchain: PlatformToolchain
    runner: RetryingRunner
    publisher: ArtifactPublisher
    jobs: int = 1
    logger: StructuredLogger = field(default_factory=StructuredLogger)


class VendorBuilder(Protocol):
    def build(
        self,
        vendor: VendorSpec,
        out_path: Path,
        archs: Sequence[str],
        deps: Mapping[str, VendorSpec],
    ) -> dict[str, ArtifactSet]:
        """Build ``archs`` of ``vendor`` and place artifacts under ``out_path/<arch>``."""
