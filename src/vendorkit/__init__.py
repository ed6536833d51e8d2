"""Cached, lock-protected native library builds for vendored sources."""

from .errors import (
    BuildFailure,
    ConfigError,
    CyclicDependencyError,
    LockTimeoutError,
    PublishError,
    ToolchainError,
    VendorKitError,
)
from .fingerprint import compute_fingerprint
from .lock import BuildLock, with_lock
from .manifest import Manifest, load_manifest, parse_manifest
from .models import ArtifactSet, BuildReport, CMakeConfig, ScriptConfig, VendorSpec
from .orchestrator import BuildOrchestrator
from .platforms import create_toolchain
from .settings import BuildSettings, settings_from_env

__all__ = [
    "ArtifactSet",
    "BuildFailure",
    "BuildLock",
    "BuildOrchestrator",
    "BuildReport",
    "BuildSettings",
    "CMakeConfig",
    "ConfigError",
    "CyclicDependencyError",
    "LockTimeoutError",
    "Manifest",
    "PublishError",
    "ScriptConfig",
    "ToolchainError",
    "VendorKitError",
    "VendorSpec",
    "compute_fingerprint",
    "create_toolchain",
    "load_manifest",
    "parse_manifest",
    "settings_from_env",
    "with_lock",
]
