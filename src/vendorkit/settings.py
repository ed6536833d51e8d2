"""Build settings and entry-point environment parsing."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

import psutil

from vendorkit.errors import ConfigError

KNOWN_PLATFORMS = ("win", "mac", "ios", "linux", "android", "web", "ohos")
KNOWN_ARCHS = ("x86", "x64", "arm", "arm64", "arm64-simulator", "wasm", "wasm-mt")

STALE_LOCK_AFTER_SECONDS = 15 * 60.0
LOCK_TIMEOUT_SECONDS = STALE_LOCK_AFTER_SECONDS + 5 * 60.0
MAX_JOBS = 64
MEMORY_PER_JOB = 1024 * 1024 * 1024

JOBS_ENV = "VENDOR_BUILD_JOBS"
LOCK_TIMEOUT_ENV = "VENDOR_LOCK_TIMEOUT_MS"


@dataclass(frozen=True, slots=True)
class BuildSettings:
    platform: str
    archs: tuple[str, ...] | None = None
    debug: bool = False
    verbose: bool = False
    jobs: int | None = None
    lock_timeout: float = LOCK_TIMEOUT_SECONDS
    stale_lock_after: float = STALE_LOCK_AFTER_SECONDS
    max_build_attempts: int = 3
    incremental: bool = False
    strip: bool = True
    xcframework: bool = False

    def __post_init__(self) -> None:
        if self.platform not in KNOWN_PLATFORMS:
            raise ConfigError(
                f"Unknown platform '{self.platform}'.",
                hint=f"Use one of: {', '.join(KNOWN_PLATFORMS)}.",
            )
        for arch in self.archs or ():
            if arch not in KNOWN_ARCHS:
                raise ConfigError(
                    f"Unknown arch '{arch}'.",
                    hint=f"Use one of: {', '.join(KNOWN_ARCHS)}.",
                )
        if self.jobs is not None and self.jobs < 1:
            raise ConfigError("Parallel job count must be at least 1.")
        if self.max_build_attempts < 1:
            raise ConfigError("max_build_attempts must be at least 1.")

    @property
    def build_type(self) -> str:
        return "Debug" if self.debug else "Release"

    def with_overrides(self, **changes: Any) -> BuildSettings:
        return replace(self, **changes)


def settings_from_env(
    environ: Mapping[str, str] | None = None,
    **values: Any,
) -> BuildSettings:
    """Build settings from keyword values plus the operator env overrides.

    Only the program entry point should call this; everything below it
    receives the resulting ``BuildSettings``.
    """
    env = os.environ if environ is None else environ
    jobs = _positive_int(env, JOBS_ENV)
    if jobs is not None and values.get("jobs") is None:
        values["jobs"] = jobs
    timeout_ms = _positive_int(env, LOCK_TIMEOUT_ENV)
    if timeout_ms is not None and "lock_timeout" not in values:
        values["lock_timeout"] = timeout_ms / 1000.0
    return BuildSettings(**values)


def resolve_job_count(
    settings: BuildSettings,
    *,
    cpu_count: int | None = None,
    available_memory: int | None = None,
) -> int:
    """Parallel job count for external build tools.

    Only affects wall-clock time, never build output.
    """
    if settings.jobs is not None:
        return settings.jobs
    cpus = cpu_count if cpu_count is not None else (psutil.cpu_count(logical=True) or 1)
    jobs = cpus + 2
    memory = available_memory if available_memory is not None else available_memory_bytes()
    if memory is not None:
        jobs = min(jobs, memory // MEMORY_PER_JOB)
    return max(1, min(jobs, MAX_JOBS))


def available_memory_bytes() -> int | None:
    try:
        return psutil.virtual_memory().available
    except (OSError, RuntimeError):
        return None


def _positive_int(env: Mapping[str, str], key: str) -> int | None:
    raw = env.get(key, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigError(
            f"Environment override {key} must be an integer.",
            context={"variable": key, "value": raw},
        ) from exc
    if value < 1:
        raise ConfigError(
            f"Environment override {key} must be positive.",
            context={"variable": key, "value": raw},
        )
    return value
