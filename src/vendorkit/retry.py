"""Retrying command execution for external build tools.

Only failures whose output matches a known transient signature are retried;
everything else fails on the first attempt.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

from tenacity import (
    RetryCallState,
    Retrying,
    retry_if_result,
    stop_after_attempt,
    wait_incrementing,
)

from vendorkit.errors import BuildFailure
from vendorkit.fsops import list_directory
from vendorkit.observability import StructuredLogger
from vendorkit.process import ProcessResult, ProcessRunner, run_process

TRANSIENT_SIGNATURES = (
    "Resource temporarily unavailable",
    "Device or resource busy",
    "Cannot allocate memory",
    "No space left on device",
    "ninja: build stopped",
)
MAKE_TRANSIENT_SIGNATURE = "Error 2"
MAKE_TOOLS = ("make", "gmake", "mingw32-make", "emmake")

PARTIAL_OUTPUT_SUFFIXES = (".o", ".obj")
PARTIAL_OUTPUT_NAMES = ("CMakeCache.txt",)
MAX_CLEANUP_FILES = 10
MAX_RETRY_DELAY = 5.0


def is_retryable(result: ProcessResult) -> bool:
    output = result.output
    if any(signature in output for signature in TRANSIENT_SIGNATURES):
        return True
    tool = Path(result.argv[0]).name if result.argv else ""
    is_make = tool in MAKE_TOOLS or any(Path(part).name in MAKE_TOOLS for part in result.argv)
    return is_make and MAKE_TRANSIENT_SIGNATURE in output


def _transient_failure(result: ProcessResult) -> bool:
    return not result.ok and is_retryable(result)


def diagnose(output: str) -> str | None:
    if "No space left on device" in output:
        return "Disk space issue detected."
    if "Cannot allocate memory" in output:
        return "Memory allocation issue detected."
    if "Resource temporarily unavailable" in output:
        return "Resource exhaustion detected."
    if "Permission denied" in output:
        return "Permission issue detected."
    if "ninja: build stopped" in output:
        return "Ninja build was stopped, likely due to a compilation error."
    return None


@dataclass(slots=True)
class RetryingRunner:
    runner: ProcessRunner = run_process
    max_attempts: int = 3
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    sleep: Callable[[float], None] = time.sleep
    diagnostics_dir: Path | None = None

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
        vendor: str | None = None,
        arch: str | None = None,
    ) -> ProcessResult:
        command = " ".join(str(part) for part in argv)

        def before_sleep(state: RetryCallState) -> None:
            result = state.outcome.result()
            self.logger.warning(
                "retry",
                f"Attempt {state.attempt_number}/{self.max_attempts} failed with a transient "
                f"error, retrying in {state.next_action.sleep:g}s: {command}",
                vendor=vendor,
                arch=arch,
                extra={"returncode": result.returncode},
            )
            self._remove_partial_outputs(cwd, vendor=vendor)

        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=1, increment=1, max=MAX_RETRY_DELAY),
            retry=retry_if_result(_transient_failure),
            sleep=self.sleep,
            before_sleep=before_sleep,
            retry_error_callback=lambda state: state.outcome.result(),
        )
        result = retrying(self._attempt, argv, cwd=cwd, env=env, vendor=vendor, arch=arch)
        if not result.ok:
            raise self._failure(
                result,
                attempts=retrying.statistics["attempt_number"],
                retryable=is_retryable(result),
                vendor=vendor,
            )
        if result.stdout:
            self.logger.debug("exec", result.stdout.rstrip(), vendor=vendor, arch=arch)
        return result

    def _attempt(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None,
        vendor: str | None,
        arch: str | None,
    ) -> ProcessResult:
        command = " ".join(str(part) for part in argv)
        self.logger.debug("exec", command, vendor=vendor, arch=arch, extra={"cwd": str(cwd)})
        return self.runner(argv, cwd=cwd, env=env)

    def _remove_partial_outputs(self, cwd: Path, *, vendor: str | None) -> None:
        if not cwd.is_dir():
            return
        candidates = [
            path
            for path in sorted(cwd.iterdir())
            if path.is_file()
            and (path.suffix in PARTIAL_OUTPUT_SUFFIXES or path.name in PARTIAL_OUTPUT_NAMES)
        ]
        for path in candidates[:MAX_CLEANUP_FILES]:
            try:
                path.unlink()
            except OSError as exc:
                self.logger.debug("retry", f"Could not remove {path}: {exc}", vendor=vendor)
            else:
                self.logger.debug("retry", f"Cleaned up: {path.name}", vendor=vendor)

    def _failure(
        self,
        result: ProcessResult,
        *,
        attempts: int,
        retryable: bool,
        vendor: str | None,
    ) -> BuildFailure:
        listing_root = self.diagnostics_dir or result.cwd
        context = {
            "command": result.command,
            "cwd": str(result.cwd),
            "returncode": str(result.returncode),
            "attempts": str(attempts),
            "output": result.output[-4000:],
            "diagnostic": diagnose(result.output) or "",
            "build_dir": list_directory(listing_root, limit=40),
        }
        if vendor:
            context["vendor"] = vendor
        message = (
            f"Build command failed after {attempts} attempts."
            if retryable
            else "Build command failed."
        )
        self.logger.error("exec", message, vendor=vendor, extra={"command": result.command})
        return BuildFailure(message, hint="Inspect the tool output below.", context=context)
