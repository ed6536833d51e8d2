"""Blocking subprocess execution used by builders and library tools."""

from __future__ import annotations

import os
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from vendorkit.errors import BuildFailure


@dataclass(frozen=True, slots=True)
class ProcessResult:
    argv: tuple[str, ...]
    cwd: Path
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return "\n".join(part for part in (self.stdout, self.stderr) if part)

    @property
    def command(self) -> str:
        return " ".join(self.argv)


class ProcessRunner(Protocol):
    def __call__(
        self,
        argv: Sequence[str],
        *,
        cwd: Path,
        env: Mapping[str, str] | None = None,
    ) -> ProcessResult:
        """Run ``argv`` in ``cwd`` and wait for it to exit."""


def run_process(
    argv: Sequence[str],
    *,
    cwd: Path,
    env: Mapping[str, str] | None = None,
) -> ProcessResult:
    """Run a command to completion, capturing its output.

    ``env`` entries are layered over the current process environment rather
    than replacing it.
    """
    command = tuple(str(part) for part in argv)
    merged_env = dict(os.environ)
    if env:
        merged_env.update(env)
    try:
        completed = subprocess.run(
            list(command),
            cwd=str(cwd),
            env=merged_env,
            capture_output=True,
            text=True,
            errors="replace",
            check=False,
        )
    except OSError as exc:
        raise BuildFailure(
            f"Could not start `{command[0]}`.",
            hint="Check that the build tool is installed and on PATH.",
            context={"command": " ".join(command), "cwd": str(cwd), "error": str(exc)},
        ) from exc
    return ProcessResult(
        argv=command,
        cwd=cwd,
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )


def capture_output(argv: Sequence[str], *, cwd: Path | None = None) -> str:
    """Best-effort probe used for tool discovery; never raises."""
    try:
        completed = subprocess.run(
            list(argv),
            cwd=str(cwd) if cwd is not None else None,
            capture_output=True,
            text=True,
            errors="replace",
            check=False,
        )
    except OSError:
        return ""
    return (completed.stdout or "") + (completed.stderr or "")

