"""Vendor fingerprints: the cache key deciding whether an arch is rebuilt.

A fingerprint covers the toolchain identity, the source revision, the build
configuration, and recursively every dependency's fingerprint. It is
computed once per run and stored on the ``VendorSpec``.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import cbor2

from vendorkit.errors import ConfigError, CyclicDependencyError
from vendorkit.fsops import read_text_or_empty
from vendorkit.models import VendorSpec


@dataclass(frozen=True, slots=True)
class FingerprintInput:
    toolchain: str
    revision: str
    build: dict[str, Any]
    dependencies: tuple[tuple[str, str], ...] = ()


def fingerprint_key(inputs: FingerprintInput) -> str:
    encoded = cbor2.dumps(_to_payload(inputs), canonical=True)
    return hashlib.sha256(encoded).hexdigest()


def compute_fingerprint(
    vendor: VendorSpec,
    toolchain: str,
    *,
    _stack: tuple[str, ...] = (),
) -> str:
    """Fingerprint ``vendor``, computing its dependencies' first."""
    if vendor.fingerprint is not None:
        return vendor.fingerprint
    if vendor.name in _stack:
        cycle = " -> ".join((*_stack[_stack.index(vendor.name) :], vendor.name))
        raise CyclicDependencyError(
            f"Cyclic vendor dependency: {cycle}",
            context={"cycle": cycle},
        )
    stack = (*_stack, vendor.name)
    dependencies = tuple(
        (alias, compute_fingerprint(dep, toolchain, _stack=stack))
        for alias, dep in sorted(vendor.deps.items())
    )
    vendor.fingerprint = fingerprint_key(
        FingerprintInput(
            toolchain=toolchain,
            revision=source_revision(vendor.source_dir),
            build=build_payload(vendor),
            dependencies=dependencies,
        )
    )
    return vendor.fingerprint


def build_payload(vendor: VendorSpec) -> dict[str, Any]:
    if vendor.script is not None:
        script = vendor.script
        try:
            content = script.file.read_bytes()
        except OSError as exc:
            raise ConfigError(
                f"Cannot read build script of vendor '{vendor.name}'.",
                context={"file": str(script.file), "error": str(exc)},
            ) from exc
        return {
            "script": {
                "content": content,
                "executor": script.executor or "",
                "arguments": list(script.arguments),
            }
        }
    config = vendor.cmake
    if config is None:
        raise ConfigError(f"Vendor '{vendor.name}' has no build configuration.")
    return {
        "cmake": {
            "targets": list(config.targets),
            "arguments": sorted(config.arguments),
            "includes": list(config.includes),
        }
    }


def source_revision(source_dir: Path) -> str:
    """Revision marker of a checkout; empty when there is no git metadata."""
    git_dir = _git_dir(source_dir)
    if git_dir is None:
        return ""
    shallow = read_text_or_empty(git_dir / "shallow").strip()
    if shallow:
        return shallow
    head = read_text_or_empty(git_dir / "HEAD").strip()
    if not head.startswith("ref:"):
        return head
    ref = head[len("ref:") :].strip()
    common_dir = git_dir
    common = read_text_or_empty(git_dir / "commondir").strip()
    if common:
        common_dir = (git_dir / common).resolve()
    for base in (git_dir, common_dir):
        commit = read_text_or_empty(base / ref).strip()
        if commit:
            return commit
    for line in read_text_or_empty(common_dir / "packed-refs").splitlines():
        sha, _, name = line.partition(" ")
        if name.strip() == ref:
            return sha.strip()
    return ""


def _git_dir(source_dir: Path) -> Path | None:
    dot_git = source_dir / ".git"
    if dot_git.is_dir():
        return dot_git
    if dot_git.is_file():
        pointer = read_text_or_empty(dot_git).strip()
        if pointer.startswith("gitdir:"):
            target = Path(pointer[len("gitdir:") :].strip())
            return target if target.is_absolute() else (source_dir / target).resolve()
    return None


def _to_payload(inputs: FingerprintInput) -> dict[str, Any]:
    return {
        "toolchain": inputs.toolchain,
        "revision": inputs.revision,
        "dependencies": [list(item) for item in inputs.dependencies],
        **inputs.build,
    }
