"""Per-architecture hash records.

A record is a hidden file ``.<arch>.sha256`` next to the ``<arch>/``
artifact directory it describes. Its presence and content are the only
build-state bookkeeping there is: a missing or different value means the
architecture has to be rebuilt (or republished).
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

from vendorkit.fsops import delete_path, read_text_or_empty, write_text_atomic

HASH_RECORD_SUFFIX = ".sha256"


def record_path(directory: Path, arch: str) -> Path:
    return directory / f".{arch}{HASH_RECORD_SUFFIX}"


def read_record(directory: Path, arch: str) -> str:
    return read_text_or_empty(record_path(directory, arch)).strip()


def write_record(directory: Path, arch: str, value: str) -> Path:
    return write_text_atomic(record_path(directory, arch), value)


def purge_arch(directory: Path, arch: str) -> None:
    """Drop an architecture's artifacts and its record."""
    delete_path(directory / arch)
    delete_path(record_path(directory, arch))


def stale_archs(directory: Path, archs: Iterable[str], expected: str) -> list[str]:
    return [arch for arch in archs if read_record(directory, arch) != expected]


def is_record_file(path: Path) -> bool:
    return path.name.startswith(".") and path.name.endswith(HASH_RECORD_SUFFIX)


def has_hash_record(path: Path) -> bool:
    """True when ``path`` is, or contains anywhere below it, a hash record."""
    if path.is_symlink():
        return False
    if path.is_dir():
        return any(has_hash_record(child) for child in path.iterdir())
    return is_record_file(path)
