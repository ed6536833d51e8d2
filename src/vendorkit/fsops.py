"""Filesystem helpers shared by the build, publish and cache layers."""

from __future__ import annotations

import os
import shutil
import tempfile
from collections.abc import Callable, Iterator
from pathlib import Path

IGNORED_NAMES = frozenset({".DS_Store"})


def delete_path(path: Path) -> None:
    """Remove a file, symlink or directory tree; missing paths are fine."""
    if path.is_symlink() or path.is_file():
        path.unlink(missing_ok=True)
    elif path.is_dir():
        shutil.rmtree(path)


def read_text_or_empty(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except (FileNotFoundError, NotADirectoryError, IsADirectoryError):
        return ""


def write_text_atomic(path: Path, content: str) -> Path:
    """Write via a sibling temp file and rename, so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
        os.replace(temp_name, path)
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise
    return path


def copy_path(source: Path, target: Path) -> None:
    """Copy a file or directory tree, replacing whatever is at ``target``."""
    if source.is_dir():
        for child in sorted(source.iterdir()):
            copy_path(child, target / child.name)
        return
    target.parent.mkdir(parents=True, exist_ok=True)
    delete_path(target)
    shutil.copy2(source, target)


def iter_files(root: Path, predicate: Callable[[Path], bool] | None = None) -> Iterator[Path]:
    if root.is_file():
        if predicate is None or predicate(root):
            yield root
        return
    if not root.is_dir():
        return
    for child in sorted(root.iterdir()):
        if child.name in IGNORED_NAMES:
            continue
        if child.is_dir():
            yield from iter_files(child, predicate)
        elif predicate is None or predicate(child):
            yield child


def modify_time_ns(path: Path) -> int | None:
    try:
        return path.stat().st_mtime_ns
    except FileNotFoundError:
        return None


def list_directory(root: Path, *, limit: int = 50) -> str:
    """Bounded, newline-separated listing used in failure diagnostics."""
    if not root.exists():
        return f"{root} (missing)"
    entries: list[str] = []
    for index, path in enumerate(iter_files(root)):
        if index >= limit:
            entries.append(f"... (truncated after {limit} entries)")
            break
        entries.append(str(path.relative_to(root)))
    return "\n".join(entries) if entries else f"{root} (empty)"
