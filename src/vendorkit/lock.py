"""Cross-process build lock guarding an output directory.

The lock is a marker file ``.build.lock`` holding ``{pid, timestamp,
hostname, token}`` as JSON. It is published with ``os.link`` from a fully
written temp file, so a marker is never observed half-written; a marker that
cannot be parsed is therefore treated as stale.

A marker is stale when it is older than ``stale_after`` seconds, or when it
was written on this host by a process that no longer exists. Reclaiming a
stale marker happens under an exclusive ``.build.lock.reclaim`` guard file,
and the marker is re-read under the guard and only deleted if it is still
the one judged stale. A held lock is only removed by its owner (pid, host
and token must all match).
"""

from __future__ import annotations

import errno
import json
import os
import random
import socket
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path
from types import TracebackType
from typing import Self, TypeVar

import psutil

from vendorkit.errors import LockTimeoutError
from vendorkit.models import LockOwner
from vendorkit.observability import StructuredLogger
from vendorkit.settings import LOCK_TIMEOUT_SECONDS, STALE_LOCK_AFTER_SECONDS

LOCK_FILE_NAME = ".build.lock"
RECLAIM_GUARD_NAME = f"{LOCK_FILE_NAME}.reclaim"
RECLAIM_GUARD_STALE_SECONDS = 30.0

_LINK_UNSUPPORTED = {errno.EPERM, errno.ENOSYS, errno.EOPNOTSUPP, errno.ENOTSUP}

T = TypeVar("T")


@dataclass(slots=True)
class BuildLock:
    directory: Path
    timeout: float = LOCK_TIMEOUT_SECONDS
    stale_after: float = STALE_LOCK_AFTER_SECONDS
    logger: StructuredLogger = field(default_factory=StructuredLogger)
    clock: Callable[[], float] = time.time
    sleep: Callable[[float], None] = time.sleep
    hostname: str = field(default_factory=socket.gethostname)
    pid: int = field(default_factory=os.getpid)
    _owner: LockOwner | None = field(init=False, default=None, repr=False)

    @property
    def path(self) -> Path:
        return self.directory / LOCK_FILE_NAME

    @property
    def held(self) -> bool:
        return self._owner is not None

    def acquire(self) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        start = self.clock()
        waited = False
        while True:
            owner = LockOwner(
                pid=self.pid,
                timestamp_ms=int(self.clock() * 1000),
                hostname=self.hostname,
                token=uuid.uuid4().hex,
            )
            try:
                self._publish_marker(owner)
            except FileExistsError:
                pass
            except FileNotFoundError:
                # Directory removed by a concurrent cleanup.
                self._check_deadline(start, None)
                self.directory.mkdir(parents=True, exist_ok=True)
                continue
            else:
                self._owner = owner
                waited_for = self.clock() - start
                self.logger.info(
                    "lock_acquired",
                    (
                        f"Build lock acquired after {int(waited_for)}s: {self.path}"
                        if waited
                        else f"Build lock acquired: {self.path}"
                    ),
                    extra={"path": str(self.path), "waited": round(waited_for, 3)},
                )
                return

            raw = _read_marker(self.path)
            if raw is None:
                continue
            existing = parse_owner(raw)
            if self.is_stale(existing) and self._reclaim(raw, existing):
                continue
            self._backoff(start, existing)
            waited = True

    def release(self) -> None:
        owner = self._owner
        if owner is None:
            return
        self._owner = None
        raw = _read_marker(self.path)
        if raw is None:
            return
        if parse_owner(raw) == owner:
            self.path.unlink(missing_ok=True)
            self.logger.debug("lock_released", f"Build lock released: {self.path}")
        else:
            self.logger.warning(
                "lock_released",
                f"Build lock was taken over by another process, leaving it in place: {self.path}",
            )

    def is_stale(self, owner: LockOwner | None) -> bool:
        if owner is None:
            return True
        if self.age_seconds(owner) > self.stale_after:
            return True
        return owner.hostname == self.hostname and not pid_alive(owner.pid)

    def age_seconds(self, owner: LockOwner) -> float:
        return self.clock() - owner.timestamp_ms / 1000.0

    def __enter__(self) -> Self:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()

    def _publish_marker(self, owner: LockOwner) -> None:
        payload = json.dumps(
            {
                "pid": owner.pid,
                "timestamp": owner.timestamp_ms,
                "hostname": owner.hostname,
                "token": owner.token,
            }
        )
        temp_path = self.directory / f"{LOCK_FILE_NAME}.{owner.token}.tmp"
        temp_path.write_text(payload, encoding="utf-8")
        try:
            os.link(temp_path, self.path)
        except OSError as exc:
            if isinstance(exc, FileExistsError) or exc.errno not in _LINK_UNSUPPORTED:
                raise
            _create_exclusive(self.path, payload)
        finally:
            temp_path.unlink(missing_ok=True)

    def _reclaim(self, raw: str, owner: LockOwner | None) -> bool:
        """Delete the marker if it still reads ``raw``.

        Returns False when another process is reclaiming at the same time, so
        the caller backs off instead of spinning.
        """
        guard = self.directory / RECLAIM_GUARD_NAME
        try:
            _create_exclusive(guard, json.dumps({"pid": self.pid, "hostname": self.hostname}))
        except FileExistsError:
            _clear_abandoned_guard(guard, self.logger)
            return False
        except FileNotFoundError:
            return True
        try:
            if _read_marker(self.path) != raw:
                return True
            self.path.unlink(missing_ok=True)
        finally:
            guard.unlink(missing_ok=True)
        description = (
            "unreadable"
            if owner is None
            else f"pid {owner.pid} on {owner.hostname}, {int(self.age_seconds(owner) // 60)}min old"
        )
        self.logger.info(
            "lock_reclaimed",
            f"Removed stale build lock ({description}): {self.path}",
        )
        return True

    def _backoff(self, start: float, owner: LockOwner | None) -> None:
        elapsed = self._check_deadline(start, owner)
        attempt = int(elapsed)
        base_delay = min(0.1 * 1.5 ** min(attempt, 10), 5.0)
        delay = base_delay + random.uniform(0, 0.3 * base_delay)
        if not self.path.exists():
            return
        if delay > 1.0:
            self.logger.info(
                "lock_wait",
                f"Waiting for build lock ({int(elapsed)}s): {self.path}",
                extra=_owner_context(owner),
            )
        self.sleep(delay)

    def _check_deadline(self, start: float, owner: LockOwner | None) -> float:
        elapsed = self.clock() - start
        if elapsed <= self.timeout:
            return elapsed
        context = {"path": str(self.path), "waited": f"{int(elapsed)}s"}
        if owner is not None:
            context.update(_owner_context(owner))
            context["age"] = f"{int(self.age_seconds(owner))}s"
        raise LockTimeoutError(
            f"Timed out waiting for build lock: {self.path}",
            hint=(
                "Another build may still be running. If it is not, remove the lock "
                "file or raise VENDOR_LOCK_TIMEOUT_MS."
            ),
            context=context,
        )


def with_lock(
    directory: Path,
    action: Callable[[], T],
    *,
    timeout: float = LOCK_TIMEOUT_SECONDS,
    stale_after: float = STALE_LOCK_AFTER_SECONDS,
    logger: StructuredLogger | None = None,
) -> T:
    """Run ``action`` while holding the build lock of ``directory``."""
    log = logger if logger is not None else StructuredLogger()
    lock = BuildLock(directory, timeout=timeout, stale_after=stale_after, logger=log)
    try:
        lock.acquire()
    except LockTimeoutError as exc:
        log.error("lock_timeout", str(exc), extra={"directory": str(directory)})
        raise
    started = time.monotonic()
    try:
        return action()
    finally:
        lock.release()
        log.debug(
            "lock_action",
            f"Locked action finished in {int(time.monotonic() - started)}s",
            extra={"directory": str(directory)},
        )


def parse_owner(raw: str) -> LockOwner | None:
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        return None
    if not isinstance(payload, dict):
        return None
    pid = payload.get("pid")
    timestamp = payload.get("timestamp")
    hostname = payload.get("hostname")
    if not isinstance(pid, int) or not isinstance(timestamp, int | float):
        return None
    if not isinstance(hostname, str):
        return None
    token = payload.get("token", "")
    return LockOwner(
        pid=pid,
        timestamp_ms=int(timestamp),
        hostname=hostname,
        token=token if isinstance(token, str) else "",
    )


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    return psutil.pid_exists(pid)


def _read_marker(path: Path) -> str | None:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None


def _create_exclusive(path: Path, payload: str) -> None:
    fd = os.open(path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    try:
        os.write(fd, payload.encode("utf-8"))
    finally:
        os.close(fd)


def _clear_abandoned_guard(guard: Path, logger: StructuredLogger) -> None:
    try:
        age = time.time() - guard.stat().st_mtime
    except FileNotFoundError:
        return
    if age > RECLAIM_GUARD_STALE_SECONDS:
        guard.unlink(missing_ok=True)
        logger.warning("lock_reclaimed", f"Removed abandoned reclaim guard: {guard}")


def _owner_context(owner: LockOwner | None) -> dict[str, str]:
    if owner is None:
        return {}
    return {"owner_pid": str(owner.pid), "owner_host": owner.hostname}
