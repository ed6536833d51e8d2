"""Structured build logging."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal, TextIO

Level = Literal["debug", "info", "warning", "error"]


@dataclass(slots=True)
class StructuredLogger:
    """Collects build records; optionally echoes them as readable lines.

    ``echo`` receives info/debug lines and ``echo_errors`` receives warning and
    error lines (falls back to ``echo`` when unset).
    """

    records: list[dict[str, Any]] = field(default_factory=list)
    echo: TextIO | None = None
    echo_errors: TextIO | None = None
    verbose: bool = False

    def log(
        self,
        *,
        operation: str,
        message: str,
        vendor: str | None = None,
        platform: str | None = None,
        arch: str | None = None,
        level: Level = "info",
        extra: dict[str, Any] | None = None,
    ) -> None:
        record: dict[str, Any] = {
            "level": level,
            "operation": operation,
            "vendor": vendor,
            "platform": platform,
            "arch": arch,
            "message": message,
        }
        if extra is not None:
            record["extra"] = extra
        self.records.append(record)
        self._echo(record)

    def info(self, operation: str, message: str, **kwargs: Any) -> None:
        self.log(operation=operation, message=message, level="info", **kwargs)

    def debug(self, operation: str, message: str, **kwargs: Any) -> None:
        self.log(operation=operation, message=message, level="debug", **kwargs)

    def warning(self, operation: str, message: str, **kwargs: Any) -> None:
        self.log(operation=operation, message=message, level="warning", **kwargs)

    def error(self, operation: str, message: str, **kwargs: Any) -> None:
        self.log(operation=operation, message=message, level="error", **kwargs)

    def records_for_vendor(self, vendor: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("vendor") == vendor]

    def records_for_operation(self, operation: str) -> list[dict[str, Any]]:
        return [record for record in self.records if record.get("operation") == operation]

    def to_json_lines(self, path: str | Path) -> Path:
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        lines = [json.dumps(record, sort_keys=True, default=str) for record in self.records]
        output_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return output_path

    def _echo(self, record: dict[str, Any]) -> None:
        level = record["level"]
        if level == "debug" and not self.verbose:
            return
        stream = self.echo
        if level in ("warning", "error") and self.echo_errors is not None:
            stream = self.echo_errors
        if stream is None:
            return
        stream.write(f"[{record['operation']}] {record['message']}\n")
        stream.flush()
