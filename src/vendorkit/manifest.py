"""Vendor manifest (``vendor.json``) loading and graph resolution."""

from __future__ import annotations

import json
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from vendorkit.errors import ConfigError
from vendorkit.models import CMakeConfig, ScriptConfig, VendorSpec
from vendorkit.observability import StructuredLogger

DEFAULT_MANIFEST_NAME = "vendor.json"


@dataclass(slots=True)
class Manifest:
    """Vendors resolved for one platform.

    ``declared_names`` lists every vendor in the file, including the ones
    filtered out for this platform, so their outputs are never collected.
    """

    vendors: dict[str, VendorSpec]
    out_root: Path
    source_root: Path
    declared_names: tuple[str, ...] = ()
    path: Path | None = field(default=None, compare=False)

    def select(self, names: Iterable[str] = ()) -> list[str]:
        requested = list(names)
        if not requested:
            return list(self.vendors)
        unknown = [name for name in requested if name not in self.vendors]
        if unknown:
            raise ConfigError(
                f"Could not find any vendor name that matches '{unknown[0]}'.",
                hint=f"Known vendors: {', '.join(sorted(self.vendors)) or '(none)'}.",
                context={"requested": ", ".join(unknown)},
            )
        return requested


def load_manifest(
    path: str | Path,
    *,
    platform: str,
    debug: bool = False,
    logger: StructuredLogger | None = None,
) -> Manifest:
    manifest_path = Path(path).resolve()
    try:
        raw = manifest_path.read_text(encoding="utf-8")
    except FileNotFoundError as exc:
        raise ConfigError(
            "Vendor manifest does not exist.",
            hint=f"Create a {DEFAULT_MANIFEST_NAME} or pass --manifest.",
            context={"path": str(manifest_path)},
        ) from exc
    manifest = parse_manifest(
        raw,
        base_dir=manifest_path.parent,
        platform=platform,
        debug=debug,
        logger=logger,
    )
    manifest.path = manifest_path
    return manifest


def parse_manifest(
    raw: str,
    *,
    base_dir: Path,
    platform: str,
    debug: bool = False,
    logger: StructuredLogger | None = None,
) -> Manifest:
    log = logger if logger is not None else StructuredLogger()
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ConfigError("Invalid vendor manifest JSON.", hint=str(exc)) from exc
    if not isinstance(payload, dict):
        raise ConfigError("Invalid vendor manifest payload type.")

    out_root = (base_dir / _required_str(payload, "out")).resolve()
    source_value = payload.get("source", ".")
    if not isinstance(source_value, str):
        raise ConfigError("Invalid manifest `source` value.")
    source_root = (base_dir / source_value).resolve()
    entries = payload.get("vendors", [])
    if not isinstance(entries, list):
        raise ConfigError("Invalid manifest `vendors` value.")

    vendors: dict[str, VendorSpec] = {}
    raw_deps: dict[str, dict[str, str]] = {}
    declared: list[str] = []
    for entry in entries:
        if not isinstance(entry, dict):
            raise ConfigError("Invalid vendor entry in manifest.")
        vendor, deps = _parse_vendor(
            entry,
            base_dir=base_dir,
            source_root=source_root,
            out_root=out_root,
            platform=platform,
            debug=debug,
            log=log,
        )
        if vendor.name not in declared:
            declared.append(vendor.name)
        if vendor.cmake is None and vendor.script is None:
            continue
        replaces = vendor.script is not None or (
            vendor.cmake is not None and vendor.cmake.has_platform_filter
        )
        if vendor.name not in vendors or replaces:
            vendors[vendor.name] = vendor
            raw_deps[vendor.name] = deps

    for name, vendor in vendors.items():
        for alias, dep_name in raw_deps[name].items():
            dep = vendors.get(dep_name)
            if dep is None:
                log.debug(
                    "manifest",
                    f"Dropping dependency {alias}={dep_name}: no vendor builds it for {platform}.",
                    vendor=name,
                    platform=platform,
                )
                continue
            vendor.deps[alias] = dep

    return Manifest(
        vendors=vendors,
        out_root=out_root,
        source_root=source_root,
        declared_names=tuple(declared),
    )


def _parse_vendor(
    entry: dict[str, Any],
    *,
    base_dir: Path,
    source_root: Path,
    out_root: Path,
    platform: str,
    debug: bool,
    log: StructuredLogger,
) -> tuple[VendorSpec, dict[str, str]]:
    name = _required_str(entry, "name")
    directory = entry.get("dir", name)
    if not isinstance(directory, str) or not directory:
        raise ConfigError(f"Invalid `dir` value for vendor '{name}'.")
    out_dir = out_root / name
    if debug:
        out_dir = out_dir / "debug"

    cmake = None
    if entry.get("cmake") is not None:
        cmake = _parse_cmake(name, entry["cmake"])
        if cmake.platforms is not None and platform not in cmake.platforms:
            cmake = None

    script = None
    scripts = entry.get("scripts")
    if scripts is not None:
        if not isinstance(scripts, dict):
            raise ConfigError(f"Invalid `scripts` value for vendor '{name}'.")
        if scripts.get(platform) is not None:
            script = _parse_script(name, scripts[platform], base_dir)

    if script is not None and cmake is not None:
        log.info(
            "manifest",
            f"Vendor '{name}' has both cmake and a {platform} script; using the script.",
            vendor=name,
            platform=platform,
        )
        cmake = None

    vendor = VendorSpec(
        name=name,
        source_dir=(source_root / directory).resolve(),
        out_dir=out_dir,
        cmake=cmake,
        script=script,
    )
    return vendor, _parse_deps(name, entry.get("deps"))


def _parse_cmake(name: str, value: Any) -> CMakeConfig:
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid `cmake` value for vendor '{name}'.")
    targets = _str_list(value, "targets", owner=name)
    if not targets:
        raise ConfigError(
            f"Vendor '{name}' declares no cmake targets.",
            hint="Add at least one library target to `cmake.targets`.",
        )
    platforms = None
    if value.get("platforms") is not None:
        platforms = tuple(_str_list(value, "platforms", owner=name))
    native = value.get("native", False)
    if not isinstance(native, bool):
        raise ConfigError(f"Invalid `cmake.native` value for vendor '{name}'.")
    return CMakeConfig(
        targets=tuple(targets),
        arguments=tuple(_str_list(value, "arguments", owner=name)),
        includes=tuple(_str_list(value, "includes", owner=name)),
        platforms=platforms,
        native=native,
    )


def _parse_script(name: str, value: Any, base_dir: Path) -> ScriptConfig:
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid script entry for vendor '{name}'.")
    executor = value.get("executor")
    if executor is not None and (not isinstance(executor, str) or not executor):
        raise ConfigError(f"Invalid script `executor` for vendor '{name}'.")
    return ScriptConfig(
        file=(base_dir / _required_str(value, "file")).resolve(),
        executor=executor,
        arguments=tuple(_str_list(value, "arguments", owner=name)),
    )


def _parse_deps(name: str, value: Any) -> dict[str, str]:
    if value is None:
        return {}
    if not isinstance(value, dict) or not all(
        isinstance(alias, str) and isinstance(dep, str) for alias, dep in value.items()
    ):
        raise ConfigError(
            f"Invalid `deps` value for vendor '{name}'.",
            hint="`deps` maps an alias to a vendor name.",
        )
    return dict(value)


def _required_str(payload: dict[str, Any], key: str) -> str:
    value = payload.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"Invalid manifest `{key}` value.")
    return value


def _str_list(payload: dict[str, Any], key: str, *, owner: str) -> list[str]:
    value = payload.get(key, [])
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ConfigError(f"Invalid `{key}` value for vendor '{owner}'.")
    return value
