"""Vendor builders and builder selection."""

from __future__ import annotations

from vendorkit.builders.base import BuildTools, VendorBuilder
from vendorkit.builders.cmake import CMakeBuilder
from vendorkit.builders.script import ScriptBuilder
from vendorkit.models import VendorSpec


def get_builder(vendor: VendorSpec, tools: BuildTools) -> VendorBuilder:
    """Script configs win over cmake configs when a vendor has both."""
    if vendor.script is not None:
        return ScriptBuilder(tools)
    return CMakeBuilder(tools)


__all__ = ["BuildTools", "CMakeBuilder", "ScriptBuilder", "VendorBuilder", "get_builder"]
