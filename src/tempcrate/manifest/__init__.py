"""Manifest generation.

This module renders parsed dependencies and session options into:
- build-tool init options (library flag, backend, edition)
- ``Cargo.toml`` dependency entries, inline or as tables
- the benchmark harness sections and source stub
"""

from tempcrate.manifest.builder import (
    DependencyEntry,
    ManifestBuilder,
    ManifestPlan,
    normalize_edition,
)

__all__ = [
    "DependencyEntry",
    "ManifestBuilder",
    "ManifestPlan",
    "normalize_edition",
]
