"""Dependency specifier grammar.

This module turns command-line tokens such as ``serde=1.0+derive`` or
``https://host/org/rand.git#branch=main`` into structured descriptors:
- Registry dependencies with a version requirement
- Repository dependencies with an optional branch or revision
- Feature selection and default-features toggling
"""

from tempcrate.dependency.models import (
    DependencyDescriptor,
    FeatureSelection,
    Refspec,
    RefspecKind,
    RegistrySource,
    RepositorySource,
)
from tempcrate.dependency.parser import SpecParser, parse_dependencies, parse_dependency

__all__ = [
    "DependencyDescriptor",
    "FeatureSelection",
    "Refspec",
    "RefspecKind",
    "RegistrySource",
    "RepositorySource",
    "SpecParser",
    "parse_dependencies",
    "parse_dependency",
]
