"""Dependency descriptor models.

This module defines the structured form of one dependency specifier token:
- RefspecKind / Refspec: which point of a repository's history to use
- RegistrySource: dependency resolved from the package registry
- RepositorySource: dependency fetched from a source-control URL
- FeatureSelection: selected features and the default-features toggle
- DependencyDescriptor: the complete parsed dependency

The models use Pydantic for validation and are frozen so that two
descriptors parsed from equivalent tokens compare equal.
"""

import re
from enum import Enum
from typing import Annotated, FrozenSet, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

# Characters that delimit the grammar and must be escaped inside values.
GRAMMAR_DELIMITERS = "\\=+#"

REPOSITORY_SCHEMES = ("http://", "https://", "ssh://")
SCP_LIKE_PATTERN = re.compile(r"^[A-Za-z0-9._-]+@[A-Za-z0-9.-]+:(?!//)")


def is_repository_url(source: str) -> bool:
    """Return True when *source* names a source-control repository.

    Recognizes the http, https and ssh schemes as well as the scp-like
    ``user@host:path`` form.
    """
    return source.startswith(REPOSITORY_SCHEMES) or bool(
        SCP_LIKE_PATTERN.match(source)
    )


def infer_name_from_url(url: str) -> str:
    """Derive a dependency name from the last path segment of a URL.

    A trailing slash and a trailing ``.git`` suffix are ignored, so
    ``https://host/org/rand.git`` and ``git@host:org/rand`` both yield
    ``rand``.
    """
    path = url.rstrip("/")
    segment = re.split(r"[/:]", path)[-1]
    if segment.endswith(".git"):
        segment = segment[: -len(".git")]
    return segment


def escape_value(value: str) -> str:
    """Escape grammar delimiters so *value* survives a re-parse."""
    return "".join(
        f"\\{char}" if char in GRAMMAR_DELIMITERS else char for char in value
    )


class RefspecKind(str, Enum):
    """Selector for a point in a repository's history.

    Attributes:
        DEFAULT: The repository's default branch.
        BRANCH: A named branch.
        REVISION: A commit identifier.
    """

    DEFAULT = "default"
    BRANCH = "branch"
    REVISION = "rev"


class Refspec(BaseModel):
    """A branch or revision selection for a repository dependency."""

    model_config = ConfigDict(frozen=True)

    kind: RefspecKind = RefspecKind.DEFAULT
    value: Optional[str] = None

    @model_validator(mode="after")
    def check_value_matches_kind(self) -> "Refspec":
        """A default refspec has no value; branch and revision need one."""
        if self.kind == RefspecKind.DEFAULT and self.value is not None:
            raise ValueError("default refspec cannot carry a value")
        if self.kind != RefspecKind.DEFAULT and not self.value:
            raise ValueError(f"{self.kind.value} refspec requires a value")
        return self

    @classmethod
    def branch(cls, name: str) -> "Refspec":
        return cls(kind=RefspecKind.BRANCH, value=name)

    @classmethod
    def revision(cls, sha: str) -> "Refspec":
        return cls(kind=RefspecKind.REVISION, value=sha)

    def render(self) -> str:
        """Render as the ``#...`` suffix of a specifier token."""
        if self.kind == RefspecKind.DEFAULT:
            return ""
        return f"#{self.kind.value}={escape_value(self.value or '')}"


class RegistrySource(BaseModel):
    """Dependency resolved from the package registry by version requirement."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["registry"] = "registry"
    version_requirement: str = "*"


class RepositorySource(BaseModel):
    """Dependency fetched from a source-control repository."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["repository"] = "repository"
    url: str
    refspec: Refspec = Field(default_factory=Refspec)


DependencySource = Annotated[
    Union[RegistrySource, RepositorySource],
    Field(discriminator="kind"),
]


class FeatureSelection(BaseModel):
    """Features enabled on a dependency.

    Attributes:
        selected: Feature names to enable; order is not significant.
        default_features: False when the dependency's default features
            are switched off.
    """

    model_config = ConfigDict(frozen=True)

    selected: FrozenSet[str] = frozenset()
    default_features: bool = True

    def render(self) -> str:
        """Render as the ``+...`` suffix of a specifier token."""
        rendered = "" if self.default_features else "+"
        for feature in sorted(self.selected):
            rendered += f"+{feature}"
        return rendered


class DependencyDescriptor(BaseModel):
    """Parsed, structured form of one dependency specifier token.

    The name may be omitted for repository sources; it is then derived
    from the last path segment of the URL during validation, so every
    constructed descriptor carries a resolved name.

    Attributes:
        name: Dependency name as it appears in the manifest.
        source: Registry or repository source.
        features: Feature selection.
    """

    model_config = ConfigDict(frozen=True)

    name: Optional[str] = None
    source: DependencySource = Field(default_factory=RegistrySource)
    features: FeatureSelection = Field(default_factory=FeatureSelection)

    @model_validator(mode="after")
    def resolve_name(self) -> "DependencyDescriptor":
        """Fill in the name from the repository URL when it is missing."""
        if self.name:
            return self
        if isinstance(self.source, RepositorySource):
            inferred = infer_name_from_url(self.source.url)
            if inferred:
                object.__setattr__(self, "name", inferred)
                return self
        raise ValueError("dependency name cannot be resolved")

    @property
    def resolved_name(self) -> str:
        return self.name or ""

    @property
    def is_repository(self) -> bool:
        return isinstance(self.source, RepositorySource)

    def to_spec(self) -> str:
        """Render the canonical specifier token for this descriptor.

        Parsing the returned token yields a descriptor equal to this one.
        """
        token = self.resolved_name
        if isinstance(self.source, RepositorySource):
            token += f"={escape_value(self.source.url)}{self.source.refspec.render()}"
        elif self.source.version_requirement != "*":
            token += f"={self.source.version_requirement}"
        return token + self.features.render()
