"""Dependency specifier parsing.

Turns command-line dependency tokens into DependencyDescriptor values.
The grammar is::

    token    := [name] ['=' source] ['+' features]
    source   := version-requirement | repository-url ['#' refspec]
    refspec  := 'branch=' NAME | 'rev=' SHA | TOKEN
    features := ['+'] FEATURE ('+' FEATURE)*

A backslash escapes the next character, which lets URLs and refspecs
carry literal ``=``, ``+`` and ``#`` characters.

A token that starts with a repository URL has no name part: the name is
inferred from the URL and the ``=`` characters inside the refspec are
not mistaken for the name/source separator.

Failures raise InvalidDependencySpec. Name collisions across a batch of
tokens raise DuplicateDependency.
"""

import re
from typing import Iterable, List, Optional, Tuple

import structlog
from pydantic import ValidationError

from tempcrate.dependency.models import (
    DependencyDescriptor,
    FeatureSelection,
    Refspec,
    RegistrySource,
    RepositorySource,
    is_repository_url,
)
from tempcrate.errors import DuplicateDependency, InvalidDependencySpec

logger = structlog.get_logger(__name__)

ESCAPE = "\\"

NAME_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_-]*$")
FEATURE_PATTERN = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_./:-]*$")
VERSION_PATTERN = re.compile(
    r"^(?:==|>=|<=|=|<|>|~|\^)?\s*(?:\*|[0-9A-Za-z][0-9A-Za-z.*-]*)$"
)
REVISION_PATTERN = re.compile(r"^[0-9a-fA-F]{7,40}$")


def _find_unescaped(text: str, delimiter: str) -> int:
    """Return the index of the first unescaped *delimiter*, or -1."""
    index = 0
    while index < len(text):
        char = text[index]
        if char == ESCAPE:
            index += 2
            continue
        if char == delimiter:
            return index
        index += 1
    return -1


def _split_unescaped(text: str, delimiter: str) -> Tuple[str, Optional[str]]:
    """Split *text* on the first unescaped *delimiter*.

    Returns:
        Tuple of (head, tail); tail is None when the delimiter is absent.
    """
    index = _find_unescaped(text, delimiter)
    if index < 0:
        return text, None
    return text[:index], text[index + 1 :]


def _split_all_unescaped(text: str, delimiter: str) -> List[str]:
    parts: List[str] = []
    rest: Optional[str] = text
    while rest is not None:
        head, rest = _split_unescaped(rest, delimiter)
        parts.append(head)
    return parts


def _unescape(text: str) -> str:
    result = []
    index = 0
    while index < len(text):
        char = text[index]
        if char == ESCAPE and index + 1 < len(text):
            result.append(text[index + 1])
            index += 2
            continue
        result.append(char)
        index += 1
    return "".join(result)


class SpecParser:
    """Parses dependency specifier tokens into descriptors.

    The parser is stateless; ``parse`` handles a single token and
    ``parse_all`` handles a batch and enforces name uniqueness.
    """

    def parse(self, token: str) -> DependencyDescriptor:
        """Parse one dependency token.

        Args:
            token: Raw specifier, e.g. ``serde=1.0+derive``.

        Returns:
            The parsed DependencyDescriptor with a resolved name.

        Raises:
            InvalidDependencySpec: If the token violates the grammar.
        """
        if not token or not token.strip():
            raise InvalidDependencySpec(token, "empty dependency specifier")
        if token != token.strip():
            raise InvalidDependencySpec(token, "surrounding whitespace")

        name, source_text = self._split_name_and_source(token)
        if source_text is None:
            name, feature_chain = _split_unescaped(name, "+")
        else:
            source_text, feature_chain = _split_unescaped(source_text, "+")

        features = self._parse_features(token, feature_chain)

        if source_text is not None and not source_text:
            reason = (
                "features given without a source"
                if feature_chain is not None
                else "empty source after '='"
            )
            raise InvalidDependencySpec(token, reason)

        source = (
            RegistrySource()
            if source_text is None
            else self._parse_source(token, source_text)
        )

        if name:
            name = _unescape(name)
            if not NAME_PATTERN.match(name):
                raise InvalidDependencySpec(token, f"invalid name {name!r}")
        elif not isinstance(source, RepositorySource):
            raise InvalidDependencySpec(token, "missing dependency name")

        try:
            descriptor = DependencyDescriptor(
                name=name or None, source=source, features=features
            )
        except ValidationError as exc:
            raise InvalidDependencySpec(
                token, "cannot infer a name from the repository URL"
            ) from exc

        if not NAME_PATTERN.match(descriptor.resolved_name):
            raise InvalidDependencySpec(
                token, f"inferred name {descriptor.resolved_name!r} is invalid"
            )
        return descriptor

    def parse_all(self, tokens: Iterable[str]) -> List[DependencyDescriptor]:
        """Parse a batch of tokens and reject duplicate names.

        Every token is parsed before uniqueness is checked, so a malformed
        token is always reported as InvalidDependencySpec.

        Raises:
            InvalidDependencySpec: If any token is malformed.
            DuplicateDependency: If two tokens resolve to the same name.
        """
        tokens = list(tokens)
        descriptors = [self.parse(token) for token in tokens]

        seen: dict[str, str] = {}
        for token, descriptor in zip(tokens, descriptors):
            name = descriptor.resolved_name
            if name in seen:
                raise DuplicateDependency(name, [seen[name], token])
            seen[name] = token

        logger.debug("Parsed dependencies", count=len(descriptors))
        return descriptors

    def _split_name_and_source(self, token: str) -> Tuple[str, Optional[str]]:
        """Separate the optional name from the optional source.

        A token that begins with a repository URL is entirely source.
        """
        if is_repository_url(token):
            return "", token
        return _split_unescaped(token, "=")

    def _parse_source(self, token: str, source_text: str):
        """Classify a source as a repository URL or a version requirement."""
        if is_repository_url(source_text):
            return self._parse_repository(token, source_text)
        if "://" in source_text:
            raise InvalidDependencySpec(token, "unsupported URL scheme")
        return RegistrySource(
            version_requirement=self._parse_version(token, source_text)
        )

    def _parse_repository(self, token: str, source_text: str) -> RepositorySource:
        url_text, refspec_text = _split_unescaped(source_text, "#")
        url = _unescape(url_text)
        if not url or url.endswith(("://", ":")):
            raise InvalidDependencySpec(token, "repository URL has no path")
        refspec = (
            Refspec() if refspec_text is None else self._parse_refspec(token, refspec_text)
        )
        return RepositorySource(url=url, refspec=refspec)

    def _parse_refspec(self, token: str, refspec_text: str) -> Refspec:
        """Parse the text after ``#``.

        ``branch=NAME`` and ``rev=SHA`` are explicit. A bare token is a
        revision when it looks like an abbreviated or full commit hash
        (7 to 40 hex digits) and a branch otherwise.
        """
        selector, value = _split_unescaped(refspec_text, "=")
        if value is not None:
            value = _unescape(value)
            if not value:
                raise InvalidDependencySpec(token, f"empty {selector} refspec")
            if selector == "branch":
                return Refspec.branch(value)
            if selector == "rev":
                return Refspec.revision(value)
            raise InvalidDependencySpec(
                token, f"unknown refspec selector {selector!r}"
            )

        bare = _unescape(selector)
        if not bare:
            raise InvalidDependencySpec(token, "empty refspec after '#'")
        if REVISION_PATTERN.match(bare):
            return Refspec.revision(bare)
        return Refspec.branch(bare)

    def _parse_version(self, token: str, version_text: str) -> str:
        """Validate a version requirement and return it unchanged.

        Comma-separated requirement lists are validated piecewise.
        """
        for requirement in version_text.split(","):
            if not VERSION_PATTERN.match(requirement.strip()):
                raise InvalidDependencySpec(
                    token, f"invalid version requirement {version_text!r}"
                )
        return version_text

    def _parse_features(
        self, token: str, feature_chain: Optional[str]
    ) -> FeatureSelection:
        """Parse the ``+``-joined chain that followed the first ``+``.

        A leading empty segment (``++feature`` or a trailing lone ``+``)
        switches off the default features.
        """
        if feature_chain is None:
            return FeatureSelection()

        segments = _split_all_unescaped(feature_chain, "+")
        default_features = segments[0] != ""
        selected = set()
        for segment in segments:
            if not segment:
                continue
            feature = _unescape(segment)
            if not FEATURE_PATTERN.match(feature):
                raise InvalidDependencySpec(token, f"invalid feature {feature!r}")
            selected.add(feature)

        return FeatureSelection(
            selected=frozenset(selected), default_features=default_features
        )


_default_parser = SpecParser()


def parse_dependency(token: str) -> DependencyDescriptor:
    """Parse a single token with the module-level parser."""
    return _default_parser.parse(token)


def parse_dependencies(tokens: Iterable[str]) -> List[DependencyDescriptor]:
    """Parse a batch of tokens with the module-level parser."""
    return _default_parser.parse_all(tokens)
