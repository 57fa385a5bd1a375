"""Manifest generation for temporary projects.

Folds parsed dependency descriptors and session options into:
- the options passed to the build tool when it initializes the project
  (library flag, ``--vcs`` backend, ``--edition``)
- the text appended to ``Cargo.toml`` (dependencies, benchmark harness)
- auxiliary files written into the workspace (benchmark source stub)

The builder is a pure transformation; the provisioner persists its output.
"""

import re
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Dict, List, Optional, Sequence

import structlog

from tempcrate.dependency.models import (
    DependencyDescriptor,
    RefspecKind,
    RegistrySource,
    RepositorySource,
)
from tempcrate.provisioner.models import DEFAULT_BENCHMARK_NAME, SessionConfig
from tempcrate.provisioner.vcs import select_backend

logger = structlog.get_logger(__name__)

LONG_ENTRY_THRESHOLD = 100

EDITIONS = {
    15: 2015,
    2015: 2015,
    18: 2018,
    2018: 2018,
    21: 2021,
    2021: 2021,
    24: 2024,
    2024: 2024,
}

TABLE_HEADER_PATTERN = re.compile(r"^\s*\[\[?\s*([^\]]+?)\s*\]\]?\s*(?:#.*)?$")

BASIC_STRING_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}

BENCHMARK_SOURCE = """use criterion::{black_box, criterion_group, criterion_main, Criterion};

fn criterion_benchmark(_c: &mut Criterion) {
\tprintln!("Hello, world!");
}

criterion_group!(
\tbenches,
\tcriterion_benchmark
);
criterion_main!(benches);
"""


def quote(value: str) -> str:
    """Render *value* as a TOML basic string.

    Control characters, including DEL, are written as escapes.
    """
    escaped = []
    for char in value:
        if char in BASIC_STRING_ESCAPES:
            escaped.append(BASIC_STRING_ESCAPES[char])
        elif ord(char) < 0x20 or ord(char) == 0x7F:
            escaped.append(f"\\u{ord(char):04X}")
        else:
            escaped.append(char)
    return '"' + "".join(escaped) + '"'


def normalize_edition(edition: Optional[int]) -> Optional[int]:
    """Map a requested edition onto a supported four-digit edition.

    Unknown editions are logged and dropped so the build tool falls back
    to its default.
    """
    if edition is None:
        return None
    normalized = EDITIONS.get(edition)
    if normalized is None:
        logger.error("Unknown edition, using the latest", edition=edition)
    return normalized


def last_table_header(manifest_text: str) -> Optional[str]:
    """Return the name of the last ``[table]`` header in a manifest.

    Bracketed lines inside multi-line arrays or strings are values, not
    headers.
    """
    last = None
    depth = 0
    open_string = None
    for line in manifest_text.splitlines():
        if depth == 0 and open_string is None:
            match = TABLE_HEADER_PATTERN.match(line)
            if match:
                last = match.group(1)
                continue
        depth, open_string = _scan_value_line(line, depth, open_string)
    return last


def _scan_value_line(line: str, depth: int, open_string: Optional[str]):
    """Track bracket depth and multi-line strings across one value line.

    Returns the updated depth and the delimiter of a multi-line string
    still open at the end of the line.
    """
    i = 0
    while i < len(line):
        if open_string is not None:
            end = line.find(open_string, i)
            if end == -1:
                return depth, open_string
            i = end + len(open_string)
            open_string = None
            continue

        char = line[i]
        if char == "#":
            break
        if line.startswith('"""', i) or line.startswith("'''", i):
            open_string = line[i:i + 3]
            i += 3
        elif char == '"':
            i += 1
            while i < len(line) and line[i] != '"':
                i += 2 if line[i] == "\\" else 1
            i += 1
        elif char == "'":
            end = line.find("'", i + 1)
            i = len(line) if end == -1 else end + 1
        else:
            if char in "[{":
                depth += 1
            elif char in "]}":
                depth = max(depth - 1, 0)
            i += 1
    return depth, open_string


@dataclass(frozen=True)
class DependencyEntry:
    """One dependency rendered in both manifest forms.

    Attributes:
        name: Dependency key.
        inline: ``name = ...`` line for use inside ``[dependencies]``.
        table: ``[dependencies.name]`` table.
    """

    name: str
    inline: str
    table: str

    @property
    def is_long(self) -> bool:
        return len(self.inline) >= LONG_ENTRY_THRESHOLD


@dataclass
class ManifestPlan:
    """Everything the provisioner needs to write into a workspace.

    Attributes:
        init_options: Build-tool init arguments, excluding ``--name``.
        dependencies: Rendered dependency entries.
        extra_sections: Manifest sections appended after the dependencies.
        files: Auxiliary files keyed by workspace-relative path.
    """

    init_options: List[str] = field(default_factory=list)
    dependencies: List[DependencyEntry] = field(default_factory=list)
    extra_sections: List[str] = field(default_factory=list)
    files: Dict[PurePosixPath, str] = field(default_factory=dict)

    @property
    def has_manifest_changes(self) -> bool:
        return bool(self.dependencies or self.extra_sections)

    def manifest_text(self, existing_manifest: str = "") -> str:
        """Return the text to append to *existing_manifest*.

        When the existing manifest ends inside a ``[dependencies]`` table,
        short entries are appended inline and long entries as tables after
        them. Otherwise every entry is appended as a table so it cannot
        land inside an unrelated table.
        """
        blocks: List[str] = []
        if self.dependencies:
            in_dependencies = last_table_header(existing_manifest) == "dependencies"
            inline = [
                entry.inline
                for entry in self.dependencies
                if in_dependencies and not entry.is_long
            ]
            tables = [
                entry.table
                for entry in self.dependencies
                if not in_dependencies or entry.is_long
            ]
            if inline:
                blocks.append("\n".join(inline))
            blocks.extend(tables)
        blocks.extend(self.extra_sections)

        if not blocks:
            return ""

        text = "\n\n".join(blocks) + "\n"
        if existing_manifest and not existing_manifest.endswith("\n"):
            text = "\n" + text
        return text


class ManifestBuilder:
    """Builds the manifest plan for a temporary project."""

    def build(
        self,
        descriptors: Sequence[DependencyDescriptor],
        session_config: SessionConfig,
    ) -> ManifestPlan:
        """Fold descriptors and session options into a ManifestPlan.

        Args:
            descriptors: Parsed dependencies, already checked for duplicates.
            session_config: Options for this session.

        Returns:
            ManifestPlan with init options, dependency entries and
            auxiliary files.
        """
        plan = ManifestPlan(
            init_options=self._init_options(session_config),
            dependencies=[self.render_dependency(d) for d in descriptors],
        )

        if session_config.benchmark_name is not None:
            self._add_benchmark(plan, session_config.benchmark_name)

        return plan

    def render_dependency(self, descriptor: DependencyDescriptor) -> DependencyEntry:
        """Render one descriptor as a DependencyEntry."""
        name = descriptor.resolved_name
        fields = self._dependency_fields(descriptor)

        registry_shorthand = (
            isinstance(descriptor.source, RegistrySource)
            and descriptor.features.default_features
            and not descriptor.features.selected
        )
        if registry_shorthand:
            inline = f"{name} = {fields[0][1]}"
        else:
            joined = ", ".join(f"{key} = {value}" for key, value in fields)
            inline = f"{name} = {{ {joined} }}"

        table_lines = [f"[dependencies.{name}]"]
        table_lines.extend(f"{key} = {value}" for key, value in fields)
        return DependencyEntry(name=name, inline=inline, table="\n".join(table_lines))

    def _dependency_fields(self, descriptor: DependencyDescriptor) -> List[tuple]:
        fields: List[tuple] = []
        source = descriptor.source
        if isinstance(source, RepositorySource):
            fields.append(("git", quote(source.url)))
            if source.refspec.kind == RefspecKind.BRANCH:
                fields.append(("branch", quote(source.refspec.value)))
            elif source.refspec.kind == RefspecKind.REVISION:
                fields.append(("rev", quote(source.refspec.value)))
        else:
            fields.append(("version", quote(source.version_requirement)))

        if not descriptor.features.default_features:
            fields.append(("default-features", "false"))
        if descriptor.features.selected:
            features = ", ".join(quote(f) for f in sorted(descriptor.features.selected))
            fields.append(("features", f"[{features}]"))
        return fields

    def _init_options(self, session_config: SessionConfig) -> List[str]:
        options: List[str] = []
        if session_config.lib:
            options.append("--lib")
        options.extend(select_backend(session_config.vcs).init_arguments())
        edition = normalize_edition(session_config.edition)
        if edition is not None:
            options.extend(["--edition", str(edition)])
        return options

    def _add_benchmark(self, plan: ManifestPlan, benchmark_name: str) -> None:
        name = benchmark_name or DEFAULT_BENCHMARK_NAME
        plan.extra_sections.extend(
            [
                '[dev-dependencies]\ncriterion = "*"',
                "[profile.release]\ndebug = true",
                f"[[bench]]\nname = {quote(name)}\nharness = false",
            ]
        )
        plan.files[PurePosixPath("benches") / f"{name}.rs"] = BENCHMARK_SOURCE
