"""Workspace provisioning models.

This module defines the data exchanged between the CLI, the provisioner
and the teardown controller:
- WorkspaceMode: plain, clone or working-tree provisioning
- VcsKind: source-control backend selector handed to the build tool
- DepthPolicy: clone history truncation
- SessionConfig: per-invocation options for one temporary project
- WorktreeHandle: working tree created off an existing repository
- Workspace: the provisioned directory and its flag file
"""

from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

FLAG_FILE_NAME = "TO_DELETE"
FLAG_FILE_CONTENT = "Delete this file if you want to preserve this project\n"

DEFAULT_BENCHMARK_NAME = "benchmark"


class WorkspaceMode(str, Enum):
    """How the workspace content is produced.

    Attributes:
        PLAIN: Fresh project initialized by the build tool.
        CLONE: Clone of a remote repository.
        WORKTREE: New working tree of the repository in the current directory.
    """

    PLAIN = "plain"
    CLONE = "clone"
    WORKTREE = "worktree"


class VcsKind(str, Enum):
    """Source-control backends accepted by the build tool's ``--vcs`` flag."""

    GIT = "git"
    HG = "hg"
    PIJUL = "pijul"
    FOSSIL = "fossil"
    NONE = "none"


class DepthPolicy(BaseModel):
    """History truncation for clone mode.

    Attributes:
        commits: Number of commits to fetch; None keeps the full history.
    """

    model_config = ConfigDict(frozen=True)

    commits: Optional[int] = Field(default=None, ge=1)

    @classmethod
    def unbounded(cls) -> "DepthPolicy":
        return cls()

    @classmethod
    def from_setting(cls, value) -> "DepthPolicy":
        """Build a policy from the ``git_repo_depth`` configuration value.

        ``None`` and ``False`` keep the full history, ``True`` fetches a
        single commit and an integer fetches that many commits.
        """
        if value is None or value is False:
            return cls()
        if value is True:
            return cls(commits=1)
        return cls(commits=int(value))

    @property
    def is_unbounded(self) -> bool:
        return self.commits is None


class SessionConfig(BaseModel):
    """Options for one temporary project.

    Attributes:
        mode: Plain, clone or working-tree provisioning.
        project_name: User-supplied name; used as directory suffix and as
            the rename target when the workspace is preserved.
        lib: Initialize a library project instead of a binary.
        edition: Requested language edition (2015, 2018, 2021, 2024 or the
            two-digit short form); None uses the build tool's default.
        benchmark_name: Name of the benchmark harness file, None for no
            benchmark.
        vcs: Backend passed to the build tool when initializing.
        clone_url: Repository to clone in clone mode.
        worktree_branch: Branch to check out in working-tree mode; None
            creates a detached working tree at HEAD.
        repository_path: Existing repository for working-tree mode.
        depth: Clone history truncation.
    """

    mode: WorkspaceMode = WorkspaceMode.PLAIN
    project_name: Optional[str] = None
    lib: bool = False
    edition: Optional[int] = None
    benchmark_name: Optional[str] = None
    vcs: VcsKind = VcsKind.GIT
    clone_url: Optional[str] = None
    worktree_branch: Optional[str] = None
    repository_path: Path = Field(default_factory=Path.cwd)
    depth: DepthPolicy = Field(default_factory=DepthPolicy)

    @field_validator("project_name")
    @classmethod
    def validate_project_name(cls, v: Optional[str]) -> Optional[str]:
        """Project name must be usable as a single path component."""
        if v is None:
            return v
        if not v.strip() or any(sep in v for sep in ("/", "\\")) or v in (".", ".."):
            raise ValueError("project_name must be a plain directory name")
        return v

    @field_validator("benchmark_name")
    @classmethod
    def validate_benchmark_name(cls, v: Optional[str]) -> Optional[str]:
        """Benchmark name becomes a file name under ``benches/``."""
        if v and any(sep in v for sep in ("/", "\\")):
            raise ValueError("benchmark_name must not contain path separators")
        return v

    @model_validator(mode="after")
    def check_mode_arguments(self) -> "SessionConfig":
        """Clone mode needs a URL; a URL is only meaningful in clone mode."""
        if self.mode == WorkspaceMode.CLONE and not self.clone_url:
            raise ValueError("clone mode requires clone_url")
        if self.mode != WorkspaceMode.CLONE and self.clone_url:
            raise ValueError("clone_url is only valid in clone mode")
        return self


class WorktreeHandle(BaseModel):
    """A working tree created off an existing repository.

    Attributes:
        repository: Path of the repository that owns the working tree.
        path: Path of the working tree (the workspace root).
        branch: Checked-out branch, None for a detached HEAD.
    """

    model_config = ConfigDict(frozen=True)

    repository: Path
    path: Path
    branch: Optional[str] = None


class Workspace(BaseModel):
    """A provisioned temporary project.

    Attributes:
        path: Workspace root directory.
        mode: How the workspace was provisioned.
        project_name: User-supplied project name, if any.
        worktree: Working-tree handle in working-tree mode.
        created_at: Creation time (UTC).
    """

    path: Path
    mode: WorkspaceMode = WorkspaceMode.PLAIN
    project_name: Optional[str] = None
    worktree: Optional[WorktreeHandle] = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def flag_file(self) -> Path:
        """Marker whose presence at teardown authorizes deletion."""
        return self.path / FLAG_FILE_NAME

    @property
    def manifest_path(self) -> Path:
        return self.path / "Cargo.toml"
