"""Workspace provisioning for temporary projects.

Creates a uniquely named directory under the temporary project directory
and fills it according to the session mode:
- plain: the build tool initializes a fresh project
- clone: git clones a repository, optionally shallow
- worktree: git adds a working tree of an existing repository

The manifest plan is then applied (dependencies, benchmark harness) and
the flag file is written. Any failure rolls back the partial workspace,
including a created working tree, before the error reaches the caller.
"""

import os
import shutil
import stat
import subprocess
import sys
import tempfile
from pathlib import Path
from typing import TYPE_CHECKING, Optional

import structlog

from tempcrate.errors import BuildToolError, GitOperationError, WorkspaceIOError
from tempcrate.provisioner.models import (
    FLAG_FILE_CONTENT,
    FLAG_FILE_NAME,
    SessionConfig,
    Workspace,
    WorkspaceMode,
    WorktreeHandle,
)
from tempcrate.provisioner.vcs import GitBackend

if TYPE_CHECKING:
    from tempcrate.manifest.builder import ManifestPlan

logger = structlog.get_logger(__name__)

BUILD_TOOL_TIMEOUT_SECONDS = 300

TEMPORARY_PREFIX = "tmp-"
WORKTREE_PREFIX = "wk-"


def _make_writable_and_retry(func, path, _exc):
    """rmtree error hook: clear the read-only bit (git objects) and retry."""
    os.chmod(path, stat.S_IWRITE)
    func(path)


def remove_tree(path: Path) -> None:
    """Recursively delete *path*, including read-only files.

    Raises:
        OSError: If the directory cannot be removed.
    """
    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=_make_writable_and_retry)
    else:
        shutil.rmtree(path, onerror=_make_writable_and_retry)


class WorkspaceProvisioner:
    """Creates temporary project workspaces.

    Attributes:
        base_path: Directory under which workspaces are created.
        git: Backend used for clone and working-tree modes.
        cargo_path: Build-tool executable used in plain mode.
        timeout_seconds: Upper bound for the build-tool init command.
    """

    def __init__(
        self,
        base_path: Path,
        git: Optional[GitBackend] = None,
        cargo_path: str = "cargo",
        timeout_seconds: int = BUILD_TOOL_TIMEOUT_SECONDS,
    ):
        self.base_path = base_path
        self.git = git or GitBackend()
        self.cargo_path = cargo_path
        self.timeout_seconds = timeout_seconds

    def provision(
        self,
        session_config: SessionConfig,
        plan: "ManifestPlan",
    ) -> Workspace:
        """Provision a workspace for one session.

        Args:
            session_config: Mode, names and clone/worktree parameters.
            plan: Manifest plan produced by the ManifestBuilder.

        Returns:
            Workspace describing the created directory.

        Raises:
            WorkspaceIOError: If the directory or files cannot be written,
                or the build tool fails (BuildToolError).
            GitOperationError: If the clone or working-tree command fails.
        """
        workspace_path = self._create_workspace_directory(session_config)
        worktree: Optional[WorktreeHandle] = None

        try:
            if session_config.mode == WorkspaceMode.WORKTREE:
                worktree = self.git.add_worktree(
                    session_config.repository_path,
                    workspace_path,
                    session_config.worktree_branch,
                )
            elif session_config.mode == WorkspaceMode.CLONE:
                self.git.clone(
                    session_config.clone_url, workspace_path, session_config.depth
                )
            else:
                self._initialize_project(workspace_path, session_config, plan)

            self._apply_plan(workspace_path, plan)
            self._write_flag_file(workspace_path)
        except OSError as exc:
            self._rollback(workspace_path, worktree)
            raise WorkspaceIOError(
                f"Failed to write workspace {workspace_path}: {exc}",
                path=workspace_path,
            ) from exc
        except BaseException:
            self._rollback(workspace_path, worktree)
            raise

        workspace = Workspace(
            path=workspace_path,
            mode=session_config.mode,
            project_name=session_config.project_name,
            worktree=worktree,
        )
        logger.info(
            "Provisioned workspace",
            workspace=str(workspace_path),
            mode=session_config.mode.value,
        )
        return workspace

    def _create_workspace_directory(self, session_config: SessionConfig) -> Path:
        """Create a uniquely named, empty workspace directory.

        The name is ``tmp-<random>`` (``wk-`` in working-tree mode),
        followed by ``-<project name>`` when one was supplied.

        Raises:
            WorkspaceIOError: If the directory cannot be created.
        """
        prefix = (
            WORKTREE_PREFIX
            if session_config.mode == WorkspaceMode.WORKTREE
            else TEMPORARY_PREFIX
        )
        suffix = f"-{session_config.project_name}" if session_config.project_name else ""

        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
            created = tempfile.mkdtemp(prefix=prefix, suffix=suffix, dir=self.base_path)
        except OSError as exc:
            raise WorkspaceIOError(
                f"Failed to create workspace under {self.base_path}: {exc}",
                path=self.base_path,
            ) from exc

        return Path(created)

    def _initialize_project(
        self,
        workspace_path: Path,
        session_config: SessionConfig,
        plan: "ManifestPlan",
    ) -> None:
        """Run the build tool's init command inside the workspace.

        Raises:
            BuildToolError: If the command fails, times out or cannot start.
        """
        project_name = session_config.project_name or workspace_path.name.lower()
        command = [self.cargo_path, "init", "--name", project_name, *plan.init_options]

        try:
            completed = subprocess.run(
                command,
                cwd=str(workspace_path),
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            raise BuildToolError(
                f"{self.cargo_path} init timed out after {self.timeout_seconds}s",
                path=workspace_path,
            ) from exc
        except OSError as exc:
            raise BuildToolError(
                f"Failed to execute {self.cargo_path}: {exc}", path=workspace_path
            ) from exc

        if completed.returncode != 0:
            error_output = (completed.stderr or "").strip()
            raise BuildToolError(
                f"{self.cargo_path} init failed: "
                f"{error_output or f'exit code {completed.returncode}'}",
                path=workspace_path,
            )
        logger.debug("Initialized project", command=command)

    def _apply_plan(self, workspace_path: Path, plan: "ManifestPlan") -> None:
        """Append the manifest text and write the auxiliary files.

        Raises:
            WorkspaceIOError: If the plan changes the manifest but the
                workspace has no manifest.
            OSError: If a file cannot be written.
        """
        if plan.has_manifest_changes:
            manifest_path = workspace_path / "Cargo.toml"
            if not manifest_path.is_file():
                raise WorkspaceIOError(
                    f"No Cargo.toml in {workspace_path} to add dependencies to",
                    path=manifest_path,
                )
            existing = manifest_path.read_text(encoding="utf-8")
            with manifest_path.open("a", encoding="utf-8") as manifest:
                manifest.write(plan.manifest_text(existing))

        for relative_path, content in plan.files.items():
            target = workspace_path.joinpath(*relative_path.parts)
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")

    def _write_flag_file(self, workspace_path: Path) -> None:
        flag_file = workspace_path / FLAG_FILE_NAME
        flag_file.write_text(FLAG_FILE_CONTENT, encoding="utf-8")

    def _rollback(self, workspace_path: Path, worktree: Optional[WorktreeHandle]) -> None:
        """Remove whatever partial state provisioning created.

        Rollback failures are logged; the original error is what the
        caller sees.
        """
        if worktree is not None:
            try:
                self.git.remove_worktree(worktree)
            except GitOperationError:
                logger.exception(
                    "Failed to remove working tree during rollback",
                    workspace=str(workspace_path),
                )

        if workspace_path.exists():
            try:
                remove_tree(workspace_path)
            except OSError:
                logger.exception(
                    "Failed to remove workspace during rollback",
                    workspace=str(workspace_path),
                )
        logger.info("Rolled back workspace", workspace=str(workspace_path))
