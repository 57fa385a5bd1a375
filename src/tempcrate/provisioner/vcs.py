"""Source-control backends.

Only git is driven directly (clone, working-tree add, working-tree
prune). Every other backend name is handed to the build tool verbatim
when it initializes a project. The selection is a closed set of two
variants:

- GitBackend: full capability set, runs the git binary
- PassThroughBackend: build-tool ``--vcs`` argument only
"""

import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

import structlog

from tempcrate.errors import GitOperationError
from tempcrate.provisioner.models import DepthPolicy, VcsKind, WorktreeHandle

logger = structlog.get_logger(__name__)

GIT_OPERATION_TIMEOUT_SECONDS = 300


@dataclass(frozen=True)
class PassThroughBackend:
    """Backend the build tool handles on its own.

    Attributes:
        kind: Backend selector forwarded as ``--vcs <kind>``.
    """

    kind: VcsKind

    def init_arguments(self) -> List[str]:
        return ["--vcs", self.kind.value]


class GitBackend:
    """Runs git for clone and working-tree operations.

    Attributes:
        git_path: Executable used for every git invocation.
        timeout_seconds: Upper bound for a single git command.
    """

    kind = VcsKind.GIT

    def __init__(
        self,
        git_path: str = "git",
        timeout_seconds: int = GIT_OPERATION_TIMEOUT_SECONDS,
    ):
        self.git_path = git_path
        self.timeout_seconds = timeout_seconds

    def init_arguments(self) -> List[str]:
        return ["--vcs", self.kind.value]

    def clone(self, url: str, target: Path, depth: DepthPolicy) -> None:
        """Clone *url* into the existing, empty *target* directory.

        Args:
            url: Repository URL.
            target: Destination directory.
            depth: History truncation; unbounded clones fetch everything.

        Raises:
            GitOperationError: If git fails, times out or cannot be started.
        """
        args = ["clone", url, str(target)]
        if not depth.is_unbounded:
            args.extend(["--depth", str(depth.commits)])

        self._run("clone", args)
        logger.info(
            "Cloned repository",
            url=url,
            target=str(target),
            depth=depth.commits,
        )

    def add_worktree(
        self, repository: Path, target: Path, branch: Optional[str] = None
    ) -> WorktreeHandle:
        """Create a working tree of *repository* at *target*.

        Without a branch the working tree is detached at HEAD.

        Raises:
            GitOperationError: If git fails, times out or cannot be started.
        """
        if branch:
            args = ["worktree", "add", str(target), branch]
        else:
            args = ["worktree", "add", "-d", str(target)]

        self._run("worktree add", args, cwd=repository)
        logger.info(
            "Created working tree",
            repository=str(repository),
            target=str(target),
            branch=branch,
        )
        return WorktreeHandle(repository=repository, path=target, branch=branch)

    def remove_worktree(self, handle: WorktreeHandle) -> None:
        """Remove a working tree and prune its administrative metadata.

        A working tree whose directory is already gone is only pruned.

        Raises:
            GitOperationError: If git fails, times out or cannot be started.
        """
        if handle.path.exists():
            self._run(
                "worktree remove",
                ["worktree", "remove", "--force", str(handle.path)],
                cwd=handle.repository,
            )
        self._run("worktree prune", ["worktree", "prune"], cwd=handle.repository)
        logger.info(
            "Removed working tree",
            repository=str(handle.repository),
            target=str(handle.path),
        )

    def _run(
        self,
        operation: str,
        args: Sequence[str],
        cwd: Optional[Path] = None,
    ) -> subprocess.CompletedProcess:
        """Run one git command and translate failures.

        Raises:
            GitOperationError: On non-zero exit, timeout or OS error.
        """
        command = [self.git_path, *args]
        logger.debug("Running git", command=command, cwd=str(cwd) if cwd else None)

        try:
            completed = subprocess.run(
                command,
                cwd=str(cwd) if cwd else None,
                stdin=subprocess.DEVNULL,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            raise GitOperationError(
                operation, f"timed out after {self.timeout_seconds}s"
            ) from exc
        except OSError as exc:
            raise GitOperationError(
                operation, f"failed to execute git: {exc}"
            ) from exc

        if completed.returncode != 0:
            error_output = (completed.stderr or "").strip()
            raise GitOperationError(
                operation,
                error_output or f"exit code {completed.returncode}",
            )
        return completed


VcsBackend = Union[GitBackend, PassThroughBackend]


def select_backend(
    kind: VcsKind,
    git_path: str = "git",
    timeout_seconds: int = GIT_OPERATION_TIMEOUT_SECONDS,
) -> VcsBackend:
    """Return the backend variant for *kind*."""
    if kind == VcsKind.GIT:
        return GitBackend(git_path=git_path, timeout_seconds=timeout_seconds)
    return PassThroughBackend(kind=kind)
