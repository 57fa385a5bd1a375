"""Post-session teardown protocol.

Runs strictly in order once the session is over, or on any early abort:
1. Stop every auxiliary subprocess not marked keep_on_exit
2. Decide: delete when the flag file is present (and the prompt, if
   configured, is confirmed); otherwise remove the flag file and preserve
3. Delete: working trees are removed and pruned, other workspaces are
   removed from disk
4. Preserve: working trees stay where git registered them, other
   workspaces move to the preserved-projects location
5. Report the disposition

Failures are recorded on the outcome and leave the workspace in place;
the controller never raises.
"""

import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import structlog

from tempcrate.errors import GitOperationError, TeardownError
from tempcrate.provisioner.models import Workspace, WorkspaceMode
from tempcrate.provisioner.vcs import GitBackend
from tempcrate.provisioner.workspace import remove_tree
from tempcrate.runner.supervisor import SubprocessSupervisor

logger = structlog.get_logger(__name__)

DELETE_PROMPT = "Are you sure you want to delete this project?"


class Disposition(str, Enum):
    """What happened to the workspace.

    Attributes:
        DELETED: The directory was removed.
        PRESERVED: The directory was kept, possibly relocated.
        WORKTREE_REMOVED: The working tree was removed and pruned.
        RETAINED: Teardown failed; the directory was left where it was.
    """

    DELETED = "deleted"
    PRESERVED = "preserved"
    WORKTREE_REMOVED = "worktree_removed"
    RETAINED = "retained"


@dataclass
class TeardownOutcome:
    """Result of the teardown protocol.

    Attributes:
        disposition: Final state of the workspace.
        path: Where the workspace is now; None once it is gone.
        error: Failure that made teardown retain the workspace.
    """

    disposition: Disposition
    path: Optional[Path] = None
    error: Optional[TeardownError] = None

    @property
    def succeeded(self) -> bool:
        return self.disposition != Disposition.RETAINED

    def describe(self) -> str:
        """Return the user-facing summary line."""
        if self.disposition == Disposition.DELETED:
            return "Project deleted"
        if self.disposition == Disposition.WORKTREE_REMOVED:
            return "Working tree removed"
        if self.disposition == Disposition.PRESERVED:
            return f"Project preserved at: {self.path}"
        return f"Project left in place at: {self.path} ({self.error})"


class TeardownController:
    """Decides and carries out the fate of a workspace.

    Attributes:
        workspace: The workspace to tear down.
        supervisor: Supervisor whose subprocesses are stopped first.
        git: Backend used to remove working trees.
        preserved_dir: Destination of preserved workspaces; None keeps
            them beside the temporary workspaces.
        prompt: Ask for confirmation before deleting.
        confirm: Callback asked the delete question; True deletes.
    """

    def __init__(
        self,
        workspace: Workspace,
        supervisor: Optional[SubprocessSupervisor] = None,
        git: Optional[GitBackend] = None,
        preserved_dir: Optional[Path] = None,
        prompt: bool = False,
        confirm: Optional[Callable[[str], bool]] = None,
    ):
        self.workspace = workspace
        self.supervisor = supervisor
        self.git = git or GitBackend()
        self.preserved_dir = preserved_dir
        self.prompt = prompt
        self.confirm = confirm or (lambda question: True)
        self._outcome: Optional[TeardownOutcome] = None

    @property
    def outcome(self) -> Optional[TeardownOutcome]:
        return self._outcome

    def run(self) -> TeardownOutcome:
        """Execute the teardown protocol once.

        Subsequent calls return the first outcome without touching the
        filesystem again.
        """
        if self._outcome is not None:
            return self._outcome

        self._stop_subprocesses()
        outcome = self._delete_or_preserve()

        self._outcome = outcome
        if outcome.succeeded:
            logger.info(
                "Teardown complete",
                disposition=outcome.disposition.value,
                path=str(outcome.path) if outcome.path else None,
            )
        else:
            logger.error(
                "Teardown failed, workspace left in place",
                workspace=str(self.workspace.path),
                error=str(outcome.error),
            )
        return outcome

    def _stop_subprocesses(self) -> None:
        if self.supervisor is None:
            return
        try:
            self.supervisor.stop()
        except Exception:
            logger.exception(
                "Failed to stop subprocesses", workspace=str(self.workspace.path)
            )

    def _remove_worktree(self) -> TeardownOutcome:
        handle = self.workspace.worktree
        if handle is None:
            return self._retained("workspace has no working-tree handle")
        try:
            self.git.remove_worktree(handle)
        except GitOperationError as exc:
            return self._retained(str(exc))
        return TeardownOutcome(disposition=Disposition.WORKTREE_REMOVED)

    def _delete_or_preserve(self) -> TeardownOutcome:
        path = self.workspace.path
        if not path.exists():
            logger.debug("Workspace already gone", workspace=str(path))
            return TeardownOutcome(disposition=Disposition.DELETED)

        is_worktree = self.workspace.mode == WorkspaceMode.WORKTREE
        flag_file = self.workspace.flag_file
        if flag_file.exists():
            if not self.prompt or self.confirm(DELETE_PROMPT):
                return self._remove_worktree() if is_worktree else self._delete(path)
            try:
                flag_file.unlink()
            except OSError as exc:
                return self._retained(f"cannot remove {flag_file.name}: {exc}")

        if is_worktree:
            # Moving the directory would break git's link to the working tree.
            return TeardownOutcome(disposition=Disposition.PRESERVED, path=path)
        return self._preserve(path)

    def _delete(self, path: Path) -> TeardownOutcome:
        try:
            remove_tree(path)
        except OSError as exc:
            return self._retained(f"cannot delete directory: {exc}")
        return TeardownOutcome(disposition=Disposition.DELETED)

    def _preserve(self, path: Path) -> TeardownOutcome:
        """Move the workspace to its preserved location.

        The directory is renamed to the project name when one was given;
        if that name is taken it keeps its generated name.
        """
        destination_dir = self.preserved_dir or path.parent
        target = destination_dir / (self.workspace.project_name or path.name)
        if target != path and target.exists():
            logger.warning(
                "Preserve target exists, keeping the generated name",
                target=str(target),
            )
            target = destination_dir / path.name

        if target == path:
            return TeardownOutcome(disposition=Disposition.PRESERVED, path=path)
        if target.exists():
            return self._retained(f"{target} already exists")

        try:
            destination_dir.mkdir(parents=True, exist_ok=True)
            moved = shutil.move(str(path), str(target))
        except OSError as exc:
            return self._retained(f"cannot move directory to {target}: {exc}")
        return TeardownOutcome(disposition=Disposition.PRESERVED, path=Path(moved))

    def _retained(self, message: str) -> TeardownOutcome:
        path = self.workspace.path
        return TeardownOutcome(
            disposition=Disposition.RETAINED,
            path=path,
            error=TeardownError(path, message),
        )
