"""Unit tests for the teardown controller.

Tests deletion, preservation with rename, prompt handling, working-tree
removal, idempotence and failure reporting.
"""
import os
from unittest.mock import MagicMock, patch

import psutil
import pytest

from tempcrate.errors import GitOperationError, TeardownError
from tempcrate.provisioner import (
    FLAG_FILE_NAME,
    GitBackend,
    Workspace,
    WorkspaceMode,
    WorktreeHandle,
)
from tempcrate.runner import SubprocessSpec, SubprocessState, SubprocessSupervisor
from tempcrate.teardown import (
    DELETE_PROMPT,
    Disposition,
    TeardownController,
    TeardownOutcome,
)


@pytest.fixture
def preserved_dir(tmp_path):
    return tmp_path / "preserved"


class TestDelete:

    def test_flag_file_present_deletes(self, workspace, workspace_dir):
        outcome = TeardownController(workspace).run()

        assert outcome.disposition == Disposition.DELETED
        assert outcome.path is None
        assert not workspace_dir.exists()

    def test_confirmed_prompt_deletes(self, workspace, workspace_dir):
        confirm = MagicMock(return_value=True)
        outcome = TeardownController(workspace, prompt=True, confirm=confirm).run()

        confirm.assert_called_once_with(DELETE_PROMPT)
        assert outcome.disposition == Disposition.DELETED
        assert not workspace_dir.exists()

    def test_prompt_not_asked_when_disabled(self, workspace):
        confirm = MagicMock(return_value=False)
        TeardownController(workspace, prompt=False, confirm=confirm).run()
        confirm.assert_not_called()

    def test_deletion_failure_retains_workspace(self, workspace, workspace_dir):
        with patch(
            "tempcrate.teardown.controller.remove_tree",
            side_effect=PermissionError("busy"),
        ):
            outcome = TeardownController(workspace).run()

        assert outcome.disposition == Disposition.RETAINED
        assert not outcome.succeeded
        assert isinstance(outcome.error, TeardownError)
        assert "busy" in str(outcome.error)
        assert workspace_dir.exists()


class TestPreserve:

    def test_missing_flag_file_preserves_in_preserved_dir(self, workspace, workspace_dir, preserved_dir):
        (workspace_dir / FLAG_FILE_NAME).unlink()

        outcome = TeardownController(workspace, preserved_dir=preserved_dir).run()

        assert outcome.disposition == Disposition.PRESERVED
        assert outcome.path == preserved_dir / workspace_dir.name
        assert (outcome.path / "Cargo.toml").is_file()
        assert not workspace_dir.exists()

    def test_project_name_used_as_directory_name(self, workspace_dir, preserved_dir):
        (workspace_dir / FLAG_FILE_NAME).unlink()
        workspace = Workspace(path=workspace_dir, project_name="demo")

        outcome = TeardownController(workspace, preserved_dir=preserved_dir).run()

        assert outcome.path == preserved_dir / "demo"
        assert outcome.path.is_dir()

    def test_name_collision_keeps_generated_name(self, workspace_dir, preserved_dir):
        (workspace_dir / FLAG_FILE_NAME).unlink()
        (preserved_dir / "demo").mkdir(parents=True)
        workspace = Workspace(path=workspace_dir, project_name="demo")

        outcome = TeardownController(workspace, preserved_dir=preserved_dir).run()

        assert outcome.path == preserved_dir / workspace_dir.name
        assert outcome.path.is_dir()

    def test_without_preserved_dir_stays_beside(self, workspace, workspace_dir):
        (workspace_dir / FLAG_FILE_NAME).unlink()

        outcome = TeardownController(workspace).run()

        assert outcome.disposition == Disposition.PRESERVED
        assert outcome.path == workspace_dir
        assert workspace_dir.is_dir()

    def test_declined_prompt_removes_flag_and_preserves(self, workspace, workspace_dir, preserved_dir):
        outcome = TeardownController(
            workspace,
            preserved_dir=preserved_dir,
            prompt=True,
            confirm=lambda question: False,
        ).run()

        assert outcome.disposition == Disposition.PRESERVED
        assert outcome.path.is_dir()
        assert not (outcome.path / FLAG_FILE_NAME).exists()

    def test_describe(self, tmp_path):
        outcome = TeardownOutcome(disposition=Disposition.PRESERVED, path=tmp_path)
        assert outcome.describe() == f"Project preserved at: {tmp_path}"
        assert TeardownOutcome(disposition=Disposition.DELETED).describe() == "Project deleted"


@pytest.fixture
def worktree_workspace(workspace_dir, tmp_path):
    handle = WorktreeHandle(repository=tmp_path, path=workspace_dir)
    return Workspace(path=workspace_dir, mode=WorkspaceMode.WORKTREE, worktree=handle)


class TestWorktree:

    def test_flag_file_present_removes_worktree(self, worktree_workspace):
        git = MagicMock(spec=GitBackend)

        outcome = TeardownController(worktree_workspace, git=git).run()

        git.remove_worktree.assert_called_once_with(worktree_workspace.worktree)
        assert outcome.disposition == Disposition.WORKTREE_REMOVED

    def test_missing_flag_file_keeps_detached_worktree(self, worktree_workspace, preserved_dir):
        worktree_workspace.flag_file.unlink()
        (worktree_workspace.path / "uncommitted.rs").write_text("fn main() {}\n", encoding="utf-8")
        git = MagicMock(spec=GitBackend)

        outcome = TeardownController(
            worktree_workspace, git=git, preserved_dir=preserved_dir
        ).run()

        git.remove_worktree.assert_not_called()
        assert outcome.disposition == Disposition.PRESERVED
        assert outcome.path == worktree_workspace.path
        assert (worktree_workspace.path / "uncommitted.rs").is_file()

    def test_declined_prompt_keeps_worktree(self, worktree_workspace):
        git = MagicMock(spec=GitBackend)

        outcome = TeardownController(
            worktree_workspace, git=git, prompt=True, confirm=lambda question: False
        ).run()

        git.remove_worktree.assert_not_called()
        assert outcome.disposition == Disposition.PRESERVED
        assert not worktree_workspace.flag_file.exists()

    def test_prune_failure_is_retained(self, worktree_workspace):
        workspace = worktree_workspace
        git = MagicMock(spec=GitBackend)
        git.remove_worktree.side_effect = GitOperationError("worktree remove", "locked")

        outcome = TeardownController(workspace, git=git).run()

        assert outcome.disposition == Disposition.RETAINED
        assert "locked" in str(outcome.error)


class TestOrderingAndIdempotence:

    def test_subprocesses_stopped_before_deletion(self, workspace, workspace_dir):
        events = []
        supervisor = MagicMock(spec=SubprocessSupervisor)
        supervisor.stop.side_effect = lambda: events.append(("stop", workspace_dir.exists()))

        TeardownController(workspace, supervisor=supervisor).run()

        assert events == [("stop", True)]
        assert not workspace_dir.exists()

    def test_supervisor_failure_does_not_block_teardown(self, workspace, workspace_dir):
        supervisor = MagicMock(spec=SubprocessSupervisor)
        supervisor.stop.side_effect = RuntimeError("boom")

        outcome = TeardownController(workspace, supervisor=supervisor).run()

        assert outcome.disposition == Disposition.DELETED

    def test_second_run_returns_first_outcome(self, workspace):
        controller = TeardownController(workspace)
        first = controller.run()
        assert controller.run() is first
        assert controller.outcome is first

    def test_fresh_controller_on_deleted_workspace(self, workspace):
        TeardownController(workspace).run()
        outcome = TeardownController(workspace).run()
        assert outcome.disposition == Disposition.DELETED


@pytest.mark.skipif(os.name == "nt", reason="POSIX process semantics")
class TestWithRealSubprocesses:

    def test_keep_on_exit_process_outlives_teardown(self, workspace, sleeper_command):
        supervisor = SubprocessSupervisor(
            [
                SubprocessSpec(command=sleeper_command(), keep_on_exit=True),
                SubprocessSpec(command=sleeper_command()),
            ],
            workspace.path,
            shell="/bin/sh",
        )
        kept, ended = supervisor.start()
        try:
            TeardownController(workspace, supervisor=supervisor).run()

            assert ended.state == SubprocessState.STOPPED
            assert not psutil.pid_exists(ended.pid) or (
                psutil.Process(ended.pid).status() == psutil.STATUS_ZOMBIE
            )
            assert psutil.Process(kept.pid).is_running()
        finally:
            for proc in psutil.Process(kept.pid).children(recursive=True):
                proc.kill()
            kept.process.kill()
            kept.process.wait()
