"""Unit tests for the interactive session runner."""
import os
import signal
import sys
from unittest.mock import patch

import pytest

from tempcrate.errors import SessionError
from tempcrate.runner import SessionRunner, get_shell, session_environment
from tempcrate.runner.session import CARGO_TARGET_DIR_VARIABLE

posix_only = pytest.mark.skipif(os.name == "nt", reason="POSIX shell semantics")


class TestShellSelection:

    @posix_only
    def test_uses_shell_variable(self):
        with patch.dict(os.environ, {"SHELL": "/bin/zsh"}):
            assert get_shell() == "/bin/zsh"

    @posix_only
    def test_falls_back_to_sh(self):
        with patch.dict(os.environ, clear=True):
            assert get_shell() == "/bin/sh"


class TestSessionEnvironment:

    def test_injects_target_dir_when_absent(self):
        environment = session_environment("/tmp/target", base={"PATH": "/bin"})
        assert environment == {"PATH": "/bin", CARGO_TARGET_DIR_VARIABLE: "/tmp/target"}

    def test_existing_target_dir_wins(self):
        base = {CARGO_TARGET_DIR_VARIABLE: "/home/user/target"}
        environment = session_environment("/tmp/target", base=base)
        assert environment[CARGO_TARGET_DIR_VARIABLE] == "/home/user/target"

    def test_nothing_configured(self):
        assert session_environment(None, base={"A": "1"}) == {"A": "1"}

    def test_does_not_mutate_base(self):
        base = {"A": "1"}
        session_environment("/tmp/target", base=base)
        assert base == {"A": "1"}


class TestResolveCommand:

    def test_shell_command(self, tmp_path):
        runner = SessionRunner(tmp_path, shell=sys.executable)
        assert runner.resolve_command() == [sys.executable]

    def test_editor_command_ends_with_workspace(self, tmp_path):
        runner = SessionRunner(tmp_path, editor=sys.executable, editor_args=["--wait"])
        assert runner.resolve_command() == [sys.executable, "--wait", str(tmp_path)]

    def test_missing_program_raises(self, tmp_path):
        runner = SessionRunner(tmp_path, editor="definitely-not-an-editor-9f3b")
        with pytest.raises(SessionError, match="not found"):
            runner.resolve_command()


@posix_only
class TestRun:

    def test_returns_exit_status_and_runs_in_workspace(self, tmp_path):
        script = tmp_path / "session.sh"
        script.write_text('#!/bin/sh\npwd > "$1/cwd.txt"\nexit 7\n', encoding="utf-8")
        script.chmod(0o755)

        result = SessionRunner(tmp_path, editor=str(script)).run()

        assert result.exit_code == 7
        assert (tmp_path / "cwd.txt").read_text(encoding="utf-8").strip() == str(tmp_path)
        assert result.duration_seconds >= 0

    def test_environment_is_passed(self, tmp_path):
        script = tmp_path / "session.sh"
        script.write_text(
            '#!/bin/sh\necho "$CARGO_TARGET_DIR" > "$1/env.txt"\n', encoding="utf-8"
        )
        script.chmod(0o755)
        environment = session_environment("/tmp/shared-target", base={"PATH": os.defpath})

        SessionRunner(tmp_path, environment=environment, editor=str(script)).run()

        assert (tmp_path / "env.txt").read_text(encoding="utf-8").strip() == "/tmp/shared-target"

    def test_interrupt_handler_restored(self, tmp_path):
        before = signal.getsignal(signal.SIGINT)
        SessionRunner(tmp_path, editor="true").run()
        assert signal.getsignal(signal.SIGINT) is before
