"""Interactive session execution.

Launches the user's shell, or a configured editor, inside the workspace
and blocks until it exits. This is the only blocking point of a run.

While the session is in the foreground the terminal's interrupt key
belongs to it: the orchestrator keeps running through Ctrl+C so teardown
still happens after the session ends.
"""

import os
import shutil
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

import structlog

from tempcrate.errors import SessionError

logger = structlog.get_logger(__name__)

CARGO_TARGET_DIR_VARIABLE = "CARGO_TARGET_DIR"


def get_shell() -> str:
    """Return the user's shell.

    ``$SHELL`` or ``/bin/sh`` on POSIX, ``%COMSPEC%`` or ``cmd`` on Windows.
    """
    if os.name == "nt":
        return os.environ.get("COMSPEC", "cmd")
    return os.environ.get("SHELL", "/bin/sh")


def session_environment(
    cargo_target_dir: Optional[str] = None,
    base: Optional[Mapping[str, str]] = None,
) -> dict:
    """Build the environment for the session and its subprocesses.

    The build-tool target directory is injected only when the variable is
    not already set, so a user's own override always wins.
    """
    environment = dict(os.environ if base is None else base)
    if cargo_target_dir and CARGO_TARGET_DIR_VARIABLE not in environment:
        environment[CARGO_TARGET_DIR_VARIABLE] = cargo_target_dir
    return environment


def _ignore_interrupt(signum, frame) -> None:
    logger.debug("Interrupt forwarded to the session", signum=signum)


@dataclass
class SessionResult:
    """Result of an interactive session.

    Attributes:
        exit_code: Exit status of the session program.
        command: The command line that was run.
        duration_seconds: Wall-clock time the session was open.
    """

    exit_code: int
    command: List[str]
    duration_seconds: float


class SessionRunner:
    """Runs the interactive program bound to a workspace.

    Attributes:
        workspace_path: Working directory of the session.
        environment: Environment handed to the session program.
        editor: Editor executable; None starts the user's shell.
        editor_args: Arguments placed before the workspace path.
    """

    def __init__(
        self,
        workspace_path: Path,
        environment: Optional[Mapping[str, str]] = None,
        editor: Optional[str] = None,
        editor_args: Sequence[str] = (),
        shell: Optional[str] = None,
    ):
        self.workspace_path = workspace_path
        self.environment = dict(environment) if environment is not None else None
        self.editor = editor
        self.editor_args = list(editor_args)
        self.shell = shell or get_shell()

    def resolve_command(self) -> List[str]:
        """Return the session command line, checking the program exists.

        Raises:
            SessionError: If the program cannot be found.
        """
        if self.editor:
            command = [self.editor, *self.editor_args, str(self.workspace_path)]
        else:
            command = [self.shell]

        path = self.environment.get("PATH") if self.environment else None
        if shutil.which(command[0], path=path) is None:
            raise SessionError(" ".join(command), f"{command[0]} not found")
        return command

    def run(self) -> SessionResult:
        """Run the session program and block until it exits.

        Returns:
            SessionResult with the exit status.

        Raises:
            SessionError: If the program cannot be started.
        """
        command = self.resolve_command()
        logger.info(
            "Starting session",
            command=command,
            workspace=str(self.workspace_path),
        )
        start_time = time.monotonic()

        try:
            process = subprocess.Popen(
                command,
                cwd=str(self.workspace_path),
                env=self.environment,
            )
        except OSError as exc:
            raise SessionError(" ".join(command), str(exc)) from exc

        exit_code = self._wait(process)
        duration = time.monotonic() - start_time
        logger.info("Session ended", exit_code=exit_code, duration=round(duration, 2))
        return SessionResult(
            exit_code=exit_code, command=command, duration_seconds=duration
        )

    def _wait(self, process: subprocess.Popen) -> int:
        """Wait for the session, keeping Ctrl+C for the session program.

        Any other exception raised while waiting (a termination signal
        handled by the orchestrator) terminates the session first.
        """
        previous_handler = None
        on_main_thread = threading.current_thread() is threading.main_thread()
        if on_main_thread:
            previous_handler = signal.signal(signal.SIGINT, _ignore_interrupt)

        try:
            return process.wait()
        except BaseException:
            process.terminate()
            try:
                process.wait(timeout=2)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait()
            raise
        finally:
            if on_main_thread:
                signal.signal(signal.SIGINT, previous_handler)
