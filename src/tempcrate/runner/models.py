"""Auxiliary subprocess models.

This module defines:
- SubprocessSpec: one ``[[subprocess]]`` entry of the configuration
- SubprocessState: Pending → Running → {Stopped, Failed}
- VALID_TRANSITIONS: allowed state changes
- SupervisedProcess: a spec together with its live process and state
"""

import subprocess
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Optional

from pydantic import BaseModel, field_validator

from tempcrate.errors import SubprocessSpawnError


class SubprocessSpec(BaseModel):
    """Configuration of one auxiliary process.

    Attributes:
        command: Command line, run through the user's shell on POSIX.
        foreground: Run to completion before the session starts, sharing
            the terminal; otherwise run detached alongside the session.
        keep_on_exit: Leave the process running when the session ends.
        working_dir: Working directory; defaults to the workspace root.
        stdout: Show standard output; defaults to True for foreground
            and False for background processes.
        stderr: Show standard error; same defaults as stdout.
        inherit_handles: Windows only; inherit the parent's handles.
            Defaults to True for foreground and False for background.
    """

    command: str
    foreground: bool = False
    keep_on_exit: bool = False
    working_dir: Optional[Path] = None
    stdout: Optional[bool] = None
    stderr: Optional[bool] = None
    inherit_handles: Optional[bool] = None

    @field_validator("command")
    @classmethod
    def validate_command(cls, v: str) -> str:
        """Validate that the command is not empty."""
        if not v or not v.strip():
            raise ValueError("command cannot be empty")
        return v

    @property
    def shows_stdout(self) -> bool:
        return self.foreground if self.stdout is None else self.stdout

    @property
    def shows_stderr(self) -> bool:
        return self.foreground if self.stderr is None else self.stderr

    @property
    def inherits_handles(self) -> bool:
        return self.foreground if self.inherit_handles is None else self.inherit_handles

    def resolve_working_dir(self, workspace_root: Path) -> Path:
        """Return the working directory, relative paths resolved against the workspace."""
        if self.working_dir is None:
            return workspace_root
        return workspace_root / self.working_dir


class SubprocessState(str, Enum):
    """Lifecycle of a supervised subprocess.

    Attributes:
        PENDING: Configured, not started yet.
        RUNNING: Started and not stopped by the supervisor.
        STOPPED: Exited on its own (foreground) or terminated at stop.
        FAILED: Could not be started.
    """

    PENDING = "pending"
    RUNNING = "running"
    STOPPED = "stopped"
    FAILED = "failed"


VALID_TRANSITIONS: Dict[SubprocessState, FrozenSet[SubprocessState]] = {
    SubprocessState.PENDING: frozenset(
        {SubprocessState.RUNNING, SubprocessState.FAILED}
    ),
    SubprocessState.RUNNING: frozenset(
        {SubprocessState.STOPPED, SubprocessState.FAILED}
    ),
    SubprocessState.STOPPED: frozenset(),
    SubprocessState.FAILED: frozenset(),
}


def is_valid_transition(from_state: SubprocessState, to_state: SubprocessState) -> bool:
    return to_state in VALID_TRANSITIONS[from_state]


@dataclass
class SupervisedProcess:
    """A configured subprocess and its runtime state.

    Attributes:
        spec: The configuration entry.
        state: Current lifecycle state.
        process: The live process handle once started.
        returncode: Exit status once known.
        error: Spawn failure, if any.
        released: True when the process was left running at stop
            because of ``keep_on_exit``.
    """

    spec: SubprocessSpec
    state: SubprocessState = SubprocessState.PENDING
    process: Optional[subprocess.Popen] = field(default=None, repr=False)
    returncode: Optional[int] = None
    error: Optional[SubprocessSpawnError] = None
    released: bool = False

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    def transition(self, to_state: SubprocessState) -> None:
        """Move to *to_state*.

        Raises:
            ValueError: If the transition is not allowed.
        """
        if not is_valid_transition(self.state, to_state):
            raise ValueError(
                f"Invalid subprocess transition from {self.state.value} to {to_state.value}"
            )
        self.state = to_state
