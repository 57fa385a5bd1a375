"""Supervision of auxiliary helper processes.

Starts the configured subprocesses next to the interactive session and
stops them afterwards:
- Foreground subprocesses run to completion before the session starts
  and share the terminal
- Background subprocesses are detached and run alongside the session
- Standard input is always suppressed; output defaults depend on
  foreground/background
- At stop, every process not marked keep_on_exit is terminated together
  with its descendants, with a force-kill after the grace period

Spawn failures are recorded on the SupervisedProcess and logged; they
never abort the run.
"""

import os
import subprocess
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

import psutil
import structlog

from tempcrate.errors import SubprocessSpawnError
from tempcrate.runner.models import SubprocessSpec, SubprocessState, SupervisedProcess
from tempcrate.runner.session import get_shell

logger = structlog.get_logger(__name__)

STOP_TIMEOUT_SECONDS = 2.0


class SubprocessSupervisor:
    """Starts, tracks and stops the auxiliary subprocesses of a session.

    Attributes:
        workspace_root: Default working directory of every subprocess.
        processes: One SupervisedProcess per configured spec, in order.
        environment: Environment for the subprocesses; None inherits.
        stop_timeout_seconds: Grace period between terminate and kill.
    """

    def __init__(
        self,
        specs: Sequence[SubprocessSpec],
        workspace_root: Path,
        environment: Optional[Mapping[str, str]] = None,
        stop_timeout_seconds: float = STOP_TIMEOUT_SECONDS,
        shell: Optional[str] = None,
    ):
        self.workspace_root = workspace_root
        self.processes: List[SupervisedProcess] = [
            SupervisedProcess(spec=spec) for spec in specs
        ]
        self.environment = dict(environment) if environment is not None else None
        self.stop_timeout_seconds = stop_timeout_seconds
        self.shell = shell or get_shell()

    @property
    def failures(self) -> List[SupervisedProcess]:
        return [p for p in self.processes if p.state == SubprocessState.FAILED]

    @property
    def running(self) -> List[SupervisedProcess]:
        return [p for p in self.processes if p.state == SubprocessState.RUNNING]

    def start(self) -> List[SupervisedProcess]:
        """Launch every pending subprocess in configuration order.

        Foreground subprocesses block until they exit. Background ones
        are left running.

        Returns:
            All supervised processes with their resulting states.
        """
        for supervised in self.processes:
            if supervised.state != SubprocessState.PENDING:
                continue
            if supervised.spec.foreground:
                self._run_foreground(supervised)
            else:
                self._spawn_background(supervised)

        if self.failures:
            logger.warning(
                "Some subprocesses failed to start",
                failed=[p.spec.command for p in self.failures],
            )
        return self.processes

    def stop(self) -> List[SupervisedProcess]:
        """Terminate every running subprocess not marked keep_on_exit.

        Retained processes are released from supervision and keep
        running. Calling stop again is a no-op for processes already
        stopped or released.

        Returns:
            The processes terminated by this call.
        """
        stopped: List[SupervisedProcess] = []
        for supervised in self.processes:
            if supervised.state != SubprocessState.RUNNING or supervised.released:
                continue

            if supervised.spec.keep_on_exit:
                supervised.released = True
                logger.info(
                    "Leaving subprocess running",
                    command=supervised.spec.command,
                    pid=supervised.pid,
                )
                continue

            supervised.returncode = self._terminate(supervised)
            supervised.transition(SubprocessState.STOPPED)
            stopped.append(supervised)
            logger.debug(
                "Stopped subprocess",
                command=supervised.spec.command,
                returncode=supervised.returncode,
            )
        return stopped

    def _run_foreground(self, supervised: SupervisedProcess) -> None:
        """Run a foreground subprocess to completion."""
        try:
            process = subprocess.Popen(**self._popen_arguments(supervised.spec))
        except OSError as exc:
            self._record_failure(supervised, exc)
            return

        supervised.process = process
        supervised.transition(SubprocessState.RUNNING)
        try:
            supervised.returncode = process.wait()
        except BaseException:
            process.kill()
            process.wait()
            raise
        supervised.transition(SubprocessState.STOPPED)

        if supervised.returncode != 0:
            logger.warning(
                "Foreground subprocess exited with an error",
                command=supervised.spec.command,
                returncode=supervised.returncode,
            )

    def _spawn_background(self, supervised: SupervisedProcess) -> None:
        """Start a detached background subprocess."""
        try:
            process = subprocess.Popen(**self._popen_arguments(supervised.spec))
        except OSError as exc:
            self._record_failure(supervised, exc)
            return

        supervised.process = process
        supervised.transition(SubprocessState.RUNNING)
        logger.info(
            "Started subprocess",
            command=supervised.spec.command,
            pid=process.pid,
            keep_on_exit=supervised.spec.keep_on_exit,
        )

    def _record_failure(self, supervised: SupervisedProcess, exc: OSError) -> None:
        supervised.error = SubprocessSpawnError(supervised.spec.command, str(exc))
        supervised.transition(SubprocessState.FAILED)
        logger.error(
            "An error occurred within the subprocess",
            command=supervised.spec.command,
            error=str(exc),
        )

    def _popen_arguments(self, spec: SubprocessSpec) -> Dict[str, Any]:
        """Build the platform-specific Popen keyword arguments for *spec*.

        POSIX runs the command through the shell with ``-c``; background
        processes get their own session so terminal signals do not reach
        them. Windows passes the command line verbatim and maps
        inherit_handles onto close_fds.
        """
        arguments: Dict[str, Any] = {
            "cwd": str(spec.resolve_working_dir(self.workspace_root)),
            "stdin": subprocess.DEVNULL,
            "stdout": None if spec.shows_stdout else subprocess.DEVNULL,
            "stderr": None if spec.shows_stderr else subprocess.DEVNULL,
            "env": self.environment,
        }

        if os.name == "nt":
            arguments["args"] = spec.command
            arguments["close_fds"] = not spec.inherits_handles
            if not spec.foreground:
                arguments["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            arguments["args"] = [self.shell, "-c", spec.command]
            if not spec.foreground:
                arguments["start_new_session"] = True

        return arguments

    def _terminate(self, supervised: SupervisedProcess) -> Optional[int]:
        """Terminate a process and its descendants, then reap it.

        Survivors of the grace period are killed.

        Returns:
            The exit status of the direct child.
        """
        process = supervised.process
        if process is None:
            return None

        family = self._process_family(process.pid)
        for proc in family:
            try:
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        _, alive = psutil.wait_procs(family, timeout=self.stop_timeout_seconds)
        if alive:
            logger.warning(
                "Subprocess did not terminate gracefully, killing it",
                command=supervised.spec.command,
                pids=[proc.pid for proc in alive],
            )
        for proc in alive:
            try:
                proc.kill()
            except psutil.NoSuchProcess:
                pass

        try:
            return process.wait(timeout=self.stop_timeout_seconds)
        except subprocess.TimeoutExpired:
            process.kill()
            return process.wait()

    def _process_family(self, pid: int) -> List[psutil.Process]:
        """Return the process with *pid* followed by all its descendants."""
        try:
            parent = psutil.Process(pid)
        except psutil.NoSuchProcess:
            return []

        try:
            children = parent.children(recursive=True)
        except psutil.Error:
            children = []
        return [parent, *children]
