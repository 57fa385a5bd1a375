"""Run orchestration for one temporary project.

Drives a single invocation through every stage:
dependency tokens → parser → manifest builder → provisioner →
subprocess supervisor → interactive session → teardown.

Termination signals raise SessionInterrupted from the start of
provisioning, so a partial workspace is rolled back. Teardown is
registered as a deferred cleanup right after provisioning and runs on
every exit path; signals arriving while it runs are held until it is
done.
The orchestrator delegates all work to injected collaborators.
"""

import os
import signal
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

import structlog

from tempcrate.config import TempcrateSettings
from tempcrate.context import DeferredCleanup, SessionContext
from tempcrate.dependency.parser import SpecParser
from tempcrate.errors import SessionInterrupted, TeardownError
from tempcrate.manifest.builder import ManifestBuilder
from tempcrate.provisioner.models import FLAG_FILE_NAME, SessionConfig
from tempcrate.provisioner.vcs import GitBackend
from tempcrate.provisioner.workspace import WorkspaceProvisioner
from tempcrate.runner.models import SupervisedProcess
from tempcrate.runner.session import SessionResult, SessionRunner, session_environment
from tempcrate.runner.supervisor import SubprocessSupervisor
from tempcrate.teardown.controller import Disposition, TeardownController, TeardownOutcome

logger = structlog.get_logger(__name__)

WELCOME_MESSAGE = (
    "\nTo preserve the project when exiting the shell, don't forget to delete "
    f"the `{FLAG_FILE_NAME}` file.\n"
    'To exit the project, you can type "exit" or use `Ctrl+D`'
)

TERMINATION_SIGNALS = ("SIGTERM", "SIGHUP")


@dataclass
class RunResult:
    """Result of one invocation.

    Attributes:
        session: Result of the interactive session.
        outcome: What teardown did with the workspace.
        spawn_failures: Auxiliary subprocesses that could not start.
    """

    session: SessionResult
    outcome: TeardownOutcome
    spawn_failures: List[SupervisedProcess] = field(default_factory=list)


def _raise_interrupted(signum, frame) -> None:
    raise SessionInterrupted(signum)


class SessionOrchestrator:
    """Runs a temporary project session from tokens to teardown.

    Attributes:
        settings: Loaded configuration.
        parser: Dependency specifier parser.
        builder: Manifest builder.
        provisioner: Workspace provisioner.
        git: Backend for clone and working-tree operations.
        echo: Writes user-facing lines.
        confirm: Asks the delete question when prompting is enabled.
        outcome: Teardown outcome of the last run, set even when the
            run raised.
    """

    def __init__(
        self,
        settings: TempcrateSettings,
        echo: Optional[Callable[[str], None]] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        parser: Optional[SpecParser] = None,
        builder: Optional[ManifestBuilder] = None,
        provisioner: Optional[WorkspaceProvisioner] = None,
        git: Optional[GitBackend] = None,
    ):
        self.settings = settings
        self.echo = echo or (lambda message: None)
        self.confirm = confirm
        self.parser = parser or SpecParser()
        self.builder = builder or ManifestBuilder()
        self.git = git or GitBackend(
            git_path=settings.git_path,
            timeout_seconds=settings.command_timeout_seconds,
        )
        self.provisioner = provisioner or WorkspaceProvisioner(
            base_path=settings.temporary_project_dir,
            git=self.git,
            cargo_path=settings.cargo_path,
            timeout_seconds=settings.command_timeout_seconds,
        )
        self.outcome: Optional[TeardownOutcome] = None
        self._pending_signal: Optional[int] = None

    def run(self, tokens: Sequence[str], session_config: SessionConfig) -> RunResult:
        """Run one session.

        Args:
            tokens: Raw dependency specifier tokens.
            session_config: Options of this invocation.

        Returns:
            RunResult with the session status and teardown outcome.

        Raises:
            InvalidDependencySpec, DuplicateDependency: Before anything
                is written to disk.
            WorkspaceIOError, GitOperationError: After the partial
                workspace was rolled back.
            SessionError: The session program could not be started; the
                workspace has been torn down.
            SessionInterrupted: A termination signal arrived; the
                workspace has been torn down.
        """
        self.outcome = None
        self._pending_signal = None
        descriptors = self.parser.parse_all(tokens)
        plan = self.builder.build(descriptors, session_config)

        cleanup = DeferredCleanup()
        previous_handlers = self._install_signal_handlers(_raise_interrupted)
        try:
            # An interrupt during provisioning reaches the provisioner's rollback.
            workspace = self.provisioner.provision(session_config, plan)
            teardown = TeardownController(
                workspace,
                git=self.git,
                preserved_dir=self.settings.preserved_project_dir,
                prompt=self.settings.prompt,
                confirm=self.confirm,
            )
            cleanup.register("teardown", lambda: self._finish(teardown))
            try:
                self.echo(f"Temporary project created at: {workspace.path}")
                environment = session_environment(self.settings.cargo_target_dir)
                supervisor = SubprocessSupervisor(
                    self.settings.subprocesses,
                    workspace.path,
                    environment=environment,
                    stop_timeout_seconds=self.settings.subprocess_stop_timeout_seconds,
                )
                teardown.supervisor = supervisor
                context = SessionContext(
                    session_config=session_config,
                    workspace=workspace,
                    environment=environment,
                    supervisor=supervisor,
                )
                session = self._run_session(context)
            finally:
                # Signals arriving during teardown are deferred until it is done.
                self._install_signal_handlers(self._defer_interrupt)
                cleanup.run_all()
        finally:
            self._restore_signal_handlers(previous_handlers)

        if self._pending_signal is not None:
            raise SessionInterrupted(self._pending_signal)

        return RunResult(
            session=session,
            outcome=self.outcome,
            spawn_failures=supervisor.failures,
        )

    def _run_session(self, context: SessionContext) -> SessionResult:
        """Start the helpers and block on the interactive session.

        The session program is resolved first so a missing program fails
        before any helper process exists.
        """
        runner = SessionRunner(
            context.workspace.path,
            environment=context.environment,
            editor=self.settings.editor,
            editor_args=self.settings.editor_args,
        )
        runner.resolve_command()

        if self.settings.welcome_message:
            self.echo(WELCOME_MESSAGE)

        context.supervisor.start()
        for failed in context.supervisor.failures:
            self.echo(f"Subprocess failed to start: {failed.error}")

        return runner.run()

    def _finish(self, teardown: TeardownController) -> None:
        """Run teardown; a teardown that does not complete counts as retained."""
        try:
            self.outcome = teardown.run()
        except BaseException:
            path = teardown.workspace.path
            self.outcome = TeardownOutcome(
                disposition=Disposition.RETAINED,
                path=path,
                error=TeardownError(path, "teardown did not complete"),
            )
            self.echo(self.outcome.describe())
            raise
        self.echo(self.outcome.describe())

    def _defer_interrupt(self, signum, frame) -> None:
        logger.warning("Termination signal received, finishing teardown first", signum=signum)
        self._pending_signal = signum

    def _install_signal_handlers(self, handler: Callable) -> Dict[int, object]:
        """Route termination signals to *handler*.

        Only possible on the main thread; elsewhere nothing is installed.
        """
        previous: Dict[int, object] = {}
        if threading.current_thread() is not threading.main_thread():
            return previous

        for name in TERMINATION_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is None or (name == "SIGHUP" and os.name == "nt"):
                continue
            previous[signum] = signal.signal(signum, handler)
        return previous

    def _restore_signal_handlers(self, previous: Dict[int, object]) -> None:
        for signum, handler in previous.items():
            signal.signal(signum, handler)
