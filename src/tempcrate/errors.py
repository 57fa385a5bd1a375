"""Error taxonomy for temporary project sessions.

Every failure raised by tempcrate derives from TempcrateError so the CLI
can map it onto an exit code. The propagation policy per error:

- InvalidDependencySpec / DuplicateDependency: raised before any
  filesystem mutation.
- WorkspaceIOError / GitOperationError: raised by the provisioner after
  it rolled back the partial workspace.
- SubprocessSpawnError: recorded by the supervisor, never raised out of it.
- SessionError: the interactive program could not be launched.
- TeardownError: recorded on the teardown outcome, never raised out of it.
- ConfigurationError: raised by the settings loader before any session starts.
"""

from typing import Optional, Sequence


class TempcrateError(Exception):
    """Base class for all tempcrate errors."""

    pass


class InvalidDependencySpec(TempcrateError):
    """Raised when a dependency token does not follow the specifier grammar.

    Attributes:
        token: The raw token as given on the command line.
        reason: Human-readable explanation of the rejection.
    """

    def __init__(self, token: str, reason: str):
        self.token = token
        self.reason = reason
        super().__init__(f"Invalid dependency {token!r}: {reason}")


class DuplicateDependency(TempcrateError):
    """Raised when two tokens resolve to the same dependency name.

    Attributes:
        name: The colliding dependency name.
        tokens: The raw tokens that produced the collision.
    """

    def __init__(self, name: str, tokens: Sequence[str]):
        self.name = name
        self.tokens = tuple(tokens)
        joined = ", ".join(repr(token) for token in self.tokens)
        super().__init__(f"Dependency {name!r} is declared more than once ({joined})")


class WorkspaceIOError(TempcrateError):
    """Raised when the workspace cannot be created or written.

    Attributes:
        path: Filesystem path involved in the failure, if known.
    """

    def __init__(self, message: str, path: Optional[object] = None):
        self.path = path
        super().__init__(message)


class BuildToolError(WorkspaceIOError):
    """Raised when the build tool fails to initialize the project."""

    pass


class GitOperationError(TempcrateError):
    """Raised when a source-control command fails.

    Attributes:
        operation: Short name of the operation (clone, worktree-add, ...).
    """

    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"git {operation} failed: {message}")


class SubprocessSpawnError(TempcrateError):
    """Raised when an auxiliary subprocess cannot be started.

    Attributes:
        command: The configured command line.
    """

    def __init__(self, command: str, message: str):
        self.command = command
        super().__init__(f"Cannot start subprocess {command!r}: {message}")


class SessionError(TempcrateError):
    """Raised when the interactive session program cannot be launched."""

    def __init__(self, command: str, message: str):
        self.command = command
        super().__init__(f"Cannot start session {command!r}: {message}")


class TeardownError(TempcrateError):
    """Describes a failed deletion, relocation or working-tree prune."""

    def __init__(self, path: object, message: str):
        self.path = path
        super().__init__(f"Teardown of {path} failed: {message}")


class SessionInterrupted(TempcrateError):
    """Raised inside the run when the orchestrator receives a termination signal.

    Attributes:
        signum: The received signal number.
    """

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")


class ConfigurationError(TempcrateError):
    """Raised when the configuration file or environment is invalid.

    Attributes:
        config_file: The configuration file that was loaded.
    """

    def __init__(self, config_file: object, message: str):
        self.config_file = config_file
        super().__init__(f"Invalid configuration ({config_file}): {message}")
