"""Interactive session and auxiliary subprocess execution.

This module runs everything that executes alongside a workspace:
- The interactive session (shell or editor), the single blocking point
- Foreground and background helper subprocesses with stdio policies
- Termination of helpers with a force-kill fallback, honoring keep_on_exit
"""

from tempcrate.runner.models import (
    VALID_TRANSITIONS,
    SubprocessSpec,
    SubprocessState,
    SupervisedProcess,
    is_valid_transition,
)
from tempcrate.runner.session import (
    SessionResult,
    SessionRunner,
    get_shell,
    session_environment,
)
from tempcrate.runner.supervisor import SubprocessSupervisor

__all__ = [
    "SessionResult",
    "SessionRunner",
    "SubprocessSpec",
    "SubprocessState",
    "SubprocessSupervisor",
    "SupervisedProcess",
    "VALID_TRANSITIONS",
    "get_shell",
    "is_valid_transition",
    "session_environment",
]
