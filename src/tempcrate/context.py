"""Per-run session context and guaranteed cleanup.

SessionContext is built once per invocation and handed to every
component that needs to know about the running session (workspace,
environment, supervised children).

DeferredCleanup holds the cleanup callbacks registered before the
session starts. The orchestrator runs them on every exit path: normal
return, error or interrupt.
"""

from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import structlog

from tempcrate.provisioner.models import SessionConfig, Workspace
from tempcrate.runner.supervisor import SubprocessSupervisor

logger = structlog.get_logger(__name__)


@dataclass
class SessionContext:
    """Everything known about the running session.

    Attributes:
        session_config: Options of this invocation.
        workspace: The provisioned workspace.
        environment: Environment of the session and its subprocesses.
        supervisor: Supervisor of the auxiliary subprocesses.
    """

    session_config: SessionConfig
    workspace: Workspace
    environment: Dict[str, str] = field(default_factory=dict)
    supervisor: Optional[SubprocessSupervisor] = None


class DeferredCleanup:
    """Ordered cleanup callbacks that run exactly once.

    Callbacks run last-registered first. A failing callback is logged
    and does not prevent the remaining ones from running.
    """

    def __init__(self):
        self._callbacks: List[Tuple[str, Callable[[], object]]] = []
        self._ran = False

    @property
    def ran(self) -> bool:
        return self._ran

    def register(self, name: str, callback: Callable[[], object]) -> None:
        if self._ran:
            raise RuntimeError("cleanup already ran")
        self._callbacks.append((name, callback))

    def run_all(self) -> None:
        if self._ran:
            return
        self._ran = True

        while self._callbacks:
            name, callback = self._callbacks.pop()
            try:
                callback()
            except Exception:
                logger.exception("Cleanup step failed", step=name)
