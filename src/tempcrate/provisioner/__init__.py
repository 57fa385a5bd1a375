"""Workspace provisioning for temporary projects.

This module creates the workspace directory and its content:
- A fresh project initialized by the build tool
- A clone of a remote repository, optionally shallow
- A working tree of an existing local repository
- The flag file whose presence authorizes deletion at teardown

Partial workspaces are rolled back when provisioning fails.
"""

from tempcrate.provisioner.models import (
    FLAG_FILE_NAME,
    DepthPolicy,
    SessionConfig,
    VcsKind,
    Workspace,
    WorkspaceMode,
    WorktreeHandle,
)
from tempcrate.provisioner.vcs import (
    GitBackend,
    PassThroughBackend,
    VcsBackend,
    select_backend,
)
from tempcrate.provisioner.workspace import WorkspaceProvisioner, remove_tree

__all__ = [
    "DepthPolicy",
    "FLAG_FILE_NAME",
    "GitBackend",
    "PassThroughBackend",
    "SessionConfig",
    "VcsBackend",
    "VcsKind",
    "Workspace",
    "WorkspaceMode",
    "WorkspaceProvisioner",
    "WorktreeHandle",
    "remove_tree",
    "select_backend",
]
