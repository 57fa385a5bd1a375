"""Workspace teardown.

This module decides and carries out the end of a workspace's life:
- Stopping helper subprocesses before touching the directory
- Deleting, preserving or relocating the workspace based on the flag file
- Removing working trees created off an existing repository
"""

from tempcrate.teardown.controller import (
    DELETE_PROMPT,
    Disposition,
    TeardownController,
    TeardownOutcome,
)

__all__ = [
    "DELETE_PROMPT",
    "Disposition",
    "TeardownController",
    "TeardownOutcome",
]
