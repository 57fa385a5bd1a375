"""Disposable Rust project workspaces.

This package provisions a temporary project pre-populated with declared
dependencies, runs an interactive session inside it alongside optional
helper processes, and on exit deletes or preserves the workspace:
- Dependency specifier parsing (registry and repository sources)
- Manifest generation, including a benchmark harness
- Workspace provisioning in plain, clone and working-tree modes
- Supervision of auxiliary background and foreground processes
- Deterministic teardown on every exit path
"""

__version__ = "0.4.0"
