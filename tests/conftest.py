"""Pytest configuration for all tests."""

import subprocess
import sys
from pathlib import Path

import pytest

from tempcrate.config import TempcrateSettings
from tempcrate.provisioner.models import FLAG_FILE_CONTENT, FLAG_FILE_NAME, Workspace


@pytest.fixture
def settings(tmp_path):
    """Settings isolated from the user's configuration file."""
    return TempcrateSettings(
        temporary_project_dir=tmp_path / "projects",
        preserved_project_dir=tmp_path / "preserved",
        welcome_message=False,
    )


@pytest.fixture
def workspace_dir(tmp_path):
    path = tmp_path / "projects" / "tmp-abc123"
    path.mkdir(parents=True)
    (path / "Cargo.toml").write_text('[package]\nname = "demo"\n', encoding="utf-8")
    (path / FLAG_FILE_NAME).write_text(FLAG_FILE_CONTENT, encoding="utf-8")
    return path


@pytest.fixture
def workspace(workspace_dir):
    return Workspace(path=workspace_dir)


@pytest.fixture
def sleeper_command():
    """Build a shell command running a Python process that sleeps."""

    def build(seconds: float = 30) -> str:
        return f'"{sys.executable}" -c "import time; time.sleep({seconds})"'

    return build


@pytest.fixture
def fake_run():
    """Stand-in for subprocess.run that fakes cargo and git.

    ``cargo init`` writes a minimal manifest into its working directory;
    ``git clone`` creates the target directory content. Every call is
    recorded in ``fake_run.calls``.
    """

    def run(args, cwd=None, **kwargs):
        run.calls.append((list(args), cwd))
        if "init" in args and "--name" in args:
            name = args[args.index("--name") + 1]
            (Path(cwd) / "Cargo.toml").write_text(
                f'[package]\nname = "{name}"\nversion = "0.1.0"\n'
                'edition = "2021"\n\n[dependencies]\n',
                encoding="utf-8",
            )
        elif "clone" in args:
            target = Path(args[args.index("clone") + 2])
            (target / "Cargo.toml").write_text(
                '[package]\nname = "cloned"\nversion = "0.1.0"\n', encoding="utf-8"
            )
        return subprocess.CompletedProcess(args, run.returncode, stdout="", stderr=run.stderr)

    run.calls = []
    run.returncode = 0
    run.stderr = ""
    return run
