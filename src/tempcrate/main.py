"""Command-line entry point.

Usage::

    tempcrate [OPTIONS] [DEPENDENCIES]...
    cargo temp [OPTIONS] [DEPENDENCIES]...

Creates a temporary project with the given dependencies, opens a shell
(or the configured editor) in it and deletes or preserves it when the
shell exits.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import click
import structlog
from pydantic import ValidationError

from tempcrate import __version__
from tempcrate.config import TempcrateSettings, load_settings
from tempcrate.errors import (
    ConfigurationError,
    DuplicateDependency,
    GitOperationError,
    InvalidDependencySpec,
    SessionError,
    SessionInterrupted,
    WorkspaceIOError,
)
from tempcrate.orchestrator import SessionOrchestrator
from tempcrate.provisioner.models import (
    DEFAULT_BENCHMARK_NAME,
    SessionConfig,
    WorkspaceMode,
)

logger = structlog.get_logger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_INVALID_DEPENDENCY = 2
EXIT_PROVISIONING = 3
EXIT_SESSION = 4
EXIT_TEARDOWN = 5
EXIT_INTERRUPTED = 130

CARGO_SUBCOMMAND = "temp"
DETACHED_WORKTREE = ""


def configure_logging(level: str) -> None:
    """Route structlog through the standard logging module to stderr."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=level,
        force=True,
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=False),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def verbosity_level(verbose: int, configured: str) -> str:
    """Map the number of ``-v`` flags onto a log level."""
    if verbose >= 2:
        return "DEBUG"
    if verbose == 1:
        return "INFO"
    return configured


def build_session_config(
    settings: TempcrateSettings,
    lib: bool,
    name: Optional[str],
    worktree: Optional[str],
    git: Optional[str],
    bench: Optional[str],
    edition: Optional[int],
) -> SessionConfig:
    """Combine command-line options with configuration defaults."""
    if git:
        mode = WorkspaceMode.CLONE
    elif worktree is not None:
        mode = WorkspaceMode.WORKTREE
    else:
        mode = WorkspaceMode.PLAIN

    return SessionConfig(
        mode=mode,
        project_name=name,
        lib=lib,
        edition=edition,
        benchmark_name=bench,
        vcs=settings.vcs,
        clone_url=git,
        worktree_branch=worktree or None,
        repository_path=Path.cwd(),
        depth=settings.depth_policy,
    )


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.argument("dependencies", nargs=-1)
@click.option("--lib", "-l", is_flag=True, help="Create a library instead of a binary")
@click.option(
    "--name",
    "-n",
    default=None,
    help="Name of the project; the directory is renamed to it when preserved",
)
@click.option(
    "--worktree",
    "-w",
    "worktree",
    is_flag=False,
    flag_value=DETACHED_WORKTREE,
    default=None,
    metavar="[BRANCH]",
    help="Create a working tree of the current repository (HEAD without a branch)",
)
@click.option("--git", "-g", default=None, metavar="URL", help="Clone a repository")
@click.option(
    "--bench",
    "-b",
    is_flag=False,
    flag_value=DEFAULT_BENCHMARK_NAME,
    default=None,
    metavar="[NAME]",
    help="Add a criterion benchmark harness",
)
@click.option("--edition", "-e", type=int, default=None, help="Language edition (15, 18, 21, 24)")
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Configuration file to use",
)
@click.option("--verbose", "-v", count=True, help="Increase log verbosity (-v, -vv)")
@click.version_option(__version__, prog_name="tempcrate")
@click.pass_context
def cli(
    ctx: click.Context,
    dependencies: Tuple[str, ...],
    lib: bool,
    name: Optional[str],
    worktree: Optional[str],
    git: Optional[str],
    bench: Optional[str],
    edition: Optional[int],
    config_file: Optional[Path],
    verbose: int,
) -> None:
    """Create a temporary project with DEPENDENCIES and open a shell in it.

    A dependency is NAME[=VERSION|=URL[#branch=B|#rev=R]][+FEATURE...],
    for example ``serde=1.0+derive`` or ``https://github.com/org/crate.git``.
    Start the features with ``++`` to disable the default features.
    """
    configure_logging(verbosity_level(verbose, "WARNING"))

    if git and worktree is not None:
        raise click.UsageError("--git and --worktree cannot be used together")

    try:
        settings = load_settings(config_file)
    except ConfigurationError as exc:
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_CONFIG)
    configure_logging(verbosity_level(verbose, settings.log_level))

    try:
        session_config = build_session_config(
            settings, lib, name, worktree, git, bench, edition
        )
    except ValidationError as exc:
        raise click.UsageError(str(exc)) from exc

    orchestrator = SessionOrchestrator(
        settings,
        echo=click.echo,
        confirm=lambda question: click.confirm(question, default=True),
    )
    try:
        result = orchestrator.run(dependencies, session_config)
    except (InvalidDependencySpec, DuplicateDependency) as exc:
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_INVALID_DEPENDENCY)
    except (WorkspaceIOError, GitOperationError) as exc:
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_PROVISIONING)
    except SessionError as exc:
        click.echo(f"Error: {exc}", err=True)
        ctx.exit(EXIT_SESSION)
    except (SessionInterrupted, KeyboardInterrupt):
        logger.warning("Interrupted, workspace torn down")
        ctx.exit(EXIT_INTERRUPTED)

    if not result.outcome.succeeded:
        ctx.exit(EXIT_TEARDOWN)
    ctx.exit(EXIT_OK)


def main() -> None:
    """Console-script entry point; drops the cargo subcommand name."""
    args = sys.argv[1:]
    if args and args[0] == CARGO_SUBCOMMAND:
        args = args[1:]
    cli.main(args=args, prog_name="tempcrate")


if __name__ == "__main__":
    main()
