"""tempcrate configuration using pydantic-settings.

Settings come from three sources, highest priority first:
- keyword arguments (command-line overrides)
- environment variables prefixed with TEMPCRATE_ (e.g. TEMPCRATE_PROMPT)
- the TOML configuration file

The configuration file is ``--config PATH``, else ``$TEMPCRATE_CONFIG_FILE``,
else ``config.toml`` in the user configuration directory. A missing file
is created with the defaults on first use.
"""

import json
import logging
import os
import tomllib
from pathlib import Path
from typing import List, Optional, Tuple, Type, Union

import structlog
from platformdirs import user_cache_path, user_config_path
from pydantic import Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

from tempcrate.errors import ConfigurationError
from tempcrate.provisioner.models import DepthPolicy, VcsKind
from tempcrate.runner.models import SubprocessSpec

logger = structlog.get_logger(__name__)

APP_NAME = "tempcrate"
CONFIG_FILE_VARIABLE = "TEMPCRATE_CONFIG_FILE"
CONFIG_FILE_NAME = "config.toml"

DEFAULT_CONFIG_TEMPLATE = """\
# Directory under which temporary projects are created.
temporary_project_dir = {temporary_project_dir}

# Directory receiving preserved projects (default: beside the temporary ones).
# preserved_project_dir = "/path/to/projects"

# Build-tool target directory, used when CARGO_TARGET_DIR is not set.
# cargo_target_dir = "/path/to/target"

# Ask before deleting a project.
prompt = false

# Print how to preserve and leave a project when the session starts.
welcome_message = true

# Source-control backend for new projects: git, hg, pijul, fossil or none.
vcs = "git"

# History truncation for --git clones: true for one commit, or a number.
# git_repo_depth = 1

# Open an editor on the project instead of a shell.
# editor = "code"
# editor_args = ["--wait", "--new-window"]

# Helper processes started with every session.
# [[subprocess]]
# command = "cargo watch -x check"
# foreground = false
# keep_on_exit = false
"""


def default_config_file() -> Path:
    """Return the configuration file used when none is given."""
    from_env = os.environ.get(CONFIG_FILE_VARIABLE)
    if from_env:
        return Path(from_env).expanduser()
    return user_config_path(APP_NAME) / CONFIG_FILE_NAME


class TempcrateSettings(BaseSettings):
    """tempcrate configuration.

    All environment variables are prefixed with TEMPCRATE_ (e.g.,
    TEMPCRATE_TEMPORARY_PROJECT_DIR). List-valued settings take JSON in
    the environment.
    """

    model_config = SettingsConfigDict(
        env_prefix="TEMPCRATE_",
        case_sensitive=False,
        extra="forbid",
    )

    # -------------------------------------------------------------------------
    # Workspace locations
    # -------------------------------------------------------------------------
    temporary_project_dir: Path = Field(
        default_factory=lambda: user_cache_path(APP_NAME)
    )

    # None keeps preserved projects beside the temporary ones
    preserved_project_dir: Optional[Path] = None

    # Injected as CARGO_TARGET_DIR unless the variable is already set
    cargo_target_dir: Optional[str] = None

    # -------------------------------------------------------------------------
    # Session behavior
    # -------------------------------------------------------------------------
    prompt: bool = False
    welcome_message: bool = True
    editor: Optional[str] = None
    editor_args: List[str] = Field(default_factory=list)

    # -------------------------------------------------------------------------
    # Source control
    # -------------------------------------------------------------------------
    vcs: VcsKind = VcsKind.GIT

    # None/false: full history, true: one commit, N: N commits
    git_repo_depth: Union[bool, int, None] = None

    # -------------------------------------------------------------------------
    # Auxiliary subprocesses ([[subprocess]] tables)
    # -------------------------------------------------------------------------
    subprocess: List[SubprocessSpec] = Field(default_factory=list)

    # -------------------------------------------------------------------------
    # External tools and timeouts
    # -------------------------------------------------------------------------
    cargo_path: str = "cargo"
    git_path: str = "git"
    command_timeout_seconds: int = 300
    subprocess_stop_timeout_seconds: float = 2.0

    log_level: str = "WARNING"

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, env_settings, TomlConfigSettingsSource(settings_cls))

    # -------------------------------------------------------------------------
    # Validators
    # -------------------------------------------------------------------------
    @field_validator("temporary_project_dir", "preserved_project_dir")
    @classmethod
    def expand_directory(cls, v: Optional[Path]) -> Optional[Path]:
        """Expand ``~`` in configured directories."""
        return v.expanduser() if v is not None else v

    @field_validator("git_repo_depth")
    @classmethod
    def validate_git_repo_depth(
        cls, v: Union[bool, int, None]
    ) -> Union[bool, int, None]:
        """Validate that an explicit depth is at least one commit."""
        if isinstance(v, int) and not isinstance(v, bool) and v < 1:
            raise ValueError("git_repo_depth must be at least 1")
        return v

    @field_validator("command_timeout_seconds", "subprocess_stop_timeout_seconds")
    @classmethod
    def validate_positive_timeout(cls, v: float) -> float:
        """Validate that timeouts are positive."""
        if v <= 0:
            raise ValueError("timeouts must be positive")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that the log level is a standard level name."""
        level = v.upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"unknown log level {v!r}")
        return level

    @property
    def depth_policy(self) -> DepthPolicy:
        return DepthPolicy.from_setting(self.git_repo_depth)

    @property
    def subprocesses(self) -> List[SubprocessSpec]:
        return self.subprocess


def write_default_config(config_file: Path) -> None:
    """Create *config_file* with the default settings.

    Raises:
        ConfigurationError: If the file cannot be written.
    """
    content = DEFAULT_CONFIG_TEMPLATE.format(
        temporary_project_dir=json.dumps(str(user_cache_path(APP_NAME))),
    )
    try:
        config_file.parent.mkdir(parents=True, exist_ok=True)
        config_file.write_text(content, encoding="utf-8")
    except OSError as exc:
        raise ConfigurationError(config_file, f"cannot create file: {exc}") from exc
    logger.info("Config file created", config_file=str(config_file))


def load_settings(config_file: Optional[Path] = None, **overrides) -> TempcrateSettings:
    """Load settings from the configuration file and the environment.

    Args:
        config_file: Explicit configuration file; see default_config_file.
        **overrides: Values taking precedence over every other source.

    Returns:
        The validated settings.

    Raises:
        ConfigurationError: If the file is malformed or a value is invalid.
    """
    path = config_file or default_config_file()
    if not path.exists():
        write_default_config(path)

    class FileSettings(TempcrateSettings):
        model_config = SettingsConfigDict(toml_file=path)

    try:
        settings = FileSettings(**overrides)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigurationError(path, str(exc)) from exc
    except ValidationError as exc:
        raise ConfigurationError(path, str(exc)) from exc

    logger.debug("Loaded configuration", config_file=str(path))
    return settings
