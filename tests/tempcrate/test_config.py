"""Tests for configuration loading."""

import tomllib

import pytest
from platformdirs import user_cache_path

from tempcrate.config import (
    CONFIG_FILE_VARIABLE,
    TempcrateSettings,
    default_config_file,
    load_settings,
    write_default_config,
)
from tempcrate.errors import ConfigurationError
from tempcrate.provisioner import VcsKind


@pytest.fixture
def config_file(tmp_path):
    """Write a configuration file and return its path."""
    path = tmp_path / "config.toml"

    def write(content: str):
        path.write_text(content, encoding="utf-8")
        return path

    return write


@pytest.fixture(autouse=True)
def clean_environment(monkeypatch):
    monkeypatch.delenv(CONFIG_FILE_VARIABLE, raising=False)
    for name in ("TEMPCRATE_PROMPT", "TEMPCRATE_EDITOR", "TEMPCRATE_VCS"):
        monkeypatch.delenv(name, raising=False)


class TestDefaults:

    def test_default_values(self):
        settings = TempcrateSettings()

        assert settings.temporary_project_dir == user_cache_path("tempcrate")
        assert settings.preserved_project_dir is None
        assert settings.prompt is False
        assert settings.welcome_message is True
        assert settings.vcs == VcsKind.GIT
        assert settings.subprocesses == []
        assert settings.depth_policy.is_unbounded

    def test_missing_file_is_created(self, tmp_path):
        path = tmp_path / "nested" / "config.toml"

        settings = load_settings(path)

        assert path.is_file()
        assert settings.temporary_project_dir == user_cache_path("tempcrate")

    def test_created_file_is_valid_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        write_default_config(path)

        data = tomllib.loads(path.read_text(encoding="utf-8"))
        assert data["prompt"] is False
        assert data["vcs"] == "git"


class TestLoadFromFile:

    def test_values_are_read(self, config_file, tmp_path):
        path = config_file(
            f'temporary_project_dir = "{tmp_path / "projects"}"\n'
            "prompt = true\n"
            'editor = "code"\n'
            'editor_args = ["--wait"]\n'
            'vcs = "none"\n'
            "git_repo_depth = 3\n"
        )

        settings = load_settings(path)

        assert settings.temporary_project_dir == tmp_path / "projects"
        assert settings.prompt is True
        assert settings.editor == "code"
        assert settings.editor_args == ["--wait"]
        assert settings.vcs == VcsKind.NONE
        assert settings.depth_policy.commits == 3

    def test_subprocess_tables(self, config_file):
        path = config_file(
            "[[subprocess]]\n"
            'command = "cargo watch -x check"\n'
            "\n"
            "[[subprocess]]\n"
            'command = "cargo fetch"\n'
            "foreground = true\n"
            "keep_on_exit = false\n"
        )

        settings = load_settings(path)

        watch, fetch = settings.subprocesses
        assert watch.command == "cargo watch -x check"
        assert watch.foreground is False
        assert fetch.foreground is True

    def test_tilde_is_expanded(self, config_file):
        settings = load_settings(config_file('preserved_project_dir = "~/projects"\n'))
        assert "~" not in str(settings.preserved_project_dir)

    def test_depth_true_means_one_commit(self, config_file):
        settings = load_settings(config_file("git_repo_depth = true\n"))
        assert settings.depth_policy.commits == 1

    def test_log_level_normalized(self, config_file):
        settings = load_settings(config_file('log_level = "debug"\n'))
        assert settings.log_level == "DEBUG"


class TestPrecedence:

    def test_environment_overrides_file(self, config_file, monkeypatch):
        monkeypatch.setenv("TEMPCRATE_PROMPT", "true")
        settings = load_settings(config_file("prompt = false\n"))
        assert settings.prompt is True

    def test_overrides_beat_environment(self, config_file, monkeypatch):
        monkeypatch.setenv("TEMPCRATE_EDITOR", "vim")
        settings = load_settings(config_file('editor = "nano"\n'), editor="code")
        assert settings.editor == "code"

    def test_config_file_variable(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_FILE_VARIABLE, str(tmp_path / "custom.toml"))
        assert default_config_file() == tmp_path / "custom.toml"


class TestInvalidConfiguration:

    @pytest.mark.parametrize(
        "content",
        [
            "prompt = \n",
            "git_repo_depth = 0\n",
            "command_timeout_seconds = -1\n",
            'log_level = "chatty"\n',
            'vcs = "svn"\n',
            "unknown_setting = 1\n",
            "[[subprocess]]\nforeground = true\n",
        ],
    )
    def test_raises_configuration_error(self, config_file, content):
        path = config_file(content)
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(path)
        assert exc_info.value.config_file == path
        assert str(path) in str(exc_info.value)
