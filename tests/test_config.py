"""Tests for workspace discovery, .beans.yml parsing, and settings."""

from __future__ import annotations

import logging
from pathlib import Path

import pytest

from beanpole.config import (
    BeansConfig,
    find_workspace_root,
    load_settings,
    parse_beans_config,
    read_beans_config,
)
from beanpole.model import TYPES


class TestFindWorkspaceRoot:
    def test_finds_config_in_parent(self, tmp_path: Path) -> None:
        (tmp_path / ".beans.yml").write_text("beans:\n  prefix: proj\n")
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_workspace_root(nested) == tmp_path.resolve()

    def test_finds_beans_dir(self, tmp_path: Path) -> None:
        (tmp_path / ".beans").mkdir()
        assert find_workspace_root(tmp_path) == tmp_path.resolve()

    def test_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            find_workspace_root(tmp_path)


class TestReadBeansConfig:
    def test_missing_file(self, tmp_path: Path) -> None:
        assert read_beans_config(tmp_path) is None

    def test_nested_section(self, tmp_path: Path) -> None:
        (tmp_path / ".beans.yml").write_text(
            "beans:\n  path: work\n  prefix: proj-\n  id_length: 6\n  default_type: bug\n"
        )
        config = read_beans_config(tmp_path)
        assert config == BeansConfig(path="work", prefix="proj-", id_length=6, default_type="bug")

    def test_flat_keys_and_custom_types(self, tmp_path: Path) -> None:
        (tmp_path / ".beans.yml").write_text("prefix: x\ntypes: [task, spike]\n")
        config = read_beans_config(tmp_path)
        assert config is not None
        assert config.prefix == "x"
        assert config.types == ("task", "spike")

    def test_empty_file_gives_defaults(self, tmp_path: Path) -> None:
        (tmp_path / ".beans.yml").write_text("")
        assert read_beans_config(tmp_path) == BeansConfig()

    def test_corrupt_yaml(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        (tmp_path / ".beans.yml").write_text("beans: [unclosed\n")
        with caplog.at_level(logging.WARNING, logger="beanpole.config"):
            assert read_beans_config(tmp_path) is None
        assert "Failed to read" in caplog.text

    def test_non_mapping(self, tmp_path: Path) -> None:
        (tmp_path / ".beans.yml").write_text("- a\n- b\n")
        assert read_beans_config(tmp_path) is None

    def test_bad_id_length(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="beanpole.config"):
            config = parse_beans_config({"beans": {"id_length": "many"}})
        assert config.id_length == 4
        assert "id_length" in caplog.text

    def test_default_config(self) -> None:
        config = BeansConfig()
        assert config.types == TYPES
        assert config.path == ".beans"


class TestLoadSettings:
    def test_defaults(self, tmp_path: Path) -> None:
        settings = load_settings({}, workspace=tmp_path)
        assert settings.workspace_root == tmp_path.resolve()
        assert settings.cli_path == "beans"
        assert settings.default_sort_mode == "status-priority-type-title"
        assert settings.timeout == 30.0
        assert settings.max_ancestor_depth == 8
        assert settings.beans_dir == tmp_path.resolve() / ".beans"

    def test_env_overrides(self, tmp_path: Path) -> None:
        env = {
            "BEANPOLE_WORKSPACE": str(tmp_path),
            "BEANPOLE_CLI_PATH": "/opt/beans",
            "BEANPOLE_SORT_MODE": "updated",
            "BEANPOLE_LOG_LEVEL": "debug",
            "BEANPOLE_TIMEOUT": "5",
            "BEANPOLE_MAX_DEPTH": "12",
        }
        settings = load_settings(env)
        assert settings.workspace_root == tmp_path.resolve()
        assert settings.cli_path == "/opt/beans"
        assert settings.default_sort_mode == "updated"
        assert settings.log_level == "DEBUG"
        assert settings.timeout == 5.0
        assert settings.max_ancestor_depth == 12

    def test_explicit_args_win(self, tmp_path: Path) -> None:
        settings = load_settings({"BEANPOLE_CLI_PATH": "/env/beans"}, workspace=tmp_path, cli_path="/arg/beans")
        assert settings.cli_path == "/arg/beans"

    def test_unknown_sort_mode(self, tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.WARNING, logger="beanpole.config"):
            settings = load_settings({"BEANPOLE_SORT_MODE": "shuffle"}, workspace=tmp_path)
        assert settings.default_sort_mode == "status-priority-type-title"
        assert "shuffle" in caplog.text

    @pytest.mark.parametrize("raw", ["abc", "-1", "0"])
    def test_bad_timeout(self, tmp_path: Path, raw: str) -> None:
        assert load_settings({"BEANPOLE_TIMEOUT": raw}, workspace=tmp_path).timeout == 30.0
