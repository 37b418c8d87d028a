"""Workspace discovery, .beans.yml parsing, and runtime settings.

Convention-based discovery: a beans workspace is the nearest directory
(walking up from cwd) holding ``.beans.yml`` or a ``.beans/`` directory.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from beanpole.model import PRIORITIES, STATUSES, TYPES
from beanpole.reparent import MAX_ANCESTOR_DEPTH
from beanpole.sorting import DEFAULT_SORT_MODE, VALID_SORT_MODES

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".beans.yml"
BEANS_DIR_NAME = ".beans"
LOG_FILENAME = "beanpole.log"
DEFAULT_CLI_PATH = "beans"
DEFAULT_TIMEOUT = 30.0


@dataclass(frozen=True)
class BeansConfig:
    """Workspace configuration read from .beans.yml."""

    path: str = BEANS_DIR_NAME
    prefix: str = ""
    id_length: int = 4
    default_status: str = "todo"
    default_type: str = "task"
    types: tuple[str, ...] = TYPES
    statuses: tuple[str, ...] = STATUSES
    priorities: tuple[str, ...] = PRIORITIES


def find_workspace_root(start: Path | None = None) -> Path:
    """Walk up from start (default cwd) to the first beans workspace.

    Returns the workspace root (the directory holding .beans.yml / .beans/).
    """
    current = (start or Path.cwd()).resolve()
    for parent in [current, *current.parents]:
        if (parent / CONFIG_FILENAME).is_file() or (parent / BEANS_DIR_NAME).is_dir():
            return parent
    msg = f"No {CONFIG_FILENAME} or {BEANS_DIR_NAME}/ found in {current} or any parent"
    raise FileNotFoundError(msg)


def _str_tuple(value: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    if isinstance(value, list) and value and all(isinstance(v, str) for v in value):
        return tuple(value)
    return default


def parse_beans_config(data: Mapping[str, Any]) -> BeansConfig:
    """Build a ``BeansConfig`` from parsed YAML.

    Accepts the CLI's nested ``beans:`` section as well as flat top-level keys;
    nested keys win.
    """
    section = data.get("beans")
    merged: dict[str, Any] = dict(data)
    if isinstance(section, Mapping):
        merged.update(section)
    defaults = BeansConfig()
    try:
        id_length = int(merged.get("id_length", defaults.id_length))
    except (TypeError, ValueError):
        logger.warning("Invalid id_length %r in %s; using %d", merged.get("id_length"), CONFIG_FILENAME, defaults.id_length)
        id_length = defaults.id_length
    return BeansConfig(
        path=str(merged.get("path") or defaults.path),
        prefix=str(merged.get("prefix") or ""),
        id_length=id_length,
        default_status=str(merged.get("default_status") or defaults.default_status),
        default_type=str(merged.get("default_type") or defaults.default_type),
        types=_str_tuple(merged.get("types"), defaults.types),
        statuses=_str_tuple(merged.get("statuses"), defaults.statuses),
        priorities=_str_tuple(merged.get("priorities"), defaults.priorities),
    )


def read_beans_config(workspace_root: Path) -> BeansConfig | None:
    """Read <workspace_root>/.beans.yml. Returns None if missing or corrupt."""
    config_path = workspace_root / CONFIG_FILENAME
    if not config_path.exists():
        return None
    try:
        data = yaml.safe_load(config_path.read_text())
    except (yaml.YAMLError, OSError) as exc:
        logger.warning("Failed to read %s: %s", config_path, exc)
        return None
    if data is None:
        return BeansConfig()
    if not isinstance(data, Mapping):
        logger.warning("Ignoring %s: expected a mapping, got %s", config_path, type(data).__name__)
        return None
    return parse_beans_config(data)


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the CLI and MCP entry points."""

    workspace_root: Path = field(default_factory=Path.cwd)
    cli_path: str = DEFAULT_CLI_PATH
    default_sort_mode: str = DEFAULT_SORT_MODE
    log_level: str = "INFO"
    timeout: float = DEFAULT_TIMEOUT
    max_ancestor_depth: int = MAX_ANCESTOR_DEPTH

    @property
    def beans_dir(self) -> Path:
        return self.workspace_root / BEANS_DIR_NAME


def _env_number(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if raw is None or raw == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("Invalid %s=%r; using %s", key, raw, default)
        return default
    if value <= 0:
        logger.warning("%s must be positive, got %r; using %s", key, raw, default)
        return default
    return value


def load_settings(
    env: Mapping[str, str] | None = None,
    *,
    workspace: Path | None = None,
    cli_path: str | None = None,
) -> Settings:
    """Resolve settings from explicit arguments, then BEANPOLE_* env vars, then defaults."""
    env = os.environ if env is None else env

    if workspace is None and env.get("BEANPOLE_WORKSPACE"):
        workspace = Path(env["BEANPOLE_WORKSPACE"])
    if workspace is None:
        try:
            workspace = find_workspace_root()
        except FileNotFoundError:
            workspace = Path.cwd()

    sort_mode = env.get("BEANPOLE_SORT_MODE") or DEFAULT_SORT_MODE
    if sort_mode not in VALID_SORT_MODES:
        logger.warning("Unknown sort mode '%s' in BEANPOLE_SORT_MODE, falling back to '%s'", sort_mode, DEFAULT_SORT_MODE)
        sort_mode = DEFAULT_SORT_MODE

    return Settings(
        workspace_root=workspace.resolve(),
        cli_path=cli_path or env.get("BEANPOLE_CLI_PATH") or DEFAULT_CLI_PATH,
        default_sort_mode=sort_mode,
        log_level=(env.get("BEANPOLE_LOG_LEVEL") or "INFO").upper(),
        timeout=_env_number(env, "BEANPOLE_TIMEOUT", DEFAULT_TIMEOUT),
        max_ancestor_depth=int(_env_number(env, "BEANPOLE_MAX_DEPTH", MAX_ANCESTOR_DEPTH)),
    )
