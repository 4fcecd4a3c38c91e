"""Where pullmirror looks for its config and keeps its database.

Follows the XDG base directory layout:
https://specifications.freedesktop.org/basedir-spec/latest/
"""

from __future__ import annotations

import os
from pathlib import Path

APP_NAME = "pullmirror"

CONFIG_ENV_VAR = "PULLMIRROR_CONFIG"
LOCAL_CONFIG_FILENAME = "pullmirror.yaml"
CONFIG_FILENAME = "config.yaml"
DEFAULT_DATABASE_NAME = "pullmirror.db"


def _xdg_home(variable: str, *fallback: str) -> Path:
    value = os.environ.get(variable)
    if value:
        return Path(value).expanduser()
    return Path.home().joinpath(*fallback)


def config_dir() -> Path:
    """``$XDG_CONFIG_HOME/pullmirror``, defaulting to ``~/.config/pullmirror``."""
    return _xdg_home("XDG_CONFIG_HOME", ".config") / APP_NAME


def data_dir() -> Path:
    """``$XDG_DATA_HOME/pullmirror``, defaulting to ``~/.local/share/pullmirror``."""
    return _xdg_home("XDG_DATA_HOME", ".local", "share") / APP_NAME


def default_database_path() -> Path:
    return data_dir() / DEFAULT_DATABASE_NAME


def config_candidates() -> list[Path]:
    """Config file locations in lookup order.

    ``$PULLMIRROR_CONFIG`` comes first when set, then ``./pullmirror.yaml``,
    then ``config.yaml`` in the XDG config directory.
    """
    candidates: list[Path] = []
    from_env = os.environ.get(CONFIG_ENV_VAR)
    if from_env:
        candidates.append(Path(from_env).expanduser().resolve())
    candidates.append(Path.cwd() / LOCAL_CONFIG_FILENAME)
    candidates.append(config_dir() / CONFIG_FILENAME)
    return candidates
