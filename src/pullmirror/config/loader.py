"""Loading pullmirror.yaml into a validated Config.

A config file is optional for most commands: ``load_config(required=False)``
falls back to the built-in defaults when discovery finds nothing. String
values may reference environment variables as ``${NAME}``.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml
from pydantic import ValidationError

from pullmirror.config.schema import Config
from pullmirror.paths import CONFIG_ENV_VAR, config_candidates

if TYPE_CHECKING:
    from collections.abc import Sequence

__all__ = [
    "CONFIG_ENV_VAR",
    "ConfigError",
    "ConfigNotFoundError",
    "ConfigValidationError",
    "EnvironmentVariableError",
    "discover_config_path",
    "expand_env_vars",
    "load_config",
]

ENV_REFERENCE = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)\}")


class ConfigError(Exception):
    """Configuration could not be loaded.

    Attributes:
        path: Config file involved, when known
    """

    def __init__(self, message: str, path: Path | None = None) -> None:
        self.path = path
        super().__init__(message)


class ConfigNotFoundError(ConfigError):
    """No config file exists at the requested or discovered locations."""

    def __init__(self, searched: Sequence[Path]) -> None:
        self.searched = list(searched)
        if len(self.searched) == 1:
            message = f"Config file not found: {self.searched[0]}"
        else:
            listing = "".join(f"\n  - {p}" for p in self.searched)
            message = f"No config file found. Searched locations:{listing}"
        super().__init__(message, self.searched[0] if len(self.searched) == 1 else None)


class ConfigValidationError(ConfigError):
    """The file parsed but does not match the Config schema.

    Attributes:
        validation_errors: Raw pydantic error dicts
    """

    def __init__(
        self,
        message: str,
        path: Path | None = None,
        validation_errors: list[dict[str, Any]] | None = None,
    ) -> None:
        self.validation_errors = validation_errors or []
        super().__init__(message, path)


class EnvironmentVariableError(ConfigError):
    """A ``${NAME}`` reference points at an unset variable."""

    def __init__(self, var_name: str, path: Path | None = None) -> None:
        self.var_name = var_name
        super().__init__(
            f"Environment variable '{var_name}' is not set. "
            "Set it or update your config to use a different value.",
            path,
        )


def expand_env_vars(value: Any, *, strict: bool = True) -> Any:
    """Substitute ``${NAME}`` references inside strings, recursing into containers.

    Args:
        value: Parsed YAML value
        strict: Raise for unset variables instead of leaving the reference as is

    Raises:
        EnvironmentVariableError: strict is set and a variable is missing
    """
    if isinstance(value, dict):
        return {key: expand_env_vars(item, strict=strict) for key, item in value.items()}
    if isinstance(value, list):
        return [expand_env_vars(item, strict=strict) for item in value]
    if not isinstance(value, str):
        return value

    def substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in os.environ:
            return os.environ[name]
        if strict:
            raise EnvironmentVariableError(name)
        return match.group(0)

    return ENV_REFERENCE.sub(substitute, value)


def discover_config_path(explicit_path: str | Path | None = None) -> Path:
    """Find the config file to load.

    An explicit path (``--config``) must exist. Otherwise the first existing
    entry of ``pullmirror.paths.config_candidates()`` wins.

    Raises:
        ConfigNotFoundError: Nothing exists where we looked
    """
    if explicit_path:
        path = Path(explicit_path).expanduser().resolve()
        if not path.exists():
            raise ConfigNotFoundError([path])
        return path

    candidates = config_candidates()
    for candidate in candidates:
        if candidate.exists():
            return candidate
    raise ConfigNotFoundError(candidates)


def _read_mapping(path: Path) -> dict[str, Any]:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        msg = f"Cannot read config file: {e}"
        raise ConfigError(msg, path) from e
    except yaml.YAMLError as e:
        msg = f"Invalid YAML syntax: {e}"
        raise ConfigError(msg, path) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = "Config file must contain a YAML mapping (dictionary), not a list or scalar"
        raise ConfigError(msg, path)
    return data


def _validation_failure(error: ValidationError, path: Path) -> ConfigValidationError:
    details = error.errors()
    lines = [
        "  - {}: {}".format(".".join(str(part) for part in detail["loc"]), detail["msg"])
        for detail in details
    ]
    message = f"Config validation failed ({len(details)} error(s)):\n" + "\n".join(lines)
    return ConfigValidationError(
        message, path=path, validation_errors=[dict(detail) for detail in details]
    )


def load_config(
    path: str | Path | None = None,
    *,
    expand_env: bool = True,
    required: bool = True,
) -> Config:
    """Load and validate the configuration.

    Args:
        path: Explicit config file. None means discovery.
        expand_env: Substitute ``${NAME}`` references before validation.
        required: When False and discovery finds nothing, return defaults.
            A missing explicit path is an error either way.

    Returns:
        Validated Config

    Raises:
        ConfigNotFoundError: No file found and one was required
        EnvironmentVariableError: A referenced variable is unset
        ConfigValidationError: The content fails the schema
        ConfigError: The file cannot be read or parsed
    """
    try:
        config_path = discover_config_path(path)
    except ConfigNotFoundError:
        if required or path:
            raise
        return Config()

    raw = _read_mapping(config_path)
    if expand_env:
        try:
            raw = expand_env_vars(raw)
        except EnvironmentVariableError as e:
            e.path = config_path
            raise
    raw.setdefault("version", 1)

    try:
        return Config.model_validate(raw)
    except ValidationError as e:
        raise _validation_failure(e, config_path) from e
