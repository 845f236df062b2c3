"""Resolve settings from environment, config file and defaults."""

import os
import shutil
from dataclasses import dataclass

import yaml

BREW_CANDIDATES = [
    "/opt/homebrew/bin/brew",  # Apple Silicon
    "/usr/local/bin/brew",  # Intel
    "/home/linuxbrew/.linuxbrew/bin/brew",  # Linux
]
DEFAULT_CACHE_MAX_AGE = 300.0


class ConfigError(ValueError):
    pass


@dataclass
class Settings:
    brew_path: str
    cache_dir: str
    cache_max_age: float


def _xdg_dir(var: str, fallback: str) -> str:
    return os.environ.get(var) or os.path.join(os.path.expanduser("~"), fallback)


def config_path() -> str:
    """CELLAR_CONFIG → $XDG_CONFIG_HOME/cellar/config.yaml."""
    return os.environ.get("CELLAR_CONFIG") or os.path.join(
        _xdg_dir("XDG_CONFIG_HOME", ".config"), "cellar", "config.yaml"
    )


def read_config_file(path: str | None = None) -> dict:
    """Parse the YAML config file. Missing file → empty config."""
    path = path or config_path()
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        return {}
    except yaml.YAMLError as e:
        raise ConfigError(f"{path}: invalid YAML: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a mapping, got {type(data).__name__}")
    return data


def resolve_brew_path(file_config: dict | None = None) -> str:
    """Resolve the brew binary.

    Order: CELLAR_BREW_PATH env → brew_path in config → known install
    locations → brew on PATH → Apple Silicon default.
    """
    file_config = file_config or {}
    configured = os.environ.get("CELLAR_BREW_PATH") or file_config.get("brew_path")
    if configured:
        return os.path.expanduser(str(configured))

    for candidate in BREW_CANDIDATES:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate

    return shutil.which("brew") or BREW_CANDIDATES[0]


def resolve_cache_dir(file_config: dict | None = None) -> str:
    file_config = file_config or {}
    configured = os.environ.get("CELLAR_CACHE_DIR") or file_config.get("cache_dir")
    if configured:
        return os.path.expanduser(str(configured))
    return os.path.join(_xdg_dir("XDG_CACHE_HOME", ".cache"), "cellar")


def resolve_cache_max_age(file_config: dict | None = None) -> float:
    file_config = file_config or {}
    raw = os.environ.get("CELLAR_CACHE_MAX_AGE") or file_config.get("cache_max_age")
    if raw is None or raw == "":
        return DEFAULT_CACHE_MAX_AGE
    try:
        value = float(raw)
    except (TypeError, ValueError):
        raise ConfigError(f"cache max age must be a number of seconds, got {raw!r}") from None
    if value < 0:
        raise ConfigError(f"cache max age must not be negative, got {raw!r}")
    return value


def load_settings(path: str | None = None) -> Settings:
    file_config = read_config_file(path)
    return Settings(
        brew_path=resolve_brew_path(file_config),
        cache_dir=resolve_cache_dir(file_config),
        cache_max_age=resolve_cache_max_age(file_config),
    )
