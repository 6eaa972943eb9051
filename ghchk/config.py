"""
Configuration management for gh-chk.

Loads:
- ~/.config/gh-chk/config.yml: token, tracked items, worker and rate settings
- ~/.config/gh/hosts.yml: the GitHub CLI's stored token, if any

Everything is resolved once into an immutable Settings value; nothing below
the CLI reads the environment directly.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml


logger = logging.getLogger(__name__)

ENV_XDG_CONFIG_HOME = "XDG_CONFIG_HOME"
ENV_XDG_STATE_HOME = "XDG_STATE_HOME"
ENV_HOME = "HOME"
ENV_GITHUB_TOKEN = "GITHUB_TOKEN"
ENV_MOCK_FILE = "GH_CHK_MOCK_FILE"

APP_DIR = "gh-chk"
CONFIG_FILENAME = "config.yml"
GITHUB_HOST = "github.com"


@dataclass(frozen=True)
class RateLimitConfig:
    """Outbound request budget shared by all workers."""
    rate: float = 1.0  # tokens per second
    burst: int = 5


@dataclass(frozen=True)
class Settings:
    """Complete gh-chk configuration."""
    token: str | None = None
    token_source: str | None = None  # hosts.yml, config.yml or env
    state_dir: Path = Path(".gh-chk")
    tracked: tuple[str, ...] = ()
    max_workers: int = 4
    rate_limit: RateLimitConfig = field(default_factory=RateLimitConfig)
    max_retries: int = 0
    timeout: float = 30.0
    mock_file: Path | None = None

    @classmethod
    def load(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """Load configuration from the config file and environment."""
        env = os.environ if environ is None else environ
        data = _read_yaml(get_config_path(env))

        token, source = resolve_token(env, data)

        state_dir = data.get("state_dir")
        rate_data = data.get("rate_limit") or {}
        if not isinstance(rate_data, dict):
            rate_data = {}
        tracked = data.get("tracked") or []
        if not isinstance(tracked, list):
            logger.warning("Ignoring 'tracked' in config: expected a list")
            tracked = []

        return cls(
            token=token,
            token_source=source,
            state_dir=Path(state_dir).expanduser() if state_dir else get_state_dir(env),
            tracked=tuple(str(item) for item in tracked),
            max_workers=max(1, _number(data, "max_workers", 4, int)),
            rate_limit=RateLimitConfig(
                rate=_number(rate_data, "rate", 1.0, float),
                burst=_number(rate_data, "burst", 5, int),
            ),
            max_retries=max(0, _number(data, "max_retries", 0, int)),
            timeout=_number(data, "timeout", 30.0, float),
            mock_file=Path(env[ENV_MOCK_FILE]) if env.get(ENV_MOCK_FILE) else None,
        )


def _base_dir(env: Mapping[str, str], xdg_key: str, home_suffix: tuple[str, ...], fallback: str) -> Path:
    if env.get(xdg_key):
        return Path(env[xdg_key])
    if env.get(ENV_HOME):
        return Path(env[ENV_HOME]).joinpath(*home_suffix)
    return Path(fallback)


def get_config_dir(env: Mapping[str, str]) -> Path:
    return _base_dir(env, ENV_XDG_CONFIG_HOME, (".config",), ".config")


def get_config_path(env: Mapping[str, str]) -> Path:
    """Path of the gh-chk config file."""
    return get_config_dir(env) / APP_DIR / CONFIG_FILENAME


def get_gh_hosts_path(env: Mapping[str, str]) -> Path:
    """Path of the GitHub CLI's hosts file."""
    return get_config_dir(env) / "gh" / "hosts.yml"


def get_state_dir(env: Mapping[str, str]) -> Path:
    """Directory holding assignee snapshots."""
    if not env.get(ENV_XDG_STATE_HOME) and not env.get(ENV_HOME):
        return Path(".gh-chk")
    return _base_dir(env, ENV_XDG_STATE_HOME, (".local", "state"), ".local/state") / APP_DIR


def resolve_token(env: Mapping[str, str], config_data: dict[str, Any]) -> tuple[str | None, str | None]:
    """
    Resolve the GitHub token.

    Order: gh CLI hosts.yml, gh-chk config.yml, GITHUB_TOKEN.

    Returns:
        (token, source) or (None, None)
    """
    hosts = _read_yaml(get_gh_hosts_path(env))
    entry = hosts.get(GITHUB_HOST)
    if isinstance(entry, dict) and entry.get("oauth_token"):
        return str(entry["oauth_token"]), "hosts.yml"

    if config_data.get("token"):
        return str(config_data["token"]), CONFIG_FILENAME

    if env.get(ENV_GITHUB_TOKEN):
        return env[ENV_GITHUB_TOKEN], "env"

    return None, None


def _number(data: dict[str, Any], key: str, default, cast):
    value = data.get(key, default)
    try:
        return cast(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring invalid %s in config: %r", key, value)
        return default


def _read_yaml(path: Path) -> dict[str, Any]:
    """Read a YAML mapping; missing or invalid files yield an empty dict."""
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning("Ignoring unreadable config %s: %s", path, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: expected a mapping", path)
        return {}
    return data
