"""
Configuration for dev-timr.

Values are resolved in priority order: environment variables, then
``~/.dev-timr/settings.yaml``, then built-in defaults.

```yaml
supabase_url: "https://abc.supabase.co"
supabase_anon_key: "..."
github_client_id: "Iv1.abc123"
request_timeout_seconds: 30
```
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIR = Path.home() / ".dev-timr"
LEDGER_FILENAME = ".dev-clock.json"

ENV_KEYS = {
    "supabase_url": "SUPABASE_URL",
    "supabase_anon_key": "SUPABASE_ANON_KEY",
    "github_client_id": "GITHUB_CLIENT_ID",
}


@dataclass
class TimrConfig:
    """Resolved dev-timr configuration."""

    supabase_url: str | None = None
    supabase_anon_key: str | None = None
    github_client_id: str | None = None
    config_dir: Path = field(default_factory=lambda: DEFAULT_CONFIG_DIR)
    ledger_filename: str = LEDGER_FILENAME

    # Network
    request_timeout_seconds: float = 30.0

    # Sync / credential policy
    max_sync_attempts: int = 10
    refresh_window_hours: int = 24
    poll_max_attempts: int = 60

    @property
    def auth_file(self) -> Path:
        return self.config_dir / "auth.json"

    @property
    def queue_file(self) -> Path:
        return self.config_dir / "queue.json"

    @property
    def settings_file(self) -> Path:
        return self.config_dir / "settings.yaml"

    def ledger_path(self, cwd: Path | None = None) -> Path:
        """Ledger file for a working directory (defaults to the process cwd)."""
        return (cwd or Path.cwd()) / self.ledger_filename

    def missing(self) -> list[str]:
        """Names of required settings that are not set."""
        return [name for name in ENV_KEYS if not getattr(self, name)]

    def is_configured(self) -> bool:
        return not self.missing()

    def require_configured(self) -> None:
        """Raise ConfigurationError if the remote service is not configured."""
        missing = self.missing()
        if missing:
            raise ConfigurationError(missing)


def _load_settings(settings_file: Path) -> dict[str, Any]:
    """Load settings from YAML file; a broken file yields no settings."""
    if not settings_file.exists():
        return {}

    try:
        data = yaml.safe_load(settings_file.read_text())
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Ignoring unreadable settings file {settings_file}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Ignoring settings file {settings_file}: expected a mapping")
        return {}
    return data


def load_config(config_dir: Path | None = None, env: dict[str, str] | None = None) -> TimrConfig:
    """Resolve configuration from environment, settings file and defaults.

    Args:
        config_dir: Override the configuration directory
        env: Environment mapping (defaults to ``os.environ``)

    Returns:
        The resolved TimrConfig
    """
    env = os.environ if env is None else env

    if config_dir is None:
        env_dir = env.get("DEV_TIMR_CONFIG_DIR")
        config_dir = Path(env_dir).expanduser() if env_dir else DEFAULT_CONFIG_DIR

    config = TimrConfig(config_dir=config_dir)
    settings = _load_settings(config.settings_file)

    for name in (
        "supabase_url",
        "supabase_anon_key",
        "github_client_id",
        "ledger_filename",
        "request_timeout_seconds",
        "max_sync_attempts",
        "refresh_window_hours",
        "poll_max_attempts",
    ):
        if settings.get(name) is not None:
            setattr(config, name, settings[name])

    for name, env_key in ENV_KEYS.items():
        if env.get(env_key):
            setattr(config, name, env[env_key])

    if config.supabase_url:
        config.supabase_url = config.supabase_url.rstrip("/")

    return config


def ensure_config_dir(config_dir: Path) -> None:
    """Create the configuration directory readable only by its owner."""
    config_dir.mkdir(parents=True, exist_ok=True)
    try:
        config_dir.chmod(0o700)
    except OSError as e:
        logger.debug(f"Could not restrict permissions on {config_dir}: {e}")


def save_settings(config: TimrConfig, updates: dict[str, Any]) -> TimrConfig:
    """Merge updates into settings.yaml and return the reloaded config.

    Only provided (non-None) values are written.
    """
    settings = _load_settings(config.settings_file)
    settings.update({k: v for k, v in updates.items() if v is not None})

    ensure_config_dir(config.config_dir)
    config.settings_file.write_text(yaml.safe_dump(settings, default_flow_style=False))
    config.settings_file.chmod(0o600)

    return load_config(config.config_dir)
