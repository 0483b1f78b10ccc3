"""
Tests for configuration resolution.
"""

import stat

import pytest
import yaml

from dev_timr.config import TimrConfig, load_config, save_settings
from dev_timr.exceptions import ConfigurationError


class TestLoadConfig:
    """Tests for environment, settings file and defaults."""

    def test_defaults(self, tmp_path):
        config = load_config(tmp_path, env={})

        assert config.supabase_url is None
        assert config.max_sync_attempts == 10
        assert config.refresh_window_hours == 24
        assert config.poll_max_attempts == 60
        assert config.auth_file == tmp_path / "auth.json"
        assert config.queue_file == tmp_path / "queue.json"
        assert config.is_configured() is False

    def test_settings_file(self, tmp_path):
        (tmp_path / "settings.yaml").write_text(
            yaml.safe_dump(
                {
                    "supabase_url": "https://abc.supabase.co/",
                    "supabase_anon_key": "anon",
                    "github_client_id": "Iv1.x",
                    "max_sync_attempts": 5,
                }
            )
        )

        config = load_config(tmp_path, env={})

        assert config.supabase_url == "https://abc.supabase.co"
        assert config.max_sync_attempts == 5
        assert config.is_configured() is True

    def test_environment_wins(self, tmp_path):
        (tmp_path / "settings.yaml").write_text("supabase_url: https://file.supabase.co\n")

        config = load_config(tmp_path, env={"SUPABASE_URL": "https://env.supabase.co"})

        assert config.supabase_url == "https://env.supabase.co"

    def test_config_dir_from_environment(self, tmp_path):
        config = load_config(env={"DEV_TIMR_CONFIG_DIR": str(tmp_path / "alt")})
        assert config.config_dir == tmp_path / "alt"

    @pytest.mark.parametrize("content", ["{not: [valid", "- just\n- a list\n"])
    def test_broken_settings_ignored(self, tmp_path, content):
        (tmp_path / "settings.yaml").write_text(content)

        config = load_config(tmp_path, env={})

        assert config.supabase_url is None

    def test_ledger_path(self, tmp_path):
        assert TimrConfig().ledger_path(tmp_path) == tmp_path / ".dev-clock.json"


class TestRequireConfigured:
    """Tests for the missing-configuration error."""

    def test_names_missing_settings(self, tmp_path):
        config = TimrConfig(supabase_url="https://x.supabase.co", config_dir=tmp_path)

        with pytest.raises(ConfigurationError) as exc_info:
            config.require_configured()

        assert exc_info.value.missing == ["supabase_anon_key", "github_client_id"]


class TestSaveSettings:
    """Tests for persisting settings."""

    def test_merges_and_reloads(self, tmp_path):
        config_dir = tmp_path / "cfg"
        config = TimrConfig(config_dir=config_dir)

        save_settings(config, {"supabase_url": "https://a.supabase.co", "github_client_id": None})
        updated = save_settings(config, {"supabase_anon_key": "anon"})

        assert updated.supabase_url == "https://a.supabase.co"
        assert updated.supabase_anon_key == "anon"
        assert "github_client_id" not in yaml.safe_load(config.settings_file.read_text())
        assert stat.S_IMODE(config.settings_file.stat().st_mode) == 0o600
