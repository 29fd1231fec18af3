# =============================================================================
# tests/unit/test_config.py
# Unit Tests for Configuration Loading
# =============================================================================

import pytest
from pathlib import Path


CONFIG_TOML = """
[storage]
db_path = "data/device.db"

[remote]
provider = "http"
url = "https://sync.example.org/api"

[sync]
interval = 15
batch_size = 20
"""


class TestLoadConfig:
    """Test layered configuration"""

    def test_defaults_with_only_server_url(self, tmp_path, monkeypatch):
        from gramsehat_core.config import load_config

        monkeypatch.chdir(tmp_path)
        config = load_config(environ={"GRAMSEHAT_REMOTE_URL": "https://sync.example.org"})

        assert config.remote_provider == "http"
        assert config.batch_size == 50
        assert config.max_retry_attempts == 5
        assert config.sync_interval == 30.0

    def test_toml_values_are_coerced(self, tmp_path):
        from gramsehat_core.config import load_config

        path = tmp_path / "gramsehat.toml"
        path.write_text(CONFIG_TOML)

        config = load_config(path, environ={})

        assert config.db_path == Path("data/device.db")
        assert config.remote_url == "https://sync.example.org/api"
        assert config.sync_interval == 15.0
        assert config.batch_size == 20

    def test_environment_overrides_file(self, tmp_path):
        from gramsehat_core.config import load_config

        path = tmp_path / "gramsehat.toml"
        path.write_text(CONFIG_TOML)

        config = load_config(path, environ={
            "GRAMSEHAT_BATCH_SIZE": "5",
            "GRAMSEHAT_LOG_TO_FILE": "yes",
        })

        assert config.batch_size == 5
        assert config.log_to_file is True

    def test_unconfigured_server_is_refused(self, tmp_path, monkeypatch):
        """Without a server address nothing may be acked"""
        from gramsehat_core.config import load_config
        from gramsehat_core.errors import ConfigurationError

        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(environ={})
        assert exc_info.value.details["config_key"] == "remote_url"

    def test_mock_server_only_when_named(self, tmp_path, monkeypatch):
        from gramsehat_core.config import load_config

        monkeypatch.chdir(tmp_path)
        config = load_config(environ={"GRAMSEHAT_REMOTE_PROVIDER": "mock"})

        assert config.remote_provider == "mock"

    def test_explicit_missing_file_raises(self, tmp_path):
        from gramsehat_core.config import load_config
        from gramsehat_core.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            load_config(tmp_path / "absent.toml", environ={})

    def test_malformed_toml_raises(self, tmp_path):
        from gramsehat_core.config import load_config
        from gramsehat_core.errors import ConfigurationError

        path = tmp_path / "gramsehat.toml"
        path.write_text("[sync\ninterval = ")

        with pytest.raises(ConfigurationError):
            load_config(path, environ={})

    def test_non_numeric_value_raises(self, tmp_path, monkeypatch):
        from gramsehat_core.config import load_config
        from gramsehat_core.errors import ConfigurationError

        monkeypatch.chdir(tmp_path)
        with pytest.raises(ConfigurationError) as exc_info:
            load_config(environ={"GRAMSEHAT_REMOTE_PROVIDER": "mock", "GRAMSEHAT_BATCH_SIZE": "many"})
        assert exc_info.value.details["config_key"] == "batch_size"


class TestValidate:
    """Test AppConfig.validate"""

    def test_unknown_provider(self):
        from gramsehat_core.config import AppConfig
        from gramsehat_core.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            AppConfig(remote_provider="ftp").validate()

    def test_http_needs_url(self):
        from gramsehat_core.config import AppConfig
        from gramsehat_core.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            AppConfig(remote_provider="http").validate()

    def test_supabase_needs_credentials(self):
        from gramsehat_core.config import AppConfig
        from gramsehat_core.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            AppConfig(remote_provider="supabase", supabase_url="https://x.supabase.co").validate()

    def test_retry_ceiling_must_be_positive(self):
        from gramsehat_core.config import AppConfig
        from gramsehat_core.errors import ConfigurationError

        with pytest.raises(ConfigurationError):
            AppConfig(max_retry_attempts=0).validate()
