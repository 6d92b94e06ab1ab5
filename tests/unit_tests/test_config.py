"""Tests for configuration loading and server settings."""

import logging
from pathlib import Path

import pytest

from terragon_sandbox.config import (
    generate_config_template,
    load_core_from_dict,
    load_core_from_files,
    load_yaml_config,
)
from terragon_sandbox.config.files import find_config_file, substitute_env_vars
from terragon_server.config import logging_config, settings

MINIMAL_CONFIG = {
    "sandbox": {"default_provider": "daytona", "enabled_providers": ["daytona"]},
    "logging": {"level": "DEBUG"},
}


@pytest.fixture(autouse=True)
def clear_settings_cache():
    settings.load_app_config.cache_clear()
    yield
    settings.load_app_config.cache_clear()


class TestEnvSubstitution:

    def test_braced_and_bare_forms(self, monkeypatch):
        """Test ${VAR} inside strings and a whole-value $VAR are replaced."""
        monkeypatch.setenv("TERRAGON_HOST", "example.com")

        assert substitute_env_vars("https://${TERRAGON_HOST}/api") == "https://example.com/api"
        assert substitute_env_vars("$TERRAGON_HOST") == "example.com"

    def test_unknown_variables_are_kept(self, monkeypatch):
        monkeypatch.delenv("TERRAGON_MISSING", raising=False)

        assert substitute_env_vars("${TERRAGON_MISSING}") == "${TERRAGON_MISSING}"
        assert substitute_env_vars("$TERRAGON_MISSING") == "$TERRAGON_MISSING"

    def test_yaml_values_are_substituted(self, tmp_path, monkeypatch):
        """Test substitution reaches nested mappings and lists."""
        monkeypatch.setenv("TERRAGON_ORIGIN", "https://app.example.com")
        path = tmp_path / "config.yaml"
        path.write_text("server:\n  allowed_origins:\n    - ${TERRAGON_ORIGIN}\n  port: 8000\n")

        assert load_yaml_config(str(path)) == {
            "server": {"allowed_origins": ["https://app.example.com"], "port": 8000}
        }

    def test_missing_and_empty_files(self, tmp_path):
        empty = tmp_path / "empty.yaml"
        empty.write_text("")

        assert load_yaml_config(str(tmp_path / "absent.yaml")) == {}
        assert load_yaml_config(str(empty)) == {}


class TestFindConfigFile:

    def test_env_var_override(self, tmp_path, monkeypatch):
        """Test an explicit path in the environment wins."""
        explicit = tmp_path / "custom.yaml"
        explicit.write_text("sandbox: {}")
        monkeypatch.setenv("TERRAGON_CONFIG_FILE", str(explicit))

        found = find_config_file("sandbox_config.yaml", search_paths=[], env_var="TERRAGON_CONFIG_FILE")

        assert found == explicit

    def test_search_order(self, tmp_path):
        """Test the first search path containing the file is used."""
        first, second = tmp_path / "a", tmp_path / "b"
        first.mkdir()
        second.mkdir()
        (second / "sandbox_config.yaml").write_text("")

        assert find_config_file("sandbox_config.yaml", search_paths=[first, second]) == second / "sandbox_config.yaml"
        assert find_config_file("other.yaml", search_paths=[first, second]) is None


class TestLoadCore:

    def test_from_dict(self, monkeypatch):
        """Test sections map onto config objects and API keys come from the environment."""
        monkeypatch.setenv("DAYTONA_API_KEY", "dtn-key")

        config = load_core_from_dict({
            **MINIMAL_CONFIG,
            "daytona": {"api_key": "ignored", "auto_stop_interval": 30},
            "daemon": None,
        })

        assert config.sandbox.default_provider == "daytona"
        assert config.daytona.api_key == "dtn-key"
        assert config.daytona.auto_stop_interval == 30
        assert config.daemon.daemon_path == "/tmp/terragon-daemon.mjs"
        assert config.logging.level == "DEBUG"
        config.validate_api_keys()

    def test_missing_sections(self):
        with pytest.raises(ValueError, match="Missing required sections.*logging"):
            load_core_from_dict({"sandbox": {"default_provider": "e2b"}})

    def test_missing_default_provider(self):
        with pytest.raises(ValueError, match="default_provider"):
            load_core_from_dict({"sandbox": {}, "logging": {"level": "INFO"}})

    def test_validate_api_keys_lists_missing(self, monkeypatch):
        """Test every enabled provider without a key is reported."""
        monkeypatch.delenv("E2B_API_KEY", raising=False)
        monkeypatch.delenv("DAYTONA_API_KEY", raising=False)
        config = load_core_from_dict({
            "sandbox": {"default_provider": "e2b", "enabled_providers": ["e2b", "daytona"]},
            "logging": {"level": "INFO"},
        })

        with pytest.raises(ValueError) as exc_info:
            config.validate_api_keys()

        assert "DAYTONA_API_KEY" in str(exc_info.value)
        assert "E2B_API_KEY" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_from_files_resolves_bundle_dir(self, tmp_path):
        """Test a relative bundle_dir resolves against the config file."""
        config_path = tmp_path / "sandbox_config.yaml"
        config_path.write_text(
            "sandbox:\n  default_provider: e2b\n"
            "daemon:\n  bundle_dir: ./bundle\n"
            "logging:\n  level: INFO\n"
        )
        env_file = tmp_path / ".env"
        env_file.write_text("")

        config = await load_core_from_files(config_file=config_path, env_file=env_file)

        assert config.config_file_dir == tmp_path
        assert config.resolve_bundle_dir() == tmp_path / "bundle"

    @pytest.mark.asyncio
    async def test_from_files_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="sandbox_config.yaml not found"):
            await load_core_from_files(config_file=tmp_path / "nope.yaml")

    def test_template(self, tmp_path):
        """Test the generated template loads and refuses to overwrite."""
        created = generate_config_template(tmp_path)

        config = load_core_from_dict(load_yaml_config(str(created["sandbox_config.yaml"])))
        assert config.sandbox.enabled_providers == ["e2b", "daytona"]
        assert config.daemon.bundle_dir == "./bundle"

        with pytest.raises(FileExistsError):
            generate_config_template(tmp_path)


class TestServerSettings:

    @pytest.fixture
    def config_file(self, tmp_path, monkeypatch):
        def write(content: str) -> Path:
            path = tmp_path / "sandbox_config.yaml"
            path.write_text(content)
            monkeypatch.setenv("TERRAGON_CONFIG_FILE", str(path))
            settings.load_app_config.cache_clear()
            return path

        return write

    def test_defaults_without_config(self, monkeypatch, tmp_path):
        """Test every getter has a default when no file exists."""
        monkeypatch.delenv("TERRAGON_CONFIG_FILE", raising=False)
        monkeypatch.setattr(settings, "find_config_file", lambda *args, **kwargs: None)

        assert settings.get_log_level() == "INFO"
        assert settings.get_allowed_origins() == ["http://localhost:3000"]
        assert settings.get_sse_keepalive_interval() == 15.0
        assert settings.get_analysis_rate_limit_per_hour() == 5
        assert settings.is_sse_event_log_enabled() is True

    def test_reads_server_section(self, config_file):
        config_file(
            "server:\n"
            "  allowed_origins: https://a.example.com, https://b.example.com\n"
            "  sse_keepalive_interval: 5\n"
            "  rate_limit_per_hour: 20\n"
            "logging:\n  level: warning\n"
        )

        assert settings.get_allowed_origins() == ["https://a.example.com", "https://b.example.com"]
        assert settings.get_sse_keepalive_interval() == 5.0
        assert settings.get_analysis_rate_limit_per_hour() == 20
        assert settings.get_log_level() == "WARNING"

    def test_invalid_values_fall_back(self, config_file):
        """Test bad values are replaced by defaults."""
        config_file(
            "server:\n"
            "  sse_keepalive_interval: -1\n"
            "  rate_limit_per_hour: many\n"
            "logging:\n  level: loud\n  sse_events:\n    level: chatty\n"
        )

        assert settings.get_sse_keepalive_interval() == 15.0
        assert settings.get_analysis_rate_limit_per_hour() == 5
        assert settings.get_log_level() == "INFO"
        assert settings.get_sse_event_log_level() == "debug"

    def test_nested_lookup(self, config_file):
        config_file("server:\n  nested:\n    value: 3\n")

        assert settings.get_nested_config("server.nested.value") == 3
        assert settings.get_nested_config("server.missing.value", "x") == "x"


class TestServerLogging:

    def test_configures_sse_logger(self, monkeypatch):
        """Test the sse_events logger gets its own level and stops propagating."""
        monkeypatch.setattr(logging_config, "get_log_level", lambda: "WARNING")
        monkeypatch.setattr(logging_config, "get_sse_event_log_level", lambda: "info")
        monkeypatch.setattr(logging_config, "is_sse_event_log_enabled", lambda: True)
        root_logger = logging.getLogger()
        sse_logger = logging.getLogger("sse_events")
        previous = (root_logger.level, root_logger.handlers[:], sse_logger.level, sse_logger.propagate)

        try:
            logging_config.configure_logging(force=True)

            assert root_logger.level == logging.WARNING
            assert sse_logger.level == logging.INFO
            assert sse_logger.propagate is False
        finally:
            logging_config.reset_logging_config()
            root_logger.setLevel(previous[0])
            root_logger.handlers[:] = previous[1]
            sse_logger.setLevel(previous[2])
            sse_logger.propagate = previous[3]

    def test_configures_once_until_reset(self, monkeypatch):
        """Test repeat calls are ignored until the configured flag is reset."""
        monkeypatch.setattr(logging_config, "is_sse_event_log_enabled", lambda: False)
        root_logger = logging.getLogger()
        previous = (root_logger.level, root_logger.handlers[:])

        try:
            monkeypatch.setattr(logging_config, "get_log_level", lambda: "WARNING")
            logging_config.configure_logging(force=True)

            monkeypatch.setattr(logging_config, "get_log_level", lambda: "ERROR")
            logging_config.configure_logging()
            assert root_logger.level == logging.WARNING

            logging_config.reset_logging_config()
            logging_config.configure_logging()
            assert root_logger.level == logging.ERROR
        finally:
            logging_config.reset_logging_config()
            root_logger.setLevel(previous[0])
            root_logger.handlers[:] = previous[1]
