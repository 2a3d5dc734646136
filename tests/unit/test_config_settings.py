"""Tests for mcp_auto_install.config.settings."""

from pathlib import Path

import pytest

from mcp_auto_install.config.settings import AutoInstallSettings
from mcp_auto_install.exceptions import ConfigurationError


class TestDefaults:
    """Tests for default and derived values."""

    def test_paths_derive_from_config_dir(self, tmp_path: Path):
        """Test registry and bin paths follow the config directory."""
        settings = AutoInstallSettings(config_dir=tmp_path / "cfg")

        assert settings.registry_path == tmp_path / "cfg" / "registry.json"
        assert settings.bin_dir == tmp_path / "cfg" / "bin"

    def test_discovery_defaults(self):
        """Test the package index defaults."""
        settings = AutoInstallSettings()

        assert settings.namespace == "@modelcontextprotocol"
        assert settings.discovery_timeout == 15.0
        assert settings.discovery_retries == 3
        assert settings.discovery_retry_delay == 1.0
        assert settings.external_config_path is None

    def test_explicit_registry_path_kept(self, tmp_path: Path):
        settings = AutoInstallSettings(config_dir=tmp_path, registry_path=tmp_path / "elsewhere.json")

        assert settings.registry_path == tmp_path / "elsewhere.json"


class TestEnvironment:
    """Tests for environment variable loading."""

    def test_host_config_path_from_env(self, monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
        """Test MCP_SETTINGS_PATH sets the host config path."""
        monkeypatch.setenv("MCP_SETTINGS_PATH", str(tmp_path / "claude.json"))

        assert AutoInstallSettings().external_config_path == tmp_path / "claude.json"

    def test_prefixed_env(self, monkeypatch: pytest.MonkeyPatch):
        """Test MCP_AUTO_INSTALL_* variables."""
        monkeypatch.setenv("MCP_AUTO_INSTALL_NAMESPACE", "@acme")
        monkeypatch.setenv("MCP_AUTO_INSTALL_DISCOVERY_RETRIES", "5")

        settings = AutoInstallSettings()

        assert settings.namespace == "@acme"
        assert settings.discovery_retries == 5


class TestFromYaml:
    """Tests for YAML loading."""

    def test_yaml_with_interpolation(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
        """Test ${VAR} and ${VAR:-default} placeholders."""
        monkeypatch.setenv("CLIENT_CONFIG", str(tmp_path / "client.json"))
        config = tmp_path / "config.yaml"
        config.write_text(
            "# ${NOT_INTERPOLATED}\n"
            "external_config_path: ${CLIENT_CONFIG}\n"
            "namespace: ${MCP_NAMESPACE:-@modelcontextprotocol}\n"
            "strict_registry: true\n"
        )

        settings = AutoInstallSettings.from_yaml(config)

        assert settings.external_config_path == tmp_path / "client.json"
        assert settings.namespace == "@modelcontextprotocol"
        assert settings.strict_registry is True

    def test_missing_variable(self, tmp_path: Path):
        config = tmp_path / "config.yaml"
        config.write_text("namespace: ${SURELY_UNSET_VARIABLE_123}\n")

        with pytest.raises(ConfigurationError, match="SURELY_UNSET_VARIABLE_123"):
            AutoInstallSettings.from_yaml(config)

    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigurationError):
            AutoInstallSettings.from_yaml(tmp_path / "absent.yaml")

    def test_invalid_value(self, tmp_path: Path):
        config = tmp_path / "config.yaml"
        config.write_text("discovery_retries: 0\n")

        with pytest.raises(ConfigurationError):
            AutoInstallSettings.from_yaml(config)

    def test_load_uses_default_location(self, tmp_path: Path):
        """Test load() picks up config.yaml in the config directory."""
        config_dir = tmp_path / "home"
        config_dir.mkdir(parents=True, exist_ok=True)
        (config_dir / "config.yaml").write_text("namespace: '@fromfile'\n")

        assert AutoInstallSettings.load().namespace == "@fromfile"

    def test_load_without_file(self):
        assert AutoInstallSettings.load().namespace == "@modelcontextprotocol"
