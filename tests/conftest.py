"""Pytest configuration and shared fixtures."""

from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from mcp_auto_install.config.settings import AutoInstallSettings
from mcp_auto_install.models import ServerRecord
from mcp_auto_install.registry.store import RegistryStore
from mcp_auto_install.utils.async_subprocess import ProcessResult, ProcessRunner


@pytest.fixture(autouse=True)
def isolated_environment(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep tests away from the user's real config and host settings."""
    monkeypatch.delenv("MCP_SETTINGS_PATH", raising=False)
    monkeypatch.setenv("MCP_AUTO_INSTALL_CONFIG_DIR", str(tmp_path / "home"))
    monkeypatch.setenv("MCP_AUTO_INSTALL_DISCOVER_ON_START", "false")


@pytest.fixture
def registry_path(tmp_path: Path) -> Path:
    """Registry file location inside a temp directory."""
    return tmp_path / "config" / "registry.json"


@pytest.fixture
def store(registry_path: Path) -> RegistryStore:
    """Empty registry store; the file is created on the first mutation."""
    return RegistryStore(registry_path)


@pytest.fixture
def filesystem_record() -> ServerRecord:
    """Sample record as produced by discovery."""
    return ServerRecord(
        name="@modelcontextprotocol/server-filesystem",
        repo_url="https://github.com/modelcontextprotocol/servers",
        command="npx @modelcontextprotocol/server-filesystem",
        description="MCP server for filesystem access",
        keywords=["filesystem", "files", "mcp"],
    )


@pytest.fixture
def git_record() -> ServerRecord:
    """Sample record with a dedicated repository."""
    return ServerRecord(
        name="git-tools",
        repo_url="https://github.com/example/git-tools.git",
        command="npx @example/git-tools",
        description="Git operations",
        keywords=["git", "commit"],
    )


@pytest.fixture
def mock_runner() -> MagicMock:
    """Process runner whose commands all succeed unless reconfigured."""
    runner = MagicMock(spec=ProcessRunner)
    runner.run = AsyncMock(return_value=ProcessResult(exit_code=0))
    runner.run_shell = AsyncMock(return_value=ProcessResult(exit_code=0))
    return runner


@pytest.fixture
def settings(tmp_path: Path) -> AutoInstallSettings:
    """Settings rooted in a temp directory, discovery disabled."""
    return AutoInstallSettings(
        config_dir=tmp_path / "home",
        servers_dir=tmp_path / "servers",
        external_config_path=tmp_path / "claude_desktop_config.json",
        discover_on_start=False,
    )
