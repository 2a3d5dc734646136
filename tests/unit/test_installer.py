"""Unit tests for installer/installer.py."""

import os
import stat
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

from mcp_auto_install.exceptions import InvalidRepoUrlError, NotRegisteredError
from mcp_auto_install.installer.installer import ServerInstaller, clone_dir_name, wrapper_name
from mcp_auto_install.models import InstallState, InstallStrategy, ServerRecord
from mcp_auto_install.registry.store import RegistryStore
from mcp_auto_install.utils.async_subprocess import ProcessResult


@pytest.fixture
def resolver() -> MagicMock:
    """Resolver that always yields the same package."""
    mock = MagicMock()
    mock.resolve = AsyncMock(return_value="@example/git-tools")
    return mock


@pytest.fixture
def installer(store: RegistryStore, resolver: MagicMock, mock_runner: MagicMock, tmp_path: Path) -> ServerInstaller:
    """Installer writing into temp directories."""
    return ServerInstaller(store, resolver, mock_runner, tmp_path / "servers", tmp_path / "bin")


class TestNaming:
    """Tests for derived file names."""

    def test_wrapper_name_uses_last_command_segment(self, filesystem_record: ServerRecord):
        """Test the script is named after the package's short name."""
        assert wrapper_name(filesystem_record) == "server-filesystem"

    def test_clone_dir_strips_git_suffix(self, git_record: ServerRecord):
        """Test the clone directory drops .git."""
        assert clone_dir_name(git_record) == "git-tools"


class TestInstallNpx:
    """Tests for the ephemeral-run strategy."""

    @pytest.mark.asyncio
    async def test_unknown_server_raises(self, installer: ServerInstaller):
        """Test installing an unregistered name."""
        with pytest.raises(NotRegisteredError):
            await installer.install("ghost")

    @pytest.mark.asyncio
    async def test_npx_success_writes_wrapper(
        self, installer: ServerInstaller, store: RegistryStore, git_record: ServerRecord, mock_runner: MagicMock
    ):
        """Test a successful probe produces an executable wrapper script."""
        await store.upsert(git_record)

        result = await installer.install("git-tools")

        assert result.success is True
        assert result.strategy == InstallStrategy.NPX
        assert result.package_name == "@example/git-tools"
        assert result.states == [InstallState.SELECT_STRATEGY, InstallState.TRY_NPX, InstallState.DONE]
        script = result.script_path
        assert script == installer.bin_dir / "git-tools"
        assert '"$@"' in script.read_text()
        assert "@example/git-tools" in script.read_text()
        assert stat.S_IMODE(os.stat(script).st_mode) == 0o755
        mock_runner.run.assert_awaited_once_with("npx", "-y", "@example/git-tools")

    @pytest.mark.asyncio
    async def test_stderr_alone_does_not_fail(
        self, installer: ServerInstaller, store: RegistryStore, git_record: ServerRecord, mock_runner: MagicMock
    ):
        """Test warnings on stderr with exit code 0 still succeed."""
        await store.upsert(git_record)
        mock_runner.run.return_value = ProcessResult(exit_code=0, stderr="npm WARN deprecated")

        result = await installer.install("git-tools")

        assert result.success is True
        assert result.strategy == InstallStrategy.NPX
        assert result.error == "npm WARN deprecated"

    @pytest.mark.asyncio
    async def test_fragment_lookup(
        self, installer: ServerInstaller, store: RegistryStore, filesystem_record: ServerRecord
    ):
        """Test a name fragment selects the registered server."""
        await store.upsert(filesystem_record)

        result = await installer.install("filesystem")

        assert result.success is True
        assert result.script_path.name == "server-filesystem"

    @pytest.mark.asyncio
    async def test_unwritable_wrapper_falls_back_to_clone(
        self, installer: ServerInstaller, store: RegistryStore, git_record: ServerRecord, mock_runner: MagicMock
    ):
        """Test a wrapper directory that is a file counts as an npx failure."""
        await store.upsert(git_record)
        installer.bin_dir.parent.mkdir(parents=True, exist_ok=True)
        installer.bin_dir.write_text("not a directory")

        result = await installer.install("git-tools")

        assert result.success is True
        assert result.strategy == InstallStrategy.CLONE
        assert result.script_path is None
        assert InstallState.CLONE in result.states
        assert "fell back to git clone" in result.message


class TestInstallClone:
    """Tests for the clone strategy and fallback."""

    @pytest.mark.asyncio
    async def test_fallback_to_clone(
        self, installer: ServerInstaller, store: RegistryStore, git_record: ServerRecord, mock_runner: MagicMock
    ):
        """Test a failing npx probe falls back to clone and build."""
        await store.upsert(git_record)

        async def run(*args, cwd=None):
            if args[0] == "npx":
                return ProcessResult(exit_code=1, stderr="npm ERR! 404 Not Found")
            return ProcessResult(exit_code=0)

        mock_runner.run.side_effect = run

        result = await installer.install("git-tools")

        target = installer.servers_dir / "git-tools"
        assert result.success is True
        assert result.strategy == InstallStrategy.CLONE
        assert result.install_path == target
        assert result.script_path is None
        assert result.states == [
            InstallState.SELECT_STRATEGY,
            InstallState.TRY_NPX,
            InstallState.CLONE,
            InstallState.DEPS,
            InstallState.BUILD_OR_CUSTOM,
            InstallState.DONE,
        ]
        commands = [call.args for call in mock_runner.run.await_args_list]
        assert commands == [
            ("npx", "-y", "@example/git-tools"),
            ("git", "clone", git_record.repo_url, str(target)),
            ("npm", "install"),
            ("npm", "run", "build"),
            ("npm", "install", "-g"),
        ]
        for call in mock_runner.run.await_args_list[2:]:
            assert call.kwargs["cwd"] == target

    @pytest.mark.asyncio
    async def test_resolution_failure_falls_back(
        self,
        installer: ServerInstaller,
        store: RegistryStore,
        git_record: ServerRecord,
        resolver: MagicMock,
    ):
        """Test an unresolvable package name is treated as an npx failure."""
        await store.upsert(git_record)
        resolver.resolve.side_effect = InvalidRepoUrlError(git_record.repo_url)

        result = await installer.install("git-tools")

        assert result.success is True
        assert result.strategy == InstallStrategy.CLONE

    @pytest.mark.asyncio
    async def test_custom_install_commands(
        self, installer: ServerInstaller, store: RegistryStore, mock_runner: MagicMock
    ):
        """Test custom commands replace the default build sequence."""
        record = ServerRecord(
            name="custom",
            repo_url="https://github.com/example/custom",
            command="node dist/index.js",
            install_commands=["npm ci", "npm run build:server"],
        )
        await store.upsert(record)

        result = await installer.install("custom", use_npx=False)

        target = installer.servers_dir / "custom"
        assert result.success is True
        assert [c.args for c in mock_runner.run.await_args_list] == [
            ("git", "clone", record.repo_url, str(target))
        ]
        assert [c.args[0] for c in mock_runner.run_shell.await_args_list] == ["npm ci", "npm run build:server"]
        assert InstallState.DEPS not in result.states

    @pytest.mark.asyncio
    async def test_first_failing_step_aborts(
        self, installer: ServerInstaller, store: RegistryStore, mock_runner: MagicMock
    ):
        """Test a failing custom command stops the sequence and surfaces stderr."""
        record = ServerRecord(
            name="custom",
            repo_url="https://github.com/example/custom",
            command="node dist/index.js",
            install_commands=["npm ci", "npm run build", "npm test"],
        )
        await store.upsert(record)
        mock_runner.run_shell.side_effect = [
            ProcessResult(exit_code=0),
            ProcessResult(exit_code=2, stderr="tsc: error TS2304"),
            ProcessResult(exit_code=0),
        ]

        result = await installer.install("custom", use_npx=False)

        assert result.success is False
        assert result.error == "tsc: error TS2304"
        assert "tsc: error TS2304" in result.message
        assert result.states[-1] == InstallState.FAILED
        assert mock_runner.run_shell.await_count == 2

    @pytest.mark.asyncio
    async def test_clone_failure_reports_git_error(
        self, installer: ServerInstaller, store: RegistryStore, git_record: ServerRecord, mock_runner: MagicMock
    ):
        """Test a failing clone after a failing npx probe."""
        await store.upsert(git_record)
        mock_runner.run.side_effect = [
            ProcessResult(exit_code=1, stderr="npx failed"),
            ProcessResult(exit_code=128, stderr="fatal: repository not found"),
        ]

        result = await installer.install("git-tools")

        assert result.success is False
        assert result.error == "fatal: repository not found"
        assert "npx failed" in result.message

    @pytest.mark.asyncio
    async def test_existing_clone_target_is_reset(
        self, installer: ServerInstaller, store: RegistryStore, git_record: ServerRecord
    ):
        """Test a second clone install removes the previous checkout."""
        await store.upsert(git_record)
        target = installer.servers_dir / "git-tools"
        target.mkdir(parents=True)
        (target / "stale.txt").write_text("old build")

        first = await installer.install("git-tools", use_npx=False)
        (target / "stale.txt").parent.mkdir(parents=True, exist_ok=True)
        (target / "stale.txt").write_text("left by first run")
        second = await installer.install("git-tools", use_npx=False)

        assert first.success is True
        assert second.success is True
        assert not (target / "stale.txt").exists()

    @pytest.mark.asyncio
    async def test_stale_file_at_clone_target_is_replaced(
        self, installer: ServerInstaller, store: RegistryStore, git_record: ServerRecord, mock_runner: MagicMock
    ):
        """Test a regular file where the checkout belongs is removed before cloning."""
        await store.upsert(git_record)
        target = installer.servers_dir / "git-tools"
        installer.servers_dir.mkdir(parents=True)
        target.write_text("stale")

        result = await installer.install("git-tools", use_npx=False)

        assert result.success is True
        assert not target.exists()
        assert mock_runner.run.await_args_list[0].args == ("git", "clone", git_record.repo_url, str(target))

    @pytest.mark.asyncio
    async def test_unusable_servers_dir_fails(
        self, installer: ServerInstaller, store: RegistryStore, git_record: ServerRecord, mock_runner: MagicMock
    ):
        """Test a filesystem error while preparing the checkout ends in FAILED."""
        await store.upsert(git_record)
        installer.servers_dir.parent.mkdir(parents=True, exist_ok=True)
        installer.servers_dir.write_text("not a directory")

        result = await installer.install("git-tools", use_npx=False)

        assert result.success is False
        assert result.states[-1] == InstallState.FAILED
        assert "Failed to prepare clone directory" in result.message
        mock_runner.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_clone_without_repository(
        self, installer: ServerInstaller, store: RegistryStore, mock_runner: MagicMock
    ):
        """Test a record without repository cannot be cloned."""
        await store.upsert(ServerRecord(name="local", command="local-server"))

        result = await installer.install("local", use_npx=False)

        assert result.success is False
        assert "no repository URL" in result.message
        mock_runner.run.assert_not_awaited()
