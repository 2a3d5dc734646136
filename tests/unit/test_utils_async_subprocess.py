"""Tests for mcp_auto_install.utils.async_subprocess module."""

from pathlib import Path

import pytest

from mcp_auto_install.utils.async_subprocess import ProcessResult, ProcessRunner, run_command, run_shell_command

# =============================================================================
# Tests for run_command
# =============================================================================


class TestRunCommand:
    """Test basic functionality of run_command."""

    @pytest.mark.asyncio
    async def test_run_simple_command(self):
        """Test running a simple command that succeeds."""
        result = await run_command("echo", "hello")

        assert result.stdout.strip() == "hello"
        assert result.stderr == ""
        assert result.ok is True

    @pytest.mark.asyncio
    async def test_stderr_does_not_mean_failure(self):
        """Test output on stderr with exit code 0 is still ok."""
        result = await run_command("bash", "-c", "echo warning >&2")

        assert result.stderr.strip() == "warning"
        assert result.ok is True

    @pytest.mark.asyncio
    async def test_non_zero_exit(self):
        """Test a failing command is reported, not raised."""
        result = await run_command("bash", "-c", "echo broken >&2; exit 3")

        assert result.exit_code == 3
        assert result.ok is False
        assert result.stderr.strip() == "broken"

    @pytest.mark.asyncio
    async def test_missing_executable(self):
        """Test a missing program maps to exit code 127."""
        result = await run_command("definitely-not-a-real-binary-xyz")

        assert result.exit_code == 127
        assert result.stderr

    @pytest.mark.asyncio
    async def test_stdin_is_closed(self):
        """Test children see EOF on stdin instead of blocking."""
        result = await run_command("cat")

        assert result.ok is True
        assert result.stdout == ""

    @pytest.mark.asyncio
    async def test_cwd(self, tmp_path: Path):
        """Test the working directory is honoured."""
        result = await run_command("pwd", cwd=tmp_path)

        assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()


# =============================================================================
# Tests for run_shell_command
# =============================================================================


class TestRunShellCommand:
    """Test shell command execution."""

    @pytest.mark.asyncio
    async def test_shell_features(self):
        """Test pipes and && work."""
        result = await run_shell_command("echo one && echo two | tr a-z A-Z")

        assert result.stdout.split() == ["one", "TWO"]

    @pytest.mark.asyncio
    async def test_shell_failure(self, tmp_path: Path):
        result = await run_shell_command("exit 7", cwd=tmp_path)

        assert result.exit_code == 7


class TestProcessRunner:
    """Tests for the injectable runner."""

    @pytest.mark.asyncio
    async def test_run_and_run_shell(self, tmp_path: Path):
        runner = ProcessRunner()

        direct = await runner.run("echo", "hi")
        shell = await runner.run_shell("touch marker", cwd=tmp_path)

        assert direct.stdout.strip() == "hi"
        assert shell.ok is True
        assert (tmp_path / "marker").exists()

    def test_result_defaults(self):
        assert ProcessResult(exit_code=0) == ProcessResult(exit_code=0, stdout="", stderr="")
