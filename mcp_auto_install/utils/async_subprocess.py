"""Async subprocess utilities.

Provides non-blocking subprocess execution for the installer. Every external
tool invocation (npx, git, npm, custom install commands) goes through
:class:`ProcessRunner`, which returns a :class:`ProcessResult` instead of
raising. Callers decide what counts as failure, and the rule used everywhere
is the exit code: text on stderr is informational only.

This module offers:
    - run_command: Execute commands with list arguments (no shell)
    - run_shell_command: Execute shell command strings (pipes, &&, etc.)
    - ProcessRunner: Injectable wrapper around both, easy to mock in tests

Example:
    >>> runner = ProcessRunner()
    >>> result = await runner.run("git", "clone", url, str(target))
    >>> if not result.ok:
    ...     print(result.stderr)

Note:
    Child processes get a closed stdin. Protocol servers read requests from
    stdin, so an ephemeral-run probe sees EOF and exits instead of waiting
    forever for a client.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from pathlib import Path

import structlog

log = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ProcessResult:
    """Outcome of one external command.

    Attributes:
        exit_code: Process exit code (127 when the executable was not found).
        stdout: Decoded standard output.
        stderr: Decoded standard error.
    """

    exit_code: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        """Whether the command succeeded. Only the exit code is considered."""
        return self.exit_code == 0


def _decode(data: bytes | None) -> str:
    return (data or b"").decode("utf-8", errors="replace")


async def run_command(
    *args: str,
    cwd: Path | str | None = None,
    timeout: float | None = None,
) -> ProcessResult:
    """Run a command asynchronously without shell interpolation.

    Args:
        *args: Command and arguments as separate strings.
        cwd: Working directory for command execution.
        timeout: Maximum seconds to wait; the process is killed and
            ``TimeoutError`` raised when exceeded. None waits indefinitely.

    Returns:
        ProcessResult with decoded output. A missing executable is reported as
        exit code 127 with the OS error on stderr, mirroring what a shell does.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            cwd=cwd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as e:
        return ProcessResult(exit_code=127, stderr=str(e))

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError:
        process.kill()
        await process.wait()
        raise

    return ProcessResult(
        exit_code=process.returncode or 0,
        stdout=_decode(stdout_bytes),
        stderr=_decode(stderr_bytes),
    )


async def run_shell_command(
    command: str,
    *,
    cwd: Path | str | None = None,
    timeout: float | None = None,
) -> ProcessResult:
    """Run a shell command string asynchronously.

    Used for user-supplied install commands, which are free-form shell
    snippets ("npm ci && npm run build:server").

    Warning:
        The command is passed to /bin/sh unchanged. Only run commands the user
        registered themselves.
    """
    process = await asyncio.create_subprocess_shell(
        command,
        cwd=cwd,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )

    try:
        stdout_bytes, stderr_bytes = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except TimeoutError:
        process.kill()
        await process.wait()
        raise

    return ProcessResult(
        exit_code=process.returncode or 0,
        stdout=_decode(stdout_bytes),
        stderr=_decode(stderr_bytes),
    )


class ProcessRunner:
    """Injectable process runner used by the installer and resolver."""

    async def run(self, *args: str, cwd: Path | str | None = None) -> ProcessResult:
        """Run an argv-style command."""
        log.debug("process_run", args=list(args), cwd=str(cwd) if cwd else None)
        result = await run_command(*args, cwd=cwd)
        log.debug("process_exit", command=args[0] if args else "", exit_code=result.exit_code)
        return result

    async def run_shell(self, command: str, cwd: Path | str | None = None) -> ProcessResult:
        """Run a shell command string."""
        log.debug("process_run_shell", command=command, cwd=str(cwd) if cwd else None)
        result = await run_shell_command(command, cwd=cwd)
        log.debug("process_exit", command=command, exit_code=result.exit_code)
        return result
