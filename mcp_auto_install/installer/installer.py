"""Server installation with ephemeral-run and clone strategies.

Each install request walks a small state machine::

    SELECT_STRATEGY ─┬─> TRY_NPX ──ok──> DONE
                     │       │
                     │     fails
                     │       v
                     └───> CLONE ──> DEPS ──> BUILD_OR_CUSTOM ──> DONE
                              │        │            │
                              └────────┴────────────┴──fails──> FAILED

The ephemeral-run strategy resolves a package identifier from the record's
repository URL, invokes ``npx`` with it, and on success writes a small wrapper
script that forwards all arguments to ``npx <package>``. Success is decided by
the exit code alone; stderr output is passed along as information.

The clone strategy wipes and re-clones the repository under the servers
directory, then runs the record's custom install commands or the default
``npm install`` / ``npm run build`` / ``npm install -g`` sequence. The first
failing step aborts the install and its stderr is reported verbatim. Nothing
is retried, and an install in progress cannot be cancelled.
"""

from __future__ import annotations

import shutil
from collections.abc import Awaitable
from pathlib import Path

import structlog

from mcp_auto_install.exceptions import AutoInstallError, ExternalIOError, NotRegisteredError, ShellStepError
from mcp_auto_install.installer.resolver import PackageNameResolver, last_path_segment
from mcp_auto_install.models import InstallResult, InstallState, InstallStrategy, ServerRecord
from mcp_auto_install.registry.store import RegistryStore
from mcp_auto_install.utils.async_subprocess import ProcessResult, ProcessRunner

log = structlog.get_logger(__name__)

DEPENDENCY_STEP = ("npm", "install")
DEFAULT_BUILD_STEPS = (("npm", "run", "build"), ("npm", "install", "-g"))

WRAPPER_MODE = 0o755
WRAPPER_TEMPLATE = """#!/usr/bin/env bash
# Auto-generated script to run the {server} MCP server
exec npx -y {package} "$@"
"""


def wrapper_name(record: ServerRecord) -> str:
    """File name of the wrapper script for ``record``.

    Derived from the last token of the record's command, reduced to its final
    path segment: ``npx @modelcontextprotocol/server-git`` -> ``server-git``.
    """
    tokens = record.command.split()
    token = tokens[-1] if tokens else record.name
    name = token.rstrip("/").rsplit("/", 1)[-1].lstrip("@")
    return name or record.name.rsplit("/", 1)[-1].lstrip("@")


def clone_dir_name(record: ServerRecord) -> str:
    """Directory name for a clone: last URL segment without ``.git``."""
    return last_path_segment(record.repo_url) or record.name.rsplit("/", 1)[-1].lstrip("@")


class ServerInstaller:
    """Installs registered servers.

    Attributes:
        store: Registry the server is looked up in.
        resolver: Package identifier resolution for the ephemeral-run strategy.
        runner: Process runner for every external command.
        servers_dir: Root under which clones are placed.
        bin_dir: Directory that receives wrapper scripts.
    """

    def __init__(
        self,
        store: RegistryStore,
        resolver: PackageNameResolver,
        runner: ProcessRunner,
        servers_dir: Path,
        bin_dir: Path,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.runner = runner
        self.servers_dir = Path(servers_dir)
        self.bin_dir = Path(bin_dir)

    async def install(self, server_name: str, use_npx: bool = True) -> InstallResult:
        """Install ``server_name`` with the preferred strategy.

        Args:
            server_name: Registered name, or a fragment of one.
            use_npx: Try the ephemeral-run strategy first; when False go
                straight to the clone strategy.

        Returns:
            InstallResult describing the final state. Failures of either
            strategy are reported in the result, not raised.

        Raises:
            NotRegisteredError: If no registered name contains ``server_name``.
        """
        record = self.store.find(server_name)
        if record is None:
            raise NotRegisteredError(server_name)

        states = [InstallState.SELECT_STRATEGY]
        log.info("install_started", server=record.name, use_npx=use_npx)

        npx_error = ""
        if use_npx:
            states.append(InstallState.TRY_NPX)
            try:
                result = await self._install_npx(record)
            except AutoInstallError as e:
                npx_error = e.message
                log.warning("npx_install_failed", server=record.name, error=npx_error)
            else:
                states.append(InstallState.DONE)
                result.states = states
                log.info("install_completed", server=record.name, strategy=InstallStrategy.NPX.value)
                return result

        try:
            result = await self._install_clone(record, states)
        except AutoInstallError as e:
            states.append(InstallState.FAILED)
            error = e.stderr if isinstance(e, ShellStepError) else e.message
            log.error("install_failed", server=record.name, error=e.message)
            message = f"Failed to install {record.name}: {e.message}"
            if npx_error:
                message += f"\n(npx attempt failed first: {npx_error})"
            return InstallResult(
                success=False,
                message=message,
                strategy=InstallStrategy.CLONE,
                error=error,
                states=states,
            )

        states.append(InstallState.DONE)
        result.states = states
        if npx_error:
            result.message += " (npx was unavailable, fell back to git clone)"
        log.info("install_completed", server=record.name, strategy=InstallStrategy.CLONE.value)
        return result

    # === Ephemeral-run strategy ===

    async def _install_npx(self, record: ServerRecord) -> InstallResult:
        package = await self.resolver.resolve(record.repo_url or record.name)
        probe = await self.runner.run("npx", "-y", package)
        if not probe.ok:
            raise ShellStepError(f"npx -y {package}", probe.exit_code, probe.stderr)

        script_path = self.write_wrapper(record, package)
        return InstallResult(
            success=True,
            message=f"Successfully installed {record.name} using npx. Wrapper script: {script_path}",
            strategy=InstallStrategy.NPX,
            script_path=script_path,
            package_name=package,
            output=probe.stdout,
            error=probe.stderr,
        )

    def write_wrapper(self, record: ServerRecord, package: str) -> Path:
        """Write the executable wrapper script for ``record``.

        Raises:
            ExternalIOError: If the script cannot be written.
        """
        script_path = self.bin_dir / wrapper_name(record)
        try:
            self.bin_dir.mkdir(parents=True, exist_ok=True)
            script_path.write_text(WRAPPER_TEMPLATE.format(server=record.name, package=package), encoding="utf-8")
            script_path.chmod(WRAPPER_MODE)
        except OSError as e:
            raise ExternalIOError(script_path, f"Failed to write wrapper script: {e}") from e
        log.info("wrapper_written", server=record.name, path=str(script_path))
        return script_path

    # === Clone strategy ===

    async def _install_clone(self, record: ServerRecord, states: list[InstallState]) -> InstallResult:
        if not record.repo_url:
            raise AutoInstallError(f"Server '{record.name}' has no repository URL to clone.")

        target = self.servers_dir / clone_dir_name(record)
        states.append(InstallState.CLONE)
        try:
            if target.is_dir() and not target.is_symlink():
                log.info("clone_target_reset", path=str(target))
                shutil.rmtree(target)
            elif target.exists() or target.is_symlink():
                log.info("clone_target_reset", path=str(target))
                target.unlink()
            self.servers_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ExternalIOError(target, f"Failed to prepare clone directory: {e}") from e
        await self._step(self.runner.run("git", "clone", record.repo_url, str(target)), f"git clone {record.repo_url}")

        last = ProcessResult(exit_code=0)
        if record.install_commands:
            states.append(InstallState.BUILD_OR_CUSTOM)
            for command in record.install_commands:
                last = await self._step(self.runner.run_shell(command, cwd=target), command)
        else:
            states.append(InstallState.DEPS)
            last = await self._step(self.runner.run(*DEPENDENCY_STEP, cwd=target), " ".join(DEPENDENCY_STEP))
            states.append(InstallState.BUILD_OR_CUSTOM)
            for step in DEFAULT_BUILD_STEPS:
                last = await self._step(self.runner.run(*step, cwd=target), " ".join(step))

        return InstallResult(
            success=True,
            message=f"Successfully installed {record.name} using git clone to {target}",
            strategy=InstallStrategy.CLONE,
            install_path=target,
            output=last.stdout,
            error=last.stderr,
        )

    @staticmethod
    async def _step(pending: Awaitable[ProcessResult], description: str) -> ProcessResult:
        result = await pending
        if not result.ok:
            raise ShellStepError(description, result.exit_code, result.stderr)
        return result
