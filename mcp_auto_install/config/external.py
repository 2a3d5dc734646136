"""Reconciliation of run commands into the host application's config file.

The host application (an LLM client such as Claude Desktop) owns a JSON file
whose ``mcpServers`` key maps server names to run commands::

    {
        "theme": "dark",
        "mcpServers": {
            "filesystem": {"command": "npx", "args": ["-y", "@modelcontextprotocol/server-filesystem"], "env": {}}
        }
    }

This module only ever touches entries under that reserved key. Every other
top-level key, and every server entry not named in the request, is written
back unchanged. The file path comes from ``MCP_SETTINGS_PATH``; when it is not
configured every operation fails before touching the filesystem.

Reads and writes are plain read-modify-write without locking. A concurrent
writer to the same file can lose its edit.
"""

from __future__ import annotations

import json
import shlex
from pathlib import Path
from typing import Any

import aiofiles
import structlog

from mcp_auto_install.exceptions import (
    ConfigValidationError,
    ExternalIOError,
    MissingConfigPathError,
    NotRegisteredError,
)
from mcp_auto_install.models import CommandConfig, ServerRecord
from mcp_auto_install.registry.store import RegistryStore

log = structlog.get_logger(__name__)

RESERVED_KEY = "mcpServers"


def validate_servers_block(document: Any) -> dict[str, dict[str, Any]]:
    """Validate the reserved-key map of a user-supplied config document.

    Every entry must have a non-empty string ``command``, a list ``args`` and,
    optionally, a string-to-string ``env`` map. Validation is all-or-nothing:
    the first bad entry fails the whole document.

    Args:
        document: Parsed JSON document.

    Returns:
        The entries under the reserved key; empty when the key is absent.

    Raises:
        ConfigValidationError: If the document or any entry is malformed.
    """
    if not isinstance(document, dict):
        raise ConfigValidationError("Configuration must be a JSON object.")

    servers = document.get(RESERVED_KEY)
    if servers is None:
        return {}
    if not isinstance(servers, dict):
        raise ConfigValidationError(f"'{RESERVED_KEY}' must be an object mapping server names to commands.")

    for name, entry in servers.items():
        if not isinstance(entry, dict):
            raise ConfigValidationError(f"Configuration for server '{name}' must be an object.", name)
        command = entry.get("command")
        if not isinstance(command, str) or not command.strip():
            raise ConfigValidationError(
                f"Configuration for server '{name}' is invalid: 'command' must be a non-empty string.", name
            )
        args = entry.get("args")
        if not isinstance(args, list):
            raise ConfigValidationError(
                f"Configuration for server '{name}' is invalid: 'args' must be an array.", name
            )
        env = entry.get("env")
        if env is not None and not (
            isinstance(env, dict) and all(isinstance(k, str) and isinstance(v, str) for k, v in env.items())
        ):
            raise ConfigValidationError(
                f"Configuration for server '{name}' is invalid: 'env' must map strings to strings.", name
            )
    return servers


class ExternalConfigReconciler:
    """Writes server run commands into the host application's config file.

    Attributes:
        store: Registry the named servers must exist in.
        config_path: Host config file, or None when not configured.
    """

    def __init__(self, store: RegistryStore, config_path: Path | str | None) -> None:
        self.store = store
        self.config_path = Path(config_path).expanduser() if config_path else None

    def _require_path(self) -> Path:
        if self.config_path is None:
            raise MissingConfigPathError()
        return self.config_path

    async def _read(self, path: Path) -> dict[str, Any]:
        """Load the host document, or an empty one if the file is absent or unreadable.

        Raises:
            ExternalIOError: If the file exists but is not a JSON object. The
                file is left alone rather than replaced with a fresh document.
        """
        try:
            async with aiofiles.open(path, encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            log.info("external_config_unreadable", path=str(path), error=str(e))
            return {}

        if not content.strip():
            return {}
        try:
            document = json.loads(content)
        except json.JSONDecodeError as e:
            raise ExternalIOError(path, f"Host config file is not valid JSON: {e}") from e
        if not isinstance(document, dict):
            raise ExternalIOError(path, "Host config file must contain a JSON object")
        return document

    async def _write(self, path: Path, document: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document, indent=2, ensure_ascii=False))
        except OSError as e:
            raise ExternalIOError(path, f"Failed to write host config file: {e}") from e

    @staticmethod
    def _servers_of(document: dict[str, Any]) -> dict[str, Any]:
        servers = document.get(RESERVED_KEY)
        if not isinstance(servers, dict):
            servers = {}
            document[RESERVED_KEY] = servers
        return servers

    async def read_servers(self) -> dict[str, Any]:
        """Entries currently under the reserved key of the host file.

        Raises:
            MissingConfigPathError: If no host config path is configured.
            ExternalIOError: If the file holds malformed JSON.
        """
        document = await self._read(self._require_path())
        servers = document.get(RESERVED_KEY)
        return dict(servers) if isinstance(servers, dict) else {}

    async def save_command(
        self,
        server_name: str,
        command: str,
        args: list[str],
        env: dict[str, str] | None = None,
    ) -> ServerRecord:
        """Write ``{command, args, env}`` for ``server_name`` into the host file.

        The entry fully replaces any previous entry of the same name. The same
        command is then recorded on the registry record.

        Returns:
            The updated registry record.

        Raises:
            MissingConfigPathError: If no host config path is configured.
            NotRegisteredError: If no registered name contains ``server_name``.
            ExternalIOError: If the host file is malformed or cannot be written.
        """
        path = self._require_path()
        record = self.store.find(server_name)
        if record is None:
            raise NotRegisteredError(server_name)

        command_config = CommandConfig(command=command, args=list(args), env=dict(env or {}))
        document = await self._read(path)
        self._servers_of(document)[server_name] = command_config.model_dump()
        await self._write(path, document)
        log.info("external_command_saved", server=server_name, path=str(path))

        return await self.store.set_command_config(record.name, command_config)

    async def save_command_line(self, server_name: str, command_line: str) -> ServerRecord:
        """Split a command line and save it like :meth:`save_command`.

        The line must hold an executable and at least one argument, e.g.
        ``npx -y @modelcontextprotocol/server-git``.

        Raises:
            ConfigValidationError: If the line has fewer than two words.
        """
        self._require_path()
        try:
            parts = shlex.split(command_line)
        except ValueError as e:
            raise ConfigValidationError(f"Could not parse command line: {e}", server_name) from e
        if len(parts) < 2:
            raise ConfigValidationError(
                "Command must include the executable and at least one argument.", server_name
            )
        return await self.save_command(server_name, parts[0], parts[1:])

    async def parse_config(self, raw: str) -> dict[str, Any]:
        """Validate a JSON config blob and merge its servers into the host file.

        Parsed entries overwrite same-named entries; all other entries and
        unrelated top-level keys survive. Nothing is read or written unless
        the whole blob validates.

        Returns:
            The merged host document as written.

        Raises:
            ConfigValidationError: If the blob is not JSON or any entry is malformed.
            MissingConfigPathError: If no host config path is configured.
            ExternalIOError: If the host file is malformed or cannot be written.
        """
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigValidationError(f"Configuration is not valid JSON: {e}") from e
        incoming = validate_servers_block(document)

        path = self._require_path()
        existing = await self._read(path)
        self._servers_of(existing).update(incoming)
        await self._write(path, existing)
        log.info("external_config_merged", servers=list(incoming), path=str(path))
        return existing
