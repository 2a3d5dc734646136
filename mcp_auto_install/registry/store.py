"""Persistent registry of known protocol servers.

The store maps server name to :class:`~mcp_auto_install.models.ServerRecord`.
It is owned by the composition root (:class:`mcp_auto_install.service.AutoInstallService`)
and handed to every component that needs it; there is no module-level instance.

Registry File Structure:
    ::

        {
            "servers": {
                "@modelcontextprotocol/server-filesystem": {
                    "name": "@modelcontextprotocol/server-filesystem",
                    "repo": "https://github.com/modelcontextprotocol/servers",
                    "command": "npx @modelcontextprotocol/server-filesystem",
                    "description": "MCP server for filesystem access",
                    "keywords": ["filesystem", "mcp"]
                }
            },
            "lastUpdated": "2025-03-01T10:30:00+00:00"
        }

    Older files that store ``"servers"`` as a list of records are read as
    well and rewritten in the keyed form on the next save.

Persistence Model:
    Every mutation is written to disk before the call returns. Writes go to a
    temporary file that is renamed over the registry. There is no locking:
    two processes mutating the same registry race and the last writer wins.

Example:
    >>> store = RegistryStore(Path("~/.mcp-auto-install/registry.json").expanduser())
    >>> await store.load()
    >>> await store.upsert(record)
    >>> store.find("filesystem")
"""

from __future__ import annotations

import json
import shutil
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiofiles
import structlog
from pydantic import ValidationError

from mcp_auto_install.exceptions import CorruptRegistryError, ExternalIOError
from mcp_auto_install.models import CommandConfig, ServerRecord

log = structlog.get_logger(__name__)


class RegistryStore:
    """Name-keyed server registry with save-on-mutate persistence.

    Attributes:
        path: Location of the registry JSON file.
        last_updated: Timestamp of the last save (ISO 8601), empty before load.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self.last_updated = ""
        self._servers: dict[str, ServerRecord] = {}

    def __len__(self) -> int:
        return len(self._servers)

    def __iter__(self) -> Iterator[ServerRecord]:
        return iter(list(self._servers.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._servers

    # === Loading ===

    async def load(self, *, strict: bool = False) -> None:
        """Hydrate the in-memory registry from disk.

        A missing file yields an empty registry that is persisted at once, so
        the file exists after the first run.

        Args:
            strict: Re-raise :class:`CorruptRegistryError` instead of resetting.

        Raises:
            CorruptRegistryError: If the file is malformed and ``strict`` is set.
            ExternalIOError: If the file exists but cannot be read.
        """
        if not self.path.exists():
            log.info("registry_initialized", path=str(self.path))
            self._servers = {}
            await self.save()
            return

        try:
            self._servers = await self._read()
        except CorruptRegistryError as e:
            if strict:
                raise
            backup = self._preserve_corrupt_file()
            log.warning(
                "registry_corrupt_reset",
                path=str(self.path),
                backup=str(backup) if backup else None,
                error=e.message,
            )
            self._servers = {}
            await self.save()
            return

        log.debug("registry_loaded", path=str(self.path), servers=len(self._servers))

    async def _read(self) -> dict[str, ServerRecord]:
        try:
            async with aiofiles.open(self.path, encoding="utf-8") as f:
                content = await f.read()
        except OSError as e:
            raise ExternalIOError(self.path, f"Cannot read registry file: {e}") from e

        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise CorruptRegistryError(self.path, f"Registry file is not valid JSON: {e}") from e

        if not isinstance(data, dict):
            raise CorruptRegistryError(self.path, "Registry file must contain a JSON object")

        self.last_updated = str(data.get("lastUpdated", ""))
        raw_servers = data.get("servers", {})
        try:
            return self._parse_servers(raw_servers)
        except (ValidationError, TypeError, ValueError) as e:
            raise CorruptRegistryError(self.path, f"Registry file has invalid server entries: {e}") from e

    @staticmethod
    def _parse_servers(raw_servers: Any) -> dict[str, ServerRecord]:
        servers: dict[str, ServerRecord] = {}
        if isinstance(raw_servers, list):
            for entry in raw_servers:
                record = ServerRecord.model_validate(entry)
                servers[record.name] = record
        elif isinstance(raw_servers, dict):
            for name, entry in raw_servers.items():
                if not isinstance(entry, dict):
                    raise TypeError(f"entry for {name!r} is not an object")
                record = ServerRecord.model_validate({"name": name, **entry})
                servers[record.name] = record
        else:
            raise TypeError("'servers' must be a list or an object")
        return servers

    def _preserve_corrupt_file(self) -> Path | None:
        backup = self.path.with_name(self.path.name + ".corrupt")
        try:
            shutil.copyfile(self.path, backup)
        except OSError:
            log.warning("registry_backup_failed", path=str(self.path), exc_info=True)
            return None
        return backup

    # === Persistence ===

    async def save(self) -> None:
        """Write the registry to disk atomically.

        Raises:
            ExternalIOError: If the file cannot be written.
        """
        self.last_updated = datetime.now(UTC).isoformat()
        document = {
            "servers": {name: record.to_json() for name, record in self._servers.items()},
            "lastUpdated": self.last_updated,
        }
        tmp_path = self.path.with_name(self.path.name + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(tmp_path, "w", encoding="utf-8") as f:
                await f.write(json.dumps(document, indent=2, ensure_ascii=False))
            tmp_path.replace(self.path)
        except OSError as e:
            raise ExternalIOError(self.path, f"Failed to save registry: {e}") from e

    # === Queries ===

    def list(self) -> list[ServerRecord]:
        """All records in insertion order."""
        return list(self._servers.values())

    def get(self, name: str) -> ServerRecord | None:
        """Exact-name lookup."""
        return self._servers.get(name)

    def find(self, fragment: str) -> ServerRecord | None:
        """First record whose name contains ``fragment``.

        Matching is a plain substring test, so ``find("filesystem")`` returns
        ``@modelcontextprotocol/server-filesystem``. When several names share
        the fragment the earliest inserted one wins. An exact name always
        matches itself, but an earlier record containing it as a substring
        still takes precedence.
        """
        for name, record in self._servers.items():
            if fragment in name:
                return record
        return None

    # === Mutations ===

    async def upsert(self, record: ServerRecord) -> bool:
        """Insert or fully replace the record with the same name.

        Returns:
            True if an existing record was replaced.
        """
        replaced = record.name in self._servers
        self._servers[record.name] = record
        await self.save()
        log.info("server_registered", name=record.name, replaced=replaced)
        return replaced

    async def remove(self, name: str) -> bool:
        """Delete the record named exactly ``name``.

        Returns:
            False, without touching the file, if no such record exists.
        """
        if name not in self._servers:
            return False
        del self._servers[name]
        await self.save()
        log.info("server_removed", name=name)
        return True

    async def set_command_config(self, name: str, command_config: CommandConfig) -> ServerRecord:
        """Record the run command last written to the host config.

        Raises:
            KeyError: If ``name`` is not registered.
        """
        record = self._servers[name]
        updated = record.model_copy(update={"command_config": command_config})
        self._servers[name] = updated
        await self.save()
        return updated

    async def merge_discovered(self, records: Iterable[ServerRecord]) -> int:
        """Merge discovery results into the registry.

        New names are appended. Existing records are left alone except that a
        missing readme is filled in from the discovered record.

        Returns:
            Number of records added.
        """
        added = 0
        for record in records:
            existing = self._servers.get(record.name)
            if existing is None:
                self._servers[record.name] = record
                added += 1
            elif not existing.readme and record.readme:
                self._servers[record.name] = existing.model_copy(update={"readme": record.readme})
        await self.save()
        log.info("registry_merged", added=added, total=len(self._servers))
        return added
