"""Protocol server exposing the router as MCP tools over stdio.

The server's lifespan is the composition root: it builds the
:class:`~mcp_auto_install.service.AutoInstallService` from settings, loads the
registry (refreshing it from the package index when configured) and closes the
HTTP client on shutdown. Every tool forwards to
:meth:`AutoInstallService.dispatch` under its protocol name and returns the
``{"success", "message", ...}`` envelope as a dict.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

import structlog
from mcp.server.fastmcp import FastMCP
from mcp.types import ToolAnnotations

from mcp_auto_install import __version__
from mcp_auto_install.config.settings import AutoInstallSettings
from mcp_auto_install.service import NO_SUGGESTION_MESSAGE, AutoInstallService

log = structlog.get_logger(__name__)

SERVER_NAME = "mcp-auto-install"

INSTRUCTIONS = (
    "mcp-auto-install keeps a registry of MCP servers and installs them on request. "
    "Use getAvailableServers to see what is known, getServerReadme or configureServer "
    "to learn how a server is configured, installServer to install it, and saveCommand "
    "or parseConfig to write its run command into the LLM client's configuration."
)


@dataclass
class _Runtime:
    service: AutoInstallService | None = None

    def require(self) -> AutoInstallService:
        if self.service is None:
            raise RuntimeError("mcp-auto-install server has not started")
        return self.service


def create_server(
    settings: AutoInstallSettings | None = None,
    service: AutoInstallService | None = None,
) -> FastMCP:
    """Build the FastMCP server.

    Args:
        settings: Settings for the service built at startup; loaded from the
            default locations when omitted.
        service: An already started service to use instead of building one.
    """
    runtime = _Runtime(service)

    @asynccontextmanager
    async def lifespan(server: FastMCP) -> AsyncIterator[AutoInstallService]:
        if runtime.service is not None:
            yield runtime.service
            return

        built = AutoInstallService.create(settings or AutoInstallSettings.load())
        try:
            await built.startup()
            runtime.service = built
            log.info("protocol_server_ready", servers=len(built.store))
            yield built
        finally:
            runtime.service = None
            await built.aclose()

    mcp = FastMCP(SERVER_NAME, instructions=INSTRUCTIONS, lifespan=lifespan)

    async def call(name: str, arguments: dict[str, Any] | None = None) -> dict[str, Any]:
        result = await runtime.require().dispatch(name, arguments)
        return result.to_dict()

    # Read-only tools

    @mcp.tool(name="getAvailableServers", annotations=ToolAnnotations(readOnlyHint=True))
    async def get_available_servers() -> dict[str, Any]:
        """List all registered MCP servers."""
        return await call("getAvailableServers")

    @mcp.tool(name="getServerReadme", annotations=ToolAnnotations(readOnlyHint=True))
    async def get_server_readme(serverName: str) -> dict[str, Any]:
        """Get the README of a registered server, with guidance for summarising it."""
        return await call("getServerReadme", {"serverName": serverName})

    @mcp.tool(name="configureServer", annotations=ToolAnnotations(readOnlyHint=True))
    async def configure_server(serverName: str, purpose: str = "", query: str = "") -> dict[str, Any]:
        """Get configuration help for a server.

        Args:
            serverName: Name of the server to configure.
            purpose: What the user wants to do with the server.
            query: A specific question about configuring it.
        """
        return await call("configureServer", {"serverName": serverName, "purpose": purpose, "query": query})

    # Mutating tools

    @mcp.tool(name="installServer", annotations=ToolAnnotations(destructiveHint=True))
    async def install_server(serverName: str, useNpx: bool = True) -> dict[str, Any]:
        """Install a registered server.

        Args:
            serverName: Name of the server to install.
            useNpx: Try running the package with npx first (true) or clone the
                repository and build it (false).
        """
        return await call("installServer", {"serverName": serverName, "useNpx": useNpx})

    @mcp.tool(name="registerServer")
    async def register_server(
        name: str,
        repo: str,
        command: str,
        description: str,
        keywords: list[str] | None = None,
        installCommands: list[str] | None = None,
    ) -> dict[str, Any]:
        """Register a new server, or replace the one with the same name."""
        return await call(
            "registerServer",
            {
                "name": name,
                "repo": repo,
                "command": command,
                "description": description,
                "keywords": keywords or [],
                "installCommands": installCommands,
            },
        )

    @mcp.tool(name="removeServer", annotations=ToolAnnotations(destructiveHint=True))
    async def remove_server(serverName: str) -> dict[str, Any]:
        """Remove a server from the registry. The name must match exactly."""
        return await call("removeServer", {"serverName": serverName})

    @mcp.tool(name="saveCommand")
    async def save_command(
        serverName: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """Save a server's run command to the LLM client's configuration file.

        Args:
            serverName: Name of the server.
            command: Executable, e.g. ``npx``. When ``args`` is omitted this is
                read as a whole command line.
            args: Arguments for the executable.
            env: Extra environment variables.
        """
        return await call("saveCommand", {"serverName": serverName, "command": command, "args": args, "env": env})

    @mcp.tool(name="parseConfig")
    async def parse_config(config: str) -> dict[str, Any]:
        """Validate a JSON configuration with an ``mcpServers`` map and merge it into the client configuration."""
        return await call("parseConfig", {"config": config})

    @mcp.tool(name="refreshRegistry")
    async def refresh_registry() -> dict[str, Any]:
        """Merge newly published servers from the package index into the registry."""
        return await call("refreshRegistry")

    @mcp.prompt(name="detect-server-need", description="Detect which MCP server could help with a message")
    async def detect_server_need(message: str) -> str:
        result = await runtime.require().suggest_server(message)
        if not result.success:
            return NO_SUGGESTION_MESSAGE
        return (
            f"{result.message}\n"
            f"Install it with the installServer tool (serverName: {result.get('server')}), "
            "or run: " + str(result.get("suggestedCommand"))
        )

    return mcp


def run(settings: AutoInstallSettings | None = None) -> None:
    """Serve over stdio until the client disconnects."""
    log.info("protocol_server_starting", version=__version__)
    create_server(settings).run(transport="stdio")
