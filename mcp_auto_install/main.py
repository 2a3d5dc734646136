"""CLI entry point for mcp-auto-install.

Every subcommand except ``start`` runs one router operation and prints its
message: on stdout when it succeeded, on stderr when it did not. Business
failures (unknown server, failed install, invalid config) still exit 0; the
message is the failure signal. Only a broken settings file or a protocol
server that cannot start exits non-zero.

Running the command without a subcommand starts the protocol server.
"""

import asyncio
import sys
from typing import Any

import click
import structlog

from mcp_auto_install import __version__
from mcp_auto_install.config.settings import AutoInstallSettings
from mcp_auto_install.exceptions import AutoInstallError, ConfigurationError
from mcp_auto_install.models import OperationResult
from mcp_auto_install.server import run as run_server
from mcp_auto_install.service import AutoInstallService
from mcp_auto_install.utils.logging_config import configure_logging

log = structlog.get_logger(__name__)


def _split_list(value: str | None) -> list[str]:
    if not value:
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


async def _dispatch(
    settings: AutoInstallSettings,
    operation: str,
    arguments: dict[str, Any] | None,
) -> OperationResult:
    async with AutoInstallService.create(settings) as service:
        await service.startup(discover=False)
        return await service.dispatch(operation, arguments)


def _run(ctx: click.Context, operation: str, arguments: dict[str, Any] | None = None) -> OperationResult:
    """Run ``operation`` and print its message."""
    settings = ctx.obj["settings"]
    try:
        result = asyncio.run(_dispatch(settings, operation, arguments))
    except AutoInstallError as e:
        log.debug("cli_operation_error", operation=operation, exc_info=True)
        result = OperationResult.fail(e.message)

    click.echo(result.message, err=not result.success)
    return result


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    type=click.Path(dir_okay=False),
    default=None,
    help="Path to a YAML settings file (default: ~/.mcp-auto-install/config.yaml)",
)
@click.option("--log-level", default=None, help="Logging level (default: WARNING)")
@click.version_option(__version__, prog_name="mcp-auto-install")
@click.pass_context
def cli(ctx: click.Context, config: str | None, log_level: str | None) -> None:
    """mcp-auto-install: find, install and configure MCP servers."""
    try:
        settings = AutoInstallSettings.load(config)
    except ConfigurationError as e:
        click.echo(f"Error: {e.message}", err=True)
        sys.exit(1)

    configure_logging(log_level or settings.log_level)
    ctx.obj = {"settings": settings}

    if ctx.invoked_subcommand is None:
        ctx.invoke(start)


@cli.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """Start the MCP server on stdio."""
    try:
        run_server(ctx.obj["settings"])
    except KeyboardInterrupt:
        click.echo("\nInterrupted by user", err=True)
        sys.exit(130)
    except Exception as e:
        click.echo(f"Error: failed to start server: {e}", err=True)
        log.error("server_start_failed", exc_info=True)
        sys.exit(1)


@cli.command("list")
@click.option("--verbose", "-v", is_flag=True, help="Show repository and keywords")
@click.pass_context
def list_servers(ctx: click.Context, verbose: bool) -> None:
    """List registered MCP servers."""
    result = _run(ctx, "getAvailableServers")
    for server in result.get("servers", []):
        click.echo(f"  {server['name']} - {server.get('description', '')}")
        if verbose:
            if server.get("repo"):
                click.echo(f"      repo: {server['repo']}")
            if server.get("keywords"):
                click.echo(f"      keywords: {', '.join(server['keywords'])}")


@cli.command()
@click.argument("name")
@click.option("--clone", is_flag=True, help="Clone and build instead of trying npx first")
@click.pass_context
def install(ctx: click.Context, name: str, clone: bool) -> None:
    """Install a registered MCP server."""
    result = _run(ctx, "installServer", {"serverName": name, "useNpx": not clone})
    if not result.success and result.get("error"):
        click.echo(result.get("error"), err=True)


@cli.command()
@click.argument("name")
@click.option("--repo", "-r", required=True, help="Repository URL")
@click.option("--command", "-c", "command", required=True, help="Command used to run the server")
@click.option("--description", "-d", required=True, help="Server description")
@click.option("--keywords", "-k", default=None, help="Comma-separated keywords")
@click.option("--install-commands", "-i", default=None, help="Comma-separated install commands")
@click.pass_context
def register(
    ctx: click.Context,
    name: str,
    repo: str,
    command: str,
    description: str,
    keywords: str | None,
    install_commands: str | None,
) -> None:
    """Register a new MCP server, or replace one with the same name."""
    _run(
        ctx,
        "registerServer",
        {
            "name": name,
            "repo": repo,
            "command": command,
            "description": description,
            "keywords": _split_list(keywords),
            "installCommands": _split_list(install_commands) or None,
        },
    )


@cli.command()
@click.argument("name")
@click.pass_context
def remove(ctx: click.Context, name: str) -> None:
    """Remove a registered MCP server (exact name)."""
    _run(ctx, "removeServer", {"serverName": name})


@cli.command()
@click.argument("name")
@click.option("--purpose", "-p", default="", help="What you want to do with the server")
@click.option("--query", "-q", default="", help="A specific configuration question")
@click.pass_context
def configure(ctx: click.Context, name: str, purpose: str, query: str) -> None:
    """Show configuration help for an MCP server."""
    result = _run(ctx, "configureServer", {"serverName": name, "purpose": purpose, "query": query})
    if result.success:
        click.echo(f"\n{result.get('readmeContent', '')}\n")
        click.echo(result.get("explanation", ""))
        click.echo(f"\nInstall with: {result.get('suggestedCommand')}")


@cli.command()
@click.argument("name")
@click.pass_context
def readme(ctx: click.Context, name: str) -> None:
    """Show the README of an MCP server."""
    result = _run(ctx, "getServerReadme", {"serverName": name})
    if result.success:
        click.echo(result.get("readmeContent", ""))


@cli.command("save-command", context_settings={"ignore_unknown_options": True})
@click.argument("name")
@click.argument("command", nargs=-1, required=True, type=click.UNPROCESSED)
@click.pass_context
def save_command(ctx: click.Context, name: str, command: tuple[str, ...]) -> None:
    """Save a server's run command to the LLM client's config.

    COMMAND is either one quoted command line or the executable followed by
    its arguments, for example: npx -y @modelcontextprotocol/server-git
    """
    if len(command) == 1:
        arguments: dict[str, Any] = {"serverName": name, "command": command[0]}
    else:
        arguments = {"serverName": name, "command": command[0], "args": list(command[1:])}
    _run(ctx, "saveCommand", arguments)


@cli.command("parse-config")
@click.argument("file", type=click.File("r"), default="-")
@click.pass_context
def parse_config(ctx: click.Context, file: Any) -> None:
    """Merge the mcpServers of a JSON config (FILE, or stdin) into the LLM client's config."""
    _run(ctx, "parseConfig", {"config": file.read()})


@cli.command()
@click.pass_context
def refresh(ctx: click.Context) -> None:
    """Merge newly published servers from the package index into the registry."""
    _run(ctx, "refreshRegistry")


if __name__ == "__main__":
    cli()
