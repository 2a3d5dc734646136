"""Request router and composition root.

:class:`AutoInstallService` owns the registry store and wires it into the
discovery adapter, installer and host-config reconciler. Both outer surfaces
(the protocol server in :mod:`mcp_auto_install.server` and the CLI in
:mod:`mcp_auto_install.main`) call into it.

Every operation returns an :class:`~mcp_auto_install.models.OperationResult`.
Ordinary failures (unknown server, failed install step, malformed config,
unreachable index) come back as ``success=False`` with a message; they never
raise. The one exception is :meth:`AutoInstallService.dispatch` with an
operation name that does not exist, which raises
:class:`~mcp_auto_install.exceptions.UnknownOperationError`.

Example:
    >>> service = AutoInstallService.create(AutoInstallSettings.load())
    >>> await service.startup()
    >>> result = await service.dispatch("installServer", {"serverName": "filesystem"})
    >>> result.success
    True
"""

from __future__ import annotations

import functools
from collections.abc import Awaitable, Callable
from typing import Any, NamedTuple

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from mcp_auto_install.config.external import ExternalConfigReconciler
from mcp_auto_install.config.settings import AutoInstallSettings
from mcp_auto_install.exceptions import AutoInstallError, NotRegisteredError, UnknownOperationError
from mcp_auto_install.installer.installer import ServerInstaller
from mcp_auto_install.installer.resolver import PackageNameResolver
from mcp_auto_install.models import OperationResult, ServerRecord
from mcp_auto_install.registry.discovery import DISCOVERY_TAG, NpmIndexClient, PackageDiscovery
from mcp_auto_install.registry.store import RegistryStore
from mcp_auto_install.utils.async_subprocess import ProcessRunner

log = structlog.get_logger(__name__)

README_TEMPLATE = """# {name} README

{readme}

---

Based on the README above:
1. Summarize the main features and purpose of this MCP server
2. Explain how to configure the required parameters
3. Give a simple usage example"""

CONFIGURE_EXPLANATION = "Please refer to the README content for configuration instructions."
NO_SUGGESTION_MESSAGE = "I couldn't identify any server needs in your message."


# === Operation arguments ===


class _Arguments(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class NoArguments(_Arguments):
    pass


class ServerNameArguments(_Arguments):
    server_name: str = Field(..., alias="serverName", min_length=1)


class InstallServerArguments(ServerNameArguments):
    use_npx: bool = Field(default=True, alias="useNpx")


class ConfigureServerArguments(ServerNameArguments):
    purpose: str = ""
    query: str = ""


class SaveCommandArguments(ServerNameArguments):
    command: str = Field(..., min_length=1)
    args: list[str] | None = None
    env: dict[str, str] | None = None


class ParseConfigArguments(_Arguments):
    config: str


class SuggestServerArguments(_Arguments):
    message: str


class Operation(NamedTuple):
    """A routable operation: service method name and its argument model."""

    method: str
    arguments: type[BaseModel]


OPERATIONS: dict[str, Operation] = {
    "getAvailableServers": Operation("get_available_servers", NoArguments),
    "installServer": Operation("install_server", InstallServerArguments),
    "registerServer": Operation("register_server", ServerRecord),
    "removeServer": Operation("remove_server", ServerNameArguments),
    "configureServer": Operation("configure_server", ConfigureServerArguments),
    "getServerReadme": Operation("get_server_readme", ServerNameArguments),
    "saveCommand": Operation("save_command", SaveCommandArguments),
    "parseConfig": Operation("parse_config", ParseConfigArguments),
    "refreshRegistry": Operation("refresh_registry", NoArguments),
    "suggestServer": Operation("suggest_server", SuggestServerArguments),
}


def operation(
    func: Callable[..., Awaitable[OperationResult]],
) -> Callable[..., Awaitable[OperationResult]]:
    """Turn :class:`AutoInstallError` raised by ``func`` into a failed result."""

    @functools.wraps(func)
    async def wrapper(self: AutoInstallService, *args: Any, **kwargs: Any) -> OperationResult:
        try:
            return await func(self, *args, **kwargs)
        except UnknownOperationError:
            raise
        except AutoInstallError as e:
            log.warning("operation_failed", operation=func.__name__, error=e.message)
            return OperationResult.fail(e.message)

    return wrapper


class AutoInstallService:
    """Routes named operations to the registry, installer and reconciler.

    Attributes:
        settings: Settings the components were built from.
        store: The single registry instance for this process.
        discovery: Package index adapter.
        installer: Install state machine.
        reconciler: Host config writer.
    """

    def __init__(
        self,
        settings: AutoInstallSettings,
        store: RegistryStore,
        discovery: PackageDiscovery,
        installer: ServerInstaller,
        reconciler: ExternalConfigReconciler,
    ) -> None:
        self.settings = settings
        self.store = store
        self.discovery = discovery
        self.installer = installer
        self.reconciler = reconciler

    @classmethod
    def create(cls, settings: AutoInstallSettings) -> AutoInstallService:
        """Build every component from ``settings``."""
        store = RegistryStore(settings.registry_path)
        client = NpmIndexClient(
            settings.npm_registry_url,
            timeout=settings.discovery_timeout,
            retries=settings.discovery_retries,
            retry_delay=settings.discovery_retry_delay,
        )
        discovery = PackageDiscovery(client, settings.namespace, settings.sdk_package)
        runner = ProcessRunner()
        resolver = PackageNameResolver(runner, discovery, settings.namespace)
        installer = ServerInstaller(store, resolver, runner, settings.servers_dir, settings.bin_dir)
        reconciler = ExternalConfigReconciler(store, settings.external_config_path)
        return cls(settings, store, discovery, installer, reconciler)

    async def startup(self, discover: bool | None = None) -> None:
        """Load the registry and, optionally, merge in discovered packages.

        Args:
            discover: Query the package index; defaults to
                ``settings.discover_on_start``. An unreachable index is logged
                and the persisted registry is used as is.

        Raises:
            CorruptRegistryError: If the registry is corrupt and
                ``settings.strict_registry`` is set.
        """
        await self.store.load(strict=self.settings.strict_registry)
        if self.settings.discover_on_start if discover is None else discover:
            await self.discovery.refresh(self.store)
        log.info("service_started", servers=len(self.store))

    async def aclose(self) -> None:
        await self.discovery.client.aclose()

    async def __aenter__(self) -> AutoInstallService:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # === Dispatch ===

    async def dispatch(self, name: str, arguments: dict[str, Any] | None = None) -> OperationResult:
        """Run the operation registered under its protocol name.

        Raises:
            UnknownOperationError: If ``name`` is not a known operation.
        """
        op = OPERATIONS.get(name)
        if op is None:
            raise UnknownOperationError(name)

        try:
            parsed = op.arguments.model_validate(arguments or {})
        except ValidationError as e:
            log.warning("operation_arguments_invalid", operation=name, errors=e.error_count())
            return OperationResult.fail(f"Invalid arguments for {name}: {e}")

        handler = getattr(self, op.method)
        if isinstance(parsed, ServerRecord):
            return await handler(parsed)
        return await handler(**dict(parsed))

    # === Operations ===

    @operation
    async def get_available_servers(self) -> OperationResult:
        servers = [record.to_json() for record in self.store.list()]
        return OperationResult.ok(f"Found {len(servers)} registered servers.", servers=servers)

    @operation
    async def install_server(self, server_name: str, use_npx: bool = True) -> OperationResult:
        result = await self.installer.install(server_name, use_npx=use_npx)
        return OperationResult(
            success=result.success,
            message=result.message,
            strategy=result.strategy.value if result.strategy else None,
            installPath=str(result.install_path) if result.install_path else None,
            scriptPath=str(result.script_path) if result.script_path else None,
            packageName=result.package_name,
            error=result.error if not result.success else None,
        )

    @operation
    async def register_server(self, record: ServerRecord) -> OperationResult:
        replaced = await self.store.upsert(record)
        return OperationResult.ok(
            f"Server '{record.name}' has been registered successfully.",
            replaced=replaced,
        )

    @operation
    async def remove_server(self, server_name: str) -> OperationResult:
        if not await self.store.remove(server_name):
            raise NotRegisteredError(server_name)
        return OperationResult.ok(f"Server '{server_name}' has been removed successfully.")

    @operation
    async def get_server_readme(self, server_name: str) -> OperationResult:
        record = self._find(server_name)
        if not record.readme:
            return OperationResult.fail(
                f"No README is cached for '{record.name}'. "
                "Run 'mcp-auto-install refresh' to fetch package documentation."
            )
        return OperationResult.ok(
            "README fetch successful",
            readmeContent=README_TEMPLATE.format(name=record.name, readme=record.readme),
        )

    @operation
    async def configure_server(self, server_name: str, purpose: str = "", query: str = "") -> OperationResult:
        record = self._find(server_name)
        readme = await self.get_server_readme(record.name)
        if not readme.success:
            return OperationResult.fail(f"Failed to get README for {record.name}: {readme.message}")

        explanation = CONFIGURE_EXPLANATION
        if purpose:
            explanation += f"\nIntended use: {purpose}"
        if query:
            explanation += f"\nQuestion: {query}"
        return OperationResult.ok(
            f"Configuration help for {record.name}",
            readmeContent=readme.get("readmeContent"),
            explanation=explanation,
            suggestedCommand=f"mcp-auto-install install {record.name}",
        )

    @operation
    async def save_command(
        self,
        server_name: str,
        command: str,
        args: list[str] | None = None,
        env: dict[str, str] | None = None,
    ) -> OperationResult:
        """Save a run command to the host config.

        Without ``args`` the command is treated as a whole command line and
        split into executable and arguments.
        """
        if args is None:
            record = await self.reconciler.save_command_line(server_name, command)
        else:
            record = await self.reconciler.save_command(server_name, command, args, env)
        saved = record.command_config
        line = " ".join([saved.command, *saved.args]) if saved else command
        return OperationResult.ok(
            f'Saved command "{line}" for {server_name} to {self.reconciler.config_path}',
            commandConfig=saved.model_dump() if saved else None,
        )

    @operation
    async def parse_config(self, config: str) -> OperationResult:
        merged = await self.reconciler.parse_config(config)
        return OperationResult.ok(
            f"Configuration parsed and saved to {self.reconciler.config_path}",
            config=merged,
        )

    @operation
    async def refresh_registry(self) -> OperationResult:
        added = await self.discovery.populate(self.store)
        return OperationResult.ok(
            f"Registry refreshed: {added} new servers, {len(self.store)} total.",
            added=added,
            total=len(self.store),
        )

    @operation
    async def suggest_server(self, message: str) -> OperationResult:
        """Suggest the first registered server whose keywords occur in ``message``."""
        for record in self.store:
            if record.matches(message, ignore=(DISCOVERY_TAG,)):
                return OperationResult.ok(
                    f"The {record.name} server may help with this request: {record.description}",
                    server=record.name,
                    suggestedCommand=f"mcp-auto-install install {record.name}",
                )
        return OperationResult.fail(NO_SUGGESTION_MESSAGE)

    def _find(self, server_name: str) -> ServerRecord:
        record = self.store.find(server_name)
        if record is None:
            raise NotRegisteredError(server_name)
        return record
