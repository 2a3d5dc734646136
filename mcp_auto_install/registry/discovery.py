"""Package discovery against the npm registry.

Discovery enumerates every executable package in a scope (by default
``@modelcontextprotocol``) and turns each into a registry record. It has two
layers:

- :class:`NpmIndexClient` talks HTTP. It pages through the registry's search
  endpoint for ``scope:<namespace>`` and fetches each package document to
  learn the latest version's ``bin`` entries, repository link and README.
  Every request is retried a fixed number of times with a fixed delay.
- :func:`normalize_package` and :class:`PackageDiscovery` turn those
  heterogeneous documents into :class:`~mcp_auto_install.models.ServerRecord`
  values and merge them into the registry.

Example:
    >>> async with NpmIndexClient() as client:
    ...     discovery = PackageDiscovery(client)
    ...     added = await discovery.populate(store)
"""

from __future__ import annotations

import asyncio
from typing import Any

import httpx
import structlog

from mcp_auto_install.exceptions import DiscoveryUnavailableError
from mcp_auto_install.models import PackageRecord, ServerRecord
from mcp_auto_install.registry.store import RegistryStore
from mcp_auto_install.utils.retry import async_retry

log = structlog.get_logger(__name__)

DEFAULT_NAMESPACE = "@modelcontextprotocol"
DEFAULT_SDK_PACKAGE = "@modelcontextprotocol/sdk"
DISCOVERY_TAG = "mcp"
SERVER_NAME_PREFIXES = ("mcp-server-", "server-", "mcp-")

SEARCH_PAGE_SIZE = 250
MAX_CONCURRENT_FETCHES = 8


def clean_repository_url(url: str) -> str:
    """Normalise a repository link from package metadata.

    ``git+https://github.com/o/r.git`` becomes ``https://github.com/o/r``;
    ``git://`` and ``ssh://git@`` forms are mapped to https.
    """
    url = url.strip()
    if url.startswith("git+"):
        url = url[4:]
    if url.startswith("git://"):
        url = "https://" + url[len("git://") :]
    if url.startswith("ssh://git@"):
        url = "https://" + url[len("ssh://git@") :]
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return url


def server_type_from_name(package_name: str) -> str:
    """Derive the short server-type tag from a package name.

    >>> server_type_from_name("@modelcontextprotocol/server-filesystem")
    'filesystem'
    """
    tail = package_name.rsplit("/", 1)[-1]
    for prefix in SERVER_NAME_PREFIXES:
        if tail.startswith(prefix) and len(tail) > len(prefix):
            return tail[len(prefix) :]
    return tail


def normalize_package(
    package: PackageRecord,
    sdk_package: str = DEFAULT_SDK_PACKAGE,
) -> ServerRecord | None:
    """Build a registry record from a discovered package.

    Returns:
        None for the SDK package itself, which is a library, not a server.
    """
    if not package.name or package.name == sdk_package:
        return None

    server_type = server_type_from_name(package.name)
    return ServerRecord(
        name=package.name,
        repo_url=package.repository,
        command=f"npx {package.name}",
        description=package.description or f"MCP {server_type} server",
        keywords=[*package.keywords, server_type, DISCOVERY_TAG],
        readme=package.readme or None,
    )


class NpmIndexClient:
    """HTTP client for the npm registry search and package endpoints.

    Attributes:
        base_url: Registry root, without trailing slash.
        retries: Attempts per request.
        retry_delay: Seconds between attempts.
    """

    def __init__(
        self,
        base_url: str = "https://registry.npmjs.org",
        timeout: float = 15.0,
        retries: int = 3,
        retry_delay: float = 1.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.retries = retries
        self.retry_delay = retry_delay
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    async def __aenter__(self) -> NpmIndexClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        @async_retry(
            max_attempts=self.retries,
            delay=self.retry_delay,
            exceptions=(httpx.HTTPError, ValueError),
        )
        async def fetch() -> Any:
            response = await self.client.get(url, params=params)
            response.raise_for_status()
            return response.json()

        return await fetch()

    async def search_scope(self, namespace: str) -> list[dict[str, Any]]:
        """Return the raw search hits for every package in ``namespace``.

        Raises:
            DiscoveryUnavailableError: If the search endpoint keeps failing.
        """
        scope = namespace.lstrip("@")
        hits: list[dict[str, Any]] = []
        offset = 0
        while True:
            params = {"text": f"scope:{scope}", "size": SEARCH_PAGE_SIZE, "from": offset}
            try:
                data = await self._get_json(f"{self.base_url}/-/v1/search", params=params)
            except (httpx.HTTPError, ValueError) as e:
                raise DiscoveryUnavailableError(namespace, self.retries, str(e)) from e

            objects = data.get("objects", []) if isinstance(data, dict) else []
            hits.extend(obj.get("package", {}) for obj in objects if isinstance(obj, dict))
            offset += len(objects)
            total = data.get("total", 0) if isinstance(data, dict) else 0
            if not objects or offset >= total:
                break
        return [hit for hit in hits if str(hit.get("name", "")).startswith(f"@{scope}/")]

    async def get_packument(self, name: str) -> dict[str, Any]:
        """Fetch the full package document for ``name``.

        Raises:
            httpx.HTTPError: If the document cannot be fetched after retries.
        """
        data = await self._get_json(f"{self.base_url}/{name.replace('/', '%2F')}")
        return data if isinstance(data, dict) else {}

    async def find_executables(self, namespace: str) -> list[PackageRecord]:
        """List executable packages in ``namespace`` with README and repository.

        Packages whose document cannot be fetched are skipped with a warning;
        only a failing search aborts discovery.

        Raises:
            DiscoveryUnavailableError: If the search endpoint is unreachable.
        """
        hits = await self.search_scope(namespace)
        semaphore = asyncio.Semaphore(MAX_CONCURRENT_FETCHES)

        async def describe(hit: dict[str, Any]) -> PackageRecord | None:
            name = str(hit.get("name", ""))
            async with semaphore:
                try:
                    packument = await self.get_packument(name)
                except (httpx.HTTPError, ValueError) as e:
                    log.warning("package_fetch_failed", package=name, error=str(e))
                    return None
            return package_from_documents(hit, packument)

        described = await asyncio.gather(*(describe(hit) for hit in hits))
        packages = [pkg for pkg in described if pkg is not None and pkg.executables]
        log.info("packages_discovered", namespace=namespace, found=len(hits), executable=len(packages))
        return packages


def package_from_documents(hit: dict[str, Any], packument: dict[str, Any]) -> PackageRecord:
    """Combine a search hit and a package document into a :class:`PackageRecord`."""
    name = str(hit.get("name") or packument.get("name") or "")
    latest = str(hit.get("version") or packument.get("dist-tags", {}).get("latest", ""))
    version_doc = packument.get("versions", {}).get(latest, {}) if latest else {}

    bin_field = version_doc.get("bin") if isinstance(version_doc, dict) else None
    if isinstance(bin_field, dict):
        executables = [str(key) for key in bin_field]
    elif isinstance(bin_field, str) and bin_field:
        executables = [name.rsplit("/", 1)[-1]]
    else:
        executables = []

    repository = (hit.get("links") or {}).get("repository") or ""
    if not repository:
        repo_field = packument.get("repository")
        if isinstance(repo_field, dict):
            repository = repo_field.get("url", "") or ""
        elif isinstance(repo_field, str):
            repository = repo_field

    keywords = hit.get("keywords") or packument.get("keywords") or []
    readme = packument.get("readme") or (version_doc.get("readme") if isinstance(version_doc, dict) else None)

    return PackageRecord(
        name=name,
        version=latest,
        description=str(hit.get("description") or packument.get("description") or ""),
        keywords=[str(k) for k in keywords] if isinstance(keywords, list) else [],
        repository=clean_repository_url(str(repository)) if repository else "",
        executables=executables,
        readme=readme or None,
    )


class PackageDiscovery:
    """Populates the registry from the package index.

    Attributes:
        client: Index client used for all requests.
        namespace: Scope that is enumerated.
        sdk_package: Package in the scope that is skipped.
    """

    def __init__(
        self,
        client: NpmIndexClient,
        namespace: str = DEFAULT_NAMESPACE,
        sdk_package: str = DEFAULT_SDK_PACKAGE,
    ) -> None:
        self.client = client
        self.namespace = namespace
        self.sdk_package = sdk_package

    async def find_packages(self) -> list[PackageRecord]:
        """Raw executable packages in the namespace.

        Raises:
            DiscoveryUnavailableError: If the index is unreachable.
        """
        return await self.client.find_executables(self.namespace)

    async def discover(self) -> list[ServerRecord]:
        """Normalised registry records for the namespace.

        Raises:
            DiscoveryUnavailableError: If the index is unreachable.
        """
        records: list[ServerRecord] = []
        for package in await self.find_packages():
            try:
                record = normalize_package(package, self.sdk_package)
            except ValueError as e:
                log.warning("package_normalize_failed", package=package.name, error=str(e))
                continue
            if record is not None:
                records.append(record)
        return records

    async def populate(self, store: RegistryStore) -> int:
        """Merge discovered records into ``store``.

        Returns:
            Number of newly added records.

        Raises:
            DiscoveryUnavailableError: If the index is unreachable.
        """
        return await store.merge_discovered(await self.discover())

    async def refresh(self, store: RegistryStore) -> int | None:
        """Like :meth:`populate`, but an unreachable index only logs.

        Returns:
            Number of added records, or None when the index was unavailable
            and the registry was left as persisted.
        """
        try:
            return await self.populate(store)
        except DiscoveryUnavailableError as e:
            log.warning("discovery_unavailable", namespace=self.namespace, error=e.message)
            return None
