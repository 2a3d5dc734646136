"""Resolve a repository URL to an installable package identifier.

The ephemeral-run strategy needs a package name for ``npx``, but registry
records only carry a repository URL. Resolution tries, in order:

1. The external ``npx-scope-finder find <url>`` tool; any non-empty output wins.
2. For GitHub URLs, the packages of the discovery namespace: first one whose
   repository link contains ``owner/repo``, then one whose name ends with
   ``/<repo>``.
3. ``<namespace>/<repo>`` for GitHub URLs with no index match.
4. ``<namespace>/<last path segment>`` for any other URL.

A URL without a usable path segment raises :class:`InvalidRepoUrlError`.
"""

from __future__ import annotations

import re

import structlog

from mcp_auto_install.exceptions import DiscoveryUnavailableError, InvalidRepoUrlError
from mcp_auto_install.models import PackageRecord
from mcp_auto_install.registry.discovery import DEFAULT_NAMESPACE, PackageDiscovery
from mcp_auto_install.utils.async_subprocess import ProcessRunner

log = structlog.get_logger(__name__)

GITHUB_PATTERN = re.compile(r"github\.com[/:]([^/]+)/([^/?#]+?)(?:\.git)?(?:[/?#]|$)")

NAME_FINDER_COMMAND = ("npx", "-y", "npx-scope-finder", "find")


def extract_github_path(url: str) -> tuple[str, str] | None:
    """Extract ``(owner, repo)`` from a GitHub-style URL.

    >>> extract_github_path("git@github.com:modelcontextprotocol/servers.git")
    ('modelcontextprotocol', 'servers')
    """
    match = GITHUB_PATTERN.search(url)
    if not match:
        return None
    return match.group(1), match.group(2)


def last_path_segment(url: str) -> str:
    """Last non-empty path segment of ``url`` with any ``.git`` suffix dropped."""
    segments = [part for part in re.split(r"[/:]", url.strip()) if part]
    if not segments:
        return ""
    segment = segments[-1]
    if segment.endswith(".git"):
        segment = segment[: -len(".git")]
    return segment


class PackageNameResolver:
    """Maps repository URLs to package identifiers.

    Attributes:
        runner: Process runner used for the external name-resolution tool.
        discovery: Index adapter used to match repository links.
        namespace: Scope assumed for fallback names.
    """

    def __init__(
        self,
        runner: ProcessRunner,
        discovery: PackageDiscovery | None = None,
        namespace: str = DEFAULT_NAMESPACE,
    ) -> None:
        self.runner = runner
        self.discovery = discovery
        self.namespace = namespace

    async def resolve(self, repo_url: str) -> str:
        """Resolve ``repo_url`` to a package identifier.

        Raises:
            InvalidRepoUrlError: If no path can be extracted from the URL.
        """
        if not repo_url.strip():
            raise InvalidRepoUrlError(repo_url)

        name = await self._from_external_tool(repo_url)
        if name:
            return name

        github = extract_github_path(repo_url)
        if github is None:
            repo = last_path_segment(repo_url)
            if not repo or repo_url.strip() == repo:
                raise InvalidRepoUrlError(repo_url)
            log.debug("package_name_fallback", repo_url=repo_url, repo=repo)
            return f"{self.namespace}/{repo}"

        owner, repo = github
        name = await self._from_index(owner, repo)
        if name:
            return name
        return f"{self.namespace}/{repo}"

    async def _from_external_tool(self, repo_url: str) -> str | None:
        result = await self.runner.run(*NAME_FINDER_COMMAND, repo_url)
        output = result.stdout.strip()
        if result.ok and output:
            return output.splitlines()[-1].strip()
        log.debug("name_finder_failed", repo_url=repo_url, exit_code=result.exit_code, stderr=result.stderr.strip())
        return None

    async def _from_index(self, owner: str, repo: str) -> str | None:
        if self.discovery is None:
            return None
        try:
            packages = await self.discovery.find_packages()
        except DiscoveryUnavailableError as e:
            log.warning("name_lookup_index_unavailable", error=e.message)
            return None
        return match_package(packages, owner, repo)


def match_package(packages: list[PackageRecord], owner: str, repo: str) -> str | None:
    """Pick the package for ``owner/repo``: repository link first, then name suffix."""
    repo_path = f"{owner}/{repo}"
    for package in packages:
        if repo_path in package.repository:
            return package.name
    for package in packages:
        if package.name.endswith(f"/{repo}"):
            return package.name
    return None
