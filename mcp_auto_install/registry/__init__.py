"""Server registry and package discovery.

Modules:
    store: Persistent name-keyed registry of known servers.
    discovery: Package index client and normalisation of index entries
        into registry records.
"""

from mcp_auto_install.registry.discovery import NpmIndexClient, PackageDiscovery, normalize_package
from mcp_auto_install.registry.store import RegistryStore

__all__ = ["NpmIndexClient", "PackageDiscovery", "RegistryStore", "normalize_package"]
