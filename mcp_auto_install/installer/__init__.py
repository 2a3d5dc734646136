"""Server installation.

Modules:
    resolver: Repository URL to package identifier resolution.
    installer: The install state machine (ephemeral run, then clone).
"""

from mcp_auto_install.installer.installer import ServerInstaller
from mcp_auto_install.installer.resolver import PackageNameResolver

__all__ = ["PackageNameResolver", "ServerInstaller"]
