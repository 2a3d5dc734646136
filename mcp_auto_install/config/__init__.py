"""Configuration for mcp-auto-install.

Key Components:
    - AutoInstallSettings: Tool settings with YAML and environment loading
    - ExternalConfigReconciler: Merges run commands into the host
      application's JSON config without touching unrelated keys

Example:
    >>> from mcp_auto_install.config import AutoInstallSettings
    >>> settings = AutoInstallSettings.load()
    >>> settings.registry_path
    PosixPath('/home/me/.mcp-auto-install/registry.json')
"""

from mcp_auto_install.config.external import RESERVED_KEY, ExternalConfigReconciler
from mcp_auto_install.config.settings import AutoInstallSettings

__all__ = ["AutoInstallSettings", "ExternalConfigReconciler", "RESERVED_KEY"]
