"""Custom exception hierarchy for mcp-auto-install.

Components raise these exceptions; the request router in
:mod:`mcp_auto_install.service` turns every :class:`AutoInstallError` except
:class:`UnknownOperationError` into a ``{"success": False, "message": ...}``
envelope, so ordinary failures never escape the operation boundary.

Exception Hierarchy:
    AutoInstallError (base)
    ├── ConfigurationError
    ├── NotRegisteredError
    ├── InvalidRepoUrlError
    ├── MissingConfigPathError
    ├── ExternalIOError
    │   └── CorruptRegistryError
    ├── ShellStepError
    ├── ConfigValidationError
    ├── DiscoveryUnavailableError
    └── UnknownOperationError

Example Usage:
    >>> from mcp_auto_install.exceptions import NotRegisteredError
    >>> try:
    ...     installer_result = await installer.install("filesystem")
    ... except NotRegisteredError as e:
    ...     print(e.message)
"""

from __future__ import annotations

from pathlib import Path


class AutoInstallError(Exception):
    """Base exception for all mcp-auto-install errors.

    Attributes:
        message: Human-readable error description
    """

    def __init__(self, message: str) -> None:
        """Initialize exception.

        Args:
            message: Error message
        """
        self.message = message
        super().__init__(message)


class ConfigurationError(AutoInstallError):
    """Settings file could not be read, parsed or validated."""

    pass


class NotRegisteredError(AutoInstallError):
    """An operation referenced a server name the registry does not know.

    Attributes:
        server_name: The name that failed to resolve.
    """

    def __init__(self, server_name: str) -> None:
        self.server_name = server_name
        super().__init__(f"Server '{server_name}' not found in the registry.")


class InvalidRepoUrlError(AutoInstallError):
    """No usable repository path could be extracted from a URL.

    Attributes:
        repo_url: The URL that could not be interpreted.
    """

    def __init__(self, repo_url: str) -> None:
        self.repo_url = repo_url
        super().__init__(f"Could not determine a package name for repository '{repo_url}'.")


class MissingConfigPathError(AutoInstallError):
    """The external host configuration path is not configured."""

    def __init__(self, variable: str = "MCP_SETTINGS_PATH") -> None:
        self.variable = variable
        super().__init__(
            f"The {variable} environment variable is not set; cannot update the "
            "host application's configuration file. Point it at the LLM client's "
            "config file (for example claude_desktop_config.json)."
        )


class ExternalIOError(AutoInstallError):
    """Reading, writing or parsing one of the JSON files failed.

    Attributes:
        path: The file involved.
    """

    def __init__(self, path: Path | str, message: str) -> None:
        self.path = Path(path)
        super().__init__(f"{message} ({self.path})")


class CorruptRegistryError(ExternalIOError):
    """The persisted registry file exists but is not a valid registry."""

    pass


class ShellStepError(AutoInstallError):
    """An install-time external command exited unsuccessfully.

    The tool's stderr is kept verbatim so callers can surface it unchanged.

    Attributes:
        command: The command line that failed.
        exit_code: The process exit code.
        stderr: Raw error output of the command.
    """

    def __init__(self, command: str, exit_code: int, stderr: str) -> None:
        self.command = command
        self.exit_code = exit_code
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {exit_code}"
        super().__init__(f"Command failed: {command}\n{detail}")


class ConfigValidationError(AutoInstallError):
    """A user-supplied configuration blob is malformed.

    Attributes:
        server_name: The offending server entry, if the failure is entry-specific.
    """

    def __init__(self, message: str, server_name: str | None = None) -> None:
        self.server_name = server_name
        super().__init__(message)


class DiscoveryUnavailableError(AutoInstallError):
    """The package index could not be reached after all retries.

    Attributes:
        namespace: The scope that was being queried.
        attempts: How many attempts were made.
    """

    def __init__(self, namespace: str, attempts: int, message: str) -> None:
        self.namespace = namespace
        self.attempts = attempts
        super().__init__(
            f"Package index unavailable for {namespace} after {attempts} attempts: {message}"
        )


class UnknownOperationError(AutoInstallError):
    """A request named an operation the router does not expose.

    This is a programmer error and is allowed to propagate past the router.
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Unknown operation: {operation}")
