"""Domain models for the server registry, discovery and installer.

Registry records are persisted with the camelCase keys that the registry file
has always used (``repo``, ``installCommands``, ``commandConfig``); Python code
works with snake_case attributes.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CommandConfig(BaseModel):
    """A run command as written into the host application's config."""

    command: str = Field(..., min_length=1, description="Executable to launch")
    args: list[str] = Field(default_factory=list, description="Arguments passed to the executable")
    env: dict[str, str] = Field(default_factory=dict, description="Extra environment variables")


class ServerRecord(BaseModel):
    """Metadata for one installable protocol server.

    Attributes:
        name: Unique registry key, possibly a scoped package name.
        repo_url: Source repository; empty string means unknown.
        command: Token used to invoke the server once installed.
        description: Human-readable summary.
        keywords: Tags used for matching, insertion order preserved.
        install_commands: Shell commands run after clone instead of the
            default build sequence.
        command_config: Last run command persisted to the host config.
        readme: Cached documentation text.
    """

    model_config = ConfigDict(populate_by_name=True)

    name: str = Field(..., min_length=1)
    repo_url: str = Field(default="", alias="repo")
    command: str
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    install_commands: list[str] | None = Field(default=None, alias="installCommands")
    command_config: CommandConfig | None = Field(default=None, alias="commandConfig")
    readme: str | None = None

    @field_validator("repo_url", mode="before")
    @classmethod
    def _repo_never_null(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("keywords", mode="before")
    @classmethod
    def _dedupe_keywords(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, list | tuple):
            return list(dict.fromkeys(str(k) for k in value if str(k)))
        return value

    def to_json(self) -> dict[str, Any]:
        """Serialise with the registry file's key names, omitting unset optionals."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def matches(self, text: str, ignore: tuple[str, ...] = ()) -> bool:
        """Whether any keyword not in ``ignore`` occurs in ``text`` (case-insensitive)."""
        lowered = text.lower()
        skipped = {word.lower() for word in ignore}
        return any(
            keyword.lower() in lowered for keyword in self.keywords if keyword.lower() not in skipped
        )


class PackageRecord(BaseModel):
    """A package as reported by the package index, before normalisation."""

    name: str
    version: str = ""
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    repository: str = ""
    executables: list[str] = Field(default_factory=list)
    readme: str | None = None


class OperationResult(BaseModel):
    """Uniform result envelope returned by every router operation.

    Operation-specific fields ride along as extra attributes:

        >>> OperationResult(success=True, message="ok", installPath="/x").to_dict()
        {'success': True, 'message': 'ok', 'installPath': '/x'}
    """

    model_config = ConfigDict(extra="allow")

    success: bool
    message: str

    @classmethod
    def fail(cls, message: str, **extra: Any) -> OperationResult:
        return cls(success=False, message=message, **extra)

    @classmethod
    def ok(cls, message: str, **extra: Any) -> OperationResult:
        return cls(success=True, message=message, **extra)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)

    def get(self, key: str, default: Any = None) -> Any:
        """Read an operation-specific field."""
        return self.to_dict().get(key, default)


class InstallStrategy(str, Enum):
    """How a server gets installed."""

    NPX = "npx"
    CLONE = "clone"


class InstallState(str, Enum):
    """States of the install state machine."""

    SELECT_STRATEGY = "select_strategy"
    TRY_NPX = "try_npx"
    CLONE = "clone"
    DEPS = "deps"
    BUILD_OR_CUSTOM = "build_or_custom"
    DONE = "done"
    FAILED = "failed"


class InstallResult(BaseModel):
    """Outcome of an install request.

    Attributes:
        success: Whether the server ended in the DONE state.
        message: Human-readable summary.
        strategy: The strategy that produced the final outcome.
        install_path: Clone directory (clone strategy).
        script_path: Generated wrapper script (ephemeral-run strategy).
        package_name: Resolved package identifier, when one was resolved.
        output: Captured stdout of the decisive command.
        error: Raw error text of the failure, or informational stderr.
        states: Visited states, in order.
    """

    success: bool
    message: str
    strategy: InstallStrategy | None = None
    install_path: Path | None = None
    script_path: Path | None = None
    package_name: str | None = None
    output: str = ""
    error: str = ""
    states: list[InstallState] = Field(default_factory=list)
