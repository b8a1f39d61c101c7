"""
Configuration management for worktree-orchestrator.

The configuration lives in a single JSON document inside the repository:

    <repo>/.wto/config.json

    {
      "version": "2.0",
      "worktree": {
        "enabled": true,
        "worktreePath": "..",
        "branchPrefix": "feature/",
        "editor": {"editor": "vscode", "autoLaunch": true, "newWindow": true},
        "dependencies": {"autoInstall": true, "packageManager": "auto"},
        "files": {
          "rules": [{"pattern": ".env", "action": "copy"}],
          "includeUntracked": true
        }
      }
    }

A missing file means "all defaults, disabled". A present but invalid file is
always an error; nothing is silently coerced.
"""

import copy
import json
import logging
from pathlib import Path
from typing import Any, Callable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from worktree_orchestrator.errors import ConfigValidationError, FieldError
from worktree_orchestrator.models.file_sync import FileAction
from worktree_orchestrator.models.tooling import Editor, PackageManager
from worktree_orchestrator.utils.io import atomic_write_text

logger = logging.getLogger(__name__)

CONFIG_DIR = ".wto"
CONFIG_FILENAME = "config.json"
CURRENT_SCHEMA_VERSION = "2.0"
LEGACY_SCHEMA_VERSION = "1.0"


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class FileRule(_Schema):
    """A glob or literal relative path and the action applied to matches."""

    pattern: str = Field(min_length=1)
    action: FileAction


class EditorSettings(_Schema):
    """Editor auto-launch settings."""

    editor: Editor = Editor.VSCODE
    auto_launch: bool = Field(default=False, alias="autoLaunch")
    new_window: bool = Field(default=True, alias="newWindow")


class DependencySettings(_Schema):
    """Dependency installation settings."""

    auto_install: bool = Field(default=False, alias="autoInstall")
    package_manager: PackageManager = Field(
        default=PackageManager.AUTO, alias="packageManager"
    )


class FileSettings(_Schema):
    """File copy/symlink rules for new worktrees."""

    rules: list[FileRule] = Field(default_factory=list)
    include_untracked: bool = Field(default=True, alias="includeUntracked")


class WorktreeConfig(_Schema):
    """Configuration for worktree operations."""

    enabled: bool = False
    worktree_path: str = Field(
        default="..",
        alias="worktreePath",
        description="Base directory for worktrees, relative to the repository root",
    )
    branch_prefix: Optional[str] = Field(default=None, alias="branchPrefix")
    editor: EditorSettings = Field(default_factory=EditorSettings)
    dependencies: DependencySettings = Field(default_factory=DependencySettings)
    files: FileSettings = Field(default_factory=FileSettings)


class OrchestratorConfig(_Schema):
    """Versioned top-level configuration document."""

    version: str = CURRENT_SCHEMA_VERSION
    worktree: WorktreeConfig = Field(default_factory=WorktreeConfig)

    def to_document(self) -> dict[str, Any]:
        """Serialize to the JSON shape stored on disk."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


def _migrate_1_0_to_2_0(document: dict[str, Any]) -> dict[str, Any]:
    worktree = document.get("worktree")
    if isinstance(worktree, dict) and "ide" in worktree:
        ide = worktree.pop("ide")
        worktree.setdefault("editor", ide)
    return document


# Ordered (from_version, to_version, step) transformations.
MIGRATIONS: list[tuple[str, str, Callable[[dict[str, Any]], dict[str, Any]]]] = [
    (LEGACY_SCHEMA_VERSION, "2.0", _migrate_1_0_to_2_0),
]


def _version_key(version: str) -> tuple[int, ...]:
    return tuple(int(part) for part in version.split("."))


def get_config_path(repo_path: Union[str, Path]) -> Path:
    """Get the configuration file path for a repository."""
    return Path(repo_path) / CONFIG_DIR / CONFIG_FILENAME


def _format_location(loc: tuple) -> str:
    parts = [str(part) for part in loc]
    return ".".join(parts) if parts else "<root>"


def _field_errors(error: ValidationError) -> list[FieldError]:
    return [
        FieldError(path=_format_location(item["loc"]), message=item["msg"])
        for item in error.errors()
    ]


def _read_document(config_path: Path) -> dict[str, Any]:
    try:
        raw = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration {config_path}",
            [FieldError(path="<root>", message=str(e))],
            config_path,
        ) from e

    try:
        document = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ConfigValidationError(
            f"Failed to parse configuration {config_path}",
            [FieldError(path="<root>", message=f"Invalid JSON: {e.msg} (line {e.lineno})")],
            config_path,
        ) from e

    if not isinstance(document, dict):
        raise ConfigValidationError(
            f"Invalid configuration {config_path}",
            [FieldError(path="<root>", message="Expected a JSON object")],
            config_path,
        )
    return document


def _upgrade_document(
    document: dict[str, Any], config_path: Optional[Path] = None
) -> tuple[dict[str, Any], bool]:
    """Apply every migration step newer than the document's version.

    Returns the upgraded document and whether anything changed.
    """
    version = document.get("version", LEGACY_SCHEMA_VERSION)
    if not isinstance(version, str):
        raise ConfigValidationError(
            "Invalid configuration",
            [FieldError(path="version", message="Input should be a valid string")],
            config_path,
        )

    try:
        current_key = _version_key(version)
    except ValueError:
        raise ConfigValidationError(
            "Invalid configuration",
            [FieldError(path="version", message=f"Unrecognized schema version '{version}'")],
            config_path,
        ) from None

    if current_key > _version_key(CURRENT_SCHEMA_VERSION):
        raise ConfigValidationError(
            "Invalid configuration",
            [
                FieldError(
                    path="version",
                    message=(
                        f"Schema version {version} is newer than supported "
                        f"version {CURRENT_SCHEMA_VERSION}"
                    ),
                )
            ],
            config_path,
        )

    if current_key == _version_key(CURRENT_SCHEMA_VERSION):
        return document, False

    steps = {
        _version_key(from_version): (to_version, step)
        for from_version, to_version, step in MIGRATIONS
    }
    upgraded = copy.deepcopy(document)
    while current_key != _version_key(CURRENT_SCHEMA_VERSION):
        if current_key not in steps:
            raise ConfigValidationError(
                "Invalid configuration",
                [FieldError(path="version", message=f"Unrecognized schema version '{version}'")],
                config_path,
            )
        to_version, step = steps[current_key]
        from_version = upgraded.get("version", version)
        logger.info(f"Migrating configuration from {from_version} to {to_version}")
        upgraded = step(upgraded)
        upgraded["version"] = to_version
        current_key = _version_key(to_version)

    return upgraded, True


def _validate(
    document: Any, config_path: Optional[Path] = None
) -> OrchestratorConfig:
    try:
        return OrchestratorConfig.model_validate(document)
    except ValidationError as e:
        raise ConfigValidationError(
            "Invalid configuration", _field_errors(e), config_path
        ) from e


def load_config(repo_path: Union[str, Path]) -> OrchestratorConfig:
    """
    Load configuration for a repository, or return defaults.

    Args:
        repo_path: Repository root directory.

    Returns:
        Fully defaulted OrchestratorConfig.

    Raises:
        ConfigValidationError: If the file exists but is malformed or invalid.
    """
    config_path = get_config_path(repo_path)

    if not config_path.exists():
        logger.debug(f"No configuration at {config_path}, using defaults")
        return OrchestratorConfig()

    document = _read_document(config_path)
    document, upgraded = _upgrade_document(document, config_path)
    if upgraded:
        logger.info(
            f"Configuration {config_path} uses an older schema; "
            f"run `wto config migrate` to update the file"
        )
    return _validate(document, config_path)


def save_config(
    repo_path: Union[str, Path],
    config: Union[OrchestratorConfig, dict[str, Any]],
) -> Path:
    """
    Validate and atomically write configuration for a repository.

    Args:
        repo_path: Repository root directory.
        config: Configuration model or raw document.

    Returns:
        Path of the written file.

    Raises:
        ConfigValidationError: If the configuration is invalid.
    """
    config_path = get_config_path(repo_path)
    source = config.to_document() if isinstance(config, OrchestratorConfig) else config
    validated = _validate(source, config_path)

    data = json.dumps(validated.to_document(), indent=2) + "\n"
    atomic_write_text(config_path, data)
    logger.debug(f"Saved configuration to {config_path}")
    return config_path


def migrate_config(repo_path: Union[str, Path]) -> bool:
    """
    Upgrade the stored configuration to the current schema version.

    Args:
        repo_path: Repository root directory.

    Returns:
        True if the file was migrated and re-saved, False if absent or current.

    Raises:
        ConfigValidationError: If the file is malformed or invalid after migration.
    """
    config_path = get_config_path(repo_path)

    if not config_path.exists():
        return False

    document = _read_document(config_path)
    document, upgraded = _upgrade_document(document, config_path)
    if not upgraded:
        _validate(document, config_path)
        return False

    save_config(repo_path, _validate(document, config_path))
    logger.info(f"Migrated configuration to version {CURRENT_SCHEMA_VERSION}")
    return True
