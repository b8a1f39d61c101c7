"""Exception hierarchy for worktree orchestration.

Every error knows which lifecycle step it was raised in, what the user can
do about it, and which CLI exit code it maps to. The orchestrator converts
these into ``Failure`` values on its results; adapters simply raise them.
"""

from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field


class FailureKind(str, Enum):
    """Category of a failed operation."""

    CONFIG_INVALID = "config_invalid"
    UNSUPPORTED_GIT = "unsupported_git"
    VERSION_CONTROL = "version_control"
    NOT_FOUND = "not_found"
    DISK_SPACE = "disk_space"
    COLLISION = "collision"
    CANCELLED = "cancelled"
    UNCOMMITTED_CHANGES = "uncommitted_changes"
    PROTECTED_WORKTREE = "protected_worktree"
    FILE_OPERATION = "file_operation"
    DEPENDENCY_INSTALL = "dependency_install"
    EDITOR_LAUNCH = "editor_launch"


EXIT_CODES: dict[FailureKind, int] = {
    FailureKind.COLLISION: 1,
    FailureKind.CANCELLED: 1,
    FailureKind.UNCOMMITTED_CHANGES: 1,
    FailureKind.PROTECTED_WORKTREE: 1,
    FailureKind.DISK_SPACE: 1,
    FailureKind.NOT_FOUND: 2,
    FailureKind.VERSION_CONTROL: 3,
    FailureKind.UNSUPPORTED_GIT: 3,
    FailureKind.FILE_OPERATION: 4,
    FailureKind.DEPENDENCY_INSTALL: 5,
    FailureKind.EDITOR_LAUNCH: 6,
    FailureKind.CONFIG_INVALID: 7,
}


class Failure(BaseModel):
    """Serializable description of why an operation did not succeed."""

    kind: FailureKind
    message: str
    step: Optional[str] = None
    remediation: list[str] = Field(default_factory=list)

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.kind]


class WorktreeError(Exception):
    """Base exception for worktree operations."""

    kind: FailureKind = FailureKind.VERSION_CONTROL
    default_remediation: tuple[str, ...] = ()

    def __init__(
        self,
        message: str,
        step: Optional[str] = None,
        remediation: Optional[list[str]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.step = step
        self.remediation = list(remediation or self.default_remediation)

    @property
    def exit_code(self) -> int:
        return EXIT_CODES[self.kind]

    def to_failure(self) -> Failure:
        return Failure(
            kind=self.kind,
            message=self.message,
            step=self.step,
            remediation=self.remediation,
        )


class FieldError(BaseModel):
    """A single configuration violation."""

    path: str
    message: str

    def __str__(self) -> str:
        return f"{self.path}: {self.message}"


class ConfigValidationError(WorktreeError):
    """Raised when the persisted configuration is malformed or invalid."""

    kind = FailureKind.CONFIG_INVALID
    default_remediation = (
        "Fix the listed fields in the configuration file, or delete it to fall back to defaults.",
    )

    def __init__(
        self,
        message: str,
        errors: Optional[list[FieldError]] = None,
        config_path: Optional[Path] = None,
    ):
        self.errors = errors or []
        self.config_path = config_path
        details = "; ".join(str(e) for e in self.errors)
        full = f"{message}: {details}" if details else message
        super().__init__(full, step="config")


class VersionControlError(WorktreeError):
    """Raised when a git command exits with a non-zero status."""

    kind = FailureKind.VERSION_CONTROL
    default_remediation = (
        "Inspect the git output above and run `git worktree list` to check the repository state.",
    )

    def __init__(
        self,
        message: str,
        stderr: str = "",
        command: Optional[list[str]] = None,
        step: Optional[str] = None,
    ):
        self.stderr = stderr.strip() if stderr else ""
        self.command = command or []
        full = f"{message}: {self.stderr}" if self.stderr else message
        super().__init__(full, step=step)


class NotAGitRepositoryError(VersionControlError):
    """Raised when the path is not a git repository."""

    kind = FailureKind.NOT_FOUND
    default_remediation = ("Run the command from inside a git repository or pass --repo.",)


class UnsupportedGitVersionError(VersionControlError):
    """Raised when the installed git cannot manage worktrees."""

    kind = FailureKind.UNSUPPORTED_GIT
    default_remediation = ("Upgrade git to 2.17 or newer.",)


class WorktreeNotFoundError(WorktreeError):
    """Raised when a worktree cannot be found."""

    kind = FailureKind.NOT_FOUND
    default_remediation = ("Run `wto list` to see the registered worktrees.",)


class FileOperationError(WorktreeError):
    """Raised when files cannot be copied or linked into a worktree."""

    kind = FailureKind.FILE_OPERATION
    default_remediation = ("Check that the destination directory exists and is writable.",)

    def __init__(self, message: str, path: Optional[str] = None, step: Optional[str] = None):
        self.path = path
        super().__init__(message, step=step)


class DependencyInstallError(WorktreeError):
    """Raised when dependency installation fails."""

    kind = FailureKind.DEPENDENCY_INSTALL
    default_remediation = (
        "Run the install command manually inside the worktree; the worktree itself is usable.",
    )

    def __init__(
        self,
        message: str,
        package_manager: str = "",
        output: str = "",
        step: Optional[str] = None,
        remediation: Optional[list[str]] = None,
    ):
        self.package_manager = package_manager
        self.output = output
        super().__init__(message, step=step, remediation=remediation)


class EditorLaunchError(WorktreeError):
    """Raised when an editor cannot be started. Never fatal."""

    kind = FailureKind.EDITOR_LAUNCH
    default_remediation = (
        "Install the editor's command-line launcher or open the worktree manually.",
    )

    def __init__(self, message: str, editor: str = ""):
        self.editor = editor
        super().__init__(message, step="editor")


class DiskSpaceError(WorktreeError):
    """Raised when the destination has too little free space."""

    kind = FailureKind.DISK_SPACE
    default_remediation = ("Free some disk space or choose another location with --path.",)

    def __init__(self, message: str, required: int, available: int):
        self.required = required
        self.available = available
        super().__init__(message, step="preconditions")


class CollisionError(WorktreeError):
    """Raised when the destination directory already exists."""

    kind = FailureKind.COLLISION
    default_remediation = (
        "Pass --reuse-worktree to use the existing directory.",
        "Pass --force to replace it, or choose another location with --path.",
    )

    def __init__(self, message: str, path: Optional[Path] = None):
        self.path = path
        super().__init__(message, step="preconditions")


class UncommittedChangesError(WorktreeError):
    """Raised when removal would discard uncommitted work."""

    kind = FailureKind.UNCOMMITTED_CHANGES
    default_remediation = (
        "Commit or stash the changes first, or pass --force to discard them.",
    )


class ProtectedWorktreeError(WorktreeError):
    """Raised when asked to remove the main worktree."""

    kind = FailureKind.PROTECTED_WORKTREE
    default_remediation = ("The main checkout cannot be removed; name a linked worktree instead.",)


class ApprovalCancelledError(WorktreeError):
    """Raised when the user declines the proposed operation."""

    kind = FailureKind.CANCELLED
    default_remediation = ("Nothing was changed; re-run the command when ready.",)


__all__ = [
    "ApprovalCancelledError",
    "CollisionError",
    "ConfigValidationError",
    "DependencyInstallError",
    "DiskSpaceError",
    "EXIT_CODES",
    "EditorLaunchError",
    "Failure",
    "FailureKind",
    "FieldError",
    "FileOperationError",
    "NotAGitRepositoryError",
    "ProtectedWorktreeError",
    "UncommittedChangesError",
    "UnsupportedGitVersionError",
    "VersionControlError",
    "WorktreeError",
    "WorktreeNotFoundError",
]
