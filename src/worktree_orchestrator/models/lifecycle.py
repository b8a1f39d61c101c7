"""Pydantic models for the worktree lifecycle state machine and its results."""

from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field

from worktree_orchestrator.errors import Failure
from worktree_orchestrator.models.file_sync import SyncResult
from worktree_orchestrator.models.tooling import InstallResult, LaunchResult
from worktree_orchestrator.models.worktree_info import WorktreeStatusSummary


class WorktreeState(str, Enum):
    """Lifecycle state of a worktree managed by the orchestrator."""

    NONE = "none"
    CREATING = "creating"
    COPYING_FILES = "copying_files"
    INSTALLING_DEPS = "installing_deps"
    READY = "ready"
    ERROR = "error"
    DELETED = "deleted"


ALLOWED_TRANSITIONS: dict[WorktreeState, frozenset[WorktreeState]] = {
    # NONE -> COPYING_FILES is the reuse path, which skips CREATING.
    WorktreeState.NONE: frozenset({WorktreeState.CREATING, WorktreeState.COPYING_FILES}),
    WorktreeState.CREATING: frozenset({WorktreeState.COPYING_FILES, WorktreeState.ERROR}),
    WorktreeState.COPYING_FILES: frozenset(
        {WorktreeState.INSTALLING_DEPS, WorktreeState.READY, WorktreeState.ERROR}
    ),
    WorktreeState.INSTALLING_DEPS: frozenset({WorktreeState.READY, WorktreeState.ERROR}),
    WorktreeState.READY: frozenset({WorktreeState.DELETED}),
    WorktreeState.ERROR: frozenset({WorktreeState.DELETED}),
    WorktreeState.DELETED: frozenset(),
}


class InvalidTransitionError(RuntimeError):
    """Raised on a transition the state machine does not allow. Indicates a bug."""


class WorktreeMetadata(BaseModel):
    """Runtime record of one orchestration run."""

    branch_name: str
    worktree_path: Path
    parent_repo_path: Path
    created_at: datetime = Field(default_factory=datetime.now)
    status: WorktreeState = WorktreeState.NONE
    spec_id: Optional[str] = None
    history: list[WorktreeState] = Field(default_factory=lambda: [WorktreeState.NONE])

    def transition(self, new_state: WorktreeState) -> None:
        """
        Move to new_state.

        Raises:
            InvalidTransitionError: If the transition is not allowed.
        """
        if new_state not in ALLOWED_TRANSITIONS[self.status]:
            raise InvalidTransitionError(
                f"Cannot transition from {self.status.value} to {new_state.value}"
            )
        self.status = new_state
        self.history.append(new_state)


class CreateOptions(BaseModel):
    """Caller overrides for a create run."""

    skip_worktree: bool = False
    skip_deps: bool = False
    skip_editor: bool = False
    reuse_existing: bool = False
    custom_path: Optional[Path] = None
    force: bool = Field(
        default=False, description="Replace an existing destination directory"
    )
    base_branch: Optional[str] = None
    spec_id: Optional[str] = None


class ApprovalAction(str, Enum):
    ACCEPT = "accept"
    EDIT = "edit"
    CANCEL = "cancel"


class BranchProposal(BaseModel):
    """What the orchestrator is about to create, shown to the caller for approval."""

    branch_name: str
    worktree_path: Path
    base_branch: Optional[str] = None
    branch_exists: bool = False


class ApprovalDecision(BaseModel):
    """Caller's answer to a BranchProposal."""

    action: ApprovalAction = ApprovalAction.ACCEPT
    branch_name: Optional[str] = Field(
        default=None, description="Replacement branch name when action is edit"
    )


class CreateResult(BaseModel):
    """Outcome of a create run."""

    success: bool
    state: WorktreeState
    branch_name: str
    worktree_path: Optional[Path] = None
    metadata: Optional[WorktreeMetadata] = None
    non_fatal_errors: list[str] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    pruned_paths: list[str] = Field(default_factory=list)
    sync: Optional[SyncResult] = None
    install: Optional[InstallResult] = None
    editor: Optional[LaunchResult] = None
    failure: Optional[Failure] = None

    @property
    def exit_code(self) -> int:
        if self.failure is not None:
            return self.failure.exit_code
        return 0


class RemoveResult(BaseModel):
    """Outcome of a remove run."""

    success: bool
    state: WorktreeState
    branch_name: str
    worktree_path: Optional[Path] = None
    branch_deleted: bool = False
    status: Optional[WorktreeStatusSummary] = None
    warnings: list[str] = Field(default_factory=list)
    failure: Optional[Failure] = None

    @property
    def exit_code(self) -> int:
        if self.failure is not None:
            return self.failure.exit_code
        return 0
