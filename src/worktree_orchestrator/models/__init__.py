"""
Pydantic models for worktree-orchestrator.

This package contains data models for:
- Worktree information reported by git
- File synchronization results
- Package manager and editor tooling
- The worktree lifecycle and its results
"""

from worktree_orchestrator.models.file_sync import RuleMatch, SyncError, SyncResult
from worktree_orchestrator.models.lifecycle import (
    ApprovalAction,
    ApprovalDecision,
    BranchProposal,
    CreateOptions,
    CreateResult,
    RemoveResult,
    WorktreeMetadata,
    WorktreeState,
)
from worktree_orchestrator.models.tooling import (
    Editor,
    EditorInfo,
    InstallResult,
    LaunchResult,
    PackageManager,
)
from worktree_orchestrator.models.worktree_info import (
    GitVersion,
    PruneResult,
    WorktreeInfo,
    WorktreeStatusSummary,
)

__all__ = [
    "RuleMatch",
    "SyncError",
    "SyncResult",
    "ApprovalAction",
    "ApprovalDecision",
    "BranchProposal",
    "CreateOptions",
    "CreateResult",
    "RemoveResult",
    "WorktreeMetadata",
    "WorktreeState",
    "Editor",
    "EditorInfo",
    "InstallResult",
    "LaunchResult",
    "PackageManager",
    "GitVersion",
    "PruneResult",
    "WorktreeInfo",
    "WorktreeStatusSummary",
]
