"""Pydantic models for worktree information reported by git."""

from pathlib import Path
from typing import NamedTuple, Optional

from pydantic import BaseModel, Field


class GitVersion(NamedTuple):
    """Semantic version of the git executable."""

    major: int
    minor: int
    patch: int = 0

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"


class WorktreeInfo(BaseModel):
    """Information about a git worktree."""

    path: Path = Field(description="Absolute path to the worktree directory")
    branch: str = Field(description="Branch name checked out in this worktree")
    commit_hash: str = Field(default="", description="Short SHA of the HEAD commit")
    is_prunable: bool = Field(
        default=False, description="Whether git considers the record stale"
    )
    prunable_reason: Optional[str] = Field(default=None)
    is_main: bool = Field(default=False, description="Whether this is the main worktree")
    is_detached: bool = Field(default=False, description="Whether HEAD is detached")
    is_locked: bool = Field(default=False)

    @property
    def name(self) -> str:
        """Get the worktree directory name."""
        return self.path.name

    @property
    def short_path(self) -> str:
        """Get a shortened display path."""
        return f"~/{self.path.relative_to(Path.home())}" if self.path.is_relative_to(
            Path.home()
        ) else str(self.path)


class PruneResult(BaseModel):
    """Stale worktree records removed (or that would be removed)."""

    pruned_paths: list[str] = Field(default_factory=list)
    dry_run: bool = False

    @property
    def pruned_count(self) -> int:
        return len(self.pruned_paths)


class WorktreeStatusSummary(BaseModel):
    """Pending work inside a worktree, checked before removal."""

    staged_changes: int = 0
    unstaged_changes: int = 0
    untracked_files: int = 0
    unpushed_commits: int = 0
    has_upstream: bool = False

    @property
    def has_uncommitted_changes(self) -> bool:
        return bool(self.staged_changes or self.unstaged_changes or self.untracked_files)

    def describe(self) -> list[str]:
        """Human-readable list of what would be lost."""
        notes = []
        if self.staged_changes:
            notes.append(f"{self.staged_changes} staged file(s)")
        if self.unstaged_changes:
            notes.append(f"{self.unstaged_changes} unstaged change(s)")
        if self.untracked_files:
            notes.append(f"{self.untracked_files} untracked file(s)")
        if self.unpushed_commits:
            notes.append(f"{self.unpushed_commits} unpushed commit(s)")
        elif not self.has_upstream:
            notes.append("no upstream branch configured")
        return notes
