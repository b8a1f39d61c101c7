"""Pydantic models for file synchronization rules and results."""

from enum import Enum

from pydantic import BaseModel, Field


class FileAction(str, Enum):
    """What to do with paths matched by a file rule."""

    COPY = "copy"
    SYMLINK = "symlink"
    IGNORE = "ignore"


class RuleMatch(BaseModel):
    """A path (file or directory) claimed by one rule."""

    rule_index: int
    action: FileAction
    entry: str = Field(description="Relative path the action is applied to")
    claimed: list[str] = Field(
        default_factory=list, description="Candidate paths covered by this entry"
    )
    literal: bool = Field(
        default=False, description="Matched by path existence rather than the candidate set"
    )
    exists: bool = Field(default=True, description="Whether the entry exists in the source tree")


class SyncError(BaseModel):
    """Non-fatal failure for a single path."""

    path: str
    error: str


class SyncResult(BaseModel):
    """Outcome of applying file rules to a worktree."""

    copied: list[str] = Field(default_factory=list)
    symlinked: list[str] = Field(default_factory=list)
    ignored: list[str] = Field(default_factory=list)
    errors: list[SyncError] = Field(default_factory=list)
