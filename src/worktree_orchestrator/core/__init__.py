"""
Core modules for worktree-orchestrator.

This package contains the core business logic for:
- Worktree naming
- Git worktree operations
- File synchronization
- Dependency installation
- Editor launching
- Lifecycle orchestration
"""

from worktree_orchestrator.core.dependencies import (
    DependencyInstaller,
    detect_package_manager,
    get_install_command,
    interpret_error,
)
from worktree_orchestrator.core.editor import EditorLauncher, get_editor_command
from worktree_orchestrator.core.file_sync import FileSyncEngine, match_rules
from worktree_orchestrator.core.git import MIN_GIT_VERSION, GitAdapter
from worktree_orchestrator.core.naming import (
    construct_branch_name,
    resolve_worktree_name,
    resolve_worktree_path,
    slugify,
)
from worktree_orchestrator.core.orchestrator import MIN_FREE_DISK_BYTES, WorktreeOrchestrator

__all__ = [
    "DependencyInstaller",
    "detect_package_manager",
    "get_install_command",
    "interpret_error",
    "EditorLauncher",
    "get_editor_command",
    "FileSyncEngine",
    "match_rules",
    "MIN_GIT_VERSION",
    "GitAdapter",
    "construct_branch_name",
    "resolve_worktree_name",
    "resolve_worktree_path",
    "slugify",
    "MIN_FREE_DISK_BYTES",
    "WorktreeOrchestrator",
]
