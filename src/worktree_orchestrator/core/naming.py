"""Deterministic worktree directory naming.

Worktrees are created as siblings of the main checkout:

    ~/code/myapp                  main repository
    ~/code/myapp-feature-login    worktree for feature/login

When the main checkout's directory is itself named after its branch
(``~/code/myapp/main``), the branch slug alone is used
(``~/code/myapp/feature-login``).
"""

import hashlib
import re
from pathlib import Path
from typing import Optional

from worktree_orchestrator.errors import ConfigValidationError, FieldError

_NON_SLUG = re.compile(r"[^a-z0-9]+")


def slugify(text: str) -> str:
    """Lower-case text and collapse every run of non ``[a-z0-9]`` into one hyphen."""
    return _NON_SLUG.sub("-", text.lower()).strip("-")


def _branch_slug(branch_name: str) -> str:
    slug = slugify(branch_name)
    if slug:
        return slug
    digest = hashlib.sha1(branch_name.encode("utf-8")).hexdigest()[:8]
    return f"branch-{digest}"


def construct_branch_name(branch_name: str, prefix: Optional[str] = None) -> str:
    """Prepend the configured branch prefix unless it is already present."""
    branch_name = branch_name.strip()
    if not branch_name:
        raise ValueError("Branch name cannot be empty")
    if prefix and not branch_name.startswith(prefix):
        return f"{prefix}{branch_name}"
    return branch_name


def resolve_worktree_name(
    repo_dir_name: str,
    repo_logical_name: str,
    branch_name: str,
    current_branch: Optional[str] = None,
) -> str:
    """
    Compute the worktree directory name for a branch.

    Args:
        repo_dir_name: Name of the main checkout's directory.
        repo_logical_name: Repository name (e.g. from the origin URL).
        branch_name: Branch the worktree will check out.
        current_branch: Branch checked out in the main checkout.

    Returns:
        A name containing only ``[a-z0-9-]`` with no leading/trailing hyphen.
    """
    branch_slug = _branch_slug(branch_name)

    if repo_dir_name == repo_logical_name:
        prefix = slugify(repo_logical_name)
    elif current_branch and repo_dir_name == current_branch:
        return branch_slug
    else:
        prefix = slugify(repo_dir_name)

    return f"{prefix}-{branch_slug}" if prefix else branch_slug


def resolve_base_directory(repo_root: Path, base_path: Optional[str] = "..") -> Path:
    """
    Resolve the directory that holds worktrees.

    Raises:
        ConfigValidationError: If the base resolves inside the repository.
    """
    repo_root = Path(repo_root).resolve()
    if not base_path or base_path == "..":
        return repo_root.parent

    base = Path(base_path).expanduser()
    if not base.is_absolute():
        base = repo_root / base
    base = base.resolve()

    if base == repo_root or base.is_relative_to(repo_root):
        raise ConfigValidationError(
            "Invalid configuration",
            [
                FieldError(
                    path="worktree.worktreePath",
                    message=f"Worktrees cannot be nested inside the repository ({base})",
                )
            ],
        )
    return base


def resolve_worktree_path(
    repo_root: Path, worktree_name: str, base_path: Optional[str] = ".."
) -> Path:
    """Join the worktree base directory with the resolved name."""
    return resolve_base_directory(repo_root, base_path) / worktree_name


__all__ = [
    "construct_branch_name",
    "resolve_base_directory",
    "resolve_worktree_name",
    "resolve_worktree_path",
    "slugify",
]
