"""Git worktree operations.

Thin adapter over GitPython. Every git failure surfaces as a
VersionControlError carrying git's own diagnostic text.
"""

import logging
import re
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

from git import Git, Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from worktree_orchestrator.errors import (
    NotAGitRepositoryError,
    UnsupportedGitVersionError,
    VersionControlError,
)
from worktree_orchestrator.models.worktree_info import (
    GitVersion,
    PruneResult,
    WorktreeInfo,
    WorktreeStatusSummary,
)

logger = logging.getLogger(__name__)

# `git worktree remove` first shipped in 2.17.
MIN_GIT_VERSION = GitVersion(2, 17, 0)


def _lines(output: str) -> list[str]:
    return [line for line in output.splitlines() if line.strip()]


class GitAdapter:
    """Wraps the git worktree commands for a single repository."""

    def __init__(self, repo_path: Optional[Union[str, Path]] = None):
        """
        Initialize the adapter.

        Args:
            repo_path: Path inside the git repository. Defaults to current directory.

        Raises:
            NotAGitRepositoryError: If the path is not inside a git repository.
        """
        self.repo_path = Path(repo_path) if repo_path else Path.cwd()
        try:
            self.repo = Repo(self.repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise NotAGitRepositoryError(f"Not a git repository: {self.repo_path}") from e

        if self.repo.working_tree_dir is None:
            raise NotAGitRepositoryError(f"Bare repositories are not supported: {self.repo_path}")
        self.git_root = Path(self.repo.working_tree_dir).resolve()

    def _run(self, *args: str, cwd: Optional[Path] = None, step: Optional[str] = None) -> str:
        """Run a git command, translating failures into VersionControlError."""
        git = Git(str(cwd)) if cwd else self.repo.git
        try:
            return git.execute(["git", *args])
        except GitCommandError as e:
            raise VersionControlError(
                f"git {' '.join(args)} failed",
                stderr=str(e.stderr or e.stdout or ""),
                command=["git", *args],
                step=step,
            ) from e

    @property
    def main_worktree_path(self) -> Path:
        """Root of the main checkout, even when opened from a linked worktree."""
        common_dir = Path(self.repo.common_dir).resolve()
        return common_dir.parent if common_dir.name == ".git" else self.git_root

    def get_tool_version(self) -> GitVersion:
        """Version of the git executable."""
        info = tuple(self.repo.git.version_info)
        padded = (info + (0, 0, 0))[:3]
        return GitVersion(*padded)

    def supports_worktrees(self) -> bool:
        return self.get_tool_version() >= MIN_GIT_VERSION

    def ensure_worktree_support(self) -> GitVersion:
        """
        Raises:
            UnsupportedGitVersionError: If git is older than MIN_GIT_VERSION.
        """
        version = self.get_tool_version()
        if version < MIN_GIT_VERSION:
            raise UnsupportedGitVersionError(
                f"git {version} does not support worktree management "
                f"(requires {MIN_GIT_VERSION} or newer)",
                step="preconditions",
            )
        return version

    def current_branch(self) -> Optional[str]:
        """Branch checked out in the main checkout, or None when detached."""
        try:
            output = self._run("symbolic-ref", "--short", "-q", "HEAD", cwd=self.main_worktree_path)
        except VersionControlError:
            return None
        return output.strip() or None

    def repository_name(self) -> str:
        """Logical repository name from the origin URL, else the directory name."""
        try:
            url = self.repo.remotes.origin.url
        except (AttributeError, IndexError, ValueError):
            return self.main_worktree_path.name

        path = urlparse(url).path if "://" in url else url.rsplit(":", 1)[-1]
        name = path.rstrip("/").rsplit("/", 1)[-1]
        name = re.sub(r"\.git$", "", name)
        return name or self.main_worktree_path.name

    def branch_exists(self, branch: str) -> bool:
        """
        Check if a local branch exists.

        Args:
            branch: Name of the branch to check.

        Returns:
            True if branch exists, False otherwise.
        """
        try:
            self.repo.git.rev_parse("--verify", "--quiet", f"refs/heads/{branch}")
            return True
        except GitCommandError:
            return False

    def list_worktrees(self) -> list[WorktreeInfo]:
        """
        List all worktrees registered for the repository.

        Returns:
            List of WorktreeInfo objects, main worktree first.
        """
        output = self._run("worktree", "list", "--porcelain")

        worktrees = []
        current_wt: dict = {}
        for line in output.split("\n"):
            line = line.strip()

            if not line:
                if current_wt:
                    worktrees.append(self._parse_worktree_entry(current_wt, not worktrees))
                    current_wt = {}
                continue

            key, _, value = line.partition(" ")
            if key == "worktree":
                current_wt["path"] = value
            elif key == "HEAD":
                current_wt["head"] = value
            elif key == "branch":
                current_wt["branch"] = value
            elif key in ("detached", "bare"):
                current_wt[key] = True
            elif key == "locked":
                current_wt["locked"] = True
            elif key == "prunable":
                current_wt["prunable"] = value or "gitdir file points to non-existent location"

        if current_wt:
            worktrees.append(self._parse_worktree_entry(current_wt, not worktrees))

        return worktrees

    def _parse_worktree_entry(self, entry: dict, is_first: bool) -> WorktreeInfo:
        """Parse a porcelain entry into a WorktreeInfo object."""
        path = Path(entry.get("path", ""))
        branch_ref = entry.get("branch", "")

        if branch_ref.startswith("refs/heads/"):
            branch = branch_ref[len("refs/heads/"):]
        else:
            branch = branch_ref or "(detached)"

        prunable_reason = entry.get("prunable")
        if not is_first and prunable_reason is None and not path.exists():
            prunable_reason = "directory does not exist"

        return WorktreeInfo(
            path=path,
            branch=branch,
            commit_hash=entry.get("head", "")[:7],
            is_main=is_first,
            is_detached=entry.get("detached", False),
            is_locked=entry.get("locked", False),
            is_prunable=prunable_reason is not None,
            prunable_reason=prunable_reason,
        )

    def find_worktree(self, identifier: str) -> Optional[WorktreeInfo]:
        """Find a worktree by branch, directory name, or path."""
        for wt in self.list_worktrees():
            if wt.branch == identifier or wt.name == identifier:
                return wt
            if str(wt.path) == identifier:
                return wt
        return None

    def is_branch_checked_out(self, branch: str, exclude_path: Optional[Path] = None) -> bool:
        """Whether branch is checked out in a worktree other than exclude_path."""
        exclude = Path(exclude_path).resolve() if exclude_path else None
        for wt in self.list_worktrees():
            if wt.branch != branch:
                continue
            if exclude is not None and wt.path.resolve() == exclude:
                continue
            return True
        return False

    def add_worktree(
        self,
        path: Path,
        branch: str,
        create_branch: bool = False,
        base_branch: Optional[str] = None,
    ) -> None:
        """
        Create a new working directory bound to branch.

        Args:
            path: Directory to create. Must not exist.
            branch: Branch to check out.
            create_branch: Create branch from base_branch first.
            base_branch: Start point for the new branch. Defaults to HEAD.

        Raises:
            VersionControlError: If git rejects the worktree.
        """
        args = ["worktree", "add"]
        if create_branch:
            args += ["-b", branch, str(path)]
            if base_branch:
                args.append(base_branch)
        else:
            args += [str(path), branch]

        logger.info(f"Adding worktree for '{branch}' at {path}")
        self._run(*args, step="creating")

    def remove_worktree(self, path: Path, force: bool = False) -> None:
        """
        Detach and delete a worktree.

        Raises:
            VersionControlError: If git refuses, e.g. uncommitted changes without force.
        """
        args = ["worktree", "remove"]
        if force:
            args.append("--force")
        args.append(str(path))

        logger.info(f"Removing worktree at {path}")
        self._run(*args, step="removing")

    def prune_worktrees(self, dry_run: bool = False) -> PruneResult:
        """
        Remove administrative records of worktrees whose directory is gone.

        Args:
            dry_run: Report what would be pruned without changing anything.

        Returns:
            PruneResult with the affected worktree paths.
        """
        stale = [str(wt.path) for wt in self.list_worktrees() if wt.is_prunable and not wt.is_locked]

        if not dry_run:
            self._run("worktree", "prune", step="pruning")
            if stale:
                logger.info(f"Pruned {len(stale)} stale worktree record(s)")

        return PruneResult(pruned_paths=stale, dry_run=dry_run)

    def delete_branch(self, branch: str, force: bool = False) -> None:
        """Delete a local branch (``-D`` when force)."""
        self._run("branch", "-D" if force else "-d", branch, step="removing")

    def list_tracked_files(self, path: Optional[Path] = None) -> list[str]:
        """Tracked files under path, relative to it, in POSIX form."""
        output = self._run("ls-files", "-z", cwd=path or self.git_root)
        return [p for p in output.split("\0") if p]

    def list_untracked_files(self, path: Optional[Path] = None) -> list[str]:
        """Untracked files that are not ignored, relative to path."""
        output = self._run("ls-files", "-z", "--others", "--exclude-standard", cwd=path or self.git_root)
        return [p for p in output.split("\0") if p]

    def status_summary(self, worktree_path: Path) -> WorktreeStatusSummary:
        """Count pending changes and unpushed commits in a worktree."""
        staged = _lines(self._run("diff", "--cached", "--name-only", cwd=worktree_path))
        unstaged = _lines(self._run("diff", "--name-only", cwd=worktree_path))
        untracked = _lines(
            self._run("ls-files", "--others", "--exclude-standard", cwd=worktree_path)
        )

        has_upstream = True
        unpushed = 0
        try:
            self._run(
                "rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}", cwd=worktree_path
            )
        except VersionControlError:
            has_upstream = False

        if has_upstream:
            count = self._run("rev-list", "--count", "@{u}..HEAD", cwd=worktree_path).strip()
            unpushed = int(count or 0)

        return WorktreeStatusSummary(
            staged_changes=len(staged),
            unstaged_changes=len(unstaged),
            untracked_files=len(untracked),
            unpushed_commits=unpushed,
            has_upstream=has_upstream,
        )


__all__ = ["GitAdapter", "MIN_GIT_VERSION"]
