"""Worktree lifecycle orchestration.

Drives one create or remove run through the lifecycle:

    NONE -> CREATING -> COPYING_FILES -> [INSTALLING_DEPS] -> READY
                 \\            \\                  \\
                  +---------- ERROR ---------------+

Preconditions (git version, disk space, approval, collision) are checked
before anything is mutated. Failures while creating the worktree or copying
files roll the worktree back; a failed dependency install leaves the
worktree in place but skips the editor launch. Expected failures are
returned as a typed ``Failure`` on the result, never raised.
"""

import logging
import shutil
from pathlib import Path
from typing import Callable, Optional, Union

from worktree_orchestrator.config import OrchestratorConfig, load_config
from worktree_orchestrator.core.dependencies import DependencyInstaller
from worktree_orchestrator.core.editor import EditorLauncher
from worktree_orchestrator.core.file_sync import FileSyncEngine
from worktree_orchestrator.core.git import GitAdapter
from worktree_orchestrator.core.naming import (
    construct_branch_name,
    resolve_worktree_name,
    resolve_worktree_path,
)
from worktree_orchestrator.errors import (
    ApprovalCancelledError,
    CollisionError,
    DependencyInstallError,
    DiskSpaceError,
    ProtectedWorktreeError,
    UncommittedChangesError,
    VersionControlError,
    WorktreeError,
    WorktreeNotFoundError,
)
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
from worktree_orchestrator.models.worktree_info import (
    PruneResult,
    WorktreeInfo,
    WorktreeStatusSummary,
)
from worktree_orchestrator.utils.io import free_disk_bytes

logger = logging.getLogger(__name__)

MIN_FREE_DISK_BYTES = 100 * 1024 * 1024
MAX_APPROVAL_ROUNDS = 5

ApprovalCallback = Callable[[BranchProposal], ApprovalDecision]
ConfirmCallback = Callable[[WorktreeInfo, WorktreeStatusSummary], bool]
ProgressCallback = Callable[[str], None]


def accept_all(proposal: BranchProposal) -> ApprovalDecision:
    return ApprovalDecision(action=ApprovalAction.ACCEPT)


class WorktreeOrchestrator:
    """Creates and removes worktrees for one repository.

    Example:
        >>> orchestrator = WorktreeOrchestrator("/code/myapp")
        >>> result = orchestrator.create("login", CreateOptions(skip_editor=True))
        >>> result.state, result.worktree_path
        (<WorktreeState.READY: 'ready'>, PosixPath('/code/myapp-feature-login'))
    """

    def __init__(
        self,
        repo_path: Optional[Union[str, Path]] = None,
        config: Optional[OrchestratorConfig] = None,
        git: Optional[GitAdapter] = None,
        file_sync: Optional[FileSyncEngine] = None,
        installer: Optional[DependencyInstaller] = None,
        launcher: Optional[EditorLauncher] = None,
        approve: Optional[ApprovalCallback] = None,
        on_progress: Optional[ProgressCallback] = None,
        install_timeout: Optional[float] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            repo_path: Path inside the repository. Defaults to current directory.
            config: Configuration to use. Loaded from the repository when omitted.
            git: Version-control adapter.
            file_sync: File synchronization engine.
            installer: Dependency installer.
            launcher: Editor launcher.
            approve: Called with the proposed branch before any mutation.
            on_progress: Receives human-readable progress messages.
            install_timeout: Seconds before a dependency install is killed.

        Raises:
            NotAGitRepositoryError: If repo_path is not inside a git repository.
            ConfigValidationError: If the stored configuration is invalid.
        """
        self.git = git or GitAdapter(repo_path)
        self.repo_root = self.git.main_worktree_path
        self.config = config if config is not None else load_config(self.repo_root)
        self.file_sync = file_sync or FileSyncEngine(self.git)
        self.installer = installer or DependencyInstaller()
        self.launcher = launcher or EditorLauncher()
        self.approve = approve or accept_all
        self.on_progress = on_progress
        self.install_timeout = install_timeout

    def reload_config(self) -> OrchestratorConfig:
        """Re-read the configuration file, replacing the current configuration."""
        self.config = load_config(self.repo_root)
        return self.config

    def _progress(self, message: str) -> None:
        logger.info(message)
        if self.on_progress:
            self.on_progress(message)

    # Preconditions

    def _destination(self, branch: str, options: CreateOptions) -> Path:
        if options.custom_path:
            path = Path(options.custom_path).expanduser()
            if not path.is_absolute():
                path = Path.cwd() / path
            path = path.resolve()
            if path == self.repo_root or path.is_relative_to(self.repo_root):
                raise CollisionError(
                    f"Worktree path {path} is inside the repository", path=path
                )
            return path

        name = resolve_worktree_name(
            self.repo_root.name,
            self.git.repository_name(),
            branch,
            self.git.current_branch(),
        )
        return resolve_worktree_path(self.repo_root, name, self.config.worktree.worktree_path)

    def _check_disk_space(self, destination: Path) -> None:
        available = free_disk_bytes(destination.parent)
        if available < MIN_FREE_DISK_BYTES:
            raise DiskSpaceError(
                f"Only {available // (1024 * 1024)} MiB free at {destination.parent}; "
                f"at least {MIN_FREE_DISK_BYTES // (1024 * 1024)} MiB required",
                required=MIN_FREE_DISK_BYTES,
                available=available,
            )

    def _request_approval(
        self, branch: str, destination: Path, options: CreateOptions
    ) -> tuple[str, Path]:
        for _ in range(MAX_APPROVAL_ROUNDS):
            proposal = BranchProposal(
                branch_name=branch,
                worktree_path=destination,
                base_branch=options.base_branch,
                branch_exists=self.git.branch_exists(branch),
            )
            decision = self.approve(proposal)

            if decision.action == ApprovalAction.ACCEPT:
                return branch, destination
            if decision.action == ApprovalAction.CANCEL:
                raise ApprovalCancelledError(
                    f"Creation of '{branch}' cancelled", step="approval"
                )

            edited = (decision.branch_name or "").strip()
            if edited and edited != branch:
                branch = construct_branch_name(edited)
                destination = self._destination(branch, options)

        raise ApprovalCancelledError(
            f"No decision for '{branch}' after {MAX_APPROVAL_ROUNDS} edits", step="approval"
        )

    def _check_collision(self, branch: str, destination: Path, options: CreateOptions) -> bool:
        """
        Returns:
            True when the existing destination is reused.

        Raises:
            CollisionError: If the destination exists and may not be reused or replaced,
                or the branch is checked out in another worktree.
        """
        exists = destination.exists() or destination.is_symlink()

        if exists and options.reuse_existing:
            if not destination.is_dir():
                raise CollisionError(
                    f"Cannot reuse {destination}: not a directory", path=destination
                )
            logger.info(f"Reusing existing directory {destination}")
            return True

        if exists and not options.force:
            raise CollisionError(f"Destination already exists: {destination}", path=destination)

        if self.git.is_branch_checked_out(branch, exclude_path=destination):
            raise CollisionError(
                f"Branch '{branch}' is already checked out in another worktree",
                path=destination,
            )

        if exists:
            self._replace_destination(destination)
        return False

    def _replace_destination(self, destination: Path) -> None:
        self._progress(f"Removing existing {destination} (--force)")
        registered = {wt.path.resolve() for wt in self.git.list_worktrees() if not wt.is_main}
        if destination.resolve() in registered:
            self.git.remove_worktree(destination, force=True)
        if destination.is_symlink() or destination.is_file():
            destination.unlink()
        elif destination.exists():
            shutil.rmtree(destination)

    def _advisory_prune(self, result: CreateResult) -> None:
        try:
            pruned = self.git.prune_worktrees()
        except VersionControlError as e:
            logger.warning(f"Advisory prune failed: {e.message}")
            result.non_fatal_errors.append(f"prune: {e.message}")
            return

        result.pruned_paths = pruned.pruned_paths
        if pruned.pruned_paths:
            self._progress(f"Pruned {pruned.pruned_count} stale worktree record(s)")

    # Create

    def create(self, branch_name: str, options: Optional[CreateOptions] = None) -> CreateResult:
        """
        Create a worktree for branch_name and prepare it for work.

        Args:
            branch_name: Branch to check out. The configured prefix is applied.
            options: Caller overrides.

        Returns:
            CreateResult describing the final state. success is False only when
            the worktree could not be made usable; editor problems are non-fatal.

        Raises:
            ValueError: If branch_name is empty.
        """
        options = options or CreateOptions()
        settings = self.config.worktree
        branch = construct_branch_name(branch_name, settings.branch_prefix)

        if options.skip_worktree or not settings.enabled:
            reason = "skipped by caller" if options.skip_worktree else "disabled in configuration"
            logger.info(f"Worktree creation {reason}")
            return CreateResult(
                success=True,
                state=WorktreeState.NONE,
                branch_name=branch,
                skipped=["worktree"],
            )

        try:
            self.git.ensure_worktree_support()
            destination = self._destination(branch, options)
            self._check_disk_space(destination)
            branch, destination = self._request_approval(branch, destination, options)
            reuse = self._check_collision(branch, destination, options)
        except WorktreeError as e:
            return self._failed(branch, e, WorktreeState.NONE, step="preconditions")

        metadata = WorktreeMetadata(
            branch_name=branch,
            worktree_path=destination,
            parent_repo_path=self.repo_root,
            spec_id=options.spec_id,
        )
        result = CreateResult(
            success=False,
            state=WorktreeState.NONE,
            branch_name=branch,
            worktree_path=destination,
            metadata=metadata,
        )
        self._advisory_prune(result)

        created_branch = False
        if reuse:
            result.skipped.append("creating")
        else:
            metadata.transition(WorktreeState.CREATING)
            created_branch = not self.git.branch_exists(branch)
            self._progress(f"Creating worktree for '{branch}' at {destination}")
            try:
                self.git.add_worktree(
                    destination,
                    branch,
                    create_branch=created_branch,
                    base_branch=options.base_branch,
                )
            except WorktreeError as e:
                self._rollback(metadata, created_branch)
                return self._failed(branch, e, WorktreeState.ERROR, "creating", result)

        metadata.transition(WorktreeState.COPYING_FILES)
        files = settings.files
        try:
            result.sync = self.file_sync.apply_rules(
                self.repo_root,
                destination,
                files.rules,
                include_untracked=files.include_untracked,
                on_progress=self.on_progress,
            )
        except WorktreeError as e:
            if not reuse:
                self._rollback(metadata, created_branch)
            return self._failed(branch, e, WorktreeState.ERROR, "copying_files", result)

        result.non_fatal_errors.extend(f"{err.path}: {err.error}" for err in result.sync.errors)

        deps = settings.dependencies
        if deps.auto_install and not options.skip_deps:
            metadata.transition(WorktreeState.INSTALLING_DEPS)
            self._progress("Installing dependencies")
            result.install = self.installer.install(
                destination,
                deps.package_manager,
                on_progress=self.on_progress,
                timeout=self.install_timeout,
            )
            if not result.install.success:
                command = " ".join(result.install.command)
                error = DependencyInstallError(
                    result.install.interpretation or result.install.error or "Install failed",
                    package_manager=result.install.package_manager.value,
                    output=result.install.output,
                    step="installing_deps",
                    remediation=[
                        f"Run `{command}` inside {destination}; the worktree is otherwise ready.",
                    ],
                )
                result.skipped.append("editor")
                return self._failed(branch, error, WorktreeState.ERROR, "installing_deps", result)
        else:
            result.skipped.append("dependencies")

        metadata.transition(WorktreeState.READY)
        result.state = WorktreeState.READY
        result.success = True
        self._progress(f"Worktree ready at {destination}")

        editor = settings.editor
        if editor.auto_launch and not options.skip_editor:
            result.editor = self.launcher.launch(editor.editor, destination, editor.new_window)
            if not result.editor.success:
                result.non_fatal_errors.append(f"editor: {result.editor.error}")
        else:
            result.skipped.append("editor")

        return result

    def _failed(
        self,
        branch: str,
        error: WorktreeError,
        state: WorktreeState,
        step: str,
        result: Optional[CreateResult] = None,
    ) -> CreateResult:
        if error.step is None:
            error.step = step
        logger.error(f"{error.step}: {error.message}")

        if result is None:
            result = CreateResult(success=False, state=state, branch_name=branch)
        if result.metadata is not None and result.metadata.status != state:
            result.metadata.transition(state)
        result.success = False
        result.state = state
        result.failure = error.to_failure()
        return result

    def _rollback(self, metadata: WorktreeMetadata, created_branch: bool) -> None:
        """Best-effort removal of everything this run created."""
        destination = metadata.worktree_path
        self._progress(f"Rolling back {destination}")

        try:
            registered = {wt.path.resolve() for wt in self.git.list_worktrees() if not wt.is_main}
            if destination.resolve() in registered:
                self.git.remove_worktree(destination, force=True)
        except VersionControlError as e:
            logger.warning(f"Rollback could not unregister worktree: {e.message}")

        if destination.exists() or destination.is_symlink():
            try:
                if destination.is_dir() and not destination.is_symlink():
                    shutil.rmtree(destination)
                else:
                    destination.unlink()
            except OSError as e:
                logger.warning(f"Rollback could not delete {destination}: {e}")

        try:
            self.git.prune_worktrees()
        except VersionControlError as e:
            logger.warning(f"Rollback prune failed: {e.message}")

        if created_branch and self.git.branch_exists(metadata.branch_name):
            try:
                self.git.delete_branch(metadata.branch_name, force=True)
            except VersionControlError as e:
                logger.warning(f"Rollback could not delete branch: {e.message}")

    # Remove

    def _find(self, branch_name: str) -> Optional[WorktreeInfo]:
        candidates = [branch_name]
        prefix = self.config.worktree.branch_prefix
        if prefix:
            candidates.append(construct_branch_name(branch_name, prefix))

        for candidate in candidates:
            worktree = self.git.find_worktree(candidate)
            if worktree is not None:
                return worktree
        return None

    def remove(
        self,
        branch_name: str,
        force: bool = False,
        delete_branch: bool = False,
        confirm: Optional[ConfirmCallback] = None,
    ) -> RemoveResult:
        """
        Remove the worktree for branch_name.

        Args:
            branch_name: Branch, directory name, or path of the worktree.
            force: Remove despite uncommitted changes.
            delete_branch: Also delete the branch when no other worktree uses it.
            confirm: Called with the worktree and its pending work; False cancels.

        Returns:
            RemoveResult with state DELETED on success.
        """
        worktree = self._find(branch_name)
        if worktree is None:
            error = WorktreeNotFoundError(
                f"No worktree found for '{branch_name}'", step="removing"
            )
            return self._remove_failed(branch_name, error, WorktreeState.NONE)

        branch = worktree.branch
        result = RemoveResult(
            success=False,
            state=WorktreeState.READY,
            branch_name=branch,
            worktree_path=worktree.path,
        )

        if worktree.is_main:
            error = ProtectedWorktreeError(
                f"{worktree.path} is the main worktree", step="removing"
            )
            return self._remove_failed(branch, error, WorktreeState.READY, result)

        if not worktree.path.exists():
            result.warnings.append(f"{worktree.path} no longer exists; pruning its record")
            try:
                self.git.prune_worktrees()
            except VersionControlError as e:
                return self._remove_failed(branch, e, WorktreeState.READY, result)
        else:
            try:
                status = self.git.status_summary(worktree.path)
            except VersionControlError as e:
                return self._remove_failed(branch, e, WorktreeState.READY, result)

            result.status = status
            result.warnings.extend(status.describe())

            if status.has_uncommitted_changes and not force:
                error = UncommittedChangesError(
                    f"Worktree {worktree.path} has uncommitted changes: "
                    f"{', '.join(status.describe())}",
                    step="removing",
                )
                return self._remove_failed(branch, error, WorktreeState.READY, result)

            if confirm is not None and not confirm(worktree, status):
                error = ApprovalCancelledError(
                    f"Removal of {worktree.path} cancelled", step="removing"
                )
                return self._remove_failed(branch, error, WorktreeState.READY, result)

            try:
                self.git.remove_worktree(worktree.path, force=force)
            except VersionControlError as e:
                return self._remove_failed(branch, e, WorktreeState.READY, result)

        result.state = WorktreeState.DELETED
        result.success = True
        self._progress(f"Removed worktree {worktree.path}")

        if delete_branch and not worktree.is_detached:
            self._delete_branch(branch, force, result)

        return result

    def _delete_branch(self, branch: str, force: bool, result: RemoveResult) -> None:
        if self.git.is_branch_checked_out(branch):
            result.warnings.append(f"Branch '{branch}' is checked out elsewhere; not deleted")
            return

        try:
            self.git.delete_branch(branch, force=force)
        except VersionControlError as e:
            result.warnings.append(f"Branch '{branch}' not deleted: {e.message}")
            return

        result.branch_deleted = True
        self._progress(f"Deleted branch '{branch}'")

    def _remove_failed(
        self,
        branch: str,
        error: WorktreeError,
        state: WorktreeState,
        result: Optional[RemoveResult] = None,
    ) -> RemoveResult:
        if error.step is None:
            error.step = "removing"
        logger.error(f"{error.step}: {error.message}")

        if result is None:
            result = RemoveResult(success=False, state=state, branch_name=branch)
        result.success = False
        result.state = state
        result.failure = error.to_failure()
        return result

    # Queries

    def list_worktrees(self) -> list[WorktreeInfo]:
        return self.git.list_worktrees()

    def prune(self, dry_run: bool = False) -> PruneResult:
        """Remove stale worktree records."""
        return self.git.prune_worktrees(dry_run=dry_run)


__all__ = [
    "MIN_FREE_DISK_BYTES",
    "WorktreeOrchestrator",
    "accept_all",
]
