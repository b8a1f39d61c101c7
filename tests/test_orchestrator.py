"""
Tests for WorktreeOrchestrator create/remove flows against real repositories.
"""

import shutil
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, patch

import pytest

from conftest import run_git, snapshot
from worktree_orchestrator.config import OrchestratorConfig
from worktree_orchestrator.core.dependencies import DependencyInstaller
from worktree_orchestrator.core.editor import EditorLauncher
from worktree_orchestrator.core.file_sync import FileSyncEngine
from worktree_orchestrator.core.git import GitAdapter
from worktree_orchestrator.core.orchestrator import WorktreeOrchestrator
from worktree_orchestrator.errors import FailureKind, FileOperationError, VersionControlError
from worktree_orchestrator.models.lifecycle import (
    ApprovalAction,
    ApprovalDecision,
    BranchProposal,
    CreateOptions,
    WorktreeState,
)
from worktree_orchestrator.models.tooling import (
    Editor,
    InstallResult,
    LaunchResult,
    PackageManager,
)
from worktree_orchestrator.models.worktree_info import GitVersion

S = WorktreeState


def make_config(**worktree: Any) -> OrchestratorConfig:
    return OrchestratorConfig.model_validate({"worktree": {"enabled": True, **worktree}})


def make_orchestrator(repo: Path, config: OrchestratorConfig = None, **kwargs: Any) -> WorktreeOrchestrator:
    return WorktreeOrchestrator(repo, config=config or make_config(), **kwargs)


def registered_paths(repo: Path) -> list[Path]:
    return [wt.path.resolve() for wt in GitAdapter(repo).list_worktrees()]


class TestCreate:
    """Test cases for the happy paths of create()."""

    def test_disabled_configuration_does_nothing(self, git_repo: Path, temp_directory: Path) -> None:
        before = snapshot(temp_directory)
        orchestrator = WorktreeOrchestrator(git_repo)

        result = orchestrator.create("login")

        assert result.success is True
        assert result.state == S.NONE
        assert result.skipped == ["worktree"]
        assert result.exit_code == 0
        assert snapshot(temp_directory) == before

    def test_skip_worktree_option(self, git_repo: Path) -> None:
        result = make_orchestrator(git_repo).create("login", CreateOptions(skip_worktree=True))

        assert result.state == S.NONE
        assert result.worktree_path is None

    def test_create_ready_worktree(self, git_repo: Path, temp_directory: Path) -> None:
        installer = MagicMock(spec=DependencyInstaller)
        launcher = MagicMock(spec=EditorLauncher)
        messages: list[str] = []
        orchestrator = make_orchestrator(
            git_repo, installer=installer, launcher=launcher, on_progress=messages.append
        )

        result = orchestrator.create("feature/login")

        expected = temp_directory / "test-repo-feature-login"
        assert result.success is True
        assert result.state == S.READY
        assert result.worktree_path == expected
        assert result.metadata.history == [S.NONE, S.CREATING, S.COPYING_FILES, S.READY]
        assert result.metadata.parent_repo_path == git_repo
        assert result.skipped == ["dependencies", "editor"]
        assert (expected / "README.md").exists()
        assert expected in registered_paths(git_repo)
        assert GitAdapter(git_repo).branch_exists("feature/login")
        installer.install.assert_not_called()
        launcher.launch.assert_not_called()
        assert any("Worktree ready" in m for m in messages)

    def test_branch_prefix_is_applied(self, git_repo: Path, temp_directory: Path) -> None:
        orchestrator = make_orchestrator(git_repo, make_config(branchPrefix="feature/"))

        result = orchestrator.create("login")

        assert result.branch_name == "feature/login"
        assert result.worktree_path == temp_directory / "test-repo-feature-login"

    def test_existing_branch_is_checked_out(self, git_repo: Path) -> None:
        run_git(git_repo, "branch", "existing")

        result = make_orchestrator(git_repo).create("existing")

        assert result.success is True
        assert run_git(result.worktree_path, "symbolic-ref", "--short", "HEAD").stdout.strip() == "existing"

    def test_base_branch(self, git_repo: Path) -> None:
        run_git(git_repo, "checkout", "-b", "develop")
        (git_repo / "develop.txt").write_text("develop\n")
        run_git(git_repo, "add", "develop.txt")
        run_git(git_repo, "commit", "-m", "Develop work")
        run_git(git_repo, "checkout", "main")

        result = make_orchestrator(git_repo).create(
            "from-develop", CreateOptions(base_branch="develop")
        )

        assert (result.worktree_path / "develop.txt").exists()

    def test_custom_path(self, git_repo: Path, temp_directory: Path) -> None:
        custom = temp_directory / "elsewhere" / "login"
        custom.parent.mkdir()

        result = make_orchestrator(git_repo).create("login", CreateOptions(custom_path=custom))

        assert result.worktree_path == custom
        assert (custom / "README.md").exists()

    def test_file_rules_are_applied(self, source_tree: Path, temp_directory: Path) -> None:
        config = make_config(
            files={
                "rules": [
                    {"pattern": "*.env", "action": "copy"},
                    {"pattern": "node_modules", "action": "symlink"},
                ]
            }
        )

        result = make_orchestrator(source_tree, config).create("login")

        assert result.success is True
        assert result.sync.copied == [".env", "config/local.env"]
        assert result.sync.symlinked == ["node_modules"]
        assert (result.worktree_path / ".env").read_text() == "SECRET_KEY=test123\n"
        assert (result.worktree_path / "node_modules").is_symlink()

    def test_missing_copy_source_is_non_fatal(self, git_repo: Path) -> None:
        config = make_config(files={"rules": [{"pattern": "secrets.json", "action": "copy"}]})

        result = make_orchestrator(git_repo, config).create("login")

        assert result.success is True
        assert result.state == S.READY
        assert result.non_fatal_errors == ["secrets.json: Source path does not exist"]

    def test_symlink_of_tracked_directory_is_non_fatal(self, source_tree: Path) -> None:
        config = make_config(files={"rules": [{"pattern": "config", "action": "symlink"}]})

        result = make_orchestrator(source_tree, config).create("login")

        assert result.success is True
        assert result.non_fatal_errors == ["config: Destination already exists; not linked"]
        assert not (result.worktree_path / "config").is_symlink()

    def test_dependencies_are_installed(self, git_repo: Path) -> None:
        installer = MagicMock(spec=DependencyInstaller)
        installer.install.return_value = InstallResult(
            success=True, package_manager=PackageManager.PNPM, command=["pnpm", "install"]
        )
        config = make_config(dependencies={"autoInstall": True, "packageManager": "pnpm"})

        result = make_orchestrator(git_repo, config, installer=installer).create("login")

        assert result.metadata.history == [
            S.NONE, S.CREATING, S.COPYING_FILES, S.INSTALLING_DEPS, S.READY
        ]
        args, kwargs = installer.install.call_args
        assert args == (result.worktree_path, PackageManager.PNPM)
        assert result.install.success is True

    def test_skip_deps_option(self, git_repo: Path) -> None:
        installer = MagicMock(spec=DependencyInstaller)
        config = make_config(dependencies={"autoInstall": True})

        result = make_orchestrator(git_repo, config, installer=installer).create(
            "login", CreateOptions(skip_deps=True)
        )

        assert result.state == S.READY
        installer.install.assert_not_called()

    def test_editor_is_launched(self, git_repo: Path) -> None:
        launcher = MagicMock(spec=EditorLauncher)
        launcher.launch.return_value = LaunchResult(success=True, editor=Editor.CURSOR)
        config = make_config(editor={"editor": "cursor", "autoLaunch": True, "newWindow": False})

        result = make_orchestrator(git_repo, config, launcher=launcher).create("login")

        launcher.launch.assert_called_once_with(Editor.CURSOR, result.worktree_path, False)
        assert result.non_fatal_errors == []

    def test_editor_failure_is_non_fatal(self, git_repo: Path) -> None:
        launcher = MagicMock(spec=EditorLauncher)
        launcher.launch.return_value = LaunchResult(
            success=False, editor=Editor.VSCODE, error="command 'code' not found on PATH"
        )
        config = make_config(editor={"autoLaunch": True})

        result = make_orchestrator(git_repo, config, launcher=launcher).create("login")

        assert result.success is True
        assert result.state == S.READY
        assert result.exit_code == 0
        assert result.non_fatal_errors == ["editor: command 'code' not found on PATH"]
        assert result.worktree_path.exists()

    def test_advisory_prune_reports_stale_records(
        self, git_repo: Path, git_worktree: Path
    ) -> None:
        shutil.rmtree(git_worktree)

        result = make_orchestrator(git_repo).create("login")

        assert result.success is True
        assert [Path(p).resolve() for p in result.pruned_paths] == [git_worktree]

    def test_spec_id_is_recorded(self, git_repo: Path) -> None:
        result = make_orchestrator(git_repo).create("login", CreateOptions(spec_id="SPEC-42"))

        assert result.metadata.spec_id == "SPEC-42"

    def test_empty_branch_name(self, git_repo: Path) -> None:
        with pytest.raises(ValueError):
            make_orchestrator(git_repo).create("   ")


class TestCreatePreconditions:
    """Test cases for failures detected before anything is mutated."""

    def test_existing_destination_is_a_collision(self, git_repo: Path, temp_directory: Path) -> None:
        destination = temp_directory / "test-repo-login"
        destination.mkdir()
        (destination / "keep.txt").write_text("mine\n")
        before = snapshot(temp_directory)

        result = make_orchestrator(git_repo).create("login")

        assert result.success is False
        assert result.state == S.NONE
        assert result.failure.kind == FailureKind.COLLISION
        assert result.exit_code == 1
        assert result.failure.remediation
        assert snapshot(temp_directory) == before
        assert registered_paths(git_repo) == [git_repo]
        assert not GitAdapter(git_repo).branch_exists("login")

    def test_branch_checked_out_elsewhere(self, git_repo: Path, git_worktree: Path) -> None:
        result = make_orchestrator(git_repo).create("test-branch")

        assert result.failure.kind == FailureKind.COLLISION
        assert "already checked out" in result.failure.message
        assert result.state == S.NONE

    def test_custom_path_inside_repository(self, git_repo: Path) -> None:
        result = make_orchestrator(git_repo).create(
            "login", CreateOptions(custom_path=git_repo / "nested")
        )

        assert result.failure.kind == FailureKind.COLLISION
        assert not (git_repo / "nested").exists()

    def test_low_disk_space(self, git_repo: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            "worktree_orchestrator.core.orchestrator.free_disk_bytes", lambda path: 10 * 1024
        )

        result = make_orchestrator(git_repo).create("login")

        assert result.failure.kind == FailureKind.DISK_SPACE
        assert result.state == S.NONE
        assert registered_paths(git_repo) == [git_repo]

    def test_old_git_is_rejected(self, git_repo: Path) -> None:
        with patch.object(GitAdapter, "get_tool_version", return_value=GitVersion(2, 16, 0)):
            result = make_orchestrator(git_repo).create("login")

        assert result.failure.kind == FailureKind.UNSUPPORTED_GIT
        assert result.exit_code == 3

    def test_approval_cancelled(self, git_repo: Path, temp_directory: Path) -> None:
        before = snapshot(temp_directory)

        def cancel(proposal: BranchProposal) -> ApprovalDecision:
            return ApprovalDecision(action=ApprovalAction.CANCEL)

        result = make_orchestrator(git_repo, approve=cancel).create("login")

        assert result.failure.kind == FailureKind.CANCELLED
        assert result.failure.step == "approval"
        assert snapshot(temp_directory) == before

    def test_approval_edit_recomputes_destination(
        self, git_repo: Path, temp_directory: Path
    ) -> None:
        proposals: list[BranchProposal] = []

        def edit_once(proposal: BranchProposal) -> ApprovalDecision:
            proposals.append(proposal)
            if len(proposals) == 1:
                return ApprovalDecision(action=ApprovalAction.EDIT, branch_name="signup")
            return ApprovalDecision(action=ApprovalAction.ACCEPT)

        result = make_orchestrator(git_repo, approve=edit_once).create("login")

        assert [p.branch_name for p in proposals] == ["login", "signup"]
        assert proposals[1].worktree_path == temp_directory / "test-repo-signup"
        assert result.branch_name == "signup"
        assert result.worktree_path == temp_directory / "test-repo-signup"

    def test_endless_edits_are_cancelled(self, git_repo: Path) -> None:
        def always_edit(proposal: BranchProposal) -> ApprovalDecision:
            return ApprovalDecision(action=ApprovalAction.EDIT, branch_name=proposal.branch_name + "x")

        result = make_orchestrator(git_repo, approve=always_edit).create("login")

        assert result.failure.kind == FailureKind.CANCELLED


class TestCreateReuseAndForce:
    """Test cases for existing destinations."""

    def test_reuse_existing_directory(self, git_repo: Path, temp_directory: Path) -> None:
        destination = temp_directory / "test-repo-login"
        destination.mkdir()
        (git_repo / ".env").write_text("A=1\n")
        config = make_config(files={"rules": [{"pattern": ".env", "action": "copy"}]})

        result = make_orchestrator(git_repo, config).create(
            "login", CreateOptions(reuse_existing=True)
        )

        assert result.success is True
        assert result.metadata.history == [S.NONE, S.COPYING_FILES, S.READY]
        assert "creating" in result.skipped
        assert (destination / ".env").read_text() == "A=1\n"
        assert registered_paths(git_repo) == [git_repo]

    def test_reuse_of_a_file_is_a_collision(self, git_repo: Path, temp_directory: Path) -> None:
        (temp_directory / "test-repo-login").write_text("not a directory")

        result = make_orchestrator(git_repo).create("login", CreateOptions(reuse_existing=True))

        assert result.failure.kind == FailureKind.COLLISION

    def test_force_replaces_destination(self, git_repo: Path, temp_directory: Path) -> None:
        destination = temp_directory / "test-repo-login"
        destination.mkdir()
        (destination / "stale.txt").write_text("old\n")

        result = make_orchestrator(git_repo).create("login", CreateOptions(force=True))

        assert result.success is True
        assert not (destination / "stale.txt").exists()
        assert (destination / "README.md").exists()
        assert destination in registered_paths(git_repo)


class TestCreateFailures:
    """Test cases for failures after the worktree has been created."""

    def test_worktree_add_failure_rolls_back(self, git_repo: Path, temp_directory: Path) -> None:
        def add_fails_midway(path: Path, branch: str, create_branch: bool = False, base_branch=None):
            run_git(git_repo, "branch", branch)
            Path(path).mkdir(parents=True)
            (Path(path) / "partial.txt").write_text("half checked out\n")
            raise VersionControlError(
                "git worktree add failed", stderr="fatal: could not checkout", step="creating"
            )

        with patch.object(GitAdapter, "add_worktree", side_effect=add_fails_midway):
            result = make_orchestrator(git_repo).create("login")

        assert result.success is False
        assert result.state == S.ERROR
        assert result.metadata.history == [S.NONE, S.CREATING, S.ERROR]
        assert result.failure.kind == FailureKind.VERSION_CONTROL
        assert result.failure.step == "creating"
        assert result.exit_code == 3
        assert not (temp_directory / "test-repo-login").exists()
        assert registered_paths(git_repo) == [git_repo]
        assert not GitAdapter(git_repo).branch_exists("login")

    def test_copy_failure_rolls_back(self, git_repo: Path, temp_directory: Path) -> None:
        file_sync = MagicMock(spec=FileSyncEngine)
        file_sync.apply_rules.side_effect = FileOperationError("Destination is not writable")

        result = make_orchestrator(git_repo, file_sync=file_sync).create("login")

        assert result.success is False
        assert result.state == S.ERROR
        assert result.metadata.history == [S.NONE, S.CREATING, S.COPYING_FILES, S.ERROR]
        assert result.failure.kind == FailureKind.FILE_OPERATION
        assert result.failure.step == "copying_files"
        assert result.exit_code == 4
        assert not (temp_directory / "test-repo-login").exists()
        assert registered_paths(git_repo) == [git_repo]
        assert not GitAdapter(git_repo).branch_exists("login")

    def test_rollback_keeps_preexisting_branch(self, git_repo: Path) -> None:
        run_git(git_repo, "branch", "existing")
        file_sync = MagicMock(spec=FileSyncEngine)
        file_sync.apply_rules.side_effect = FileOperationError("boom")

        result = make_orchestrator(git_repo, file_sync=file_sync).create("existing")

        assert result.state == S.ERROR
        assert GitAdapter(git_repo).branch_exists("existing")

    def test_reused_directory_is_not_rolled_back(self, git_repo: Path, temp_directory: Path) -> None:
        destination = temp_directory / "test-repo-login"
        destination.mkdir()
        file_sync = MagicMock(spec=FileSyncEngine)
        file_sync.apply_rules.side_effect = FileOperationError("boom")

        result = make_orchestrator(git_repo, file_sync=file_sync).create(
            "login", CreateOptions(reuse_existing=True)
        )

        assert result.state == S.ERROR
        assert destination.is_dir()

    def test_dependency_failure_keeps_worktree(self, git_repo: Path) -> None:
        installer = MagicMock(spec=DependencyInstaller)
        installer.install.return_value = InstallResult(
            success=False,
            package_manager=PackageManager.NPM,
            command=["npm", "install"],
            error="npm install exited with code 1",
            interpretation="Network error while downloading packages.",
        )
        launcher = MagicMock(spec=EditorLauncher)
        config = make_config(
            dependencies={"autoInstall": True}, editor={"autoLaunch": True}
        )

        result = make_orchestrator(
            git_repo, config, installer=installer, launcher=launcher
        ).create("login")

        assert result.success is False
        assert result.state == S.ERROR
        assert result.metadata.history[-2:] == [S.INSTALLING_DEPS, S.ERROR]
        assert result.failure.kind == FailureKind.DEPENDENCY_INSTALL
        assert result.failure.message == "Network error while downloading packages."
        assert result.exit_code == 5
        assert "editor" in result.skipped
        assert result.worktree_path.exists()
        launcher.launch.assert_not_called()


class TestRemove:
    """Test cases for remove()."""

    def test_remove_clean_worktree(self, git_repo: Path, git_worktree: Path) -> None:
        result = make_orchestrator(git_repo).remove("test-branch")

        assert result.success is True
        assert result.state == S.DELETED
        assert result.branch_deleted is False
        assert not git_worktree.exists()
        assert GitAdapter(git_repo).branch_exists("test-branch")

    def test_remove_by_directory_name(self, git_repo: Path, git_worktree: Path) -> None:
        result = make_orchestrator(git_repo).remove("test-worktree")

        assert result.state == S.DELETED

    def test_remove_with_prefix(self, git_repo: Path) -> None:
        orchestrator = make_orchestrator(git_repo, make_config(branchPrefix="feature/"))
        created = orchestrator.create("login")

        result = orchestrator.remove("login")

        assert result.success is True
        assert result.branch_name == "feature/login"
        assert not created.worktree_path.exists()

    def test_uncommitted_changes_block_removal(self, git_repo: Path, git_worktree: Path) -> None:
        (git_worktree / "README.md").write_text("changed\n")

        result = make_orchestrator(git_repo).remove("test-branch")

        assert result.success is False
        assert result.failure.kind == FailureKind.UNCOMMITTED_CHANGES
        assert result.exit_code == 1
        assert "1 unstaged change(s)" in result.warnings
        assert git_worktree.exists()

    def test_force_discards_changes(self, git_repo: Path, git_worktree: Path) -> None:
        (git_worktree / "scratch.txt").write_text("wip\n")

        result = make_orchestrator(git_repo).remove("test-branch", force=True)

        assert result.success is True
        assert not git_worktree.exists()

    def test_confirmation_declined(self, git_repo: Path, git_worktree: Path) -> None:
        seen = []

        def decline(worktree, status) -> bool:
            seen.append((worktree.branch, status.has_uncommitted_changes))
            return False

        result = make_orchestrator(git_repo).remove("test-branch", confirm=decline)

        assert seen == [("test-branch", False)]
        assert result.failure.kind == FailureKind.CANCELLED
        assert git_worktree.exists()

    def test_main_worktree_is_protected(self, git_repo: Path) -> None:
        result = make_orchestrator(git_repo).remove("main", force=True)

        assert result.failure.kind == FailureKind.PROTECTED_WORKTREE
        assert result.exit_code == 1
        assert git_repo.exists()

    def test_unknown_worktree(self, git_repo: Path) -> None:
        result = make_orchestrator(git_repo).remove("nope")

        assert result.failure.kind == FailureKind.NOT_FOUND
        assert result.exit_code == 2

    def test_delete_branch(self, git_repo: Path, git_worktree: Path) -> None:
        result = make_orchestrator(git_repo).remove("test-branch", delete_branch=True)

        assert result.branch_deleted is True
        assert not GitAdapter(git_repo).branch_exists("test-branch")

    def test_unmerged_branch_is_kept_with_warning(
        self, git_repo: Path, git_worktree: Path
    ) -> None:
        (git_worktree / "work.txt").write_text("work\n")
        run_git(git_worktree, "add", "work.txt")
        run_git(git_worktree, "commit", "-m", "Unmerged work")

        result = make_orchestrator(git_repo).remove("test-branch", delete_branch=True)

        assert result.success is True
        assert result.branch_deleted is False
        assert any("not deleted" in w for w in result.warnings)
        assert GitAdapter(git_repo).branch_exists("test-branch")

    def test_missing_directory_is_pruned(self, git_repo: Path, git_worktree: Path) -> None:
        shutil.rmtree(git_worktree)

        result = make_orchestrator(git_repo).remove("test-branch")

        assert result.success is True
        assert result.state == S.DELETED
        assert any("no longer exists" in w for w in result.warnings)
        assert registered_paths(git_repo) == [git_repo]


class TestQueries:
    """Test cases for list and prune."""

    def test_list_worktrees(self, git_repo: Path, git_worktree: Path) -> None:
        worktrees = make_orchestrator(git_repo).list_worktrees()

        assert [wt.branch for wt in worktrees] == ["main", "test-branch"]

    def test_prune_is_idempotent(self, git_repo: Path, git_worktree: Path) -> None:
        orchestrator = make_orchestrator(git_repo)
        shutil.rmtree(git_worktree)

        preview = orchestrator.prune(dry_run=True)
        first = orchestrator.prune()
        second = orchestrator.prune()

        assert preview.pruned_count == 1
        assert first.pruned_count == 1
        assert second.pruned_count == 0

    def test_reload_config(self, git_repo: Path) -> None:
        orchestrator = WorktreeOrchestrator(git_repo)
        assert orchestrator.config.worktree.enabled is False

        (git_repo / ".wto").mkdir()
        (git_repo / ".wto" / "config.json").write_text('{"version": "2.0", "worktree": {"enabled": true}}')

        assert orchestrator.reload_config().worktree.enabled is True
