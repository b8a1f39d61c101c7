"""
Pytest configuration and shared fixtures for worktree-orchestrator tests.
"""

import json
import subprocess
import tempfile
from pathlib import Path
from typing import Any, Generator

import pytest


def run_git(repo_path: Path, *args: str) -> subprocess.CompletedProcess:
    """Run a git command in repo_path, failing the test on error."""
    return subprocess.run(
        ["git", *args],
        cwd=repo_path,
        capture_output=True,
        text=True,
        check=True,
    )


def write_config(repo_path: Path, worktree: dict[str, Any], version: str = "2.0") -> Path:
    """Write a .wto/config.json document into repo_path."""
    config_dir = repo_path / ".wto"
    config_dir.mkdir(exist_ok=True)
    config_file = config_dir / "config.json"
    config_file.write_text(json.dumps({"version": version, "worktree": worktree}, indent=2))
    return config_file


def snapshot(directory: Path) -> set[str]:
    """Relative paths of everything under directory."""
    return {str(p.relative_to(directory)) for p in directory.rglob("*")}


@pytest.fixture
def temp_directory() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir).resolve()


@pytest.fixture
def git_repo(temp_directory: Path) -> Generator[Path, None, None]:
    """Create a temporary git repository on branch main for tests."""
    repo_path = temp_directory / "test-repo"
    repo_path.mkdir()

    run_git(repo_path, "init")
    run_git(repo_path, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(repo_path, "config", "user.email", "test@example.com")
    run_git(repo_path, "config", "user.name", "Test User")
    run_git(repo_path, "config", "commit.gpgsign", "false")

    (repo_path / "README.md").write_text("# Test Repository\n")
    (repo_path / ".gitignore").write_text(".wto/\n")

    run_git(repo_path, "add", ".")
    run_git(repo_path, "commit", "-m", "Initial commit")

    yield repo_path


@pytest.fixture
def git_worktree(git_repo: Path, temp_directory: Path) -> Generator[Path, None, None]:
    """Create a git worktree on branch test-branch for tests."""
    worktree_path = temp_directory / "test-worktree"

    run_git(git_repo, "worktree", "add", "-b", "test-branch", str(worktree_path))

    yield worktree_path

    subprocess.run(
        ["git", "worktree", "remove", "--force", str(worktree_path)],
        cwd=git_repo,
        capture_output=True,
    )


@pytest.fixture
def enabled_config(git_repo: Path) -> Path:
    """Enable worktree creation with no file rules, deps or editor."""
    return write_config(git_repo, {"enabled": True})


@pytest.fixture
def source_tree(git_repo: Path) -> Path:
    """
    Add local state to git_repo: an untracked .env, an untracked node_modules
    directory with one file inside, and tracked files in a nested directory.
    """
    (git_repo / ".env").write_text("SECRET_KEY=test123\n")
    node_modules = git_repo / "node_modules" / "left-pad"
    node_modules.mkdir(parents=True)
    (node_modules / "index.js").write_text("module.exports = () => {}\n")

    config_dir = git_repo / "config"
    config_dir.mkdir()
    (config_dir / "local.env").write_text("DEBUG=1\n")
    (config_dir / "settings.json").write_text("{}\n")
    run_git(git_repo, "add", "config")
    run_git(git_repo, "commit", "-m", "Add config")

    return git_repo


# Project detection fixtures


@pytest.fixture
def python_project_dir(temp_directory: Path) -> Path:
    """Create a mock uv project with pyproject.toml."""
    project_dir = temp_directory / "python-project"
    project_dir.mkdir()

    pyproject_content = """
[project]
name = "test-project"
version = "0.1.0"

[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[tool.uv]
dev-dependencies = []
"""
    (project_dir / "pyproject.toml").write_text(pyproject_content)

    return project_dir


@pytest.fixture
def poetry_project_dir(temp_directory: Path) -> Path:
    """Create a mock Poetry project without a lock file."""
    project_dir = temp_directory / "poetry-project"
    project_dir.mkdir()

    pyproject_content = """
[tool.poetry]
name = "test-project"
version = "0.1.0"

[build-system]
requires = ["poetry-core"]
build-backend = "poetry.core.masonry.api"
"""
    (project_dir / "pyproject.toml").write_text(pyproject_content)

    return project_dir


@pytest.fixture
def pip_project_dir(temp_directory: Path) -> Path:
    """Create a mock pip project with requirements.txt."""
    project_dir = temp_directory / "pip-project"
    project_dir.mkdir()

    (project_dir / "requirements.txt").write_text("click>=8.0.0\npydantic>=2.0.0\n")

    return project_dir


@pytest.fixture
def node_npm_project_dir(temp_directory: Path) -> Path:
    """Create a mock Node.js project with npm."""
    project_dir = temp_directory / "node-npm-project"
    project_dir.mkdir()

    package_json = {
        "name": "test-project",
        "version": "1.0.0",
        "dependencies": {}
    }
    (project_dir / "package.json").write_text(json.dumps(package_json, indent=2))
    (project_dir / "package-lock.json").write_text("{}")

    return project_dir


@pytest.fixture
def node_yarn_project_dir(temp_directory: Path) -> Path:
    """Create a mock Node.js project declaring yarn without a lock file."""
    project_dir = temp_directory / "node-yarn-project"
    project_dir.mkdir()

    package_json = {
        "name": "test-project",
        "version": "1.0.0",
        "packageManager": "yarn@4.0.0"
    }
    (project_dir / "package.json").write_text(json.dumps(package_json, indent=2))

    return project_dir


@pytest.fixture
def node_pnpm_project_dir(temp_directory: Path) -> Path:
    """Create a mock Node.js project with pnpm."""
    project_dir = temp_directory / "node-pnpm-project"
    project_dir.mkdir()

    package_json = {
        "name": "test-project",
        "version": "1.0.0"
    }
    (project_dir / "package.json").write_text(json.dumps(package_json, indent=2))
    (project_dir / "pnpm-lock.yaml").write_text("lockfileVersion: 6.0")

    return project_dir


@pytest.fixture
def node_bun_project_dir(temp_directory: Path) -> Path:
    """Create a mock Node.js project with bun."""
    project_dir = temp_directory / "node-bun-project"
    project_dir.mkdir()

    package_json = {
        "name": "test-project",
        "version": "1.0.0"
    }
    (project_dir / "package.json").write_text(json.dumps(package_json, indent=2))
    (project_dir / "bun.lockb").write_bytes(b"bun binary lock file")

    return project_dir


@pytest.fixture
def rust_project_dir(temp_directory: Path) -> Path:
    """Create a mock Rust project."""
    project_dir = temp_directory / "rust-project"
    project_dir.mkdir()

    cargo_toml = """
[package]
name = "test-project"
version = "0.1.0"
edition = "2021"
"""
    (project_dir / "Cargo.toml").write_text(cargo_toml)
    (project_dir / "Cargo.lock").write_text("# cargo lock file")

    return project_dir


@pytest.fixture
def go_project_dir(temp_directory: Path) -> Path:
    """Create a mock Go project."""
    project_dir = temp_directory / "go-project"
    project_dir.mkdir()

    (project_dir / "go.mod").write_text("module test-project\n\ngo 1.21\n")
    (project_dir / "go.sum").write_text("")

    return project_dir


@pytest.fixture
def php_project_dir(temp_directory: Path) -> Path:
    """Create a mock PHP/Composer project."""
    project_dir = temp_directory / "php-project"
    project_dir.mkdir()

    composer_json = {
        "name": "test/project",
        "require": {}
    }
    (project_dir / "composer.json").write_text(json.dumps(composer_json, indent=2))
    (project_dir / "composer.lock").write_text("{}")

    return project_dir


@pytest.fixture
def empty_project_dir(temp_directory: Path) -> Path:
    """Create an empty directory with no project markers."""
    project_dir = temp_directory / "empty-project"
    project_dir.mkdir()
    return project_dir
