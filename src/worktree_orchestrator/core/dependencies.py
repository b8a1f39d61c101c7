"""Dependency installation for new worktrees.

Detects the project's package manager from lock files and manifests, runs
its install command inside the worktree, and turns common failure output
into an actionable message.
"""

import json
import logging
import os
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Union

import toml

from worktree_orchestrator.models.tooling import InstallResult, PackageManager

logger = logging.getLogger(__name__)

# Lock files are the most specific signal, checked in this order.
LOCK_FILES: list[tuple[str, PackageManager]] = [
    ("bun.lockb", PackageManager.BUN),
    ("bun.lock", PackageManager.BUN),
    ("pnpm-lock.yaml", PackageManager.PNPM),
    ("yarn.lock", PackageManager.YARN),
    ("package-lock.json", PackageManager.NPM),
    ("uv.lock", PackageManager.UV),
    ("poetry.lock", PackageManager.POETRY),
    ("Pipfile.lock", PackageManager.PIPENV),
    ("composer.lock", PackageManager.COMPOSER),
    ("Cargo.lock", PackageManager.CARGO),
    ("go.sum", PackageManager.GO),
]

FALLBACK_PACKAGE_MANAGER = PackageManager.NPM

INSTALL_COMMANDS: dict[PackageManager, list[str]] = {
    # Node.js package managers
    PackageManager.BUN: ["bun", "install"],
    PackageManager.PNPM: ["pnpm", "install"],
    PackageManager.YARN: ["yarn", "install"],
    PackageManager.NPM: ["npm", "install"],
    # Python package managers
    PackageManager.UV: ["uv", "sync"],
    PackageManager.POETRY: ["poetry", "install"],
    PackageManager.PIPENV: ["pipenv", "install"],
    PackageManager.PIP: ["pip", "install", "-r", "requirements.txt"],
    # Other package managers
    PackageManager.COMPOSER: ["composer", "install"],
    PackageManager.CARGO: ["cargo", "fetch"],
    PackageManager.GO: ["go", "mod", "download"],
}

# (needles, message) pairs; the first entry with a needle in the output wins.
ERROR_SIGNATURES: list[tuple[tuple[str, ...], str]] = [
    (
        ("enospc", "no space left on device", "disk quota exceeded"),
        "Not enough disk space to install dependencies. Free some disk space and retry.",
    ),
    (
        ("eacces", "eperm", "permission denied", "operation not permitted"),
        "Permission denied while installing dependencies. Check ownership of the "
        "worktree and the package manager cache directory.",
    ),
    (
        (
            "network",
            "etimedout",
            "econnreset",
            "econnrefused",
            "enotfound",
            "getaddrinfo",
            "could not resolve host",
            "connection timed out",
        ),
        "Network error while downloading packages. Check your internet connection "
        "and proxy settings, then retry.",
    ),
    (
        (
            "lockfile",
            "lock file",
            "frozen-lockfile",
            "out of date with",
            "does not satisfy",
            "not in sync",
        ),
        "The lock file does not match the manifest. Regenerate the lock file in the "
        "main repository and commit it.",
    ),
    (
        ("package.json not found", "no package.json", "enoent: no such file or directory, open"),
        "No package.json found in the worktree. Make sure the project manifest is tracked "
        "or copied by a file rule.",
    ),
    (
        ("no such file or directory: 'requirements.txt'", "could not open requirements file"),
        "No requirements.txt found in the worktree. Make sure it is tracked or copied by "
        "a file rule.",
    ),
    (
        ("404 not found", "e404", "error 404", "not found in registry", "no matching version"),
        "A package could not be found in the registry. Check the package name and version, "
        "and that the registry is reachable.",
    ),
]

GENERIC_ERROR_PREFIX = "Dependency installation failed"


def _manifest_preference(project_root: Path) -> Optional[PackageManager]:
    """Package manager declared by a manifest, if any."""
    package_json = project_root / "package.json"
    if package_json.exists():
        try:
            declared = json.loads(package_json.read_text()).get("packageManager", "")
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"Could not read package.json: {e}")
            declared = ""

        for manager in (PackageManager.BUN, PackageManager.PNPM, PackageManager.YARN, PackageManager.NPM):
            if isinstance(declared, str) and declared.startswith(manager.value):
                return manager

    pyproject = project_root / "pyproject.toml"
    if pyproject.exists():
        try:
            tools = toml.load(pyproject).get("tool", {})
        except (OSError, toml.TomlDecodeError) as e:
            logger.warning(f"Could not read pyproject.toml: {e}")
            tools = {}

        if "poetry" in tools:
            return PackageManager.POETRY
        if "uv" in tools:
            return PackageManager.UV

    manifests = [
        ("Pipfile", PackageManager.PIPENV),
        ("requirements.txt", PackageManager.PIP),
        ("composer.json", PackageManager.COMPOSER),
        ("Cargo.toml", PackageManager.CARGO),
        ("go.mod", PackageManager.GO),
    ]
    for filename, manager in manifests:
        if (project_root / filename).exists():
            return manager

    return None


def detect_package_manager(project_path: Union[str, Path]) -> PackageManager:
    """
    Detect the package manager for a project directory.

    Lock files win, then a manifest-declared preference, then npm.

    Args:
        project_path: Project root.

    Returns:
        A concrete PackageManager (never AUTO).
    """
    project_root = Path(project_path)

    for lock_file, manager in LOCK_FILES:
        if (project_root / lock_file).exists():
            logger.debug(f"Found {lock_file}, using {manager.value}")
            return manager

    preferred = _manifest_preference(project_root)
    if preferred is not None:
        logger.debug(f"Manifest prefers {preferred.value}")
        return preferred

    logger.debug(f"No package manager markers in {project_root}, defaulting to npm")
    return FALLBACK_PACKAGE_MANAGER


def get_install_command(package_manager: PackageManager) -> list[str]:
    """Install command for a package manager. AUTO maps to npm."""
    if package_manager == PackageManager.AUTO:
        package_manager = FALLBACK_PACKAGE_MANAGER
    return list(INSTALL_COMMANDS[package_manager])


def interpret_error(raw_output: str, package_manager: Optional[PackageManager] = None) -> str:
    """
    Turn install output into an actionable message.

    Unrecognized output is returned behind a generic prefix; the result is
    never empty.
    """
    lowered = (raw_output or "").lower()
    for needles, message in ERROR_SIGNATURES:
        if any(needle in lowered for needle in needles):
            return message

    manager = f" ({package_manager.value})" if package_manager else ""
    detail = (raw_output or "").strip().splitlines()
    if not detail:
        return f"{GENERIC_ERROR_PREFIX}{manager} with no output."
    return f"{GENERIC_ERROR_PREFIX}{manager}: {detail[-1]}"


class DependencyInstaller:
    """Runs package manager installs inside a worktree.

    Example:
        >>> installer = DependencyInstaller()
        >>> result = installer.install("/code/app-feature", PackageManager.AUTO, print)
        >>> result.success, result.package_manager
        (True, <PackageManager.PNPM: 'pnpm'>)
    """

    def __init__(self) -> None:
        self._install_commands = {pm: list(cmd) for pm, cmd in INSTALL_COMMANDS.items()}

    def _command_exists(self, command: str) -> bool:
        return shutil.which(command) is not None

    def _get_install_environment(self) -> dict[str, str]:
        env = os.environ.copy()
        # The orchestrator's own virtualenv must not leak into the project's install
        env.pop("VIRTUAL_ENV", None)
        return env

    def resolve(self, worktree_path: Path, package_manager: PackageManager) -> PackageManager:
        if package_manager == PackageManager.AUTO:
            return detect_package_manager(worktree_path)
        return package_manager

    def install(
        self,
        worktree_path: Union[str, Path],
        package_manager: PackageManager = PackageManager.AUTO,
        on_progress: Optional[Callable[[str], None]] = None,
        timeout: Optional[float] = None,
    ) -> InstallResult:
        """
        Install dependencies in the worktree.

        Args:
            worktree_path: Worktree directory.
            package_manager: Manager to use; AUTO detects from the worktree.
            on_progress: Receives each line of merged stdout/stderr as it arrives.
            timeout: Kill the install after this many seconds.

        Returns:
            InstallResult. Failures are reported, not raised.
        """
        worktree_path = Path(worktree_path).resolve()
        manager = self.resolve(worktree_path, package_manager)
        command = list(self._install_commands[manager])
        started = time.monotonic()

        def elapsed_ms() -> int:
            return int((time.monotonic() - started) * 1000)

        if not worktree_path.is_dir():
            error = f"Worktree path does not exist: {worktree_path}"
            return InstallResult(
                success=False,
                package_manager=manager,
                command=command,
                error=error,
                interpretation=interpret_error(error, manager),
            )

        if not self._command_exists(command[0]):
            error = f"Command not found: {command[0]}"
            return InstallResult(
                success=False,
                package_manager=manager,
                command=command,
                error=error,
                interpretation=f"{command[0]} is not installed or not on PATH. "
                f"Install {manager.value} or choose another packageManager.",
            )

        logger.info(f"Installing dependencies with {manager.value}: {' '.join(command)}")

        output_lines: list[str] = []
        timed_out = threading.Event()
        try:
            process = subprocess.Popen(
                command,
                cwd=worktree_path,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                stdin=subprocess.DEVNULL,
                text=True,
                bufsize=1,
                env=self._get_install_environment(),
            )
        except OSError as e:
            error = f"Failed to run install command: {e}"
            return InstallResult(
                success=False,
                package_manager=manager,
                command=command,
                duration_ms=elapsed_ms(),
                error=error,
                interpretation=interpret_error(str(e), manager),
            )

        timer = None
        if timeout is not None:

            def kill() -> None:
                timed_out.set()
                process.kill()

            timer = threading.Timer(timeout, kill)
            timer.daemon = True
            timer.start()

        try:
            assert process.stdout is not None
            for line in process.stdout:
                line = line.rstrip("\n")
                output_lines.append(line)
                if on_progress:
                    on_progress(line)
            returncode = process.wait()
        finally:
            if timer:
                timer.cancel()
            if process.stdout:
                process.stdout.close()

        output = "\n".join(output_lines)
        duration = elapsed_ms()

        if timed_out.is_set():
            error = f"Installation timed out after {timeout} seconds"
            logger.error(error)
            return InstallResult(
                success=False,
                package_manager=manager,
                command=command,
                duration_ms=duration,
                error=error,
                interpretation=f"{error}. Run `{' '.join(command)}` manually in the worktree.",
                output=output,
            )

        if returncode != 0:
            logger.error(f"Dependency installation failed with exit code {returncode}")
            return InstallResult(
                success=False,
                package_manager=manager,
                command=command,
                duration_ms=duration,
                error=f"{' '.join(command)} exited with code {returncode}",
                interpretation=interpret_error(output, manager),
                output=output,
            )

        logger.info(f"Dependencies installed in {duration} ms")
        return InstallResult(
            success=True,
            package_manager=manager,
            command=command,
            duration_ms=duration,
            output=output,
        )


__all__ = [
    "DependencyInstaller",
    "detect_package_manager",
    "get_install_command",
    "interpret_error",
]
