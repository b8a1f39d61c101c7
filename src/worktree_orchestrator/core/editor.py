"""Editor launching for ready worktrees.

Launch failures are reported on the returned LaunchResult and never raised:
a worktree that was created successfully stays created whether or not the
editor opens.
"""

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Optional, Union

from worktree_orchestrator.errors import EditorLaunchError
from worktree_orchestrator.models.tooling import Editor, EditorInfo, LaunchResult

logger = logging.getLogger(__name__)

# (new window, reuse window) flags per editor. JetBrains launchers take only the path.
WINDOW_FLAGS: dict[Editor, tuple[Optional[str], Optional[str]]] = {
    Editor.VSCODE: ("-n", "-r"),
    Editor.CURSOR: ("-n", "-r"),
    Editor.ZED: ("-n", "-a"),
    Editor.WEBSTORM: (None, None),
    Editor.IDEA: (None, None),
    Editor.PYCHARM: (None, None),
}


def get_editor_command(
    editor: Editor, worktree_path: Union[str, Path], new_window: bool = True
) -> list[str]:
    """Build the argument list that opens worktree_path in editor."""
    new_flag, reuse_flag = WINDOW_FLAGS[editor]
    flag = new_flag if new_window else reuse_flag

    command = [editor.command]
    if flag:
        command.append(flag)
    command.append(str(worktree_path))
    return command


class EditorLauncher:
    """Detects and spawns editors."""

    def detect_available(self) -> list[EditorInfo]:
        """Editors whose command-line launcher is on PATH."""
        available = []
        for editor in Editor:
            executable = shutil.which(editor.command)
            if executable:
                available.append(
                    EditorInfo(
                        editor=editor,
                        command=editor.command,
                        display_name=editor.display_name,
                        available=True,
                        executable_path=executable,
                    )
                )
        return available

    def _spawn(self, editor: Editor, command: list[str]) -> None:
        """
        Start the editor detached from this process.

        Raises:
            EditorLaunchError: If the launcher is missing or cannot be started.
        """
        executable = shutil.which(command[0])
        if executable is None:
            raise EditorLaunchError(
                f"{editor.display_name} command '{command[0]}' not found on PATH",
                editor=editor.value,
            )

        try:
            subprocess.Popen(
                [executable, *command[1:]],
                stdin=subprocess.DEVNULL,
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                start_new_session=True,
            )
        except OSError as e:
            raise EditorLaunchError(
                f"Failed to start {editor.display_name}: {e}", editor=editor.value
            ) from e

    def launch(
        self,
        editor: Editor,
        worktree_path: Union[str, Path],
        new_window: bool = True,
    ) -> LaunchResult:
        """
        Open the worktree in an editor without waiting for it to exit.

        Args:
            editor: Editor to launch.
            worktree_path: Directory to open.
            new_window: Open a new window instead of reusing the current one.

        Returns:
            LaunchResult with success=False and an error when the launch failed.
        """
        command = get_editor_command(editor, worktree_path, new_window)

        try:
            self._spawn(editor, command)
        except EditorLaunchError as e:
            logger.warning(e.message)
            return LaunchResult(success=False, editor=editor, command=command, error=e.message)

        logger.info(f"Launched {editor.display_name} for {worktree_path}")
        return LaunchResult(success=True, editor=editor, command=command)


__all__ = ["EditorLauncher", "WINDOW_FLAGS", "get_editor_command"]
