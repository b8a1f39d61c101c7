"""Pydantic models for external tooling: package managers and editors."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class PackageManager(str, Enum):
    """Supported package managers."""

    AUTO = "auto"

    # Node.js
    BUN = "bun"
    PNPM = "pnpm"
    YARN = "yarn"
    NPM = "npm"

    # Python
    UV = "uv"
    POETRY = "poetry"
    PIPENV = "pipenv"
    PIP = "pip"

    # PHP
    COMPOSER = "composer"

    # Rust
    CARGO = "cargo"

    # Go
    GO = "go"


class Editor(str, Enum):
    """Supported editors with a command-line launcher."""

    VSCODE = "vscode"
    CURSOR = "cursor"
    ZED = "zed"
    WEBSTORM = "webstorm"
    IDEA = "idea"
    PYCHARM = "pycharm"

    @property
    def command(self) -> str:
        """Executable name looked up on PATH."""
        return EDITOR_COMMANDS[self]

    @property
    def display_name(self) -> str:
        return EDITOR_DISPLAY_NAMES[self]


EDITOR_COMMANDS = {
    Editor.VSCODE: "code",
    Editor.CURSOR: "cursor",
    Editor.ZED: "zed",
    Editor.WEBSTORM: "webstorm",
    Editor.IDEA: "idea",
    Editor.PYCHARM: "pycharm",
}

EDITOR_DISPLAY_NAMES = {
    Editor.VSCODE: "Visual Studio Code",
    Editor.CURSOR: "Cursor",
    Editor.ZED: "Zed",
    Editor.WEBSTORM: "WebStorm",
    Editor.IDEA: "IntelliJ IDEA",
    Editor.PYCHARM: "PyCharm",
}


class EditorInfo(BaseModel):
    """An editor and whether its launcher is on PATH."""

    editor: Editor
    command: str
    display_name: str
    available: bool = False
    executable_path: Optional[str] = None


class LaunchResult(BaseModel):
    """Result of spawning an editor."""

    success: bool
    editor: Editor
    command: list[str] = Field(default_factory=list)
    error: Optional[str] = None


class InstallResult(BaseModel):
    """Result of a dependency installation run."""

    success: bool
    package_manager: PackageManager
    duration_ms: int = 0
    command: list[str] = Field(default_factory=list)
    error: Optional[str] = Field(
        default=None, description="Raw failure description when the install failed"
    )
    interpretation: Optional[str] = Field(
        default=None, description="Actionable explanation of the failure"
    )
    output: str = Field(default="", description="Captured stdout and stderr")
