"""
worktree-orchestrator - Git worktree lifecycle automation.

This package creates ready-to-use git worktrees: it names and registers
the worktree, copies or links local files into it, installs dependencies
and opens an editor, rolling back cleanly when a step fails.
"""

__version__ = "0.1.0"

from worktree_orchestrator.config import OrchestratorConfig, load_config

__all__ = [
    "__version__",
    "OrchestratorConfig",
    "load_config",
]
