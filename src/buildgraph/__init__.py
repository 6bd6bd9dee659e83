"""Build-graph task orchestrator.

Provides a project registry, evaluation ordering with deferred actions, and a
task executor with dependency resolution, plus a Typer CLI.
"""

from .build import Build  # re-export for convenience
from .config import BuildConfig
from .executor import CancellationToken, TaskSpec, task

__all__ = ["Build", "BuildConfig", "CancellationToken", "TaskSpec", "task"]
