from __future__ import annotations

"""Error taxonomy for configuration and execution phases."""

from typing import Any, Sequence


class BuildGraphError(Exception):
    pass


class NotFound(BuildGraphError, KeyError):
    def __str__(self) -> str:  # KeyError quotes its message otherwise
        return str(self.args[0]) if self.args else ""


class ProjectNotFound(NotFound):
    pass


class TaskNotFound(NotFound):
    pass


class InvalidProjectPath(BuildGraphError, ValueError):
    pass


class DuplicateTask(BuildGraphError, ValueError):
    pass


class CycleDetected(BuildGraphError):
    """Raised when a dependency graph is not acyclic.

    `cycle` lists one offending cycle, first node repeated at the end.
    """

    def __init__(self, cycle: Sequence[Any]):
        self.cycle = list(cycle)
        super().__init__("Cycle detected: " + " -> ".join(str(n) for n in self.cycle))


class DependencyCycle(CycleDetected):
    """Evaluation re-entered a project that is still being evaluated."""


class ConfigurationError(BuildGraphError):
    def __init__(self, project: Any, cause: BaseException | str):
        self.project = project
        self.cause = cause
        super().__init__(f"Configuration of project '{project}' failed: {cause}")


class DeclarationError(ConfigurationError):
    """The build declaration file itself is malformed."""

    def __init__(self, source: Any, cause: BaseException | str):
        super().__init__(source, cause)


class TaskFailed(BuildGraphError):
    def __init__(self, task: str, cause: BaseException | str):
        self.task = task
        self.cause = cause
        super().__init__(f"Task '{task}' failed: {cause}")


class ActionPredicateError(BuildGraphError):
    def __init__(self, action: str, project: Any, cause: BaseException):
        self.action = action
        self.project = project
        self.cause = cause
        super().__init__(
            f"Predicate of action '{action}' raised for project '{project}': {cause}"
        )
