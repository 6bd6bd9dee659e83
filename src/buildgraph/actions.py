"""Configuration actions applied to projects during evaluation.

Actions registered here are matched against each project as it finishes
evaluating. Built-in actions are idempotent: overwriting a property twice
leaves the same state, and guard actions only write when the value is unset.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterator, List, Optional

from .errors import ActionPredicateError
from .logging import get_logger
from .projects import NamespaceAware, Project

Predicate = Callable[[Project], bool]
Action = Callable[[Project], None]

log = get_logger("buildgraph.actions")


def _describe(fn: Callable) -> str:
    return getattr(fn, "name", None) or getattr(fn, "__name__", None) or repr(fn)


@dataclass
class RegisteredAction:
    name: str
    predicate: Predicate
    action: Action


@dataclass
class DeferredAction:
    """Work bound to a project, run once that project is evaluated."""

    project: Project
    action: Action
    name: str = ""
    executed: bool = field(default=False, init=False)

    def __post_init__(self) -> None:
        if not self.name:
            self.name = _describe(self.action)

    def run(self) -> bool:
        """Run the action unless it already ran. Returns whether it ran."""
        if self.executed:
            return False
        self.executed = True
        self.action(self.project)
        return True


class ActionRegistry:
    def __init__(self) -> None:
        self._actions: List[RegisteredAction] = []

    def __len__(self) -> int:
        return len(self._actions)

    def register_action(
        self, predicate: Predicate, action: Action, name: Optional[str] = None
    ) -> RegisteredAction:
        entry = RegisteredAction(name=name or _describe(action), predicate=predicate, action=action)
        self._actions.append(entry)
        return entry

    def matching(self, project: Project) -> Iterator[RegisteredAction]:
        """Yield actions whose predicate accepts `project`, in registration order.

        A predicate that raises counts as no match.
        """
        for entry in list(self._actions):
            try:
                matched = bool(entry.predicate(project))
            except Exception as e:  # noqa: BLE001
                err = ActionPredicateError(entry.name, project.path, e)
                log.warning("%s; treating as no match", err)
                continue
            if matched:
                yield entry


# Predicates


def all_projects(project: Project) -> bool:
    return True


def subprojects_only(project: Project) -> bool:
    return not project.is_root


def named(name: str) -> Predicate:
    def predicate(project: Project) -> bool:
        return project.name == name

    predicate.__name__ = f"named({name})"
    return predicate


def at_path(path: str) -> Predicate:
    def predicate(project: Project) -> bool:
        return project.path == path

    predicate.__name__ = f"at_path({path})"
    return predicate


# Actions


@dataclass(frozen=True)
class SetProperty:
    key: str
    value: Any

    @property
    def name(self) -> str:
        return f"set_property({self.key})"

    def __call__(self, project: Project) -> None:
        project.properties[self.key] = self.value


@dataclass(frozen=True)
class EnsureProperty:
    """Set `key` only when the project has no value for it yet."""

    key: str
    value: Any

    @property
    def name(self) -> str:
        return f"ensure_property({self.key})"

    def __call__(self, project: Project) -> None:
        if project.properties.get(self.key) is None:
            project.properties[self.key] = self.value
            log.info("Set %s=%r on %s", self.key, self.value, project.path)


@dataclass(frozen=True)
class EnsureNamespace:
    """Force a build namespace on projects that are missing one."""

    value: str

    @property
    def name(self) -> str:
        return "ensure_namespace"

    def __call__(self, project: Project) -> None:
        if not isinstance(project, NamespaceAware):
            raise TypeError(f"{project!r} does not support namespaces")
        if not project.has_namespace():
            project.set_namespace(self.value)
            log.info("Forced namespace %s for %s", self.value, project.path)


def set_property(key: str, value: Any) -> SetProperty:
    return SetProperty(key, value)


def ensure_property(key: str, value: Any) -> EnsureProperty:
    return EnsureProperty(key, value)


def ensure_namespace(value: str) -> EnsureNamespace:
    return EnsureNamespace(value)
