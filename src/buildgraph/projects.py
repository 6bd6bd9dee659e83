from __future__ import annotations

import enum
import weakref
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Protocol, runtime_checkable

from .errors import InvalidProjectPath, ProjectNotFound

ROOT_PATH = ":"
NAMESPACE = "namespace"


class EvaluationState(str, enum.Enum):
    UNEVALUATED = "unevaluated"
    EVALUATING = "evaluating"
    EVALUATED = "evaluated"


@runtime_checkable
class NamespaceAware(Protocol):
    """Anything whose build namespace can be inspected and forced."""

    def has_namespace(self) -> bool: ...

    def set_namespace(self, value: str) -> None: ...


def split_path(path: str) -> List[str]:
    """Split ':libs:core' into ['libs', 'core'], validating every segment."""
    if not isinstance(path, str) or not path.startswith(ROOT_PATH):
        raise InvalidProjectPath(f"Project path must start with ':': {path!r}")
    if path == ROOT_PATH:
        return []
    segments = path[1:].split(":")
    for seg in segments:
        if not seg or seg in (".", "..") or "/" in seg or "\\" in seg:
            raise InvalidProjectPath(f"Invalid segment {seg!r} in project path {path!r}")
    return segments


def join_path(segments: List[str]) -> str:
    return ROOT_PATH + ":".join(segments)


class Project:
    """A node of the project tree with a mutable property bag."""

    def __init__(self, path: str, name: str, parent: Optional["Project"] = None):
        self.path = path
        self.name = name
        self._parent = weakref.ref(parent) if parent is not None else None
        self.children: List[Project] = []
        self.properties: Dict[str, Any] = {}
        self.state = EvaluationState.UNEVALUATED

    @property
    def parent(self) -> Optional["Project"]:
        return self._parent() if self._parent is not None else None

    @property
    def is_root(self) -> bool:
        return self.path == ROOT_PATH

    def has_namespace(self) -> bool:
        return bool(self.properties.get(NAMESPACE))

    def set_namespace(self, value: str) -> None:
        self.properties[NAMESPACE] = value

    def __repr__(self) -> str:
        return f"Project({self.path!r}, state={self.state.value})"

    def __str__(self) -> str:
        return self.path


class ProjectRegistry:
    """Sole owner of every Project; handles given out are plain references."""

    def __init__(self, root_name: str = "root"):
        self._projects: Dict[str, Project] = {}
        self.root = Project(ROOT_PATH, root_name)
        self._projects[ROOT_PATH] = self.root

    def __contains__(self, path: str) -> bool:
        return path in self._projects

    def __len__(self) -> int:
        return len(self._projects)

    def __iter__(self) -> Iterator[Project]:
        return iter(list(self._projects.values()))

    def register(self, path: str) -> Project:
        """Register `path`, creating missing ancestors. Idempotent."""
        segments = split_path(path)
        parent = self.root
        for i in range(1, len(segments) + 1):
            sub = join_path(segments[:i])
            project = self._projects.get(sub)
            if project is None:
                project = Project(sub, segments[i - 1], parent=parent)
                parent.children.append(project)
                self._projects[sub] = project
            parent = project
        return parent

    def get(self, path: str) -> Project:
        try:
            return self._projects[path]
        except KeyError:
            raise ProjectNotFound(f"Project not found: {path}") from None

    def find_by_name(self, name: str) -> List[Project]:
        return [p for p in self._projects.values() if p.name == name]

    def projects(self) -> List[Project]:
        return list(self._projects.values())

    def subprojects(self) -> List[Project]:
        return [p for p in self._projects.values() if not p.is_root]

    def set_property(self, project: Project, key: str, value: Any) -> None:
        project.properties[key] = value

    def get_property(self, project: Project, key: str) -> Any:
        return project.properties.get(key)


@dataclass(frozen=True)
class BuildLayout:
    """Maps project paths to build output directories.

    The root writes to `root_dir`; ':a:b' writes to `root_dir/a/b`. Since
    segments cannot contain separators or dot-names, distinct paths never
    share a directory.
    """

    root_dir: Path

    def build_dir(self, project: Project | str) -> Path:
        path = project.path if isinstance(project, Project) else project
        return self.root_dir.joinpath(*split_path(path))
