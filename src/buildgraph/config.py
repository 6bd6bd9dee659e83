"""Build declaration loading.

A declaration is a YAML file describing the project tree, evaluation
dependencies, configuration actions and tasks. Relative paths in it are
resolved against the directory holding the file.
"""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import yaml

from . import actions as act
from .errors import DeclarationError, DuplicateTask
from .executor import delete_paths, discover_tasks


def load_config(path: str | Path) -> dict:
    p = Path(path)
    try:
        with open(p, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError as e:
        raise DeclarationError(str(p), "declaration file not found") from e
    except yaml.YAMLError as e:
        raise DeclarationError(str(p), f"invalid YAML: {e}") from e
    if not isinstance(data, dict):
        raise DeclarationError(str(p), "top level must be a mapping")
    return data


def _get(d: Dict, *keys, default=None):
    cur = d
    for k in keys:
        if not isinstance(cur, dict):
            return default
        cur = cur.get(k)
        if cur is None:
            return default
    return cur


@dataclass
class BuildConfig:
    """Settings handed to every component at construction time."""

    name: str = "build"
    root_name: str = "root"
    build_dir: Path = Path("build")
    runs_dir: Optional[Path] = None
    log_file: Optional[Path] = None
    params: Dict[str, Any] = field(default_factory=dict)
    base_dir: Path = Path(".")

    @classmethod
    def from_dict(
        cls, data: dict, base_dir: Path = Path("."), source: str = "<declaration>"
    ) -> "BuildConfig":
        runs_dir = _get(data, "build", "runs_dir")
        log_file = _get(data, "build", "log_file")
        return cls(
            name=str(_get(data, "build", "name", default="build")),
            root_name=str(_get(data, "build", "root_name", default="root")),
            build_dir=_resolve(base_dir, _get(data, "build", "build_dir", default="build")),
            runs_dir=_resolve(base_dir, runs_dir) if runs_dir else None,
            log_file=_resolve(base_dir, log_file) if log_file else None,
            params=dict(_as_dict(data.get("params"), "params", source)),
            base_dir=base_dir,
        )


def _resolve(base_dir: Path, value: str | Path) -> Path:
    p = Path(value)
    return p if p.is_absolute() else base_dir / p


def _as_list(value: Any, what: str, source: str) -> list:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise DeclarationError(source, f"'{what}' must be a list")
    return value


def _as_dict(value: Any, what: str, source: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise DeclarationError(source, f"'{what}' must be a mapping")
    return value


def import_callable(ref: str, source: str = "<declaration>") -> Callable[..., Any]:
    """Resolve 'package.module:function'."""
    module_name, sep, attr = ref.partition(":")
    if not sep or not module_name or not attr:
        raise DeclarationError(source, f"callable reference must look like 'module:function': {ref!r}")
    try:
        mod = importlib.import_module(module_name)
    except ImportError as e:
        raise DeclarationError(source, f"cannot import {module_name}: {e}") from e
    fn = getattr(mod, attr, None)
    if not callable(fn):
        raise DeclarationError(source, f"{ref} is not callable")
    return fn


def _predicate(match: Any, source: str) -> act.Predicate:
    if not isinstance(match, dict) or len(match) != 1:
        raise DeclarationError(source, f"action 'match' needs exactly one of name/path/all/subprojects: {match!r}")
    (kind, value), = match.items()
    if kind == "name":
        return act.named(str(value))
    if kind == "path":
        return act.at_path(str(value))
    if kind == "all" and value:
        return act.all_projects
    if kind == "subprojects" and value:
        return act.subprojects_only
    raise DeclarationError(source, f"unknown action match {match!r}")


def _actions(entry: dict, source: str) -> List[act.Action]:
    out: List[act.Action] = []
    if "ensure_namespace" in entry:
        out.append(act.ensure_namespace(str(entry["ensure_namespace"])))
    for key, value in _as_dict(entry.get("ensure"), "ensure", source).items():
        out.append(act.ensure_property(key, value))
    for key, value in _as_dict(entry.get("set"), "set", source).items():
        out.append(act.set_property(key, value))
    if "call" in entry:
        out.append(import_callable(entry["call"], source))
    if not out:
        raise DeclarationError(source, f"action has nothing to do: {entry!r}")
    return out


def apply_declaration(build: Any, data: dict, source: str = "<declaration>") -> None:
    """Populate `build` (a buildgraph.build.Build) from parsed YAML."""
    for entry in _as_list(data.get("projects"), "projects", source):
        if isinstance(entry, str):
            entry = {"path": entry}
        if not isinstance(entry, dict) or "path" not in entry:
            raise DeclarationError(source, f"project entry needs a 'path': {entry!r}")
        try:
            project = build.project(entry["path"])
        except ValueError as e:
            raise DeclarationError(source, str(e)) from e
        project.properties.update(_as_dict(entry.get("properties"), "properties", source))

    # Dependencies after all projects exist so forward references work
    for entry in _as_list(data.get("projects"), "projects", source):
        if isinstance(entry, str):
            continue
        for dep in _as_list(entry.get("depends_on"), "depends_on", source):
            _require_project(build, dep, source)
            build.evaluation_depends_on(entry["path"], dep)

    sub = _as_dict(data.get("subprojects"), "subprojects", source)
    for dep in _as_list(sub.get("depends_on"), "subprojects.depends_on", source):
        _require_project(build, dep, source)
        build.subprojects_evaluation_depends_on(dep)

    for entry in _as_list(data.get("actions"), "actions", source):
        if not isinstance(entry, dict):
            raise DeclarationError(source, f"action entry must be a mapping: {entry!r}")
        predicate = _predicate(entry.get("match"), source)
        for action in _actions(entry, source):
            build.register_action(predicate, action)

    modules = _as_list(data.get("task_modules"), "task_modules", source)
    for spec in discover_tasks(modules).values():
        try:
            build.executor.register(spec)
        except DuplicateTask as e:
            raise DeclarationError(source, str(e)) from e

    for entry in _as_list(data.get("tasks"), "tasks", source):
        if not isinstance(entry, dict) or "name" not in entry:
            raise DeclarationError(source, f"task entry needs a 'name': {entry!r}")
        if "delete" in entry:
            fn = delete_paths(
                *(_resolve(build.config.base_dir, p) for p in _as_list(entry["delete"], "delete", source))
            )
        elif "call" in entry:
            fn = import_callable(entry["call"], source)
        else:
            fn = _noop
        try:
            build.task(
                entry["name"],
                fn,
                depends_on=_as_list(entry.get("depends_on"), "depends_on", source),
                description=entry.get("description", ""),
            )
        except DuplicateTask as e:
            raise DeclarationError(source, str(e)) from e


def _require_project(build: Any, path: str, source: str) -> None:
    if path not in build.registry:
        raise DeclarationError(source, f"unknown project in dependency: {path}")


def _noop(params: Optional[dict] = None) -> None:
    """Lifecycle task that only aggregates its dependencies."""
