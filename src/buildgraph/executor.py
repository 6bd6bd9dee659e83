from __future__ import annotations

import enum
import importlib
import json
import shutil
import sys
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Set

from . import events as ev
from .errors import DeclarationError, DuplicateTask, TaskFailed, TaskNotFound
from .graph import DependencyGraph
from .logging import get_logger


class TaskState(str, enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class TaskSpec:
    name: str
    fn: Callable[..., None]
    depends_on: Sequence[str] = ()
    description: str = ""
    state: TaskState = TaskState.PENDING

    def __post_init__(self) -> None:
        self.depends_on = tuple(self.depends_on)


def task(name: str, depends_on: Sequence[str] = (), description: str = ""):
    """Decorator to declare a task on a function.

    The wrapped function is called with a single keyword argument `params`
    (the build parameters dict).
    """

    def deco(fn: Callable[..., None]):
        spec = TaskSpec(
            name=name,
            fn=fn,
            depends_on=depends_on,
            description=description or (fn.__doc__ or "").strip().split("\n")[0],
        )
        setattr(fn, "_task_spec", spec)
        return fn

    return deco


def discover_tasks(module_names: Iterable[str]) -> Dict[str, TaskSpec]:
    """Import each module and collect functions decorated with @task."""
    specs: Dict[str, TaskSpec] = {}
    for module_name in module_names:
        try:
            mod = importlib.import_module(module_name)
        except ImportError as e:
            raise DeclarationError(module_name, f"cannot import task module: {e}") from e
        for attr_name in dir(mod):
            obj = getattr(mod, attr_name)
            spec = getattr(obj, "_task_spec", None)
            if isinstance(spec, TaskSpec):
                # Fresh copy so run state never leaks between builds
                specs[spec.name] = TaskSpec(
                    name=spec.name,
                    fn=spec.fn,
                    depends_on=spec.depends_on,
                    description=spec.description,
                )
    return specs


def delete_paths(*paths: str | Path) -> Callable[..., None]:
    """Build an action that removes files or directory trees.

    Paths that do not exist are ignored, so the action can run any number of
    times.
    """
    targets = [Path(p) for p in paths]

    def delete(params: Optional[dict] = None) -> None:
        log = get_logger("buildgraph.delete")
        for target in targets:
            try:
                if target.is_dir() and not target.is_symlink():
                    shutil.rmtree(target)
                else:
                    target.unlink()
            except FileNotFoundError:
                log.debug("Nothing to delete at %s", target)
                continue
            log.info("Deleted %s", target)

    delete.__name__ = "delete(" + ", ".join(str(t) for t in targets) + ")"
    return delete


class CancellationToken:
    """Cooperative cancellation, checked by the executor between tasks."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


@dataclass
class RunResult:
    run_id: str
    order: List[str]
    succeeded: List[str] = field(default_factory=list)
    # tasks kept from an earlier run instead of executing again
    reused: List[str] = field(default_factory=list)
    failed: Dict[str, TaskFailed] = field(default_factory=dict)
    skipped: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return len(self.succeeded) == len(self.order)

    @property
    def exit_code(self) -> int:
        if self.ok:
            return 0
        return min(255, max(1, len(self.failed)))


class TaskExecutor:
    def __init__(
        self,
        events: Optional[ev.EventBus] = None,
        runs_dir: Optional[Path] = None,
        name: str = "build",
    ):
        self.tasks: Dict[str, TaskSpec] = {}
        self.events = events if events is not None else ev.EventBus()
        self.runs_dir = Path(runs_dir) if runs_dir is not None else None
        self.name = name
        self.logger = get_logger(f"buildgraph.{self.name}")

    def __contains__(self, name: str) -> bool:
        return name in self.tasks

    def register(self, spec: TaskSpec) -> TaskSpec:
        if spec.name in self.tasks:
            raise DuplicateTask(f"Task already registered: {spec.name}")
        self.tasks[spec.name] = spec
        return spec

    def add(
        self,
        name: str,
        fn: Callable[..., None],
        depends_on: Sequence[str] = (),
        description: str = "",
    ) -> TaskSpec:
        return self.register(
            TaskSpec(name=name, fn=fn, depends_on=depends_on, description=description)
        )

    def graph(self) -> DependencyGraph:
        graph = DependencyGraph(self.tasks.keys())
        for spec in self.tasks.values():
            for dep in spec.depends_on:
                if dep not in self.tasks:
                    raise TaskNotFound(f"Task '{spec.name}' depends on unknown task '{dep}'")
                graph.add_dependency(spec.name, dep)
        return graph

    def plan(self, names: Sequence[str], exclude: Iterable[str] = ()) -> List[str]:
        """Transitive dependencies of `names` in execution order."""
        for name in list(names) + list(exclude):
            if name not in self.tasks:
                raise TaskNotFound(f"Task not found: {name}")
        graph = self.graph()
        selected = graph.closure(names, exclude=exclude)
        return graph.compute_order(selected)

    def run(
        self,
        names: Sequence[str],
        params: Optional[dict] = None,
        continue_on_failure: bool = False,
        cancel: Optional[CancellationToken] = None,
        resume: bool = False,
        exclude: Iterable[str] = (),
        previously_succeeded: Iterable[str] = (),
    ) -> RunResult:
        order = self.plan(names, exclude=exclude)
        params = dict(params or {})
        # Suffixed so two runs started within the same second stay apart
        run_id = f"{time.strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"
        params.setdefault("runtime", {})
        params["runtime"]["run_id"] = run_id

        carried = set(previously_succeeded)
        for name in order:
            spec = self.tasks[name]
            if name in carried:
                spec.state = TaskState.SUCCEEDED
            elif not (resume and spec.state is TaskState.SUCCEEDED):
                spec.state = TaskState.PENDING

        self.logger.info("Selected tasks: %s", " → ".join(order))
        result = RunResult(run_id=run_id, order=order)

        for name in order:
            spec = self.tasks[name]
            if spec.state is TaskState.SUCCEEDED:
                result.succeeded.append(name)
                result.reused.append(name)
                continue
            reason = self._skip_reason(spec, result, continue_on_failure, cancel)
            if reason is not None:
                result.skipped[name] = reason
                self.events.emit(ev.TaskSkipped(task=name, reason=reason))
                continue
            self._execute(spec, params, result)
            self._write_state(result)

        if result.cancelled:
            self.logger.warning(
                "Run cancelled; %d task(s) succeeded before cancellation",
                len(result.succeeded),
            )
        self._write_state(result)
        return result

    def _skip_reason(
        self,
        spec: TaskSpec,
        result: RunResult,
        continue_on_failure: bool,
        cancel: Optional[CancellationToken],
    ) -> Optional[str]:
        if cancel is not None and cancel.cancelled:
            result.cancelled = True
            return "cancelled"
        if result.failed and not continue_on_failure:
            return f"aborted after failure of {next(iter(result.failed))}"
        for dep in spec.depends_on:
            if dep in result.failed or dep in result.skipped:
                return f"dependency {dep} did not succeed"
        return None

    def _execute(self, spec: TaskSpec, params: dict, result: RunResult) -> None:
        task_logger = get_logger(f"buildgraph.{self.name}.{spec.name}")
        spec.state = TaskState.RUNNING
        self.events.emit(ev.TaskStarted(task=spec.name))
        started = time.perf_counter()
        try:
            spec.fn(params=params)
        except Exception as e:  # noqa: BLE001
            spec.state = TaskState.FAILED
            result.failed[spec.name] = TaskFailed(spec.name, e)
            task_logger.exception("Task failed (%s)", spec.name)
            self.events.emit(ev.TaskFailed(task=spec.name, error=str(e)))
            return
        spec.state = TaskState.SUCCEEDED
        result.succeeded.append(spec.name)
        self.events.emit(
            ev.TaskSucceeded(task=spec.name, duration_s=time.perf_counter() - started)
        )

    def _write_state(self, result: RunResult) -> None:
        if self.runs_dir is None:
            return
        run_dir = self.runs_dir / result.run_id
        run_dir.mkdir(parents=True, exist_ok=True)
        state = {
            "build": self.name,
            "run_id": result.run_id,
            "cancelled": result.cancelled,
            "tasks": [_task_entry(name, result) for name in result.order],
            "python": sys.version,
        }
        with open(run_dir / "state.json", "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2)


def _task_entry(name: str, result: RunResult) -> dict:
    if name in result.failed:
        return {"name": name, "status": "failed", "error": str(result.failed[name].cause)}
    if name in result.skipped:
        return {"name": name, "status": "skipped", "reason": result.skipped[name]}
    if name in result.succeeded:
        return {"name": name, "status": "succeeded"}
    return {"name": name, "status": "pending"}


def load_run_state(path: str | Path) -> Set[str]:
    """Names of tasks that succeeded in a recorded run."""
    with open(path, "r", encoding="utf-8") as f:
        state = json.load(f)
    return {t["name"] for t in state.get("tasks", []) if t.get("status") == "succeeded"}
