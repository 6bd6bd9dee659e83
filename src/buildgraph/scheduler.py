from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, Dict, List, Optional, Union

from .actions import ActionRegistry, DeferredAction
from .errors import ConfigurationError, DependencyCycle
from .events import ActionApplied, EventBus, ProjectEvaluated
from .graph import DependencyGraph
from .logging import get_logger
from .projects import EvaluationState, Project, ProjectRegistry

Action = Callable[[Project], None]
ProjectRef = Union[Project, str]


@dataclass
class EvaluationReport:
    evaluated: List[str] = field(default_factory=list)
    failed: Dict[str, ConfigurationError] = field(default_factory=dict)
    # skipped project -> the failed or skipped dependency that blocked it
    skipped: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed and not self.skipped

    def raise_for_errors(self) -> None:
        if self.failed:
            raise next(iter(self.failed.values()))


class EvaluationScheduler:
    """Evaluates projects in dependency order, each exactly once.

    A project moves UNEVALUATED -> EVALUATING -> EVALUATED. Its evaluation
    dependencies are evaluated first; a child always waits for its parent.
    Deferred actions registered with `after_evaluate` run immediately when
    the project is already evaluated and are queued otherwise.
    """

    def __init__(
        self,
        registry: ProjectRegistry,
        actions: Optional[ActionRegistry] = None,
        events: Optional[EventBus] = None,
    ):
        self.registry = registry
        self.actions = actions if actions is not None else ActionRegistry()
        self.events = events if events is not None else EventBus()
        self.logger = get_logger("buildgraph.scheduler")
        self._declared: List[tuple[str, str]] = []
        self._configure: Dict[str, List[Action]] = {}
        self._deferred: Dict[str, Deque[DeferredAction]] = {}
        self._flushing: set[str] = set()
        self._in_progress: List[str] = []
        self._failed: Dict[str, ConfigurationError] = {}

    def resolve(self, ref: ProjectRef) -> Project:
        return ref if isinstance(ref, Project) else self.registry.get(ref)

    def add_evaluation_dependency(self, dependent: ProjectRef, dependency: ProjectRef) -> None:
        """Make `dependent` wait for `dependency` to finish evaluating."""
        pair = (self.resolve(dependent).path, self.resolve(dependency).path)
        if pair not in self._declared:
            self._declared.append(pair)

    def build_graph(self) -> DependencyGraph:
        graph = DependencyGraph(p.path for p in self.registry.projects())
        for project in self.registry.projects():
            if project.parent is not None:
                graph.add_dependency(project.path, project.parent.path)
        for dependent, dependency in self._declared:
            graph.add_dependency(dependent, dependency)
        return graph

    def compute_order(self) -> List[str]:
        return self.build_graph().compute_order()

    def configure(self, project: ProjectRef, action: Action) -> None:
        """Queue a configuration action to run while `project` evaluates."""
        project = self.resolve(project)
        if project.state is not EvaluationState.UNEVALUATED:
            raise ConfigurationError(
                project.path, "cannot add configuration to a project past evaluation"
            )
        self._configure.setdefault(project.path, []).append(action)

    def after_evaluate(
        self, project: ProjectRef, action: Action, name: str = ""
    ) -> DeferredAction:
        project = self.resolve(project)
        deferred = DeferredAction(project, action, name)
        if (
            project.state is EvaluationState.EVALUATED
            and project.path not in self._flushing
        ):
            self._run_deferred(deferred)
        else:
            self._deferred.setdefault(project.path, deque()).append(deferred)
        return deferred

    def evaluate(self, project: ProjectRef) -> None:
        project = self.resolve(project)
        path = project.path
        if project.state is EvaluationState.EVALUATED:
            return
        if path in self._failed:
            raise self._failed[path]
        if project.state is EvaluationState.EVALUATING or path in self._in_progress:
            start = self._in_progress.index(path) if path in self._in_progress else 0
            raise DependencyCycle(self._in_progress[start:] + [path])

        self._in_progress.append(path)
        try:
            graph = self.build_graph()
            for dep in graph.dependencies_of(path):
                self.evaluate(dep)
            self._transition(project)
        finally:
            self._in_progress.pop()

    def _transition(self, project: Project) -> None:
        path = project.path
        project.state = EvaluationState.EVALUATING
        try:
            # Kept until every action succeeds so a retry runs them again
            for action in list(self._configure.get(path, [])):
                action(project)
            self._configure.pop(path, None)
            for entry in self.actions.matching(project):
                entry.action(project)
                self.events.emit(ActionApplied(action=entry.name, project=path))
        except DependencyCycle:
            project.state = EvaluationState.UNEVALUATED
            raise
        except Exception as e:  # noqa: BLE001
            project.state = EvaluationState.UNEVALUATED
            err = ConfigurationError(path, e)
            self._failed[path] = err
            raise err from e

        project.state = EvaluationState.EVALUATED
        self.logger.debug("Evaluated %s", path)
        self.events.emit(ProjectEvaluated(project=path))
        self._flush(project)

    def _flush(self, project: Project) -> None:
        queue = self._deferred.get(project.path)
        if not queue:
            return
        first_error: Optional[ConfigurationError] = None
        self._flushing.add(project.path)
        try:
            while queue:
                deferred = queue.popleft()
                try:
                    self._run_deferred(deferred)
                except ConfigurationError as e:
                    first_error = first_error or e
        finally:
            self._flushing.discard(project.path)
            self._deferred.pop(project.path, None)
        if first_error is not None:
            self._failed[project.path] = first_error
            raise first_error

    def _run_deferred(self, deferred: DeferredAction) -> None:
        try:
            ran = deferred.run()
        except DependencyCycle:
            raise
        except Exception as e:  # noqa: BLE001
            self.logger.error(
                "Deferred action %s failed on %s: %s", deferred.name, deferred.project.path, e
            )
            raise ConfigurationError(deferred.project.path, e) from e
        if ran:
            self.events.emit(ActionApplied(action=deferred.name, project=deferred.project.path))

    def evaluate_all(self) -> EvaluationReport:
        """Evaluate every project, isolating failures to dependent subtrees.

        Cycles raise CycleDetected before any project is evaluated.
        """
        graph = self.build_graph()
        order = graph.compute_order()
        report = EvaluationReport()
        for path in order:
            blocked_by = next(
                (
                    d
                    for d in graph.dependencies_of(path)
                    if d in report.failed or d in report.skipped
                ),
                None,
            )
            if blocked_by is not None:
                report.skipped[path] = blocked_by
                self.logger.warning(
                    "Skipping evaluation of %s: depends on %s which did not evaluate",
                    path,
                    blocked_by,
                )
                continue
            try:
                self.evaluate(path)
            except ConfigurationError as e:
                self.logger.error("%s", e)
                report.failed[path] = e
                continue
            report.evaluated.append(path)
        return report
