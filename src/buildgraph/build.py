from __future__ import annotations

from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Union

from . import config as config_mod
from .actions import Action, ActionRegistry, DeferredAction, Predicate
from .events import EventBus, log_listener
from .executor import (
    CancellationToken,
    RunResult,
    TaskExecutor,
    TaskSpec,
    delete_paths,
    load_run_state,
)
from .errors import DeclarationError
from .logging import attach_log_file, get_logger
from .projects import BuildLayout, Project, ProjectRegistry
from .scheduler import EvaluationReport, EvaluationScheduler

ProjectRef = Union[Project, str]
CLEAN = "clean"


def clean_task_name(project: Project) -> str:
    return CLEAN if project.is_root else f"{project.path}:{CLEAN}"


class Build:
    """One build invocation: a project tree, its configuration and its tasks.

    Configuration (evaluation) always completes before any task runs; a
    build whose projects could not all be evaluated never executes tasks.
    """

    def __init__(self, config: Optional[config_mod.BuildConfig] = None):
        self.config = config or config_mod.BuildConfig()
        self.events = EventBus()
        self.events.subscribe(log_listener)
        self.registry = ProjectRegistry(root_name=self.config.root_name)
        self.layout = BuildLayout(self.config.build_dir)
        self.actions = ActionRegistry()
        self.scheduler = EvaluationScheduler(self.registry, self.actions, self.events)
        self.executor = TaskExecutor(
            events=self.events, runs_dir=self.config.runs_dir, name=self.config.name
        )
        self.report: Optional[EvaluationReport] = None
        self.logger = get_logger(f"buildgraph.{self.config.name}")
        self.log_handler = (
            attach_log_file(self.config.log_file) if self.config.log_file is not None else None
        )

    @classmethod
    def from_file(cls, path: str | Path) -> "Build":
        path = Path(path)
        data = config_mod.load_config(path)
        build = cls(config_mod.BuildConfig.from_dict(data, base_dir=path.parent, source=str(path)))
        config_mod.apply_declaration(build, data, source=str(path))
        return build

    @property
    def root(self) -> Project:
        return self.registry.root

    def project(self, path: str) -> Project:
        return self.registry.register(path)

    def build_dir(self, project: ProjectRef) -> Path:
        return self.layout.build_dir(project)

    def evaluation_depends_on(self, dependent: ProjectRef, dependency: ProjectRef) -> None:
        self.scheduler.add_evaluation_dependency(dependent, dependency)

    def subprojects_evaluation_depends_on(self, dependency: ProjectRef) -> None:
        """Every subproject waits for `dependency`.

        The target and its ancestors are left out; they already come before
        it through the parent edge.
        """
        target = self.scheduler.resolve(dependency)
        exempt = set()
        cur: Optional[Project] = target
        while cur is not None:
            exempt.add(cur.path)
            cur = cur.parent
        for project in self.registry.subprojects():
            if project.path not in exempt:
                self.scheduler.add_evaluation_dependency(project, target)

    def register_action(
        self, predicate: Predicate, action: Action, name: Optional[str] = None
    ) -> None:
        self.actions.register_action(predicate, action, name)

    def configure(self, project: ProjectRef, action: Action) -> None:
        self.scheduler.configure(project, action)

    def after_evaluate(self, project: ProjectRef, action: Action, name: str = "") -> DeferredAction:
        return self.scheduler.after_evaluate(project, action, name)

    def task(
        self,
        name: str,
        fn: Callable[..., None],
        depends_on: Sequence[str] = (),
        description: str = "",
    ) -> TaskSpec:
        return self.executor.add(name, fn, depends_on=depends_on, description=description)

    def _register_clean_tasks(self) -> None:
        for project in self.registry.projects():
            name = clean_task_name(project)
            if name in self.executor:
                continue
            self.executor.add(
                name,
                delete_paths(self.build_dir(project)),
                description=f"Delete the build directory of {project.path}",
            )

    def evaluate(self) -> EvaluationReport:
        """Evaluate all projects once; raise the first configuration error."""
        if self.report is None:
            self.report = self.scheduler.evaluate_all()
            self._register_clean_tasks()
            if not self.report.ok:
                self.logger.error(
                    "%d project(s) failed and %d skipped during configuration",
                    len(self.report.failed),
                    len(self.report.skipped),
                )
        self.report.raise_for_errors()
        return self.report

    def plan(self, names: Sequence[str], exclude: Iterable[str] = ()) -> List[str]:
        self.evaluate()
        return self.executor.plan(names, exclude=exclude)

    def run(
        self,
        names: Sequence[str],
        continue_on_failure: bool = False,
        cancel: Optional[CancellationToken] = None,
        exclude: Iterable[str] = (),
        resume_run: Optional[str] = None,
    ) -> RunResult:
        self.evaluate()
        previously_succeeded: set = set()
        if resume_run:
            if self.config.runs_dir is None:
                raise DeclarationError(self.config.name, "resuming needs build.runs_dir")
            state_file = self.config.runs_dir / resume_run / "state.json"
            if not state_file.exists():
                raise DeclarationError(str(state_file), "no recorded run state")
            previously_succeeded = load_run_state(state_file)
        params = dict(self.config.params)
        params["build_dir"] = str(self.layout.root_dir)
        return self.executor.run(
            names,
            params=params,
            continue_on_failure=continue_on_failure,
            cancel=cancel,
            resume=bool(resume_run),
            exclude=exclude,
            previously_succeeded=previously_succeeded,
        )
