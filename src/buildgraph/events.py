"""Structured build events.

The core publishes these through an `EventBus`; listeners are free to render,
record or forward them. Nothing in the core reads them back.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, List, Union

from .logging import get_logger


@dataclass(frozen=True)
class TaskStarted:
    task: str


@dataclass(frozen=True)
class TaskSucceeded:
    task: str
    duration_s: float


@dataclass(frozen=True)
class TaskFailed:
    task: str
    error: str


@dataclass(frozen=True)
class TaskSkipped:
    task: str
    reason: str


@dataclass(frozen=True)
class ProjectEvaluated:
    project: str


@dataclass(frozen=True)
class ActionApplied:
    action: str
    project: str


BuildEvent = Union[
    TaskStarted, TaskSucceeded, TaskFailed, TaskSkipped, ProjectEvaluated, ActionApplied
]
Listener = Callable[[BuildEvent], None]


class EventBus:
    """Synchronous fan-out of build events to listeners.

    A listener that raises is logged and skipped; it never breaks the build.
    """

    def __init__(self) -> None:
        self._listeners: List[Listener] = []
        self.logger = get_logger("buildgraph.events")

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def emit(self, event: BuildEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # noqa: BLE001
                self.logger.exception(
                    "Event listener %r failed on %s", listener, type(event).__name__
                )


def log_listener(event: BuildEvent) -> None:
    """Default sink: one log line per event."""
    logger = get_logger("buildgraph.events")
    if isinstance(event, TaskFailed):
        logger.error("%s: %s (%s)", type(event).__name__, event.task, event.error)
    elif isinstance(event, TaskSkipped):
        logger.warning("%s: %s (%s)", type(event).__name__, event.task, event.reason)
    elif isinstance(event, TaskSucceeded):
        logger.info("%s: %s in %.2fs", type(event).__name__, event.task, event.duration_s)
    elif isinstance(event, TaskStarted):
        logger.info("%s: %s", type(event).__name__, event.task)
    elif isinstance(event, ActionApplied):
        logger.info("%s: %s -> %s", type(event).__name__, event.action, event.project)
    else:
        logger.info("%s: %s", type(event).__name__, event.project)
