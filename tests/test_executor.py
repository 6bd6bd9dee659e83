import json

import pytest

from buildgraph import events as ev
from buildgraph.errors import CycleDetected, DuplicateTask, TaskNotFound
from buildgraph.executor import (
    CancellationToken,
    TaskExecutor,
    TaskState,
    delete_paths,
    discover_tasks,
    load_run_state,
    task,
)


def _recorder(calls, name, fail=False):
    def fn(params=None):
        calls.append(name)
        if fail:
            raise RuntimeError(f"{name} broke")

    return fn


def test_diamond_runs_each_task_once():
    calls = []
    ex = TaskExecutor()
    ex.add("base", _recorder(calls, "base"))
    ex.add("left", _recorder(calls, "left"), depends_on=["base"])
    ex.add("right", _recorder(calls, "right"), depends_on=["base"])
    ex.add("top", _recorder(calls, "top"), depends_on=["left", "right"])
    result = ex.run(["top", "left"])
    assert calls == ["base", "left", "right", "top"]
    assert result.ok
    assert result.exit_code == 0
    assert all(ex.tasks[n].state is TaskState.SUCCEEDED for n in calls)


def test_clean_with_missing_and_existing_dirs(tmp_path):
    dir_a = tmp_path / "dirA"
    dir_b = tmp_path / "dirB"
    (dir_b / "nested").mkdir(parents=True)
    (dir_b / "nested" / "out.bin").write_bytes(b"\x00")
    ex = TaskExecutor()
    ex.add("delete_a", delete_paths(dir_a))
    ex.add("delete_b", delete_paths(dir_b))
    ex.add("clean", lambda params=None: None, depends_on=["delete_a", "delete_b"])
    result = ex.run(["clean"])
    assert result.ok
    assert result.exit_code == 0
    assert not dir_b.exists()
    assert not dir_a.exists()


def test_delete_is_idempotent(tmp_path):
    target = tmp_path / "out"
    target.mkdir()
    (tmp_path / "file.txt").write_text("x")
    delete = delete_paths(target, tmp_path / "file.txt")
    delete()
    delete()
    assert not target.exists()
    assert not (tmp_path / "file.txt").exists()


def test_failure_aborts_remaining_tasks():
    calls = []
    ex = TaskExecutor()
    ex.add("a", _recorder(calls, "a", fail=True))
    ex.add("b", _recorder(calls, "b"))
    ex.add("all", _recorder(calls, "all"), depends_on=["a", "b"])
    result = ex.run(["all"])
    assert calls == ["a"]
    assert list(result.failed) == ["a"]
    assert "broke" in str(result.failed["a"].cause)
    assert set(result.skipped) == {"b", "all"}
    assert result.exit_code == 1
    assert ex.tasks["b"].state is TaskState.PENDING


def test_continue_on_failure_runs_independent_tasks():
    calls = []
    ex = TaskExecutor()
    ex.add("a", _recorder(calls, "a", fail=True))
    ex.add("a_child", _recorder(calls, "a_child"), depends_on=["a"])
    ex.add("b", _recorder(calls, "b", fail=True))
    ex.add("c", _recorder(calls, "c"))
    result = ex.run(["a_child", "b", "c"], continue_on_failure=True)
    assert calls == ["a", "b", "c"]
    assert result.skipped == {"a_child": "dependency a did not succeed"}
    assert result.exit_code == 2


def test_exit_code_capped():
    ex = TaskExecutor()
    names = [f"t{i}" for i in range(300)]
    for n in names:
        ex.add(n, _recorder([], n, fail=True))
    result = ex.run(names, continue_on_failure=True)
    assert len(result.failed) == 300
    assert result.exit_code == 255


def test_cancellation_between_tasks_and_resume():
    calls = []
    token = CancellationToken()
    ex = TaskExecutor()

    def first(params=None):
        calls.append("first")
        token.cancel()

    ex.add("first", first)
    ex.add("second", _recorder(calls, "second"), depends_on=["first"])
    result = ex.run(["second"], cancel=token)
    assert result.cancelled
    assert calls == ["first"]
    assert result.skipped == {"second": "cancelled"}
    assert result.exit_code == 1
    assert ex.tasks["first"].state is TaskState.SUCCEEDED

    resumed = ex.run(["second"], resume=True)
    assert calls == ["first", "second"]
    assert resumed.reused == ["first"]
    assert resumed.ok


def test_new_run_without_resume_reexecutes():
    calls = []
    ex = TaskExecutor()
    ex.add("a", _recorder(calls, "a"))
    ex.run(["a"])
    ex.run(["a"])
    assert calls == ["a", "a"]


def test_events_emitted():
    bus = ev.EventBus()
    seen = []
    bus.subscribe(seen.append)
    ex = TaskExecutor(events=bus)
    ex.add("ok", _recorder([], "ok"))
    ex.add("bad", _recorder([], "bad", fail=True), depends_on=["ok"])
    ex.run(["bad"])
    kinds = [type(e).__name__ for e in seen]
    assert kinds == ["TaskStarted", "TaskSucceeded", "TaskStarted", "TaskFailed"]


def test_broken_listener_does_not_break_run():
    bus = ev.EventBus()

    def listener(event):
        raise RuntimeError("listener bug")

    bus.subscribe(listener)
    ex = TaskExecutor(events=bus)
    ex.add("a", _recorder([], "a"))
    assert ex.run(["a"]).ok


def test_plan_errors():
    ex = TaskExecutor()
    ex.add("a", _recorder([], "a"), depends_on=["b"])
    with pytest.raises(TaskNotFound):
        ex.plan(["a"])
    with pytest.raises(TaskNotFound):
        ex.plan(["zzz"])
    with pytest.raises(DuplicateTask):
        ex.add("a", _recorder([], "a"))


def test_cyclic_tasks():
    ex = TaskExecutor()
    ex.add("a", _recorder([], "a"), depends_on=["b"])
    ex.add("b", _recorder([], "b"), depends_on=["a"])
    with pytest.raises(CycleDetected):
        ex.run(["a"])


def test_exclude_drops_task_and_private_dependencies():
    calls = []
    ex = TaskExecutor()
    ex.add("gen", _recorder(calls, "gen"))
    ex.add("compile", _recorder(calls, "compile"), depends_on=["gen"])
    ex.add("lint", _recorder(calls, "lint"))
    ex.add("build", _recorder(calls, "build"), depends_on=["compile", "lint"])
    assert ex.plan(["build"], exclude=["compile"]) == ["lint", "build"]


def test_run_state_written_and_loaded(tmp_path):
    ex = TaskExecutor(runs_dir=tmp_path / "runs")
    ex.add("a", _recorder([], "a"))
    ex.add("b", _recorder([], "b", fail=True), depends_on=["a"])
    result = ex.run(["b"])
    state_file = tmp_path / "runs" / result.run_id / "state.json"
    state = json.loads(state_file.read_text())
    assert [t["status"] for t in state["tasks"]] == ["succeeded", "failed"]
    assert load_run_state(state_file) == {"a"}


def test_back_to_back_runs_keep_separate_state(tmp_path):
    ex = TaskExecutor(runs_dir=tmp_path / "runs")
    ex.add("a", _recorder([], "a"))
    first = ex.run(["a"])
    second = ex.run(["a"])
    assert first.run_id != second.run_id
    assert len(list((tmp_path / "runs").iterdir())) == 2


def test_previously_succeeded_tasks_are_not_rerun():
    calls = []
    ex = TaskExecutor()
    ex.add("a", _recorder(calls, "a"))
    ex.add("b", _recorder(calls, "b"), depends_on=["a"])
    result = ex.run(["b"], previously_succeeded={"a"})
    assert calls == ["b"]
    assert result.reused == ["a"]


def test_params_passed_to_tasks():
    seen = {}
    ex = TaskExecutor()
    ex.add("a", lambda params: seen.update(params))
    ex.run(["a"], params={"flavor": "release"})
    assert seen["flavor"] == "release"
    assert "run_id" in seen["runtime"]


@task(name="decorated", depends_on=["other"])
def _decorated(params):
    """Decorated task used by discovery."""


def test_task_decorator_and_discovery():
    specs = discover_tasks([__name__])
    assert specs["decorated"].depends_on == ("other",)
    assert specs["decorated"].description == "Decorated task used by discovery."
    assert specs["decorated"] is not _decorated._task_spec
