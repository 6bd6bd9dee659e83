import logging

from buildgraph import actions as act
from buildgraph.projects import ProjectRegistry


def _registry():
    reg = ProjectRegistry()
    reg.register(":app")
    reg.register(":blue_thermal_printer")
    return reg


def test_matching_in_registration_order():
    reg = _registry()
    registry = act.ActionRegistry()
    registry.register_action(act.all_projects, act.set_property("a", 1), name="first")
    registry.register_action(act.named("app"), act.set_property("b", 2), name="second")
    registry.register_action(act.subprojects_only, act.set_property("c", 3), name="third")
    names = [e.name for e in registry.matching(reg.get(":app"))]
    assert names == ["first", "second", "third"]
    assert [e.name for e in registry.matching(reg.root)] == ["first"]


def test_raising_predicate_is_no_match(caplog):
    reg = _registry()
    registry = act.ActionRegistry()

    def broken(project):
        raise RuntimeError("boom")

    registry.register_action(broken, act.set_property("x", 1), name="broken")
    registry.register_action(act.at_path(":app"), act.set_property("y", 1), name="ok")
    with caplog.at_level(logging.WARNING, logger="buildgraph.actions"):
        names = [e.name for e in registry.matching(reg.get(":app"))]
    assert names == ["ok"]
    assert "broken" in caplog.text


def test_ensure_property_does_not_overwrite():
    project = _registry().get(":app")
    project.properties["namespace"] = "Y"
    act.ensure_property("namespace", "X")(project)
    assert project.properties["namespace"] == "Y"


def test_guard_actions_are_idempotent():
    project = _registry().get(":blue_thermal_printer")
    guard = act.ensure_namespace("id.kakzaki.blue_thermal_printer")
    guard(project)
    once = dict(project.properties)
    guard(project)
    assert project.properties == once == {"namespace": "id.kakzaki.blue_thermal_printer"}


def test_set_property_overwrites():
    project = _registry().get(":app")
    project.properties["compileSdk"] = 30
    act.set_property("compileSdk", 34)(project)
    act.set_property("compileSdk", 34)(project)
    assert project.properties["compileSdk"] == 34


def test_deferred_action_runs_once():
    project = _registry().get(":app")
    calls = []
    deferred = act.DeferredAction(project, lambda p: calls.append(p.path))
    assert deferred.run() is True
    assert deferred.run() is False
    assert calls == [":app"]
    assert deferred.name == "<lambda>"
