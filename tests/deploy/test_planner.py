import random

import pytest

from stackform.deploy.planner import plan, CREATE, UPDATE
from stackform.errors import CyclicDependencyError, UnknownDependencyError, ValidationError
from stackform.model.state import (
    CurrentResource,
    CurrentState,
    DesiredState,
    Resource,
    ResourceKind,
)
from stackform.observers.dispatcher import EventBus
from stackform.observers.events import PlanComputed, PlanFailed
from stackform.state.reader import StateReader


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)


class MemoryHandler:
    """Host state kept in a dict: probe reads it, apply writes the signal."""
    tools = ()

    def __init__(self, host):
        self.host = host

    def probe(self, r):
        sig = self.host.get(r.key)
        if sig is None:
            return CurrentResource.absent(r.key)
        running = True if r.kind is ResourceKind.SERVICE else None
        return CurrentResource(key=r.key, present=True, signal=sig, running=running)

    def apply(self, r, action):
        self.host[r.key] = r.signal


def _res(kind, name, deps=(), signal="v1"):
    return Resource(kind=kind, name=name, signal=signal, depends_on=tuple(deps))


def _converged(desired):
    return CurrentState(
        CurrentResource(
            key=r.key,
            present=True,
            signal=r.signal,
            running=True if r.kind is ResourceKind.SERVICE else None,
        )
        for r in desired
    )


def _proxy_stack(password_signal="v1"):
    return DesiredState([
        _res(ResourceKind.CERT, "server"),
        _res(ResourceKind.FILE, "proxy.conf"),
        _res(ResourceKind.SERVICE, "app", signal=password_signal),
        _res(ResourceKind.SERVICE, "db", signal=password_signal),
        _res(
            ResourceKind.SERVICE,
            "proxy",
            deps=["cert:server", "file:proxy.conf", "service:app"],
        ),
    ])


def test_empty_host_plans_five_creates_with_proxy_last():
    cap = Capture()
    p = plan(_proxy_stack(), CurrentState(), bus=EventBus([cap]))

    assert len(p.operations) == 5
    assert all(op.action == CREATE for op in p.operations)
    assert p.keys()[-1] == "service:proxy"
    assert p.get("service:proxy").depends_on == {"cert:server", "file:proxy.conf", "service:app"}

    pc = next(e for e in cap.events if isinstance(e, PlanComputed))
    assert pc.order == p.keys()
    assert pc.converged == []


def test_independent_operations_order_by_kind_priority_then_name():
    p = plan(_proxy_stack(), CurrentState())
    assert p.keys() == [
        "cert:server",
        "file:proxy.conf",
        "service:app",
        "service:db",
        "service:proxy",
    ]


def test_converged_host_yields_empty_plan():
    desired = _proxy_stack()
    p = plan(desired, _converged(desired))
    assert p.is_empty
    assert len(p.converged) == 5


def test_second_plan_after_apply_is_empty():
    host = {}
    handlers = {k: MemoryHandler(host) for k in ResourceKind}
    desired = _proxy_stack()
    reader = StateReader(handlers)

    first = plan(desired, reader.read(desired))
    assert not first.is_empty
    for op in first.operations:
        handlers[op.resource.kind].apply(op.resource, op.action)

    second = plan(desired, reader.read(desired))
    assert second.is_empty
    third = plan(desired, reader.read(desired))
    assert third.is_empty


def test_changed_signal_updates_only_drifted_resources():
    before = _proxy_stack(password_signal="v1")
    after = _proxy_stack(password_signal="v2")
    p = plan(after, _converged(before))

    assert sorted(p.keys()) == ["service:app", "service:db"]
    assert all(op.action == UPDATE for op in p.operations)
    assert all(op.reason == "signal changed" for op in p.operations)


def test_stopped_service_is_updated():
    desired = _proxy_stack()
    current = dict(_converged(desired))
    current["service:db"] = CurrentResource(key="service:db", present=True, signal="v1", running=False)
    p = plan(desired, CurrentState(current.values()))

    assert p.keys() == ["service:db"]
    assert p.operations[0].reason == "not running"


def test_edges_through_converged_resources_keep_order():
    desired = DesiredState([
        _res(ResourceKind.DIRECTORY, "app"),
        _res(ResourceKind.FILE, "Dockerfile", deps=["directory:app"]),
        _res(ResourceKind.IMAGE, "app", deps=["file:Dockerfile"]),
    ])
    current = CurrentState([
        CurrentResource(key="file:Dockerfile", present=True, signal="v1"),
    ])
    p = plan(desired, current)

    assert p.keys() == ["directory:app", "image:app"]
    assert p.get("image:app").depends_on == {"directory:app"}


def test_converged_resources_do_not_reorder_operations():
    desired = DesiredState([
        _res(ResourceKind.SERVICE, "z"),
        _res(ResourceKind.FILE, "a", deps=["service:z"]),
        _res(ResourceKind.SERVICE, "b"),
    ])
    current = CurrentState([
        CurrentResource(key="service:z", present=True, signal="v1", running=True),
    ])
    p = plan(desired, current)

    assert p.keys() == ["file:a", "service:b"]
    assert p.get("file:a").depends_on == frozenset()
    assert [r.key for r in p.converged] == ["service:z"]


def test_cycle_among_converged_resources_is_still_rejected():
    desired = DesiredState([
        _res(ResourceKind.FILE, "a", deps=["file:b"]),
        _res(ResourceKind.FILE, "b", deps=["file:a"]),
        _res(ResourceKind.FILE, "c"),
    ])
    with pytest.raises(CyclicDependencyError):
        plan(desired, _converged(desired))


def test_packages_precede_runtime_kinds():
    desired = DesiredState([
        _res(ResourceKind.SERVICE, "web"),
        _res(ResourceKind.PACKAGE, "docker.io"),
        _res(ResourceKind.FILE, "site.conf"),
    ])
    p = plan(desired, CurrentState())

    assert p.get("service:web").depends_on == {"package:docker.io"}
    assert p.get("file:site.conf").depends_on == frozenset()


@pytest.mark.parametrize("seed", range(5))
def test_every_edge_is_respected_in_random_graphs(seed):
    rng = random.Random(seed)
    kinds = [k for k in ResourceKind if k is not ResourceKind.PACKAGE]
    resources = []
    for i in range(25):
        earlier = [r.key for r in resources]
        deps = rng.sample(earlier, k=min(len(earlier), rng.randint(0, 3)))
        resources.append(_res(rng.choice(kinds), f"r{i:02d}", deps=deps))
    p = plan(DesiredState(resources), CurrentState())

    position = {k: i for i, k in enumerate(p.keys())}
    for op in p.operations:
        for dep in op.depends_on:
            assert position[dep] < position[op.key]


def test_unknown_dependency_is_rejected():
    with pytest.raises(UnknownDependencyError) as exc:
        DesiredState([_res(ResourceKind.FILE, "x", deps=["file:missing"])])
    assert "unknown resource" in str(exc.value)


def test_duplicate_identifier_is_rejected():
    with pytest.raises(ValidationError):
        DesiredState([_res(ResourceKind.FILE, "x"), _res(ResourceKind.FILE, "x")])


def test_same_name_different_kind_is_allowed():
    state = DesiredState([_res(ResourceKind.IMAGE, "app"), _res(ResourceKind.SERVICE, "app")])
    assert len(state) == 2


def test_cycle_detected_and_emits_failure():
    desired = DesiredState([
        _res(ResourceKind.FILE, "a", deps=["file:b"]),
        _res(ResourceKind.FILE, "b", deps=["file:a"]),
    ])
    cap = Capture()
    with pytest.raises(CyclicDependencyError):
        plan(desired, CurrentState(), bus=EventBus([cap]))

    pf = next(e for e in cap.events if isinstance(e, PlanFailed))
    assert "Cyclic" in pf.error
