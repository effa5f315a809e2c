import pytest

from schedbridge.errors import TaskStateError
from schedbridge.models import (ContainerSpec, DecisionStatus, Node, NodeKind, Task, TaskState, VmSpec,
                                clamp_fraction)


def test_task_moves_forward_only():
    task = Task(1, 1000)
    task.advance(TaskState.SUBMITTED)
    task.advance(TaskState.SCHEDULED)
    with pytest.raises(TaskStateError):
        task.advance(TaskState.SUBMITTED)


def test_terminal_task_cannot_change():
    task = Task(1, 1000)
    task.fail("unschedulable")
    assert task.is_terminal
    assert task.failure_reason == "unschedulable"
    with pytest.raises(TaskStateError):
        task.advance(TaskState.RUNNING)
    with pytest.raises(TaskStateError):
        task.fail("again")


def test_failed_reachable_from_any_live_state():
    for state in (TaskState.CREATED, TaskState.SUBMITTED, TaskState.SCHEDULED, TaskState.BOUND, TaskState.RUNNING):
        task = Task(1, 1000)
        task.state = state
        task.fail("boom")
        assert task.state is TaskState.FAILED


def test_utilization_is_clamped():
    task = Task(1, 1000, utilization_cpu=1.7, utilization_ram=-0.2)
    assert task.utilization_cpu == 1.0
    assert task.utilization_ram == 0.0
    assert clamp_fraction("0.5") == 0.5


def test_node_kind_follows_variant():
    assert Node(1, 1000).kind is NodeKind.VM
    container = Node(2, 500, spec=ContainerSpec(image="nginx"))
    assert container.kind is NodeKind.CONTAINER
    assert container.name == "container-2"
    assert VmSpec().vmm == "Xen"


def test_space_shared_capacity():
    node = Node(1, 1000, pes=2)
    first, second, third = Task(1, 5000), Task(2, 5000), Task(3, 5000)
    node.exec_list.extend([first, second])
    assert node.free_pes == 0
    assert not node.can_start(third)
    assert node.runtime_of(first) == 5.0
    assert node.requested_mips() == 2000


def test_idle_requires_all_queues_empty():
    node = Node(1, 1000)
    assert node.is_idle()
    node.finished_list.append(Task(1, 10))
    assert not node.is_idle()


def test_decision_status_parse():
    assert DecisionStatus.parse("Scheduled") is DecisionStatus.SCHEDULED
    assert DecisionStatus.parse("Evicted") is DecisionStatus.UNKNOWN
    assert DecisionStatus.parse(None) is DecisionStatus.UNKNOWN
