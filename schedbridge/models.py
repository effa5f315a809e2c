"""
Core data model: nodes, tasks and scheduling decisions.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import TaskStateError


def clamp_fraction(value):
    """Clamp a utilization fraction into [0, 1]."""
    return max(0.0, min(1.0, float(value)))


# --- Tasks ---

class TaskState(Enum):
    CREATED = 0
    SUBMITTED = 1
    SCHEDULED = 2
    BOUND = 3
    RUNNING = 4
    COMPLETED = 5
    FAILED = 6

    @property
    def is_terminal(self):
        return self in (TaskState.COMPLETED, TaskState.FAILED)


class Task:
    """A unit of work (a pod, or a cloudlet on the simulation side)."""

    def __init__(self, task_id, length, pes=1, file_size=300, output_size=300,
                 utilization_cpu=1.0, utilization_ram=1.0, utilization_bw=1.0, name=None):
        self.task_id = task_id
        self.name = name or f"cloudlet-{task_id}"
        self.length = length # Million instructions per PE
        self.pes = max(1, int(pes))
        self.file_size = file_size
        self.output_size = output_size
        self.utilization_cpu = clamp_fraction(utilization_cpu)
        self.utilization_ram = clamp_fraction(utilization_ram)
        self.utilization_bw = clamp_fraction(utilization_bw)

        self.state = TaskState.CREATED
        self.node_id = None
        self.submit_time = None
        self.start_time = None
        self.finish_time = None
        self.failure_reason = None

    def advance(self, new_state):
        """Move forward through the lifecycle. FAILED is reachable from any live state."""
        if self.state.is_terminal:
            raise TaskStateError(f"Task {self.task_id} is already {self.state.name}, cannot move to {new_state.name}")
        if new_state is not TaskState.FAILED and new_state.value <= self.state.value:
            raise TaskStateError(f"Task {self.task_id} cannot move from {self.state.name} back to {new_state.name}")
        self.state = new_state

    def fail(self, reason):
        self.advance(TaskState.FAILED)
        self.failure_reason = reason

    @property
    def is_terminal(self):
        return self.state.is_terminal

    def __repr__(self):
        return f"Task({self.task_id}, {self.state.name}, node={self.node_id})"


# --- Nodes ---

class NodeKind(Enum):
    VM = "vm"
    CONTAINER = "container"


@dataclass(frozen=True)
class VmSpec:
    vmm: str = "Xen"

    kind = NodeKind.VM


@dataclass(frozen=True)
class ContainerSpec:
    image: str = ""

    kind = NodeKind.CONTAINER


class NodeState(Enum):
    REQUESTED = "requested"
    ACTIVE = "active"
    FAILED = "failed"
    DESTROYED = "destroyed"


class Node:
    """A schedulable compute unit (VM or container) owned by the datacenter."""

    def __init__(self, node_id, mips, pes=1, ram=512, bw=1000, size=10000, spec=None, preferred_host_id=None):
        self.node_id = node_id
        self.mips = mips # Per PE
        self.pes = pes
        self.ram = ram
        self.bw = bw
        self.size = size
        self.spec = spec if spec is not None else VmSpec()
        self.preferred_host_id = preferred_host_id

        self.state = NodeState.REQUESTED
        self.host_id = None
        self.in_migration = False
        self.ever_used = False

        # Execution queues (space-shared)
        self.exec_list = []
        self.waiting_list = []
        self.finished_list = []

    @property
    def kind(self):
        return self.spec.kind

    @property
    def name(self):
        return f"{self.kind.value}-{self.node_id}"

    @property
    def total_mips(self):
        return self.mips * self.pes

    @property
    def free_pes(self):
        return self.pes - sum(self.pes_for(t) for t in self.exec_list)

    def pes_for(self, task):
        return min(task.pes, self.pes)

    def can_start(self, task):
        return self.free_pes >= self.pes_for(task)

    def runtime_of(self, task):
        # Space-shared: each PE processes its share of the length at full per-PE speed
        return task.length / self.mips if self.mips > 0 else float('inf')

    def requested_mips(self):
        """Current CPU demand of the executing tasks, capped at capacity."""
        demand = sum(t.utilization_cpu * self.pes_for(t) * self.mips for t in self.exec_list)
        return min(demand, self.total_mips)

    def is_idle(self):
        return not self.exec_list and not self.waiting_list and not self.finished_list

    def __repr__(self):
        return f"Node({self.name}, {self.state.value}, host={self.host_id})"


# --- Scheduler decisions ---

class DecisionStatus(Enum):
    SCHEDULED = "Scheduled"
    PENDING = "Pending"
    UNSCHEDULABLE = "Unschedulable"
    UNKNOWN = "Unknown"

    @classmethod
    def parse(cls, value):
        for status in cls:
            if status.value == value:
                return status
        return cls.UNKNOWN


@dataclass(frozen=True)
class Decision:
    task_id: int
    status: DecisionStatus
    node_id: Optional[int] = None
    node_name: Optional[str] = None
