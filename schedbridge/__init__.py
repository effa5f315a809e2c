"""Discrete-event cluster simulation with placement delegated to an external HTTP scheduler."""

from .allocation import AllocationPolicySimple, ConsolidationPolicy
from .bridge import SchedulingBridge
from .client import SchedulerClient
from .datacenter import PowerDatacenter
from .errors import SchedulerError, SerializationError, TaskStateError, TransportError
from .metrics import SimulationMetrics, TimeWeightedMetric
from .models import (ContainerSpec, Decision, DecisionStatus, Node, NodeKind, NodeState, Task, TaskState,
                     VmSpec)
from .power import PowerHost, PowerModelLinear
from .simulation import Simulation, SimulationResult

__version__ = "0.1.0"
