"""
JSON shapes exchanged with the external scheduler.
"""

from .errors import SerializationError
from .models import Decision, DecisionStatus, NodeKind


def node_to_json(node):
    """Inventory entry for one node; the type field switches on the node kind tag."""
    if node.kind is NodeKind.VM:
        node_type = "vm"
    elif node.kind is NodeKind.CONTAINER:
        node_type = "container"
    else:
        node_type = "guest"
    return {
        "id": node.node_id,
        "name": f"{node_type}-{node.node_id}",
        "mipsAvailable": int(node.mips),
        "ramAvailable": int(node.ram),
        "pes": node.pes,
        "bw": int(node.bw),
        "size": int(node.size),
        "type": node_type,
    }


def task_to_json(task):
    return {
        "id": task.task_id,
        "name": task.name,
        "length": int(task.length),
        "mipsRequested": int(task.length / task.pes),
        "pes": task.pes,
        "fileSize": int(task.file_size),
        "ramRequested": int(task.file_size),
        "outputSize": int(task.output_size),
        "utilizationCpu": task.utilization_cpu,
        "utilizationRam": task.utilization_ram,
        "utilizationBw": task.utilization_bw,
    }


def _optional_int(value):
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_decision(obj, task_id=None):
    """Decode one {id, status, vmId?, nodeName?} object.

    A negative or missing vmId means the scheduler named no node. `task_id`
    fills in the id for status responses, which do not carry one.
    """
    if not isinstance(obj, dict):
        raise SerializationError(f"Expected a decision object, got {type(obj).__name__}", body=obj)

    raw_id = obj.get("id", task_id)
    decision_id = _optional_int(raw_id)
    if decision_id is None:
        raise SerializationError(f"Decision without a usable id: {obj!r}", body=obj)

    node_id = _optional_int(obj.get("vmId"))
    if node_id is not None and node_id < 0:
        node_id = None
    node_name = obj.get("nodeName") or None

    return Decision(
        task_id=decision_id,
        status=DecisionStatus.parse(obj.get("status")),
        node_id=node_id,
        node_name=node_name,
    )


def parse_decisions(body):
    """Decode a decision list. A single object is accepted as a one-element list."""
    if body is None:
        return []
    if isinstance(body, dict):
        body = [body]
    if not isinstance(body, list):
        raise SerializationError(f"Expected a list of decisions, got {type(body).__name__}", body=body)
    return [parse_decision(item) for item in body]
