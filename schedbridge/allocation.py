"""
Node-to-host allocation policies.
"""

import logging

logger = logging.getLogger(__name__)


class AllocationPolicySimple:
    """Places each node on the known host with the most free PEs. Never migrates."""

    def __init__(self, hosts):
        self.hosts = list(hosts)
        self.guest_table = {} # node_id -> host

    def knows(self, host):
        return host in self.hosts

    def get_host(self, host_id):
        for host in self.hosts:
            if host.host_id == host_id:
                return host
        return None

    def host_of(self, node):
        return self.guest_table.get(node.node_id)

    def allocate(self, node, host=None):
        """Allocate the node to the given host, or pick one. Returns the host or None."""
        if host is not None:
            candidates = [host] if self.knows(host) else []
        else:
            candidates = sorted(self.hosts, key=lambda h: h.free_pes(), reverse=True)

        for candidate in candidates:
            if candidate.add_guest(node):
                self.guest_table[node.node_id] = candidate
                return candidate
        return None

    def deallocate(self, node):
        host = self.guest_table.pop(node.node_id, None)
        if host is None:
            return False
        host.remove_guest(node)
        node.host_id = None
        return True

    def move(self, node, target):
        """Re-home a node after migration; capacity was reserved on the target when the move started."""
        source = self.guest_table.get(node.node_id)
        if source is not None:
            source.remove_guest(node)
        target.remove_migrating_in(node)
        target.guests.append(node)
        node.host_id = target.host_id
        self.guest_table[node.node_id] = target

    def optimize_allocation(self, nodes):
        return None


class ConsolidationPolicy(AllocationPolicySimple):
    """Drains under-utilized hosts by proposing to move their guests onto the busiest host that fits."""

    def __init__(self, hosts, underload_threshold=0.3):
        super().__init__(hosts)
        self.underload_threshold = underload_threshold

    def optimize_allocation(self, nodes):
        movable = {n.node_id for n in nodes if not n.in_migration}
        underloaded = [h for h in self.hosts
                       if h.guests and h.utilization() < self.underload_threshold]
        if not underloaded:
            return None

        migration_map = []
        planned = set() # Hosts already receiving a guest this round
        for source in sorted(underloaded, key=lambda h: h.utilization()):
            targets = sorted((h for h in self.hosts if h is not source and h not in underloaded),
                             key=lambda h: h.utilization(), reverse=True)
            for node in list(source.guests):
                if node.node_id not in movable:
                    continue
                for target in targets:
                    if target in planned or target.migrating_in:
                        continue
                    if target.is_suitable(node):
                        migration_map.append((node, target))
                        planned.add(target)
                        break
        return migration_map or None
