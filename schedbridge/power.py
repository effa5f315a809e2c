"""
Power models and the physical hosts they are attached to.
"""

import logging

from .models import clamp_fraction

logger = logging.getLogger(__name__)


class PowerModelLinear:
    """Power grows linearly from the static (idle) draw to max_power at full load."""

    def __init__(self, max_power, static_power_percent):
        self.max_power = max_power
        self.static_power_percent = clamp_fraction(static_power_percent)

    @property
    def static_power(self):
        return self.max_power * self.static_power_percent

    def power(self, utilization):
        if utilization < 0 or utilization > 1:
            logger.debug("Clamping out-of-range utilization %r", utilization)
        utilization = clamp_fraction(utilization)
        return self.static_power + (self.max_power - self.static_power) * utilization


class PowerHost:
    """Represents a physical machine hosting nodes."""

    def __init__(self, host_id, mips, pes, ram, bw, storage, power_model):
        self.host_id = host_id
        self.mips = mips # Per PE
        self.pes = pes
        self.ram = ram
        self.bw = bw
        self.storage = storage
        self.power_model = power_model

        self.guests = []
        self.migrating_in = {} # node_id -> node, capacity reserved until the move lands
        self.previous_utilization = 0.0

    # Capacity bookkeeping
    @property
    def total_mips(self):
        return self.mips * self.pes

    def _used(self, attr):
        reserved = sum(getattr(g, attr) for g in self.migrating_in.values())
        return sum(getattr(g, attr) for g in self.guests) + reserved

    def free_pes(self):
        return self.pes - self._used('pes')

    def free_ram(self):
        return self.ram - self._used('ram')

    def free_bw(self):
        return self.bw - self._used('bw')

    def free_storage(self):
        return self.storage - self._used('size')

    def is_suitable(self, node):
        """Check if the host has enough spare capacity for the node."""
        return (node.mips <= self.mips and
                node.pes <= self.free_pes() and
                node.ram <= self.free_ram() and
                node.bw <= self.free_bw() and
                node.size <= self.free_storage())

    def add_guest(self, node):
        if not self.is_suitable(node):
            return False
        self.guests.append(node)
        node.host_id = self.host_id
        return True

    def remove_guest(self, node):
        if node in self.guests:
            self.guests.remove(node)
            return True
        return False

    def add_migrating_in(self, node):
        self.migrating_in[node.node_id] = node

    def remove_migrating_in(self, node):
        self.migrating_in.pop(node.node_id, None)

    # Utilization and energy
    def utilization(self):
        """CPU utilization in [0, 1] from the demand of the hosted nodes."""
        if self.total_mips <= 0:
            return 0.0
        return clamp_fraction(sum(g.requested_mips() for g in self.guests) / self.total_mips)

    def power(self, utilization=None):
        if utilization is None:
            utilization = self.utilization()
        return self.power_model.power(utilization)

    def energy_linear_interpolation(self, from_utilization, to_utilization, duration):
        """Energy (W*sec) over an interval whose utilization moved linearly between two samples.

        A host that was idle at the start of the interval is treated as switched off.
        """
        if from_utilization <= 0 or duration <= 0:
            return 0.0
        from_power = self.power(from_utilization)
        to_power = self.power(to_utilization)
        return (from_power + (to_power - from_power) / 2) * duration

    def __repr__(self):
        return f"PowerHost({self.host_id}, guests={[g.node_id for g in self.guests]})"
