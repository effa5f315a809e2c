"""
Wiring for a complete run: one simpy environment, one power datacenter and one
scheduling bridge talking to the external scheduler.
"""

import logging
from collections import namedtuple

import simpy

from .bridge import SchedulingBridge
from .client import SchedulerClient
from .datacenter import PowerDatacenter
from .metrics import SimulationMetrics

logger = logging.getLogger(__name__)

SimulationResult = namedtuple("SimulationResult", ["completed", "failed", "metrics"])


class Simulation:

    def __init__(self, hosts, nodes, tasks, client=None, base_url=None, allocation_policy=None,
                 enable_migrations=False, polling=False, threaded=False, reset_scheduler=False, **bridge_options):
        self.env = simpy.Environment()
        self.client = client if client is not None else SchedulerClient(base_url)
        self.datacenter = PowerDatacenter(self.env, hosts, allocation_policy=allocation_policy,
                                          enable_migrations=enable_migrations)
        self.bridge = SchedulingBridge(self.env, self.client, self.datacenter,
                                       polling=polling, threaded=threaded, **bridge_options)
        self.bridge.submit_node_list(nodes)
        self.bridge.submit_task_list(tasks)
        self.metrics = SimulationMetrics(self.datacenter, self.bridge)
        self.reset_scheduler = reset_scheduler

    def run(self, until=None):
        """Run until the event queue empties (or `until`) and return the outcome."""
        logger.info("--- Running simulation with %d host(s), %d node(s), %d task(s) ---",
                    len(self.datacenter.hosts), len(self.bridge.node_list), len(self.bridge.task_queue))
        self.metrics.start_wall_clock()
        try:
            self.bridge.start()
            self.env.run(until=until)
        finally:
            self.bridge.shutdown()
            self.datacenter.finalize()
            self.datacenter.shutdown()
            self.metrics.stop_wall_clock()
            if self.reset_scheduler:
                self.bridge.reset()

        if not self.bridge.is_drained():
            logger.warning("%.2f: Simulation stopped before the bridge drained: %d pending, %d running",
                           self.env.now, len(self.bridge.pending), len(self.bridge.dispatched))

        summary = self.metrics.log_summary(self.env.now)
        return SimulationResult(self.bridge.completed_tasks(), self.bridge.failed_tasks(), summary)
