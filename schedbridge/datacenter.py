"""
Power-aware datacenter: runs bound tasks on nodes, accounts host energy,
samples consolidation and tears idle nodes down after a grace period.
"""

import logging

import simpy

from . import config
from .allocation import AllocationPolicySimple
from .engine import Continuations
from .metrics import TimeWeightedMetric
from .models import NodeState, TaskState

logger = logging.getLogger(__name__)


class PowerDatacenter:
    """Resource manager and node lifecycle for a set of power hosts."""

    def __init__(self, env, hosts, allocation_policy=None, scheduling_interval=None,
                 destroy_delay=None, enable_migrations=False, name="datacenter"):
        self.env = env
        self.name = name
        self.hosts = list(hosts)
        self.policy = allocation_policy if allocation_policy is not None else AllocationPolicySimple(self.hosts)
        self.scheduling_interval = scheduling_interval if scheduling_interval is not None else config.SCHEDULING_INTERVAL
        self.destroy_delay = destroy_delay if destroy_delay is not None else config.DESTROY_DELAY
        self.enable_migrations = enable_migrations

        self.node_list = [] # Active nodes
        self.owners = {} # node_id -> broker
        self.continuations = Continuations(env)
        self._destroy_checks = {} # node_id -> pending check process
        self._ticker = None

        # Accounting
        self.last_process_time = env.now
        self.total_energy = 0.0 # W*sec
        self.energy_log = [] # (time, host_id, prev_util, curr_util, energy)
        self.consolidation = TimeWeightedMetric()
        self.busy_until = None # End of the last interval with a busy node
        self.destroyed = [] # (time, node_id)
        self.stats = {'nodes_created': 0, 'nodes_failed': 0, 'nodes_destroyed': 0,
                      'migrations': 0, 'tasks_completed': 0, 'tasks_failed': 0}

    # --- Lookup ---

    def get_node(self, node_id):
        for node in self.node_list:
            if node.node_id == node_id:
                return node
        return None

    def get_host(self, host_id):
        for host in self.hosts:
            if host.host_id == host_id:
                return host
        return None

    # --- Node lifecycle ---

    def create_node(self, node, broker):
        """Allocate a node, honouring its preferred host when possible, and ack the broker."""
        self.update_processing()
        host = None
        if node.preferred_host_id is not None:
            preferred = self.get_host(node.preferred_host_id)
            if preferred is not None and self.policy.knows(preferred):
                host = self.policy.allocate(node, preferred)
                if host is None:
                    logger.info("%.2f: %s: Preferred host #%s cannot fit %s, using default placement",
                                self.env.now, self.name, node.preferred_host_id, node.name)
            else:
                logger.info("%.2f: %s: Preferred host #%s unknown for %s, using default placement",
                            self.env.now, self.name, node.preferred_host_id, node.name)
        if host is None:
            host = self.policy.allocate(node)

        success = host is not None
        if success:
            node.state = NodeState.ACTIVE
            self.node_list.append(node)
            self.owners[node.node_id] = broker
            self.stats['nodes_created'] += 1
            logger.info("%.2f: %s: %s has been created on host #%s", self.env.now, self.name, node.name, host.host_id)
        else:
            node.state = NodeState.FAILED
            self.stats['nodes_failed'] += 1
            logger.warning("%.2f: %s: Creation of %s failed, no suitable host", self.env.now, self.name, node.name)

        self.continuations.later(0, broker.on_node_created, node, success)
        return success

    def _check_idle_nodes(self):
        """Schedule a delayed destroy check for every used node with nothing left to do."""
        for node in self.node_list:
            if node.node_id in self._destroy_checks:
                continue
            if node.ever_used and node.is_idle() and not node.in_migration:
                logger.debug("%.2f: %s: %s is idle, destroy check in %.2f",
                             self.env.now, self.name, node.name, self.destroy_delay)
                self._destroy_checks[node.node_id] = self.continuations.later(
                    self.destroy_delay, self._delayed_destroy, node)

    def _delayed_destroy(self, node):
        if node not in self.node_list:
            self._destroy_checks.pop(node.node_id, None)
            logger.debug("%.2f: %s: %s already removed, nothing to destroy", self.env.now, self.name, node.name)
            return
        if not node.is_idle() or node.in_migration:
            self._destroy_checks.pop(node.node_id, None)
            logger.info("%.2f: %s: %s received work during the grace period, keeping it",
                        self.env.now, self.name, node.name)
            return

        # The check stays registered while accounting runs so the idle scan does not queue another
        self.update_processing()
        self._destroy_checks.pop(node.node_id, None)
        host_id = node.host_id
        self.policy.deallocate(node)
        self.node_list.remove(node)
        node.state = NodeState.DESTROYED
        self.stats['nodes_destroyed'] += 1
        self.destroyed.append((self.env.now, node.node_id))
        logger.info("%.2f: %s: %s has been deallocated and destroyed from host #%s",
                    self.env.now, self.name, node.name, host_id)

        broker = self.owners.pop(node.node_id, None)
        if broker is not None:
            self.continuations.later(0, broker.on_node_destroyed, node)

    # --- Task execution ---

    def submit_task(self, task):
        """Start (or queue) a task already bound to one of our nodes."""
        self.update_processing()
        node = self.get_node(task.node_id)
        if node is None:
            logger.error("%.2f: %s: Task %s bound to node #%s which is not active here",
                         self.env.now, self.name, task.task_id, task.node_id)
            self.stats['tasks_failed'] += 1
            return False

        node.ever_used = True
        if node.can_start(task):
            self._start(node, task)
        else:
            node.waiting_list.append(task)
            logger.info("%.2f: %s: Task %s waiting for PEs on %s", self.env.now, self.name, task.task_id, node.name)
        self._ensure_ticking()
        return True

    def _start(self, node, task):
        node.exec_list.append(task)
        task.advance(TaskState.RUNNING)
        task.start_time = self.env.now
        runtime = node.runtime_of(task)
        logger.info("%.2f: %s: Task %s started on %s (runtime %.2f)",
                    self.env.now, self.name, task.task_id, node.name, runtime)
        self.continuations.later(runtime, self._finish, node, task)

    def _finish(self, node, task):
        self.update_processing()
        node.exec_list.remove(task)
        task.advance(TaskState.COMPLETED)
        task.finish_time = self.env.now
        node.finished_list.append(task)
        self.stats['tasks_completed'] += 1
        logger.info("%.2f: %s: Task %s finished on %s", self.env.now, self.name, task.task_id, node.name)

        for waiting in list(node.waiting_list):
            if node.can_start(waiting):
                node.waiting_list.remove(waiting)
                self._start(node, waiting)

        if self._ticker is not None and not any(n.exec_list for n in self.node_list):
            self.continuations.cancel(self._ticker)
            self._ticker = None

        self.continuations.later(0, self._return_task, node, task)

    def _return_task(self, node, task):
        if task in node.finished_list:
            node.finished_list.remove(task)
        broker = self.owners.get(node.node_id)
        if broker is not None:
            broker.complete_task(task)
        self._check_idle_nodes()

    # --- Processing tick ---

    def _ensure_ticking(self):
        if self._ticker is None or not self._ticker.is_alive:
            self._ticker = self.continuations.track(self.env.process(self._tick_loop()))

    def _tick_loop(self):
        while any(node.exec_list for node in self.node_list):
            try:
                yield self.env.timeout(self.scheduling_interval)
            except simpy.Interrupt:
                return
            self.update_processing()

    def update_processing(self):
        """Account energy and consolidation for the interval since the last tick."""
        now = self.env.now
        if now <= self.last_process_time:
            return
        time_diff = now - self.last_process_time

        frame_energy = 0.0
        for host in self.hosts:
            previous = host.previous_utilization
            current = host.utilization()
            energy = host.energy_linear_interpolation(previous, current, time_diff)
            frame_energy += energy
            self.energy_log.append((now, host.host_id, previous, current, energy))
            host.previous_utilization = current
            logger.debug("%.2f: [Host #%s] utilization at %.2f was %.2f%%, now is %.2f%%, energy %.2f W*sec",
                         now, host.host_id, self.last_process_time, previous * 100, current * 100, energy)
        self.total_energy += frame_energy

        # Runs before any state change at `now`, so the queues still describe the interval just closed
        busy = [node for node in self.node_list if node.exec_list]
        if busy:
            ratio = sum(len(node.exec_list) for node in busy) / len(busy)
            self.consolidation.add(self.last_process_time, ratio)
            self.busy_until = now

        if self.enable_migrations:
            self._migrate()

        self.last_process_time = now
        self._check_idle_nodes()

    # --- Migration ---

    def _migrate(self):
        candidates = [node for node in self.node_list if not node.in_migration]
        migration_map = self.policy.optimize_allocation(candidates)
        if not migration_map:
            return

        for node, target in migration_map:
            if node.in_migration or node not in self.node_list:
                continue
            old_host = self.policy.host_of(node)
            if old_host is None:
                logger.info("%.2f: %s: Migration of %s to host #%s is started",
                            self.env.now, self.name, node.name, target.host_id)
            else:
                logger.info("%.2f: %s: Migration of %s from host #%s to host #%s is started",
                            self.env.now, self.name, node.name, old_host.host_id, target.host_id)

            target.add_migrating_in(node)
            node.in_migration = True
            self.stats['migrations'] += 1
            # Half of the link is reserved for migration traffic
            delay = node.ram / (target.bw / 2)
            self.continuations.later(delay, self._finish_migration, node, target)

    def _finish_migration(self, node, target):
        self.update_processing()
        node.in_migration = False
        if node not in self.node_list:
            target.remove_migrating_in(node)
            return
        self.policy.move(node, target)
        logger.info("%.2f: %s: Migration of %s to host #%s is complete",
                    self.env.now, self.name, node.name, target.host_id)
        self._check_idle_nodes()

    # --- Reporting ---

    def consolidation_average(self, until_time=None):
        """Time-weighted consolidation ratio, by default up to the end of the last busy interval."""
        if until_time is None:
            until_time = self.busy_until if self.busy_until is not None else self.env.now
        return self.consolidation.average(until_time)

    def finalize(self):
        """Close the energy account at the current simulated time."""
        self.update_processing()

    def shutdown(self):
        self.continuations.cancel_all()
        self._destroy_checks.clear()
