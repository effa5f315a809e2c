"""
Time-weighted averages and end-of-run simulation metrics.
"""

import logging
import statistics
import time

logger = logging.getLogger(__name__)

JOULES_PER_KWH = 3600 * 1000


class TimeWeightedMetric:
    """Average of a step-function signal, weighted by how long each value was held.

    Each sample's value is assumed to hold until the next sample arrives.
    """

    def __init__(self):
        self.start_time = None
        self.last_time = None
        self.last_value = 0.0
        self.area = 0.0
        self.samples = 0

    def add(self, t, value):
        """Record a sample at simulation time t."""
        if self.start_time is None:
            self.start_time = t
        if self.last_time is not None and t > self.last_time:
            self.area += self.last_value * (t - self.last_time)
        self.last_time = t
        self.last_value = value
        self.samples += 1

    def average(self, until_time):
        """Average from the first sample up to until_time, including the tail at the last value."""
        if self.start_time is None:
            return 0.0
        duration = max(0.0, until_time - self.start_time)
        if duration == 0.0:
            return self.last_value
        area = self.area
        if until_time > self.last_time:
            area += self.last_value * (until_time - self.last_time)
        return area / duration


class SimulationMetrics:
    """Collects wall-clock timing and the datacenter/bridge totals at the end of a run."""

    def __init__(self, datacenter, bridge=None):
        self.datacenter = datacenter
        self.bridge = bridge
        self.wall_start = None
        self.wall_end = None

    def start_wall_clock(self):
        self.wall_start = time.perf_counter()

    def stop_wall_clock(self):
        self.wall_end = time.perf_counter()

    def wall_clock_ms(self):
        if self.wall_start is None:
            return 0.0
        end = self.wall_end if self.wall_end is not None else time.perf_counter()
        return (end - self.wall_start) * 1000

    def summary(self, sim_time):
        dc = self.datacenter
        stats = {
            'simulated_time': sim_time,
            'wall_clock_ms': self.wall_clock_ms(),
            'energy_ws': dc.total_energy,
            'energy_kwh': dc.total_energy / JOULES_PER_KWH,
            'hosts': len(dc.hosts),
            'nodes_created': dc.stats['nodes_created'],
            'nodes_destroyed': dc.stats['nodes_destroyed'],
            'migrations': dc.stats['migrations'],
            'consolidation_average': dc.consolidation_average(),
        }
        if self.bridge is not None:
            stats['tasks_completed'] = len(self.bridge.completed_tasks())
            stats['tasks_failed'] = len(self.bridge.failed_tasks())
            turnaround = [t.finish_time - t.submit_time for t in self.bridge.completed_tasks()
                          if t.finish_time is not None and t.submit_time is not None]
            stats['mean_turnaround'] = statistics.mean(turnaround) if turnaround else 0.0
        return stats

    def log_summary(self, sim_time):
        stats = self.summary(sim_time)
        logger.info("--- Simulation Metrics ---")
        logger.info("Simulated time elapsed: %.2f units", stats['simulated_time'])
        logger.info("Wall-clock time elapsed: %.0f ms", stats['wall_clock_ms'])
        logger.info("Energy consumption: %.4f kWh", stats['energy_kwh'])
        logger.info("Hosts: %d, nodes created: %d, destroyed: %d, migrations: %d",
                    stats['hosts'], stats['nodes_created'], stats['nodes_destroyed'], stats['migrations'])
        logger.info("Time-weighted avg consolidation: %.3f", stats['consolidation_average'])
        if 'tasks_completed' in stats:
            logger.info("Tasks completed: %d, failed: %d", stats['tasks_completed'], stats['tasks_failed'])
            logger.info("Mean task turnaround: %.2f units", stats['mean_turnaround'])
        return stats
