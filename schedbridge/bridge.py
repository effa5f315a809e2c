"""
Scheduling bridge between the simpy clock and the external scheduler.

The bridge is the broker for the nodes it asks the datacenter to create. It
pushes the node inventory to the scheduler, submits tasks in batches, binds the
returned placements to nodes and hands them to the datacenter, and on every task
completion tells the scheduler the capacity is free and receives whatever that
capacity unblocked.

No response is ever processed inside the handler that issued the request: each
call is dispatched and its outcome comes back as a later simpy event. By default
the HTTP call itself still runs when it is issued, blocking that handler until
the scheduler answers, and only the delivery is deferred. With threaded=True the
call runs on a worker thread and the simulation keeps processing other events
while it is in flight.
"""

import logging
from concurrent.futures import ThreadPoolExecutor, wait

import simpy

from . import config
from .engine import Continuations
from .errors import SchedulerError, SerializationError
from .models import DecisionStatus, TaskState
from .wire import node_to_json, task_to_json

logger = logging.getLogger(__name__)


class SchedulingBridge:
    """Keeps the simulation's task placement consistent with the external scheduler.

    Pass threaded=True (or an executor) for non-blocking requests; otherwise each
    request blocks the event that issued it.
    """

    def __init__(self, env, client, datacenter, name="bridge", polling=False, executor=None, threaded=False,
                 retry_delay=None, max_retries=None, poll_interval=None, max_poll_attempts=None,
                 response_poll_interval=None):
        self.env = env
        self.client = client
        self.datacenter = datacenter
        self.name = name
        self.polling = polling

        self.retry_delay = retry_delay if retry_delay is not None else config.RETRY_DELAY
        self.max_retries = max_retries if max_retries is not None else config.MAX_RETRIES
        self.poll_interval = poll_interval if poll_interval is not None else config.POLL_INTERVAL
        self.max_poll_attempts = max_poll_attempts if max_poll_attempts is not None else config.MAX_POLL_ATTEMPTS
        self.response_poll_interval = (response_poll_interval if response_poll_interval is not None
                                       else config.RESPONSE_POLL_INTERVAL)

        # A single worker keeps requests in the order they were issued
        self._owns_executor = executor is None and threaded
        self.executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=name) if self._owns_executor else executor

        # Registries, keyed by id
        self.node_list = [] # Nodes requested from the datacenter
        self.nodes = {} # node_id -> Node, created and not yet destroyed
        self.task_queue = [] # Created tasks waiting for the next batch
        self.pending = {} # task_id -> Task, pending with the scheduler
        self.awaiting_bind = {} # task_id -> (Task, Node), scheduled but not yet handed over
        self.dispatched = {} # task_id -> Task, running in the datacenter
        self.submitted = {} # task_id -> Task, everything ever submitted
        self.received = [] # Tasks in a terminal state, in arrival order
        self._received_ids = set()

        self.continuations = Continuations(env)
        self.outstanding = 0 # Exchanges whose outcome has not been delivered
        self.backoff = 0 # Retries waiting out RETRY_DELAY
        self._poll_attempts = {} # task_id -> status queries issued
        self._poll_scheduled = set()
        self._acks = 0
        self._nodes_ready = False
        self._inventory_stale = False
        self._shut_down = False
        self.drained_at = None
        self.stats = {'batches': 0, 'syncs': 0, 'retries': 0, 'polls': 0, 'successors': 0}

    # --- Driver API ---

    def submit_node_list(self, nodes):
        self.node_list.extend(nodes)

    def submit_task_list(self, tasks):
        self.task_queue.extend(tasks)
        self.drained_at = None
        if self._nodes_ready and not self._shut_down:
            self.continuations.later(0, self.submit_tasks)

    def start(self):
        """Ask the datacenter for every requested node; the first batch follows the last ack."""
        logger.info("%.2f: %s: Requesting %d node(s) from %s",
                    self.env.now, self.name, len(self.node_list), self.datacenter.name)
        if not self.node_list:
            self._nodes_ready = True
            self.submit_nodes()
            self.submit_tasks()
            return
        for node in self.node_list:
            self.datacenter.create_node(node, self)

    def create_node(self, node):
        """Request one more node while the simulation is running."""
        self.node_list.append(node)
        self.datacenter.create_node(node, self)

    # --- Datacenter callbacks ---

    def on_node_created(self, node, success):
        self._acks += 1
        if success:
            self.nodes[node.node_id] = node
            logger.info("%.2f: %s: %s has been created on host #%s", self.env.now, self.name, node.name, node.host_id)
        else:
            logger.warning("%.2f: %s: Creation of %s failed", self.env.now, self.name, node.name)

        if self._nodes_ready:
            if success:
                self.submit_nodes()
            return

        if self._acks >= len(self.node_list):
            self._nodes_ready = True
            if not self.nodes:
                logger.error("%.2f: %s: None of the requested nodes could be created", self.env.now, self.name)
            self.submit_nodes()
            self.submit_tasks()

    def on_node_destroyed(self, node):
        self.nodes.pop(node.node_id, None)
        logger.info("%.2f: %s: %s destroyed", self.env.now, self.name, node.name)
        if not self._shut_down:
            self.submit_nodes()

    def complete_task(self, task):
        """A bound task came back from the datacenter: release it and fetch any unblocked successor."""
        self.dispatched.pop(task.task_id, None)
        self._record_terminal(task)
        logger.info("%.2f: %s: Task %s return received (%s)", self.env.now, self.name, task.task_id, task.state.name)
        if self._shut_down:
            return
        self._send_state_update(task, 0)

    # --- Inventory ---

    def submit_nodes(self, nodes=None):
        """Sync the full active inventory. The scheduler replaces, never appends."""
        if nodes is None:
            nodes = self.nodes.values()
        payload = [node_to_json(node) for node in sorted(nodes, key=lambda n: n.node_id)]
        self.stats['syncs'] += 1
        self._dispatch(lambda: self.client.sync_nodes(payload),
                       lambda _result: self._nodes_synced(len(payload)),
                       self._sync_failed)

    def _nodes_synced(self, count):
        self._inventory_stale = False
        logger.info("%.2f: %s: Synced %d active node(s) with the scheduler", self.env.now, self.name, count)

    def _sync_failed(self, error):
        self._inventory_stale = True
        logger.warning("%.2f: %s: Inventory sync failed (%s); the next batch will sync again",
                       self.env.now, self.name, error)

    # --- Task submission ---

    def submit_tasks(self):
        """Send every queued task to the scheduler in one batch."""
        if self._shut_down or not self.task_queue:
            return
        queued, self.task_queue = self.task_queue, []
        batch = []
        for task in queued:
            if task.state is not TaskState.CREATED or task.task_id in self.submitted:
                logger.warning("%.2f: %s: Task %s was already submitted (%s), ignoring it",
                               self.env.now, self.name, task.task_id, task.state.name)
                continue
            batch.append(task)
        if not batch:
            self._check_progress()
            return
        for task in batch:
            task.advance(TaskState.SUBMITTED)
            task.submit_time = self.env.now
            self.pending[task.task_id] = task
            self.submitted[task.task_id] = task
        self.stats['batches'] += 1
        logger.info("%.2f: %s: Submitting %d task(s) to the scheduler in a single batch",
                    self.env.now, self.name, len(batch))
        self._send_batch([task.task_id for task in batch], 0)

    def _send_batch(self, task_ids, attempt):
        tasks = [self.pending[task_id] for task_id in task_ids if task_id in self.pending]
        if not tasks:
            return
        if self._inventory_stale:
            self.submit_nodes()
        payload = [task_to_json(task) for task in tasks]
        request = self.client.submit_pods if self.polling else self.client.schedule_pods
        ids = [task.task_id for task in tasks]
        self._dispatch(lambda: request(payload),
                       lambda decisions: self._batch_answered(ids, decisions),
                       lambda error: self._batch_failed(ids, attempt, error))

    def _batch_answered(self, task_ids, decisions):
        self.apply_decisions(decisions)
        if self.polling:
            for task_id in task_ids:
                task = self.pending.get(task_id)
                if task is not None:
                    self._schedule_poll(task)

    def _batch_failed(self, task_ids, attempt, error):
        remaining = [task_id for task_id in task_ids if task_id in self.pending]
        if not remaining:
            return
        if isinstance(error, SerializationError):
            logger.error("%.2f: %s: Could not decode the scheduling response (%s); failing %d task(s). Raw body: %r",
                         self.env.now, self.name, error, len(remaining), error.body)
            for task_id in remaining:
                self._fail(self.pending[task_id], "unreadable scheduler response")
            return
        if attempt >= self.max_retries:
            logger.error("%.2f: %s: Scheduler still unreachable after %d retries (%s); failing %d task(s)",
                         self.env.now, self.name, attempt, error, len(remaining))
            for task_id in remaining:
                self._fail(self.pending[task_id], "scheduler unreachable")
            return
        self.stats['retries'] += 1
        logger.warning("%.2f: %s: Scheduler unreachable (%s); retrying batch of %d task(s) in %.2f (retry %d/%d)",
                       self.env.now, self.name, error, len(remaining), self.retry_delay, attempt + 1, self.max_retries)
        self._retry_later(self._send_batch, remaining, attempt + 1)

    # --- Completion exchange ---

    def _send_state_update(self, task, attempt):
        payload = [task_to_json(task)]
        self._dispatch(lambda: self.client.update_state(payload),
                       self._successors_received,
                       lambda error: self._state_update_failed(task, attempt, error))

    def _successors_received(self, decisions):
        if not decisions:
            logger.info("%.2f: %s: No new tasks released by the scheduler", self.env.now, self.name)
            return
        self.stats['successors'] += len(decisions)
        logger.info("%.2f: %s: Scheduler released %d task(s) into freed capacity: %s",
                    self.env.now, self.name, len(decisions), [d.task_id for d in decisions])
        self.apply_decisions(decisions)

    def _state_update_failed(self, task, attempt, error):
        if isinstance(error, SerializationError):
            logger.error("%.2f: %s: Could not decode the state update response for task %s (%s). Raw body: %r",
                         self.env.now, self.name, task.task_id, error, error.body)
            return
        if attempt >= self.max_retries:
            logger.error("%.2f: %s: Giving up on releasing task %s after %d retries (%s)",
                         self.env.now, self.name, task.task_id, attempt, error)
            return
        self.stats['retries'] += 1
        logger.warning("%.2f: %s: State update for task %s failed (%s); sending again in %.2f",
                       self.env.now, self.name, task.task_id, error, self.retry_delay)
        self._retry_later(self._send_state_update, task, attempt + 1)

    # --- Decisions ---

    def apply_decisions(self, decisions):
        """Interpret a list of decisions, then hand every newly scheduled task to the datacenter."""
        for decision in decisions:
            task = self.pending.get(decision.task_id)
            if task is None:
                if decision.task_id in self.submitted:
                    logger.info("%.2f: %s: Ignoring decision for task %s, it is no longer pending",
                                self.env.now, self.name, decision.task_id)
                else:
                    logger.warning("%.2f: %s: Ignoring decision for unknown task id %s",
                                   self.env.now, self.name, decision.task_id)
                continue
            self._apply_decision(task, decision)
        self._bind_scheduled()

    def _apply_decision(self, task, decision):
        status = decision.status
        if status is DecisionStatus.SCHEDULED:
            if decision.node_id is None:
                logger.critical("%.2f: %s: Task %s scheduled without a usable node id; marking as failed",
                                self.env.now, self.name, task.task_id)
                self._fail(task, "scheduled without a node id")
                return
            node = self.nodes.get(decision.node_id)
            if node is None:
                logger.critical("%.2f: %s: Target node #%s not found for task %s; marking as failed",
                                self.env.now, self.name, decision.node_id, task.task_id)
                self._fail(task, f"node {decision.node_id} not found")
                return
            logger.info("%.2f: %s: Task %s scheduled on node %s (id %s)",
                        self.env.now, self.name, task.task_id, decision.node_name or "N/A", node.node_id)
            del self.pending[task.task_id]
            self._poll_attempts.pop(task.task_id, None)
            task.advance(TaskState.SCHEDULED)
            self.awaiting_bind[task.task_id] = (task, node)

        elif status is DecisionStatus.PENDING:
            logger.info("%.2f: %s: Task %s is pending with the scheduler", self.env.now, self.name, task.task_id)
            if self._is_polled(task):
                self._schedule_poll(task)

        elif status is DecisionStatus.UNSCHEDULABLE:
            logger.info("%.2f: %s: Task %s is unschedulable", self.env.now, self.name, task.task_id)
            self._fail(task, "unschedulable")

        elif self._is_polled(task):
            logger.info("%.2f: %s: Unknown status for task %s, checking again", self.env.now, self.name, task.task_id)
            self._schedule_poll(task)

        else:
            logger.info("%.2f: %s: Unknown status for task %s; marking as failed",
                        self.env.now, self.name, task.task_id)
            self._fail(task, "unknown scheduler status")

    def _bind_scheduled(self):
        for task_id in list(self.awaiting_bind):
            task, node = self.awaiting_bind.pop(task_id)
            self.bind(task, node)

    def bind(self, task, node):
        """Bind a scheduled task to its node and hand it to the datacenter. Repeated calls are no-ops."""
        if task.node_id is not None:
            if task.node_id == node.node_id:
                logger.debug("%.2f: %s: Task %s already bound to %s", self.env.now, self.name, task.task_id, node.name)
            else:
                logger.error("%.2f: %s: Task %s is bound to node #%s, refusing to rebind it to %s",
                             self.env.now, self.name, task.task_id, task.node_id, node.name)
            return
        if node.node_id not in self.nodes:
            logger.critical("%.2f: %s: %s disappeared before task %s could be bound; marking as failed",
                            self.env.now, self.name, node.name, task.task_id)
            self._fail(task, f"node {node.node_id} destroyed before binding")
            return

        task.node_id = node.node_id
        task.advance(TaskState.BOUND)
        self.dispatched[task.task_id] = task
        logger.info("%.2f: %s: Sending task %s to %s", self.env.now, self.name, task.task_id, node.name)
        if not self.datacenter.submit_task(task):
            self._fail(task, f"node {node.node_id} not active in the datacenter")

    # --- Status polling ---

    def _is_polled(self, task):
        return self.polling or task.task_id in self._poll_attempts

    def _schedule_poll(self, task):
        task_id = task.task_id
        if task_id in self._poll_scheduled:
            return
        if self._poll_attempts.get(task_id, 0) >= self.max_poll_attempts:
            logger.error("%.2f: %s: No final decision for task %s after %d status queries; marking as failed",
                         self.env.now, self.name, task_id, self._poll_attempts[task_id])
            self._fail(task, "no final decision from scheduler")
            return
        self._poll_attempts.setdefault(task_id, 0)
        self._poll_scheduled.add(task_id)
        self.continuations.later(self.poll_interval, self._poll, task_id)

    def _poll(self, task_id):
        self._poll_scheduled.discard(task_id)
        if task_id not in self.pending:
            self._poll_attempts.pop(task_id, None)
            return
        self._poll_attempts[task_id] += 1
        self.stats['polls'] += 1
        self._dispatch(lambda: self.client.pod_status(task_id),
                       lambda decision: self._status_received(task_id, decision),
                       lambda error: self._status_failed(task_id, error))

    def _status_received(self, task_id, decision):
        task = self.pending.get(task_id)
        if task is None:
            return
        if decision is None:
            logger.info("%.2f: %s: Scheduler has no record of task %s, it may already be resolved",
                        self.env.now, self.name, task_id)
            self._schedule_poll(task)
            return
        self._apply_decision(task, decision)
        self._bind_scheduled()

    def _status_failed(self, task_id, error):
        task = self.pending.get(task_id)
        if task is None:
            return
        if isinstance(error, SerializationError):
            logger.error("%.2f: %s: Could not decode status of task %s (%s); marking as failed. Raw body: %r",
                         self.env.now, self.name, task_id, error, error.body)
            self._fail(task, "unreadable scheduler response")
            return
        logger.warning("%.2f: %s: Status query for task %s failed (%s); polling again",
                       self.env.now, self.name, task_id, error)
        self._schedule_poll(task)

    # --- Request / continuation ---

    def _retry_later(self, send, *args):
        self.backoff += 1
        self.continuations.later(self.retry_delay, self._retry, send, *args)

    def _retry(self, send, *args):
        self.backoff -= 1
        send(*args)
        self._check_progress()

    def _dispatch(self, request, on_success, on_failure):
        if self._shut_down:
            return
        self.outstanding += 1
        if self.executor is None:
            outcome = self._call(request)
            self.continuations.later(0, self._deliver, outcome, on_success, on_failure)
        else:
            future = self.executor.submit(request)
            self.continuations.track(self.env.process(self._await_response(future, on_success, on_failure)))

    @staticmethod
    def _call(request):
        try:
            return True, request()
        except SchedulerError as e:
            return False, e

    def _await_response(self, future, on_success, on_failure):
        try:
            while not future.done():
                if self.env.peek() > self.env.now + self.response_poll_interval:
                    # Nothing else would run before the next check, so wait on the wire instead of the clock
                    wait([future])
                    continue
                yield self.env.timeout(self.response_poll_interval)
        except simpy.Interrupt:
            future.cancel()
            return
        self._deliver(self._call(future.result), on_success, on_failure)

    def _deliver(self, outcome, on_success, on_failure):
        self.outstanding -= 1
        if self._shut_down:
            return
        ok, value = outcome
        if ok:
            on_success(value)
        else:
            on_failure(value)
        self._check_progress()

    # --- Termination ---

    def is_drained(self):
        return (not self.task_queue and not self.pending and not self.awaiting_bind
                and not self.dispatched and self.outstanding == 0 and self.backoff == 0)

    def _check_progress(self):
        if self.is_drained():
            if self.drained_at is None:
                self.drained_at = self.env.now
                logger.info("%.2f: %s: Drained: %d task(s) completed, %d failed",
                            self.env.now, self.name, len(self.completed_tasks()), len(self.failed_tasks()))
                self.continuations.cancel_all()
            return
        if not self._nodes_ready:
            return
        # Tasks the scheduler parked as Pending but nothing running will ever release
        if (self.pending and not self.dispatched and not self.awaiting_bind
                and self.outstanding == 0 and self.backoff == 0):
            stranded = [task for task in self.pending.values() if task.task_id not in self._poll_scheduled]
            if stranded:
                logger.info("%.2f: %s: %d task(s) still pending with nothing running; polling their status",
                            self.env.now, self.name, len(stranded))
                for task in stranded:
                    self._schedule_poll(task)

    def _fail(self, task, reason):
        task_id = task.task_id
        self.pending.pop(task_id, None)
        self.awaiting_bind.pop(task_id, None)
        self.dispatched.pop(task_id, None)
        self._poll_attempts.pop(task_id, None)
        if task.is_terminal:
            return
        task.fail(reason)
        self._record_terminal(task)

    def _record_terminal(self, task):
        if task.task_id not in self._received_ids:
            self._received_ids.add(task.task_id)
            self.received.append(task)

    def results(self):
        return list(self.received)

    def completed_tasks(self):
        return [t for t in self.received if t.state is TaskState.COMPLETED]

    def failed_tasks(self):
        return [t for t in self.received if t.state is TaskState.FAILED]

    # --- Teardown ---

    def shutdown(self):
        """Cancel every outstanding retry, poll and response continuation."""
        if self._shut_down:
            return
        self._shut_down = True
        self.continuations.cancel_all()
        self.outstanding = 0
        self.backoff = 0
        self._poll_scheduled.clear()
        if self._owns_executor:
            self.executor.shutdown(wait=False)
        logger.info("%.2f: %s: Shut down", self.env.now, self.name)

    def reset(self):
        """Tell the scheduler to discard all state. Safe to call more than once."""
        self.shutdown()
        try:
            self.client.reset()
        except SchedulerError as e:
            logger.warning("%s: Failed to reset the scheduler: %s", self.name, e)
            return False
        logger.info("%s: Sent reset request to the scheduler", self.name)
        return True
