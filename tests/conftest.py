import json
from urllib.parse import urlparse

import pytest
import requests
import simpy

from schedbridge.client import SchedulerClient
from schedbridge.datacenter import PowerDatacenter
from schedbridge.models import Node, Task
from schedbridge.power import PowerHost, PowerModelLinear


class FakeResponse:
    def __init__(self, status_code=200, body=None, text=None):
        self.status_code = status_code
        if text is None:
            text = json.dumps(body) if body is not None else ""
        self.text = text

    def json(self):
        return json.loads(self.text)


class ScriptedSession:
    """Replays a fixed list of responses (or exceptions) and records every request.

    Once the script runs out every request gets an empty 200.
    """

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    def request(self, method, url, json=None, headers=None, timeout=None):
        self.calls.append((method, urlparse(url).path, json))
        item = self.script.pop(0) if self.script else FakeResponse(200, text="")
        if isinstance(item, Exception):
            raise item
        return item


class FakeControlPlane:
    """In-memory first-fit scheduler speaking the control plane's HTTP contract.

    Capacity is counted in PEs per node. Pods that do not fit yet stay Pending and
    are released by /pods/update-state; pods larger than every node are Unschedulable.
    `fail_next` makes the next N requests to a path raise a connection error and
    `overrides` forces the decision returned for a pod id.
    """

    def __init__(self):
        self.nodes = {} # node_id -> node json
        self.used = {} # node_id -> pes in use
        self.pods = {} # pod_id -> pod json
        self.placement = {} # pod_id -> node_id
        self.queue = [] # pending pod ids, FIFO
        self.calls = []
        self.fail_next = {}
        self.overrides = {}
        self.syncs = []
        self.responses = [] # (path, request body, response body)

    def request(self, method, url, json=None, headers=None, timeout=None):
        path = urlparse(url).path
        self.calls.append((method, path, json))
        if self.fail_next.get(path, 0) > 0:
            self.fail_next[path] -= 1
            raise requests.ConnectionError(f"connection refused: {path}")
        response = self._handle(method, path, json)
        if path != "/reset":
            body = response.json() if response.status_code == 200 and response.text else None
            self.responses.append((path, json, body))
        return response

    def _handle(self, method, path, json):
        if method == "POST" and path == "/nodes":
            return self._sync(json)
        if method == "POST" and path == "/schedule-pods":
            return FakeResponse(200, [self._submit(pod) for pod in json])
        if method == "POST" and path == "/pods":
            for pod in json:
                self.pods[pod["id"]] = pod
                self.queue.append(pod["id"])
            return FakeResponse(200, [])
        if method == "GET" and path.startswith("/pods/") and path.endswith("/status"):
            return self._status(int(path.split("/")[2]))
        if method == "POST" and path == "/pods/update-state":
            return FakeResponse(200, self._release(json))
        if method == "DELETE" and path == "/reset":
            self.__init__()
            return FakeResponse(200)
        return FakeResponse(404, text="not found")

    # --- Scheduler internals ---

    def _sync(self, nodes):
        self.syncs.append(sorted(n["id"] for n in nodes))
        self.nodes = {n["id"]: n for n in nodes}
        for node_id in list(self.used):
            if node_id not in self.nodes:
                del self.used[node_id]
        return FakeResponse(200)

    def _fits_anywhere(self, pod):
        return any(pod["pes"] <= n["pes"] for n in self.nodes.values())

    def _place(self, pod):
        for node_id in sorted(self.nodes):
            if self.nodes[node_id]["pes"] - self.used.get(node_id, 0) >= pod["pes"]:
                self.used[node_id] = self.used.get(node_id, 0) + pod["pes"]
                self.placement[pod["id"]] = node_id
                return node_id
        return None

    def _decision(self, pod_id):
        if pod_id in self.overrides:
            return dict(self.overrides[pod_id], id=pod_id)
        pod = self.pods[pod_id]
        if pod_id in self.placement:
            node_id = self.placement[pod_id]
            return {"id": pod_id, "status": "Scheduled", "vmId": node_id, "nodeName": self.nodes[node_id]["name"]}
        if not self._fits_anywhere(pod):
            return {"id": pod_id, "status": "Unschedulable", "vmId": -1}
        return {"id": pod_id, "status": "Pending", "vmId": -1}

    def _submit(self, pod):
        self.pods[pod["id"]] = pod
        if pod["id"] not in self.overrides and self._place(pod) is None:
            self.queue.append(pod["id"])
        return self._decision(pod["id"])

    def _status(self, pod_id):
        if pod_id not in self.pods:
            return FakeResponse(404, text="pod not found")
        if pod_id in self.queue and self._place(self.pods[pod_id]) is not None:
            self.queue.remove(pod_id)
        body = self._decision(pod_id)
        del body["id"]
        return FakeResponse(200, body)

    def _release(self, pods):
        for pod in pods:
            node_id = self.placement.pop(pod["id"], None)
            self.pods.pop(pod["id"], None)
            if node_id is not None:
                self.used[node_id] -= pod["pes"]
        released = []
        for pod_id in list(self.queue):
            if self._place(self.pods[pod_id]) is not None:
                self.queue.remove(pod_id)
                released.append(self._decision(pod_id))
        return released

    def paths(self, method=None):
        return [path for m, path, _ in self.calls if method is None or m == method]


# --- Fixtures ---

@pytest.fixture
def env():
    return simpy.Environment()


@pytest.fixture
def control_plane():
    return FakeControlPlane()


@pytest.fixture
def client(control_plane):
    return SchedulerClient("http://scheduler.test", session=control_plane)


def make_host(host_id, pes=4, mips=1000, ram=8192, bw=10000, storage=100000, max_power=250, static=0.7):
    return PowerHost(host_id, mips, pes, ram, bw, storage, PowerModelLinear(max_power, static))


def make_node(node_id, pes=1, mips=1000, ram=512, bw=1000, **kwargs):
    return Node(node_id, mips, pes=pes, ram=ram, bw=bw, **kwargs)


def make_task(task_id, length=10000, pes=1, **kwargs):
    return Task(task_id, length, pes=pes, **kwargs)


@pytest.fixture
def datacenter(env):
    return PowerDatacenter(env, [make_host(0), make_host(1)], destroy_delay=1.0, scheduling_interval=5.0)
