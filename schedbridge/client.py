"""
HTTP client for the external scheduler (control plane).
"""

import logging

import requests

from . import config
from .errors import SerializationError, TransportError
from .wire import parse_decision, parse_decisions

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}


class SchedulerClient:
    """Thin wrapper over a requests session speaking the scheduler's JSON contract.

    Every method either returns decoded data or raises TransportError /
    SerializationError; callers decide what a failure means.
    """

    def __init__(self, base_url=None, session=None, timeout=None):
        self.base_url = (base_url or config.CONTROL_PLANE_URL).rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.timeout = timeout if timeout is not None else config.REQUEST_TIMEOUT

    def _request(self, method, path, payload=None, allow=()):
        url = self.base_url + path
        try:
            response = self.session.request(method, url, json=payload, headers=JSON_HEADERS, timeout=self.timeout)
        except requests.RequestException as e:
            raise TransportError(f"{method} {url} failed: {e}") from e

        if response.status_code in allow:
            return response
        if not 200 <= response.status_code < 300:
            raise TransportError(f"{method} {url} returned HTTP {response.status_code}",
                                 status_code=response.status_code, body=response.text)
        return response

    @staticmethod
    def _decode(response):
        if not response.text or not response.text.strip():
            return None
        try:
            return response.json()
        except ValueError as e:
            raise SerializationError(f"Response is not valid JSON: {e}", body=response.text) from e

    def _decisions(self, response):
        body = self._decode(response)
        try:
            return parse_decisions(body)
        except SerializationError as e:
            e.body = response.text
            raise

    # --- Endpoints ---

    def sync_nodes(self, nodes_payload):
        """Replace the scheduler's node inventory."""
        self._request("POST", config.NODES_PATH, nodes_payload)

    def schedule_pods(self, pods_payload):
        """Batch placement: one request, one decision per pod the scheduler resolved."""
        response = self._request("POST", config.BATCH_PODS_PATH, pods_payload)
        return self._decisions(response)

    def submit_pods(self, pods_payload):
        """Queue pods for asynchronous placement (polling variant). May return early decisions."""
        response = self._request("POST", config.PODS_PATH, pods_payload)
        return self._decisions(response)

    def pod_status(self, task_id):
        """Current decision for one pod, or None if the scheduler no longer knows it."""
        path = config.POD_STATUS_PATH.format(task_id=task_id)
        response = self._request("GET", path, allow=(404,))
        if response.status_code == 404:
            return None
        body = self._decode(response)
        try:
            return parse_decision(body, task_id=task_id)
        except SerializationError as e:
            e.body = response.text
            raise

    def update_state(self, pods_payload):
        """Release a finished pod's capacity and receive the pods that capacity unblocked."""
        response = self._request("POST", config.UPDATE_STATE_PATH, pods_payload)
        return self._decisions(response)

    def reset(self):
        self._request("DELETE", config.RESET_PATH)
