import pytest
import requests
from conftest import FakeResponse, ScriptedSession

from schedbridge.client import SchedulerClient
from schedbridge.errors import SerializationError, TransportError
from schedbridge.models import DecisionStatus


def make_client(*script):
    session = ScriptedSession(script)
    return SchedulerClient("http://scheduler.test/", session=session), session


def test_schedule_pods_posts_batch_and_parses_decisions():
    client, session = make_client(FakeResponse(200, [{"id": 1, "status": "Scheduled", "vmId": 0, "nodeName": "vm-0"},
                                                     {"id": 2, "status": "Unschedulable", "vmId": -1}]))
    decisions = client.schedule_pods([{"id": 1}, {"id": 2}])
    assert session.calls == [("POST", "/schedule-pods", [{"id": 1}, {"id": 2}])]
    assert [d.status for d in decisions] == [DecisionStatus.SCHEDULED, DecisionStatus.UNSCHEDULABLE]


def test_connection_error_becomes_transport_error():
    client, _ = make_client(requests.ConnectionError("refused"))
    with pytest.raises(TransportError):
        client.sync_nodes([])


def test_non_2xx_is_transport_error():
    client, _ = make_client(FakeResponse(503, text="busy"))
    with pytest.raises(TransportError) as excinfo:
        client.schedule_pods([])
    assert excinfo.value.status_code == 503
    assert excinfo.value.body == "busy"


def test_invalid_json_keeps_raw_body():
    client, _ = make_client(FakeResponse(200, text="<html>oops</html>"))
    with pytest.raises(SerializationError) as excinfo:
        client.update_state([{"id": 1}])
    assert excinfo.value.body == "<html>oops</html>"


def test_wrong_shape_keeps_raw_body():
    client, _ = make_client(FakeResponse(200, text='{"unexpected": true}'))
    with pytest.raises(SerializationError) as excinfo:
        client.schedule_pods([])
    assert excinfo.value.body == '{"unexpected": true}'


def test_empty_response_means_no_decisions():
    client, _ = make_client(FakeResponse(200, text=""))
    assert client.submit_pods([{"id": 1}]) == []


def test_pod_status_404_is_tolerated():
    client, session = make_client(FakeResponse(404, text="not found"))
    assert client.pod_status(12) is None
    assert session.calls[0][:2] == ("GET", "/pods/12/status")


def test_pod_status_decision():
    client, _ = make_client(FakeResponse(200, {"status": "Scheduled", "vmId": 1}))
    decision = client.pod_status(5)
    assert decision.task_id == 5
    assert decision.node_id == 1


def test_reset_sends_delete():
    client, session = make_client(FakeResponse(200))
    client.reset()
    assert session.calls == [("DELETE", "/reset", None)]
