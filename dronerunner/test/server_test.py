# test the coordinator server, on its own through flask's test client and
# together with the coordinator client over a real socket

import threading
import time

import pytest
from werkzeug.serving import make_server

from dronerunner.coordinator import Assignment, Coordinator
from dronerunner.server import DroneQueue, NoDroneAvailable, NoSuchDrone, create_app


@pytest.fixture
def queue():
    return DroneQueue()


@pytest.fixture
def app(queue):
    return create_app(queue)


def _wait_for_drones(queue, count):
    deadline = time.time() + 5
    while len(queue) < count:
        assert time.time() < deadline, "drone never showed up in the queue"
        time.sleep(0.01)


def _connect_in_background(app, drone_id):
    responses = []

    def _connect():
        responses.append(app.test_client().post("/connect", json={"droneID": drone_id}))

    thread = threading.Thread(target=_connect, daemon=True)
    thread.start()
    return thread, responses


def test_connect_method_not_allowed(app):
    response = app.test_client().get("/connect")

    assert response.status_code == 405
    assert response.get_data(as_text=True) == "method not allowed\n"


def test_actions_method_not_allowed(app):
    response = app.test_client().patch("/actions")

    assert response.status_code == 405
    assert response.get_data(as_text=True) == "method not allowed\n"


def test_unknown_path(app):
    response = app.test_client().get("/checkplus")

    assert response.status_code == 404
    assert response.get_data(as_text=True) == "not found\n"


def test_post_actions_without_drones(app):
    response = app.test_client().post("/actions", json={"itemID": "1", "actions": ["deploy"]})

    assert response.status_code == 500
    assert response.get_data(as_text=True) == "no available drones\n"


def test_bad_requests_are_rejected(app):
    client = app.test_client()

    assert client.post("/connect", data="not json").status_code == 500
    assert client.post("/connect", json={"droneID": "one"}).status_code == 500
    assert client.post("/actions", json={"actions": []}).status_code == 500
    assert client.get("/actions?id=x").status_code == 500


def test_connect_waits_for_actions(app, queue):
    thread, responses = _connect_in_background(app, "1")
    _wait_for_drones(queue, 1)
    assert responses == []

    posted = app.test_client().post("/actions", json={"itemID": "7", "actions": ["deploy", None]})
    thread.join(5)

    assert posted.status_code == 200
    assert posted.get_json() == {"DroneID": 1}
    redirected = responses[0]
    assert redirected.status_code == 302
    assert redirected.headers["Location"].endswith("/actions?id=1")

    actions = app.test_client().get("/actions?id=1")
    assert actions.status_code == 200
    assert actions.get_json() == {"ItemID": 7, "Actions": ["deploy"]}
    assert len(queue) == 0


def test_work_goes_to_longest_waiting_drone(app, queue):
    first, first_responses = _connect_in_background(app, "1")
    _wait_for_drones(queue, 1)
    second, second_responses = _connect_in_background(app, "2")
    _wait_for_drones(queue, 2)

    app.test_client().post("/actions", json={"itemID": "1", "actions": []})
    first.join(5)

    assert first_responses[0].status_code == 302
    assert second_responses == []
    assert [d.drone_id for d in queue.drones] == [1, 2]

    app.test_client().post("/actions", json={"itemID": "2", "actions": []})
    second.join(5)
    assert second_responses[0].headers["Location"].endswith("/actions?id=2")


def test_get_actions_for_unknown_drone(app):
    response = app.test_client().get("/actions?id=3")

    assert response.status_code == 500
    assert response.get_data(as_text=True) == "no drone found with this ID\n"


def test_unassigned_drone_times_out(queue):
    app = create_app(queue, assignment_timeout=0.05)

    response = app.test_client().post("/connect", json={"droneID": "1"})

    assert response.status_code == 504
    assert len(queue) == 0


def test_pop_drone(queue):
    for drone_id in [1, 2, 3, 4]:
        queue.add(drone_id)
    queue.assign(Assignment(9))

    drone = queue.pop(1)

    assert drone.drone_id == 1
    assert drone.assignment == Assignment(9)
    assert len(queue) == 3


def test_pop_drone_with_nothing_to_pop(queue):
    with pytest.raises(NoSuchDrone):
        queue.pop(1)
    queue.add(1)
    # waiting drones only leave the queue once they have work
    with pytest.raises(NoSuchDrone):
        queue.pop(1)
    with pytest.raises(NoDroneAvailable):
        DroneQueue().assign(Assignment(1))


def test_coordinator_client_against_server(app, queue):
    server = make_server("127.0.0.1", 0, app, threaded=True)
    serving = threading.Thread(target=server.serve_forever, daemon=True)
    serving.start()
    assignments = []
    try:
        coordinator = Coordinator("127.0.0.1", port=server.server_address[1], timeout=5)
        connecting = threading.Thread(target=lambda: assignments.append(coordinator.connect(5)), daemon=True)
        connecting.start()
        _wait_for_drones(queue, 1)

        app.test_client().post("/actions", json={"itemID": "12", "actions": ["takeoff", "land"]})
        connecting.join(5)
    finally:
        server.shutdown()

    assert assignments == [Assignment(12, ["takeoff", "land"])]
