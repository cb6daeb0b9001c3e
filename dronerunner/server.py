"""
The drone coordinator: hands work items posted by a pilot to drones waiting
for work.

    drone                        coordinator                       pilot
      │ POST /connect {droneID}       │                              │
      │──────────────────────────────►│ queued, request held         │
      │                               │◄─────────────────────────────│ POST /actions {itemID, actions}
      │◄──────────────────────────────│ 302 to /actions?id=<id>      │
      │ GET /actions?id=<id>          │                              │
      │──────────────────────────────►│ dequeued                     │
      │◄──────────────────────────────│ {ItemID, Actions}            │

usage:
    python -m dronerunner.server [--host <host>] [--port <port>]
"""

from argparse import ArgumentParser
from dataclasses import dataclass, field
import threading
from typing import List, Optional

from flask import Flask, jsonify, redirect, request, url_for

from .coordinator import Assignment, _DEFAULT_COORDINATOR_PORT

STATUS_WAITING = "Waiting"
STATUS_ASSIGNED = "Assigned"

class NoDroneAvailable(Exception):
    pass

class NoSuchDrone(Exception):
    pass

@dataclass(eq=False)
class WaitingDrone:
    """
    A drone that has connected to the coordinator, and the work it has been
    given (if any)
    """
    drone_id: int
    status: str=STATUS_WAITING
    assignment: Optional[Assignment]=None
    assigned: threading.Event=field(default_factory=threading.Event)

class DroneQueue:
    """
    Drones that have connected, in the order they connected. Work goes to the
    drone that has been waiting the longest.

    Safe to use from the threads of a threaded server.
    """
    drones: List[WaitingDrone]

    def __init__(self):
        self._lock = threading.Lock()
        self.drones = []

    def add(self, drone_id: int) -> WaitingDrone:
        drone = WaitingDrone(drone_id)
        with self._lock:
            self.drones.append(drone)
        return drone

    def remove(self, drone: WaitingDrone):
        with self._lock:
            if drone in self.drones:
                self.drones.remove(drone)

    def assign(self, assignment: Assignment) -> WaitingDrone:
        """
        Give `assignment` to the first waiting drone and wake it up
        """
        with self._lock:
            for drone in self.drones:
                if drone.status == STATUS_WAITING:
                    break
            else:
                raise NoDroneAvailable("no available drones")
            drone.status = STATUS_ASSIGNED
            drone.assignment = assignment
        drone.assigned.set()
        return drone

    def pop(self, drone_id: int) -> WaitingDrone:
        """
        Take the assigned drone with the id `drone_id` off the queue
        """
        with self._lock:
            for drone in self.drones:
                if drone.drone_id == drone_id and drone.status == STATUS_ASSIGNED:
                    self.drones.remove(drone)
                    return drone
        raise NoSuchDrone("no drone for this ID")

    def __len__(self) -> int:
        with self._lock:
            return len(self.drones)

def _error(message: str, status: int):
    return message + "\n", status, {"Content-Type": "text/plain; charset=utf-8"}

def create_app(queue: DroneQueue=None, assignment_timeout: float=None) -> Flask:
    """
    Build the coordinator's Flask app around `queue`.

    A drone's `/connect` request is held until the drone is assigned work.
    With `assignment_timeout` set, a drone that waits longer than that is
    dropped from the queue and told so with a 504.
    """
    app = Flask(__name__)
    app.config["DRONE_QUEUE"] = queue if queue is not None else DroneQueue()

    def _queue() -> DroneQueue:
        return app.config["DRONE_QUEUE"]

    @app.errorhandler(404)
    def not_found(_):
        return _error("not found", 404)

    @app.errorhandler(405)
    def method_not_allowed(_):
        return _error("method not allowed", 405)

    @app.route("/connect", methods=["POST"])
    def connect():
        body = request.get_json(force=True, silent=True)
        try:
            drone_id = int(body["droneID"])
        except (TypeError, KeyError, ValueError) as e:
            return _error(f"invalid drone request: {e!r}", 500)

        drone = _queue().add(drone_id)
        print(f"[dronerunner] drone {drone_id} waiting for work")
        if not drone.assigned.wait(assignment_timeout):
            _queue().remove(drone)
            return _error("no work was assigned", 504)
        return redirect(url_for("get_actions", id=drone_id), code=302)

    @app.route("/actions", methods=["GET"])
    def get_actions():
        try:
            drone_id = int(request.args.get("id", ""))
        except ValueError as e:
            return _error(str(e), 500)
        try:
            drone = _queue().pop(drone_id)
        except NoSuchDrone:
            return _error("no drone found with this ID", 500)
        return jsonify({"ItemID": drone.assignment.item_id, "Actions": drone.assignment.actions})

    @app.route("/actions", methods=["POST"])
    def post_actions():
        body = request.get_json(force=True, silent=True)
        try:
            item_id = int(body["itemID"])
            actions = [a for a in (body.get("actions") or []) if a is not None]
        except (TypeError, KeyError, ValueError, AttributeError) as e:
            return _error(f"invalid actions request: {e!r}", 500)
        try:
            drone = _queue().assign(Assignment(item_id, actions))
        except NoDroneAvailable as e:
            return _error(str(e), 500)
        print(f"[dronerunner] item {item_id} assigned to drone {drone.drone_id}")
        return jsonify({"DroneID": drone.drone_id})

    return app

def main(argv: List[str]=None):
    parser = ArgumentParser(description="dronerunner coordinator - hand out work to drones")
    parser.add_argument("--host", help="address to listen on", default="0.0.0.0")
    parser.add_argument("--port", help="port to listen on", default=_DEFAULT_COORDINATOR_PORT, type=int)
    parser.add_argument("--assignment-timeout", help="s a drone may wait for work before being dropped",
            default=None, type=float, dest="assignment_timeout")
    args = parser.parse_args(argv)

    app = create_app(assignment_timeout=args.assignment_timeout)
    # every waiting drone holds a request open, so each one needs its own thread
    app.run(host=args.host, port=args.port, threaded=True, debug=False, use_reloader=False)

if __name__ == "__main__":
    main()
