"""
Client for the drone coordinator -- the service that hands out work to drones.

A drone registers itself by POSTing to `/connect`. The coordinator holds on to
that request until a pilot posts actions, then redirects the drone to
`/actions`, which answers with the work item the drone has been assigned.
"""

from dataclasses import dataclass, field
import json
from typing import List, Optional

import requests

_DEFAULT_COORDINATOR_PORT = 9000

@dataclass
class Assignment:
    """
    Work item handed to a drone by the coordinator
    """
    item_id: int
    actions: List[str]=field(default_factory=list)

class Coordinator:
    _host: str
    _port: int
    _timeout: Optional[float]

    def __init__(self, host: str="localhost", port: int=_DEFAULT_COORDINATOR_PORT, timeout: float=None):
        self._host = host
        self._port = port
        self._timeout = timeout

    @property
    def url(self) -> str:
        return f"http://{self._host}:{self._port}"

    def connect(self, drone_id) -> Assignment:
        """
        Register with the coordinator as drone `drone_id`, and block until it
        assigns us some work. The coordinator only answers once there is work,
        so this can take a long time -- `timeout` (given to the constructor)
        bounds it, and the default is to wait for as long as it takes.

        Raises if the coordinator can't be reached or doesn't answer with an
        assignment.
        """
        response = requests.post(f"{self.url}/connect", json={"droneID": str(drone_id)}, timeout=self._timeout)
        if response.status_code != 200:
            raise Exception(f"error when connecting to coordinator (status {response.status_code})")
        return _parse_assignment(response.content.decode())

def _parse_assignment(content: str) -> Assignment:
    try:
        data = json.loads(content)
        item_id = int(data["ItemID"])
        actions = [a for a in (data.get("Actions") or []) if a is not None]
    except (ValueError, KeyError, TypeError, AttributeError):
        raise Exception(f"malformed content in response from coordinator: {content}")
    return Assignment(item_id, actions)
