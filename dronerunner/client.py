"""
The drone client loop: register with the coordinator, wait to be handed work,
fly it in a child process, and start over.

Each flight runs as its own process. A flight that crashes, or has to be
killed, only ends that flight.
"""

from typing import Dict, List

from .coordinator import Coordinator
from .external import ExternalProcess

async def run_client(coordinator: Coordinator,
        drone_id,
        command: List[str],
        max_flights: int=None,
        env: Dict[str, str]=None) -> int:
    """
    Loop forever (or for `max_flights` flights): wait for an assignment from
    `coordinator`, then run `command` and wait for it to exit.

    Returns 1 as soon as the coordinator can't be reached or the flight can't
    be started, and 0 once `max_flights` flights have been flown.
    """
    flights = 0
    while max_flights is None or flights < max_flights:
        try:
            # blocks until the coordinator has work for us
            assignment = coordinator.connect(drone_id)
        except Exception as e:
            print(f"[dronerunner] {e}")
            return 1
        print(f"[dronerunner] running flight for item {assignment.item_id}")
        if len(assignment.actions) != 0:
            print(f"[dronerunner] assigned actions: {', '.join(assignment.actions)}")

        flight = ExternalProcess(command[0], command[1:], env=env)
        try:
            await flight.start()
        except OSError as e:
            print(f"[dronerunner] unable to start flight: {e}")
            return 1
        try:
            code = await flight.wait_until_terminated()
        finally:
            flight.terminate()
        print(f"[dronerunner] flight exited with code {code}")
        flights += 1
    return 0
