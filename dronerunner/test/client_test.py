# test the client loop: one child process per assignment from the coordinator

import asyncio
import sys

from dronerunner.client import run_client
from dronerunner.coordinator import Assignment
from dronerunner.external import ExternalProcess


class _FakeCoordinator:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.connects = []

    def connect(self, drone_id):
        self.connects.append(drone_id)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def _exits_with(code):
    return [sys.executable, "-c", f"import sys; sys.exit({code})"]


def test_one_flight_per_assignment(capsys):
    coordinator = _FakeCoordinator([Assignment(1, ["takeoff"]), Assignment(2)])

    code = asyncio.run(run_client(coordinator, "5", _exits_with(3), max_flights=2))

    assert code == 0
    assert coordinator.connects == ["5", "5"]
    out = capsys.readouterr().out
    assert "running flight for item 1" in out
    assert "assigned actions: takeoff" in out
    assert "running flight for item 2" in out
    assert out.count("flight exited with code 3") == 2


def test_coordinator_error_ends_the_loop(capsys):
    coordinator = _FakeCoordinator([Assignment(1), Exception("error when connecting to coordinator")])

    code = asyncio.run(run_client(coordinator, "1", _exits_with(0)))

    assert code == 1
    assert len(coordinator.connects) == 2
    out = capsys.readouterr().out
    assert "flight exited with code 0" in out
    assert "error when connecting to coordinator" in out


def test_flight_that_cant_start_ends_the_loop(tmp_path, capsys):
    coordinator = _FakeCoordinator([Assignment(1), Assignment(2)])

    code = asyncio.run(run_client(coordinator, "1", [str(tmp_path / "no-such-flight")]))

    assert code == 1
    assert coordinator.connects == ["1"]
    assert "unable to start flight" in capsys.readouterr().out


def test_external_process_passes_environment():
    command = [sys.executable, "-c", "import os, sys; sys.exit(int(os.environ['FLIGHT_CODE']))"]
    flight = ExternalProcess(command[0], command[1:], env={"FLIGHT_CODE": "4"})

    async def _go():
        await flight.start()
        assert flight.process is not None
        return await flight.wait_until_terminated()

    assert asyncio.run(_go()) == 4
    assert not flight.running


def test_external_process_terminate():
    command = [sys.executable, "-c", "import time; time.sleep(30)"]
    flight = ExternalProcess(command[0], command[1:])

    async def _go():
        await flight.start()
        assert flight.running
        flight.terminate()
        return await asyncio.wait_for(flight.wait_until_terminated(), 10)

    assert asyncio.run(_go()) != 0
