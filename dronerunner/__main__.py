"""
Tool used to fly a drone through a timed sequence of steps.

usage:
    python -m dronerunner --vehicle <vehicle type> --conn <connection string> \
            [--config <flight config>] [--script <script import path>]

    python -m dronerunner --coordinator <host> --vehicle <vehicle type> \
            --conn <connection string> [--drone-id <id>]

    python -m dronerunner.server [--host <host>] [--port <port>]

example:
    python -m dronerunner --vehicle minidrone --conn e0:14:d0:63:3d:d0
    python -m dronerunner --vehicle none --config examples/hover.yaml \
            --script custom_sequence
"""

from argparse import ArgumentParser
import asyncio
import importlib
import inspect
import signal
import sys
from typing import List

from .client import run_client
from .config import FlightConfig, load_config
from .coordinator import Coordinator
from .device import Device, DummyDevice, MavlinkDrone, Minidrone
from .flight import HoverFlight
from .runner import Runner, StepRunner, execute

_VEHICLE_TYPES = {
        "minidrone": Minidrone,
        "mavlink": MavlinkDrone,
        "none": DummyDevice,
        }

# flags that only mean something to the client loop, and their arity
_CLIENT_FLAGS = {"--coordinator": 1, "--coordinator-port": 1, "--drone-id": 1}

def build_parser() -> ArgumentParser:
    parser = ArgumentParser(description="dronerunner - fly a drone through a timed sequence of steps")
    parser.add_argument("--vehicle", help="vehicle type [minidrone, mavlink, none]", required=True)
    parser.add_argument("--conn", help="BLE address or MAVLink connection string", required=False)
    parser.add_argument("--config", help="YAML flight config", required=False)
    parser.add_argument("--script", help="script defining the runner to use instead of the hover flight", required=False)
    parser.add_argument("--skip-land", help="don't land automatically at the end of a run if still airborne",
            const=False, default=True, action="store_const", dest="land_on_exit")
    parser.add_argument("--coordinator", help="coordinator host; run as a client of it", required=False)
    parser.add_argument("--coordinator-port", help="coordinator port", required=False, default=9000, type=int,
            dest="coordinator_port")
    parser.add_argument("--drone-id", help="id to register with the coordinator", required=False, default="1",
            dest="drone_id")
    return parser

def find_runner(module) -> Runner:
    """
    Use reflection to get the single `Runner` defined by `module`
    """
    runner_type = None
    for _, val in inspect.getmembers(module):
        if not inspect.isclass(val):
            continue
        if not issubclass(val, Runner):
            continue
        if val in [Runner, StepRunner, HoverFlight]:
            continue
        if runner_type is not None:
            raise Exception("You can only define one runner")
        runner_type = val
    if runner_type is None:
        raise Exception(f"No runner defined in {module.__name__}")
    return runner_type()

def make_device(vehicle: str, conn: str, config: FlightConfig) -> Device:
    vehicle_type = _VEHICLE_TYPES.get(vehicle, None)
    if vehicle_type is None:
        raise Exception("Please specify a valid vehicle type")
    if conn is None and vehicle_type is not DummyDevice:
        raise Exception(f"--conn is required for vehicle type {vehicle}")
    device = vehicle_type(conn)
    if config.keep_alive_interval is not None:
        device.keep_alive_interval = config.keep_alive_interval
    return device

def strip_client_args(argv: List[str]) -> List[str]:
    """
    Remove the client loop flags from `argv`, leaving what a single flight
    needs.
    """
    flight_args = []
    skip = 0
    for arg in argv:
        if skip:
            skip -= 1
            continue
        if arg in _CLIENT_FLAGS:
            skip = _CLIENT_FLAGS[arg]
            continue
        if arg.split("=", 1)[0] in _CLIENT_FLAGS:
            continue
        flight_args.append(arg)
    return flight_args

async def _fly(runner: Runner, device: Device, config: FlightConfig, land_on_exit: bool) -> int:
    main_task = asyncio.current_task()

    def _on_signal():
        # mid-sequence, go land. otherwise there's nothing to land yet
        if isinstance(runner, StepRunner) and runner.running:
            runner.abort()
        else:
            main_task.cancel()

    loop = asyncio.get_running_loop()
    for sig in [signal.SIGINT, signal.SIGTERM]:
        try:
            loop.add_signal_handler(sig, _on_signal)
        except NotImplementedError:
            # only unix event loops support signal handlers
            break

    return await execute(runner, device, connect_timeout=config.connect_timeout, land_on_exit=land_on_exit)

def main(argv: List[str]=None) -> int:
    if argv is None:
        argv = sys.argv[1:]
    parser = build_parser()
    args, unknown_args = parser.parse_known_args(argv) # we'll pass other args to the script

    config = load_config(args.config) if args.config is not None else FlightConfig()
    device = make_device(args.vehicle, args.conn, config)

    if args.coordinator is not None:
        device.close()
        coordinator = Coordinator(args.coordinator, args.coordinator_port)
        command = [sys.executable, "-m", "dronerunner"] + strip_client_args(argv)
        print(f"[dronerunner] registering with coordinator at {coordinator.url} as drone {args.drone_id}")
        return asyncio.run(run_client(coordinator, args.drone_id, command, env={"PYTHONUNBUFFERED": "1"}))

    if args.script is not None:
        runner = find_runner(importlib.import_module(args.script))
    else:
        runner = HoverFlight(config)

    # everything after this point is user script dependent. avoid adding extra logic below here

    runner.initialize_args(unknown_args)

    try:
        return asyncio.run(_fly(runner, device, config, args.land_on_exit))
    except asyncio.CancelledError:
        print("[dronerunner] interrupted")
        return 1

if __name__ == "__main__":
    sys.exit(main())
