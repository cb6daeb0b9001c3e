"""
The hover flight: flat trim, start pinging, take off, hover for a bit, land,
and exit.

    prep ──5s──► take_off ──5s──► land ──5s──► exit
                    │               ▲
                    └───on failure──┘
"""
import functools
from typing import List

from .config import FlightConfig
from .device import Device
from .runner import Step, StepRunner, at_init

class HoverFlight(StepRunner):
    """
    `StepRunner` that takes the device up, hovers for `config.hover_time`
    seconds, and brings it back down. Landing is the failsafe step, so a
    failed take off still ends with an attempt to land.
    """
    config: FlightConfig

    def __init__(self, config: FlightConfig=None, **kwargs):
        self.config = config if config is not None else FlightConfig()
        kwargs.setdefault("action_timeout", self.config.action_timeout)
        super().__init__(**kwargs)

    @at_init
    async def prepare(self, device: Device):
        await device.calibrate()
        await device.start_keep_alive()
        await device.calibrate()
        print("Prep for take off")

    async def take_off(self, device: Device):
        await device.take_off()
        if self.config.recalibrate_after_takeoff:
            await device.calibrate()

    async def land(self, device: Device):
        print("Landing commenced")
        await device.land()

    def finish(self):
        self.clear()
        print("Exiting process")
        self.stop()

    def sequence(self, device: Device) -> List[Step]:
        return [
            Step(self.config.takeoff_delay, functools.partial(self.take_off, device), "take_off"),
            Step(self.config.hover_time, functools.partial(self.land, device), "land", failsafe=True),
            Step(self.config.exit_delay, self.finish, "exit"),
        ]
