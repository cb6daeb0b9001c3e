"""
Example of a custom timed sequence: take off, hop up and down a few times by
taking off and landing again, then land for good.

Run from the examples directory:

    python -m dronerunner --vehicle none --script custom_sequence --hops 2
"""

from argparse import ArgumentParser

from dronerunner.device import Device
from dronerunner.runner import StepRunner, at_init, step

class HopSequence(StepRunner):
    hops: int = 1

    def initialize_args(self, extra_args):
        parser = ArgumentParser()
        parser.add_argument("--hops", type=int, default=1)
        self.hops = parser.parse_args(args=extra_args).hops

    @at_init
    async def prepare(self, device: Device):
        await device.calibrate()
        await device.start_keep_alive()
        print(f"Prep for {self.hops} hop(s)")

    @step(delay=3)
    async def hop(self, device: Device):
        for i in range(self.hops):
            await device.take_off()
            print(f"hop {i + 1} up")
            await device.land()
            print(f"hop {i + 1} down")

    @step(delay=2)
    async def take_off(self, device: Device):
        await device.take_off()

    @step(delay=5, failsafe=True)
    async def land(self, device: Device):
        print("Landing commenced")
        await device.land()

    @step(delay=2, name="exit")
    def finish(self, device: Device):
        print("Exiting process")
        self.stop()
