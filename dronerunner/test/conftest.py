import asyncio

import pytest

from dronerunner.device import Device, DeviceError


class VirtualClock:
    """
    stand-in for asyncio.sleep: time only moves when someone sleeps
    """

    def __init__(self):
        self.now = 0.0

    async def sleep(self, delay: float):
        self.now += delay
        await asyncio.sleep(0)


class RecordingDevice(Device):
    """
    device that writes down every driver call (and when it happened on the
    virtual clock), and fails the calls named in `failing`
    """

    def __init__(self, clock: VirtualClock = None):
        super().__init__()
        self.clock = clock
        self.calls = []
        self.failing = set()
        self.pings = 0

    def _record(self, name: str):
        self.calls.append((self.clock.now if self.clock else None, name))
        if name in self.failing:
            raise DeviceError(f"{name} failed")

    def _connect(self):
        self._record("connect")

    def _calibrate(self):
        self._record("calibrate")

    def _ping(self):
        self.pings += 1
        if "ping" in self.failing:
            raise DeviceError("ping failed")

    def _take_off(self):
        self._record("take_off")

    def _land(self):
        self._record("land")

    def _disconnect(self):
        self._record("disconnect")

    @property
    def names(self):
        return [name for _, name in self.calls]


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def device(clock):
    d = RecordingDevice(clock)
    d.keep_alive_interval = 0.01
    yield d
    d.close()
