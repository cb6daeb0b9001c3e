"""
Devices that can be driven by a dronerunner `Runner`.

Every device wraps some third-party driver that does the real work (BLE
transport, MAVLink encoding, ...). The driver is expected to be blocking, so
`Device` runs each driver call on a daemon thread, one call at a time. The
event loop keeps running while the driver works, and a driver call that never
returns doesn't keep the process alive.
"""
import asyncio
import threading
import time
from typing import Callable

from pymavlink import mavutil

# time to wait when polling for driver state changes
_POLLING_DELAY = 0.01 # s

_DEFAULT_KEEP_ALIVE_INTERVAL = 0.1 # s

class DeviceError(Exception):
    """
    Raised when a device can't do what it was asked to do
    """

class ConnectTimeout(DeviceError):
    """
    Raised when a device doesn't become ready within the allowed time
    """

class Device:
    """
    Overarching "generic device" type. Implements the lifecycle shared by all
    devices (connecting, keep-alive, tracking whether we're in the air), and
    leaves the actual driver calls to the `_connect`, `_calibrate`, `_ping`,
    `_take_off`, `_land` and `_disconnect` hooks of subclasses.
    """
    _connected: bool=False
    _airborne: bool=False
    _closed: bool=False

    # seconds between keep-alive pings. some devices drop out of their
    # control-accepting state if they don't hear from us often enough
    keep_alive_interval: float=_DEFAULT_KEEP_ALIVE_INTERVAL

    def __init__(self):
        self._driver_lock = threading.Lock()
        self._keep_alive = None

    # nouns
    @property
    def connected(self) -> bool:
        """
        True once `connect` has completed, until the device is closed
        """
        return self._connected

    @property
    def airborne(self) -> bool:
        """
        True if the device has been told to take off and hasn't landed since
        """
        return self._airborne

    @property
    def keeping_alive(self) -> bool:
        return self._keep_alive is not None and not self._keep_alive.done()

    # driver hooks
    def _connect(self):
        raise DeviceError("Generic devices can't connect!")

    def _calibrate(self):
        raise DeviceError("Generic devices can't be calibrated!")

    def _ping(self):
        pass

    def _take_off(self):
        raise DeviceError("Generic devices can't take off!")

    def _land(self):
        raise DeviceError("Generic devices can't land!")

    def _disconnect(self):
        pass

    async def _call(self, func: Callable, *args):
        loop = asyncio.get_running_loop()
        done = loop.create_future()

        def _resolve(result, error):
            if done.cancelled():
                return
            if error is not None:
                done.set_exception(error)
            else:
                done.set_result(result)

        def _worker():
            result, error = None, None
            with self._driver_lock:
                try:
                    result = func(*args)
                except Exception as e:
                    error = e
            try:
                loop.call_soon_threadsafe(_resolve, result, error)
            except RuntimeError:
                # loop already closed, nobody is waiting on this call anymore
                pass

        threading.Thread(target=_worker, daemon=True).start()
        return await done

    def _require_connected(self):
        if not self._connected:
            raise DeviceError("device isn't connected")

    # verbs
    async def connect(self):
        """
        Connect to the device, and block until it is ready to accept commands.

        This can take forever if the device never shows up -- use
        `asyncio.wait_for` (or `runner.execute`'s `connect_timeout`) to bound
        it.
        """
        if self._closed:
            raise DeviceError("device has already been closed")
        await self._call(self._connect)
        self._connected = True

    async def calibrate(self):
        """
        Flat trim: recalibrate the device's idea of "level". Only meaningful
        while it rests on a flat surface.
        """
        self._require_connected()
        await self._call(self._calibrate)

    async def start_keep_alive(self):
        """
        Start pinging the device in the background every
        `keep_alive_interval` seconds. The pings stop when the device is
        closed, or after the first ping that fails.

        Calling this when pings are already running does nothing.
        """
        self._require_connected()
        if self.keeping_alive:
            return

        async def _ping_loop():
            while self._connected:
                try:
                    await self._call(self._ping)
                except Exception as e:
                    print(f"[dronerunner] keep-alive ping failed, no longer pinging: {e!r}")
                    return
                await asyncio.sleep(self.keep_alive_interval)
        self._keep_alive = asyncio.ensure_future(_ping_loop())

    async def take_off(self):
        self._require_connected()
        # a take off that errors out may still have left the ground
        self._airborne = True
        await self._call(self._take_off)

    async def land(self):
        self._require_connected()
        await self._call(self._land)
        self._airborne = False

    def close(self):
        """
        Stop pinging and disconnect from the device. Safe to call more than
        once.
        """
        if self._closed:
            return
        self._closed = True
        if self._keep_alive is not None:
            self._keep_alive.cancel()
        if self._connected:
            self._connected = False
            self._disconnect()

class DummyDevice(Device):
    """
    device for dry runs. accepts everything and flies nowhere
    """

    def __init__(self, connection_string: str=None):
        super().__init__()
        self._connection_string = connection_string

    def _connect(self):
        print("[dronerunner] (dry run) connected")

    def _calibrate(self):
        print("[dronerunner] (dry run) flat trim")

    def _take_off(self):
        print("[dronerunner] (dry run) take off")

    def _land(self):
        print("[dronerunner] (dry run) land")

    def _disconnect(self):
        print("[dronerunner] (dry run) disconnected")

class Minidrone(Device):
    """
    Parrot minidrone (Rolling Spider, Mambo, ...) controlled over BLE through
    `pyparrot`. `address` is the drone's BLE MAC address.

    Take off and land are fire-and-forget: the drone is told what to do and
    nobody waits to see it happen.
    """
    keep_alive_interval: float=0.05

    def __init__(self, address: str, retries: int=3):
        super().__init__()
        self._address = address
        self._retries = retries
        self._drone = None

    def _connect(self):
        from pyparrot.Minidrone import Mambo

        self._drone = Mambo(self._address, use_wifi=False)
        if not self._drone.connect(self._retries):
            raise DeviceError(f"unable to connect to minidrone at {self._address}")

    def _calibrate(self):
        self._drone.flat_trim()

    def _ping(self):
        # a zero-movement piloting command, which is what the firmware expects
        # to keep hearing
        self._drone.fly_direct(roll=0, pitch=0, yaw=0, vertical_movement=0,
                duration=self.keep_alive_interval)

    def _take_off(self):
        self._drone.takeoff()

    def _land(self):
        self._drone.land()

    def _disconnect(self):
        self._drone.disconnect()

class MavlinkDrone(Device):
    """
    Drone running a MAVLink autopilot (ArduPilot, PX4), controlled through
    `dronekit`. `connection_string` is anything `dronekit.connect` accepts
    (ex: `/dev/ttyACM0`, `udp:127.0.0.1:14550`).

    Taking off puts the drone in GUIDED mode and arms it first, so a safety
    pilot may need to have the vehicle armable.
    """
    keep_alive_interval: float=1

    def __init__(self, connection_string: str, takeoff_alt: float=1.5, arm_timeout: float=30):
        super().__init__()
        self._connection_string = connection_string
        self._takeoff_alt = takeoff_alt
        self._arm_timeout = arm_timeout
        self._vehicle = None

    def _connect(self):
        import dronekit

        self._vehicle = dronekit.connect(self._connection_string, wait_ready=True)
        self._vehicle_mode = dronekit.VehicleMode

    def _calibrate(self):
        msg = self._vehicle.message_factory.command_long_encode(
            0, 0,                                               # target system, component
            mavutil.mavlink.MAV_CMD_PREFLIGHT_CALIBRATION,      # command
            0,                                                  # confirmation
            0,                                                  # gyro
            0,                                                  # magnetometer
            0,                                                  # ground pressure
            0,                                                  # radio
            2,                                                  # board level (flat trim)
            0,                                                  # airspeed
            0                                                   # esc/baro
            )
        self._vehicle.send_mavlink(msg)

    def _ping(self):
        msg = self._vehicle.message_factory.heartbeat_encode(
            mavutil.mavlink.MAV_TYPE_GCS,
            mavutil.mavlink.MAV_AUTOPILOT_INVALID,
            0, 0, 0                                             # base mode, custom mode, status
            )
        self._vehicle.send_mavlink(msg)

    def _take_off(self):
        self._vehicle.mode = self._vehicle_mode("GUIDED")
        self._vehicle.armed = True
        deadline = time.time() + self._arm_timeout
        while not self._vehicle.armed:
            if time.time() > deadline:
                raise DeviceError("vehicle did not arm")
            time.sleep(_POLLING_DELAY)
        self._vehicle.simple_takeoff(self._takeoff_alt)

    def _land(self):
        self._vehicle.mode = self._vehicle_mode("LAND")

    def _disconnect(self):
        self._vehicle.close()
