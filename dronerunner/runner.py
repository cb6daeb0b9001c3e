"""
Collection of execution frameworks that can be extended to drive a `Device`
with dronerunner. The most basic framework is `Runner` -- any custom
frameworks *must* extend it to be executable.

`StepRunner` is the one most scripts want: it executes an ordered list of
`Step`s, waiting each step's delay before running its action.
"""

import asyncio
from dataclasses import dataclass
import functools
import inspect
import itertools
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from .device import ConnectTimeout, Device

# max time given to the automatic landing done by `execute` on the way out
_EXIT_LAND_TIMEOUT = 30 # s

class Runner:
    """
    Base execution framework. `python -m dronerunner` only knows about the
    methods below, so a custom framework needs nothing more than a subclass of
    this.
    """
    async def run(self, _: Device):
        """
        Fly the device. Called once, with a device that is already connected,
        and the run is over when this returns. `StepRunner` implements it in
        terms of steps, so subclasses of that leave it alone.
        """
        pass

    def initialize_args(self, _: List[str]):
        """
        Receives the command line arguments `python -m dronerunner` didn't
        recognize, before the device is connected. Runners that take their own
        options parse them here.
        """
        pass

    def cleanup(self):
        """
        Called once the run is over, whether it went well or not.
        """
        pass

    @property
    def succeeded(self) -> bool:
        """
        Whether the last run went as planned. Runners that can tell should
        override this; it decides the exit code of `python -m dronerunner`.
        """
        return True

Action = Callable[[], Union[Awaitable[Any], Any]]

@dataclass(frozen=True)
class Step:
    """
    One unit of a timed sequence: wait `delay` seconds, then call `action`.

    `action` takes no arguments and can either be a plain function or a
    coroutine function. Either way, the step is only done once the action has
    returned (or raised).

    A `failsafe` step is where a `StepRunner` goes when anything before it
    fails, or when the run is aborted. Landing is the typical failsafe step.
    """
    delay: float
    action: Action
    name: str=""
    failsafe: bool=False

    def __post_init__(self):
        if self.delay < 0:
            raise ValueError(f"step delay can't be negative (got {self.delay})")
        if not self.name:
            object.__setattr__(self, "name", getattr(self.action, "__name__", "step"))

    async def invoke(self):
        result = self.action()
        if inspect.isawaitable(result):
            await result

# declaration order of @step and @at_init functions
_declaration_order = itertools.count()

def step(delay: float, name: str=None, failsafe: bool=False):
    """
    Decorator used to declare a step of a `StepRunner`. The step will wait
    `delay` seconds after the previous step is done, then call the decorated
    function with the `Device`. Steps run in the order they're declared in.

    The function decorated by this is expected to be `async`
    """
    if delay < 0:
        raise ValueError(f"step delay can't be negative (got {delay})")
    def decorator(func):
        func._is_step = True
        func._step_delay = delay
        func._step_name = name or func.__name__
        func._step_failsafe = failsafe
        func._declared = next(_declaration_order)
        return func
    return decorator

def at_init(func):
    """
    Designate a function to be run once the device is connected and before
    the first step's delay starts. If there are multiple functions marked with
    `at_init`, they are run one after the other, in declaration order.

    They are bounded by `action_timeout` and interrupted by `abort` the same
    way steps are. If one of them fails, none of the steps run.

    The function decorated by this is expected to be `async` and to accept a
    `Device`
    """
    func._run_at_init = True
    func._declared = next(_declaration_order)
    return func

class StepRunner(Runner):
    """
    A `StepRunner` executes a fixed sequence of `Step`s against a device, one
    at a time and strictly in order. Each step waits for its delay (counted
    from the end of the previous step), then runs its action to completion.

    Steps can be handed to the constructor, declared on a subclass with the
    `step` decorator, or built by overriding `sequence`.

    When an action fails (raises, or takes longer than `action_timeout`) the
    failure is logged and recorded in `failures`, and the runner jumps
    straight to the next `failsafe` step without waiting its delay. The
    sequence then carries on from there. `abort` does the same from outside
    of the sequence, but stops once the failsafe step is done.

    `sleep` is what the runner waits with. It can be swapped out to drive the
    runner with a virtual clock.
    """

    _steps: List[Step]
    _initialization_tasks: List[Callable[[Device], Awaitable[None]]]
    _timers: List[asyncio.Future]
    _current_action: Optional[asyncio.Future]
    _running: bool
    _aborted: bool
    _in_failsafe: bool

    failures: List[Tuple[str, BaseException]]

    def __init__(self,
            steps: List[Step]=None,
            sleep: Callable[[float], Awaitable[None]]=asyncio.sleep,
            action_timeout: float=None):
        self._given_steps = list(steps) if steps is not None else None
        self._sleep = sleep
        self.action_timeout = action_timeout
        self.failures = []
        self._timers = []
        self._current_action = None
        self._running = False
        self._aborted = False
        self._in_failsafe = False

    def _collect(self, marker: str) -> list:
        found = []
        for _, method in inspect.getmembers(self):
            if not inspect.ismethod(method):
                continue
            if hasattr(method, marker):
                found.append(method)
        return sorted(found, key=lambda m: m._declared)

    def sequence(self, device: Device) -> List[Step]:
        """
        Build the steps that will be run against `device`. These are the steps
        passed to the constructor if there were any, and the `step` decorated
        methods otherwise.
        """
        if self._given_steps is not None:
            return list(self._given_steps)
        return [
            Step(m._step_delay, functools.partial(m, device), m._step_name, m._step_failsafe)
            for m in self._collect("_is_step")
        ]

    def _build(self, device: Device):
        self._steps = self.sequence(device)
        if len(self._steps) == 0:
            raise ValueError("a StepRunner needs at least one step")
        self._initialization_tasks = self._collect("_run_at_init")

    def _find_failsafe(self, start: int) -> Optional[int]:
        for index in range(start, len(self._steps)):
            if self._steps[index].failsafe:
                return index
        return None

    async def _wait(self, delay: float):
        timer = asyncio.ensure_future(self._sleep(delay))
        self._timers.append(timer)
        try:
            await timer
        except asyncio.CancelledError:
            # cancelled timers are how clear() and abort() interrupt a wait.
            # anything else is someone cancelling the whole run
            if self._running and not self._aborted:
                raise
        finally:
            if timer in self._timers:
                self._timers.remove(timer)

    async def _invoke(self, current: Step) -> bool:
        self._in_failsafe = current.failsafe
        self._current_action = asyncio.ensure_future(current.invoke())
        try:
            if self.action_timeout is None:
                await self._current_action
            else:
                await asyncio.wait_for(self._current_action, self.action_timeout)
        except asyncio.CancelledError as e:
            if not self._aborted:
                raise
            print(f"[dronerunner] step {current.name} interrupted")
            self.failures.append((current.name, e))
            return False
        except asyncio.TimeoutError as e:
            print(f"[dronerunner] step {current.name} timed out after {self.action_timeout}s")
            self.failures.append((current.name, e))
            return False
        except Exception as e:
            print(f"[dronerunner] step {current.name} failed: {e!r}")
            self.failures.append((current.name, e))
            return False
        finally:
            self._current_action = None
            self._in_failsafe = False
        return True

    async def run(self, device: Device):
        self._build(device)
        self.failures = []
        self._running = True
        self._aborted = False

        try:
            # init tasks get the same timeout and abort handling as steps. a
            # failure here ends the run without any failsafe step
            for task in self._initialization_tasks:
                if not await self._invoke(Step(0, functools.partial(task, device), task.__name__)):
                    print("[dronerunner] initialization failed, skipping the sequence")
                    return

            index = 0
            skip_delay = False
            while self._running and not self._aborted and index < len(self._steps):
                current = self._steps[index]
                if not skip_delay:
                    await self._wait(current.delay)
                    if self._aborted or not self._running:
                        break
                skip_delay = False

                ok = await self._invoke(current)
                index += 1
                if not ok and not current.failsafe:
                    failsafe = self._find_failsafe(index)
                    if failsafe is not None:
                        print(f"[dronerunner] jumping to step {self._steps[failsafe].name}")
                        index = failsafe
                        skip_delay = True

            if self._aborted:
                failsafe = self._find_failsafe(index)
                if failsafe is not None:
                    print(f"[dronerunner] aborted, running step {self._steps[failsafe].name}")
                    await self._invoke(self._steps[failsafe])
        finally:
            self.clear()
            self.cleanup()

    def clear(self):
        """
        Cancel every pending step timer. Nothing else in the sequence runs
        after this is called.
        """
        self._running = False
        for timer in list(self._timers):
            timer.cancel()

    def stop(self):
        """
        Call `stop` to stop the execution of the `StepRunner` after completion
        of the current step.
        """
        self._running = False

    def abort(self):
        """
        Interrupt the current wait or action and go straight to the next
        failsafe step, then stop. A failsafe step that is already running is
        left alone.

        Meant to be used as a signal handler (see `loop.add_signal_handler`)
        """
        if not self._running or self._aborted:
            return
        print("[dronerunner] abort requested")
        self._aborted = True
        for timer in list(self._timers):
            timer.cancel()
        if self._current_action is not None and not self._in_failsafe:
            self._current_action.cancel()

    @property
    def running(self) -> bool:
        return self._running

    @property
    def aborted(self) -> bool:
        return self._aborted

    @property
    def succeeded(self) -> bool:
        return len(self.failures) == 0 and not self._aborted

async def _connect(device: Device, timeout: Optional[float]):
    try:
        await asyncio.wait_for(device.connect(), timeout)
    except asyncio.TimeoutError:
        raise ConnectTimeout(f"device did not become ready within {timeout}s")

async def execute(runner: Runner,
        device: Device,
        connect_timeout: float=None,
        land_on_exit: bool=True) -> int:
    """
    Connect to `device` and run `runner` against it. Returns the exit code for
    the run: 0 if everything went as planned, 1 otherwise.

    No matter how the run ends (including exceptions and cancellation), a
    device that is still airborne is told to land, unless `land_on_exit` is
    False, and the device is closed.
    """
    try:
        try:
            await _connect(device, connect_timeout)
        except Exception as e:
            print(f"[dronerunner] unable to connect to device: {e}")
            return 1
        print("[dronerunner] device connected")

        try:
            await runner.run(device)
        except Exception as e:
            print(f"[dronerunner] run failed: {e!r}")
            return 1
        return 0 if runner.succeeded else 1
    finally:
        if device.airborne and land_on_exit:
            print("[dronerunner] device still airborne after run! landing automatically.")
            try:
                await asyncio.wait_for(device.land(), _EXIT_LAND_TIMEOUT)
            except Exception as e:
                print(f"[dronerunner] automatic landing failed: {e!r}")
        try:
            device.close()
        except Exception as e:
            print(f"[dronerunner] unable to close device: {e!r}")
