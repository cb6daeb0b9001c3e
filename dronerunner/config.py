"""
Flight configuration. Every value has a default, so a config file only needs
to mention what it changes. Config files are YAML mappings, ex:

    takeoff_delay: 5          # s between prep and take off
    hover_time: 5             # s between take off and landing
    exit_delay: 5             # s between landing and exiting
    connect_timeout: 30       # s, or null to wait for the device forever
    action_timeout: null      # s any single action may take, or null
    keep_alive_interval: 0.1  # s between pings, or null for the device default
    recalibrate_after_takeoff: true
"""
from dataclasses import dataclass, fields
from typing import Optional

import yaml

@dataclass
class FlightConfig:
    takeoff_delay: float=5
    hover_time: float=5
    exit_delay: float=5
    connect_timeout: Optional[float]=30
    action_timeout: Optional[float]=None
    keep_alive_interval: Optional[float]=None
    recalibrate_after_takeoff: bool=True

    def __post_init__(self):
        for name in ["takeoff_delay", "hover_time", "exit_delay"]:
            _check_number(name, getattr(self, name), allow_zero=True)
        for name in ["connect_timeout", "action_timeout", "keep_alive_interval"]:
            value = getattr(self, name)
            if value is not None:
                _check_number(name, value, allow_zero=False)
        if not isinstance(self.recalibrate_after_takeoff, bool):
            raise TypeError("recalibrate_after_takeoff must be true or false")

def _check_number(name: str, value, allow_zero: bool):
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise TypeError(f"{name} must be a number of seconds (got {value!r})")
    if value < 0 or (value == 0 and not allow_zero):
        raise ValueError(f"{name} must be {'non-negative' if allow_zero else 'positive'} (got {value})")

def config_from_dict(data: dict) -> FlightConfig:
    """
    Build a `FlightConfig` out of a mapping, rejecting keys that don't mean
    anything (most likely typos).
    """
    if not isinstance(data, dict):
        raise TypeError("flight config must be a mapping")
    known = {f.name for f in fields(FlightConfig)}
    unknown = [key for key in data if key not in known]
    if len(unknown) != 0:
        raise ValueError(f"unknown flight config keys: {', '.join(sorted(map(str, unknown)))}")
    return FlightConfig(**data)

def load_config(path: str) -> FlightConfig:
    """
    Read a `FlightConfig` from the YAML file at `path`. An empty file gives the
    defaults.
    """
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        data = {}
    return config_from_dict(data)
