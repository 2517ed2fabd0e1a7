"""
YAML configuration with defaults backfilled for every missing key.
"""

import copy
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml

from .errors import ConfigError
from .recipes import CocktailMenu
from .register_map import RegisterMap

log = logging.getLogger("cocktailbot.config")

DEFAULT_CONFIG: Dict[str, Any] = {
    "device": {"host": "127.0.0.1", "port": 502, "unit_id": 1, "timeout": 3.0, "retries": 1},
    "timing": {
        "poll_interval": 2.0,
        "status_interval": 2.0,
        "safety_timeout": 120.0,
        "write_delay": 0.1,
        "request_timeout": 4.0,
        "reconnect_backoff": 5.0,
    },
    "simulator": {"host": "0.0.0.0", "port": 5020, "step_delay": 2.0, "ready_delay": 1.0},
    "register_map": {"preset": "extended"},
    "cocktails": None,
}


@dataclass
class DeviceSettings:
    host: str = "127.0.0.1"
    port: int = 502
    unit_id: int = 1
    timeout: float = 3.0
    retries: int = 1


@dataclass
class TimingSettings:
    poll_interval: float = 2.0
    status_interval: float = 2.0
    safety_timeout: float = 120.0
    write_delay: float = 0.1
    request_timeout: float = 4.0
    reconnect_backoff: float = 5.0


@dataclass
class SimulatorSettings:
    host: str = "0.0.0.0"
    port: int = 5020
    step_delay: float = 2.0
    ready_delay: float = 1.0


@dataclass
class BartenderConfig:
    device: DeviceSettings = field(default_factory=DeviceSettings)
    timing: TimingSettings = field(default_factory=TimingSettings)
    simulator: SimulatorSettings = field(default_factory=SimulatorSettings)
    register_map: RegisterMap = field(default_factory=RegisterMap.preset)
    menu: CocktailMenu = field(default_factory=CocktailMenu)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BartenderConfig":
        merged = deep_merge(DEFAULT_CONFIG, data or {})
        try:
            device = DeviceSettings(**merged["device"])
            timing = TimingSettings(**merged["timing"])
            simulator = SimulatorSettings(**merged["simulator"])
        except TypeError as e:
            raise ConfigError(f"unknown configuration key: {e}") from e
        for name, raw in list(vars(timing).items()):
            try:
                value = float(raw)
            except (TypeError, ValueError):
                raise ConfigError(f"timing.{name} must be a number of seconds, got {raw!r}") from None
            setattr(timing, name, value)
            if value < 0 or (name.endswith("interval") and value == 0):
                raise ConfigError(f"timing.{name} must be positive, got {value}")
        register_map = RegisterMap.from_dict(merged["register_map"])
        menu = CocktailMenu.from_list(merged["cocktails"]).check(register_map)
        return cls(device, timing, simulator, register_map, menu)


def deep_merge(defaults: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    """Recursively overlay ``overrides`` on ``defaults``; extra keys are kept."""
    out: Dict[str, Any] = {}
    for k, v in defaults.items():
        if isinstance(v, dict):
            ov = overrides.get(k, {}) if isinstance(overrides, dict) else {}
            out[k] = deep_merge(v, ov if isinstance(ov, dict) else {})
        else:
            out[k] = copy.deepcopy(overrides.get(k, v) if isinstance(overrides, dict) else v)
    if isinstance(overrides, dict):
        for k, v in overrides.items():
            if k not in out:
                out[k] = copy.deepcopy(v)
    return out


def load_config(path: Optional[Union[str, Path]] = None, create: bool = False) -> BartenderConfig:
    """
    Load a configuration file.

    Args:
        path (Optional[Union[str, Path]]): YAML file; None means defaults only.
        create (bool): Write the defaults to ``path`` when it does not exist.

    Returns:
        BartenderConfig: Parsed and validated configuration.

    Raises:
        ConfigError: On unreadable YAML or inconsistent settings.
    """
    if path is None:
        return BartenderConfig.from_dict({})

    cfg_path = Path(path)
    if not cfg_path.exists():
        if not create:
            raise ConfigError(f"config file {cfg_path} not found")
        cfg_path.parent.mkdir(parents=True, exist_ok=True)
        cfg_path.write_text(yaml.safe_dump(DEFAULT_CONFIG, sort_keys=False))
        log.info(f"Created default config at {cfg_path}")

    try:
        loaded = yaml.safe_load(cfg_path.read_text()) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"failed to read config {cfg_path}: {e}") from e
    if not isinstance(loaded, dict):
        raise ConfigError(f"config {cfg_path} must contain a mapping")
    return BartenderConfig.from_dict(loaded)
