"""
cocktailbot
-----------

Coordinator for a Modbus TCP cocktail-dispensing robot: triggers drinks,
watches them to completion and resets the trigger coils, plus a simulator
of the robot.
"""

from .BartenderBase import BartenderBase
from .BartenderModbus import BartenderModbus
from .BartenderSimulator import BartenderDevice, BartenderSimulator
from .config import BartenderConfig, load_config
from .errors import (BartenderError, ConfigError, DeviceBusyError, DeviceUnreachableError,
                     EmptySelectionError, NotFoundError, ProtocolError, ProtocolUnsupportedError,
                     ValidationError)
from .recipes import Cocktail, CocktailMenu, CocktailStep, CustomDrinkRules, Recipe
from .register_map import BitKind, RegisterMap
from .service import Bartender
from .status import HealthReport, RobotState, StatusSnapshot

__all__ = [
    "Bartender",
    "BartenderBase",
    "BartenderModbus",
    "BartenderDevice",
    "BartenderSimulator",
    "BartenderConfig",
    "load_config",
    "BitKind",
    "RegisterMap",
    "Cocktail",
    "CocktailMenu",
    "CocktailStep",
    "CustomDrinkRules",
    "Recipe",
    "RobotState",
    "StatusSnapshot",
    "HealthReport",
    "BartenderError",
    "ConfigError",
    "DeviceBusyError",
    "DeviceUnreachableError",
    "EmptySelectionError",
    "NotFoundError",
    "ProtocolError",
    "ProtocolUnsupportedError",
    "ValidationError",
]
