"""
Device register map
===================

Static knowledge of where the robot keeps its bits and which Modbus function
families a deployment answers to. Hardware revisions disagree on the exact
layout, so nothing here is hardcoded into the coordinator: the map is built
from a preset and optionally overridden from configuration.

Blocks:
- steps:        step/ingredient progress flags (read)
- system:       cup_holder, drink_ready, waiting_recipe (read)
- triggers:     one coil per recipe, the custom slot included (write)
- ingredients:  extended ingredient/actuator flags (write, optional)
- start_flag:   global "begin" coil (write, optional)
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from .errors import ConfigError


class BitKind(Enum):
    """Modbus data families that can carry a single bit."""

    COIL = "coil"
    DISCRETE_INPUT = "discrete_input"
    HOLDING_REGISTER = "holding_register"
    INPUT_REGISTER = "input_register"

    @property
    def read_function_code(self) -> int:
        return {
            BitKind.COIL: 1,
            BitKind.DISCRETE_INPUT: 2,
            BitKind.HOLDING_REGISTER: 3,
            BitKind.INPUT_REGISTER: 4,
        }[self]

    @property
    def write_function_code(self) -> Optional[int]:
        # Discrete inputs and input registers are read-only
        return {BitKind.COIL: 5, BitKind.HOLDING_REGISTER: 6}.get(self)

    @property
    def writable(self) -> bool:
        return self.write_function_code is not None


SYSTEM_FLAGS = ("cup_holder", "drink_ready", "waiting_recipe")


@dataclass(frozen=True)
class AddressBlock:
    """A contiguous run of named bits starting at ``start``."""

    start: int
    names: Sequence[str]

    @property
    def count(self) -> int:
        return len(self.names)

    @property
    def end(self) -> int:
        """Last address in the block (inclusive)."""
        return self.start + self.count - 1

    @property
    def addresses(self) -> List[int]:
        return list(range(self.start, self.start + self.count))

    def address_of(self, name: str) -> int:
        try:
            return self.start + list(self.names).index(name)
        except ValueError:
            raise KeyError(f"{name!r} is not part of block starting at {self.start}") from None

    def __contains__(self, address: int) -> bool:
        return self.start <= address <= self.end

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start, "names": list(self.names)}


@dataclass
class RegisterMap:
    """
    Address layout plus protocol quirks of one robot deployment.

    Args:
        steps (AddressBlock): Step/ingredient progress flags.
        system (AddressBlock): System flags, names must be SYSTEM_FLAGS.
        triggers (AddressBlock): Cocktail trigger coils.
        custom_trigger (int): Trigger slot reserved for custom drinks.
        ingredients (Optional[AddressBlock]): Extended ingredient/actuator block.
        start_flag (Optional[int]): Global start coil.
        read_order (List[BitKind]): Read fallback chain.
        write_order (List[BitKind]): Write fallback chain.
        busy_flag (str): System flag consulted before accepting an order.
        busy_when (bool): Value of ``busy_flag`` that means "busy".
    """

    steps: AddressBlock
    system: AddressBlock
    triggers: AddressBlock
    custom_trigger: int
    ingredients: Optional[AddressBlock] = None
    start_flag: Optional[int] = None
    read_order: List[BitKind] = field(default_factory=lambda: [
        BitKind.DISCRETE_INPUT, BitKind.COIL, BitKind.HOLDING_REGISTER,
    ])
    write_order: List[BitKind] = field(default_factory=lambda: [
        BitKind.COIL, BitKind.HOLDING_REGISTER,
    ])
    busy_flag: str = "waiting_recipe"
    busy_when: bool = False

    # ------------------ Derived addresses ------------------
    @property
    def ready_address(self) -> int:
        return self.system.address_of("drink_ready")

    @property
    def busy_address(self) -> int:
        return self.system.address_of(self.busy_flag)

    @property
    def reset_addresses(self) -> List[int]:
        """Every coil cleared after a job: triggers, extended flags, start flag."""
        out: List[int] = list(self.triggers.addresses)
        if self.ingredients is not None:
            out.extend(self.ingredients.addresses)
        if self.start_flag is not None:
            out.append(self.start_flag)
        seen = set()
        return [a for a in out if not (a in seen or seen.add(a))]

    def ingredient_address(self, name: str) -> int:
        if self.ingredients is None:
            raise KeyError("register map has no ingredient block")
        return self.ingredients.address_of(name)

    def step_for_ingredient(self, name: str) -> Optional[str]:
        """Step flag name that reports progress for an extended ingredient."""
        key = name.replace("-", "_")
        return key if key in self.steps.names else None

    # ------------------ Validation ------------------
    def validate(self) -> "RegisterMap":
        """
        Check that the layout is internally consistent.

        Returns:
            RegisterMap: self, for chaining.

        Raises:
            ConfigError: On overlapping blocks, misplaced slots or bad chains.
        """
        if tuple(self.system.names) != SYSTEM_FLAGS:
            raise ConfigError(f"system block must name {list(SYSTEM_FLAGS)}, got {list(self.system.names)}")
        if self.busy_flag not in SYSTEM_FLAGS:
            raise ConfigError(f"busy_flag must be one of {list(SYSTEM_FLAGS)}")

        blocks = {"steps": self.steps, "system": self.system, "triggers": self.triggers}
        if self.ingredients is not None:
            blocks["ingredients"] = self.ingredients

        for name, block in blocks.items():
            if block.count == 0:
                raise ConfigError(f"{name} block is empty")
            if block.start < 0:
                raise ConfigError(f"{name} block starts at negative address {block.start}")
            if len(set(block.names)) != block.count:
                raise ConfigError(f"{name} block has duplicate names")

        items = list(blocks.items())
        for i, (name_a, a) in enumerate(items):
            for name_b, b in items[i + 1:]:
                if a.start <= b.end and b.start <= a.end:
                    raise ConfigError(f"{name_a} block ({a.start}-{a.end}) overlaps {name_b} block ({b.start}-{b.end})")

        if self.custom_trigger not in self.triggers:
            raise ConfigError(f"custom trigger {self.custom_trigger} is outside trigger block {self.triggers.start}-{self.triggers.end}")
        if self.start_flag is not None:
            for name, block in blocks.items():
                if self.start_flag in block:
                    raise ConfigError(f"start flag {self.start_flag} collides with {name} block")

        if not self.read_order:
            raise ConfigError("read_order must name at least one function family")
        if not self.write_order:
            raise ConfigError("write_order must name at least one function family")
        for kind in self.write_order:
            if not kind.writable:
                raise ConfigError(f"{kind.value} cannot be written")
        return self

    # ------------------ Serialization ------------------
    def to_dict(self) -> Dict[str, Any]:
        return {
            "steps": self.steps.to_dict(),
            "system": self.system.to_dict(),
            "triggers": self.triggers.to_dict(),
            "custom_trigger": self.custom_trigger,
            "ingredients": self.ingredients.to_dict() if self.ingredients else None,
            "start_flag": self.start_flag,
            "read_order": [k.value for k in self.read_order],
            "write_order": [k.value for k in self.write_order],
            "busy_flag": self.busy_flag,
            "busy_when": self.busy_when,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RegisterMap":
        """
        Build a map from a preset name plus overrides.

        ``data["preset"]`` picks the base layout (default "extended"); every
        other key replaces the preset's value.
        """
        data = dict(data or {})
        preset = data.pop("preset", "extended")
        if preset not in PRESETS:
            raise ConfigError(f"unknown register map preset {preset!r}; choose from {sorted(PRESETS)}")
        merged = copy.deepcopy(PRESETS[preset])
        for key, value in data.items():
            if isinstance(value, dict) and isinstance(merged.get(key), dict):
                merged[key] = {**merged[key], **value}
            else:
                merged[key] = value

        def block(value: Any, key: str) -> Optional[AddressBlock]:
            if value is None:
                return None
            if not isinstance(value, dict) or "start" not in value or "names" not in value:
                raise ConfigError(f"{key} must be a mapping with 'start' and 'names'")
            return AddressBlock(int(value["start"]), tuple(str(n) for n in value["names"]))

        def kinds(values: Any, key: str) -> List[BitKind]:
            try:
                return [BitKind(v) for v in values]
            except (TypeError, ValueError):
                raise ConfigError(f"{key} entries must be one of {[k.value for k in BitKind]}") from None

        try:
            rmap = cls(
                steps=block(merged["steps"], "steps"),
                system=block(merged["system"], "system"),
                triggers=block(merged["triggers"], "triggers"),
                custom_trigger=int(merged["custom_trigger"]),
                ingredients=block(merged.get("ingredients"), "ingredients"),
                start_flag=None if merged.get("start_flag") is None else int(merged["start_flag"]),
                read_order=kinds(merged["read_order"], "read_order"),
                write_order=kinds(merged["write_order"], "write_order"),
                busy_flag=str(merged.get("busy_flag", "waiting_recipe")),
                busy_when=bool(merged.get("busy_when", False)),
            )
        except (KeyError, TypeError) as e:
            raise ConfigError(f"incomplete register map: {e}") from e
        return rmap.validate()

    @classmethod
    def preset(cls, name: str = "extended") -> "RegisterMap":
        return cls.from_dict({"preset": name})


PRESETS: Dict[str, Dict[str, Any]] = {
    # Ten step flags including mint; extended flags mirror steps at +100.
    "extended": {
        "steps": {
            "start": 32,
            "names": ["mint", "muddling", "ice", "syrup", "lime",
                      "white_rum", "dark_rum", "whiskey", "soda", "coke"],
        },
        "system": {"start": 90, "names": list(SYSTEM_FLAGS)},
        "triggers": {"start": 100, "names": ["slot0", "slot1", "slot2", "slot3",
                                             "slot4", "slot5", "slot6", "custom"]},
        "custom_trigger": 107,
        "ingredients": {
            "start": 132,
            "names": ["mint", "muddling", "ice", "syrup", "lime", "white-rum",
                      "dark-rum", "whiskey", "soda", "coke", "stirring", "straw"],
        },
        "start_flag": 96,
        "read_order": ["discrete_input", "coil", "holding_register"],
        "write_order": ["coil", "holding_register"],
        "busy_flag": "waiting_recipe",
        "busy_when": False,
    },
    # Earlier firmware: nine steps, no mint, custom drinks share slot 106.
    "classic": {
        "steps": {
            "start": 32,
            "names": ["muddling", "syrup", "lime", "ice", "white_rum",
                      "dark_rum", "soda", "coke", "whiskey"],
        },
        "system": {"start": 90, "names": list(SYSTEM_FLAGS)},
        "triggers": {"start": 100, "names": ["slot0", "slot1", "slot2", "slot3",
                                             "slot4", "slot5", "slot6"]},
        "custom_trigger": 106,
        "ingredients": None,
        "start_flag": None,
        "read_order": ["discrete_input", "coil"],
        "write_order": ["coil"],
        "busy_flag": "waiting_recipe",
        "busy_when": False,
    },
}
