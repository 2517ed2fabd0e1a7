"""
Cocktail menu and recipe resolution.

The menu is configuration: it is loaded once and never mutated at runtime.
A Recipe is the device-facing view of a Cocktail, i.e. the coil addresses
the dispatcher has to assert for it.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .errors import ConfigError, NotFoundError
from .register_map import SYSTEM_FLAGS, RegisterMap

log = logging.getLogger("cocktailbot.recipes")


@dataclass(frozen=True)
class CocktailStep:
    label: str
    state_key: str
    description: str = ""


@dataclass(frozen=True)
class Cocktail:
    """
    One drink the robot knows how to make.

    Args:
        id (str): Stable identifier used by consumers, e.g. "mojito".
        name (str): Display name.
        trigger_address (int): Coil that starts this recipe.
        category (str): Menu grouping ("rum", "whiskey", ...).
        steps (Tuple[CocktailStep, ...]): Preparation steps in device order.
        ingredients (Tuple[str, ...]): Extended ingredient flags asserted
            before the trigger (ignored when the map has no ingredient block).
    """

    id: str
    name: str
    trigger_address: int
    category: str
    steps: Tuple[CocktailStep, ...] = ()
    ingredients: Tuple[str, ...] = ()

    @property
    def sequence(self) -> List[str]:
        """Step flags the robot raises for this drink, system flags excluded."""
        return [s.state_key for s in self.steps if s.state_key not in SYSTEM_FLAGS]

    def progress(self, state) -> int:
        """Percentage of this cocktail's steps that ``state`` reports as done."""
        if state.drink_ready:
            return 100
        keys = self.sequence
        if not keys:
            return 0
        done = sum(1 for key in keys if state.flags.get(key, False))
        return round(done * 100 / len(keys))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "trigger_address": self.trigger_address,
            "category": self.category,
            "steps": [
                {"label": s.label, "state_key": s.state_key, "description": s.description}
                for s in self.steps
            ],
            "ingredients": list(self.ingredients),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Cocktail":
        try:
            return cls(
                id=str(data["id"]),
                name=str(data.get("name", data["id"])),
                trigger_address=int(data["trigger_address"]),
                category=str(data.get("category", "")),
                steps=tuple(
                    CocktailStep(str(s["label"]), str(s["state_key"]), str(s.get("description", "")))
                    for s in data.get("steps", [])
                ),
                ingredients=tuple(str(i) for i in data.get("ingredients", [])),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigError(f"invalid cocktail entry {data!r}: {e}") from e


@dataclass(frozen=True)
class Recipe:
    cocktail_id: str
    trigger_address: int
    ingredient_addresses: Tuple[int, ...] = ()


def resolve_recipe(cocktail: Cocktail, register_map: RegisterMap) -> Recipe:
    """Map a cocktail onto the coil addresses of this deployment."""
    addresses: Tuple[int, ...] = ()
    if register_map.ingredients is not None:
        addresses = tuple(register_map.ingredient_address(name) for name in cocktail.ingredients)
    return Recipe(cocktail.id, cocktail.trigger_address, addresses)


@dataclass(frozen=True)
class CustomDrinkRules:
    """
    What a free-form ingredient selection turns into.

    Mixers need stirring and a straw, garnishes need muddling.
    """

    selectable: Tuple[str, ...] = (
        "mint", "ice", "syrup", "lime", "white-rum", "dark-rum", "whiskey", "soda", "coke",
    )
    mixers: Tuple[str, ...] = ("soda", "coke")
    garnishes: Tuple[str, ...] = ("mint",)
    muddle_flag: str = "muddling"
    stir_flag: str = "stirring"
    straw_flag: str = "straw"


def _steps(*keys: str) -> Tuple[CocktailStep, ...]:
    return tuple(CocktailStep(*STEP_TEXT[k]) for k in keys)


STEP_TEXT: Dict[str, Tuple[str, str, str]] = {
    "muddling": ("Muddling", "muddling", "Pick and place mint leaves and muddle it"),
    "syrup": ("Pouring Syrup", "syrup", "Pouring syrup into a glass"),
    "lime": ("Adding Lime", "lime", "Pouring lime into a glass"),
    "ice": ("Adding Ice", "ice", "Adding ice cubes to the glass"),
    "white_rum": ("Pouring White Rum", "white_rum", "Pouring white rum into the glass"),
    "dark_rum": ("Pouring Dark Rum", "dark_rum", "Pouring dark rum into the glass"),
    "whiskey": ("Pouring Whiskey", "whiskey", "Pouring whiskey into the glass"),
    "soda": ("Adding Soda", "soda", "Pouring soda into the glass"),
    "coke": ("Adding Coke", "coke", "Pouring coke into the glass"),
    "drink_ready": ("Drink Ready", "drink_ready", "The process is finished"),
}

DEFAULT_COCKTAILS: Tuple[Cocktail, ...] = (
    Cocktail(
        "mojito", "Mojito", 100, "rum",
        _steps("muddling", "syrup", "lime", "ice", "white_rum", "soda", "drink_ready"),
        ("mint", "syrup", "lime", "ice", "white-rum", "soda", "muddling", "stirring", "straw"),
    ),
    Cocktail(
        "cuba-libre", "Cuba Libre", 101, "rum",
        _steps("ice", "white_rum", "lime", "coke", "drink_ready"),
        ("ice", "white-rum", "lime", "coke", "stirring", "straw"),
    ),
    Cocktail(
        "cubata", "Cubata", 102, "rum",
        _steps("ice", "dark_rum", "coke", "drink_ready"),
        ("ice", "dark-rum", "coke", "stirring", "straw"),
    ),
    Cocktail(
        "whiskey-rocks", "Whiskey on the Rocks", 103, "whiskey",
        _steps("ice", "whiskey", "drink_ready"),
        ("ice", "whiskey"),
    ),
    Cocktail(
        "whiskey-coke", "Whiskey and Coke", 104, "whiskey",
        _steps("ice", "whiskey", "coke", "drink_ready"),
        ("ice", "whiskey", "coke", "stirring", "straw"),
    ),
    # 105 (neat whiskey) is wired on the robot but disabled on the menu
    Cocktail(
        "whiskey-highball", "Whiskey Highball", 106, "whiskey",
        _steps("ice", "whiskey", "soda", "drink_ready"),
        ("ice", "whiskey", "soda", "stirring", "straw"),
    ),
)


class CocktailMenu:
    """Read-only lookup over the configured cocktails."""

    def __init__(self, cocktails: Sequence[Cocktail] = DEFAULT_COCKTAILS) -> None:
        self._by_id: Dict[str, Cocktail] = {}
        for c in cocktails:
            if c.id in self._by_id:
                raise ConfigError(f"duplicate cocktail id {c.id!r}")
            self._by_id[c.id] = c

    def __iter__(self) -> Iterator[Cocktail]:
        return iter(self._by_id.values())

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, cocktail_id: str) -> bool:
        return cocktail_id in self._by_id

    def get(self, cocktail_id: str) -> Cocktail:
        try:
            return self._by_id[cocktail_id]
        except KeyError:
            raise NotFoundError(f"Cocktail {cocktail_id} not found") from None

    def by_trigger(self, address: int) -> Optional[Cocktail]:
        for c in self._by_id.values():
            if c.trigger_address == address:
                return c
        return None

    def by_category(self, category: str) -> List[Cocktail]:
        return [c for c in self._by_id.values() if c.category == category]

    def check(self, register_map: RegisterMap) -> "CocktailMenu":
        """
        Verify every cocktail fits the register map.

        Raises:
            ConfigError: On a trigger outside the trigger block, an unknown
                step key or an unknown extended ingredient.
        """
        known_keys = set(register_map.steps.names) | set(SYSTEM_FLAGS)
        for c in self:
            if c.trigger_address not in register_map.triggers:
                raise ConfigError(f"{c.id}: trigger {c.trigger_address} outside trigger block")
            if c.trigger_address == register_map.custom_trigger:
                log.warning(f"{c.id}: trigger {c.trigger_address} shares the custom drink slot")
            unknown = [k for k in c.sequence if k not in known_keys]
            if unknown:
                raise ConfigError(f"{c.id}: unknown step keys {unknown}")
            if register_map.ingredients is not None:
                missing = [i for i in c.ingredients if i not in register_map.ingredients.names]
                if missing:
                    raise ConfigError(f"{c.id}: unknown ingredients {missing}")
        return self

    @classmethod
    def from_list(cls, entries: Optional[List[Dict[str, Any]]]) -> "CocktailMenu":
        if entries is None:
            return cls()
        if not isinstance(entries, list):
            raise ConfigError("cocktails must be a list")
        return cls([Cocktail.from_dict(e) for e in entries])
