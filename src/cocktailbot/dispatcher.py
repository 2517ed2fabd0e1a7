"""
Command dispatcher: turns an order into paced coil writes.

Writes are fire-and-forget against the physical process. The trigger write
is what starts the robot, so the job is handed to the CompletionMonitor as
soon as the trigger is accepted and the call returns without waiting for the
pour. Orders are serialized: the busy check, the writes and arming the
monitor run under one lock.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from .BartenderBase import BartenderBase
from .errors import (BartenderError, DeviceBusyError, DeviceUnreachableError,
                     EmptySelectionError, ProtocolError, ValidationError)
from .monitor import CompletionMonitor, MonitorJob
from .recipes import CocktailMenu, CustomDrinkRules, resolve_recipe
from .register_map import RegisterMap
from .scheduler import Scheduler

log = logging.getLogger("cocktailbot.dispatcher")


@dataclass
class TriggerResult:
    accepted: bool
    message: str
    cocktail_id: Optional[str] = None
    job_id: Optional[str] = None


@dataclass
class CustomOrderResult:
    accepted: bool
    message: str
    ingredients: List[str] = field(default_factory=list)
    extras: Dict[str, bool] = field(default_factory=dict)
    job_id: Optional[str] = None


class CommandDispatcher:
    """
    Resolves orders to coil addresses and writes them in device order.

    Args:
        transport (BartenderBase): Shared robot transport.
        register_map (RegisterMap): Address layout.
        menu (CocktailMenu): Known cocktails.
        monitor (CompletionMonitor): Receives every accepted job.
        scheduler (Scheduler): Used for write pacing.
        write_delay (float): Pause between consecutive writes (default 0.1).
        rules (Optional[CustomDrinkRules]): Custom drink rules.
    """

    def __init__(self, transport: BartenderBase, register_map: RegisterMap, menu: CocktailMenu,
                 monitor: CompletionMonitor, scheduler: Scheduler, write_delay: float = 0.1,
                 rules: Optional[CustomDrinkRules] = None) -> None:
        self.transport = transport
        self.register_map = register_map
        self.menu = menu
        self.monitor = monitor
        self.scheduler = scheduler
        self.write_delay = write_delay
        self.rules = rules or CustomDrinkRules()
        self._lock = threading.Lock()

    def trigger_cocktail(self, cocktail_id: str) -> TriggerResult:
        """
        Start preparing a cocktail from the menu.

        Raises:
            NotFoundError: Unknown id; nothing is sent to the robot.
            DeviceBusyError: A drink is still in progress.
            DeviceUnreachableError: The robot cannot be reached.
            ProtocolError: The trigger or start write was rejected. When only
                the start write fails the job is already being monitored.
        """
        cocktail = self.menu.get(cocktail_id)
        recipe = resolve_recipe(cocktail, self.register_map)
        with self._lock:
            self._check_not_busy()
            log.info(f"Ordering {cocktail.name}: {len(recipe.ingredient_addresses)} ingredient flag(s), "
                     f"trigger {recipe.trigger_address}")
            job = self._write_sequence(recipe.ingredient_addresses, recipe.trigger_address, cocktail.name)
        return TriggerResult(True, f"Started preparing {cocktail.name}", cocktail.id, job.job_id)

    def trigger_custom(self, ingredients: Sequence[str]) -> CustomOrderResult:
        """
        Start a custom drink from a free-form ingredient selection.

        Unknown ingredient ids are dropped with a warning.

        Raises:
            EmptySelectionError: Nothing (known) was selected.
            ValidationError: The register map has no ingredient block.
            DeviceBusyError: A drink is still in progress.
            DeviceUnreachableError: The robot cannot be reached.
        """
        if not ingredients:
            raise EmptySelectionError("No ingredients selected")
        if self.register_map.ingredients is None:
            raise ValidationError("Custom drinks need an ingredient block in the register map")

        rules = self.rules
        selected: List[str] = []
        for name in ingredients:
            if name not in rules.selectable or name not in self.register_map.ingredients.names:
                log.warning(f"Custom drink: ignoring unknown ingredient {name!r}")
                continue
            if name not in selected:
                selected.append(name)
        if not selected:
            raise EmptySelectionError(f"None of the selected ingredients are known: {list(ingredients)}")

        has_garnish = any(i in rules.garnishes for i in selected)
        has_mixer = any(i in rules.mixers for i in selected)
        extras = {"muddling": has_garnish, "stirring": has_mixer, "straw": has_mixer}

        flags = list(selected)
        if has_garnish:
            flags.append(rules.muddle_flag)
        if has_mixer:
            flags.extend([rules.stir_flag, rules.straw_flag])
        addresses = tuple(self.register_map.ingredient_address(f) for f in flags)

        trigger = self.register_map.custom_trigger
        with self._lock:
            self._check_not_busy()
            log.info(f"Custom drink: {', '.join(flags)} -> trigger {trigger}")
            job = self._write_sequence(addresses, trigger, "Custom cocktail")
        return CustomOrderResult(True, "Custom cocktail order placed", selected, extras, job.job_id)

    # ------------------ Helpers ------------------
    def _check_not_busy(self) -> None:
        if self.monitor.has_active_job():
            raise DeviceBusyError("Robot is not ready. Please wait for current operation to complete.")
        rmap = self.register_map
        try:
            value = self.transport.read_bits_with_fallback(rmap.busy_address, 1, rmap.read_order)[0]
        except ProtocolError as e:
            # Some firmware does not expose the flag at all
            log.warning(f"Busy check on address {rmap.busy_address} failed, proceeding: {e}")
            return
        if value == rmap.busy_when:
            raise DeviceBusyError("Robot is not ready. Please wait for current operation to complete.")

    def _write_sequence(self, ingredient_addresses: Tuple[int, ...], trigger: int, label: str) -> MonitorJob:
        rmap = self.register_map
        first = True

        def pace():
            nonlocal first
            if not first:
                self.scheduler.sleep(self.write_delay)
            first = False

        asserted: List[int] = []
        try:
            for address in ingredient_addresses:
                pace()
                try:
                    kind = self.transport.write_bit_with_fallback(address, True, rmap.write_order)
                    asserted.append(address)
                    log.debug(f"Activated ingredient flag {address} via {kind.value}")
                except ProtocolError as e:
                    log.warning(f"Failed to activate ingredient flag {address}, continuing: {e}")

            pace()
            self.transport.write_bit_with_fallback(trigger, True, rmap.write_order)
            log.info(f"Activated trigger address {trigger}")
        except BartenderError as e:
            log.error(f"Order for {label} aborted before the trigger was accepted: {e}")
            self._release(asserted)
            raise

        job = self.monitor.arm(trigger, label)

        if rmap.start_flag is not None:
            pace()
            self.transport.write_bit_with_fallback(rmap.start_flag, True, rmap.write_order)
            log.info(f"Activated start signal at address {rmap.start_flag}")
        return job

    def _release(self, addresses: List[int]) -> None:
        """Best-effort clear of the ingredient flags an aborted order left set."""
        for i, address in enumerate(addresses):
            if i:
                self.scheduler.sleep(self.write_delay)
            try:
                self.transport.write_bit_with_fallback(address, False, self.register_map.write_order)
            except DeviceUnreachableError as e:
                log.warning(f"Robot unreachable, {len(addresses) - i} ingredient flag(s) left set: {e}")
                return
            except ProtocolError as e:
                log.warning(f"Failed to release ingredient flag {address}: {e}")
        if addresses:
            log.info(f"Released {len(addresses)} ingredient flag(s) of the aborted order")
