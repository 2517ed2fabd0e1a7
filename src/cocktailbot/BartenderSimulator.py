import logging
import threading
from typing import Iterable, List, Optional, Sequence, Tuple

from .BartenderBase import BartenderBase
from .errors import DeviceUnreachableError, ProtocolError
from .recipes import CocktailMenu
from .register_map import BitKind, RegisterMap
from .scheduler import Scheduler, TaskHandle

log = logging.getLogger("cocktailbot.simulator")

DEFAULT_SEQUENCE = ("ice", "white_rum")


class BartenderDevice:
    """
    In-memory model of the bartender robot.

    Holds a flat coil image and reproduces the robot's state machine:

    - writing True to a trigger coil clears the step flags and drink_ready,
      then raises the recipe's step flags one per ``step_delay`` and finally
      drink_ready after ``ready_delay``;
    - writing False to a trigger coil while drink_ready is set clears
      drink_ready and every step flag (operator acknowledged, ready for the
      next order).

    Discrete inputs and holding registers mirror the coil image, so every
    read family sees the same bits.

    Args:
        register_map (RegisterMap): Address layout to emulate.
        menu (CocktailMenu): Cocktails whose step sequences are replayed.
        scheduler (Scheduler): Drives the timed step sequence.
        step_delay (float): Seconds per mechanical step (default 2.0).
        ready_delay (float): Seconds from last step to drink_ready (default 1.0).
        size (Optional[int]): Number of addressable bits.
    """

    def __init__(self, register_map: RegisterMap, menu: CocktailMenu, scheduler: Scheduler,
                 step_delay: float = 2.0, ready_delay: float = 1.0,
                 size: Optional[int] = None) -> None:
        self.register_map = register_map
        self.menu = menu
        self.scheduler = scheduler
        self.step_delay = step_delay
        self.ready_delay = ready_delay
        highest = max(register_map.reset_addresses + [register_map.system.end, register_map.steps.end])
        self._coils: List[bool] = [False] * (size or highest + 1)
        self._lock = threading.RLock()
        self._run: Optional[TaskHandle] = None
        self._generation = 0
        self.write_log: List[Tuple[int, bool]] = []

        self._set(register_map.system.address_of("cup_holder"), True)
        self._set(register_map.system.address_of("waiting_recipe"), True)

    @property
    def size(self) -> int:
        return len(self._coils)

    # ------------------ Register image ------------------
    def _check_range(self, address: int, count: int) -> None:
        if address < 0 or count < 1 or address + count > len(self._coils):
            raise ProtocolError(f"Address range {address}+{count} out of bounds",
                                code=ProtocolError.ILLEGAL_DATA_ADDRESS)

    def _set(self, address: int, value: bool) -> None:
        self._coils[address] = bool(value)

    def flag(self, name: str) -> bool:
        rmap = self.register_map
        address = rmap.system.address_of(name) if name in rmap.system.names else rmap.steps.address_of(name)
        return self._coils[address]

    def get_coils(self, address: int, count: int) -> List[bool]:
        with self._lock:
            self._check_range(address, count)
            return self._coils[address:address + count]

    def set_coils(self, address: int, values: Sequence[bool]) -> None:
        with self._lock:
            self._check_range(address, len(values))
            for i, v in enumerate(values):
                self._write(address + i, bool(v))

    def get_discrete_inputs(self, address: int, count: int) -> List[bool]:
        return self.get_coils(address, count)

    def get_holding_registers(self, address: int, count: int) -> List[int]:
        return [1 if b else 0 for b in self.get_coils(address, count)]

    def set_holding_registers(self, address: int, values: Sequence[int]) -> None:
        self.set_coils(address, [int(v) != 0 for v in values])

    # ------------------ Device behaviour ------------------
    def _write(self, address: int, value: bool) -> None:
        rmap = self.register_map
        log.info(f"COIL write @ {address}: {int(value)}")
        self.write_log.append((address, value))
        self._set(address, value)

        if address not in rmap.triggers:
            return
        if value:
            self._start_sequence(address)
        elif self.flag("drink_ready"):
            self._acknowledge()

    def _sequence_for(self, trigger: int) -> List[str]:
        rmap = self.register_map
        if trigger == rmap.custom_trigger and rmap.ingredients is not None:
            steps = []
            for name, address in zip(rmap.ingredients.names, rmap.ingredients.addresses):
                step = rmap.step_for_ingredient(name)
                if step and self._coils[address]:
                    steps.append(step)
            if steps:
                return steps
        cocktail = self.menu.by_trigger(trigger)
        if cocktail is not None and cocktail.sequence:
            return cocktail.sequence
        return [s for s in DEFAULT_SEQUENCE if s in rmap.steps.names]

    def _start_sequence(self, trigger: int) -> None:
        rmap = self.register_map
        sequence = self._sequence_for(trigger)
        cocktail = self.menu.by_trigger(trigger)
        name = cocktail.name if cocktail and trigger != rmap.custom_trigger else f"Trigger {trigger}"
        log.info(f"Starting: {name} (address {trigger} = 1), {len(sequence)} steps")

        if self._run is not None:
            self._run.cancel()
        self._generation += 1
        generation = self._generation

        for address in rmap.steps.addresses:
            self._set(address, False)
        self._set(rmap.ready_address, False)
        self._set(rmap.system.address_of("waiting_recipe"), False)

        self._schedule_step(generation, sequence, 0)

    def _schedule_step(self, generation: int, sequence: List[str], index: int) -> None:
        if index < len(sequence):
            self._run = self.scheduler.call_later(
                self.step_delay, lambda: self._raise_step(generation, sequence, index), name="sim-step")
        else:
            self._run = self.scheduler.call_later(
                self.ready_delay, lambda: self._raise_ready(generation), name="sim-ready")

    def _raise_step(self, generation: int, sequence: List[str], index: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            step = sequence[index]
            address = self.register_map.steps.address_of(step)
            self._set(address, True)
            log.info(f"  Step {index + 1}/{len(sequence)}: {step} (address {address})")
            self._schedule_step(generation, sequence, index + 1)

    def _raise_ready(self, generation: int) -> None:
        with self._lock:
            if generation != self._generation:
                return
            self._set(self.register_map.ready_address, True)
            self._run = None
            log.info(f"Drink ready! (address {self.register_map.ready_address} = 1)")

    def _acknowledge(self) -> None:
        rmap = self.register_map
        self._generation += 1
        if self._run is not None:
            self._run.cancel()
            self._run = None
        self._set(rmap.ready_address, False)
        for address in rmap.steps.addresses:
            self._set(address, False)
        self._set(rmap.system.address_of("waiting_recipe"), True)
        log.info(f"System reset: address {rmap.ready_address} = 0, steps cleared")

    @property
    def busy(self) -> bool:
        return self._run is not None


class BartenderSimulator(BartenderBase):
    """
    In-process transport backed by a BartenderDevice.

    Lets the coordinator run without hardware or sockets. Firmware quirks are
    reproduced by restricting the function families the "device" answers to.

    Args:
        device (BartenderDevice): Simulated robot.
        supported_reads (Iterable[BitKind]): Read families that succeed.
        supported_writes (Iterable[BitKind]): Write families that succeed.
    """

    def __init__(self, device: BartenderDevice,
                 supported_reads: Iterable[BitKind] = (BitKind.COIL, BitKind.DISCRETE_INPUT, BitKind.HOLDING_REGISTER),
                 supported_writes: Iterable[BitKind] = (BitKind.COIL, BitKind.HOLDING_REGISTER)) -> None:
        self.device = device
        self.supported_reads = set(supported_reads)
        self.supported_writes = set(supported_writes)
        self.history: List[Tuple] = []
        self._online = True
        self._connected = False

    def set_online(self, online: bool) -> None:
        """Simulate the robot dropping off (or coming back to) the network."""
        self._online = online
        if not online:
            self._connected = False

    def open_connection(self) -> bool:
        self._connected = self._online
        return self._connected

    def close_connection(self) -> None:
        self._connected = False

    def is_connected(self) -> bool:
        return self._connected

    def _ensure_connected(self) -> None:
        if not self._connected and not self.open_connection():
            raise DeviceUnreachableError("Simulated robot is offline")

    @property
    def writes(self) -> List[Tuple[int, bool]]:
        """(address, value) of every accepted write, in order."""
        return [(h[2], h[3]) for h in self.history if h[0] == "write"]

    @property
    def reads(self) -> List[Tuple[BitKind, int, int]]:
        return [(h[1], h[2], h[3]) for h in self.history if h[0] == "read"]

    def read_bits(self, kind: BitKind, start: int, count: int = 1) -> List[bool]:
        self._ensure_connected()
        if kind not in self.supported_reads:
            raise ProtocolError(f"Illegal function {kind.read_function_code}", code=ProtocolError.ILLEGAL_FUNCTION)
        self.history.append(("read", kind, start, count))
        if kind in (BitKind.HOLDING_REGISTER, BitKind.INPUT_REGISTER):
            return [r != 0 for r in self.device.get_holding_registers(start, count)]
        if kind == BitKind.DISCRETE_INPUT:
            return self.device.get_discrete_inputs(start, count)
        return self.device.get_coils(start, count)

    def write_bit(self, kind: BitKind, address: int, value: bool) -> None:
        self._ensure_connected()
        if kind not in self.supported_writes or not kind.writable:
            raise ProtocolError(f"Illegal function for write {kind.value}", code=ProtocolError.ILLEGAL_FUNCTION)
        if kind == BitKind.HOLDING_REGISTER:
            self.device.set_holding_registers(address, [1 if value else 0])
        else:
            self.device.set_coils(address, [bool(value)])
        self.history.append(("write", kind, address, bool(value)))
