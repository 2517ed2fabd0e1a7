"""
Status publisher: batched, failure-absorbing robot state reads.
"""

import logging
import threading
import time
from typing import Callable, List, Optional

from .BartenderBase import BartenderBase
from .errors import BartenderError, DeviceUnreachableError
from .register_map import AddressBlock, RegisterMap
from .status import RobotState, StatusSnapshot

log = logging.getLogger("cocktailbot.publisher")


class StatusPublisher:
    """
    Reads the step and system blocks and returns a StatusSnapshot.

    Exactly two ranged reads per poll (one per block). ``poll()`` never
    raises: failures turn into all-False blocks plus an ``error`` string.
    A dropped connection is reopened by a later poll, at most once per
    ``reconnect_backoff`` seconds.

    Args:
        transport (BartenderBase): Shared robot transport.
        register_map (RegisterMap): Block layout and read fallback chain.
        request_timeout (float): How long a caller waits for a poll already
            in flight before giving up with a degraded snapshot (default 4).
        reconnect_backoff (float): Minimum seconds between reconnect
            attempts while disconnected (default 5).
        clock (Optional[Callable[[], float]]): Time source for the backoff
            (default time.monotonic).
    """

    def __init__(self, transport: BartenderBase, register_map: RegisterMap,
                 request_timeout: float = 4.0, reconnect_backoff: float = 5.0,
                 clock: Optional[Callable[[], float]] = None) -> None:
        self.transport = transport
        self.register_map = register_map
        self.request_timeout = request_timeout
        self.reconnect_backoff = reconnect_backoff
        self.clock = clock or time.monotonic
        self._in_flight = threading.Lock()
        self._last_reconnect: Optional[float] = None
        self.last_snapshot: Optional[StatusSnapshot] = None

    def default_state(self) -> RobotState:
        return RobotState.default(self.register_map)

    def poll(self) -> StatusSnapshot:
        if not self.transport.is_connected() and not self._reconnect():
            return self._publish(StatusSnapshot(False, self.default_state(), "Not connected to robot"))

        if not self._in_flight.acquire(timeout=self.request_timeout):
            log.warning("Status poll still in flight, returning defaults")
            return StatusSnapshot(self.transport.is_connected(), self.default_state(),
                                  "Status request timed out")
        try:
            errors: List[str] = []
            connected = True
            steps, ok = self._read_block(self.register_map.steps, "step", errors)
            connected = connected and ok
            system, ok = self._read_block(self.register_map.system, "system", errors)
            connected = connected and ok
            snapshot = StatusSnapshot(connected, steps.merge(system), "; ".join(errors) or None)
        except Exception as e:
            # poll() never raises
            log.exception(f"Unexpected status poll failure: {e}")
            snapshot = StatusSnapshot(False, self.default_state(), str(e) or "Failed to read robot status")
        finally:
            self._in_flight.release()
        return self._publish(snapshot)

    def _reconnect(self) -> bool:
        now = self.clock()
        if self._last_reconnect is not None and now - self._last_reconnect < self.reconnect_backoff:
            return False
        self._last_reconnect = now
        try:
            ok = self.transport.open_connection()
        except BartenderError as e:
            log.warning(f"Reconnect for status poll failed: {e}")
            return False
        if ok:
            log.info("Robot connection re-established")
            self._last_reconnect = None
        return ok

    def _read_block(self, block: AddressBlock, label: str, errors: List[str]):
        """Returns (state, still_connected)."""
        try:
            bits = self.transport.read_bits_with_fallback(block.start, block.count, self.register_map.read_order)
            return RobotState.from_bits(block.names, bits), True
        except DeviceUnreachableError as e:
            errors.append(str(e))
            log.warning(f"Could not read {label} states ({block.start}-{block.end}): {e}")
            return RobotState({n: False for n in block.names}), False
        except BartenderError as e:
            errors.append(str(e))
            log.warning(f"Could not read {label} states ({block.start}-{block.end}): {e}")
            return RobotState({n: False for n in block.names}), True

    def _publish(self, snapshot: StatusSnapshot) -> StatusSnapshot:
        self.last_snapshot = snapshot
        return snapshot
