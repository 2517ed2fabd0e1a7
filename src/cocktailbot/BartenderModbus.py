import logging
import threading
from typing import Any, Callable, List, Optional

# PyModbus >= 3.0.0
from pymodbus.client import ModbusTcpClient
from pymodbus.exceptions import ModbusException

from .BartenderBase import BartenderBase
from .errors import DeviceUnreachableError, ProtocolError
from .register_map import BitKind

log = logging.getLogger("cocktailbot.modbus")


class BartenderModbus(BartenderBase):
    """
    Bartender robot interface over Modbus TCP.

    Owns the single connection to the robot. The connection is (re)opened on
    demand and every request goes through one lock, so concurrent callers
    never race a reconnect or interleave requests on the socket.

    Args:
        host (str): Robot IP address or hostname.
        port (int): TCP port number (default 502).
        unit_id (int): Modbus unit id (default 1).
        timeout (float): Per-request timeout in seconds (default 3).
        retries (int): Transport-level retries per request (default 1).

    Raises:
        ValueError: If host is empty.
    """

    def __init__(self, host: str, port: int = 502, unit_id: int = 1,
                 timeout: float = 3.0, retries: int = 1,
                 client: Optional[ModbusTcpClient] = None) -> None:
        if not host:
            raise ValueError("host required for Modbus TCP")
        self.host = host
        self.port = port
        self.unit_id = unit_id
        self.timeout = timeout
        self._lock = threading.RLock()
        self.client = client or ModbusTcpClient(host, port=port, timeout=timeout, retries=retries)

    def open_connection(self) -> bool:
        """
        Open connection to the Modbus peer.

        Returns:
            bool: True if connection was successful, False otherwise.
        """
        with self._lock:
            if self.client.connected:
                return True
            log.info(f"Connecting to robot at {self.host}:{self.port} (unit {self.unit_id})")
            try:
                ok = bool(self.client.connect())
            except (ModbusException, OSError) as e:
                log.warning(f"Connection to {self.host}:{self.port} failed: {e}")
                return False
            if not ok:
                log.warning(f"Connection to {self.host}:{self.port} refused or timed out")
            return ok

    def close_connection(self) -> None:
        with self._lock:
            self.client.close()

    def is_connected(self) -> bool:
        return bool(self.client.connected)

    # ------------------ Low-level access ------------------
    def read_bits(self, kind: BitKind, start: int, count: int = 1) -> List[bool]:
        """
        Read bits with one Modbus function.

        Register families are read as whole words; a non-zero word is True.

        Raises:
            ProtocolError: If the device answers with an exception response.
            DeviceUnreachableError: If the robot cannot be reached.
        """
        fn = {
            BitKind.COIL: self.client.read_coils,
            BitKind.DISCRETE_INPUT: self.client.read_discrete_inputs,
            BitKind.HOLDING_REGISTER: self.client.read_holding_registers,
            BitKind.INPUT_REGISTER: self.client.read_input_registers,
        }[kind]
        what = f"read {kind.value} {start}+{count}"
        result = self._execute(what, fn, start, count=count)
        if kind in (BitKind.COIL, BitKind.DISCRETE_INPUT):
            bits = getattr(result, "bits", None)
            if bits is None or len(bits) < count:
                raise ProtocolError(f"Malformed response to {what}: {result}")
            return [bool(b) for b in bits[:count]]
        registers = getattr(result, "registers", None)
        if registers is None or len(registers) < count:
            raise ProtocolError(f"Malformed response to {what}: {result}")
        return [r != 0 for r in registers[:count]]

    def write_bit(self, kind: BitKind, address: int, value: bool) -> None:
        """
        Write a single bit (FC5 for coils, FC6 for holding registers).

        Raises:
            ProtocolError: If the device rejects the write or the family is read-only.
            DeviceUnreachableError: If the robot cannot be reached.
        """
        what = f"write {kind.value} {address}={int(bool(value))}"
        if kind == BitKind.COIL:
            self._execute(what, self.client.write_coil, address, bool(value))
        elif kind == BitKind.HOLDING_REGISTER:
            self._execute(what, self.client.write_register, address, 1 if value else 0)
        else:
            raise ProtocolError(f"Cannot {what}: read-only family", code=ProtocolError.ILLEGAL_FUNCTION)
        log.debug(what)

    def _execute(self, what: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            if not self.client.connected and not self.open_connection():
                raise DeviceUnreachableError(f"Robot at {self.host}:{self.port} is unreachable")
            try:
                result = fn(*args, device_id=self.unit_id, **kwargs)
            except (ModbusException, OSError) as e:
                # Drop the socket so the next request reconnects
                self.client.close()
                raise DeviceUnreachableError(f"Failed to {what}: {e}") from e

        if result.isError():
            code = getattr(result, "exception_code", None)
            if code is None:
                self.client.close()
                raise DeviceUnreachableError(f"Failed to {what}: {result}")
            raise ProtocolError(f"Device rejected {what} (exception code {code})", code=code)
        return result
