import logging
from abc import ABC, abstractmethod
from typing import List, Sequence

from .errors import ProtocolError, ProtocolUnsupportedError
from .register_map import BitKind

log = logging.getLogger("cocktailbot.transport")


class BartenderBase(ABC):
    """
    Abstract base class for bartender robot transports.

    This class defines the interface that all transports must follow, whether
    they talk to the real robot over Modbus TCP or to the in-process simulator.
    One instance is shared by the dispatcher, the completion monitor and the
    status publisher.
    """

    @abstractmethod
    def open_connection(self) -> bool:
        """Open connection to the robot."""
        pass

    @abstractmethod
    def close_connection(self) -> None:
        """Close the robot connection."""
        pass

    @abstractmethod
    def is_connected(self) -> bool:
        """True while the connection is believed to be usable."""
        pass

    @abstractmethod
    def read_bits(self, kind: BitKind, start: int, count: int = 1) -> List[bool]:
        """
        Read ``count`` bits starting at ``start`` using one function family.

        Raises:
            ProtocolError: The device rejected the request.
            DeviceUnreachableError: No usable connection.
        """
        pass

    @abstractmethod
    def write_bit(self, kind: BitKind, address: int, value: bool) -> None:
        """
        Write a single bit using one function family.

        Raises:
            ProtocolError: The device rejected the request.
            DeviceUnreachableError: No usable connection.
        """
        pass

    # Fallback chains with default implementations
    def read_bits_with_fallback(self, start: int, count: int, kinds: Sequence[BitKind]) -> List[bool]:
        """
        Read bits, trying each function family in ``kinds`` until one works.

        Only "illegal function" and "illegal data address" answers move on to
        the next family; anything else is surfaced immediately.

        Args:
            start (int): First address.
            count (int): Number of bits.
            kinds (Sequence[BitKind]): Function families in order of preference.

        Returns:
            List[bool]: Bit values.

        Raises:
            ProtocolUnsupportedError: Every family was rejected.
        """
        last_error = None
        for kind in kinds:
            try:
                return self.read_bits(kind, start, count)
            except ProtocolError as e:
                if not e.is_fallback_candidate:
                    raise
                log.debug(f"Read {kind.value} @ {start}+{count} rejected (code {e.code}), trying next")
                last_error = e
        tried = ", ".join(k.value for k in kinds)
        raise ProtocolUnsupportedError(
            f"Device rejected every read function for {count} bit(s) at {start} (tried {tried})",
            code=last_error.code if last_error else None,
        )

    def write_bit_with_fallback(self, address: int, value: bool, kinds: Sequence[BitKind]) -> BitKind:
        """
        Write a bit, trying each function family in ``kinds`` until one works.

        Returns:
            BitKind: The family that accepted the write.

        Raises:
            ProtocolUnsupportedError: Every family was rejected.
        """
        last_error = None
        for kind in kinds:
            try:
                self.write_bit(kind, address, value)
                return kind
            except ProtocolError as e:
                if not e.is_fallback_candidate:
                    raise
                log.debug(f"Write {kind.value} @ {address} rejected (code {e.code}), trying next")
                last_error = e
        tried = ", ".join(k.value for k in kinds)
        raise ProtocolUnsupportedError(
            f"Device rejected every write function for address {address} (tried {tried})",
            code=last_error.code if last_error else None,
        )
