"""
Exception hierarchy shared by every cocktailbot component.

pymodbus exceptions are translated into these at the transport boundary, so
callers only ever deal with the classes below.
"""

from typing import Optional


class BartenderError(Exception):
    """Base class for all cocktailbot errors."""


class DeviceUnreachableError(BartenderError):
    """The Modbus peer refused the connection, vanished or timed out."""


class ProtocolError(BartenderError):
    """
    The device answered with a Modbus exception response.

    Args:
        message (str): Human readable description.
        code (Optional[int]): Modbus exception code, if the device sent one.
    """

    ILLEGAL_FUNCTION = 1
    ILLEGAL_DATA_ADDRESS = 2
    ILLEGAL_DATA_VALUE = 3

    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code

    @property
    def is_fallback_candidate(self) -> bool:
        """True when another function code may succeed where this one failed."""
        return self.code in (self.ILLEGAL_FUNCTION, self.ILLEGAL_DATA_ADDRESS)


class ProtocolUnsupportedError(ProtocolError):
    """Every function code in a fallback chain was rejected by the device."""


class ValidationError(BartenderError):
    """A request was rejected before any device traffic."""


class NotFoundError(ValidationError):
    """Unknown cocktail id."""


class EmptySelectionError(ValidationError):
    """A custom order named no known ingredient."""


class ConfigError(ValidationError):
    """Configuration file or register map is inconsistent."""


class DeviceBusyError(BartenderError):
    """The robot is still preparing a drink."""
