from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from pymodbus.exceptions import ConnectionException

from cocktailbot.BartenderBase import BartenderBase
from cocktailbot.BartenderModbus import BartenderModbus
from cocktailbot.BartenderSimulator import BartenderSimulator
from cocktailbot.errors import (DeviceUnreachableError, ProtocolError,
                                ProtocolUnsupportedError)
from cocktailbot.register_map import BitKind


def ok(**kwargs):
    return SimpleNamespace(isError=lambda: False, **kwargs)


def rejected(code):
    return SimpleNamespace(isError=lambda: True, exception_code=code)


class ScriptedTransport(BartenderBase):
    """Answers each family from a dict of results or exceptions."""

    def __init__(self, answers):
        self.answers = answers
        self.calls = []

    def open_connection(self):
        return True

    def close_connection(self):
        pass

    def is_connected(self):
        return True

    def read_bits(self, kind, start, count=1):
        self.calls.append(kind)
        answer = self.answers[kind]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def write_bit(self, kind, address, value):
        self.calls.append(kind)
        answer = self.answers[kind]
        if isinstance(answer, Exception):
            raise answer


# ---------- Fallback chains ----------
class TestFallback:

    def test_read_falls_back_to_coils(self, device):
        sim = BartenderSimulator(device, supported_reads=(BitKind.COIL,))
        bits = sim.read_bits_with_fallback(90, 3, [BitKind.DISCRETE_INPUT, BitKind.COIL])
        assert bits == [True, False, True]
        assert sim.reads == [(BitKind.COIL, 90, 3)]

    def test_read_all_rejected(self, device):
        sim = BartenderSimulator(device, supported_reads=())
        with pytest.raises(ProtocolUnsupportedError) as exc:
            sim.read_bits_with_fallback(91, 1, [BitKind.DISCRETE_INPUT, BitKind.COIL, BitKind.HOLDING_REGISTER])
        assert isinstance(exc.value, ProtocolError)
        assert exc.value.code == ProtocolError.ILLEGAL_FUNCTION

    def test_illegal_data_address_also_falls_back(self):
        t = ScriptedTransport({
            BitKind.DISCRETE_INPUT: ProtocolError("no such input", code=2),
            BitKind.COIL: [True],
        })
        assert t.read_bits_with_fallback(91, 1, [BitKind.DISCRETE_INPUT, BitKind.COIL]) == [True]
        assert t.calls == [BitKind.DISCRETE_INPUT, BitKind.COIL]

    def test_other_codes_do_not_fall_back(self):
        t = ScriptedTransport({
            BitKind.DISCRETE_INPUT: ProtocolError("bad value", code=3),
            BitKind.COIL: [True],
        })
        with pytest.raises(ProtocolError) as exc:
            t.read_bits_with_fallback(91, 1, [BitKind.DISCRETE_INPUT, BitKind.COIL])
        assert not isinstance(exc.value, ProtocolUnsupportedError)
        assert t.calls == [BitKind.DISCRETE_INPUT]

    def test_unreachable_is_not_a_fallback(self):
        t = ScriptedTransport({
            BitKind.DISCRETE_INPUT: DeviceUnreachableError("gone"),
            BitKind.COIL: [True],
        })
        with pytest.raises(DeviceUnreachableError):
            t.read_bits_with_fallback(91, 1, [BitKind.DISCRETE_INPUT, BitKind.COIL])

    def test_write_falls_back_to_holding_register(self, device):
        sim = BartenderSimulator(device, supported_writes=(BitKind.HOLDING_REGISTER,))
        kind = sim.write_bit_with_fallback(132, True, [BitKind.COIL, BitKind.HOLDING_REGISTER])
        assert kind == BitKind.HOLDING_REGISTER
        assert sim.writes == [(132, True)]
        assert device.get_coils(132, 1) == [True]

    def test_write_all_rejected(self, device):
        sim = BartenderSimulator(device, supported_writes=())
        with pytest.raises(ProtocolUnsupportedError):
            sim.write_bit_with_fallback(100, True, [BitKind.COIL, BitKind.HOLDING_REGISTER])
        assert sim.writes == []


# ---------- Modbus TCP transport ----------
class TestBartenderModbus:

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.connected = True
        return client

    @pytest.fixture
    def robot(self, client):
        return BartenderModbus("192.168.1.50", port=502, unit_id=1, client=client)

    def test_host_required(self):
        with pytest.raises(ValueError):
            BartenderModbus("")

    def test_read_coils(self, robot, client):
        client.read_coils.return_value = ok(bits=[True, False, True, False, False, False, False, False])
        assert robot.read_bits(BitKind.COIL, 90, 3) == [True, False, True]
        client.read_coils.assert_called_once_with(90, count=3, device_id=1)

    def test_read_holding_registers_as_bits(self, robot, client):
        client.read_holding_registers.return_value = ok(registers=[0, 1, 7])
        assert robot.read_bits(BitKind.HOLDING_REGISTER, 90, 3) == [False, True, True]

    def test_type_error_is_not_retried(self, robot, client):
        client.write_coil.side_effect = TypeError("bad argument")
        with pytest.raises(TypeError):
            robot.write_bit(BitKind.COIL, 100, True)
        client.write_coil.assert_called_once_with(100, True, device_id=1)

    def test_exception_response_becomes_protocol_error(self, robot, client):
        client.read_discrete_inputs.return_value = rejected(1)
        with pytest.raises(ProtocolError) as exc:
            robot.read_bits(BitKind.DISCRETE_INPUT, 91)
        assert exc.value.code == 1
        assert exc.value.is_fallback_candidate
        client.close.assert_not_called()

    def test_fallback_through_real_client(self, robot, client):
        client.read_discrete_inputs.return_value = rejected(1)
        client.read_coils.return_value = ok(bits=[True] + [False] * 7)
        assert robot.read_bits_with_fallback(91, 1, [BitKind.DISCRETE_INPUT, BitKind.COIL]) == [True]

    def test_malformed_response(self, robot, client):
        client.read_coils.return_value = ok(bits=[])
        with pytest.raises(ProtocolError, match="Malformed"):
            robot.read_bits(BitKind.COIL, 90, 3)

    def test_error_without_code_is_unreachable(self, robot, client):
        client.read_coils.return_value = SimpleNamespace(isError=lambda: True)
        with pytest.raises(DeviceUnreachableError):
            robot.read_bits(BitKind.COIL, 90)
        client.close.assert_called_once()

    def test_modbus_exception_drops_connection(self, robot, client):
        client.write_coil.side_effect = ConnectionException("socket closed")
        with pytest.raises(DeviceUnreachableError):
            robot.write_bit(BitKind.COIL, 100, True)
        client.close.assert_called_once()

    def test_reconnects_on_demand(self, robot, client):
        client.connected = False
        client.connect.return_value = False
        with pytest.raises(DeviceUnreachableError, match="unreachable"):
            robot.read_bits(BitKind.COIL, 90)
        client.connect.assert_called_once()
        client.read_coils.assert_not_called()

    def test_open_connection_swallows_socket_errors(self, robot, client):
        client.connected = False
        client.connect.side_effect = OSError("no route to host")
        assert robot.open_connection() is False

    def test_write_coil(self, robot, client):
        client.write_coil.return_value = ok()
        robot.write_bit(BitKind.COIL, 100, True)
        client.write_coil.assert_called_once_with(100, True, device_id=1)

    def test_write_holding_register(self, robot, client):
        client.write_register.return_value = ok()
        robot.write_bit(BitKind.HOLDING_REGISTER, 100, False)
        client.write_register.assert_called_once_with(100, 0, device_id=1)

    def test_write_read_only_family(self, robot, client):
        with pytest.raises(ProtocolError) as exc:
            robot.write_bit(BitKind.DISCRETE_INPUT, 100, True)
        assert exc.value.code == ProtocolError.ILLEGAL_FUNCTION
        client.write_coil.assert_not_called()
