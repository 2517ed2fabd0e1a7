import pytest

from cocktailbot.BartenderSimulator import BartenderDevice, BartenderSimulator
from cocktailbot.errors import DeviceUnreachableError, ProtocolError
from cocktailbot.register_map import BitKind, RegisterMap


class TestBartenderDevice:
    """Robot state machine driven by the virtual clock."""

    def test_initial_flags(self, device):
        assert device.flag("cup_holder") is True
        assert device.flag("waiting_recipe") is True
        assert device.flag("drink_ready") is False
        assert not device.busy

    def test_mojito_sequence(self, device, scheduler):
        device.set_coils(100, [True])
        assert device.busy
        assert device.flag("waiting_recipe") is False

        scheduler.advance(2.0)
        assert device.flag("muddling") is True
        assert device.flag("syrup") is False

        scheduler.advance(10.0)
        for step in ("muddling", "syrup", "lime", "ice", "white_rum", "soda"):
            assert device.flag(step) is True
        assert device.flag("drink_ready") is False

        scheduler.advance(1.0)
        assert device.flag("drink_ready") is True
        assert not device.busy

    def test_acknowledge_clears_ready_and_steps(self, device, scheduler):
        device.set_coils(103, [True])
        scheduler.advance(5.0)
        assert device.flag("drink_ready") is True

        device.set_coils(103, [False])
        assert device.flag("drink_ready") is False
        assert device.flag("ice") is False
        assert device.flag("whiskey") is False
        assert device.flag("waiting_recipe") is True

    def test_custom_slot_follows_ingredient_flags(self, device, register_map, scheduler):
        for name in ("mint", "ice", "soda", "stirring"):
            device.set_coils(register_map.ingredient_address(name), [True])
        device.set_coils(register_map.custom_trigger, [True])

        scheduler.advance(6.0)
        assert device.flag("mint") is True
        assert device.flag("ice") is True
        assert device.flag("soda") is True
        assert device.flag("whiskey") is False
        scheduler.advance(1.0)
        assert device.flag("drink_ready") is True

    def test_unknown_trigger_runs_default_sequence(self, device, scheduler):
        device.set_coils(105, [True])
        scheduler.advance(5.0)
        assert device.flag("ice") is True
        assert device.flag("white_rum") is True
        assert device.flag("drink_ready") is True

    def test_retrigger_restarts_sequence(self, device, scheduler):
        device.set_coils(100, [True])
        scheduler.advance(3.0)
        device.set_coils(103, [True])
        assert device.flag("muddling") is False
        scheduler.advance(5.0)
        assert device.flag("drink_ready") is True
        assert device.flag("muddling") is False

    def test_register_views_mirror_coils(self, device):
        assert device.get_discrete_inputs(90, 3) == [True, False, True]
        assert device.get_holding_registers(90, 3) == [1, 0, 1]
        device.set_holding_registers(132, [5])
        assert device.get_coils(132, 1) == [True]

    def test_out_of_range(self, device):
        with pytest.raises(ProtocolError) as exc:
            device.get_coils(device.size, 1)
        assert exc.value.code == ProtocolError.ILLEGAL_DATA_ADDRESS

    def test_classic_map(self, menu, scheduler):
        device = BartenderDevice(RegisterMap.preset("classic"), menu, scheduler)
        assert device.size == 107
        device.set_coils(104, [True])
        scheduler.advance(7.0)
        assert device.flag("coke") is True
        assert device.flag("drink_ready") is True


class TestBartenderSimulator:

    def test_history(self, device):
        sim = BartenderSimulator(device)
        sim.write_bit(BitKind.COIL, 132, True)
        sim.read_bits(BitKind.DISCRETE_INPUT, 132, 1)
        assert sim.writes == [(132, True)]
        assert sim.reads == [(BitKind.DISCRETE_INPUT, 132, 1)]

    def test_offline(self, device):
        sim = BartenderSimulator(device)
        sim.set_online(False)
        assert sim.open_connection() is False
        with pytest.raises(DeviceUnreachableError):
            sim.read_bits(BitKind.COIL, 90, 3)
        sim.set_online(True)
        assert sim.read_bits(BitKind.COIL, 90, 3) == [True, False, True]
        assert sim.is_connected()

    def test_unsupported_family(self, device):
        sim = BartenderSimulator(device, supported_reads=(BitKind.COIL,))
        with pytest.raises(ProtocolError) as exc:
            sim.read_bits(BitKind.DISCRETE_INPUT, 91)
        assert exc.value.code == ProtocolError.ILLEGAL_FUNCTION

    def test_read_only_write(self, device):
        sim = BartenderSimulator(device, supported_writes=tuple(BitKind))
        with pytest.raises(ProtocolError):
            sim.write_bit(BitKind.INPUT_REGISTER, 100, True)
