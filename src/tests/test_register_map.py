import pytest

from cocktailbot.errors import ConfigError
from cocktailbot.register_map import PRESETS, AddressBlock, BitKind, RegisterMap


# ---------- BitKind ----------
def test_bitkind_function_codes():
    assert BitKind.COIL.read_function_code == 1
    assert BitKind.DISCRETE_INPUT.read_function_code == 2
    assert BitKind.HOLDING_REGISTER.read_function_code == 3
    assert BitKind.INPUT_REGISTER.read_function_code == 4
    assert BitKind.COIL.write_function_code == 5
    assert BitKind.HOLDING_REGISTER.write_function_code == 6
    assert not BitKind.DISCRETE_INPUT.writable
    assert not BitKind.INPUT_REGISTER.writable


# ---------- AddressBlock ----------
def test_address_block_lookup():
    block = AddressBlock(90, ("cup_holder", "drink_ready", "waiting_recipe"))
    assert block.count == 3
    assert block.end == 92
    assert block.addresses == [90, 91, 92]
    assert block.address_of("drink_ready") == 91
    assert 92 in block
    assert 93 not in block
    with pytest.raises(KeyError):
        block.address_of("mint")


# ---------- Presets ----------
class TestPresets:

    def test_extended_layout(self):
        rmap = RegisterMap.preset("extended")
        assert rmap.steps.start == 32 and rmap.steps.end == 41
        assert rmap.ready_address == 91
        assert rmap.busy_address == 92
        assert rmap.custom_trigger == 107
        assert rmap.start_flag == 96
        assert rmap.ingredient_address("mint") == 132
        assert rmap.ingredient_address("white-rum") == 137
        assert rmap.ingredient_address("straw") == 143
        assert rmap.read_order == [BitKind.DISCRETE_INPUT, BitKind.COIL, BitKind.HOLDING_REGISTER]
        assert rmap.write_order == [BitKind.COIL, BitKind.HOLDING_REGISTER]

    def test_extended_reset_set(self):
        rmap = RegisterMap.preset()
        expected = list(range(100, 108)) + list(range(132, 144)) + [96]
        assert rmap.reset_addresses == expected

    def test_classic_layout(self):
        rmap = RegisterMap.preset("classic")
        assert rmap.steps.count == 9
        assert "mint" not in rmap.steps.names
        assert rmap.custom_trigger == 106
        assert rmap.ingredients is None
        assert rmap.start_flag is None
        assert rmap.reset_addresses == list(range(100, 107))
        with pytest.raises(KeyError):
            rmap.ingredient_address("mint")

    def test_every_preset_validates(self):
        for name in PRESETS:
            assert RegisterMap.preset(name).validate()

    def test_step_for_ingredient(self):
        rmap = RegisterMap.preset()
        assert rmap.step_for_ingredient("white-rum") == "white_rum"
        assert rmap.step_for_ingredient("mint") == "mint"
        assert rmap.step_for_ingredient("straw") is None


# ---------- Overrides and validation ----------
def test_partial_block_override_keeps_names():
    rmap = RegisterMap.from_dict({"system": {"start": 80}})
    assert rmap.system.names == ("cup_holder", "drink_ready", "waiting_recipe")
    assert rmap.ready_address == 81


def test_override_read_order():
    rmap = RegisterMap.from_dict({"preset": "classic", "read_order": ["coil"]})
    assert rmap.read_order == [BitKind.COIL]


def test_overlapping_blocks_rejected():
    with pytest.raises(ConfigError, match="overlaps"):
        RegisterMap.from_dict({"system": {"start": 40}})


def test_custom_trigger_outside_block_rejected():
    with pytest.raises(ConfigError, match="custom trigger"):
        RegisterMap.from_dict({"custom_trigger": 120})


def test_start_flag_collision_rejected():
    with pytest.raises(ConfigError, match="start flag"):
        RegisterMap.from_dict({"start_flag": 101})


def test_read_only_write_order_rejected():
    with pytest.raises(ConfigError, match="cannot be written"):
        RegisterMap.from_dict({"write_order": ["discrete_input"]})


def test_unknown_function_family_rejected():
    with pytest.raises(ConfigError):
        RegisterMap.from_dict({"read_order": ["telepathy"]})


def test_unknown_preset_rejected():
    with pytest.raises(ConfigError, match="unknown register map preset"):
        RegisterMap.from_dict({"preset": "v9"})


def test_system_block_names_enforced():
    with pytest.raises(ConfigError, match="system block"):
        RegisterMap.from_dict({"system": {"names": ["a", "b", "c"]}})


def test_to_dict_feeds_back_into_from_dict():
    rmap = RegisterMap.preset("classic")
    again = RegisterMap.from_dict(rmap.to_dict())
    assert again == rmap
