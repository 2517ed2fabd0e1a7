import pytest

from cocktailbot.BartenderSimulator import BartenderDevice, BartenderSimulator
from cocktailbot.recipes import CocktailMenu
from cocktailbot.register_map import RegisterMap
from cocktailbot.scheduler import ManualScheduler


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def register_map():
    return RegisterMap.preset("extended")


@pytest.fixture
def menu():
    return CocktailMenu()


@pytest.fixture
def device(register_map, menu, scheduler):
    return BartenderDevice(register_map, menu, scheduler, step_delay=2.0, ready_delay=1.0)


@pytest.fixture
def transport(device):
    sim = BartenderSimulator(device)
    sim.open_connection()
    return sim
