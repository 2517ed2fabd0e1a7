import pytest

from cocktailbot.BartenderSimulator import BartenderSimulator
from cocktailbot.errors import ProtocolError
from cocktailbot.monitor import CompletionMonitor, JobState
from cocktailbot.register_map import BitKind


class HookedSimulator(BartenderSimulator):
    """Runs a callback in the middle of the first write and can reject addresses."""

    def __init__(self, device, rejected=(), **kwargs):
        super().__init__(device, **kwargs)
        self.rejected = set(rejected)
        self.on_first_write = None

    def write_bit(self, kind, address, value):
        if self.on_first_write is not None:
            hook, self.on_first_write = self.on_first_write, None
            hook()
        if address in self.rejected:
            raise ProtocolError(f"Illegal data value at {address}", code=ProtocolError.ILLEGAL_DATA_VALUE)
        super().write_bit(kind, address, value)


def ready_reads(sim, register_map):
    return [r for r in sim.reads if r[1] == register_map.ready_address]


class TestCompletionMonitor:

    @pytest.fixture
    def done(self):
        return []

    @pytest.fixture
    def monitor(self, transport, register_map, scheduler, done):
        return CompletionMonitor(transport, register_map, scheduler,
                                 poll_interval=2.0, safety_timeout=120.0, write_delay=0.1,
                                 on_done=done.append)

    def test_reset_once_on_ready(self, monitor, transport, device, register_map, scheduler, done):
        device.set_coils(register_map.ready_address, [True])
        job = monitor.arm(100, "Mojito")
        assert monitor.has_active_job()

        scheduler.advance(2.0)

        assert job.state is JobState.DONE
        assert job.reset_reason == "ready"
        assert job.handle.cancelled
        assert transport.writes == [(a, False) for a in register_map.reset_addresses]
        assert done == [job]
        assert not monitor.has_active_job()
        assert scheduler.slept == pytest.approx(0.1 * (len(register_map.reset_addresses) - 1))

        scheduler.advance(20.0)
        assert len(transport.writes) == len(register_map.reset_addresses)
        assert done == [job]

    def test_reset_acknowledges_robot(self, monitor, device, register_map, scheduler):
        device.set_coils(100, [True])
        monitor.arm(100, "Mojito")
        scheduler.advance(16.0)
        assert not monitor.has_active_job()
        assert device.flag("drink_ready") is False
        assert device.flag("waiting_recipe") is True
        for address in register_map.reset_addresses:
            assert device.get_coils(address, 1) == [False]

    def test_keeps_polling_until_ready(self, monitor, transport, register_map, scheduler):
        job = monitor.arm(100, "Mojito")
        scheduler.advance(10.0)
        assert job.state is JobState.ARMED
        assert job.polls == 5
        assert ready_reads(transport, register_map) == [(BitKind.DISCRETE_INPUT, 91, 1)] * 5
        assert transport.writes == []

    def test_safety_timeout(self, monitor, transport, register_map, scheduler):
        job = monitor.arm(100, "Mojito")
        scheduler.advance(118.0)
        assert job.state is JobState.ARMED
        assert transport.writes == []

        scheduler.advance(2.0)
        assert job.state is JobState.DONE
        assert job.reset_reason == "timeout"
        assert job.polls == 60
        # the timeout tick resets without reading
        assert len(ready_reads(transport, register_map)) == 59
        assert transport.writes == [(a, False) for a in register_map.reset_addresses]

    def test_no_poll_while_resetting(self, device, register_map, scheduler):
        sim = HookedSimulator(device)
        monitor = CompletionMonitor(sim, register_map, scheduler)
        device.set_coils(register_map.ready_address, [True])
        job = monitor.arm(100, "Mojito")

        reads_during_reset = []

        def reentrant_tick():
            before = len(sim.reads)
            monitor._tick(job)
            reads_during_reset.append(len(sim.reads) - before)

        sim.on_first_write = reentrant_tick
        scheduler.advance(2.0)

        assert reads_during_reset == [0]
        assert job.polls == 1
        assert sim.writes == [(a, False) for a in register_map.reset_addresses]

    def test_failed_reset_write_continues(self, device, register_map, scheduler):
        sim = HookedSimulator(device, rejected=[101])
        monitor = CompletionMonitor(sim, register_map, scheduler)
        device.set_coils(register_map.ready_address, [True])
        job = monitor.arm(100, "Mojito")

        scheduler.advance(2.0)

        assert job.state is JobState.DONE
        assert job.reset_failures == [101]
        expected = [(a, False) for a in register_map.reset_addresses if a != 101]
        assert sim.writes == expected

    def test_poll_failure_retries_next_tick(self, monitor, transport, device, register_map, scheduler):
        job = monitor.arm(100, "Mojito")
        transport.set_online(False)
        scheduler.advance(2.0)
        assert job.state is JobState.ARMED
        assert job.polls == 1

        transport.set_online(True)
        device.set_coils(register_map.ready_address, [True])
        scheduler.advance(2.0)
        assert job.state is JobState.DONE

    def test_cancel_all(self, monitor, transport, scheduler):
        job = monitor.arm(100, "Mojito")
        monitor.cancel_all()
        scheduler.advance(200.0)
        assert job.handle.cancelled
        assert job.state is JobState.DONE
        assert transport.writes == []
        assert monitor.active_jobs == []
