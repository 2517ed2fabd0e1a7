"""
Consumer-facing facade: trigger, trigger_custom, status, health.

Everything a UI or voice front end needs goes through Bartender; it owns the
one shared transport and wires the dispatcher, monitor and publisher to it.
"""

import logging
from typing import Callable, List, Optional, Sequence

from .BartenderBase import BartenderBase
from .BartenderModbus import BartenderModbus
from .BartenderSimulator import BartenderDevice, BartenderSimulator
from .config import BartenderConfig, TimingSettings
from .dispatcher import CommandDispatcher, CustomOrderResult, TriggerResult
from .errors import DeviceUnreachableError
from .monitor import CompletionMonitor
from .publisher import StatusPublisher
from .recipes import Cocktail, CocktailMenu, CustomDrinkRules
from .register_map import RegisterMap
from .scheduler import Scheduler, TaskHandle, ThreadScheduler
from .status import HealthReport, StatusSnapshot

log = logging.getLogger("cocktailbot.service")


class Bartender:
    """
    Coordinator for one bartender robot.

    Args:
        transport (BartenderBase): The single connection shared by all components.
        register_map (RegisterMap): Address layout of the robot.
        menu (CocktailMenu): Cocktail table.
        scheduler (Optional[Scheduler]): Timer source (default ThreadScheduler).
        timing (Optional[TimingSettings]): Poll intervals, timeouts, pacing.
        rules (Optional[CustomDrinkRules]): Custom drink rules.
    """

    def __init__(self, transport: BartenderBase, register_map: RegisterMap, menu: CocktailMenu,
                 scheduler: Optional[Scheduler] = None, timing: Optional[TimingSettings] = None,
                 rules: Optional[CustomDrinkRules] = None) -> None:
        self.transport = transport
        self.register_map = register_map
        self.menu = menu
        self.scheduler = scheduler or ThreadScheduler()
        self.timing = timing or TimingSettings()
        self.monitor = CompletionMonitor(
            transport, register_map, self.scheduler,
            poll_interval=self.timing.poll_interval,
            safety_timeout=self.timing.safety_timeout,
            write_delay=self.timing.write_delay,
        )
        self.dispatcher = CommandDispatcher(
            transport, register_map, menu, self.monitor, self.scheduler,
            write_delay=self.timing.write_delay, rules=rules,
        )
        self.publisher = StatusPublisher(
            transport, register_map,
            request_timeout=self.timing.request_timeout,
            reconnect_backoff=self.timing.reconnect_backoff,
            clock=self.scheduler.now,
        )

    @classmethod
    def from_config(cls, config: BartenderConfig, simulate: bool = False,
                    scheduler: Optional[Scheduler] = None) -> "Bartender":
        """
        Build a Bartender from configuration.

        Args:
            config (BartenderConfig): Loaded configuration.
            simulate (bool): Use the in-process simulator instead of Modbus TCP.
            scheduler (Optional[Scheduler]): Timer source shared with the simulator.
        """
        scheduler = scheduler or ThreadScheduler()
        if simulate:
            device = BartenderDevice(config.register_map, config.menu, scheduler,
                                     step_delay=config.simulator.step_delay,
                                     ready_delay=config.simulator.ready_delay)
            transport: BartenderBase = BartenderSimulator(device)
        else:
            d = config.device
            transport = BartenderModbus(d.host, port=d.port, unit_id=d.unit_id, timeout=d.timeout, retries=d.retries)
        return cls(transport, config.register_map, config.menu, scheduler, config.timing)

    # ------------------ Lifecycle ------------------
    def connect(self) -> bool:
        return self.transport.open_connection()

    def close(self) -> None:
        self.monitor.cancel_all()
        self.transport.close_connection()

    def __enter__(self) -> "Bartender":
        self.connect()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ------------------ Operations ------------------
    def _require_connection(self) -> None:
        if not self.transport.is_connected() and not self.transport.open_connection():
            raise DeviceUnreachableError("Robot connection lost. Please check network.")

    def trigger(self, cocktail_id: str) -> TriggerResult:
        """Order a cocktail from the menu. See CommandDispatcher.trigger_cocktail."""
        self.menu.get(cocktail_id)
        self._require_connection()
        return self.dispatcher.trigger_cocktail(cocktail_id)

    def trigger_custom(self, ingredients: Sequence[str]) -> CustomOrderResult:
        """Order a custom drink. See CommandDispatcher.trigger_custom."""
        self._require_connection()
        return self.dispatcher.trigger_custom(ingredients)

    def status(self) -> StatusSnapshot:
        return self.publisher.poll()

    def health(self) -> HealthReport:
        host = getattr(self.transport, "host", None)
        port = getattr(self.transport, "port", None)
        try:
            connected = self.transport.is_connected() or self.transport.open_connection()
        except DeviceUnreachableError as e:
            return HealthReport("unhealthy", False, host, port, str(e))
        if not connected:
            return HealthReport("unhealthy", False, host, port, "Not connected to robot")
        return HealthReport("healthy", True, host, port)

    def watch_status(self, callback: Callable[[StatusSnapshot], None],
                     interval: Optional[float] = None) -> TaskHandle:
        """
        Poll status on a timer and hand every snapshot to ``callback``.

        Polling stops by itself once drink_ready is observed; the caller may
        also cancel the returned handle at any time.
        """
        holder: List[TaskHandle] = []

        def tick():
            snapshot = self.status()
            callback(snapshot)
            if snapshot.state.drink_ready and holder:
                holder[0].cancel()

        handle = self.scheduler.call_every(interval or self.timing.status_interval, tick, name="status-watch")
        holder.append(handle)
        return handle

    def list_cocktails(self, category: Optional[str] = None) -> List[Cocktail]:
        if category:
            return self.menu.by_category(category)
        return list(self.menu)
