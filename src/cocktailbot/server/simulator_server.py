#!/usr/bin/env python3
"""
Modbus TCP server that emulates the bartender robot.

Backed by a BartenderDevice: writing a trigger coil starts a timed step
sequence that ends with the drink_ready flag, exactly like the robot.

Usage:
  python -m cocktailbot.server.simulator_server --config bartender.yaml --port 5020

Compatible with pymodbus >= 3.10
"""

from __future__ import annotations

import argparse
import asyncio
import logging
from typing import List, Optional

from pymodbus.datastore import (
    ModbusDeviceContext,
    ModbusSequentialDataBlock,
    ModbusServerContext,
)
from pymodbus.server import StartAsyncTcpServer

from ..BartenderSimulator import BartenderDevice
from ..config import BartenderConfig, load_config
from ..scheduler import ThreadScheduler

log = logging.getLogger("cocktailbot.simulator_server")


class DelegatingDataBlock(ModbusSequentialDataBlock):
    """Datablock that proxies to the BartenderDevice.

    block_type: 'co' | 'di' | 'hr' | 'ir'
    """

    def __init__(self, device: BartenderDevice, block_type: str):
        # The device context hands us 1-based addresses
        super().__init__(1, [0] * device.size)
        self.device = device
        self.block_type = block_type

    def validate(self, address, count=1):
        # Out-of-range requests are answered with ILLEGAL_DATA_ADDRESS
        zaddr = int(address) - 1
        ok = zaddr >= 0 and count >= 1 and zaddr + count <= self.device.size
        if not ok:
            log.warning(f"Request {self.block_type} @ {zaddr}+{count} out of range")
        return ok

    def getValues(self, address, count=1):  # noqa: N802 (pymodbus API)
        zaddr = int(address) - 1
        if self.block_type == 'co':
            return self.device.get_coils(zaddr, count)
        if self.block_type == 'di':
            return self.device.get_discrete_inputs(zaddr, count)
        return self.device.get_holding_registers(zaddr, count)

    def setValues(self, address, values):  # noqa: N802 (pymodbus API)
        # Accept single scalar or list for FC5/FC6 and FC15/FC16
        if not isinstance(values, list):
            values = [values]
        zaddr = int(address) - 1

        if self.block_type == 'co':
            # Normalize 0xFF00/0x0000, 1/0, True/False to bools
            norm = [bool(v == 0xFF00 or v == 1 or v is True) for v in values]
            self.device.set_coils(zaddr, norm)
        elif self.block_type == 'hr':
            self.device.set_holding_registers(zaddr, [int(v) & 0xFFFF for v in values])
        # Read-only blocks ignore writes


def build_context(device: BartenderDevice, unit_id: int = 1) -> ModbusServerContext:
    store = ModbusDeviceContext(
        di=DelegatingDataBlock(device, 'di'),
        co=DelegatingDataBlock(device, 'co'),
        hr=DelegatingDataBlock(device, 'hr'),
        ir=DelegatingDataBlock(device, 'ir'),
    )
    return ModbusServerContext(devices={unit_id: store}, single=False)


async def run_server(config: BartenderConfig, host: Optional[str] = None, port: Optional[int] = None) -> None:
    sim = config.simulator
    host = host or sim.host
    port = port or sim.port
    rmap = config.register_map

    device = BartenderDevice(rmap, config.menu, ThreadScheduler(),
                             step_delay=sim.step_delay, ready_delay=sim.ready_delay)
    context = build_context(device, config.device.unit_id)

    log.info(f"Robot bartender simulator listening on {host}:{port} (unit {config.device.unit_id})")
    log.info(f"Steps: {rmap.steps.start}-{rmap.steps.end}, system: {rmap.system.start}-{rmap.system.end}, "
             f"triggers: {rmap.triggers.start}-{rmap.triggers.end} (custom {rmap.custom_trigger})")
    if rmap.ingredients is not None:
        log.info(f"Ingredients: {rmap.ingredients.start}-{rmap.ingredients.end}, start flag: {rmap.start_flag}")
    await StartAsyncTcpServer(context=context, address=(host, port))


def run_simulator_server(config: BartenderConfig, host: Optional[str] = None, port: Optional[int] = None) -> None:
    """Blocking entry point used by the CLI."""
    try:
        asyncio.run(run_server(config, host, port))
    except KeyboardInterrupt:
        log.info("Simulator stopped by user")


def parse_args(argv: Optional[List[str]] = None):
    p = argparse.ArgumentParser(description="Modbus TCP simulator of the bartender robot")
    p.add_argument("--config", "-c", help="Path to YAML config. If missing, a default is created.")
    p.add_argument("--host", help="Bind host (overrides config)")
    p.add_argument("--port", type=int, help="Bind port (overrides config)")
    p.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    return p.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> None:
    args = parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s %(message)s")
    config = load_config(args.config, create=bool(args.config))
    run_simulator_server(config, args.host, args.port)


if __name__ == "__main__":
    main()
