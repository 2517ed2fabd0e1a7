"""
Function-code support probe.

Field devices answer to an inconsistent subset of Modbus functions. This
tries every read family on one address so the register map's ``read_order``
can be set to what the deployment actually supports.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from .BartenderBase import BartenderBase
from .errors import BartenderError
from .register_map import BitKind

log = logging.getLogger("cocktailbot.probe")


@dataclass
class ProbeResult:
    kind: BitKind
    supported: bool
    values: List[bool] = field(default_factory=list)
    error: Optional[str] = None
    code: Optional[int] = None

    def describe(self) -> str:
        fc = self.kind.read_function_code
        if self.supported:
            return f"FC {fc} ({self.kind.value}): supported, values={[int(v) for v in self.values]}"
        suffix = f" (Modbus code {self.code})" if self.code is not None else ""
        return f"FC {fc} ({self.kind.value}): failed{suffix}: {self.error}"


def probe_function_codes(transport: BartenderBase, address: int, count: int = 1,
                         kinds: Sequence[BitKind] = tuple(BitKind)) -> List[ProbeResult]:
    """
    Try each read family on ``address``.

    Returns:
        List[ProbeResult]: One result per family, in ``kinds`` order.
    """
    results = []
    for kind in kinds:
        try:
            values = transport.read_bits(kind, address, count)
            results.append(ProbeResult(kind, True, values))
        except BartenderError as e:
            results.append(ProbeResult(kind, False, error=str(e), code=getattr(e, "code", None)))
        log.info(results[-1].describe())
    return results


def suggest_read_order(results: Sequence[ProbeResult]) -> List[BitKind]:
    """Supported families, bit families first (discrete inputs, coils, registers)."""
    preference = [BitKind.DISCRETE_INPUT, BitKind.COIL, BitKind.HOLDING_REGISTER, BitKind.INPUT_REGISTER]
    supported = {r.kind for r in results if r.supported}
    return [k for k in preference if k in supported]
