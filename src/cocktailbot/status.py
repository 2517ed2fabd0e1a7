from dataclasses import dataclass, field
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Sequence


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class RobotState:
    """
    Named-boolean snapshot of every step and system flag of the robot.
    """
    flags: Mapping[str, bool]

    def __post_init__(self) -> None:
        object.__setattr__(self, "flags", MappingProxyType(dict(self.flags)))

    @classmethod
    def from_bits(cls, names: Sequence[str], bits: Sequence[bool]) -> "RobotState":
        """
        Create a RobotState from a ranged bit read.

        Args:
            names (Sequence[str]): Flag names in address order.
            bits (Sequence[bool]): Values as returned by the device. Missing
                trailing bits read as False.

        Returns:
            RobotState: Parsed state object.
        """
        return cls({name: bool(bits[i]) if i < len(bits) else False for i, name in enumerate(names)})

    @classmethod
    def default(cls, register_map) -> "RobotState":
        names = list(register_map.steps.names) + list(register_map.system.names)
        return cls({name: False for name in names})

    def merge(self, other: "RobotState") -> "RobotState":
        return RobotState({**self.flags, **other.flags})

    def __getitem__(self, name: str) -> bool:
        return self.flags[name]

    @property
    def cup_holder(self) -> bool:
        return self.flags.get("cup_holder", False)

    @property
    def drink_ready(self) -> bool:
        return self.flags.get("drink_ready", False)

    @property
    def waiting_recipe(self) -> bool:
        return self.flags.get("waiting_recipe", False)

    def progress(self) -> int:
        """Share of raised step flags in percent; 100 once the drink is ready."""
        if self.drink_ready:
            return 100
        steps = [v for k, v in self.flags.items() if k not in ("cup_holder", "drink_ready", "waiting_recipe")]
        # drink_ready counts as the final step
        total = len(steps) + 1
        return round(sum(steps) * 100 / total)

    def to_dict(self) -> Dict[str, bool]:
        return dict(self.flags)


@dataclass
class StatusSnapshot:
    connected: bool
    state: RobotState
    error: Optional[str] = None
    timestamp: str = field(default_factory=_utcnow)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "connected": self.connected,
            "state": self.state.to_dict(),
            "progress": self.state.progress(),
            "timestamp": self.timestamp,
        }
        if self.error:
            out["error"] = self.error
        return out


@dataclass
class HealthReport:
    status: str
    connected: bool
    host: Optional[str] = None
    port: Optional[int] = None
    error: Optional[str] = None
    timestamp: str = field(default_factory=_utcnow)

    @property
    def healthy(self) -> bool:
        return self.status == "healthy"

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "status": self.status,
            "modbus": {"connected": self.connected, "host": self.host, "port": self.port},
            "timestamp": self.timestamp,
        }
        if self.error:
            out["modbus"]["error"] = self.error
        return out
