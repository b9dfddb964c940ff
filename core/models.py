from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union


class TideType(str, Enum):
    """Normalized tide event classifications."""
    HIGH = "High"
    LOW = "Low"
    EBB = "Ebb"        # falling tide
    FLOOD = "Flood"    # rising tide


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _epoch_ms(value: Optional[datetime]) -> Optional[int]:
    if value is None:
        return None
    return int(round(value.timestamp() * 1000))


@dataclass
class CanonicalObservation:
    """
    One wave/environmental observation.

    hs: wave height (m), tp: period (s), dp: wave direction (deg),
    sst / air: water and air temperature (C), ws: wind speed (m/s),
    wd: wind direction (deg). Every measurement may be None.
    """
    time: Optional[datetime]
    hs: Optional[float] = None
    tp: Optional[float] = None
    dp: Optional[float] = None
    sst: Optional[float] = None
    air: Optional[float] = None
    ws: Optional[float] = None
    wd: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "time": _iso(self.time),
            "t": _epoch_ms(self.time),
            "hs": self.hs,
            "tp": self.tp,
            "dp": self.dp,
            "sst": self.sst,
            "air": self.air,
            "ws": self.ws,
            "wd": self.wd,
        }


@dataclass
class CanonicalTideEvent:
    """Tide height sample, optionally marking a high/low extreme."""
    time: Optional[datetime]
    height: Optional[float] = None
    type: Optional[Union[TideType, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        kind = self.type.value if isinstance(self.type, TideType) else self.type
        return {
            "time": _iso(self.time),
            "t": _epoch_ms(self.time),
            "height": self.height,
            "type": kind,
        }
