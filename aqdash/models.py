from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, NamedTuple, Optional

# Pollutants that take part in the overall index, in tie-break order.
POLLUTANTS = ("pm25", "pm10", "o3", "co")


class DeviceMode(Enum):
    """Operating mode reported by the device (wire values of the API)."""
    FIXED = 0
    MOBILE = 1

    @property
    def label(self) -> str:
        return "Mobile" if self is DeviceMode.MOBILE else "Fixed"


class DataSource(Enum):
    REALTIME = "REALTIME"
    HOURLY = "HOURLY"


class AQICategory(Enum):
    """EPA categories with their display label and colour."""
    GOOD = ("Good", "#10b981")
    MODERATE = ("Moderate", "#fbbf24")
    UNHEALTHY_FOR_SENSITIVE = ("Unhealthy for Sensitive Groups", "#f97316")
    UNHEALTHY = ("Unhealthy", "#ef4444")
    VERY_UNHEALTHY = ("Very Unhealthy", "#9333ea")
    HAZARDOUS = ("Hazardous", "#7f1d1d")

    def __init__(self, label: str, color: str):
        self.label = label
        self.color = color

    @classmethod
    def from_label(cls, value: str) -> "AQICategory":
        """Look up a category by name (``UNHEALTHY``) or label (``Unhealthy``)."""
        normalized = value.strip().replace(" ", "_").upper()
        for category in cls:
            if normalized in (category.name, category.label.replace(" ", "_").upper()):
                return category
        # Spelling used by some aggregators
        if normalized in ("UNHEALTHYFORSENSITIVE", "UNHEALTHY_SENSITIVE"):
            return cls.UNHEALTHY_FOR_SENSITIVE
        if normalized == "VERYUNHEALTHY":
            return cls.VERY_UNHEALTHY
        raise ValueError(f"Unknown AQI category: {value!r}")


class Coordinate(NamedTuple):
    lat: float
    lon: float


@dataclass(frozen=True)
class SensorReading:
    """
    One raw telemetry sample as returned by the sensor API.

    Pollutant values are ``None`` when the device did not report them;
    they are never silently turned into zero here.
    """
    device_id: str
    timestamp_utc: int
    mode: DeviceMode
    pollutants: Dict[str, Optional[float]] = field(default_factory=dict)

    # Raw "lat,lon" string, only meaningful in MOBILE mode
    raw_coordinate: Optional[str] = None

    # Ambient channels (display only)
    temperature_c: Optional[float] = None
    humidity_pct: Optional[float] = None
    noise_dba: Optional[float] = None
    battery_pct: Optional[float] = None

    def __post_init__(self):
        if not self.device_id:
            raise ValueError("device_id must not be empty")
        if not isinstance(self.mode, DeviceMode):
            raise TypeError(f"mode must be DeviceMode, got {type(self.mode)}")
        for name, value in self.pollutants.items():
            if value is not None and value < 0:
                raise ValueError(f"Negative concentration for {name}: {value}")

    def pollutant(self, name: str) -> Optional[float]:
        return self.pollutants.get(name)

    def __repr__(self):
        values = " ".join(f"{p}:{self.pollutants.get(p)}" for p in POLLUTANTS)
        return (f"[{self.device_id} @ {self.timestamp_utc}] {self.mode.label} "
                f"{values} GPS:{self.raw_coordinate}")


@dataclass(frozen=True)
class HourlyAggregate:
    """Upstream rollup of one device for one clock hour."""
    device_id: str
    hour_start_utc: int
    pollutant_averages: Dict[str, Optional[float]]
    data_completeness_pct: float
    quality_score: float
    aqi: int
    aqi_category: AQICategory
    aqi_pollutant: str


@dataclass(frozen=True)
class AQIResult:
    value: int
    category: AQICategory
    dominant_pollutant: str
    source: DataSource

    def __repr__(self):
        return (f"AQI {self.value} ({self.category.label}, "
                f"{self.dominant_pollutant}, {self.source.value})")


@dataclass(frozen=True)
class GpsSample:
    lat: float
    lon: float
    timestamp: Optional[int] = None

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lon": self.lon, "timestamp": self.timestamp}

    @classmethod
    def from_dict(cls, data: dict) -> "GpsSample":
        return cls(lat=float(data["lat"]), lon=float(data["lon"]),
                   timestamp=data.get("timestamp"))


@dataclass
class GpsBuffer:
    """Recent GPS fixes of one device plus the mode of its last reading."""
    samples: List[GpsSample] = field(default_factory=list)
    previous_mode: Optional[DeviceMode] = None

    def append(self, sample: GpsSample, capacity: int) -> None:
        self.samples.append(sample)
        if len(self.samples) > capacity:
            del self.samples[:-capacity]

    def clear(self) -> None:
        self.samples.clear()

    def coordinates(self) -> List[Coordinate]:
        return [Coordinate(s.lat, s.lon) for s in self.samples]

    def __len__(self) -> int:
        return len(self.samples)

    def to_dict(self) -> dict:
        return {
            "samples": [s.to_dict() for s in self.samples],
            "previous_mode": self.previous_mode.value if self.previous_mode is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "GpsBuffer":
        mode = data.get("previous_mode")
        return cls(
            samples=[GpsSample.from_dict(s) for s in data.get("samples", [])],
            previous_mode=DeviceMode(mode) if mode is not None else None,
        )


@dataclass(frozen=True)
class StableLocation:
    """Committed, jitter-reduced location of a device. Latest commit wins."""
    lat: float
    lon: float
    committed_at: int

    @property
    def coordinate(self) -> Coordinate:
        return Coordinate(self.lat, self.lon)

    def to_dict(self) -> dict:
        return {"lat": self.lat, "lon": self.lon, "committed_at": self.committed_at}

    @classmethod
    def from_dict(cls, data: dict) -> "StableLocation":
        return cls(lat=float(data["lat"]), lon=float(data["lon"]),
                   committed_at=int(data["committed_at"]))

    def __repr__(self):
        return f"StableLocation({self.lat:.6f},{self.lon:.6f} @ {self.committed_at})"


@dataclass(frozen=True)
class DeviceStatus:
    device_id: str
    online: bool
    last_seen: Optional[str] = None
