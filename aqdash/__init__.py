"""
Air-Quality Dashboard Core Package
"""
__version__ = "0.3.0"

# Make main components easily importable
from aqdash.models import (
    AQICategory,
    AQIResult,
    DataSource,
    DeviceMode,
    HourlyAggregate,
    SensorReading,
    StableLocation,
)
from aqdash.aqi import AQIResolver
from aqdash.reconciler import PositionReconciler
from aqdash.pipeline import DashboardCore, SessionContext
from aqdash.config import config

__all__ = [
    "AQICategory",
    "AQIResult",
    "DataSource",
    "DeviceMode",
    "HourlyAggregate",
    "SensorReading",
    "StableLocation",
    "AQIResolver",
    "PositionReconciler",
    "DashboardCore",
    "SessionContext",
    "config",
]
