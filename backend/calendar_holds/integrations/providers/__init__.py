from calendar_holds.integrations.providers.base import BusyPeriod, BusySource
from calendar_holds.integrations.providers.native import NativeBusySource
from calendar_holds.integrations.providers.registry import BusySourceRegistry

__all__ = [
    "BusyPeriod",
    "BusySource",
    "BusySourceRegistry",
    "NativeBusySource",
]
