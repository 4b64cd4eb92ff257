"""
Port interfaces for Sarthi hexagonal architecture.

This module defines the port interfaces (Protocols) that define
the contracts between the core domain and external adapters.
"""

from .position import PositionSourcePort, LocationCapabilityPort
from .zones import RiskZoneProviderPort
from .alerting import AudioPlayerPort, NotificationPort, SOSDispatcherPort
from .events import SafetyEventPort

__all__ = [
    "PositionSourcePort", "LocationCapabilityPort", "RiskZoneProviderPort",
    "AudioPlayerPort", "NotificationPort", "SOSDispatcherPort", "SafetyEventPort",
]
