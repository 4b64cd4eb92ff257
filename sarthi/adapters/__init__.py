"""
Adapters for Sarthi hexagonal architecture.

This module contains the concrete implementations of port interfaces
that handle external I/O and infrastructure concerns.
"""

from .homeassistant.client import HAClient
from .homeassistant.tracker import HADeviceTrackerSource
from .homeassistant.media import HAMediaAlarmPlayer
from .homeassistant.notify import HAMobileNotifier
from .sos.local import LocalAcknowledgmentSOS
from .mqtt_local.publisher_async import MqttSafetyEventPublisher

__all__ = [
    "HAClient", "HADeviceTrackerSource", "HAMediaAlarmPlayer",
    "HAMobileNotifier", "LocalAcknowledgmentSOS", "MqttSafetyEventPublisher",
]
