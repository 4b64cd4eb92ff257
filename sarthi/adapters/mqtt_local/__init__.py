"""
Local MQTT publishing adapter for Sarthi.

This module provides the implementation of SafetyEventPort
for publishing safety events to local MQTT brokers.
"""

from .publisher_async import MqttSafetyEventPublisher

__all__ = ["MqttSafetyEventPublisher"]
