"""Sarthi geofencing and emergency escalation core."""

__version__ = "0.1.0"
