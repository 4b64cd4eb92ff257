"""
Core domain models and pure functions for Sarthi.

This module contains the domain models and pure business logic
that are independent of external I/O and infrastructure concerns.
"""

from .models import (
    Position, RiskZone, RiskLevel, SafetyStatus,
    EscalationPhase, EscalationSnapshot, SafetyCheckIn
)
from .geofence import evaluate_safety, danger_radius_km, DEFAULT_DANGER_RADIUS_KM

__all__ = [
    "Position", "RiskZone", "RiskLevel", "SafetyStatus",
    "EscalationPhase", "EscalationSnapshot", "SafetyCheckIn",
    "evaluate_safety", "danger_radius_km", "DEFAULT_DANGER_RADIUS_KM",
]
