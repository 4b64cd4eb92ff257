"""
Orchestrators for Sarthi.

This module contains the orchestrators that coordinate
the flow between ports and adapters.
"""
from .orchestrator import SafetyOrchestrator

__all__ = ["SafetyOrchestrator"]
