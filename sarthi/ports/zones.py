"""
Risk zone provider port interface.

This module defines the protocol for loading risk zones.
"""

from typing import List, Protocol
from sarthi.core.models import RiskZone

class RiskZoneProviderPort(Protocol):
    """위험 구역 제공 포트 인터페이스"""

    def get_zones(self) -> List[RiskZone]:
        """
        위험 구역 목록을 반환합니다.

        Returns:
            위험 구역 목록
        """
        ...
