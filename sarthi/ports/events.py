"""
Safety event port interface.

This module defines the protocol for publishing safety status
and check-in records to outside consumers.
"""

from typing import Protocol
from sarthi.core.models import SafetyCheckIn, SafetyStatus

class SafetyEventPort(Protocol):
    """안전 이벤트 발행 포트 인터페이스"""

    async def publish_status(self, status: SafetyStatus) -> None:
        """
        안전 상태를 발행합니다.

        Args:
            status: 현재 안전 상태
        """
        ...

    async def publish_checkin(self, checkin: SafetyCheckIn) -> None:
        """
        체크인 기록을 발행합니다.

        Args:
            checkin: 세션 종료 시의 체크인 기록
        """
        ...
