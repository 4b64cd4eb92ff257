"""
Alerting port interfaces.

This module defines the protocols for the side effects of an
emergency session: alarm audio, push notifications and SOS dispatch.
"""

from typing import Protocol
from sarthi.core.models import EscalationSnapshot

class AudioPlayerPort(Protocol):
    """경보음 재생 포트 인터페이스"""

    async def play(self, loop: bool = True) -> None:
        """
        경보음을 재생합니다.

        Args:
            loop: 반복 재생 여부
        """
        ...

    async def stop(self) -> None:
        """재생 중인 경보음을 중지하고 리소스를 해제합니다."""
        ...

class NotificationPort(Protocol):
    """알림 포트 인터페이스"""

    async def notify(self, title: str, body: str) -> bool:
        """
        알림을 발송합니다 (best-effort).

        Args:
            title: 알림 제목
            body: 알림 본문

        Returns:
            발송 성공 여부
        """
        ...

class SOSDispatcherPort(Protocol):
    """SOS 발송 포트 인터페이스"""

    async def trigger(self, snapshot: EscalationSnapshot) -> str:
        """
        긴급 서비스에 SOS를 발송합니다.

        Args:
            snapshot: 발송 시점의 세션 스냅샷

        Returns:
            사용자에게 보여줄 확인 메시지
        """
        ...
