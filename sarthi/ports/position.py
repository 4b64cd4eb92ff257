"""
Position source port interface.

This module defines the protocols for continuous position sources
and the one-shot location capability check.
"""

from typing import Any, Callable, Protocol
from sarthi.core.models import Position

PositionCallback = Callable[[Position], None]
ErrorCallback = Callable[[Exception], None]

class PositionSourcePort(Protocol):
    """연속 위치 소스 포트 인터페이스"""

    def subscribe(self,
                  on_update: PositionCallback,
                  on_error: ErrorCallback,
                  *,
                  high_accuracy: bool = True,
                  timeout_sec: float = 10.0,
                  maximum_age_sec: float = 5.0) -> Any:
        """
        위치 스트림을 구독합니다.

        Args:
            on_update: 위치 샘플마다 호출되는 콜백
            on_error: 오류 발생 시 호출되는 콜백
            high_accuracy: 고정밀 모드 여부
            timeout_sec: fix 대기 제한 시간 (초)
            maximum_age_sec: 캐시된 fix의 최대 허용 나이 (초)

        Returns:
            구독 핸들
        """
        ...

    def unsubscribe(self, handle: Any) -> None:
        """
        구독을 해제합니다. 해제 이후에는 콜백이 호출되지 않아야 합니다.

        Args:
            handle: subscribe가 반환한 핸들
        """
        ...

class LocationCapabilityPort(Protocol):
    """위치 기능 확인 포트 인터페이스"""

    async def is_available(self) -> bool:
        """
        플랫폼에 위치 기능이 있고 권한이 허용되었는지 확인합니다.

        Returns:
            사용 가능 여부
        """
        ...
