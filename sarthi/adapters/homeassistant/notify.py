"""
Home Assistant mobile push notifier for Sarthi.

This module implements NotificationPort on top of the
notify.mobile_app_* services of the companion app.
"""

from sarthi.adapters.homeassistant.client import HAClient
from sarthi.observability.logging_setup import get_logger

log = get_logger("sarthi.notify")

class HAMobileNotifier:
    """모바일 앱 푸시 알림 발송기"""

    def __init__(self, ha: HAClient, service: str):
        self.ha = ha
        self.service = service

    async def notify(self, title: str, body: str) -> bool:
        """긴급 알림을 발송합니다. 실패해도 예외를 던지지 않습니다."""
        # 소리 설정 (긴급 알림)
        data = {
            "push": {
                "sound": {"name": "default", "critical": 1, "volume": 1.0}
            },
            "ttl": 0,
            "priority": "high",
            "channel": "alarm_stream",
        }
        try:
            await self.ha.notify(self.service, title, body, data=data)
            return True
        except Exception as e:
            log.warning(f"위험 구역 알림 실패 service:{self.service} error:{str(e)}")
            return False
