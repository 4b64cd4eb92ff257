"""
Home Assistant media player alarm for Sarthi.

This module implements AudioPlayerPort by looping an alert
sound on a Home Assistant media_player entity.
"""

from sarthi.adapters.homeassistant.client import HAClient
from sarthi.core.errors import ResourceUnavailableError
from sarthi.observability.logging_setup import get_logger

log = get_logger("sarthi.audio")

class HAMediaAlarmPlayer:
    """media_player 엔티티 경보음 재생기"""

    def __init__(self,
                 ha: HAClient,
                 *,
                 media_player_entity: str,
                 media_url: str,
                 media_type: str = "music"):
        """
        초기화합니다.

        Args:
            ha: Home Assistant 클라이언트
            media_player_entity: 미디어 플레이어 엔티티 ID
            media_url: 경보음 URL
            media_type: 미디어 콘텐츠 타입
        """
        self.ha = ha
        self.media_player_entity = media_player_entity
        self.media_url = media_url
        self.media_type = media_type

    async def play(self, loop: bool = True) -> None:
        """경보음을 재생합니다. 실패하면 ResourceUnavailableError."""
        ok = await self.ha.call_service(
            "media_player",
            "play_media",
            entity_id=self.media_player_entity,
            media_content_id=self.media_url,
            media_content_type=self.media_type,
        )
        if not ok:
            raise ResourceUnavailableError(f"{self.media_player_entity} 재생 실패")

        if loop:
            repeat_ok = await self.ha.call_service(
                "media_player",
                "repeat_set",
                entity_id=self.media_player_entity,
                repeat="one",
            )
            if not repeat_ok:
                log.warning(f"반복 재생 설정 실패 entity:{self.media_player_entity}")

        log.info(f"경보음 재생 시작 entity:{self.media_player_entity} loop:{loop}")

    async def stop(self) -> None:
        """경보음을 중지하고 반복 설정을 해제합니다."""
        await self.ha.call_service(
            "media_player",
            "media_stop",
            entity_id=self.media_player_entity,
        )
        await self.ha.call_service(
            "media_player",
            "repeat_set",
            entity_id=self.media_player_entity,
            repeat="off",
        )
        log.info(f"경보음 중지 entity:{self.media_player_entity}")
