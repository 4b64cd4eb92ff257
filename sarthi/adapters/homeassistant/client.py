"""
Home Assistant API client for Sarthi.

This module provides a client for the Home Assistant REST API,
used to read device tracker positions, drive media players and
send mobile push notifications.
"""

import aiohttp
from typing import Any, Dict, Optional
from sarthi.common.retry import retry_with_backoff
from sarthi.core.errors import PermissionDeniedError
from sarthi.observability.logging_setup import get_logger

log = get_logger("sarthi.ha")

class HAClient:
    """Home Assistant API 클라이언트"""

    def __init__(self,
                 base_url: str,
                 token: str,
                 timeout: int = 30,
                 max_retries: int = 3):
        """
        초기화합니다.

        Args:
            base_url: Home Assistant API 기본 URL
            token: Home Assistant 장기 토큰
            timeout: 요청 타임아웃 (초)
            max_retries: 요청 재시도 횟수
        """
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.max_retries = max_retries
        self.session: Optional[aiohttp.ClientSession] = None

        log.info("Home Assistant 클라이언트 초기화됨")

    async def __aenter__(self):
        """비동기 컨텍스트 매니저 진입"""
        self.session = aiohttp.ClientSession(
            headers={
                "Authorization": f"Bearer {self.token}",
                "Content-Type": "application/json"
            },
            timeout=aiohttp.ClientTimeout(total=self.timeout)
        )
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """비동기 컨텍스트 매니저 종료"""
        if self.session:
            await self.session.close()
            self.session = None

    async def _make_request(self, method: str, endpoint: str, **kwargs) -> Any:
        """
        API 요청을 수행합니다.

        Args:
            method: HTTP 메서드
            endpoint: API 엔드포인트
            **kwargs: 추가 요청 매개변수

        Returns:
            응답 데이터 (404이면 None)

        Raises:
            PermissionDeniedError: 토큰이 거부된 경우 (401/403)
        """
        if not self.session:
            raise RuntimeError("세션이 초기화되지 않았습니다. async with를 사용하세요.")

        url = f"{self.base_url}{endpoint}"

        async def _request():
            async with self.session.request(method, url, **kwargs) as response:
                if response.status in (401, 403):
                    raise PermissionDeniedError(f"{method} {endpoint} -> {response.status}")
                if response.status == 404:
                    return None
                response.raise_for_status()
                return await response.json()

        return await retry_with_backoff(
            _request,
            max_retries=self.max_retries,
            no_retry=(PermissionDeniedError,)
        )

    async def get_state(self, entity_id: str) -> Optional[Dict]:
        """
        엔티티 상태를 가져옵니다.

        Args:
            entity_id: 엔티티 ID (예: "device_tracker.phone")

        Returns:
            상태 딕셔너리 또는 None (엔티티 없음)

        Raises:
            PermissionDeniedError: 토큰이 거부된 경우
        """
        data = await self._make_request("GET", f"/api/states/{entity_id}")
        if data is None:
            log.warning(f"엔티티를 찾을 수 없습니다 entity_id:{entity_id}")
        return data

    async def call_service(self, domain: str, service: str, **kwargs) -> bool:
        """
        Home Assistant 서비스를 호출합니다.

        Args:
            domain: 서비스 도메인 (예: "media_player")
            service: 서비스 이름 (예: "play_media")
            **kwargs: 서비스 매개변수

        Returns:
            호출 성공 여부
        """
        try:
            await self._make_request(
                "POST",
                f"/api/services/{domain}/{service}",
                json=kwargs
            )

            log.info(f"서비스 호출 성공 domain:{domain} service:{service}")
            return True

        except Exception as e:
            log.error(f"서비스 호출 실패 domain:{domain} service:{service} error:{str(e)}")
            return False

    async def notify(self, service: str, title: Optional[str], message: str,
                     data: Optional[Dict] = None) -> Any:
        """
        모바일 앱에 푸시 알림 또는 명령 메시지를 발송합니다.

        Args:
            service: notify 서비스 이름 (예: "mobile_app_phone")
            title: 알림 제목 (명령 메시지는 None)
            message: 알림 본문 또는 명령 (예: "command_high_accuracy_mode")
            data: 추가 데이터 (명령 인자 등)
        """
        payload: Dict[str, Any] = {"message": message}
        if title:
            payload["title"] = title
        if data:
            payload["data"] = data

        try:
            result = await self._make_request(
                "POST", f"/api/services/notify/{service}", json=payload
            )
            log.info(f"푸시 알림 발송 성공 service:{service} title:{title}")
            return result
        except Exception as e:
            log.error(f"푸시 알림 발송 실패 service:{service} error:{str(e)}")
            raise
