"""
Home Assistant device tracker position source for Sarthi.

This module implements PositionSourcePort and LocationCapabilityPort
by polling a device_tracker entity through the Home Assistant API.
"""

import asyncio
import itertools
from datetime import datetime, timezone
from typing import Dict, Optional, Set
from pydantic import ValidationError
from sarthi.adapters.homeassistant.client import HAClient
from sarthi.core.errors import PermissionDeniedError, SourceTimeoutError
from sarthi.core.models import Position
from sarthi.ports.position import ErrorCallback, PositionCallback
from sarthi.observability.logging_setup import get_logger

log = get_logger("sarthi.tracker")

def parse_tracker_state(state: Dict) -> Optional[Position]:
    """device_tracker 상태에서 Position을 만듭니다. 좌표가 없으면 None."""
    attrs = state.get("attributes", {}) if state else {}
    if "latitude" not in attrs or "longitude" not in attrs:
        return None

    timestamp = None
    # last_reported는 값 변화 없이 보고만 된 경우에도 갱신됨
    raw_ts = state.get("last_reported") or state.get("last_updated")
    if raw_ts:
        try:
            timestamp = datetime.fromisoformat(str(raw_ts).replace("Z", "+00:00"))
        except ValueError:
            log.warning(f"위치 타임스탬프 파싱 실패 value:{raw_ts}")

    return Position(
        lat=float(attrs["latitude"]),
        lng=float(attrs["longitude"]),
        accuracy=attrs.get("gps_accuracy"),
        timestamp=timestamp,
    )

class HADeviceTrackerSource:
    """device_tracker 엔티티 폴링 위치 소스"""

    def __init__(self,
                 ha: HAClient,
                 entity_id: str,
                 *,
                 poll_interval_sec: float = 5.0,
                 command_service: Optional[str] = None):
        """
        초기화합니다.

        Args:
            ha: Home Assistant 클라이언트
            entity_id: device_tracker 엔티티 ID
            poll_interval_sec: 폴링 간격 (초)
            command_service: 고정밀 모드/위치 갱신 명령을 보낼 모바일 notify 서비스
        """
        self.ha = ha
        self.entity_id = entity_id
        self.poll_interval_sec = poll_interval_sec
        self.command_service = command_service

        self._ids = itertools.count(1)
        self._tasks: Dict[int, asyncio.Task] = {}
        self._background: Set[asyncio.Task] = set()
        self._high_accuracy_on = False

        log.info(f"위치 소스 초기화됨 entity:{entity_id} interval:{poll_interval_sec}s")

    async def is_available(self) -> bool:
        """추적 엔티티가 존재하고 좌표를 제공하는지 확인합니다."""
        try:
            state = await self.ha.get_state(self.entity_id)
        except PermissionDeniedError as e:
            log.warning(f"위치 권한 거부됨 entity:{self.entity_id} error:{e}")
            return False
        except Exception as e:
            log.error(f"위치 기능 확인 실패 entity:{self.entity_id} error:{str(e)}")
            return False
        return parse_tracker_state(state) is not None if state else False

    def subscribe(self,
                  on_update: PositionCallback,
                  on_error: ErrorCallback,
                  *,
                  high_accuracy: bool = True,
                  timeout_sec: float = 10.0,
                  maximum_age_sec: float = 5.0) -> int:
        """위치 폴링을 시작하고 구독 핸들을 반환합니다."""
        handle = next(self._ids)
        self._tasks[handle] = asyncio.get_running_loop().create_task(
            self._poll_loop(handle, on_update, on_error,
                            high_accuracy=high_accuracy,
                            timeout_sec=timeout_sec,
                            maximum_age_sec=maximum_age_sec)
        )
        log.info(f"위치 구독 시작 handle:{handle} high_accuracy:{high_accuracy}")
        return handle

    def unsubscribe(self, handle: int) -> None:
        """구독을 해제합니다. 없는 핸들은 무시합니다."""
        task = self._tasks.pop(handle, None)
        if task is None:
            return
        task.cancel()
        log.info(f"위치 구독 해제 handle:{handle}")

        if self._high_accuracy_on and not self._tasks:
            self._high_accuracy_on = False
            self._spawn(self._set_high_accuracy(False))

    def _spawn(self, coro) -> None:
        try:
            task = asyncio.get_running_loop().create_task(coro)
        except RuntimeError:
            coro.close()
            return
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _send_command(self, command: str, data: Optional[Dict] = None) -> None:
        """모바일 앱에 명령 메시지를 보냅니다. 실패는 로그만 남깁니다."""
        try:
            await self.ha.notify(self.command_service, None, command, data=data)
        except Exception as e:
            log.warning(f"모바일 앱 명령 실패 command:{command} data:{data} error:{str(e)}")

    async def _set_high_accuracy(self, on: bool) -> None:
        """모바일 앱의 고정밀 위치 모드를 켜거나 끕니다."""
        await self._send_command(
            "command_high_accuracy_mode",
            {"command": "turn_on" if on else "turn_off"},
        )

    async def _poll_loop(self,
                         handle: int,
                         on_update: PositionCallback,
                         on_error: ErrorCallback,
                         *,
                         high_accuracy: bool,
                         timeout_sec: float,
                         maximum_age_sec: float) -> None:
        """
        폴링 루프. 해제된 핸들의 콜백은 호출하지 않습니다.

        마지막으로 알려진 위치는 나이와 상관없이 전달합니다. 위치가
        maximum_age_sec보다 오래되면 앱에 새 위치를 요청하고, 위치를
        전혀 얻지 못한 채 timeout_sec이 지나면 SourceTimeoutError를 보냅니다.
        """
        loop = asyncio.get_running_loop()
        last_fix = loop.time()
        last_request: Optional[float] = None

        if high_accuracy and self.command_service and not self._high_accuracy_on:
            self._high_accuracy_on = True
            await self._set_high_accuracy(True)

        while handle in self._tasks:
            position = None
            try:
                state = await self.ha.get_state(self.entity_id)
                position = parse_tracker_state(state) if state else None
            except PermissionDeniedError as e:
                if handle in self._tasks:
                    on_error(e)
                return
            except (ValidationError, ValueError, TypeError) as e:
                log.warning(f"잘못된 위치 데이터 entity:{self.entity_id} error:{str(e)}")
            except Exception as e:
                log.error(f"위치 조회 실패 entity:{self.entity_id} error:{str(e)}")

            if handle not in self._tasks:
                return

            now = loop.time()
            if position is not None:
                last_fix = now
                on_update(position)
                # 요청은 timeout_sec마다 최대 1회
                if (self.command_service
                        and not self._is_fresh(position, maximum_age_sec)
                        and (last_request is None or now - last_request >= timeout_sec)):
                    last_request = now
                    log.debug(f"오래된 위치, 새 위치 요청 entity:{self.entity_id}")
                    self._spawn(self._send_command("request_location_update"))
            elif now - last_fix >= timeout_sec:
                last_fix = now
                on_error(SourceTimeoutError(
                    f"{self.entity_id}: {timeout_sec}s 동안 위치 없음"
                ))

            await asyncio.sleep(self.poll_interval_sec)

    @staticmethod
    def _is_fresh(position: Position, maximum_age_sec: float) -> bool:
        if position.timestamp is None:
            return True
        ts = position.timestamp
        if ts.tzinfo is None:
            ts = ts.replace(tzinfo=timezone.utc)
        age = (datetime.now(timezone.utc) - ts).total_seconds()
        return age <= maximum_age_sec
