"""
Geofence monitor for Sarthi.

This module tracks the subject's live position against a fixed set of
risk zones and publishes a SafetyStatus on every position sample.
"""

from typing import Any, Callable, List, Mapping, Optional, Sequence, Tuple
from sarthi.core.errors import PermissionDeniedError, SourceTimeoutError
from sarthi.core.geofence import evaluate_safety
from sarthi.core.models import Position, RiskZone, SafetyStatus
from sarthi.ports.position import LocationCapabilityPort, PositionSourcePort
from sarthi.observability import metrics
from sarthi.observability.logging_setup import get_logger

log = get_logger("sarthi.geofence")

StatusListener = Callable[[SafetyStatus], None]

class GeofenceMonitor:
    """위치 스트림을 위험 구역과 비교하는 지오펜스 모니터"""

    def __init__(self,
                 source: PositionSourcePort,
                 zones: Sequence[RiskZone] = (),
                 *,
                 capability: Optional[LocationCapabilityPort] = None,
                 enabled: bool = True,
                 radii: Optional[Mapping[str, float]] = None,
                 high_accuracy: bool = True,
                 timeout_sec: float = 10.0,
                 maximum_age_sec: float = 5.0):
        """
        초기화합니다.

        Args:
            source: 위치 소스
            zones: 위험 구역 목록 (주입, 소유하지 않음)
            capability: 위치 기능 확인기 (최초 start_tracking에서 1회 호출)
            enabled: 자동 추적 여부
            radii: 위험 등급별 반경 테이블
            high_accuracy: 고정밀 모드
            timeout_sec: fix 대기 제한 시간 (초)
            maximum_age_sec: 캐시된 fix의 최대 나이 (초)
        """
        self.source = source
        self.capability = capability
        self.enabled = enabled
        self.radii = dict(radii) if radii else None
        self.high_accuracy = high_accuracy
        self.timeout_sec = timeout_sec
        self.maximum_age_sec = maximum_age_sec

        # 참조 교체만 허용 (평가 중 부분 갱신 방지)
        self._zones: Tuple[RiskZone, ...] = tuple(zones)
        self._status = SafetyStatus()
        self._listeners: List[StatusListener] = []

        self._handle: Any = None
        self._generation = 0
        self._capability_checked = False
        self._capability_ok = True

        metrics.zones_loaded.set(len(self._zones))

    @property
    def status(self) -> SafetyStatus:
        return self._status

    @property
    def zones(self) -> Tuple[RiskZone, ...]:
        return self._zones

    @property
    def tracking_active(self) -> bool:
        return self._handle is not None

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """상태 리스너를 등록하고 해제 함수를 반환합니다."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def start_tracking(self) -> bool:
        """
        위치 추적을 시작합니다. 이미 추적 중이면 아무것도 하지 않습니다.

        Returns:
            추적 활성 여부
        """
        if self._handle is not None:
            return True

        if not self._capability_checked:
            self._capability_checked = True
            if self.capability is not None:
                try:
                    self._capability_ok = await self.capability.is_available()
                except Exception as e:
                    log.error(f"위치 기능 확인 실패 error:{str(e)}")
                    self._capability_ok = False

        if not self._capability_ok:
            log.warning("위치 기능을 사용할 수 없습니다. 수동 모드로 동작합니다.")
            self._set_status(tracking_active=False, permission_denied=True,
                             last_error="location_unavailable")
            return False

        # 이전 구독의 늦은 콜백을 무시하기 위한 세대 토큰
        self._generation += 1
        generation = self._generation

        try:
            self._handle = self.source.subscribe(
                lambda position: self._on_source_update(generation, position),
                lambda error: self._on_source_error(generation, error),
                high_accuracy=self.high_accuracy,
                timeout_sec=self.timeout_sec,
                maximum_age_sec=self.maximum_age_sec,
            )
        except PermissionDeniedError as e:
            log.warning(f"위치 권한 거부됨 error:{e}")
            self._set_status(tracking_active=False, permission_denied=True,
                             last_error="permission_denied")
            return False
        except Exception as e:
            log.error(f"위치 구독 실패 error:{str(e)}")
            self._set_status(tracking_active=False, last_error=str(e))
            return False

        metrics.tracking_active.set(1)
        self._set_status(tracking_active=True, permission_denied=False, last_error=None)
        log.info(f"위치 추적 시작됨 zones:{len(self._zones)}")
        return True

    def stop_tracking(self) -> None:
        """위치 추적을 중지합니다. 여러 번 호출해도 안전합니다."""
        handle = self._handle
        if handle is None:
            return

        self._handle = None
        self._generation += 1
        try:
            self.source.unsubscribe(handle)
        except Exception as e:
            log.error(f"위치 구독 해제 실패 error:{str(e)}")

        metrics.tracking_active.set(0)
        self._set_status(tracking_active=False)
        log.info("위치 추적 중지됨")

    async def refresh(self) -> bool:
        """enabled와 구역 유무에 따라 추적을 시작하거나 중지합니다."""
        if self.enabled and self._zones:
            return await self.start_tracking()
        self.stop_tracking()
        return False

    async def set_enabled(self, enabled: bool) -> bool:
        self.enabled = enabled
        return await self.refresh()

    async def replace_zones(self, zones: Sequence[RiskZone]) -> bool:
        """위험 구역 목록을 원자적으로 교체합니다."""
        self._zones = tuple(zones)
        metrics.zones_loaded.set(len(self._zones))
        log.info(f"위험 구역 교체됨 count:{len(self._zones)}")
        return await self.refresh()

    def on_position_update(self, position: Position) -> SafetyStatus:
        """
        위치 샘플을 평가하고 모든 리스너에게 상태를 발행합니다.

        상태가 바뀌지 않아도 매번 발행합니다.
        """
        metrics.position_updates.inc()
        zones = self._zones
        evaluated = evaluate_safety(position, zones, radii=self.radii)

        self._status = evaluated.model_copy(update={
            "tracking_active": self.tracking_active,
            "permission_denied": False,
            "last_error": None,
        })
        self._publish()
        return self._status

    def on_error(self, error: Exception) -> SafetyStatus:
        """
        위치 소스 오류를 상태에 반영합니다. 예외를 전파하지 않습니다.

        권한 거부는 추적을 비활성화하고, 그 외 오류는 일시적인 것으로
        보아 마지막 상태를 유지합니다.
        """
        if isinstance(error, PermissionDeniedError):
            metrics.position_errors.labels(kind="permission_denied").inc()
            log.warning(f"위치 권한 거부됨, 추적 비활성화 error:{error}")
            self.stop_tracking()
            self._set_status(permission_denied=True, last_error="permission_denied")
        elif isinstance(error, SourceTimeoutError):
            metrics.position_errors.labels(kind="timeout").inc()
            log.warning(f"위치 fix 제한 시간 초과 error:{error}")
            self._set_status(last_error="timeout")
        else:
            metrics.position_errors.labels(kind="other").inc()
            log.error(f"위치 추적 오류 error:{str(error)}")
            self._set_status(last_error=str(error))

        self._publish()
        return self._status

    def _on_source_update(self, generation: int, position: Position) -> None:
        if generation != self._generation or self._handle is None:
            log.debug("취소된 구독의 위치 콜백 무시됨")
            return
        self.on_position_update(position)

    def _on_source_error(self, generation: int, error: Exception) -> None:
        if generation != self._generation or self._handle is None:
            log.debug("취소된 구독의 오류 콜백 무시됨")
            return
        self.on_error(error)

    def _set_status(self, **changes) -> None:
        self._status = self._status.model_copy(update=changes)

    def _publish(self) -> None:
        status = self._status
        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception as e:
                log.error(f"상태 리스너 오류 error:{str(e)}")
