"""
Safety orchestrator for Sarthi.

This module wires the geofence monitor to the escalation state
machine: it detects danger zone entry, sends the best-effort
notification, opens the emergency session and forwards status and
check-in events to the event publisher.
"""

import asyncio
from typing import Optional, Set
from sarthi.core.models import EscalationSnapshot, SafetyCheckIn, SafetyStatus
from sarthi.features.escalation import EscalationStateMachine
from sarthi.features.geofence_monitor import GeofenceMonitor
from sarthi.ports.alerting import NotificationPort
from sarthi.ports.events import SafetyEventPort
from sarthi.observability import metrics
from sarthi.observability.logging_setup import get_logger, with_context

log = get_logger("sarthi.orchestrator")

DEFAULT_TITLE = "⚠️ Danger Zone Alert"
DEFAULT_BODY = "You are {distance_km:.1f} km from {state} ({risk_level} risk). Are you safe?"

def build_checkin(snapshot: EscalationSnapshot, outcome: str) -> SafetyCheckIn:
    """종료된 세션 스냅샷으로 체크인 기록을 만듭니다."""
    if outcome == "emergency" or (outcome != "safe" and snapshot.sos_triggered):
        status = "emergency"
    elif outcome == "safe":
        status = "safe"
    elif snapshot.user_declared_emergency or snapshot.alarm_sounding:
        status = "unsafe"
    else:
        status = "safe"

    return SafetyCheckIn(
        session_id=snapshot.session_id or "",
        location=snapshot.location,
        status=status,
        zone_risk_level=snapshot.zone.risk_level if snapshot.zone else None,
        emergency_contacted=snapshot.sos_triggered,
    )

class SafetyOrchestrator:
    """지오펜스 모니터와 에스컬레이션 상태 머신을 잇는 오케스트레이터"""

    def __init__(self,
                 monitor: GeofenceMonitor,
                 escalation: EscalationStateMachine,
                 *,
                 notifier: Optional[NotificationPort] = None,
                 events: Optional[SafetyEventPort] = None,
                 notification_enabled: bool = True,
                 notification_permission: bool = True,
                 notification_title: str = DEFAULT_TITLE,
                 notification_body: str = DEFAULT_BODY):
        """
        초기화합니다.

        Args:
            monitor: 지오펜스 모니터
            escalation: 에스컬레이션 상태 머신
            notifier: 알림 발송기
            events: 안전 이벤트 발행기
            notification_enabled: 위험 구역 진입 알림 사용 여부
            notification_permission: 플랫폼 알림 권한 (외부에서 확인된 값)
            notification_title: 알림 제목
            notification_body: 알림 본문 템플릿
        """
        self.monitor = monitor
        self.escalation = escalation
        self.notifier = notifier
        self.events = events
        self.notification_enabled = notification_enabled
        self.notification_permission = notification_permission
        self.notification_title = notification_title
        self.notification_body = notification_body

        self._was_in_danger = False
        self._unsubscribe = None
        self._tasks: Set[asyncio.Task] = set()

    async def start(self) -> bool:
        """구독을 연결하고 설정에 따라 위치 추적을 시작합니다."""
        if self._unsubscribe is None:
            self._unsubscribe = self.monitor.subscribe(self._on_status)
            self.escalation.add_closed_listener(self._on_session_closed)

        active = await self.monitor.refresh()
        log.info(f"안전 오케스트레이터 시작됨 tracking:{active} zones:{len(self.monitor.zones)}")
        return active

    async def stop(self) -> None:
        """추적을 중지하고 열린 세션과 대기 중인 작업을 정리합니다."""
        self.monitor.stop_tracking()
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

        await self.escalation.close()

        # 체크인 발행은 잠시 기다리고 나머지는 취소
        if self._tasks:
            await asyncio.wait(list(self._tasks), timeout=1.0)
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        log.info("안전 오케스트레이터 중지됨")

    async def trigger_test_alert(self) -> EscalationSnapshot:
        """수동 테스트 경보로 세션을 엽니다."""
        status = self.monitor.status
        return await self.escalation.open(
            "manual",
            location=status.user_location,
            zone=status.current_zone,
        )

    async def drain(self) -> None:
        """대기 중인 백그라운드 작업이 끝날 때까지 기다립니다."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _spawn(self, coro) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            log.error(f"백그라운드 작업 오류 error:{str(exc)}")

    def _on_status(self, status: SafetyStatus) -> None:
        if self.events is not None:
            self._spawn(self._publish_status(status))

        entered = status.is_in_danger_zone and not self._was_in_danger
        self._was_in_danger = status.is_in_danger_zone
        if entered:
            metrics.danger_zone_entries.labels(risk_level=status.current_zone.risk_level).inc()
            log.warning("위험 구역 진입 감지",
                        zone=status.current_zone.state,
                        risk_level=status.current_zone.risk_level,
                        distance_km=round(status.distance_km or 0.0, 2))
            self._spawn(self._handle_entry(status))

    async def _handle_entry(self, status: SafetyStatus) -> None:
        if self.escalation.is_open:
            log.info("긴급 세션이 이미 열려 있어 진입 이벤트 무시됨")
            return

        snapshot = await self.escalation.open(
            "danger_zone",
            location=status.user_location,
            zone=status.current_zone,
        )
        with with_context(session_id=snapshot.session_id):
            await self._notify_entry(status)

    async def _notify_entry(self, status: SafetyStatus) -> None:
        """위험 구역 진입 알림 (best-effort, 권한이 있을 때만)."""
        if self.notifier is None or not self.notification_enabled:
            return
        if not self.notification_permission:
            log.debug("알림 권한 없음, 진입 알림 생략")
            metrics.notifications_sent.labels(result="no_permission").inc()
            return

        zone = status.current_zone
        try:
            body = self.notification_body.format(
                distance_km=status.distance_km or 0.0,
                state=zone.state,
                risk_level=zone.risk_level,
            )
        except (KeyError, IndexError, ValueError) as e:
            log.warning(f"알림 본문 템플릿 오류 error:{e}")
            body = f"You are near {zone.state} ({zone.risk_level} risk). Are you safe?"

        try:
            ok = await self.notifier.notify(self.notification_title, body)
        except Exception as e:
            log.warning(f"진입 알림 실패 error:{str(e)}")
            ok = False
        metrics.notifications_sent.labels(result="sent" if ok else "failed").inc()

    def _on_session_closed(self, snapshot: EscalationSnapshot, outcome: str) -> None:
        checkin = build_checkin(snapshot, outcome)
        log.info(f"체크인 기록 생성 session_id:{checkin.session_id} status:{checkin.status}")
        if self.events is not None:
            self._spawn(self._publish_checkin(checkin))

    async def _publish_status(self, status: SafetyStatus) -> None:
        try:
            await self.events.publish_status(status)
        except Exception as e:
            log.error(f"상태 발행 실패 error:{str(e)}")

    async def _publish_checkin(self, checkin: SafetyCheckIn) -> None:
        try:
            await self.events.publish_checkin(checkin)
        except Exception as e:
            log.error(f"체크인 발행 실패 error:{str(e)}")
