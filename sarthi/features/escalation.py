"""
Emergency escalation state machine for Sarthi.

This module implements the emergency session opened on danger zone
entry (or a manual test): a response countdown, an alarm phase with an
automatic SOS countdown, and user exits at every stage.

    pending --(countdown 0 | I need help)--> alarm_active
    pending --(I'm safe)--> safe --(1s)--> closed
    alarm_active --(auto SOS countdown 0)--> alarm_active (SOS sent once)
    alarm_active --(stop alarm | SOS)--> closed
"""

import asyncio
import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional
from sarthi.core.models import (
    EscalationPhase, EscalationSnapshot, EscalationTrigger,
    Position, RiskZone, SOSSource
)
from sarthi.ports.alerting import AudioPlayerPort, SOSDispatcherPort
from sarthi.observability import metrics
from sarthi.observability.logging_setup import get_logger

log = get_logger("sarthi.escalation")

SOS_FAILURE_MESSAGE = "SOS could not be sent. Call your local emergency number."

ClosedListener = Callable[[EscalationSnapshot, str], None]

@dataclass
class AlarmHandle:
    """세션이 소유하는 경보음 핸들 (세션당 최대 1개)"""
    session_id: str
    sounding: bool = False

class EscalationStateMachine:
    """긴급 에스컬레이션 상태 머신"""

    def __init__(self,
                 sos: SOSDispatcherPort,
                 audio: Optional[AudioPlayerPort] = None,
                 *,
                 response_countdown_sec: int = 30,
                 auto_sos_countdown_sec: int = 20,
                 tick_interval_sec: float = 1.0,
                 safe_close_delay_sec: float = 1.0):
        """
        초기화합니다.

        Args:
            sos: SOS 발송기
            audio: 경보음 재생기 (None이면 무음으로 동작)
            response_countdown_sec: 응답 대기 카운트다운 (초)
            auto_sos_countdown_sec: 경보 후 자동 SOS 카운트다운 (초)
            tick_interval_sec: 카운트다운 틱 간격 (초)
            safe_close_delay_sec: "안전" 응답 후 닫기까지의 지연 (초)
        """
        self.sos = sos
        self.audio = audio
        self.response_countdown_sec = response_countdown_sec
        self.auto_sos_countdown_sec = auto_sos_countdown_sec
        self.tick_interval_sec = tick_interval_sec
        self.safe_close_delay_sec = safe_close_delay_sec

        self._closed_listeners: List[ClosedListener] = []
        self._ticker: Optional[asyncio.Task] = None
        self._close_task: Optional[asyncio.Task] = None
        self._alarm: Optional[AlarmHandle] = None
        self._reset()

    def _reset(self) -> None:
        self._session_id: Optional[str] = None
        self._phase = EscalationPhase.IDLE
        self._trigger: Optional[EscalationTrigger] = None
        self._user_declared = False
        self._response_countdown = self.response_countdown_sec
        self._auto_sos_countdown = self.auto_sos_countdown_sec
        self._sos_triggered = False
        self._sos_source: Optional[SOSSource] = None
        self._location: Optional[Position] = None
        self._zone: Optional[RiskZone] = None

    @property
    def phase(self) -> EscalationPhase:
        return self._phase

    @property
    def is_open(self) -> bool:
        return self._phase is not EscalationPhase.IDLE

    @property
    def alarm(self) -> Optional[AlarmHandle]:
        return self._alarm

    @property
    def snapshot(self) -> EscalationSnapshot:
        return EscalationSnapshot(
            session_id=self._session_id,
            phase=self._phase,
            trigger=self._trigger,
            user_declared_emergency=self._user_declared,
            response_countdown=self._response_countdown,
            auto_sos_countdown=self._auto_sos_countdown,
            alarm_sounding=bool(self._alarm and self._alarm.sounding),
            sos_triggered=self._sos_triggered,
            sos_source=self._sos_source,
            location=self._location,
            zone=self._zone,
        )

    def add_closed_listener(self, listener: ClosedListener) -> None:
        """세션 종료 시 (최종 스냅샷, 결과)로 호출될 리스너를 등록합니다."""
        self._closed_listeners.append(listener)

    async def open(self,
                   trigger: EscalationTrigger = "manual",
                   *,
                   location: Optional[Position] = None,
                   zone: Optional[RiskZone] = None) -> EscalationSnapshot:
        """
        새 긴급 세션을 엽니다. 이미 열린 세션이 있으면 그대로 둡니다.

        Args:
            trigger: 세션을 연 원인 ("danger_zone" 또는 "manual")
            location: 세션 시작 시 위치
            zone: 진입한 위험 구역

        Returns:
            현재 세션 스냅샷
        """
        if self.is_open:
            log.info(f"이미 열린 세션이 있어 무시됨 session_id:{self._session_id} trigger:{trigger}")
            return self.snapshot

        self._reset()
        self._session_id = uuid.uuid4().hex
        self._phase = EscalationPhase.PENDING
        self._trigger = trigger
        self._location = location
        self._zone = zone

        self._ticker = asyncio.get_running_loop().create_task(
            self._run_ticker(self._session_id)
        )

        metrics.escalation_sessions.labels(trigger=trigger).inc()
        log.warning("긴급 세션 시작됨",
                    session_id=self._session_id,
                    trigger=trigger,
                    zone=zone.state if zone else None,
                    countdown=self._response_countdown)
        return self.snapshot

    async def _run_ticker(self, session_id: str) -> None:
        """tick_interval_sec마다 tick()을 호출합니다. 세션이 바뀌면 종료합니다."""
        while self._session_id == session_id and self._needs_ticking():
            await asyncio.sleep(self.tick_interval_sec)
            if self._session_id != session_id:
                return
            await self.tick()

    def _needs_ticking(self) -> bool:
        if self._phase is EscalationPhase.PENDING:
            return True
        return self._phase is EscalationPhase.ALARM_ACTIVE and not self._sos_triggered

    async def tick(self) -> EscalationSnapshot:
        """
        카운트다운을 1초 진행합니다.

        pending에서 응답 카운트다운이 0이 되면 경보를 시작하고,
        alarm_active에서 자동 SOS 카운트다운이 0이 되면 SOS를 한 번 발송합니다.
        """
        if self._phase is EscalationPhase.PENDING:
            if self._response_countdown > 0:
                self._response_countdown -= 1
            if self._response_countdown == 0:
                log.warning(f"응답 없음, 경보 시작 session_id:{self._session_id}")
                await self._activate_alarm()

        elif self._phase is EscalationPhase.ALARM_ACTIVE:
            if not self._sos_triggered and self._auto_sos_countdown > 0:
                self._auto_sos_countdown -= 1
                if self._auto_sos_countdown == 0:
                    log.warning(f"자동 SOS 카운트다운 만료 session_id:{self._session_id}")
                    await self._dispatch_sos("auto")

        return self.snapshot

    async def mark_safe(self) -> EscalationSnapshot:
        """pending 단계에서 "I'm Safe" 응답을 처리합니다."""
        if self._phase is not EscalationPhase.PENDING:
            log.info(f"안전 응답 무시됨 phase:{self._phase.value}")
            return self.snapshot

        self._phase = EscalationPhase.SAFE
        self._cancel_ticker()
        log.info(f"사용자 안전 확인 session_id:{self._session_id}")

        self._close_task = asyncio.get_running_loop().create_task(
            self._close_after(self._session_id, self.safe_close_delay_sec)
        )
        return self.snapshot

    async def _close_after(self, session_id: str, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._session_id == session_id:
            await self.close(outcome="safe")

    async def need_help(self) -> EscalationSnapshot:
        """pending 단계에서 "I Need Help" 응답을 처리합니다. 즉시 경보를 시작합니다."""
        if self._phase is not EscalationPhase.PENDING:
            log.info(f"도움 요청 무시됨 phase:{self._phase.value}")
            return self.snapshot

        log.warning(f"사용자 긴급 상황 선언 session_id:{self._session_id}")
        await self._activate_alarm(user_declared=True)
        return self.snapshot

    async def stop_alarm(self) -> EscalationSnapshot:
        """경보 단계에서 "Stop Alarm - I'm Safe"를 처리하고 세션을 닫습니다."""
        if self._phase is not EscalationPhase.ALARM_ACTIVE:
            log.info(f"경보 중지 무시됨 phase:{self._phase.value}")
            return self.snapshot
        return await self.close(outcome="safe")

    async def trigger_sos(self) -> str:
        """
        경보 단계에서 수동 SOS를 발송하고 세션을 닫습니다.

        Returns:
            사용자에게 보여줄 확인 메시지
        """
        if self._phase is not EscalationPhase.ALARM_ACTIVE:
            log.info(f"수동 SOS 무시됨 phase:{self._phase.value}")
            return ""

        ack = await self._dispatch_sos("manual")
        await self.close(outcome="emergency")
        return ack

    async def close(self, outcome: Optional[str] = None) -> EscalationSnapshot:
        """
        세션을 닫고 모든 타이머와 경보음을 정리합니다. 여러 번 호출해도 안전합니다.

        Args:
            outcome: "safe", "emergency" 또는 None (외부에서 닫힘)

        Returns:
            닫히기 직전의 최종 스냅샷
        """
        if not self.is_open:
            return self.snapshot

        self._cancel_ticker()
        if self._close_task is not None and self._close_task is not asyncio.current_task():
            self._close_task.cancel()
        self._close_task = None

        outcome = outcome or "dismissed"
        if outcome == "safe":
            self._phase = EscalationPhase.SAFE
        elif outcome == "emergency":
            self._phase = EscalationPhase.EMERGENCY
        final = self.snapshot

        await self._stop_alarm_audio()
        self._reset()

        metrics.escalation_outcomes.labels(outcome=outcome).inc()
        log.info(f"긴급 세션 종료됨 session_id:{final.session_id} outcome:{outcome}")

        for listener in list(self._closed_listeners):
            try:
                listener(final, outcome)
            except Exception as e:
                log.error(f"세션 종료 리스너 오류 error:{str(e)}")

        return final

    async def _activate_alarm(self, *, user_declared: bool = False) -> None:
        if user_declared:
            self._user_declared = True
        if self._phase is EscalationPhase.PENDING:
            self._phase = EscalationPhase.ALARM_ACTIVE
            self._auto_sos_countdown = self.auto_sos_countdown_sec
        await self._start_alarm()

    async def _start_alarm(self) -> None:
        """경보음을 시작합니다. 이미 핸들이 있으면 아무것도 하지 않습니다."""
        if self._alarm is not None or self._session_id is None:
            return

        # await 이전에 핸들을 잡아 중복 시작 방지
        handle = AlarmHandle(session_id=self._session_id)
        self._alarm = handle
        metrics.alarm_activations.inc()

        if self.audio is None:
            log.warning("오디오 재생기가 없어 무음 경보로 계속합니다")
            return

        try:
            await self.audio.play(loop=True)
            handle.sounding = True
        except Exception as e:
            log.error(f"경보음 재생 실패, 무음 경보로 계속합니다 error:{str(e)}")

        if self._alarm is None:
            # 재생 대기 중 세션이 닫힘
            await self._release_audio()

    async def _stop_alarm_audio(self) -> None:
        handle = self._alarm
        self._alarm = None
        if handle is None:
            return
        await self._release_audio()

    async def _release_audio(self) -> None:
        if self.audio is None:
            return
        try:
            await self.audio.stop()
        except Exception as e:
            log.error(f"경보음 중지 실패 error:{str(e)}")

    async def _dispatch_sos(self, source: SOSSource) -> str:
        self._sos_triggered = True
        self._sos_source = source
        metrics.sos_triggered.labels(source=source).inc()

        try:
            return await self.sos.trigger(self.snapshot)
        except Exception as e:
            log.error(f"SOS 발송 실패 source:{source} error:{str(e)}")
            return SOS_FAILURE_MESSAGE

    def _cancel_ticker(self) -> None:
        ticker = self._ticker
        self._ticker = None
        if ticker is not None and ticker is not asyncio.current_task():
            ticker.cancel()
