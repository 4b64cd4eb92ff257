"""
HTTP endpoints for Sarthi.

This module implements health, readiness, metrics and info endpoints,
plus the status and emergency-session controls used by the front end.
"""

from typing import Optional
from fastapi import FastAPI, HTTPException
from fastapi.responses import Response, JSONResponse
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
import time
from sarthi.settings import Settings
from sarthi.core.models import EscalationPhase
from sarthi.orchestrators.orchestrator import SafetyOrchestrator
from sarthi.observability import metrics as safety_metrics
from sarthi.observability.logging_setup import get_logger

log = get_logger()

def create_app(settings: Settings,
               orchestrator: Optional[SafetyOrchestrator] = None) -> FastAPI:
    """FastAPI 애플리케이션을 생성합니다."""
    app = FastAPI(
        title=settings.observability.service_name,
        version=settings.observability.build_version,
        description="Sarthi geofencing and emergency escalation service"
    )

    start_time = time.time()

    def _require_orchestrator() -> SafetyOrchestrator:
        if orchestrator is None:
            raise HTTPException(status_code=503, detail="Safety core not running")
        return orchestrator

    @app.get("/health")
    async def health():
        """헬스 체크 엔드포인트"""
        return JSONResponse({
            "status": "ok",
            "service": settings.observability.service_name,
            "timestamp": time.time()
        })

    @app.get("/ready")
    async def ready():
        """레디니스 체크 엔드포인트"""
        tracking = orchestrator.monitor.tracking_active if orchestrator else False
        return JSONResponse({
            "status": "ready" if orchestrator else "starting",
            "service": settings.observability.service_name,
            "tracking_active": tracking,
            "timestamp": time.time()
        })

    @app.get("/metrics")
    async def metrics():
        """Prometheus 메트릭 엔드포인트"""
        if not settings.observability.metrics_enabled:
            raise HTTPException(status_code=503, detail="Metrics disabled")

        safety_metrics.uptime_seconds.set(time.time() - start_time)
        return Response(
            generate_latest(),
            media_type=CONTENT_TYPE_LATEST
        )

    @app.get("/info")
    async def info():
        """서비스 정보 엔드포인트"""
        uptime = time.time() - start_time
        return JSONResponse({
            "service": settings.observability.service_name,
            "version": settings.observability.build_version,
            "build_date": settings.observability.build_date,
            "uptime_seconds": int(uptime),
            "metrics_enabled": settings.observability.metrics_enabled,
            "log_level": settings.observability.log_level,
            "danger_radius_km": settings.geofence.danger_radius_km,
        })

    @app.get("/status")
    async def status():
        """현재 안전 상태"""
        orch = _require_orchestrator()
        return orch.monitor.status.model_dump(mode="json")

    @app.get("/escalation")
    async def escalation():
        """현재 긴급 세션 스냅샷"""
        orch = _require_orchestrator()
        return orch.escalation.snapshot.model_dump(mode="json")

    @app.post("/escalation/test")
    async def escalation_test():
        """테스트 긴급 경보를 엽니다."""
        orch = _require_orchestrator()
        snapshot = await orch.trigger_test_alert()
        return snapshot.model_dump(mode="json")

    @app.post("/escalation/{action}")
    async def escalation_action(action: str):
        """긴급 세션 사용자 응답 (safe, help, stop-alarm, sos, close)"""
        orch = _require_orchestrator()
        sm = orch.escalation

        if action == "sos":
            if not sm.is_open:
                raise HTTPException(status_code=409, detail="No open emergency session")
            if sm.phase is not EscalationPhase.ALARM_ACTIVE:
                raise HTTPException(status_code=409, detail="Alarm is not active")
            ack = await sm.trigger_sos()
            return {"ok": True, "message": ack}

        handlers = {
            "safe": sm.mark_safe,
            "help": sm.need_help,
            "stop-alarm": sm.stop_alarm,
            "close": sm.close,
        }
        handler = handlers.get(action)
        if handler is None:
            raise HTTPException(status_code=404, detail=f"Unknown action: {action}")

        snapshot = await handler()
        log.info(f"긴급 세션 응답 처리됨 action:{action} phase:{snapshot.phase.value}")
        return snapshot.model_dump(mode="json")

    @app.get("/")
    async def root():
        """루트 엔드포인트"""
        return JSONResponse({
            "service": settings.observability.service_name,
            "version": settings.observability.build_version,
            "endpoints": {
                "health": "/health",
                "ready": "/ready",
                "metrics": "/metrics",
                "info": "/info",
                "status": "/status",
                "escalation": "/escalation",
                "escalation_test": "/escalation/test",
                "escalation_action": "/escalation/{safe|help|stop-alarm|sos|close}"
            }
        })

    return app
