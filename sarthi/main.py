# sarthi/main.py
import os, asyncio, signal, time
from typing import Optional
import uvicorn
from sarthi.settings import Settings
from sarthi.observability.health import create_app
from sarthi.observability import metrics
from sarthi.observability.logging_setup import setup_logger, get_logger
from sarthi.adapters.homeassistant.client import HAClient
from sarthi.adapters.homeassistant.tracker import HADeviceTrackerSource
from sarthi.adapters.homeassistant.media import HAMediaAlarmPlayer
from sarthi.adapters.homeassistant.notify import HAMobileNotifier
from sarthi.adapters.sos.local import LocalAcknowledgmentSOS
from sarthi.adapters.mqtt_local.publisher_async import MqttSafetyEventPublisher
from sarthi.features.escalation import EscalationStateMachine
from sarthi.features.geofence_monitor import GeofenceMonitor
from sarthi.features.risk_zones import FileRiskZoneProvider
from sarthi.orchestrators.orchestrator import SafetyOrchestrator

def _b(name, default=False): return os.getenv(name, str(default)).lower() in ("1","true","yes","on")

def build_settings() -> Settings:
    s = Settings()

    # HA
    s.ha.base_url = os.getenv("HA_BASE_URL", s.ha.base_url)
    s.ha.token = os.getenv("HA_TOKEN", os.getenv("SUPERVISOR_TOKEN", s.ha.token))
    s.ha.timeout_sec = int(os.getenv("HA_TIMEOUT_SEC", s.ha.timeout_sec))

    # 지오펜스
    s.geofence.enabled = _b("GEOFENCE_ENABLED", s.geofence.enabled)
    s.geofence.tracker_entity = os.getenv("TRACKER_ENTITY", s.geofence.tracker_entity)
    s.geofence.high_accuracy = _b("HIGH_ACCURACY", s.geofence.high_accuracy)
    s.geofence.timeout_sec = float(os.getenv("POSITION_TIMEOUT_SEC", s.geofence.timeout_sec))
    s.geofence.maximum_age_sec = float(os.getenv("POSITION_MAX_AGE_SEC", s.geofence.maximum_age_sec))
    s.geofence.poll_interval_sec = float(os.getenv("POSITION_POLL_SEC", s.geofence.poll_interval_sec))
    for level in ("critical", "high", "medium", "low"):
        env = f"DANGER_RADIUS_{level.upper()}_KM"
        if os.getenv(env):
            s.geofence.danger_radius_km[level] = float(os.environ[env])

    # 에스컬레이션
    s.escalation.response_countdown_sec = int(os.getenv("RESPONSE_COUNTDOWN_SEC", s.escalation.response_countdown_sec))
    s.escalation.auto_sos_countdown_sec = int(os.getenv("AUTO_SOS_COUNTDOWN_SEC", s.escalation.auto_sos_countdown_sec))

    # 경보음 / 알림
    s.audio.enabled = _b("AUDIO_ENABLED", s.audio.enabled)
    s.audio.media_player_entity = os.getenv("MEDIA_PLAYER_ENTITY", s.audio.media_player_entity)
    s.audio.media_url = os.getenv("ALARM_MEDIA_URL", s.audio.media_url)
    s.notification.enabled = _b("NOTIFY_ENABLED", s.notification.enabled)
    s.notification.permission_granted = _b("NOTIFY_PERMISSION", s.notification.permission_granted)
    s.notification.service = os.getenv("NOTIFY_SERVICE", s.notification.service)

    # 위험 구역
    s.zones.file_path = os.getenv("ZONES_FILE", s.zones.file_path)
    s.zones.use_fallback = _b("ZONES_FALLBACK", s.zones.use_fallback)

    # LOCAL MQTT
    s.local_mqtt.enabled = _b("LOCAL_MQTT_ENABLED", s.local_mqtt.enabled)
    s.local_mqtt.host = os.getenv("LOCAL_MQTT_HOST", s.local_mqtt.host)
    s.local_mqtt.port = int(os.getenv("LOCAL_MQTT_PORT", s.local_mqtt.port))
    s.local_mqtt.username = os.getenv("LOCAL_MQTT_USERNAME", s.local_mqtt.username)
    s.local_mqtt.password = os.getenv("LOCAL_MQTT_PASSWORD", s.local_mqtt.password)
    s.local_mqtt.topic_prefix = os.getenv("LOCAL_TOPIC_PREFIX", s.local_mqtt.topic_prefix)

    # 관측성
    s.observability.metrics_enabled = _b("METRICS_ENABLED", s.observability.metrics_enabled)
    s.observability.http_port = int(os.getenv("HTTP_PORT", s.observability.http_port))
    s.observability.log_level = os.getenv("LOG_LEVEL", s.observability.log_level)

    return s

def build_orchestrator(s: Settings, ha: HAClient,
                       events: Optional[MqttSafetyEventPublisher] = None) -> SafetyOrchestrator:
    zones = FileRiskZoneProvider(s.zones.file_path, use_fallback=s.zones.use_fallback).get_zones()

    source = HADeviceTrackerSource(
        ha,
        s.geofence.tracker_entity,
        poll_interval_sec=s.geofence.poll_interval_sec,
        command_service=s.notification.service,
    )
    monitor = GeofenceMonitor(
        source,
        zones,
        capability=source,
        enabled=s.geofence.enabled,
        radii=s.geofence.danger_radius_km,
        high_accuracy=s.geofence.high_accuracy,
        timeout_sec=s.geofence.timeout_sec,
        maximum_age_sec=s.geofence.maximum_age_sec,
    )

    audio = None
    if s.audio.enabled:
        audio = HAMediaAlarmPlayer(
            ha,
            media_player_entity=s.audio.media_player_entity,
            media_url=s.audio.media_url,
            media_type=s.audio.media_type,
        )
    escalation = EscalationStateMachine(
        LocalAcknowledgmentSOS(),
        audio,
        response_countdown_sec=s.escalation.response_countdown_sec,
        auto_sos_countdown_sec=s.escalation.auto_sos_countdown_sec,
        tick_interval_sec=s.escalation.tick_interval_sec,
        safe_close_delay_sec=s.escalation.safe_close_delay_sec,
    )

    return SafetyOrchestrator(
        monitor,
        escalation,
        notifier=HAMobileNotifier(ha, s.notification.service),
        events=events,
        notification_enabled=s.notification.enabled,
        notification_permission=s.notification.permission_granted,
        notification_title=s.notification.title,
        notification_body=s.notification.body_template,
    )

async def start_http(settings: Settings, orch: SafetyOrchestrator) -> Optional[asyncio.Task]:
    app = create_app(settings, orch)
    return asyncio.create_task(uvicorn.Server(
        uvicorn.Config(app, host="0.0.0.0", port=settings.observability.http_port, log_level="info")
    ).serve())

async def _uptime_loop(started: float) -> None:
    while True:
        metrics.uptime_seconds.set(time.time() - started)
        await asyncio.sleep(30)

async def main():
    s = build_settings()
    setup_logger(s.observability.log_level)
    log = get_logger()
    log.info("설정 로드 완료")

    events = None
    events_task = None
    if s.local_mqtt.enabled:
        events = MqttSafetyEventPublisher(
            broker_host=s.local_mqtt.host,
            broker_port=s.local_mqtt.port,
            topic_prefix=s.local_mqtt.topic_prefix,
            username=s.local_mqtt.username,
            password=s.local_mqtt.password,
            tls=s.local_mqtt.tls,
            client_id=s.local_mqtt.client_id,
            keepalive=s.local_mqtt.keepalive,
            qos_default=s.local_mqtt.qos,
        )
        events_task = asyncio.create_task(events.start())
        log.info("로컬 MQTT 이벤트 발행기 시작됨")

    async with HAClient(s.ha.base_url, s.ha.token, s.ha.timeout_sec) as ha:
        orch = build_orchestrator(s, ha, events)
        await orch.start()

        http_task = await start_http(s, orch)
        log.info("HTTP 서버 시작됨")
        uptime_task = asyncio.create_task(_uptime_loop(time.time()))

        stop = asyncio.Future()
        try:
            loop = asyncio.get_running_loop()
            for sig in (signal.SIGTERM, signal.SIGINT):
                try: loop.add_signal_handler(sig, lambda: (not stop.done()) and stop.set_result(True))
                except NotImplementedError: pass
        except RuntimeError: pass

        await stop
        log.info("종료 신호 수신")
        await orch.stop()
        uptime_task.cancel()
        http_task.cancel()

    if events is not None:
        await events.stop()
        events_task.cancel()

def run() -> None:
    asyncio.run(main())

if __name__ == "__main__":
    run()
