# sarthi/settings.py
from __future__ import annotations
from pydantic import BaseModel, Field

class HAConfig(BaseModel):
    base_url: str = "http://supervisor/core/api"
    token: str = ""
    timeout_sec: int = 5

class Geofence(BaseModel):
    enabled: bool = True
    tracker_entity: str = "device_tracker.phone"
    high_accuracy: bool = True
    timeout_sec: float = 10.0
    maximum_age_sec: float = 5.0
    poll_interval_sec: float = 5.0
    # critical 50km/60km 불일치는 60km로 통일, 배포별 재정의 가능
    danger_radius_km: dict[str, float] = Field(default_factory=lambda: {
        "critical": 60.0,
        "high": 40.0,
        "medium": 25.0,
        "low": 15.0,
    })

class Escalation(BaseModel):
    response_countdown_sec: int = 30
    auto_sos_countdown_sec: int = 20
    tick_interval_sec: float = 1.0
    safe_close_delay_sec: float = 1.0

class Audio(BaseModel):
    enabled: bool = True
    media_player_entity: str = "media_player.phone"
    media_url: str = "/local/Police.mp3"
    media_type: str = "music"

class Notification(BaseModel):
    enabled: bool = True
    permission_granted: bool = True
    service: str = "mobile_app_phone"
    title: str = "⚠️ Danger Zone Alert"
    body_template: str = "You are {distance_km:.1f} km from {state} ({risk_level} risk). Are you safe?"

class Zones(BaseModel):
    file_path: str = "/share/crime_zones.csv"
    use_fallback: bool = True

class LocalMQTT(BaseModel):
    enabled: bool = False
    host: str = "core-mosquitto"
    port: int = 1883
    username: str | None = None
    password: str | None = None
    tls: bool = False
    client_id: str | None = None
    keepalive: int = 30
    topic_prefix: str = "sarthi"
    qos: int = 1

class Observability(BaseModel):
    http_port: int = 8099
    metrics_enabled: bool = True
    service_name: str = "Sarthi"
    build_version: str = "0.1.0"
    build_date: str = "2026-01-01"
    log_level: str = "INFO"

class Settings(BaseModel):
    # 하위 섹션 (기본값/팩토리로 누락 방지)
    ha: HAConfig = Field(default_factory=HAConfig)
    geofence: Geofence = Field(default_factory=Geofence)
    escalation: Escalation = Field(default_factory=Escalation)
    audio: Audio = Field(default_factory=Audio)
    notification: Notification = Field(default_factory=Notification)
    zones: Zones = Field(default_factory=Zones)
    local_mqtt: LocalMQTT = Field(default_factory=LocalMQTT)
    observability: Observability = Field(default_factory=Observability)
